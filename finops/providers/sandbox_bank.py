"""Sandbox banking provider.

Simulates an ACH-capable bank: transfers are booked into an in-memory
ledger and acknowledged with a generated transaction reference. Useful for
local runs and demos where no real banking partner is configured.
"""

import uuid
from decimal import Decimal
from typing import Dict, List

from pydantic import BaseModel, Field

from finops.models import ProviderResponse, TransferInstruction
from finops.providers.base import BankingProvider


class SandboxBankConfig(BaseModel):
    source_account: str = "sandbox-operating"
    per_transfer_limit: Decimal = Field(default=Decimal("1000000.00"), gt=0)
    blocked_accounts: List[str] = Field(default_factory=list)


class SandboxBankProvider(BankingProvider):
    config_model = SandboxBankConfig

    def __init__(self, name: str, config: SandboxBankConfig) -> None:
        super().__init__(name, config)
        # idempotency key -> transaction reference
        self._ledger: Dict[str, str] = {}

    def adopt_state(self, previous) -> None:
        # Keep replay-by-key working across configuration updates
        if isinstance(previous, SandboxBankProvider):
            self._ledger = previous._ledger

    async def execute_transfer(self, instruction: TransferInstruction) -> ProviderResponse:
        if instruction.idempotency_key in self._ledger:
            return ProviderResponse(
                success=True,
                data={
                    "transaction_id": self._ledger[instruction.idempotency_key],
                    "replayed": True,
                },
            )
        if instruction.recipient_account_ref in self.config.blocked_accounts:
            return ProviderResponse(success=False, error="Recipient account is blocked")
        if instruction.amount > self.config.per_transfer_limit:
            return ProviderResponse(success=False, error="Amount exceeds per-transfer limit")

        transaction_id = f"sbx_{uuid.uuid4().hex[:16]}"
        self._ledger[instruction.idempotency_key] = transaction_id
        return ProviderResponse(
            success=True,
            data={
                "transaction_id": transaction_id,
                "source_account": self.config.source_account,
            },
        )

    async def verify_account(self, account_ref: str) -> ProviderResponse:
        verified = account_ref not in self.config.blocked_accounts
        return ProviderResponse(success=True, data={"verified": verified})
