"""Shared fixtures for the test suite."""

import asyncio
from typing import Any, Dict, List, Optional

import pytest
import pytest_asyncio
from fastapi.testclient import TestClient
from pydantic import BaseModel

from finops.audit.trail import AuditTrail
from finops.compliance.aggregator import ComplianceAggregator
from finops.errors import NotFoundError, ValidationError
from finops.main import app
from finops.models import Actor, ProviderResponse, Settings, TransferInstruction
from finops.providers.base import BankingProvider, ComplianceProvider, PaymentProvider
from finops.providers.catalog import ProviderCatalog
from finops.providers.sanctions_list import SanctionsListProvider
from finops.providers.sandbox_bank import SandboxBankProvider
from finops.registry.service_registry import ServiceRegistry
from finops.storage.memory import MemoryStore
from finops.workflow.ach import ACHApprovalWorkflow

TENANT = "acme"


# ---------------------------------------------------------------------------
# Fake provider adapters
# ---------------------------------------------------------------------------


class FakeBankConfig(BaseModel):
    fail: bool = False
    decline: bool = False
    delay: float = 0.0


class FakeBank(BankingProvider):
    """Banking adapter whose behaviour is driven by its configuration."""
    config_model = FakeBankConfig

    def __init__(self, name: str, config: FakeBankConfig) -> None:
        super().__init__(name, config)
        self.calls: List[TransferInstruction] = []

    async def execute_transfer(self, instruction: TransferInstruction) -> ProviderResponse:
        self.calls.append(instruction)
        if self.config.delay:
            await asyncio.sleep(self.config.delay)
        if self.config.fail:
            raise RuntimeError("upstream returned 502")
        if self.config.decline:
            return ProviderResponse(success=False, error="insufficient funds")
        return ProviderResponse(success=True, data={"transaction_id": f"txn-{len(self.calls)}"})


class StripeConfig(BaseModel):
    api_key: str


class StripeAdapter(PaymentProvider):
    """Payment adapter that only supports card payments."""
    config_model = StripeConfig

    async def process_payment(self, amount, currency, source, destination) -> ProviderResponse:
        return ProviderResponse(success=True, data={"charge_id": "ch_1"})


class ScriptedScreeningConfig(BaseModel):
    risk_score: Optional[float] = None
    approved: bool = True
    flags: List[str] = []
    raise_error: bool = False
    delay: float = 0.0
    ping_ok: bool = True
    ping_delay: float = 0.0


class ScriptedScreening(ComplianceProvider):
    """Compliance adapter returning a canned verdict."""
    config_model = ScriptedScreeningConfig

    def __init__(self, name: str, config: ScriptedScreeningConfig) -> None:
        super().__init__(name, config)
        self.cancelled = False

    async def screen_entity(self, entity_type: str, entity_data: Dict[str, Any]) -> ProviderResponse:
        try:
            if self.config.delay:
                await asyncio.sleep(self.config.delay)
        except asyncio.CancelledError:
            self.cancelled = True
            raise
        if self.config.raise_error:
            raise ConnectionError("screening service unreachable")
        return ProviderResponse(success=True, data={
            "risk_score": self.config.risk_score,
            "approved": self.config.approved,
            "flags": self.config.flags,
        })

    async def ping(self) -> ProviderResponse:
        if self.config.ping_delay:
            await asyncio.sleep(self.config.ping_delay)
        if not self.config.ping_ok:
            raise ConnectionError("ping refused")
        return ProviderResponse(success=True)


class UnscreenableCompliance(ComplianceProvider):
    """Registered as compliance but implements no capability."""


class StrictBank(BankingProvider):
    """Banking adapter that rejects every instruction with a domain error."""

    async def execute_transfer(self, instruction: TransferInstruction) -> ProviderResponse:
        raise ValidationError("recipient routing number rejected")


class StrictScreening(ComplianceProvider):
    """Compliance adapter whose screen and ping raise domain errors."""

    async def screen_entity(self, entity_type: str, entity_data: Dict[str, Any]) -> ProviderResponse:
        raise ValidationError("entity_data missing tax id")

    async def ping(self) -> ProviderResponse:
        raise NotFoundError("sandbox account closed")


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


def make_actor(actor_id="alice", role="manager", tenant=TENANT) -> Actor:
    return Actor(actor_id=actor_id, tenant_id=tenant, role=role, source_ip="10.0.0.1")


@pytest.fixture
def admin():
    return make_actor("root", role="admin")


@pytest.fixture
def settings():
    return Settings(
        default_banking_provider="fake_bank",
        provider_timeout_seconds=0.5,
        health_check_timeout_seconds=0.2,
        screening_timeout_seconds=2.0,
        execution_timeout_seconds=0.5,
    )


@pytest.fixture
def store():
    return MemoryStore()


@pytest.fixture
def audit(store):
    return AuditTrail(store)


@pytest.fixture
def catalog():
    return ProviderCatalog({
        "fake_bank": FakeBank,
        "stripe": StripeAdapter,
        "screen_a": ScriptedScreening,
        "screen_b": ScriptedScreening,
        "screen_c": ScriptedScreening,
        "hollow": UnscreenableCompliance,
        "strict_bank": StrictBank,
        "strict_screen": StrictScreening,
        "sanctions_list": SanctionsListProvider,
        "sandbox_bank": SandboxBankProvider,
    })


@pytest.fixture
def registry(store, audit, catalog, settings):
    return ServiceRegistry(store=store, audit=audit, catalog=catalog, settings=settings)


@pytest.fixture
def aggregator(registry, store, audit, settings):
    return ComplianceAggregator(registry, store, audit, settings)


@pytest.fixture
def workflow(registry, store, audit, settings):
    return ACHApprovalWorkflow(registry, store, audit, settings)


@pytest_asyncio.fixture
async def bank(registry, admin):
    """Register the fake bank for the test tenant and return its adapter."""
    await registry.register(TENANT, "banking", "fake_bank", {}, True, actor=admin)
    return registry.lookup(TENANT, "banking", "fake_bank").adapter


@pytest.fixture
def client():
    with TestClient(app) as c:
        yield c


def headers(actor_id="root", role="admin", tenant=TENANT) -> Dict[str, str]:
    return {"X-Tenant-Id": tenant, "X-Actor-Id": actor_id, "X-Actor-Role": role}
