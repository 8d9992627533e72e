"""ACH transfer approval workflow.

Lifecycle:
    created -> Approved                      (amount <= approval threshold)
    created -> Pending                       (approval required)
    Pending -> Processing                    (level-1 approval of a 2-level transfer)
    Pending | Processing -> Processing -> Completed | Failed
                                             (final approval, provider executes)
    Pending | Processing -> Cancelled        (rejection)
    Approved -> Processing -> Completed | Failed   (explicit execute)

Completed, Failed and Cancelled are terminal.

Processing means one of two things, told apart by the approvals list:
fewer approvals than the required level means a 2-level transfer is
waiting for its level-2 approver; a full approvals list means the banking
provider call is in flight and nobody may touch the transfer.

Every transition builds a new TransferRequest from the one it read and
writes it with a compare-and-swap on ``version``. Whoever loses the race
gets InvalidStateError, so two approvers can never both append. The
approval that triggers execution is written (status Processing) before the
provider is called, which is what keeps a second approver out while money
is moving.

A Failed transfer is never modified. ``retry`` re-executes it as a new
transfer that carries the original approvals and the caller's idempotency
key, so repeated retries with one key execute at most once.
"""

import asyncio
import logging
from typing import Any, List, Optional

from finops.audit.trail import AuditTrail
from finops.errors import (
    FinopsError,
    InvalidStateError,
    NotFoundError,
    PermissionDeniedError,
    ValidationError,
)
from finops.models import (
    TERMINAL_STATUSES,
    Actor,
    ApprovalRecord,
    ServiceType,
    Settings,
    TransferInstruction,
    TransferRequest,
    TransferStatus,
    new_id,
    utcnow,
)
from finops.registry.service_registry import ServiceRegistry
from finops.storage.memory import MemoryStore
from finops.workflow.policy import approval_requirements, parse_amount

logger = logging.getLogger(__name__)

ENTITY_TYPE = "ach_transfer"


class ACHApprovalWorkflow:
    """Owns the lifecycle of ACH transfer requests."""

    def __init__(
        self,
        registry: ServiceRegistry,
        store: MemoryStore,
        audit: AuditTrail,
        settings: Settings,
    ) -> None:
        self.registry = registry
        self.store = store
        self.audit = audit
        self.settings = settings

    # -- queries -------------------------------------------------------------

    def get_status(self, tenant_id: str, transfer_id: str) -> TransferRequest:
        """Return the current state of a transfer owned by ``tenant_id``."""
        transfer = self.store.get_transfer(transfer_id)
        if transfer is None or transfer.tenant_id != tenant_id:
            raise NotFoundError(f"Transfer '{transfer_id}' not found")
        return transfer

    def pending_approvals(self, actor: Actor) -> List[TransferRequest]:
        """Transfers of the actor's tenant that are waiting for an approval."""
        self._authorize_approver(actor)
        candidates = self.store.get_transfers(
            actor.tenant_id,
            statuses=[TransferStatus.PENDING, TransferStatus.PROCESSING],
        )
        return [t for t in candidates if not t.approvals_complete]

    # -- transitions -----------------------------------------------------------

    async def create_transfer(
        self,
        actor: Actor,
        amount: Any,
        recipient_account_ref: str,
        transfer_type: str = "standard",
        description: str = "",
        provider: Optional[str] = None,
    ) -> TransferRequest:
        """Submit a transfer for the actor's tenant.

        Transfers at or below the approval threshold start Approved; larger
        ones start Pending with one or two required approval levels. The
        banking provider is resolved when the transfer executes; a missing
        or inactive one fails the transfer then.
        """
        amount = parse_amount(amount)
        if not recipient_account_ref or not recipient_account_ref.strip():
            raise ValidationError("recipient_account_ref is required")
        provider = (provider or self.settings.default_banking_provider or "").strip()
        if not provider:
            raise ValidationError("No banking provider given and no default configured")

        requires_approval, level = approval_requirements(amount, self.settings)
        transfer = self.store.insert_transfer(TransferRequest(
            tenant_id=actor.tenant_id,
            initiated_by=actor.actor_id,
            amount=amount,
            recipient_account_ref=recipient_account_ref.strip(),
            transfer_type=transfer_type,
            description=description,
            provider=provider,
            status=TransferStatus.PENDING if requires_approval else TransferStatus.APPROVED,
            requires_approval=requires_approval,
            required_approval_level=level,
        ))
        self._audit(actor, "create", transfer, comments=description)

        logger.info(
            "Created ACH transfer: tenant=%s transfer=%s amount=%s status=%s level=%d",
            transfer.tenant_id, transfer.id, transfer.amount, transfer.status.value, level,
        )
        return transfer

    async def approve(self, actor: Actor, transfer_id: str, comments: str = "") -> TransferRequest:
        """Record the actor's approval and execute once the last level is in."""
        self._authorize_approver(actor)
        transfer = self.get_status(actor.tenant_id, transfer_id)
        self._ensure_not_terminal(transfer)

        if transfer.status == TransferStatus.PENDING:
            level = 1
        elif (
            transfer.status == TransferStatus.PROCESSING
            and transfer.required_approval_level == 2
            and len(transfer.approvals) == 1
        ):
            level = 2
            if transfer.approvals[0].approver_id == actor.actor_id:
                raise PermissionDeniedError(
                    "Level-2 approval must come from a different approver"
                )
        elif transfer.status == TransferStatus.APPROVED:
            raise InvalidStateError(f"Transfer '{transfer_id}' does not require approval")
        else:
            raise InvalidStateError(f"Transfer '{transfer_id}' is already executing")

        approval = ApprovalRecord(approver_id=actor.actor_id, level=level, comments=comments)
        updated = self._transition(
            transfer,
            status=TransferStatus.PROCESSING,
            approvals=transfer.approvals + (approval,),
        )

        if updated.approvals_complete:
            return await self._execute_audited(
                actor, "approve", updated, idempotency_key=updated.id, comments=comments, level=level,
            )

        logger.info(
            "Level-%d approval recorded: tenant=%s transfer=%s approver=%s",
            level, updated.tenant_id, updated.id, actor.actor_id,
        )
        self._audit(actor, "approve", updated, comments=comments, level=level)
        return updated

    async def reject(self, actor: Actor, transfer_id: str, reason: str = "") -> TransferRequest:
        """Cancel a transfer that is still waiting for approval."""
        self._authorize_approver(actor)
        transfer = self.get_status(actor.tenant_id, transfer_id)
        self._ensure_not_terminal(transfer)

        awaiting = transfer.status == TransferStatus.PENDING or (
            transfer.status == TransferStatus.PROCESSING and not transfer.approvals_complete
        )
        if not awaiting:
            raise InvalidStateError(
                f"Transfer '{transfer_id}' cannot be rejected in status {transfer.status.value}"
            )

        updated = self._transition(
            transfer,
            status=TransferStatus.CANCELLED,
            rejected_by=actor.actor_id,
            rejection_reason=reason,
        )
        self._audit(actor, "reject", updated, comments=reason)
        logger.info(
            "Rejected ACH transfer: tenant=%s transfer=%s rejected_by=%s",
            updated.tenant_id, updated.id, actor.actor_id,
        )
        return updated

    async def execute(self, actor: Actor, transfer_id: str) -> TransferRequest:
        """Send an Approved (below-threshold) transfer to the banking provider."""
        self._authorize_approver(actor)
        transfer = self.get_status(actor.tenant_id, transfer_id)
        self._ensure_not_terminal(transfer)
        if transfer.status != TransferStatus.APPROVED:
            raise InvalidStateError(
                f"Transfer '{transfer_id}' cannot be executed in status {transfer.status.value}"
            )

        claimed = self._transition(transfer, status=TransferStatus.PROCESSING)
        return await self._execute_audited(actor, "execute", claimed, idempotency_key=claimed.id)

    async def retry(self, actor: Actor, transfer_id: str, idempotency_key: str) -> TransferRequest:
        """Re-execute a Failed transfer without repeating its approvals.

        The Failed transfer stays untouched; a new transfer pointing at it
        through ``retry_of`` is created and executed. Calling again with the
        same idempotency key returns that transfer without a second
        provider call.
        """
        self._authorize_approver(actor)
        if not idempotency_key or not idempotency_key.strip():
            raise ValidationError("An idempotency key is required to retry a transfer")
        failed = self.get_status(actor.tenant_id, transfer_id)
        if failed.status != TransferStatus.FAILED:
            raise InvalidStateError(
                f"Only Failed transfers can be retried; '{transfer_id}' is {failed.status.value}"
            )

        candidate = TransferRequest(
            tenant_id=failed.tenant_id,
            initiated_by=failed.initiated_by,
            amount=failed.amount,
            recipient_account_ref=failed.recipient_account_ref,
            transfer_type=failed.transfer_type,
            description=failed.description,
            provider=failed.provider,
            status=TransferStatus.PROCESSING,
            requires_approval=failed.requires_approval,
            required_approval_level=failed.required_approval_level,
            approvals=failed.approvals,
            idempotency_key=idempotency_key.strip(),
            retry_of=failed.id,
        )
        stored = self.store.insert_transfer(candidate)
        if stored.id != candidate.id:
            if stored.retry_of != failed.id:
                raise InvalidStateError(
                    f"Idempotency key already used for transfer '{stored.id}'"
                )
            logger.info(
                "Retry replayed by idempotency key: tenant=%s transfer=%s retry=%s",
                failed.tenant_id, failed.id, stored.id,
            )
            return stored

        return await self._execute_audited(
            actor, "retry", stored, idempotency_key=stored.idempotency_key, retry_of=failed.id,
        )

    # -- internals -------------------------------------------------------------

    def _authorize_approver(self, actor: Actor) -> None:
        if actor.role not in self.settings.approver_roles:
            raise PermissionDeniedError(
                f"Role '{actor.role}' may not approve or execute transfers"
            )

    @staticmethod
    def _ensure_not_terminal(transfer: TransferRequest) -> None:
        if transfer.is_terminal:
            raise InvalidStateError(
                f"Transfer '{transfer.id}' is {transfer.status.value} and can no longer change"
            )

    def _transition(self, transfer: TransferRequest, **changes: Any) -> TransferRequest:
        """Write a copy of ``transfer`` with ``changes`` if nobody else has."""
        now = utcnow()
        changes.update(version=transfer.version + 1, updated_at=now)
        if changes.get("status") in TERMINAL_STATUSES:
            changes["terminal_at"] = now
        updated = transfer.model_copy(update=changes)

        if not self.store.update_transfer(updated, expected_version=transfer.version):
            logger.warning(
                "Lost concurrent update: tenant=%s transfer=%s version=%d",
                transfer.tenant_id, transfer.id, transfer.version,
            )
            raise InvalidStateError(
                f"Transfer '{transfer.id}' was modified concurrently; reload and retry"
            )
        return updated

    async def _execute_audited(
        self,
        actor: Actor,
        action: str,
        transfer: TransferRequest,
        idempotency_key: str,
        comments: str = "",
        **extra: Any,
    ) -> TransferRequest:
        """Execute ``transfer`` and audit the outcome, even when cancelled."""
        try:
            return await self._execute(transfer, idempotency_key=idempotency_key)
        finally:
            settled = self.store.get_transfer(transfer.id) or transfer
            self._audit(actor, action, settled, comments=comments, **extra)

    async def _execute(self, transfer: TransferRequest, idempotency_key: str) -> TransferRequest:
        """Call the banking provider for a Processing transfer and settle it."""
        instruction = TransferInstruction(
            transfer_id=transfer.id,
            tenant_id=transfer.tenant_id,
            amount=transfer.amount,
            recipient_account_ref=transfer.recipient_account_ref,
            transfer_type=transfer.transfer_type,
            description=transfer.description,
            idempotency_key=idempotency_key,
        )
        try:
            handle = self.registry.lookup(transfer.tenant_id, ServiceType.BANKING, transfer.provider)
            response = await handle.invoke(
                "execute_transfer",
                instruction,
                timeout=self.settings.execution_timeout_seconds,
            )
        except FinopsError as exc:
            return self._fail(transfer, exc.message)
        except asyncio.CancelledError:
            self._fail(transfer, "Execution interrupted; provider outcome unknown")
            raise

        if not response.success:
            return self._fail(transfer, response.error or "Provider declined the transfer")

        reference = response.data.get("transaction_id")
        updated = self._transition(
            transfer,
            status=TransferStatus.COMPLETED,
            provider_transaction_ref=str(reference) if reference is not None else None,
        )
        logger.info(
            "Executed ACH transfer: tenant=%s transfer=%s provider=%s reference=%s",
            updated.tenant_id, updated.id, updated.provider, updated.provider_transaction_ref,
        )
        return updated

    def _fail(self, transfer: TransferRequest, reason: str) -> TransferRequest:
        logger.error(
            "ACH transfer execution failed: tenant=%s transfer=%s provider=%s reason=%s",
            transfer.tenant_id, transfer.id, transfer.provider, reason,
        )
        return self._transition(transfer, status=TransferStatus.FAILED, failure_reason=reason)

    def _audit(self, actor: Actor, action: str, transfer: TransferRequest, comments: str = "", **extra: Any) -> None:
        metadata = {
            "amount": f"{transfer.amount:.2f}",
            "comments": comments,
            "status": transfer.status.value,
            "provider": transfer.provider,
        }
        metadata.update(extra)
        self.audit.record(
            actor,
            action=f"{ENTITY_TYPE}_{action}",
            entity_type=ENTITY_TYPE,
            entity_id=transfer.id,
            metadata=metadata,
            tenant_id=transfer.tenant_id,
        )
