"""Tests for the in-memory storage."""

from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest
from pydantic import ValidationError as PydanticValidationError

from finops.models import (
    AuditLogEntry,
    ComplianceScreeningRecord,
    ServiceRegistration,
    ServiceType,
    TransferRequest,
    TransferStatus,
)


def make_transfer(tenant="acme", status=TransferStatus.PENDING, key=None, **kwargs):
    return TransferRequest(
        tenant_id=tenant,
        initiated_by="clerk",
        amount=Decimal("25000.00"),
        recipient_account_ref="acct-1",
        provider="fake_bank",
        status=status,
        requires_approval=True,
        required_approval_level=1,
        idempotency_key=key,
        **kwargs,
    )


def make_audit(entity_id="t-1", actor="alice", tenant="acme", ts=None):
    return AuditLogEntry(
        tenant_id=tenant,
        actor_id=actor,
        action="ach_transfer_create",
        entity_type="ach_transfer",
        entity_id=entity_id,
        timestamp=ts or datetime(2026, 2, 22, 10, 0, tzinfo=timezone.utc),
    )


class TestRegistrations:
    def test_upsert_by_composite_key(self, store):
        first = store.upsert_registration(ServiceRegistration(
            tenant_id="acme", service_type=ServiceType.PAYMENT, provider="stripe", configuration={"v": 1},
        ))
        second = store.upsert_registration(ServiceRegistration(
            tenant_id="acme", service_type=ServiceType.PAYMENT, provider="stripe", configuration={"v": 2},
        ))
        assert second.id == first.id
        assert second.created_at == first.created_at
        assert store.get_registration(first.key).configuration == {"v": 2}

    def test_same_provider_different_service_types(self, store):
        store.upsert_registration(ServiceRegistration(
            tenant_id="acme", service_type=ServiceType.PAYMENT, provider="stripe",
        ))
        store.upsert_registration(ServiceRegistration(
            tenant_id="acme", service_type=ServiceType.BANKING, provider="stripe",
        ))
        assert len(store.get_registrations("acme")) == 2
        assert store.get_registrations("globex") == []


class TestTransfers:
    def test_insert_and_get(self, store):
        transfer = store.insert_transfer(make_transfer())
        assert store.get_transfer(transfer.id) == transfer

    def test_get_missing(self, store):
        assert store.get_transfer("missing") is None

    def test_update_requires_matching_version(self, store):
        transfer = store.insert_transfer(make_transfer())
        updated = transfer.model_copy(update={"status": TransferStatus.CANCELLED, "version": 1})
        assert store.update_transfer(updated, expected_version=0) is True
        stale = transfer.model_copy(update={"status": TransferStatus.PROCESSING, "version": 1})
        assert store.update_transfer(stale, expected_version=0) is False
        assert store.get_transfer(transfer.id).status == TransferStatus.CANCELLED

    def test_update_unknown_transfer(self, store):
        assert store.update_transfer(make_transfer(), expected_version=0) is False

    def test_idempotency_key_returns_existing(self, store):
        first = store.insert_transfer(make_transfer(key="k-1"))
        second = store.insert_transfer(make_transfer(key="k-1"))
        assert second.id == first.id
        assert len(store.get_transfers("acme")) == 1

    def test_idempotency_key_scoped_to_tenant(self, store):
        store.insert_transfer(make_transfer(key="k-1"))
        other = store.insert_transfer(make_transfer(tenant="globex", key="k-1"))
        assert store.get_transfers("globex") == [other]

    def test_filter_by_status(self, store):
        store.insert_transfer(make_transfer(status=TransferStatus.PENDING))
        store.insert_transfer(make_transfer(status=TransferStatus.APPROVED))
        pending = store.get_transfers("acme", statuses=[TransferStatus.PENDING])
        assert [t.status for t in pending] == [TransferStatus.PENDING]


class TestScreenings:
    def test_history_newest_first(self, store):
        for decision in ("compliant", "pending_review"):
            store.add_screening(ComplianceScreeningRecord(
                tenant_id="acme", entity_type="vendor", entity_id="v-1", decision=decision,
            ))
        history = store.get_screenings("acme", "vendor", "v-1")
        assert [r.decision for r in history] == ["pending_review", "compliant"]

    def test_history_isolated_by_entity(self, store):
        store.add_screening(ComplianceScreeningRecord(
            tenant_id="acme", entity_type="vendor", entity_id="v-1", decision="compliant",
        ))
        assert store.get_screenings("acme", "vendor", "v-2") == []
        assert store.get_screenings("globex", "vendor", "v-1") == []


class TestAudit:
    def test_append_order_kept(self, store):
        store.add_audit(make_audit("t-1"))
        store.add_audit(make_audit("t-2"))
        assert [e.entity_id for e in store.get_audit_log()] == ["t-1", "t-2"]

    def test_filter_by_entity_and_actor(self, store):
        store.add_audit(make_audit("t-1", actor="alice"))
        store.add_audit(make_audit("t-1", actor="bob"))
        store.add_audit(make_audit("t-2", actor="alice"))
        assert len(store.get_audit_log(entity_id="t-1")) == 2
        assert len(store.get_audit_log(actor_id="alice")) == 2
        assert len(store.get_audit_log(entity_id="t-1", actor_id="bob")) == 1

    def test_filter_by_tenant(self, store):
        store.add_audit(make_audit(tenant="acme"))
        store.add_audit(make_audit(tenant="globex"))
        assert len(store.get_audit_log(tenant_id="acme")) == 1

    def test_filter_by_time_range(self, store):
        base = datetime(2026, 2, 22, 10, 0, tzinfo=timezone.utc)
        store.add_audit(make_audit("old", ts=base))
        store.add_audit(make_audit("new", ts=base + timedelta(hours=4)))
        since = base + timedelta(hours=2)
        assert [e.entity_id for e in store.get_audit_log(since=since)] == ["new"]
        assert [e.entity_id for e in store.get_audit_log(until=since)] == ["old"]

    def test_entries_are_immutable(self, store):
        entry = make_audit()
        store.add_audit(entry)
        with pytest.raises(PydanticValidationError):
            entry.action = "tampered"
        assert store.get_audit_log()[0].action == "ach_transfer_create"

    def test_metadata_cannot_be_changed_after_append(self, store):
        metadata = {"amount": "25000.00"}
        store.add_audit(make_audit().model_copy(update={"metadata": metadata}))
        metadata["amount"] = "1.00"
        store.get_audit_log()[0].metadata["amount"] = "2.00"
        assert store.get_audit_log()[0].metadata == {"amount": "25000.00"}

    def test_empty_audit_log(self, store):
        assert store.get_audit_log() == []
