"""In-memory persistence for registrations, transfers, screenings and audit.

Each collection is a dict keyed the way it is read back: registrations by
their composite (tenant, service type, provider) key, transfers by id,
screening records by (tenant, entity type, entity id). All data lives in
memory and is lost on restart.

The store exposes only the operations the services need from a database:
upsert by composite key, optimistic-version update, append-only insert and
point lookup. One lock guards all collections; every operation is a short
dict manipulation, so readers and writers on any thread see whole records.
"""

import threading
from datetime import datetime
from typing import Dict, List, Optional, Tuple

from finops.models import (
    AuditLogEntry,
    ComplianceScreeningRecord,
    ServiceRegistration,
    ServiceType,
    TransferRequest,
    TransferStatus,
    utcnow,
)

RegistrationKey = Tuple[str, ServiceType, str]


class MemoryStore:
    """Thread-safe in-memory store backing the core services."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._registrations: Dict[RegistrationKey, ServiceRegistration] = {}
        self._transfers: Dict[str, TransferRequest] = {}
        # (tenant id, idempotency key) -> transfer id
        self._idempotency: Dict[Tuple[str, str], str] = {}
        self._screenings: Dict[Tuple[str, str, Optional[str]], List[ComplianceScreeningRecord]] = {}
        # Chronological audit log
        self._audit_log: List[AuditLogEntry] = []

    # -- registrations -----------------------------------------------------

    def upsert_registration(self, registration: ServiceRegistration) -> ServiceRegistration:
        """Insert or replace by composite key, keeping the original id."""
        with self._lock:
            existing = self._registrations.get(registration.key)
            if existing is not None:
                registration = registration.model_copy(update={
                    "id": existing.id,
                    "created_at": existing.created_at,
                    "updated_at": utcnow(),
                })
            self._registrations[registration.key] = registration
            return registration

    def get_registration(self, key: RegistrationKey) -> Optional[ServiceRegistration]:
        with self._lock:
            return self._registrations.get(key)

    def get_registrations(self, tenant_id: str) -> List[ServiceRegistration]:
        with self._lock:
            return [r for r in self._registrations.values() if r.tenant_id == tenant_id]

    # -- transfers ---------------------------------------------------------

    def insert_transfer(self, transfer: TransferRequest) -> TransferRequest:
        """Insert a new transfer and return the stored record.

        If the transfer carries an idempotency key already used within the
        tenant, nothing is inserted and the earlier transfer is returned.
        """
        with self._lock:
            if transfer.idempotency_key is not None:
                index_key = (transfer.tenant_id, transfer.idempotency_key)
                existing_id = self._idempotency.get(index_key)
                if existing_id is not None:
                    return self._transfers[existing_id]
            if transfer.id in self._transfers:
                raise KeyError(f"Transfer {transfer.id} already exists")
            if transfer.idempotency_key is not None:
                self._idempotency[index_key] = transfer.id
            self._transfers[transfer.id] = transfer
            return transfer

    def update_transfer(self, transfer: TransferRequest, expected_version: int) -> bool:
        """Replace a transfer only if the stored version still matches.

        Returns False, leaving the store untouched, when another writer got
        there first.
        """
        with self._lock:
            current = self._transfers.get(transfer.id)
            if current is None or current.version != expected_version:
                return False
            self._transfers[transfer.id] = transfer
            return True

    def get_transfer(self, transfer_id: str) -> Optional[TransferRequest]:
        with self._lock:
            return self._transfers.get(transfer_id)

    def get_transfers(
        self,
        tenant_id: str,
        statuses: Optional[List[TransferStatus]] = None,
    ) -> List[TransferRequest]:
        """Return a tenant's transfers, oldest first, optionally by status."""
        with self._lock:
            results = [t for t in self._transfers.values() if t.tenant_id == tenant_id]
        if statuses is not None:
            results = [t for t in results if t.status in statuses]
        return sorted(results, key=lambda t: t.created_at)

    # -- compliance screenings ---------------------------------------------

    def add_screening(self, record: ComplianceScreeningRecord) -> None:
        key = (record.tenant_id, record.entity_type, record.entity_id)
        with self._lock:
            self._screenings.setdefault(key, []).append(record)

    def get_screenings(
        self,
        tenant_id: str,
        entity_type: str,
        entity_id: Optional[str] = None,
    ) -> List[ComplianceScreeningRecord]:
        """Return screening history for an entity, newest first."""
        with self._lock:
            records = list(self._screenings.get((tenant_id, entity_type, entity_id), []))
        return list(reversed(records))

    # -- audit ---------------------------------------------------------------

    def add_audit(self, entry: AuditLogEntry) -> None:
        """Append an entry to the audit log.

        Entries are copied in and out so metadata held by callers can never
        reach a stored row.
        """
        with self._lock:
            self._audit_log.append(entry.model_copy(deep=True))

    def get_audit_log(
        self,
        tenant_id: Optional[str] = None,
        entity_type: Optional[str] = None,
        entity_id: Optional[str] = None,
        actor_id: Optional[str] = None,
        since: Optional[datetime] = None,
        until: Optional[datetime] = None,
    ) -> List[AuditLogEntry]:
        """Return audit entries in append order, optionally filtered."""
        with self._lock:
            entries = list(self._audit_log)
        results: List[AuditLogEntry] = []
        for entry in entries:
            if tenant_id is not None and entry.tenant_id != tenant_id:
                continue
            if entity_type is not None and entry.entity_type != entity_type:
                continue
            if entity_id is not None and entry.entity_id != entity_id:
                continue
            if actor_id is not None and entry.actor_id != actor_id:
                continue
            if since is not None and entry.timestamp < since:
                continue
            if until is not None and entry.timestamp > until:
                continue
            results.append(entry.model_copy(deep=True))
        return results
