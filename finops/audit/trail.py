"""Append-only audit trail.

Every mutation in the registry, the compliance aggregator and the ACH
workflow records exactly one entry here. Entries are frozen models and the
trail offers no update or delete.
"""

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from finops.models import Actor, AuditLogEntry
from finops.storage.memory import MemoryStore

logger = logging.getLogger(__name__)


class AuditTrail:
    """Writes and queries audit entries through the store."""

    def __init__(self, store: MemoryStore) -> None:
        self.store = store

    def record(
        self,
        actor: Actor,
        action: str,
        entity_type: str,
        entity_id: str,
        metadata: Optional[Dict[str, Any]] = None,
        tenant_id: Optional[str] = None,
    ) -> AuditLogEntry:
        """Append one entry attributed to ``actor``.

        ``tenant_id`` defaults to the actor's tenant.
        """
        entry = AuditLogEntry(
            tenant_id=tenant_id or actor.tenant_id,
            actor_id=actor.actor_id,
            action=action,
            entity_type=entity_type,
            entity_id=entity_id,
            metadata=dict(metadata or {}),
            source_ip=actor.source_ip,
        )
        self.store.add_audit(entry)
        logger.info(
            "Audit: tenant=%s actor=%s action=%s %s=%s",
            entry.tenant_id, entry.actor_id, action, entity_type, entity_id,
        )
        return entry

    def for_entity(self, entity_type: str, entity_id: str) -> List[AuditLogEntry]:
        return self.store.get_audit_log(entity_type=entity_type, entity_id=entity_id)

    def query(
        self,
        tenant_id: str,
        entity_type: Optional[str] = None,
        entity_id: Optional[str] = None,
        actor_id: Optional[str] = None,
        since: Optional[datetime] = None,
        until: Optional[datetime] = None,
    ) -> List[AuditLogEntry]:
        return self.store.get_audit_log(
            tenant_id=tenant_id,
            entity_type=entity_type,
            entity_id=entity_id,
            actor_id=actor_id,
            since=since,
            until=until,
        )
