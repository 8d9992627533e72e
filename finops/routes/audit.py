"""Audit log endpoint for compliance review."""

from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, Query, Request

from finops.audit.trail import AuditTrail
from finops.models import Actor, AuditLogEntry
from finops.routes.actor import get_actor

router = APIRouter(prefix="/api")


def _get_audit(request: Request) -> AuditTrail:
    """Retrieve the audit trail from application state."""
    return request.app.state.audit


@router.get("/audit", response_model=List[AuditLogEntry])
async def get_audit_log(
    request: Request,
    entity_type: Optional[str] = Query(default=None),
    entity_id: Optional[str] = Query(default=None),
    actor_id: Optional[str] = Query(default=None),
    from_date: Optional[datetime] = Query(default=None),
    to_date: Optional[datetime] = Query(default=None),
    actor: Actor = Depends(get_actor),
) -> List[AuditLogEntry]:
    """Retrieve the tenant's audit entries with optional filters.

    Filters:
      - entity_type / entity_id: entries about one entity
      - actor_id: entries written on behalf of one actor
      - from_date: entries with timestamp >= this value
      - to_date: entries with timestamp <= this value
    """
    return _get_audit(request).query(
        tenant_id=actor.tenant_id,
        entity_type=entity_type,
        entity_id=entity_id,
        actor_id=actor_id,
        since=from_date,
        until=to_date,
    )
