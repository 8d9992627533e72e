"""Compliance screening endpoints."""

from typing import List, Optional

from fastapi import APIRouter, Depends, Query, Request

from finops.compliance.aggregator import ComplianceAggregator
from finops.models import (
    Actor,
    ComplianceScreeningRecord,
    ScreenEntityRequest,
    ScreeningOutcome,
)
from finops.routes.actor import get_actor

router = APIRouter(prefix="/api/compliance")


def _get_aggregator(request: Request) -> ComplianceAggregator:
    """Retrieve the compliance aggregator from application state."""
    return request.app.state.aggregator


@router.post("/screen", response_model=ScreeningOutcome)
async def screen_entity(
    body: ScreenEntityRequest,
    request: Request,
    actor: Actor = Depends(get_actor),
) -> ScreeningOutcome:
    """Screen an entity with every compliance provider the tenant configured."""
    aggregator = _get_aggregator(request)
    return await aggregator.screen(
        tenant_id=actor.tenant_id,
        entity_type=body.entity_type,
        entity_payload=body.entity_data,
        actor=actor,
        entity_id=body.entity_id,
    )


@router.get("/records", response_model=List[ComplianceScreeningRecord])
async def screening_history(
    request: Request,
    entity_type: str = Query(...),
    entity_id: Optional[str] = Query(default=None),
    actor: Actor = Depends(get_actor),
) -> List[ComplianceScreeningRecord]:
    """Screening history for one entity, newest first."""
    return _get_aggregator(request).history(actor.tenant_id, entity_type, entity_id)
