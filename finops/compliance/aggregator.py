"""Multi-provider compliance screening.

Fans a screening request out to every active compliance provider of a
tenant, each call running as its own task with its own timeout, then
combines whatever came back into one decision. A provider that raises,
times out, lacks the capability or answers with garbage is recorded as a
synthetic error result; it never aborts the screening. Indeterminate
outcomes degrade to pending_review instead of raising.
"""

import asyncio
import logging
from typing import Any, Dict, List, Optional

from pydantic import ValidationError as PydanticValidationError

from finops.audit.trail import AuditTrail
from finops.compliance.scorer import decide
from finops.errors import FinopsError, ValidationError
from finops.models import (
    Actor,
    ComplianceScreeningRecord,
    ProviderScreening,
    ScreeningOutcome,
    ServiceType,
    Settings,
)
from finops.providers.base import ProviderHandle
from finops.registry.service_registry import ServiceRegistry
from finops.storage.memory import MemoryStore

logger = logging.getLogger(__name__)


def provider_error(provider: str) -> ProviderScreening:
    """Placeholder result for a provider that could not give an answer."""
    return ProviderScreening(
        provider=provider,
        risk_score=None,
        approved=False,
        flags=[f"provider_error:{provider}"],
    )


class ComplianceAggregator:
    """Screens entities across all of a tenant's compliance providers."""

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

    async def screen(
        self,
        tenant_id: str,
        entity_type: str,
        entity_payload: Dict[str, Any],
        actor: Actor,
        entity_id: Optional[str] = None,
        timeout: Optional[float] = None,
    ) -> ScreeningOutcome:
        """Screen one entity and persist the resulting record.

        ``timeout`` bounds the whole fan-out (defaults to
        ``screening_timeout_seconds``); each provider call is additionally
        bounded by ``provider_timeout_seconds``.
        """
        if not tenant_id or not entity_type:
            raise ValidationError("tenant_id and entity_type are required")
        if entity_id is None and entity_payload.get("id") is not None:
            entity_id = str(entity_payload["id"])

        handles = self.registry.active(tenant_id, ServiceType.COMPLIANCE)
        if not handles:
            logger.warning(
                "No compliance providers configured: tenant=%s entity_type=%s",
                tenant_id, entity_type,
            )

        results = await self._fan_out(
            handles,
            entity_type,
            entity_payload,
            timeout if timeout is not None else self.settings.screening_timeout_seconds,
        )
        aggregate, approved, requires_review, decision = decide(results)

        record = ComplianceScreeningRecord(
            tenant_id=tenant_id,
            entity_type=entity_type,
            entity_id=entity_id,
            per_provider_results=results,
            aggregate_risk_score=aggregate,
            decision=decision,
            flags=[flag for r in results for flag in r.flags],
        )
        self.store.add_screening(record)
        self.audit.record(
            actor,
            action="compliance_screen",
            entity_type="compliance_screening",
            entity_id=record.id,
            metadata={
                "screened_entity_type": entity_type,
                "screened_entity_id": entity_id,
                "decision": decision,
                "aggregate_risk_score": aggregate,
                "providers": [r.provider for r in results],
            },
            tenant_id=tenant_id,
        )

        logger.info(
            "Screened entity: tenant=%s entity_type=%s entity_id=%s providers=%d decision=%s",
            tenant_id, entity_type, entity_id, len(results), decision,
        )
        return ScreeningOutcome(
            record_id=record.id,
            approved=approved,
            aggregate_risk_score=aggregate,
            requires_review=requires_review,
            decision=decision,
            per_provider_results=results,
        )

    def history(
        self,
        tenant_id: str,
        entity_type: str,
        entity_id: Optional[str] = None,
    ) -> List[ComplianceScreeningRecord]:
        """Past screenings of an entity, newest first."""
        return self.store.get_screenings(tenant_id, entity_type, entity_id)

    async def _fan_out(
        self,
        handles: List[ProviderHandle],
        entity_type: str,
        entity_payload: Dict[str, Any],
        timeout: float,
    ) -> List[ProviderScreening]:
        if not handles:
            return []

        tasks = [
            asyncio.ensure_future(self._screen_one(h, entity_type, dict(entity_payload)))
            for h in handles
        ]
        try:
            done, pending = await asyncio.wait(tasks, timeout=timeout)
            if pending:
                for task in pending:
                    task.cancel()
                await asyncio.gather(*pending, return_exceptions=True)
        finally:
            # Caller cancellation lands here with tasks still running
            for task in tasks:
                if not task.done():
                    task.cancel()

        results: List[ProviderScreening] = []
        for handle, task in zip(handles, tasks):
            if task in done:
                results.append(task.result())
            else:
                logger.warning(
                    "Screening abandoned at aggregate timeout: tenant=%s provider=%s timeout=%.1fs",
                    handle.registration.tenant_id, handle.provider, timeout,
                )
                results.append(provider_error(handle.provider))
        return results

    async def _screen_one(
        self,
        handle: ProviderHandle,
        entity_type: str,
        entity_payload: Dict[str, Any],
    ) -> ProviderScreening:
        try:
            response = await handle.invoke(
                "screen_entity",
                entity_type,
                entity_payload,
                timeout=self.settings.provider_timeout_seconds,
            )
        except FinopsError as exc:
            logger.warning(
                "Screening provider error: tenant=%s provider=%s error=%s",
                handle.registration.tenant_id, handle.provider, exc.message,
            )
            return provider_error(handle.provider)

        if not response.success:
            logger.warning(
                "Screening provider declined: tenant=%s provider=%s error=%s",
                handle.registration.tenant_id, handle.provider, response.error,
            )
            return provider_error(handle.provider)

        try:
            return ProviderScreening.model_validate({
                "provider": handle.provider,
                "risk_score": response.data.get("risk_score"),
                "approved": response.data.get("approved"),
                "flags": response.data.get("flags") or [],
            })
        except PydanticValidationError:
            logger.warning(
                "Screening provider returned malformed result: tenant=%s provider=%s data=%s",
                handle.registration.tenant_id, handle.provider, response.data,
            )
            return provider_error(handle.provider)
