"""Directory of provider adapters configured per tenant.

The registry maps (tenant, service type, provider) to a ProviderHandle.
It is built once at startup and passed to the services and routes that
need it; nothing reads it through module globals.

Lookups are plain dict reads and never block. Writes to one composite key
are serialized with a per-key asyncio.Lock so two administrators updating
different providers, or different tenants, never wait on each other.
"""

import asyncio
import logging
import time
from typing import Any, Dict, List, Optional, Tuple, Union

from finops.audit.trail import AuditTrail
from finops.errors import (
    FinopsError,
    NotFoundError,
    PermissionDeniedError,
    ValidationError,
)
from finops.models import (
    Actor,
    ProviderHealth,
    ServiceRegistration,
    ServiceType,
    Settings,
)
from finops.providers.base import ProviderHandle
from finops.providers.catalog import ProviderCatalog
from finops.storage.memory import MemoryStore

logger = logging.getLogger(__name__)

RegistryKey = Tuple[str, ServiceType, str]


def _coerce_service_type(service_type: Union[str, ServiceType]) -> ServiceType:
    try:
        return ServiceType(service_type)
    except ValueError:
        raise ValidationError(f"Unknown service type '{service_type}'")


def _require(value: str, field: str) -> str:
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(f"{field} must be a non-empty string")
    return value.strip()


class ServiceRegistry:
    """Registers, resolves and health-checks tenant provider configurations."""

    def __init__(
        self,
        store: MemoryStore,
        audit: AuditTrail,
        catalog: ProviderCatalog,
        settings: Settings,
    ) -> None:
        self.store = store
        self.audit = audit
        self.catalog = catalog
        self.settings = settings
        self._handles: Dict[RegistryKey, ProviderHandle] = {}
        self._key_locks: Dict[RegistryKey, asyncio.Lock] = {}

    def _lock_for(self, key: RegistryKey) -> asyncio.Lock:
        return self._key_locks.setdefault(key, asyncio.Lock())

    def _authorize(self, actor: Actor, tenant_id: str) -> None:
        if actor.tenant_id != tenant_id or actor.role not in self.settings.admin_roles:
            raise PermissionDeniedError(
                f"Actor '{actor.actor_id}' may not configure services for tenant '{tenant_id}'"
            )

    async def register(
        self,
        tenant_id: str,
        service_type: Union[str, ServiceType],
        provider: str,
        configuration: Optional[Dict[str, Any]],
        is_active: bool,
        actor: Actor,
    ) -> str:
        """Create or replace a provider registration and return its id."""
        tenant_id = _require(tenant_id, "tenant_id")
        provider = _require(provider, "provider")
        service_type = _coerce_service_type(service_type)
        self._authorize(actor, tenant_id)
        configuration = dict(configuration or {})

        key = (tenant_id, service_type, provider)
        async with self._lock_for(key):
            adapter = self.catalog.build(service_type, provider, configuration)
            previous = self._handles.get(key)
            if previous is not None:
                adapter.adopt_state(previous.adapter)
            registration = self.store.upsert_registration(ServiceRegistration(
                tenant_id=tenant_id,
                service_type=service_type,
                provider=provider,
                configuration=configuration,
                is_active=is_active,
            ))
            self._handles[key] = ProviderHandle(registration, adapter)
            self.audit.record(
                actor,
                action="service_register",
                entity_type="service_registration",
                entity_id=registration.id,
                metadata={
                    "service_type": service_type.value,
                    "provider": provider,
                    "is_active": is_active,
                    "configuration_keys": sorted(configuration),
                    "capabilities": adapter.supported_capabilities(),
                },
            )

        logger.info(
            "Registered provider: tenant=%s service_type=%s provider=%s active=%s",
            tenant_id, service_type.value, provider, is_active,
        )
        return registration.id

    async def deactivate(
        self,
        tenant_id: str,
        service_type: Union[str, ServiceType],
        provider: str,
        actor: Actor,
    ) -> ServiceRegistration:
        """Mark a registration inactive. Registrations are never deleted."""
        service_type = _coerce_service_type(service_type)
        self._authorize(actor, tenant_id)

        key = (tenant_id, service_type, provider)
        async with self._lock_for(key):
            handle = self._handles.get(key)
            if handle is None:
                raise NotFoundError(
                    f"No {service_type.value} registration for provider '{provider}'"
                )
            registration = self.store.upsert_registration(
                handle.registration.model_copy(update={"is_active": False})
            )
            self._handles[key] = ProviderHandle(registration, handle.adapter)
            self.audit.record(
                actor,
                action="service_deactivate",
                entity_type="service_registration",
                entity_id=registration.id,
                metadata={"service_type": service_type.value, "provider": provider},
            )

        logger.info(
            "Deactivated provider: tenant=%s service_type=%s provider=%s",
            tenant_id, service_type.value, provider,
        )
        return registration

    def lookup(
        self,
        tenant_id: str,
        service_type: Union[str, ServiceType],
        provider: str,
    ) -> ProviderHandle:
        """Return the handle for an active registration or raise NotFoundError."""
        service_type = _coerce_service_type(service_type)
        handle = self._handles.get((tenant_id, service_type, provider))
        if handle is None or not handle.registration.is_active:
            raise NotFoundError(
                f"No active {service_type.value} provider '{provider}' "
                f"for tenant '{tenant_id}'"
            )
        return handle

    def active(
        self,
        tenant_id: str,
        service_type: Optional[ServiceType] = None,
    ) -> List[ProviderHandle]:
        """Active handles for a tenant, ordered by service type and provider."""
        handles = [
            handle
            for (tenant, stype, _), handle in self._handles.items()
            if tenant == tenant_id
            and handle.registration.is_active
            and (service_type is None or stype == service_type)
        ]
        return sorted(handles, key=lambda h: (h.service_type.value, h.provider))

    def registrations(self, tenant_id: str) -> List[ServiceRegistration]:
        return sorted(
            self.store.get_registrations(tenant_id),
            key=lambda r: (r.service_type.value, r.provider),
        )

    async def health_check(
        self,
        tenant_id: str,
        timeout: Optional[float] = None,
    ) -> Dict[str, ProviderHealth]:
        """Ping every active provider of the tenant concurrently.

        Each ping has its own timeout; one provider failing or hanging only
        marks that provider unhealthy.
        """
        timeout = timeout if timeout is not None else self.settings.health_check_timeout_seconds
        handles = self.active(tenant_id)
        results = await asyncio.gather(*(self._probe(h, timeout) for h in handles))
        return {f"{h.service_type.value}:{h.provider}": r for h, r in zip(handles, results)}

    async def _probe(self, handle: ProviderHandle, timeout: float) -> ProviderHealth:
        started = time.monotonic()
        try:
            response = await handle.ping(timeout=timeout)
        except FinopsError as exc:
            return ProviderHealth(
                service_type=handle.service_type,
                provider=handle.provider,
                status="unhealthy",
                error=exc.message,
            )
        latency_ms = round((time.monotonic() - started) * 1000, 2)
        if not response.success:
            logger.warning(
                "Health check failed: tenant=%s provider=%s error=%s",
                handle.registration.tenant_id, handle.provider, response.error,
            )
        return ProviderHealth(
            service_type=handle.service_type,
            provider=handle.provider,
            status="healthy" if response.success else "unhealthy",
            latency_ms=latency_ms,
            error=response.error,
        )
