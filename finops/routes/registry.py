"""Provider registration and health endpoints."""

from typing import Dict, List

from fastapi import APIRouter, Depends, Request

from finops.models import (
    Actor,
    ProviderHealth,
    RegisterServiceRequest,
    RegisterServiceResponse,
    ServiceRegistration,
    ServiceType,
)
from finops.registry.service_registry import ServiceRegistry
from finops.routes.actor import get_actor

router = APIRouter(prefix="/api/registry")


def _get_registry(request: Request) -> ServiceRegistry:
    """Retrieve the service registry from application state."""
    return request.app.state.registry


@router.post("/services", response_model=RegisterServiceResponse)
async def register_service(
    body: RegisterServiceRequest,
    request: Request,
    actor: Actor = Depends(get_actor),
) -> RegisterServiceResponse:
    """Create or update the actor's tenant configuration for a provider."""
    registry = _get_registry(request)
    registration_id = await registry.register(
        tenant_id=actor.tenant_id,
        service_type=body.service_type,
        provider=body.provider,
        configuration=body.configuration,
        is_active=body.is_active,
        actor=actor,
    )
    return RegisterServiceResponse(registration_id=registration_id)


@router.post(
    "/services/{service_type}/{provider}/deactivate",
    response_model=ServiceRegistration,
)
async def deactivate_service(
    service_type: ServiceType,
    provider: str,
    request: Request,
    actor: Actor = Depends(get_actor),
) -> ServiceRegistration:
    """Deactivate a registration. Registrations are never deleted."""
    registry = _get_registry(request)
    return await registry.deactivate(actor.tenant_id, service_type, provider, actor)


@router.get("/services", response_model=List[ServiceRegistration])
async def list_services(
    request: Request,
    actor: Actor = Depends(get_actor),
) -> List[ServiceRegistration]:
    """List all registrations, active or not, for the actor's tenant."""
    return _get_registry(request).registrations(actor.tenant_id)


@router.get("/health", response_model=Dict[str, ProviderHealth])
async def provider_health(
    request: Request,
    actor: Actor = Depends(get_actor),
) -> Dict[str, ProviderHealth]:
    """Ping every active provider of the actor's tenant."""
    return await _get_registry(request).health_check(actor.tenant_id)
