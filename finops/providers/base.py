"""Provider adapter contract.

Every external provider is wrapped in an adapter that subclasses exactly one
of the per-service-type base classes below. A base class lists the
operations its service type can offer; an adapter overrides the ones its
upstream actually supports. Calling an operation the adapter did not
override raises CapabilityNotSupportedError instead of failing with an
attribute error.

Adapters never get called directly by the services: the registry hands out
ProviderHandle objects, and the handle bounds every call with a timeout and
translates adapter failures into ProviderUnavailableError.
"""

import asyncio
import functools
import logging
import time
from typing import Any, ClassVar, Dict, Tuple, Type

from pydantic import BaseModel, ConfigDict
from pydantic import ValidationError as PydanticValidationError

from finops.errors import (
    CapabilityNotSupportedError,
    ProviderUnavailableError,
)
from finops.models import (
    ProviderResponse,
    ServiceRegistration,
    ServiceType,
    TransferInstruction,
)

logger = logging.getLogger(__name__)


def capability(func):
    """Mark a contract method as an optional capability.

    The decorated body is replaced by one that raises
    CapabilityNotSupportedError; subclasses opt in by overriding it.
    """

    @functools.wraps(func)
    async def unsupported(self, *args: Any, **kwargs: Any) -> ProviderResponse:
        raise CapabilityNotSupportedError(self.name, func.__name__)

    unsupported.__unsupported__ = True
    return unsupported


class NoConfig(BaseModel):
    """Configuration schema for adapters that take no settings."""
    model_config = ConfigDict(extra="allow")


class ProviderAdapter:
    """Common behaviour for all provider adapters."""

    service_type: ClassVar[ServiceType]
    capabilities: ClassVar[Tuple[str, ...]] = ()
    config_model: ClassVar[Type[BaseModel]] = NoConfig

    def __init__(self, name: str, config: BaseModel) -> None:
        self.name = name
        self.config = config

    @classmethod
    def parse_config(cls, configuration: Dict[str, Any]) -> BaseModel:
        """Validate raw configuration against the adapter's own schema."""
        return cls.config_model.model_validate(configuration)

    def supports(self, operation: str) -> bool:
        if operation not in self.capabilities:
            return False
        method = getattr(type(self), operation, None)
        return method is not None and not getattr(method, "__unsupported__", False)

    def supported_capabilities(self) -> list[str]:
        return [op for op in self.capabilities if self.supports(op)]

    def adopt_state(self, previous: "ProviderAdapter") -> None:
        """Take over in-process state from the adapter this one replaces.

        Called when a registration is updated. Stateless adapters ignore it.
        """

    async def ping(self) -> ProviderResponse:
        """Lightweight liveness probe. Adapters override to hit upstream."""
        return ProviderResponse(success=True)


class PaymentProvider(ProviderAdapter):
    service_type = ServiceType.PAYMENT
    capabilities = ("process_payment", "process_ach", "process_wire", "issue_card")

    @capability
    async def process_payment(self, amount, currency: str, source: str, destination: str) -> ProviderResponse:
        ...

    @capability
    async def process_ach(self, amount, source_account: str, destination_account: str, speed: str = "standard") -> ProviderResponse:
        ...

    @capability
    async def process_wire(self, amount, source_account: str, destination_account: str, memo: str = "") -> ProviderResponse:
        ...

    @capability
    async def issue_card(self, holder: Dict[str, Any], spending_limit=None) -> ProviderResponse:
        ...


class BankingProvider(ProviderAdapter):
    service_type = ServiceType.BANKING
    capabilities = ("execute_transfer", "verify_account")

    @capability
    async def execute_transfer(self, instruction: TransferInstruction) -> ProviderResponse:
        ...

    @capability
    async def verify_account(self, account_ref: str) -> ProviderResponse:
        ...


class ComplianceProvider(ProviderAdapter):
    service_type = ServiceType.COMPLIANCE
    capabilities = ("screen_entity",)

    @capability
    async def screen_entity(self, entity_type: str, entity_data: Dict[str, Any]) -> ProviderResponse:
        ...


class AuditProvider(ProviderAdapter):
    service_type = ServiceType.AUDIT
    capabilities = ("export_events",)

    @capability
    async def export_events(self, events: list) -> ProviderResponse:
        ...


class SpecializedProvider(ProviderAdapter):
    service_type = ServiceType.SPECIALIZED


CONTRACTS: Dict[ServiceType, Type[ProviderAdapter]] = {
    ServiceType.PAYMENT: PaymentProvider,
    ServiceType.BANKING: BankingProvider,
    ServiceType.COMPLIANCE: ComplianceProvider,
    ServiceType.AUDIT: AuditProvider,
    ServiceType.SPECIALIZED: SpecializedProvider,
}


class ProviderHandle:
    """A registered adapter as handed out by the registry."""

    def __init__(self, registration: ServiceRegistration, adapter: ProviderAdapter) -> None:
        self.registration = registration
        self.adapter = adapter

    @property
    def provider(self) -> str:
        return self.registration.provider

    @property
    def service_type(self) -> ServiceType:
        return self.registration.service_type

    def supports(self, operation: str) -> bool:
        return self.adapter.supports(operation)

    async def invoke(self, operation: str, *args: Any, timeout: float) -> ProviderResponse:
        """Call ``operation`` on the adapter, bounded by ``timeout`` seconds.

        Raises CapabilityNotSupportedError if the adapter lacks the
        operation and ProviderUnavailableError if the call raises, times
        out or returns something that is not a ProviderResponse.
        """
        if not self.adapter.supports(operation):
            raise CapabilityNotSupportedError(self.provider, operation)
        method = getattr(self.adapter, operation)
        return await self._bounded(operation, method(*args), timeout)

    async def ping(self, timeout: float) -> ProviderResponse:
        return await self._bounded("ping", self.adapter.ping(), timeout)

    async def _bounded(self, operation: str, call, timeout: float) -> ProviderResponse:
        started = time.monotonic()
        try:
            raw = await asyncio.wait_for(call, timeout=timeout)
        except asyncio.TimeoutError:
            logger.warning(
                "Provider call timed out: tenant=%s provider=%s operation=%s timeout=%.1fs",
                self.registration.tenant_id, self.provider, operation, timeout,
            )
            raise ProviderUnavailableError(self.provider, f"{operation} timed out after {timeout}s")
        except CapabilityNotSupportedError:
            raise
        except Exception as exc:
            logger.warning(
                "Provider call failed: tenant=%s provider=%s operation=%s error=%s",
                self.registration.tenant_id, self.provider, operation, exc,
            )
            raise ProviderUnavailableError(self.provider, f"{operation} failed: {exc}") from exc

        logger.debug(
            "Provider call finished: provider=%s operation=%s elapsed_ms=%.1f",
            self.provider, operation, (time.monotonic() - started) * 1000,
        )
        if isinstance(raw, ProviderResponse):
            return raw
        try:
            return ProviderResponse.model_validate(raw)
        except PydanticValidationError as exc:
            raise ProviderUnavailableError(self.provider, f"{operation} returned a malformed response") from exc
