"""Catalog of adapter classes the registry can instantiate by provider name."""

import logging
from typing import Any, Dict, Iterable, Optional, Type

from pydantic import ValidationError as PydanticValidationError

from finops.errors import ValidationError
from finops.models import ServiceType
from finops.providers.base import CONTRACTS, ProviderAdapter
from finops.providers.sanctions_list import SanctionsListProvider
from finops.providers.sandbox_bank import SandboxBankProvider

logger = logging.getLogger(__name__)


class ProviderCatalog:
    """Maps provider names to the adapter classes that wrap them."""

    def __init__(self, adapters: Optional[Dict[str, Type[ProviderAdapter]]] = None) -> None:
        self._adapters: Dict[str, Type[ProviderAdapter]] = dict(adapters or {})

    def add(self, name: str, adapter_cls: Type[ProviderAdapter]) -> None:
        self._adapters[name] = adapter_cls

    def names(self) -> Iterable[str]:
        return sorted(self._adapters)

    def build(
        self,
        service_type: ServiceType,
        provider: str,
        configuration: Dict[str, Any],
    ) -> ProviderAdapter:
        """Instantiate the adapter for ``provider`` with validated configuration.

        The adapter class must implement the contract of ``service_type``
        and the configuration must satisfy the adapter's own schema.
        """
        adapter_cls = self._adapters.get(provider)
        if adapter_cls is None:
            raise ValidationError(f"Unknown provider '{provider}'")

        contract = CONTRACTS[service_type]
        if not issubclass(adapter_cls, contract):
            raise ValidationError(
                f"Provider '{provider}' does not implement the "
                f"{service_type.value} service contract"
            )

        try:
            config = adapter_cls.parse_config(configuration)
        except PydanticValidationError as exc:
            logger.info("Rejected configuration for provider=%s: %s", provider, exc)
            fields = ", ".join(".".join(str(p) for p in err["loc"]) or "<root>" for err in exc.errors())
            raise ValidationError(
                f"Invalid configuration for provider '{provider}': {fields}"
            ) from exc

        return adapter_cls(provider, config)


def default_catalog() -> ProviderCatalog:
    """Catalog with the adapters that ship with the service."""
    return ProviderCatalog({
        "sanctions_list": SanctionsListProvider,
        "sandbox_bank": SandboxBankProvider,
    })
