"""Error taxonomy shared by the registry, screening and transfer services.

Each error carries the HTTP status and machine-readable code the API layer
renders it with, so services can raise without knowing about HTTP.
"""


class FinopsError(Exception):
    """Base class for every error raised by the core services."""
    status_code = 500
    code = "INTERNAL_ERROR"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class ValidationError(FinopsError):
    """Malformed input: empty identifiers, bad amounts, bad configuration."""
    status_code = 400
    code = "VALIDATION_ERROR"


class NotFoundError(FinopsError):
    """The requested registration, transfer or record does not exist."""
    status_code = 404
    code = "NOT_FOUND"


class ProviderUnavailableError(FinopsError):
    """A resolved provider failed or timed out while being called."""
    status_code = 503
    code = "PROVIDER_UNAVAILABLE"

    def __init__(self, provider: str, message: str) -> None:
        super().__init__(f"Provider '{provider}' unavailable: {message}")
        self.provider = provider


class CapabilityNotSupportedError(FinopsError):
    """The provider is registered but does not implement the operation."""
    status_code = 400
    code = "CAPABILITY_NOT_SUPPORTED"

    def __init__(self, provider: str, capability: str) -> None:
        super().__init__(
            f"Provider '{provider}' does not support '{capability}'"
        )
        self.provider = provider
        self.capability = capability


class InvalidStateError(FinopsError):
    """Illegal transition, terminal mutation, or a lost version race."""
    status_code = 409
    code = "INVALID_STATE"


class PermissionDeniedError(FinopsError):
    """The actor's role does not allow the requested action."""
    status_code = 403
    code = "PERMISSION_DENIED"
