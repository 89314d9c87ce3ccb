from app.integrations.errors import (
    IntegrationError,
    PreflightError,
    ProviderError,
    ProviderRejectedError,
    ProviderTimeoutError,
    ProviderUnavailableError,
)

__all__ = [
    "IntegrationError",
    "PreflightError",
    "ProviderError",
    "ProviderRejectedError",
    "ProviderTimeoutError",
    "ProviderUnavailableError",
]
