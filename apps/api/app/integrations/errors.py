from dataclasses import dataclass
from typing import Any


@dataclass
class IntegrationError(Exception):
    service: str
    code: str
    message: str
    retryable: bool = False

    def __str__(self) -> str:
        return f"{self.service}:{self.code}:{self.message}"


class ProviderError(IntegrationError):
    """Outbound delivery-company call failed; keeps the upstream status and raw body."""

    def __init__(
        self,
        service: str,
        message: str,
        *,
        code: str = "PROVIDER_ERROR",
        status_code: int | None = None,
        response_body: Any = None,
        retryable: bool = False,
    ) -> None:
        super().__init__(service=service, code=code, message=message, retryable=retryable)
        self.status_code = status_code
        self.response_body = response_body


class ProviderTimeoutError(ProviderError):
    def __init__(self, service: str, message: str = "Upstream timeout") -> None:
        super().__init__(service, message, code="TIMEOUT", retryable=True)


class ProviderUnavailableError(ProviderError):
    def __init__(
        self,
        service: str,
        message: str = "Upstream unavailable",
        *,
        status_code: int | None = None,
        response_body: Any = None,
    ) -> None:
        super().__init__(
            service,
            message,
            code="UNAVAILABLE",
            status_code=status_code,
            response_body=response_body,
            retryable=True,
        )


class ProviderRejectedError(ProviderError):
    def __init__(
        self,
        service: str,
        message: str = "Upstream rejected the request",
        *,
        status_code: int | None = None,
        response_body: Any = None,
    ) -> None:
        super().__init__(
            service,
            message,
            code="REJECTED",
            status_code=status_code,
            response_body=response_body,
        )


class PreflightError(IntegrationError):
    """Request could not be built from the stored order and company data."""

    def __init__(self, service: str, code: str, message: str, details: dict | None = None) -> None:
        super().__init__(service=service, code=code, message=message, retryable=False)
        self.details = details or {}
