import logging
from dataclasses import dataclass, field
from typing import Any, Protocol
from urllib.parse import quote

import httpx
from pydantic import ValidationError

from app.config import settings
from app.integrations.errors import (
    PreflightError,
    ProviderError,
    ProviderRejectedError,
    ProviderTimeoutError,
    ProviderUnavailableError,
)
from app.integrations.headers import sanitize_headers
from app.integrations.provider_config import (
    ResolvedAuth,
    credentials_of,
    effective_endpoint,
    load_api_configuration,
    resolve_auth,
    resolve_param,
)
from app.integrations.response_adapters import adapter_for
from app.observability import log_event, metrics_store, observe_timing
from app.schemas.delivery_company import ApiConfiguration, JsonRpcTransport, RestTransport
from app.services.field_mapping import is_present, validate_required_mappings

SERVICE = "delivery_provider"
_IDENTITY_KEYS = ("login", "password", "db")

logger = logging.getLogger("delivery_hub.provider")


@dataclass
class ProviderResult:
    tracking_number: str | None
    provider_response: Any
    provider_status: str | None


@dataclass
class ProviderStatus:
    status: str | None
    tracking_number: str | None
    source: str
    raw: Any = None


@dataclass
class ConnectionResult:
    ok: bool
    status: int | None
    message: str | None = None


@dataclass
class PreparedRequest:
    method: str
    url: str
    timeout_s: float
    params: dict[str, Any] = field(default_factory=dict)
    json: Any = None
    headers: dict[str, str] = field(default_factory=dict)
    auth: tuple[str, str] | None = None


class DeliveryProviderClientProtocol(Protocol):
    def send_order(
        self, order: Any, company: Any, delivery_fee: float | None = None
    ) -> ProviderResult: ...

    def fetch_status(self, order: Any, company: Any) -> ProviderStatus: ...

    def test_connection(self, company: Any) -> ConnectionResult: ...

    def proxy_list(
        self,
        url: str,
        headers: dict[str, Any] | None,
        params: dict[str, Any] | None,
        company: Any = None,
    ) -> Any: ...


def _error_message(body: Any) -> str | None:
    if isinstance(body, str) and body.strip():
        return body.strip()[:500]
    if isinstance(body, dict):
        for key in ("message", "error", "detail"):
            value = body.get(key)
            if isinstance(value, str) and value.strip():
                return value.strip()
            if isinstance(value, dict) and isinstance(value.get("message"), str):
                return value["message"]
    return None


def _response_body(response: Any) -> Any:
    try:
        return response.json()
    except ValueError:
        return getattr(response, "text", None)


def _identity_params(credentials: dict[str, Any]) -> dict[str, Any]:
    identity: dict[str, Any] = {}
    if credentials.get("login"):
        identity["login"] = credentials["login"]
    if credentials.get("password"):
        identity["password"] = credentials["password"]
    if credentials.get("database"):
        identity["db"] = credentials["database"]
    return identity


class DeliveryProviderClient:
    """Builds and sends REST or JSON-RPC requests to a configured delivery company."""

    def __init__(self, default_timeout_ms: int) -> None:
        self.default_timeout_ms = default_timeout_ms

    def _load_config(self, company: Any) -> ApiConfiguration:
        try:
            return load_api_configuration(company)
        except ValidationError as err:
            raise PreflightError(
                SERVICE,
                "CONFIG_INVALID",
                "Delivery company configuration is invalid",
                {"issues": [error["msg"] for error in err.errors()]},
            ) from err

    def _base_request(
        self,
        api_config: ApiConfiguration,
        auth: ResolvedAuth,
        method: str,
        url: str,
    ) -> PreparedRequest:
        headers, rejected = sanitize_headers(api_config.headers)
        if rejected:
            logger.warning("Dropped unsafe provider headers: %s", ", ".join(rejected))

        request_auth: tuple[str, str] | None = None
        if auth.method == "basic" and (auth.username or auth.password):
            request_auth = (auth.username or "", auth.password or "")
        elif auth.method == "bearer" and auth.token:
            headers["Authorization"] = f"Bearer {auth.token}"
        elif auth.method == "apiKey" and auth.api_key:
            headers[auth.api_key_header or settings.api_key_header] = auth.api_key

        timeout_ms = api_config.timeout_ms or self.default_timeout_ms
        return PreparedRequest(
            method=method,
            url=url,
            timeout_s=timeout_ms / 1000,
            params=dict(api_config.query_params),
            headers=headers,
            auth=request_auth,
        )

    def _envelope(self, transport: JsonRpcTransport, method: str | None, params: dict) -> dict:
        envelope: dict[str, Any] = {"jsonrpc": "2.0"}
        if method and not transport.omit_method:
            envelope["method"] = method
        envelope["params"] = params
        return envelope

    def build_send_request(
        self,
        order: Any,
        company: Any,
        delivery_fee: float | None = None,
    ) -> PreparedRequest:
        api_config = self._load_config(company)
        extra = {"delivery_fee": delivery_fee} if delivery_fee is not None else None
        mapping = validate_required_mappings(order, company, extra)
        if not mapping.ok:
            raise PreflightError(
                SERVICE,
                "MAPPING_MISSING",
                "Missing required mapped fields",
                {"missing": mapping.missing, "payload_preview": mapping.payload},
            )

        required: dict[str, Any] = {}
        missing_params: list[str] = []
        for name in api_config.required_params:
            value = resolve_param(company, api_config, name)
            if is_present(value):
                required[name] = value
            else:
                missing_params.append(name)
        if missing_params:
            raise PreflightError(
                SERVICE,
                "PARAMS_MISSING",
                "Missing required parameters",
                {"missing": missing_params},
            )

        credentials = credentials_of(company)
        auth = resolve_auth(api_config, credentials)
        url, rpc_method = effective_endpoint(api_config)
        transport = api_config.transport

        if isinstance(transport, JsonRpcTransport):
            identity = _identity_params(credentials)
            params = {**api_config.params, **required, **identity}
            params.update(
                {key: value for key, value in mapping.payload.items() if key not in identity}
            )
            request = self._base_request(api_config, auth, "POST", url)
            request.json = self._envelope(transport, rpc_method, params)
            return request

        body = {**api_config.params, **required, **mapping.payload}
        request = self._base_request(api_config, auth, transport.http_method, url)
        if transport.http_method == "GET":
            request.params.update(body)
        else:
            request.json = body
        return request

    def execute(self, request: PreparedRequest) -> Any:
        try:
            with observe_timing("provider_request_seconds"):
                with httpx.Client(timeout=request.timeout_s) as client:
                    response = client.request(
                        request.method,
                        request.url,
                        params=request.params or None,
                        json=request.json,
                        headers=request.headers,
                        auth=request.auth,
                    )
        except httpx.TimeoutException as err:
            metrics_store.increment("provider_request_failed_total")
            raise ProviderTimeoutError(SERVICE) from err
        except httpx.TransportError as err:
            metrics_store.increment("provider_request_failed_total")
            raise ProviderUnavailableError(SERVICE, str(err)) from err

        metrics_store.increment("provider_request_total")
        body = _response_body(response)
        if response.status_code >= 500:
            metrics_store.increment("provider_request_failed_total")
            raise ProviderUnavailableError(
                SERVICE,
                _error_message(body) or f"Delivery provider returned {response.status_code}",
                status_code=response.status_code,
                response_body=body,
            )
        if response.status_code >= 400:
            metrics_store.increment("provider_request_failed_total")
            raise ProviderRejectedError(
                SERVICE,
                _error_message(body) or f"Delivery provider returned {response.status_code}",
                status_code=response.status_code,
                response_body=body,
            )
        return body

    def send_order(
        self,
        order: Any,
        company: Any,
        delivery_fee: float | None = None,
    ) -> ProviderResult:
        request = self.build_send_request(order, company, delivery_fee)
        api_config = self._load_config(company)
        log_event(
            "provider_request",
            order_id=str(getattr(order, "id", "")) or None,
            company_id=str(getattr(company, "id", "")) or None,
        )
        body = self.execute(request)
        parsed = adapter_for(getattr(company, "provider_family", None), api_config.mode).parse(body)
        return ProviderResult(
            tracking_number=parsed.tracking_number,
            provider_response=body,
            provider_status=parsed.provider_status or "assigned",
        )

    def fetch_status(self, order: Any, company: Any) -> ProviderStatus:
        api_config = self._load_config(company)
        tracking = order.delivery_tracking_number or order.tracking_number
        transport = api_config.transport
        auth = resolve_auth(api_config, credentials_of(company))

        if isinstance(transport, RestTransport) and transport.status_url and tracking:
            placeholder = "{tracking_number}" in transport.status_url
            url = transport.status_url.replace("{tracking_number}", quote(tracking, safe=""))
            request = self._base_request(api_config, auth, "GET", url)
            if not placeholder:
                request.params["tracking_number"] = tracking
        elif isinstance(transport, JsonRpcTransport) and transport.status_method and tracking:
            url, _ = effective_endpoint(api_config)
            request = self._base_request(api_config, auth, "POST", url)
            params = {
                **api_config.params,
                **_identity_params(credentials_of(company)),
                "tracking_number": tracking,
            }
            request.json = {"jsonrpc": "2.0", "method": transport.status_method, "params": params}
        else:
            return ProviderStatus(
                status=order.delivery_status,
                tracking_number=tracking,
                source="local",
            )

        body = self.execute(request)
        parsed = adapter_for(getattr(company, "provider_family", None), api_config.mode).parse(body)
        return ProviderStatus(
            status=parsed.provider_status,
            tracking_number=parsed.tracking_number or tracking,
            source="provider",
            raw=body,
        )

    def test_connection(self, company: Any) -> ConnectionResult:
        try:
            api_config = self._load_config(company)
        except PreflightError as err:
            return ConnectionResult(ok=False, status=None, message=err.message)
        url, _ = effective_endpoint(api_config)
        if not url:
            return ConnectionResult(ok=False, status=None, message="Missing API base URL")

        request = self._base_request(
            api_config, resolve_auth(api_config, credentials_of(company)), "GET", url
        )
        try:
            self.execute(request)
        except ProviderError as err:
            return ConnectionResult(ok=False, status=err.status_code, message=err.message)
        return ConnectionResult(ok=True, status=200)

    def proxy_list(
        self,
        url: str,
        headers: dict[str, Any] | None,
        params: dict[str, Any] | None,
        company: Any = None,
    ) -> Any:
        extra_headers, rejected = sanitize_headers(headers or {})
        if rejected:
            logger.warning("Dropped unsafe proxy headers: %s", ", ".join(rejected))
        query = dict(params or {})

        if company is None:
            request = PreparedRequest(
                method="GET",
                url=url,
                timeout_s=self.default_timeout_ms / 1000,
                params=query,
                headers=extra_headers,
            )
            return self.execute(request)

        api_config = self._load_config(company)
        credentials = credentials_of(company)
        transport = api_config.transport
        is_jsonrpc = isinstance(transport, JsonRpcTransport)
        request = self._base_request(
            api_config, resolve_auth(api_config, credentials), "POST" if is_jsonrpc else "GET", url
        )
        request.params.update(query)
        request.headers.update(extra_headers)
        if is_jsonrpc:
            rpc_params = {**api_config.params, **_identity_params(credentials), **query}
            request.json = self._envelope(transport, transport.method, rpc_params)
        return self.execute(request)


def get_delivery_provider_client() -> DeliveryProviderClientProtocol:
    return DeliveryProviderClient(default_timeout_ms=settings.provider_timeout_ms)
