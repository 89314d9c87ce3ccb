"""Per-provider-family interpretation of delivery company responses.

Providers do not share a response schema. Each adapter knows where one family
puts the tracking number and the shipment status; the generic adapter tries the
shapes seen across REST carriers.
"""

from dataclasses import dataclass
from typing import Any, Protocol

from app.integrations.errors import ProviderRejectedError

_TRACKING_KEYS = (
    "tracking_number",
    "trackingNumber",
    "tracking",
    "tracking_id",
    "trackingId",
    "shipment_number",
    "shipmentNumber",
    "delivery_number",
    "deliveryNumber",
    "waybill",
    "awb",
    "barcode",
)
_STATUS_KEYS = (
    "status",
    "delivery_status",
    "deliveryStatus",
    "shipment_status",
    "shipmentStatus",
    "state",
)
_CONTAINER_KEYS = ("data", "result", "shipment", "delivery", "order")
_ID_KEYS = ("id", "shipment_id", "shipmentId")


@dataclass
class ParsedProviderResponse:
    tracking_number: str | None
    provider_status: str | None


class ResponseAdapter(Protocol):
    def parse(self, body: Any) -> ParsedProviderResponse: ...


def _first_scalar(source: dict[str, Any], keys: tuple[str, ...]) -> str | None:
    for key in keys:
        value = source.get(key)
        if isinstance(value, (str, int)) and not isinstance(value, bool) and str(value).strip():
            return str(value).strip()
    return None


def _candidates(body: Any) -> list[dict[str, Any]]:
    if isinstance(body, list) and body and isinstance(body[0], dict):
        body = body[0]
    if not isinstance(body, dict):
        return []
    found = [body]
    for key in _CONTAINER_KEYS:
        nested = body.get(key)
        if isinstance(nested, list) and nested and isinstance(nested[0], dict):
            nested = nested[0]
        if isinstance(nested, dict):
            found.append(nested)
    return found


class GenericResponseAdapter:
    def parse(self, body: Any) -> ParsedProviderResponse:
        if isinstance(body, (str, int)) and not isinstance(body, bool) and str(body).strip():
            return ParsedProviderResponse(tracking_number=str(body).strip(), provider_status=None)

        candidates = _candidates(body)
        tracking = next(
            (value for value in (_first_scalar(c, _TRACKING_KEYS) for c in candidates) if value),
            None,
        )
        if tracking is None:
            # Nested containers usually describe the created shipment itself.
            tracking = next(
                (value for value in (_first_scalar(c, _ID_KEYS) for c in candidates[1:]) if value),
                None,
            )
        status = next(
            (value for value in (_first_scalar(c, _STATUS_KEYS) for c in candidates) if value),
            None,
        )
        return ParsedProviderResponse(tracking_number=tracking, provider_status=status)


class JsonRpcResponseAdapter:
    """JSON-RPC 2.0 envelopes: errors arrive with HTTP 200 under ``error``."""

    def __init__(self, service: str = "delivery_provider") -> None:
        self.service = service
        self._inner = GenericResponseAdapter()

    def parse(self, body: Any) -> ParsedProviderResponse:
        if isinstance(body, dict) and body.get("error"):
            error = body["error"]
            message = error.get("message") if isinstance(error, dict) else str(error)
            if isinstance(error, dict) and isinstance(error.get("data"), dict):
                message = error["data"].get("message") or message
            raise ProviderRejectedError(
                self.service,
                message or "JSON-RPC call returned an error",
                status_code=200,
                response_body=body,
            )
        result = body.get("result") if isinstance(body, dict) and "result" in body else body
        return self._inner.parse(result)


RESPONSE_ADAPTERS: dict[str, type] = {
    "generic": GenericResponseAdapter,
    "jsonrpc": JsonRpcResponseAdapter,
}


def adapter_for(provider_family: str | None, transport_format: str) -> ResponseAdapter:
    family = (provider_family or "").strip().lower()
    if family == "generic" and transport_format == "jsonrpc":
        family = "jsonrpc"
    adapter_cls = RESPONSE_ADAPTERS.get(family)
    if adapter_cls is None:
        adapter_cls = (
            JsonRpcResponseAdapter if transport_format == "jsonrpc" else GenericResponseAdapter
        )
    return adapter_cls()
