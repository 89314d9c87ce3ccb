import uuid
from datetime import datetime
from typing import Annotated, Any, Literal, Union
from urllib.parse import urlparse

from pydantic import ConfigDict, Field, field_validator, model_validator

from app.config import settings
from app.integrations.headers import header_rejection_reason
from app.integrations.response_adapters import RESPONSE_ADAPTERS
from app.schemas.common import CamelModel
from app.services.state_machine import INTERNAL_STATUSES
from app.services.status_mapper import sanitize_status_mapping

JSON_RPC_FORMATS = {"jsonrpc", "json-rpc", "json"}
_FLAT_CREDENTIAL_KEYS = ("username", "password", "bearer", "token", "apiKey", "apiKeyHeader")


class NoAuth(CamelModel):
    method: Literal["none"] = "none"


class BasicAuth(CamelModel):
    method: Literal["basic"]
    username: str | None = None
    password: str | None = None


class BearerAuth(CamelModel):
    method: Literal["bearer"]
    token: str | None = None


class ApiKeyAuth(CamelModel):
    method: Literal["apiKey"]
    api_key: str | None = None
    header: str | None = None


AuthConfig = Annotated[
    Union[NoAuth, BasicAuth, BearerAuth, ApiKeyAuth],
    Field(discriminator="method"),
]


class RestTransport(CamelModel):
    format: Literal["rest"] = "rest"
    http_method: Literal["GET", "POST"] = "POST"
    # May contain a {tracking_number} placeholder.
    status_url: str | None = None


class JsonRpcTransport(CamelModel):
    format: Literal["jsonrpc"]
    method: str | None = None
    omit_method: bool = False
    status_method: str | None = None


TransportConfig = Annotated[
    Union[RestTransport, JsonRpcTransport],
    Field(discriminator="format"),
]


def _coerce_flat_document(data: dict[str, Any]) -> dict[str, Any]:
    """Convert the legacy flat admin document (authMethod, format, method, ...)."""
    doc = dict(data)

    auth_method = doc.pop("authMethod", None) or doc.pop("auth_method", None) or "none"
    flat = {key: doc.pop(key, None) for key in _FLAT_CREDENTIAL_KEYS}
    flat["apiKeyHeader"] = flat["apiKeyHeader"] or doc.pop("api_key_header", None)
    if auth_method == "basic":
        auth = {"method": "basic", "username": flat["username"], "password": flat["password"]}
    elif auth_method == "bearer":
        token = flat["bearer"] or flat["token"] or flat["apiKey"]
        auth = {"method": "bearer", "token": token}
    elif auth_method == "apiKey":
        auth = {"method": "apiKey", "apiKey": flat["apiKey"], "header": flat["apiKeyHeader"]}
    else:
        auth = {"method": auth_method}

    fmt = str(doc.pop("format", None) or doc.pop("apiFormat", None) or "").strip().lower()
    method = doc.pop("method", None)
    omit_method = bool(doc.pop("jsonrpcOmitMethod", False))
    http_method = doc.pop("httpMethod", None)
    is_http_verb = isinstance(method, str) and method.upper() in {"GET", "POST"}
    if is_http_verb and fmt not in JSON_RPC_FORMATS:
        http_method, method = method, None

    if fmt in JSON_RPC_FORMATS or method or omit_method:
        transport = {
            "format": "jsonrpc",
            "method": method,
            "omitMethod": omit_method,
            "statusMethod": doc.pop("statusMethod", None),
        }
    else:
        transport = {
            "format": "rest",
            "httpMethod": str(http_method or "POST").upper(),
            "statusUrl": doc.pop("statusUrl", None),
        }

    doc["auth"] = auth
    doc["transport"] = transport
    return doc


class ApiConfiguration(CamelModel):
    url: str = ""
    auth: AuthConfig = Field(default_factory=NoAuth)
    transport: TransportConfig = Field(default_factory=RestTransport)
    params: dict[str, Any] = Field(default_factory=dict)
    query_params: dict[str, Any] = Field(default_factory=dict)
    timeout_ms: int = Field(default_factory=lambda: settings.provider_timeout_ms, gt=0)
    required_params: list[str] = Field(default_factory=list)
    headers: dict[str, str] = Field(default_factory=dict)

    @model_validator(mode="before")
    @classmethod
    def normalize_document(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        if "auth" not in data and "transport" not in data:
            data = _coerce_flat_document(data)
        transport = data.get("transport")
        if isinstance(transport, dict):
            fmt = str(transport.get("format") or "rest").strip().lower()
            data = {
                **data,
                "transport": {**transport, "format": "jsonrpc" if fmt in JSON_RPC_FORMATS else fmt},
            }
        return data

    @field_validator("url")
    @classmethod
    def validate_url(cls, value: str) -> str:
        value = value.strip()
        if not value:
            return value
        parsed = urlparse(value)
        if parsed.scheme not in {"http", "https"} or not parsed.netloc:
            raise ValueError("url must be an absolute http(s) URL")
        return value

    @field_validator("headers")
    @classmethod
    def validate_headers(cls, value: dict[str, str]) -> dict[str, str]:
        for name, header_value in value.items():
            reason = header_rejection_reason(name, header_value)
            if reason is not None:
                raise ValueError(f"header {name!r} rejected: {reason}")
        return value

    @field_validator("required_params")
    @classmethod
    def strip_required_params(cls, value: list[str]) -> list[str]:
        return [item.strip() for item in value if item and item.strip()]

    @property
    def mode(self) -> str:
        return self.transport.format


class Credentials(CamelModel):
    model_config = ConfigDict(extra="allow")

    login: str | None = None
    password: str | None = None
    database: str | None = None
    db: str | None = None
    username: str | None = None
    token: str | None = None
    api_key: str | None = None
    api_key_header: str | None = None


class FieldMapping(CamelModel):
    company_field: str = Field(min_length=1)
    internal_field: str = Field(min_length=1)
    required: bool = False
    default_value: Any = None


class StatusMappingEntry(CamelModel):
    company_status: str = Field(min_length=1)
    internal_status: str = Field(min_length=1)

    @field_validator("internal_status")
    @classmethod
    def validate_internal_status(cls, value: str) -> str:
        value = value.strip().lower()
        if value not in INTERNAL_STATUSES:
            allowed = ", ".join(sorted(INTERNAL_STATUSES))
            raise ValueError(f"internal_status must be one of: {allowed}")
        return value


class AreaMapping(CamelModel):
    level: Literal["area", "subArea"] = "area"
    area_id: str | None = None
    area_name: str | None = None
    sub_area_id: str | None = None
    sub_area_name: str | None = None
    store_cities: list[str] = Field(default_factory=list)


def _validate_provider_family(value: str | None) -> str | None:
    if value is None:
        return value
    value = value.strip().lower()
    if value not in RESPONSE_ADAPTERS:
        allowed = ", ".join(sorted(RESPONSE_ADAPTERS))
        raise ValueError(f"provider_family must be one of: {allowed}")
    return value


class DeliveryCompanyBase(CamelModel):
    @field_validator("status_mapping", mode="before", check_fields=False)
    @classmethod
    def drop_incomplete_status_rows(cls, value: Any) -> Any:
        if isinstance(value, list):
            return sanitize_status_mapping(value)
        return value

    @field_validator("provider_family", check_fields=False)
    @classmethod
    def validate_provider_family(cls, value: str | None) -> str | None:
        return _validate_provider_family(value)


class DeliveryCompanyCreate(DeliveryCompanyBase):
    name: str = Field(min_length=1, max_length=255)
    code: str | None = Field(default=None, max_length=64)
    is_active: bool = True
    is_default: bool = False
    provider_family: str = "generic"
    api_configuration: ApiConfiguration = Field(default_factory=ApiConfiguration)
    credentials: Credentials = Field(default_factory=Credentials)
    field_mappings: list[FieldMapping] = Field(default_factory=list)
    status_mapping: list[StatusMappingEntry] = Field(default_factory=list)
    area_mappings: list[AreaMapping] = Field(default_factory=list)
    custom_fields: dict[str, Any] = Field(default_factory=dict)


class DeliveryCompanyUpdate(DeliveryCompanyBase):
    name: str | None = Field(default=None, min_length=1, max_length=255)
    code: str | None = Field(default=None, max_length=64)
    is_active: bool | None = None
    is_default: bool | None = None
    provider_family: str | None = None
    api_configuration: ApiConfiguration | None = None
    credentials: Credentials | None = None
    field_mappings: list[FieldMapping] | None = None
    status_mapping: list[StatusMappingEntry] | None = None
    area_mappings: list[AreaMapping] | None = None
    custom_fields: dict[str, Any] | None = None


class FieldMappingsUpdate(CamelModel):
    field_mappings: list[FieldMapping] = Field(default_factory=list)
    custom_fields: dict[str, Any] = Field(default_factory=dict)


class DeliveryCompanyResponse(CamelModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    code: str | None
    name: str
    is_active: bool
    is_default: bool
    provider_family: str
    api_configuration: dict[str, Any]
    credentials: dict[str, Any]
    field_mappings: list[dict[str, Any]]
    status_mapping: list[dict[str, Any]]
    area_mappings: list[dict[str, Any]]
    custom_fields: dict[str, Any]
    created_at: datetime
    updated_at: datetime


class CompanySummary(CamelModel):
    id: uuid.UUID
    name: str
    code: str | None = None


class FeeQuoteRequest(CamelModel):
    total_amount: float = 0


class FeeQuoteResponse(CamelModel):
    fee: float


class ConnectionTestResponse(CamelModel):
    success: bool
    message: str
    status: int | None = None
