"""Read helpers over a delivery company's stored configuration documents."""

from dataclasses import dataclass
from typing import Any
from urllib.parse import urlparse, urlunparse

from app.config import settings
from app.schemas.delivery_company import (
    ApiConfiguration,
    ApiKeyAuth,
    BasicAuth,
    BearerAuth,
    JsonRpcTransport,
)

_DB_ALIASES = ("db", "database")
_MISSING = object()


@dataclass
class ResolvedAuth:
    method: str
    username: str | None = None
    password: str | None = None
    token: str | None = None
    api_key: str | None = None
    api_key_header: str | None = None


def _document(company: Any, name: str) -> dict[str, Any]:
    if isinstance(company, dict):
        value = company.get(name)
    else:
        value = getattr(company, name, None)
    return value if isinstance(value, dict) else {}


def credentials_of(company: Any) -> dict[str, Any]:
    return _document(company, "credentials")


def custom_fields_of(company: Any) -> dict[str, Any]:
    return _document(company, "custom_fields")


def load_api_configuration(company: Any) -> ApiConfiguration:
    """Parse the stored configuration; raises pydantic.ValidationError on a corrupt document."""
    return ApiConfiguration.model_validate(_document(company, "api_configuration"))


def effective_endpoint(api_config: ApiConfiguration) -> tuple[str, str | None]:
    """Return (endpoint URL, JSON-RPC method name).

    A JSON-RPC method configured as a full URL contributes both: its last path
    segment is the method name, the rest of the URL is the endpoint.
    """
    transport = api_config.transport
    if not isinstance(transport, JsonRpcTransport):
        return api_config.url, None

    method = (transport.method or "").strip() or None
    if method and method.lower().startswith(("http://", "https://")):
        parsed = urlparse(method)
        path = parsed.path.rstrip("/")
        head, _, last = path.rpartition("/")
        endpoint = urlunparse((parsed.scheme, parsed.netloc, head, "", parsed.query, ""))
        return endpoint, last or None
    return api_config.url, method


def resolve_auth(api_config: ApiConfiguration, credentials: dict[str, Any]) -> ResolvedAuth:
    auth = api_config.auth
    if isinstance(auth, BasicAuth):
        return ResolvedAuth(
            method="basic",
            username=auth.username or credentials.get("username"),
            password=auth.password or credentials.get("password"),
        )
    if isinstance(auth, BearerAuth):
        token = auth.token or credentials.get("token") or credentials.get("api_key")
        return ResolvedAuth(method="bearer", token=token)
    if isinstance(auth, ApiKeyAuth):
        header = (
            credentials.get("api_key_header")
            or auth.header
            or settings.api_key_header
            or "x-api-key"
        )
        return ResolvedAuth(
            method="apiKey",
            api_key=auth.api_key or credentials.get("api_key"),
            api_key_header=header,
        )
    return ResolvedAuth(method="none")


def _lookup(source: dict[str, Any], name: str) -> Any:
    names = _DB_ALIASES if name in _DB_ALIASES else (name,)
    for key in names:
        value = source.get(key)
        if value is not None and value != "":
            return value
    return _MISSING


def resolve_param(company: Any, api_config: ApiConfiguration, name: str) -> Any:
    """Resolve a request parameter.

    Precedence: explicit params, environment override (db only), credentials,
    custom fields, query params. Returns None when nothing provides a value.
    """
    params_value = api_config.params.get(name)
    if params_value is not None and params_value != "":
        return params_value
    if name in _DB_ALIASES and settings.default_db:
        return settings.default_db
    for source in (credentials_of(company), custom_fields_of(company), api_config.query_params):
        value = _lookup(source, name)
        if value is not _MISSING:
            return value
    return None


def db_sources(company: Any, api_config: ApiConfiguration | None) -> dict[str, Any]:
    params = api_config.params if api_config else {}
    query = api_config.query_params if api_config else {}
    credentials = credentials_of(company)
    custom_fields = custom_fields_of(company)

    def _value(value: Any) -> Any:
        return None if value is _MISSING else value

    sources = {
        "api_params_db": params.get("db"),
        "env_db": settings.default_db,
        "credentials_db": _value(_lookup(credentials, "db")),
        "custom_fields_db": custom_fields.get("db"),
        "query_db": query.get("db"),
    }
    effective = next((value for value in sources.values() if value not in (None, "")), None)
    return {"effective_db": effective, "sources": sources}
