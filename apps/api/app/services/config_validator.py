from dataclasses import dataclass, field
from typing import Any
from urllib.parse import urlparse

from pydantic import ValidationError

from app.integrations.provider_config import (
    credentials_of,
    db_sources,
    effective_endpoint,
    load_api_configuration,
    resolve_auth,
    resolve_param,
)


@dataclass
class ConfigValidation:
    ok: bool
    issues: list[str] = field(default_factory=list)
    mode: str = "rest"
    url: str = ""


def _is_http_url(value: str) -> bool:
    parsed = urlparse(value)
    return parsed.scheme in {"http", "https"} and bool(parsed.netloc)


def validate_company_configuration(company: Any) -> ConfigValidation:
    """Check that a company's stored configuration is sufficient to attempt a send."""
    try:
        api_config = load_api_configuration(company)
    except ValidationError as err:
        issues = [
            f"apiConfiguration.{'.'.join(str(part) for part in error['loc'])}: {error['msg']}"
            for error in err.errors()
        ]
        return ConfigValidation(ok=False, issues=issues)

    issues: list[str] = []
    url, _ = effective_endpoint(api_config)
    if not url:
        issues.append("Missing API base URL")
    elif not _is_http_url(url):
        issues.append(f"Invalid API base URL: {url}")

    auth = resolve_auth(api_config, credentials_of(company))
    if auth.method == "basic":
        if not auth.username:
            issues.append("Basic auth requires a username")
        if not auth.password:
            issues.append("Basic auth requires a password")
    elif auth.method == "bearer" and not auth.token:
        issues.append("Bearer auth requires a token")
    elif auth.method == "apiKey" and not auth.api_key:
        issues.append("API key auth requires an API key")

    for name in api_config.required_params:
        value = resolve_param(company, api_config, name)
        if value is None or (isinstance(value, str) and not value.strip()):
            issues.append(f"Missing required parameter: {name}")

    return ConfigValidation(ok=not issues, issues=issues, mode=api_config.mode, url=url)


def describe_param_sources(company: Any) -> dict[str, Any]:
    """Effective ``db`` value and each candidate source, for the admin config check."""
    try:
        api_config = load_api_configuration(company)
    except ValidationError:
        api_config = None
    details: dict[str, Any] = {"auth_method": "none", "format": "rest", "required_params": []}
    if api_config is not None:
        details = {
            "auth_method": api_config.auth.method,
            "format": api_config.mode,
            "required_params": list(api_config.required_params),
        }
    return {"db": db_sources(company, api_config), "details": details}
