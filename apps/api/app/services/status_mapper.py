"""Translate provider-native delivery statuses into the internal vocabulary."""

import re
from typing import Any

from app.services.state_machine import INTERNAL_STATUSES, DeliveryStatus

DEFAULT_STATUS = DeliveryStatus.ASSIGNED.value

_WHITESPACE_RE = re.compile(r"\s+")


def normalize_status(value: Any) -> str:
    if value is None:
        return ""
    return _WHITESPACE_RE.sub("_", str(value).strip().casefold())


def _entry_value(entry: Any, snake: str, camel: str) -> Any:
    if isinstance(entry, dict):
        return entry.get(snake, entry.get(camel))
    return getattr(entry, snake, None)


def sanitize_status_mapping(entries: Any) -> list[dict[str, str]]:
    """Drop rows whose company or internal status is missing or blank."""
    if not isinstance(entries, list):
        return []
    cleaned: list[dict[str, str]] = []
    for entry in entries:
        company_status = _entry_value(entry, "company_status", "companyStatus")
        internal_status = _entry_value(entry, "internal_status", "internalStatus")
        if not isinstance(company_status, str) or not company_status.strip():
            continue
        if not isinstance(internal_status, str) or not internal_status.strip():
            continue
        cleaned.append(
            {"company_status": company_status.strip(), "internal_status": internal_status.strip()}
        )
    return cleaned


def _status_mapping_of(company: Any) -> list[Any]:
    if company is None:
        return []
    if isinstance(company, dict):
        entries = company.get("status_mapping", company.get("statusMapping"))
    else:
        entries = getattr(company, "status_mapping", None)
    return entries if isinstance(entries, list) else []


def lookup_status(company: Any, provider_status: Any) -> str | None:
    """Return the internal status ``provider_status`` maps to, or None when nothing matches.

    Lookup order: the company's status mapping (first match, compared after
    normalization), then the normalized value when it already is an internal
    status. ``company`` may be ``None``.
    """
    normalized = normalize_status(provider_status)
    if not normalized:
        return None
    for entry in _status_mapping_of(company):
        company_status = normalize_status(_entry_value(entry, "company_status", "companyStatus"))
        if not company_status or company_status != normalized:
            continue
        internal = normalize_status(_entry_value(entry, "internal_status", "internalStatus"))
        if internal in INTERNAL_STATUSES:
            return internal

    if normalized in INTERNAL_STATUSES:
        return normalized
    return None


def map_status(company: Any, provider_status: Any) -> str:
    return lookup_status(company, provider_status) or DEFAULT_STATUS
