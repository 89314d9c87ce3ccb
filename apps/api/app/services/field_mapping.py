import re
from dataclasses import dataclass, field
from typing import Any

# Fields that older documents stored under a different name.
_LEGACY_FALLBACKS: dict[str, tuple[str, ...]] = {
    "tracking_number": ("delivery_tracking_number",),
    "delivery_tracking_number": ("tracking_number",),
    "customer_info": ("customer",),
    "shipping_address": ("customer_info.address",),
    "order_number": ("id",),
}

_CAMEL_BOUNDARY_RE = re.compile(r"(?<!^)(?=[A-Z])")


@dataclass
class MappingValidation:
    ok: bool
    missing: list[str] = field(default_factory=list)
    payload: dict[str, Any] = field(default_factory=dict)


def _to_snake(segment: str) -> str:
    return _CAMEL_BOUNDARY_RE.sub("_", segment).lower()


def _lookup_segment(source: Any, segment: str) -> Any:
    for key in (segment, _to_snake(segment)):
        if isinstance(source, dict):
            if key in source:
                return source[key]
        elif isinstance(source, (list, tuple)):
            if key.isdigit() and int(key) < len(source):
                return source[int(key)]
        elif hasattr(source, key):
            return getattr(source, key)
    return None


def _lookup_path(source: Any, path: str) -> Any:
    current = source
    for segment in path.split("."):
        if current is None:
            return None
        current = _lookup_segment(current, segment)
    return current


def is_present(value: Any) -> bool:
    if value is None:
        return False
    if isinstance(value, str):
        return bool(value.strip())
    return True


def resolve_order_field(order: Any, path: str, extra: dict[str, Any] | None = None) -> Any:
    """Resolve a dotted field path against dispatch extras, then the order, then legacy names."""
    path = path.strip()
    if extra:
        value = _lookup_path(extra, path)
        if is_present(value):
            return _json_safe(value)

    value = _lookup_path(order, path)
    if is_present(value):
        return _json_safe(value)

    head, _, rest = path.partition(".")
    for alternative in _LEGACY_FALLBACKS.get(_to_snake(head), ()):
        candidate = f"{alternative}.{rest}" if rest else alternative
        value = _lookup_path(order, candidate)
        if is_present(value):
            return _json_safe(value)
    return None


def _json_safe(value: Any) -> Any:
    if isinstance(value, (str, int, float, bool, dict, list)) or value is None:
        return value
    if hasattr(value, "isoformat"):
        return value.isoformat()
    return str(value)


def _assign(payload: dict[str, Any], dotted_key: str, value: Any) -> None:
    parts = [part for part in dotted_key.split(".") if part]
    target = payload
    for part in parts[:-1]:
        nested = target.get(part)
        if not isinstance(nested, dict):
            nested = {}
            target[part] = nested
        target = nested
    target[parts[-1]] = value


def _mapping_value(entry: Any, snake: str, camel: str) -> Any:
    if isinstance(entry, dict):
        return entry.get(snake, entry.get(camel))
    return getattr(entry, snake, None)


def _field_mappings_of(company: Any) -> list[Any]:
    if isinstance(company, dict):
        entries = company.get("field_mappings", company.get("fieldMappings"))
    else:
        entries = getattr(company, "field_mappings", None)
    return entries if isinstance(entries, list) else []


def validate_required_mappings(
    order: Any,
    company: Any,
    extra: dict[str, Any] | None = None,
) -> MappingValidation:
    missing: list[str] = []
    payload: dict[str, Any] = {}

    for entry in _field_mappings_of(company):
        company_field = _mapping_value(entry, "company_field", "companyField")
        internal_field = _mapping_value(entry, "internal_field", "internalField")
        if not isinstance(company_field, str) or not company_field.strip():
            continue
        if not isinstance(internal_field, str) or not internal_field.strip():
            continue

        value = resolve_order_field(order, internal_field, extra)
        if not is_present(value):
            value = _mapping_value(entry, "default_value", "defaultValue")

        if is_present(value):
            _assign(payload, company_field.strip(), value)
        elif _mapping_value(entry, "required", "required"):
            missing.append(internal_field.strip())

    return MappingValidation(ok=not missing, missing=missing, payload=payload)
