"""Allow-list validation for outbound headers taken from stored company configuration.

Header names and values come from admin-editable documents, so every header is
checked before it reaches the wire: names must be RFC 7230 tokens and must not
look like template/operator keys, values must be single-line, free of control
characters and free of template-injection markers. Anything else is dropped.
"""

import re
from typing import Any

_TOKEN_RE = re.compile(r"^[!#$%&'*+.^_`|~0-9A-Za-z-]+$")
_INJECTION_MARKER = "$__"
# Control characters other than horizontal tab.
_CONTROL_RE = re.compile(r"[\x00-\x08\x0a-\x1f\x7f]")


def header_rejection_reason(name: Any, value: Any) -> str | None:
    key = str(name).strip() if name is not None else ""
    if not key:
        return "empty header name"
    if key.startswith("$"):
        return "header name starts with '$'"
    if not _TOKEN_RE.match(key):
        return "header name is not a valid token"
    if value is None:
        return "header value is null"
    text = ",".join(str(item) for item in value) if isinstance(value, list) else str(value)
    if not text:
        return "empty header value"
    if "\r" in text or "\n" in text:
        return "header value contains a line break"
    if _CONTROL_RE.search(text):
        return "header value contains a control character"
    if _INJECTION_MARKER in text:
        return "header value contains a template marker"
    return None


def sanitize_headers(headers: Any) -> tuple[dict[str, str], list[str]]:
    """Return (accepted headers, rejected header names)."""
    accepted: dict[str, str] = {}
    rejected: list[str] = []
    if not isinstance(headers, dict):
        return accepted, rejected

    for name, value in headers.items():
        if header_rejection_reason(name, value) is not None:
            rejected.append(str(name))
            continue
        text = ",".join(str(item) for item in value) if isinstance(value, list) else str(value)
        accepted[str(name).strip()] = text
    return accepted, rejected
