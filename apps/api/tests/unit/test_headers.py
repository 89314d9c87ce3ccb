import pytest

from app.integrations.headers import header_rejection_reason, sanitize_headers


@pytest.mark.parametrize(
    ("name", "value"),
    [
        ("", "x"),
        ("$where", "x"),
        ("Bad Header", "x"),
        ("X-Trace", None),
        ("X-Trace", ""),
        ("X-Trace", "a\r\nSet-Cookie: x"),
        ("X-Trace", "${{$__proto__}}"),
        ("X-Trace", "token\x00tail"),
        ("X-Trace", "bell\x07"),
        ("X-Trace", "del\x7f"),
    ],
)
def test_header_rejection_reasons(name, value):
    assert header_rejection_reason(name, value) is not None


def test_sanitize_headers_keeps_valid_and_reports_rejected():
    accepted, rejected = sanitize_headers(
        {"X-Tenant": "shop-1", "Accept": ["application/json", "text/plain"], "$bad": "x"}
    )

    assert accepted == {"X-Tenant": "shop-1", "Accept": "application/json,text/plain"}
    assert rejected == ["$bad"]


def test_sanitize_headers_ignores_non_mapping():
    assert sanitize_headers(None) == ({}, [])


def test_header_value_may_contain_tab():
    assert header_rejection_reason("X-Trace", "a\tb") is None


def test_sanitize_headers_drops_control_characters():
    accepted, rejected = sanitize_headers({"X-Tenant": "shop-1", "X-Null": "a\x00b"})

    assert accepted == {"X-Tenant": "shop-1"}
    assert rejected == ["X-Null"]
