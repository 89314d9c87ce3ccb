import pytest
from fastapi import HTTPException

from app.auth.dependencies import AuthContext, get_auth_context, require_backoffice
from app.auth.jwt import JwtError, decode_jwt, issue_jwt
from app.config import settings


@pytest.fixture
def bypass_disabled(monkeypatch):
    monkeypatch.setattr(settings, "enable_test_auth_bypass", False)


def test_get_auth_context_requires_bearer_when_bypass_disabled(bypass_disabled):
    with pytest.raises(HTTPException) as exc_info:
        get_auth_context(None)
    assert exc_info.value.status_code == 401
    assert exc_info.value.detail == {"message": "Missing bearer token", "code": "unauthorized"}


def test_get_auth_context_allows_bypass_when_explicitly_enabled():
    auth = get_auth_context(None)
    assert auth.user_id == "test-ops"
    assert auth.role == "OPS"
    assert auth.source == "test"


def test_get_auth_context_reads_claims(bypass_disabled):
    token = issue_jwt({"sub": "admin-1", "role": "ADMIN"}, settings.jwt_secret)

    auth = get_auth_context(f"Bearer {token}")

    assert auth.user_id == "admin-1"
    assert auth.role == "ADMIN"


def test_get_auth_context_rejects_foreign_signature(bypass_disabled):
    token = issue_jwt({"sub": "admin-1", "role": "ADMIN"}, "some-other-secret")

    with pytest.raises(HTTPException) as exc_info:
        get_auth_context(f"Bearer {token}")
    assert exc_info.value.detail["message"] == "Invalid JWT"


def test_get_auth_context_rejects_unknown_role(bypass_disabled):
    token = issue_jwt({"sub": "x", "role": "ROOT"}, settings.jwt_secret)

    with pytest.raises(HTTPException) as exc_info:
        get_auth_context(f"Bearer {token}")
    assert exc_info.value.detail["message"] == "Invalid JWT claims"


def test_expired_token_is_rejected():
    token = issue_jwt({"sub": "x", "role": "OPS"}, settings.jwt_secret, expires_in_s=-3600)

    with pytest.raises(JwtError):
        decode_jwt(token, settings.jwt_secret)


@pytest.mark.parametrize("role", ["OPS", "ADMIN"])
def test_backoffice_roles_pass(role):
    auth = AuthContext(user_id="u", role=role)
    assert require_backoffice(auth) is auth


def test_customer_role_is_forbidden():
    with pytest.raises(HTTPException) as exc_info:
        require_backoffice(AuthContext(user_id="u", role="CUSTOMER"))
    assert exc_info.value.status_code == 403
    assert exc_info.value.detail == {"message": "Insufficient role", "code": "forbidden"}
