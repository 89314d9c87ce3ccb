from dataclasses import dataclass
from typing import Callable

from fastapi import Depends, Header, HTTPException, status

from app.auth.jwt import JwtError, bearer_token, decode_jwt, jwt_http_exception
from app.config import allowed_roles_list, settings

AllowedRole = str

BACKOFFICE_ROLES = ("OPS", "ADMIN")


@dataclass
class AuthContext:
    user_id: str
    role: AllowedRole
    source: str | None = None


def get_auth_context(authorization: str | None = Header(default=None)) -> AuthContext:
    if settings.enable_test_auth_bypass and not authorization:
        return AuthContext(user_id="test-ops", role="OPS", source="test")

    token = bearer_token(authorization)
    if token is None:
        raise jwt_http_exception("Missing bearer token")

    try:
        payload = decode_jwt(token, settings.jwt_secret)
    except JwtError as err:
        raise jwt_http_exception("Invalid JWT") from err

    role = payload.get("role")
    user_id = payload.get("sub")
    if role not in allowed_roles_list() or not isinstance(user_id, str):
        raise jwt_http_exception("Invalid JWT claims")

    return AuthContext(user_id=user_id, role=role, source=payload.get("source"))


def require_roles(*roles: str) -> Callable[[AuthContext], AuthContext]:
    def dependency(auth: AuthContext = Depends(get_auth_context)) -> AuthContext:
        if auth.role not in roles:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail={"message": "Insufficient role", "code": "forbidden"},
            )
        return auth

    return dependency


require_backoffice = require_roles(*BACKOFFICE_ROLES)
