import base64
import hashlib
import hmac
import json
import time
from typing import Any

from fastapi import HTTPException, status

ALGORITHM = "HS256"
CLOCK_SKEW_S = 30


class JwtError(Exception):
    pass


def _b64url_encode(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).decode().rstrip("=")


def _b64url_decode(data: str) -> bytes:
    padding = "=" * (-len(data) % 4)
    return base64.urlsafe_b64decode(data + padding)


def _sign(signing_input: bytes, secret: str) -> str:
    return _b64url_encode(hmac.new(secret.encode(), signing_input, hashlib.sha256).digest())


def bearer_token(authorization: str | None) -> str | None:
    """Token from an ``Authorization: Bearer <token>`` header, or None."""
    if not authorization:
        return None
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


def issue_jwt(payload: dict[str, Any], secret: str, expires_in_s: int = 3600) -> str:
    now = int(time.time())
    header = {"alg": ALGORITHM, "typ": "JWT"}
    claims = {"iat": now, **payload, "exp": now + expires_in_s}

    encoded_header = _b64url_encode(json.dumps(header, separators=(",", ":")).encode())
    encoded_payload = _b64url_encode(json.dumps(claims, separators=(",", ":")).encode())
    signing_input = f"{encoded_header}.{encoded_payload}".encode()
    return f"{encoded_header}.{encoded_payload}.{_sign(signing_input, secret)}"


def decode_jwt(token: str, secret: str) -> dict[str, Any]:
    try:
        encoded_header, encoded_payload, encoded_signature = token.split(".")
        header = json.loads(_b64url_decode(encoded_header))
    except ValueError as exc:
        raise JwtError("Malformed JWT") from exc

    if not isinstance(header, dict) or header.get("alg") != ALGORITHM:
        raise JwtError("Unsupported JWT algorithm")

    signing_input = f"{encoded_header}.{encoded_payload}".encode()
    if not hmac.compare_digest(_sign(signing_input, secret), encoded_signature):
        raise JwtError("Invalid JWT signature")

    try:
        payload = json.loads(_b64url_decode(encoded_payload))
    except ValueError as exc:
        raise JwtError("Malformed JWT") from exc
    if not isinstance(payload, dict):
        raise JwtError("Malformed JWT")

    now = int(time.time())
    exp = payload.get("exp")
    if not isinstance(exp, int) or exp < now - CLOCK_SKEW_S:
        raise JwtError("Expired JWT")
    nbf = payload.get("nbf")
    if isinstance(nbf, int) and nbf > now + CLOCK_SKEW_S:
        raise JwtError("JWT not yet valid")

    return payload


def jwt_http_exception(message: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail={"message": message, "code": "unauthorized"},
        headers={"WWW-Authenticate": "Bearer"},
    )
