# src/PACE/auth/deps.py
"""
Principal extraction.

Authentication itself (login, password hashing, token issuance) lives in
another service; here we only verify the bearer token it issued and turn its
claims into a ``Principal`` for the Scope Resolver.
"""
from __future__ import annotations

import os

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import ExpiredSignatureError, JWTError, jwt

from PACE.app_logger import get_logger
from PACE.core.config import settings
from PACE.services.scope import Principal

log = get_logger("auth")

_bearer = HTTPBearer(auto_error=False)

# ------------------------------------------------------------------------------
# Dev / local auth bypass
# ------------------------------------------------------------------------------
DISABLE_AUTH = os.getenv("PACE_DISABLE_AUTH", "0").lower() in ("1", "true", "yes")

if DISABLE_AUTH:
    log.warning(
        "AUTH is DISABLED for this process (PACE_DISABLE_AUTH=%r)",
        os.getenv("PACE_DISABLE_AUTH"),
    )


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


def decode_token(token: str) -> dict:
    if not settings.JWT_SECRET:
        log.error("JWT_SECRET is not configured; rejecting bearer token")
        raise _unauthorized("Token verification is not configured")
    try:
        return jwt.decode(token, settings.JWT_SECRET, algorithms=settings.jwt_algorithms)
    except ExpiredSignatureError:
        raise _unauthorized("Token expired") from None
    except JWTError as e:
        log.debug("token rejected: %s", e)
        raise _unauthorized("Invalid token") from None


async def get_principal(
    creds: HTTPAuthorizationCredentials | None = Depends(_bearer),
) -> Principal:
    if DISABLE_AUTH:
        return Principal.system()
    if creds is None or creds.scheme.lower() != "bearer" or not creds.credentials:
        raise _unauthorized("Not authenticated")

    claims = decode_token(creds.credentials)
    try:
        return Principal.from_claims(claims)
    except ValueError:
        raise _unauthorized("Malformed principal claims") from None