"""Shared-secret bearer authentication dependencies."""

import hmac
from typing import Optional

from fastapi import Header, HTTPException

from app.config import settings


def bearer_token(authorization: Optional[str]) -> str:
    if authorization and authorization.startswith("Bearer "):
        return authorization[len("Bearer "):]
    return ""


def require_access_code(authorization: Optional[str] = Header(default=None)) -> None:
    """Protects admin endpoints with ACCESS_CODE; 503 when it is not configured."""
    expected = settings.ACCESS_CODE
    if not expected:
        raise HTTPException(status_code=503, detail="Not configured")
    if not hmac.compare_digest(bearer_token(authorization), expected):
        raise HTTPException(status_code=401, detail="Unauthorized")


def require_internal_key(authorization: Optional[str] = Header(default=None)) -> None:
    """Protects internal endpoints with INTERNAL_API_KEY; hidden (404) when it is not configured."""
    expected = settings.INTERNAL_API_KEY
    if not expected:
        raise HTTPException(status_code=404, detail="Not Found")
    if not hmac.compare_digest(bearer_token(authorization), expected):
        raise HTTPException(
            status_code=401,
            detail="Unauthorized",
            headers={"WWW-Authenticate": 'Bearer realm="weather-card-internal"'},
        )
