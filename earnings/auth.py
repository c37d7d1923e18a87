"""
Authentication dependencies for FastAPI routes.

Callers present `Authorization: Bearer <token>` where the token is a signed
JWT whose `sub` claim is the user id and whose optional `admin` claim grants
admin privileges. The verified identity is passed to handlers as a
request-scoped Principal; nothing about the caller is kept between requests.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional

import jwt
from fastapi import Depends, Header, HTTPException, Request, status

from .config import Settings
from .logging import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class Principal:
    uid: str
    is_admin: bool = False


def issue_token(settings: Settings, uid: str, is_admin: bool = False, expires_in: timedelta = timedelta(hours=1)) -> str:
    if not settings.auth_secret:
        raise ValueError("Cannot issue tokens without an auth secret")
    now = datetime.now(timezone.utc)
    payload = {"sub": uid, "admin": is_admin, "iat": now, "exp": now + expires_in}
    return jwt.encode(payload, settings.auth_secret, algorithm=settings.auth_algorithm)


def verify_token(settings: Settings, token: str) -> Principal:
    if not settings.auth_secret:
        logger.error("Auth secret is not configured, rejecting all bearer tokens")
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid or expired token")

    try:
        claims = jwt.decode(
            token,
            settings.auth_secret,
            algorithms=[settings.auth_algorithm],
            options={"require": ["sub", "exp"]},
        )
    except jwt.PyJWTError as e:
        logger.info("Rejected bearer token: %s", e)
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid or expired token")

    return Principal(uid=str(claims["sub"]), is_admin=claims.get("admin") is True)


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def require_user(
    authorization: Optional[str] = Header(None),
    settings: Settings = Depends(get_settings),
) -> Principal:
    if not authorization:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Missing Authorization header")

    parts = authorization.split()
    if len(parts) != 2 or parts[0].lower() != "bearer":
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid Authorization header format")

    return verify_token(settings, parts[1])


def require_admin(principal: Principal = Depends(require_user)) -> Principal:
    if not principal.is_admin:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Admin privileges required")
    return principal
