import secrets
import uuid
from datetime import datetime, timedelta, timezone
from typing import Optional

import jwt
from fastapi import Depends, HTTPException, Query, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials

from ..config import settings


ROLE_CLIENT = "client"
ROLE_ADMIN = "admin"
ROLES = (ROLE_CLIENT, ROLE_ADMIN)

http_bearer = HTTPBearer(auto_error=False)


def role_for_password(password: str, portal_settings: dict) -> Optional[str]:
    """Match a login password against the two shared role passwords. Empty never matches."""
    if not password:
        return None
    admin_pw = portal_settings.get("adminPassword") or ""
    client_pw = portal_settings.get("clientPassword") or ""
    if admin_pw and secrets.compare_digest(password, admin_pw):
        return ROLE_ADMIN
    if client_pw and secrets.compare_digest(password, client_pw):
        return ROLE_CLIENT
    return None


def create_role_token(role: str) -> str:
    now = datetime.now(tz=timezone.utc)
    payload = {
        "sub": role,
        "role": role,
        "iat": int(now.timestamp()),
        "exp": int((now + timedelta(seconds=settings.jwt_ttl_seconds)).timestamp()),
        "jti": str(uuid.uuid4()),
    }
    return jwt.encode(payload, settings.jwt_secret, algorithm=settings.jwt_algorithm)


def decode_token(token: str) -> dict:
    try:
        return jwt.decode(token, settings.jwt_secret, algorithms=[settings.jwt_algorithm])
    except jwt.ExpiredSignatureError:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Token expired")
    except jwt.InvalidTokenError:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token")


def role_from_token(token: str) -> str:
    role = decode_token(token).get("role")
    if role not in ROLES:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid role")
    return role


def get_current_role(
    creds: Optional[HTTPAuthorizationCredentials] = Depends(http_bearer),
    token: Optional[str] = Query(default=None),
) -> str:
    # EventSource and WebSocket clients cannot set headers, so ?token= is accepted too
    raw = creds.credentials if creds is not None else token
    if not raw:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized")
    return role_from_token(raw)


def require_roles(*allowed: str):
    def _dep(role: str = Depends(get_current_role)) -> str:
        if role not in allowed:
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Forbidden")
        return role

    return _dep


# Admins can do everything a client can
require_client = require_roles(ROLE_CLIENT, ROLE_ADMIN)
require_admin = require_roles(ROLE_ADMIN)
