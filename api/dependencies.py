"""
FastAPI dependencies (shared across routes).

Session handling belongs to the surrounding application; here the
current user is whatever ``user_id`` its signed bearer token carries.
Tokens are issued elsewhere as base64-encoded JSON payloads
(``user_id``, ``exp``) signed with HMAC-SHA256 using ``config.jwt_secret``.
"""

from __future__ import annotations

import hashlib
import hmac
import json
import time
from base64 import b64decode
from typing import AsyncGenerator

from fastapi import Depends, Header, HTTPException, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from config.settings import config
from database.session import get_db_session
from plugins.scheduler import PluginSyncScheduler


def _sign(raw: bytes) -> str:
    return hmac.new(config.jwt_secret.encode(), raw, hashlib.sha256).hexdigest()


def verify_token(token: str) -> str:
    """
    Verify token and return ``user_id``.

    Raises ``HTTPException(401)`` on invalid or expired tokens.
    """
    try:
        encoded, sig = token.split(".", 1)
        raw = b64decode(encoded)
        if not hmac.compare_digest(sig, _sign(raw)):
            raise ValueError("bad signature")
        payload = json.loads(raw)
        if payload.get("exp", 0) < time.time():
            raise ValueError("token expired")
        return payload["user_id"]
    except (ValueError, KeyError, TypeError) as exc:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=f"Invalid or expired token: {exc}",
        )


async def db_session(session: AsyncSession = Depends(get_db_session)) -> AsyncGenerator[AsyncSession, None]:
    """Re-export so routes import from a single place."""
    yield session


async def get_current_user_id(
    authorization: str = Header(..., alias="Authorization"),
) -> str:
    """
    Extract and verify the Bearer token from the Authorization header.
    Returns the authenticated user_id.
    """
    if not authorization.startswith("Bearer "):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing Bearer token",
        )
    return verify_token(authorization[7:])


def get_scheduler(request: Request) -> PluginSyncScheduler:
    return request.app.state.scheduler
