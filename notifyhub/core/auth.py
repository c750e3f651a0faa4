"""
Authentication for the notifyhub API.

Users are identified by a bearer JWT whose ``sub`` claim is their user id.
Token issuance lives with the host application; `create_jwt` exists for
service-to-service calls and tests.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timedelta, timezone

import jwt
import structlog
from fastapi import Depends, HTTPException
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from notifyhub.core.config import get_settings
from notifyhub.core.database import get_session
from notifyhub.models.user import User

log = structlog.get_logger()
settings = get_settings()

bearer = HTTPBearer(auto_error=False)


# ---------------------------------------------------------------------------
# JWT
# ---------------------------------------------------------------------------

def create_jwt(user_id: uuid.UUID, *, expires_delta: timedelta | None = None) -> str:
    """Create a signed JWT for a user."""
    now = datetime.now(timezone.utc)
    exp = now + (expires_delta or timedelta(minutes=settings.jwt_expire_minutes))
    payload = {
        "sub": str(user_id),
        "iat": now,
        "exp": exp,
        "jti": str(uuid.uuid4()),
    }
    return jwt.encode(payload, settings.secret_key, algorithm=settings.jwt_algorithm)


def decode_jwt(token: str) -> dict:
    """Decode and verify a JWT. Raises jwt.PyJWTError on failure."""
    return jwt.decode(token, settings.secret_key, algorithms=[settings.jwt_algorithm])


# ---------------------------------------------------------------------------
# Dependencies
# ---------------------------------------------------------------------------

async def get_current_user(
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer),
    session: AsyncSession = Depends(get_session),
) -> User:
    """Resolve the bearer token to an existing user, or 401."""
    if credentials is None:
        raise HTTPException(status_code=401, detail="Not authenticated")

    try:
        payload = decode_jwt(credentials.credentials)
        user_id = uuid.UUID(payload["sub"])
    except (jwt.PyJWTError, KeyError, ValueError):
        raise HTTPException(status_code=401, detail="Invalid or expired token")

    user = await session.get(User, user_id)
    if user is None:
        log.warning("auth.unknown_user", user_id=str(user_id))
        raise HTTPException(status_code=401, detail="Invalid or expired token")
    return user
