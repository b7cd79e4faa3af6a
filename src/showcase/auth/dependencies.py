"""FastAPI authentication dependencies."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone

import jwt
import structlog
from fastapi import Depends, HTTPException, Security
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from showcase.auth.jwt import IdentityClaims, claims_from_payload, verify_token
from showcase.database import get_session
from showcase.db.models import UserProfile
from showcase.db.upsert import insert_for

logger = structlog.get_logger()

_bearer = HTTPBearer(auto_error=False)


@dataclass(frozen=True)
class CurrentUser:
    uid: str
    display_name: str
    photo_url: str | None = None
    email: str | None = None
    role: str = "user"

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"


async def sync_profile(db: AsyncSession, claims: IdentityClaims) -> CurrentUser:
    """Create or refresh the profile cache row from token claims."""
    now = datetime.now(timezone.utc)
    table = UserProfile.__table__
    stmt = insert_for(db, table).values(
        id=claims.uid,
        display_name=claims.display_name,
        photo_url=claims.photo_url,
        email=claims.email,
        role=claims.role,
        is_active=True,
        created_at=now,
        last_seen=now,
    )
    changes: dict[str, object] = {"role": claims.role, "last_seen": now}
    if claims.display_name:
        changes["display_name"] = claims.display_name
    if claims.photo_url:
        changes["photo_url"] = claims.photo_url
    if claims.email:
        changes["email"] = claims.email
    await db.execute(stmt.on_conflict_do_update(index_elements=[table.c.id], set_=changes))
    await db.commit()

    return CurrentUser(
        uid=claims.uid,
        display_name=claims.display_name or "Unknown User",
        photo_url=claims.photo_url,
        email=claims.email,
        role=claims.role,
    )


async def authenticate_token(db: AsyncSession, token: str) -> CurrentUser:
    """Verify a raw token and return the signed-in user.

    Raises:
        jwt.InvalidTokenError: On any verification failure.
    """
    claims = claims_from_payload(verify_token(token))
    return await sync_profile(db, claims)


async def get_current_user(
    credentials: HTTPAuthorizationCredentials | None = Security(_bearer),
    db: AsyncSession = Depends(get_session),
) -> CurrentUser:
    """
    Verify the bearer token and return the signed-in user.

    Raises 401 when the token is missing or invalid.
    """
    if credentials is None:
        raise HTTPException(status_code=401, detail="unauthenticated", headers={"WWW-Authenticate": "Bearer"})
    try:
        return await authenticate_token(db, credentials.credentials)
    except jwt.InvalidTokenError as e:
        logger.info("auth_rejected", reason=str(e))
        raise HTTPException(
            status_code=401, detail="unauthenticated", headers={"WWW-Authenticate": "Bearer"},
        ) from e


async def require_admin(user: CurrentUser = Depends(get_current_user)) -> CurrentUser:
    """Same as get_current_user but additionally requires the admin role."""
    if not user.is_admin:
        raise HTTPException(status_code=403, detail="Admin access required")
    return user
