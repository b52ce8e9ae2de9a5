"""
Identity guard.

Requests carry a bearer JWT either in the Authorization header or in the
auth cookie; the payload's "id" is resolved against the users table. Every
failure mode surfaces as Unauthorized so callers cannot tell a bad token
from a deleted account.
"""
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional

import jwt
from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from socialhub.config import settings
from socialhub.database import get_db
from socialhub.errors import Unauthorized
from socialhub.models import User

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Identity:
    id: str
    email: str
    name: str
    role: str
    image: Optional[str] = None

    @classmethod
    def from_user(cls, user: User) -> "Identity":
        return cls(
            id=user.user_id,
            email=user.email,
            name=user.name,
            role=user.role,
            image=user.image,
        )


def create_access_token(user_id: str, expires_in: Optional[timedelta] = None) -> str:
    expire = datetime.now(timezone.utc) + (expires_in or timedelta(days=settings.jwt_expire_days))
    return jwt.encode(
        {"id": user_id, "exp": expire},
        settings.jwt_secret,
        algorithm=settings.jwt_algorithm,
    )


def decode_access_token(token: str) -> str:
    """Return the user id carried by ``token`` or raise Unauthorized."""
    try:
        payload = jwt.decode(token, settings.jwt_secret, algorithms=[settings.jwt_algorithm])
    except jwt.PyJWTError as exc:
        logger.debug("Rejected token: %s", exc)
        raise Unauthorized() from exc

    user_id = payload.get("id")
    if not user_id:
        raise Unauthorized()
    return user_id


def _token_from_request(request: Request) -> Optional[str]:
    cookie = request.cookies.get(settings.auth_cookie_name)
    if cookie:
        return cookie
    header = request.headers.get("authorization", "")
    scheme, _, token = header.partition(" ")
    if scheme.lower() == "bearer" and token:
        return token
    return None


async def get_current_user(
    request: Request,
    db: AsyncSession = Depends(get_db),
) -> Identity:
    """FastAPI dependency resolving the caller's identity."""
    token = _token_from_request(request)
    if not token:
        raise Unauthorized()

    user = await db.get(User, decode_access_token(token))
    if user is None:
        raise Unauthorized()
    return Identity.from_user(user)
