"""
Caller identity from HS256 bearer tokens.
A caller is an administrator when its role claim is "admin" (top level, or under
public_metadata / metadata) or when its email claim is on the ADMIN_EMAILS allow-list.
"""
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

import jwt
from fastapi import Depends, Header

from orderline.config import settings
from orderline.errors import ForbiddenError, UnauthorizedError

ADMIN_ROLE = "admin"


@dataclass(frozen=True)
class Actor:
    subject: str
    role: str | None = None
    email: str | None = None

    @property
    def is_admin(self) -> bool:
        if self.role == ADMIN_ROLE:
            return True
        allowed = {e.lower() for e in settings.admin_emails}
        return bool(self.email) and self.email.lower() in allowed


def create_access_token(
    subject: str,
    role: str | None = None,
    email: str | None = None,
    expires_minutes: int = 60,
) -> str:
    now = datetime.now(timezone.utc)
    payload = {"sub": subject, "iat": now, "exp": now + timedelta(minutes=expires_minutes)}
    if role:
        payload["role"] = role
    if email:
        payload["email"] = email
    return jwt.encode(payload, settings.jwt_secret, algorithm=settings.jwt_alg)


def decode_access_token(token: str) -> dict | None:
    try:
        return jwt.decode(token, settings.jwt_secret, algorithms=[settings.jwt_alg])
    except jwt.PyJWTError:
        return None


def actor_from_claims(claims: dict) -> Actor | None:
    subject = claims.get("sub")
    if not subject:
        return None
    role = (
        claims.get("role")
        or (claims.get("public_metadata") or {}).get("role")
        or (claims.get("metadata") or {}).get("role")
    )
    return Actor(subject=str(subject), role=role, email=claims.get("email"))


def actor_from_token(token: str | None) -> Actor | None:
    if not token:
        return None
    claims = decode_access_token(token)
    return actor_from_claims(claims) if claims else None


def authorize_admin(actor: Actor | None) -> Actor:
    """401 when nobody is identified, 403 when the caller is not an administrator."""
    if actor is None:
        raise UnauthorizedError()
    if not actor.is_admin:
        raise ForbiddenError()
    return actor


async def current_actor(authorization: str | None = Header(default=None)) -> Actor | None:
    if not authorization:
        return None
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer":
        return None
    return actor_from_token(token.strip())


async def require_admin(actor: Actor | None = Depends(current_actor)) -> Actor:
    return authorize_admin(actor)
