from dataclasses import dataclass
from uuid import UUID

import jwt
from fastapi import HTTPException, Request

from overtime.core.config import settings


@dataclass(frozen=True)
class Actor:
    """Verified caller identity handed to the engine by the API layer."""

    actor_id: str
    role: str
    department_id: UUID | None = None


def decode_actor_token(token: str) -> Actor:
    """Decode an access token issued by the identity service.

    Raises ``jwt.InvalidTokenError`` (or a subclass) for bad signatures, expired
    tokens and missing claims, and ``ValueError`` for a malformed department id.
    """
    payload = jwt.decode(
        token,
        settings.JWT_SECRET,
        algorithms=[settings.JWT_ALGORITHM],
        options={"require": ["sub", "role"]},
    )
    if payload.get("type", "access") != "access":
        raise jwt.InvalidTokenError("Not an access token")
    department = payload.get("department_id")
    return Actor(
        actor_id=str(payload["sub"]),
        role=str(payload["role"]).lower(),
        department_id=UUID(str(department)) if department else None,
    )


def get_current_actor(request: Request) -> Actor:
    """Resolve the actor from the ``Authorization: Bearer <token>`` header."""
    auth_header = request.headers.get("Authorization")
    if not auth_header:
        raise HTTPException(status_code=401, detail="Authorization header is required")

    if not auth_header.startswith("Bearer "):
        raise HTTPException(status_code=401, detail="Invalid authorization header format")

    token = auth_header[7:]
    if not token:
        raise HTTPException(status_code=401, detail="Access token is required")

    try:
        return decode_actor_token(token)
    except jwt.ExpiredSignatureError:
        raise HTTPException(status_code=401, detail="Access token has expired") from None
    except (jwt.InvalidTokenError, KeyError, ValueError):
        raise HTTPException(status_code=401, detail="Invalid access token") from None
