import uuid
from dataclasses import dataclass
from typing import Annotated

from fastapi import Depends, HTTPException, status
from fastapi.security import OAuth2PasswordBearer
from jose import JWTError

from app.core.security import decode_token

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/v1/auth/login", auto_error=True)


@dataclass(frozen=True)
class Actor:
    """Authenticated caller, passed explicitly into every mutating service call."""

    id: uuid.UUID
    role: str


def actor_from_token(token: str) -> Actor:
    """Decode a bearer token into an Actor. Raises JWTError / ValueError on bad tokens."""
    payload = decode_token(token)
    if payload.get("type") != "access":
        raise JWTError("not an access token")
    user_id = payload.get("sub")
    if not user_id:
        raise JWTError("token has no subject")
    return Actor(id=uuid.UUID(user_id), role=payload.get("role") or "AGENT")


async def get_current_actor(
    token: Annotated[str, Depends(oauth2_scheme)],
) -> Actor:
    """Validate JWT and return the calling Actor."""
    credentials_exc = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )
    try:
        return actor_from_token(token)
    except (JWTError, ValueError):
        raise credentials_exc


def require_role(*roles: str):
    """Dependency factory - raises 403 if actor role not in allowed list."""
    async def check(actor: Actor = Depends(get_current_actor)) -> Actor:
        if actor.role not in roles:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Role '{actor.role}' is not permitted for this action.",
            )
        return actor
    return check
