"""JWT verification for tokens issued by the identity service.

User storage and login live outside this service; the engine only needs the
caller's id and role for audit attribution.
"""
from datetime import datetime, timedelta, timezone

from jose import jwt

from app.core.config import settings


def decode_token(token: str) -> dict:
    """Raises JWTError on invalid/expired token."""
    return jwt.decode(token, settings.JWT_SECRET, algorithms=[settings.JWT_ALGORITHM])


def create_access_token(subject: str, role: str, expires_minutes: int = 60) -> str:
    """Mint an access token with the identity service's claim layout (tooling and tests)."""
    expire = datetime.now(timezone.utc) + timedelta(minutes=expires_minutes)
    return jwt.encode(
        {"sub": subject, "role": role, "exp": expire, "type": "access"},
        settings.JWT_SECRET,
        algorithm=settings.JWT_ALGORITHM,
    )
