"""Admin access tokens (HS256 JWT) and admin-key comparison."""

import hmac
from datetime import datetime, timedelta, timezone

from jose import JWTError, jwt

from worksy.config import settings

ALGORITHM = "HS256"
ADMIN_ROLE = "admin"


def admin_key_matches(candidate: str | None) -> bool:
    """Constant-time check against the configured key. No key configured never matches."""
    if not settings.admin_key or not candidate:
        return False
    return hmac.compare_digest(candidate.encode(), settings.admin_key.encode())


def create_admin_token(subject: str = "instructor") -> str:
    expire = datetime.now(timezone.utc) + timedelta(minutes=settings.admin_token_expire_minutes)
    payload = {
        "sub": subject,
        "role": ADMIN_ROLE,
        "exp": expire,
        "type": "access",
    }
    return jwt.encode(payload, settings.secret_key, algorithm=ALGORITHM)


def decode_admin_token(token: str) -> dict:
    """Decode and validate an admin token. Raises JWTError on failure."""
    payload = jwt.decode(token, settings.secret_key, algorithms=[ALGORITHM])
    if payload.get("type") != "access" or payload.get("role") != ADMIN_ROLE:
        raise JWTError("Invalid token type")
    return payload
