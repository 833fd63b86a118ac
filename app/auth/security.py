"""Password hashing (bcrypt) and signed access tokens (JWT)."""

from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

import bcrypt
from jose import JWTError, jwt

from app.core.config import settings

_ENCODING = "utf-8"


def hash_password(password: str) -> str:
    return bcrypt.hashpw(password.encode(_ENCODING), bcrypt.gensalt()).decode(_ENCODING)


def verify_password(password: str, password_hash: str) -> bool:
    try:
        return bcrypt.checkpw(password.encode(_ENCODING), password_hash.encode(_ENCODING))
    except ValueError:
        # Malformed stored hash
        return False


def create_access_token(user_id: int, role: str, expires_minutes: Optional[int] = None) -> str:
    """Signed token carrying sub/user_id/role, valid for ACCESS_TOKEN_EXPIRE_MINUTES by default."""
    lifetime = timedelta(minutes=expires_minutes or settings.access_token_expire_minutes)
    claims = {
        "sub": str(user_id),
        "user_id": str(user_id),
        "role": role,
        "exp": datetime.now(timezone.utc) + lifetime,
    }
    return jwt.encode(claims, settings.jwt_secret_key, algorithm=settings.jwt_algorithm)


def decode_access_token(token: str) -> Dict[str, Any]:
    """Decode and validate a token. Raises jose.JWTError when invalid or expired."""
    return jwt.decode(token, settings.jwt_secret_key, algorithms=[settings.jwt_algorithm])


def token_user_id(token: Optional[str]) -> Optional[int]:
    """User id of a valid token, or None for a missing, expired or malformed one."""
    if not token:
        return None
    try:
        claims = decode_access_token(token)
    except JWTError:
        return None
    try:
        return int(claims.get("user_id") or claims.get("sub"))
    except (TypeError, ValueError):
        return None
