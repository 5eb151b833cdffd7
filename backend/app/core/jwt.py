"""
JWT helpers for caller identity.

Tokens are issued by the surrounding identity service; the ledger only
verifies them and reads the ``user_id`` claim. ``create_access_token``
exists for local tooling and tests that need a signed caller identity.
"""

from datetime import datetime, timedelta
from typing import Optional, Dict, Any
from jose import JWTError, jwt
from backend.app.core.config import settings


def create_access_token(data: Dict[str, Any], expires_delta: Optional[timedelta] = None) -> str:
    """
    Sign a caller identity.

    Args:
        data: Claims to encode (must include ``user_id``)
        expires_delta: Optional custom expiration time

    Returns:
        Encoded JWT token string
    """
    to_encode = data.copy()
    expire = datetime.utcnow() + (expires_delta or timedelta(minutes=settings.access_token_expire_minutes))
    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, settings.secret_key, algorithm=settings.algorithm)


def decode_access_token(token: str) -> Optional[Dict[str, Any]]:
    """Return the verified claims, or None when the token is invalid or expired."""
    try:
        return jwt.decode(token, settings.secret_key, algorithms=[settings.algorithm])
    except JWTError:
        return None


def caller_id_from_token(token: str) -> Optional[int]:
    """Extract the integer ``user_id`` claim from a valid token."""
    payload = decode_access_token(token)
    if not payload:
        return None
    user_id = payload.get("user_id")
    try:
        return int(user_id) if user_id is not None else None
    except (TypeError, ValueError):
        return None
