"""
Request dependencies for FastAPI.

Resolves the authenticated caller from the bearer JWT and hands endpoints
the ledger runtime built at start-up.
"""

from fastapi import Depends
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from starlette.requests import HTTPConnection

from backend.app.core.exceptions import AuthenticationError
from backend.app.core.jwt import caller_id_from_token

# HTTP Bearer security scheme
security = HTTPBearer()


async def get_current_user(
    credentials: HTTPAuthorizationCredentials = Depends(security),
) -> int:
    """
    FastAPI dependency for JWT authentication.

    Args:
        credentials: HTTP Bearer token from request header

    Returns:
        The caller's user id (``user_id`` claim)

    Raises:
        AuthenticationError: 401 if the token is invalid, expired or has no user id
    """
    user_id = caller_id_from_token(credentials.credentials)
    if user_id is None:
        raise AuthenticationError("Could not validate credentials")
    return user_id


def get_ledger(connection: HTTPConnection):
    """The LedgerRuntime stored on the application by the lifespan handler."""
    return connection.app.state.ledger
