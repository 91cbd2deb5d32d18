"""
Auth Module - Dependencies
===========================
FastAPI dependencies for identifying the caller.
These are injected into route handlers via Depends().

NOTE: Tokens are issued by the identity provider; the user id is the `sub`
claim. No user table is kept here.
"""

from typing import Optional

from fastapi import Request, Depends

from common.exceptions import AuthenticationError
from common.security import decode_token, bearer_token


def get_current_user_id(request: Request) -> Optional[str]:
    """
    Identify the caller from the Authorization header (or auth_token cookie).
    Returns the user id string or None.
    """
    token = bearer_token(request.headers.get("authorization")) or request.cookies.get("auth_token")
    if not token:
        return None

    payload = decode_token(token)
    if not payload:
        return None

    user_id = payload.get("sub")
    if not user_id:
        return None
    return str(user_id)


def require_login(user_id=Depends(get_current_user_id)) -> str:
    """Require an authenticated caller. Raises 401 if not logged in."""
    if not user_id:
        raise AuthenticationError()
    return user_id
