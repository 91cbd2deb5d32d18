"""
Plateful Checkout - Security Utilities
=======================================
JWT tokens, bearer extraction and HMAC signatures.

NOTE: Session issuing/refresh lives in the identity provider. This service
only verifies the token and reads the user id from `sub`.
"""

import hmac
import hashlib
import logging
from datetime import timedelta
from typing import Optional

from jose import jwt, JWTError

from config.settings import SECRET_KEY, ALGORITHM, ACCESS_TOKEN_EXPIRE_MINUTES
from common.helpers import now_utc

logger = logging.getLogger("plateful.security")


# ==========================================
# JWT Tokens
# ==========================================

def create_token(data: dict) -> str:
    """Create JWT token (used by tests and the seed script)."""
    to_encode = data.copy()
    to_encode["exp"] = now_utc() + timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES)
    return jwt.encode(to_encode, SECRET_KEY, algorithm=ALGORITHM)


def decode_token(token: str) -> Optional[dict]:
    """Decode a JWT token. Returns payload or None."""
    try:
        return jwt.decode(token, SECRET_KEY, algorithms=[ALGORITHM])
    except JWTError as e:
        logger.info(f"Rejected token: {e}")
        return None


def bearer_token(authorization: Optional[str]) -> Optional[str]:
    """Extract the token from an 'Authorization: Bearer <token>' header value."""
    if not authorization or not authorization.startswith("Bearer "):
        return None
    token = authorization[len("Bearer "):].strip()
    return token or None


# ==========================================
# HMAC
# ==========================================

def hmac_sha256_hex(secret: str, message: str) -> str:
    """HMAC-SHA256 of message with secret, hex encoded."""
    return hmac.new(secret.encode("utf-8"), message.encode("utf-8"), hashlib.sha256).hexdigest()


def signatures_match(expected: str, received: str) -> bool:
    """Constant-time comparison."""
    return hmac.compare_digest(expected, received)
