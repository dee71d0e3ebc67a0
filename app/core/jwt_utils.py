"""
JWT Token Utilities

This module handles JSON Web Token (JWT) creation and verification for access tokens.
After a wallet signature is verified, AuthService asks TokenIssuer for a session and
TokenIssuer uses create_access_token() to mint the short-lived part of it.

Flow:
1. User verifies wallet signature -> create_access_token() generates JWT
2. User makes API request with JWT in Authorization header -> verify_token() validates it
3. Protected endpoints use get_current_user_id() from dependencies.py to extract the user id

The JWT contains:
- sub: The authenticated user id
- type: Always "access", so refresh tokens or foreign JWTs are never accepted
- iat: Issued at timestamp
- exp: Expiration timestamp (configurable via ACCESS_TOKEN_EXPIRE_SECONDS)
"""

from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

import jwt

from app.core.config import settings
from app.core.errors import TokenExpired, TokenInvalid


ACCESS_TOKEN_TYPE = "access"


def _encode_key() -> str:
    if not settings.ENCODE_KEY:
        raise RuntimeError("ENCODE_KEY is not configured")
    return settings.ENCODE_KEY


def create_access_token(user_id: str, extra_claims: Optional[Dict[str, Any]] = None) -> str:
    """
    Create a JWT access token for an authenticated user.

    Args:
        user_id: The id of the user the session belongs to
        extra_claims: Optional additional claims to include in the JWT payload

    Returns:
        A JWT token string that can be used in Authorization: Bearer <token> header

    Raises:
        ValueError: If user_id is empty
    """
    if not user_id:
        raise ValueError("user_id is required")

    now = datetime.now(timezone.utc)
    payload: Dict[str, Any] = {
        "sub": user_id,
        "type": ACCESS_TOKEN_TYPE,
        "iat": int(now.timestamp()),
        "exp": int((now + timedelta(seconds=settings.ACCESS_TOKEN_EXPIRE_SECONDS)).timestamp()),
    }
    if extra_claims:
        payload.update(extra_claims)

    return jwt.encode(payload, _encode_key(), algorithm=settings.ENCODE_ALGORITHM)


def verify_token(token: str) -> Dict[str, Any]:
    """
    Verify and decode a JWT access token.

    Checks token signature, expiration, and required payload fields.

    Args:
        token: The JWT token string from Authorization header

    Returns:
        Decoded JWT payload dictionary containing sub and other claims

    Raises:
        TokenExpired: If the token is past its exp claim
        TokenInvalid: If the token is missing, malformed, forged or not an access token
    """
    if not token:
        raise TokenInvalid("Missing token")

    try:
        payload = jwt.decode(token, _encode_key(), algorithms=[settings.ENCODE_ALGORITHM])
    except jwt.ExpiredSignatureError:
        raise TokenExpired()
    except jwt.InvalidTokenError:
        raise TokenInvalid()

    if not payload.get("sub") or payload.get("type") != ACCESS_TOKEN_TYPE:
        raise TokenInvalid("Invalid token payload")

    return payload
