"""
FastAPI Authentication Dependencies
This module provides FastAPI dependency functions that can be injected into route handlers
to automatically extract and validate access tokens from the Authorization header, and to
build the services a request works with.
Usage in endpoints:
    @router.get("/protected")
    def protected_route(user_id: str = Depends(get_current_user_id)):
        # user_id is automatically extracted from the access token
        return {"user": user_id}
Flow:
1. Client sends request with Authorization: Bearer <token> header
2. FastAPI calls get_current_user_id() dependency
3. extract_token() extracts token from header
4. AuthService.me() validates the JWT and loads the active user
5. Returns the user id to the route handler
"""

from typing import Optional

from fastapi import Depends, Header
from sqlalchemy.orm import Session

from app.core.errors import Unauthorized
from app.db.session import get_db
from app.services.arbitration import ArbitrationPolicy
from app.services.auth_service import AuthService
from app.services.escrow_lifecycle import EscrowLifecycle
from app.services.escrow_repository import SqlEscrowRepository


def extract_token(authorization: Optional[str]) -> str:
    """
    Extract the access token from an Authorization header.
    Supports both "Bearer <token>" and plain token formats.
    Args:
        authorization: The Authorization header value (e.g., "Bearer eyJ...")
    Returns:
        The extracted token string
    Raises:
        Unauthorized: If Authorization header is missing or empty
    """
    if not authorization:
        raise Unauthorized("Authorization header missing")

    authorization = authorization.strip()
    if authorization.lower().startswith("bearer "):
        token = authorization[7:].strip()
    else:
        token = authorization
    if not token:
        raise Unauthorized("Invalid authorization header")

    return token


def get_auth_service(db: Session = Depends(get_db)) -> AuthService:
    return AuthService(db)


def get_escrow_lifecycle(db: Session = Depends(get_db)) -> EscrowLifecycle:
    return EscrowLifecycle(SqlEscrowRepository(db), ArbitrationPolicy(db))


def get_current_user_id(
    authorization: Optional[str] = Header(None, alias="Authorization"),
    auth: AuthService = Depends(get_auth_service),
) -> str:
    """
    Returning the id of the active user owning the access token.
    """
    user = auth.me(extract_token(authorization))
    return str(user.id)
