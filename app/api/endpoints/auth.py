from enum import Enum
from typing import List

from fastapi import APIRouter, Depends, Header, Response, status

import app.schemas.auth as schemas
from app.core.dependencies import extract_token, get_auth_service
from app.schemas.user import UserResponse
from app.services.auth_service import AuthService

router = APIRouter()
group_tags: List[str | Enum] = ["Auth"]


@router.post(
    "/challenge",
    tags=group_tags,
    response_model=schemas.ChallengeResponse,
    status_code=status.HTTP_200_OK,
)
def request_challenge(
    body: schemas.ChallengeRequest, auth: AuthService = Depends(get_auth_service)
) -> schemas.ChallengeResponse:
    """Generate a single-use challenge for a wallet address.
    The wallet signs `message`; any earlier challenge of the wallet stops working.
    """
    return auth.request_challenge(body.wallet_address)


@router.post(
    "/verify",
    tags=group_tags,
    response_model=schemas.TokenResponse,
    status_code=status.HTTP_200_OK,
)
def verify_wallet(
    body: schemas.VerifyRequest, auth: AuthService = Depends(get_auth_service)
) -> schemas.TokenResponse:
    """Verify a signed challenge and return an access + refresh token pair."""
    return auth.verify(body.wallet_address, body.signature, body.public_key)


@router.post(
    "/refresh",
    tags=group_tags,
    response_model=schemas.TokenResponse,
    status_code=status.HTTP_200_OK,
)
def refresh_tokens(
    body: schemas.RefreshRequest, auth: AuthService = Depends(get_auth_service)
) -> schemas.TokenResponse:
    """Exchange a refresh token for a new pair. The presented token stops working."""
    return auth.refresh(body.refresh_token)


@router.post(
    "/logout",
    tags=group_tags,
    status_code=status.HTTP_204_NO_CONTENT,
)
def logout(body: schemas.RefreshRequest, auth: AuthService = Depends(get_auth_service)) -> Response:
    """Revoke a refresh token."""
    auth.logout(body.refresh_token)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get(
    "/me",
    tags=group_tags,
    response_model=UserResponse,
)
def me(
    authorization: str | None = Header(None, alias="Authorization"),
    auth: AuthService = Depends(get_auth_service),
) -> UserResponse:
    """Return the user owning the access token."""
    user = auth.me(extract_token(authorization))
    return UserResponse.from_record(user)
