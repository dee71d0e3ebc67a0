"""
TokenIssuer: access tokens and rotating refresh tokens.

Access tokens are stateless JWTs (see app.core.jwt_utils). Refresh tokens are
opaque random strings; only their sha256 is stored. Every refresh rotates the
token: the old row is revoked with a conditional UPDATE, so a stolen refresh
token can be exchanged at most once. Presenting a token that was already
rotated revokes every live refresh token of its user.
"""

import hashlib
import logging
import secrets
import time

from sqlalchemy import update
from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.errors import TokenExpired, TokenInvalid, TokenRevoked, Unauthorized
from app.core.jwt_utils import create_access_token, verify_token
from app.models.auth import RefreshToken
from app.models.users import User
from app.schemas.auth import TokenResponse

logger = logging.getLogger(__name__)

REFRESH_TOKEN_BYTES = 48


def _now() -> int:
    return int(time.time())


def hash_token(token: str) -> str:
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


class TokenIssuer:
    def __init__(self, db: Session) -> None:
        self.db = db

    def issue_access_token(self, user_id: str) -> str:
        return create_access_token(user_id)

    def validate_access_token(self, token: str) -> str:
        """Return the user id carried by a valid access token."""
        payload = verify_token(token)
        return str(payload["sub"])

    def _add_refresh_token(self, user_id: str) -> tuple[str, RefreshToken]:
        token = secrets.token_urlsafe(REFRESH_TOKEN_BYTES)
        now = _now()
        row = RefreshToken(
            user_id=user_id,
            token_hash=hash_token(token),
            issued_at=now,
            expires_at=now + settings.REFRESH_TOKEN_EXPIRE_SECONDS,
        )
        self.db.add(row)
        self.db.flush()
        return token, row

    def issue_refresh_token(self, user_id: str) -> str:
        """Store a new refresh token. The caller commits."""
        token, _ = self._add_refresh_token(user_id)
        return token

    def issue_pair(self, user_id: str) -> TokenResponse:
        """Mint an access + refresh pair. The caller commits."""
        return TokenResponse(
            access_token=self.issue_access_token(user_id),
            refresh_token=self.issue_refresh_token(user_id),
            expires_in=settings.ACCESS_TOKEN_EXPIRE_SECONDS,
        )

    def _find(self, refresh_token: str) -> RefreshToken:
        if not refresh_token:
            raise TokenInvalid("Missing refresh token")
        row = (
            self.db.query(RefreshToken)
            .populate_existing()
            .filter(RefreshToken.token_hash == hash_token(refresh_token))
            .first()
        )
        if row is None:
            raise TokenInvalid("Unknown refresh token")
        return row

    def _revoke_all(self, user_id: str) -> int:
        result = self.db.execute(
            update(RefreshToken)
            .where(RefreshToken.user_id == user_id, RefreshToken.revoked_at.is_(None))
            .values(revoked_at=_now())
            .execution_options(synchronize_session=False)
        )
        return result.rowcount

    def rotate_refresh(self, refresh_token: str) -> TokenResponse:
        """
        Exchange a refresh token for a new access + refresh pair.

        Raises:
            TokenInvalid: unknown token
            TokenRevoked: token already used or logged out
            TokenExpired: token past its expiry
            Unauthorized: the user was deactivated or removed
        """
        row = self._find(refresh_token)

        if row.revoked_at is not None:
            if row.replaced_by_id is not None:
                revoked = self._revoke_all(row.user_id)
                self.db.commit()
                logger.warning(
                    "rotated refresh token reused for user %s, revoked %d live sessions",
                    row.user_id,
                    revoked,
                )
            raise TokenRevoked()

        if _now() >= row.expires_at:
            raise TokenExpired()

        user = self.db.get(User, row.user_id)
        if user is None or not user.is_active:
            logger.info("refresh refused for inactive user %s", row.user_id)
            raise Unauthorized("User not found or inactive")

        user_id = row.user_id
        token, new_row = self._add_refresh_token(user_id)
        result = self.db.execute(
            update(RefreshToken)
            .where(RefreshToken.id == row.id, RefreshToken.revoked_at.is_(None))
            .values(revoked_at=_now(), replaced_by_id=new_row.id)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            # a concurrent rotation of the same token won
            self.db.rollback()
            raise TokenRevoked()

        self.db.commit()
        return TokenResponse(
            access_token=self.issue_access_token(user_id),
            refresh_token=token,
            expires_in=settings.ACCESS_TOKEN_EXPIRE_SECONDS,
        )

    def revoke(self, refresh_token: str) -> None:
        """Revoke a refresh token (logout). Revoking twice is a no-op."""
        row = self._find(refresh_token)
        if row.revoked_at is None:
            row.revoked_at = _now()
            self.db.commit()
