"""
AuthService: passwordless wallet login.

    Unauthenticated --request_challenge--> ChallengeIssued --verify--> Verified(session)

verify() commits the consumed challenge, the user upsert and the new refresh
token in one transaction, so a failed login never leaves a half-created session.
"""

import logging
from datetime import datetime, timezone

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.core.cardano_auth import is_valid_address, normalize_address
from app.core.config import settings
from app.core.errors import Conflict, Unauthorized, ValidationError
from app.models.users import User
from app.schemas.auth import ChallengeResponse, TokenResponse
from app.services.challenge_store import ChallengeStore
from app.services.token_issuer import TokenIssuer

logger = logging.getLogger(__name__)


class AuthService:
    def __init__(
        self,
        db: Session,
        challenge_store: ChallengeStore | None = None,
        token_issuer: TokenIssuer | None = None,
    ) -> None:
        self.db = db
        self.challenge_store = challenge_store or ChallengeStore(db)
        self.token_issuer = token_issuer or TokenIssuer(db)

    def request_challenge(self, wallet_address: str) -> ChallengeResponse:
        address = (wallet_address or "").strip()
        if not is_valid_address(address, settings.CARDANO_NETWORK):
            raise ValidationError("Invalid wallet address")

        challenge = self.challenge_store.issue(normalize_address(address))
        return ChallengeResponse(
            nonce=challenge.nonce, message=challenge.message, expires_at=challenge.expires_at
        )

    def verify(self, wallet_address: str, signature: str, public_key: str) -> TokenResponse:
        """
        Verify a signed challenge and open a session.

        Raises:
            Unauthorized: (or a subclass) for any verification failure
        """
        address = (wallet_address or "").strip()
        if not is_valid_address(address, settings.CARDANO_NETWORK):
            raise Unauthorized("Invalid wallet address")
        address = normalize_address(address)

        try:
            self.challenge_store.consume(address, signature, public_key)
        except Unauthorized as exc:
            logger.info("wallet verification failed for %s: %s", address, exc.kind)
            raise

        user = self._upsert_user(address)
        if not user.is_active:
            self.db.rollback()
            raise Unauthorized("User is inactive")

        tokens = self.token_issuer.issue_pair(user.id)
        self.db.commit()
        logger.info("user %s logged in with %s", user.id, address)
        return tokens

    def _upsert_user(self, wallet_address: str) -> User:
        now = datetime.now(timezone.utc)
        user = self.db.query(User).filter(User.wallet_address == wallet_address).first()
        if user is not None:
            user.last_login_at = now
            return user

        user = User(wallet_address=wallet_address, created_at=now, last_login_at=now)
        self.db.add(user)
        try:
            self.db.flush()
        except IntegrityError:
            # another first login for the same wallet created the row; the
            # rollback restores the challenge so the same signature can be retried
            self.db.rollback()
            raise Conflict("Concurrent login for this wallet, retry the request")
        logger.info("created user %s for wallet %s", user.id, wallet_address)
        return user

    def get_active_user(self, user_id: str) -> User:
        user = self.db.get(User, user_id)
        if user is None or not user.is_active:
            raise Unauthorized("User not found or inactive")
        return user

    def me(self, access_token: str) -> User:
        user_id = self.token_issuer.validate_access_token(access_token)
        return self.get_active_user(user_id)

    def refresh(self, refresh_token: str) -> TokenResponse:
        return self.token_issuer.rotate_refresh(refresh_token)

    def logout(self, refresh_token: str) -> None:
        self.token_issuer.revoke(refresh_token)
