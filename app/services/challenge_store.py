"""
ChallengeStore: single-use sign-in challenges, one live challenge per wallet.

issue() replaces whatever challenge the wallet had, so only the newest nonce can
ever be signed. consume() removes the challenge with a conditional DELETE keyed by
(wallet_address, nonce); when two requests race on the same challenge only one
of them sees a deleted row.
"""

import logging
import time
from typing import Callable

from sqlalchemy import delete
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.core.cardano_auth import generate_nonce, verify_signature
from app.core.config import settings
from app.core.errors import ChallengeExpired, ChallengeNotFound, Conflict, SignatureInvalid
from app.models.auth import AuthChallenge
from app.schemas.auth import ChallengeRecord

logger = logging.getLogger(__name__)

MESSAGE_TEMPLATE = (
    "Sign this message to log in to {project}.\n"
    "This request will not trigger a blockchain transaction or cost any fees.\n\n"
    "Wallet: {wallet_address}\n"
    "Nonce: {nonce}"
)

ISSUE_ATTEMPTS = 2

SignatureVerifier = Callable[[str, str, str, str], bool]


def _now() -> int:
    return int(time.time())


def build_message(wallet_address: str, nonce: str) -> str:
    return MESSAGE_TEMPLATE.format(
        project=settings.PROJECT_NAME, wallet_address=wallet_address, nonce=nonce
    )


class ChallengeStore:
    def __init__(
        self,
        db: Session,
        ttl_seconds: int | None = None,
        verifier: SignatureVerifier = verify_signature,
    ) -> None:
        self.db = db
        self.ttl_seconds = ttl_seconds or settings.NONCE_EXPIRY_SECONDS
        self.verifier = verifier

    def _new_challenge(self, wallet_address: str) -> AuthChallenge:
        nonce = generate_nonce()
        now = _now()
        return AuthChallenge(
            wallet_address=wallet_address,
            nonce=nonce,
            message=build_message(wallet_address, nonce),
            issued_at=now,
            expires_at=now + self.ttl_seconds,
        )

    def issue(self, wallet_address: str) -> ChallengeRecord:
        """
        Create a fresh challenge for the wallet, replacing any unconsumed one.

        Two concurrent requests for the same wallet may both find nothing to
        delete; the one whose insert collides retries once, replacing the
        winner's challenge.

        Raises:
            Conflict: the insert collided on every attempt
        """
        for _ in range(ISSUE_ATTEMPTS):
            challenge = self._new_challenge(wallet_address)
            self.db.execute(delete(AuthChallenge).where(AuthChallenge.wallet_address == wallet_address))
            self.db.add(challenge)
            try:
                self.db.commit()
            except IntegrityError:
                self.db.rollback()
                logger.warning("concurrent challenge issue for %s", wallet_address)
                continue

            logger.info("challenge issued for %s, expires at %s", wallet_address, challenge.expires_at)
            return ChallengeRecord.from_record(challenge)

        raise Conflict("Concurrent challenge request for this wallet, retry the request")

    def consume(self, wallet_address: str, signature: str, public_key: str) -> str:
        """
        Verify the signature against the wallet's live challenge and delete it.

        The delete is flushed but not committed: the caller commits it together
        with whatever the verified login produces.

        Returns:
            The verified wallet address

        Raises:
            ChallengeNotFound: no live challenge, or a concurrent request consumed it
            ChallengeExpired: the challenge is past its TTL (it is discarded)
            SignatureInvalid: the signature or public key does not match
        """
        challenge = self.db.get(AuthChallenge, wallet_address, populate_existing=True)
        if challenge is None:
            raise ChallengeNotFound()

        if _now() >= challenge.expires_at:
            self.db.delete(challenge)
            self.db.commit()
            raise ChallengeExpired()

        if not self.verifier(wallet_address, challenge.message, signature, public_key):
            raise SignatureInvalid()

        result = self.db.execute(
            delete(AuthChallenge)
            .where(
                AuthChallenge.wallet_address == wallet_address,
                AuthChallenge.nonce == challenge.nonce,
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            self.db.rollback()
            raise ChallengeNotFound()

        return wallet_address
