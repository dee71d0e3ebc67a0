import logging
from typing import Iterable, Optional, Set

from sqlalchemy.orm import Session

from app.core.cardano_auth import normalize_address
from app.core.config import settings
from app.models.users import User

logger = logging.getLogger(__name__)


def normalize_wallets(wallets: Iterable[str]) -> Set[str]:
    """Canonical bech32 form of each wallet, the form users are stored under. Invalid entries are skipped."""
    normalized = set()
    for wallet in wallets:
        try:
            normalized.add(normalize_address(wallet))
        except ValueError:
            logger.warning("ignoring invalid arbitrator wallet %r", wallet)
    return normalized


class ArbitrationPolicy:
    """Decides which users may resolve disputes.

    Eligibility is configuration (ARBITRATOR_WALLETS), never derived from the
    parties of an escrow.
    """

    def __init__(self, db: Session, wallets: Optional[Set[str]] = None) -> None:
        self.db = db
        self._wallets = normalize_wallets(wallets) if wallets is not None else None

    @property
    def wallets(self) -> Set[str]:
        if self._wallets is not None:
            return self._wallets
        return normalize_wallets(settings.get_arbitrator_wallets())

    def is_arbitrator(self, user_id: str) -> bool:
        wallets = self.wallets
        if not wallets:
            return False
        user = self.db.get(User, user_id)
        return user is not None and user.is_active and user.wallet_address in wallets
