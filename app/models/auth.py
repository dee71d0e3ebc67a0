import uuid

from sqlalchemy import BigInteger, Column, ForeignKey, String, Text

from app.db.base import Base


class AuthChallenge(Base):
    """Model for storing wallet authentication challenges.
    One live challenge per wallet address; issuing a new one replaces the old row.
    """

    __tablename__ = "auth_challenges"

    wallet_address = Column(String(255), primary_key=True)
    nonce = Column(String(64), nullable=False)
    message = Column(Text, nullable=False)
    issued_at = Column(BigInteger, nullable=False)
    expires_at = Column(BigInteger, nullable=False)


class RefreshToken(Base):
    """Model for refresh tokens. Only the sha256 of the opaque token is stored."""

    __tablename__ = "refresh_tokens"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id = Column(String(36), ForeignKey("users.id"), nullable=False, index=True)
    token_hash = Column(String(64), nullable=False, unique=True)
    issued_at = Column(BigInteger, nullable=False)
    expires_at = Column(BigInteger, nullable=False)
    revoked_at = Column(BigInteger, nullable=True)
    replaced_by_id = Column(String(36), nullable=True)
