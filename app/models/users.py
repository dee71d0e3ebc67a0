import uuid
from datetime import datetime, timezone

from sqlalchemy import Boolean, Column, DateTime, String

from app.db.base import Base


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class User(Base):
    """Model for users table
    Example:
    {
        "id": "550e8400-e29b-41d4-a716-446655440000",
        "wallet_address": "addr1qxy99g3k...useraddress",
        "is_active": true,
        "created_at": "2024-01-01T12:00:00",
        "last_login_at": "2024-01-01T12:00:00"
    }
    """

    __tablename__ = "users"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    wallet_address = Column(String(255), nullable=False, unique=True)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utc_now)
    last_login_at = Column(DateTime(timezone=True), nullable=False, default=_utc_now)
