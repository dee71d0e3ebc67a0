import uuid
from datetime import datetime, timezone

from sqlalchemy import (
    BigInteger,
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    event,
)
from sqlalchemy.orm import relationship

from app.db.base import Base


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _uuid() -> str:
    return str(uuid.uuid4())


class Escrow(Base):
    """Model for escrows table
    Example:
    {
        "id": "3f0c2b8e-8a0a-4a7e-9a55-2d5b8a7c1e11",
        "title": "Logo design",
        "description": "Three concepts, two revisions",
        "amount": 100.0,
        "asset": "ADA",
        "creator_id": "550e8400-e29b-41d4-a716-446655440000",
        "status": "pending",
        "funding_reference": null,
        "version": 1
    }
    """

    __tablename__ = "escrows"

    id = Column(String(36), primary_key=True, default=_uuid)
    title = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    amount = Column(Numeric(20, 7), nullable=False)
    asset = Column(String(64), nullable=False, default="ADA")
    creator_id = Column(String(36), ForeignKey("users.id"), nullable=False, index=True)
    status = Column(String(16), nullable=False, default="pending", index=True)
    funding_reference = Column(String(128), nullable=True)
    # bumped by every committed change, compared on commit
    version = Column(Integer, nullable=False, default=1)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utc_now)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=_utc_now)

    parties = relationship(
        "EscrowParty", order_by="EscrowParty.position", cascade="all, delete-orphan"
    )
    conditions = relationship(
        "EscrowCondition", order_by="EscrowCondition.position", cascade="all, delete-orphan"
    )
    events = relationship("EscrowEvent", order_by="EscrowEvent.sequence")


class EscrowParty(Base):
    """A user bound to an escrow with a role (buyer or seller)."""

    __tablename__ = "escrow_parties"
    __table_args__ = (UniqueConstraint("escrow_id", "user_id", name="uq_party_escrow_user"),)

    id = Column(String(36), primary_key=True, default=_uuid)
    escrow_id = Column(String(36), ForeignKey("escrows.id"), nullable=False, index=True)
    user_id = Column(String(36), ForeignKey("users.id"), nullable=False, index=True)
    role = Column(String(16), nullable=False)
    position = Column(Integer, nullable=False, default=0)


class EscrowCondition(Base):
    """A fulfilment criterion gating release."""

    __tablename__ = "escrow_conditions"

    id = Column(String(36), primary_key=True, default=_uuid)
    escrow_id = Column(String(36), ForeignKey("escrows.id"), nullable=False, index=True)
    position = Column(Integer, nullable=False, default=0)
    description = Column(Text, nullable=False)
    type = Column(String(16), nullable=False, default="manual")
    is_satisfied = Column(Boolean, nullable=False, default=False)
    satisfied_at = Column(DateTime(timezone=True), nullable=True)
    satisfied_by = Column(String(36), nullable=True)


class EscrowEvent(Base):
    """Append-only audit record of a status transition.
    Ordered by (escrow_id, sequence); digest chains each row to the previous one.
    """

    __tablename__ = "escrow_events"
    __table_args__ = (UniqueConstraint("escrow_id", "sequence", name="uq_event_escrow_sequence"),)

    id = Column(String(36), primary_key=True, default=_uuid)
    escrow_id = Column(String(36), ForeignKey("escrows.id"), nullable=False, index=True)
    sequence = Column(Integer, nullable=False)
    actor_id = Column(String(36), nullable=True)
    from_status = Column(String(16), nullable=True)
    to_status = Column(String(16), nullable=False)
    reason = Column(Text, nullable=True)
    created_at = Column(BigInteger, nullable=False)
    digest = Column(String(64), nullable=False)


@event.listens_for(EscrowEvent, "before_update")
@event.listens_for(EscrowEvent, "before_delete")
def _reject_event_mutation(mapper, connection, target) -> None:
    raise ValueError("escrow events are append-only")
