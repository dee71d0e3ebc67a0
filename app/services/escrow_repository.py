"""
Escrow persistence.

EscrowLifecycle only talks to the EscrowRepository interface and exchanges plain
records (app.schemas.escrow). SqlEscrowRepository is the SQLAlchemy
implementation.

Every write is a conditional UPDATE on (id, status, version): if another request
changed the escrow after it was loaded, nothing is written and Conflict is raised.
Status changes and their event row are committed in the same transaction.
"""

import logging
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy import or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.core.errors import Conflict
from app.models.escrow import Escrow, EscrowCondition, EscrowEvent, EscrowParty
from app.models.users import User
from app.schemas.escrow import (
    ConditionRecord,
    EscrowPage,
    EscrowRecord,
    EscrowStatus,
    EventRecord,
    PartyRecord,
)

logger = logging.getLogger(__name__)


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class EscrowRepository(ABC):
    @abstractmethod
    def missing_users(self, user_ids: Iterable[str]) -> List[str]:
        """Return the ids among user_ids that do not exist."""

    @abstractmethod
    def create_escrow(
        self,
        escrow: EscrowRecord,
        event: EventRecord,
    ) -> EscrowRecord:
        """Insert an escrow with its parties, conditions and creation event."""

    @abstractmethod
    def load_escrow(self, escrow_id: str) -> Optional[EscrowRecord]:
        """Read the current state of an escrow, or None."""

    @abstractmethod
    def save_transition(
        self,
        escrow_id: str,
        expected_status: EscrowStatus,
        expected_version: int,
        to_status: EscrowStatus,
        event: EventRecord,
        changes: Optional[Dict[str, Any]] = None,
    ) -> EscrowRecord:
        """Apply a status change and append its event atomically, or raise Conflict."""

    @abstractmethod
    def save_details(
        self,
        escrow_id: str,
        expected_status: EscrowStatus,
        expected_version: int,
        changes: Dict[str, Any],
        conditions: Optional[List[ConditionRecord]] = None,
    ) -> EscrowRecord:
        """Change descriptive fields (and optionally replace conditions), or raise Conflict."""

    @abstractmethod
    def mark_condition_satisfied(
        self,
        escrow_id: str,
        expected_status: EscrowStatus,
        expected_version: int,
        condition_id: str,
        actor_id: str,
    ) -> EscrowRecord:
        """Flag one condition as satisfied, or raise Conflict."""

    @abstractmethod
    def list_for_user(
        self,
        user_id: str,
        page: int,
        limit: int,
        status: Optional[EscrowStatus] = None,
    ) -> EscrowPage:
        """Escrows where the user is creator or party, newest first."""

    @abstractmethod
    def list_events(self, escrow_id: str) -> List[EventRecord]:
        """The event log of an escrow in sequence order."""


def _event_row(event: EventRecord) -> EscrowEvent:
    return EscrowEvent(
        escrow_id=event.escrow_id,
        sequence=event.sequence,
        actor_id=event.actor_id,
        from_status=event.from_status.value if event.from_status else None,
        to_status=event.to_status.value,
        reason=event.reason,
        created_at=event.created_at,
        digest=event.digest,
    )


def _condition_rows(escrow_id: str, conditions: List[ConditionRecord]) -> List[EscrowCondition]:
    rows = []
    for position, condition in enumerate(conditions):
        row = EscrowCondition(
            escrow_id=escrow_id,
            position=position,
            description=condition.description,
            type=condition.type.value,
            is_satisfied=condition.is_satisfied,
        )
        if condition.id:
            row.id = condition.id
        rows.append(row)
    return rows


class SqlEscrowRepository(EscrowRepository):
    def __init__(self, db: Session) -> None:
        self.db = db

    # ---------------------------------------------------------------- reads

    def _to_record(self, escrow: Escrow, with_chain: bool = True) -> EscrowRecord:
        record = EscrowRecord(
            id=escrow.id,
            title=escrow.title,
            description=escrow.description,
            amount=escrow.amount,
            asset=escrow.asset,
            creator_id=escrow.creator_id,
            status=EscrowStatus(escrow.status),
            funding_reference=escrow.funding_reference,
            version=escrow.version,
            created_at=escrow.created_at,
            updated_at=escrow.updated_at,
            parties=[PartyRecord(user_id=p.user_id, role=p.role) for p in escrow.parties],
            conditions=[
                ConditionRecord(
                    id=c.id,
                    description=c.description,
                    type=c.type,
                    is_satisfied=c.is_satisfied,
                    satisfied_at=c.satisfied_at,
                    satisfied_by=c.satisfied_by,
                )
                for c in escrow.conditions
            ],
        )
        if with_chain:
            last = (
                self.db.query(EscrowEvent.sequence, EscrowEvent.digest)
                .filter(EscrowEvent.escrow_id == escrow.id)
                .order_by(EscrowEvent.sequence.desc())
                .first()
            )
            if last is not None:
                record.last_sequence = last.sequence
                record.last_digest = last.digest
        return record

    def missing_users(self, user_ids: Iterable[str]) -> List[str]:
        wanted = set(user_ids)
        if not wanted:
            return []
        found = {
            row.id for row in self.db.query(User.id).filter(User.id.in_(wanted)).all()
        }
        return sorted(wanted - found)

    def load_escrow(self, escrow_id: str) -> Optional[EscrowRecord]:
        escrow = (
            self.db.query(Escrow)
            .populate_existing()
            .filter(Escrow.id == escrow_id)
            .first()
        )
        if escrow is None:
            return None
        return self._to_record(escrow)

    def list_for_user(
        self,
        user_id: str,
        page: int,
        limit: int,
        status: Optional[EscrowStatus] = None,
    ) -> EscrowPage:
        party_of = select(EscrowParty.escrow_id).where(EscrowParty.user_id == user_id)
        query = self.db.query(Escrow).filter(
            or_(Escrow.creator_id == user_id, Escrow.id.in_(party_of))
        )
        if status is not None:
            query = query.filter(Escrow.status == status.value)

        total = query.order_by(None).count()
        rows = (
            query.order_by(Escrow.created_at.desc(), Escrow.id)
            .offset((page - 1) * limit)
            .limit(limit)
            .all()
        )
        return EscrowPage(
            data=[self._to_record(row, with_chain=False) for row in rows],
            total=total,
            page=page,
            limit=limit,
        )

    def list_events(self, escrow_id: str) -> List[EventRecord]:
        rows = (
            self.db.query(EscrowEvent)
            .filter(EscrowEvent.escrow_id == escrow_id)
            .order_by(EscrowEvent.sequence)
            .all()
        )
        return [
            EventRecord(
                escrow_id=row.escrow_id,
                sequence=row.sequence,
                actor_id=row.actor_id,
                from_status=row.from_status,
                to_status=row.to_status,
                reason=row.reason,
                created_at=row.created_at,
                digest=row.digest,
            )
            for row in rows
        ]

    # --------------------------------------------------------------- writes

    def create_escrow(self, escrow: EscrowRecord, event: EventRecord) -> EscrowRecord:
        now = _utc_now()
        row = Escrow(
            id=escrow.id,
            title=escrow.title,
            description=escrow.description,
            amount=escrow.amount,
            asset=escrow.asset,
            creator_id=escrow.creator_id,
            status=escrow.status.value,
            version=1,
            created_at=now,
            updated_at=now,
        )
        row.parties = [
            EscrowParty(escrow_id=escrow.id, user_id=p.user_id, role=p.role.value, position=i)
            for i, p in enumerate(escrow.parties)
        ]
        row.conditions = _condition_rows(escrow.id, escrow.conditions)
        self.db.add(row)
        self.db.add(_event_row(event))
        self.db.commit()
        return self.load_escrow(escrow.id)

    def _guarded_update(
        self,
        escrow_id: str,
        expected_status: EscrowStatus,
        expected_version: int,
        values: Dict[str, Any],
    ) -> None:
        result = self.db.execute(
            update(Escrow)
            .where(
                Escrow.id == escrow_id,
                Escrow.status == expected_status.value,
                Escrow.version == expected_version,
            )
            .values(version=Escrow.version + 1, updated_at=_utc_now(), **values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            self.db.rollback()
            logger.warning(
                "escrow %s changed concurrently (expected %s v%d)",
                escrow_id,
                expected_status.value,
                expected_version,
            )
            raise Conflict()

    def _commit(self, escrow_id: str) -> EscrowRecord:
        try:
            self.db.commit()
        except IntegrityError:
            # duplicate (escrow_id, sequence): another transition got there first
            self.db.rollback()
            logger.warning("escrow %s event sequence conflict", escrow_id)
            raise Conflict()
        return self.load_escrow(escrow_id)

    def save_transition(
        self,
        escrow_id: str,
        expected_status: EscrowStatus,
        expected_version: int,
        to_status: EscrowStatus,
        event: EventRecord,
        changes: Optional[Dict[str, Any]] = None,
    ) -> EscrowRecord:
        values = dict(changes or {})
        values["status"] = to_status.value
        self._guarded_update(escrow_id, expected_status, expected_version, values)
        self.db.add(_event_row(event))
        return self._commit(escrow_id)

    def save_details(
        self,
        escrow_id: str,
        expected_status: EscrowStatus,
        expected_version: int,
        changes: Dict[str, Any],
        conditions: Optional[List[ConditionRecord]] = None,
    ) -> EscrowRecord:
        self._guarded_update(escrow_id, expected_status, expected_version, changes)
        if conditions is not None:
            self.db.query(EscrowCondition).filter(
                EscrowCondition.escrow_id == escrow_id
            ).delete(synchronize_session=False)
            self.db.add_all(_condition_rows(escrow_id, conditions))
        return self._commit(escrow_id)

    def mark_condition_satisfied(
        self,
        escrow_id: str,
        expected_status: EscrowStatus,
        expected_version: int,
        condition_id: str,
        actor_id: str,
    ) -> EscrowRecord:
        self._guarded_update(escrow_id, expected_status, expected_version, {})
        self.db.execute(
            update(EscrowCondition)
            .where(EscrowCondition.id == condition_id, EscrowCondition.escrow_id == escrow_id)
            .values(is_satisfied=True, satisfied_at=_utc_now(), satisfied_by=actor_id)
            .execution_options(synchronize_session=False)
        )
        return self._commit(escrow_id)

