"""
EscrowLifecycle: the escrow state machine.

    pending  -> active | cancelled
    active   -> completed | disputed
    disputed -> completed | cancelled

completed and cancelled are terminal. Each operation checks, in order:
the escrow exists (NotFound), the status allows the operation (InvalidState),
the actor may perform it (Forbidden, see authorization.py), and any business
gate (ConditionsUnmet). Only then is the change handed to the repository, which
commits it only if the escrow still has the status and version that were checked.

Every committed status change appends one EscrowEvent. Events are chained by
digest so that editing or removing a past event is detectable.
"""

import hashlib
import logging
import time
import uuid
from datetime import datetime, timezone
from typing import Dict, FrozenSet, Iterable, List, Optional

from app.core.config import settings
from app.core.errors import ConditionsUnmet, InvalidState, NotFound, ValidationError
from app.schemas.escrow import (
    ConditionRecord,
    CreateEscrowRequest,
    DisputeOutcome,
    EscrowPage,
    EscrowRecord,
    EscrowStatus,
    EventRecord,
    PartyInput,
    PartyRecord,
    PartyRole,
    UpdateEscrowRequest,
)
from app.services.arbitration import ArbitrationPolicy
from app.services.authorization import EscrowAction, is_allowed, require
from app.services.escrow_repository import EscrowRepository

logger = logging.getLogger(__name__)

TRANSITIONS: Dict[EscrowStatus, FrozenSet[EscrowStatus]] = {
    EscrowStatus.PENDING: frozenset({EscrowStatus.ACTIVE, EscrowStatus.CANCELLED}),
    EscrowStatus.ACTIVE: frozenset({EscrowStatus.COMPLETED, EscrowStatus.DISPUTED}),
    EscrowStatus.DISPUTED: frozenset({EscrowStatus.COMPLETED, EscrowStatus.CANCELLED}),
    EscrowStatus.COMPLETED: frozenset(),
    EscrowStatus.CANCELLED: frozenset(),
}

TERMINAL_STATUSES = frozenset(s for s, targets in TRANSITIONS.items() if not targets)

_OPPOSITE_ROLE = {PartyRole.BUYER: PartyRole.SELLER, PartyRole.SELLER: PartyRole.BUYER}


def _now() -> int:
    return int(time.time())


def can_transition(from_status: EscrowStatus, to_status: EscrowStatus) -> bool:
    return to_status in TRANSITIONS[from_status]


def ensure_transition(from_status: EscrowStatus, to_status: EscrowStatus) -> None:
    if from_status in TERMINAL_STATUSES:
        raise InvalidState(f"Escrow is already {from_status.value}")
    if not can_transition(from_status, to_status):
        raise InvalidState(
            f"Cannot move escrow from {from_status.value} to {to_status.value}"
        )


def ensure_status(escrow: EscrowRecord, expected: EscrowStatus, operation: str) -> None:
    if escrow.status != expected:
        raise InvalidState(
            f"Cannot {operation} an escrow that is {escrow.status.value}"
        )


def chain_digest(previous_digest: str, event: EventRecord) -> str:
    parts = [
        previous_digest,
        event.escrow_id,
        str(event.sequence),
        event.actor_id or "",
        event.from_status.value if event.from_status else "",
        event.to_status.value,
        event.reason or "",
        str(event.created_at),
    ]
    return hashlib.sha256("|".join(parts).encode("utf-8")).hexdigest()


def verify_event_chain(events: Iterable[EventRecord]) -> bool:
    """True if sequences run 1..n without gaps and every digest matches its predecessor."""
    previous = ""
    for expected_sequence, event in enumerate(events, start=1):
        if event.sequence != expected_sequence:
            return False
        if chain_digest(previous, event) != event.digest:
            return False
        previous = event.digest
    return True


def resolve_parties(creator_id: str, parties: List[PartyInput]) -> List[PartyRecord]:
    """
    Work out the full party list of a new escrow, creator included.

    The creator keeps the role it lists for itself; otherwise it takes the role
    opposite to the first counterpart.
    """
    seen = set()
    creator_role: Optional[PartyRole] = None
    counterparts: List[PartyRecord] = []
    for party in parties:
        if party.user_id in seen:
            raise ValidationError(f"User {party.user_id} is listed more than once")
        seen.add(party.user_id)
        if party.user_id == creator_id:
            creator_role = party.role
        else:
            counterparts.append(PartyRecord(user_id=party.user_id, role=party.role))

    if not counterparts:
        raise ValidationError("At least one counterpart party is required")

    if creator_role is None:
        creator_role = _OPPOSITE_ROLE[counterparts[0].role]
    if all(party.role == creator_role for party in counterparts):
        raise ValidationError("A counterpart must hold a different role than the creator")

    return [PartyRecord(user_id=creator_id, role=creator_role)] + counterparts


class EscrowLifecycle:
    def __init__(self, repository: EscrowRepository, arbitration: ArbitrationPolicy) -> None:
        self.repository = repository
        self.arbitration = arbitration

    # ---------------------------------------------------------------- helpers

    def _load(self, escrow_id: str) -> EscrowRecord:
        escrow = self.repository.load_escrow(escrow_id)
        if escrow is None:
            raise NotFound("Escrow not found")
        return escrow

    def _event(
        self,
        escrow: EscrowRecord,
        actor_id: Optional[str],
        to_status: EscrowStatus,
        reason: Optional[str],
        from_status: Optional[EscrowStatus] = None,
    ) -> EventRecord:
        event = EventRecord(
            escrow_id=escrow.id,
            sequence=escrow.last_sequence + 1,
            actor_id=actor_id,
            from_status=from_status,
            to_status=to_status,
            reason=reason,
            created_at=_now(),
        )
        event.digest = chain_digest(escrow.last_digest, event)
        return event

    def _transition(
        self,
        escrow: EscrowRecord,
        actor_id: str,
        to_status: EscrowStatus,
        reason: Optional[str] = None,
        changes: Optional[dict] = None,
    ) -> EscrowRecord:
        event = self._event(escrow, actor_id, to_status, reason, from_status=escrow.status)
        updated = self.repository.save_transition(
            escrow.id, escrow.status, escrow.version, to_status, event, changes
        )
        logger.info(
            "escrow %s: %s -> %s by %s",
            escrow.id,
            escrow.status.value,
            to_status.value,
            actor_id,
        )
        return updated

    # ------------------------------------------------------------------ reads

    def get(self, actor_id: str, escrow_id: str) -> EscrowRecord:
        """Escrows are hidden (NotFound) from users without standing."""
        escrow = self._load(escrow_id)
        if is_allowed(actor_id, escrow, EscrowAction.VIEW):
            return escrow
        if escrow.status == EscrowStatus.DISPUTED and is_allowed(
            actor_id, escrow, EscrowAction.VIEW, self.arbitration.is_arbitrator(actor_id)
        ):
            return escrow
        raise NotFound("Escrow not found")

    def list_for(
        self,
        actor_id: str,
        page: int = 1,
        limit: int = 10,
        status: Optional[EscrowStatus] = None,
    ) -> EscrowPage:
        if page < 1:
            raise ValidationError("page must be 1 or greater")
        if limit < 1 or limit > settings.ESCROW_PAGE_LIMIT_MAX:
            raise ValidationError(
                f"limit must be between 1 and {settings.ESCROW_PAGE_LIMIT_MAX}"
            )
        return self.repository.list_for_user(actor_id, page, limit, status)

    def events(self, actor_id: str, escrow_id: str) -> List[EventRecord]:
        escrow = self.get(actor_id, escrow_id)
        return self.repository.list_events(escrow.id)

    # -------------------------------------------------------------- mutations

    def create(self, creator_id: str, payload: CreateEscrowRequest) -> EscrowRecord:
        if payload.amount <= 0:
            raise ValidationError("amount must be greater than 0")

        parties = resolve_parties(creator_id, payload.parties)
        missing = self.repository.missing_users(p.user_id for p in parties)
        if missing:
            raise ValidationError(f"Unknown user(s): {', '.join(missing)}")

        now = datetime.now(timezone.utc)
        escrow = EscrowRecord(
            id=str(uuid.uuid4()),
            title=payload.title.strip(),
            description=payload.description,
            amount=payload.amount,
            asset=payload.asset,
            creator_id=creator_id,
            status=EscrowStatus.PENDING,
            created_at=now,
            updated_at=now,
            parties=parties,
            conditions=[
                ConditionRecord(description=c.description, type=c.type)
                for c in payload.conditions
            ],
        )
        event = self._event(escrow, creator_id, EscrowStatus.PENDING, "created")
        created = self.repository.create_escrow(escrow, event)
        logger.info("escrow %s created by %s", created.id, creator_id)
        return created

    def update(self, actor_id: str, escrow_id: str, patch: UpdateEscrowRequest) -> EscrowRecord:
        escrow = self._load(escrow_id)
        ensure_status(escrow, EscrowStatus.PENDING, "update")
        require(actor_id, escrow, EscrowAction.UPDATE)

        changes = {}
        if patch.title is not None:
            changes["title"] = patch.title.strip()
        if "description" in patch.model_fields_set:
            changes["description"] = patch.description
        conditions = None
        if patch.conditions is not None:
            conditions = [
                ConditionRecord(description=c.description, type=c.type)
                for c in patch.conditions
            ]
        if not changes and conditions is None:
            return escrow

        return self.repository.save_details(
            escrow.id, escrow.status, escrow.version, changes, conditions
        )

    def activate(
        self, actor_id: str, escrow_id: str, funding_reference: Optional[str] = None
    ) -> EscrowRecord:
        escrow = self._load(escrow_id)
        ensure_transition(escrow.status, EscrowStatus.ACTIVE)
        require(actor_id, escrow, EscrowAction.ACTIVATE)

        changes = {"funding_reference": funding_reference} if funding_reference else None
        return self._transition(escrow, actor_id, EscrowStatus.ACTIVE, "funded", changes)

    def cancel(self, actor_id: str, escrow_id: str, reason: Optional[str] = None) -> EscrowRecord:
        escrow = self._load(escrow_id)
        ensure_transition(escrow.status, EscrowStatus.CANCELLED)
        require(actor_id, escrow, EscrowAction.CANCEL)
        return self._transition(escrow, actor_id, EscrowStatus.CANCELLED, reason)

    def satisfy_condition(self, actor_id: str, escrow_id: str, condition_id: str) -> EscrowRecord:
        escrow = self._load(escrow_id)
        ensure_status(escrow, EscrowStatus.ACTIVE, "fulfil conditions of")
        require(actor_id, escrow, EscrowAction.SATISFY_CONDITION)

        condition = escrow.find_condition(condition_id)
        if condition is None:
            raise NotFound("Condition not found")
        if condition.is_satisfied:
            return escrow

        return self.repository.mark_condition_satisfied(
            escrow.id, escrow.status, escrow.version, condition_id, actor_id
        )

    def approve_release(self, actor_id: str, escrow_id: str) -> EscrowRecord:
        escrow = self._load(escrow_id)
        ensure_status(escrow, EscrowStatus.ACTIVE, "release")
        require(actor_id, escrow, EscrowAction.APPROVE_RELEASE)

        unmet = [c for c in escrow.conditions if not c.is_satisfied]
        if unmet:
            raise ConditionsUnmet(f"{len(unmet)} condition(s) not satisfied")

        return self._transition(escrow, actor_id, EscrowStatus.COMPLETED, "released")

    def raise_dispute(self, actor_id: str, escrow_id: str, reason: Optional[str] = None) -> EscrowRecord:
        escrow = self._load(escrow_id)
        ensure_status(escrow, EscrowStatus.ACTIVE, "dispute")
        require(actor_id, escrow, EscrowAction.RAISE_DISPUTE)
        return self._transition(escrow, actor_id, EscrowStatus.DISPUTED, reason)

    def resolve_dispute(
        self,
        actor_id: str,
        escrow_id: str,
        outcome: DisputeOutcome,
        reason: Optional[str] = None,
    ) -> EscrowRecord:
        escrow = self._load(escrow_id)
        ensure_status(escrow, EscrowStatus.DISPUTED, "resolve")
        require(
            actor_id,
            escrow,
            EscrowAction.RESOLVE_DISPUTE,
            self.arbitration.is_arbitrator(actor_id),
        )
        return self._transition(escrow, actor_id, EscrowStatus(outcome.value), reason)
