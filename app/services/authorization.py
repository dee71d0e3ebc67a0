"""
AuthorizationGuard: who may do what to an escrow.

A pure decision over the actor id, the loaded escrow record and the requested
action. Status preconditions (which transitions exist) belong to
EscrowLifecycle; the only status this module looks at is the cancel veto,
which counterparties hold while the escrow is still pending.
"""

from enum import Enum

from app.core.errors import Forbidden
from app.schemas.escrow import EscrowRecord, EscrowStatus, PartyRole


class EscrowAction(str, Enum):
    VIEW = "view"
    UPDATE = "update"
    ACTIVATE = "activate"
    CANCEL = "cancel"
    SATISFY_CONDITION = "satisfy_condition"
    APPROVE_RELEASE = "approve_release"
    RAISE_DISPUTE = "raise_dispute"
    RESOLVE_DISPUTE = "resolve_dispute"


# the buyer funds the escrow and receives the deliverable
BUYER_ACTIONS = {
    EscrowAction.ACTIVATE,
    EscrowAction.SATISFY_CONDITION,
    EscrowAction.APPROVE_RELEASE,
}


def is_allowed(
    actor_id: str,
    escrow: EscrowRecord,
    action: EscrowAction,
    is_arbitrator: bool = False,
) -> bool:
    is_creator = actor_id == escrow.creator_id
    role = escrow.role_of(actor_id)
    is_party = is_creator or role is not None

    if action == EscrowAction.VIEW:
        return is_party or (is_arbitrator and escrow.status == EscrowStatus.DISPUTED)
    if action == EscrowAction.UPDATE:
        return is_creator
    if action == EscrowAction.CANCEL:
        if is_creator:
            return True
        return is_party and escrow.status == EscrowStatus.PENDING
    if action in BUYER_ACTIONS:
        return role == PartyRole.BUYER
    if action == EscrowAction.RAISE_DISPUTE:
        return is_party
    if action == EscrowAction.RESOLVE_DISPUTE:
        # an arbitrator never rules on an escrow they are part of
        return is_arbitrator and not is_party
    return False


def require(
    actor_id: str,
    escrow: EscrowRecord,
    action: EscrowAction,
    is_arbitrator: bool = False,
) -> None:
    if not is_allowed(actor_id, escrow, action, is_arbitrator):
        raise Forbidden(f"Not allowed to {action.value.replace('_', ' ')} this escrow")
