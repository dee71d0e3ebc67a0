from enum import Enum
from typing import List, Optional

from fastapi import APIRouter, Depends, Query, status

import app.schemas.escrow as schemas
from app.core.config import settings
from app.core.dependencies import get_current_user_id, get_escrow_lifecycle
from app.services.escrow_lifecycle import EscrowLifecycle

router = APIRouter()
group_tags: List[str | Enum] = ["Escrows"]


"""
Escrow lifecycle endpoints. Every route requires an access token.

status graph:
    pending  -> active | cancelled
    active   -> completed | disputed
    disputed -> completed | cancelled

roles:
- creator: may update while pending, cancel while pending or disputed
- buyer: activates (funding confirmed), fulfils conditions, approves release
- any party: cancel while pending, raise a dispute while active
- arbitrator (ARBITRATOR_WALLETS): resolves disputes
"""


@router.post(
    "",
    tags=group_tags,
    response_model=schemas.EscrowResponse,
    status_code=status.HTTP_201_CREATED,
)
def create_escrow(
    body: schemas.CreateEscrowRequest,
    user_id: str = Depends(get_current_user_id),
    lifecycle: EscrowLifecycle = Depends(get_escrow_lifecycle),
) -> schemas.EscrowResponse:
    """Create a pending escrow. The creator is added as a party."""
    return schemas.EscrowResponse.from_escrow(lifecycle.create(user_id, body))


@router.get(
    "",
    tags=group_tags,
    response_model=schemas.EscrowListResponse,
)
def list_escrows(
    page: int = Query(default=1, ge=1, description="Page number, default: 1"),
    limit: int = Query(
        default=10,
        ge=1,
        le=settings.ESCROW_PAGE_LIMIT_MAX,
        description="Page size, default: 10",
    ),
    status_filter: Optional[schemas.EscrowStatus] = Query(
        default=None, alias="status", description="Only escrows in this status"
    ),
    user_id: str = Depends(get_current_user_id),
    lifecycle: EscrowLifecycle = Depends(get_escrow_lifecycle),
) -> schemas.EscrowListResponse:
    """
    List escrows the caller created or is a party to, newest first.

    Query Parameters:
    - page: 1-based page number
    - limit: page size
    - status: optional status filter
    """
    result = lifecycle.list_for(user_id, page=page, limit=limit, status=status_filter)
    return schemas.EscrowListResponse(
        data=[schemas.EscrowResponse.from_escrow(e) for e in result.data],
        total=result.total,
        page=result.page,
        limit=result.limit,
    )


@router.get(
    "/{escrow_id}",
    tags=group_tags,
    response_model=schemas.EscrowResponse,
)
def get_escrow(
    escrow_id: str,
    user_id: str = Depends(get_current_user_id),
    lifecycle: EscrowLifecycle = Depends(get_escrow_lifecycle),
) -> schemas.EscrowResponse:
    """Return an escrow. Escrows the caller has no part in answer 404."""
    return schemas.EscrowResponse.from_escrow(lifecycle.get(user_id, escrow_id))


@router.patch(
    "/{escrow_id}",
    tags=group_tags,
    response_model=schemas.EscrowResponse,
)
def update_escrow(
    escrow_id: str,
    body: schemas.UpdateEscrowRequest,
    user_id: str = Depends(get_current_user_id),
    lifecycle: EscrowLifecycle = Depends(get_escrow_lifecycle),
) -> schemas.EscrowResponse:
    """Edit title, description or conditions of a pending escrow (creator only)."""
    return schemas.EscrowResponse.from_escrow(lifecycle.update(user_id, escrow_id, body))


@router.get(
    "/{escrow_id}/events",
    tags=group_tags,
    response_model=List[schemas.EventResponse],
)
def list_escrow_events(
    escrow_id: str,
    user_id: str = Depends(get_current_user_id),
    lifecycle: EscrowLifecycle = Depends(get_escrow_lifecycle),
) -> List[schemas.EventResponse]:
    """Return the audit log of status changes, oldest first."""
    return [schemas.EventResponse.from_record(e) for e in lifecycle.events(user_id, escrow_id)]


@router.post(
    "/{escrow_id}/activate",
    tags=group_tags,
    response_model=schemas.EscrowResponse,
    status_code=status.HTTP_201_CREATED,
)
def activate_escrow(
    escrow_id: str,
    body: Optional[schemas.ActivateEscrowRequest] = None,
    user_id: str = Depends(get_current_user_id),
    lifecycle: EscrowLifecycle = Depends(get_escrow_lifecycle),
) -> schemas.EscrowResponse:
    """Mark a pending escrow as funded on the external ledger (buyer only)."""
    escrow = lifecycle.activate(user_id, escrow_id, body.funding_reference if body else None)
    return schemas.EscrowResponse.from_escrow(escrow)


@router.post(
    "/{escrow_id}/cancel",
    tags=group_tags,
    response_model=schemas.EscrowResponse,
    status_code=status.HTTP_201_CREATED,
)
def cancel_escrow(
    escrow_id: str,
    body: Optional[schemas.ReasonRequest] = None,
    user_id: str = Depends(get_current_user_id),
    lifecycle: EscrowLifecycle = Depends(get_escrow_lifecycle),
) -> schemas.EscrowResponse:
    """Cancel an escrow."""
    escrow = lifecycle.cancel(user_id, escrow_id, body.reason if body else None)
    return schemas.EscrowResponse.from_escrow(escrow)


@router.post(
    "/{escrow_id}/conditions/{condition_id}/satisfy",
    tags=group_tags,
    response_model=schemas.EscrowResponse,
    status_code=status.HTTP_201_CREATED,
)
def satisfy_condition(
    escrow_id: str,
    condition_id: str,
    user_id: str = Depends(get_current_user_id),
    lifecycle: EscrowLifecycle = Depends(get_escrow_lifecycle),
) -> schemas.EscrowResponse:
    """Mark a condition of an active escrow as fulfilled (buyer only)."""
    escrow = lifecycle.satisfy_condition(user_id, escrow_id, condition_id)
    return schemas.EscrowResponse.from_escrow(escrow)


@router.post(
    "/{escrow_id}/release",
    tags=group_tags,
    response_model=schemas.EscrowResponse,
    status_code=status.HTTP_201_CREATED,
)
def approve_release(
    escrow_id: str,
    user_id: str = Depends(get_current_user_id),
    lifecycle: EscrowLifecycle = Depends(get_escrow_lifecycle),
) -> schemas.EscrowResponse:
    """Approve release of an active escrow once every condition is satisfied (buyer only)."""
    return schemas.EscrowResponse.from_escrow(lifecycle.approve_release(user_id, escrow_id))


@router.post(
    "/{escrow_id}/dispute",
    tags=group_tags,
    response_model=schemas.EscrowResponse,
    status_code=status.HTTP_201_CREATED,
)
def raise_dispute(
    escrow_id: str,
    body: Optional[schemas.ReasonRequest] = None,
    user_id: str = Depends(get_current_user_id),
    lifecycle: EscrowLifecycle = Depends(get_escrow_lifecycle),
) -> schemas.EscrowResponse:
    """Flag an active escrow as disputed (any party)."""
    escrow = lifecycle.raise_dispute(user_id, escrow_id, body.reason if body else None)
    return schemas.EscrowResponse.from_escrow(escrow)


@router.post(
    "/{escrow_id}/resolve",
    tags=group_tags,
    response_model=schemas.EscrowResponse,
    status_code=status.HTTP_201_CREATED,
)
def resolve_dispute(
    escrow_id: str,
    body: schemas.ResolveDisputeRequest,
    user_id: str = Depends(get_current_user_id),
    lifecycle: EscrowLifecycle = Depends(get_escrow_lifecycle),
) -> schemas.EscrowResponse:
    """Close a disputed escrow as completed or cancelled (arbitrators only)."""
    escrow = lifecycle.resolve_dispute(user_id, escrow_id, body.outcome, body.reason)
    return schemas.EscrowResponse.from_escrow(escrow)
