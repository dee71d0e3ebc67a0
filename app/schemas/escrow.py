from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import List, Optional

from pydantic import ConfigDict, Field, field_validator

from app.schemas.my_base_model import CustomBaseModel


class EscrowStatus(str, Enum):
    PENDING = "pending"
    ACTIVE = "active"
    DISPUTED = "disputed"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class PartyRole(str, Enum):
    BUYER = "buyer"
    SELLER = "seller"


class ConditionType(str, Enum):
    MANUAL = "manual"
    AUTOMATIC = "automatic"


class DisputeOutcome(str, Enum):
    COMPLETED = "completed"
    CANCELLED = "cancelled"


# ============================================
# Records exchanged with EscrowRepository
# ============================================


class PartyRecord(CustomBaseModel):
    user_id: str
    role: PartyRole


class ConditionRecord(CustomBaseModel):
    id: str = ""
    description: str
    type: ConditionType = ConditionType.MANUAL
    is_satisfied: bool = False
    satisfied_at: Optional[datetime] = None
    satisfied_by: Optional[str] = None


class EventRecord(CustomBaseModel):
    escrow_id: str
    sequence: int
    actor_id: Optional[str] = None
    from_status: Optional[EscrowStatus] = None
    to_status: EscrowStatus
    reason: Optional[str] = None
    created_at: int = 0
    digest: str = ""


class EscrowRecord(CustomBaseModel):
    id: str
    title: str
    description: Optional[str] = None
    amount: Decimal
    asset: str
    creator_id: str
    status: EscrowStatus
    funding_reference: Optional[str] = None
    version: int = 1
    created_at: datetime
    updated_at: datetime
    parties: List[PartyRecord] = Field(default_factory=list)
    conditions: List[ConditionRecord] = Field(default_factory=list)
    # sequence and digest of the newest event, needed to chain the next one
    last_sequence: int = 0
    last_digest: str = ""

    def role_of(self, user_id: str) -> Optional[PartyRole]:
        for party in self.parties:
            if party.user_id == user_id:
                return party.role
        return None

    def find_condition(self, condition_id: str) -> Optional[ConditionRecord]:
        for condition in self.conditions:
            if condition.id == condition_id:
                return condition
        return None


class EscrowPage(CustomBaseModel):
    data: List[EscrowRecord] = Field(default_factory=list)
    total: int = 0
    page: int = 1
    limit: int = 10


# ============================================
# Request models
# ============================================


def _strip_title(value: Optional[str]) -> Optional[str]:
    if value is None:
        return value
    value = value.strip()
    if not value:
        raise ValueError("title must not be blank")
    return value


class PartyInput(CustomBaseModel):
    user_id: str = Field(..., min_length=1, description="User id of the party")
    role: PartyRole = Field(..., description="buyer or seller")


class ConditionInput(CustomBaseModel):
    description: str = Field(..., min_length=1, max_length=2000)
    type: ConditionType = ConditionType.MANUAL


class CreateEscrowRequest(CustomBaseModel):
    """Request model for escrow creation - input validation"""

    title: str = Field(..., min_length=1, max_length=255)
    description: Optional[str] = Field(None, max_length=5000)
    amount: Decimal = Field(..., gt=0, max_digits=20, decimal_places=7)
    asset: str = Field("ADA", min_length=1, max_length=64)
    parties: List[PartyInput] = Field(..., min_length=1)
    conditions: List[ConditionInput] = Field(default_factory=list)

    @field_validator("title")
    @classmethod
    def title_not_blank(cls, value):
        return _strip_title(value)


class UpdateEscrowRequest(CustomBaseModel):
    """Request model for escrow update. Amount, asset and parties cannot be changed."""

    model_config = ConfigDict(extra="forbid")

    title: Optional[str] = Field(None, min_length=1, max_length=255)
    description: Optional[str] = Field(None, max_length=5000)
    conditions: Optional[List[ConditionInput]] = None

    @field_validator("title")
    @classmethod
    def title_not_blank(cls, value):
        return _strip_title(value)


class ActivateEscrowRequest(CustomBaseModel):
    funding_reference: Optional[str] = Field(
        None, max_length=128, description="Transaction reference on the external ledger"
    )


class ReasonRequest(CustomBaseModel):
    reason: Optional[str] = Field(None, max_length=2000)


class ResolveDisputeRequest(CustomBaseModel):
    outcome: DisputeOutcome
    reason: Optional[str] = Field(None, max_length=2000)


# ============================================
# Response models
# ============================================


class PartyResponse(CustomBaseModel):
    user_id: str
    role: PartyRole


class ConditionResponse(CustomBaseModel):
    id: str
    description: str
    type: ConditionType
    is_satisfied: bool = False
    satisfied_at: Optional[datetime] = None


class EscrowResponse(CustomBaseModel):
    """Escrow projection returned by every escrow endpoint"""

    id: str
    title: str
    description: Optional[str] = None
    amount: float = 0.0
    asset: str = ""
    status: EscrowStatus
    creator_id: str
    funding_reference: Optional[str] = None
    parties: List[PartyResponse] = Field(default_factory=list)
    conditions: List[ConditionResponse] = Field(default_factory=list)
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_escrow(cls, escrow: EscrowRecord) -> "EscrowResponse":
        return cls(
            id=escrow.id,
            title=escrow.title,
            description=escrow.description,
            amount=float(escrow.amount),
            asset=escrow.asset,
            status=escrow.status,
            creator_id=escrow.creator_id,
            funding_reference=escrow.funding_reference,
            parties=[PartyResponse(user_id=p.user_id, role=p.role) for p in escrow.parties],
            conditions=[ConditionResponse(**c.model_dump()) for c in escrow.conditions],
            created_at=escrow.created_at,
            updated_at=escrow.updated_at,
        )


class EscrowListResponse(CustomBaseModel):
    """Response model for escrow list"""

    data: List[EscrowResponse] = Field(default_factory=list)
    total: int = 0
    page: int = 1
    limit: int = 10


class EventResponse(CustomBaseModel):
    sequence: int
    actor_id: Optional[str] = None
    from_status: Optional[EscrowStatus] = None
    to_status: EscrowStatus
    reason: Optional[str] = None
    created_at: int = 0
    digest: str = ""
