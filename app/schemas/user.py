from datetime import datetime

from app.schemas.my_base_model import CustomBaseModel


class UserResponse(CustomBaseModel):
    """Response model for /auth/me"""

    id: str
    wallet_address: str
    is_active: bool = True
    created_at: datetime
