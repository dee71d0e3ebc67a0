from pydantic import Field

from app.schemas.my_base_model import CustomBaseModel


class ChallengeRequest(CustomBaseModel):
    """Request model for challenge generation - input validation"""

    wallet_address: str = Field(..., min_length=1, max_length=255, description="Wallet address")


class ChallengeResponse(CustomBaseModel):
    """Response model for challenge generation - output"""

    nonce: str
    message: str
    expires_at: int = Field(0, description="Unix timestamp after which the challenge is rejected")


class VerifyRequest(CustomBaseModel):
    """Request model for wallet verification - input validation"""

    wallet_address: str = Field(..., min_length=1, max_length=255, description="Wallet address")
    signature: str = Field(..., min_length=1, description="Signature of the challenge message, hex or base64")
    public_key: str = Field(..., min_length=1, description="Payment verification key, hex or base64")


class RefreshRequest(CustomBaseModel):
    """Request model for refresh token rotation and logout"""

    refresh_token: str = Field(..., min_length=1, description="Refresh token issued by /auth/verify or /auth/refresh")


class TokenResponse(CustomBaseModel):
    """Response model for authentication - output"""

    access_token: str
    refresh_token: str
    token_type: str = "bearer"
    expires_in: int = 0


class ChallengeRecord(CustomBaseModel):
    """A stored challenge, as returned by ChallengeStore.issue"""

    wallet_address: str
    nonce: str
    message: str
    issued_at: int
    expires_at: int

