# walletgate/api/models/auth.py
from pydantic import BaseModel, Field


class NonceRequest(BaseModel):
    """Request model for issuing a sign-in nonce."""
    wallet_address: str = Field(
        ...,
        pattern=r"^0x[a-fA-F0-9]{40}$",
        description="Ethereum wallet address (0x prefixed)",
        examples=["0x742d35Cc6634C0532925a3b844Bc9e7595f0bEb0"]
    )


class NonceResponse(BaseModel):
    """Response model for an issued nonce."""
    nonce: str = Field(..., description="Random nonce to be included in the signed message")
    message: str = Field(..., description="Complete message to sign with the wallet")
    expiresAt: int = Field(..., description="Unix timestamp (milliseconds) when the nonce expires")
