# walletgate/api/models/entries.py
from pydantic import BaseModel, Field, model_validator
from typing import Optional

from walletgate.api.models.payment import ContentPrice


class EntryCreateRequest(BaseModel):
    """Request model for publishing a content entry."""
    content_id: str = Field(..., min_length=1, description="Content identifier (CID) of the uploaded file")
    title: Optional[str] = Field(default=None, max_length=200)
    is_free: bool = Field(default=True)
    price: Optional[ContentPrice] = Field(default=None, description="Required when is_free is false")

    @model_validator(mode="after")
    def check_price(self):
        if not self.is_free and self.price is None:
            raise ValueError("price is required for paid entries")
        return self


class EntryResponse(BaseModel):
    """Response model for a published entry."""
    id: str
    content_id: str
    owner_address: str
    title: Optional[str] = None
    is_free: bool
    piid: Optional[str] = None
    price: Optional[str] = None


class AccessLinkResponse(BaseModel):
    """Response model for a short-lived content link."""
    url: str = Field(..., description="Presigned URL for the content")
    expires_at: int = Field(..., description="Unix timestamp (seconds) when the link stops working")
    access: str = Field(..., description="Why access was granted: free, owner or purchased")
