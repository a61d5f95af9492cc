# walletgate/api/models/payment.py
from pydantic import BaseModel, ConfigDict, Field
from typing import List, Optional


class PaymentRequirement(BaseModel):
    """One way to pay for content: who gets paid, on which network, in which token, how much."""
    pay_to: str = Field(..., description="Recipient wallet address")
    network: str = Field(..., description="Chain identifier", examples=["base"])
    asset: str = Field(..., description="ERC-20 token contract address")
    max_amount_required: str = Field(
        ...,
        description="Amount in the token's smallest unit, as an integer string",
        examples=["1000000"]
    )
    description: Optional[str] = None


class CreatePaymentInstructionInput(BaseModel):
    """Request body for creating a payment instruction. No requirements means free access."""
    name: str
    description: Optional[str] = None
    payment_requirements: List[PaymentRequirement] = Field(default_factory=list)


class PaymentInstruction(BaseModel):
    """Payment instruction as stored by the upstream payment-instructions service."""
    model_config = ConfigDict(populate_by_name=True)

    id: str
    name: Optional[str] = None
    description: Optional[str] = None
    owning_user_id: Optional[str] = Field(default=None, alias="user_id")
    payment_requirements: List[PaymentRequirement] = Field(default_factory=list)
    version: int = 1
    created_at: Optional[str] = None
    updated_at: Optional[str] = None


class ContentPrice(BaseModel):
    """Price for a piece of content, in the smallest unit of `currency`."""
    amount: str = Field(..., pattern=r"^[0-9]+$", examples=["1000000"])
    currency: str = Field(default="USDC", examples=["USDC"])
    network: str = Field(default="base", examples=["base"])


class CreatedPaymentInstruction(BaseModel):
    """Result of attaching a new payment instruction to content."""
    piid: str
    price: str
