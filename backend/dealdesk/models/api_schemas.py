"""
Pydantic API schemas for the deal store endpoints.

WHAT: Request and response models for FastAPI
WHY: Type-safe request parsing; domain records are returned as-is
HOW: Pydantic v2 models. Offer terms are plain floats here so that non-positive
     values reach the state machine and fail as VALIDATION_FAILED like every
     other client
"""

from typing import List, Optional

from pydantic import BaseModel, Field

from .deal import Deal, DealKind, DealStatus, Listing


# ========== Listings ==========

class CreateListingRequest(BaseModel):
    """Seller publishes a listing."""
    owner_id: str = Field(..., min_length=1, max_length=100)
    owner_name: str = Field(default="", max_length=100)
    name: str = Field(..., min_length=1, max_length=200, description="Product name")
    image: str = Field(default="", description="Image path or URL")
    rate: float = Field(..., description="Asking price per unit")
    quantity: float = Field(..., description="Quantity available")
    unit: str = Field(default="kg", min_length=1, max_length=20)


class ListingListResponse(BaseModel):
    listings: List[Listing]


# ========== Deals ==========

class CreateDealRequest(BaseModel):
    """Buyer opens a request-to-buy or a negotiation on a listing."""
    listing_id: str = Field(..., min_length=1)
    buyer_id: str = Field(..., min_length=1, max_length=100)
    seller_id: str = Field(..., min_length=1, max_length=100)
    kind: DealKind = DealKind.REQUEST
    quantity: float
    price: float
    buyer_name: str = Field(default="", max_length=100)
    buyer_phone: str = Field(default="", max_length=30)
    buyer_location: Optional[str] = None


class UpdateStatusRequest(BaseModel):
    status: DealStatus
    actor_id: str = Field(..., min_length=1)


class CounterOfferRequest(BaseModel):
    quantity: float
    price: float
    actor_id: str = Field(..., min_length=1)


class SeenFlagRequest(BaseModel):
    actor_id: str = Field(..., min_length=1)
    seen: bool = True


class DealListResponse(BaseModel):
    deals: List[Deal]


# ========== Chats ==========

class OpenChatRequest(BaseModel):
    """Get-or-create the thread between a buyer and a seller (optionally scoped to a deal)."""
    buyer_id: str = Field(..., min_length=1)
    seller_id: str = Field(..., min_length=1)
    actor_id: str = Field(..., min_length=1)
    deal_id: Optional[str] = None


class SendChatMessageRequest(BaseModel):
    sender_id: str = Field(..., min_length=1)
    text: str = Field(..., max_length=2000)


class MarkReadRequest(BaseModel):
    actor_id: str = Field(..., min_length=1)


class UnreadCountResponse(BaseModel):
    thread_id: str
    actor_id: str
    count: int

