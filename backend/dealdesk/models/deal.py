"""
Deal negotiation domain models.

WHAT: Deal, Listing and ChatThread records plus the commands actors issue
WHY: One typed shape shared by the store service, the HTTP client and the engine
HOW: Pydantic v2 models for records, frozen dataclasses for commands
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Optional, Union

from pydantic import BaseModel, Field


def utc_now() -> datetime:
    """Naive UTC timestamp (SQLite drops tzinfo, so everything stays naive)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class DealStatus(str, Enum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    REJECTED = "rejected"

    @property
    def is_terminal(self) -> bool:
        return self is not DealStatus.PENDING


class DealKind(str, Enum):
    """Advisory label only; transition rules are the same for both."""
    REQUEST = "request"
    NEGOTIATION = "negotiation"


class ActorRole(str, Enum):
    SELLER = "seller"
    BUYER = "buyer"

    @property
    def other(self) -> "ActorRole":
        return ActorRole.BUYER if self is ActorRole.SELLER else ActorRole.SELLER


class Deal(BaseModel):
    """A negotiation over one listing between exactly one seller and one buyer."""

    id: str
    kind: DealKind = DealKind.REQUEST
    status: DealStatus = DealStatus.PENDING

    listing_id: str
    listing_name: str
    seller_id: str
    seller_name: str = ""
    buyer_id: str
    buyer_name: str = ""
    buyer_phone: str = ""
    buyer_location: Optional[str] = None

    unit: str = "kg"
    offer_quantity: float = Field(gt=0)
    offer_price: float = Field(gt=0)

    seller_seen: bool = False
    buyer_seen: bool = True

    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    def role_of(self, actor_id: str) -> Optional[ActorRole]:
        """Role the actor plays in this deal, or None for outsiders."""
        if actor_id == self.seller_id:
            return ActorRole.SELLER
        if actor_id == self.buyer_id:
            return ActorRole.BUYER
        return None

    def seen_by(self, role: ActorRole) -> bool:
        return self.seller_seen if role is ActorRole.SELLER else self.buyer_seen

    def same_terms(self, other: "Deal") -> bool:
        """True when status and offered terms match (seen flags and timestamps ignored)."""
        return (
            self.status == other.status
            and self.offer_quantity == other.offer_quantity
            and self.offer_price == other.offer_price
        )


class Listing(BaseModel):
    """A seller-owned sellable quantity of a product."""

    id: str
    owner_id: str
    owner_name: str = ""
    name: str
    image: str = ""
    rate: float = Field(gt=0)
    quantity: float = Field(gt=0)
    unit: str = "kg"
    created_at: datetime = Field(default_factory=utc_now)


class ChatThread(BaseModel):
    """Buyer/seller message thread with a per-actor unread counter."""

    id: str
    buyer_id: str
    seller_id: str
    deal_id: Optional[str] = None
    last_message_text: str = ""
    last_message_at: Optional[datetime] = None
    unread_by: dict[str, int] = Field(default_factory=dict)

    def unread_for(self, actor_id: str) -> int:
        return int(self.unread_by.get(actor_id, 0))


def chat_thread_id(buyer_id: str, seller_id: str, deal_id: Optional[str] = None) -> str:
    """Deal threads are keyed by deal; otherwise one thread per (sorted) pair."""
    if deal_id:
        return f"deal_{deal_id}"
    a, b = sorted([buyer_id, seller_id])
    return f"pair_{a}_{b}"


# Commands issued by an actor against a deal

@dataclass(frozen=True)
class Accept:
    actor_id: str


@dataclass(frozen=True)
class Reject:
    actor_id: str


@dataclass(frozen=True)
class Counter:
    actor_id: str
    quantity: float
    price: float


@dataclass(frozen=True)
class MarkSeen:
    actor_id: str


DealCommand = Union[Accept, Reject, Counter, MarkSeen]
