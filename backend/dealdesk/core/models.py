"""
ORM models for deal store persistence.

WHAT: SQLAlchemy models for listings, deals and chat threads
WHY: Persist the shared records both actors read and write
HOW: Declarative models with CHECK constraints, indexes and to_domain() converters
"""

from uuid import uuid4

from sqlalchemy import (
    Column, Integer, String, Float, Boolean, DateTime, Text, JSON,
    ForeignKey, CheckConstraint, Index, Enum as SQLEnum
)
from sqlalchemy.orm import relationship

from .database import Base
from ..models.deal import (
    ChatThread as ChatThreadModel,
    Deal as DealModel,
    DealKind,
    DealStatus,
    Listing as ListingModel,
    utc_now,
)


class Listing(Base):
    """
    Listing table - a seller's sellable quantity of one product.

    WHAT: Product offered by its owner at a rate per unit
    WHY: Deals reference listings by id; accepted deals remove them
    HOW: No FK from deals, relationship is discovered by listing_id queries
    """
    __tablename__ = "listings"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid4()))
    owner_id = Column(String(100), nullable=False)
    owner_name = Column(String(100), nullable=False, default="")
    name = Column(String(200), nullable=False)
    image = Column(Text, nullable=False, default="")
    rate = Column(Float, nullable=False)
    quantity = Column(Float, nullable=False)
    unit = Column(String(20), nullable=False, default="kg")
    created_at = Column(DateTime, nullable=False, default=utc_now)

    __table_args__ = (
        CheckConstraint("rate > 0", name="check_listing_rate_positive"),
        CheckConstraint("quantity > 0", name="check_listing_quantity_positive"),
        Index("idx_listing_owner", "owner_id"),
    )

    def to_domain(self) -> ListingModel:
        return ListingModel(
            id=self.id,
            owner_id=self.owner_id,
            owner_name=self.owner_name,
            name=self.name,
            image=self.image or "",
            rate=self.rate,
            quantity=self.quantity,
            unit=self.unit,
            created_at=self.created_at,
        )

    def __repr__(self):
        return f"<Listing(id={self.id}, name={self.name}, owner={self.owner_id})>"


class Deal(Base):
    """
    Deal table - one buyer/seller negotiation over one listing.

    WHAT: Current terms, lifecycle status and per-actor seen flags
    WHY: The single shared mutable record both clients reconcile against
    HOW: Positive-terms CHECKs; indexes for per-actor queries
    """
    __tablename__ = "deals"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid4()))
    kind = Column(SQLEnum(DealKind), nullable=False, default=DealKind.REQUEST)
    status = Column(SQLEnum(DealStatus), nullable=False, default=DealStatus.PENDING)

    listing_id = Column(String(36), nullable=False)
    listing_name = Column(String(200), nullable=False)
    seller_id = Column(String(100), nullable=False)
    seller_name = Column(String(100), nullable=False, default="")
    buyer_id = Column(String(100), nullable=False)
    buyer_name = Column(String(100), nullable=False, default="")
    buyer_phone = Column(String(40), nullable=False, default="")
    buyer_location = Column(String(200), nullable=True)

    unit = Column(String(20), nullable=False, default="kg")
    offer_quantity = Column(Float, nullable=False)
    offer_price = Column(Float, nullable=False)

    seller_seen = Column(Boolean, nullable=False, default=False)
    buyer_seen = Column(Boolean, nullable=False, default=True)

    created_at = Column(DateTime, nullable=False, default=utc_now)
    updated_at = Column(DateTime, nullable=False, default=utc_now)
    # Bumped on every write; a flush against a stale version raises StaleDataError
    row_version = Column(Integer, nullable=False, default=1)

    __table_args__ = (
        CheckConstraint("offer_quantity > 0", name="check_offer_quantity_positive"),
        CheckConstraint("offer_price > 0", name="check_offer_price_positive"),
        Index("idx_deal_seller", "seller_id"),
        Index("idx_deal_buyer", "buyer_id"),
        Index("idx_deal_listing", "listing_id"),
    )
    __mapper_args__ = {"version_id_col": row_version}

    def to_domain(self) -> DealModel:
        return DealModel(
            id=self.id,
            kind=self.kind,
            status=self.status,
            listing_id=self.listing_id,
            listing_name=self.listing_name,
            seller_id=self.seller_id,
            seller_name=self.seller_name,
            buyer_id=self.buyer_id,
            buyer_name=self.buyer_name,
            buyer_phone=self.buyer_phone,
            buyer_location=self.buyer_location,
            unit=self.unit,
            offer_quantity=self.offer_quantity,
            offer_price=self.offer_price,
            seller_seen=self.seller_seen,
            buyer_seen=self.buyer_seen,
            created_at=self.created_at,
            updated_at=self.updated_at,
        )

    def apply(self, deal: DealModel) -> None:
        """Copy mutable fields from a state-machine result onto the row."""
        self.status = deal.status
        self.offer_quantity = deal.offer_quantity
        self.offer_price = deal.offer_price
        self.seller_seen = deal.seller_seen
        self.buyer_seen = deal.buyer_seen
        self.updated_at = deal.updated_at

    def __repr__(self):
        return f"<Deal(id={self.id}, listing={self.listing_name}, status={self.status})>"


class ChatThread(Base):
    """
    ChatThread table - messages between a deal's buyer and seller.

    WHAT: Thread metadata with per-participant unread counters
    WHY: Backs the unread-message-count subscription
    HOW: unread_by is a JSON map actor_id -> count
    """
    __tablename__ = "chat_threads"

    id = Column(String(200), primary_key=True)
    buyer_id = Column(String(100), nullable=False)
    seller_id = Column(String(100), nullable=False)
    deal_id = Column(String(36), nullable=True)
    last_message_text = Column(Text, nullable=False, default="")
    last_message_at = Column(DateTime, nullable=True)
    unread_by = Column(JSON, nullable=False, default=dict)
    created_at = Column(DateTime, nullable=False, default=utc_now)

    messages = relationship("ChatMessage", back_populates="thread", cascade="all, delete-orphan")

    def to_domain(self) -> ChatThreadModel:
        return ChatThreadModel(
            id=self.id,
            buyer_id=self.buyer_id,
            seller_id=self.seller_id,
            deal_id=self.deal_id,
            last_message_text=self.last_message_text or "",
            last_message_at=self.last_message_at,
            unread_by=dict(self.unread_by or {}),
        )

    def __repr__(self):
        return f"<ChatThread(id={self.id})>"


class ChatMessage(Base):
    """Single chat message."""
    __tablename__ = "chat_messages"

    id = Column(Integer, primary_key=True, autoincrement=True)
    thread_id = Column(String(200), ForeignKey("chat_threads.id", ondelete="CASCADE"), nullable=False)
    sender_id = Column(String(100), nullable=False)
    text = Column(Text, nullable=False)
    created_at = Column(DateTime, nullable=False, default=utc_now)

    thread = relationship("ChatThread", back_populates="messages")

    __table_args__ = (
        Index("idx_chat_message_thread", "thread_id", "created_at"),
    )

    def __repr__(self):
        return f"<ChatMessage(thread={self.thread_id}, sender={self.sender_id})>"
