"""
Authoritative deal store.

WHAT: CRUD for listings, deals and chat threads plus unread-count subscriptions
WHY: Single source of truth both actors' clients reconcile against
HOW: SQLAlchemy sessions per call; every deal write re-runs the state machine
     so stale or hostile clients cannot bypass preconditions
"""

import threading
from pathlib import Path
from typing import Callable, Dict, List, Optional, Tuple
from uuid import uuid4

from sqlalchemy.orm import sessionmaker
from sqlalchemy.orm.exc import StaleDataError

from .config import settings
from .database import get_db
from .models import ChatMessage, ChatThread, Deal, Listing
from ..engine import state_machine
from ..models.deal import (
    ActorRole,
    ChatThread as ChatThreadModel,
    Deal as DealModel,
    DealKind,
    DealStatus,
    Listing as ListingModel,
    chat_thread_id,
    utc_now,
)
from ..utils.exceptions import NotFoundError, PreconditionFailedError, ValidationFailedError
from ..utils.logger import get_logger

logger = get_logger(__name__)

UnreadCallback = Callable[[int], None]
WRITE_ATTEMPTS = 3


class SQLDealStore:
    """
    Deal store backed by SQLAlchemy.

    WHAT: Implements the deal store contract synchronously
    WHY: Used directly by the FastAPI endpoints
    HOW: One short session per operation, last write wins by updated_at
    """

    def __init__(self, session_factory: Optional[sessionmaker] = None, media_dir: Optional[str] = None):
        self._session_factory = session_factory
        self.media_dir = Path(media_dir or settings.MEDIA_DIR)
        self._subscribers: Dict[str, List[Tuple[str, UnreadCallback]]] = {}
        self._subscribers_lock = threading.Lock()

    def _session(self):
        return get_db(self._session_factory)

    # ── listings ─────────────────────────────────────────────────────────────

    def create_listing(
        self,
        owner_id: str,
        name: str,
        rate: float,
        quantity: float,
        unit: str = "kg",
        owner_name: str = "",
        image: str = "",
    ) -> ListingModel:
        if not (state_machine.is_positive_amount(rate) and state_machine.is_positive_amount(quantity)):
            raise ValidationFailedError(
                message=f"Listing rate and quantity must be positive (rate={rate}, quantity={quantity})"
            )
        with self._session() as db:
            row = Listing(
                id=str(uuid4()),
                owner_id=owner_id,
                owner_name=owner_name,
                name=name,
                image=image or "",
                rate=float(rate),
                quantity=float(quantity),
                unit=unit,
            )
            db.add(row)
            db.flush()
            listing = row.to_domain()
        logger.info(f"Created listing {listing.id} ({name}) for owner {owner_id}")
        return listing

    def get_listing(self, listing_id: str) -> ListingModel:
        with self._session() as db:
            row = db.get(Listing, listing_id)
            if row is None:
                raise NotFoundError("listing", listing_id)
            return row.to_domain()

    def get_listings_for_owner(self, owner_id: str) -> List[ListingModel]:
        with self._session() as db:
            rows = (
                db.query(Listing)
                .filter(Listing.owner_id == owner_id)
                .order_by(Listing.created_at.desc())
                .all()
            )
            return [row.to_domain() for row in rows]

    def delete_listing(self, listing_id: str, actor_id: str) -> None:
        """Only the owner may delete; the stored image goes with it (best effort)."""
        with self._session() as db:
            row = db.get(Listing, listing_id)
            if row is None:
                raise NotFoundError("listing", listing_id)
            if row.owner_id != actor_id:
                raise PreconditionFailedError(
                    message=f"Actor {actor_id} does not own listing {listing_id}",
                    details={"listing_id": listing_id, "actor_id": actor_id},
                )
            image = row.image
            db.delete(row)
        logger.info(f"Deleted listing {listing_id}")
        self._delete_image(image)

    def _delete_image(self, image: str) -> None:
        """Remove an image file if it lives under MEDIA_DIR; URLs and data URIs are left alone."""
        if not image or image.startswith(("http://", "https://", "data:")):
            return
        try:
            path = Path(image).resolve()
            media_root = self.media_dir.resolve()
            if media_root not in path.parents:
                return
            path.unlink(missing_ok=True)
        except OSError as e:
            logger.warning(f"Failed to delete listing image {image}: {e}")

    # ── deals ────────────────────────────────────────────────────────────────

    def create_deal(
        self,
        listing_id: str,
        buyer_id: str,
        seller_id: str,
        kind: DealKind,
        quantity: float,
        price: float,
        buyer_name: str = "",
        buyer_phone: str = "",
        buyer_location: Optional[str] = None,
    ) -> DealModel:
        """Buyer opens a request-to-buy or a negotiation against an existing listing."""
        state_machine.validate_terms(quantity, price)
        if buyer_id == seller_id:
            raise PreconditionFailedError(
                message="Buyer and seller must be different actors",
                details={"actor_id": buyer_id},
            )
        with self._session() as db:
            listing = db.get(Listing, listing_id)
            if listing is None:
                raise NotFoundError("listing", listing_id)
            if listing.owner_id != seller_id:
                raise PreconditionFailedError(
                    message=f"Listing {listing_id} is not owned by {seller_id}",
                    details={"listing_id": listing_id, "seller_id": seller_id},
                )
            now = utc_now()
            row = Deal(
                id=str(uuid4()),
                kind=DealKind(kind),
                status=DealStatus.PENDING,
                listing_id=listing.id,
                listing_name=listing.name,
                seller_id=seller_id,
                seller_name=listing.owner_name,
                buyer_id=buyer_id,
                buyer_name=buyer_name,
                buyer_phone=buyer_phone,
                buyer_location=buyer_location,
                unit=listing.unit,
                offer_quantity=float(quantity),
                offer_price=float(price),
                seller_seen=False,
                buyer_seen=True,
                created_at=now,
                updated_at=now,
            )
            db.add(row)
            db.flush()
            deal = row.to_domain()
        logger.info(
            f"Created {deal.kind.value} deal {deal.id} on listing {listing_id}: "
            f"{quantity} {deal.unit} @ {price} (buyer={buyer_id}, seller={seller_id})"
        )
        return deal

    def get_deal(self, deal_id: str) -> DealModel:
        with self._session() as db:
            row = db.get(Deal, deal_id)
            if row is None:
                raise NotFoundError("deal", deal_id)
            return row.to_domain()

    def get_deals_for_actor(self, actor_id: str, role: ActorRole) -> List[DealModel]:
        column = Deal.seller_id if ActorRole(role) is ActorRole.SELLER else Deal.buyer_id
        with self._session() as db:
            rows = db.query(Deal).filter(column == actor_id).order_by(Deal.updated_at.desc()).all()
            return [row.to_domain() for row in rows]

    def get_deals_for_listing(self, listing_id: str) -> List[DealModel]:
        with self._session() as db:
            rows = db.query(Deal).filter(Deal.listing_id == listing_id).all()
            return [row.to_domain() for row in rows]

    def _write_deal(self, deal_id: str, transition: Callable[[DealModel], DealModel]) -> DealModel:
        """
        Read the deal, run the transition and write back only if the row is unchanged.

        A write that lost a race is re-evaluated against the fresh row, so a
        counter that raced an accept ends in PreconditionFailed instead of
        rewriting the agreed terms.
        """
        for attempt in range(1, WRITE_ATTEMPTS + 1):
            try:
                with self._session() as db:
                    row = db.get(Deal, deal_id)
                    if row is None:
                        raise NotFoundError("deal", deal_id)
                    updated = transition(row.to_domain())
                    row.apply(updated)
                    db.flush()
                    return updated
            except StaleDataError:
                logger.info(f"Deal {deal_id} changed during write (attempt {attempt}), re-evaluating")
        raise PreconditionFailedError(
            message=f"Deal {deal_id} kept changing during the write",
            details={"deal_id": deal_id},
        )

    def update_deal_status(self, deal_id: str, status: DealStatus, actor_id: str) -> DealModel:
        status = DealStatus(status)
        if status is DealStatus.ACCEPTED:
            deal = self._write_deal(deal_id, lambda d: state_machine.accept(d, actor_id))
        elif status is DealStatus.REJECTED:
            deal = self._write_deal(deal_id, lambda d: state_machine.reject(d, actor_id))
        else:
            raise ValidationFailedError(
                message=f"Status can only be set to accepted or rejected, got {status.value}"
            )
        logger.info(f"Deal {deal_id} {status.value} by {actor_id}")
        return deal

    def update_deal_offer(self, deal_id: str, quantity: float, price: float, actor_id: str) -> DealModel:
        deal = self._write_deal(
            deal_id, lambda d: state_machine.counter(d, actor_id, quantity, price)
        )
        logger.info(f"Deal {deal_id} countered by {actor_id}: {quantity} @ {price}")
        return deal

    def set_seen_flag(self, deal_id: str, actor_id: str, seen: bool = True) -> None:
        def transition(deal: DealModel) -> DealModel:
            if seen:
                return state_machine.mark_seen(deal, actor_id)
            role = state_machine.require_participant(deal, actor_id)
            field = "seller_seen" if role is ActorRole.SELLER else "buyer_seen"
            return deal.model_copy(update={field: False})

        self._write_deal(deal_id, transition)
        logger.debug(f"Deal {deal_id} seen={seen} for {actor_id}")

    # ── chat threads ─────────────────────────────────────────────────────────

    def get_or_create_thread(
        self,
        buyer_id: str,
        seller_id: str,
        actor_id: str,
        deal_id: Optional[str] = None,
    ) -> ChatThreadModel:
        if actor_id not in (buyer_id, seller_id):
            raise PreconditionFailedError(
                message=f"Actor {actor_id} is not a participant of this chat",
                details={"actor_id": actor_id},
            )
        thread_id = chat_thread_id(buyer_id, seller_id, deal_id)
        with self._session() as db:
            row = db.get(ChatThread, thread_id)
            if row is None:
                row = ChatThread(
                    id=thread_id,
                    buyer_id=buyer_id,
                    seller_id=seller_id,
                    deal_id=deal_id,
                    unread_by={buyer_id: 0, seller_id: 0},
                )
                db.add(row)
                db.flush()
                logger.info(f"Created chat thread {thread_id}")
            return row.to_domain()

    def send_message(self, thread_id: str, sender_id: str, text: str) -> ChatThreadModel:
        """Append a message and bump the other participant's unread counter."""
        text = (text or "").strip()
        if not text:
            raise ValidationFailedError(message="Empty message")
        with self._session() as db:
            row = db.get(ChatThread, thread_id)
            if row is None:
                raise NotFoundError("chat thread", thread_id)
            if sender_id not in (row.buyer_id, row.seller_id):
                raise PreconditionFailedError(
                    message=f"Actor {sender_id} is not a participant of chat {thread_id}",
                    details={"thread_id": thread_id, "actor_id": sender_id},
                )
            now = utc_now()
            db.add(ChatMessage(thread_id=thread_id, sender_id=sender_id, text=text, created_at=now))
            other = row.seller_id if sender_id == row.buyer_id else row.buyer_id
            unread = dict(row.unread_by or {})
            unread[other] = int(unread.get(other, 0)) + 1
            # JSON columns only register reassignment, not in-place mutation
            row.unread_by = unread
            row.last_message_text = text
            row.last_message_at = now
            thread = row.to_domain()
        self._notify(thread)
        return thread

    def mark_thread_read(self, thread_id: str, actor_id: str) -> ChatThreadModel:
        with self._session() as db:
            row = db.get(ChatThread, thread_id)
            if row is None:
                raise NotFoundError("chat thread", thread_id)
            unread = dict(row.unread_by or {})
            unread[actor_id] = 0
            row.unread_by = unread
            thread = row.to_domain()
        self._notify(thread)
        return thread

    def get_unread_count(self, thread_id: str, actor_id: str) -> int:
        """Missing threads count as zero unread."""
        with self._session() as db:
            row = db.get(ChatThread, thread_id)
            if row is None:
                return 0
            return int((row.unread_by or {}).get(actor_id, 0))

    def subscribe_unread_message_count(
        self,
        thread_id: str,
        actor_id: str,
        callback: UnreadCallback,
    ) -> Callable[[], None]:
        """
        Register a callback for the actor's unread count on a thread.

        The callback fires immediately with the current count and again after
        every send/read on the thread. Returns an unsubscribe function.
        """
        entry = (actor_id, callback)
        with self._subscribers_lock:
            self._subscribers.setdefault(thread_id, []).append(entry)

        callback(self.get_unread_count(thread_id, actor_id))

        def unsubscribe() -> None:
            with self._subscribers_lock:
                entries = self._subscribers.get(thread_id, [])
                if entry in entries:
                    entries.remove(entry)
                if not entries:
                    self._subscribers.pop(thread_id, None)

        return unsubscribe

    def _notify(self, thread: ChatThreadModel) -> None:
        with self._subscribers_lock:
            entries = list(self._subscribers.get(thread.id, []))
        for actor_id, callback in entries:
            try:
                callback(thread.unread_for(actor_id))
            except Exception as e:
                logger.error(f"Unread subscriber for {thread.id} failed: {e}")


# Module-level singleton used by the app
deal_store = SQLDealStore()


def get_deal_store() -> SQLDealStore:
    """FastAPI dependency; tests override it with a store bound to their own engine."""
    return deal_store
