"""
Deal store protocol consumed by the negotiation engine.

WHAT: Abstract async interface to the authoritative deal store
WHY: Decouple reconciliation/cleanup logic from the transport (HTTP, test doubles)
HOW: Use Protocol to define the per-record reads/writes and the unread subscription
"""

from typing import Callable, Optional, Protocol

from ..models.deal import ActorRole, Deal, DealKind, DealStatus, Listing

Unsubscribe = Callable[[], None]


class DealStore(Protocol):
    """
    Eventually consistent, per-record reads and writes; no cross-record transactions.

    Writes raise PreconditionFailedError, ValidationFailedError, NotFoundError
    or TransientStoreError from utils.exceptions.
    """

    async def create_deal(
        self,
        listing_id: str,
        buyer_id: str,
        seller_id: str,
        kind: DealKind,
        quantity: float,
        price: float,
        *,
        buyer_name: str = "",
        buyer_phone: str = "",
        buyer_location: Optional[str] = None,
    ) -> Deal:
        ...

    async def get_deal(self, deal_id: str) -> Deal:
        ...

    async def get_deals_for_actor(self, actor_id: str, role: ActorRole) -> list[Deal]:
        ...

    async def update_deal_status(self, deal_id: str, status: DealStatus, actor_id: str) -> Deal:
        ...

    async def update_deal_offer(self, deal_id: str, quantity: float, price: float, actor_id: str) -> Deal:
        ...

    async def set_seen_flag(self, deal_id: str, actor_id: str, seen: bool) -> None:
        ...

    async def create_listing(
        self,
        owner_id: str,
        name: str,
        rate: float,
        quantity: float,
        unit: str = "kg",
        *,
        owner_name: str = "",
        image: str = "",
    ) -> Listing:
        ...

    async def get_listings_for_owner(self, owner_id: str) -> list[Listing]:
        ...

    async def delete_listing(self, listing_id: str, actor_id: str) -> None:
        ...

    def subscribe_unread_message_count(
        self,
        thread_id: str,
        actor_id: str,
        callback: Callable[[int], None],
    ) -> Unsubscribe:
        ...
