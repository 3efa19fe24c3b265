"""
Negotiation client.

WHAT: One actor's view of the marketplace deals and the commands they can issue
WHY: Wires state machine, reconciliation, notifications and cleanup into one flow:
     command -> optimistic patch -> store write -> reload -> cleanup pass
HOW: Explicit actor_id/role per client; every reload feeds the cleanup coordinator
     on seller clients
"""

import asyncio
from typing import Callable, Optional

from .cleanup import CleanupCoordinator, CleanupReport
from .notifications import MarkAllSeenResult, NotificationTracker
from .reconciliation import DealReconciler, SupersededProposal
from .store import DealStore
from ..core.config import settings
from ..models.deal import (
    Accept,
    ActorRole,
    Counter,
    Deal,
    DealKind,
    DealStatus,
    Listing,
    Reject,
)
from ..utils.exceptions import DealDeskException
from ..utils.logger import get_logger

logger = get_logger(__name__)


class NegotiationClient:
    """
    Per-actor negotiation engine.

    Usage:
        client = NegotiationClient(store, actor_id="farmer-1", role=ActorRole.SELLER)
        await client.start()
        await client.accept(deal_id)
    """

    def __init__(self, store: DealStore, actor_id: str, role: ActorRole):
        self.store = store
        self.actor_id = actor_id
        self.role = ActorRole(role)
        self.reconciler = DealReconciler(store, actor_id, self.role)
        self.notifications = NotificationTracker(self.reconciler, reload=self.refresh)
        # Only sellers own listings, so only their clients clean up
        self.cleanup: Optional[CleanupCoordinator] = (
            CleanupCoordinator(store, actor_id) if self.role is ActorRole.SELLER else None
        )
        self.last_cleanup: Optional[CleanupReport] = None

    # ── state ────────────────────────────────────────────────────────────────

    @property
    def deals(self) -> list[Deal]:
        return self.reconciler.view.deals()

    def get_deal(self, deal_id: str) -> Optional[Deal]:
        return self.reconciler.view.get(deal_id)

    @property
    def active_listings(self) -> list[Listing]:
        return self.cleanup.listings.listings() if self.cleanup else []

    @property
    def superseded(self) -> list[SupersededProposal]:
        return self.reconciler.superseded

    def unseen_count(self) -> int:
        return self.notifications.unseen_count()

    def list_unseen(self) -> list[Deal]:
        return self.notifications.list_unseen()

    # ── loading ──────────────────────────────────────────────────────────────

    async def start(self) -> list[Deal]:
        """Initial load: listings first (seller), then deals plus a cleanup pass."""
        if self.cleanup:
            await self.cleanup.reload_listings()
        return await self.refresh()

    async def refresh(self) -> list[Deal]:
        """Reload deals from the store and let the cleanup coordinator react."""
        deals = await self.reconciler.reload()
        if self.cleanup:
            self.last_cleanup = await self.cleanup.on_snapshot(deals)
        return deals

    async def run_polling(self, stop: asyncio.Event, interval: Optional[float] = None) -> None:
        """Refresh every `interval` seconds until `stop` is set; failures self-heal next round."""
        interval = interval or settings.DEAL_POLL_INTERVAL
        logger.info(f"Polling deals for {self.actor_id} every {interval}s")
        while not stop.is_set():
            try:
                await self.refresh()
            except DealDeskException as e:
                logger.warning(f"Background refresh for {self.actor_id} failed: {e}")
            try:
                await asyncio.wait_for(stop.wait(), timeout=interval)
            except asyncio.TimeoutError:
                pass
        logger.info(f"Stopped polling deals for {self.actor_id}")

    # ── commands ─────────────────────────────────────────────────────────────

    async def create_deal(
        self,
        listing: Listing,
        kind: DealKind,
        quantity: float,
        price: float,
        *,
        buyer_name: str = "",
        buyer_phone: str = "",
        buyer_location: Optional[str] = None,
    ) -> Deal:
        """Buyer opens a deal on a listing; the id is store-assigned so no optimistic patch."""
        try:
            deal = await self.store.create_deal(
                listing.id,
                self.actor_id,
                listing.owner_id,
                kind,
                quantity,
                price,
                buyer_name=buyer_name,
                buyer_phone=buyer_phone,
                buyer_location=buyer_location,
            )
        except DealDeskException as e:
            logger.error(f"Creating deal on listing {listing.id} for {self.actor_id} failed: {e}")
            raise
        await self._refresh_quietly()
        return deal

    async def accept(self, deal_id: str) -> Deal:
        return await self._command(
            deal_id,
            Accept(self.actor_id),
            lambda: self.store.update_deal_status(deal_id, DealStatus.ACCEPTED, self.actor_id),
        )

    async def reject(self, deal_id: str) -> Deal:
        return await self._command(
            deal_id,
            Reject(self.actor_id),
            lambda: self.store.update_deal_status(deal_id, DealStatus.REJECTED, self.actor_id),
        )

    async def counter(self, deal_id: str, quantity: float, price: float) -> Deal:
        return await self._command(
            deal_id,
            Counter(self.actor_id, quantity, price),
            lambda: self.store.update_deal_offer(deal_id, quantity, price, self.actor_id),
        )

    async def mark_seen(self, deal_id: str) -> None:
        try:
            await self.notifications.mark_seen(deal_id)
        except DealDeskException as e:
            logger.error(f"Marking deal {deal_id} seen for {self.actor_id} failed: {e}")
            raise

    async def mark_all_seen(self) -> MarkAllSeenResult:
        return await self.notifications.mark_all_seen()

    def subscribe_unread_messages(self, thread_id: str, callback: Callable[[int], None]) -> Callable[[], None]:
        return self.store.subscribe_unread_message_count(thread_id, self.actor_id, callback)

    async def _command(self, deal_id: str, command, write) -> Deal:
        try:
            return await self.reconciler.run(deal_id, command, write, reload=self.refresh)
        except DealDeskException as e:
            logger.error(f"{type(command).__name__} on deal {deal_id} by {self.actor_id} failed: {e}")
            raise

    async def _refresh_quietly(self) -> None:
        try:
            await self.refresh()
        except DealDeskException as e:
            logger.warning(f"Refresh for {self.actor_id} failed: {e}")
