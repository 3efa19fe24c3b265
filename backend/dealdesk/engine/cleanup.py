"""
Cleanup coordinator.

WHAT: Removes a seller's listing once one of its deals is accepted
WHY: Acceptance may happen on the buyer's client, but only the seller may delete
     the seller's listing, so the seller's own client performs the cleanup when
     it observes the accepted state
HOW: Reacts to each refreshed deal snapshot: optimistic hide -> best-effort delete
     -> unconditional listing reload (a failed delete reappears and is retried)
"""

from dataclasses import dataclass, field
from typing import Iterable, Optional

from .store import DealStore
from ..models.deal import Deal, DealStatus, Listing
from ..utils.exceptions import DealDeskException, NotFoundError, TransientStoreError
from ..utils.logger import get_logger

logger = get_logger(__name__)


class LocalListingView:
    """The seller's active listings as currently shown."""

    def __init__(self, listings: Iterable[Listing] = ()):
        self._listings: dict[str, Listing] = {listing.id: listing for listing in listings}

    def __contains__(self, listing_id: str) -> bool:
        return listing_id in self._listings

    def __len__(self) -> int:
        return len(self._listings)

    def listings(self) -> list[Listing]:
        return sorted(self._listings.values(), key=lambda l: l.created_at, reverse=True)

    def ids(self) -> set[str]:
        return set(self._listings)

    def hide(self, listing_id: str) -> Optional[Listing]:
        return self._listings.pop(listing_id, None)

    def replace(self, listings: Iterable[Listing]) -> None:
        self._listings = {listing.id: listing for listing in listings}


@dataclass
class CleanupReport:
    attempted: list[str] = field(default_factory=list)
    deleted: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)


class CleanupCoordinator:
    """
    Seller-side reaction to accepted deals.

    Only deals where the local actor is the seller are considered, so running
    a pass on a buyer's snapshot is a no-op apart from the listing reload.
    """

    def __init__(self, store: DealStore, actor_id: str, listings: Optional[LocalListingView] = None):
        self.store = store
        self.actor_id = actor_id
        self.listings = listings or LocalListingView()

    def listings_to_remove(self, deals: Iterable[Deal]) -> list[str]:
        """Listing ids of this seller's accepted deals still shown as active."""
        targets: list[str] = []
        for deal in deals:
            if deal.status is not DealStatus.ACCEPTED or deal.seller_id != self.actor_id:
                continue
            if deal.listing_id in self.listings and deal.listing_id not in targets:
                targets.append(deal.listing_id)
        return targets

    async def reload_listings(self) -> list[Listing]:
        listings = await self.store.get_listings_for_owner(self.actor_id)
        self.listings.replace(listings)
        return self.listings.listings()

    async def on_snapshot(self, deals: Iterable[Deal]) -> CleanupReport:
        """Run one cleanup pass over a freshly reloaded deal snapshot."""
        report = CleanupReport()

        for listing_id in self.listings_to_remove(deals):
            report.attempted.append(listing_id)
            self.listings.hide(listing_id)
            try:
                await self.store.delete_listing(listing_id, self.actor_id)
            except NotFoundError:
                # Already gone, which is the goal
                report.deleted.append(listing_id)
            except TransientStoreError as e:
                report.failed.append(listing_id)
                logger.warning(f"Deleting sold listing {listing_id} failed, will retry next pass: {e}")
            except DealDeskException as e:
                report.failed.append(listing_id)
                logger.error(f"Deleting sold listing {listing_id} rejected by store: {e}")
            else:
                report.deleted.append(listing_id)
                logger.info(f"Removed sold listing {listing_id} for seller {self.actor_id}")

        # The optimistic hide is never ground truth
        try:
            await self.reload_listings()
        except DealDeskException as e:
            logger.warning(f"Listing reload for {self.actor_id} failed: {e}")

        return report
