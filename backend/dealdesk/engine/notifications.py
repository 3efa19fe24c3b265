"""
Notification tracker.

WHAT: Unseen counts/lists and mark-seen operations for one actor
WHY: The badge must always agree with the deals the client last loaded,
     so it is derived from the deal set, never stored as a counter
HOW: Reads the reconciler's LocalDealView; single mark-seen goes through the
     reconciliation pipeline, bulk mark-seen writes each record independently
"""

import asyncio
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Optional

from . import state_machine
from .reconciliation import DealReconciler
from ..models.deal import Deal, DealStatus, MarkSeen
from ..utils.exceptions import DealDeskException
from ..utils.logger import get_logger

logger = get_logger(__name__)


@dataclass
class MarkAllSeenResult:
    """Outcome of a bulk mark-seen; partial failure is an expected outcome."""
    marked: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)

    @property
    def complete(self) -> bool:
        return not self.failed


class NotificationTracker:
    """Per-actor unseen-deal tracking over a DealReconciler's view."""

    def __init__(
        self,
        reconciler: DealReconciler,
        reload: Optional[Callable[[], Awaitable[object]]] = None,
    ):
        self.reconciler = reconciler
        self._reload = reload or reconciler.reload

    @property
    def actor_id(self) -> str:
        return self.reconciler.actor_id

    def is_unseen(self, deal: Deal) -> bool:
        return deal.status is DealStatus.PENDING and not deal.seen_by(self.reconciler.role)

    def list_unseen(self) -> list[Deal]:
        """Pending deals this actor has not seen, most recent activity first."""
        return [deal for deal in self.reconciler.view.deals() if self.is_unseen(deal)]

    def unseen_count(self) -> int:
        return len(self.list_unseen())

    async def mark_seen(self, deal_id: str) -> None:
        """
        Mark one deal seen.

        The local flag flips immediately; if the store write fails the flag is
        reverted and the error is raised to the caller.
        """
        store = self.reconciler.store
        await self.reconciler.run(
            deal_id,
            MarkSeen(self.actor_id),
            lambda: store.set_seen_flag(deal_id, self.actor_id, True),
            reload=self._reload,
        )

    async def mark_all_seen(self) -> MarkAllSeenResult:
        """
        Mark every currently unseen deal seen.

        Not atomic: records are written independently. Per-record store
        failures are logged and swallowed; the full set is reloaded afterwards
        so the view shows exactly what persisted.
        """
        result = MarkAllSeenResult()
        targets = self.list_unseen()
        if not targets:
            return result

        try:
            await asyncio.gather(*(self._mark_one(deal, result) for deal in targets))
        finally:
            try:
                await self._reload()
            except Exception as e:
                logger.warning(f"Reload after bulk mark-seen for {self.actor_id} failed: {e}")

        if result.failed:
            logger.warning(
                f"Bulk mark-seen for {self.actor_id}: {len(result.marked)} marked, "
                f"{len(result.failed)} failed ({', '.join(result.failed)})"
            )
        return result

    async def _mark_one(self, deal: Deal, result: MarkAllSeenResult) -> None:
        view = self.reconciler.view
        patched = state_machine.mark_seen(deal, self.actor_id)
        view.put(patched)
        try:
            await self.reconciler.store.set_seen_flag(deal.id, self.actor_id, True)
        except DealDeskException as e:
            if view.get(deal.id) is patched:
                view.put(deal)
            result.failed.append(deal.id)
            logger.warning(f"Mark-seen of deal {deal.id} for {self.actor_id} failed: {e}")
        else:
            result.marked.append(deal.id)
