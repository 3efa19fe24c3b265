"""
Reconciliation layer.

WHAT: Optimistic local patch -> remote write -> unconditional reload
WHY: The UI updates immediately while the store stays the only source of truth;
     a successful write does not prove the stored shape matches the local guess
     (a concurrent counter-offer may land in between)
HOW: One reusable `reconcile` combinator plus a per-actor DealReconciler that owns
     the local view, sequence-numbers reloads and reports superseded proposals
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Awaitable, Callable, Iterable, Optional, TypeVar

from . import state_machine
from .store import DealStore
from ..models.deal import ActorRole, Deal, DealCommand, utc_now
from ..utils.exceptions import NotFoundError
from ..utils.logger import get_logger

logger = get_logger(__name__)

T = TypeVar("T")


def latest_by_id(deals: Iterable[Deal]) -> dict[str, Deal]:
    """Collapse duplicate views of one deal, keeping the latest updated_at."""
    latest: dict[str, Deal] = {}
    for deal in deals:
        current = latest.get(deal.id)
        if current is None or deal.updated_at >= current.updated_at:
            latest[deal.id] = deal
    return latest


class LocalDealView:
    """
    Client-side cache of one actor's deals.

    Kept optimistically ahead of the store between a command and its reload.
    Reload results are applied only if they are newer (by sequence number)
    than the last one applied.
    """

    def __init__(self, deals: Iterable[Deal] = ()):
        self._deals: dict[str, Deal] = latest_by_id(deals)
        self.applied_seq = 0
        self.loaded_at: Optional[datetime] = None

    def __len__(self) -> int:
        return len(self._deals)

    def __contains__(self, deal_id: str) -> bool:
        return deal_id in self._deals

    def get(self, deal_id: str) -> Optional[Deal]:
        return self._deals.get(deal_id)

    def require(self, deal_id: str) -> Deal:
        deal = self._deals.get(deal_id)
        if deal is None:
            raise NotFoundError("deal", deal_id)
        return deal

    def put(self, deal: Deal) -> None:
        self._deals[deal.id] = deal

    def deals(self) -> list[Deal]:
        """All cached deals, most recent activity first."""
        return sorted(self._deals.values(), key=lambda d: d.updated_at, reverse=True)

    def replace(self, deals: Iterable[Deal], seq: int) -> bool:
        """Swap in an authoritative snapshot unless a newer one was already applied."""
        if seq < self.applied_seq:
            return False
        self._deals = latest_by_id(deals)
        self.applied_seq = seq
        self.loaded_at = utc_now()
        return True


async def reconcile(
    view: LocalDealView,
    deal_id: str,
    patch: Callable[[Deal], Deal],
    write: Callable[[], Awaitable[T]],
    reload: Callable[[], Awaitable[object]],
) -> T:
    """
    Run one command through the optimistic-patch / write / reload pipeline.

    1. `patch` computes the next local state from the cached deal. If it raises
       (precondition/validation), nothing is patched or written.
    2. `write` issues the remote write. On failure the patch is reverted, unless
       something newer already replaced it in the view.
    3. `reload` always runs. Its own failures are logged and swallowed.
    4. A write failure is re-raised after the reload so the caller can surface it.
    """
    current = view.require(deal_id)
    patched = patch(current)
    view.put(patched)

    failure: Optional[Exception] = None
    result = None
    try:
        result = await write()
    except Exception as exc:
        failure = exc
        if view.get(deal_id) is patched:
            view.put(current)
        logger.warning(f"Write for deal {deal_id} failed, local patch reverted: {exc}")

    try:
        await reload()
    except Exception as exc:
        # Never mask the write failure the caller is waiting for
        logger.warning(f"Reload after write on deal {deal_id} failed: {exc}")

    if failure is not None:
        raise failure
    return result


@dataclass
class SupersededProposal:
    """A confirmed local write whose stored result no longer matches what this client proposed."""
    deal_id: str
    local: Deal
    stored: Optional[Deal]
    detected_at: datetime = field(default_factory=utc_now)


class DealReconciler:
    """
    Per-actor reconciliation over a DealStore.

    WHAT: Owns the LocalDealView and runs state-machine commands through `reconcile`
    WHY: Every command (accept/reject/counter/mark-seen) shares one pipeline
    HOW: Patch via state_machine.apply_command, write via the supplied coroutine,
         reload via get_deals_for_actor with sequence-numbered results
    """

    def __init__(
        self,
        store: DealStore,
        actor_id: str,
        role: ActorRole,
        view: Optional[LocalDealView] = None,
    ):
        self.store = store
        self.actor_id = actor_id
        self.role = ActorRole(role)
        self.view = view or LocalDealView()
        self.superseded: list[SupersededProposal] = []
        self._reload_seq = 0
        self._confirmed: dict[str, Deal] = {}

    async def reload(self) -> list[Deal]:
        """Pull the authoritative deal set; stale (out-of-order) results are discarded."""
        self._reload_seq += 1
        seq = self._reload_seq
        deals = await self.store.get_deals_for_actor(self.actor_id, self.role)
        if not self.view.replace(deals, seq):
            logger.debug(f"Discarded stale reload #{seq} for {self.actor_id}")
            return self.view.deals()
        self._check_confirmed_writes()
        return self.view.deals()

    def _check_confirmed_writes(self) -> None:
        for deal_id, local in self._confirmed.items():
            stored = self.view.get(deal_id)
            if stored is not None and local.same_terms(stored):
                continue
            # Store copy wins; the local proposal is not re-applied
            self.superseded.append(SupersededProposal(deal_id=deal_id, local=local, stored=stored))
            if stored is None:
                logger.info(f"Deal {deal_id} vanished from the store after {self.actor_id}'s write")
            else:
                logger.info(
                    f"Proposal on deal {deal_id} by {self.actor_id} superseded: "
                    f"local {local.status.value} {local.offer_quantity}@{local.offer_price}, "
                    f"stored {stored.status.value} {stored.offer_quantity}@{stored.offer_price}"
                )
        self._confirmed.clear()

    async def run(
        self,
        deal_id: str,
        command: DealCommand,
        write: Callable[[], Awaitable[T]],
        reload: Optional[Callable[[], Awaitable[object]]] = None,
    ) -> T:
        """Apply `command` optimistically, persist it with `write`, then reload."""
        patched: dict[str, Deal] = {}

        def patch(current: Deal) -> Deal:
            patched["deal"] = state_machine.apply_command(current, command)
            return patched["deal"]

        async def confirmed_write() -> T:
            result = await write()
            self._confirmed[deal_id] = patched["deal"]
            return result

        return await reconcile(self.view, deal_id, patch, confirmed_write, reload or self.reload)
