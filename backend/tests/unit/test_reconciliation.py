"""
Unit tests for the reconciliation layer.

WHAT: Test optimistic patch, revert on failure, unconditional reload and
      superseded-proposal detection
WHY: The local view must converge to the store after every command, whether
     the write succeeded, failed, or raced a concurrent writer
HOW: DealReconciler over FakeDealStore with scripted failures and write hooks
"""

import asyncio
from datetime import timedelta

import pytest

from dealdesk.engine.reconciliation import DealReconciler, LocalDealView, latest_by_id, reconcile
from dealdesk.engine import state_machine
from dealdesk.models.deal import Accept, ActorRole, Counter, DealStatus, utc_now
from dealdesk.utils.exceptions import (
    NotFoundError,
    PreconditionFailedError,
    TransientStoreError,
    ValidationFailedError,
)

from tests.fixtures.fake_store import FakeDealStore, make_deal


@pytest.fixture
def store():
    store = FakeDealStore()
    store.seed_deal(make_deal())
    return store


@pytest.fixture
async def seller(store):
    reconciler = DealReconciler(store, "seller-1", ActorRole.SELLER)
    await reconciler.reload()
    return reconciler


@pytest.mark.unit
class TestLocalDealView:
    """Snapshot handling of the client-side cache."""

    def test_duplicates_resolve_to_latest_updated_at(self):
        now = utc_now()
        old = make_deal(offer_price=40, updated_at=now - timedelta(minutes=1))
        new = make_deal(offer_price=38, updated_at=now)

        assert latest_by_id([new, old])["deal-1"].offer_price == 38
        assert LocalDealView([old, new]).get("deal-1").offer_price == 38

    def test_stale_snapshot_discarded(self):
        view = LocalDealView()
        assert view.replace([make_deal(offer_price=38)], seq=2)
        assert not view.replace([make_deal(offer_price=40)], seq=1)

        assert view.get("deal-1").offer_price == 38
        assert view.applied_seq == 2

    def test_deals_sorted_by_recent_activity(self):
        now = utc_now()
        view = LocalDealView([
            make_deal(id="a", updated_at=now - timedelta(minutes=2)),
            make_deal(id="b", updated_at=now),
        ])
        assert [d.id for d in view.deals()] == ["b", "a"]

    def test_require_raises_not_found(self):
        with pytest.raises(NotFoundError):
            LocalDealView().require("missing")


@pytest.mark.unit
class TestReconcile:
    """The reconcile combinator on its own."""

    @pytest.mark.asyncio
    async def test_patch_failure_skips_write_and_reload(self):
        view = LocalDealView([make_deal(status=DealStatus.REJECTED)])
        calls = []

        async def write():
            calls.append("write")

        async def reload():
            calls.append("reload")

        with pytest.raises(PreconditionFailedError):
            await reconcile(view, "deal-1", lambda d: state_machine.accept(d, "seller-1"), write, reload)

        assert calls == []
        assert view.get("deal-1").status is DealStatus.REJECTED

    @pytest.mark.asyncio
    async def test_patch_visible_while_write_in_flight(self):
        view = LocalDealView([make_deal()])
        seen_during_write = []

        async def write():
            seen_during_write.append(view.get("deal-1").status)

        async def reload():
            pass

        await reconcile(view, "deal-1", lambda d: state_machine.accept(d, "seller-1"), write, reload)
        assert seen_during_write == [DealStatus.ACCEPTED]

    @pytest.mark.asyncio
    async def test_reload_failure_is_swallowed(self):
        view = LocalDealView([make_deal()])

        async def write():
            return "ok"

        async def reload():
            raise TransientStoreError("store down")

        result = await reconcile(view, "deal-1", lambda d: state_machine.accept(d, "seller-1"), write, reload)
        assert result == "ok"

    @pytest.mark.asyncio
    async def test_reload_crash_does_not_mask_write_failure(self):
        view = LocalDealView([make_deal()])

        async def write():
            raise TransientStoreError("timeout")

        async def reload():
            raise ValueError("malformed store payload")

        with pytest.raises(TransientStoreError):
            await reconcile(view, "deal-1", lambda d: state_machine.accept(d, "seller-1"), write, reload)
        assert view.get("deal-1").status is DealStatus.PENDING


@pytest.mark.unit
class TestDealReconciler:
    """Commands run through the full patch / write / reload pipeline."""

    @pytest.mark.asyncio
    async def test_successful_write_then_reload(self, store, seller):
        await seller.run(
            "deal-1",
            Accept("seller-1"),
            lambda: store.update_deal_status("deal-1", DealStatus.ACCEPTED, "seller-1"),
        )

        assert seller.view.get("deal-1").status is DealStatus.ACCEPTED
        assert store.call_count("get_deals_for_actor") == 2
        assert seller.superseded == []

    @pytest.mark.asyncio
    async def test_transient_write_reverts_and_surfaces(self, store, seller):
        store.fail("update_deal_offer", TransientStoreError("timeout"))

        with pytest.raises(TransientStoreError):
            await seller.run(
                "deal-1",
                Counter("seller-1", 480, 39),
                lambda: store.update_deal_offer("deal-1", 480, 39, "seller-1"),
            )

        deal = seller.view.get("deal-1")
        assert (deal.offer_quantity, deal.offer_price) == (500, 40)
        # Reload still happened after the failed write
        assert store.call_count("get_deals_for_actor") == 2

    @pytest.mark.asyncio
    async def test_store_precondition_failure_reloads_store_copy(self, store, seller):
        # Buyer rejected behind the seller's back; the seller's view is stale
        store.deals["deal-1"] = state_machine.reject(store.deals["deal-1"], "buyer-1")

        with pytest.raises(PreconditionFailedError):
            await seller.run(
                "deal-1",
                Accept("seller-1"),
                lambda: store.update_deal_status("deal-1", DealStatus.ACCEPTED, "seller-1"),
            )

        assert seller.view.get("deal-1").status is DealStatus.REJECTED

    @pytest.mark.asyncio
    async def test_local_validation_failure_issues_no_write(self, store, seller):
        with pytest.raises(ValidationFailedError):
            await seller.run(
                "deal-1",
                Counter("seller-1", 0, 39),
                lambda: store.update_deal_offer("deal-1", 0, 39, "seller-1"),
            )

        assert store.call_count("update_deal_offer") == 0
        assert seller.view.get("deal-1").offer_quantity == 500

    @pytest.mark.asyncio
    async def test_concurrent_counter_supersedes_local_proposal(self, store, seller):
        def buyer_counters_right_after(operation, deal_id):
            if operation == "update_deal_offer" and store.deals[deal_id].offer_price == 39:
                store.deals[deal_id] = state_machine.counter(store.deals[deal_id], "buyer-1", 450, 37)

        store.after_write.append(buyer_counters_right_after)

        await seller.run(
            "deal-1",
            Counter("seller-1", 480, 39),
            lambda: store.update_deal_offer("deal-1", 480, 39, "seller-1"),
        )

        deal = seller.view.get("deal-1")
        assert (deal.offer_quantity, deal.offer_price) == (450, 37)
        assert len(seller.superseded) == 1
        proposal = seller.superseded[0]
        assert proposal.local.offer_price == 39
        assert proposal.stored.offer_price == 37

    @pytest.mark.asyncio
    async def test_out_of_order_reload_is_discarded(self, store):
        reconciler = DealReconciler(store, "seller-1", ActorRole.SELLER)
        release_first = asyncio.Event()
        original = store.get_deals_for_actor
        snapshots = iter([[make_deal(offer_price=40)], [make_deal(offer_price=38)]])

        async def gated(actor_id, role):
            await original(actor_id, role)
            snapshot = next(snapshots)
            if snapshot[0].offer_price == 40:
                await release_first.wait()
            return snapshot

        store.get_deals_for_actor = gated

        first = asyncio.create_task(reconciler.reload())
        await asyncio.sleep(0)
        await reconciler.reload()
        release_first.set()
        await first

        assert reconciler.view.get("deal-1").offer_price == 38
