"""
Unit tests for the notification tracker.

WHAT: Test unseen counts, single mark-seen and bulk mark-seen with partial failure
WHY: The badge must match what the store actually persisted
HOW: NotificationTracker over a DealReconciler backed by FakeDealStore
"""

import pytest

from dealdesk.engine.notifications import NotificationTracker
from dealdesk.engine.reconciliation import DealReconciler
from dealdesk.models.deal import ActorRole, DealStatus
from dealdesk.utils.exceptions import PreconditionFailedError, TransientStoreError

from tests.fixtures.fake_store import FakeDealStore, make_deal


@pytest.fixture
def store():
    store = FakeDealStore()
    store.seed_deal(make_deal(id="d1", seller_seen=False))
    store.seed_deal(make_deal(id="d2", seller_seen=False))
    store.seed_deal(make_deal(id="d3", seller_seen=False))
    store.seed_deal(make_deal(id="d4", seller_seen=True))
    store.seed_deal(make_deal(id="d5", seller_seen=False, status=DealStatus.ACCEPTED))
    return store


@pytest.fixture
async def tracker(store):
    reconciler = DealReconciler(store, "seller-1", ActorRole.SELLER)
    await reconciler.reload()
    return NotificationTracker(reconciler)


@pytest.mark.unit
class TestUnseenCounts:
    """Counts are derived from the loaded deal set."""

    @pytest.mark.asyncio
    async def test_only_pending_unseen_deals_count(self, tracker):
        assert tracker.unseen_count() == 3
        assert {d.id for d in tracker.list_unseen()} == {"d1", "d2", "d3"}

    @pytest.mark.asyncio
    async def test_buyer_side_uses_buyer_flag(self, store):
        store.seed_deal(make_deal(id="d6", buyer_seen=False))
        reconciler = DealReconciler(store, "buyer-1", ActorRole.BUYER)
        await reconciler.reload()

        assert NotificationTracker(reconciler).unseen_count() == 1


@pytest.mark.unit
class TestMarkSeen:
    """Single-deal mark-seen goes through reconciliation."""

    @pytest.mark.asyncio
    async def test_mark_seen_persists(self, tracker, store):
        await tracker.mark_seen("d1")

        assert store.deals["d1"].seller_seen is True
        assert tracker.unseen_count() == 2

    @pytest.mark.asyncio
    async def test_failed_mark_seen_reverts_and_raises(self, tracker, store):
        store.fail("set_seen_flag", TransientStoreError("timeout"), record_id="d1")

        with pytest.raises(TransientStoreError):
            await tracker.mark_seen("d1")

        assert tracker.unseen_count() == 3

    @pytest.mark.asyncio
    async def test_mark_seen_on_foreign_deal_rejected_locally(self, store):
        reconciler = DealReconciler(store, "buyer-2", ActorRole.BUYER)
        reconciler.view.put(make_deal(id="d1"))

        with pytest.raises(PreconditionFailedError):
            await NotificationTracker(reconciler).mark_seen("d1")
        assert store.call_count("set_seen_flag") == 0


@pytest.mark.unit
class TestMarkAllSeen:
    """Bulk mark-seen is best effort per record."""

    @pytest.mark.asyncio
    async def test_all_marked(self, tracker, store):
        result = await tracker.mark_all_seen()

        assert result.complete
        assert sorted(result.marked) == ["d1", "d2", "d3"]
        assert tracker.unseen_count() == 0
        assert all(store.deals[d].seller_seen for d in ("d1", "d2", "d3"))

    @pytest.mark.asyncio
    async def test_partial_failure_leaves_failed_deal_unseen(self, tracker, store):
        store.fail("set_seen_flag", TransientStoreError("timeout"), record_id="d2")

        result = await tracker.mark_all_seen()

        assert not result.complete
        assert result.failed == ["d2"]
        assert sorted(result.marked) == ["d1", "d3"]
        assert tracker.unseen_count() == 1
        assert [d.id for d in tracker.list_unseen()] == ["d2"]

    @pytest.mark.asyncio
    async def test_rejected_write_is_swallowed_without_stopping_siblings(self, tracker, store):
        store.fail("set_seen_flag", PreconditionFailedError(message="not a participant"), record_id="d1")

        result = await tracker.mark_all_seen()

        assert result.failed == ["d1"]
        assert sorted(result.marked) == ["d2", "d3"]
        assert store.deals["d2"].seller_seen and store.deals["d3"].seller_seen
        assert [d.id for d in tracker.list_unseen()] == ["d1"]

    @pytest.mark.asyncio
    async def test_deleted_deal_is_swallowed_and_dropped_by_reload(self, tracker, store):
        del store.deals["d3"]

        result = await tracker.mark_all_seen()

        assert result.failed == ["d3"]
        assert tracker.unseen_count() == 0
        assert "d3" not in tracker.reconciler.view

    @pytest.mark.asyncio
    async def test_nothing_unseen_is_a_no_op(self, store):
        reconciler = DealReconciler(store, "seller-9", ActorRole.SELLER)
        result = await NotificationTracker(reconciler).mark_all_seen()

        assert result.complete
        assert result.marked == []
        assert store.call_count("set_seen_flag") == 0
