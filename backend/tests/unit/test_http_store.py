"""
Unit tests for the HTTP deal store client.

WHAT: Test request shapes and the mapping of failures to domain exceptions
WHY: Engine code decides retry/surface/swallow purely by exception type
HOW: Mock HTTP with respx
"""

import asyncio
import json

import httpx
import pytest
import respx

from dealdesk.engine.http_store import HTTPDealStore, parse_unread_event
from dealdesk.models.deal import ActorRole, DealStatus
from dealdesk.utils.exceptions import (
    DealDeskException,
    NotFoundError,
    PreconditionFailedError,
    TransientStoreError,
    ValidationFailedError,
)

from tests.fixtures.fake_store import make_deal, make_listing

BASE_URL = "http://store.test/api/v1"


@pytest.fixture
async def store():
    store = HTTPDealStore(base_url=BASE_URL, timeout=1)
    yield store
    await store.aclose()


def deal_json(**overrides):
    return make_deal(**overrides).model_dump(mode="json")


@pytest.mark.unit
class TestRequests:
    """Successful calls and their payloads."""

    @respx.mock
    @pytest.mark.asyncio
    async def test_get_deals_for_actor(self, store):
        route = respx.get(f"{BASE_URL}/deals").mock(
            return_value=httpx.Response(200, json={"deals": [deal_json(), deal_json(id="deal-2")]})
        )

        deals = await store.get_deals_for_actor("seller-1", ActorRole.SELLER)

        assert [d.id for d in deals] == ["deal-1", "deal-2"]
        params = route.calls.last.request.url.params
        assert params["actor_id"] == "seller-1"
        assert params["role"] == "seller"

    @respx.mock
    @pytest.mark.asyncio
    async def test_update_deal_offer_payload(self, store):
        route = respx.post(f"{BASE_URL}/deals/deal-1/offer").mock(
            return_value=httpx.Response(200, json=deal_json(offer_quantity=450, offer_price=38))
        )

        deal = await store.update_deal_offer("deal-1", 450, 38, "buyer-1")

        assert deal.offer_price == 38
        body = json.loads(route.calls.last.request.content)
        assert body == {"quantity": 450, "price": 38, "actor_id": "buyer-1"}

    @respx.mock
    @pytest.mark.asyncio
    async def test_update_deal_status(self, store):
        respx.post(f"{BASE_URL}/deals/deal-1/status").mock(
            return_value=httpx.Response(200, json=deal_json(status="accepted"))
        )
        deal = await store.update_deal_status("deal-1", DealStatus.ACCEPTED, "seller-1")
        assert deal.status is DealStatus.ACCEPTED

    @respx.mock
    @pytest.mark.asyncio
    async def test_listing_roundtrip(self, store):
        respx.get(f"{BASE_URL}/listings").mock(
            return_value=httpx.Response(200, json={"listings": [make_listing().model_dump(mode="json")]})
        )
        delete = respx.delete(f"{BASE_URL}/listings/listing-1").mock(return_value=httpx.Response(204))

        listings = await store.get_listings_for_owner("seller-1")
        await store.delete_listing("listing-1", "seller-1")

        assert listings[0].name == "Tomatoes"
        assert delete.calls.last.request.url.params["actor_id"] == "seller-1"


@pytest.mark.unit
class TestErrorMapping:
    """HTTP failures become the matching domain exception."""

    @respx.mock
    @pytest.mark.asyncio
    @pytest.mark.parametrize("status_code,code,exc_class", [
        (409, "PRECONDITION_FAILED", PreconditionFailedError),
        (422, "VALIDATION_FAILED", ValidationFailedError),
        (400, "VALIDATION_ERROR", ValidationFailedError),
    ])
    async def test_error_payloads(self, store, status_code, code, exc_class):
        respx.post(f"{BASE_URL}/deals/deal-1/status").mock(
            return_value=httpx.Response(status_code, json={
                "error": code, "message": "nope", "details": None, "timestamp": "now"
            })
        )

        with pytest.raises(exc_class) as exc_info:
            await store.update_deal_status("deal-1", DealStatus.ACCEPTED, "seller-1")
        assert exc_info.value.message == "nope"

    @respx.mock
    @pytest.mark.asyncio
    async def test_not_found_keeps_kind_and_id(self, store):
        respx.get(f"{BASE_URL}/deals/deal-9").mock(
            return_value=httpx.Response(404, json={
                "error": "NOT_FOUND", "message": "Deal not found: deal-9",
                "details": {"kind": "deal", "id": "deal-9"}, "timestamp": "now"
            })
        )

        with pytest.raises(NotFoundError) as exc_info:
            await store.get_deal("deal-9")
        assert exc_info.value.kind == "deal"
        assert exc_info.value.record_id == "deal-9"

    @respx.mock
    @pytest.mark.asyncio
    async def test_server_error_is_transient(self, store):
        respx.post(f"{BASE_URL}/deals/deal-1/seen").mock(return_value=httpx.Response(503))

        with pytest.raises(TransientStoreError):
            await store.set_seen_flag("deal-1", "seller-1", True)

    @respx.mock
    @pytest.mark.asyncio
    async def test_timeout_is_transient(self, store):
        respx.delete(f"{BASE_URL}/listings/listing-1").mock(side_effect=httpx.ReadTimeout("slow"))

        with pytest.raises(TransientStoreError):
            await store.delete_listing("listing-1", "seller-1")

    @respx.mock
    @pytest.mark.asyncio
    async def test_connection_refused_is_transient(self, store):
        respx.get(f"{BASE_URL}/deals").mock(side_effect=httpx.ConnectError("refused"))

        with pytest.raises(TransientStoreError):
            await store.get_deals_for_actor("buyer-1", ActorRole.BUYER)

    @respx.mock
    @pytest.mark.asyncio
    async def test_unknown_error_code_falls_back_to_base(self, store):
        respx.get(f"{BASE_URL}/deals/deal-1").mock(
            return_value=httpx.Response(418, json={"error": "TEAPOT", "message": "short and stout"})
        )

        with pytest.raises(DealDeskException) as exc_info:
            await store.get_deal("deal-1")
        assert exc_info.value.code == "TEAPOT"


@pytest.mark.unit
class TestParseUnreadEvent:
    """SSE line parsing for the unread stream."""

    def test_data_line_with_count(self):
        assert parse_unread_event('data: {"type": "unread", "count": 3}') == 3

    @pytest.mark.parametrize("line", [
        "",
        "event: unread",
        ": ping",
        'data: {"type": "heartbeat"}',
        "data: not json",
    ])
    def test_other_lines_ignored(self, line):
        assert parse_unread_event(line) is None


@pytest.mark.unit
class TestUnreadSubscription:
    """Following the unread-count SSE stream."""

    @respx.mock
    @pytest.mark.asyncio
    async def test_callback_receives_streamed_counts(self, store):
        body = (
            'event: unread\ndata: {"type": "unread", "count": 0}\n\n'
            'event: heartbeat\ndata: {"type": "heartbeat"}\n\n'
            'event: unread\ndata: {"type": "unread", "count": 2}\n\n'
        )
        route = respx.get(f"{BASE_URL}/chats/deal_d1/unread/stream").mock(
            return_value=httpx.Response(200, text=body, headers={"content-type": "text/event-stream"})
        )
        counts = []

        unsubscribe = store.subscribe_unread_message_count("deal_d1", "buyer-1", counts.append)
        for _ in range(100):
            if len(counts) >= 2:
                break
            await asyncio.sleep(0.01)
        unsubscribe()

        assert counts[:2] == [0, 2]
        assert route.calls.last.request.url.params["actor_id"] == "buyer-1"
