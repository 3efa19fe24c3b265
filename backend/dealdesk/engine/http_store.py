"""
HTTP deal store client.

WHAT: DealStore implementation talking to the deal store service over HTTP
WHY: Each actor's client runs apart from the store and only shares it over the network
HOW: HTTPX async client; error payloads and transport failures mapped to domain exceptions
"""

import asyncio
import json
from typing import Callable, Optional

import httpx

from ..core.config import settings
from ..models.deal import ActorRole, Deal, DealKind, DealStatus, Listing
from ..utils.exceptions import (
    ERROR_CODES,
    DealDeskException,
    NotFoundError,
    PreconditionFailedError,
    TransientStoreError,
    ValidationFailedError,
)
from ..utils.logger import get_logger

logger = get_logger(__name__)

_STATUS_FALLBACK = {
    400: ValidationFailedError,
    404: NotFoundError,
    409: PreconditionFailedError,
    422: ValidationFailedError,
}


class HTTPDealStore:
    """Deal store client for the /api/v1 deal store service."""

    def __init__(
        self,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        client: Optional[httpx.AsyncClient] = None,
    ):
        """
        Initialize the client.

        Args:
            base_url: Service root including /api/v1 (defaults to DEAL_STORE_BASE_URL)
            timeout: Read timeout in seconds (defaults to DEAL_STORE_TIMEOUT)
            client: Pre-built httpx client (tests pass one with a mock/ASGI transport)
        """
        self.base_url = (base_url or settings.DEAL_STORE_BASE_URL).rstrip("/")
        self.timeout = timeout or settings.DEAL_STORE_TIMEOUT
        self.client = client or httpx.AsyncClient(
            timeout=httpx.Timeout(5.0, read=self.timeout),
            limits=httpx.Limits(max_keepalive_connections=10, max_connections=20),
        )
        self._subscriptions: set[asyncio.Task] = set()

    async def aclose(self) -> None:
        for task in list(self._subscriptions):
            task.cancel()
        await self.client.aclose()

    # ── transport ────────────────────────────────────────────────────────────

    async def _request(self, method: str, path: str, **kwargs) -> httpx.Response:
        url = f"{self.base_url}{path}"
        try:
            response = await self.client.request(method, url, **kwargs)
        except httpx.TimeoutException as e:
            logger.warning(f"Deal store timed out: {method} {path}")
            raise TransientStoreError(f"Deal store timed out: {method} {path}") from e
        except httpx.TransportError as e:
            logger.warning(f"Deal store unreachable: {method} {path}: {e}")
            raise TransientStoreError(f"Deal store unreachable: {e}") from e

        if response.status_code >= 500:
            raise TransientStoreError(
                f"Deal store error {response.status_code} on {method} {path}",
                details={"status_code": response.status_code},
            )
        if response.status_code >= 400:
            raise self._error_from_response(response, path)
        return response

    @staticmethod
    def _error_from_response(response: httpx.Response, path: str) -> DealDeskException:
        try:
            body = response.json()
        except ValueError:
            body = {}
        code = body.get("error") if isinstance(body, dict) else None
        message = (body.get("message") if isinstance(body, dict) else None) or response.text
        details = body.get("details") if isinstance(body, dict) else None

        exc_class = ERROR_CODES.get(code) or _STATUS_FALLBACK.get(response.status_code)
        if exc_class is NotFoundError:
            details = details or {}
            return NotFoundError(details.get("kind", "record"), details.get("id", path))
        if exc_class is None:
            return DealDeskException(message, code=code or f"HTTP_{response.status_code}", details=details)
        return exc_class(message, details=details)

    # ── deals ────────────────────────────────────────────────────────────────

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
        response = await self._request("POST", "/deals", json={
            "listing_id": listing_id,
            "buyer_id": buyer_id,
            "seller_id": seller_id,
            "kind": DealKind(kind).value,
            "quantity": quantity,
            "price": price,
            "buyer_name": buyer_name,
            "buyer_phone": buyer_phone,
            "buyer_location": buyer_location,
        })
        return Deal.model_validate(response.json())

    async def get_deal(self, deal_id: str) -> Deal:
        response = await self._request("GET", f"/deals/{deal_id}")
        return Deal.model_validate(response.json())

    async def get_deals_for_actor(self, actor_id: str, role: ActorRole) -> list[Deal]:
        response = await self._request(
            "GET", "/deals", params={"actor_id": actor_id, "role": ActorRole(role).value}
        )
        return [Deal.model_validate(item) for item in response.json()["deals"]]

    async def update_deal_status(self, deal_id: str, status: DealStatus, actor_id: str) -> Deal:
        response = await self._request(
            "POST", f"/deals/{deal_id}/status",
            json={"status": DealStatus(status).value, "actor_id": actor_id},
        )
        return Deal.model_validate(response.json())

    async def update_deal_offer(self, deal_id: str, quantity: float, price: float, actor_id: str) -> Deal:
        response = await self._request(
            "POST", f"/deals/{deal_id}/offer",
            json={"quantity": quantity, "price": price, "actor_id": actor_id},
        )
        return Deal.model_validate(response.json())

    async def set_seen_flag(self, deal_id: str, actor_id: str, seen: bool) -> None:
        await self._request(
            "POST", f"/deals/{deal_id}/seen", json={"actor_id": actor_id, "seen": seen}
        )

    # ── listings ─────────────────────────────────────────────────────────────

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
        response = await self._request("POST", "/listings", json={
            "owner_id": owner_id,
            "owner_name": owner_name,
            "name": name,
            "image": image,
            "rate": rate,
            "quantity": quantity,
            "unit": unit,
        })
        return Listing.model_validate(response.json())

    async def get_listings_for_owner(self, owner_id: str) -> list[Listing]:
        response = await self._request("GET", "/listings", params={"owner_id": owner_id})
        return [Listing.model_validate(item) for item in response.json()["listings"]]

    async def delete_listing(self, listing_id: str, actor_id: str) -> None:
        await self._request("DELETE", f"/listings/{listing_id}", params={"actor_id": actor_id})

    # ── chat unread subscription ─────────────────────────────────────────────

    def subscribe_unread_message_count(
        self,
        thread_id: str,
        actor_id: str,
        callback: Callable[[int], None],
    ) -> Callable[[], None]:
        """
        Follow the unread-count SSE stream of a thread.

        Must be called from a running event loop. The stream reconnects after
        UNREAD_RETRY_DELAY on failure. Returns an unsubscribe function.
        """
        task = asyncio.get_running_loop().create_task(
            self._follow_unread_stream(thread_id, actor_id, callback)
        )
        self._subscriptions.add(task)
        task.add_done_callback(self._subscriptions.discard)

        def unsubscribe() -> None:
            task.cancel()

        return unsubscribe

    async def _follow_unread_stream(
        self,
        thread_id: str,
        actor_id: str,
        callback: Callable[[int], None],
    ) -> None:
        url = f"{self.base_url}/chats/{thread_id}/unread/stream"
        while True:
            try:
                async with self.client.stream(
                    "GET", url, params={"actor_id": actor_id}, timeout=None
                ) as response:
                    response.raise_for_status()
                    async for line in response.aiter_lines():
                        count = parse_unread_event(line)
                        if count is not None:
                            callback(count)
                logger.info(f"Unread stream for {thread_id} closed by server, reconnecting")
            except asyncio.CancelledError:
                raise
            except (httpx.HTTPError, ValueError) as e:
                logger.warning(f"Unread stream for {thread_id} dropped: {e}")
            await asyncio.sleep(settings.UNREAD_RETRY_DELAY)


def parse_unread_event(line: str) -> Optional[int]:
    """Extract the count from an SSE 'data:' line; other lines yield None."""
    line = line.strip()
    if not line.startswith("data:"):
        return None
    try:
        payload = json.loads(line[5:].strip())
    except json.JSONDecodeError:
        return None
    if not isinstance(payload, dict) or "count" not in payload:
        return None
    return int(payload["count"])
