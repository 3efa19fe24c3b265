"""
Chat endpoints.

WHAT: Buyer/seller threads, messages, read receipts and unread counts
WHY: The negotiation client shows a live unread badge per thread
HOW: REST for writes; SSE stream for unread-count changes, fed by the store's
     subscription callbacks through an asyncio.Queue
"""

import asyncio
import json
from datetime import datetime
from typing import AsyncIterator

from fastapi import APIRouter, Depends, Query
from sse_starlette.sse import EventSourceResponse

from ....core.config import settings
from ....core.deal_store import SQLDealStore, get_deal_store
from ....models.api_schemas import (
    MarkReadRequest,
    OpenChatRequest,
    SendChatMessageRequest,
    UnreadCountResponse,
)
from ....models.deal import ChatThread
from ....utils.logger import get_logger

logger = get_logger(__name__)

router = APIRouter()


@router.post("/chats", response_model=ChatThread)
def open_chat(request: OpenChatRequest, store: SQLDealStore = Depends(get_deal_store)):
    return store.get_or_create_thread(
        buyer_id=request.buyer_id,
        seller_id=request.seller_id,
        actor_id=request.actor_id,
        deal_id=request.deal_id,
    )


@router.post("/chats/{thread_id}/messages", response_model=ChatThread)
def send_message(
    thread_id: str,
    request: SendChatMessageRequest,
    store: SQLDealStore = Depends(get_deal_store),
):
    return store.send_message(thread_id, request.sender_id, request.text)


@router.post("/chats/{thread_id}/read", response_model=ChatThread)
def mark_read(
    thread_id: str,
    request: MarkReadRequest,
    store: SQLDealStore = Depends(get_deal_store),
):
    return store.mark_thread_read(thread_id, request.actor_id)


@router.get("/chats/{thread_id}/unread", response_model=UnreadCountResponse)
def unread_count(
    thread_id: str,
    actor_id: str = Query(..., min_length=1),
    store: SQLDealStore = Depends(get_deal_store),
):
    return UnreadCountResponse(
        thread_id=thread_id,
        actor_id=actor_id,
        count=store.get_unread_count(thread_id, actor_id),
    )


async def unread_event_generator(
    store: SQLDealStore,
    thread_id: str,
    actor_id: str,
) -> AsyncIterator[dict]:
    """
    Generate SSE events for one actor's unread count on a thread.

    Yields the current count first, then every change, with heartbeats while idle.
    Store callbacks may fire on worker threads, so they hop onto the loop.
    """
    loop = asyncio.get_running_loop()
    queue: asyncio.Queue = asyncio.Queue()

    def on_count(count: int) -> None:
        loop.call_soon_threadsafe(queue.put_nowait, count)

    unsubscribe = store.subscribe_unread_message_count(thread_id, actor_id, on_count)
    logger.info(f"Unread stream opened for {actor_id} on {thread_id}")
    try:
        while True:
            try:
                count = await asyncio.wait_for(queue.get(), timeout=settings.SSE_HEARTBEAT_INTERVAL)
            except asyncio.TimeoutError:
                yield {
                    "event": "heartbeat",
                    "data": json.dumps({
                        "type": "heartbeat",
                        "timestamp": datetime.now().isoformat()
                    })
                }
                continue

            yield {
                "event": "unread",
                "data": json.dumps({
                    "type": "unread",
                    "thread_id": thread_id,
                    "count": count,
                    "timestamp": datetime.now().isoformat()
                })
            }
    finally:
        unsubscribe()
        logger.info(f"Unread stream closed for {actor_id} on {thread_id}")


@router.get("/chats/{thread_id}/unread/stream")
async def unread_stream(
    thread_id: str,
    actor_id: str = Query(..., min_length=1),
    store: SQLDealStore = Depends(get_deal_store),
):
    """SSE stream of unread-count changes for `actor_id` on a thread."""
    return EventSourceResponse(unread_event_generator(store, thread_id, actor_id))
