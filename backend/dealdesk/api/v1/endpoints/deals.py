"""
Deal endpoints.

WHAT: Create deals, list them per actor, and apply accept/reject/counter/seen writes
WHY: The store is the arbiter both actors' clients reconcile against
HOW: Every write is re-validated by the state machine inside SQLDealStore, so a
     client with a stale view gets PRECONDITION_FAILED instead of a silent overwrite
"""

from fastapi import APIRouter, Depends, Query, status

from ....core.deal_store import SQLDealStore, get_deal_store
from ....models.api_schemas import (
    CounterOfferRequest,
    CreateDealRequest,
    DealListResponse,
    SeenFlagRequest,
    UpdateStatusRequest,
)
from ....models.deal import ActorRole, Deal

router = APIRouter()


@router.post("/deals", response_model=Deal, status_code=status.HTTP_201_CREATED)
def create_deal(request: CreateDealRequest, store: SQLDealStore = Depends(get_deal_store)):
    """
    Open a deal on a listing.

    New deals start pending, seen by the buyer and unseen by the seller.
    """
    return store.create_deal(
        listing_id=request.listing_id,
        buyer_id=request.buyer_id,
        seller_id=request.seller_id,
        kind=request.kind,
        quantity=request.quantity,
        price=request.price,
        buyer_name=request.buyer_name,
        buyer_phone=request.buyer_phone,
        buyer_location=request.buyer_location,
    )


@router.get("/deals", response_model=DealListResponse)
def list_deals(
    actor_id: str = Query(..., min_length=1),
    role: ActorRole = Query(...),
    store: SQLDealStore = Depends(get_deal_store),
):
    """Deals where the actor plays `role`, most recent activity first."""
    return DealListResponse(deals=store.get_deals_for_actor(actor_id, role))


@router.get("/deals/{deal_id}", response_model=Deal)
def get_deal(deal_id: str, store: SQLDealStore = Depends(get_deal_store)):
    return store.get_deal(deal_id)


@router.post("/deals/{deal_id}/status", response_model=Deal)
def update_status(
    deal_id: str,
    request: UpdateStatusRequest,
    store: SQLDealStore = Depends(get_deal_store),
):
    return store.update_deal_status(deal_id, request.status, request.actor_id)


@router.post("/deals/{deal_id}/offer", response_model=Deal)
def counter_offer(
    deal_id: str,
    request: CounterOfferRequest,
    store: SQLDealStore = Depends(get_deal_store),
):
    return store.update_deal_offer(deal_id, request.quantity, request.price, request.actor_id)


@router.post("/deals/{deal_id}/seen", status_code=status.HTTP_204_NO_CONTENT)
def set_seen(
    deal_id: str,
    request: SeenFlagRequest,
    store: SQLDealStore = Depends(get_deal_store),
):
    store.set_seen_flag(deal_id, request.actor_id, request.seen)
