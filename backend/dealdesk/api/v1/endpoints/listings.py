"""
Listing endpoints.

WHAT: Create, read and delete seller listings
WHY: Buyers open deals against listings; sellers remove them once sold
HOW: Thin handlers over SQLDealStore; domain errors become HTTP errors in the
     global exception handlers
"""

from fastapi import APIRouter, Depends, Query, status

from ....core.deal_store import SQLDealStore, get_deal_store
from ....models.api_schemas import CreateListingRequest, ListingListResponse
from ....models.deal import Listing

router = APIRouter()


@router.post("/listings", response_model=Listing, status_code=status.HTTP_201_CREATED)
def create_listing(request: CreateListingRequest, store: SQLDealStore = Depends(get_deal_store)):
    return store.create_listing(
        owner_id=request.owner_id,
        name=request.name,
        rate=request.rate,
        quantity=request.quantity,
        unit=request.unit,
        owner_name=request.owner_name,
        image=request.image,
    )


@router.get("/listings", response_model=ListingListResponse)
def list_listings(
    owner_id: str = Query(..., min_length=1),
    store: SQLDealStore = Depends(get_deal_store),
):
    """Active listings of one owner, newest first."""
    return ListingListResponse(listings=store.get_listings_for_owner(owner_id))


@router.get("/listings/{listing_id}", response_model=Listing)
def get_listing(listing_id: str, store: SQLDealStore = Depends(get_deal_store)):
    return store.get_listing(listing_id)


@router.delete("/listings/{listing_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_listing(
    listing_id: str,
    actor_id: str = Query(..., min_length=1),
    store: SQLDealStore = Depends(get_deal_store),
):
    """Owner-only delete; the listing's stored image is removed with it."""
    store.delete_listing(listing_id, actor_id)
