"""Wishlist item endpoints."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query, status

from app import schemas
from app.schemas import CollectionKind
from app.store import LibraryStore
from app.sync import BulkSync

from . import helpers

router = APIRouter()


@router.get("/wishlist", response_model=schemas.ListIssuesResponse)
async def list_wishlist(
    *,
    store: LibraryStore = Depends(helpers.get_store),
    page_size: int = Query(default=25, ge=1, le=helpers.MAX_PAGE_SIZE),
    page_token: str | None = None,
) -> schemas.ListIssuesResponse:
    return await helpers.list_items_page(
        store, CollectionKind.WISHLIST, page_size=page_size, page_token=page_token
    )


@router.post(
    "/wishlist",
    response_model=schemas.WishlistItem,
    status_code=status.HTTP_201_CREATED,
)
async def create_wishlist_item(
    *,
    sync: BulkSync = Depends(helpers.get_bulk_sync),
    request: schemas.CreateIssueRequest,
) -> schemas.WishlistItem:
    """Add a wanted issue under wishlist publisher and series rows."""
    return await helpers.add_item(sync, CollectionKind.WISHLIST, request)


@router.get("/wishlist/{item_id}", response_model=schemas.WishlistItem)
async def get_wishlist_item(
    item_id: int, store: LibraryStore = Depends(helpers.get_store)
) -> schemas.WishlistItem:
    return await helpers.fetch_item_or_404(store, CollectionKind.WISHLIST, item_id)


@router.patch("/wishlist/{item_id}", response_model=schemas.WishlistItem)
async def update_wishlist_item(
    item_id: int,
    request: schemas.UpdateIssueRequest,
    sync: BulkSync = Depends(helpers.get_bulk_sync),
) -> schemas.WishlistItem:
    return await helpers.edit_item(sync, CollectionKind.WISHLIST, item_id, request)


@router.delete("/wishlist/{item_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_wishlist_item(
    item_id: int, store: LibraryStore = Depends(helpers.get_store)
) -> None:
    await helpers.delete_item_or_404(store, CollectionKind.WISHLIST, item_id)
