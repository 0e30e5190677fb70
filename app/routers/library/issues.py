"""Collection issue endpoints."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query, status

from app import schemas
from app.schemas import CollectionKind
from app.store import LibraryStore
from app.sync import BulkSync

from . import helpers

router = APIRouter()


@router.get("/issues", response_model=schemas.ListIssuesResponse)
async def list_issues(
    *,
    store: LibraryStore = Depends(helpers.get_store),
    page_size: int = Query(default=25, ge=1, le=helpers.MAX_PAGE_SIZE),
    page_token: str | None = None,
) -> schemas.ListIssuesResponse:
    """Return owned issues ordered by series and number, one page at a time."""
    return await helpers.list_items_page(
        store, CollectionKind.COLLECTION, page_size=page_size, page_token=page_token
    )


@router.post(
    "/issues",
    response_model=schemas.Issue,
    status_code=status.HTTP_201_CREATED,
)
async def create_issue(
    *,
    sync: BulkSync = Depends(helpers.get_bulk_sync),
    request: schemas.CreateIssueRequest,
) -> schemas.Issue:
    """Add an issue to the collection; duplicates are rejected with 409."""
    return await helpers.add_item(sync, CollectionKind.COLLECTION, request)


@router.get("/issues/{issue_id}", response_model=schemas.Issue)
async def get_issue(
    issue_id: int, store: LibraryStore = Depends(helpers.get_store)
) -> schemas.Issue:
    return await helpers.fetch_item_or_404(store, CollectionKind.COLLECTION, issue_id)


@router.patch("/issues/{issue_id}", response_model=schemas.Issue)
async def update_issue(
    issue_id: int,
    request: schemas.UpdateIssueRequest,
    sync: BulkSync = Depends(helpers.get_bulk_sync),
) -> schemas.Issue:
    """Apply partial updates to an issue; an edit that duplicates another is a 409."""
    return await helpers.edit_item(sync, CollectionKind.COLLECTION, issue_id, request)


@router.delete("/issues/{issue_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_issue(
    issue_id: int, store: LibraryStore = Depends(helpers.get_store)
) -> None:
    """Remove an issue from the collection."""
    await helpers.delete_item_or_404(store, CollectionKind.COLLECTION, issue_id)
