"""Series endpoints."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query

from app import schemas
from app.db import transaction
from app.errors import LibraryError
from app.resolver import IdentityResolver
from app.schemas import CollectionKind
from app.store import LibraryStore

from . import helpers

router = APIRouter()


@router.get("/series", response_model=schemas.ListSeriesResponse)
async def list_series(
    *,
    store: LibraryStore = Depends(helpers.get_store),
    collection_type: CollectionKind = Query(default=CollectionKind.COLLECTION),
    publisher: str | None = Query(default=None, description="Filter by publisher"),
    page_size: int = Query(default=25, ge=1, le=helpers.MAX_PAGE_SIZE),
    page_token: str | None = None,
) -> schemas.ListSeriesResponse:
    """Return paginated series of one catalogue, optionally filtered by publisher."""
    offset = helpers.parse_page_token(page_token)
    series = await store.list_series(
        collection_type, publisher=publisher, limit=page_size + 1, offset=offset
    )
    return schemas.ListSeriesResponse(
        series=series[:page_size],
        next_page_token=helpers.next_page_token(offset, page_size, len(series)),
    )


@router.post("/series", response_model=schemas.Series)
async def create_series(
    *,
    store: LibraryStore = Depends(helpers.get_store),
    resolver: IdentityResolver = Depends(helpers.get_resolver),
    request: schemas.CreateSeriesRequest,
) -> schemas.Series:
    """Find or create a series and its publisher.

    An existing series is returned unchanged; the optional fields only seed
    a newly created row.
    """
    kind = request.collection_type
    try:
        async with transaction(store.conn):
            publisher = await resolver.find_or_create_publisher(
                kind, request.publisher_name
            )
            return await resolver.find_or_create_series(
                kind,
                request.name,
                publisher.id,
                total_issues=request.total_issues,
                locg_link=request.locg_link,
                start_date=request.start_date,
                end_date=request.end_date,
            )
    except LibraryError as exc:
        raise helpers.http_error(exc) from exc


@router.get("/series/{series_id}", response_model=schemas.Series)
async def get_series(
    series_id: int,
    store: LibraryStore = Depends(helpers.get_store),
    collection_type: CollectionKind = Query(default=CollectionKind.COLLECTION),
) -> schemas.Series:
    """Fetch a single series by identifier."""
    return await helpers.fetch_series_or_404(store, collection_type, series_id)


@router.get("/series/{series_id}/issues", response_model=schemas.ListIssuesResponse)
async def list_series_issues(
    series_id: int,
    store: LibraryStore = Depends(helpers.get_store),
    collection_type: CollectionKind = Query(default=CollectionKind.COLLECTION),
    page_size: int = Query(default=25, ge=1, le=helpers.MAX_PAGE_SIZE),
    page_token: str | None = None,
) -> schemas.ListIssuesResponse:
    """Return the issues (or wishlist items) of one series by number."""
    await helpers.fetch_series_or_404(store, collection_type, series_id)
    return await helpers.list_items_page(
        store,
        collection_type,
        page_size=page_size,
        page_token=page_token,
        series_id=series_id,
    )
