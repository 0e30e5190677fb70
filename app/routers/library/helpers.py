"""Common helpers shared by the library routers."""

from __future__ import annotations

import logging

import aiosqlite
from fastapi import Depends, HTTPException, status

from app import schemas
from app.db import get_connection
from app.errors import (
    DuplicateIssueError,
    IdentityConflictError,
    LibraryError,
    NotFoundError,
    ScraperError,
    StoreError,
    ValidationError,
)
from app.reconciler import SeriesReconciler
from app.resolver import IdentityResolver
from app.schemas import CollectionKind
from app.store import LibraryStore
from app.sync import BulkSync
from app.transfer import TransferEngine

logger = logging.getLogger(__name__)

MAX_PAGE_SIZE = 100

ERROR_STATUS: dict[type[LibraryError], int] = {
    NotFoundError: status.HTTP_404_NOT_FOUND,
    ValidationError: status.HTTP_400_BAD_REQUEST,
    DuplicateIssueError: status.HTTP_409_CONFLICT,
    IdentityConflictError: status.HTTP_409_CONFLICT,
    ScraperError: status.HTTP_502_BAD_GATEWAY,
    StoreError: status.HTTP_500_INTERNAL_SERVER_ERROR,
}


def parse_page_token(page_token: str | None) -> int:
    if not page_token:
        return 0
    try:
        offset = int(page_token)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail="invalid page_token") from exc
    if offset < 0:
        raise HTTPException(status_code=400, detail="invalid page_token")
    return offset


def next_page_token(offset: int, page_size: int, rows_returned: int) -> str | None:
    if rows_returned > page_size:
        return str(offset + page_size)
    return None


def status_for(exc: LibraryError) -> int:
    for error_cls in type(exc).__mro__:
        if error_cls in ERROR_STATUS:
            return ERROR_STATUS[error_cls]
    return status.HTTP_500_INTERNAL_SERVER_ERROR


def http_error(exc: LibraryError) -> HTTPException:
    """Translate a domain error into the HTTP error routers raise."""
    code = status_for(exc)
    if code >= 500:
        logger.error("%s: %s", exc.error_type, exc.message)
    return HTTPException(status_code=code, detail=exc.message)


async def get_store(
    conn: aiosqlite.Connection = Depends(get_connection),
) -> LibraryStore:
    return LibraryStore(conn)


async def get_resolver(store: LibraryStore = Depends(get_store)) -> IdentityResolver:
    return IdentityResolver(store)


async def get_reconciler(
    store: LibraryStore = Depends(get_store),
) -> SeriesReconciler:
    return SeriesReconciler(store)


async def get_transfer_engine(
    store: LibraryStore = Depends(get_store),
    resolver: IdentityResolver = Depends(get_resolver),
) -> TransferEngine:
    return TransferEngine(store, resolver)


async def get_bulk_sync(
    store: LibraryStore = Depends(get_store),
    resolver: IdentityResolver = Depends(get_resolver),
) -> BulkSync:
    return BulkSync(store, resolver)


async def fetch_series_or_404(
    store: LibraryStore, kind: CollectionKind, series_id: int
) -> schemas.Series:
    series = await store.get_series(kind, series_id)
    if series is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"series {series_id} not found",
        )
    return series


async def fetch_item_or_404(
    store: LibraryStore, kind: CollectionKind, item_id: int
) -> schemas.Issue:
    item = await store.get_item(kind, item_id)
    if item is None:
        label = "wishlist item" if kind is CollectionKind.WISHLIST else "issue"
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"{label} {item_id} not found",
        )
    return item


async def add_item(
    sync: BulkSync, kind: CollectionKind, request: schemas.CreateIssueRequest
) -> schemas.Issue:
    try:
        return await sync.add_issue(request, kind)
    except LibraryError as exc:
        raise http_error(exc) from exc


async def edit_item(
    sync: BulkSync,
    kind: CollectionKind,
    item_id: int,
    request: schemas.UpdateIssueRequest,
) -> schemas.Issue:
    try:
        return await sync.edit_issue(item_id, request, kind)
    except LibraryError as exc:
        raise http_error(exc) from exc


async def delete_item_or_404(
    store: LibraryStore, kind: CollectionKind, item_id: int
) -> None:
    try:
        deleted = await store.delete_item(kind, item_id)
    except LibraryError as exc:
        raise http_error(exc) from exc
    if not deleted:
        label = "wishlist item" if kind is CollectionKind.WISHLIST else "issue"
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"{label} {item_id} not found",
        )


async def list_items_page(
    store: LibraryStore,
    kind: CollectionKind,
    *,
    page_size: int,
    page_token: str | None,
    series_id: int | None = None,
) -> schemas.ListIssuesResponse:
    """Fetch one page of items, reading one extra row to detect a next page."""
    offset = parse_page_token(page_token)
    items = await store.list_items(
        kind, series_id=series_id, limit=page_size + 1, offset=offset
    )
    return schemas.ListIssuesResponse(
        issues=items[:page_size],
        next_page_token=next_page_token(offset, page_size, len(items)),
    )
