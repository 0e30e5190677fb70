"""Catalogue crawl endpoints for collection series."""

from __future__ import annotations

from fastapi import APIRouter, Body, Depends, Query

from app import crawl, schemas
from app.errors import LibraryError
from app.scraper import ScraperClient, get_scraper
from app.store import LibraryStore

from . import helpers

router = APIRouter()


@router.get("/series/needs-crawl", response_model=schemas.ListSeriesResponse)
async def list_series_needing_crawl(
    *,
    store: LibraryStore = Depends(helpers.get_store),
    max_age_hours: float = Query(default=24, gt=0),
) -> schemas.ListSeriesResponse:
    """Linked series never crawled, or last crawled before the cutoff."""
    series = await crawl.series_needing_crawl(store, max_age_hours)
    return schemas.ListSeriesResponse(series=series)


@router.put("/series/{series_id}/crawl", response_model=schemas.Series)
async def record_crawl_result(
    series_id: int,
    result: schemas.CrawlResult,
    store: LibraryStore = Depends(helpers.get_store),
) -> schemas.Series:
    """Store a result the scraper produced out of band."""
    try:
        return await crawl.apply_crawl_result(store, series_id, result)
    except LibraryError as exc:
        raise helpers.http_error(exc) from exc


@router.post("/series/{series_id}/crawl", response_model=schemas.CrawlResponse)
async def crawl_series(
    series_id: int,
    request: schemas.CrawlRequest | None = Body(default=None),
    store: LibraryStore = Depends(helpers.get_store),
    scraper: ScraperClient = Depends(get_scraper),
) -> schemas.CrawlResponse:
    """Crawl one series through the configured scraper service."""
    credentials = request.credentials if request is not None else None
    try:
        return await crawl.crawl_series(store, scraper, series_id, credentials)
    except LibraryError as exc:
        raise helpers.http_error(exc) from exc
