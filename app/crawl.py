"""Record scraper results on collection series."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from urllib.parse import quote_plus

from app import schemas
from app.errors import NotFoundError
from app.scraper import ScraperClient
from app.schemas import CollectionKind
from app.store import LibraryStore

logger = logging.getLogger(__name__)

CATALOGUE_SEARCH_URL = "https://leagueofcomicgeeks.com/search?keyword={query}"
SEARCH_NOTE = "Crawled from search results; verify the series and add its direct link"


def to_utc_timestamp(value: datetime) -> str:
    """Serialise a timestamp so stored values compare correctly as text."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat(timespec="seconds")


def search_url(series: schemas.Series) -> str:
    query = f"{series.name} {series.publisher_name or ''}".strip()
    return CATALOGUE_SEARCH_URL.format(query=quote_plus(query))


async def apply_crawl_result(
    store: LibraryStore, series_id: int, result: schemas.CrawlResult
) -> schemas.Series:
    """Write the advisory crawl fields; ``total_issues`` is never touched."""
    series = await store.get_series(CollectionKind.COLLECTION, series_id)
    if series is None:
        raise NotFoundError(f"series {series_id} not found")
    updated = await store.update_series(
        CollectionKind.COLLECTION,
        series_id,
        {
            "locg_issue_count": result.issue_count,
            "last_crawled_at": to_utc_timestamp(result.crawled_at),
            "run_label": result.run_label,
        },
    )
    logger.info(
        "recorded crawl for series %r: %s issues", updated.name, result.issue_count
    )
    return updated


async def series_needing_crawl(
    store: LibraryStore, max_age_hours: float = 24, *, now: datetime | None = None
) -> list[schemas.Series]:
    now = now or datetime.now(timezone.utc)
    cutoff = to_utc_timestamp(now - timedelta(hours=max_age_hours))
    return await store.series_needing_crawl(cutoff)


async def crawl_series(
    store: LibraryStore,
    scraper: ScraperClient,
    series_id: int,
    credentials: schemas.ScraperCredentials | None = None,
) -> schemas.CrawlResponse:
    """Ask the scraper about one series and store what it reports.

    A series without a catalogue link is crawled through a site search,
    and the response carries a note asking for the direct link.
    """
    series = await store.get_series(CollectionKind.COLLECTION, series_id)
    if series is None:
        raise NotFoundError(f"series {series_id} not found")

    note = None
    url = series.locg_link
    if not url:
        url = search_url(series)
        note = SEARCH_NOTE
        logger.info("series %r has no catalogue link, searching %s", series.name, url)

    result = await scraper.crawl_series(url, credentials)
    updated = await apply_crawl_result(store, series_id, result)
    return schemas.CrawlResponse(
        success=True,
        series_id=series_id,
        series_name=series.name,
        issue_count=result.issue_count,
        regular_issues=result.regular_issues or 0,
        annuals=result.annuals or 0,
        run_label=result.run_label,
        crawled_at=result.crawled_at,
        series=updated,
        note=note,
    )
