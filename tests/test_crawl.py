import json
from datetime import datetime, timezone

import httpx
import pytest

from app.crawl import SEARCH_NOTE, crawl_series, search_url, series_needing_crawl, to_utc_timestamp
from app.errors import NotFoundError, ScraperError
from app.schemas import CollectionKind, ScraperCredentials
from app.scraper import ScraperClient, resolve_scraper_timeout, resolve_scraper_url

COLLECTION = CollectionKind.COLLECTION

SAGA_LINK = "https://leagueofcomicgeeks.com/comics/series/111275/saga"


def scraper_returning(payload, status_code=200, seen=None) -> ScraperClient:
    def handler(request: httpx.Request) -> httpx.Response:
        if seen is not None:
            seen.append(json.loads(request.content))
        assert request.url.path == "/crawl"
        return httpx.Response(status_code, json=payload)

    return ScraperClient("http://scraper.test", transport=httpx.MockTransport(handler))


async def make_series(resolver, name="Saga", publisher="Image", **fields):
    pub = await resolver.find_or_create_publisher(COLLECTION, publisher)
    return await resolver.find_or_create_series(COLLECTION, name, pub.id, **fields)


def test_to_utc_timestamp_normalises_offsets():
    naive = datetime(2024, 5, 1, 12, 0, 0)
    assert to_utc_timestamp(naive) == "2024-05-01T12:00:00+00:00"
    aware = datetime.fromisoformat("2024-05-01T14:00:00+02:00")
    assert to_utc_timestamp(aware) == "2024-05-01T12:00:00+00:00"


def test_scraper_config_from_environment(monkeypatch):
    monkeypatch.delenv("COMICS_SCRAPER_URL", raising=False)
    assert resolve_scraper_url() is None
    monkeypatch.setenv("COMICS_SCRAPER_URL", "http://scraper:3000/")
    assert resolve_scraper_url() == "http://scraper:3000"
    monkeypatch.setenv("COMICS_SCRAPER_TIMEOUT", "bogus")
    assert resolve_scraper_timeout() == 60.0
    monkeypatch.setenv("COMICS_SCRAPER_TIMEOUT", "15")
    assert resolve_scraper_timeout() == 15.0


@pytest.mark.asyncio()
async def test_crawl_stores_advisory_counts(store, resolver):
    series = await make_series(resolver, total_issues=54, locg_link=SAGA_LINK)
    seen = []
    scraper = scraper_returning(
        {
            "success": True,
            "issueCount": 66,
            "regularIssues": 66,
            "annuals": 0,
            "run": "2012 - Present",
            "crawledAt": "2024-05-01T12:00:00Z",
        },
        seen=seen,
    )

    response = await crawl_series(
        store, scraper, series.id, ScraperCredentials(username="reader", password="s3cret")
    )

    assert seen == [
        {"url": SAGA_LINK, "credentials": {"username": "reader", "password": "s3cret"}}
    ]
    assert response.success is True
    assert response.issue_count == 66
    assert response.run_label == "2012 - Present"
    assert response.note is None
    assert response.series.locg_issue_count == 66
    assert response.series.last_crawled_at == "2024-05-01T12:00:00+00:00"
    # the declared run length is never overwritten by the scraper
    assert response.series.total_issues == 54


@pytest.mark.asyncio()
async def test_crawl_without_link_searches_the_catalogue(store, resolver):
    series = await make_series(resolver, name="Paper Girls")
    seen = []
    scraper = scraper_returning({"success": True, "issueCount": 30}, seen=seen)

    response = await crawl_series(store, scraper, series.id)

    assert seen[0]["url"] == search_url(series)
    assert seen[0]["url"].endswith("keyword=Paper+Girls+Image")
    assert "credentials" not in seen[0]
    assert response.note == SEARCH_NOTE
    assert response.regular_issues == 0


@pytest.mark.asyncio()
async def test_crawl_failure_leaves_series_untouched(store, resolver):
    series = await make_series(resolver, locg_link=SAGA_LINK)
    scraper = scraper_returning({"success": False, "error": "login required"})

    with pytest.raises(ScraperError, match="login required"):
        await crawl_series(store, scraper, series.id)

    stored = await store.get_series(COLLECTION, series.id)
    assert stored.locg_issue_count is None
    assert stored.last_crawled_at is None


@pytest.mark.asyncio()
async def test_crawl_http_error_is_a_scraper_error(store, resolver):
    series = await make_series(resolver, locg_link=SAGA_LINK)
    scraper = scraper_returning({"detail": "boom"}, status_code=500)
    with pytest.raises(ScraperError, match="HTTP 500"):
        await crawl_series(store, scraper, series.id)


@pytest.mark.asyncio()
async def test_crawl_unknown_series(store):
    scraper = scraper_returning({"success": True, "issueCount": 1})
    with pytest.raises(NotFoundError):
        await crawl_series(store, scraper, 12345)


@pytest.mark.asyncio()
async def test_series_needing_crawl_filters_by_age_and_link(store, resolver):
    stale = await make_series(resolver, name="Saga", locg_link=SAGA_LINK)
    fresh = await make_series(resolver, name="Monstress", locg_link="https://x/monstress")
    never = await make_series(resolver, name="Descender", locg_link="https://x/descender")
    await make_series(resolver, name="Unlinked")

    await store.update_series(COLLECTION, stale.id, {"last_crawled_at": "2024-04-01T00:00:00+00:00"})
    await store.update_series(COLLECTION, fresh.id, {"last_crawled_at": "2024-05-01T06:00:00+00:00"})

    now = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)
    due = await series_needing_crawl(store, 24, now=now)

    assert [s.id for s in due] == [never.id, stale.id]
