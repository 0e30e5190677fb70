"""HTTP client for the external League of Comic Geeks scraper service.

The scraper drives a browser against the catalogue site and reports how many
issues a series has. This service only forwards a series URL and stores the
advisory counts it gets back.
"""

from __future__ import annotations

import logging
import os
from datetime import datetime, timezone
from typing import Any

import httpx
from fastapi import HTTPException, status

from app import schemas
from app.errors import ScraperError

logger = logging.getLogger(__name__)

SCRAPER_URL_ENV_VAR = "COMICS_SCRAPER_URL"
SCRAPER_TIMEOUT_ENV_VAR = "COMICS_SCRAPER_TIMEOUT"
DEFAULT_SCRAPER_TIMEOUT = 60.0


def resolve_scraper_url() -> str | None:
    value = os.environ.get(SCRAPER_URL_ENV_VAR, "").strip()
    return value.rstrip("/") or None


def resolve_scraper_timeout() -> float:
    raw = os.environ.get(SCRAPER_TIMEOUT_ENV_VAR)
    if not raw:
        return DEFAULT_SCRAPER_TIMEOUT
    try:
        return max(float(raw), 1.0)
    except ValueError:
        return DEFAULT_SCRAPER_TIMEOUT


def _parse_timestamp(value: Any) -> datetime:
    if not value:
        return datetime.now(timezone.utc)
    try:
        return datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError as exc:
        raise ScraperError(f"scraper returned an invalid timestamp {value!r}") from exc


class ScraperClient:
    """Thin async wrapper over ``POST {base_url}/crawl``."""

    def __init__(
        self,
        base_url: str,
        *,
        timeout: float = DEFAULT_SCRAPER_TIMEOUT,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._transport = transport

    async def crawl_series(
        self,
        url: str,
        credentials: schemas.ScraperCredentials | None = None,
    ) -> schemas.CrawlResult:
        payload: dict[str, Any] = {"url": url}
        if credentials is not None:
            payload["credentials"] = credentials.model_dump()

        async with httpx.AsyncClient(
            base_url=self.base_url, timeout=self.timeout, transport=self._transport
        ) as client:
            try:
                response = await client.post("/crawl", json=payload)
                response.raise_for_status()
                data = response.json()
            except httpx.HTTPStatusError as exc:
                logger.warning("scraper returned %s for %s", exc.response.status_code, url)
                raise ScraperError(
                    f"scraper returned HTTP {exc.response.status_code} for {url}"
                ) from exc
            except (httpx.HTTPError, ValueError) as exc:
                logger.warning("scraper request for %s failed: %s", url, exc)
                raise ScraperError(f"scraper request for {url} failed: {exc}") from exc

        if not data.get("success", False):
            raise ScraperError(data.get("error") or f"scraper could not crawl {url}")
        issue_count = data.get("issueCount", data.get("issue_count"))
        if issue_count is None:
            raise ScraperError(f"scraper returned no issue count for {url}")
        try:
            return schemas.CrawlResult(
                issue_count=issue_count,
                regular_issues=data.get("regularIssues", data.get("regular_issues")),
                annuals=data.get("annuals"),
                run_label=data.get("run", data.get("run_label")),
                crawled_at=_parse_timestamp(data.get("crawledAt", data.get("crawled_at"))),
            )
        except ValueError as exc:
            raise ScraperError(f"scraper returned an invalid result for {url}: {exc}") from exc


def get_scraper() -> ScraperClient:
    """FastAPI dependency returning the configured scraper client."""
    base_url = resolve_scraper_url()
    if base_url is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=f"scraper is not configured; set {SCRAPER_URL_ENV_VAR}",
        )
    return ScraperClient(base_url, timeout=resolve_scraper_timeout())
