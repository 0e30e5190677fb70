"""Redis response caching utilities and middleware."""

from __future__ import annotations

import asyncio
import base64
import hashlib
import json
import logging
import os
from dataclasses import dataclass
from typing import Awaitable, Callable, Iterable
from urllib.parse import parse_qs

from fastapi import Request, Response
from fastapi.concurrency import iterate_in_threadpool
from redis.asyncio import Redis
from starlette.middleware.base import BaseHTTPMiddleware

logger = logging.getLogger(__name__)

DEFAULT_REDIS_URL = "redis://localhost:6379/0"
REDIS_URL_ENV_VAR = "COMICS_REDIS_URL"
CACHE_TTL_ENV_VAR = "COMICS_CACHE_TTL_SECONDS"
DEFAULT_CACHE_TTL = 60

TAG_KEY_PREFIX = "cache:tag:"


@dataclass(frozen=True)
class TagInfo:
    """Tags for caching and related resource invalidations."""

    cache_tags: frozenset[str]
    related_tags: frozenset[str]


class _RedisClientManager:
    """Manage a per-event-loop Redis client."""

    _instance: "_RedisClientManager | None" = None

    def __init__(self) -> None:
        self._client: Redis | None = None
        self._loop: asyncio.AbstractEventLoop | None = None

    @classmethod
    def instance(cls) -> "_RedisClientManager":
        if cls._instance is None:
            cls._instance = cls()
        return cls._instance

    async def client(self) -> Redis:
        loop = asyncio.get_running_loop()
        if (
            self._client is None
            or self._loop is None
            or self._loop.is_closed()
            or self._loop != loop
        ):
            await self._close_locked()
            redis_url = os.environ.get(REDIS_URL_ENV_VAR, DEFAULT_REDIS_URL)
            self._client = Redis.from_url(redis_url, decode_responses=False)
            self._loop = loop
        return self._client

    async def close(self) -> None:
        await self._close_locked()

    async def _close_locked(self) -> None:
        client = self._client
        loop = self._loop
        if client is None:
            return
        self._client = None
        self._loop = None
        try:
            if (
                loop is not None
                and loop is not asyncio.get_running_loop()
                and loop.is_running()
                and not loop.is_closed()
            ):
                # Ensure the close coroutine runs on the loop that created the client.
                future = asyncio.run_coroutine_threadsafe(client.aclose(), loop)
                try:
                    await asyncio.wrap_future(future)
                except asyncio.CancelledError:  # pragma: no cover - defensive
                    future.cancel()
                    logger.warning(
                        "redis close cancelled on shutting-down loop; ignoring"
                    )
            else:
                await client.aclose()
        except asyncio.CancelledError:  # pragma: no cover - defensive
            logger.warning("redis close cancelled; assuming loop shutdown")
        except Exception as exc:  # pragma: no cover - defensive
            logger.debug("failed to close redis client cleanly: %s", exc)


async def get_redis_client() -> Redis:
    """Return a singleton Redis client."""
    return await _RedisClientManager.instance().client()


async def close_redis_client() -> None:
    """Close the cached Redis client if it exists."""
    await _RedisClientManager.instance().close()


async def invalidate_tags(tags: Iterable[str]) -> None:
    """Remove cache entries for the provided tag identifiers."""
    filtered = [tag for tag in set(tags) if tag]
    if not filtered:
        return
    try:
        redis = await get_redis_client()
    except Exception as exc:  # pragma: no cover - defensive
        logger.warning("redis unavailable, cannot invalidate tags: %s", exc)
        return
    for tag in filtered:
        try:
            await _invalidate_tag(redis, tag)
        except Exception as exc:
            logger.warning("failed to invalidate tag %s: %s", tag, exc)


def catalogue_tag(kind: str) -> str:
    return f"catalogue:{kind}"


COMBINED_TAG = "catalogue:combined"
ALL_CATALOGUE_TAGS = frozenset(
    {catalogue_tag("collection"), catalogue_tag("wishlist"), COMBINED_TAG}
)


def _query_kind(query: str) -> str | None:
    values = parse_qs(query or "").get("collection_type")
    if values and values[-1] in {"collection", "wishlist"}:
        return values[-1]
    return None


def _catalogue(kind: str) -> TagInfo:
    return TagInfo(frozenset({catalogue_tag(kind)}), frozenset({COMBINED_TAG}))


def derive_tags(path: str, query: str = "", *, mutation: bool = False) -> TagInfo:
    """Compute cache tags associated with a request.

    Responses are tagged with the catalogue they read. A write tags the
    catalogue it changes and lists the combined views as related, since
    those read both catalogues. Writes whose target catalogue travels in
    the request body touch every catalogue tag.
    """
    segments = [segment for segment in path.strip("/").split("/") if segment]
    if segments[:1] == ["v1"]:
        segments = segments[1:]
    if not segments:
        return TagInfo(frozenset({"root"}), frozenset())
    head = segments[0]

    if segments[1:2] == ["sync"]:
        return TagInfo(ALL_CATALOGUE_TAGS, frozenset())
    if head == "issues":
        return _catalogue("collection")
    if head == "wishlist":
        return _catalogue("wishlist")
    if head == "combined-series":
        return TagInfo(frozenset({COMBINED_TAG}), frozenset())
    if head in {"transfer", "import"}:
        return TagInfo(ALL_CATALOGUE_TAGS, frozenset())
    if head in {"publishers", "series"}:
        tail = segments[1:]
        if tail[:1] == ["needs-crawl"] or tail[-1:] == ["crawl"]:
            return _catalogue("collection")
        kind = _query_kind(query)
        if kind is None and mutation:
            return TagInfo(ALL_CATALOGUE_TAGS, frozenset())
        return _catalogue(kind or "collection")
    return TagInfo(frozenset({f"path:{path}"}), frozenset())


def _cache_ttl() -> int:
    raw = os.environ.get(CACHE_TTL_ENV_VAR)
    if not raw:
        return DEFAULT_CACHE_TTL
    try:
        value = int(raw)
    except ValueError:
        return DEFAULT_CACHE_TTL
    return max(value, 1)


class RedisResponseCacheMiddleware(BaseHTTPMiddleware):
    """Middleware that caches idempotent responses and busts cache on mutations."""

    SAFE_METHODS: set[str] = {"GET"}
    _SKIP_HEADERS = {"content-length", "date", "server"}

    def __init__(
        self,
        app,
        *,
        redis_factory: Callable[[], Awaitable[Redis]] = get_redis_client,
        cache_ttl_seconds: int | None = None,
    ) -> None:
        """Wrap ``app`` with a response cache backed by ``redis_factory``."""
        super().__init__(app)
        self._redis_factory = redis_factory
        self._cache_ttl = cache_ttl_seconds or _cache_ttl()

    async def dispatch(self, request: Request, call_next):
        """Serve cached GET responses and drop catalogue tags after writes."""
        try:
            redis = await self._redis_factory()
        except Exception as exc:  # pragma: no cover - defensive
            logger.warning("redis unavailable, skipping cache: %s", exc)
            return await call_next(request)

        method = request.method.upper()
        if method in self.SAFE_METHODS:
            return await self._handle_read(request, call_next, redis)
        return await self._handle_mutation(request, call_next, redis)

    async def _handle_read(self, request: Request, call_next, redis: Redis) -> Response:
        tags = derive_tags(request.url.path, request.url.query).cache_tags or frozenset(
            {f"path:{request.url.path}"}
        )
        cache_key = self._cache_key(request)
        cached = None
        try:
            cached = await redis.get(cache_key)
        except Exception as exc:  # pragma: no cover - defensive
            logger.warning("failed to read cache: %s", exc)
        if cached:
            try:
                payload = json.loads(cached)
                body = base64.b64decode(payload["body"])
                logger.info(
                    "cache hit for %s %s tags=%s",
                    request.method,
                    request.url.path,
                    sorted(tags),
                )
                response = Response(
                    content=body,
                    status_code=payload["status_code"],
                    media_type=payload.get("media_type"),
                )
                for key, value in payload.get("headers", {}).items():
                    response.headers[key] = value
                response.headers["x-cache"] = "hit"
                return response
            except Exception as exc:  # pragma: no cover - defensive
                logger.warning("failed to deserialize cache entry: %s", exc)
                await redis.delete(cache_key)

        response = await call_next(request)
        body = await self._consume_body(response)
        if response.status_code < 500:
            entry = {
                "status_code": response.status_code,
                "media_type": response.media_type,
                "headers": self._cache_headers(response.headers.items()),
                "body": base64.b64encode(body).decode("ascii"),
            }
            try:
                await redis.setex(cache_key, self._cache_ttl, json.dumps(entry))
                await _register_tags(redis, cache_key, tags, self._cache_ttl)
                logger.info(
                    "cache stored for %s %s tags=%s ttl=%s",
                    request.method,
                    request.url.path,
                    sorted(tags),
                    self._cache_ttl,
                )
            except Exception as exc:  # pragma: no cover - defensive
                logger.warning("failed to cache response: %s", exc)
        response.headers["x-cache"] = "miss"
        response.body_iterator = iterate_in_threadpool(iter([body]))
        return response

    async def _handle_mutation(
        self, request: Request, call_next, redis: Redis
    ) -> Response:
        response = await call_next(request)
        if response.status_code < 500:
            info = derive_tags(request.url.path, request.url.query, mutation=True)
            tags = set(info.cache_tags) | set(info.related_tags)
            if tags:
                await _invalidate_tag_set(redis, tags)
        return response

    def _cache_key(self, request: Request) -> str:
        descriptor = json.dumps(
            {
                "method": request.method,
                "path": request.url.path,
                "query": request.url.query,
                "accept": request.headers.get("accept"),
            },
            separators=(",", ":"),
            sort_keys=True,
        ).encode()
        digest = hashlib.sha256(descriptor).hexdigest()
        return f"cache:responses:{digest}"

    async def _consume_body(self, response: Response) -> bytes:
        body = b""
        async for chunk in response.body_iterator:
            body += chunk
        return body

    def _cache_headers(self, headers: Iterable[tuple[str, str]]) -> dict[str, str]:
        filtered: dict[str, str] = {}
        for key, value in headers:
            if key.lower() in self._SKIP_HEADERS:
                continue
            filtered[key] = value
        return filtered


async def _register_tags(
    redis: Redis, cache_key: str, tags: Iterable[str], ttl: int
) -> None:
    tag_list = [tag for tag in tags if tag]
    if not tag_list:
        return
    pipe = redis.pipeline()
    for tag in tag_list:
        key = TAG_KEY_PREFIX + tag
        pipe.sadd(key, cache_key)
        pipe.expire(key, ttl)
    await pipe.execute()


async def _invalidate_tag(redis: Redis, tag: str) -> None:
    key = TAG_KEY_PREFIX + tag
    members = await redis.smembers(key)
    if members:
        await redis.delete(*members)
    await redis.delete(key)
    logger.info("invalidated tag %s (%s keys)", tag, len(members))


async def _invalidate_tag_set(
    redis: Redis, tags: Iterable[str], *, retries: int = 2
) -> None:
    for tag in tags:
        attempt = 0
        while True:
            try:
                await _invalidate_tag(redis, tag)
                break
            except asyncio.CancelledError:  # pragma: no cover - defensive
                logger.warning("tag invalidation cancelled for %s", tag)
                return
            except Exception as exc:  # pragma: no cover - transient redis issues
                if attempt >= retries:
                    logger.warning("failed to invalidate tag %s: %s", tag, exc)
                    break
                backoff = min(0.05 * (attempt + 1), 0.25)
                logger.debug(
                    "retrying invalidation for %s after %ss: %s",
                    tag,
                    backoff,
                    exc,
                )
                await asyncio.sleep(backoff)
                attempt += 1


__all__ = [
    "ALL_CATALOGUE_TAGS",
    "RedisResponseCacheMiddleware",
    "close_redis_client",
    "derive_tags",
    "get_redis_client",
    "invalidate_tags",
]
