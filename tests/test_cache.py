import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from app import cache
from app.cache import (
    ALL_CATALOGUE_TAGS,
    COMBINED_TAG,
    RedisResponseCacheMiddleware,
    derive_tags,
)

COLLECTION_TAG = "catalogue:collection"
WISHLIST_TAG = "catalogue:wishlist"


class FakePipeline:
    def __init__(self, redis: "FakeRedis") -> None:
        self.redis = redis
        self.calls = []

    def sadd(self, key, member):
        self.calls.append(("sadd", key, member))

    def expire(self, key, ttl):
        self.calls.append(("expire", key, ttl))

    async def execute(self):
        for name, key, value in self.calls:
            if name == "sadd":
                self.redis.sets.setdefault(key, set()).add(value)


class FakeRedis:
    """Just enough of redis.asyncio.Redis for the cache middleware."""

    def __init__(self) -> None:
        self.values: dict[str, bytes] = {}
        self.sets: dict[str, set] = {}

    async def get(self, key):
        return self.values.get(key)

    async def setex(self, key, ttl, value):
        self.values[key] = value.encode() if isinstance(value, str) else value

    async def smembers(self, key):
        return set(self.sets.get(key, set()))

    async def delete(self, *keys):
        for key in keys:
            self.values.pop(key, None)
            self.sets.pop(key, None)

    def pipeline(self):
        return FakePipeline(self)


@pytest.mark.parametrize(
    ("path", "query", "expected"),
    [
        ("/v1/issues", "", {COLLECTION_TAG}),
        ("/v1/issues/4", "", {COLLECTION_TAG}),
        ("/v1/wishlist", "", {WISHLIST_TAG}),
        ("/v1/series", "collection_type=wishlist", {WISHLIST_TAG}),
        ("/v1/series/3/issues", "", {COLLECTION_TAG}),
        ("/v1/publishers", "collection_type=collection", {COLLECTION_TAG}),
        ("/v1/series/needs-crawl", "", {COLLECTION_TAG}),
        ("/v1/combined-series/combined-1-2", "", {COMBINED_TAG}),
    ],
)
def test_derive_tags_for_reads(path, query, expected):
    assert derive_tags(path, query).cache_tags == frozenset(expected)


def test_catalogue_writes_invalidate_combined_views():
    info = derive_tags("/v1/wishlist", mutation=True)
    assert info.cache_tags == {WISHLIST_TAG}
    assert info.related_tags == {COMBINED_TAG}


@pytest.mark.parametrize(
    "path",
    [
        "/v1/transfer/wishlist-to-collection",
        "/v1/import/process",
        "/v1/series/sync",
        "/v1/issues/sync",
        "/v1/series",
        "/v1/publishers",
    ],
)
def test_writes_with_body_scoped_kind_touch_every_catalogue(path):
    info = derive_tags(path, mutation=True)
    assert set(info.cache_tags) | set(info.related_tags) == ALL_CATALOGUE_TAGS


def test_crawl_tags_collection():
    info = derive_tags("/v1/series/5/crawl", mutation=True)
    assert info.cache_tags == {COLLECTION_TAG}


def test_unknown_paths_fall_back_to_path_tag():
    assert derive_tags("/").cache_tags == {"root"}
    assert derive_tags("/docs").cache_tags == {"path:/docs"}


@pytest.fixture()
def fake_redis() -> FakeRedis:
    return FakeRedis()


@pytest.fixture()
def cached_client(fake_redis):
    app = FastAPI()
    state = {"reads": 0, "wishlist": ["Saga #1"]}

    async def factory():
        return fake_redis

    app.add_middleware(
        RedisResponseCacheMiddleware, redis_factory=factory, cache_ttl_seconds=30
    )

    @app.get("/v1/wishlist")
    async def list_wishlist():
        state["reads"] += 1
        return {"items": list(state["wishlist"])}

    @app.post("/v1/wishlist")
    async def add_wishlist(name: str):
        state["wishlist"].append(name)
        return {"ok": True}

    @app.patch("/v1/wishlist/{index}")
    async def rename_wishlist_item(index: int, name: str):
        state["wishlist"][index] = name
        return {"ok": True}

    with TestClient(app) as client:
        yield client, state


def test_middleware_serves_repeat_reads_from_cache(cached_client, fake_redis):
    client, state = cached_client

    first = client.get("/v1/wishlist")
    second = client.get("/v1/wishlist")

    assert first.headers["x-cache"] == "miss"
    assert second.headers["x-cache"] == "hit"
    assert second.json() == first.json()
    assert state["reads"] == 1
    assert fake_redis.sets[cache.TAG_KEY_PREFIX + WISHLIST_TAG]


def test_middleware_mutation_invalidates_tagged_reads(cached_client, fake_redis):
    client, state = cached_client

    client.get("/v1/wishlist")
    resp = client.post("/v1/wishlist", params={"name": "Saga #2"})
    assert resp.status_code == 200

    fresh = client.get("/v1/wishlist")
    assert fresh.headers["x-cache"] == "miss"
    assert fresh.json() == {"items": ["Saga #1", "Saga #2"]}
    assert state["reads"] == 2


def test_middleware_item_edit_evicts_every_listing_page(cached_client):
    client, state = cached_client

    client.get("/v1/wishlist", params={"page_size": 1})
    client.get("/v1/wishlist", params={"page_size": 1, "page_token": "1"})
    assert state["reads"] == 2

    resp = client.patch("/v1/wishlist/0", params={"name": "Saga #1 (variant B)"})
    assert resp.status_code == 200

    fresh = client.get("/v1/wishlist", params={"page_size": 1})
    assert fresh.headers["x-cache"] == "miss"
    assert fresh.json() == {"items": ["Saga #1 (variant B)"]}
    assert client.get(
        "/v1/wishlist", params={"page_size": 1, "page_token": "1"}
    ).headers["x-cache"] == "miss"


@pytest.mark.asyncio()
async def test_invalidate_tags_without_redis_is_a_no_op():
    # conftest makes the client manager raise, as if Redis were down
    await cache.invalidate_tags(ALL_CATALOGUE_TAGS)
