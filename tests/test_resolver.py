"""Tests for find-or-create identity resolution."""

from __future__ import annotations

import pytest

from app.errors import StoreError, ValidationError
from app.resolver import MAX_RESOLVE_ATTEMPTS
from app.schemas import CollectionKind

from conftest import count_rows

COLLECTION = CollectionKind.COLLECTION
WISHLIST = CollectionKind.WISHLIST


@pytest.mark.asyncio()
async def test_find_or_create_publisher_is_idempotent(resolver, db_path):
    first = await resolver.find_or_create_publisher(COLLECTION, "Image")
    second = await resolver.find_or_create_publisher(COLLECTION, "Image")
    assert first.id == second.id
    assert count_rows(db_path, "publishers") == 1


@pytest.mark.asyncio()
async def test_publisher_lookup_ignores_case_and_whitespace(resolver, db_path):
    first = await resolver.find_or_create_publisher(COLLECTION, "Marvel Comics")
    second = await resolver.find_or_create_publisher(COLLECTION, "  marvel comics ")
    assert second.id == first.id
    assert second.name == "Marvel Comics"
    assert count_rows(db_path, "publishers") == 1


@pytest.mark.asyncio()
async def test_catalogues_keep_separate_identities(resolver, db_path):
    owned = await resolver.find_or_create_publisher(COLLECTION, "DC")
    wanted = await resolver.find_or_create_publisher(WISHLIST, "DC")
    assert count_rows(db_path, "publishers") == 1
    assert count_rows(db_path, "wishlist_publishers") == 1
    assert (await resolver.store.get_publisher(WISHLIST, wanted.id)).name == "DC"
    assert (await resolver.store.get_publisher(COLLECTION, owned.id)).name == "DC"


@pytest.mark.asyncio()
async def test_empty_names_are_rejected(resolver):
    with pytest.raises(ValidationError):
        await resolver.find_or_create_publisher(COLLECTION, "   ")
    publisher = await resolver.find_or_create_publisher(COLLECTION, "Boom")
    with pytest.raises(ValidationError):
        await resolver.find_or_create_series(COLLECTION, "", publisher.id)


@pytest.mark.asyncio()
async def test_series_is_scoped_to_its_publisher(resolver, db_path):
    marvel = await resolver.find_or_create_publisher(COLLECTION, "Marvel")
    dc = await resolver.find_or_create_publisher(COLLECTION, "DC")

    a = await resolver.find_or_create_series(COLLECTION, "Saga", marvel.id)
    b = await resolver.find_or_create_series(COLLECTION, "SAGA", marvel.id)
    c = await resolver.find_or_create_series(COLLECTION, "Saga", dc.id)

    assert a.id == b.id
    assert c.id != a.id
    assert count_rows(db_path, "series") == 2


@pytest.mark.asyncio()
async def test_existing_series_is_returned_without_merging_defaults(resolver):
    publisher = await resolver.find_or_create_publisher(COLLECTION, "Image")
    created = await resolver.find_or_create_series(
        COLLECTION, "Saga", publisher.id, total_issues=54, locg_link="https://x/saga"
    )
    again = await resolver.find_or_create_series(
        COLLECTION, "Saga", publisher.id, total_issues=10, locg_link="https://other"
    )
    assert again.id == created.id
    assert again.total_issues == 54
    assert again.locg_link == "https://x/saga"


@pytest.mark.asyncio()
async def test_lost_insert_race_returns_the_winner(resolver, monkeypatch, db_path):
    winner = await resolver.store.insert_publisher(COLLECTION, "Dark Horse")
    original = resolver.store.find_publisher
    calls = 0

    async def stale_lookup(kind, name):
        nonlocal calls
        calls += 1
        if calls == 1:
            # the concurrent insert is not visible to the first read
            return None
        return await original(kind, name)

    monkeypatch.setattr(resolver.store, "find_publisher", stale_lookup)

    resolved = await resolver.find_or_create_publisher(COLLECTION, "dark horse")

    assert resolved.id == winner.id
    assert calls == 2
    assert count_rows(db_path, "publishers") == 1


@pytest.mark.asyncio()
async def test_lost_series_race_returns_the_winner(resolver, monkeypatch):
    publisher = await resolver.find_or_create_publisher(WISHLIST, "Image")
    winner = await resolver.store.insert_series(
        WISHLIST, name="Monstress", publisher_id=publisher.id
    )
    original = resolver.store.find_series
    seen = []

    async def stale_lookup(kind, name, publisher_id):
        seen.append(name)
        if len(seen) == 1:
            return None
        return await original(kind, name, publisher_id)

    monkeypatch.setattr(resolver.store, "find_series", stale_lookup)

    resolved = await resolver.find_or_create_series(WISHLIST, "Monstress", publisher.id)
    assert resolved.id == winner.id


@pytest.mark.asyncio()
async def test_resolution_gives_up_after_bounded_retries(resolver, monkeypatch):
    await resolver.store.insert_publisher(COLLECTION, "Oni")

    async def never_found(kind, name):
        return None

    monkeypatch.setattr(resolver.store, "find_publisher", never_found)

    with pytest.raises(StoreError, match="could not resolve publisher"):
        await resolver.find_or_create_publisher(COLLECTION, "Oni")
    assert MAX_RESOLVE_ATTEMPTS == 3
