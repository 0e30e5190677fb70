import sqlite3
from typing import Iterator

import pytest
import pytest_asyncio
from fastapi.testclient import TestClient

from app import cache, db
from app.resolver import IdentityResolver
from app.schemas import CollectionKind
from app.store import LibraryStore

CATALOGUES = (
    ("publishers", "series", "issues"),
    ("wishlist_publishers", "wishlist_series", "wishlist"),
)


def create_schema(conn: sqlite3.Connection) -> None:
    for publishers, series, items in CATALOGUES:
        conn.execute(
            f"""
            CREATE TABLE {publishers} (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                name TEXT NOT NULL COLLATE NOCASE UNIQUE,
                created_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP
            );
            """
        )
        conn.execute(
            f"""
            CREATE TABLE {series} (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                name TEXT NOT NULL COLLATE NOCASE,
                publisher_id INTEGER NOT NULL,
                total_issues INTEGER NOT NULL DEFAULT 0,
                locg_link TEXT,
                locg_issue_count INTEGER,
                last_crawled_at TEXT,
                run_label TEXT,
                start_date TEXT,
                end_date TEXT,
                created_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP,
                UNIQUE(name, publisher_id),
                FOREIGN KEY(publisher_id) REFERENCES {publishers}(id) ON DELETE CASCADE
            );
            """
        )
        conn.execute(
            f"""
            CREATE TABLE {items} (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                name TEXT NOT NULL,
                series_id INTEGER NOT NULL,
                issue_no REAL NOT NULL,
                publisher_id INTEGER NOT NULL,
                variant_description TEXT,
                cover_url TEXT,
                release_date TEXT,
                upc TEXT,
                locg_link TEXT,
                plot TEXT,
                created_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP,
                FOREIGN KEY(series_id) REFERENCES {series}(id) ON DELETE CASCADE,
                FOREIGN KEY(publisher_id) REFERENCES {publishers}(id) ON DELETE CASCADE
            );
            """
        )
        conn.execute(
            f"""
            CREATE UNIQUE INDEX uq_{items}_series_issue_variant
            ON {items} (series_id, issue_no, COALESCE(variant_description, ''));
            """
        )


@pytest.fixture(autouse=True)
def no_redis(monkeypatch):
    """Run every test as if Redis were down so the cache middleware steps aside."""

    async def unavailable(self):
        raise ConnectionError("redis disabled in tests")

    monkeypatch.setattr(cache._RedisClientManager, "client", unavailable)


@pytest.fixture()
def db_path(tmp_path, monkeypatch):
    """Create a fresh temp DB and point COMICS_DB_PATH at it."""
    path = tmp_path / "test.db"
    conn = sqlite3.connect(path)
    create_schema(conn)
    conn.commit()
    conn.close()

    monkeypatch.setenv(db.DB_PATH_ENV_VAR, str(path))
    return path


@pytest_asyncio.fixture()
async def store(db_path):
    conn = await db.open_connection(db_path)
    try:
        yield LibraryStore(conn)
    finally:
        await conn.close()


@pytest.fixture()
def resolver(store) -> IdentityResolver:
    return IdentityResolver(store)


@pytest.fixture()
def api_client(db_path) -> Iterator[TestClient]:
    """FastAPI TestClient wired to the temp DB."""
    from main import app

    client = TestClient(app, raise_server_exceptions=True)
    try:
        yield client
    finally:
        app.dependency_overrides.clear()
        client.close()


async def add_item(
    store: LibraryStore,
    kind: CollectionKind,
    *,
    series: str,
    issue_no: float,
    publisher: str = "Marvel",
    variant: str | None = None,
    total_issues: int = 0,
    **fields,
):
    """Insert an issue or wishlist item, resolving its publisher and series."""
    resolver = IdentityResolver(store)
    pub = await resolver.find_or_create_publisher(kind, publisher)
    ser = await resolver.find_or_create_series(
        kind, series, pub.id, total_issues=total_issues
    )
    return await store.insert_item(
        kind,
        name=fields.pop("name", f"{series} #{issue_no:g}"),
        series_id=ser.id,
        issue_no=issue_no,
        publisher_id=pub.id,
        variant_description=variant,
        series_name=ser.name,
        **fields,
    )


def count_rows(path, table: str) -> int:
    conn = sqlite3.connect(path)
    try:
        return conn.execute(f"SELECT COUNT(*) FROM {table}").fetchone()[0]
    finally:
        conn.close()
