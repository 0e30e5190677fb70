"""SQLite access for the two parallel catalogues.

The collection and the wishlist keep separate publisher, series and item
tables with identical shapes. :class:`LibraryStore` addresses either set
through a :class:`~app.schemas.CollectionKind`, so the services above it are
written once. The store never commits: callers either run in autocommit mode
or wrap several calls in :func:`app.db.transaction`.
"""

from __future__ import annotations

import logging
import sqlite3
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any, Iterator, Sequence

import aiosqlite

from app import schemas
from app.errors import (
    DuplicateIssueError,
    IdentityConflictError,
    NotFoundError,
    StoreError,
    ValidationError,
)
from app.schemas import CollectionKind

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TableSet:
    """Physical table names for one catalogue."""

    publishers: str
    series: str
    items: str


TABLES: dict[CollectionKind, TableSet] = {
    CollectionKind.COLLECTION: TableSet("publishers", "series", "issues"),
    CollectionKind.WISHLIST: TableSet(
        "wishlist_publishers", "wishlist_series", "wishlist"
    ),
}

SERIES_MUTABLE_FIELDS = frozenset(
    {
        "name",
        "publisher_id",
        "total_issues",
        "locg_link",
        "locg_issue_count",
        "last_crawled_at",
        "run_label",
        "start_date",
        "end_date",
    }
)

ITEM_DESCRIPTIVE_FIELDS = (
    "name",
    "variant_description",
    "cover_url",
    "release_date",
    "upc",
    "locg_link",
    "plot",
)

ITEM_MUTABLE_FIELDS = frozenset(
    {"series_id", "issue_no", "publisher_id", *ITEM_DESCRIPTIVE_FIELDS}
)


def _series_select(tables: TableSet) -> str:
    return f"""
        SELECT s.id, s.name, s.publisher_id, p.name AS publisher_name,
               s.total_issues, s.locg_link, s.locg_issue_count,
               s.last_crawled_at, s.run_label, s.start_date, s.end_date,
               s.created_at
        FROM {tables.series} s
        JOIN {tables.publishers} p ON s.publisher_id = p.id
    """


def _item_select(tables: TableSet) -> str:
    return f"""
        SELECT i.id, i.name, i.series_id, i.issue_no, i.publisher_id,
               i.variant_description, i.cover_url, i.release_date, i.upc,
               i.locg_link, i.plot, i.created_at,
               s.name AS series_name, p.name AS publisher_name
        FROM {tables.items} i
        JOIN {tables.series} s ON i.series_id = s.id
        JOIN {tables.publishers} p ON i.publisher_id = p.id
    """


def clean_text(value: Any) -> str | None:
    """Strip strings and collapse blanks to None."""
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _paging(limit: int | None) -> str:
    return "LIMIT ? OFFSET ?" if limit is not None else ""


@contextmanager
def _store_errors(action: str) -> Iterator[None]:
    try:
        yield
    except sqlite3.Error as exc:
        logger.warning("%s failed: %s", action, exc)
        raise StoreError(f"{action} failed: {exc}") from exc


class LibraryStore:
    """Typed queries over one aiosqlite connection."""

    def __init__(self, conn: aiosqlite.Connection) -> None:
        self.conn = conn

    async def _fetchall(self, query: str, params: Sequence[Any] = ()) -> list[Any]:
        async with self.conn.execute(query, params) as cursor:
            return list(await cursor.fetchall())

    async def _fetchone(self, query: str, params: Sequence[Any] = ()) -> Any:
        async with self.conn.execute(query, params) as cursor:
            return await cursor.fetchone()

    async def _insert(self, query: str, params: Sequence[Any]) -> int:
        cursor = await self.conn.execute(query, params)
        try:
            row_id = cursor.lastrowid
        finally:
            await cursor.close()
        if row_id is None:
            raise StoreError("insert did not return a row id")
        return row_id

    # publishers

    async def list_publishers(self, kind: CollectionKind) -> list[schemas.Publisher]:
        tables = TABLES[kind]
        with _store_errors(f"list {tables.publishers}"):
            rows = await self._fetchall(
                f"""
                SELECT id, name, created_at FROM {tables.publishers}
                ORDER BY name COLLATE NOCASE, id
                """
            )
        return [schemas.Publisher(**schemas.dict_from_row(row)) for row in rows]

    async def get_publisher(
        self, kind: CollectionKind, publisher_id: int
    ) -> schemas.Publisher | None:
        tables = TABLES[kind]
        with _store_errors(f"load {tables.publishers} {publisher_id}"):
            row = await self._fetchone(
                f"SELECT id, name, created_at FROM {tables.publishers} WHERE id = ?",
                (publisher_id,),
            )
        return schemas.Publisher(**schemas.dict_from_row(row)) if row else None

    async def find_publisher(
        self, kind: CollectionKind, name: str
    ) -> schemas.Publisher | None:
        """Case-insensitive exact lookup by trimmed name."""
        tables = TABLES[kind]
        with _store_errors(f"look up {tables.publishers} {name!r}"):
            row = await self._fetchone(
                f"""
                SELECT id, name, created_at FROM {tables.publishers}
                WHERE name = ? COLLATE NOCASE
                ORDER BY id LIMIT 1
                """,
                (name.strip(),),
            )
        return schemas.Publisher(**schemas.dict_from_row(row)) if row else None

    async def insert_publisher(
        self, kind: CollectionKind, name: str
    ) -> schemas.Publisher:
        """Insert a publisher; a name collision raises IdentityConflictError."""
        tables = TABLES[kind]
        with _store_errors(f"create {tables.publishers} {name!r}"):
            try:
                publisher_id = await self._insert(
                    f"INSERT INTO {tables.publishers} (name) VALUES (?)",
                    (name.strip(),),
                )
            except sqlite3.IntegrityError as exc:
                raise IdentityConflictError(
                    f"publisher {name!r} already exists"
                ) from exc
        publisher = await self.get_publisher(kind, publisher_id)
        if publisher is None:
            raise StoreError(f"publisher {publisher_id} vanished after insert")
        return publisher

    # series

    async def list_series(
        self,
        kind: CollectionKind,
        *,
        publisher: str | None = None,
        limit: int | None = None,
        offset: int = 0,
    ) -> list[schemas.Series]:
        tables = TABLES[kind]
        clauses: list[str] = []
        params: list[Any] = []
        if publisher:
            clauses.append("p.name = ? COLLATE NOCASE")
            params.append(publisher.strip())
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        if limit is not None:
            params.extend((limit, offset))
        with _store_errors(f"list {tables.series}"):
            rows = await self._fetchall(
                f"""
                {_series_select(tables)}
                {where}
                ORDER BY s.name COLLATE NOCASE, s.id
                {_paging(limit)}
                """,
                params,
            )
        return [schemas.Series(**schemas.dict_from_row(row)) for row in rows]

    async def get_series(
        self, kind: CollectionKind, series_id: int
    ) -> schemas.Series | None:
        tables = TABLES[kind]
        with _store_errors(f"load {tables.series} {series_id}"):
            row = await self._fetchone(
                f"{_series_select(tables)} WHERE s.id = ?", (series_id,)
            )
        return schemas.Series(**schemas.dict_from_row(row)) if row else None

    async def find_series(
        self, kind: CollectionKind, name: str, publisher_id: int
    ) -> schemas.Series | None:
        """Case-insensitive lookup scoped to one publisher."""
        tables = TABLES[kind]
        with _store_errors(f"look up {tables.series} {name!r}"):
            row = await self._fetchone(
                f"""
                {_series_select(tables)}
                WHERE s.name = ? COLLATE NOCASE AND s.publisher_id = ?
                ORDER BY s.id LIMIT 1
                """,
                (name.strip(), publisher_id),
            )
        return schemas.Series(**schemas.dict_from_row(row)) if row else None

    async def find_series_by_names(
        self, kind: CollectionKind, name: str, publisher_name: str | None
    ) -> list[schemas.Series]:
        """Series whose name and publisher name match, ignoring case."""
        tables = TABLES[kind]
        clauses = ["s.name = ? COLLATE NOCASE"]
        params: list[Any] = [name.strip()]
        if publisher_name is not None:
            clauses.append("p.name = ? COLLATE NOCASE")
            params.append(publisher_name.strip())
        with _store_errors(f"look up {tables.series} {name!r}"):
            rows = await self._fetchall(
                f"""
                {_series_select(tables)}
                WHERE {' AND '.join(clauses)}
                ORDER BY s.id
                """,
                params,
            )
        return [schemas.Series(**schemas.dict_from_row(row)) for row in rows]

    async def insert_series(
        self,
        kind: CollectionKind,
        *,
        name: str,
        publisher_id: int,
        total_issues: int = 0,
        locg_link: str | None = None,
        start_date: str | None = None,
        end_date: str | None = None,
    ) -> schemas.Series:
        """Insert a series; a (name, publisher) collision raises IdentityConflictError."""
        tables = TABLES[kind]
        with _store_errors(f"create {tables.series} {name!r}"):
            try:
                series_id = await self._insert(
                    f"""
                    INSERT INTO {tables.series} (
                        name, publisher_id, total_issues, locg_link,
                        start_date, end_date
                    ) VALUES (?, ?, ?, ?, ?, ?)
                    """,
                    (
                        name.strip(),
                        publisher_id,
                        total_issues or 0,
                        clean_text(locg_link),
                        clean_text(start_date),
                        clean_text(end_date),
                    ),
                )
            except sqlite3.IntegrityError as exc:
                if "FOREIGN KEY" in str(exc).upper():
                    raise NotFoundError(f"publisher {publisher_id} not found") from exc
                raise IdentityConflictError(
                    f"series {name!r} already exists for publisher {publisher_id}"
                ) from exc
        series = await self.get_series(kind, series_id)
        if series is None:
            raise StoreError(f"series {series_id} vanished after insert")
        return series

    async def update_series(
        self, kind: CollectionKind, series_id: int, updates: dict[str, Any]
    ) -> schemas.Series:
        tables = TABLES[kind]
        unknown = set(updates) - SERIES_MUTABLE_FIELDS
        if unknown:
            raise ValueError(f"cannot update series fields {sorted(unknown)}")
        if updates:
            assignments = ", ".join(f"{field} = :{field}" for field in updates)
            params = updates | {"series_id": series_id}
            with _store_errors(f"update {tables.series} {series_id}"):
                try:
                    cursor = await self.conn.execute(
                        f"UPDATE {tables.series} SET {assignments} WHERE id = :series_id",
                        params,
                    )
                except sqlite3.IntegrityError as exc:
                    if "FOREIGN KEY" in str(exc).upper():
                        raise NotFoundError(
                            f"publisher {updates.get('publisher_id')} not found"
                        ) from exc
                    raise ValidationError(
                        await self._series_clash_message(kind, series_id, updates)
                    ) from exc
                await cursor.close()
        series = await self.get_series(kind, series_id)
        if series is None:
            raise StoreError(f"series {series_id} not found")
        return series

    async def _series_clash_message(
        self, kind: CollectionKind, series_id: int, updates: dict[str, Any]
    ) -> str:
        current = await self.get_series(kind, series_id)
        name = updates.get("name") or (current.name if current else f"#{series_id}")
        publisher_id = updates.get("publisher_id")
        if publisher_id is None and current is not None:
            publisher_id = current.publisher_id
        publisher = (
            await self.get_publisher(kind, publisher_id)
            if publisher_id is not None
            else None
        )
        target = publisher.name if publisher else publisher_id
        return f"series {name!r} already exists for publisher {target!r}"

    async def series_needing_crawl(self, cutoff: str) -> list[schemas.Series]:
        """Collection series with a catalogue link not crawled since ``cutoff``."""
        tables = TABLES[CollectionKind.COLLECTION]
        with _store_errors("list series needing crawl"):
            rows = await self._fetchall(
                f"""
                {_series_select(tables)}
                WHERE s.locg_link IS NOT NULL AND s.locg_link != ''
                  AND (s.last_crawled_at IS NULL OR s.last_crawled_at < ?)
                ORDER BY s.name COLLATE NOCASE, s.id
                """,
                (cutoff,),
            )
        return [schemas.Series(**schemas.dict_from_row(row)) for row in rows]

    async def count_items_by_series(self, kind: CollectionKind) -> dict[int, int]:
        tables = TABLES[kind]
        with _store_errors(f"count {tables.items}"):
            rows = await self._fetchall(
                f"SELECT series_id, COUNT(*) AS n FROM {tables.items} GROUP BY series_id"
            )
        return {row["series_id"]: row["n"] for row in rows}

    # items

    async def list_items(
        self,
        kind: CollectionKind,
        *,
        series_id: int | None = None,
        limit: int | None = None,
        offset: int = 0,
    ) -> list[schemas.Issue]:
        tables = TABLES[kind]
        where = "WHERE i.series_id = ?" if series_id is not None else ""
        params: list[Any] = [series_id] if series_id is not None else []
        if limit is not None:
            params.extend((limit, offset))
        with _store_errors(f"list {tables.items}"):
            rows = await self._fetchall(
                f"""
                {_item_select(tables)}
                {where}
                ORDER BY s.name COLLATE NOCASE, i.issue_no,
                         COALESCE(i.variant_description, ''), i.id
                {_paging(limit)}
                """,
                params,
            )
        return [schemas.Issue(**schemas.dict_from_row(row)) for row in rows]

    async def get_item(self, kind: CollectionKind, item_id: int) -> schemas.Issue | None:
        tables = TABLES[kind]
        with _store_errors(f"load {tables.items} {item_id}"):
            row = await self._fetchone(
                f"{_item_select(tables)} WHERE i.id = ?", (item_id,)
            )
        return schemas.Issue(**schemas.dict_from_row(row)) if row else None

    async def find_duplicate_item(
        self,
        kind: CollectionKind,
        *,
        series_id: int,
        issue_no: float,
        variant_description: str | None,
        exclude_id: int | None = None,
    ) -> schemas.Issue | None:
        """Exact issue number match; a missing variant matches a missing variant."""
        tables = TABLES[kind]
        query = f"""
            {_item_select(tables)}
            WHERE i.series_id = ? AND i.issue_no = ?
              AND COALESCE(i.variant_description, '') = COALESCE(?, '')
        """
        params: list[Any] = [series_id, issue_no, clean_text(variant_description)]
        if exclude_id is not None:
            query += " AND i.id != ?"
            params.append(exclude_id)
        with _store_errors(f"check duplicate in {tables.items}"):
            row = await self._fetchone(query + " ORDER BY i.id LIMIT 1", params)
        return schemas.Issue(**schemas.dict_from_row(row)) if row else None

    async def insert_item(
        self,
        kind: CollectionKind,
        *,
        name: str,
        series_id: int,
        issue_no: float,
        publisher_id: int,
        variant_description: str | None = None,
        cover_url: str | None = None,
        release_date: str | None = None,
        upc: str | None = None,
        locg_link: str | None = None,
        plot: str | None = None,
        series_name: str | None = None,
    ) -> schemas.Issue:
        """Insert an issue or wishlist item.

        The unique index on (series, number, variant) backs up the explicit
        duplicate check callers perform; hitting it raises DuplicateIssueError.
        """
        tables = TABLES[kind]
        variant = clean_text(variant_description)
        with _store_errors(f"create {tables.items} row"):
            try:
                item_id = await self._insert(
                    f"""
                    INSERT INTO {tables.items} (
                        name, series_id, issue_no, publisher_id,
                        variant_description, cover_url, release_date, upc,
                        locg_link, plot
                    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        name,
                        series_id,
                        float(issue_no),
                        publisher_id,
                        variant,
                        clean_text(cover_url),
                        clean_text(release_date),
                        clean_text(upc),
                        clean_text(locg_link),
                        clean_text(plot),
                    ),
                )
            except sqlite3.IntegrityError as exc:
                if "UNIQUE" not in str(exc).upper():
                    raise
                raise DuplicateIssueError(
                    series_name=series_name,
                    issue_no=issue_no,
                    variant_description=variant,
                    target=kind.value,
                ) from exc
        item = await self.get_item(kind, item_id)
        if item is None:
            raise StoreError(f"{tables.items} row {item_id} vanished after insert")
        return item

    async def update_item(
        self, kind: CollectionKind, item_id: int, updates: dict[str, Any]
    ) -> schemas.Issue:
        tables = TABLES[kind]
        unknown = set(updates) - ITEM_MUTABLE_FIELDS
        if unknown:
            raise ValueError(f"cannot update item fields {sorted(unknown)}")
        if updates:
            assignments = ", ".join(f"{field} = :{field}" for field in updates)
            params = updates | {"item_id": item_id}
            with _store_errors(f"update {tables.items} row {item_id}"):
                try:
                    cursor = await self.conn.execute(
                        f"UPDATE {tables.items} SET {assignments} WHERE id = :item_id",
                        params,
                    )
                except sqlite3.IntegrityError as exc:
                    if "UNIQUE" not in str(exc).upper():
                        raise
                    raise DuplicateIssueError(
                        series_name=None,
                        issue_no=updates.get("issue_no", 0),
                        variant_description=updates.get("variant_description"),
                        target=kind.value,
                    ) from exc
                await cursor.close()
        item = await self.get_item(kind, item_id)
        if item is None:
            raise StoreError(f"{tables.items} row {item_id} not found")
        return item

    async def reassign_items_publisher(
        self, kind: CollectionKind, series_id: int, publisher_id: int
    ) -> None:
        """Keep item publisher ids in step with a series that changed publisher."""
        tables = TABLES[kind]
        with _store_errors(f"reassign {tables.items} for series {series_id}"):
            cursor = await self.conn.execute(
                f"UPDATE {tables.items} SET publisher_id = ? WHERE series_id = ?",
                (publisher_id, series_id),
            )
            await cursor.close()

    async def delete_item(self, kind: CollectionKind, item_id: int) -> bool:
        tables = TABLES[kind]
        with _store_errors(f"delete {tables.items} row {item_id}"):
            cursor = await self.conn.execute(
                f"DELETE FROM {tables.items} WHERE id = ?", (item_id,)
            )
            try:
                return cursor.rowcount > 0
            finally:
                await cursor.close()


__all__ = [
    "ITEM_DESCRIPTIVE_FIELDS",
    "LibraryStore",
    "TABLES",
    "TableSet",
    "clean_text",
]
