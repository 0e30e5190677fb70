"""Idempotent find-or-create for publishers and series."""

from __future__ import annotations

import logging

from app import schemas
from app.errors import IdentityConflictError, StoreError, ValidationError
from app.schemas import CollectionKind
from app.store import LibraryStore

logger = logging.getLogger(__name__)

MAX_RESOLVE_ATTEMPTS = 3


def _require_name(value: str | None, label: str) -> str:
    name = (value or "").strip()
    if not name:
        raise ValidationError(f"{label} name is required")
    return name


class IdentityResolver:
    """Resolve names to rows, creating them on first sight.

    Nothing here commits. Callers that need the lookup and the insert to be
    atomic with other writes run the resolver inside :func:`app.db.transaction`.
    """

    def __init__(self, store: LibraryStore) -> None:
        self.store = store

    async def find_or_create_publisher(
        self, kind: CollectionKind, name: str | None
    ) -> schemas.Publisher:
        name = _require_name(name, "publisher")
        for attempt in range(1, MAX_RESOLVE_ATTEMPTS + 1):
            existing = await self.store.find_publisher(kind, name)
            if existing is not None:
                return existing
            try:
                created = await self.store.insert_publisher(kind, name)
            except IdentityConflictError:
                logger.debug(
                    "publisher %r created concurrently (attempt %s), re-reading",
                    name,
                    attempt,
                )
                continue
            logger.info("created %s publisher %r (id=%s)", kind.value, name, created.id)
            return created
        raise StoreError(f"could not resolve publisher {name!r}")

    async def find_or_create_series(
        self,
        kind: CollectionKind,
        name: str | None,
        publisher_id: int,
        *,
        total_issues: int = 0,
        locg_link: str | None = None,
        start_date: str | None = None,
        end_date: str | None = None,
    ) -> schemas.Series:
        """Return the series for ``(name, publisher_id)``.

        An existing series is returned unchanged; the defaults only apply to a
        newly created row.
        """
        name = _require_name(name, "series")
        for attempt in range(1, MAX_RESOLVE_ATTEMPTS + 1):
            existing = await self.store.find_series(kind, name, publisher_id)
            if existing is not None:
                return existing
            try:
                created = await self.store.insert_series(
                    kind,
                    name=name,
                    publisher_id=publisher_id,
                    total_issues=total_issues,
                    locg_link=locg_link,
                    start_date=start_date,
                    end_date=end_date,
                )
            except IdentityConflictError:
                logger.debug(
                    "series %r created concurrently (attempt %s), re-reading",
                    name,
                    attempt,
                )
                continue
            logger.info("created %s series %r (id=%s)", kind.value, name, created.id)
            return created
        raise StoreError(f"could not resolve series {name!r}")
