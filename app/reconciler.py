"""Present one logical series across the collection and the wishlist.

The two catalogues never reference each other. A collection series and a
wishlist series are "the same" when their :func:`reconcile_key` values match,
which is how the combined views, sync snapshots and import previews all join.
"""

from __future__ import annotations

import logging
import math
import re
import string
from dataclasses import dataclass
from typing import Iterable

from app import schemas
from app.errors import NotFoundError, ValidationError
from app.schemas import CollectionKind, SeriesPresence
from app.store import LibraryStore

logger = logging.getLogger(__name__)

# SQLite's NOCASE collation only folds ASCII letters; match it exactly.
_ASCII_FOLD = str.maketrans(string.ascii_uppercase, string.ascii_lowercase)

_COMBINED_RE = re.compile(r"^combined-(\d+|null)-(\d+|null)$")
_REGULAR_RE = re.compile(r"^regular-(\d+)$")
_WISHLIST_RE = re.compile(r"^wishlist-(\d+)$")
_LEGACY_RE = re.compile(r"^\d+$")


def fold_name(value: str | None) -> str:
    return (value or "").strip().translate(_ASCII_FOLD)


def reconcile_key(name: str | None, publisher_name: str | None) -> tuple[str, str]:
    """Join key for "the same series" in both catalogues."""
    return fold_name(name), fold_name(publisher_name)


def compute_missing_issues(
    total_issues: int | None, issue_numbers: Iterable[float]
) -> list[int]:
    """Whole issue numbers in ``1..total_issues`` that no owned issue covers.

    Fractional issues count toward their integer part, so owning #2.5 marks
    #2 as present. Returns an empty list when the run length is unknown.
    """
    if not total_issues or total_issues <= 0:
        return []
    owned = {math.floor(number) for number in issue_numbers}
    return [number for number in range(1, total_issues + 1) if number not in owned]


@dataclass(frozen=True)
class CombinedSeriesKey:
    """Parsed form of a combined series id.

    ``legacy`` marks a bare integer id: it names a collection series if one
    exists, and a wishlist series otherwise.
    """

    collection_id: int | None
    wishlist_id: int | None
    legacy: bool = False


def parse_combined_id(raw: str) -> CombinedSeriesKey:
    text = (raw or "").strip()
    match = _COMBINED_RE.match(text)
    if match:
        collection_raw, wishlist_raw = match.groups()
        collection_id = None if collection_raw == "null" else int(collection_raw)
        wishlist_id = None if wishlist_raw == "null" else int(wishlist_raw)
        if collection_id is None and wishlist_id is None:
            raise ValidationError(f"combined series id {raw!r} names no series")
        return CombinedSeriesKey(collection_id, wishlist_id)
    match = _REGULAR_RE.match(text)
    if match:
        return CombinedSeriesKey(int(match.group(1)), None)
    match = _WISHLIST_RE.match(text)
    if match:
        return CombinedSeriesKey(None, int(match.group(1)))
    if _LEGACY_RE.match(text):
        series_id = int(text)
        return CombinedSeriesKey(series_id, series_id, legacy=True)
    raise ValidationError(f"invalid combined series id {raw!r}")


def format_combined_id(collection_id: int | None, wishlist_id: int | None) -> str:
    if collection_id is not None and wishlist_id is not None:
        return f"combined-{collection_id}-{wishlist_id}"
    if collection_id is not None:
        return f"regular-{collection_id}"
    if wishlist_id is not None:
        return f"wishlist-{wishlist_id}"
    raise ValueError("a combined id needs at least one side")


def _tag(items: Iterable[schemas.Issue], kind: CollectionKind) -> list[schemas.TaggedIssue]:
    return [schemas.TaggedIssue(**item.model_dump(), type=kind) for item in items]


def _presence(has_collection: bool, has_wishlist: bool) -> SeriesPresence:
    if has_collection and has_wishlist:
        return SeriesPresence.COMBINED
    if has_collection:
        return SeriesPresence.REGULAR
    return SeriesPresence.WISHLIST_ONLY


class SeriesReconciler:
    """Read-only joins across the two catalogues."""

    def __init__(self, store: LibraryStore) -> None:
        self.store = store

    async def _matching_wishlist_series(
        self, series: schemas.Series
    ) -> list[schemas.Series]:
        candidates = await self.store.find_series_by_names(
            CollectionKind.WISHLIST, series.name, series.publisher_name
        )
        key = reconcile_key(series.name, series.publisher_name)
        return [
            candidate
            for candidate in candidates
            if reconcile_key(candidate.name, candidate.publisher_name) == key
        ]

    async def get_combined_view(
        self, collection_id: int | None, wishlist_id: int | None
    ) -> schemas.CombinedSeriesView:
        collection_series = None
        if collection_id is not None:
            collection_series = await self.store.get_series(
                CollectionKind.COLLECTION, collection_id
            )
        wishlist_series: list[schemas.Series] = []
        if wishlist_id is not None:
            found = await self.store.get_series(CollectionKind.WISHLIST, wishlist_id)
            if found is not None:
                wishlist_series.append(found)
        if not wishlist_series and collection_series is not None:
            wishlist_series = await self._matching_wishlist_series(collection_series)

        if collection_series is None and not wishlist_series:
            raise NotFoundError(
                "series not found for "
                f"{format_combined_id(collection_id, wishlist_id)}"
            )

        owned: list[schemas.Issue] = []
        if collection_series is not None:
            owned = await self.store.list_items(
                CollectionKind.COLLECTION, series_id=collection_series.id
            )
        wanted: list[schemas.Issue] = []
        for series in wishlist_series:
            wanted.extend(
                await self.store.list_items(CollectionKind.WISHLIST, series_id=series.id)
            )

        collection_issues = _tag(owned, CollectionKind.COLLECTION)
        wishlist_items = _tag(wanted, CollectionKind.WISHLIST)
        # sorted() is stable, so collection copies stay ahead of wishlist ones
        all_issues = sorted(
            collection_issues + wishlist_items, key=lambda issue: issue.issue_no
        )
        missing: list[int] = []
        if collection_series is not None:
            missing = compute_missing_issues(
                collection_series.total_issues, (issue.issue_no for issue in owned)
            )

        source = collection_series or wishlist_series[0]
        meta = schemas.CombinedSeriesMeta(
            collection_id=collection_series.id if collection_series else None,
            wishlist_id=wishlist_series[0].id if wishlist_series else None,
            name=source.name,
            publisher_name=source.publisher_name,
            total_issues=source.total_issues,
            locg_link=source.locg_link,
            locg_issue_count=source.locg_issue_count,
            last_crawled_at=source.last_crawled_at,
            run_label=source.run_label,
            start_date=source.start_date,
            end_date=source.end_date,
            kind=_presence(collection_series is not None, bool(wishlist_series)),
        )
        return schemas.CombinedSeriesView(
            series=meta,
            collection_issues=collection_issues,
            wishlist_items=wishlist_items,
            all_issues=all_issues,
            missing_issues=missing,
            stats=schemas.CombinedSeriesStats(
                collection_count=len(collection_issues),
                wishlist_count=len(wishlist_items),
                missing_count=len(missing),
                total_count=len(all_issues),
            ),
        )

    async def get_combined_view_by_id(self, raw: str) -> schemas.CombinedSeriesView:
        """Resolve any accepted combined id form, including legacy bare ids."""
        key = parse_combined_id(raw)
        if not key.legacy:
            return await self.get_combined_view(key.collection_id, key.wishlist_id)
        try:
            return await self.get_combined_view(key.collection_id, None)
        except NotFoundError:
            logger.debug("legacy series id %s not in collection, trying wishlist", raw)
            return await self.get_combined_view(None, key.wishlist_id)

    async def list_combined_series(self) -> list[schemas.CombinedSeriesSummary]:
        collection = await self.store.list_series(CollectionKind.COLLECTION)
        wishlist = await self.store.list_series(CollectionKind.WISHLIST)
        collection_counts = await self.store.count_items_by_series(
            CollectionKind.COLLECTION
        )
        wishlist_counts = await self.store.count_items_by_series(CollectionKind.WISHLIST)

        merged: dict[tuple[str, str], list[schemas.Series | None]] = {}
        for series in collection:
            key = reconcile_key(series.name, series.publisher_name)
            merged.setdefault(key, [series, None])
        for series in wishlist:
            key = reconcile_key(series.name, series.publisher_name)
            pair = merged.setdefault(key, [None, None])
            if pair[1] is None:
                pair[1] = series

        summaries = []
        for owned, wanted in merged.values():
            source = owned or wanted
            if source is None:
                continue
            collection_id = owned.id if owned else None
            wishlist_id = wanted.id if wanted else None
            summaries.append(
                schemas.CombinedSeriesSummary(
                    combined_id=format_combined_id(collection_id, wishlist_id),
                    collection_id=collection_id,
                    wishlist_id=wishlist_id,
                    name=source.name,
                    publisher_name=source.publisher_name,
                    total_issues=source.total_issues,
                    locg_link=source.locg_link,
                    kind=_presence(owned is not None, wanted is not None),
                    collection_count=collection_counts.get(collection_id, 0)
                    if collection_id is not None
                    else 0,
                    wishlist_count=wishlist_counts.get(wishlist_id, 0)
                    if wishlist_id is not None
                    else 0,
                )
            )
        summaries.sort(key=lambda summary: (fold_name(summary.name), summary.combined_id))
        return summaries
