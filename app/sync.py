"""Bulk sync and import of externally supplied series and issue rows.

Every record is applied in its own transaction. A record that fails is
rolled back, reported with a message naming it, and the run continues, so a
caller always gets a complete summary back.
"""

from __future__ import annotations

import logging
import math
from collections import defaultdict
from typing import Any, Iterable, Mapping, TypeVar

from pydantic import ValidationError as PydanticValidationError

from app import schemas
from app.db import transaction
from app.errors import (
    DuplicateIssueError,
    LibraryError,
    NotFoundError,
    ValidationError,
    format_issue_no,
)
from app.reconciler import fold_name, reconcile_key
from app.resolver import IdentityResolver
from app.schemas import CollectionKind
from app.store import ITEM_DESCRIPTIVE_FIELDS, LibraryStore, clean_text

logger = logging.getLogger(__name__)

UNKNOWN_SERIES = "Unknown Series"
UNKNOWN_PUBLISHER = "Unknown Publisher"
DEFAULT_ISSUE_NO = 1.0
COMMENT_KEY = "_comment"

RecordT = TypeVar("RecordT", bound=schemas.LooseRecord)


def parse_issue_no(value: Any) -> float:
    """Parse an issue number, raising ValidationError for anything non-numeric."""
    if value is None or isinstance(value, bool):
        raise ValidationError("issue number is required")
    try:
        number = float(str(value).strip())
    except ValueError as exc:
        raise ValidationError(f"invalid issue number {value!r}") from exc
    if not math.isfinite(number):
        raise ValidationError(f"invalid issue number {value!r}")
    return number


def default_issue_name(series_name: str, issue_no: float) -> str:
    return f"{series_name} #{format_issue_no(issue_no)}"


def drop_comment_rows(rows: Iterable[Any]) -> list[Any]:
    """Remove annotation objects that import templates carry.

    Rows that are not objects are kept so the run reports them by number.
    """
    return [
        row
        for row in rows
        if not (isinstance(row, Mapping) and row.get(COMMENT_KEY))
    ]


def _validate_row(model: type[RecordT], raw: Any) -> RecordT:
    if not isinstance(raw, Mapping):
        raise ValidationError("row must be an object")
    return model.model_validate(raw)


def _error_record(raw: Any) -> Any:
    return dict(raw) if isinstance(raw, Mapping) else raw


def _pydantic_message(exc: PydanticValidationError) -> str:
    problems = []
    for error in exc.errors():
        location = ".".join(str(part) for part in error.get("loc", ()))
        problems.append(f"{location}: {error.get('msg')}" if location else error.get("msg"))
    return "; ".join(problems)


def _describe_series(raw: Any) -> str:
    if not isinstance(raw, Mapping):
        return "Series record"
    name = raw.get("name") or raw.get("title")
    return f"Series {name!r}" if name else "Series record"


def _describe_issue(raw: Any) -> str:
    if not isinstance(raw, Mapping):
        return "Issue record"
    series = raw.get("series_name") or raw.get("seriesName") or raw.get("series")
    number = raw.get("issue_no", raw.get("issueNo", raw.get("issue")))
    if series and number not in (None, ""):
        return f"Issue {series} #{format_issue_no(number)}"
    if series:
        return f"Issue in {series}"
    return "Issue record"


class _SeriesSnapshot:
    """In-memory index of a catalogue's series, kept current during a run."""

    def __init__(self, series: Iterable[schemas.Series]) -> None:
        self._by_id: dict[int, schemas.Series] = {}
        self._by_key: dict[tuple[str, str], int] = {}
        self._by_name: dict[str, list[int]] = defaultdict(list)
        for entry in series:
            self.add(entry)

    def add(self, series: schemas.Series) -> None:
        self.discard(series.id)
        self._by_id[series.id] = series
        self._by_key.setdefault(reconcile_key(series.name, series.publisher_name), series.id)
        self._by_name[fold_name(series.name)].append(series.id)

    def discard(self, series_id: int) -> None:
        old = self._by_id.pop(series_id, None)
        if old is None:
            return
        key = reconcile_key(old.name, old.publisher_name)
        if self._by_key.get(key) == series_id:
            del self._by_key[key]
        self._by_name[fold_name(old.name)].remove(series_id)

    def match(self, name: str, publisher_name: str | None) -> schemas.Series | None:
        """Match on name and publisher, or on name alone when that is unambiguous."""
        if publisher_name:
            series_id = self._by_key.get(reconcile_key(name, publisher_name))
            if series_id is not None:
                return self._by_id[series_id]
        candidates = self._by_name.get(fold_name(name), [])
        if len(candidates) == 1:
            return self._by_id[candidates[0]]
        return None


class _IssueSnapshot:
    """In-memory index of a catalogue's items keyed by series name and number."""

    def __init__(self, items: Iterable[schemas.Issue]) -> None:
        self._by_id: dict[int, schemas.Issue] = {}
        self._by_key: dict[tuple[str, float], list[int]] = defaultdict(list)
        for item in items:
            self.add(item)

    @staticmethod
    def _key(series_name: str | None, issue_no: float) -> tuple[str, float]:
        return fold_name(series_name), float(issue_no)

    def add(self, item: schemas.Issue) -> None:
        self.discard(item.id)
        self._by_id[item.id] = item
        self._by_key[self._key(item.series_name, item.issue_no)].append(item.id)

    def discard(self, item_id: int) -> None:
        old = self._by_id.pop(item_id, None)
        if old is not None:
            self._by_key[self._key(old.series_name, old.issue_no)].remove(item_id)

    def match(
        self, series_name: str, issue_no: float, variant: str | None
    ) -> schemas.Issue | None:
        candidates = [
            self._by_id[item_id]
            for item_id in self._by_key.get(self._key(series_name, issue_no), [])
        ]
        if not candidates:
            return None
        for candidate in candidates:
            if candidate.variant_description == variant:
                return candidate
        if variant is None:
            return candidates[0]
        # A record naming a new variant fills in a plain copy, never relabels a variant.
        for candidate in candidates:
            if candidate.variant_description is None:
                return candidate
        return None


class BulkSync:
    """Apply batches of series and issue records to one catalogue."""

    def __init__(self, store: LibraryStore, resolver: IdentityResolver) -> None:
        self.store = store
        self.resolver = resolver

    # series

    async def _apply_series(
        self,
        record: schemas.SeriesRecord,
        kind: CollectionKind,
        snapshot: _SeriesSnapshot,
    ) -> tuple[bool, schemas.Series]:
        if not record.name:
            raise ValidationError("series name is required")
        existing = snapshot.match(record.name, record.publisher_name)

        if existing is None:
            publisher = await self.resolver.find_or_create_publisher(
                kind, record.publisher_name or UNKNOWN_PUBLISHER
            )
            series = await self.resolver.find_or_create_series(
                kind,
                record.name,
                publisher.id,
                total_issues=record.total_issues or 0,
                locg_link=record.locg_link,
                start_date=record.start_date,
                end_date=record.end_date,
            )
            return True, series

        updates: dict[str, Any] = {}
        if record.publisher_name and (
            fold_name(record.publisher_name) != fold_name(existing.publisher_name)
        ):
            publisher = await self.resolver.find_or_create_publisher(
                kind, record.publisher_name
            )
            if publisher.id != existing.publisher_id:
                taken = await self.store.find_series(kind, existing.name, publisher.id)
                if taken is not None:
                    raise ValidationError(
                        f"cannot move {existing.name!r} to publisher {publisher.name!r}: "
                        f"that publisher already has a series named {taken.name!r}"
                    )
                updates["publisher_id"] = publisher.id
        if record.total_issues is not None:
            updates["total_issues"] = record.total_issues
        for field in ("locg_link", "start_date", "end_date"):
            value = getattr(record, field)
            if value is not None:
                updates[field] = value

        series = await self.store.update_series(kind, existing.id, updates)
        if "publisher_id" in updates:
            await self.store.reassign_items_publisher(
                kind, series.id, updates["publisher_id"]
            )
        return False, series

    async def sync_series(
        self,
        records: Iterable[Any],
        kind: CollectionKind = CollectionKind.COLLECTION,
    ) -> schemas.SeriesSyncResult:
        """Create or partially update series matched by name and publisher."""
        result = schemas.SeriesSyncResult()
        snapshot = _SeriesSnapshot(await self.store.list_series(kind))

        for raw in records:
            try:
                record = _validate_row(schemas.SeriesRecord, raw)
                async with transaction(self.store.conn):
                    created, series = await self._apply_series(record, kind, snapshot)
            except PydanticValidationError as exc:
                message = f"{_describe_series(raw)}: {_pydantic_message(exc)}"
            except LibraryError as exc:
                message = f"{_describe_series(raw)}: {exc.message}"
            else:
                snapshot.add(series)
                if created:
                    result.summary.created += 1
                    result.details.created.append(series)
                else:
                    result.summary.updated += 1
                    result.details.updated.append(series)
                continue
            logger.warning("series sync record failed: %s", message)
            result.summary.errors += 1
            result.details.errors.append(
                schemas.SyncError(record=_error_record(raw), error=message)
            )

        logger.info(
            "synced %s series: %s created, %s updated, %s errors",
            kind.value,
            result.summary.created,
            result.summary.updated,
            result.summary.errors,
        )
        return result

    # issues

    async def _apply_issue(
        self,
        record: schemas.IssueRecord,
        kind: CollectionKind,
        snapshot: _IssueSnapshot,
    ) -> tuple[bool, schemas.Issue]:
        if not record.series_name:
            raise ValidationError("series name is required")
        issue_no = parse_issue_no(record.issue_no)
        variant = clean_text(record.variant_description)
        existing = snapshot.match(record.series_name, issue_no, variant)

        if existing is None:
            issue = await self._create_issue(
                kind,
                record,
                series_name=record.series_name,
                publisher_name=record.publisher_name or UNKNOWN_PUBLISHER,
                issue_no=issue_no,
            )
            return True, issue

        updates = {
            field: getattr(record, field)
            for field in ITEM_DESCRIPTIVE_FIELDS
            if getattr(record, field) is not None
        }
        if variant is not None and variant != existing.variant_description:
            clash = await self.store.find_duplicate_item(
                kind,
                series_id=existing.series_id,
                issue_no=existing.issue_no,
                variant_description=variant,
                exclude_id=existing.id,
            )
            if clash is not None:
                raise DuplicateIssueError(
                    series_name=existing.series_name,
                    issue_no=existing.issue_no,
                    variant_description=variant,
                    target=kind.value,
                )
        issue = await self.store.update_item(kind, existing.id, updates)
        return False, issue

    async def _create_issue(
        self,
        kind: CollectionKind,
        record: schemas.IssueRecord,
        *,
        series_name: str,
        publisher_name: str,
        issue_no: float,
    ) -> schemas.Issue:
        publisher = await self.resolver.find_or_create_publisher(kind, publisher_name)
        series = await self.resolver.find_or_create_series(
            kind, series_name, publisher.id, locg_link=record.locg_link
        )
        variant = clean_text(record.variant_description)
        duplicate = await self.store.find_duplicate_item(
            kind, series_id=series.id, issue_no=issue_no, variant_description=variant
        )
        if duplicate is not None:
            raise DuplicateIssueError(
                series_name=series.name,
                issue_no=issue_no,
                variant_description=variant,
                target=kind.value,
            )
        return await self.store.insert_item(
            kind,
            name=record.name or default_issue_name(series_name, issue_no),
            series_id=series.id,
            issue_no=issue_no,
            publisher_id=publisher.id,
            variant_description=variant,
            cover_url=record.cover_url,
            release_date=record.release_date,
            upc=record.upc,
            locg_link=record.locg_link,
            plot=record.plot,
            series_name=series.name,
        )

    async def add_issue(
        self,
        request: schemas.CreateIssueRequest,
        kind: CollectionKind = CollectionKind.COLLECTION,
    ) -> schemas.Issue:
        """Add one issue, resolving its publisher and series by name."""
        record = schemas.IssueRecord.model_validate(request.model_dump())
        if not record.series_name:
            raise ValidationError("series name is required")
        async with transaction(self.store.conn):
            issue = await self._create_issue(
                kind,
                record,
                series_name=record.series_name,
                publisher_name=record.publisher_name or UNKNOWN_PUBLISHER,
                issue_no=parse_issue_no(record.issue_no),
            )
        logger.info(
            "added %s issue %s #%s",
            kind.value,
            issue.series_name,
            format_issue_no(issue.issue_no),
        )
        return issue

    async def edit_issue(
        self,
        item_id: int,
        request: schemas.UpdateIssueRequest,
        kind: CollectionKind = CollectionKind.COLLECTION,
    ) -> schemas.Issue:
        """Change the supplied fields of one item, keeping the duplicate rule.

        Moving an item to another series also moves it to that series'
        publisher.
        """
        updates = request.model_dump(include=request.model_fields_set)
        for field in ITEM_DESCRIPTIVE_FIELDS:
            if field in updates:
                updates[field] = clean_text(updates[field])
        if "name" in updates and updates["name"] is None:
            raise ValidationError("name cannot be blank")
        if "issue_no" in updates:
            updates["issue_no"] = parse_issue_no(updates["issue_no"])

        async with transaction(self.store.conn):
            existing = await self.store.get_item(kind, item_id)
            if existing is None:
                label = "wishlist item" if kind is CollectionKind.WISHLIST else "issue"
                raise NotFoundError(f"{label} {item_id} not found")

            series_name = existing.series_name
            series_id = updates.get("series_id", existing.series_id)
            if series_id != existing.series_id:
                series = await self.store.get_series(kind, series_id)
                if series is None:
                    raise NotFoundError(f"series {series_id} not found")
                updates["publisher_id"] = series.publisher_id
                series_name = series.name

            issue_no = updates.get("issue_no", existing.issue_no)
            variant = updates.get("variant_description", existing.variant_description)
            clash = await self.store.find_duplicate_item(
                kind,
                series_id=series_id,
                issue_no=issue_no,
                variant_description=variant,
                exclude_id=item_id,
            )
            if clash is not None:
                raise DuplicateIssueError(
                    series_name=series_name,
                    issue_no=issue_no,
                    variant_description=variant,
                    target=kind.value,
                )
            issue = await self.store.update_item(kind, item_id, updates)

        logger.info(
            "edited %s item %s: %s",
            kind.value,
            item_id,
            ", ".join(sorted(updates)),
        )
        return issue

    async def sync_issues(
        self,
        records: Iterable[Any],
        kind: CollectionKind = CollectionKind.COLLECTION,
    ) -> schemas.IssueSyncResult:
        """Create or partially update issues matched by series name and number."""
        result = schemas.IssueSyncResult()
        snapshot = _IssueSnapshot(await self.store.list_items(kind))

        for raw in records:
            try:
                record = _validate_row(schemas.IssueRecord, raw)
                async with transaction(self.store.conn):
                    created, issue = await self._apply_issue(record, kind, snapshot)
            except PydanticValidationError as exc:
                message = f"{_describe_issue(raw)}: {_pydantic_message(exc)}"
            except LibraryError as exc:
                message = f"{_describe_issue(raw)}: {exc.message}"
            else:
                snapshot.add(issue)
                if created:
                    result.summary.created += 1
                    result.details.created.append(issue)
                else:
                    result.summary.updated += 1
                    result.details.updated.append(issue)
                continue
            logger.warning("issue sync record failed: %s", message)
            result.summary.errors += 1
            result.details.errors.append(
                schemas.SyncError(record=_error_record(raw), error=message)
            )

        logger.info(
            "synced %s issues: %s created, %s updated, %s errors",
            kind.value,
            result.summary.created,
            result.summary.updated,
            result.summary.errors,
        )
        return result

    # import

    @staticmethod
    def _import_defaults(
        record: schemas.IssueRecord,
    ) -> tuple[str, str, float, str]:
        """Apply import defaults; returns series, publisher, number and name."""
        series_name = record.series_name or UNKNOWN_SERIES
        publisher_name = record.publisher_name or UNKNOWN_PUBLISHER
        issue_no = (
            DEFAULT_ISSUE_NO
            if record.issue_no is None
            else parse_issue_no(record.issue_no)
        )
        name = record.name or default_issue_name(series_name, issue_no)
        return series_name, publisher_name, issue_no, name

    async def import_rows(
        self,
        rows: Iterable[Any],
        kind: CollectionKind = CollectionKind.COLLECTION,
        *,
        first_row: int = 1,
    ) -> schemas.ImportResult:
        """Add loosely typed rows as new issues, applying import defaults.

        ``first_row`` is the number reported for the first data row in
        messages (2 for a CSV file with a header line).
        """
        result = schemas.ImportResult()
        summary = result.summary

        for offset, raw in enumerate(drop_comment_rows(rows)):
            row_number = first_row + offset
            try:
                record = _validate_row(schemas.IssueRecord, raw)
                series_name, publisher_name, issue_no, name = self._import_defaults(
                    record
                )
                record = record.model_copy(update={"name": name})
                async with transaction(self.store.conn):
                    publisher = await self.store.find_publisher(kind, publisher_name)
                    publisher_created = publisher is None
                    series_created = True
                    if publisher is not None:
                        series_created = (
                            await self.store.find_series(kind, series_name, publisher.id)
                            is None
                        )
                    await self._create_issue(
                        kind,
                        record,
                        series_name=series_name,
                        publisher_name=publisher_name,
                        issue_no=issue_no,
                    )
            except DuplicateIssueError as exc:
                summary.duplicates += 1
                result.messages.append(f"Row {row_number}: {exc.message}")
                continue
            except PydanticValidationError as exc:
                message = f"Row {row_number}: {_pydantic_message(exc)}"
            except ValidationError as exc:
                message = f"Row {row_number}: {exc.message}"
            except LibraryError as exc:
                message = f"Row {row_number}: {_describe_issue(raw)}: {exc.message}"
            else:
                summary.issues_added += 1
                summary.publishers_created += int(publisher_created)
                summary.series_created += int(series_created)
                continue
            logger.warning("import failed: %s", message)
            summary.errors += 1
            result.messages.append(message)

        logger.info(
            "imported into %s: %s added, %s duplicates, %s errors",
            kind.value,
            summary.issues_added,
            summary.duplicates,
            summary.errors,
        )
        return result

    async def validate_import(
        self,
        rows: Iterable[Any],
        kind: CollectionKind = CollectionKind.COLLECTION,
        *,
        first_row: int = 1,
    ) -> schemas.ValidationPreview:
        """Preview what :meth:`import_rows` would do without writing anything."""
        preview = schemas.ValidationPreview()
        summary = preview.summary
        details = preview.details

        known_publishers = {
            fold_name(publisher.name) for publisher in await self.store.list_publishers(kind)
        }
        known_series = {
            reconcile_key(series.name, series.publisher_name)
            for series in await self.store.list_series(kind)
        }
        known_items = {
            (
                reconcile_key(item.series_name, item.publisher_name),
                item.issue_no,
                item.variant_description or "",
            )
            for item in await self.store.list_items(kind)
        }

        data_rows = drop_comment_rows(rows)
        summary.total_rows = len(data_rows)
        for offset, raw in enumerate(data_rows):
            row_number = first_row + offset
            try:
                record = _validate_row(schemas.IssueRecord, raw)
                series_name, publisher_name, issue_no, name = self._import_defaults(
                    record
                )
            except PydanticValidationError as exc:
                details.errors.append(
                    schemas.RowError(row=row_number, message=_pydantic_message(exc))
                )
                summary.errors += 1
                continue
            except ValidationError as exc:
                details.errors.append(schemas.RowError(row=row_number, message=exc.message))
                summary.errors += 1
                continue

            summary.valid_rows += 1
            if fold_name(publisher_name) not in known_publishers:
                known_publishers.add(fold_name(publisher_name))
                details.new_publishers.append(publisher_name)
                summary.publishers_will_be_created += 1
            series_key = reconcile_key(series_name, publisher_name)
            if series_key not in known_series:
                known_series.add(series_key)
                details.new_series.append(
                    schemas.PreviewSeries(name=series_name, publisher=publisher_name)
                )
                summary.series_will_be_created += 1

            variant = clean_text(record.variant_description)
            preview_issue = schemas.PreviewIssue(
                name=name, series=series_name, issue_no=issue_no, variant=variant
            )
            item_key = (series_key, issue_no, variant or "")
            if item_key in known_items:
                details.duplicates.append(preview_issue)
                summary.duplicates += 1
                continue
            known_items.add(item_key)
            details.new_issues.append(preview_issue)
            summary.issues_will_be_added += 1

        return preview
