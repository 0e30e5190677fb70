"""Pydantic schema definitions for the comics API."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import (
    AliasChoices,
    BaseModel,
    ConfigDict,
    Field,
    field_validator,
    model_validator,
)


class APIModel(BaseModel):
    """Base model with conservative defaults."""

    model_config = ConfigDict(extra="forbid")


class LooseRecord(BaseModel):
    """Base for externally supplied rows: unknown keys are ignored."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    @field_validator("*", mode="before")
    @classmethod
    def blank_to_none(cls, value: Any) -> Any:
        """Treat empty strings as absent so they never overwrite stored values."""
        if isinstance(value, str):
            value = value.strip()
            if not value:
                return None
        return value


class CollectionKind(str, Enum):
    """Which of the two parallel catalogues a record lives in."""

    COLLECTION = "collection"
    WISHLIST = "wishlist"


class SeriesPresence(str, Enum):
    """Where a logical series exists across the two catalogues."""

    REGULAR = "regular"
    WISHLIST_ONLY = "wishlist-only"
    COMBINED = "combined"


class Publisher(APIModel):
    """Representation of a stored publisher."""

    id: int
    name: str
    created_at: str | None = None


class Series(APIModel):
    """Representation of a stored series in either catalogue."""

    id: int
    name: str
    publisher_id: int
    publisher_name: str | None = None
    total_issues: int = Field(default=0, description="Publisher-declared count")
    locg_link: str | None = None
    locg_issue_count: int | None = Field(
        default=None, description="Advisory count reported by the scraper"
    )
    last_crawled_at: str | None = None
    run_label: str | None = Field(default=None, description="Scraped run range")
    start_date: str | None = None
    end_date: str | None = None
    created_at: str | None = None


class Issue(APIModel):
    """Representation of a collection issue or wishlist item."""

    id: int
    name: str
    series_id: int
    issue_no: float = Field(description="Issue number, 2.5 allowed for specials")
    publisher_id: int
    variant_description: str | None = None
    cover_url: str | None = None
    release_date: str | None = None
    upc: str | None = None
    locg_link: str | None = None
    plot: str | None = None
    created_at: str | None = None
    series_name: str | None = None
    publisher_name: str | None = None


WishlistItem = Issue


class TaggedIssue(Issue):
    """An issue carrying its provenance inside a combined view."""

    type: CollectionKind


class PagingResponse(APIModel):
    """Mixin for paginated responses."""

    next_page_token: str | None = Field(
        default=None,
        description="Opaque token clients pass to retrieve the next page.",
    )


class ListPublishersResponse(APIModel):
    publishers: list[Publisher]


class ListSeriesResponse(PagingResponse):
    """Paginated response for series listings."""

    series: list[Series]


class ListIssuesResponse(PagingResponse):
    """Paginated response for issue and wishlist listings."""

    issues: list[Issue]


class CreatePublisherRequest(APIModel):
    """Payload for resolving (or creating) a publisher by name."""

    name: str = Field(min_length=1)
    collection_type: CollectionKind = CollectionKind.COLLECTION


class CreateSeriesRequest(APIModel):
    """Payload for resolving (or creating) a series by name and publisher."""

    name: str = Field(min_length=1)
    publisher_name: str = Field(min_length=1)
    collection_type: CollectionKind = CollectionKind.COLLECTION
    total_issues: int = Field(default=0, ge=0)
    locg_link: str | None = None
    start_date: str | None = None
    end_date: str | None = None


class CreateIssueRequest(APIModel):
    """Payload accepted when explicitly adding an issue or wishlist item."""

    series_name: str = Field(min_length=1)
    publisher_name: str = Field(min_length=1)
    issue_no: float
    name: str | None = None
    variant_description: str | None = None
    cover_url: str | None = None
    release_date: str | None = None
    upc: str | None = None
    locg_link: str | None = None
    plot: str | None = None


class UpdateIssueRequest(APIModel):
    """Partial edit of an issue or wishlist item.

    Only the fields present in the payload change. An explicit null clears an
    optional field; name, series and number can be replaced but not cleared.
    """

    name: str | None = None
    series_id: int | None = None
    issue_no: float | None = None
    variant_description: str | None = None
    cover_url: str | None = None
    release_date: str | None = None
    upc: str | None = None
    locg_link: str | None = None
    plot: str | None = None

    @model_validator(mode="after")
    def ensure_payload(self) -> "UpdateIssueRequest":
        """Reject empty updates and nulls for fields every item must have."""
        if not self.model_fields_set:
            raise ValueError("At least one field must be provided")
        for field in ("name", "series_id", "issue_no"):
            if field in self.model_fields_set and getattr(self, field) is None:
                raise ValueError(f"{field} cannot be cleared")
        return self


class CombinedSeriesMeta(APIModel):
    """Series metadata for a combined view, taken from whichever side exists."""

    collection_id: int | None = None
    wishlist_id: int | None = None
    name: str
    publisher_name: str | None = None
    total_issues: int = 0
    locg_link: str | None = None
    locg_issue_count: int | None = None
    last_crawled_at: str | None = None
    run_label: str | None = None
    start_date: str | None = None
    end_date: str | None = None
    kind: SeriesPresence


class CombinedSeriesStats(APIModel):
    collection_count: int
    wishlist_count: int
    missing_count: int
    total_count: int


class CombinedSeriesView(APIModel):
    """Unified view of one logical series across both catalogues."""

    series: CombinedSeriesMeta
    collection_issues: list[TaggedIssue]
    wishlist_items: list[TaggedIssue]
    all_issues: list[TaggedIssue]
    missing_issues: list[int]
    stats: CombinedSeriesStats


class CombinedSeriesSummary(APIModel):
    """One row of the combined series listing."""

    combined_id: str
    collection_id: int | None = None
    wishlist_id: int | None = None
    name: str
    publisher_name: str | None = None
    total_issues: int = 0
    locg_link: str | None = None
    kind: SeriesPresence
    collection_count: int = 0
    wishlist_count: int = 0


class ListCombinedSeriesResponse(APIModel):
    series: list[CombinedSeriesSummary]


class TransferRequest(APIModel):
    """Move one wishlist item, or a batch of them, into the collection."""

    wishlist_item_id: int | None = None
    wishlist_item_ids: list[int] | None = None

    @model_validator(mode="after")
    def ensure_single_mode(self) -> "TransferRequest":
        """Exactly one of the two fields must be supplied."""
        has_single = self.wishlist_item_id is not None
        has_batch = self.wishlist_item_ids is not None
        if has_single and has_batch:
            raise ValueError(
                "Provide either wishlist_item_id or wishlist_item_ids, not both"
            )
        if not has_single and not has_batch:
            raise ValueError("Either wishlist_item_id or wishlist_item_ids is required")
        return self


class TransferResult(APIModel):
    success: bool
    new_issue_id: int | None = None
    error: str | None = None
    error_type: str | None = None


class TransferItemResult(TransferResult):
    id: int


class TransferSummary(APIModel):
    transferred: int
    failed: int


class BatchTransferResult(APIModel):
    success: bool
    results: list[TransferItemResult]
    summary: TransferSummary


class SeriesRecord(LooseRecord):
    """Externally supplied series row for bulk sync."""

    name: str | None = Field(
        default=None, validation_alias=AliasChoices("name", "title")
    )
    publisher_name: str | None = Field(
        default=None,
        validation_alias=AliasChoices("publisher_name", "publisherName", "publisher"),
    )
    total_issues: int | None = Field(
        default=None,
        ge=0,
        validation_alias=AliasChoices("total_issues", "totalIssues"),
    )
    locg_link: str | None = Field(
        default=None, validation_alias=AliasChoices("locg_link", "locgLink")
    )
    start_date: str | None = Field(
        default=None, validation_alias=AliasChoices("start_date", "startDate")
    )
    end_date: str | None = Field(
        default=None, validation_alias=AliasChoices("end_date", "endDate")
    )


class IssueRecord(LooseRecord):
    """Externally supplied issue row for bulk sync and import."""

    name: str | None = None
    series_name: str | None = Field(
        default=None,
        validation_alias=AliasChoices("series_name", "seriesName", "series"),
    )
    publisher_name: str | None = Field(
        default=None,
        validation_alias=AliasChoices("publisher_name", "publisherName", "publisher"),
    )
    issue_no: str | float | None = Field(
        default=None,
        validation_alias=AliasChoices("issue_no", "issueNo", "issue"),
    )
    variant_description: str | None = Field(
        default=None,
        validation_alias=AliasChoices("variant_description", "variantDescription"),
    )
    cover_url: str | None = Field(
        default=None, validation_alias=AliasChoices("cover_url", "coverUrl")
    )
    release_date: str | None = Field(
        default=None, validation_alias=AliasChoices("release_date", "releaseDate")
    )
    upc: str | None = None
    locg_link: str | None = Field(
        default=None, validation_alias=AliasChoices("locg_link", "locgLink")
    )
    plot: str | None = None

    @field_validator("upc", mode="before")
    @classmethod
    def upc_as_text(cls, value: Any) -> Any:
        """Barcodes read from spreadsheets arrive as numbers."""
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return str(int(value)) if float(value).is_integer() else str(value)
        return value


class SeriesSyncRequest(APIModel):
    series: list[Any]
    collection_type: CollectionKind = CollectionKind.COLLECTION


class IssueSyncRequest(APIModel):
    issues: list[Any]
    collection_type: CollectionKind = CollectionKind.COLLECTION


class ImportRequest(APIModel):
    rows: list[Any]
    collection_type: CollectionKind = CollectionKind.COLLECTION


class SyncSummary(APIModel):
    created: int = 0
    updated: int = 0
    errors: int = 0


class SyncError(APIModel):
    record: Any
    error: str


class SeriesSyncDetails(APIModel):
    created: list[Series] = Field(default_factory=list)
    updated: list[Series] = Field(default_factory=list)
    errors: list[SyncError] = Field(default_factory=list)


class SeriesSyncResult(APIModel):
    success: bool = True
    summary: SyncSummary = Field(default_factory=SyncSummary)
    details: SeriesSyncDetails = Field(default_factory=SeriesSyncDetails)


class IssueSyncDetails(APIModel):
    created: list[Issue] = Field(default_factory=list)
    updated: list[Issue] = Field(default_factory=list)
    errors: list[SyncError] = Field(default_factory=list)


class IssueSyncResult(APIModel):
    success: bool = True
    summary: SyncSummary = Field(default_factory=SyncSummary)
    details: IssueSyncDetails = Field(default_factory=IssueSyncDetails)


class ImportSummary(APIModel):
    issues_added: int = 0
    series_created: int = 0
    publishers_created: int = 0
    duplicates: int = 0
    errors: int = 0


class ImportResult(APIModel):
    success: bool = True
    summary: ImportSummary = Field(default_factory=ImportSummary)
    messages: list[str] = Field(default_factory=list)


class PreviewSeries(APIModel):
    name: str
    publisher: str


class PreviewIssue(APIModel):
    name: str
    series: str
    issue_no: float
    variant: str | None = None


class RowError(APIModel):
    row: int
    message: str


class ValidationSummary(APIModel):
    total_rows: int = 0
    valid_rows: int = 0
    issues_will_be_added: int = 0
    series_will_be_created: int = 0
    publishers_will_be_created: int = 0
    duplicates: int = 0
    errors: int = 0


class ValidationDetails(APIModel):
    new_publishers: list[str] = Field(default_factory=list)
    new_series: list[PreviewSeries] = Field(default_factory=list)
    new_issues: list[PreviewIssue] = Field(default_factory=list)
    duplicates: list[PreviewIssue] = Field(default_factory=list)
    errors: list[RowError] = Field(default_factory=list)


class ValidationPreview(APIModel):
    success: bool = True
    summary: ValidationSummary = Field(default_factory=ValidationSummary)
    details: ValidationDetails = Field(default_factory=ValidationDetails)


class CrawlResult(APIModel):
    """Advisory series data reported by the external catalogue scraper."""

    issue_count: int = Field(ge=0)
    regular_issues: int | None = Field(default=None, ge=0)
    annuals: int | None = Field(default=None, ge=0)
    run_label: str | None = None
    crawled_at: datetime


class ScraperCredentials(APIModel):
    username: str
    password: str


class CrawlRequest(APIModel):
    credentials: ScraperCredentials | None = None


class CrawlResponse(APIModel):
    success: bool
    series_id: int
    series_name: str
    issue_count: int
    regular_issues: int = 0
    annuals: int = 0
    run_label: str | None = None
    crawled_at: datetime
    series: Series
    note: str | None = None


def dict_from_row(row: Any) -> dict[str, Any]:
    """Convert a sqlite Row into a standard dict."""
    return {key: row[key] for key in row.keys()}
