"""Domain errors raised by the library services.

Routers translate these into HTTP responses; batch operations record them
per item instead of raising.
"""

from __future__ import annotations


class LibraryError(Exception):
    """Base class for every error the core services raise."""

    error_type = "library_error"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class NotFoundError(LibraryError):
    """A referenced publisher, series, issue or wishlist item does not exist."""

    error_type = "not_found"


class ValidationError(LibraryError):
    """Input was malformed after defaulting (bad issue number, empty name)."""

    error_type = "validation_error"


class DuplicateIssueError(LibraryError):
    """An issue with the same series, number and variant already exists."""

    error_type = "duplicate_issue"

    def __init__(
        self,
        *,
        series_name: str | None,
        issue_no: float,
        variant_description: str | None,
        target: str = "collection",
    ) -> None:
        self.series_name = series_name
        self.issue_no = issue_no
        self.variant_description = variant_description
        label = f"#{format_issue_no(issue_no)}"
        if variant_description:
            label = f"{label} ({variant_description})"
        if series_name:
            label = f"{series_name} {label}"
        super().__init__(f"Issue {label} already exists in your {target}")


class IdentityConflictError(LibraryError):
    """A find-or-create insert lost a race against a concurrent insert.

    Only the identity resolver sees this; it re-reads and returns the winner.
    """

    error_type = "identity_conflict"


class StoreError(LibraryError):
    """The underlying SQLite store failed."""

    error_type = "store_error"


class ScraperError(LibraryError):
    """The external catalogue scraper was unreachable or reported a failure."""

    error_type = "scraper_error"


def format_issue_no(value: float | int | str | None) -> str:
    """Render an issue number so 1.0 becomes "1" and 2.5 stays "2.5"."""
    if value is None:
        return ""
    try:
        number = float(value)
    except (TypeError, ValueError):
        return str(value)
    if number.is_integer():
        return str(int(number))
    return str(number)


__all__ = [
    "DuplicateIssueError",
    "IdentityConflictError",
    "LibraryError",
    "NotFoundError",
    "ScraperError",
    "StoreError",
    "ValidationError",
    "format_issue_no",
]
