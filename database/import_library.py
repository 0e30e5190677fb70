import argparse
import asyncio
import json
import logging
from pathlib import Path
from typing import Any, Optional, Sequence

import pandas as pd
from alembic.config import Config

from alembic import command
from app import schemas
from app.cache import ALL_CATALOGUE_TAGS, invalidate_tags
from app.db import open_connection
from app.resolver import IdentityResolver
from app.schemas import CollectionKind
from app.store import LibraryStore
from app.sync import BulkSync

logger = logging.getLogger(__name__)

DB_PATH = Path("comics.db")
ALEMBIC_INI_PATH = Path(__file__).resolve().parents[1] / "alembic.ini"

ISSUE_NO_COLUMNS = ("issue_no", "issueNo")


def normalize_issue_no(value) -> str:
    """
    Normalize an issue number into a string so that 1.0 becomes "1",
    0.5 stays "0.5", and NaN becomes "".
    """
    if value is None or pd.isna(value):
        return ""
    try:
        f = float(value)
        if f.is_integer():
            return str(int(f))
        return str(f)
    except (TypeError, ValueError):
        return str(value).strip()


def normalize_text(value) -> str:
    """
    Convert NaN or None to empty string, otherwise cast to a stripped string.
    """
    if value is None or pd.isna(value):
        return ""
    return str(value).strip()


def describe_row(row: dict[str, Any], index: int) -> str:
    """
    Provide a terse identifier for an input row so we can log problems clearly.
    """
    series_name = normalize_text(
        row.get("series_name") or row.get("seriesName") or row.get("series")
    )
    issue_no = normalize_issue_no(row.get("issue_no", row.get("issueNo")))
    variant = normalize_text(row.get("variant_description"))

    descriptor_parts = []
    if series_name:
        descriptor_parts.append(series_name)
    if issue_no:
        descriptor_parts.append(f"#{issue_no}")
    descriptor = " ".join(descriptor_parts)
    if descriptor and variant:
        descriptor = f"{descriptor} (variant {variant})"
    elif not descriptor and variant:
        descriptor = f"variant {variant}"

    if descriptor:
        return f"{descriptor} [row={index}]"
    return f"row={index}"


def log_row_skip(
    stage: str,
    row: dict[str, Any],
    index: int,
    reason: str,
    error: Optional[Exception] = None,
) -> None:
    """
    Emit a warning when a row is not handed to the importer.
    """
    context = describe_row(row, index)
    if error:
        logger.warning("%s: skipped %s (%s) - %s", stage, context, reason, error)
    else:
        logger.warning("%s: skipped %s - %s", stage, context, reason)


def apply_migrations(db_path: Path) -> None:
    """
    Build or update the SQLite schema using Alembic migrations.
    """
    if not ALEMBIC_INI_PATH.exists():
        raise FileNotFoundError(
            f"Alembic configuration not found at {ALEMBIC_INI_PATH}"
        )

    alembic_cfg = Config(str(ALEMBIC_INI_PATH))
    alembic_cfg.set_main_option("script_location", str(ALEMBIC_INI_PATH.parent / "alembic"))
    alembic_cfg.set_main_option("sqlalchemy.url", f"sqlite:///{db_path}")
    alembic_cfg.attributes["configure_logger"] = False

    logger.info("Applying Alembic migrations to %s", db_path)
    command.upgrade(alembic_cfg, "head")


def frame_to_rows(df: pd.DataFrame, first_row: int = 2) -> list[dict[str, Any]]:
    """Turn a loaded CSV into import rows, dropping blank cells and blank lines."""
    rows: list[dict[str, Any]] = []
    for offset, (_, series) in enumerate(df.iterrows()):
        row: dict[str, Any] = {}
        for column, value in series.items():
            if column in ISSUE_NO_COLUMNS:
                text = normalize_issue_no(value)
            else:
                text = normalize_text(value)
            if text:
                row[str(column)] = text
        if not row:
            log_row_skip("load", row, first_row + offset, "empty row")
            continue
        rows.append(row)
    return rows


def load_rows(path: Path) -> tuple[list[Any], int]:
    """
    Load import rows from a CSV export or a JSON array.

    Returns the rows and the number reported for the first of them, which
    accounts for the CSV header line. JSON entries that are not objects are
    passed through so the importer reports them under their own row number.
    """
    logger.info("Loading rows from %s", path)
    if path.suffix.lower() == ".json":
        with path.open(encoding="utf-8") as handle:
            data = json.load(handle)
        if not isinstance(data, list):
            raise ValueError(f"{path} must contain a JSON array of rows")
        logger.info("Loaded %d records from JSON", len(data))
        return data, 1

    # Read every cell as text so barcodes keep their leading zeros
    df = pd.read_csv(path, dtype=str, skip_blank_lines=False)
    logger.info("Loaded %d records from CSV", len(df))
    return frame_to_rows(df), 2


async def run_import(
    db_path: Path,
    rows: Sequence[Any],
    kind: CollectionKind,
    *,
    first_row: int = 1,
    validate_only: bool = False,
) -> schemas.ImportResult | schemas.ValidationPreview:
    conn = await open_connection(db_path)
    try:
        store = LibraryStore(conn)
        sync = BulkSync(store, IdentityResolver(store))
        if validate_only:
            return await sync.validate_import(rows, kind, first_row=first_row)
        result = await sync.import_rows(rows, kind, first_row=first_row)
    finally:
        await conn.close()
    await invalidate_tags(ALL_CATALOGUE_TAGS)
    return result


def parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Import a CSV export or JSON array into the comics database."
    )
    parser.add_argument("source", type=Path, help="CSV or JSON file to import")
    parser.add_argument(
        "--db",
        type=Path,
        default=DB_PATH,
        help="SQLite database to create or update (default: %(default)s)",
    )
    parser.add_argument(
        "--collection-type",
        choices=[kind.value for kind in CollectionKind],
        default=CollectionKind.COLLECTION.value,
        help="Catalogue that receives the rows (default: %(default)s)",
    )
    parser.add_argument(
        "--validate-only",
        action="store_true",
        help="Report what would be imported without writing anything",
    )
    return parser.parse_args(argv)


def main(argv: Optional[Sequence[str]] = None) -> None:
    logging.basicConfig(
        level=logging.INFO,
        format="%(levelname)s:%(name)s:%(message)s",
    )
    args = parse_args(argv)

    if not args.source.exists():
        raise FileNotFoundError(f"import file not found at {args.source}")

    apply_migrations(args.db)
    rows, first_row = load_rows(args.source)
    kind = CollectionKind(args.collection_type)
    result = asyncio.run(
        run_import(
            args.db,
            rows,
            kind,
            first_row=first_row,
            validate_only=args.validate_only,
        )
    )

    if isinstance(result, schemas.ValidationPreview):
        summary = result.summary
        for error in result.details.errors:
            logger.warning("validate: row %d - %s", error.row, error.message)
        logger.info(
            "Validation: %d rows, %d valid, %d issues to add, %d duplicates, %d errors",
            summary.total_rows,
            summary.valid_rows,
            summary.issues_will_be_added,
            summary.duplicates,
            summary.errors,
        )
        return

    for message in result.messages:
        logger.warning("import: %s", message)
    summary = result.summary
    logger.info(
        "Imported into %s at %s (added=%d, series=%d, publishers=%d, duplicates=%d, errors=%d)",
        kind.value,
        args.db.resolve(),
        summary.issues_added,
        summary.series_created,
        summary.publishers_created,
        summary.duplicates,
        summary.errors,
    )


if __name__ == "__main__":
    main()
