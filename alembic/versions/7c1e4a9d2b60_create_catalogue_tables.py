"""create catalogue tables

Revision ID: 7c1e4a9d2b60
Revises:
Create Date: 2026-10-19 09:14:27.311842

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = "7c1e4a9d2b60"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

# (publishers, series, items) for the collection and the wishlist
CATALOGUES = (
    ("publishers", "series", "issues"),
    ("wishlist_publishers", "wishlist_series", "wishlist"),
)


def _created_at() -> sa.Column:
    return sa.Column(
        "created_at",
        sa.Text(),
        nullable=False,
        server_default=sa.text("CURRENT_TIMESTAMP"),
    )


def _create_catalogue(publishers: str, series: str, items: str) -> None:
    op.create_table(
        publishers,
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("name", sa.Text(collation="nocase"), nullable=False),
        _created_at(),
        sa.UniqueConstraint("name", name=f"uq_{publishers}_name"),
        sqlite_autoincrement=True,
    )

    op.create_table(
        series,
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("name", sa.Text(collation="nocase"), nullable=False),
        sa.Column("publisher_id", sa.Integer(), nullable=False),
        sa.Column(
            "total_issues", sa.Integer(), nullable=False, server_default=sa.text("0")
        ),
        sa.Column("locg_link", sa.Text(), nullable=True),
        sa.Column("locg_issue_count", sa.Integer(), nullable=True),
        sa.Column("last_crawled_at", sa.Text(), nullable=True),
        sa.Column("run_label", sa.Text(), nullable=True),
        sa.Column("start_date", sa.Text(), nullable=True),
        sa.Column("end_date", sa.Text(), nullable=True),
        _created_at(),
        sa.UniqueConstraint("name", "publisher_id", name=f"uq_{series}_name_publisher"),
        sa.ForeignKeyConstraint(
            ("publisher_id",),
            [f"{publishers}.id"],
            name=f"fk_{series}_publisher_id_{publishers}",
            ondelete="CASCADE",
        ),
        sqlite_autoincrement=True,
    )
    op.create_index(f"ix_{series}_publisher_id", series, ["publisher_id"])

    op.create_table(
        items,
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("name", sa.Text(), nullable=False),
        sa.Column("series_id", sa.Integer(), nullable=False),
        sa.Column("issue_no", sa.Float(), nullable=False),
        sa.Column("publisher_id", sa.Integer(), nullable=False),
        sa.Column("variant_description", sa.Text(), nullable=True),
        sa.Column("cover_url", sa.Text(), nullable=True),
        sa.Column("release_date", sa.Text(), nullable=True),
        sa.Column("upc", sa.Text(), nullable=True),
        sa.Column("locg_link", sa.Text(), nullable=True),
        sa.Column("plot", sa.Text(), nullable=True),
        _created_at(),
        sa.ForeignKeyConstraint(
            ("series_id",),
            [f"{series}.id"],
            name=f"fk_{items}_series_id_{series}",
            ondelete="CASCADE",
        ),
        sa.ForeignKeyConstraint(
            ("publisher_id",),
            [f"{publishers}.id"],
            name=f"fk_{items}_publisher_id_{publishers}",
            ondelete="CASCADE",
        ),
        sqlite_autoincrement=True,
    )
    op.create_index(f"ix_{items}_series_id", items, ["series_id"])
    # A missing variant and an empty one are the same copy
    op.execute(
        f"""
        CREATE UNIQUE INDEX uq_{items}_series_issue_variant
        ON {items} (series_id, issue_no, COALESCE(variant_description, ''))
        """
    )


def upgrade() -> None:
    """Upgrade schema."""
    for publishers, series, items in CATALOGUES:
        _create_catalogue(publishers, series, items)


def downgrade() -> None:
    """Downgrade schema."""
    for publishers, series, items in reversed(CATALOGUES):
        op.drop_index(f"uq_{items}_series_issue_variant", table_name=items)
        op.drop_index(f"ix_{items}_series_id", table_name=items)
        op.drop_table(items)
        op.drop_index(f"ix_{series}_publisher_id", table_name=series)
        op.drop_table(series)
        op.drop_table(publishers)
