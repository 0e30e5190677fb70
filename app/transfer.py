"""Move wishlist items into the collection."""

from __future__ import annotations

import logging
from typing import Iterable

from app import schemas
from app.db import transaction
from app.errors import DuplicateIssueError, LibraryError, NotFoundError, StoreError
from app.resolver import IdentityResolver
from app.schemas import CollectionKind
from app.store import LibraryStore

logger = logging.getLogger(__name__)


class TransferEngine:
    """Re-home a wishlist item under collection identities.

    The wishlist and collection keep separate publisher and series rows, so
    the item's publisher and series are resolved again on the collection
    side before the issue is inserted. Everything happens in one transaction:
    the item ends up in exactly one catalogue.
    """

    def __init__(self, store: LibraryStore, resolver: IdentityResolver) -> None:
        self.store = store
        self.resolver = resolver

    async def _transfer(self, item_id: int) -> int:
        item = await self.store.get_item(CollectionKind.WISHLIST, item_id)
        if item is None:
            raise NotFoundError(f"wishlist item {item_id} not found")
        source_series = await self.store.get_series(CollectionKind.WISHLIST, item.series_id)
        if source_series is None:
            raise NotFoundError(f"wishlist series {item.series_id} not found")

        publisher = await self.resolver.find_or_create_publisher(
            CollectionKind.COLLECTION, source_series.publisher_name or item.publisher_name
        )
        series = await self.resolver.find_or_create_series(
            CollectionKind.COLLECTION,
            source_series.name,
            publisher.id,
            total_issues=source_series.total_issues,
            locg_link=source_series.locg_link,
            start_date=source_series.start_date,
            end_date=source_series.end_date,
        )

        existing = await self.store.find_duplicate_item(
            CollectionKind.COLLECTION,
            series_id=series.id,
            issue_no=item.issue_no,
            variant_description=item.variant_description,
        )
        if existing is not None:
            raise DuplicateIssueError(
                series_name=series.name,
                issue_no=item.issue_no,
                variant_description=item.variant_description,
            )

        issue = await self.store.insert_item(
            CollectionKind.COLLECTION,
            name=item.name,
            series_id=series.id,
            issue_no=item.issue_no,
            publisher_id=publisher.id,
            variant_description=item.variant_description,
            cover_url=item.cover_url,
            release_date=item.release_date,
            upc=item.upc,
            locg_link=item.locg_link,
            plot=item.plot,
            series_name=series.name,
        )
        if not await self.store.delete_item(CollectionKind.WISHLIST, item_id):
            raise StoreError(f"wishlist item {item_id} could not be removed")
        return issue.id

    async def transfer_one(self, wishlist_item_id: int) -> int:
        """Transfer one item and return the new collection issue id."""
        async with transaction(self.store.conn):
            new_issue_id = await self._transfer(wishlist_item_id)
        logger.info(
            "transferred wishlist item %s to collection issue %s",
            wishlist_item_id,
            new_issue_id,
        )
        return new_issue_id

    async def transfer_batch(
        self, wishlist_item_ids: Iterable[int]
    ) -> schemas.BatchTransferResult:
        """Transfer each item in its own transaction, collecting per-item outcomes."""
        results: list[schemas.TransferItemResult] = []
        for item_id in wishlist_item_ids:
            try:
                new_issue_id = await self.transfer_one(item_id)
            except LibraryError as exc:
                logger.warning("transfer of wishlist item %s failed: %s", item_id, exc)
                results.append(
                    schemas.TransferItemResult(
                        id=item_id,
                        success=False,
                        error=exc.message,
                        error_type=exc.error_type,
                    )
                )
                continue
            results.append(
                schemas.TransferItemResult(
                    id=item_id, success=True, new_issue_id=new_issue_id
                )
            )
        transferred = sum(1 for result in results if result.success)
        failed = len(results) - transferred
        if failed:
            logger.info("batch transfer: %s transferred, %s failed", transferred, failed)
        return schemas.BatchTransferResult(
            success=failed == 0,
            results=results,
            summary=schemas.TransferSummary(transferred=transferred, failed=failed),
        )
