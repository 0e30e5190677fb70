"""Bulk sync and import endpoints."""

from __future__ import annotations

from fastapi import APIRouter, Depends

from app import schemas
from app.sync import BulkSync

from . import helpers

router = APIRouter()


@router.post("/series/sync", response_model=schemas.SeriesSyncResult)
async def sync_series(
    *,
    sync: BulkSync = Depends(helpers.get_bulk_sync),
    request: schemas.SeriesSyncRequest,
) -> schemas.SeriesSyncResult:
    """Create or partially update series; bad records are reported, not fatal."""
    return await sync.sync_series(request.series, request.collection_type)


@router.post("/issues/sync", response_model=schemas.IssueSyncResult)
async def sync_issues(
    *,
    sync: BulkSync = Depends(helpers.get_bulk_sync),
    request: schemas.IssueSyncRequest,
) -> schemas.IssueSyncResult:
    return await sync.sync_issues(request.issues, request.collection_type)


@router.post("/import/validate", response_model=schemas.ValidationPreview)
async def validate_import(
    *,
    sync: BulkSync = Depends(helpers.get_bulk_sync),
    request: schemas.ImportRequest,
) -> schemas.ValidationPreview:
    """Preview an import without writing anything."""
    return await sync.validate_import(request.rows, request.collection_type)


@router.post("/import/process", response_model=schemas.ImportResult)
async def process_import(
    *,
    sync: BulkSync = Depends(helpers.get_bulk_sync),
    request: schemas.ImportRequest,
) -> schemas.ImportResult:
    return await sync.import_rows(request.rows, request.collection_type)
