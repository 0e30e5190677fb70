"""Combined series views spanning the collection and the wishlist."""

from __future__ import annotations

from fastapi import APIRouter, Depends

from app import schemas
from app.errors import LibraryError
from app.reconciler import SeriesReconciler

from . import helpers

router = APIRouter()


@router.get("/combined-series", response_model=schemas.ListCombinedSeriesResponse)
async def list_combined_series(
    reconciler: SeriesReconciler = Depends(helpers.get_reconciler),
) -> schemas.ListCombinedSeriesResponse:
    """Every logical series once, marked regular, wishlist-only or combined."""
    series = await reconciler.list_combined_series()
    return schemas.ListCombinedSeriesResponse(series=series)


@router.get("/combined-series/{combined_id}", response_model=schemas.CombinedSeriesView)
async def get_combined_series(
    combined_id: str,
    reconciler: SeriesReconciler = Depends(helpers.get_reconciler),
) -> schemas.CombinedSeriesView:
    """Resolve ``combined-{c}-{w}``, ``regular-{c}``, ``wishlist-{w}`` or a bare id."""
    try:
        return await reconciler.get_combined_view_by_id(combined_id)
    except LibraryError as exc:
        raise helpers.http_error(exc) from exc
