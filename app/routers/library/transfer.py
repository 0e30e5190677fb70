"""Wishlist to collection transfer endpoint."""

from __future__ import annotations

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from app import schemas
from app.errors import LibraryError
from app.transfer import TransferEngine

from . import helpers

router = APIRouter()


@router.post(
    "/transfer/wishlist-to-collection",
    response_model=schemas.TransferResult | schemas.BatchTransferResult,
)
async def transfer_wishlist_to_collection(
    *,
    engine: TransferEngine = Depends(helpers.get_transfer_engine),
    request: schemas.TransferRequest,
):
    """Move one wishlist item, or a batch, into the collection.

    A single transfer reports failure with the matching HTTP status. A batch
    always answers 200 with a per-item outcome and summary counts.
    """
    if request.wishlist_item_ids is not None:
        return await engine.transfer_batch(request.wishlist_item_ids)

    try:
        new_issue_id = await engine.transfer_one(request.wishlist_item_id)
    except LibraryError as exc:
        result = schemas.TransferResult(
            success=False, error=exc.message, error_type=exc.error_type
        )
        return JSONResponse(
            status_code=helpers.status_for(exc), content=result.model_dump()
        )
    return schemas.TransferResult(success=True, new_issue_id=new_issue_id)
