"""Grouped routers for the library endpoints."""
from fastapi import APIRouter

from . import combined, crawl, issues, publishers, series, sync, transfer, wishlist

router = APIRouter(prefix="/v1", tags=["library"])
router.include_router(publishers.router)
# static /series paths must register ahead of /series/{series_id}
router.include_router(crawl.router)
router.include_router(sync.router)
router.include_router(series.router)
router.include_router(issues.router)
router.include_router(wishlist.router)
router.include_router(combined.router)
router.include_router(transfer.router)

__all__ = ["router"]
