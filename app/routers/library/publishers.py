"""Publisher endpoints."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query

from app import schemas
from app.errors import LibraryError
from app.resolver import IdentityResolver
from app.schemas import CollectionKind
from app.store import LibraryStore

from . import helpers

router = APIRouter()


@router.get("/publishers", response_model=schemas.ListPublishersResponse)
async def list_publishers(
    *,
    store: LibraryStore = Depends(helpers.get_store),
    collection_type: CollectionKind = Query(
        default=CollectionKind.COLLECTION, description="Catalogue to list"
    ),
) -> schemas.ListPublishersResponse:
    """Return every publisher of one catalogue, alphabetically."""
    publishers = await store.list_publishers(collection_type)
    return schemas.ListPublishersResponse(publishers=publishers)


@router.post("/publishers", response_model=schemas.Publisher)
async def create_publisher(
    *,
    resolver: IdentityResolver = Depends(helpers.get_resolver),
    request: schemas.CreatePublisherRequest,
) -> schemas.Publisher:
    """Find a publisher by name, creating it when it does not exist yet."""
    try:
        return await resolver.find_or_create_publisher(
            request.collection_type, request.name
        )
    except LibraryError as exc:
        raise helpers.http_error(exc) from exc
