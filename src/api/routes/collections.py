"""Collection and settings endpoints for the PathRec API.

Admin-facing: inspect and toggle a shop's collections, read and update its
display settings, and prune edges that point at ineligible collections.
"""

import logging
from typing import List, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy.orm import Session

from src.api.dependencies import (
    get_config,
    get_entitlements,
    get_session,
    get_shop_or_404,
)
from src.api.exceptions import CollectionNotFoundError, SettingsValidationError
from src.api.routes.jobs import SUBSCRIPTION_REQUIRED, JobResponse
from src.config import AppConfig
from src.db.models import Shop
from src.pipeline.entitlement import EntitlementProvider
from src.pipeline.jobs import JobType, submit_job
from src.pipeline.shops import (
    bump_cache_version,
    get_settings,
    list_collections,
    toggle_collection,
    update_settings,
)
from src.recommender.graph import cleanup_ineligible_edges

# Configure module logger
logger = logging.getLogger(__name__)

router = APIRouter(prefix="/shops/{shop_id}", tags=["collections"])


class CollectionSummary(BaseModel):
    id: int
    external_id: str
    handle: str
    title: str
    audience: str
    is_enabled: bool
    is_excluded_sale: bool
    has_embedding: bool
    embedding_model: Optional[str] = None
    source_edges: int
    target_edges: int


class CollectionsResponse(BaseModel):
    shop_id: int
    cache_version: int
    collections: List[CollectionSummary]


class ToggleResponse(BaseModel):
    id: int
    handle: str
    is_enabled: bool


class SettingsResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    max_buttons: int
    button_style: str
    alignment: str


class SettingsUpdate(BaseModel):
    """Partial settings update; omitted fields keep their value."""

    max_buttons: Optional[int] = Field(default=None, description="1 to 30")
    button_style: Optional[str] = Field(
        default=None, description="pill, rounded or square"
    )
    alignment: Optional[str] = Field(default=None, description="left, center or right")


class CleanupResponse(BaseModel):
    deleted_edges: int
    job: Optional[JobResponse] = None
    message: Optional[str] = None


@router.get("/collections", response_model=CollectionsResponse)
def get_collections(
    shop: Shop = Depends(get_shop_or_404),
    session: Session = Depends(get_session),
) -> CollectionsResponse:
    """List the shop's collections with embedding and edge counts."""
    return CollectionsResponse(
        shop_id=shop.id,
        cache_version=shop.cache_version,
        collections=[
            CollectionSummary(**row) for row in list_collections(session, shop.id)
        ],
    )


@router.post("/collections/{collection_id}/toggle", response_model=ToggleResponse)
def toggle_shop_collection(
    collection_id: int,
    shop: Shop = Depends(get_shop_or_404),
    session: Session = Depends(get_session),
) -> ToggleResponse:
    """Enable or disable a collection.

    Disabling removes every edge touching the collection at once; re-enabling
    only takes effect on the next graph build.
    """
    collection = toggle_collection(session, shop.id, collection_id)
    if collection is None:
        raise CollectionNotFoundError(shop.id, collection_id)

    return ToggleResponse(
        id=collection.id, handle=collection.handle, is_enabled=collection.is_enabled
    )


@router.get("/settings", response_model=SettingsResponse)
def get_shop_settings(
    shop: Shop = Depends(get_shop_or_404),
    session: Session = Depends(get_session),
) -> SettingsResponse:
    return SettingsResponse.model_validate(get_settings(session, shop.id))


@router.put("/settings", response_model=SettingsResponse)
def put_shop_settings(
    update: SettingsUpdate,
    shop: Shop = Depends(get_shop_or_404),
    session: Session = Depends(get_session),
    config: AppConfig = Depends(get_config),
) -> SettingsResponse:
    """Update display settings and bump the shop's cache version.

    Raises:
        SettingsValidationError: If a value is out of range (400).
    """
    try:
        settings = update_settings(
            session,
            shop.id,
            max_buttons=update.max_buttons,
            button_style=update.button_style,
            alignment=update.alignment,
            max_buttons_limit=config.max_buttons_limit,
        )
    except ValueError as e:
        raise SettingsValidationError(e, details={"shop_id": shop.id, "error": str(e)})

    logger.info(
        "Settings updated",
        extra={"shop_id": shop.id, **update.model_dump(exclude_none=True)},
    )
    return SettingsResponse.model_validate(settings)


@router.post("/cleanup", response_model=CleanupResponse, response_model_exclude_none=True)
def cleanup_shop_edges(
    rebuild: bool = False,
    shop: Shop = Depends(get_shop_or_404),
    session: Session = Depends(get_session),
    entitlements: EntitlementProvider = Depends(get_entitlements),
) -> CleanupResponse:
    """Delete edges pointing at disabled or sale collections.

    With ``rebuild=true`` a full pipeline job is also enqueued, subject to the
    shop's entitlement.
    """
    shop_id = shop.id
    deleted = cleanup_ineligible_edges(session, shop_id)
    if deleted:
        bump_cache_version(session, shop_id)

    result = CleanupResponse(deleted_edges=deleted)
    if rebuild:
        submission = submit_job(session, shop_id, JobType.FULL_PIPELINE, entitlements)
        if submission.accepted:
            result.job = JobResponse.model_validate(submission.job)
        else:
            result.message = SUBSCRIPTION_REQUIRED

    return result
