"""Storefront recommendation endpoint for the PathRec API.

Serves the ranked related-collection buttons for one collection page. This
path never surfaces backend errors to shoppers: any failure, unknown shop or
unknown handle degrades to an empty button list.
"""

import logging
import threading
import time
from collections import OrderedDict
from typing import Dict, Hashable, List, Optional

from fastapi import APIRouter, Depends, Request, Response
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from src.api.dependencies import get_config, get_entitlements, get_session
from src.api.metrics import metrics_service
from src.config import AppConfig
from src.pipeline.entitlement import EntitlementProvider
from src.pipeline.shops import get_shop_by_domain
from src.recommender.reader import get_recommendations

# Configure module logger
logger = logging.getLogger(__name__)

# Create API router
router = APIRouter(
    prefix="/recommend",
    tags=["recommendations"],
)

SUBSCRIPTION_REQUIRED = "Subscription required"


class Button(BaseModel):
    """One recommended collection."""

    title: str
    url: str
    score: float
    rank: int


class ButtonsResponse(BaseModel):
    """Response model for the storefront buttons.

    Attributes:
        buttons: Ranked recommendations, capped at the shop's ``max_buttons``.
        cacheVersion: The shop's cache version the buttons were read at.
        buttonStyle: Display style configured for the shop.
        alignment: Display alignment configured for the shop.
        message: Set when buttons are withheld (e.g. no subscription).
    """

    buttons: List[Button] = Field(default_factory=list)
    cacheVersion: Optional[int] = None
    buttonStyle: Optional[str] = None
    alignment: Optional[str] = None
    message: Optional[str] = None


class RecommendationCache:
    """Thread-safe in-process LRU cache of storefront responses.

    Keys embed the shop's cache version, so bumping the version makes stale
    entries unreachable; they age out through LRU eviction.
    """

    def __init__(self, max_size: int = 1024):
        self.max_size = max_size
        self._entries: "OrderedDict[Hashable, ButtonsResponse]" = OrderedDict()
        self._lock = threading.Lock()

    def get(self, key: Hashable) -> Optional[ButtonsResponse]:
        with self._lock:
            value = self._entries.get(key)
            if value is not None:
                self._entries.move_to_end(key)
            return value

    def put(self, key: Hashable, value: ButtonsResponse) -> None:
        if self.max_size <= 0:
            return
        with self._lock:
            self._entries[key] = value
            self._entries.move_to_end(key)
            while len(self._entries) > self.max_size:
                self._entries.popitem(last=False)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)


def make_etag(shop_id: int, handle: str, cache_version: int) -> str:
    """Weak validator for (shop, handle, cacheVersion)."""
    return f'W/"{shop_id}-{cache_version}-{handle}"'


def _load_buttons(
    session: Session, shop, handle: str, config: AppConfig
) -> ButtonsResponse:
    settings = shop.settings
    max_buttons = settings.max_buttons if settings else config.default_max_buttons

    recommendations = get_recommendations(session, shop.id, handle)[:max_buttons]
    return ButtonsResponse(
        buttons=[Button(**rec) for rec in recommendations],
        cacheVersion=shop.cache_version,
        buttonStyle=settings.button_style if settings else "pill",
        alignment=settings.alignment if settings else "left",
    )


@router.get(
    "/{shop_domain}/{handle}",
    response_model=ButtonsResponse,
    response_model_exclude_none=True,
)
def get_buttons(
    shop_domain: str,
    handle: str,
    request: Request,
    response: Response,
    session: Session = Depends(get_session),
    config: AppConfig = Depends(get_config),
    entitlements: EntitlementProvider = Depends(get_entitlements),
):
    """Get the related-collection buttons for a collection page.

    Example:
        GET /recommend/example.myshopify.com/mens-shirts
    """
    start_time = time.time()
    cache_hit = False

    try:
        shop = get_shop_by_domain(session, shop_domain)
        if shop is None:
            return ButtonsResponse()

        entitlement = entitlements.get_entitlement(session, shop.id)
        if not entitlement.can_render_buttons:
            logger.info(
                "Buttons withheld",
                extra={"shop_id": shop.id, "billing_status": entitlement.status},
            )
            return ButtonsResponse(message=SUBSCRIPTION_REQUIRED)

        etag = make_etag(shop.id, handle, shop.cache_version)
        headers: Dict[str, str] = {
            "ETag": etag,
            "Cache-Control": f"public, max-age={config.recommendation_max_age_s}",
        }
        if request.headers.get("if-none-match") == etag:
            return Response(status_code=304, headers=headers)

        cache: RecommendationCache = request.app.state.recommendation_cache
        key = (shop.id, handle, shop.cache_version)
        payload = cache.get(key)
        if payload is not None:
            cache_hit = True
        else:
            payload = _load_buttons(session, shop, handle, config)
            cache.put(key, payload)

        for name, value in headers.items():
            response.headers[name] = value
        return payload

    except Exception as e:
        logger.error(
            "Failed to serve recommendations",
            extra={
                "shop_domain": shop_domain,
                "handle": handle,
                "error": str(e),
                "error_type": type(e).__name__,
            },
            exc_info=True,
        )
        return ButtonsResponse()

    finally:
        metrics_service.record_read(
            (time.time() - start_time) * 1000, cache_hit=cache_hit
        )
