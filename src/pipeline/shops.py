"""Shop-level state: registration, settings, cache version and toggles."""

import logging
from datetime import datetime, timezone
from typing import Dict, List, Optional

from sqlalchemy import func, select, update
from sqlalchemy.orm import Session

from src.config import DEFAULT_MAX_BUTTONS, MAX_BUTTONS_LIMIT
from src.db.models import Collection, Edge, Shop, ShopSettings
from src.recommender.graph import delete_edges_touching

# Configure module logger
logger = logging.getLogger(__name__)

BUTTON_STYLES = ("pill", "rounded", "square")
ALIGNMENTS = ("left", "center", "right")


def get_or_create_shop(
    session: Session,
    domain: str,
    access_token: Optional[str] = None,
    billing_status: str = "none",
) -> Shop:
    """Return the shop for ``domain``, creating it with default settings."""
    shop = get_shop_by_domain(session, domain)
    if shop is not None:
        return shop

    shop = Shop(domain=domain, access_token=access_token, billing_status=billing_status)
    shop.settings = ShopSettings(max_buttons=DEFAULT_MAX_BUTTONS)
    session.add(shop)
    session.commit()
    logger.info("Registered shop", extra={"shop_id": shop.id, "domain": domain})
    return shop


def get_shop_by_domain(session: Session, domain: str) -> Optional[Shop]:
    return session.execute(
        select(Shop).where(Shop.domain == domain)
    ).scalar_one_or_none()


def bump_cache_version(session: Session, shop_id: int, commit: bool = True) -> None:
    """Increment the shop's cache version in the database."""
    session.execute(
        update(Shop)
        .where(Shop.id == shop_id)
        .values(cache_version=Shop.cache_version + 1),
        execution_options={"synchronize_session": False},
    )
    if commit:
        session.commit()
        session.expire_all()


def mark_analysed(session: Session, shop_id: int) -> None:
    """Stamp ``last_analysed_at`` and bump the cache version in one commit."""
    session.execute(
        update(Shop)
        .where(Shop.id == shop_id)
        .values(
            last_analysed_at=datetime.now(timezone.utc),
            cache_version=Shop.cache_version + 1,
        ),
        execution_options={"synchronize_session": False},
    )
    session.commit()
    session.expire_all()


def get_settings(session: Session, shop_id: int) -> ShopSettings:
    """The shop's settings, created with defaults on first access."""
    settings = session.execute(
        select(ShopSettings).where(ShopSettings.shop_id == shop_id)
    ).scalar_one_or_none()
    if settings is None:
        settings = ShopSettings(
            shop_id=shop_id,
            max_buttons=DEFAULT_MAX_BUTTONS,
            button_style=BUTTON_STYLES[0],
            alignment=ALIGNMENTS[0],
        )
        session.add(settings)
        session.commit()
    return settings


def validate_settings(
    max_buttons: Optional[int] = None,
    button_style: Optional[str] = None,
    alignment: Optional[str] = None,
    max_buttons_limit: int = MAX_BUTTONS_LIMIT,
) -> None:
    """Raise ``ValueError`` for any out-of-range setting."""
    if max_buttons is not None and not 1 <= max_buttons <= max_buttons_limit:
        raise ValueError(f"max_buttons must be between 1 and {max_buttons_limit}")
    if button_style is not None and button_style not in BUTTON_STYLES:
        raise ValueError(f"button_style must be one of {', '.join(BUTTON_STYLES)}")
    if alignment is not None and alignment not in ALIGNMENTS:
        raise ValueError(f"alignment must be one of {', '.join(ALIGNMENTS)}")


def update_settings(
    session: Session,
    shop_id: int,
    max_buttons: Optional[int] = None,
    button_style: Optional[str] = None,
    alignment: Optional[str] = None,
    max_buttons_limit: int = MAX_BUTTONS_LIMIT,
) -> ShopSettings:
    """Validate and apply a partial settings update, then bump the cache version."""
    validate_settings(max_buttons, button_style, alignment, max_buttons_limit)

    settings = get_settings(session, shop_id)
    if max_buttons is not None:
        settings.max_buttons = max_buttons
    if button_style is not None:
        settings.button_style = button_style
    if alignment is not None:
        settings.alignment = alignment

    bump_cache_version(session, shop_id, commit=False)
    session.commit()
    session.expire_all()
    return settings


def toggle_collection(
    session: Session, shop_id: int, collection_id: int
) -> Optional[Collection]:
    """Flip a collection's enabled flag.

    Disabling removes every edge touching the collection. Returns None if the
    collection does not belong to the shop.
    """
    collection = session.execute(
        select(Collection).where(
            Collection.id == collection_id, Collection.shop_id == shop_id
        )
    ).scalar_one_or_none()
    if collection is None:
        return None

    collection.is_enabled = not collection.is_enabled
    if not collection.is_enabled:
        removed = delete_edges_touching(session, collection.id)
        logger.info(
            "Collection disabled",
            extra={
                "shop_id": shop_id,
                "collection_id": collection.id,
                "removed_edges": removed,
            },
        )

    bump_cache_version(session, shop_id, commit=False)
    session.commit()
    session.expire_all()
    return collection


def list_collections(session: Session, shop_id: int) -> List[Dict]:
    """Collections of a shop with embedding and edge counts, by title."""
    source_counts = (
        select(Edge.source_collection_id.label("cid"), func.count().label("n"))
        .group_by(Edge.source_collection_id)
        .subquery()
    )
    target_counts = (
        select(Edge.target_collection_id.label("cid"), func.count().label("n"))
        .group_by(Edge.target_collection_id)
        .subquery()
    )

    rows = session.execute(
        select(
            Collection,
            func.coalesce(source_counts.c.n, 0),
            func.coalesce(target_counts.c.n, 0),
        )
        .outerjoin(source_counts, source_counts.c.cid == Collection.id)
        .outerjoin(target_counts, target_counts.c.cid == Collection.id)
        .where(Collection.shop_id == shop_id)
        .order_by(Collection.title)
    ).all()

    return [
        {
            "id": collection.id,
            "external_id": collection.external_id,
            "handle": collection.handle,
            "title": collection.title,
            "audience": collection.audience,
            "is_enabled": collection.is_enabled,
            "is_excluded_sale": collection.is_excluded_sale,
            "has_embedding": collection.embedding is not None,
            "embedding_model": (
                collection.embedding.model if collection.embedding else None
            ),
            "source_edges": source_edges,
            "target_edges": target_edges,
        }
        for collection, source_edges, target_edges in rows
    ]
