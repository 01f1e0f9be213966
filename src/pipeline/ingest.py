"""Collection ingestion.

Pulls a full catalog snapshot, cleans and classifies each record, upserts it
by (shop, external id) and disables collections that disappeared from the
source, removing every edge that touches them.
"""

import logging
import time
from datetime import datetime, timezone
from typing import Dict, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from src.db.models import Collection
from src.pipeline.catalog import CatalogClient, RawCollection
from src.pipeline.shops import bump_cache_version
from src.recommender.graph import delete_edges_touching
from src.recommender.text import (
    build_product_sample,
    classify_audience,
    clean_description,
    is_sale_collection,
)

# Configure module logger
logger = logging.getLogger(__name__)

SHOPIFY_COLLECTION_GID_PREFIX = "gid://shopify/Collection/"


def normalize_external_id(raw_id: str) -> str:
    """Strip the Shopify GID prefix from a collection id."""
    raw_id = str(raw_id)
    if raw_id.startswith(SHOPIFY_COLLECTION_GID_PREFIX):
        return raw_id[len(SHOPIFY_COLLECTION_GID_PREFIX):]
    return raw_id


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _prepare(record: RawCollection) -> Dict:
    return {
        "handle": record.handle,
        "title": record.title,
        "description": clean_description(record.description_html),
        "product_sample": build_product_sample(record.product_titles),
        "audience": classify_audience(record.title, record.handle).value,
        "is_excluded_sale": is_sale_collection(record.title, record.handle),
        "updated_at_source": _as_utc(record.updated_at),
    }


def _has_changed(row: Collection, fields: Dict) -> bool:
    return (
        row.title != fields["title"]
        or row.handle != fields["handle"]
        or row.description != fields["description"]
        or row.product_sample != fields["product_sample"]
        or _as_utc(row.updated_at_source) != fields["updated_at_source"]
    )


async def sync_collections(
    session: Session, shop_id: int, catalog: CatalogClient
) -> Dict[str, int]:
    """Synchronize a shop's collections with the source catalog.

    A catalog fetch failure propagates and nothing is written. Records whose
    handle collides with another collection of the shop are logged and
    counted in ``errors``.

    Returns:
        Dictionary with ``created``, ``updated``, ``skipped``, ``disabled``
        and ``errors``.
    """
    start_time = time.time()
    snapshot = await catalog.fetch_collections()

    rows = session.execute(
        select(Collection).where(Collection.shop_id == shop_id)
    ).scalars().all()
    by_external_id = {row.external_id: row for row in rows}
    by_handle = {row.handle: row for row in rows}

    results = {"created": 0, "updated": 0, "skipped": 0, "disabled": 0, "errors": 0}
    seen = set()
    edges_removed = 0

    for record in snapshot:
        external_id = normalize_external_id(record.external_id)
        if external_id in seen:
            continue
        seen.add(external_id)

        fields = _prepare(record)
        row = by_external_id.get(external_id)

        holder = by_handle.get(fields["handle"])
        if holder is not None and holder is not row:
            results["errors"] += 1
            logger.error(
                "Handle already used by another collection",
                extra={
                    "shop_id": shop_id,
                    "external_id": external_id,
                    "handle": fields["handle"],
                },
            )
            continue

        if row is None:
            row = Collection(
                shop_id=shop_id,
                external_id=external_id,
                is_enabled=not fields["is_excluded_sale"],
                **fields,
            )
            session.add(row)
            by_external_id[external_id] = row
            by_handle[row.handle] = row
            results["created"] += 1
            continue

        if not _has_changed(row, fields):
            results["skipped"] += 1
            continue

        became_sale = fields["is_excluded_sale"] and not row.is_excluded_sale
        by_handle.pop(row.handle, None)
        for name, value in fields.items():
            setattr(row, name, value)
        by_handle[row.handle] = row
        if became_sale:
            edges_removed += delete_edges_touching(session, row.id)
        results["updated"] += 1

    for external_id, row in by_external_id.items():
        if external_id in seen or row.id is None:
            continue
        if row.is_enabled:
            row.is_enabled = False
            results["disabled"] += 1
        edges_removed += delete_edges_touching(session, row.id)

    # Served buttons changed; storefront caches key on the version
    if edges_removed:
        bump_cache_version(session, shop_id, commit=False)

    session.commit()
    session.expire_all()

    logger.info(
        "Collections synced",
        extra={
            "shop_id": shop_id,
            "results": results,
            "edges_removed": edges_removed,
            "duration_ms": round((time.time() - start_time) * 1000, 2),
        },
    )
    return results
