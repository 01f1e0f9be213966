"""Read path for materialized recommendations.

Read-only: looks up a collection by handle and returns its persisted edges in
rank order. Unknown and disabled collections both yield an empty list.
"""

import logging
from typing import Dict, List, Union

from sqlalchemy import select
from sqlalchemy.orm import Session, joinedload

from src.db.models import Collection, Edge

# Configure module logger
logger = logging.getLogger(__name__)

COLLECTION_URL_PREFIX = "/collections/"


def collection_url(handle: str) -> str:
    """Storefront-relative URL of a collection."""
    return f"{COLLECTION_URL_PREFIX}{handle}"


def get_recommendations(
    session: Session, shop_id: int, handle: str
) -> List[Dict[str, Union[str, float, int]]]:
    """Return ``[{title, url, score, rank}, ...]`` ordered by rank.

    The list is the full persisted edge list for the collection; any display
    cap is applied by the caller.
    """
    collection = session.execute(
        select(Collection).where(
            Collection.shop_id == shop_id, Collection.handle == handle
        )
    ).scalar_one_or_none()

    if collection is None or not collection.is_enabled:
        logger.debug(
            "No recommendations for handle",
            extra={"shop_id": shop_id, "handle": handle},
        )
        return []

    edges = session.execute(
        select(Edge)
        .options(joinedload(Edge.target_collection))
        .where(Edge.source_collection_id == collection.id)
        .order_by(Edge.rank.asc())
    ).scalars().all()

    return [
        {
            "title": edge.target_collection.title,
            "url": collection_url(edge.target_collection.handle),
            "score": edge.score,
            "rank": edge.rank,
        }
        for edge in edges
    ]
