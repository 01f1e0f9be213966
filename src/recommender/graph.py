"""Recommendation graph builder.

For every eligible collection of a shop, scores every other eligible
collection, drops audience-incompatible targets, applies a per-source
adaptive threshold, keeps the top ``max_buttons`` and persists them as ranked
edges. The shop's previous edge set is replaced in a single transaction so
readers never see a half-built graph.
"""

import logging
import time
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence

from sqlalchemy import delete, or_, select
from sqlalchemy.orm import Session, joinedload

from src.db.models import Collection, Edge, Embedding, ShopSettings
from src.recommender.compatibility import can_recommend
from src.recommender.similarity import ThresholdPolicy, cosine_similarity

# Configure module logger
logger = logging.getLogger(__name__)

DEFAULT_MAX_BUTTONS = 15


@dataclass(frozen=True)
class GraphNode:
    """An eligible collection as seen by the builder."""

    collection_id: int
    audience: str
    vector: Sequence[float]


@dataclass(frozen=True)
class Candidate:
    """A scored target for one source."""

    target_id: int
    score: float


def rank_candidates(
    source: GraphNode,
    targets: Sequence[GraphNode],
    max_results: int,
    policy: ThresholdPolicy = ThresholdPolicy(),
) -> List[Candidate]:
    """Return the ranked, thresholded, truncated candidates for one source.

    Ties on score are broken by ascending target id so rebuilds are
    deterministic.

    Raises:
        ValueError: If ``max_results`` is not positive or two vectors differ
            in length.
    """
    if max_results < 1:
        raise ValueError(f"max_results must be positive, got {max_results}")

    candidates = []
    for target in targets:
        if target.collection_id == source.collection_id:
            continue
        if not can_recommend(source.audience, target.audience):
            continue
        score = cosine_similarity(source.vector, target.vector)
        candidates.append(Candidate(target_id=target.collection_id, score=score))

    if not candidates:
        return []

    candidates.sort(key=lambda c: (-c.score, c.target_id))

    threshold = policy.threshold([c.score for c in candidates])
    kept = [c for c in candidates if c.score >= threshold]

    logger.debug(
        "Ranked candidates",
        extra={
            "source_id": source.collection_id,
            "num_candidates": len(candidates),
            "threshold": round(threshold, 4),
            "num_kept": min(len(kept), max_results),
        },
    )

    return kept[:max_results]


def load_eligible_nodes(session: Session, shop_id: int) -> List[GraphNode]:
    """Enabled, non-sale collections that have an embedding, ordered by id."""
    rows = session.execute(
        select(Collection)
        .join(Embedding, Embedding.collection_id == Collection.id)
        .options(joinedload(Collection.embedding))
        .where(
            Collection.shop_id == shop_id,
            Collection.is_enabled.is_(True),
            Collection.is_excluded_sale.is_(False),
        )
        .order_by(Collection.id)
    ).scalars().unique().all()

    return [
        GraphNode(
            collection_id=row.id,
            audience=row.audience,
            vector=row.embedding.vector,
        )
        for row in rows
    ]


def get_max_buttons(
    session: Session, shop_id: int, default: int = DEFAULT_MAX_BUTTONS
) -> int:
    """The shop's configured edge cap, or ``default`` without a settings row."""
    value = session.execute(
        select(ShopSettings.max_buttons).where(ShopSettings.shop_id == shop_id)
    ).scalar_one_or_none()
    return value or default


def _shop_edges_filter(shop_id: int):
    shop_collections = select(Collection.id).where(Collection.shop_id == shop_id)
    return or_(
        Edge.source_collection_id.in_(shop_collections),
        Edge.target_collection_id.in_(shop_collections),
    )


def build_similarity_edges(
    session: Session,
    shop_id: int,
    policy: Optional[ThresholdPolicy] = None,
    default_max_buttons: int = DEFAULT_MAX_BUTTONS,
) -> Dict[str, int]:
    """Rebuild the full recommendation graph for a shop.

    The delete of the previous edge set and the insert of the new one commit
    together; on any error the transaction is rolled back and the previous
    graph stays in place.

    Args:
        session: Database session.
        shop_id: Shop whose graph is rebuilt.
        policy: Adaptive threshold parameters (defaults if None).
        default_max_buttons: Edge cap for shops without settings.

    Returns:
        Dictionary with ``edgesCreated`` and ``collectionsProcessed``.
    """
    policy = policy or ThresholdPolicy()
    start_time = time.time()

    try:
        nodes = load_eligible_nodes(session, shop_id)
        max_buttons = get_max_buttons(session, shop_id, default_max_buttons)

        session.execute(
            delete(Edge).where(_shop_edges_filter(shop_id)),
            execution_options={"synchronize_session": False},
        )

        if len(nodes) < 2:
            session.commit()
            logger.info(
                "Not enough eligible collections for a graph",
                extra={"shop_id": shop_id, "num_eligible": len(nodes)},
            )
            return {"edgesCreated": 0, "collectionsProcessed": 0}

        edges_created = 0
        for source in nodes:
            ranked = rank_candidates(source, nodes, max_buttons, policy)
            session.add_all(
                Edge(
                    source_collection_id=source.collection_id,
                    target_collection_id=candidate.target_id,
                    score=candidate.score,
                    rank=rank,
                )
                for rank, candidate in enumerate(ranked, start=1)
            )
            edges_created += len(ranked)

        session.commit()

    except Exception:
        session.rollback()
        logger.error(
            "Graph build failed", extra={"shop_id": shop_id}, exc_info=True
        )
        raise

    # Loaded collections may hold stale edge collections after the bulk delete
    session.expire_all()

    logger.info(
        "Graph built",
        extra={
            "shop_id": shop_id,
            "edges_created": edges_created,
            "collections_processed": len(nodes),
            "max_buttons": max_buttons,
            "duration_ms": round((time.time() - start_time) * 1000, 2),
        },
    )

    return {"edgesCreated": edges_created, "collectionsProcessed": len(nodes)}


def delete_edges_touching(session: Session, collection_id: int) -> int:
    """Delete every edge where the collection is source or target.

    Does not commit; the caller owns the transaction.
    """
    result = session.execute(
        delete(Edge).where(
            or_(
                Edge.source_collection_id == collection_id,
                Edge.target_collection_id == collection_id,
            )
        ),
        execution_options={"synchronize_session": False},
    )
    return result.rowcount or 0


def cleanup_ineligible_edges(session: Session, shop_id: int) -> int:
    """Delete the shop's edges that point at disabled or sale collections."""
    ineligible_targets = select(Collection.id).where(
        Collection.shop_id == shop_id,
        or_(Collection.is_enabled.is_(False), Collection.is_excluded_sale.is_(True)),
    )
    result = session.execute(
        delete(Edge).where(Edge.target_collection_id.in_(ineligible_targets)),
        execution_options={"synchronize_session": False},
    )
    session.commit()
    session.expire_all()

    deleted = result.rowcount or 0
    logger.info(
        "Removed edges to ineligible collections",
        extra={"shop_id": shop_id, "deleted_edges": deleted},
    )
    return deleted
