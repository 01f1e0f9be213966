"""Embedding store: one (vector, model) record per collection.

Batch generation walks a shop's non-sale collections one at a time, awaiting
the provider sequentially. A failure on one collection is logged and counted;
it never aborts the batch.
"""

import hashlib
import logging
import time
from typing import Dict, List

from sqlalchemy import select
from sqlalchemy.orm import Session, joinedload

from src.db.models import Collection, Embedding
from src.pipeline.embedder import Embedder
from src.recommender.text import build_embedding_text

# Configure module logger
logger = logging.getLogger(__name__)


def text_hash(text: str) -> str:
    """SHA-256 hex digest of the embedding text."""
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


def _validate_vector(vector: List[float]) -> List[float]:
    if not vector:
        raise ValueError("Embedding provider returned an empty vector")
    return [float(x) for x in vector]


def upsert_embedding(
    session: Session,
    collection: Collection,
    vector: List[float],
    model: str,
    digest: str,
) -> bool:
    """Create or replace the collection's embedding.

    The vector, model, dimension and hash are always written together. Does
    not commit.

    Returns:
        True if a record was created, False if an existing one was replaced.
    """
    vector = _validate_vector(vector)
    existing = collection.embedding
    if existing is None:
        collection.embedding = Embedding(
            model=model, dimension=len(vector), vector=vector, text_hash=digest
        )
        return True

    existing.model = model
    existing.dimension = len(vector)
    existing.vector = vector
    existing.text_hash = digest
    return False


async def generate_embedding(
    session: Session,
    collection_id: int,
    embedder: Embedder,
    include_product_sample: bool = False,
) -> List[float]:
    """Embed one collection, persist the result and return the vector.

    Raises:
        LookupError: If the collection does not exist.
        EmbeddingError: If the provider fails.
    """
    collection = session.get(Collection, collection_id)
    if collection is None:
        raise LookupError(f"Collection {collection_id} not found")

    text = build_embedding_text(collection, include_product_sample)
    vector = _validate_vector(await embedder.embed(text))

    upsert_embedding(session, collection, vector, embedder.model, text_hash(text))
    session.commit()

    return vector


async def generate_all_embeddings(
    session: Session,
    shop_id: int,
    embedder: Embedder,
    include_product_sample: bool = False,
    force: bool = False,
) -> Dict[str, int]:
    """Embed every non-sale collection of a shop.

    Collections whose stored hash and model already match the current text
    are skipped unless ``force`` is set. Each successful embedding is
    committed on its own so progress survives later failures.

    Returns:
        Dictionary with ``created``, ``updated``, ``skipped`` and ``errors``.
    """
    start_time = time.time()

    collections = session.execute(
        select(Collection)
        .options(joinedload(Collection.embedding))
        .where(
            Collection.shop_id == shop_id,
            Collection.is_excluded_sale.is_(False),
        )
        .order_by(Collection.id)
    ).scalars().unique().all()

    results = {"created": 0, "updated": 0, "skipped": 0, "errors": 0}

    for collection in collections:
        text = build_embedding_text(collection, include_product_sample)
        digest = text_hash(text)

        current = collection.embedding
        if (
            not force
            and current is not None
            and current.text_hash == digest
            and current.model == embedder.model
        ):
            results["skipped"] += 1
            continue

        try:
            vector = await embedder.embed(text)
            created = upsert_embedding(
                session, collection, vector, embedder.model, digest
            )
            session.commit()
        except Exception as e:
            session.rollback()
            results["errors"] += 1
            logger.error(
                "Failed to embed collection",
                extra={
                    "shop_id": shop_id,
                    "collection_id": collection.id,
                    "error": str(e),
                    "error_type": type(e).__name__,
                },
            )
            continue

        results["created" if created else "updated"] += 1

    logger.info(
        "Embeddings generated",
        extra={
            "shop_id": shop_id,
            "results": results,
            "duration_ms": round((time.time() - start_time) * 1000, 2),
        },
    )

    return results
