"""Job orchestrator and worker loop.

``JobOrchestrator.process_job`` runs one claimed job to completion or failure.
Failures are recorded on the job row and never propagate, so the loop in
``run_forever`` survives any single bad job.
"""

import asyncio
import logging
import time
from typing import Any, Callable, Dict, Optional

from sqlalchemy.orm import Session, sessionmaker

from src.config import AppConfig
from src.db.models import Job, Shop
from src.pipeline.catalog import CatalogClient, ShopifyCatalogClient
from src.pipeline.embedder import Embedder
from src.pipeline.embeddings import generate_all_embeddings
from src.pipeline.ingest import sync_collections
from src.pipeline.jobs import (
    JobStatus,
    JobType,
    claim_next_job,
    complete_job,
    fail_job,
    update_job_progress,
)
from src.pipeline.shops import bump_cache_version, mark_analysed
from src.recommender.graph import build_similarity_edges
from src.recommender.similarity import ThresholdPolicy

# Configure module logger
logger = logging.getLogger(__name__)

CatalogFactory = Callable[[Shop], CatalogClient]


def default_catalog_factory(shop: Shop) -> CatalogClient:
    """Shopify Admin API client built from the shop's stored credentials."""
    if not shop.access_token:
        raise ValueError(f"Shop {shop.domain} has no access token")
    return ShopifyCatalogClient(shop.domain, shop.access_token)


class JobOrchestrator:
    """Sequences ingestion, embedding and graph building for queued jobs.

    Collaborators are injected so the whole pipeline runs against fakes in
    tests.

    Args:
        session_factory: Produces a fresh session per job.
        embedder: Embedding provider.
        catalog_factory: Builds a catalog client for a shop.
        config: Thresholds, edge caps and loop intervals.
        metrics: Optional sink with a ``record_job(status)`` method.
    """

    def __init__(
        self,
        session_factory: sessionmaker,
        embedder: Embedder,
        catalog_factory: CatalogFactory = default_catalog_factory,
        config: Optional[AppConfig] = None,
        metrics: Optional[Any] = None,
    ):
        self.session_factory = session_factory
        self.embedder = embedder
        self.catalog_factory = catalog_factory
        self.config = config or AppConfig()
        self.metrics = metrics
        self.policy = ThresholdPolicy(
            percentile=self.config.threshold_percentile,
            multiplier=self.config.threshold_multiplier,
            floor=self.config.threshold_floor,
            ceiling=self.config.threshold_ceiling,
        )
        self._handlers = {
            JobType.FULL_PIPELINE: self._run_full_pipeline,
            JobType.FETCH_COLLECTIONS: self._run_fetch_collections,
            JobType.EMBED_COLLECTIONS: self._run_embed_collections,
            JobType.BUILD_EDGES: self._run_build_edges,
        }

    # Pipeline steps

    async def _sync(self, session: Session, shop: Shop) -> Dict[str, int]:
        catalog = self.catalog_factory(shop)
        return await sync_collections(session, shop.id, catalog)

    async def _embed(self, session: Session, shop: Shop) -> Dict[str, int]:
        return await generate_all_embeddings(
            session,
            shop.id,
            self.embedder,
            include_product_sample=self.config.include_product_sample,
        )

    def _build(self, session: Session, shop: Shop) -> Dict[str, int]:
        return build_similarity_edges(
            session,
            shop.id,
            policy=self.policy,
            default_max_buttons=self.config.default_max_buttons,
        )

    # Job types

    async def _run_full_pipeline(self, session: Session, job: Job, shop: Shop):
        update_job_progress(session, job.id, 10, "Fetching collections from Shopify")
        sync_result = await self._sync(session, shop)

        update_job_progress(session, job.id, 40, "Generating AI embeddings")
        embedding_result = await self._embed(session, shop)

        update_job_progress(session, job.id, 75, "Building recommendation graph")
        edge_result = self._build(session, shop)

        update_job_progress(session, job.id, 95, "Finalizing deployment")
        mark_analysed(session, shop.id)

        results = {
            "collections": {
                "created": sync_result["created"],
                "updated": sync_result["updated"],
                "skipped": sync_result["skipped"],
                "disabled": sync_result["disabled"],
                "errors": sync_result["errors"],
            },
            "embeddings": {
                "created": embedding_result["created"],
                "updated": embedding_result["updated"],
                "skipped": embedding_result["skipped"],
                "errors": embedding_result["errors"],
            },
            "edges": {
                "created": edge_result["edgesCreated"],
                "collectionsProcessed": edge_result["collectionsProcessed"],
            },
        }
        return results, "Complete"

    async def _run_fetch_collections(self, session: Session, job: Job, shop: Shop):
        update_job_progress(session, job.id, 10, "Fetching collections")
        result = await self._sync(session, shop)
        return result, f"Synced {result['created'] + result['updated']} collections"

    async def _run_embed_collections(self, session: Session, job: Job, shop: Shop):
        update_job_progress(session, job.id, 10, "Generating embeddings")
        result = await self._embed(session, shop)
        return result, f"Generated {result['created'] + result['updated']} embeddings"

    async def _run_build_edges(self, session: Session, job: Job, shop: Shop):
        update_job_progress(session, job.id, 10, "Building recommendation graph")
        result = self._build(session, shop)
        bump_cache_version(session, shop.id)
        return result, f"Built {result['edgesCreated']} edges"

    # Entry points

    async def process_job(self, job_id: int) -> JobStatus:
        """Run one job and record its outcome.

        Any exception is caught and stored verbatim as the job's error
        message.

        Returns:
            The job's terminal status.
        """
        start_time = time.time()
        session = self.session_factory()
        try:
            try:
                job = session.get(Job, job_id)
                if job is None:
                    raise LookupError(f"Job {job_id} not found")
                shop = session.get(Shop, job.shop_id)
                if shop is None:
                    raise LookupError(f"Shop {job.shop_id} not found")

                handler = self._handlers.get(JobType(job.type))
                if handler is None:
                    raise ValueError(f"Unknown job type: {job.type}")

                logger.info(
                    "Processing job",
                    extra={"job_id": job_id, "shop_id": shop.id, "job_type": job.type},
                )
                results, step = await handler(session, job, shop)
                complete_job(session, job_id, results=results, step=step)
                status = JobStatus.COMPLETE

            except Exception as e:
                session.rollback()
                logger.error(
                    "Job processing failed",
                    extra={
                        "job_id": job_id,
                        "error": str(e),
                        "error_type": type(e).__name__,
                    },
                    exc_info=True,
                )
                fail_job(session, job_id, str(e))
                status = JobStatus.FAILED
        finally:
            session.close()

        if self.metrics is not None:
            self.metrics.record_job(status.value)

        logger.info(
            "Job finished",
            extra={
                "job_id": job_id,
                "status": status.value,
                "duration_ms": round((time.time() - start_time) * 1000, 2),
            },
        )
        return status

    async def run_once(self) -> bool:
        """Claim and process the oldest pending job.

        Returns:
            True if a job was processed, False if the queue was empty.
        """
        session = self.session_factory()
        try:
            job = claim_next_job(session)
            job_id = job.id if job is not None else None
        finally:
            session.close()

        if job_id is None:
            return False

        await self.process_job(job_id)
        return True

    async def run_forever(self, stop_event: Optional[asyncio.Event] = None) -> None:
        """Poll the queue until ``stop_event`` is set.

        Sleeps ``poll_interval_s`` when the queue is empty and
        ``error_backoff_s`` after a loop-level error.
        """
        stop_event = stop_event or asyncio.Event()
        logger.info("Job worker started")

        while not stop_event.is_set():
            try:
                processed = await self.run_once()
                delay = None if processed else self.config.poll_interval_s
            except Exception as e:
                logger.error(
                    "Job worker error", extra={"error": str(e)}, exc_info=True
                )
                delay = self.config.error_backoff_s

            if delay is None:
                continue
            try:
                await asyncio.wait_for(stop_event.wait(), timeout=delay)
            except asyncio.TimeoutError:
                pass

        logger.info("Job worker stopped")
