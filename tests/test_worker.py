"""Tests for the job orchestrator and worker loop."""

import asyncio
import logging
from datetime import datetime, timezone

import pytest
from sqlalchemy import func, select

from conftest import FakeCatalog, FakeEmbedder, add_collection
from src.api.logging_config import setup_logging
from src.config import AppConfig
from src.db.models import Edge, Job, Shop
from src.pipeline.catalog import RawCollection
from src.pipeline.jobs import JobStatus, JobType, create_job, update_job_progress
from src.pipeline.worker import JobOrchestrator
from src.recommender.graph import build_similarity_edges
from src.recommender.reader import get_recommendations

T0 = datetime(2024, 1, 1, tzinfo=timezone.utc)

CATALOG = [
    RawCollection("gid://shopify/Collection/1", "mens-shirts", "Men's Shirts", updated_at=T0),
    RawCollection(
        "gid://shopify/Collection/2", "womens-shirts", "Women's Shirts", updated_at=T0
    ),
    RawCollection("gid://shopify/Collection/3", "accessories", "Accessories", updated_at=T0),
    RawCollection("gid://shopify/Collection/4", "winter-sale", "Winter Sale", updated_at=T0),
]

VECTORS = {
    "Men's Shirts": [1.0, 0.0],
    "Women's Shirts": [0.9, 0.1],
    "Accessories": [0.8, 0.2],
}


class RecordingMetrics:
    def __init__(self):
        self.jobs = []

    def record_job(self, status):
        self.jobs.append(status)


def make_orchestrator(session_factory, catalog=None, embedder=None, metrics=None):
    catalog = catalog or FakeCatalog(CATALOG)
    return JobOrchestrator(
        session_factory,
        embedder or FakeEmbedder(VECTORS),
        catalog_factory=lambda shop: catalog,
        config=AppConfig(embedding_provider="hashing"),
        metrics=metrics,
    )


def load_job(session_factory, job_id):
    session = session_factory()
    try:
        return session.get(Job, job_id)
    finally:
        session.close()


def test_full_pipeline_builds_graph(session_factory, session, shop):
    job = create_job(session, shop.id, JobType.FULL_PIPELINE)
    metrics = RecordingMetrics()

    status = asyncio.run(make_orchestrator(session_factory, metrics=metrics).process_job(job.id))

    assert status is JobStatus.COMPLETE
    stored = load_job(session_factory, job.id)
    assert stored.status == "complete"
    assert stored.progress_percent == 100
    assert stored.step == "Complete"
    assert stored.results["collections"]["created"] == 4
    assert stored.results["embeddings"]["created"] == 3
    assert stored.results["edges"] == {"created": 4, "collectionsProcessed": 3}
    assert metrics.jobs == ["complete"]

    check = session_factory()
    try:
        refreshed = check.get(Shop, shop.id)
        assert refreshed.cache_version == 1
        assert refreshed.last_analysed_at is not None
        titles = [r["title"] for r in get_recommendations(check, shop.id, "mens-shirts")]
        assert titles == ["Accessories"]
    finally:
        check.close()


def test_full_pipeline_reports_monotonic_progress(session_factory, session, shop, monkeypatch):
    job = create_job(session, shop.id, JobType.FULL_PIPELINE)
    seen = []

    def recording_progress(session, job_id, progress_percent, step):
        seen.append((progress_percent, step))
        update_job_progress(session, job_id, progress_percent, step)

    monkeypatch.setattr("src.pipeline.worker.update_job_progress", recording_progress)

    asyncio.run(make_orchestrator(session_factory).process_job(job.id))

    assert seen == [
        (10, "Fetching collections from Shopify"),
        (40, "Generating AI embeddings"),
        (75, "Building recommendation graph"),
        (95, "Finalizing deployment"),
    ]


def test_embedding_errors_do_not_fail_the_job(session_factory, session, shop):
    job = create_job(session, shop.id, JobType.FULL_PIPELINE)
    embedder = FakeEmbedder(VECTORS, fail_titles={"Women's Shirts"})

    status = asyncio.run(make_orchestrator(session_factory, embedder=embedder).process_job(job.id))

    assert status is JobStatus.COMPLETE
    stored = load_job(session_factory, job.id)
    assert stored.results["embeddings"]["errors"] == 1
    assert stored.results["edges"]["collectionsProcessed"] == 2


def test_catalog_failure_fails_job_with_message(session_factory, session, shop):
    job = create_job(session, shop.id, JobType.FULL_PIPELINE)
    metrics = RecordingMetrics()

    status = asyncio.run(
        make_orchestrator(
            session_factory, catalog=FakeCatalog(fail=True), metrics=metrics
        ).process_job(job.id)
    )

    assert status is JobStatus.FAILED
    stored = load_job(session_factory, job.id)
    assert stored.status == "failed"
    assert stored.error_message == "Catalog unavailable"
    assert stored.progress_percent == 10
    assert metrics.jobs == ["failed"]


def test_sub_jobs_report_summary_step(session_factory, session, shop):
    fetch = create_job(session, shop.id, JobType.FETCH_COLLECTIONS)
    embed = create_job(session, shop.id, JobType.EMBED_COLLECTIONS)
    edges = create_job(session, shop.id, JobType.BUILD_EDGES)
    orchestrator = make_orchestrator(session_factory)

    for job in (fetch, embed, edges):
        asyncio.run(orchestrator.process_job(job.id))

    assert load_job(session_factory, fetch.id).step == "Synced 4 collections"
    assert load_job(session_factory, embed.id).step == "Generated 3 embeddings"
    assert load_job(session_factory, edges.id).step == "Built 4 edges"
    assert all(
        load_job(session_factory, j.id).progress_percent == 100 for j in (fetch, embed, edges)
    )

    check = session_factory()
    try:
        assert check.get(Shop, shop.id).cache_version == 1
    finally:
        check.close()


def test_run_once_processes_pending_jobs(session_factory, session, shop):
    orchestrator = make_orchestrator(session_factory)
    assert asyncio.run(orchestrator.run_once()) is False

    job = create_job(session, shop.id, JobType.FETCH_COLLECTIONS)

    assert asyncio.run(orchestrator.run_once()) is True
    assert load_job(session_factory, job.id).status == "complete"
    assert asyncio.run(orchestrator.run_once()) is False


def test_failed_job_does_not_stop_the_loop(session_factory, session, shop):
    failing = create_job(session, shop.id, JobType.FETCH_COLLECTIONS)
    orchestrator = make_orchestrator(session_factory, catalog=FakeCatalog(fail=True))

    assert asyncio.run(orchestrator.run_once()) is True
    assert load_job(session_factory, failing.id).status == "failed"

    orchestrator.catalog_factory = lambda shop: FakeCatalog(CATALOG)
    following = create_job(session, shop.id, JobType.FETCH_COLLECTIONS)

    assert asyncio.run(orchestrator.run_once()) is True
    assert load_job(session_factory, following.id).status == "complete"


def test_run_forever_stops_on_event(session_factory, session, shop):
    job = create_job(session, shop.id, JobType.BUILD_EDGES)
    orchestrator = make_orchestrator(session_factory)

    async def run():
        stop_event = asyncio.Event()
        task = asyncio.create_task(orchestrator.run_forever(stop_event))
        for _ in range(100):
            await asyncio.sleep(0.01)
            if load_job(session_factory, job.id).status == "complete":
                break
        stop_event.set()
        await asyncio.wait_for(task, timeout=5)

    asyncio.run(run())

    assert load_job(session_factory, job.id).status == "complete"
    session.expire_all()
    assert session.execute(select(func.count()).select_from(Edge)).scalar_one() == 0


@pytest.fixture
def info_logging():
    """JSON logging at INFO, as the API process installs it."""
    root = logging.getLogger()
    saved_handlers, saved_level = root.handlers[:], root.level
    setup_logging("INFO")
    yield
    root.handlers[:] = saved_handlers
    root.setLevel(saved_level)


def test_full_pipeline_completes_with_info_logging(session_factory, session, shop, info_logging):
    job = create_job(session, shop.id, JobType.FULL_PIPELINE)

    status = asyncio.run(make_orchestrator(session_factory).process_job(job.id))

    stored = load_job(session_factory, job.id)
    assert stored.error_message is None
    assert status is JobStatus.COMPLETE
    assert stored.status == "complete"


def test_fetch_job_dropping_collections_bumps_cache_version(session_factory, session, shop):
    kept = add_collection(session, shop, "mens-shirts", "Men's Shirts", [1.0, 0.0])
    add_collection(session, shop, "accessories", "Accessories", [0.9, 0.1])
    kept.external_id = "1"
    session.commit()
    build_similarity_edges(session, shop.id)
    job = create_job(session, shop.id, JobType.FETCH_COLLECTIONS)

    status = asyncio.run(
        make_orchestrator(session_factory, catalog=FakeCatalog(CATALOG[:1])).process_job(job.id)
    )

    assert status is JobStatus.COMPLETE
    check = session_factory()
    try:
        assert check.execute(select(func.count()).select_from(Edge)).scalar_one() == 0
        assert check.get(Shop, shop.id).cache_version == 1
        assert get_recommendations(check, shop.id, "mens-shirts") == []
    finally:
        check.close()
