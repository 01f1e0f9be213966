"""CLI script for running the full pipeline against a catalog CSV.

Registers (or reuses) a shop, enqueues a full pipeline job, processes it with
the offline hashing embedder and prints the recommendations for a handle.
Useful for local testing without Shopify or OpenAI credentials.

Usage:
    python scripts/run_pipeline.py data/fake_catalog.csv --handle mens-shirts
"""

import argparse
import asyncio
import logging
import sys
from pathlib import Path

# Add project root to Python path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from src.config import AppConfig
from src.db.database import create_session_factory, init_db
from src.pipeline.catalog import CsvCatalogClient
from src.pipeline.embedder import HashingEmbedder
from src.pipeline.jobs import JobType, create_job, get_job_status
from src.pipeline.shops import get_or_create_shop
from src.pipeline.worker import JobOrchestrator
from src.recommender.reader import get_recommendations

# Setup logging
logging.basicConfig(level=logging.WARNING, format="%(levelname)s: %(message)s")
logger = logging.getLogger(__name__)


def run(
    csv_path: str,
    shop_domain: str,
    database_url: str,
    handle: str = None,
) -> int:
    """Run one full pipeline job and print a summary.

    Returns:
        Exit code: 0 if the job completed, 1 otherwise.
    """
    config = AppConfig(database_url=database_url, embedding_provider="hashing")
    session_factory = create_session_factory(database_url)
    init_db(session_factory)

    session = session_factory()
    try:
        shop = get_or_create_shop(session, shop_domain, billing_status="active")
        job = create_job(session, shop.id, JobType.FULL_PIPELINE)
        shop_id, job_id = shop.id, job.id
    finally:
        session.close()

    orchestrator = JobOrchestrator(
        session_factory,
        HashingEmbedder(),
        catalog_factory=lambda shop: CsvCatalogClient(csv_path),
        config=config,
    )
    asyncio.run(orchestrator.process_job(job_id))

    session = session_factory()
    try:
        job = get_job_status(session, job_id)
        print(f"\nJob {job.id}: {job.status} ({job.progress_percent}%) - {job.step}")
        if job.error_message:
            print(f"Error: {job.error_message}")
            return 1

        for step, counters in (job.results or {}).items():
            summary = ", ".join(f"{k}={v}" for k, v in counters.items())
            print(f"  {step}: {summary}")

        if handle:
            recommendations = get_recommendations(session, shop_id, handle)
            print(f"\nRecommendations for '{handle}':")
            if not recommendations:
                print("  (none)")
            for rec in recommendations:
                print(f"  {rec['rank']:2d}. {rec['title']:<40} {rec['score']:.4f}  {rec['url']}")
    finally:
        session.close()

    return 0


def main() -> int:
    parser = argparse.ArgumentParser(
        description="Run the PathRec pipeline on a catalog CSV"
    )
    parser.add_argument("csv_path", type=str, help="Catalog CSV file")
    parser.add_argument(
        "--shop", type=str, default="demo.myshopify.com", help="Shop domain"
    )
    parser.add_argument(
        "--database-url",
        type=str,
        default="sqlite:///pathrec.db",
        help="SQLAlchemy database URL",
    )
    parser.add_argument(
        "--handle", type=str, default=None, help="Print recommendations for this handle"
    )
    args = parser.parse_args()

    if not Path(args.csv_path).exists():
        print(f"Error: catalog not found: {args.csv_path}")
        print("Generate one with: python scripts/generate_fake_catalog.py")
        return 1

    return run(args.csv_path, args.shop, args.database_url, args.handle)


if __name__ == "__main__":
    sys.exit(main())
