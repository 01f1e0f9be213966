"""FastAPI application main module.

This module builds the PathRec application: health and metrics endpoints,
exception handlers, request logging, and the routers for the storefront
read path and the admin surface. ``create_app`` wires every collaborator onto
``app.state`` so tests can build isolated apps; ``app`` is the instance
served by uvicorn.
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy import func, select, text

from src import __version__
from src.api.exceptions import PathRecException
from src.api.logging_config import RequestLoggingMiddleware, setup_logging
from src.api.metrics import metrics_service
from src.api.routes import collections, jobs, recommend
from src.config import AppConfig
from src.db.database import create_session_factory, init_db
from src.db.models import Job
from src.pipeline.embedder import create_embedder
from src.pipeline.entitlement import BillingEntitlementProvider
from src.pipeline.jobs import JobStatus
from src.pipeline.worker import JobOrchestrator

# Configure module logger
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Create tables on startup and run the job worker if configured."""
    init_db(app.state.session_factory)

    stop_event = asyncio.Event()
    worker_task = None
    if app.state.config.run_worker:
        worker_task = asyncio.create_task(app.state.orchestrator.run_forever(stop_event))

    logger.info(
        "PathRec API started",
        extra={"version": __version__, "run_worker": app.state.config.run_worker},
    )
    yield

    stop_event.set()
    if worker_task is not None:
        await worker_task
    logger.info("PathRec API stopped")


def create_app(config: Optional[AppConfig] = None) -> FastAPI:
    """Build a PathRec application.

    Args:
        config: Runtime configuration; read from the environment if None.

    Returns:
        Configured FastAPI application.
    """
    config = config or AppConfig.from_env()

    app = FastAPI(
        title="PathRec API",
        description="Related-collection recommendations for storefronts",
        version=__version__,
        lifespan=lifespan,
    )

    session_factory = create_session_factory(config.database_url)
    app.state.config = config
    app.state.session_factory = session_factory
    app.state.entitlements = BillingEntitlementProvider(bypass=config.billing_bypass)
    app.state.recommendation_cache = recommend.RecommendationCache(
        max_size=config.recommendation_cache_size
    )
    app.state.orchestrator = JobOrchestrator(
        session_factory,
        create_embedder(config),
        config=config,
        metrics=metrics_service,
    )

    app.add_middleware(RequestLoggingMiddleware)

    @app.exception_handler(PathRecException)
    async def pathrec_exception_handler(
        request: Request, exc: PathRecException
    ) -> JSONResponse:
        logger.warning(
            "Request error",
            extra={
                "path": request.url.path,
                "error": exc.message,
                "status_code": exc.status_code,
            },
        )
        return JSONResponse(
            status_code=exc.status_code,
            content={"error": exc.message, "details": exc.details},
        )

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(
        request: Request, exc: RequestValidationError
    ) -> JSONResponse:
        return JSONResponse(
            status_code=422,
            content={
                "error": "Validation error",
                "detail": jsonable_errors(exc),
            },
        )

    app.include_router(recommend.router)
    app.include_router(jobs.router)
    app.include_router(collections.router)

    @app.get("/ping")
    def ping() -> Dict[str, str]:
        """Health check endpoint.

        Example:
            >>> response = client.get("/ping")
            >>> assert response.json() == {"status": "ok"}
        """
        return {"status": "ok"}

    @app.get("/status")
    def get_status() -> Dict[str, Any]:
        """Database reachability and queue depth."""
        result: Dict[str, Any] = {
            "version": __version__,
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "database_ok": False,
            "pending_jobs": None,
            "running_jobs": None,
            "worker_enabled": config.run_worker,
            "embedding_model": app.state.orchestrator.embedder.model,
        }
        session = session_factory()
        try:
            session.execute(text("SELECT 1"))
            counts = dict(
                session.execute(
                    select(Job.status, func.count())
                    .where(
                        Job.status.in_(
                            [JobStatus.PENDING.value, JobStatus.RUNNING.value]
                        )
                    )
                    .group_by(Job.status)
                ).all()
            )
            result["database_ok"] = True
            result["pending_jobs"] = counts.get(JobStatus.PENDING.value, 0)
            result["running_jobs"] = counts.get(JobStatus.RUNNING.value, 0)
        except Exception as e:
            logger.error("Status check failed", extra={"error": str(e)})
        finally:
            session.close()
        return result

    @app.get("/metrics")
    def get_metrics() -> Dict[str, Any]:
        """In-process counters for storefront reads and job outcomes."""
        return metrics_service.get_metrics()

    return app


def jsonable_errors(exc: RequestValidationError) -> list:
    """Validation errors with only JSON-safe fields."""
    return [
        {"loc": list(error.get("loc", ())), "msg": error.get("msg"), "type": error.get("type")}
        for error in exc.errors()
    ]


def _create_default_app() -> FastAPI:
    config = AppConfig.from_env()
    setup_logging(config.log_level)
    return create_app(config)


app = _create_default_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "src.api.main:app",
        host="0.0.0.0",
        port=8000,
        reload=True,
    )
