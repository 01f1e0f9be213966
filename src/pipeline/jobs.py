"""Persistent job queue.

Jobs are rows in the ``jobs`` table. The worker claims the oldest pending row
with a conditional update so two workers can never run the same job.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from src.db.models import Job
from src.pipeline.entitlement import EntitlementProvider

# Configure module logger
logger = logging.getLogger(__name__)

UNKNOWN_ERROR = "Unknown error"


class JobType(str, Enum):
    FULL_PIPELINE = "full_pipeline"
    FETCH_COLLECTIONS = "fetch_collections"
    EMBED_COLLECTIONS = "embed_collections"
    BUILD_EDGES = "build_edges"


class JobStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETE = "complete"
    FAILED = "failed"


@dataclass
class JobSubmission:
    """Outcome of a gated submission. ``job`` is None when denied."""

    accepted: bool
    job: Optional[Job]
    entitlement_status: str


def create_job(session: Session, shop_id: int, job_type: JobType) -> Job:
    """Insert a pending job at 0% progress."""
    job = Job(
        shop_id=shop_id,
        type=JobType(job_type).value,
        status=JobStatus.PENDING.value,
        progress_percent=0,
        step="Queued",
    )
    session.add(job)
    session.commit()

    logger.info(
        "Job created",
        extra={"job_id": job.id, "shop_id": shop_id, "job_type": job.type},
    )
    return job


def submit_job(
    session: Session,
    shop_id: int,
    job_type: JobType,
    entitlements: EntitlementProvider,
) -> JobSubmission:
    """Create a job if the shop is entitled to run jobs.

    A denial creates no row.
    """
    entitlement = entitlements.get_entitlement(session, shop_id)
    if not entitlement.can_run_jobs:
        logger.info(
            "Job submission denied",
            extra={
                "shop_id": shop_id,
                "job_type": JobType(job_type).value,
                "billing_status": entitlement.status,
            },
        )
        return JobSubmission(
            accepted=False, job=None, entitlement_status=entitlement.status
        )

    job = create_job(session, shop_id, job_type)
    return JobSubmission(accepted=True, job=job, entitlement_status=entitlement.status)


def get_job_status(session: Session, job_id: int) -> Optional[Job]:
    return session.get(Job, job_id)


def get_latest_job_for_shop(session: Session, shop_id: int) -> Optional[Job]:
    return session.execute(
        select(Job)
        .where(Job.shop_id == shop_id)
        .order_by(Job.created_at.desc(), Job.id.desc())
        .limit(1)
    ).scalar_one_or_none()


def claim_next_job(session: Session) -> Optional[Job]:
    """Atomically move the oldest pending job to running and return it.

    Returns None when the queue is empty. If another worker claims the same
    row first, the next candidate is tried.
    """
    while True:
        job_id = session.execute(
            select(Job.id)
            .where(Job.status == JobStatus.PENDING.value)
            .order_by(Job.created_at, Job.id)
            .limit(1)
        ).scalar_one_or_none()
        if job_id is None:
            session.rollback()
            return None

        result = session.execute(
            update(Job)
            .where(Job.id == job_id, Job.status == JobStatus.PENDING.value)
            .values(status=JobStatus.RUNNING.value),
            execution_options={"synchronize_session": False},
        )
        session.commit()

        if result.rowcount == 1:
            session.expire_all()
            job = session.get(Job, job_id)
            logger.info(
                "Job claimed",
                extra={"job_id": job.id, "shop_id": job.shop_id, "job_type": job.type},
            )
            return job


def _update_job(session: Session, job_id: int, **values: Any) -> None:
    session.execute(
        update(Job).where(Job.id == job_id).values(**values),
        execution_options={"synchronize_session": False},
    )
    session.commit()
    session.expire_all()


def update_job_progress(
    session: Session, job_id: int, progress_percent: int, step: str
) -> None:
    """Record progress (0-100) and a human-readable step label."""
    if not 0 <= progress_percent <= 100:
        raise ValueError(f"progress_percent must be within [0, 100], got {progress_percent}")
    _update_job(session, job_id, progress_percent=progress_percent, step=step)
    logger.debug(
        "Job progress",
        extra={"job_id": job_id, "progress_percent": progress_percent, "step": step},
    )


def complete_job(
    session: Session,
    job_id: int,
    results: Optional[Dict[str, Any]] = None,
    step: str = "Complete",
) -> None:
    _update_job(
        session,
        job_id,
        status=JobStatus.COMPLETE.value,
        progress_percent=100,
        step=step,
        results=results,
    )
    logger.info("Job completed", extra={"job_id": job_id, "results": results})


def fail_job(session: Session, job_id: int, error_message: Optional[str]) -> None:
    """Mark a job failed, keeping the error message verbatim."""
    message = error_message or UNKNOWN_ERROR
    _update_job(
        session,
        job_id,
        status=JobStatus.FAILED.value,
        error_message=message,
    )
    logger.error("Job failed", extra={"job_id": job_id, "error": message})
