"""Job endpoints for the PathRec API.

Admin-facing: enqueue pipeline jobs for a shop and poll their progress.
"""

import logging
from datetime import datetime
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy.orm import Session

from src.api.dependencies import get_entitlements, get_session, get_shop_or_404
from src.api.exceptions import JobNotFoundError
from src.db.models import Shop
from src.pipeline.entitlement import EntitlementProvider
from src.pipeline.jobs import (
    JobType,
    get_job_status,
    get_latest_job_for_shop,
    submit_job,
)

# Configure module logger
logger = logging.getLogger(__name__)

router = APIRouter(tags=["jobs"])

SUBSCRIPTION_REQUIRED = "Active subscription required"


class JobRequest(BaseModel):
    type: JobType = Field(
        default=JobType.FULL_PIPELINE, description="Kind of pipeline work to run"
    )


class JobResponse(BaseModel):
    """Status of a queued, running or finished job.

    Attributes:
        progress_percent: 0-100, non-decreasing while the job runs.
        step: Human-readable label of the current step.
        error_message: Set on failed jobs, verbatim from the failing step.
        results: Per-step counters of a finished full pipeline.
    """

    model_config = ConfigDict(from_attributes=True)

    id: int
    shop_id: int
    type: str
    status: str
    progress_percent: int
    step: Optional[str] = None
    error_message: Optional[str] = None
    results: Optional[Dict[str, Any]] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


def denied_response(entitlement_status: str) -> JSONResponse:
    return JSONResponse(
        status_code=status.HTTP_403_FORBIDDEN,
        content={"error": SUBSCRIPTION_REQUIRED, "status": entitlement_status},
    )


@router.post(
    "/shops/{shop_id}/jobs",
    response_model=JobResponse,
    status_code=status.HTTP_202_ACCEPTED,
)
def create_shop_job(
    job_request: JobRequest,
    shop: Shop = Depends(get_shop_or_404),
    session: Session = Depends(get_session),
    entitlements: EntitlementProvider = Depends(get_entitlements),
):
    """Enqueue a job for the shop.

    Returns 202 with the pending job, or 403 when the shop is not entitled
    to run jobs (no job is created).
    """
    submission = submit_job(session, shop.id, job_request.type, entitlements)
    if not submission.accepted:
        return denied_response(submission.entitlement_status)
    return JobResponse.model_validate(submission.job)


@router.get("/shops/{shop_id}/jobs/latest", response_model=Optional[JobResponse])
def get_latest_shop_job(
    shop: Shop = Depends(get_shop_or_404),
    session: Session = Depends(get_session),
) -> Optional[JobResponse]:
    """Most recently created job of the shop, or null."""
    job = get_latest_job_for_shop(session, shop.id)
    return JobResponse.model_validate(job) if job is not None else None


@router.get("/jobs/{job_id}", response_model=JobResponse)
def get_job(job_id: int, session: Session = Depends(get_session)) -> JobResponse:
    job = get_job_status(session, job_id)
    if job is None:
        raise JobNotFoundError(job_id)
    return JobResponse.model_validate(job)
