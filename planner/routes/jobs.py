"""Job submission and status routes."""

import logging
from datetime import date, datetime, timedelta
from typing import Optional
from zoneinfo import ZoneInfo

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from fastapi.responses import HTMLResponse
from sqlalchemy.orm import Session

from planner.config import Settings
from planner.database import get_db
from planner.models.job import JobStatus
from planner.models.user import User
from planner.schemas.job import (
    JobAccepted,
    JobError,
    JobMetrics,
    JobStatusResponse,
    JobSubmit,
    PlanInput,
)
from planner.services.job_store import JobNotFound, JobStore

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/jobs", tags=["jobs"])

DEFAULT_INTERESTS = ["family friendly", "toddlers"]
RAW_FORMATS = {"raw", "html"}


def get_job_store(request: Request) -> JobStore:
    """FastAPI dependency returning the process-wide job store."""
    return request.app.state.job_store


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def plan_window(settings: Settings, now: Optional[datetime] = None) -> tuple[date, date]:
    """Today in the planning timezone and the last day of the window."""
    now = now or datetime.now(ZoneInfo(settings.PLAN_TIMEZONE))
    today = now.astimezone(ZoneInfo(settings.PLAN_TIMEZONE)).date()
    return today, today + timedelta(days=settings.PLAN_WINDOW_DAYS)


def resolve_plan_input(data: JobSubmit, db: Session, settings: Settings) -> PlanInput:
    """
    Resolve the subject and parameters of a plan.

    An explicit home address wins; otherwise the profile of ``user_id`` is
    used, falling back to the first registered user.

    Raises:
        HTTPException: 404 if no user can be resolved, 400 if no home address
    """
    has_address = bool(data.home_address and data.home_address.strip())
    user = None
    if data.user_id:
        user = db.get(User, data.user_id)
        if user is None and not has_address:
            raise HTTPException(status_code=404, detail="User not found")
    elif not has_address:
        user = db.query(User).order_by(User.created_at).first()
        if user is None:
            raise HTTPException(status_code=404, detail="No eligible user")

    home_address = data.home_address or (user.home_address if user else None)
    if not home_address or not home_address.strip():
        raise HTTPException(status_code=400, detail="home_address is required")

    interests = data.interests or (user.interests if user else None) or DEFAULT_INTERESTS
    date_from, date_to = plan_window(settings)

    return PlanInput(
        user_id=user.user_id if user else data.user_id,
        home_address=home_address.strip(),
        date_from=date_from,
        date_to=date_to,
        interests=[str(i) for i in interests],
    )


@router.post("", status_code=202, response_model=JobAccepted)
def submit_job(
    data: Optional[JobSubmit] = None,
    store: JobStore = Depends(get_job_store),
    settings: Settings = Depends(get_settings),
    db: Session = Depends(get_db),
):
    """Validate input and create a pending job."""
    plan_input = resolve_plan_input(data or JobSubmit(), db, settings)
    job_id = store.create(plan_input)

    logger.info(f"Accepted job {job_id} for {plan_input.user_id or 'anonymous'}")

    return JobAccepted(job_id=job_id, check_ref=f"/jobs?jobId={job_id}")


@router.get("", response_model=JobStatusResponse)
def get_job_status(
    job_id: str = Query("", alias="jobId"),
    output_format: Optional[str] = Query(None, alias="format"),
    store: JobStore = Depends(get_job_store),
):
    """Get job status, or the generated HTML with ``format=raw``."""
    job_id = job_id.strip()
    if not job_id:
        raise HTTPException(status_code=400, detail="jobId is required")

    try:
        job = store.get(job_id)
    except JobNotFound:
        raise HTTPException(status_code=404, detail="Job not found")

    if output_format in RAW_FORMATS and job.status == JobStatus.DONE.value and job.output:
        return HTMLResponse(content=job.output)

    return JobStatusResponse(
        job_id=job.job_id,
        status=job.status,
        stage=job.stage,
        error=JobError.model_validate(job.error) if job.error else None,
        has_output=bool(job.output),
        metrics=JobMetrics.model_validate(job.metrics or {}),
    )
