"""Durable job store with partial-merge updates."""

import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List

from sqlalchemy import func, update

from planner.models.job import TERMINAL_STATUSES, Job, JobStatus, utcnow
from planner.schemas.job import PlanInput

logger = logging.getLogger(__name__)

UPDATABLE_FIELDS = {"status", "stage", "output", "error", "metrics"}


class JobNotFound(LookupError):
    """Raised when a job id does not exist."""

    def __init__(self, job_id: str):
        super().__init__(f"Job {job_id} not found")
        self.job_id = job_id


class JobStateError(RuntimeError):
    """Raised when a write would break the job lifecycle."""


class JobStore:
    """Job persistence keyed by job id.

    Every operation runs in its own session and commits or rolls back as a
    unit, so one instance can be shared by the API and background workers.
    """

    def __init__(self, session_factory):
        """Initialize the store."""
        self.session_factory = session_factory
        self._listeners: List[Callable[[str], None]] = []

    def subscribe(self, listener: Callable[[str], None]) -> None:
        """Register a callback invoked with the id of every created job."""
        self._listeners.append(listener)

    def create(self, plan_input: PlanInput) -> str:
        """Insert a pending job and notify creation listeners."""
        now = utcnow()
        db = self.session_factory()
        try:
            job = Job(
                status=JobStatus.PENDING.value,
                stage=0,
                input=plan_input.model_dump(mode="json"),
                output=None,
                error=None,
                metrics={"attempts": 0},
                created_at=now,
                updated_at=now,
            )
            db.add(job)
            db.commit()
            job_id = job.job_id
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

        logger.info(f"Created job {job_id}")

        for listener in self._listeners:
            try:
                listener(job_id)
            except Exception as e:
                logger.error(f"Creation listener failed for job {job_id}: {e}", exc_info=True)

        return job_id

    def get(self, job_id: str) -> Job:
        """Load a job, detached from its session."""
        db = self.session_factory()
        try:
            job = db.get(Job, job_id)
            if job is None:
                raise JobNotFound(job_id)
            db.expunge(job)
            return job
        finally:
            db.close()

    def update(self, job_id: str, **fields: Any) -> Job:
        """
        Merge fields into an existing job.

        Unspecified fields are left untouched, ``metrics`` is merged key-wise
        and ``updated_at`` is always stamped. The write is a single UPDATE
        conditioned on the status observed before it, so either every field
        takes effect or none does.

        Raises:
            JobNotFound: If the job does not exist
            JobStateError: If the job is terminal, the status would move
                backwards, a terminal status is written to a job that is not
                running, or the job changed concurrently
        """
        unknown = set(fields) - UPDATABLE_FIELDS
        if unknown:
            raise ValueError(f"Cannot update job fields: {sorted(unknown)}")

        db = self.session_factory()
        try:
            current = db.get(Job, job_id)
            if current is None:
                raise JobNotFound(job_id)

            current_status = current.job_status
            if current_status.is_terminal:
                raise JobStateError(f"Job {job_id} is already {current_status.value}")

            values = dict(fields)
            if "status" in values:
                new_status = JobStatus(values["status"])
                if new_status.rank < current_status.rank or (
                    new_status.is_terminal and current_status != JobStatus.RUNNING
                ):
                    raise JobStateError(
                        f"Job {job_id} cannot move from {current_status.value} to {new_status.value}"
                    )
                values["status"] = new_status.value
            if "metrics" in values:
                merged = dict(current.metrics or {})
                merged.update(values["metrics"])
                values["metrics"] = merged
            values["updated_at"] = max(utcnow(), _aware(current.created_at))

            result = db.execute(
                update(Job)
                .where(Job.job_id == job_id, Job.status == current_status.value)
                .values(**values)
            )
            if result.rowcount != 1:
                db.rollback()
                raise JobStateError(f"Job {job_id} was modified concurrently")
            db.commit()

            db.refresh(current)
            db.expunge(current)
            return current
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    def claim(self, job_id: str) -> bool:
        """
        Move a pending job to running in one conditional write.

        Returns:
            True if this caller claimed the job, False if it was already
            claimed or finished
        """
        db = self.session_factory()
        try:
            result = db.execute(
                update(Job)
                .where(Job.job_id == job_id, Job.status == JobStatus.PENDING.value)
                .values(status=JobStatus.RUNNING.value, stage=1, updated_at=utcnow())
            )
            if result.rowcount == 1:
                db.commit()
                return True

            db.rollback()
            if db.get(Job, job_id) is None:
                raise JobNotFound(job_id)
            return False
        finally:
            db.close()

    def list_stale(self, older_than: timedelta) -> List[Job]:
        """Non-terminal jobs not written to within the given age."""
        cutoff = datetime.now(timezone.utc) - older_than
        db = self.session_factory()
        try:
            jobs = (
                db.query(Job)
                .filter(Job.status.notin_(TERMINAL_STATUSES), Job.updated_at < cutoff)
                .order_by(Job.created_at)
                .all()
            )
            for job in jobs:
                db.expunge(job)
            return jobs
        finally:
            db.close()

    def count(self) -> int:
        """Total number of job records."""
        db = self.session_factory()
        try:
            return db.query(func.count(Job.job_id)).scalar()
        finally:
            db.close()


def _aware(value: datetime) -> datetime:
    """SQLite hands back naive datetimes; treat them as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def job_error(code: str, message: str) -> Dict[str, str]:
    """Build the structured error payload stored on failed jobs."""
    return {"code": code, "message": message, "occurred_at": utcnow().isoformat()}
