"""Job model for plan generation requests."""

import enum
import uuid
from datetime import datetime, timezone

from sqlalchemy import JSON, Column, DateTime, Index, Integer, String, Text

from planner.database import Base


def utcnow() -> datetime:
    """Current time in UTC."""
    return datetime.now(timezone.utc)


class JobStatus(str, enum.Enum):
    """Lifecycle states of a job: pending -> running -> done | error."""

    PENDING = "pending"
    RUNNING = "running"
    DONE = "done"
    ERROR = "error"

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.DONE, JobStatus.ERROR)

    @property
    def rank(self) -> int:
        return _STATUS_RANK[self]


_STATUS_RANK = {
    JobStatus.PENDING: 0,
    JobStatus.RUNNING: 1,
    JobStatus.DONE: 2,
    JobStatus.ERROR: 2,
}

TERMINAL_STATUSES = (JobStatus.DONE.value, JobStatus.ERROR.value)


class Job(Base):
    """Job represents one request for a generated weekly plan."""

    __tablename__ = "jobs"

    job_id = Column(String(32), primary_key=True, default=lambda: uuid.uuid4().hex)
    status = Column(String(16), nullable=False, default=JobStatus.PENDING.value)
    stage = Column(Integer, nullable=False, default=0)  # 0 created, 1 calling, 2 succeeded
    input = Column(JSON, nullable=False)
    output = Column(Text)  # generated HTML, only when done
    error = Column(JSON)  # {code, message, occurred_at}, only when error
    metrics = Column(JSON, nullable=False, default=dict)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    __table_args__ = (
        Index("idx_jobs_status", "status"),
        Index("idx_jobs_updated_at", "updated_at"),
    )

    @property
    def job_status(self) -> JobStatus:
        return JobStatus(self.status)
