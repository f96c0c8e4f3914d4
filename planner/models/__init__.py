"""SQLAlchemy ORM models."""

from planner.models.job import Job, JobStatus
from planner.models.user import User

__all__ = [
    "Job",
    "JobStatus",
    "User",
]
