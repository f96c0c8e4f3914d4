"""Job-related Pydantic schemas."""

from datetime import date
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field


class PlanInput(BaseModel):
    """Parameters needed to build a generation request. Immutable once stored."""

    model_config = ConfigDict(frozen=True)

    user_id: Optional[str] = None
    home_address: str
    date_from: date
    date_to: date
    interests: List[str] = Field(default_factory=list)

    @property
    def date_range(self) -> str:
        return f"{self.date_from.isoformat()} to {self.date_to.isoformat()}"


class JobError(BaseModel):
    """Structured classification of a failed job."""

    code: str
    message: str
    occurred_at: str


class JobMetrics(BaseModel):
    """Counters incidental to execution."""

    attempts: int = 0


class JobSubmit(BaseModel):
    """Body of a job creation request."""

    user_id: Optional[str] = None
    home_address: Optional[str] = None
    interests: Optional[List[str]] = None


class JobAccepted(BaseModel):
    """Response after a job has been created."""

    model_config = ConfigDict(populate_by_name=True)

    job_id: str = Field(alias="jobId")
    status: str = "accepted"
    check_ref: str = Field(alias="checkRef")


class JobStatusResponse(BaseModel):
    """Job status as seen by polling clients."""

    model_config = ConfigDict(populate_by_name=True)

    job_id: str = Field(alias="jobId")
    status: str
    stage: int
    error: Optional[JobError] = None
    has_output: bool = Field(alias="hasOutput")
    metrics: JobMetrics
