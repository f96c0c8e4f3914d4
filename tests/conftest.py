"""Pytest configuration and fixtures."""

from datetime import date
from typing import List, Optional

import pytest
from sqlalchemy.orm import sessionmaker

from planner import models  # noqa: F401
from planner.database import Base, build_engine
from planner.schemas.job import PlanInput
from planner.services.generation_client import GenerationRequest, GenerationResult
from planner.services.job_store import JobStore

PLAN_HTML = "<!DOCTYPE html><html><body><h1>Weekend plan</h1></body></html>"


class FakeGenerationClient:
    """Generation client replaying scripted outcomes.

    Each outcome is an exception to raise or a string to return. Once the
    script runs out, ``default`` is returned.
    """

    def __init__(self, outcomes: Optional[list] = None, default: str = PLAN_HTML):
        self.outcomes = list(outcomes or [])
        self.default = default
        self.requests: List[GenerationRequest] = []
        self.closed = False

    @property
    def calls(self) -> int:
        return len(self.requests)

    async def generate(self, request: GenerationRequest) -> GenerationResult:
        self.requests.append(request)
        outcome = self.outcomes.pop(0) if self.outcomes else self.default
        if isinstance(outcome, BaseException):
            raise outcome
        return GenerationResult(output_text=outcome)

    async def aclose(self) -> None:
        self.closed = True


class RecordingSleep:
    """Stand-in for asyncio.sleep that records delays without waiting."""

    def __init__(self):
        self.delays: List[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


@pytest.fixture(scope="function")
def test_engine(tmp_path):
    """Create a file-backed SQLite database for each test."""
    engine = build_engine(f"sqlite:///{tmp_path / 'planner.db'}")
    Base.metadata.create_all(engine)

    yield engine

    engine.dispose()


@pytest.fixture
def session_factory(test_engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=test_engine)


@pytest.fixture
def store(session_factory):
    return JobStore(session_factory)


@pytest.fixture
def plan_input():
    return PlanInput(
        user_id="user-1",
        home_address="1-1 Chiyoda, Tokyo",
        date_from=date(2026, 10, 17),
        date_to=date(2026, 11, 16),
        interests=["museums", "parks"],
    )
