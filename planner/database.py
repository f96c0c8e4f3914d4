"""Database engine and session management."""

from fastapi import Request
from sqlalchemy import create_engine
from sqlalchemy.orm import declarative_base

from planner.config import settings


def build_engine(url: str):
    """Create an engine, enabling cross-thread use for SQLite."""
    connect_args = {}
    if url.startswith("sqlite"):
        connect_args["check_same_thread"] = False
    return create_engine(url, connect_args=connect_args, pool_pre_ping=True)


engine = build_engine(settings.DATABASE_URL)

Base = declarative_base()


def get_db(request: Request):
    """FastAPI dependency yielding a session from the app's session factory."""
    db = request.app.state.session_factory()
    try:
        yield db
    finally:
        db.close()
