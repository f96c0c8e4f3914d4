"""User profile model."""

from sqlalchemy import JSON, Column, DateTime, Text

from planner.database import Base
from planner.models.job import utcnow


class User(Base):
    """Profile used to resolve the origin and interests of a plan."""

    __tablename__ = "users"

    user_id = Column(Text, primary_key=True)
    home_address = Column(Text)
    interests = Column(JSON, default=list)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
