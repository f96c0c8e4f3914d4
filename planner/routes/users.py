"""User profile routes."""

import logging

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from planner.database import get_db
from planner.models.user import User
from planner.schemas.user import UserResponse, UserUpsert

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/users", tags=["users"])


def _to_response(user: User) -> UserResponse:
    return UserResponse(
        user_id=user.user_id,
        home_address=user.home_address,
        interests=list(user.interests or []),
    )


@router.put("/{user_id}", response_model=UserResponse)
def upsert_user(
    user_id: str,
    data: UserUpsert,
    db: Session = Depends(get_db),
):
    """Create a profile or update the fields present in the body."""
    user = db.get(User, user_id)
    if user is None:
        user = User(user_id=user_id, interests=[])
        db.add(user)
        logger.info(f"Created user {user_id}")

    if data.home_address is not None:
        user.home_address = data.home_address
    if data.interests is not None:
        user.interests = list(data.interests)

    db.commit()
    db.refresh(user)

    return _to_response(user)


@router.get("/{user_id}", response_model=UserResponse)
def get_user(
    user_id: str,
    db: Session = Depends(get_db),
):
    """Get a user profile."""
    user = db.get(User, user_id)
    if not user:
        raise HTTPException(status_code=404, detail="User not found")

    return _to_response(user)
