"""
Reputation and achievement endpoints for API v1.

``achievements_router`` is mounted separately under ``/achievements``.
"""

from typing import Optional

from fastapi import APIRouter, Depends, Query, status

from honua_api.app.core.security import require_roles
from honua_api.app.schemas.rewards import AchievementCreate, ReputationAward
from honua_api.app.services.reputation_service import ReputationService

router = APIRouter()
achievements_router = APIRouter()


@router.get("")
async def get_reputation(
    userId: Optional[int] = Query(None),
    username: Optional[str] = Query(None),
) -> dict:
    """A user's reputation, level, recent actions and achievements."""
    return await ReputationService.get_reputation(user_id=userId, username=username)


@router.post("")
async def award_reputation(data: ReputationAward, current_user: dict = Depends(require_roles(1, 2))) -> dict:
    """Award (or deduct) reputation and grant any newly earned achievements.

    Restricted to administrators; regular awards happen as side effects
    of posting, liking and completing tasks.
    """
    return await ReputationService.award(data)


@achievements_router.get("")
async def list_achievements(
    userId: Optional[int] = Query(None),
    category: Optional[str] = Query(None),
) -> dict:
    return await ReputationService.list_achievements(user_id=userId, category=category)


@achievements_router.post("", status_code=status.HTTP_201_CREATED)
async def create_achievement(
    data: AchievementCreate,
    current_user: dict = Depends(require_roles(1, 2)),
) -> dict:
    return {"achievement": await ReputationService.create_achievement(data)}
