"""
Profile endpoints for API v1.

Public profiles are looked up by username; the caller's own profile adds
the green point balance and reputation.  Following lives here as well.
"""

from typing import Optional

from fastapi import APIRouter, Depends, Query

from honua_api.app.core.security import get_current_user
from honua_api.app.schemas.user import ProfileUpdate
from honua_api.app.services.follow_service import FollowService
from honua_api.app.services.user_service import UserService

router = APIRouter()


@router.get("/current")
async def current_profile(current_user: dict = Depends(get_current_user)) -> dict:
    return await UserService.get_profile(current_user["user_id"])


@router.get("")
async def profile_by_username(username: Optional[str] = Query(None)) -> dict:
    """Return the public profile for ``username``."""
    return await UserService.get_profile_by_username(username)


@router.put("")
async def update_profile(updates: ProfileUpdate, current_user: dict = Depends(get_current_user)) -> dict:
    """Update the caller's profile.  ``full_name`` and ``username`` are required."""
    return await UserService.update_profile(current_user, updates)


@router.post("/{user_id}/follow")
async def follow(user_id: int, current_user: dict = Depends(get_current_user)) -> dict:
    """Follow ``user_id`` and notify them."""
    return await FollowService.follow(current_user, user_id)


@router.delete("/{user_id}/follow")
async def unfollow(user_id: int, current_user: dict = Depends(get_current_user)) -> dict:
    return await FollowService.unfollow(current_user, user_id)


@router.get("/{user_id}/follow")
async def follow_status(user_id: int, current_user: dict = Depends(get_current_user)) -> dict:
    return await FollowService.status(current_user, user_id)
