"""
User endpoints for API v1.

Registration, login, discovery (search, suggestions, leaderboards) and
administrative account management.  ``/users/follow`` is kept as a body
based alias of the ``/profiles/{id}/follow`` routes.
"""

from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status

from honua_api.app.core.security import create_access_token, get_current_user, get_optional_user, require_roles
from honua_api.app.schemas.user import FollowRequest, Token, UserCreate, UserLogin, UserRead, UserUpdate
from honua_api.app.services.follow_service import FollowService
from honua_api.app.services.user_service import UserService

router = APIRouter()


@router.post("/register", status_code=status.HTTP_201_CREATED)
async def register_user(user: UserCreate) -> dict:
    """Register a new account.

    The first account ever created becomes the super administrator.
    When ``invite_code`` is given it is redeemed for the new user; the
    outcome is reported under ``referral``.
    """
    return await UserService.register(user)


@router.post("/login", response_model=Token)
async def login_user(credentials: UserLogin) -> Token:
    """Exchange e-mail and password for a bearer token."""
    db_user = await UserService.authenticate(credentials.email, credentials.password)
    if not db_user:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid credentials")
    token = create_access_token({"sub": str(db_user["id"])})
    return Token(access_token=token)


@router.get("/search")
async def search_users(q: str = Query("", description="Matched against username and full name")) -> dict:
    return {"users": await UserService.search(q)}


@router.get("/suggestions")
async def user_suggestions(
    limit: int = Query(5, ge=1, le=50),
    current_user: Optional[dict] = Depends(get_optional_user),
) -> dict:
    """Most-followed users the caller does not follow yet."""
    return {"users": await UserService.suggestions(current_user, limit)}


@router.get("/stats")
async def user_stats(
    userId: Optional[int] = Query(None),
    current_user: dict = Depends(get_current_user),
) -> dict:
    """Points, completed tasks, invites and leaderboards.

    Defaults to the caller when ``userId`` is omitted.
    """
    return await UserService.stats(userId or current_user["user_id"])


@router.post("/follow")
async def follow_user(payload: FollowRequest, current_user: dict = Depends(get_current_user)) -> dict:
    return await FollowService.follow(current_user, payload.userId)


@router.delete("/follow")
async def unfollow_user(payload: FollowRequest, current_user: dict = Depends(get_current_user)) -> dict:
    return await FollowService.unfollow(current_user, payload.userId)


@router.get("", response_model=List[UserRead])
async def list_users(
    limit: int = Query(100, ge=1, le=1000),
    offset: int = Query(0, ge=0),
    current_user: dict = Depends(require_roles(1, 2)),
) -> List[UserRead]:
    """List accounts.  Administrators only."""
    return await UserService.list_users(limit=limit, offset=offset)


@router.put("/{user_id}", response_model=UserRead)
async def update_user(
    user_id: int,
    updates: UserUpdate,
    current_user: dict = Depends(get_current_user),
) -> UserRead:
    """Update an account.

    Administrators may edit anyone, including ``role_id`` and
    ``disabled``.  Other users may only change their own e-mail, name
    and password.
    """
    return await UserService.update_user(user_id, updates, current_user)
