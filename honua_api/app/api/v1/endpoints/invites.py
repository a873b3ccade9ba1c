"""
Invite endpoints for API v1.

Invite codes double as referral links: accepting one rewards both the
inviter and the new member with green points.
"""

from typing import List, Optional

from fastapi import APIRouter, Depends, Query

from honua_api.app.core.security import get_current_user, require_roles
from honua_api.app.schemas.rewards import InviteGenerate
from honua_api.app.services.invite_service import InviteService

router = APIRouter()


@router.post("/generate")
async def generate_invite(
    data: Optional[InviteGenerate] = None,
    current_user: dict = Depends(get_current_user),
) -> dict:
    """Return the caller's open code, or five new ones with ``bulk``."""
    bulk = data.bulk if data else False
    return await InviteService.generate(current_user, bulk=bulk)


@router.get("/validate/{code}")
async def validate_invite(code: str) -> dict:
    return await InviteService.validate(code)


@router.post("/accept/{code}")
async def accept_invite(code: str, current_user: dict = Depends(get_current_user)) -> dict:
    return await InviteService.accept(code, current_user)


@router.get("/stats")
async def invite_stats(current_user: dict = Depends(get_current_user)) -> dict:
    return await InviteService.stats(current_user)


@router.get("", response_model=List[dict])
async def list_invites(
    limit: int = Query(100, ge=1, le=1000),
    offset: int = Query(0, ge=0),
    current_user: dict = Depends(require_roles(1, 2)),
) -> List[dict]:
    return await InviteService.list_invites(limit=limit, offset=offset)
