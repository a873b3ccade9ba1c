"""
Green point endpoints for API v1.

Points are earned for sustainable actions according to admin managed
rules (optionally capped per day) and spent in the marketplace.
"""

from typing import Optional

from fastapi import APIRouter, Depends, Query, Response, status

from honua_api.app.core.security import get_current_user, require_roles
from honua_api.app.schemas.rewards import (
    GreenPointsAward,
    GreenPointsRuleBulkUpdate,
    GreenPointsRuleCreate,
    GreenPointsRuleUpdate,
    GreenPointsTransactionCreate,
)
from honua_api.app.services.green_points_service import GreenPointsService

router = APIRouter()


@router.get("")
async def get_balance(
    include_history: bool = Query(False),
    limit: int = Query(20, ge=1, le=100),
    offset: int = Query(0, ge=0),
    current_user: dict = Depends(get_current_user),
) -> dict:
    return await GreenPointsService.get_balance(
        current_user["user_id"], include_history=include_history, limit=limit, offset=offset
    )


@router.post("")
async def award_points(data: GreenPointsAward, current_user: dict = Depends(get_current_user)) -> dict:
    """Award the caller the points configured for ``action_type``.

    Answers 429 with ``daily_limit`` and ``earned_today`` once the daily
    cap of the rule is reached.
    """
    return await GreenPointsService.award_for_action(
        current_user, data.action_type, description=data.description, reference_id=data.reference_id
    )


@router.get("/transactions")
async def list_transactions(
    type: Optional[str] = Query(None, description="earned or spent"),
    action_type: Optional[str] = Query(None),
    start_date: Optional[str] = Query(None),
    end_date: Optional[str] = Query(None),
    limit: int = Query(20, ge=1, le=100),
    offset: int = Query(0, ge=0),
    current_user: dict = Depends(get_current_user),
) -> dict:
    return await GreenPointsService.list_transactions(
        current_user,
        type_=type,
        action_type=action_type,
        start_date=start_date,
        end_date=end_date,
        limit=limit,
        offset=offset,
    )


@router.post("/transactions", status_code=status.HTTP_201_CREATED)
async def create_transaction(
    data: GreenPointsTransactionCreate,
    current_user: dict = Depends(get_current_user),
) -> dict:
    return await GreenPointsService.create_transaction(data, current_user)


@router.get("/rules")
async def list_rules(
    include_inactive: bool = Query(False),
    action_type: Optional[str] = Query(None),
) -> dict:
    return {"rules": await GreenPointsService.list_rules(include_inactive=include_inactive, action_type=action_type)}


@router.post("/rules", status_code=status.HTTP_201_CREATED)
async def create_rule(
    rule: GreenPointsRuleCreate,
    current_user: dict = Depends(require_roles(1, 2)),
) -> dict:
    return {"rule": await GreenPointsService.create_rule(rule, current_user)}


@router.put("/rules")
async def bulk_update_rules(
    data: GreenPointsRuleBulkUpdate,
    current_user: dict = Depends(require_roles(1, 2)),
) -> dict:
    """Apply several rule updates in one transaction."""
    rules = [item.model_dump(exclude_unset=True) for item in data.rules]
    return {"rules": await GreenPointsService.bulk_update_rules(rules, current_user)}


@router.get("/rules/{rule_id}")
async def get_rule(rule_id: int) -> dict:
    return {"rule": await GreenPointsService.get_rule(rule_id)}


@router.put("/rules/{rule_id}")
async def update_rule(
    rule_id: int,
    updates: GreenPointsRuleUpdate,
    current_user: dict = Depends(require_roles(1, 2)),
) -> dict:
    return {"rule": await GreenPointsService.update_rule(rule_id, updates.model_dump(exclude_unset=True), current_user)}


@router.delete("/rules/{rule_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_rule(rule_id: int, current_user: dict = Depends(require_roles(1, 2))) -> Response:
    await GreenPointsService.delete_rule(rule_id, current_user)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
