"""
Pydantic models for the rewards system: green points, reputation,
achievements and invites.

Camel-cased field names mirror the JSON the web client sends.
"""

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


class GreenPointsAward(BaseModel):
    action_type: str = Field(..., examples=["post_created"])
    description: Optional[str] = None
    reference_id: Optional[int] = None


class GreenPointsTransactionCreate(BaseModel):
    action_type: str = Field(..., examples=["daily_login"])
    points: int = Field(..., examples=[5])
    description: Optional[str] = None
    reference_id: Optional[int] = None
    target_user_id: Optional[int] = None


class GreenPointsRuleCreate(BaseModel):
    action_type: Optional[str] = None
    points_per_action: Optional[int] = None
    daily_limit: Optional[int] = None
    description: Optional[str] = None
    is_active: bool = True


class GreenPointsRuleUpdate(BaseModel):
    """Only provided fields are updated."""

    points_per_action: Optional[int] = None
    daily_limit: Optional[int] = None
    description: Optional[str] = None
    is_active: Optional[bool] = None


class GreenPointsRuleBulkItem(GreenPointsRuleUpdate):
    id: int


class GreenPointsRuleBulkUpdate(BaseModel):
    rules: List[GreenPointsRuleBulkItem]


class ReputationAward(BaseModel):
    userId: int
    actionType: str = Field(..., examples=["post_created"])
    points: int
    description: Optional[str] = None
    referenceId: Optional[int] = None
    referenceType: Optional[str] = None


class AchievementCreate(BaseModel):
    name: Optional[str] = None
    description: Optional[str] = None
    icon: Optional[str] = None
    category: Optional[str] = Field(None, examples=["community"])
    points: int = 0
    requirements: Optional[Dict[str, Any]] = None


class InviteGenerate(BaseModel):
    bulk: bool = False
