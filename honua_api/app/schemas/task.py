"""
Pydantic models for sustainability tasks.

``POST /tasks`` multiplexes two actions on one body: ``complete`` (with
``taskId``) and ``create`` (with the task fields).
"""

from typing import Optional

from pydantic import BaseModel, Field


class TaskBase(BaseModel):
    title: Optional[str] = Field(None, examples=["Bring a reusable cup"])
    description: Optional[str] = None
    category: Optional[str] = Field(None, examples=["Waste Reduction"])
    difficulty: Optional[str] = Field(None, examples=["easy"])
    points: Optional[int] = None
    impact_score: Optional[int] = None
    verification_required: bool = False


class TaskCreate(TaskBase):
    """Schema for the admin console; points and impact score are 1..1000."""

    pass


class TaskUpdate(TaskBase):
    is_active: Optional[bool] = None


class TaskAction(TaskBase):
    action: str = Field(..., examples=["complete"])
    taskId: Optional[int] = None
    evidence: Optional[str] = None


class TaskVerification(BaseModel):
    completionId: Optional[int] = None
    status: Optional[str] = Field(None, examples=["verified"])
