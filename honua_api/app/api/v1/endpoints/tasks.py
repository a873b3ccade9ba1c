"""
Sustainability task endpoints for API v1.

``POST /tasks`` carries an ``action``: ``complete`` records the caller's
completion, ``create`` (administrators) adds a task.  Administrators
verify pending completions with ``PUT /tasks``.  Full task management
lives under ``/admin/tasks``.
"""

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status

from honua_api.app.core.security import get_current_user, get_optional_user, is_admin, require_roles
from honua_api.app.schemas.task import TaskAction, TaskVerification
from honua_api.app.services.task_service import TaskService

router = APIRouter()


@router.get("")
async def list_tasks(
    userId: Optional[int] = Query(None),
    completed: Optional[bool] = Query(None),
    category: Optional[str] = Query(None),
    difficulty: Optional[str] = Query(None),
    viewer: Optional[dict] = Depends(get_optional_user),
) -> dict:
    """Active tasks with the caller's completion status.

    With ``userId`` and ``completed=true`` the user's completions are
    listed instead.
    """
    tasks = await TaskService.list_tasks(
        viewer, user_id=userId, completed=completed, category=category, difficulty=difficulty
    )
    return {"tasks": tasks}


@router.post("")
async def task_action(data: TaskAction, current_user: dict = Depends(get_current_user)) -> dict:
    if data.action == "complete":
        return await TaskService.complete_task(data.taskId, data.evidence, current_user)
    if data.action == "create":
        if not is_admin(current_user):
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Insufficient permissions")
        return {"task": await TaskService.create_task(data, current_user, strict=False)}
    raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid action")


@router.put("")
async def verify_completion(
    data: TaskVerification,
    current_user: dict = Depends(require_roles(1, 2)),
) -> dict:
    """Mark a pending completion ``verified`` (paying out) or ``rejected``."""
    return await TaskService.verify_completion(data.completionId, data.status, current_user)
