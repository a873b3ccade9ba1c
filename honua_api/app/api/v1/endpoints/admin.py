"""
Administrative endpoints for API v1.

Platform statistics and the task catalogue console.  Every route
requires role 1 or 2.
"""

from fastapi import APIRouter, Depends, Response, status

from honua_api.app.core.security import require_roles
from honua_api.app.schemas.task import TaskCreate, TaskUpdate
from honua_api.app.services.statistics_service import StatisticsService
from honua_api.app.services.task_service import TaskService

router = APIRouter()


@router.get("/stats")
async def platform_stats(current_user: dict = Depends(require_roles(1, 2))) -> dict:
    """Counts of users, posts, products and orders, revenue and points issued."""
    return await StatisticsService.overview()


@router.get("/tasks")
async def list_tasks(current_user: dict = Depends(require_roles(1, 2))) -> dict:
    """Every task, active or not, with its completion count."""
    return {"tasks": await TaskService.list_all()}


@router.post("/tasks", status_code=status.HTTP_201_CREATED)
async def create_task(task: TaskCreate, current_user: dict = Depends(require_roles(1, 2))) -> dict:
    return {"task": await TaskService.create_task(task, current_user)}


@router.get("/tasks/{task_id}")
async def get_task(task_id: int, current_user: dict = Depends(require_roles(1, 2))) -> dict:
    return {"task": await TaskService.get_task(task_id)}


@router.put("/tasks/{task_id}")
async def update_task(
    task_id: int,
    updates: TaskUpdate,
    current_user: dict = Depends(require_roles(1, 2)),
) -> dict:
    return {"task": await TaskService.update_task(task_id, updates, current_user)}


@router.delete("/tasks/{task_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_task(task_id: int, current_user: dict = Depends(require_roles(1, 2))) -> Response:
    await TaskService.delete_task(task_id, current_user)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
