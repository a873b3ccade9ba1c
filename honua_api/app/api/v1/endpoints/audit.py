"""
Audit log endpoints for API v1.

Create, update and delete actions across the platform are recorded by
the services; only super administrators may read them.
"""

from typing import List, Optional

from fastapi import APIRouter, Depends, Query

from honua_api.app.core.security import ROLE_SUPER_ADMIN, require_roles
from honua_api.app.services.audit_service import AuditService

router = APIRouter()


@router.get("/logs")
async def list_audit_logs(
    user_id: Optional[int] = Query(None, description="Filter by acting user ID"),
    object_type: Optional[str] = Query(None, description="Filter by object type (post, order, task, ...)"),
    action: Optional[str] = Query(None, description="Filter by action (create, update, delete, ...)"),
    start_date: Optional[str] = Query(None, description="Start date (ISO format)"),
    end_date: Optional[str] = Query(None, description="End date (ISO format)"),
    limit: int = Query(100, ge=1, le=500),
    offset: int = Query(0, ge=0),
    current_user: dict = Depends(require_roles(ROLE_SUPER_ADMIN)),
) -> List[dict]:
    """Audit records, newest first."""
    return await AuditService.list_logs(
        user_id=user_id,
        object_type=object_type,
        action=action,
        start_date=start_date,
        end_date=end_date,
        limit=limit,
        offset=offset,
    )
