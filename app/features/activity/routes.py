"""
Activity log API routes.
"""
from typing import Annotated, List, Optional
from fastapi import APIRouter, Depends, Query
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database.engine import get_db
from app.features.activity.models import ActivityLog
from app.features.activity.schemas import ActivityLogResponse
from app.features.permissions.dependencies import OrgActor, require_permission


router = APIRouter()


@router.get("/{organization_id}/activity-logs", response_model=List[ActivityLogResponse])
async def list_activity_logs(
    actor: Annotated[OrgActor, Depends(require_permission("view_activity_logs"))],
    db: Annotated[AsyncSession, Depends(get_db)],
    action: Optional[str] = None,
    user_id: Optional[str] = None,
    skip: int = Query(0, ge=0),
    limit: int = Query(50, ge=1, le=200),
):
    """List organization activity, newest first."""
    stmt = select(ActivityLog).where(ActivityLog.organization_id == actor.organization_id)
    if action:
        stmt = stmt.where(ActivityLog.action == action)
    if user_id:
        stmt = stmt.where(ActivityLog.user_id == user_id)

    stmt = stmt.order_by(ActivityLog.created_at.desc(), ActivityLog.id.desc()).offset(skip).limit(limit)
    result = await db.execute(stmt)
    return result.scalars().all()
