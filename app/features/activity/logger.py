"""
Best-effort activity logging.

Entries are written in their own session, normally from a FastAPI
background task after the request transaction has committed. A failure
here is logged and swallowed: it must never undo or block the action it
describes.
"""
from typing import Any, Dict, Optional

from sqlalchemy.exc import SQLAlchemyError

from app.core.database.engine import AsyncSessionLocal
from app.features.activity.models import ActivityLog, Subject
from app.utils import get_logger


log = get_logger(__name__)


async def log_activity(
    organization_id: str,
    action: str,
    *,
    user_id: Optional[str] = None,
    subject: Optional[Subject] = None,
    metadata: Optional[Dict[str, Any]] = None,
    description: Optional[str] = None,
) -> None:
    entry = ActivityLog(
        organization_id=organization_id,
        user_id=user_id,
        action=action,
        subject_kind=subject.kind if subject else None,
        subject_id=subject.id if subject else None,
        details=metadata,
        description=description,
    )
    try:
        async with AsyncSessionLocal() as session:
            session.add(entry)
            await session.commit()
    except SQLAlchemyError:
        log.exception("Failed to record activity %s for org %s", action, organization_id)
        return

    log.info(
        "Activity: user=%s action=%s subject=%s org=%s",
        user_id, action, f"{subject.kind.value}:{subject.id}" if subject else None, organization_id,
    )
