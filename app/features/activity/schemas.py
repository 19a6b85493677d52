"""
Pydantic schemas for the activity log.
"""
from datetime import datetime
from typing import Any, Dict, Optional
from pydantic import BaseModel, ConfigDict, Field

from app.features.activity.models import SubjectKind


class ActivityLogResponse(BaseModel):
    id: str
    organization_id: str
    user_id: Optional[str] = None
    action: str
    subject_kind: Optional[SubjectKind] = None
    subject_id: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = Field(None, validation_alias="details")
    description: Optional[str] = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)
