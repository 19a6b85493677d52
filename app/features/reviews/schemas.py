"""
Pydantic schemas for review requests.
"""
from datetime import datetime
from typing import Any, Dict, List, Optional
from pydantic import BaseModel, ConfigDict, Field

from app.features.reviews.models import RecipientStatus, ReviewStatus


class RecipientInput(BaseModel):
    user_id: str
    organization_id: Optional[str] = None
    due_at: Optional[datetime] = None


class ReviewCreate(BaseModel):
    organization_id: str
    document_id: str
    document_version_id: Optional[str] = None
    subject: str = Field(..., min_length=1, max_length=255)
    body: Optional[str] = Field(None, max_length=5000)
    due_at: Optional[datetime] = None
    recipients: List[RecipientInput] = Field(..., min_length=1)
    send_immediately: bool = True


class ReviewUpdate(BaseModel):
    subject: Optional[str] = Field(None, min_length=1, max_length=255)
    body: Optional[str] = Field(None, max_length=5000)
    due_at: Optional[datetime] = None
    add_recipients: List[RecipientInput] = Field(default_factory=list)


class RequestChangesBody(BaseModel):
    note: Optional[str] = Field(None, max_length=5000)


class DeclineBody(BaseModel):
    reason: Optional[str] = Field(None, max_length=5000)


class RecipientDueDate(BaseModel):
    due_at: Optional[datetime] = None


class CommentCreate(BaseModel):
    body: str = Field(..., min_length=1, max_length=10000)
    parent_id: Optional[str] = None
    is_internal: bool = False


class RecipientResponse(BaseModel):
    id: str
    review_request_id: str
    reviewer_user_id: str
    reviewer_org_id: Optional[str] = None
    status: RecipientStatus
    due_at: Optional[datetime] = None
    last_viewed_at: Optional[datetime] = None
    responded_at: Optional[datetime] = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class CommentResponse(BaseModel):
    id: str
    review_request_id: str
    user_id: Optional[str] = None
    recipient_id: Optional[str] = None
    parent_id: Optional[str] = None
    body: str
    is_internal: bool
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class AttachmentResponse(BaseModel):
    id: str
    review_request_id: str
    uploaded_by_id: Optional[str] = None
    file_path: str
    original_name: str
    mime_type: Optional[str] = None
    size: int
    url: Optional[str] = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class ActionResponse(BaseModel):
    id: str
    actor_user_id: Optional[str] = None
    actor_org_id: Optional[str] = None
    action: str
    meta: Optional[Dict[str, Any]] = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class ReviewResponse(BaseModel):
    id: str
    document_id: str
    document_version_id: Optional[str] = None
    publisher_org_id: str
    submitted_by_id: Optional[str] = None
    subject: str
    body: Optional[str] = None
    status: ReviewStatus
    due_at: Optional[datetime] = None
    sent_at: Optional[datetime] = None
    closed_at: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class ReviewDetail(ReviewResponse):
    recipients: List[RecipientResponse] = []
    comments: List[CommentResponse] = []
    attachments: List[AttachmentResponse] = []
    actions: List[ActionResponse] = []


class InboxItem(BaseModel):
    review: ReviewResponse
    recipient: RecipientResponse


class ExpireResult(BaseModel):
    expired: List[RecipientResponse]
