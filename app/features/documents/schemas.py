"""
Pydantic schemas for documents.
"""
from datetime import datetime
from pydantic import BaseModel, ConfigDict


class DocumentVersionResponse(BaseModel):
    id: str
    document_id: str
    version_number: int
    file_path: str
    original_name: str
    mime_type: str | None = None
    size: int
    uploaded_by_id: str | None = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class DocumentResponse(BaseModel):
    id: str
    organization_id: str
    title: str
    latest_version_id: str | None = None
    created_by_id: str | None = None
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class DocumentDetail(DocumentResponse):
    versions: list[DocumentVersionResponse] = []
