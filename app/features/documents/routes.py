"""
Document routes (organization scoped).
"""
from typing import Annotated
from fastapi import APIRouter, BackgroundTasks, Depends, File, Form, UploadFile, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database.engine import get_db
from app.features.activity.logger import log_activity
from app.features.activity.models import Subject, SubjectKind
from app.features.documents import service
from app.features.documents.models import Document
from app.features.documents.schemas import DocumentDetail, DocumentResponse, DocumentVersionResponse
from app.features.permissions.dependencies import OrgActor, require_permission


router = APIRouter()


async def _detail(db: AsyncSession, document: Document) -> DocumentDetail:
    detail = DocumentDetail.model_validate(document)
    detail.versions = [DocumentVersionResponse.model_validate(v) for v in await service.list_versions(db, document.id)]
    return detail


@router.post("/{organization_id}/documents", response_model=DocumentDetail, status_code=status.HTTP_201_CREATED)
async def upload_document(
    background_tasks: BackgroundTasks,
    actor: Annotated[OrgActor, Depends(require_permission("upload_documents"))],
    db: Annotated[AsyncSession, Depends(get_db)],
    title: str = Form(..., min_length=1, max_length=255),
    file: UploadFile = File(...),
):
    content = await file.read()
    document, _version = await service.create_document(
        db, actor.organization_id, title, file.filename, content, file.content_type, actor.id
    )
    await db.commit()

    background_tasks.add_task(
        log_activity,
        actor.organization_id,
        "document_uploaded",
        user_id=actor.id,
        subject=Subject(SubjectKind.DOCUMENT, document.id),
        metadata={"title": title},
    )
    return await _detail(db, document)


@router.get("/{organization_id}/documents", response_model=list[DocumentResponse])
async def list_documents(
    actor: Annotated[OrgActor, Depends(require_permission("view_storage"))],
    db: Annotated[AsyncSession, Depends(get_db)],
    skip: int = 0,
    limit: int = 50,
):
    result = await db.execute(
        select(Document)
        .where(Document.organization_id == actor.organization_id)
        .order_by(Document.created_at.desc())
        .offset(skip)
        .limit(limit)
    )
    return result.scalars().all()


@router.get("/{organization_id}/documents/{document_id}", response_model=DocumentDetail)
async def get_document(
    document_id: str,
    actor: Annotated[OrgActor, Depends(require_permission("view_storage"))],
    db: Annotated[AsyncSession, Depends(get_db)],
):
    document = await service.get_document(db, document_id, actor.organization_id)
    return await _detail(db, document)


@router.post(
    "/{organization_id}/documents/{document_id}/versions",
    response_model=DocumentDetail,
    status_code=status.HTTP_201_CREATED,
)
async def upload_document_version(
    document_id: str,
    actor: Annotated[OrgActor, Depends(require_permission("upload_documents"))],
    db: Annotated[AsyncSession, Depends(get_db)],
    file: UploadFile = File(...),
):
    document = await service.get_document(db, document_id, actor.organization_id)
    await service.add_version(db, document, file.filename, await file.read(), file.content_type, actor.id)
    await db.commit()
    return await _detail(db, document)
