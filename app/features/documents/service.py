"""
Document storage helpers shared by the document routes and the review workflow.
"""
from typing import Optional

from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from app.core import config
from app.core.errors import NotFoundError, ValidationError
from app.core.storage import store_file
from app.features.documents.models import Document, DocumentVersion
from app.utils import get_logger


log = get_logger(__name__)


def check_upload(filename: Optional[str], content: bytes) -> None:
    if not filename:
        raise ValidationError("A file name is required")
    if not content:
        raise ValidationError("The uploaded file is empty")
    if len(content) > config.MAX_UPLOAD_BYTES:
        max_mb = config.MAX_UPLOAD_BYTES / (1024 * 1024)
        raise ValidationError(f"File size exceeds {max_mb:.0f} MB limit")


async def get_document(db: AsyncSession, document_id: str, organization_id: Optional[str] = None) -> Document:
    stmt = select(Document).where(Document.id == document_id)
    if organization_id is not None:
        stmt = stmt.where(Document.organization_id == organization_id)
    document = (await db.execute(stmt)).scalar_one_or_none()
    if document is None:
        raise NotFoundError("Document not found")
    return document


async def list_versions(db: AsyncSession, document_id: str) -> list[DocumentVersion]:
    result = await db.execute(
        select(DocumentVersion)
        .where(DocumentVersion.document_id == document_id)
        .order_by(DocumentVersion.version_number)
    )
    return list(result.scalars().all())


async def add_version(
    db: AsyncSession,
    document: Document,
    filename: str,
    content: bytes,
    mime_type: Optional[str],
    uploaded_by_id: str,
) -> DocumentVersion:
    """Store a new version (max + 1) and repoint the document at it."""
    check_upload(filename, content)

    result = await db.execute(
        select(func.max(DocumentVersion.version_number)).where(DocumentVersion.document_id == document.id)
    )
    next_number = (result.scalar_one_or_none() or 0) + 1

    path = store_file(f"documents/{document.id}", filename, content)
    version = DocumentVersion(
        document_id=document.id,
        version_number=next_number,
        file_path=path,
        original_name=filename,
        mime_type=mime_type,
        size=len(content),
        uploaded_by_id=uploaded_by_id,
    )
    db.add(version)
    await db.flush()

    document.latest_version_id = version.id
    await db.flush()
    log.info("Document %s version %d uploaded by %s", document.id, next_number, uploaded_by_id)
    return version


async def create_document(
    db: AsyncSession,
    organization_id: str,
    title: str,
    filename: str,
    content: bytes,
    mime_type: Optional[str],
    created_by_id: str,
) -> tuple[Document, DocumentVersion]:
    check_upload(filename, content)
    document = Document(organization_id=organization_id, title=title, created_by_id=created_by_id)
    db.add(document)
    await db.flush()
    version = await add_version(db, document, filename, content, mime_type, created_by_id)
    return document, version
