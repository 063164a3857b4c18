"""
Document issuing and bearer-token downloads.

Generated artifacts are written under ``storage_dir/<kind>/`` and named
``<type>_<user_id>_[<payment_id>_]<epoch millis>.pdf``. The download token
is the only credential needed to fetch a document.
"""
import asyncio
import os
import time
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from membership_system.config import Settings, get_settings
from membership_system.core.exceptions import (
    DocumentFileMissingError,
    ForbiddenError,
    NotFoundError,
    ValidationError,
)
from membership_system.core.schemas import DocumentUploadRequest
from membership_system.core.security import generate_download_token
from membership_system.database.models import (
    Document,
    DocumentType,
    Payment,
    PaymentStatus,
    User,
)
from membership_system.integrations.pdf_renderer import PDFDocumentRenderer
from membership_system.monitoring.metrics import metrics

logger = structlog.get_logger(__name__)

PDF_MIME_TYPE = "application/pdf"
DEFAULT_MIME_TYPE = "application/octet-stream"

INVALID_TOKEN = "Invalid or expired download token"
FILE_MISSING = "Document file not found on disk"
PAYMENT_NOT_PAID = "Payment not found or not paid"
OUTSIDE_STORAGE = "File path must be inside the document storage directory"
DOWNLOAD_REFUSED = "Document is not stored in the document storage directory"

SUBDIRECTORIES = {
    DocumentType.CERTIFICATE: "certificates",
    DocumentType.RECEIPT: "receipts",
}


@dataclass(frozen=True)
class DownloadInfo:
    file_path: str
    file_name: str
    mime_type: str


def _write_file(path: Path, content: bytes) -> int:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(content)
    return path.stat().st_size


class DocumentService:
    """Registers, generates, lists and resolves member documents."""

    def __init__(
        self,
        settings: Optional[Settings] = None,
        renderer: Optional[PDFDocumentRenderer] = None,
    ):
        self.settings = settings or get_settings()
        self.renderer = renderer or PDFDocumentRenderer()
        self.storage_root = Path(self.settings.storage_dir).resolve()

    def _within_storage(self, file_path: str) -> Optional[Path]:
        """Absolute resolved path when it lies under the storage root, else None."""
        path = Path(file_path)
        if not path.is_absolute():
            path = self.storage_root / path
        resolved = path.resolve()
        if self.storage_root in resolved.parents:
            return resolved
        return None

    async def _get_user(self, db: AsyncSession, user_id: int) -> User:
        user = await db.get(User, user_id)
        if user is None:
            raise NotFoundError(f"User with ID {user_id} not found")
        return user

    def _artifact_path(
        self, document_type: DocumentType, user_id: int, payment_id: Optional[int] = None
    ) -> Path:
        parts = [document_type.value, str(user_id)]
        if payment_id is not None:
            parts.append(str(payment_id))
        parts.append(str(int(time.time() * 1000)))
        return self.storage_root / SUBDIRECTORIES[document_type] / f"{'_'.join(parts)}.pdf"

    async def _store(
        self,
        db: AsyncSession,
        user_id: int,
        document_type: DocumentType,
        path: Path,
        content: bytes,
    ) -> Document:
        file_size = await asyncio.to_thread(_write_file, path, content)

        document = Document(
            user_id=user_id,
            document_type=document_type,
            file_name=path.name,
            file_path=str(path),
            file_size=file_size,
            mime_type=PDF_MIME_TYPE,
            download_token=generate_download_token(),
        )
        db.add(document)
        try:
            await db.commit()
        except Exception:
            await db.rollback()
            # The row never landed, so the file would be unreachable.
            path.unlink(missing_ok=True)
            raise

        metrics.record_document_issued(document_type.value)
        logger.info(
            "document_generated",
            document_id=document.id,
            user_id=user_id,
            document_type=document_type.value,
            file_name=path.name,
            file_size=file_size,
        )
        return document

    async def upload(self, request: DocumentUploadRequest, db: AsyncSession) -> Document:
        """
        Register an externally stored file for a user.

        Only metadata is recorded; the file itself is not touched. Relative
        paths are taken relative to the storage directory, and paths that
        resolve outside it are refused.

        Raises:
            ValidationError: If the path lies outside the storage directory
            NotFoundError: If the user does not exist
        """
        file_path = self._within_storage(request.file_path)
        if file_path is None:
            logger.warning("document_upload_path_rejected", user_id=request.user_id)
            raise ValidationError(OUTSIDE_STORAGE)

        await self._get_user(db, request.user_id)

        document = Document(
            user_id=request.user_id,
            document_type=request.document_type,
            file_name=request.file_name,
            file_path=str(file_path),
            file_size=request.file_size,
            mime_type=request.mime_type,
            download_token=generate_download_token(),
        )
        db.add(document)
        try:
            await db.commit()
        except Exception:
            await db.rollback()
            raise

        metrics.record_document_issued(DocumentType(request.document_type).value)
        logger.info(
            "document_uploaded",
            document_id=document.id,
            user_id=request.user_id,
            document_type=DocumentType(request.document_type).value,
        )
        return document

    async def generate_certificate(self, user_id: int, db: AsyncSession) -> Document:
        """
        Render and store a membership certificate.

        Raises:
            NotFoundError: If the user does not exist
        """
        user = await self._get_user(db, user_id)
        content = await asyncio.to_thread(self.renderer.render_certificate, user)
        path = self._artifact_path(DocumentType.CERTIFICATE, user_id)
        return await self._store(db, user_id, DocumentType.CERTIFICATE, path, content)

    async def generate_receipt(self, user_id: int, payment_id: int, db: AsyncSession) -> Document:
        """
        Render and store a receipt for a paid payment of this user.

        Raises:
            NotFoundError: If no paid payment with this id belongs to the user
        """
        result = await db.execute(
            select(Payment, User)
            .join(User, Payment.user_id == User.id)
            .where(
                Payment.id == payment_id,
                Payment.user_id == user_id,
                Payment.status == PaymentStatus.PAID,
            )
        )
        row = result.first()
        if row is None:
            logger.warning("receipt_payment_not_paid", user_id=user_id, payment_id=payment_id)
            raise NotFoundError(PAYMENT_NOT_PAID)

        payment, user = row
        content = await asyncio.to_thread(self.renderer.render_receipt, user, payment)
        path = self._artifact_path(DocumentType.RECEIPT, user_id, payment_id)
        return await self._store(db, user_id, DocumentType.RECEIPT, path, content)

    async def list_user_documents(self, user_id: int, db: AsyncSession) -> List[Document]:
        """Documents of one user, newest first."""
        stmt = (
            select(Document)
            .where(Document.user_id == user_id)
            .order_by(Document.created_at.desc(), Document.id.desc())
        )
        result = await db.execute(stmt)
        return list(result.scalars().all())

    async def resolve_download(self, token: str, db: AsyncSession) -> DownloadInfo:
        """
        Resolve a bearer token to the file it grants access to.

        Raises:
            NotFoundError: If no document carries this token
            ForbiddenError: If the recorded path is outside the storage directory
            DocumentFileMissingError: If the recorded file is gone
        """
        result = await db.execute(select(Document).where(Document.download_token == token))
        document = result.scalar_one_or_none()
        if document is None:
            logger.warning("download_token_rejected")
            raise NotFoundError(INVALID_TOKEN)

        file_path = self._within_storage(document.file_path)
        if file_path is None:
            logger.error("document_path_outside_storage", document_id=document.id)
            raise ForbiddenError(DOWNLOAD_REFUSED)

        if not await asyncio.to_thread(os.path.isfile, file_path):
            logger.error(
                "document_file_missing",
                document_id=document.id,
                file_path=document.file_path,
            )
            raise DocumentFileMissingError(FILE_MISSING)

        logger.info("document_download_resolved", document_id=document.id)
        return DownloadInfo(
            file_path=str(file_path),
            file_name=document.file_name,
            mime_type=document.mime_type or DEFAULT_MIME_TYPE,
        )
