"""
Caller-facing orchestration for document jobs.

This module is the seam between the surrounding application and the core:
- Enqueueing document conversion and template generation jobs
- Inspecting jobs in their external shape
- Synchronous template scanning, preview and generation
- The HTML round trip used by the document editor

The JobManager class never executes queued work itself; workers do. The
synchronous paths call the engine directly and skip the queue.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, Dict, List, Optional

from omegaconf import DictConfig

from . import s3_service
from .audit import AuditRecorder, LoggingAuditRecorder, SqliteAuditLog
from .database import JobDatabase
from .documents import DocumentStore, SqliteDocumentStore
from .engine.interfaces import DocumentEngine
from .exceptions import DocumentNotFoundError, JobValidationError
from .models import (
    AuditEvent,
    DocumentStatus,
    GenerateTemplatePayload,
    JobStatus,
    JobType,
    ProcessDocumentPayload,
    RenderOptions,
)
from .substitution import mapping_skeleton


class JobManager:
    """
    Central coordinator for queueing and synchronous document operations.

    Attributes:
        jobs: The durable job queue
        documents: Document records referenced by job payloads
        engine: Document engine for the synchronous paths
        audit: Audit trail for operations performed here
    """

    def __init__(
        self,
        jobs: JobDatabase,
        documents: DocumentStore,
        engine: DocumentEngine,
        audit: Optional[AuditRecorder] = None,
        s3_prefix: str = "documents",
        presign_expiration: int = 3600,
    ) -> None:
        self.jobs = jobs
        self.documents = documents
        self.engine = engine
        self.audit = audit or LoggingAuditRecorder()
        self.s3_prefix = s3_prefix
        self.presign_expiration = presign_expiration

    @classmethod
    def from_settings(cls, settings: DictConfig, engine: DocumentEngine) -> "JobManager":
        """Wire the SQLite stores named by ``settings.database``."""
        db_path = Path(settings.database.path)
        return cls(
            jobs=JobDatabase(db_path, busy_timeout=settings.database.busy_timeout),
            documents=SqliteDocumentStore(db_path),
            engine=engine,
            audit=SqliteAuditLog(db_path),
            s3_prefix=settings.storage.s3_prefix,
            presign_expiration=settings.storage.presign_expiration,
        )

    def enqueue_processing(self, document_id: str, ext: Optional[str] = None) -> str:
        """
        Queue a PDF conversion of a stored document.

        Args:
            document_id: The document to convert
            ext: Source format; defaults to the extension recorded on the document

        Returns:
            The new job ID
        """
        if ext is None:
            ext = self.documents.get(document_id).ext
        payload = _payload(ProcessDocumentPayload, documentId=document_id, ext=ext)
        self.documents.set_status(document_id, DocumentStatus.PENDING)
        return self.jobs.enqueue(JobType.PROCESS_DOCUMENT, payload)

    def enqueue_generation(
        self,
        document_id: str,
        data: Dict[str, Any],
        preserve_placeholders: bool = False,
        output_format: str = "pdf",
    ) -> str:
        """Queue a template render of ``document_id`` with ``data``."""
        payload = _payload(
            GenerateTemplatePayload,
            documentId=document_id,
            data=data,
            preservePlaceholders=preserve_placeholders,
            outputFormat=output_format,
        )
        self.documents.set_status(document_id, DocumentStatus.PENDING)
        return self.jobs.enqueue(JobType.GENERATE_TEMPLATE, payload)

    def get_job(self, job_id: str) -> Optional[Dict[str, Any]]:
        job = self.jobs.get_job(job_id)
        return job.to_external() if job else None

    def list_jobs(self, status: Optional[JobStatus] = None, limit: int = 100) -> List[Dict[str, Any]]:
        return [job.to_external() for job in self.jobs.list_jobs(status=status, limit=limit)]

    def scan_template(self, document_id: str) -> Dict[str, Any]:
        """
        Discover a template's placeholders and record them in its mapping.

        Keys already mapped keep their values; newly found keys get a
        ``[key]`` marker so they stand out in a preview.

        Returns:
            The updated mapping
        """
        document = self.documents.get(document_id)
        if not document.file_data:
            raise DocumentNotFoundError(f"Document {document_id} has no content")

        fields = self.engine.scan_fields(document.file_data, document.ext)
        mapping = {**mapping_skeleton(fields), **document.mapping}
        self.documents.set_mapping(document_id, mapping)
        self.audit.record(
            AuditEvent(action="TEMPLATE_SCANNED", document_id=document_id, details=f"{len(fields)} field(s) found")
        )
        return mapping

    def preview_template(self, document_id: str, data: Optional[Dict[str, Any]] = None) -> bytes:
        """
        Render an interactive preview of a template.

        Unresolved placeholders stay visible. ``data`` defaults to the
        document's saved mapping. The preview is returned, never stored:
        the document status and artifact belong to its jobs.
        """
        document = self.documents.get(document_id)
        if not document.file_data:
            raise DocumentNotFoundError(f"Document {document_id} has no content")

        values = document.mapping if data is None else data
        rendered = self.engine.render_template(
            document.file_data,
            values,
            RenderOptions(preserve_placeholders=True, output_format="pdf", source_format=document.ext),
        )
        self.audit.record(AuditEvent(action="TEMPLATE_PREVIEWED", document_id=document_id))
        return rendered

    def generate(self, document_id: str, data: Dict[str, Any], output_format: str = "pdf") -> bytes:
        """Render ``document_id`` with ``data`` and return the bytes without storing them."""
        document = self.documents.get(document_id)
        if not document.file_data:
            raise DocumentNotFoundError(f"Document {document_id} has no content")

        rendered = self.engine.render_template(
            document.file_data,
            data,
            RenderOptions(output_format=output_format, source_format=document.ext),
        )
        self.audit.record(
            AuditEvent(action="DOCUMENT_GENERATED", document_id=document_id, details=f"{output_format}, {len(rendered)} bytes")
        )
        return rendered

    def document_html(self, document_id: str) -> str:
        """Editable HTML of a stored document."""
        document = self.documents.get(document_id)
        if not document.file_data:
            raise DocumentNotFoundError(f"Document {document_id} has no content")
        return self.engine.convert_to_html(document.file_data, document.ext)

    def save_document_html(self, document_id: str, html: str) -> None:
        """
        Replace a document's source with edited HTML, converted back to its format.

        The existing mapping and any rendered artifact are left alone.
        """
        document = self.documents.get(document_id)
        content = self.engine.convert_from_html(html, document.ext)
        self.documents.set_content(document_id, content)
        self.audit.record(
            AuditEvent(action="DOCUMENT_CONTENT_SAVED", document_id=document_id, details=f"{document.ext}, {len(content)} bytes")
        )

    def artifact_url(self, document_id: str, fmt: str = "pdf") -> Optional[str]:
        """Presigned download URL of a mirrored artifact, or None without S3."""
        key = s3_service.artifact_key(document_id, fmt, self.s3_prefix)
        return s3_service.generate_presigned_url(key, expiration=self.presign_expiration)


def _payload(model, **fields: Any) -> Dict[str, Any]:
    try:
        return model.model_validate(fields).model_dump(by_alias=True)
    except ValueError as exc:
        raise JobValidationError(str(exc)) from exc
