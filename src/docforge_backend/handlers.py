"""
Job handlers: the work a claimed job actually performs.

Payloads are stored opaquely by the queue and validated here, at the point
of use. A handler loads the referenced document and runs the engine, and
returns a ``JobOutcome``. The worker records the job COMPLETED first and only
then calls ``commit``, which stores the artifact on the document and records
the audit event; a worker whose claim was swept in the meantime discards the
outcome instead. Any exception is left to propagate to the worker, which
fails the job and calls ``on_failure`` so the document status mirrors the
job outcome.
"""

from __future__ import annotations

import logging
from typing import Callable, Dict, Optional, Type, TypeVar

from pydantic import BaseModel, ValidationError

from .audit import AuditRecorder, LoggingAuditRecorder
from .documents import DocumentStore
from .engine.interfaces import DocumentEngine
from .exceptions import DocumentNotFoundError, JobValidationError
from .models import (
    AuditEvent,
    DocumentRecord,
    DocumentStatus,
    GenerateTemplatePayload,
    Job,
    JobOutcome,
    JobType,
    ProcessDocumentPayload,
    RenderOptions,
)
from .s3_service import artifact_key
from .utils import normalize_extension

logger = logging.getLogger(__name__)

PayloadT = TypeVar("PayloadT", bound=BaseModel)
Mirror = Callable[[bytes, str], bool]


def parse_payload(model: Type[PayloadT], job: Job) -> PayloadT:
    """Validate a job payload, reporting problems as ``JobValidationError``."""
    try:
        return model.model_validate(job.payload)
    except ValidationError as exc:
        raise JobValidationError(f"Invalid {job.type} payload: {exc.errors(include_url=False)}") from exc


def payload_document_id(job: Job) -> Optional[str]:
    return job.payload.get("documentId") if isinstance(job.payload, dict) else None


class JobHandlers:
    """
    Dispatch table from job type to handler.

    Args:
        engine: Document engine used for conversion and rendering
        documents: Store the referenced documents live in
        audit: Audit trail; defaults to the application log
        mirror: Optional ``(data, key) -> bool`` upload for rendered artifacts
        s3_prefix: Key prefix passed to ``artifact_key``
    """

    def __init__(
        self,
        engine: DocumentEngine,
        documents: DocumentStore,
        audit: Optional[AuditRecorder] = None,
        mirror: Optional[Mirror] = None,
        s3_prefix: str = "documents",
    ):
        self.engine = engine
        self.documents = documents
        self.audit = audit or LoggingAuditRecorder()
        self.mirror = mirror
        self.s3_prefix = s3_prefix
        self._handlers: Dict[JobType, Callable[[Job], JobOutcome]] = {
            JobType.PROCESS_DOCUMENT: self.process_document,
            JobType.GENERATE_TEMPLATE: self.generate_template,
        }

    def dispatch(self, job: Job) -> JobOutcome:
        """Run the handler for ``job.type`` and return its uncommitted outcome."""
        try:
            job_type = JobType(job.type)
        except ValueError:
            raise JobValidationError(f"Unknown job type: {job.type}") from None
        return self._handlers[job_type](job)

    def process_document(self, job: Job) -> JobOutcome:
        payload = parse_payload(ProcessDocumentPayload, job)
        document = self._load(payload.document_id)
        ext = normalize_extension(payload.ext)

        self.documents.set_status(document.id, DocumentStatus.PROCESSING)
        pdf = self.engine.convert_to_pdf(document.file_data, ext)
        return JobOutcome(
            document_id=document.id,
            artifact=pdf,
            fmt="pdf",
            event=AuditEvent(
                action="DOCUMENT_PROCESSED_ASYNC",
                document_id=document.id,
                job_id=job.id,
                details=f"Converted {ext} to pdf via worker",
            ),
        )

    def generate_template(self, job: Job) -> JobOutcome:
        payload = parse_payload(GenerateTemplatePayload, job)
        document = self._load(payload.document_id)
        fmt = normalize_extension(payload.output_format, fallback="pdf")

        self.documents.set_status(document.id, DocumentStatus.PROCESSING)
        rendered = self.engine.render_template(
            document.file_data,
            payload.data,
            RenderOptions(
                preserve_placeholders=payload.preserve_placeholders,
                output_format=fmt,
                source_format=document.ext,
            ),
        )
        return JobOutcome(
            document_id=document.id,
            artifact=rendered,
            fmt=fmt,
            event=AuditEvent(
                action="TEMPLATE_GENERATED_ASYNC",
                document_id=document.id,
                job_id=job.id,
                details=f"Rendered {len(payload.data)} key(s) to {fmt} via worker",
            ),
        )

    def commit(self, outcome: JobOutcome) -> None:
        """Store the artifact of a completed job, mirror it and audit it."""
        self.documents.save_rendition(outcome.document_id, outcome.artifact, outcome.fmt, DocumentStatus.COMPLETED)
        if self.mirror is not None:
            key = artifact_key(outcome.document_id, outcome.fmt, self.s3_prefix)
            if not self.mirror(outcome.artifact, key):
                logger.warning(f"Artifact for document {outcome.document_id} was not mirrored to {key}")
        self.audit.record(outcome.event)

    def on_failure(self, job: Job, error: str) -> None:
        """Mirror a failed job onto its document and the audit trail."""
        document_id = self._mark_failed(job)
        self.audit.record(AuditEvent(action="JOB_FAILED", document_id=document_id, job_id=job.id, details=error))

    def on_lost_claim(self, job: Job, reason: str) -> None:
        """
        Drop the work of a job that was terminated behind this worker's back.

        The job already carries its final status, so the document is held at
        FAILED in case this worker moved it after the sweep.
        """
        document_id = self._mark_failed(job)
        self.audit.record(
            AuditEvent(action="JOB_RESULT_DISCARDED", document_id=document_id, job_id=job.id, details=reason)
        )

    def _mark_failed(self, job: Job) -> Optional[str]:
        document_id = payload_document_id(job)
        if document_id:
            try:
                self.documents.set_status(document_id, DocumentStatus.FAILED)
            except DocumentNotFoundError:
                logger.warning(f"Job {job.id} references missing document {document_id}")
                document_id = None
        return document_id

    def _load(self, document_id: str) -> DocumentRecord:
        document = self.documents.get(document_id)
        if not document.file_data:
            raise DocumentNotFoundError(f"Document {document_id} not found or empty")
        return document
