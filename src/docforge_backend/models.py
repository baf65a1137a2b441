from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class JobType(str, Enum):
    PROCESS_DOCUMENT = "PROCESS_DOCUMENT"
    GENERATE_TEMPLATE = "GENERATE_TEMPLATE"


class JobStatus(str, Enum):
    PENDING = "PENDING"
    PROCESSING = "PROCESSING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


class DocumentStatus(str, Enum):
    PENDING = "PENDING"
    PROCESSING = "PROCESSING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


class Job(BaseModel):
    """A queued unit of work as stored in the jobs table."""

    model_config = ConfigDict(populate_by_name=True)

    id: str
    type: str
    status: JobStatus
    payload: Dict[str, Any] = Field(default_factory=dict)
    result: Optional[Dict[str, Any]] = None
    error: Optional[str] = None
    attempts: int = 0
    created_at: datetime = Field(alias="createdAt")
    updated_at: datetime = Field(alias="updatedAt")
    claimed_at: Optional[datetime] = None
    worker_id: Optional[str] = None

    def to_external(self) -> Dict[str, Any]:
        """Shape exposed to inspecting collaborators."""
        return self.model_dump(
            mode="json",
            by_alias=True,
            exclude={"attempts", "claimed_at", "worker_id"},
        )


class ProcessDocumentPayload(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    document_id: str = Field(alias="documentId", min_length=1)
    ext: str = "docx"


class GenerateTemplatePayload(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    document_id: str = Field(alias="documentId", min_length=1)
    data: Dict[str, Any] = Field(default_factory=dict)
    preserve_placeholders: bool = Field(default=False, alias="preservePlaceholders")
    output_format: str = Field(default="pdf", alias="outputFormat")


class RenderOptions(BaseModel):
    preserve_placeholders: bool = False
    output_format: str = "pdf"
    source_format: str = "docx"


class DocumentRecord(BaseModel):
    id: str
    name: str
    ext: str
    status: DocumentStatus
    file_data: Optional[bytes] = None
    mapping: Dict[str, Any] = Field(default_factory=dict)
    rendered_data: Optional[bytes] = None
    rendered_format: Optional[str] = None
    created_at: datetime
    updated_at: datetime


class AuditEvent(BaseModel):
    action: str
    document_id: Optional[str] = None
    job_id: Optional[str] = None
    details: Optional[str] = None
    timestamp: datetime = Field(default_factory=utcnow)


class JobOutcome(BaseModel):
    """A handler's finished work, persisted only once the job is recorded COMPLETED."""

    document_id: str
    artifact: bytes
    fmt: str
    event: AuditEvent
    result: Dict[str, Any] = Field(default_factory=lambda: {"success": True})
