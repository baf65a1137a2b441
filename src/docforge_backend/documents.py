"""
Document persistence.

Documents are owned by the surrounding application; the dispatcher only needs
to load the uploaded bytes, store a rendered artifact and mirror the job
outcome in the document status. ``DocumentStore`` is that contract and
``SqliteDocumentStore`` keeps the records next to the job queue.
"""

from __future__ import annotations

import json
import sqlite3
from pathlib import Path
from typing import Any, Dict, Optional, Protocol
from uuid import uuid4

from .database import _deserialize_datetime, _ensure_db_dir, _now, _serialize_datetime, connect
from .exceptions import DocumentNotFoundError
from .models import DocumentRecord, DocumentStatus
from .utils import split_extension


class DocumentStore(Protocol):
    def get(self, document_id: str) -> DocumentRecord:
        ...

    def save_rendition(
        self,
        document_id: str,
        data: bytes,
        fmt: str,
        status: DocumentStatus = DocumentStatus.COMPLETED,
    ) -> None:
        ...

    def set_status(self, document_id: str, status: DocumentStatus) -> None:
        ...

    def set_content(self, document_id: str, file_data: bytes) -> None:
        ...

    def set_mapping(self, document_id: str, mapping: Dict[str, Any]) -> None:
        ...


class SqliteDocumentStore:
    """Document records in the same SQLite file as the job queue."""

    def __init__(self, db_path: Path):
        self.db_path = Path(db_path)
        _ensure_db_dir(self.db_path)
        with connect(self.db_path) as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS documents (
                    id TEXT PRIMARY KEY,
                    name TEXT NOT NULL,
                    ext TEXT NOT NULL,
                    status TEXT NOT NULL,
                    file_data BLOB,
                    mapping TEXT,
                    rendered_data BLOB,
                    rendered_format TEXT,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                )
            """)

    def create(
        self,
        name: str,
        file_data: bytes,
        mapping: Optional[Dict[str, Any]] = None,
        status: DocumentStatus = DocumentStatus.PENDING,
    ) -> DocumentRecord:
        """Store an uploaded document and return its record."""
        document_id = uuid4().hex
        _, ext = split_extension(name)
        now = _serialize_datetime(_now())
        with connect(self.db_path) as conn:
            conn.execute(
                """
                INSERT INTO documents (id, name, ext, status, file_data, mapping, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (document_id, name, ext or "docx", status.value, file_data, json.dumps(mapping or {}), now, now),
            )
        return self.get(document_id)

    def get(self, document_id: str) -> DocumentRecord:
        with connect(self.db_path) as conn:
            row = conn.execute("SELECT * FROM documents WHERE id = ?", (document_id,)).fetchone()
        if row is None:
            raise DocumentNotFoundError(f"Document {document_id} not found")
        return self._row_to_record(row)

    def save_rendition(
        self,
        document_id: str,
        data: bytes,
        fmt: str,
        status: DocumentStatus = DocumentStatus.COMPLETED,
    ) -> None:
        self._update(document_id, rendered_data=data, rendered_format=fmt, status=status.value)

    def set_status(self, document_id: str, status: DocumentStatus) -> None:
        self._update(document_id, status=status.value)

    def set_mapping(self, document_id: str, mapping: Dict[str, Any]) -> None:
        self._update(document_id, mapping=json.dumps(mapping))

    def set_content(self, document_id: str, file_data: bytes) -> None:
        """Replace the stored source bytes, e.g. after an editor save."""
        self._update(document_id, file_data=file_data)

    def _update(self, document_id: str, **fields: Any) -> None:
        assignments = ", ".join(f"{name} = ?" for name in fields)
        values = [*fields.values(), _serialize_datetime(_now()), document_id]
        with connect(self.db_path) as conn:
            cursor = conn.execute(
                f"UPDATE documents SET {assignments}, updated_at = ? WHERE id = ?",
                values,
            )
            if cursor.rowcount == 0:
                raise DocumentNotFoundError(f"Document {document_id} not found")

    @staticmethod
    def _row_to_record(row: sqlite3.Row) -> DocumentRecord:
        return DocumentRecord(
            id=row["id"],
            name=row["name"],
            ext=row["ext"],
            status=DocumentStatus(row["status"]),
            file_data=row["file_data"],
            mapping=json.loads(row["mapping"] or "{}"),
            rendered_data=row["rendered_data"],
            rendered_format=row["rendered_format"],
            created_at=_deserialize_datetime(row["created_at"]),
            updated_at=_deserialize_datetime(row["updated_at"]),
        )
