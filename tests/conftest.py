"""
Pytest configuration and fixtures for Docforge Backend tests.
"""

import os

# Keep tests off any real bucket configured in the developer's .env
os.environ["S3_BUCKET_NAME"] = ""

import pytest

from docforge_backend.audit import SqliteAuditLog
from docforge_backend.database import JobDatabase
from docforge_backend.documents import SqliteDocumentStore
from docforge_backend.engine.graph import MemoryDocument
from docforge_backend.exceptions import EngineError
from docforge_backend.handlers import JobHandlers
from docforge_backend.job_manager import JobManager
from docforge_backend.models import RenderOptions
from docforge_backend.substitution import render_document, scan_text

# 1x1 transparent PNG
PNG_BASE64 = "iVBORw0KGgoAAAANSUhEUgAAAAEAAAABCAYAAAAfFcSJAAAADUlEQVR42mNkYPhfDwAChwGA60e6kgAAAABJRU5ErkJggg=="
PNG_DATA_URI = f"data:image/png;base64,{PNG_BASE64}"


class FakeEngine:
    """DocumentEngine that renders plain text in process and fakes conversion."""

    def __init__(self):
        self.licensed = []
        self.conversions = []
        self.renders = []

    def ensure_licensed(self, kind):
        self.licensed.append(kind)

    def convert_to_pdf(self, data, source_format):
        if data.startswith(b"corrupt"):
            raise EngineError(f"Could not convert {source_format} document: corrupt input")
        self.conversions.append(source_format)
        return b"%PDF-1.4 " + data

    def convert_to_html(self, data, source_format):
        return f"<p>{data.decode('utf-8')}</p>"

    def convert_from_html(self, html, target_format="docx"):
        return html.removeprefix("<p>").removesuffix("</p>").encode("utf-8")

    def render_template(self, data, values, options=None):
        options = options or RenderOptions()
        self.renders.append(options)
        graph = MemoryDocument.load(data)
        render_document(graph, values, options.preserve_placeholders)
        return graph.save("txt")

    def scan_fields(self, data, source_format="docx"):
        return scan_text(data.decode("utf-8"))


@pytest.fixture
def db_path(tmp_path):
    """Path of a fresh SQLite database file."""
    return tmp_path / "data" / "docforge.db"


@pytest.fixture
def job_db(db_path):
    return JobDatabase(db_path)


@pytest.fixture
def documents(db_path):
    return SqliteDocumentStore(db_path)


@pytest.fixture
def audit_log(db_path):
    return SqliteAuditLog(db_path)


@pytest.fixture
def engine():
    return FakeEngine()


@pytest.fixture
def handlers(engine, documents, audit_log):
    return JobHandlers(engine, documents, audit_log)


@pytest.fixture
def manager(job_db, documents, engine, audit_log):
    return JobManager(job_db, documents, engine, audit_log)


@pytest.fixture
def png_data_uri():
    return PNG_DATA_URI
