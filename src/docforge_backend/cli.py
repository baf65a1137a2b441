"""`docforge` command line: worker process and operator commands."""

from __future__ import annotations

import json
import logging
import signal
from pathlib import Path
from typing import Optional

import typer
from omegaconf import DictConfig

from . import s3_service
from .audit import SqliteAuditLog
from .configuration import load_settings
from .database import JobDatabase
from .documents import SqliteDocumentStore
from .engine.aspose_engine import AsposeEngine
from .engine.interfaces import DocumentEngine
from .exceptions import DocforgeError
from .handlers import JobHandlers
from .job_manager import JobManager
from .models import JobStatus
from .substitution import mapping_skeleton
from .utils import split_extension
from .worker import Worker, sweep_stale

logger = logging.getLogger(__name__)

app = typer.Typer(
    add_completion=False,
    no_args_is_help=True,
    help="Durable document job dispatcher (worker, enqueue, inspect, sweep, scan).",
)


def build_engine(settings: DictConfig) -> DocumentEngine:
    return AsposeEngine(Path(settings.engine.license_dir))


def _settings(ctx: typer.Context) -> DictConfig:
    return ctx.obj["settings"]


def _manager(ctx: typer.Context) -> JobManager:
    settings = _settings(ctx)
    return JobManager.from_settings(settings, build_engine(settings))


def _handlers(settings: DictConfig) -> JobHandlers:
    db_path = Path(settings.database.path)
    mirror = None
    if settings.storage.mirror and s3_service.is_s3_configured():
        mirror = s3_service.upload_artifact
    return JobHandlers(
        engine=build_engine(settings),
        documents=SqliteDocumentStore(db_path),
        audit=SqliteAuditLog(db_path),
        mirror=mirror,
        s3_prefix=settings.storage.s3_prefix,
    )


def _echo_json(value) -> None:
    typer.echo(json.dumps(value, indent=2, default=str))


@app.callback()
def _main(
    ctx: typer.Context,
    config: Optional[Path] = typer.Option(None, "--config", "-c", help="YAML file layered over the defaults."),
    log_level: str = typer.Option("INFO", "--log-level", help="Logging level (DEBUG, INFO, WARNING, ...)."),
) -> None:
    logging.basicConfig(
        level=getattr(logging, log_level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    ctx.obj = {"settings": load_settings(config_file=config)}


@app.command(name="worker", help="Poll the queue and process jobs until stopped.")
def worker(
    ctx: typer.Context,
    max_jobs: Optional[int] = typer.Option(None, "--max-jobs", help="Exit after this many jobs."),
    worker_id: Optional[str] = typer.Option(None, "--worker-id", help="Identifier recorded on claimed jobs."),
) -> None:
    settings = _settings(ctx)
    loop = Worker(
        JobDatabase(Path(settings.database.path), busy_timeout=settings.database.busy_timeout),
        _handlers(settings),
        poll_interval=settings.worker.poll_interval,
        error_backoff_factor=settings.worker.error_backoff_factor,
        stale_after=settings.worker.stale_after,
        sweep_interval=settings.worker.sweep_interval,
        worker_id=worker_id,
    )

    def _shutdown(signum, _frame) -> None:
        logger.info(f"Received signal {signum}; stopping after the current job")
        loop.stop()

    previous = {sig: signal.signal(sig, _shutdown) for sig in (signal.SIGTERM, signal.SIGINT)}
    try:
        processed = loop.run(max_jobs=max_jobs)
    finally:
        for sig, handler in previous.items():
            signal.signal(sig, handler)
    typer.echo(f"Processed {processed} job(s).")


@app.command(name="upload", help="Store a document file and print its id.")
def upload(ctx: typer.Context, path: Path = typer.Argument(..., exists=True, dir_okay=False)) -> None:
    documents = SqliteDocumentStore(Path(_settings(ctx).database.path))
    record = documents.create(path.name, path.read_bytes())
    typer.echo(record.id)


@app.command(name="enqueue", help="Queue a conversion (default) or a template generation job.")
def enqueue(
    ctx: typer.Context,
    document_id: str = typer.Argument(..., help="Document to process."),
    data: Optional[Path] = typer.Option(
        None, "--data", exists=True, dir_okay=False, help="JSON data file; queues a template generation."
    ),
    ext: Optional[str] = typer.Option(None, "--ext", help="Source format for conversion jobs."),
    preserve: bool = typer.Option(False, "--preserve", help="Keep unresolved placeholders visible."),
    output_format: str = typer.Option("pdf", "--format", help="Output format for generation jobs."),
) -> None:
    manager = _manager(ctx)
    try:
        if data is None:
            job_id = manager.enqueue_processing(document_id, ext=ext)
        else:
            values = json.loads(data.read_text(encoding="utf-8"))
            job_id = manager.enqueue_generation(document_id, values, preserve, output_format)
    except DocforgeError as exc:
        typer.echo(f"error: {exc}", err=True)
        raise typer.Exit(code=1)
    typer.echo(job_id)


@app.command(name="job", help="Show one job.")
def job(ctx: typer.Context, job_id: str = typer.Argument(...)) -> None:
    found = _manager(ctx).get_job(job_id)
    if found is None:
        typer.echo(f"error: job {job_id} not found", err=True)
        raise typer.Exit(code=1)
    _echo_json(found)


@app.command(name="jobs", help="List jobs, newest first.")
def jobs(
    ctx: typer.Context,
    status: Optional[JobStatus] = typer.Option(None, "--status", case_sensitive=False),
    limit: int = typer.Option(20, "--limit", min=1),
) -> None:
    _echo_json(_manager(ctx).list_jobs(status=status, limit=limit))


@app.command(name="sweep", help="Fail PROCESSING jobs whose claim has expired.")
def sweep(
    ctx: typer.Context,
    older_than: Optional[float] = typer.Option(None, "--older-than", help="Seconds; defaults to worker.stale_after."),
) -> None:
    settings = _settings(ctx)
    threshold = older_than if older_than is not None else settings.worker.stale_after
    if threshold <= 0:
        typer.echo("error: --older-than must be positive", err=True)
        raise typer.Exit(code=1)
    jobs = JobDatabase(Path(settings.database.path), busy_timeout=settings.database.busy_timeout)
    failed = sweep_stale(jobs, _handlers(settings), threshold)
    typer.echo(f"Failed {len(failed)} stale job(s).")


@app.command(name="scan", help="Print the placeholder mapping skeleton of a template file.")
def scan(ctx: typer.Context, path: Path = typer.Argument(..., exists=True, dir_okay=False)) -> None:
    _, ext = split_extension(path.name)
    try:
        fields = build_engine(_settings(ctx)).scan_fields(path.read_bytes(), ext or "docx")
    except DocforgeError as exc:
        typer.echo(f"error: {exc}", err=True)
        raise typer.Exit(code=1)
    _echo_json({"fields": sorted(fields), "mapping": mapping_skeleton(fields)})


def main() -> None:
    app()


__all__ = ["app", "main"]
