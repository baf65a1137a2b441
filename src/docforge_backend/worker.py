"""
Polling worker loop.

A worker claims one job at a time, runs its handler synchronously and writes
the terminal status. Any number of worker processes may share one database;
the atomic claim in ``JobDatabase`` is the only coordination between them.
"""

from __future__ import annotations

import logging
import os
import socket
import threading
import time
from typing import List, Optional

from .database import JobDatabase
from .exceptions import JobStateError
from .handlers import JobHandlers
from .models import Job

logger = logging.getLogger(__name__)

DEFAULT_POLL_INTERVAL = 1.0
DEFAULT_ERROR_BACKOFF_FACTOR = 5


def default_worker_id() -> str:
    return f"{socket.gethostname()}:{os.getpid()}"


def sweep_stale(jobs: JobDatabase, handlers: JobHandlers, older_than: float) -> List[str]:
    """
    Fail expired claims and mirror each failure onto its document.

    Returns:
        IDs of the jobs that were failed
    """
    failed = jobs.fail_stale(older_than)
    for job_id in failed:
        job = jobs.get_job(job_id)
        if job is not None:
            handlers.on_failure(job, job.error or "Claim lease expired")
    return failed


class Worker:
    """
    Claim, execute, record; repeat until stopped.

    Args:
        jobs: Shared job queue
        handlers: Job type dispatch
        poll_interval: Seconds to sleep when the queue is empty
        error_backoff_factor: Multiplier on ``poll_interval`` after a loop error
        stale_after: Seconds before an untouched PROCESSING job is failed; 0 disables the sweep
        sweep_interval: Minimum seconds between stale sweeps
        worker_id: Recorded on claimed jobs
        stop_event: Set to end the loop between jobs
    """

    def __init__(
        self,
        jobs: JobDatabase,
        handlers: JobHandlers,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
        error_backoff_factor: float = DEFAULT_ERROR_BACKOFF_FACTOR,
        stale_after: float = 0,
        sweep_interval: float = 60.0,
        worker_id: Optional[str] = None,
        stop_event: Optional[threading.Event] = None,
    ):
        self.jobs = jobs
        self.handlers = handlers
        self.poll_interval = poll_interval
        self.error_backoff_factor = error_backoff_factor
        self.stale_after = stale_after
        self.sweep_interval = sweep_interval
        self.worker_id = worker_id or default_worker_id()
        self.stop_event = stop_event or threading.Event()
        self._last_sweep: Optional[float] = None

    def stop(self) -> None:
        self.stop_event.set()

    def run_once(self) -> bool:
        """
        Claim and execute at most one job.

        Returns:
            True if a job was processed, False if the queue was empty
        """
        job = self.jobs.claim_next(self.worker_id)
        if job is None:
            return False

        logger.info(f"Processing job {job.id} ({job.type}), attempt {job.attempts}")
        try:
            outcome = self.handlers.dispatch(job)
        except Exception as exc:
            error = str(exc) or exc.__class__.__name__
            logger.error(f"Job {job.id} failed: {error}", exc_info=True)
            if self._finish(job, error=error):
                self.handlers.on_failure(job, error)
            return True

        if self._finish(job, result=outcome.result):
            self.handlers.commit(outcome)
            logger.info(f"Job {job.id} completed")
        return True

    def _finish(self, job: Job, result: Optional[dict] = None, error: Optional[str] = None) -> bool:
        """Record the terminal status; False if this worker no longer owns the job."""
        try:
            if error is None:
                self.jobs.complete(job.id, result, worker_id=self.worker_id)
            else:
                self.jobs.fail(job.id, error, worker_id=self.worker_id)
        except JobStateError as exc:
            # A stale sweep terminated the job while the handler ran.
            logger.warning(f"Discarding outcome of job {job.id}: {exc}")
            self.handlers.on_lost_claim(job, str(exc))
            return False
        return True

    def sweep(self) -> None:
        """Fail expired claims if the sweep is enabled and due."""
        if self.stale_after <= 0:
            return
        now = time.monotonic()
        if self._last_sweep is not None and now - self._last_sweep < self.sweep_interval:
            return
        self._last_sweep = now
        sweep_stale(self.jobs, self.handlers, self.stale_after)

    def run(self, max_jobs: Optional[int] = None) -> int:
        """
        Poll until stopped.

        Args:
            max_jobs: Return after this many jobs (None runs until ``stop``)

        Returns:
            Number of jobs processed
        """
        logger.info(f"Worker {self.worker_id} started. Waiting for jobs...")
        processed = 0
        while not self.stop_event.is_set():
            if max_jobs is not None and processed >= max_jobs:
                break
            try:
                self.sweep()
                if self.run_once():
                    processed += 1
                    continue
                self.stop_event.wait(self.poll_interval)
            except Exception:
                logger.exception("Worker loop error")
                self.stop_event.wait(self.poll_interval * self.error_backoff_factor)
        logger.info(f"Worker {self.worker_id} stopped after {processed} job(s)")
        return processed
