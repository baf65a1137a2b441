"""
Docforge Backend - durable document job dispatcher and template renderer

This package turns uploaded office documents plus JSON data into rendered
artifacts (typically PDF). It provides:

- A SQLite-backed job queue with an atomic, exactly-once claim
- Polling worker processes that run conversion and generation jobs
- A four-phase template substitution pipeline (images, tag sanitization,
  double-brace normalization, structured report resolution)
- Placeholder scanning for newly uploaded templates
- Optional S3 mirroring of rendered artifacts

Key Components:
    - database: Job queue and claim protocol
    - worker: Poll/claim/execute loop
    - handlers: Per job type work and document status mirroring
    - engine: Document engine adapter (Aspose.Words / Aspose.Cells) and the document graph
    - substitution: Placeholder resolution pipeline and field scanner
    - job_manager: Caller-facing facade for enqueueing, preview and generation
    - configuration: Config loading and merging logic

Usage:
    Start a worker with:
        docforge worker

    Or, without installing the console script:
        python -m docforge_backend worker

Design Principles:
    - The claim is the only synchronization primitive between workers
    - Job status only moves forward; a resubmission is a new job
    - Substitution passes are pure decisions applied over an abstract document graph
"""
