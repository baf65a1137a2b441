"""
Error taxonomy for the dispatcher and the rendering pipeline.

Every error raised inside a job handler is caught at the worker boundary and
recorded on the job row, so these classes mostly exist to give the failure a
useful message and to let synchronous callers (preview, generate) tell engine
failures apart from render failures.
"""

from __future__ import annotations


class DocforgeError(Exception):
    """Base class for all errors raised by this package."""


class EngineError(DocforgeError):
    """The document engine could not convert the input (corrupt or unsupported)."""


class RenderError(DocforgeError):
    """Template rendering failed; no partial output is produced."""


class JobValidationError(DocforgeError):
    """Unknown job type or a payload that does not match its type."""


class JobStateError(DocforgeError):
    """A lifecycle transition was requested on a job in the wrong state."""


class DocumentNotFoundError(DocforgeError):
    """The referenced document does not exist or has no content."""


class ClaimConflict(DocforgeError):
    """Another worker holds the claim lock; the candidate row is skipped."""
