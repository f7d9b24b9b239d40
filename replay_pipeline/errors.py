# replay_pipeline/errors.py
"""
Failure taxonomy for the analysis pipeline.

Each error carries a ``kind`` that is persisted on the job row next to the
human-readable message, so status readers can tell a timeout from bad input.
"""


class PipelineError(Exception):
    kind = "internal"


class TransientDependencyError(PipelineError):
    """Parser/network/service unavailable. Retried through the queue backoff."""

    kind = "transient"


class AnalysisTimeoutError(TransientDependencyError, TimeoutError):
    """A bounded wait expired (parser call or stuck-processing detection)."""

    kind = "timeout"


class PermanentInputError(PipelineError):
    """Malformed or unreadable job input. Fails the job without retrying."""

    kind = "input"


class PersistenceError(PipelineError):
    """Database or broker failure while reading or writing job state."""

    kind = "persistence"
