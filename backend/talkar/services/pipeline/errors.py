"""
Pipeline error taxonomy.

Provider-level errors live in talkar.services.providers.base; these are
the errors that leave the pipeline and reach callers.
"""

from talkar.models.schemas import StageName


class PipelineError(Exception):
    """Base exception for pipeline errors."""

    retryable = False

    def __init__(self, message: str, stage: StageName | None = None):
        self.message = message
        self.stage = stage
        super().__init__(message)


class ValidationError(PipelineError):
    """Invalid caller input. Never retried."""

    def __init__(self, message: str, field: str | None = None):
        super().__init__(message)
        self.field = field


class NotFoundError(PipelineError):
    """Unknown or expired job id."""

    def __init__(self, job_id: str):
        super().__init__(f"Job not found: {job_id}")
        self.job_id = job_id


class StageExhaustedError(PipelineError):
    """
    Every provider of a stage, including the local fallback, failed.

    Attributes:
        stage: Stage whose chain was exhausted
        cause: Last error raised by the chain
    """

    def __init__(self, stage: StageName, cause: BaseException | None = None):
        detail = f": {cause}" if cause else ""
        super().__init__(f"Stage '{stage.value}' exhausted all providers{detail}", stage)
        self.cause = cause


class JobStateError(PipelineError):
    """Illegal job transition (backwards, skipped stage, terminal job, rewrite)."""

    def __init__(self, job_id: str, message: str):
        super().__init__(f"Job {job_id}: {message}")
        self.job_id = job_id


class JobCancelledError(PipelineError):
    """Raised inside a run when cancellation was requested for its job."""

    def __init__(self, job_id: str, stage: StageName):
        super().__init__(f"Job {job_id} cancelled before {stage.value}", stage)
        self.job_id = job_id
