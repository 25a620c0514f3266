"""
Job store for pipeline runs.

Holds the state of in-flight and recently finished jobs in memory and
broadcasts progress updates to subscribers (WebSocket clients).
"""

import asyncio
import logging
import uuid
from datetime import datetime, timedelta
from typing import Any, Callable

from talkar.models.schemas import (
    STAGE_ORDER,
    JobError,
    PipelineJob,
    PipelineMode,
    PipelineStage,
    ProgressMessage,
    StageName,
)
from talkar.services.pipeline.errors import JobStateError
from talkar.services.pipeline.progress_manager import ProgressManager

logger = logging.getLogger(__name__)

# Output fields that may be written exactly once
WRITE_ONCE_FIELDS = ("script", "audio_ref", "video_ref")


class JobStore:
    """
    In-memory store of pipeline jobs with progress broadcasting.

    Jobs are immutable snapshots: every transition stores a new copy,
    so a reader always sees a whole old or new job. Transitions are
    monotonic (pending -> script -> speech -> lipsync -> completed),
    ``failed`` is reachable from any non-terminal stage, and terminal
    jobs never change again. Terminal jobs older than the retention
    window are purged and then reported as not found.

    Example:
        store = JobStore(retention_seconds=3600)
        job = store.create("sunrich-001")

        queue = store.subscribe(job.id)
        await store.advance(job.id, PipelineStage.SCRIPT, script="Hi there!")
        message = await queue.get()  # {"stage": "script", "progress": 20.0, ...}
    """

    def __init__(
        self,
        retention_seconds: float = 3600,
        progress_manager: ProgressManager | None = None,
        clock: Callable[[], datetime] = datetime.now,
    ):
        """
        Initialize job store.

        Args:
            retention_seconds: How long terminal jobs remain readable
            progress_manager: Progress calculator (default instance if None)
            clock: Wall clock (injectable for tests)
        """
        self.retention = timedelta(seconds=retention_seconds)
        self.progress = progress_manager or ProgressManager()
        self._clock = clock
        self._jobs: dict[str, PipelineJob] = {}
        self._subscribers: dict[str, list[asyncio.Queue]] = {}

    def create(
        self, subject_ref: str, mode: PipelineMode = PipelineMode.ASYNC
    ) -> PipelineJob:
        """
        Create a pending job.

        Expired jobs are purged first, so the store stays bounded whichever
        entry point creates jobs.

        Args:
            subject_ref: Subject the job generates content for
            mode: How the run was started

        Returns:
            Created PipelineJob with unique ID
        """
        self.purge_expired()
        now = self._clock()
        job = PipelineJob(
            id=uuid.uuid4().hex,
            subject_ref=subject_ref,
            mode=mode,
            created_at=now,
            updated_at=now,
        )
        self._jobs[job.id] = job
        logger.info(f"Created job for {subject_ref} ({mode.value})", extra={"job_id": job.id})
        return job

    def get(self, job_id: str) -> PipelineJob | None:
        """
        Get job by ID.

        Args:
            job_id: Job identifier

        Returns:
            PipelineJob or None if unknown or expired
        """
        job = self._jobs.get(job_id)
        if job is None:
            return None
        if self._is_expired(job, self._clock()):
            self._remove(job_id)
            return None
        return job

    def list_jobs(self) -> list[PipelineJob]:
        """List all live jobs, newest first."""
        now = self._clock()
        jobs = [j for j in list(self._jobs.values()) if not self._is_expired(j, now)]
        return sorted(jobs, key=lambda j: j.created_at, reverse=True)

    async def advance(self, job_id: str, stage: PipelineStage, **fields: Any) -> PipelineJob:
        """
        Move a job to the next stage and store its outputs.

        Args:
            job_id: Job identifier
            stage: Next stage (must directly follow the current one)
            **fields: Outputs produced by the stage (script, audio_ref, ...)

        Returns:
            Updated job

        Raises:
            JobStateError: On unknown job, terminal job, non-monotonic
                transition or an attempt to rewrite an output
        """
        job = self._require_active(job_id)

        if stage in (PipelineStage.FAILED, PipelineStage.PENDING):
            raise JobStateError(job_id, f"cannot advance to {stage.value}")

        current = STAGE_ORDER.index(job.stage)
        target = STAGE_ORDER.index(stage)
        if target != current + 1:
            raise JobStateError(
                job_id, f"illegal transition {job.stage.value} -> {stage.value}"
            )

        for name in WRITE_ONCE_FIELDS:
            if name in fields and getattr(job, name) is not None:
                raise JobStateError(job_id, f"{name} is already set")

        updated = self._replace(
            job,
            stage=stage,
            progress=self.progress.calculate_progress(stage),
            **fields,
        )

        logger.debug(f"Job {job_id}: {job.stage.value} -> {stage.value}")
        await self._broadcast(updated, self.progress.get_message(stage))
        return updated

    async def complete(self, job_id: str) -> PipelineJob:
        """Finalize a job whose lip-sync stage is done."""
        job = await self.advance(job_id, PipelineStage.COMPLETED)
        logger.info(f"Job completed: {job.video_ref}", extra={"job_id": job_id})
        return job

    async def fail(
        self,
        job_id: str,
        stage: StageName,
        message: str,
        code: str = "stage_exhausted",
    ) -> PipelineJob | None:
        """
        Mark job as failed.

        Args:
            job_id: Job identifier
            stage: Stage in which the failure originated
            message: Error message
            code: Machine-readable reason

        Returns:
            Failed job, or None if the job is unknown or already terminal
        """
        job = self.get(job_id)
        if job is None or job.is_terminal:
            logger.warning(f"Job {job_id} not failable (missing or terminal)")
            return None

        updated = self._replace(
            job,
            stage=PipelineStage.FAILED,
            error=JobError(stage=stage, message=message, code=code),
        )

        logger.error(f"Job failed at {stage.value}: {message}", extra={"job_id": job_id})
        await self._broadcast(updated, message)
        return updated

    def mark_cached(self, job_id: str, stage: StageName) -> None:
        """Record that a stage was served from cache."""
        job = self.get(job_id)
        if job is None or job.is_terminal or stage in job.cached_stages:
            return
        self._replace(job, cached_stages=[*job.cached_stages, stage])

    def request_cancel(self, job_id: str) -> PipelineJob | None:
        """
        Request best-effort cancellation.

        The running pipeline checks the flag before each stage. Terminal
        jobs are returned unchanged.

        Args:
            job_id: Job identifier

        Returns:
            Job after the request, or None if not found
        """
        job = self.get(job_id)
        if job is None:
            return None
        if job.is_terminal or job.cancel_requested:
            return job

        logger.info("Cancellation requested", extra={"job_id": job_id})
        return self._replace(job, cancel_requested=True)

    def purge_expired(self) -> int:
        """
        Drop terminal jobs older than the retention window.

        Returns:
            Number of purged jobs
        """
        now = self._clock()
        expired = [
            job_id
            for job_id, job in list(self._jobs.items())
            if self._is_expired(job, now)
        ]
        for job_id in expired:
            self._remove(job_id)
        if expired:
            logger.info(f"Purged {len(expired)} expired jobs")
        return len(expired)

    def subscribe(self, job_id: str) -> asyncio.Queue:
        """
        Subscribe to job progress updates.

        Args:
            job_id: Job identifier

        Returns:
            Queue that will receive progress messages
        """
        queue: asyncio.Queue = asyncio.Queue()
        self._subscribers.setdefault(job_id, []).append(queue)
        logger.debug(f"Client subscribed to job {job_id}")
        return queue

    def unsubscribe(self, job_id: str, queue: asyncio.Queue) -> None:
        """
        Unsubscribe from job progress updates.

        Args:
            job_id: Job identifier
            queue: Queue to remove
        """
        queues = self._subscribers.get(job_id)
        if queues and queue in queues:
            queues.remove(queue)
            logger.debug(f"Client unsubscribed from job {job_id}")
        if not queues:
            self._subscribers.pop(job_id, None)

    def snapshot_message(self, job: PipelineJob) -> dict:
        """Progress message describing the current state of a job."""
        message = job.error.message if job.error else self.progress.get_message(job.stage)
        return self._message(job, message)

    def _require_active(self, job_id: str) -> PipelineJob:
        job = self.get(job_id)
        if job is None:
            raise JobStateError(job_id, "not found")
        if job.is_terminal:
            raise JobStateError(job_id, f"is terminal ({job.stage.value})")
        return job

    def _replace(self, job: PipelineJob, **changes: Any) -> PipelineJob:
        updated = job.model_copy(update={**changes, "updated_at": self._clock()})
        self._jobs[job.id] = updated
        return updated

    def _remove(self, job_id: str) -> None:
        self._jobs.pop(job_id, None)
        self._subscribers.pop(job_id, None)

    def _is_expired(self, job: PipelineJob, now: datetime) -> bool:
        return job.is_terminal and now - job.updated_at >= self.retention

    def _message(self, job: PipelineJob, message: str) -> dict:
        return ProgressMessage(
            job_id=job.id,
            stage=job.stage,
            progress=job.progress,
            message=message,
            timestamp=self._clock(),
            error=job.error,
        ).model_dump(mode="json")

    async def _broadcast(self, job: PipelineJob, message: str) -> None:
        """
        Broadcast job state to all subscribers.

        Args:
            job: Updated job
            message: Human-readable status message
        """
        payload = self._message(job, message)

        for queue in list(self._subscribers.get(job.id, [])):
            try:
                await queue.put(payload)
            except Exception as e:
                logger.warning(f"Failed to broadcast to subscriber: {e}")
