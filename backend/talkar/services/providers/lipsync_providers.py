"""
Lip-sync providers: talking-head video rendering.

Sync.so either answers with a finished video URL or with a job id;
in the latter case the job is polled through the RetryEngine.
"""

import logging

import httpx

from talkar.config import Settings
from talkar.models.schemas import LipSyncRequest, LipSyncResult, StageName
from talkar.services.providers.base import (
    ProviderConfig,
    ProviderResponseError,
    ProviderTimeoutError,
    StageProvider,
)
from talkar.services.retry import PollTimeoutError, RetryEngine

logger = logging.getLogger(__name__)

DEFAULT_VIDEO_DURATION = 15.0

DONE_STATUSES = ("completed", "failed")


def default_avatar(avatar_base_url: str, subject_ref: str) -> str:
    """Avatar image URL used when the request does not name one."""
    return f"{avatar_base_url.rstrip('/')}/{subject_ref}.jpg"


class SyncLipSyncProvider(StageProvider[LipSyncRequest, LipSyncResult]):
    """
    Sync.so lip-sync API.

    Example:
        provider = SyncLipSyncProvider.from_settings(settings, retry_engine)
        result = await provider.generate(
            LipSyncRequest(subject_ref="sunrich-001", audio_ref=audio_url)
        )
    """

    name = "sync"
    stage = StageName.LIPSYNC

    def __init__(
        self,
        config: ProviderConfig,
        retry_engine: RetryEngine,
        avatar_base_url: str,
        poll_interval: float = 2.0,
        poll_max_attempts: int = 30,
        http_client: httpx.AsyncClient | None = None,
    ):
        super().__init__(config, http_client)
        self.retry_engine = retry_engine
        self.avatar_base_url = avatar_base_url
        self.poll_interval = poll_interval
        self.poll_max_attempts = poll_max_attempts

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        retry_engine: RetryEngine,
        http_client: httpx.AsyncClient | None = None,
    ) -> "SyncLipSyncProvider":
        config = ProviderConfig(
            base_url=settings.sync_api_url.rstrip("/"),
            timeout=settings.provider_timeout,
            api_key=settings.sync_api_key,
        )
        return cls(
            config,
            retry_engine=retry_engine,
            avatar_base_url=settings.avatar_base_url,
            poll_interval=settings.poll_interval,
            poll_max_attempts=settings.poll_max_attempts,
            http_client=http_client,
        )

    @property
    def _headers(self) -> dict[str, str]:
        return {"x-api-key": self.config.api_key or ""}

    async def generate(self, request: LipSyncRequest) -> LipSyncResult:
        """
        Submit a lip-sync job and wait for the video.

        Args:
            request: Lip-sync request (audio URL, avatar, emotion)

        Returns:
            LipSyncResult with the rendered video URL

        Raises:
            ProviderResponseError: If the job failed or returned no video
            ProviderTimeoutError: If the job did not finish within the poll budget
            ProviderError: On transport errors
        """
        body = {
            "audio_url": request.audio_ref,
            "avatar": request.avatar or default_avatar(self.avatar_base_url, request.subject_ref),
        }
        if request.emotion:
            body["emotion"] = request.emotion

        logger.info(f"Submitting lip-sync job for {request.subject_ref}")
        response = await self._request(
            "POST",
            f"{self.config.base_url}/generate",
            headers=self._headers,
            json=body,
        )
        data = self._json(response)

        job_id = data.get("jobId") or data.get("id")
        video_url = data.get("videoUrl") or data.get("outputUrl")

        if not video_url and job_id:
            data = await self._wait_for_job(job_id)
            video_url = data.get("videoUrl") or data.get("outputUrl")

        if not video_url:
            raise ProviderResponseError(
                "No video URL in response",
                provider=self.name,
                stage=self.stage,
                response_body=str(data)[:500],
            )

        return LipSyncResult(
            video_ref=video_url,
            duration_seconds=float(data.get("duration") or DEFAULT_VIDEO_DURATION),
            job_id=job_id,
            provider=self.name,
        )

    async def get_job_status(self, job_id: str) -> dict:
        """Fetch the raw status document of a Sync.so job."""
        response = await self._request(
            "GET",
            f"{self.config.base_url}/jobs/{job_id}",
            headers=self._headers,
        )
        return self._json(response)

    async def _wait_for_job(self, job_id: str) -> dict:
        logger.debug(f"Polling Sync.so job {job_id}")

        try:
            data = await self.retry_engine.poll(
                lambda: self.get_job_status(job_id),
                is_done=lambda d: str(d.get("status", "")).lower() in DONE_STATUSES,
                interval=self.poll_interval,
                max_attempts=self.poll_max_attempts,
                label=f"sync job {job_id}",
            )
        except PollTimeoutError as e:
            raise ProviderTimeoutError(
                f"Job {job_id} not completed after {e.attempts} polls",
                provider=self.name,
                stage=self.stage,
                original_error=e,
            ) from e

        if str(data.get("status", "")).lower() == "failed":
            raise ProviderResponseError(
                f"Job {job_id} failed: {data.get('error') or 'unknown error'}",
                provider=self.name,
                stage=self.stage,
            )

        logger.info(f"Sync.so job {job_id} completed")
        return data
