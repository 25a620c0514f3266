"""
Pipeline orchestrator for ad-content generation.

Sequences script -> speech -> lip-sync. Every stage goes through the
same path: cache lookup, provider chain with retry/fallback on a miss,
write-through, job update. Offers synchronous, fire-and-poll and
overlapped ("streaming") modes, plus each stage on its own.
"""

import asyncio
import logging
import re
import time
from dataclasses import dataclass
from typing import TypeVar

import httpx
from pydantic import BaseModel

from talkar.config import Settings, get_settings
from talkar.models.cache import CacheNamespace
from talkar.models.schemas import (
    VALID_EMOTIONS,
    LipSyncRequest,
    LipSyncResult,
    PipelineJob,
    PipelineMetadata,
    PipelineMode,
    PipelineOptions,
    PipelineResult,
    PipelineStage,
    ProviderDescriptor,
    ScriptRequest,
    ScriptResult,
    SpeechRequest,
    SpeechResult,
    StageName,
    SubjectMetadata,
    UserPreferences,
)
from talkar.services.asset_recorder import AssetRecorder
from talkar.services.catalog import PreferencesSource, SubjectCatalog
from talkar.services.retry import RetryEngine

from .errors import (
    JobCancelledError,
    NotFoundError,
    PipelineError,
    StageExhaustedError,
)
from .fallback_factory import FallbackFactory
from .job_store import JobStore
from .performance_tracker import PerformanceTracker
from .provider_selector import ProviderSelector, build_selectors
from .stage_cache import CacheManager
from .validation import (
    normalize_language,
    validate_audio_ref,
    validate_emotion,
    validate_language,
    validate_subject_ref,
    validate_text,
)

logger = logging.getLogger(__name__)

ResultT = TypeVar("ResultT", bound=BaseModel)

STAGE_NAMESPACES = {
    StageName.SCRIPT: CacheNamespace.SCRIPT,
    StageName.SPEECH: CacheNamespace.SPEECH,
    StageName.LIPSYNC: CacheNamespace.LIPSYNC,
}

DEFAULT_LANGUAGE = "en"
DEFAULT_TONE = "friendly"


@dataclass
class RunContext:
    """Resolved inputs of one run (caller options over metadata over preferences)."""

    subject_ref: str
    subject: SubjectMetadata
    language: str
    tone: str
    emotion: str
    user_id: str


def humanize_ref(subject_ref: str) -> str:
    """Readable name derived from a subject ref ("sunrich-001" -> "Sunrich 001")."""
    return re.sub(r"[-_]+", " ", subject_ref).strip().title() or subject_ref


class PipelineOrchestrator:
    """
    Orchestrator of the ad-content pipeline.

    All collaborators are injected; from_settings() wires the defaults.

    Example (synchronous):
        orchestrator = PipelineOrchestrator.from_settings(settings)
        result = await orchestrator.run_pipeline("sunrich-001")
        print(result.script, result.audio_ref, result.video_ref)

    Example (fire-and-poll):
        job_id = await orchestrator.start_pipeline("sunrich-001")
        job = orchestrator.get_job_status(job_id)  # stage, progress, outputs

    Example (single stage):
        script = await orchestrator.generate_script("sunrich-001", emotion="excited")
    """

    def __init__(
        self,
        settings: Settings,
        selectors: dict[StageName, ProviderSelector],
        cache: CacheManager,
        jobs: JobStore,
        tracker: PerformanceTracker,
        catalog: SubjectCatalog,
        preferences: PreferencesSource,
        asset_recorder: AssetRecorder | None = None,
        fallback_factory: FallbackFactory | None = None,
    ):
        """
        Initialize orchestrator.

        Args:
            settings: Application settings
            selectors: Provider chain per stage
            cache: Stage and auxiliary cache
            jobs: Job store
            tracker: Performance tracker
            catalog: Subject metadata lookup
            preferences: User preferences lookup
            asset_recorder: Hook called after a video is finalized (optional)
            fallback_factory: Source of the internal placeholder audio
        """
        self.settings = settings
        self.selectors = selectors
        self.cache = cache
        self.jobs = jobs
        self.tracker = tracker
        self.catalog = catalog
        self.preferences = preferences
        self.asset_recorder = asset_recorder
        self.fallback_factory = fallback_factory or FallbackFactory(settings)
        self._tasks: set[asyncio.Task] = set()

    @classmethod
    def from_settings(
        cls,
        settings: Settings | None = None,
        http_client: httpx.AsyncClient | None = None,
    ) -> "PipelineOrchestrator":
        """
        Build an orchestrator with all default collaborators.

        Args:
            settings: Application settings (uses defaults if None)
            http_client: Shared HTTP client for providers

        Returns:
            Configured PipelineOrchestrator
        """
        settings = settings or get_settings()
        retry_engine = RetryEngine.from_settings(settings)
        return cls(
            settings=settings,
            selectors=build_selectors(settings, retry_engine, http_client),
            cache=CacheManager.from_settings(settings),
            jobs=JobStore(retention_seconds=settings.job_retention_seconds),
            tracker=PerformanceTracker.from_settings(settings),
            catalog=SubjectCatalog.from_settings(settings),
            preferences=PreferencesSource.from_settings(settings),
            asset_recorder=AssetRecorder(settings),
        )

    # ═══════════════════════════════════════════════════════════════════════════
    # Single stages
    # ═══════════════════════════════════════════════════════════════════════════

    async def generate_script(
        self,
        subject_ref: str,
        language: str | None = None,
        emotion: str | None = None,
        user_id: str | None = None,
    ) -> ScriptResult:
        """
        Generate ad copy for a subject.

        Args:
            subject_ref: Subject identifier
            language: 2-letter code or language name (default: metadata/preferences)
            emotion: Tone of the copy (default: metadata/preferences)
            user_id: User whose preferences apply

        Returns:
            ScriptResult (``cached`` set when served from cache)

        Raises:
            ValidationError: On invalid input
            StageExhaustedError: If every script provider failed
        """
        options = self._validate_options(
            PipelineOptions(language=language, emotion=emotion, user_id=user_id)
        )
        context = await self._resolve_context(validate_subject_ref(subject_ref), options)
        result, _ = await self._script_stage(context)
        return result

    async def generate_audio(
        self,
        text: str,
        language: str = DEFAULT_LANGUAGE,
        emotion: str = "neutral",
        voice_id: str | None = None,
    ) -> SpeechResult:
        """
        Synthesize speech for a script.

        Args:
            text: Script text (max 5000 characters)
            language: 2-letter language code
            emotion: Voice emotion
            voice_id: Provider voice override

        Returns:
            SpeechResult with the audio URL

        Raises:
            ValidationError: On invalid input
            StageExhaustedError: If every speech provider failed
        """
        request = SpeechRequest(
            text=validate_text(text),
            language=validate_language(language) or DEFAULT_LANGUAGE,
            emotion=validate_emotion(emotion) or "neutral",
            voice_id=voice_id,
        )
        result, _ = await self._run_stage(StageName.SPEECH, request)
        return result

    async def generate_lipsync(
        self,
        subject_ref: str,
        audio_ref: str,
        emotion: str = "neutral",
        avatar: str | None = None,
    ) -> LipSyncResult:
        """
        Render a lip-synced video for an audio track.

        Args:
            subject_ref: Subject identifier (selects the default avatar)
            audio_ref: Audio URL
            emotion: Facial emotion
            avatar: Avatar image URL override

        Returns:
            LipSyncResult with the video URL

        Raises:
            ValidationError: On invalid input
            StageExhaustedError: If every lip-sync provider failed
        """
        request = LipSyncRequest(
            subject_ref=validate_subject_ref(subject_ref),
            audio_ref=validate_audio_ref(audio_ref),
            emotion=validate_emotion(emotion) or "neutral",
            avatar=avatar,
        )
        result, _ = await self._run_stage(StageName.LIPSYNC, request)
        return result

    # ═══════════════════════════════════════════════════════════════════════════
    # Full pipeline
    # ═══════════════════════════════════════════════════════════════════════════

    async def run_pipeline(
        self, subject_ref: str, options: PipelineOptions | None = None
    ) -> PipelineResult:
        """
        Run all stages sequentially and return the result.

        Args:
            subject_ref: Subject identifier
            options: Language/emotion/user overrides

        Returns:
            PipelineResult with script, audio_ref, video_ref and metadata

        Raises:
            ValidationError: On invalid input (no job is created)
            StageExhaustedError: If a stage's chain failed (job marked failed)
        """
        subject_ref = validate_subject_ref(subject_ref)
        options = self._validate_options(options or PipelineOptions())
        job = self.jobs.create(subject_ref, PipelineMode.SYNC)
        return await self._execute(job, options, streaming=False)

    async def run_pipeline_streaming(
        self, subject_ref: str, options: PipelineOptions | None = None
    ) -> PipelineResult:
        """
        Run the pipeline with overlapped stages.

        A placeholder audio track is prepared while metadata, preferences
        and the script are produced; speech starts as soon as the real
        script exists; lip-sync always waits for the real audio. The
        placeholder never appears in the result.

        Args:
            subject_ref: Subject identifier
            options: Language/emotion/user overrides

        Returns:
            PipelineResult identical in shape to run_pipeline()

        Raises:
            ValidationError: On invalid input
            StageExhaustedError: If a stage's chain failed
        """
        subject_ref = validate_subject_ref(subject_ref)
        options = self._validate_options(options or PipelineOptions())
        job = self.jobs.create(subject_ref, PipelineMode.STREAMING)
        return await self._execute(job, options, streaming=True)

    async def start_pipeline(
        self, subject_ref: str, options: PipelineOptions | None = None
    ) -> str:
        """
        Create a job and run the pipeline in the background.

        Args:
            subject_ref: Subject identifier
            options: Language/emotion/user overrides

        Returns:
            Job ID to poll with get_job_status()

        Raises:
            ValidationError: On invalid input (no job is created)
        """
        subject_ref = validate_subject_ref(subject_ref)
        options = self._validate_options(options or PipelineOptions())
        job = self.jobs.create(subject_ref, PipelineMode.ASYNC)
        task = asyncio.create_task(self._run_job(job, options))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return job.id

    def get_job_status(self, job_id: str) -> PipelineJob | None:
        """Get a job, or None for unknown or expired ids."""
        return self.jobs.get(job_id)

    def cancel_job(self, job_id: str) -> PipelineJob:
        """
        Request best-effort cancellation of a job.

        No further stage starts; a result that is in flight is discarded
        and the job ends as failed with code "cancelled".

        Raises:
            NotFoundError: If the job is unknown or expired
        """
        job = self.jobs.request_cancel(job_id)
        if job is None:
            raise NotFoundError(job_id)
        return job

    def list_jobs(self) -> list[PipelineJob]:
        """All live jobs, newest first."""
        self.jobs.purge_expired()
        return self.jobs.list_jobs()

    def provider_descriptors(self) -> dict[str, list[ProviderDescriptor]]:
        """Provider chain of every stage."""
        return {
            stage.value: selector.descriptors()
            for stage, selector in self.selectors.items()
        }

    async def wait_for_background(self) -> None:
        """Wait until all background runs finished."""
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def close(self) -> None:
        """Cancel background runs and release provider clients."""
        for task in list(self._tasks):
            task.cancel()
        await self.wait_for_background()
        for selector in self.selectors.values():
            await selector.close()

    # ═══════════════════════════════════════════════════════════════════════════
    # Internal: run execution
    # ═══════════════════════════════════════════════════════════════════════════

    async def _run_job(self, job: PipelineJob, options: PipelineOptions) -> None:
        """Background wrapper: failures are already recorded on the job."""
        try:
            await self._execute(job, options, streaming=False)
        except PipelineError as e:
            logger.info(f"Background job ended: {e}", extra={"job_id": job.id})
        except Exception as e:
            logger.exception(f"Background job crashed: {e}", extra={"job_id": job.id})

    async def _execute(
        self, job: PipelineJob, options: PipelineOptions, streaming: bool
    ) -> PipelineResult:
        started = time.perf_counter()
        self.tracker.start_tracking(job.id, job.subject_ref)
        current = StageName.SCRIPT
        providers: dict[str, str] = {}

        try:
            self._check_cancelled(job.id, StageName.SCRIPT)
            if streaming:
                context, script = await self._streaming_script_phase(job, options, started)
            else:
                context = await self._resolve_context(job.subject_ref, options)
                script = await self._tracked_stage(job.id, StageName.SCRIPT, context)
            providers[StageName.SCRIPT.value] = script.provider
            self._check_cancelled(job.id, StageName.SCRIPT)
            await self.jobs.advance(job.id, PipelineStage.SCRIPT, script=script.text)

            current = StageName.SPEECH
            self._check_cancelled(job.id, current)
            speech_request = SpeechRequest(
                text=script.text, language=context.language, emotion=context.emotion
            )
            speech = await self._tracked_stage(job.id, current, speech_request)
            self.tracker.record_audio_start(job.id, _elapsed_ms(started))
            providers[current.value] = speech.provider
            self._check_cancelled(job.id, current)
            await self.jobs.advance(job.id, PipelineStage.SPEECH, audio_ref=speech.audio_ref)

            current = StageName.LIPSYNC
            self._check_cancelled(job.id, current)
            lipsync_request = LipSyncRequest(
                subject_ref=context.subject_ref,
                audio_ref=speech.audio_ref,
                emotion=context.emotion,
                avatar=context.subject.image_url or None,
            )
            video = await self._tracked_stage(job.id, current, lipsync_request)
            providers[current.value] = video.provider
            self._check_cancelled(job.id, current)
            await self.jobs.advance(job.id, PipelineStage.LIPSYNC, video_ref=video.video_ref)

            await self._record_asset(context, video.video_ref, speech.audio_ref)
            finished = await self.jobs.complete(job.id)
            self.tracker.record_completion(job.id, _elapsed_ms(started))

        except StageExhaustedError as e:
            await self.jobs.fail(job.id, e.stage, str(e))
            self.tracker.record_failure(job.id, str(e))
            raise
        except JobCancelledError as e:
            await self.jobs.fail(job.id, e.stage, "Cancelled by request", code="cancelled")
            self.tracker.record_failure(job.id, "cancelled")
            raise
        except (Exception, asyncio.CancelledError) as e:
            await self.jobs.fail(job.id, current, f"Unexpected error: {e!r}", code="internal")
            self.tracker.record_failure(job.id, repr(e))
            raise

        return PipelineResult(
            script=script.text,
            audio_ref=speech.audio_ref,
            video_ref=video.video_ref,
            metadata=PipelineMetadata(
                job_id=job.id,
                subject_ref=context.subject_ref,
                product_name=context.subject.name,
                language=context.language,
                tone=context.tone,
                image_url=context.subject.image_url,
                user_id=context.user_id,
                providers=providers,
                cached_stages=finished.cached_stages,
            ),
        )

    async def _streaming_script_phase(
        self, job: PipelineJob, options: PipelineOptions, started: float
    ) -> tuple[RunContext, ScriptResult]:
        """Fan out placeholder audio and context+script; join on both."""

        async def context_then_script() -> tuple[RunContext, ScriptResult]:
            context = await self._resolve_context(job.subject_ref, options)
            script = await self._tracked_stage(job.id, StageName.SCRIPT, context)
            return context, script

        placeholder, (context, script) = await asyncio.gather(
            self._placeholder_audio(started),
            context_then_script(),
        )
        logger.debug(f"Job {job.id}: placeholder audio {placeholder.audio_ref} superseded")
        return context, script

    async def _placeholder_audio(self, started: float) -> SpeechResult:
        placeholder = self.fallback_factory.create_placeholder_audio()
        logger.debug(f"Placeholder audio ready after {_elapsed_ms(started):.0f}ms")
        return placeholder

    async def _tracked_stage(self, job_id: str, stage: StageName, request_or_context):
        """Run a stage for a job, recording its duration and cache use."""
        stage_started = time.perf_counter()
        if stage == StageName.SCRIPT:
            result, cached = await self._script_stage(request_or_context)
        else:
            result, cached = await self._run_stage(stage, request_or_context)

        self.tracker.record_stage(job_id, stage.value, _elapsed_ms(stage_started))
        if cached:
            self.jobs.mark_cached(job_id, stage)
        return result

    async def _script_stage(self, context: RunContext) -> tuple[ScriptResult, bool]:
        request = ScriptRequest(
            subject_ref=context.subject_ref,
            language=context.language,
            emotion=context.emotion,
            subject=context.subject,
        )
        return await self._run_stage(StageName.SCRIPT, request)

    async def _run_stage(self, stage: StageName, request: BaseModel) -> tuple[ResultT, bool]:
        """
        Cache lookup, then the provider chain on a miss.

        Args:
            stage: Stage to run
            request: Stage request model

        Returns:
            Tuple of (result, served_from_cache)

        Raises:
            StageExhaustedError: If the whole chain failed
        """
        namespace = STAGE_NAMESPACES[stage]
        key = self._stage_key(stage, request)

        cached = self.cache.get(namespace, key)
        if cached is not None:
            logger.debug(f"{stage.value}: cache hit")
            return cached.model_copy(update={"cached": True}), True

        selection = await self.selectors[stage].generate(request)
        result = selection.value.model_copy(
            update={"provider": selection.provider, "cached": False}
        )
        # Degraded output must not outlive a provider outage
        if selection.fallback_used:
            logger.info(f"{stage.value}: served by {selection.provider}, not cached")
        else:
            self.cache.put(namespace, key, result)
        return result, False

    @staticmethod
    def _stage_key(stage: StageName, request: BaseModel) -> str:
        namespace = STAGE_NAMESPACES[stage]
        if isinstance(request, ScriptRequest):
            return CacheManager.make_key(
                namespace,
                subject_ref=request.subject_ref,
                language=request.language,
                emotion=request.emotion,
            )
        if isinstance(request, SpeechRequest):
            return CacheManager.make_key(
                namespace,
                text=request.text,
                language=request.language,
                emotion=request.emotion,
                voice_id=request.voice_id,
            )
        return CacheManager.make_key(
            namespace,
            subject_ref=request.subject_ref,
            audio_ref=request.audio_ref,
            emotion=request.emotion,
            avatar=request.avatar,
        )

    # ═══════════════════════════════════════════════════════════════════════════
    # Internal: context and hooks
    # ═══════════════════════════════════════════════════════════════════════════

    def _validate_options(self, options: PipelineOptions) -> PipelineOptions:
        return PipelineOptions(
            language=validate_language(options.language),
            emotion=validate_emotion(options.emotion),
            user_id=options.user_id.strip() if options.user_id else None,
        )

    async def _resolve_context(self, subject_ref: str, options: PipelineOptions) -> RunContext:
        """Fetch metadata and preferences concurrently and merge them with options."""
        subject, prefs = await asyncio.gather(
            self._get_subject(subject_ref),
            self._get_preferences(options.user_id),
        )

        language = options.language
        if language is None:
            language = normalize_language(subject.language) or normalize_language(
                prefs.language
            )
            if language is None:
                logger.warning(
                    f"No usable language for {subject_ref} "
                    f"(metadata: {subject.language!r}), using {DEFAULT_LANGUAGE}"
                )
                language = DEFAULT_LANGUAGE

        tone = (subject.tone or prefs.preferred_tone or DEFAULT_TONE).strip().casefold()
        emotion = options.emotion or (tone if tone in VALID_EMOTIONS else "neutral")

        return RunContext(
            subject_ref=subject_ref,
            subject=subject,
            language=language,
            tone=tone,
            emotion=emotion,
            user_id=options.user_id or "anonymous",
        )

    async def _get_subject(self, subject_ref: str) -> SubjectMetadata:
        key = CacheManager.make_key(CacheNamespace.SUBJECT, subject_ref=subject_ref)
        subject = await self.cache.get_or_load(
            CacheNamespace.SUBJECT,
            key,
            lambda: self.catalog.get_subject_metadata(subject_ref),
        )
        if subject is None:
            logger.warning(f"Unknown subject {subject_ref}, using derived metadata")
            subject = SubjectMetadata(subject_ref=subject_ref, name=humanize_ref(subject_ref))
        return subject

    async def _get_preferences(self, user_id: str | None) -> UserPreferences:
        key = CacheManager.make_key(CacheNamespace.PREFERENCES, user_id=user_id or "anonymous")
        prefs = await self.cache.get_or_load(
            CacheNamespace.PREFERENCES,
            key,
            lambda: self.preferences.get_user_preferences(user_id),
        )
        return prefs or UserPreferences()

    def _check_cancelled(self, job_id: str, stage: StageName) -> None:
        job = self.jobs.get(job_id)
        if job is not None and job.cancel_requested:
            raise JobCancelledError(job_id, stage)

    async def _record_asset(self, context: RunContext, video_ref: str, audio_ref: str) -> None:
        """Best-effort asset hook: failures are logged, never propagated."""
        if self.asset_recorder is None:
            return
        try:
            await self.asset_recorder.record_generated_asset(
                context.subject_ref, video_ref, audio_ref, context.emotion
            )
        except Exception as e:
            logger.warning(f"Failed to record asset for {context.subject_ref}: {e}")


def _elapsed_ms(started: float) -> float:
    return (time.perf_counter() - started) * 1000
