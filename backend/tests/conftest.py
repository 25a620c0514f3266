"""Shared pytest fixtures for pipeline testing.

Provides isolated settings (tmp directories, no credentials, no delays),
fake in-memory providers with call counting, a recording sleep for the
retry engine, and a factory that wires a complete orchestrator.
"""

import asyncio
from pathlib import Path
from typing import Callable

import pytest

from talkar.config import Settings
from talkar.models.schemas import (
    LipSyncResult,
    ScriptResult,
    SpeechResult,
    StageName,
    SubjectMetadata,
    UserPreferences,
)
from talkar.services.asset_recorder import AssetRecorder
from talkar.services.catalog import PreferencesSource, SubjectCatalog
from talkar.services.pipeline import (
    CacheManager,
    FallbackFactory,
    JobStore,
    PerformanceTracker,
    PipelineOrchestrator,
    ProviderSelector,
)
from talkar.services.providers import ProviderConnectionError, StageProvider
from talkar.services.retry import RetryEngine


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class SleepRecorder:
    """Drop-in for asyncio.sleep that records delays without waiting."""

    def __init__(self):
        self.delays: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)


class FakeProvider(StageProvider):
    """In-memory provider with configurable failures.

    Args:
        name: Provider name
        stage: Stage served
        available: Reported availability
        fail_times: Number of initial calls that fail
        always_fail: Fail every call
        error: Factory of the raised exception
        gate: Event awaited before producing a result
        empty: Return a result with an empty payload
    """

    def __init__(
        self,
        name: str,
        stage: StageName,
        *,
        available: bool = True,
        fail_times: int = 0,
        always_fail: bool = False,
        error: Callable[[], Exception] | None = None,
        gate: asyncio.Event | None = None,
        empty: bool = False,
    ):
        super().__init__()
        self.name = name
        self.stage = stage
        self._available = available
        self.fail_times = fail_times
        self.always_fail = always_fail
        self.error = error or (
            lambda: ProviderConnectionError("connection refused", provider=name, stage=stage)
        )
        self.gate = gate
        self.empty = empty
        self.calls = 0
        self.requests: list = []

    @property
    def available(self) -> bool:
        return self._available

    async def generate(self, request):
        self.calls += 1
        self.requests.append(request)
        if self.gate is not None:
            await self.gate.wait()
        if self.always_fail or self.calls <= self.fail_times:
            raise self.error()
        return self._result(request)

    def _result(self, request):
        if self.stage == StageName.SCRIPT:
            subject_name = request.subject.name if request.subject else request.subject_ref
            return ScriptResult(
                text="" if self.empty else f"{self.name}: meet the {subject_name}!",
                language=request.language,
                emotion=request.emotion,
            )
        if self.stage == StageName.SPEECH:
            return SpeechResult(
                audio_ref="" if self.empty else f"https://audio.test/{self.name}/{self.calls}.mp3",
                duration_seconds=5.0,
            )
        return LipSyncResult(
            video_ref="" if self.empty else f"https://video.test/{self.name}/{self.calls}.mp4",
            duration_seconds=15.0,
            job_id=f"{self.name}-job-{self.calls}",
        )


SUNRICH = SubjectMetadata(
    subject_ref="sunrich-001",
    name="Sunrich Water Bottle",
    category="Beverages",
    brand="Sunrich",
    tone="friendly",
    language="en",
    image_url="https://talkar-image-storage.com/sunrich-001.jpg",
    description="Pure mineral water",
    features=["Naturally alkaline", "BPA-free bottle"],
    price=20,
    currency="INR",
)

COFFEE = SubjectMetadata(
    subject_ref="brew-master-200",
    name="Coffee Maker",
    tone="professional",
    language="English",
)


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    """Settings isolated from the environment: no credentials, no delays."""
    return Settings(
        _env_file=None,
        openai_api_key=None,
        groq_api_key=None,
        ollama_enabled=False,
        elevenlabs_api_key=None,
        google_tts_api_key=None,
        sync_api_key=None,
        config_dir=tmp_path / "config",
        data_dir=tmp_path / "data",
        audio_dir=tmp_path / "data" / "audio",
        public_base_url="http://talkar.test",
        max_retries=2,
        retry_base_delay=0.5,
        retry_max_delay=4.0,
        poll_interval=2.0,
        poll_max_attempts=5,
        local_generator_delay=0,
        provider_timeout=1.0,
        lipsync_timeout=1.0,
    )


@pytest.fixture
def sleep_recorder() -> SleepRecorder:
    return SleepRecorder()


@pytest.fixture
def retry_engine(sleep_recorder: SleepRecorder) -> RetryEngine:
    """Retry engine with max_retries=2 that never actually sleeps."""
    return RetryEngine(max_retries=2, base_delay=0.5, max_delay=4.0, sleep=sleep_recorder)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def catalog() -> SubjectCatalog:
    return SubjectCatalog([SUNRICH, COFFEE])


@pytest.fixture
def preferences() -> PreferencesSource:
    return PreferencesSource(
        UserPreferences(language="en", preferred_tone="friendly"),
        users={"demo-hi": UserPreferences(language="hi", preferred_tone="enthusiastic")},
    )


@pytest.fixture
def build_orchestrator(settings, retry_engine, clock, catalog, preferences):
    """Factory wiring an orchestrator around fake provider chains.

    Each stage defaults to one healthy FakeProvider. Pass a list to
    replace a chain, and ``fallbacks={stage: provider}`` to replace
    the local generator.
    """

    def _build(
        script: list | None = None,
        speech: list | None = None,
        lipsync: list | None = None,
        fallbacks: dict | None = None,
        asset_recorder: object | None = None,
        timeout: float = 1.0,
    ) -> PipelineOrchestrator:
        factory = FallbackFactory(settings)
        chains = {
            StageName.SCRIPT: script if script is not None else [FakeProvider("fake_llm", StageName.SCRIPT)],
            StageName.SPEECH: speech if speech is not None else [FakeProvider("fake_tts", StageName.SPEECH)],
            StageName.LIPSYNC: lipsync if lipsync is not None else [FakeProvider("fake_sync", StageName.LIPSYNC)],
        }
        fallbacks = fallbacks or {}
        selectors = {
            stage: ProviderSelector(
                stage,
                providers=chains[stage],
                fallback=fallbacks.get(stage) or factory.create(stage),
                retry_engine=retry_engine,
                timeout=timeout,
            )
            for stage in StageName
        }
        return PipelineOrchestrator(
            settings=settings,
            selectors=selectors,
            cache=CacheManager.from_settings(settings, clock=clock),
            jobs=JobStore(retention_seconds=settings.job_retention_seconds),
            tracker=PerformanceTracker.from_settings(settings),
            catalog=catalog,
            preferences=preferences,
            asset_recorder=asset_recorder if asset_recorder is not None else AssetRecorder(settings),
            fallback_factory=factory,
        )

    return _build
