"""Tests for provider selection with fallback.

Test coverage:
- Chain order and skipping of unconfigured providers
- Retry bound per provider (1 + max_retries attempts)
- Fallback to the local generator and stage exhaustion
- Per-attempt deadline and empty-output rejection
- Building chains from configuration
"""

import asyncio

import pytest

from talkar.models.schemas import ScriptRequest, SpeechRequest, StageName
from talkar.services.pipeline import (
    FallbackFactory,
    ProviderSelector,
    StageExhaustedError,
    ValidationError,
    build_selectors,
)
from talkar.services.providers import ProviderNotConfiguredError

from .conftest import FakeProvider

REQUEST = ScriptRequest(subject_ref="sunrich-001", language="en", emotion="friendly")


def make_selector(retry_engine, providers, fallback=None, timeout=1.0):
    return ProviderSelector(
        StageName.SCRIPT,
        providers=providers,
        fallback=fallback or FakeProvider("local", StageName.SCRIPT),
        retry_engine=retry_engine,
        timeout=timeout,
    )


class TestChainOrder:
    """Providers are tried in priority order."""

    @pytest.mark.asyncio
    async def test_first_provider_wins(self, retry_engine):
        first = FakeProvider("openai", StageName.SCRIPT)
        second = FakeProvider("groq", StageName.SCRIPT)
        selector = make_selector(retry_engine, [first, second])

        selection = await selector.generate(REQUEST)

        assert selection.provider == "openai"
        assert selection.attempts == {"openai": 1}
        assert selection.fallback_used is False
        assert second.calls == 0

    @pytest.mark.asyncio
    async def test_unavailable_provider_is_skipped_without_attempt(self, retry_engine):
        unconfigured = FakeProvider("openai", StageName.SCRIPT, available=False)
        configured = FakeProvider("groq", StageName.SCRIPT)
        selector = make_selector(retry_engine, [unconfigured, configured])

        selection = await selector.generate(REQUEST)

        assert selection.provider == "groq"
        assert unconfigured.calls == 0
        assert "openai" not in selection.attempts

    @pytest.mark.asyncio
    async def test_failing_provider_gets_bounded_attempts(self, retry_engine):
        broken = FakeProvider("openai", StageName.SCRIPT, always_fail=True)
        healthy = FakeProvider("groq", StageName.SCRIPT)
        selector = make_selector(retry_engine, [broken, healthy])

        selection = await selector.generate(REQUEST)

        assert broken.calls == 3
        assert selection.attempts == {"openai": 3, "groq": 1}
        assert selection.provider == "groq"

    @pytest.mark.asyncio
    async def test_recovers_within_retry_budget(self, retry_engine):
        flaky = FakeProvider("openai", StageName.SCRIPT, fail_times=2)
        backup = FakeProvider("groq", StageName.SCRIPT)
        selector = make_selector(retry_engine, [flaky, backup])

        selection = await selector.generate(REQUEST)

        assert flaky.calls == 3
        assert selection.provider == "openai"
        assert backup.calls == 0

    @pytest.mark.asyncio
    async def test_rejected_credentials_are_not_retried(self, retry_engine):
        rejected = FakeProvider(
            "openai",
            StageName.SCRIPT,
            always_fail=True,
            error=lambda: ProviderNotConfiguredError("Invalid API key", provider="openai"),
        )
        selector = make_selector(retry_engine, [rejected])

        selection = await selector.generate(REQUEST)

        assert rejected.calls == 1
        assert selection.fallback_used is True


class TestFallback:
    """Local generator as the last element of the chain."""

    @pytest.mark.asyncio
    async def test_fallback_after_all_providers_fail(self, retry_engine):
        providers = [
            FakeProvider("openai", StageName.SCRIPT, always_fail=True),
            FakeProvider("groq", StageName.SCRIPT, always_fail=True),
        ]
        selector = make_selector(retry_engine, providers)

        selection = await selector.generate(REQUEST)

        assert selection.provider == "local"
        assert selection.fallback_used is True
        assert selection.attempts == {"openai": 3, "groq": 3, "local": 1}

    @pytest.mark.asyncio
    async def test_no_configured_provider_uses_fallback(self, settings, retry_engine):
        selector = make_selector(
            retry_engine,
            [FakeProvider("openai", StageName.SCRIPT, available=False)],
            fallback=FallbackFactory(settings).create(StageName.SCRIPT),
        )

        selection = await selector.generate(REQUEST)

        assert selection.fallback_used is True
        assert selection.value.text

    @pytest.mark.asyncio
    async def test_exhausted_when_fallback_fails(self, retry_engine):
        selector = make_selector(
            retry_engine,
            [FakeProvider("openai", StageName.SCRIPT, always_fail=True)],
            fallback=FakeProvider("local", StageName.SCRIPT, always_fail=True),
        )

        with pytest.raises(StageExhaustedError) as exc_info:
            await selector.generate(REQUEST)

        assert exc_info.value.stage == StageName.SCRIPT
        assert exc_info.value.cause is not None
        assert "script" in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_validation_error_propagates_immediately(self, retry_engine):
        invalid = FakeProvider(
            "openai",
            StageName.SCRIPT,
            always_fail=True,
            error=lambda: ValidationError("bad input", field="text"),
        )
        fallback = FakeProvider("local", StageName.SCRIPT)
        selector = make_selector(retry_engine, [invalid], fallback=fallback)

        with pytest.raises(ValidationError):
            await selector.generate(REQUEST)

        assert invalid.calls == 1
        assert fallback.calls == 0


class TestAttemptChecks:
    """Deadline and output checks of single attempts."""

    @pytest.mark.asyncio
    async def test_slow_provider_times_out(self, retry_engine):
        never = asyncio.Event()
        slow = FakeProvider("openai", StageName.SCRIPT, gate=never)
        selector = make_selector(retry_engine, [slow], timeout=0.01)

        selection = await selector.generate(REQUEST)

        assert slow.calls == 3
        assert selection.fallback_used is True

    @pytest.mark.asyncio
    async def test_empty_output_is_a_failure(self, retry_engine):
        empty = FakeProvider("openai", StageName.SCRIPT, empty=True)
        selector = make_selector(retry_engine, [empty])

        selection = await selector.generate(REQUEST)

        assert empty.calls == 3
        assert selection.provider == "local"


class TestDescriptors:
    def test_chain_description(self, retry_engine):
        selector = make_selector(
            retry_engine,
            [
                FakeProvider("openai", StageName.SCRIPT, available=False),
                FakeProvider("groq", StageName.SCRIPT),
            ],
        )

        descriptors = selector.descriptors()

        assert [d.name for d in descriptors] == ["openai", "groq", "local"]
        assert [d.priority for d in descriptors] == [0, 1, 2]
        assert [d.available for d in descriptors] == [False, True, True]
        assert [d.is_fallback for d in descriptors] == [False, False, True]


class TestBuildSelectors:
    """Chains built from configuration."""

    def test_default_chains(self, settings, retry_engine):
        selectors = build_selectors(settings, retry_engine, providers_config={})

        names = {
            stage: [d.name for d in selector.descriptors()]
            for stage, selector in selectors.items()
        }
        assert names[StageName.SCRIPT] == ["openai", "groq", "ollama", "local"]
        assert names[StageName.SPEECH] == ["elevenlabs", "google_tts", "local"]
        assert names[StageName.LIPSYNC] == ["sync", "local"]

    def test_configured_order(self, settings, retry_engine):
        selectors = build_selectors(
            settings, retry_engine, providers_config={"script": ["groq", "openai"]}
        )
        names = [p.name for p in selectors[StageName.SCRIPT].chain]
        assert names == ["groq", "openai", "local"]

    def test_without_credentials_only_fallback_available(self, settings, retry_engine):
        selectors = build_selectors(settings, retry_engine, providers_config={})
        for selector in selectors.values():
            available = [d.name for d in selector.descriptors() if d.available]
            assert available == ["local"]

    def test_lipsync_uses_its_own_timeout(self, settings, retry_engine):
        selectors = build_selectors(settings, retry_engine, providers_config={})
        assert selectors[StageName.LIPSYNC].timeout == settings.lipsync_timeout
        assert selectors[StageName.SPEECH].timeout == settings.provider_timeout

    def test_unknown_provider(self, settings, retry_engine):
        with pytest.raises(ValueError, match="Unknown speech provider"):
            build_selectors(settings, retry_engine, providers_config={"speech": ["polly"]})

    @pytest.mark.asyncio
    async def test_speech_fallback_writes_local_audio(self, settings, retry_engine):
        selectors = build_selectors(settings, retry_engine, providers_config={})

        selection = await selectors[StageName.SPEECH].generate(
            SpeechRequest(text="Hello there", language="en", emotion="happy")
        )

        assert selection.fallback_used is True
        assert selection.value.audio_ref.startswith("http://talkar.test/audio/")
        assert any(settings.audio_dir.iterdir())
