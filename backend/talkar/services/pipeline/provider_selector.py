"""
Provider selection with fallback for pipeline stages.

Each stage owns one ProviderSelector: an ordered chain of providers
ending with the local fallback generator. The chain order is read once
at startup from config/providers.yaml.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Callable, Generic, Sequence, TypeVar

import httpx

from talkar.config import Settings, load_providers_config
from talkar.models.schemas import ProviderDescriptor, StageName
from talkar.services.pipeline.errors import StageExhaustedError, ValidationError
from talkar.services.pipeline.fallback_factory import FallbackFactory
from talkar.services.providers import (
    ElevenLabsSpeechProvider,
    GoogleSpeechProvider,
    GroqScriptProvider,
    OllamaScriptProvider,
    OpenAIScriptProvider,
    ProviderResponseError,
    ProviderTimeoutError,
    StageProvider,
    SyncLipSyncProvider,
)
from talkar.services.retry import RetryEngine

logger = logging.getLogger(__name__)

RequestT = TypeVar("RequestT")
ResultT = TypeVar("ResultT")

# Attribute that must be non-empty in a stage result
REQUIRED_OUTPUT = {
    StageName.SCRIPT: "text",
    StageName.SPEECH: "audio_ref",
    StageName.LIPSYNC: "video_ref",
}

DEFAULT_CHAINS = {
    StageName.SCRIPT: ["openai", "groq", "ollama"],
    StageName.SPEECH: ["elevenlabs", "google_tts"],
    StageName.LIPSYNC: ["sync"],
}

ProviderFactory = Callable[
    [Settings, RetryEngine, httpx.AsyncClient | None], StageProvider
]

PROVIDER_FACTORIES: dict[StageName, dict[str, ProviderFactory]] = {
    StageName.SCRIPT: {
        "openai": lambda s, r, c: OpenAIScriptProvider.from_settings(s, c),
        "groq": lambda s, r, c: GroqScriptProvider.from_settings(s, c),
        "ollama": lambda s, r, c: OllamaScriptProvider.from_settings(s, c),
    },
    StageName.SPEECH: {
        "elevenlabs": lambda s, r, c: ElevenLabsSpeechProvider.from_settings(s, c),
        "google_tts": lambda s, r, c: GoogleSpeechProvider.from_settings(s, c),
    },
    StageName.LIPSYNC: {
        "sync": lambda s, r, c: SyncLipSyncProvider.from_settings(s, r, c),
    },
}


@dataclass
class SelectionResult(Generic[ResultT]):
    """
    Outcome of one selector call.

    Attributes:
        value: Result of the winning provider
        provider: Name of the winning provider
        attempts: Attempts made per provider (skipped providers absent)
        fallback_used: True if the local generator produced the value
    """

    value: ResultT
    provider: str
    attempts: dict[str, int] = field(default_factory=dict)
    fallback_used: bool = False


class ProviderSelector(Generic[RequestT, ResultT]):
    """
    Ordered provider chain for one stage.

    Unavailable providers are skipped without an attempt. Each available
    provider gets ``1 + max_retries`` attempts, each bounded by ``timeout``,
    before the selector moves on. The first success ends the scan.

    Example:
        selector = ProviderSelector(
            StageName.SCRIPT,
            providers=[openai, groq],
            fallback=LocalScriptGenerator(),
            retry_engine=RetryEngine(max_retries=2),
            timeout=10.0,
        )
        selection = await selector.generate(ScriptRequest(subject_ref="sunrich-001"))
        print(selection.provider, selection.value.text)
    """

    def __init__(
        self,
        stage: StageName,
        providers: Sequence[StageProvider[RequestT, ResultT]],
        fallback: StageProvider[RequestT, ResultT],
        retry_engine: RetryEngine,
        timeout: float = 10.0,
    ):
        """
        Initialize selector.

        Args:
            stage: Stage served by this chain
            providers: External providers in priority order (first = tried first)
            fallback: Local generator appended as the last element
            retry_engine: Retry engine wrapping every provider attempt
            timeout: Deadline of a single provider attempt (seconds)
        """
        self.stage = stage
        self.providers = list(providers)
        self.fallback = fallback
        self.retry_engine = retry_engine
        self.timeout = timeout

    @property
    def chain(self) -> list[StageProvider[RequestT, ResultT]]:
        """Providers in the order they are tried."""
        return [*self.providers, self.fallback]

    def descriptors(self) -> list[ProviderDescriptor]:
        """Describe the chain (priority = position, lower first)."""
        return [
            ProviderDescriptor(
                name=provider.name,
                stage=self.stage,
                priority=index,
                available=provider.available,
                is_fallback=provider is self.fallback,
            )
            for index, provider in enumerate(self.chain)
        ]

    async def generate(self, request: RequestT) -> SelectionResult[ResultT]:
        """
        Run the request through the chain.

        Args:
            request: Stage request

        Returns:
            SelectionResult of the first provider that succeeded

        Raises:
            ValidationError: Propagated unchanged from any provider
            StageExhaustedError: If the local fallback failed as well
        """
        attempts: dict[str, int] = {}
        last_error: Exception | None = None

        for provider in self.chain:
            if not provider.available:
                logger.debug(f"{self.stage.value}: skipping {provider.name} (not configured)")
                continue

            calls = 0

            async def attempt() -> ResultT:
                nonlocal calls
                calls += 1
                return await self._call(provider, request)

            try:
                value = await self.retry_engine.run(
                    attempt, label=f"{self.stage.value}/{provider.name}"
                )
            except ValidationError:
                raise
            except Exception as e:
                attempts[provider.name] = calls
                last_error = e
                logger.warning(
                    f"{self.stage.value}: {provider.name} failed after {calls} attempt(s): {e}"
                )
                continue

            attempts[provider.name] = calls
            is_fallback = provider is self.fallback
            if is_fallback:
                logger.info(f"{self.stage.value}: served by local fallback")
            else:
                logger.debug(f"{self.stage.value}: served by {provider.name}")

            return SelectionResult(
                value=value,
                provider=provider.name,
                attempts=attempts,
                fallback_used=is_fallback,
            )

        logger.error(f"{self.stage.value}: all providers failed, last error: {last_error}")
        raise StageExhaustedError(self.stage, last_error)

    async def _call(
        self, provider: StageProvider[RequestT, ResultT], request: RequestT
    ) -> ResultT:
        """One provider attempt with deadline and output check."""
        try:
            result = await asyncio.wait_for(provider.generate(request), self.timeout)
        except asyncio.TimeoutError as e:
            raise ProviderTimeoutError(
                f"No result within {self.timeout}s",
                provider=provider.name,
                stage=self.stage,
                original_error=e,
            ) from e

        required = REQUIRED_OUTPUT[self.stage]
        if result is None or not getattr(result, required, None):
            raise ProviderResponseError(
                f"Empty {required} in result",
                provider=provider.name,
                stage=self.stage,
            )
        return result

    async def close(self) -> None:
        """Release HTTP clients of all providers."""
        for provider in self.chain:
            await provider.close()


def build_selectors(
    settings: Settings,
    retry_engine: RetryEngine,
    http_client: httpx.AsyncClient | None = None,
    providers_config: dict | None = None,
) -> dict[StageName, ProviderSelector]:
    """
    Build the selector of every stage from configuration.

    Args:
        settings: Application settings
        retry_engine: Shared retry engine
        http_client: Shared HTTP client (each provider creates its own if None)
        providers_config: Stage -> provider names (default: config/providers.yaml)

    Returns:
        Mapping of stage -> selector

    Raises:
        ValueError: If the configuration names an unknown provider
    """
    if providers_config is None:
        providers_config = load_providers_config(settings)

    fallback_factory = FallbackFactory(settings)
    selectors: dict[StageName, ProviderSelector] = {}

    for stage in StageName:
        names = providers_config.get(stage.value) or DEFAULT_CHAINS[stage]
        factories = PROVIDER_FACTORIES[stage]

        providers = []
        for name in names:
            if name not in factories:
                raise ValueError(
                    f"Unknown {stage.value} provider '{name}'. "
                    f"Available: {', '.join(factories)}"
                )
            providers.append(factories[name](settings, retry_engine, http_client))

        timeout = (
            settings.lipsync_timeout
            if stage == StageName.LIPSYNC
            else settings.provider_timeout
        )
        selectors[stage] = ProviderSelector(
            stage,
            providers=providers,
            fallback=fallback_factory.create(stage),
            retry_engine=retry_engine,
            timeout=timeout,
        )

        available = [p.name for p in providers if p.available]
        logger.info(
            f"{stage.value} chain: {' -> '.join([*names, 'local'])} "
            f"(configured: {', '.join(available) or 'none'})"
        )

    return selectors
