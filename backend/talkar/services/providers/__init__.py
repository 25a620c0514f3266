"""
Stage providers for the ad-content pipeline.

Exports:
    - StageProvider: Base class shared by all providers
    - ProviderConfig: Endpoint/credential configuration
    - Provider errors: ProviderError and its subclasses
    - Script providers: OpenAI, Groq, Ollama
    - Speech providers: ElevenLabs, Google TTS
    - Lip-sync providers: Sync.so
"""

from .audio_store import AudioStore, estimate_duration
from .base import (
    ProviderConfig,
    ProviderConnectionError,
    ProviderError,
    ProviderNotConfiguredError,
    ProviderResponseError,
    ProviderTimeoutError,
    StageProvider,
)
from .lipsync_providers import SyncLipSyncProvider
from .script_providers import (
    GroqScriptProvider,
    OllamaScriptProvider,
    OpenAIScriptProvider,
    build_script_prompt,
)
from .speech_providers import ElevenLabsSpeechProvider, GoogleSpeechProvider

__all__ = [
    # Base
    "StageProvider",
    "ProviderConfig",
    "AudioStore",
    "estimate_duration",
    # Errors
    "ProviderError",
    "ProviderTimeoutError",
    "ProviderConnectionError",
    "ProviderResponseError",
    "ProviderNotConfiguredError",
    # Script
    "OpenAIScriptProvider",
    "GroqScriptProvider",
    "OllamaScriptProvider",
    "build_script_prompt",
    # Speech
    "ElevenLabsSpeechProvider",
    "GoogleSpeechProvider",
    # Lip-sync
    "SyncLipSyncProvider",
]
