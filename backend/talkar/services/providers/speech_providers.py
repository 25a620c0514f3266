"""
Speech providers: text-to-speech backends.

Both providers store the returned audio through AudioStore and report
the public URL of the file as ``audio_ref``.
"""

import base64
import binascii
import logging

import httpx

from talkar.config import Settings
from talkar.models.schemas import SpeechRequest, SpeechResult, StageName
from talkar.services.providers.audio_store import AudioStore, estimate_duration
from talkar.services.providers.base import (
    ProviderConfig,
    ProviderResponseError,
    StageProvider,
)

logger = logging.getLogger(__name__)

DEFAULT_VOICE_ID = "21m00Tcm4TlvDq8ikWAM"

# Google TTS voices per language
GOOGLE_VOICES = {
    "en": {"languageCode": "en-US", "name": "en-US-Standard-C", "ssmlGender": "FEMALE"},
    "es": {"languageCode": "es-ES", "name": "es-ES-Standard-A", "ssmlGender": "FEMALE"},
    "fr": {"languageCode": "fr-FR", "name": "fr-FR-Standard-A", "ssmlGender": "FEMALE"},
    "hi": {"languageCode": "hi-IN", "name": "hi-IN-Standard-A", "ssmlGender": "FEMALE"},
}

# Emotion -> (speakingRate, pitch)
GOOGLE_PROSODY = {
    "neutral": (1.0, 0.0),
    "happy": (1.1, 2.0),
    "serious": (0.9, -2.0),
    "surprised": (1.2, 3.0),
    "excited": (1.15, 2.5),
    "enthusiastic": (1.1, 2.0),
    "professional": (0.95, -1.0),
}


class ElevenLabsSpeechProvider(StageProvider[SpeechRequest, SpeechResult]):
    """ElevenLabs /v1/text-to-speech/{voice_id}; response body is MP3 bytes."""

    name = "elevenlabs"
    stage = StageName.SPEECH

    def __init__(
        self,
        config: ProviderConfig,
        audio_store: AudioStore,
        model: str = "eleven_monolingual_v1",
        http_client: httpx.AsyncClient | None = None,
    ):
        super().__init__(config, http_client)
        self.audio_store = audio_store
        self.model = model

    @classmethod
    def from_settings(
        cls, settings: Settings, http_client: httpx.AsyncClient | None = None
    ) -> "ElevenLabsSpeechProvider":
        config = ProviderConfig(
            base_url="https://api.elevenlabs.io/v1",
            timeout=settings.provider_timeout,
            api_key=settings.elevenlabs_api_key,
        )
        return cls(
            config,
            audio_store=AudioStore(settings.audio_dir, settings.public_base_url),
            model=settings.elevenlabs_model,
            http_client=http_client,
        )

    async def generate(self, request: SpeechRequest) -> SpeechResult:
        """
        Synthesize speech and store it as MP3.

        Args:
            request: Speech request

        Returns:
            SpeechResult pointing at the stored file

        Raises:
            ProviderError: If synthesis fails or returns no audio
        """
        voice_id = request.voice_id or DEFAULT_VOICE_ID
        body = {
            "text": request.text,
            "model_id": self.model,
            "voice_settings": {"stability": 0.5, "similarity_boost": 0.5},
        }

        response = await self._request(
            "POST",
            f"{self.config.base_url}/text-to-speech/{voice_id}",
            headers={"xi-api-key": self.config.api_key, "Accept": "audio/mpeg"},
            json=body,
        )

        if not response.content:
            raise ProviderResponseError(
                "Empty audio in response", provider=self.name, stage=self.stage
            )

        audio_ref = await self.audio_store.save(
            response.content, request.text, request.language, request.emotion
        )
        return SpeechResult(
            audio_ref=audio_ref,
            duration_seconds=estimate_duration(request.text),
            provider=self.name,
        )


class GoogleSpeechProvider(StageProvider[SpeechRequest, SpeechResult]):
    """Google Cloud text:synthesize; response carries base64 ``audioContent``."""

    name = "google_tts"
    stage = StageName.SPEECH

    def __init__(
        self,
        config: ProviderConfig,
        audio_store: AudioStore,
        http_client: httpx.AsyncClient | None = None,
    ):
        super().__init__(config, http_client)
        self.audio_store = audio_store

    @classmethod
    def from_settings(
        cls, settings: Settings, http_client: httpx.AsyncClient | None = None
    ) -> "GoogleSpeechProvider":
        config = ProviderConfig(
            base_url="https://texttospeech.googleapis.com/v1",
            timeout=settings.provider_timeout,
            api_key=settings.google_tts_api_key,
        )
        return cls(
            config,
            audio_store=AudioStore(settings.audio_dir, settings.public_base_url),
            http_client=http_client,
        )

    async def generate(self, request: SpeechRequest) -> SpeechResult:
        voice = GOOGLE_VOICES.get(request.language, GOOGLE_VOICES["en"])
        speaking_rate, pitch = GOOGLE_PROSODY.get(request.emotion, (1.0, 0.0))
        body = {
            "input": {"text": request.text},
            "voice": voice,
            "audioConfig": {
                "audioEncoding": "MP3",
                "speakingRate": speaking_rate,
                "pitch": pitch,
            },
        }

        response = await self._request(
            "POST",
            f"{self.config.base_url}/text:synthesize",
            params={"key": self.config.api_key},
            json=body,
        )
        data = self._json(response)

        try:
            audio = base64.b64decode(data["audioContent"], validate=True)
        except (KeyError, TypeError, binascii.Error) as e:
            raise ProviderResponseError(
                "Missing or invalid audioContent",
                provider=self.name,
                stage=self.stage,
                original_error=e,
            ) from e

        if not audio:
            raise ProviderResponseError(
                "Empty audio in response", provider=self.name, stage=self.stage
            )

        audio_ref = await self.audio_store.save(
            audio, request.text, request.language, request.emotion
        )
        return SpeechResult(
            audio_ref=audio_ref,
            duration_seconds=estimate_duration(request.text),
            provider=self.name,
        )
