"""
Local fallback generators for pipeline stages.

Creates deterministic, I/O-free (apart from a local file write) outputs
when every external provider of a stage is unavailable or failing,
so a stage always completes with a degraded but valid result.
"""

import asyncio
import io
import logging
import wave

from talkar.config import Settings
from talkar.models.schemas import (
    LipSyncRequest,
    LipSyncResult,
    ScriptRequest,
    ScriptResult,
    SpeechRequest,
    SpeechResult,
    StageName,
)
from talkar.services.providers.audio_store import AudioStore, estimate_duration
from talkar.services.providers.base import StageProvider

logger = logging.getLogger(__name__)

PLACEHOLDER_AUDIO_URL = "https://assets.sync.so/docs/placeholder-audio.mp3"
PLACEHOLDER_AUDIO_DURATION = 2.0

STOCK_VIDEO_DURATION = 15.0

WAV_SAMPLE_RATE = 8000

# Templates keyed by language, then tone/emotion. {name} = product name.
SCRIPT_TEMPLATES = {
    "en": {
        "friendly": "Hi there! Check out the amazing {name} - it's perfect for you!",
        "excited": "Wow! Get ready for the incredible {name} - you won't believe how awesome it is!",
        "professional": "Introducing the premium {name}, engineered for discerning professionals who demand excellence.",
        "casual": "Hey, you should really check out this cool {name} - it's pretty awesome!",
        "enthusiastic": "You're going to love the fantastic {name} - it's everything you've been looking for!",
        "persuasive": "Don't miss out on the exceptional {name} - transform your experience today!",
        "neutral": "Discover the {name}. Quality and innovation in every detail.",
        "happy": "Say hello to the {name} - a little bit of joy, every single day!",
        "surprised": "Oh wow, have you seen the {name}? It's even better than you'd think!",
        "serious": "The {name}: dependable quality you can count on.",
    },
    "es": {
        "friendly": "¡Hola! Descubre el increíble {name}, ¡es perfecto para ti!",
        "excited": "¡Guau! Prepárate para el increíble {name}, ¡no creerás lo genial que es!",
        "neutral": "Descubre {name}. Calidad e innovación en cada detalle.",
    },
    "fr": {
        "friendly": "Bonjour ! Découvrez l'incroyable {name}, parfait pour vous !",
        "excited": "Waouh ! Préparez-vous pour l'incroyable {name} !",
        "neutral": "Découvrez {name}. Qualité et innovation dans chaque détail.",
    },
}


class LocalScriptGenerator(StageProvider[ScriptRequest, ScriptResult]):
    """Templated ad copy built from the product name and tone."""

    name = "local"
    stage = StageName.SCRIPT

    def __init__(self, delay: float = 0.0):
        super().__init__()
        self.delay = delay

    @property
    def available(self) -> bool:
        return True

    @property
    def is_fallback(self) -> bool:
        return True

    async def generate(self, request: ScriptRequest) -> ScriptResult:
        if self.delay:
            await asyncio.sleep(self.delay)

        name = request.subject.name if request.subject else request.subject_ref
        templates = SCRIPT_TEMPLATES.get(request.language, SCRIPT_TEMPLATES["en"])
        template = (
            templates.get(request.emotion)
            or SCRIPT_TEMPLATES["en"].get(request.emotion)
            or templates.get("friendly", SCRIPT_TEMPLATES["en"]["friendly"])
        )

        return ScriptResult(
            text=template.format(name=name),
            language=request.language,
            emotion=request.emotion,
            provider=self.name,
        )


class LocalSpeechGenerator(StageProvider[SpeechRequest, SpeechResult]):
    """
    Writes a silent WAV whose length matches the estimated speech duration.

    The file name is derived from the text hash, so repeated requests
    overwrite the same artifact.
    """

    name = "local"
    stage = StageName.SPEECH

    def __init__(self, audio_store: AudioStore, delay: float = 0.0):
        super().__init__()
        self.audio_store = audio_store
        self.delay = delay

    @property
    def available(self) -> bool:
        return True

    @property
    def is_fallback(self) -> bool:
        return True

    async def generate(self, request: SpeechRequest) -> SpeechResult:
        if self.delay:
            await asyncio.sleep(self.delay)

        duration = estimate_duration(request.text)
        audio_ref = await self.audio_store.save(
            _silent_wav(duration),
            request.text,
            request.language,
            request.emotion,
            extension="wav",
            prefix="local",
        )

        return SpeechResult(
            audio_ref=audio_ref,
            duration_seconds=duration,
            provider=self.name,
        )


class LocalLipSyncGenerator(StageProvider[LipSyncRequest, LipSyncResult]):
    """Returns a stock talking-head video per emotion."""

    name = "local"
    stage = StageName.LIPSYNC

    def __init__(self, public_base_url: str, delay: float = 0.0):
        super().__init__()
        self.public_base_url = public_base_url.rstrip("/")
        self.delay = delay

    @property
    def available(self) -> bool:
        return True

    @property
    def is_fallback(self) -> bool:
        return True

    async def generate(self, request: LipSyncRequest) -> LipSyncResult:
        if self.delay:
            await asyncio.sleep(self.delay)

        emotion = request.emotion or "neutral"
        return LipSyncResult(
            video_ref=f"{self.public_base_url}/videos/stock/talking-head-{emotion}.mp4",
            duration_seconds=STOCK_VIDEO_DURATION,
            provider=self.name,
        )


def _silent_wav(duration_seconds: float) -> bytes:
    """Encode mono 8-bit silence of the given length as WAV."""
    frames = int(WAV_SAMPLE_RATE * duration_seconds)
    buffer = io.BytesIO()
    with wave.open(buffer, "wb") as wav:
        wav.setnchannels(1)
        wav.setsampwidth(1)
        wav.setframerate(WAV_SAMPLE_RATE)
        # 8-bit PCM is unsigned: 0x80 is the zero level
        wav.writeframes(b"\x80" * frames)
    return buffer.getvalue()


class FallbackFactory:
    """
    Factory for the local generators that terminate every provider chain.

    Example:
        factory = FallbackFactory(settings)
        script_fallback = factory.create(StageName.SCRIPT)
        placeholder = factory.create_placeholder_audio()
    """

    def __init__(self, settings: Settings):
        """
        Initialize fallback factory.

        Args:
            settings: Application settings (audio_dir, public_base_url, delay)
        """
        self.settings = settings
        self.audio_store = AudioStore(settings.audio_dir, settings.public_base_url)

    def create(self, stage: StageName) -> StageProvider:
        """
        Create the local generator for a stage.

        Args:
            stage: Pipeline stage

        Returns:
            Always-available local generator
        """
        delay = self.settings.local_generator_delay
        if stage == StageName.SCRIPT:
            return LocalScriptGenerator(delay=delay)
        if stage == StageName.SPEECH:
            return LocalSpeechGenerator(self.audio_store, delay=delay)
        return LocalLipSyncGenerator(self.settings.public_base_url, delay=delay)

    def create_placeholder_audio(self) -> SpeechResult:
        """
        Create the placeholder track used to warm up streaming runs.

        Internal only: never returned to callers or written to caches.
        """
        return SpeechResult(
            audio_ref=PLACEHOLDER_AUDIO_URL,
            duration_seconds=PLACEHOLDER_AUDIO_DURATION,
            provider="placeholder",
        )
