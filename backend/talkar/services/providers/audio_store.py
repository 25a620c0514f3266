"""
Storage of synthesized audio files.

Filenames are derived from the content hash of the inputs, so the same
text/language/emotion always maps to the same file and public URL.
"""

import asyncio
import hashlib
import logging
from pathlib import Path

logger = logging.getLogger(__name__)


def estimate_duration(text: str) -> float:
    """Approximate spoken duration: ~15 chars per second, clamped to 5-30s."""
    return max(5.0, min(30.0, len(text) / 15))


class AudioStore:
    """
    Writes audio bytes under audio_dir and builds their public URLs.

    Example:
        store = AudioStore(Path("/data/audio"), "http://localhost:8801")
        url = await store.save(data, text="Hello", language="en", emotion="happy")
        # http://localhost:8801/audio/audio-1a2b...-en-happy.mp3
    """

    def __init__(self, audio_dir: Path, public_base_url: str):
        self.audio_dir = Path(audio_dir)
        self.public_base_url = public_base_url.rstrip("/")

    def filename_for(
        self,
        text: str,
        language: str,
        emotion: str | None,
        extension: str = "mp3",
        prefix: str = "audio",
    ) -> str:
        text_hash = hashlib.sha256(text.encode("utf-8")).hexdigest()[:16]
        emotion_suffix = f"-{emotion}" if emotion else ""
        return f"{prefix}-{text_hash}-{language}{emotion_suffix}.{extension}"

    def url_for(self, filename: str) -> str:
        return f"{self.public_base_url}/audio/{filename}"

    async def save(
        self,
        data: bytes,
        text: str,
        language: str,
        emotion: str | None = None,
        extension: str = "mp3",
        prefix: str = "audio",
    ) -> str:
        """
        Write audio bytes and return the public URL.

        Args:
            data: Encoded audio
            text: Source text (hashed into the filename)
            language: Language code
            emotion: Optional emotion suffix
            extension: File extension
            prefix: Filename prefix

        Returns:
            Public URL of the stored file
        """
        filename = self.filename_for(text, language, emotion, extension, prefix)
        path = self.audio_dir / filename
        await asyncio.to_thread(self._write, path, data)
        logger.debug(f"Audio saved: {path} ({len(data)} bytes)")
        return self.url_for(filename)

    def _write(self, path: Path, data: bytes) -> None:
        self.audio_dir.mkdir(parents=True, exist_ok=True)
        path.write_bytes(data)
