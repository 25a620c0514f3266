"""
Generated asset recorder.

Appends one JSON line per finished video to data_dir/generated_assets.jsonl
so generated content can be looked up and reused later.
"""

import asyncio
import json
import logging
from datetime import datetime
from pathlib import Path

from talkar.config import Settings

logger = logging.getLogger(__name__)


class AssetRecorder:
    """
    Records generated videos per subject.

    Example:
        recorder = AssetRecorder(settings)
        await recorder.record_generated_asset("sunrich-001", video_url, audio_url)
        recorder.list_assets("sunrich-001")
    """

    def __init__(self, settings: Settings):
        """
        Initialize recorder.

        Args:
            settings: Application settings (data_dir)
        """
        self.path: Path = settings.data_dir / "generated_assets.jsonl"

    async def record_generated_asset(
        self,
        subject_ref: str,
        video_ref: str,
        audio_ref: str,
        emotion: str | None = None,
    ) -> None:
        """
        Append an asset record.

        Args:
            subject_ref: Subject the video belongs to
            video_ref: Rendered video URL
            audio_ref: Voice track URL
            emotion: Emotion used for rendering

        Raises:
            OSError: If the file cannot be written (callers treat this as best-effort)
        """
        record = {
            "subject_ref": subject_ref,
            "video_ref": video_ref,
            "audio_ref": audio_ref,
            "emotion": emotion,
            "recorded_at": datetime.now().isoformat(),
        }

        await asyncio.to_thread(self._append, json.dumps(record, ensure_ascii=False))
        logger.debug(f"Recorded asset for {subject_ref}: {video_ref}")

    def _append(self, line: str) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with open(self.path, "a", encoding="utf-8") as f:
            f.write(line + "\n")

    def list_assets(self, subject_ref: str | None = None) -> list[dict]:
        """
        Read recorded assets.

        Args:
            subject_ref: Only return assets of this subject (None = all)

        Returns:
            Asset records, oldest first
        """
        if not self.path.exists():
            return []

        assets = []
        with open(self.path, "r", encoding="utf-8") as f:
            for line in f:
                line = line.strip()
                if not line:
                    continue
                record = json.loads(line)
                if subject_ref is None or record.get("subject_ref") == subject_ref:
                    assets.append(record)
        return assets
