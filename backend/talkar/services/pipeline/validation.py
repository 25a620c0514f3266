"""
Input validation for pipeline operations.

Caller input is validated before any job is created or provider called;
failures raise ValidationError (HTTP 400, never retried).
"""

import re

from talkar.models.schemas import VALID_EMOTIONS
from talkar.services.pipeline.errors import ValidationError

MAX_SUBJECT_REF_LENGTH = 100
MAX_TEXT_LENGTH = 5000

LANGUAGE_ALIASES = {
    "english": "en",
    "hindi": "hi",
    "spanish": "es",
    "french": "fr",
}

_LANGUAGE_CODE = re.compile(r"[a-z]{2}")


def normalize_language(value: str | None) -> str | None:
    """
    Normalize a language to its 2-letter code.

    Args:
        value: Code ("en") or name ("English")

    Returns:
        Lowercase 2-letter code, or None if not recognizable
    """
    if not value:
        return None
    language = value.strip().casefold()
    language = LANGUAGE_ALIASES.get(language, language)
    return language if _LANGUAGE_CODE.fullmatch(language) else None


def validate_subject_ref(subject_ref: str | None) -> str:
    """Return the trimmed subject ref or raise ValidationError."""
    if subject_ref is None or not subject_ref.strip():
        raise ValidationError("subject_ref is required", field="subject_ref")
    subject_ref = subject_ref.strip()
    if len(subject_ref) > MAX_SUBJECT_REF_LENGTH:
        raise ValidationError(
            f"subject_ref too long (max {MAX_SUBJECT_REF_LENGTH} characters)",
            field="subject_ref",
        )
    return subject_ref


def validate_text(text: str | None) -> str:
    """Return the trimmed script text or raise ValidationError."""
    if text is None or not text.strip():
        raise ValidationError("text is required for audio generation", field="text")
    text = text.strip()
    if len(text) > MAX_TEXT_LENGTH:
        raise ValidationError(
            f"text too long for audio generation (max {MAX_TEXT_LENGTH} characters)",
            field="text",
        )
    return text


def validate_language(language: str | None) -> str | None:
    """Normalize a caller-supplied language; None passes through."""
    if language is None:
        return None
    code = normalize_language(language)
    if code is None:
        raise ValidationError(
            f"Invalid language '{language}' (expected a 2-letter code)",
            field="language",
        )
    return code


def validate_emotion(emotion: str | None) -> str | None:
    """Normalize a caller-supplied emotion; None passes through."""
    if emotion is None:
        return None
    value = emotion.strip().casefold()
    if value not in VALID_EMOTIONS:
        raise ValidationError(
            f"Invalid emotion '{emotion}'. Valid emotions: {', '.join(VALID_EMOTIONS)}",
            field="emotion",
        )
    return value


def validate_audio_ref(audio_ref: str | None) -> str:
    """Return the trimmed audio ref or raise ValidationError."""
    if audio_ref is None or not audio_ref.strip():
        raise ValidationError(
            "audio_ref is required for lip-sync generation", field="audio_ref"
        )
    return audio_ref.strip()
