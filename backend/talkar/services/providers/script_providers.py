"""
Script providers: LLM backends that write the ad copy.

OpenAI and Groq share the OpenAI-compatible chat completions API;
Ollama uses its native /api/generate endpoint.
"""

import logging

import httpx

from talkar.config import Settings
from talkar.models.schemas import ScriptRequest, ScriptResult, StageName
from talkar.services.providers.base import (
    ProviderConfig,
    ProviderResponseError,
    StageProvider,
)

logger = logging.getLogger(__name__)

# Longest script accepted from a provider (characters)
MAX_SCRIPT_LENGTH = 500

TONE_DESCRIPTIONS = {
    "friendly": "warm, approachable, and welcoming",
    "excited": "energetic, enthusiastic, and vibrant",
    "professional": "formal, authoritative, and business-oriented",
    "casual": "relaxed, informal, and conversational",
    "enthusiastic": "passionate, eager, and optimistic",
    "persuasive": "convincing, compelling, and influential",
}

LANGUAGE_NAMES = {
    "en": "English",
    "hi": "Hindi",
    "es": "Spanish",
    "fr": "French",
}

SYSTEM_PROMPT = (
    "You are an advertising copywriter. "
    "Reply with the voiceover text only, without quotes or stage directions."
)


def get_tone_description(tone: str) -> str:
    """Describe a tone for the prompt (unknown tones read as friendly)."""
    return TONE_DESCRIPTIONS.get(tone, TONE_DESCRIPTIONS["friendly"])


def build_script_prompt(request: ScriptRequest) -> str:
    """
    Build the generation prompt from subject metadata.

    Args:
        request: Script request; ``request.emotion`` is used as the tone

    Returns:
        Prompt text asking for a 2-line voiceover
    """
    subject = request.subject
    tone = request.emotion
    language = LANGUAGE_NAMES.get(request.language, request.language)

    if subject is None:
        return (
            f'Describe the product "{request.subject_ref}" in 2 engaging lines '
            f"for an advertisement.\nLanguage: {language}\n"
            f"The tone should be {tone} - {get_tone_description(tone)}."
        )

    if subject.features:
        features = "\n".join(
            f"{index}. {feature}" for index, feature in enumerate(subject.features, 1)
        )
    else:
        features = "High-quality product"

    price = f"{subject.price:g}" if subject.price is not None else "N/A"

    return (
        f"Generate a 2-line voiceover for an advertisement about {subject.name}.\n"
        f"Category: {subject.category or 'General'}\n"
        f"Brand: {subject.brand or 'Premium'}\n"
        f"Tone: {tone}\n"
        f"Language: {language}\n"
        f"\n"
        f"Product Description: {subject.description or 'A premium product'}\n"
        f"Key Features:\n"
        f"{features}\n"
        f"\n"
        f"Price: {subject.currency} {price}\n"
        f"\n"
        f"Create an engaging, concise advertisement script that highlights the "
        f"product's value proposition and appeals to the target audience.\n"
        f"The tone should be {tone} - {get_tone_description(tone)}."
    )


class _ScriptProvider(StageProvider[ScriptRequest, ScriptResult]):
    """Shared response validation for script providers."""

    stage = StageName.SCRIPT

    def _to_result(self, text: str, request: ScriptRequest) -> ScriptResult:
        text = text.strip().strip('"').strip()
        if not text:
            raise ProviderResponseError(
                "Empty script in response", provider=self.name, stage=self.stage
            )
        if len(text) > MAX_SCRIPT_LENGTH:
            raise ProviderResponseError(
                f"Script too long ({len(text)} chars)",
                provider=self.name,
                stage=self.stage,
            )

        logger.debug(f"{self.name} generated {len(text)} chars")
        return ScriptResult(
            text=text,
            language=request.language,
            emotion=request.emotion,
            provider=self.name,
        )


class ChatCompletionScriptProvider(_ScriptProvider):
    """
    Script provider for OpenAI-compatible chat completion APIs.

    Subclasses only differ in name, endpoint and default model.
    """

    def __init__(
        self,
        config: ProviderConfig,
        model: str,
        http_client: httpx.AsyncClient | None = None,
        max_tokens: int = 100,
        temperature: float = 0.7,
    ):
        super().__init__(config, http_client)
        self.model = model
        self.max_tokens = max_tokens
        self.temperature = temperature

    async def generate(self, request: ScriptRequest) -> ScriptResult:
        """
        Generate ad copy via /chat/completions.

        Args:
            request: Script request with subject metadata

        Returns:
            ScriptResult with the generated text

        Raises:
            ProviderError: If generation fails or the reply is unusable
        """
        body = {
            "model": self.model,
            "messages": [
                {"role": "system", "content": SYSTEM_PROMPT},
                {"role": "user", "content": build_script_prompt(request)},
            ],
            "max_tokens": self.max_tokens,
            "temperature": self.temperature,
        }

        response = await self._request(
            "POST",
            f"{self.config.base_url}/chat/completions",
            headers={"Authorization": f"Bearer {self.config.api_key}"},
            json=body,
        )
        data = self._json(response)

        try:
            text = data["choices"][0]["message"]["content"] or ""
        except (KeyError, IndexError, TypeError) as e:
            raise ProviderResponseError(
                "Malformed chat completion response",
                provider=self.name,
                stage=self.stage,
                response_body=response.text[:500],
                original_error=e,
            ) from e

        return self._to_result(text, request)


class OpenAIScriptProvider(ChatCompletionScriptProvider):
    """OpenAI chat completions (gpt-4o-mini by default)."""

    name = "openai"

    @classmethod
    def from_settings(
        cls, settings: Settings, http_client: httpx.AsyncClient | None = None
    ) -> "OpenAIScriptProvider":
        config = ProviderConfig(
            base_url="https://api.openai.com/v1",
            timeout=settings.provider_timeout,
            api_key=settings.openai_api_key,
        )
        return cls(config, model=settings.openai_model, http_client=http_client)


class GroqScriptProvider(ChatCompletionScriptProvider):
    """Groq OpenAI-compatible endpoint (llama-3.1-8b-instant by default)."""

    name = "groq"

    @classmethod
    def from_settings(
        cls, settings: Settings, http_client: httpx.AsyncClient | None = None
    ) -> "GroqScriptProvider":
        config = ProviderConfig(
            base_url="https://api.groq.com/openai/v1",
            timeout=settings.provider_timeout,
            api_key=settings.groq_api_key,
        )
        return cls(config, model=settings.groq_model, http_client=http_client)


class OllamaScriptProvider(_ScriptProvider):
    """
    Local Ollama server via /api/generate.

    Ollama needs no credentials, so availability is an explicit opt-in
    (``ollama_enabled``) rather than the presence of an API key.
    """

    name = "ollama"

    def __init__(
        self,
        config: ProviderConfig,
        model: str,
        enabled: bool = False,
        http_client: httpx.AsyncClient | None = None,
    ):
        super().__init__(config, http_client)
        self.model = model
        self.enabled = enabled

    @classmethod
    def from_settings(
        cls, settings: Settings, http_client: httpx.AsyncClient | None = None
    ) -> "OllamaScriptProvider":
        config = ProviderConfig(
            base_url=settings.ollama_url,
            timeout=settings.provider_timeout,
        )
        return cls(
            config,
            model=settings.ollama_model,
            enabled=settings.ollama_enabled,
            http_client=http_client,
        )

    @property
    def available(self) -> bool:
        return self.enabled and bool(self.config.base_url)

    async def generate(self, request: ScriptRequest) -> ScriptResult:
        body = {
            "model": self.model,
            "prompt": f"{SYSTEM_PROMPT}\n\n{build_script_prompt(request)}",
            "stream": False,
            "options": {"num_predict": 100, "temperature": 0.7},
        }

        response = await self._request(
            "POST", f"{self.config.base_url}/api/generate", json=body
        )
        data = self._json(response)
        return self._to_result(data.get("response") or "", request)
