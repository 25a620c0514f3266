"""
Base provider interface for generation stages.

Every stage (script, speech, lip-sync) is served by an ordered chain of
interchangeable providers. All of them implement StageProvider so the
selector can consume any chain generically, without per-stage cases.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Generic, TypeVar

import httpx

from talkar.models.schemas import StageName

logger = logging.getLogger(__name__)

RequestT = TypeVar("RequestT")
ResultT = TypeVar("ResultT")


@dataclass
class ProviderConfig:
    """
    Configuration for provider instances.

    Attributes:
        base_url: API endpoint URL
        timeout: Timeout of a single HTTP request in seconds
        api_key: API key; providers that require one are unavailable without it
    """

    base_url: str
    timeout: float = 10.0
    api_key: str | None = None


class ProviderError(Exception):
    """
    Base exception for provider errors.

    Provider errors are transient by default: the retry engine retries
    them, then the selector escalates to the next provider.

    Attributes:
        message: Error description
        provider: Provider name (openai, elevenlabs, sync, etc.)
        stage: Stage the provider serves
        original_error: Underlying exception if available
    """

    retryable = True

    def __init__(
        self,
        message: str,
        provider: str | None = None,
        stage: StageName | str | None = None,
        original_error: Exception | None = None,
    ):
        self.message = message
        self.provider = provider
        self.stage = stage
        self.original_error = original_error
        super().__init__(message)

    def __str__(self) -> str:
        parts = [self.message]
        if self.provider:
            parts.append(f"provider={self.provider}")
        if self.stage:
            stage = self.stage.value if isinstance(self.stage, StageName) else self.stage
            parts.append(f"stage={stage}")
        return " | ".join(parts)


class ProviderTimeoutError(ProviderError):
    """Raised when a provider call exceeds its deadline."""

    pass


class ProviderConnectionError(ProviderError):
    """Raised when the provider endpoint cannot be reached."""

    pass


class ProviderResponseError(ProviderError):
    """
    Raised when the provider returns an error or unusable response.

    Attributes:
        status_code: HTTP status code (None for malformed payloads)
        response_body: Response body text (truncated)
    """

    def __init__(
        self,
        message: str,
        provider: str | None = None,
        stage: StageName | str | None = None,
        status_code: int | None = None,
        response_body: str | None = None,
        original_error: Exception | None = None,
    ):
        super().__init__(message, provider, stage, original_error)
        self.status_code = status_code
        self.response_body = response_body

    def __str__(self) -> str:
        base = super().__str__()
        if self.status_code:
            return f"{base} | status={self.status_code}"
        return base


class ProviderNotConfiguredError(ProviderError):
    """Raised when credentials are missing or rejected (HTTP 401/403).

    Retrying cannot fix a bad key, so the selector moves on immediately.
    """

    retryable = False


class StageProvider(ABC, Generic[RequestT, ResultT]):
    """
    Base class for all stage providers.

    Subclasses set ``name`` and ``stage`` and implement generate().
    HTTP-backed providers get a shared request helper that maps httpx
    failures onto the provider error taxonomy.

    Example:
        async with OpenAIScriptProvider.from_settings(settings) as provider:
            if provider.available:
                result = await provider.generate(ScriptRequest(subject_ref="sunrich-001"))
    """

    name: str = "provider"
    stage: StageName

    def __init__(
        self,
        config: ProviderConfig | None = None,
        http_client: httpx.AsyncClient | None = None,
    ):
        """
        Initialize provider.

        Args:
            config: Endpoint configuration (None for providers without I/O)
            http_client: Shared client; a private one is created lazily otherwise
        """
        self.config = config
        self._http_client = http_client
        self._owns_client = http_client is None

    @property
    def available(self) -> bool:
        """Whether the provider can be called.

        Derived from configuration only, never from network probing.
        """
        return bool(self.config and self.config.api_key)

    @property
    def is_fallback(self) -> bool:
        """True for the local generator that terminates a chain."""
        return False

    @property
    def http_client(self) -> httpx.AsyncClient:
        """HTTP client, created on first use.

        No global timeout: each request sets its own explicitly.
        """
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(timeout=None)
        return self._http_client

    @abstractmethod
    async def generate(self, request: RequestT) -> ResultT:
        """
        Produce the stage output for a request.

        Args:
            request: Stage input model

        Returns:
            Stage output model

        Raises:
            ProviderError: If generation fails
        """
        pass

    async def close(self) -> None:
        """Close the HTTP client if this provider created it."""
        if self._owns_client and self._http_client is not None:
            await self._http_client.aclose()
            self._http_client = None

    async def __aenter__(self) -> "StageProvider[RequestT, ResultT]":
        """Context manager entry."""
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        """Context manager exit."""
        await self.close()

    async def _request(
        self,
        method: str,
        url: str,
        *,
        headers: dict[str, str] | None = None,
        json: Any = None,
        params: dict[str, str] | None = None,
        timeout: float | None = None,
    ) -> httpx.Response:
        """
        Send an HTTP request and map failures to provider errors.

        Args:
            method: HTTP method
            url: Full request URL
            headers: Extra headers
            json: JSON body
            params: Query parameters
            timeout: Request timeout (default: config.timeout)

        Returns:
            Successful (2xx) response

        Raises:
            ProviderNotConfiguredError: On HTTP 401/403
            ProviderResponseError: On other HTTP error statuses
            ProviderTimeoutError: On request timeout
            ProviderConnectionError: If the endpoint is unreachable
        """
        if timeout is None:
            timeout = self.config.timeout if self.config else 10.0

        try:
            response = await self.http_client.request(
                method,
                url,
                headers=headers,
                json=json,
                params=params,
                timeout=timeout,
            )
            response.raise_for_status()
            return response

        except httpx.TimeoutException as e:
            logger.warning(f"{self.name} request timeout after {timeout}s")
            raise ProviderTimeoutError(
                f"Request timeout after {timeout}s",
                provider=self.name,
                stage=self.stage,
                original_error=e,
            ) from e

        except httpx.HTTPStatusError as e:
            status = e.response.status_code
            logger.warning(f"{self.name} HTTP error: {status}")
            if status in (401, 403):
                raise ProviderNotConfiguredError(
                    f"Invalid API key (HTTP {status})",
                    provider=self.name,
                    stage=self.stage,
                    original_error=e,
                ) from e
            if status == 429:
                message = "Rate limit exceeded"
            elif status >= 500:
                message = "Service temporarily unavailable"
            else:
                message = f"Request failed: HTTP {status}"
            raise ProviderResponseError(
                message,
                provider=self.name,
                stage=self.stage,
                status_code=status,
                response_body=e.response.text[:500],
                original_error=e,
            ) from e

        except httpx.RequestError as e:
            logger.warning(f"{self.name} connection error: {e}")
            raise ProviderConnectionError(
                f"Cannot connect to {url}",
                provider=self.name,
                stage=self.stage,
                original_error=e,
            ) from e

    def _json(self, response: httpx.Response) -> dict:
        """Decode a JSON object body or raise ProviderResponseError."""
        try:
            data = response.json()
        except ValueError as e:
            raise ProviderResponseError(
                "Response is not valid JSON",
                provider=self.name,
                stage=self.stage,
                status_code=response.status_code,
                response_body=response.text[:500],
                original_error=e,
            ) from e
        if not isinstance(data, dict):
            raise ProviderResponseError(
                "Unexpected response shape",
                provider=self.name,
                stage=self.stage,
                status_code=response.status_code,
            )
        return data
