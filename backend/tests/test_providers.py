"""Tests for the external providers and local generators.

HTTP providers are exercised against httpx.MockTransport, so no
network access is needed.

Test coverage:
- Availability derived from configuration
- Request shape and response parsing per provider
- Mapping of HTTP failures onto provider errors
- Sync.so job polling
- Local fallback generators and the script prompt
- File writes off the event loop
"""

import base64
import json
import threading
import wave

import httpx
import pytest

from talkar.models.schemas import (
    LipSyncRequest,
    ScriptRequest,
    SpeechRequest,
    StageName,
    SubjectMetadata,
)
from talkar.services.asset_recorder import AssetRecorder
from talkar.services.pipeline import FallbackFactory
from talkar.services.providers import (
    AudioStore,
    ElevenLabsSpeechProvider,
    GoogleSpeechProvider,
    GroqScriptProvider,
    OllamaScriptProvider,
    OpenAIScriptProvider,
    ProviderConnectionError,
    ProviderNotConfiguredError,
    ProviderResponseError,
    ProviderTimeoutError,
    SyncLipSyncProvider,
    build_script_prompt,
)

from .conftest import SUNRICH

SCRIPT_REQUEST = ScriptRequest(
    subject_ref="sunrich-001", language="en", emotion="friendly", subject=SUNRICH
)


def mock_client(handler) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


def chat_reply(text: str) -> dict:
    return {"choices": [{"message": {"role": "assistant", "content": text}}]}


@pytest.fixture
def keyed_settings(settings):
    return settings.model_copy(
        update={
            "openai_api_key": "sk-test",
            "groq_api_key": "gsk-test",
            "elevenlabs_api_key": "el-test",
            "google_tts_api_key": "g-test",
            "sync_api_key": "sync-test",
        }
    )


class TestAvailability:
    """Availability comes from configuration only."""

    def test_without_keys(self, settings, retry_engine):
        providers = [
            OpenAIScriptProvider.from_settings(settings),
            GroqScriptProvider.from_settings(settings),
            OllamaScriptProvider.from_settings(settings),
            ElevenLabsSpeechProvider.from_settings(settings),
            GoogleSpeechProvider.from_settings(settings),
            SyncLipSyncProvider.from_settings(settings, retry_engine),
        ]
        assert [p.available for p in providers] == [False] * 6

    def test_with_keys(self, keyed_settings, retry_engine):
        assert OpenAIScriptProvider.from_settings(keyed_settings).available
        assert ElevenLabsSpeechProvider.from_settings(keyed_settings).available
        assert SyncLipSyncProvider.from_settings(keyed_settings, retry_engine).available

    def test_ollama_is_opt_in(self, settings):
        enabled = settings.model_copy(update={"ollama_enabled": True})
        assert OllamaScriptProvider.from_settings(enabled).available


class TestChatCompletionProviders:
    """OpenAI and Groq."""

    @pytest.mark.asyncio
    async def test_openai_request_and_reply(self, keyed_settings):
        captured = {}

        def handler(request: httpx.Request) -> httpx.Response:
            captured["url"] = str(request.url)
            captured["auth"] = request.headers["Authorization"]
            captured["body"] = json.loads(request.content)
            return httpx.Response(200, json=chat_reply('"Stay fresh with Sunrich!"'))

        async with mock_client(handler) as client:
            provider = OpenAIScriptProvider.from_settings(keyed_settings, client)
            result = await provider.generate(SCRIPT_REQUEST)

        assert result.text == "Stay fresh with Sunrich!"
        assert result.provider == "openai"
        assert captured["url"] == "https://api.openai.com/v1/chat/completions"
        assert captured["auth"] == "Bearer sk-test"
        assert captured["body"]["model"] == keyed_settings.openai_model
        assert "Sunrich Water Bottle" in captured["body"]["messages"][1]["content"]

    @pytest.mark.asyncio
    async def test_groq_endpoint(self, keyed_settings):
        urls = []

        def handler(request: httpx.Request) -> httpx.Response:
            urls.append(str(request.url))
            return httpx.Response(200, json=chat_reply("Hydrate happily."))

        async with mock_client(handler) as client:
            provider = GroqScriptProvider.from_settings(keyed_settings, client)
            result = await provider.generate(SCRIPT_REQUEST)

        assert result.provider == "groq"
        assert urls == ["https://api.groq.com/openai/v1/chat/completions"]

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "status, error_type",
        [
            (401, ProviderNotConfiguredError),
            (403, ProviderNotConfiguredError),
            (429, ProviderResponseError),
            (503, ProviderResponseError),
            (400, ProviderResponseError),
        ],
    )
    async def test_http_errors(self, keyed_settings, status, error_type):
        async with mock_client(lambda request: httpx.Response(status, text="nope")) as client:
            provider = OpenAIScriptProvider.from_settings(keyed_settings, client)
            with pytest.raises(error_type) as exc_info:
                await provider.generate(SCRIPT_REQUEST)

        assert exc_info.value.provider == "openai"
        assert exc_info.value.stage == StageName.SCRIPT

    @pytest.mark.asyncio
    async def test_rate_limit_message(self, keyed_settings):
        async with mock_client(lambda request: httpx.Response(429)) as client:
            provider = OpenAIScriptProvider.from_settings(keyed_settings, client)
            with pytest.raises(ProviderResponseError) as exc_info:
                await provider.generate(SCRIPT_REQUEST)

        assert exc_info.value.status_code == 429
        assert "Rate limit exceeded" in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_timeout(self, keyed_settings):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ReadTimeout("timed out", request=request)

        async with mock_client(handler) as client:
            provider = OpenAIScriptProvider.from_settings(keyed_settings, client)
            with pytest.raises(ProviderTimeoutError):
                await provider.generate(SCRIPT_REQUEST)

    @pytest.mark.asyncio
    async def test_connection_error(self, keyed_settings):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("refused", request=request)

        async with mock_client(handler) as client:
            provider = GroqScriptProvider.from_settings(keyed_settings, client)
            with pytest.raises(ProviderConnectionError):
                await provider.generate(SCRIPT_REQUEST)

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "payload",
        [
            {"choices": []},
            chat_reply("   "),
            chat_reply("x" * 501),
        ],
    )
    async def test_unusable_replies(self, keyed_settings, payload):
        async with mock_client(lambda request: httpx.Response(200, json=payload)) as client:
            provider = OpenAIScriptProvider.from_settings(keyed_settings, client)
            with pytest.raises(ProviderResponseError):
                await provider.generate(SCRIPT_REQUEST)

    @pytest.mark.asyncio
    async def test_non_json_reply(self, keyed_settings):
        async with mock_client(lambda request: httpx.Response(200, text="<html>")) as client:
            provider = OpenAIScriptProvider.from_settings(keyed_settings, client)
            with pytest.raises(ProviderResponseError, match="not valid JSON"):
                await provider.generate(SCRIPT_REQUEST)


class TestOllama:
    @pytest.mark.asyncio
    async def test_generate(self, settings):
        enabled = settings.model_copy(update={"ollama_enabled": True})
        captured = {}

        def handler(request: httpx.Request) -> httpx.Response:
            captured["url"] = str(request.url)
            captured["body"] = json.loads(request.content)
            return httpx.Response(200, json={"response": "Sunrich keeps you going."})

        async with mock_client(handler) as client:
            provider = OllamaScriptProvider.from_settings(enabled, client)
            result = await provider.generate(SCRIPT_REQUEST)

        assert result.text == "Sunrich keeps you going."
        assert captured["url"] == f"{enabled.ollama_url}/api/generate"
        assert captured["body"]["stream"] is False


class TestSpeechProviders:
    """ElevenLabs and Google TTS."""

    @pytest.mark.asyncio
    async def test_elevenlabs_saves_mp3(self, keyed_settings):
        captured = {}

        def handler(request: httpx.Request) -> httpx.Response:
            captured["url"] = str(request.url)
            captured["key"] = request.headers["xi-api-key"]
            return httpx.Response(200, content=b"ID3fake-mp3")

        request = SpeechRequest(text="Stay fresh!", language="en", emotion="happy")
        async with mock_client(handler) as client:
            provider = ElevenLabsSpeechProvider.from_settings(keyed_settings, client)
            result = await provider.generate(request)

        assert captured["url"].endswith("/text-to-speech/21m00Tcm4TlvDq8ikWAM")
        assert captured["key"] == "el-test"
        assert result.audio_ref.startswith("http://talkar.test/audio/audio-")
        assert result.audio_ref.endswith("-en-happy.mp3")
        assert result.duration_seconds == 5.0

        filename = result.audio_ref.rsplit("/", 1)[1]
        assert (keyed_settings.audio_dir / filename).read_bytes() == b"ID3fake-mp3"

    @pytest.mark.asyncio
    async def test_elevenlabs_custom_voice(self, keyed_settings):
        urls = []

        def handler(request: httpx.Request) -> httpx.Response:
            urls.append(str(request.url))
            return httpx.Response(200, content=b"mp3")

        request = SpeechRequest(text="Hi", voice_id="voice-42")
        async with mock_client(handler) as client:
            await ElevenLabsSpeechProvider.from_settings(keyed_settings, client).generate(request)

        assert urls[0].endswith("/text-to-speech/voice-42")

    @pytest.mark.asyncio
    async def test_elevenlabs_empty_audio(self, keyed_settings):
        async with mock_client(lambda request: httpx.Response(200, content=b"")) as client:
            provider = ElevenLabsSpeechProvider.from_settings(keyed_settings, client)
            with pytest.raises(ProviderResponseError, match="Empty audio"):
                await provider.generate(SpeechRequest(text="Hi"))

    @pytest.mark.asyncio
    async def test_google_decodes_audio(self, keyed_settings):
        captured = {}

        def handler(request: httpx.Request) -> httpx.Response:
            captured["key"] = request.url.params["key"]
            captured["body"] = json.loads(request.content)
            return httpx.Response(
                200, json={"audioContent": base64.b64encode(b"mp3-bytes").decode()}
            )

        request = SpeechRequest(text="Hola amigos", language="es", emotion="excited")
        async with mock_client(handler) as client:
            provider = GoogleSpeechProvider.from_settings(keyed_settings, client)
            result = await provider.generate(request)

        assert captured["key"] == "g-test"
        assert captured["body"]["voice"]["languageCode"] == "es-ES"
        assert captured["body"]["audioConfig"]["speakingRate"] == 1.15
        filename = result.audio_ref.rsplit("/", 1)[1]
        assert (keyed_settings.audio_dir / filename).read_bytes() == b"mp3-bytes"

    @pytest.mark.asyncio
    async def test_google_invalid_audio(self, keyed_settings):
        payload = {"audioContent": "not base64!!"}
        async with mock_client(lambda request: httpx.Response(200, json=payload)) as client:
            provider = GoogleSpeechProvider.from_settings(keyed_settings, client)
            with pytest.raises(ProviderResponseError, match="audioContent"):
                await provider.generate(SpeechRequest(text="Hi"))


class TestSyncLipSync:
    """Sync.so submission and job polling."""

    REQUEST = LipSyncRequest(
        subject_ref="sunrich-001", audio_ref="https://audio.test/a.mp3", emotion="happy"
    )

    @pytest.mark.asyncio
    async def test_immediate_video(self, keyed_settings, retry_engine):
        captured = {}

        def handler(request: httpx.Request) -> httpx.Response:
            captured["key"] = request.headers["x-api-key"]
            captured["body"] = json.loads(request.content)
            return httpx.Response(200, json={"videoUrl": "https://cdn.sync.so/v.mp4", "duration": 12})

        async with mock_client(handler) as client:
            provider = SyncLipSyncProvider.from_settings(keyed_settings, retry_engine, client)
            result = await provider.generate(self.REQUEST)

        assert result.video_ref == "https://cdn.sync.so/v.mp4"
        assert result.duration_seconds == 12
        assert captured["key"] == "sync-test"
        assert captured["body"] == {
            "audio_url": "https://audio.test/a.mp3",
            "avatar": "https://talkar-image-storage.com/sunrich-001.jpg",
            "emotion": "happy",
        }

    @pytest.mark.asyncio
    async def test_polls_job_until_completed(self, keyed_settings, retry_engine, sleep_recorder):
        statuses = iter(["queued", "processing", "completed"])
        submissions = []

        def handler(request: httpx.Request) -> httpx.Response:
            if request.method == "POST":
                submissions.append(request)
                return httpx.Response(200, json={"jobId": "job-7", "status": "queued"})
            assert request.url.path.endswith("/jobs/job-7")
            status = next(statuses)
            body = {"status": status}
            if status == "completed":
                body["videoUrl"] = "https://cdn.sync.so/job-7.mp4"
            return httpx.Response(200, json=body)

        async with mock_client(handler) as client:
            provider = SyncLipSyncProvider.from_settings(keyed_settings, retry_engine, client)
            result = await provider.generate(self.REQUEST)

        assert result.video_ref == "https://cdn.sync.so/job-7.mp4"
        assert result.job_id == "job-7"
        assert sleep_recorder.delays == [keyed_settings.poll_interval] * 2
        assert len(submissions) == 1

    @pytest.mark.asyncio
    async def test_failed_job(self, keyed_settings, retry_engine):
        def handler(request: httpx.Request) -> httpx.Response:
            if request.method == "POST":
                return httpx.Response(200, json={"jobId": "job-8"})
            return httpx.Response(200, json={"status": "failed", "error": "bad audio"})

        async with mock_client(handler) as client:
            provider = SyncLipSyncProvider.from_settings(keyed_settings, retry_engine, client)
            with pytest.raises(ProviderResponseError, match="bad audio"):
                await provider.generate(self.REQUEST)

    @pytest.mark.asyncio
    async def test_job_never_finishes(self, keyed_settings, retry_engine):
        def handler(request: httpx.Request) -> httpx.Response:
            if request.method == "POST":
                return httpx.Response(200, json={"jobId": "job-9"})
            return httpx.Response(200, json={"status": "processing"})

        async with mock_client(handler) as client:
            provider = SyncLipSyncProvider.from_settings(keyed_settings, retry_engine, client)
            with pytest.raises(ProviderTimeoutError):
                await provider.generate(self.REQUEST)

    @pytest.mark.asyncio
    async def test_no_video_and_no_job(self, keyed_settings, retry_engine):
        async with mock_client(lambda request: httpx.Response(200, json={"ok": True})) as client:
            provider = SyncLipSyncProvider.from_settings(keyed_settings, retry_engine, client)
            with pytest.raises(ProviderResponseError, match="No video URL"):
                await provider.generate(self.REQUEST)


class TestLocalGenerators:
    """Fallback generators that terminate every chain."""

    @pytest.mark.asyncio
    async def test_script_template(self, settings):
        generator = FallbackFactory(settings).create(StageName.SCRIPT)

        result = await generator.generate(SCRIPT_REQUEST.model_copy(update={"emotion": "excited"}))

        assert "Sunrich Water Bottle" in result.text
        assert result.text.startswith("Wow!")
        assert generator.available and generator.is_fallback

    @pytest.mark.asyncio
    async def test_script_template_other_language(self, settings):
        generator = FallbackFactory(settings).create(StageName.SCRIPT)

        result = await generator.generate(
            ScriptRequest(subject_ref="sunrich-001", language="es", emotion="professional", subject=SUNRICH)
        )

        # Spanish has no "professional" template: English one for that tone is used
        assert result.text.startswith("Introducing the premium Sunrich Water Bottle")

    @pytest.mark.asyncio
    async def test_speech_writes_silent_wav(self, settings):
        generator = FallbackFactory(settings).create(StageName.SPEECH)

        result = await generator.generate(SpeechRequest(text="x" * 150, language="en", emotion="happy"))

        filename = result.audio_ref.rsplit("/", 1)[1]
        assert filename.startswith("local-") and filename.endswith(".wav")
        with wave.open(str(settings.audio_dir / filename), "rb") as wav:
            assert wav.getnframes() / wav.getframerate() == pytest.approx(10.0)
        assert result.duration_seconds == 10.0

    @pytest.mark.asyncio
    async def test_speech_is_deterministic(self, settings):
        generator = FallbackFactory(settings).create(StageName.SPEECH)
        request = SpeechRequest(text="Same text", language="en")

        first = await generator.generate(request)
        second = await generator.generate(request)

        assert first.audio_ref == second.audio_ref

    @pytest.mark.asyncio
    async def test_lipsync_stock_video(self, settings):
        generator = FallbackFactory(settings).create(StageName.LIPSYNC)

        result = await generator.generate(
            LipSyncRequest(subject_ref="sunrich-001", audio_ref="https://a/1.mp3", emotion="serious")
        )

        assert result.video_ref == "http://talkar.test/videos/stock/talking-head-serious.mp4"
        assert result.duration_seconds == 15.0

    def test_placeholder_audio(self, settings):
        placeholder = FallbackFactory(settings).create_placeholder_audio()
        assert placeholder.provider == "placeholder"
        assert placeholder.audio_ref.startswith("https://")


class TestFileWrites:
    """Audio and asset files are written off the event loop."""

    @pytest.mark.asyncio
    async def test_audio_store_writes_in_worker_thread(self, settings, monkeypatch):
        store = AudioStore(settings.audio_dir, settings.public_base_url)
        threads = []
        write = AudioStore._write

        def recording_write(self, path, data):
            threads.append(threading.get_ident())
            write(self, path, data)

        monkeypatch.setattr(AudioStore, "_write", recording_write)

        url = await store.save(b"ID3", text="Hello", language="en", emotion="happy")

        assert threads and threads[0] != threading.get_ident()
        assert url.startswith("http://talkar.test/audio/audio-")
        assert (settings.audio_dir / url.rsplit("/", 1)[1]).read_bytes() == b"ID3"

    @pytest.mark.asyncio
    async def test_asset_recorder_appends_in_worker_thread(self, settings, monkeypatch):
        recorder = AssetRecorder(settings)
        threads = []
        append = AssetRecorder._append

        def recording_append(self, line):
            threads.append(threading.get_ident())
            append(self, line)

        monkeypatch.setattr(AssetRecorder, "_append", recording_append)

        await recorder.record_generated_asset(
            "sunrich-001", "https://video.test/v.mp4", "https://audio.test/a.mp3", "happy"
        )

        assert threads and threads[0] != threading.get_ident()
        assert [a["video_ref"] for a in recorder.list_assets("sunrich-001")] == [
            "https://video.test/v.mp4"
        ]


class TestScriptPrompt:
    def test_includes_metadata(self):
        prompt = build_script_prompt(SCRIPT_REQUEST)

        assert "Sunrich Water Bottle" in prompt
        assert "1. Naturally alkaline" in prompt
        assert "INR 20" in prompt
        assert "warm, approachable, and welcoming" in prompt

    def test_without_metadata(self):
        prompt = build_script_prompt(
            ScriptRequest(subject_ref="mystery-box", language="hi", emotion="excited")
        )

        assert '"mystery-box"' in prompt
        assert "Language: Hindi" in prompt

    def test_defaults_for_sparse_metadata(self):
        subject = SubjectMetadata(subject_ref="x", name="Widget")
        prompt = build_script_prompt(
            ScriptRequest(subject_ref="x", emotion="neutral", subject=subject)
        )

        assert "High-quality product" in prompt
        assert "USD N/A" in prompt
