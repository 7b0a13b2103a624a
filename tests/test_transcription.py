"""Tests for the transcription adapters and their registry.

HOW: Adapters get an httpx.MockTransport, so requests are answered by a
local handler function and no network access happens. Async methods are
driven with asyncio.run() from synchronous tests.
"""

from __future__ import annotations

import asyncio
import json

import httpx
import pytest

from audiobook_aligner.transcription import (
    TRANSCRIBERS,
    SonioxTranscriber,
    TranscriptionAPIError,
    TranscriptionError,
    WhisperTranscriber,
    create_transcriber,
)
from audiobook_aligner.transcription.models import SonioxToken
from audiobook_aligner.transcription.soniox import tokens_to_segments

WHISPER_RESPONSE = {
    "task": "transcribe",
    "language": "english",
    "duration": 4.0,
    "text": "The cat sat on the mat. The dog ran in the yard.",
    "segments": [
        {"id": 0, "start": 0.0, "end": 2.0, "text": " The cat sat on the mat."},
        {"id": 1, "start": 2.0, "end": 4.0, "text": " The dog ran in the yard."},
    ],
}


def _transcribe(transcriber, audio=b"audio", filename="chunk_000.mp3"):
    async def _run():
        async with transcriber:
            return await transcriber.transcribe(audio, filename)
    return asyncio.run(_run())


# ---------------------------------------------------------------------------
# Whisper
# ---------------------------------------------------------------------------


class TestWhisperTranscriber:
    def test_posts_verbose_json_and_parses_segments(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["path"] = request.url.path
            seen["auth"] = request.headers["Authorization"]
            seen["body"] = request.content
            return httpx.Response(200, json=WHISPER_RESPONSE)

        transcriber = WhisperTranscriber(api_key="sk-test", transport=httpx.MockTransport(handler))
        segments = _transcribe(transcriber)

        assert seen["path"] == "/v1/audio/transcriptions"
        assert seen["auth"] == "Bearer sk-test"
        assert b"verbose_json" in seen["body"]
        assert b"whisper-1" in seen["body"]
        assert b'filename="chunk_000.mp3"' in seen["body"]
        assert [s.text for s in segments] == [" The cat sat on the mat.", " The dog ran in the yard."]
        assert [(s.start_s, s.end_s) for s in segments] == [(0.0, 2.0), (2.0, 4.0)]

    def test_language_is_sent_when_given(self):
        bodies = []

        def handler(request):
            bodies.append(request.content)
            return httpx.Response(200, json=WHISPER_RESPONSE)

        transcriber = WhisperTranscriber(
            api_key="k", language="sv", transport=httpx.MockTransport(handler),
        )
        _transcribe(transcriber)
        assert b'name="language"' in bodies[0]

    def test_error_status_raises_api_error(self):
        transport = httpx.MockTransport(lambda r: httpx.Response(413, text="Maximum content size exceeded"))
        transcriber = WhisperTranscriber(api_key="k", transport=transport)
        with pytest.raises(TranscriptionAPIError) as exc_info:
            _transcribe(transcriber)
        assert exc_info.value.status_code == 413
        assert "Maximum content size" in exc_info.value.message

    def test_malformed_segments_raise_transcription_error(self):
        transport = httpx.MockTransport(
            lambda r: httpx.Response(200, json={"segments": [{"text": "no times"}]})
        )
        transcriber = WhisperTranscriber(api_key="k", transport=transport)
        with pytest.raises(TranscriptionError):
            _transcribe(transcriber)

    @pytest.mark.parametrize("body", [
        json.dumps(["not", "an", "object"]),
        "<html>gateway</html>",
        json.dumps({"segments": "none"}),
    ])
    def test_unparsable_body_raises_transcription_error(self, body):
        transport = httpx.MockTransport(lambda r: httpx.Response(200, text=body))
        transcriber = WhisperTranscriber(api_key="k", transport=transport)
        with pytest.raises(TranscriptionError, match="Malformed Whisper response"):
            _transcribe(transcriber)

    def test_missing_segments_is_empty(self):
        transport = httpx.MockTransport(lambda r: httpx.Response(200, json={"text": ""}))
        transcriber = WhisperTranscriber(api_key="k", transport=transport)
        assert _transcribe(transcriber) == []

    def test_requires_context_manager(self):
        transcriber = WhisperTranscriber(api_key="k")
        with pytest.raises(RuntimeError, match="async context manager"):
            asyncio.run(transcriber.transcribe(b"x", "a.mp3"))

    def test_missing_api_key(self, monkeypatch):
        monkeypatch.delenv("OPENAI_API_KEY", raising=False)
        with pytest.raises(ValueError, match="OPENAI_API_KEY"):
            WhisperTranscriber()


# ---------------------------------------------------------------------------
# Soniox
# ---------------------------------------------------------------------------


TOKENS = [
    {"text": "The", "start_ms": 0, "end_ms": 200},
    {"text": " cat", "start_ms": 200, "end_ms": 500},
    {"text": ".", "start_ms": 500, "end_ms": 520},
    {"text": " Il", "start_ms": None, "end_ms": None, "translation_status": "translation"},
    {"text": " It", "start_ms": 900, "end_ms": 1000},
    {"text": " pur", "start_ms": 1000, "end_ms": 1200},
    {"text": "red", "start_ms": 1200, "end_ms": 1400},
]


class TestTokensToSegments:
    def test_groups_tokens_into_sentences(self):
        segments = tokens_to_segments([SonioxToken.from_dict(t) for t in TOKENS])
        assert [s.text for s in segments] == ["The cat.", " It purred"]
        assert [(s.start_s, s.end_s) for s in segments] == [(0.0, 0.52), (0.9, 1.4)]

    def test_empty(self):
        assert tokens_to_segments([]) == []


class _SonioxAPI:
    """Minimal in-memory Soniox API for MockTransport."""

    def __init__(self, final_status="completed", pending_polls=1):
        self.final_status = final_status
        self.pending_polls = pending_polls
        self.requests = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        key = (request.method, request.url.path)
        self.requests.append(key)
        if key == ("POST", "/v1/files"):
            return httpx.Response(201, json={"id": "file-1"})
        if key == ("POST", "/v1/transcriptions"):
            body = json.loads(request.content)
            assert body["file_id"] == "file-1"
            return httpx.Response(201, json={"id": "tr-1", "status": "queued"})
        if key == ("GET", "/v1/transcriptions/tr-1"):
            if self.pending_polls:
                self.pending_polls -= 1
                return httpx.Response(200, json={"id": "tr-1", "status": "processing"})
            return httpx.Response(200, json={
                "id": "tr-1", "status": self.final_status, "error_message": "bad audio",
            })
        if key == ("GET", "/v1/transcriptions/tr-1/transcript"):
            return httpx.Response(200, json={"id": "tr-1", "text": "", "tokens": TOKENS})
        if request.method == "DELETE":
            return httpx.Response(204)
        return httpx.Response(404, text="unexpected {} {}".format(*key))


class TestSonioxTranscriber:
    def test_full_job_workflow(self):
        api = _SonioxAPI()
        transcriber = SonioxTranscriber(
            api_key="k", poll_interval_s=0.0, transport=httpx.MockTransport(api),
        )
        segments = _transcribe(transcriber)

        assert [s.text for s in segments] == ["The cat.", " It purred"]
        assert api.requests[0] == ("POST", "/v1/files")
        assert ("DELETE", "/v1/transcriptions/tr-1") in api.requests
        assert ("DELETE", "/v1/files/file-1") in api.requests

    def test_failed_job_still_cleans_up(self):
        api = _SonioxAPI(final_status="error", pending_polls=0)
        transcriber = SonioxTranscriber(
            api_key="k", poll_interval_s=0.0, transport=httpx.MockTransport(api),
        )
        with pytest.raises(TranscriptionError, match="bad audio"):
            _transcribe(transcriber)
        assert ("DELETE", "/v1/transcriptions/tr-1") in api.requests
        assert ("DELETE", "/v1/files/file-1") in api.requests

    def test_upload_error(self):
        transport = httpx.MockTransport(lambda r: httpx.Response(401, text="invalid key"))
        transcriber = SonioxTranscriber(api_key="k", transport=transport)
        with pytest.raises(TranscriptionAPIError) as exc_info:
            _transcribe(transcriber)
        assert exc_info.value.status_code == 401

    def test_non_json_upload_response(self):
        transport = httpx.MockTransport(lambda r: httpx.Response(200, text="<html>gateway</html>"))
        transcriber = SonioxTranscriber(api_key="k", transport=transport)
        with pytest.raises(TranscriptionError, match="file upload"):
            _transcribe(transcriber)

    def test_transcription_without_id(self):
        api = _SonioxAPI()

        def handler(request):
            if (request.method, request.url.path) == ("POST", "/v1/transcriptions"):
                return httpx.Response(201, json={"status": "queued"})
            return api(request)

        transcriber = SonioxTranscriber(api_key="k", transport=httpx.MockTransport(handler))
        with pytest.raises(TranscriptionError, match="transcription request"):
            _transcribe(transcriber)
        assert ("DELETE", "/v1/files/file-1") in api.requests

    def test_malformed_status_still_cleans_up(self):
        api = _SonioxAPI(pending_polls=0)

        def handler(request):
            if (request.method, request.url.path) == ("GET", "/v1/transcriptions/tr-1"):
                return httpx.Response(200, json=["processing"])
            return api(request)

        transcriber = SonioxTranscriber(
            api_key="k", poll_interval_s=0.0, transport=httpx.MockTransport(handler),
        )
        with pytest.raises(TranscriptionError, match="Malformed Soniox status"):
            _transcribe(transcriber)
        assert ("DELETE", "/v1/transcriptions/tr-1") in api.requests
        assert ("DELETE", "/v1/files/file-1") in api.requests


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------


class TestRegistry:
    def test_known_providers(self):
        assert set(TRANSCRIBERS) == {"whisper", "soniox"}

    def test_create_transcriber(self):
        transcriber = create_transcriber("whisper", api_key="k", model="whisper-large")
        assert isinstance(transcriber, WhisperTranscriber)
        assert transcriber.name == "OpenAI Whisper (whisper-large)"

    def test_unknown_provider(self):
        with pytest.raises(ValueError, match="Available: soniox, whisper"):
            create_transcriber("deepgram")
