"""OpenAI Whisper transcription adapter.

WHY: Whisper's ``verbose_json`` response already contains sentence-level
segments with start/end times, exactly the coarse, time-coded text the
aligner needs. It is the default provider.

HOW: One multipart POST to ``/audio/transcriptions`` per chunk with
``response_format=verbose_json``. The response is parsed into
WhisperResponse and converted to TranscriptSegments.

RULES:
- Authentication is via Bearer token (OPENAI_API_KEY)
- Segment text is NOT stripped: Whisper separates words across segment
  boundaries with a leading space, and the assembler inserts none
- Non-2xx responses raise TranscriptionAPIError
- Malformed JSON or segments raise TranscriptionError
"""

from __future__ import annotations

import logging
from typing import List, Optional

import httpx

from audiobook_aligner.config import OPENAI_BASE_URL, WHISPER_MODEL, load_api_key
from audiobook_aligner.core.ir import TranscriptSegment
from audiobook_aligner.transcription.base import (
    MALFORMED_RESPONSE_ERRORS,
    BaseTranscriber,
    TranscriptionAPIError,
    TranscriptionError,
)
from audiobook_aligner.transcription.models import WhisperResponse

logger = logging.getLogger(__name__)


class WhisperTranscriber(BaseTranscriber):
    """Transcribe chunks with the OpenAI (or compatible) Whisper endpoint."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        model: Optional[str] = None,
        language: Optional[str] = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        key = api_key or load_api_key("whisper")
        super().__init__(
            base_url=base_url or OPENAI_BASE_URL,
            headers={"Authorization": "Bearer {}".format(key)},
            transport=transport,
        )
        self._model = model or WHISPER_MODEL
        self._language = language

    @property
    def name(self) -> str:
        return "OpenAI Whisper ({})".format(self._model)

    async def transcribe(self, audio: bytes, filename: str) -> List[TranscriptSegment]:
        client = self._ensure_client()
        data = {"model": self._model, "response_format": "verbose_json"}
        if self._language:
            data["language"] = self._language

        resp = await client.post(
            "/audio/transcriptions",
            files={"file": (filename, audio)},
            data=data,
        )
        if resp.status_code != 200:
            raise TranscriptionAPIError(resp.status_code, resp.text)

        try:
            parsed = WhisperResponse.from_dict(resp.json())
        except MALFORMED_RESPONSE_ERRORS as exc:
            raise TranscriptionError(
                "Malformed Whisper response for {}: {}".format(filename, exc)
            ) from exc

        segments = [
            TranscriptSegment(text=s.text, start_s=s.start, end_s=s.end)
            for s in parsed.segments
        ]
        logger.debug("Whisper returned %d segments for %s", len(segments), filename)
        return segments
