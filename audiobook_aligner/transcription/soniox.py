"""Soniox async transcription adapter.

WHY: Soniox is an alternative hosted speech-to-text service with
word-accurate token timing. Its async API works on uploaded files and
returns flat sub-word tokens rather than segments, so this adapter runs
the full job workflow and groups tokens into sentence segments.

HOW: Per chunk: upload_file → create_transcription → poll_until_complete
→ fetch_tokens → cleanup (always, best-effort). tokens_to_segments()
then concatenates token text verbatim and closes a segment after every
sentence-ending punctuation token.

RULES:
- Default model is stt-async-v4
- Polling uses exponential backoff: 2s initial, 1.5x factor, 15s max,
  60 min timeout
- Translation tokens (translation_status="translation") are dropped
- Token text keeps its leading space (Soniox's word boundary marker),
  so concatenated segment text reads like the spoken sentence
- Segment start/end come from the first/last token, ms → seconds
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import List, Optional, Sequence

import httpx

from audiobook_aligner.config import SONIOX_BASE_URL, SONIOX_MODEL, load_api_key
from audiobook_aligner.core.ir import TranscriptSegment
from audiobook_aligner.transcription.base import (
    MALFORMED_RESPONSE_ERRORS,
    BaseTranscriber,
    TranscriptionAPIError,
    TranscriptionError,
    TranscriptionTimeoutError,
)
from audiobook_aligner.transcription.models import (
    SonioxToken,
    SonioxTranscript,
    TranscriptionStatus,
)

logger = logging.getLogger(__name__)

_POLL_INITIAL_INTERVAL_S = 2.0
_POLL_BACKOFF_FACTOR = 1.5
_POLL_MAX_INTERVAL_S = 15.0
_POLL_TIMEOUT_S = 60 * 60  # 60 minutes

_SENTENCE_END = (".", "?", "!")


def tokens_to_segments(tokens: Sequence[SonioxToken]) -> List[TranscriptSegment]:
    """Group Soniox sub-word tokens into sentence-level TranscriptSegments.

    RULES:
    - Tokens without timing (translations) are skipped
    - A segment closes after a token whose text ends in . ? or !
    - Trailing tokens without sentence-ending punctuation form a final segment
    """
    segments: List[TranscriptSegment] = []
    parts: List[str] = []
    start_ms = 0
    end_ms = 0

    for token in tokens:
        if token.translation_status == "translation":
            continue
        if token.start_ms is None or token.end_ms is None:
            continue
        if not parts:
            start_ms = token.start_ms
        parts.append(token.text)
        end_ms = token.end_ms
        if token.text.rstrip().endswith(_SENTENCE_END):
            segments.append(TranscriptSegment(
                text="".join(parts),
                start_s=start_ms / 1000.0,
                end_s=end_ms / 1000.0,
            ))
            parts = []

    if parts:
        segments.append(TranscriptSegment(
            text="".join(parts),
            start_s=start_ms / 1000.0,
            end_s=end_ms / 1000.0,
        ))
    return segments


def _response_id(resp: httpx.Response, what: str) -> str:
    """Return the ``id`` of a Soniox create/upload response."""
    try:
        return str(resp.json()["id"])
    except MALFORMED_RESPONSE_ERRORS as exc:
        raise TranscriptionError(
            "Malformed Soniox {} response: {}".format(what, exc)
        ) from exc


class SonioxTranscriber(BaseTranscriber):
    """Transcribe chunks with the Soniox non-realtime API."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        model: Optional[str] = None,
        language_hints: Optional[List[str]] = None,
        poll_interval_s: float = _POLL_INITIAL_INTERVAL_S,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        key = api_key or load_api_key("soniox")
        super().__init__(
            base_url=base_url or SONIOX_BASE_URL,
            headers={"Authorization": "Bearer {}".format(key)},
            transport=transport,
        )
        self._model = model or SONIOX_MODEL
        self._language_hints = language_hints
        self._poll_interval_s = poll_interval_s

    @property
    def name(self) -> str:
        return "Soniox ({})".format(self._model)

    async def transcribe(self, audio: bytes, filename: str) -> List[TranscriptSegment]:
        file_id = await self.upload_file(audio, filename)
        transcription_id: Optional[str] = None
        try:
            transcription_id = await self.create_transcription(file_id)
            await self.poll_until_complete(transcription_id)
            tokens = await self.fetch_tokens(transcription_id)
        finally:
            await self.cleanup(transcription_id, file_id)
        return tokens_to_segments(tokens)

    async def upload_file(self, audio: bytes, filename: str) -> str:
        """POST /files and return the Soniox file_id."""
        client = self._ensure_client()
        resp = await client.post("/files", files={"file": (filename, audio)})
        if resp.status_code not in (200, 201):
            raise TranscriptionAPIError(resp.status_code, resp.text)
        return _response_id(resp, "file upload")

    async def create_transcription(self, file_id: str) -> str:
        """POST /transcriptions for an uploaded file and return the transcription id."""
        client = self._ensure_client()
        body: dict = {"model": self._model, "file_id": file_id}
        if self._language_hints:
            body["language_hints"] = self._language_hints

        resp = await client.post("/transcriptions", json=body)
        if resp.status_code not in (200, 201):
            raise TranscriptionAPIError(resp.status_code, resp.text)
        return _response_id(resp, "transcription request")

    async def poll_until_complete(self, transcription_id: str) -> TranscriptionStatus:
        """Poll a transcription job until it completes or fails.

        RULES:
        - Returns the status when it is "completed"
        - Raises TranscriptionError when status is "error"
        - Raises TranscriptionTimeoutError after 60 minutes
        """
        client = self._ensure_client()
        interval = self._poll_interval_s
        start_time = time.monotonic()

        while True:
            elapsed = time.monotonic() - start_time
            if elapsed > _POLL_TIMEOUT_S:
                raise TranscriptionTimeoutError(
                    "Transcription {} timed out after {:.0f}s (limit: {}s)".format(
                        transcription_id, elapsed, _POLL_TIMEOUT_S
                    )
                )

            resp = await client.get("/transcriptions/{}".format(transcription_id))
            if resp.status_code != 200:
                raise TranscriptionAPIError(resp.status_code, resp.text)

            try:
                status = TranscriptionStatus.from_dict(resp.json())
            except MALFORMED_RESPONSE_ERRORS as exc:
                raise TranscriptionError(
                    "Malformed Soniox status for {}: {}".format(transcription_id, exc)
                ) from exc
            if status.status == "completed":
                return status
            if status.status == "error":
                raise TranscriptionError(
                    "Transcription failed: {}".format(status.error_message)
                )

            logger.debug("Soniox transcription %s is %s", transcription_id, status.status)
            await asyncio.sleep(interval)
            interval = min(interval * _POLL_BACKOFF_FACTOR, _POLL_MAX_INTERVAL_S)

    async def fetch_tokens(self, transcription_id: str) -> List[SonioxToken]:
        """GET the completed transcript and return its flat token list."""
        client = self._ensure_client()
        resp = await client.get("/transcriptions/{}/transcript".format(transcription_id))
        if resp.status_code != 200:
            raise TranscriptionAPIError(resp.status_code, resp.text)
        try:
            return SonioxTranscript.from_dict(resp.json()).tokens
        except MALFORMED_RESPONSE_ERRORS as exc:
            raise TranscriptionError(
                "Malformed Soniox transcript {}: {}".format(transcription_id, exc)
            ) from exc

    async def cleanup(self, transcription_id: Optional[str], file_id: str) -> None:
        """Delete the transcription and uploaded file (best-effort).

        Soniox has storage limits, so this runs after every chunk, even
        when the transcription failed.
        """
        client = self._ensure_client()
        if transcription_id:
            try:
                await client.delete("/transcriptions/{}".format(transcription_id))
            except httpx.HTTPError:
                logger.warning("Failed to delete Soniox transcription %s", transcription_id)
        try:
            await client.delete("/files/{}".format(file_id))
        except httpx.HTTPError:
            logger.warning("Failed to delete Soniox file %s", file_id)
