"""Abstract transcription adapter and its error types.

WHY: The alignment core only needs one thing from a speech-to-text
service: an ordered list of time-coded text segments for a chunk of
audio. Hiding each service behind the same narrow interface keeps the
core testable with synthetic segments and makes adding a provider a
one-module change.

HOW: BaseTranscriber is an ABC with a ``name`` property and an async
``transcribe()`` method. Concrete adapters own an httpx.AsyncClient and
are used as async context managers so the connection pool is closed.

RULES:
- Subclasses MUST implement ``name`` and ``transcribe()``
- transcribe() returns segments with times relative to the *chunk*
- Segment text is returned verbatim (leading spaces preserved)
- Service failures raise one of the exceptions below; the pipeline
  turns them into a per-chunk failure
- Unparsable response bodies are re-raised as TranscriptionError

To add a new transcription service:
1. Create a new file in transcription/
2. Subclass BaseTranscriber
3. Implement transcribe() and name
4. Register in TRANSCRIBERS in transcription/__init__.py
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import List

import httpx

from audiobook_aligner.core.ir import TranscriptSegment


class TranscriptionAPIError(Exception):
    """Raised when a transcription service returns an error response.

    RULES:
    - Always include status_code and message
    - message is the response body text or a summary
    """

    def __init__(self, status_code: int, message: str) -> None:
        self.status_code = status_code
        self.message = message
        super().__init__("Transcription API error {}: {}".format(status_code, message))


class TranscriptionError(Exception):
    """Raised when a transcription job fails or returns an unusable response."""


class TranscriptionTimeoutError(TimeoutError):
    """Raised when waiting for a transcription exceeds the maximum timeout."""


# What parsing a malformed JSON body (wrong shape, missing keys, not JSON) raises
MALFORMED_RESPONSE_ERRORS = (KeyError, TypeError, ValueError, AttributeError)


class BaseTranscriber(ABC):
    """Abstract base for all transcription adapters.

    Subclasses call ``super().__init__(base_url, headers, transport)``
    and get a managed ``httpx.AsyncClient`` via ``_ensure_client()``.
    """

    def __init__(
        self,
        base_url: str,
        headers: dict,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._headers = headers
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    async def __aenter__(self) -> BaseTranscriber:
        self._client = httpx.AsyncClient(
            base_url=self._base_url,
            headers=self._headers,
            timeout=httpx.Timeout(300.0, connect=30.0),
            transport=self._transport,
        )
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:  # noqa: ANN001
        if self._client:
            await self._client.aclose()
            self._client = None

    def _ensure_client(self) -> httpx.AsyncClient:
        """Return the active httpx client, raising if not in context manager."""
        if self._client is None:
            raise RuntimeError(
                "{} must be used as an async context manager: "
                "async with transcriber: ...".format(type(self).__name__)
            )
        return self._client

    @property
    @abstractmethod
    def name(self) -> str:
        """Human-readable provider name, e.g. 'OpenAI Whisper (whisper-1)'."""

    @abstractmethod
    async def transcribe(self, audio: bytes, filename: str) -> List[TranscriptSegment]:
        """Transcribe one chunk of audio.

        Args:
            audio: Encoded audio bytes of a single chunk.
            filename: Name to upload the bytes under (extension matters
                      to most services).

        Returns:
            Ordered TranscriptSegments with chunk-relative times.
        """
