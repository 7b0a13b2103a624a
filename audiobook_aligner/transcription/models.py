"""Transcription service response dataclasses.

WHY: Each speech-to-text service answers in its own JSON shape. Typed
dataclasses make those shapes explicit and keep parsing (and its failure
modes) in one place, away from the HTTP plumbing.

HOW: One dataclass per JSON object, each with a from_dict() factory.
Whisper's verbose_json gives sentence-level segments directly; Soniox
gives flat sub-word tokens that the Soniox adapter groups into segments.

RULES:
- Whisper segment times are float seconds; Soniox token times are
  integer milliseconds (None only on translation tokens)
- from_dict() raises KeyError/TypeError/ValueError on malformed input;
  adapters convert those to TranscriptionError
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import List, Optional


@dataclass
class WhisperSegment:
    """One segment of an OpenAI Whisper ``verbose_json`` response.

    RULES:
    - text: raw segment text, usually with a leading space (" The cat")
    - start/end: float seconds relative to the uploaded audio
    """

    id: int
    start: float
    end: float
    text: str

    @classmethod
    def from_dict(cls, data: dict) -> WhisperSegment:
        return cls(
            id=int(data.get("id", 0)),
            start=float(data["start"]),
            end=float(data["end"]),
            text=str(data["text"]),
        )


@dataclass
class WhisperResponse:
    """Top-level ``verbose_json`` transcription response."""

    text: str
    duration: Optional[float]
    language: Optional[str]
    segments: List[WhisperSegment]

    @classmethod
    def from_dict(cls, data: dict) -> WhisperResponse:
        duration = data.get("duration")
        return cls(
            text=data.get("text", ""),
            duration=float(duration) if duration is not None else None,
            language=data.get("language"),
            segments=[WhisperSegment.from_dict(s) for s in data.get("segments") or []],
        )


@dataclass
class SonioxToken:
    """A single token from the Soniox async transcript response.

    WHY: Soniox uses BPE tokenization, producing sub-word fragments like
    [" fan", "tastic"]. The Soniox adapter joins these back into
    sentence segments.

    RULES:
    - text: raw token text including leading space if present (e.g. " are")
    - start_ms/end_ms: integer milliseconds, None only for translation tokens
    - translation_status: "original", "translation", or "none" when
      translation is configured, else None
    """

    text: str
    start_ms: Optional[int]
    end_ms: Optional[int]
    confidence: float = 1.0
    translation_status: Optional[str] = None

    @classmethod
    def from_dict(cls, data: dict) -> SonioxToken:
        return cls(
            text=data["text"],
            start_ms=data.get("start_ms"),
            end_ms=data.get("end_ms"),
            confidence=data.get("confidence", 1.0),
            translation_status=data.get("translation_status"),
        )


@dataclass
class TranscriptionStatus:
    """Status response from polling GET /v1/transcriptions/{id}.

    RULES:
    - status is one of: "queued", "processing", "completed", "error"
    - error_message is only present when status is "error"
    """

    id: str
    status: str
    file_id: Optional[str] = None
    error_message: Optional[str] = None

    @classmethod
    def from_dict(cls, data: dict) -> TranscriptionStatus:
        return cls(
            id=data["id"],
            status=data["status"],
            file_id=data.get("file_id"),
            error_message=data.get("error_message"),
        )


@dataclass
class SonioxTranscript:
    """Full transcript response from GET /v1/transcriptions/{id}/transcript."""

    id: str
    text: str
    tokens: List[SonioxToken]

    @classmethod
    def from_dict(cls, data: dict) -> SonioxTranscript:
        return cls(
            id=data["id"],
            text=data.get("text", ""),
            tokens=[SonioxToken.from_dict(t) for t in data["tokens"]],
        )
