"""Transcription adapter registry for pluggable speech-to-text services.

WHY: The CLI, HTTP API, and pipeline need a single lookup to find the
right transcription adapter by name. A central dict makes adding a
service trivial: create the adapter class, import it here, add one line.

HOW: TRANSCRIBERS maps provider keys to adapter *classes* (not
instances). create_transcriber() instantiates one, which loads the API
key from the environment.

RULES:
- Keys are lowercase identifiers (used in CLI flags, config, etc.)
- Values are BaseTranscriber subclasses (not instances)
- Every adapter listed here must be importable without side effects
"""

from __future__ import annotations

from typing import Dict, Type

from audiobook_aligner.transcription.base import (
    BaseTranscriber,
    TranscriptionAPIError,
    TranscriptionError,
    TranscriptionTimeoutError,
)
from audiobook_aligner.transcription.soniox import SonioxTranscriber
from audiobook_aligner.transcription.whisper import WhisperTranscriber

TRANSCRIBERS: Dict[str, Type[BaseTranscriber]] = {
    "whisper": WhisperTranscriber,
    "soniox": SonioxTranscriber,
}


def create_transcriber(provider: str, **kwargs) -> BaseTranscriber:
    """Instantiate the adapter registered under `provider`.

    Raises:
        ValueError: Unknown provider, or its API key is not configured.
    """
    try:
        cls = TRANSCRIBERS[provider]
    except KeyError:
        available = ", ".join(sorted(TRANSCRIBERS))
        raise ValueError(
            "Unknown transcription provider '{}'. Available: {}".format(provider, available)
        ) from None
    return cls(**kwargs)


__all__ = [
    "TRANSCRIBERS",
    "BaseTranscriber",
    "SonioxTranscriber",
    "TranscriptionAPIError",
    "TranscriptionError",
    "TranscriptionTimeoutError",
    "WhisperTranscriber",
    "create_transcriber",
]
