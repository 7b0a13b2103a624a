"""Configuration constants, tuning settings, and .env loading.

WHY: Centralizes every configurable value (chunk size limits, fuzzy
match tolerance, transcription concurrency, provider endpoints) so it is
easy to find, update, and override without touching pipeline logic.

HOW: python-dotenv loads the .env file on import. Constants are
module-level values read from the environment with sensible defaults.
AlignerSettings bundles the three alignment tuning knobs into one
validated, immutable object that is passed down the pipeline.

RULES:
- All defaults can be overridden via environment variables
- API keys are loaded from .env via python-dotenv, never hardcoded
- The chunk target must not exceed the hard chunk limit
- Tolerance is a fraction of needle length in [0, 1)
"""

from __future__ import annotations

import os
from dataclasses import dataclass

from dotenv import load_dotenv

# Load .env from the project root (where the script is run from)
load_dotenv()

_MB = 1024 * 1024

# ---------------------------------------------------------------------------
# Chunking and alignment defaults
# ---------------------------------------------------------------------------

MAX_CHUNK_BYTES = int(os.getenv("ALIGNER_MAX_CHUNK_BYTES", str(25 * _MB)))
"""Hard payload limit of the transcription service (Whisper: 25 MB)."""

TARGET_CHUNK_BYTES = int(os.getenv("ALIGNER_TARGET_CHUNK_BYTES", str(24 * _MB)))
"""Size each chunk is planned against, slightly under the hard limit."""

MATCH_TOLERANCE = float(os.getenv("ALIGNER_MATCH_TOLERANCE", "0.30"))
CONCURRENCY = int(os.getenv("ALIGNER_CONCURRENCY", "4"))

# ---------------------------------------------------------------------------
# Supported audio file extensions
# ---------------------------------------------------------------------------

SUPPORTED_AUDIO_FORMATS: set[str] = {
    ".flac", ".m4a", ".mp3", ".mp4", ".mpeg",
    ".mpga", ".ogg", ".wav", ".webm",
}
"""Audio file extensions accepted for alignment (lowercase, with dot)."""

# ---------------------------------------------------------------------------
# Transcription provider defaults
# ---------------------------------------------------------------------------

DEFAULT_PROVIDER = os.getenv("ALIGNER_PROVIDER", "whisper")

OPENAI_BASE_URL = os.getenv("OPENAI_BASE_URL", "https://api.openai.com/v1")
WHISPER_MODEL = os.getenv("WHISPER_MODEL", "whisper-1")

SONIOX_BASE_URL = os.getenv("SONIOX_BASE_URL", "https://api.soniox.com/v1")
SONIOX_MODEL = os.getenv("SONIOX_MODEL", "stt-async-v4")

_API_KEY_VARS = {
    "whisper": "OPENAI_API_KEY",
    "soniox": "SONIOX_API_KEY",
}


@dataclass(frozen=True)
class AlignerSettings:
    """Tuning knobs for one alignment run.

    WHY: The chunker, locator, and pipeline each need a different subset
    of the same three values. One immutable object keeps them consistent
    and lets tests override a single field.

    RULES:
    - max_chunk_bytes: hard per-request size limit (bytes)
    - target_chunk_bytes: planning size per chunk, <= max_chunk_bytes
    - tolerance: accepted edit distance as a fraction of needle length
    - concurrency: max chunk transcriptions in flight (>= 1)
    """

    max_chunk_bytes: int = MAX_CHUNK_BYTES
    target_chunk_bytes: int = TARGET_CHUNK_BYTES
    tolerance: float = MATCH_TOLERANCE
    concurrency: int = CONCURRENCY

    def __post_init__(self) -> None:
        if self.max_chunk_bytes <= 0 or self.target_chunk_bytes <= 0:
            raise ValueError("Chunk sizes must be positive.")
        if self.target_chunk_bytes > self.max_chunk_bytes:
            raise ValueError(
                "Target chunk size ({:,} bytes) exceeds the chunk limit "
                "({:,} bytes).".format(self.target_chunk_bytes, self.max_chunk_bytes)
            )
        if not 0.0 <= self.tolerance < 1.0:
            raise ValueError(
                "Match tolerance must be in [0, 1), got {}.".format(self.tolerance)
            )
        if self.concurrency < 1:
            raise ValueError("Concurrency must be at least 1.")

    @classmethod
    def from_env(cls) -> AlignerSettings:
        """Build settings from the module-level environment defaults."""
        return cls(
            max_chunk_bytes=MAX_CHUNK_BYTES,
            target_chunk_bytes=TARGET_CHUNK_BYTES,
            tolerance=MATCH_TOLERANCE,
            concurrency=CONCURRENCY,
        )


def load_api_key(provider: str) -> str:
    """Load the API key for a transcription provider from the environment.

    WHY: Every hosted transcription call needs a key. Loading it from the
    environment (via .env) keeps it out of source code.

    RULES:
    - "whisper" reads OPENAI_API_KEY, "soniox" reads SONIOX_API_KEY
    - Raises ValueError for unknown providers or missing/empty keys
    - Never returns a default/placeholder value
    """
    var = _API_KEY_VARS.get(provider)
    if var is None:
        raise ValueError("Unknown transcription provider: {}".format(provider))
    key = os.getenv(var, "").strip()
    if not key:
        raise ValueError(
            "{} API key not configured. "
            "Add {} to the .env file in the app folder.".format(provider.capitalize(), var)
        )
    return key
