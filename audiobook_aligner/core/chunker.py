"""Split oversized audio assets into transcribable chunks.

WHY: Hosted transcription services cap the request payload (Whisper:
25 MB). A narrated book chapter is routinely larger, so the asset is cut
into time-contiguous chunks that each fit under the cap. Each chunk keeps
its start offset so segment times can be shifted back onto the asset
timeline after transcription.

HOW: plan_chunks() is pure arithmetic: ceil(size / target) chunks of
equal duration. probe_duration() asks ffprobe for the asset duration.
split_audio() writes the asset to a temp directory, cuts each planned
span with ffmpeg (stream copy, no re-encode), reads the chunk bytes back,
and removes every temp file.

RULES:
- Assets at or under max_chunk_bytes become one chunk spanning the whole
  duration (no ffmpeg call)
- Chunk count = ceil(size_bytes / target_chunk_bytes); duration split evenly
- Chunk spans cover [0, duration) exactly, with no gaps or overlaps
- An undeterminable duration is fatal for the asset (AudioProbeError)
- Temp file or ffmpeg failures are fatal for the asset (ChunkingError)
"""

from __future__ import annotations

import logging
import math
import subprocess
import tempfile
from pathlib import Path
from typing import List, Tuple

from audiobook_aligner.config import AlignerSettings
from audiobook_aligner.core.ir import AudioAsset, AudioChunk

logger = logging.getLogger(__name__)

_FFPROBE_TIMEOUT_S = 60
_FFMPEG_TIMEOUT_S = 600


class AudioProcessingError(Exception):
    """Base class for errors that make an audio asset unusable."""


class AudioProbeError(AudioProcessingError):
    """Raised when the duration of an audio asset cannot be determined."""


class ChunkingError(AudioProcessingError):
    """Raised when chunk files cannot be written, cut, or read back."""


def plan_chunks(
    size_bytes: int,
    duration_s: float,
    max_chunk_bytes: int,
    target_chunk_bytes: int,
) -> List[Tuple[float, float]]:
    """Plan (start_s, duration_s) spans for an asset.

    WHY: Separating the arithmetic from ffmpeg makes the coverage
    invariant testable without any audio tooling.

    HOW: Boundaries are computed as duration * i / n so the last span
    ends exactly at the asset duration regardless of float rounding in
    the per-chunk duration.

    RULES:
    - size_bytes <= max_chunk_bytes → [(0.0, duration_s)]
    - otherwise n = ceil(size_bytes / target_chunk_bytes) spans
    - Raises ValueError on a non-positive duration
    """
    if duration_s <= 0:
        raise ValueError("Audio duration must be positive, got {}".format(duration_s))
    if size_bytes <= max_chunk_bytes:
        return [(0.0, duration_s)]

    count = math.ceil(size_bytes / target_chunk_bytes)
    bounds = [duration_s * i / count for i in range(count)] + [duration_s]
    return [(bounds[i], bounds[i + 1] - bounds[i]) for i in range(count)]


def probe_duration(path: Path) -> float:
    """Return the duration of an audio file in seconds using ffprobe.

    RULES:
    - Raises AudioProbeError if ffprobe is missing, fails, or prints
      something that is not a positive number
    """
    cmd = [
        "ffprobe", "-v", "error", "-show_entries", "format=duration",
        "-of", "default=noprint_wrappers=1:nokey=1", str(path),
    ]
    try:
        result = subprocess.run(
            cmd,
            capture_output=True,
            text=True,
            check=True,
            timeout=_FFPROBE_TIMEOUT_S,
        )
    except FileNotFoundError as exc:
        raise AudioProbeError("ffprobe is not installed or not on PATH") from exc
    except (subprocess.CalledProcessError, subprocess.TimeoutExpired) as exc:
        raise AudioProbeError(
            "ffprobe failed for {}: {}".format(path.name, exc)
        ) from exc

    raw = result.stdout.strip()
    try:
        duration = float(raw)
    except ValueError as exc:
        raise AudioProbeError(
            "Could not determine duration for {} (ffprobe said {!r})".format(path.name, raw)
        ) from exc
    if not math.isfinite(duration) or duration <= 0:
        raise AudioProbeError(
            "Could not determine duration for {} (got {})".format(path.name, duration)
        )
    return duration


def _cut_span(source: Path, target: Path, start_s: float, duration_s: float) -> None:
    """Cut one span out of source into target with ffmpeg stream copy."""
    cmd = [
        "ffmpeg", "-y",
        "-ss", "{:.3f}".format(start_s),
        "-t", "{:.3f}".format(duration_s),
        "-i", str(source),
        "-c", "copy",
        "-loglevel", "error",
        str(target),
    ]
    try:
        subprocess.run(cmd, capture_output=True, text=True, check=True, timeout=_FFMPEG_TIMEOUT_S)
    except FileNotFoundError as exc:
        raise ChunkingError("ffmpeg is not installed or not on PATH") from exc
    except subprocess.CalledProcessError as exc:
        raise ChunkingError(
            "ffmpeg failed to cut {} at {:.1f}s: {}".format(source.name, start_s, exc.stderr)
        ) from exc
    except subprocess.TimeoutExpired as exc:
        raise ChunkingError(
            "ffmpeg timed out cutting {} at {:.1f}s".format(source.name, start_s)
        ) from exc


def split_audio(
    asset: AudioAsset,
    settings: AlignerSettings,
    asset_index: int = 0,
    first_index: int = 0,
) -> List[AudioChunk]:
    """Split one asset into AudioChunks that each fit the size limit.

    Args:
        asset: The audio file to split.
        settings: Supplies max_chunk_bytes and target_chunk_bytes.
        asset_index: Index of the asset among all assets of the run.
        first_index: Global index assigned to the first chunk.

    Returns:
        Ordered chunks; a single chunk holding the original bytes when the
        asset is already small enough.
    """
    suffix = Path(asset.filename).suffix or ".mp3"
    needs_split = asset.size_bytes > settings.max_chunk_bytes

    if asset.duration_s is not None and not needs_split:
        return [AudioChunk(
            index=first_index,
            data=asset.data,
            start_offset_s=0.0,
            duration_s=asset.duration_s,
            asset_index=asset_index,
        )]

    try:
        with tempfile.TemporaryDirectory(prefix="aligner_chunks_") as tmp:
            tmp_dir = Path(tmp)
            source = tmp_dir / "input{}".format(suffix)
            source.write_bytes(asset.data)

            duration = asset.duration_s
            if duration is None:
                duration = probe_duration(source)

            spans = plan_chunks(
                asset.size_bytes,
                duration,
                settings.max_chunk_bytes,
                settings.target_chunk_bytes,
            )
            if len(spans) == 1:
                return [AudioChunk(
                    index=first_index,
                    data=asset.data,
                    start_offset_s=0.0,
                    duration_s=duration,
                    asset_index=asset_index,
                )]

            logger.info(
                "Splitting %s (%.1f MB, %.1f min) into %d chunks",
                asset.filename, asset.size_bytes / (1024 * 1024), duration / 60, len(spans),
            )
            chunks: List[AudioChunk] = []
            for i, (start_s, span_s) in enumerate(spans):
                target = tmp_dir / "chunk_{:03d}{}".format(i, suffix)
                _cut_span(source, target, start_s, span_s)
                chunks.append(AudioChunk(
                    index=first_index + i,
                    data=target.read_bytes(),
                    start_offset_s=start_s,
                    duration_s=span_s,
                    asset_index=asset_index,
                ))
                target.unlink()
            return chunks
    except OSError as exc:
        raise ChunkingError(
            "Could not read or write temporary chunk files for {}: {}".format(asset.filename, exc)
        ) from exc
