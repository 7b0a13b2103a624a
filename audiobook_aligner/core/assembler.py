"""Chunk segment stitching and the character-offset index.

WHY: Each chunk is transcribed on its own, so its segment times start at
zero. Before any text search can happen, the per-chunk segment lists must
become one global timeline, and the boundary locator needs a way to turn
a character offset in the concatenated text back into a segment.

HOW: offset_segments() shifts a chunk's segments by the chunk's start
offset. assemble_transcript() appends chunk lists in chunk order while
building prefix_offsets incrementally. segment_index_at() binary-searches
prefix_offsets for the segment containing a character position.

RULES:
- Chunk lists are consumed strictly in the order given (chunk order)
- No separators are inserted between segment texts; word boundaries come
  only from the segment text itself
- prefix_offsets[i] == total length of all segment texts before i
- segment_index_at returns the *last* index whose prefix offset is
  <= position (empty segments never shadow the one that holds the text)
"""

from __future__ import annotations

from bisect import bisect_right
from typing import Iterable, List, Sequence

from audiobook_aligner.core.ir import AssembledTranscript, TranscriptSegment


def offset_segments(
    segments: Iterable[TranscriptSegment],
    offset_s: float,
) -> List[TranscriptSegment]:
    """Shift chunk-relative segments onto the asset (or global) timeline."""
    if offset_s == 0:
        return list(segments)
    return [seg.shifted(offset_s) for seg in segments]


def assemble_transcript(
    chunk_segments: Sequence[Sequence[TranscriptSegment]],
) -> AssembledTranscript:
    """Concatenate per-chunk segment lists into one AssembledTranscript.

    Args:
        chunk_segments: One list per chunk, in chunk order, with times
            already offset-corrected. A failed chunk contributes [].

    Returns:
        The assembled transcript with text and prefix_offsets built in
        the same pass.
    """
    segments: List[TranscriptSegment] = []
    offsets: List[int] = []
    parts: List[str] = []
    cumulative = 0

    for chunk in chunk_segments:
        for seg in chunk:
            offsets.append(cumulative)
            segments.append(seg)
            parts.append(seg.text)
            cumulative += len(seg.text)

    return AssembledTranscript(
        segments=segments,
        text="".join(parts),
        prefix_offsets=offsets,
    )


def segment_index_at(prefix_offsets: Sequence[int], position: int) -> int:
    """Return the index of the segment containing character `position`.

    RULES:
    - Binary search: last index i with prefix_offsets[i] <= position
    - Returns -1 for an empty index or a negative position
    """
    if not prefix_offsets or position < 0:
        return -1
    return bisect_right(prefix_offsets, position) - 1
