"""Segment extraction and per-word timestamp synthesis.

WHY: The transcription adapter only returns coarse, sentence-sized
segments. Once the locator has found where a passage sits in the
transcript text, we still need (1) the segments that cover that character
range and (2) a start/end time for every word of the *known* passage
text, which may differ from what the transcript says.

HOW: extract_segments() walks the segments accumulating text lengths and
keeps every segment whose character span overlaps the matched range.
distribute_words() maps each known word proportionally (by character
count, whitespace excluded) onto the matched character range, then turns
a character offset into a time by linear interpolation inside the
segment that contains it.

RULES:
- A segment is included iff its span [acc, acc + len) overlaps
  [start, start + length); empty segments are never included
- Iteration stops once the accumulated length reaches start + length
- One WordTimestamp per whitespace-delimited token of the known text
- Word times are monotonic, non-overlapping, and contiguous
  (word i ends exactly where word i + 1 starts)
- Times are rounded to milliseconds
- No overlapping segments → empty result (passage stays unaligned)
"""

from __future__ import annotations

from bisect import bisect_right
from dataclasses import dataclass, field
from typing import List, Sequence

from audiobook_aligner.core.ir import TranscriptSegment, WordTimestamp


@dataclass
class MatchedSpan:
    """The segments covering a matched character range.

    RULES:
    - segments: included segments, in order
    - offset: match start relative to the first included segment's text
    - length: matched characters actually covered by the included segments
    """

    segments: List[TranscriptSegment] = field(default_factory=list)
    offset: int = 0
    length: int = 0

    def __bool__(self) -> bool:
        return bool(self.segments)


def extract_segments(
    segments: Sequence[TranscriptSegment],
    start: int,
    length: int,
) -> MatchedSpan:
    """Return the segments whose text overlaps [start, start + length).

    Args:
        segments: Segment list whose concatenated text was searched.
        start: Match position in that concatenated text.
        length: Match length (the needle length).
    """
    end = start + length
    included: List[TranscriptSegment] = []
    first_acc = 0
    covered_end = start
    accumulated = 0

    for seg in segments:
        seg_len = len(seg.text)
        seg_end = accumulated + seg_len
        if seg_len and accumulated < end and seg_end > start:
            if not included:
                first_acc = accumulated
            included.append(seg)
            covered_end = min(seg_end, end)
        accumulated = seg_end
        if accumulated >= end:
            break

    if not included:
        return MatchedSpan()

    return MatchedSpan(
        segments=included,
        offset=start - first_acc,
        length=covered_end - start,
    )


def _time_at(span: MatchedSpan, starts: Sequence[int], position: float) -> float:
    """Interpolate the time at a character position relative to the span's first segment."""
    idx = min(max(bisect_right(starts, position) - 1, 0), len(span.segments) - 1)
    seg = span.segments[idx]
    frac = (position - starts[idx]) / len(seg.text)
    frac = min(max(frac, 0.0), 1.0)
    return seg.start_s + frac * (seg.end_s - seg.start_s)


def distribute_words(text: str, span: MatchedSpan) -> List[WordTimestamp]:
    """Synthesize one WordTimestamp per word of the known passage text.

    Args:
        text: The passage's known text (ground truth, not the transcript).
        span: Segments covering the passage's matched range.

    Returns:
        Word timestamps in passage order; [] when there are no words or
        no covering segments.
    """
    words = text.split()
    if not words or not span:
        return []

    starts: List[int] = []
    total = 0
    for seg in span.segments:
        starts.append(total)
        total += len(seg.text)

    word_chars = sum(len(w) for w in words)
    result: List[WordTimestamp] = []
    consumed = 0
    for word in words:
        begin = span.offset + span.length * consumed / word_chars
        consumed += len(word)
        finish = span.offset + span.length * consumed / word_chars
        result.append(WordTimestamp(
            word=word,
            start_s=round(_time_at(span, starts, begin), 3),
            end_s=round(_time_at(span, starts, finish), 3),
        ))
    return result
