"""Intermediate representation dataclasses for the alignment pipeline.

WHY: Audio, transcript, and book text travel through several stages
(chunking, transcription, assembly, boundary search, timestamp
extraction). Well-typed records make the contract between stages
explicit and let each stage be tested with synthetic data.

HOW: Plain dataclasses, leaves first:
  AudioAsset         : one input audio file (bytes + optional duration/URL)
  AudioChunk         : a time-bounded slice of an asset, sized for upload
  TranscriptSegment  : time-coded text returned by a transcription adapter
  AssembledTranscript: the global segment timeline plus its offset index
  Passage / Chapter / Book: the known text, supplied by the caller
  WordTimestamp      : the output unit, one word with start/end times

RULES:
- All times are float seconds
- Segment times are chunk-relative until the assembler shifts them
- AssembledTranscript.text is the exact concatenation of segment texts
  (no separators); prefix_offsets[i] is the length of text before segment i
- Book/Chapter/Passage are read-only inputs; nothing here mutates them
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import List, Optional


@dataclass(frozen=True)
class AudioAsset:
    """One narrated audio file.

    RULES:
    - data: encoded audio bytes (mp3, m4a, ...)
    - filename: original name, used for temp files and extension sniffing
    - duration_s: declared duration, or None to probe with ffprobe
    - url: public URL the persistence layer stores next to timestamps
    """

    data: bytes = field(repr=False)
    filename: str
    duration_s: Optional[float] = None
    url: Optional[str] = None

    @property
    def size_bytes(self) -> int:
        return len(self.data)


@dataclass(frozen=True)
class AudioChunk:
    """A time-contiguous slice of an AudioAsset, small enough to transcribe.

    WHY: The transcription service rejects payloads above a size limit, so
    long assets are cut into chunks. Each chunk remembers where it starts
    so its chunk-relative segment times can be shifted back onto the
    asset timeline.

    RULES:
    - index: position among the chunks of *all* assets in the run
    - start_offset_s: chunk start, relative to its asset
    - asset_index: which input asset the chunk came from
    """

    index: int
    data: bytes = field(repr=False)
    start_offset_s: float
    duration_s: float
    asset_index: int = 0


@dataclass(frozen=True)
class TranscriptSegment:
    """A time-coded span of transcribed text.

    RULES:
    - text is kept verbatim, including leading spaces (they are the only
      word separators once segments are concatenated)
    - start_s <= end_s
    """

    text: str
    start_s: float
    end_s: float

    def shifted(self, offset_s: float) -> TranscriptSegment:
        """Return a copy with both times moved by offset_s."""
        return TranscriptSegment(
            text=self.text,
            start_s=self.start_s + offset_s,
            end_s=self.end_s + offset_s,
        )


@dataclass
class AssembledTranscript:
    """The global, ordered segment timeline of one alignment run.

    WHY: The boundary locator works on raw character offsets into one long
    string; the timestamp extractor needs to get from those offsets back
    to segments. Keeping the text and its offset index next to the
    segments guarantees they never drift apart.

    RULES:
    - len(prefix_offsets) == len(segments)
    - prefix_offsets[i] == sum(len(s.text) for s in segments[:i])
    - text == "".join(s.text for s in segments)
    """

    segments: List[TranscriptSegment] = field(default_factory=list)
    text: str = ""
    prefix_offsets: List[int] = field(default_factory=list)

    def slice(self, start: int, end: Optional[int] = None) -> AssembledTranscript:
        """Return the sub-transcript for segments[start:end] with rebased offsets."""
        segments = self.segments[start:end]
        offsets: List[int] = []
        total = 0
        for seg in segments:
            offsets.append(total)
            total += len(seg.text)
        return AssembledTranscript(
            segments=segments,
            text="".join(s.text for s in segments),
            prefix_offsets=offsets,
        )

    @property
    def duration_s(self) -> float:
        return self.segments[-1].end_s if self.segments else 0.0


@dataclass(frozen=True)
class Passage:
    """A passage of known book text (the unit that gets word timestamps)."""

    id: str
    order: int
    text: str


@dataclass(frozen=True)
class Chapter:
    """A chapter: ordered passages. Its first passage anchors the chapter search."""

    id: str
    order: int
    passages: List[Passage] = field(default_factory=list)


@dataclass(frozen=True)
class Book:
    id: str
    title: str
    chapters: List[Chapter] = field(default_factory=list)


@dataclass(frozen=True)
class WordTimestamp:
    """One word of a passage's known text with its recovered timing."""

    word: str
    start_s: float
    end_s: float
