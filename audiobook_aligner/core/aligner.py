"""Chapter and passage alignment over an assembled transcript.

WHY: This is the sequential heart of the pipeline. Given the global
transcript and the known book text, it locates every chapter, then every
passage inside its chapter, and derives word timestamps, while making
sure that one missing chapter or garbled passage never stops the rest of
the book from aligning.

HOW: Two nested forward-only cursors, both plain ints threaded through
the loop:
  1. Global cursor over AssembledTranscript.text. Each chapter's first
     passage is searched from the cursor; on success the cursor moves to
     the match position and the position is mapped to a starting segment
     via prefix_offsets.
  2. Chapter-local cursor over the text of the chapter's segment span.
     Each passage is searched from it, its covering segments extracted,
     and its words distributed over them.
Every chapter and passage gets exactly one outcome in the report.

RULES:
- Cursors never move backward; a miss leaves the cursor where it was
- A chapter's span runs to the next *located* chapter's starting segment
  (inclusive when that chapter starts mid-segment), or to the end of the
  transcript; it always contains at least its own starting segment
- Passages already aligned (per the is_aligned callback) are still
  located to advance the cursor, but reported as skipped
- A located chapter is marked processed once all its passages have been
  attempted, whatever their outcome
- Never raises for a per-unit failure; times in results are global
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable, List, Optional

from audiobook_aligner.config import MATCH_TOLERANCE
from audiobook_aligner.core.assembler import segment_index_at
from audiobook_aligner.core.ir import AssembledTranscript, Book, Chapter
from audiobook_aligner.core.locator import locate_from
from audiobook_aligner.core.report import (
    AlignmentReport,
    BookAlignment,
    PassageResult,
    UnitKind,
    UnitStatus,
)
from audiobook_aligner.core.timestamps import distribute_words, extract_segments

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ChapterSpan:
    """A located chapter and its half-open segment range [start, end)."""

    chapter: Chapter
    position: int
    start_segment: int
    end_segment: int


def locate_chapters(
    transcript: AssembledTranscript,
    chapters: List[Chapter],
    report: AlignmentReport,
    tolerance: float = MATCH_TOLERANCE,
) -> List[ChapterSpan]:
    """Locate chapter starts in document order with the global cursor.

    Returns:
        Spans for the chapters that were found, in document order.
    """
    found = []  # (chapter, absolute position, starting segment)
    cursor = 0

    for chapter in chapters:
        if not chapter.passages:
            logger.warning("Chapter %s has no passages.", chapter.id)
            report.record(UnitKind.CHAPTER, chapter.id, UnitStatus.SKIPPED, "chapter has no passages")
            continue

        needle = chapter.passages[0].text
        position = locate_from(transcript.text, needle, cursor, tolerance)
        if position is None:
            logger.warning(
                "Could not find a match for chapter %s (order %d) in the transcription.",
                chapter.id, chapter.order,
            )
            report.record(
                UnitKind.CHAPTER, chapter.id, UnitStatus.FAILED,
                "first passage not found within tolerance",
            )
            continue

        cursor = position
        found.append((chapter, position, segment_index_at(transcript.prefix_offsets, position)))
        report.record(UnitKind.CHAPTER, chapter.id, UnitStatus.ALIGNED)

    spans: List[ChapterSpan] = []
    for i, (chapter, position, start) in enumerate(found):
        if i + 1 < len(found):
            _, next_position, next_start = found[i + 1]
            end = next_start
            if next_position > transcript.prefix_offsets[next_start]:
                end += 1
        else:
            end = len(transcript.segments)
        spans.append(ChapterSpan(
            chapter=chapter,
            position=position,
            start_segment=start,
            end_segment=max(end, start + 1),
        ))
    return spans


def align_chapter(
    transcript: AssembledTranscript,
    span: ChapterSpan,
    report: AlignmentReport,
    tolerance: float = MATCH_TOLERANCE,
    is_aligned: Optional[Callable[[str], bool]] = None,
) -> List[PassageResult]:
    """Align every passage of one located chapter with the chapter-local cursor."""
    chapter = span.chapter
    local = transcript.slice(span.start_segment, span.end_segment)
    results: List[PassageResult] = []
    cursor = 0

    for passage in chapter.passages:
        if not passage.text.strip():
            report.record(UnitKind.PASSAGE, passage.id, UnitStatus.SKIPPED, "passage has no text")
            continue

        position = locate_from(local.text, passage.text, cursor, tolerance)
        if position is None:
            logger.warning(
                "Could not find a match for passage %s in chapter %s.",
                passage.id, chapter.id,
            )
            report.record(
                UnitKind.PASSAGE, passage.id, UnitStatus.FAILED,
                "text not found within tolerance",
            )
            continue

        if is_aligned is not None and is_aligned(passage.id):
            cursor = position
            report.record(UnitKind.PASSAGE, passage.id, UnitStatus.SKIPPED, "already aligned")
            continue

        matched = extract_segments(local.segments, position, len(passage.text))
        words = distribute_words(passage.text, matched)
        if not words:
            logger.warning("No transcript segments overlap passage %s.", passage.id)
            report.record(
                UnitKind.PASSAGE, passage.id, UnitStatus.FAILED,
                "no overlapping segments",
            )
            continue

        cursor = position
        results.append(PassageResult(passage_id=passage.id, chapter_id=chapter.id, words=words))
        report.record(UnitKind.PASSAGE, passage.id, UnitStatus.ALIGNED)

    return results


def align_book(
    transcript: AssembledTranscript,
    book: Book,
    tolerance: float = MATCH_TOLERANCE,
    is_aligned: Optional[Callable[[str], bool]] = None,
) -> BookAlignment:
    """Align a whole book against an assembled transcript.

    WHY: Single entry point for the sequential phase. Holds no state
    between calls, so different books can be aligned concurrently.

    Args:
        transcript: Global segment timeline of the narration.
        book: Known chapters and passages, in document order.
        tolerance: Accepted edit distance as a fraction of needle length.
        is_aligned: Optional callback; passages it reports as aligned are
            skipped (makes re-runs idempotent).

    Returns:
        BookAlignment with per-passage word timestamps (global times),
        processed chapter ids, and the per-unit report.
    """
    alignment = BookAlignment(book_id=book.id)
    spans = locate_chapters(transcript, book.chapters, alignment.report, tolerance)

    located = {span.chapter.id for span in spans}
    for chapter in book.chapters:
        if chapter.id in located:
            continue
        for passage in chapter.passages:
            alignment.report.record(
                UnitKind.PASSAGE, passage.id, UnitStatus.SKIPPED, "chapter not located",
            )

    for span in spans:
        alignment.passages.extend(
            align_chapter(transcript, span, alignment.report, tolerance, is_aligned)
        )
        alignment.processed_chapters.add(span.chapter.id)

    logger.info(
        "Aligned book %s: %d/%d chapters located, %d passages with timestamps",
        book.id, len(spans), len(book.chapters), len(alignment.passages),
    )
    return alignment
