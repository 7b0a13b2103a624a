"""Bounded edit-distance search for known text inside a transcript.

WHY: Transcripts are noisy (homophones, dropped punctuation, misheard
names), so the known chapter/passage text almost never occurs verbatim.
The locator finds the window of the transcript that is closest to the
known text and accepts it only if it is close enough.

HOW: A window the length of the needle slides over the haystack one
character at a time. Each window's Levenshtein distance to the needle is
computed with rapidfuzz, using the best distance so far as a score cutoff
so hopeless windows are abandoned early. The scan stops at the first
exact match. The best window is accepted when its distance is within the
tolerance band: floor(len(needle) * tolerance).

RULES:
- First match wins: ties keep the earliest position, and a distance of 0
  ends the scan immediately
- Accept iff min distance <= floor(len(needle) * tolerance); else None
- Windows may overhang the end of the haystack by at most the threshold;
  the truncated window is compared as-is (a transcript that drops the
  final punctuation still matches at the very end of a slice)
- Empty or whitespace-only needles are never located
- locate_from() searches text[cursor:] and returns an absolute position;
  callers only ever move the cursor forward
"""

from __future__ import annotations

import math
from typing import Optional

from rapidfuzz.distance import Levenshtein

from audiobook_aligner.config import MATCH_TOLERANCE


def match_threshold(length: int, tolerance: float = MATCH_TOLERANCE) -> int:
    """Largest accepted edit distance for a needle of `length` characters."""
    # round() first so 10 * 0.3 style products never floor to one less
    return int(math.floor(round(length * tolerance, 9)))


def locate(
    haystack: str,
    needle: str,
    tolerance: float = MATCH_TOLERANCE,
) -> Optional[int]:
    """Return the start of the best fuzzy match of needle in haystack, or None.

    Args:
        haystack: Transcript text to search (or a slice of it).
        needle: Known text to find.
        tolerance: Accepted edit distance as a fraction of len(needle).

    Returns:
        Character position of the best window relative to haystack, or
        None when no window is within the tolerance band.
    """
    if not needle.strip():
        return None

    size = len(needle)
    threshold = match_threshold(size, tolerance)
    last_start = min(len(haystack) - size + threshold, len(haystack) - 1)

    best_distance = threshold + 1
    best_position: Optional[int] = None

    for i in range(last_start + 1):
        distance = Levenshtein.distance(
            haystack[i:i + size],
            needle,
            score_cutoff=best_distance - 1,
        )
        if distance < best_distance:
            best_distance = distance
            best_position = i
            if distance == 0:
                break

    return best_position


def locate_from(
    text: str,
    needle: str,
    cursor: int,
    tolerance: float = MATCH_TOLERANCE,
) -> Optional[int]:
    """Search text[cursor:] and return the absolute match position, or None.

    The caller threads the cursor: on success it becomes the returned
    position, on failure it stays where it was.
    """
    position = locate(text[cursor:], needle, tolerance)
    if position is None:
        return None
    return cursor + position
