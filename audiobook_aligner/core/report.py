"""Per-unit outcome values and the aggregated alignment result.

WHY: Narration never matches the book perfectly: chapters get skipped and
passages get reworded. One bad unit must not abort a whole book, so
failures are recorded as values instead of being raised. The caller
decides whether to surface them to an operator.

HOW: Every chunk, chapter, and passage the pipeline touches gets exactly
one UnitOutcome in an AlignmentReport. Successfully aligned passages also
produce a PassageResult carrying their word timestamps. BookAlignment is
the top-level container returned by the orchestrator.

RULES:
- status is one of aligned / skipped / failed
- failed and skipped outcomes always carry a human-readable reason
- reports only grow; outcomes are appended in processing order
"""

from __future__ import annotations

import enum
from collections import Counter
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Set

from audiobook_aligner.core.ir import WordTimestamp


class UnitKind(str, enum.Enum):
    CHUNK = "chunk"
    CHAPTER = "chapter"
    PASSAGE = "passage"


class UnitStatus(str, enum.Enum):
    """Outcome of processing one unit.

    RULES:
    - aligned: located (chapter) or given timestamps (passage) or
      transcribed (chunk)
    - skipped: deliberately not processed (already aligned, empty text,
      parent chapter not located)
    - failed: attempted but not found or errored
    """

    ALIGNED = "aligned"
    SKIPPED = "skipped"
    FAILED = "failed"


@dataclass(frozen=True)
class UnitOutcome:
    kind: UnitKind
    unit_id: str
    status: UnitStatus
    reason: Optional[str] = None


@dataclass
class AlignmentReport:
    """Structured per-unit report (unit id -> aligned | skipped | failed + reason)."""

    outcomes: List[UnitOutcome] = field(default_factory=list)

    def record(
        self,
        kind: UnitKind,
        unit_id: str,
        status: UnitStatus,
        reason: Optional[str] = None,
    ) -> UnitOutcome:
        outcome = UnitOutcome(kind=kind, unit_id=str(unit_id), status=status, reason=reason)
        self.outcomes.append(outcome)
        return outcome

    def extend(self, other: AlignmentReport) -> None:
        self.outcomes.extend(other.outcomes)

    def for_kind(self, kind: UnitKind) -> List[UnitOutcome]:
        return [o for o in self.outcomes if o.kind == kind]

    def status_of(self, kind: UnitKind, unit_id: str) -> Optional[UnitStatus]:
        """Return the latest recorded status of a unit, or None if never recorded."""
        for outcome in reversed(self.outcomes):
            if outcome.kind == kind and outcome.unit_id == str(unit_id):
                return outcome.status
        return None

    @property
    def aligned(self) -> List[UnitOutcome]:
        return [o for o in self.outcomes if o.status == UnitStatus.ALIGNED]

    @property
    def failed(self) -> List[UnitOutcome]:
        return [o for o in self.outcomes if o.status == UnitStatus.FAILED]

    def summary(self) -> Dict[str, Dict[str, int]]:
        """Count outcomes per kind and status, e.g. {"passage": {"aligned": 10}}."""
        counts: Dict[str, Counter] = {}
        for outcome in self.outcomes:
            counts.setdefault(outcome.kind.value, Counter())[outcome.status.value] += 1
        return {kind: dict(c) for kind, c in counts.items()}


@dataclass
class PassageResult:
    """Word timestamps for one successfully aligned passage.

    RULES:
    - words are in passage order, one per whitespace-delimited token
    - times are relative to the audio asset named by asset_index/audio_url
    - that asset is the one holding the first word; a passage that runs
      across an asset boundary is not split, so its later words carry
      times past that asset's duration (play the next asset to reach them)
    """

    passage_id: str
    chapter_id: str
    words: List[WordTimestamp]
    asset_index: int = 0
    audio_url: Optional[str] = None


@dataclass
class BookAlignment:
    """Everything an alignment run produced for one book."""

    book_id: str
    passages: List[PassageResult] = field(default_factory=list)
    processed_chapters: Set[str] = field(default_factory=set)
    report: AlignmentReport = field(default_factory=AlignmentReport)

    def passage(self, passage_id: str) -> Optional[PassageResult]:
        for result in self.passages:
            if result.passage_id == passage_id:
                return result
        return None
