"""Book input loading and JSON result persistence.

WHY: The aligner runs outside the application that owns books and
passages, so it needs a plain file contract on both sides: a book JSON
describing chapters and passages in, and a result JSON with word
timestamps and processed chapters out. The result file doubles as the
"already aligned" record that makes re-runs skip finished passages.

HOW: BOOK_SCHEMA is a JSON Schema checked with jsonschema before any
parsing; book_from_dict() builds the IR sorted by each unit's ``order``.
JsonResultSink implements the pipeline's AlignmentSink protocol in
memory and serializes to one JSON document.

RULES:
- Ids may be strings or integers in the input; they become strings
- Chapters and passages are sorted by ``order`` (stable for ties)
- Invalid input raises BookFormatError with the schema path of the problem
- A sink seeded from an earlier result reports those passages as aligned
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Dict, List, Optional, Set

import jsonschema

from audiobook_aligner.core.ir import Book, Chapter, Passage, WordTimestamp
from audiobook_aligner.core.report import BookAlignment, PassageResult

_ID = {"type": ["string", "integer"]}

BOOK_SCHEMA: Dict[str, Any] = {
    "$schema": "http://json-schema.org/draft-07/schema#",
    "type": "object",
    "required": ["id", "chapters"],
    "properties": {
        "id": _ID,
        "title": {"type": "string"},
        "chapters": {
            "type": "array",
            "items": {
                "type": "object",
                "required": ["id", "order", "passages"],
                "properties": {
                    "id": _ID,
                    "order": {"type": "integer"},
                    "passages": {
                        "type": "array",
                        "items": {
                            "type": "object",
                            "required": ["id", "order", "text"],
                            "properties": {
                                "id": _ID,
                                "order": {"type": "integer"},
                                "text": {"type": "string"},
                            },
                        },
                    },
                },
            },
        },
    },
}


class BookFormatError(ValueError):
    """Raised when a book document does not match BOOK_SCHEMA."""


def book_from_dict(data: Dict[str, Any]) -> Book:
    """Validate a book document and build the Book IR."""
    try:
        jsonschema.validate(instance=data, schema=BOOK_SCHEMA)
    except jsonschema.ValidationError as exc:
        location = "/".join(str(p) for p in exc.absolute_path) or "<root>"
        raise BookFormatError("Invalid book at {}: {}".format(location, exc.message)) from exc

    chapters = []
    for ch in sorted(data["chapters"], key=lambda c: c["order"]):
        passages = [
            Passage(id=str(p["id"]), order=p["order"], text=p["text"])
            for p in sorted(ch["passages"], key=lambda p: p["order"])
        ]
        chapters.append(Chapter(id=str(ch["id"]), order=ch["order"], passages=passages))

    return Book(id=str(data["id"]), title=data.get("title", ""), chapters=chapters)


def load_book(path: str | Path) -> Book:
    """Load and validate a book JSON file.

    Raises:
        FileNotFoundError: The file does not exist.
        BookFormatError: The file is not valid JSON or fails validation.
    """
    text = Path(path).read_text(encoding="utf-8")
    try:
        data = json.loads(text)
    except json.JSONDecodeError as exc:
        raise BookFormatError("Book file {} is not valid JSON: {}".format(path, exc)) from exc
    return book_from_dict(data)


def _passage_to_dict(result: PassageResult) -> Dict[str, Any]:
    return {
        "passage_id": result.passage_id,
        "chapter_id": result.chapter_id,
        "asset_index": result.asset_index,
        "audio_url": result.audio_url,
        "words": [
            {"word": w.word, "start": w.start_s, "end": w.end_s}
            for w in result.words
        ],
    }


def _passage_from_dict(data: Dict[str, Any]) -> PassageResult:
    return PassageResult(
        passage_id=str(data["passage_id"]),
        chapter_id=str(data["chapter_id"]),
        asset_index=data.get("asset_index", 0),
        audio_url=data.get("audio_url"),
        words=[
            WordTimestamp(word=w["word"], start_s=w["start"], end_s=w["end"])
            for w in data["words"]
        ],
    )


def alignment_to_dict(alignment: BookAlignment) -> Dict[str, Any]:
    """Serialize a BookAlignment, including its per-unit report."""
    return {
        "book_id": alignment.book_id,
        "passages": [_passage_to_dict(r) for r in alignment.passages],
        "processed_chapters": sorted(alignment.processed_chapters),
        "report": {
            "summary": alignment.report.summary(),
            "outcomes": [
                {
                    "kind": o.kind.value,
                    "id": o.unit_id,
                    "status": o.status.value,
                    "reason": o.reason,
                }
                for o in alignment.report.outcomes
            ],
        },
    }


class JsonResultSink:
    """AlignmentSink that collects results in memory and writes one JSON file.

    RULES:
    - save_passage() replaces any earlier result for the same passage
    - has_timestamps() is True for saved passages with at least one word
    - write() includes passages and chapters from the seed document
    """

    def __init__(self, book_id: str) -> None:
        self.book_id = book_id
        self._passages: Dict[str, PassageResult] = {}
        self._chapters: Set[str] = set()

    @classmethod
    def from_file(cls, path: str | Path, book_id: str) -> JsonResultSink:
        """Seed a sink from a previous result file (missing file → empty sink)."""
        sink = cls(book_id)
        path = Path(path)
        if not path.is_file():
            return sink
        data = json.loads(path.read_text(encoding="utf-8"))
        if str(data.get("book_id")) != str(book_id):
            raise BookFormatError(
                "Result file {} belongs to book {}, not {}".format(path, data.get("book_id"), book_id)
            )
        for item in data.get("passages", []):
            result = _passage_from_dict(item)
            sink._passages[result.passage_id] = result
        sink._chapters.update(str(c) for c in data.get("processed_chapters", []))
        return sink

    def has_timestamps(self, passage_id: str) -> bool:
        result = self._passages.get(passage_id)
        return bool(result and result.words)

    def save_passage(self, result: PassageResult) -> None:
        self._passages[result.passage_id] = result

    def mark_chapter_processed(self, chapter_id: str) -> None:
        self._chapters.add(chapter_id)

    @property
    def passages(self) -> List[PassageResult]:
        return list(self._passages.values())

    @property
    def processed_chapters(self) -> Set[str]:
        return set(self._chapters)

    def to_dict(self, alignment: Optional[BookAlignment] = None) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "book_id": self.book_id,
            "passages": [_passage_to_dict(r) for r in self._passages.values()],
            "processed_chapters": sorted(self._chapters),
        }
        if alignment is not None:
            data["report"] = alignment_to_dict(alignment)["report"]
        return data

    def write(self, path: str | Path, alignment: Optional[BookAlignment] = None) -> Path:
        path = Path(path)
        path.write_text(
            json.dumps(self.to_dict(alignment), indent=2, ensure_ascii=False),
            encoding="utf-8",
        )
        return path
