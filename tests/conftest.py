"""Shared test fixtures for the audiobook_aligner test suite.

WHY: The chunker, aligner, pipeline, and API tests all need the same
small books and synthetic transcripts. Centralizing them keeps the
expected positions and times in one place.

HOW: Plain module-level builders plus pytest fixtures. The two-chapter
"cat/dog" book and its transcript are the reference end-to-end case:
the transcript drops the final period of each passage, as a real
transcription service often does.

RULES:
- No fixture touches the network or needs ffmpeg
- FakeTranscriber returns canned segments per chunk filename
"""

from __future__ import annotations

import asyncio
from typing import Dict, List, Optional

import pytest

from audiobook_aligner.core.assembler import assemble_transcript
from audiobook_aligner.core.ir import Book, Chapter, Passage, TranscriptSegment
from audiobook_aligner.transcription.base import BaseTranscriber, TranscriptionAPIError


def make_book(chapters: Dict[str, List[str]], book_id: str = "book-1") -> Book:
    """Build a Book from {chapter_id: [passage texts]}; passage ids are p1, p2, ..."""
    result = []
    counter = 0
    for order, (chapter_id, texts) in enumerate(chapters.items()):
        passages = []
        for p_order, text in enumerate(texts):
            counter += 1
            passages.append(Passage(id="p{}".format(counter), order=p_order, text=text))
        result.append(Chapter(id=chapter_id, order=order, passages=passages))
    return Book(id=book_id, title="Test Book", chapters=result)


class FakeTranscriber(BaseTranscriber):
    """In-memory transcriber: canned segments per chunk filename, else from a queue."""

    def __init__(
        self,
        segments_by_call: Optional[List[List[TranscriptSegment]]] = None,
        fail_on: Optional[set] = None,
    ) -> None:
        super().__init__(base_url="http://fake.invalid", headers={})
        self._segments_by_filename: Dict[str, List[TranscriptSegment]] = {}
        self._queue = list(segments_by_call or [])
        self._fail_on = fail_on or set()
        self.calls: List[str] = []
        self.in_flight = 0
        self.max_in_flight = 0

    def respond(self, filename: str, segments: List[TranscriptSegment]) -> None:
        self._segments_by_filename[filename] = segments

    @property
    def name(self) -> str:
        return "Fake"

    async def transcribe(self, audio: bytes, filename: str) -> List[TranscriptSegment]:
        self.calls.append(filename)
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            await asyncio.sleep(0.01)
            if filename in self._fail_on:
                raise TranscriptionAPIError(500, "boom")
            if filename in self._segments_by_filename:
                return self._segments_by_filename[filename]
            return self._queue.pop(0) if self._queue else []
        finally:
            self.in_flight -= 1


@pytest.fixture
def cat_dog_book() -> Book:
    """Two chapters, one passage each."""
    return make_book({
        "ch1": ["The cat sat on the mat."],
        "ch2": ["The dog ran in the yard."],
    })


@pytest.fixture
def cat_dog_segments() -> List[TranscriptSegment]:
    """Transcript of the cat/dog book without trailing periods."""
    return [
        TranscriptSegment(text="The cat sat on the mat", start_s=0.0, end_s=2.0),
        TranscriptSegment(text="The dog ran in the yard", start_s=2.0, end_s=4.0),
    ]


@pytest.fixture
def cat_dog_transcript(cat_dog_segments):
    return assemble_transcript([cat_dog_segments])


@pytest.fixture
def three_passage_segments() -> List[TranscriptSegment]:
    """Whisper-style segments with leading spaces, 2 seconds each."""
    return [
        TranscriptSegment(text=" The cat sat on the mat.", start_s=0.0, end_s=2.0),
        TranscriptSegment(text=" It was a sunny day.", start_s=2.0, end_s=4.0),
        TranscriptSegment(text=" The dog ran in the yard.", start_s=4.0, end_s=6.0),
    ]


@pytest.fixture
def book_dict() -> dict:
    """Book JSON document as accepted by persistence.book_from_dict()."""
    return {
        "id": "moby",
        "title": "Moby Dick",
        "chapters": [
            {
                "id": "c2",
                "order": 2,
                "passages": [{"id": "p3", "order": 1, "text": "The dog ran in the yard."}],
            },
            {
                "id": "c1",
                "order": 1,
                "passages": [
                    {"id": "p2", "order": 2, "text": "It was a sunny day."},
                    {"id": "p1", "order": 1, "text": "The cat sat on the mat."},
                ],
            },
        ],
    }
