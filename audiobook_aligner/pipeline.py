"""End-to-end alignment run: audio assets in, persisted word timestamps out.

WHY: The core modules are pure and synchronous; something has to drive
them in order, talk to the transcription service, and hand results to
whatever stores them. AlignmentPipeline is that orchestrator.

HOW: run() performs five steps:
  1. Split every asset into chunks (ffmpeg/ffprobe work runs in a thread).
  2. Transcribe all chunks concurrently, bounded by an asyncio.Semaphore.
  3. Shift each chunk's segments by its own offset and assemble them
     strictly in chunk order.
  4. Align the book against the transcript (core.aligner.align_book).
  5. Rebase passage times onto their audio asset and persist them via the
     AlignmentSink, then mark processed chapters.

RULES:
- Several assets form one global timeline, in the order given
- A chunk whose transcription fails contributes no segments and a
  failed chunk outcome; the run continues
- Asset-level failures (duration probe, temp files) abort the run with
  AlignmentAbortedError
- Passages the sink already has timestamps for are skipped
- A sink failure for one passage is logged and reported, never raised
- The transcriber is entered as an async context manager by run()
- An unexpected (non-service) error propagates only after every chunk
  task has settled
"""

from __future__ import annotations

import asyncio
import logging
from bisect import bisect_right
from collections.abc import Callable
from pathlib import Path
from typing import List, Optional, Protocol, Sequence, Tuple

import httpx

from audiobook_aligner.config import AlignerSettings
from audiobook_aligner.core.aligner import align_book
from audiobook_aligner.core.assembler import assemble_transcript, offset_segments
from audiobook_aligner.core.chunker import AudioProcessingError, split_audio
from audiobook_aligner.core.ir import AudioAsset, AudioChunk, Book, TranscriptSegment, WordTimestamp
from audiobook_aligner.core.report import (
    AlignmentReport,
    BookAlignment,
    PassageResult,
    UnitKind,
    UnitStatus,
)
from audiobook_aligner.transcription.base import (
    BaseTranscriber,
    TranscriptionAPIError,
    TranscriptionError,
    TranscriptionTimeoutError,
)

logger = logging.getLogger(__name__)

_CHUNK_ERRORS = (
    TranscriptionAPIError,
    TranscriptionError,
    TranscriptionTimeoutError,
    httpx.HTTPError,
)


class AlignmentAbortedError(Exception):
    """Raised when an asset-level failure makes the whole run impossible."""


class AlignmentSink(Protocol):
    """Persistence collaborator for alignment results."""

    def has_timestamps(self, passage_id: str) -> bool:
        """Return True if the passage already has stored word timestamps."""

    def save_passage(self, result: PassageResult) -> None:
        """Store one aligned passage's word timestamps and audio URL."""

    def mark_chapter_processed(self, chapter_id: str) -> None:
        """Flag a chapter as speech-processed."""


def _chunk_filename(asset: AudioAsset, chunk: AudioChunk) -> str:
    path = Path(asset.filename)
    return "{}_chunk_{:03d}{}".format(path.stem, chunk.index, path.suffix or ".mp3")


def rebase_to_asset(
    result: PassageResult,
    asset_offsets: Sequence[float],
    assets: Sequence[AudioAsset],
) -> PassageResult:
    """Move a passage's global word times onto the asset its first word falls in.

    Every word is rebased by the same offset, so words beyond the end of
    that asset keep counting past its duration.
    """
    if not result.words or not asset_offsets:
        return result
    index = max(bisect_right(asset_offsets, result.words[0].start_s) - 1, 0)
    offset = asset_offsets[index]
    return PassageResult(
        passage_id=result.passage_id,
        chapter_id=result.chapter_id,
        words=[
            WordTimestamp(
                word=w.word,
                start_s=round(w.start_s - offset, 3),
                end_s=round(w.end_s - offset, 3),
            )
            for w in result.words
        ],
        asset_index=index,
        audio_url=assets[index].url,
    )


class AlignmentPipeline:
    """Drive chunking, transcription, assembly, alignment, and persistence.

    WHY: One object holds the collaborators (transcriber, sink, settings)
    so the CLI, HTTP API, and tests all run the same sequence.

    RULES:
    - A pipeline instance holds no per-book state; run() may be called
      for several books, one at a time per transcriber
    - on_status, when given, receives human-readable progress strings
    """

    def __init__(
        self,
        transcriber: BaseTranscriber,
        settings: Optional[AlignerSettings] = None,
        sink: Optional[AlignmentSink] = None,
        on_status: Optional[Callable[[str], None]] = None,
    ) -> None:
        self._transcriber = transcriber
        self._settings = settings or AlignerSettings.from_env()
        self._sink = sink
        self._on_status = on_status

    def _status(self, msg: str) -> None:
        logger.info(msg)
        if self._on_status:
            self._on_status(msg)

    async def run(self, book: Book, assets: Sequence[AudioAsset]) -> BookAlignment:
        """Align one book against its narration.

        Raises:
            AlignmentAbortedError: An asset could not be probed or chunked.
        """
        if not assets:
            raise AlignmentAbortedError("No audio assets supplied for book {}".format(book.id))

        report = AlignmentReport()
        chunks, asset_offsets = await self.split_assets(assets)
        self._status("Split {} asset(s) into {} chunk(s)".format(len(assets), len(chunks)))

        async with self._transcriber:
            chunk_segments = await self.transcribe_chunks(chunks, assets, asset_offsets, report)

        transcript = assemble_transcript(chunk_segments)
        self._status("Assembled {} segments ({:,} characters)".format(
            len(transcript.segments), len(transcript.text),
        ))

        is_aligned = self._sink.has_timestamps if self._sink is not None else None
        alignment = align_book(transcript, book, self._settings.tolerance, is_aligned)
        report.extend(alignment.report)
        alignment.report = report

        alignment.passages = [
            rebase_to_asset(result, asset_offsets, assets) for result in alignment.passages
        ]
        if self._sink is not None:
            self._persist(book, alignment)

        self._status("Aligned {} passage(s) in {} chapter(s)".format(
            len(alignment.passages), len(alignment.processed_chapters),
        ))
        return alignment

    async def split_assets(
        self,
        assets: Sequence[AudioAsset],
    ) -> Tuple[List[AudioChunk], List[float]]:
        """Chunk every asset and compute each asset's offset on the global timeline."""
        chunks: List[AudioChunk] = []
        offsets: List[float] = []
        timeline = 0.0

        for asset_index, asset in enumerate(assets):
            try:
                asset_chunks = await asyncio.to_thread(
                    split_audio, asset, self._settings, asset_index, len(chunks),
                )
            except AudioProcessingError as exc:
                logger.error("Cannot chunk %s: %s", asset.filename, exc)
                raise AlignmentAbortedError(
                    "Audio asset {} is unusable: {}".format(asset.filename, exc)
                ) from exc

            offsets.append(timeline)
            timeline += sum(c.duration_s for c in asset_chunks)
            chunks.extend(asset_chunks)

        return chunks, offsets

    async def transcribe_chunks(
        self,
        chunks: Sequence[AudioChunk],
        assets: Sequence[AudioAsset],
        asset_offsets: Sequence[float],
        report: AlignmentReport,
    ) -> List[List[TranscriptSegment]]:
        """Transcribe chunks with bounded concurrency; results are in chunk order."""
        semaphore = asyncio.Semaphore(self._settings.concurrency)
        total = len(chunks)

        async def _one(chunk: AudioChunk) -> List[TranscriptSegment]:
            asset = assets[chunk.asset_index]
            name = _chunk_filename(asset, chunk)
            async with semaphore:
                self._status("Transcribing chunk {}/{} with {}...".format(
                    chunk.index + 1, total, self._transcriber.name,
                ))
                try:
                    segments = await self._transcriber.transcribe(chunk.data, name)
                except _CHUNK_ERRORS as exc:
                    logger.warning("Transcription failed for chunk %d (%s): %s", chunk.index, name, exc)
                    report.record(UnitKind.CHUNK, str(chunk.index), UnitStatus.FAILED, str(exc))
                    return []
            report.record(UnitKind.CHUNK, str(chunk.index), UnitStatus.ALIGNED)
            return offset_segments(segments, asset_offsets[chunk.asset_index] + chunk.start_offset_s)

        # Every chunk settles before an unexpected error propagates
        results = await asyncio.gather(*(_one(chunk) for chunk in chunks), return_exceptions=True)
        for result in results:
            if isinstance(result, BaseException):
                raise result
        return list(results)

    def _persist(self, book: Book, alignment: BookAlignment) -> None:
        saved: List[PassageResult] = []
        for result in alignment.passages:
            try:
                self._sink.save_passage(result)
            except Exception as exc:
                logger.exception("Failed to persist passage %s", result.passage_id)
                alignment.report.record(
                    UnitKind.PASSAGE, result.passage_id, UnitStatus.FAILED,
                    "could not persist timestamps: {}".format(exc),
                )
                continue
            saved.append(result)
        alignment.passages = saved

        for chapter in book.chapters:
            if chapter.id not in alignment.processed_chapters:
                continue
            try:
                self._sink.mark_chapter_processed(chapter.id)
            except Exception as exc:
                logger.exception("Failed to mark chapter %s as processed", chapter.id)
                alignment.report.record(
                    UnitKind.CHAPTER, chapter.id, UnitStatus.FAILED,
                    "could not mark chapter processed: {}".format(exc),
                )
