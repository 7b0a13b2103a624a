"""Command-line interface for the audiobook aligner.

WHY: Aligning a book is a batch job: one book JSON, one or more narration
files, one result file. The CLI wires the whole pipeline behind a single
command so it can run from a terminal, a cron job, or a shell script.

HOW: argparse collects the book path, audio paths, and tuning flags.
Inputs are validated locally before any API call. The async pipeline
runs via asyncio.run(); results are written with JsonResultSink and the
per-unit report summary is printed to stderr.

RULES:
- Positional arguments: BOOK_JSON, then one or more AUDIO files in
  playback order
- Audio extensions are checked against SUPPORTED_AUDIO_FORMATS first
- Default output path: {book stem}-alignment.json next to the book file
- --resume seeds the result sink from an existing output file so already
  aligned passages are skipped
- Status output goes to stderr; exit code 1 on errors, 130 on Ctrl-C
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from pathlib import Path
from typing import List, Optional

from audiobook_aligner.config import (
    CONCURRENCY,
    DEFAULT_PROVIDER,
    MATCH_TOLERANCE,
    MAX_CHUNK_BYTES,
    SUPPORTED_AUDIO_FORMATS,
    AlignerSettings,
)
from audiobook_aligner.core.ir import AudioAsset
from audiobook_aligner.core.report import BookAlignment
from audiobook_aligner.persistence import BookFormatError, JsonResultSink, load_book
from audiobook_aligner.pipeline import AlignmentAbortedError, AlignmentPipeline
from audiobook_aligner.transcription import TRANSCRIBERS, create_transcriber

_MB = 1024 * 1024


def _status(msg: str) -> None:
    """Print a status message to stderr so stdout stays pipeable."""
    print(msg, file=sys.stderr, flush=True)


def _fail(msg: str) -> None:
    print("Error: {}".format(msg), file=sys.stderr)
    sys.exit(1)


def _settings_from_args(args: argparse.Namespace) -> AlignerSettings:
    """Build AlignerSettings, shrinking the chunk target to fit --max-chunk-mb."""
    max_bytes = int(args.max_chunk_mb * _MB)
    target_bytes = max(max_bytes - _MB, max_bytes * 24 // 25)
    return AlignerSettings(
        max_chunk_bytes=max_bytes,
        target_chunk_bytes=min(target_bytes, max_bytes),
        tolerance=args.tolerance,
        concurrency=args.concurrency,
    )


def _validate_audio_paths(paths: List[str]) -> List[Path]:
    resolved: List[Path] = []
    for raw in paths:
        path = Path(raw).resolve()
        if not path.is_file():
            _fail("Audio file not found: {}".format(path))
        ext = path.suffix.lower()
        if ext not in SUPPORTED_AUDIO_FORMATS:
            _fail("Unsupported audio type '{}'. Supported formats: {}".format(
                ext, ", ".join(sorted(SUPPORTED_AUDIO_FORMATS)),
            ))
        resolved.append(path)
    return resolved


def _print_summary(alignment: BookAlignment) -> None:
    _status("")
    for kind, counts in sorted(alignment.report.summary().items()):
        parts = ", ".join("{} {}".format(n, status) for status, n in sorted(counts.items()))
        _status("  {}: {}".format(kind, parts))
    for outcome in alignment.report.failed:
        _status("  FAILED {} {}: {}".format(outcome.kind.value, outcome.unit_id, outcome.reason))


async def _run_pipeline(args: argparse.Namespace) -> None:
    """Validate inputs, run the alignment, and write the result file."""
    book_path = Path(args.book).resolve()
    if not book_path.is_file():
        _fail("Book file not found: {}".format(book_path))
    audio_paths = _validate_audio_paths(args.audio)

    try:
        settings = _settings_from_args(args)
        book = load_book(book_path)
        transcriber = create_transcriber(args.provider)
    except (ValueError, BookFormatError) as exc:
        _fail(str(exc))

    output_path = Path(args.output).resolve() if args.output else (
        book_path.with_name("{}-alignment.json".format(book_path.stem))
    )
    if args.resume:
        try:
            sink = JsonResultSink.from_file(output_path, book.id)
        except (ValueError, KeyError) as exc:
            _fail("Cannot resume from {}: {}".format(output_path, exc))
        if sink.passages:
            _status("Resuming: {} passage(s) already aligned".format(len(sink.passages)))
    else:
        sink = JsonResultSink(book.id)

    _status("Book '{}': {} chapter(s), {} passage(s)".format(
        book.title or book.id,
        len(book.chapters),
        sum(len(c.passages) for c in book.chapters),
    ))
    assets = [
        AudioAsset(data=path.read_bytes(), filename=path.name, url=path.as_uri())
        for path in audio_paths
    ]

    pipeline = AlignmentPipeline(transcriber, settings=settings, sink=sink, on_status=_status)
    try:
        alignment = await pipeline.run(book, assets)
    except AlignmentAbortedError as exc:
        _fail(str(exc))

    sink.write(output_path, alignment)
    _status("Done! Wrote {}".format(output_path))
    _print_summary(alignment)


def build_parser() -> argparse.ArgumentParser:
    """Build the argparse parser (kept separate so tests can inspect it)."""
    parser = argparse.ArgumentParser(
        prog="audiobook_aligner",
        description="Align an audiobook's text passages to its narration and "
                    "produce per-word timestamps.",
    )
    parser.add_argument("book", help="Path to the book JSON (chapters and passages).")
    parser.add_argument(
        "audio",
        nargs="+",
        help="Narration audio file(s), in playback order.",
    )
    parser.add_argument(
        "--provider",
        default=DEFAULT_PROVIDER,
        choices=sorted(TRANSCRIBERS),
        help="Transcription service (default: %(default)s).",
    )
    parser.add_argument(
        "--output",
        default=None,
        help="Result JSON path (default: {book stem}-alignment.json next to the book).",
    )
    parser.add_argument(
        "--tolerance",
        type=float,
        default=MATCH_TOLERANCE,
        help="Accepted edit distance as a fraction of passage length (default: %(default)s).",
    )
    parser.add_argument(
        "--concurrency",
        type=int,
        default=CONCURRENCY,
        help="Maximum chunk transcriptions in flight (default: %(default)s).",
    )
    parser.add_argument(
        "--max-chunk-mb",
        type=float,
        default=MAX_CHUNK_BYTES / _MB,
        help="Per-request audio size limit in MB (default: %(default)s).",
    )
    parser.add_argument(
        "--resume",
        action="store_true",
        help="Skip passages already present in the output file.",
    )
    parser.add_argument(
        "--verbose",
        action="store_true",
        help="Enable debug logging.",
    )
    return parser


def main(argv: Optional[List[str]] = None) -> None:
    """Entry point for ``python -m audiobook_aligner`` (argv is for tests)."""
    parser = build_parser()
    args = parser.parse_args(argv)
    if args.verbose:
        logging.basicConfig(
            level=logging.DEBUG,
            format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        )
    try:
        asyncio.run(_run_pipeline(args))
    except KeyboardInterrupt:
        _status("\nCancelled by user.")
        sys.exit(130)


if __name__ == "__main__":
    main()
