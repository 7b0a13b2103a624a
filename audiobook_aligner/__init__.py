"""Audiobook Aligner: forced alignment of narrated audio to known book text.

WHY: A book's text (chapters and ordered passages) is already known, but
the narration only exists as long audio files. Highlighting text in sync
with playback needs per-word timing, which no transcription service
returns against *our* text. This package recovers it by transcribing the
audio and fuzzily locating the known text inside the transcript.

HOW: Four-stage pipeline: chunk (split oversized audio), transcribe
(pluggable adapters), assemble (one global segment timeline), align
(locate chapters and passages with bounded edit distance, then derive
word timestamps). Each stage is independently testable.

RULES:
- The alignment core never raises for a single unit; failures are
  reported per chunk/chapter/passage
- Search cursors only move forward and are passed as values
- Adding a transcription service = one new adapter module, no core changes
"""

__version__ = "0.1.0"
