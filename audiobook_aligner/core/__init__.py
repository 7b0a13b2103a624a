"""Core chunking, assembly, and alignment modules.

WHY: The core package contains the algorithmic heart of the aligner:
the IR dataclasses, chunk planning, transcript assembly, fuzzy boundary
search, and timestamp synthesis. None of it talks to the network, so all
of it can be tested with synthetic segment lists.

HOW: ir.py and report.py define the data structures, chunker.py cuts
audio, assembler.py builds the global timeline, locator.py finds text,
timestamps.py derives word timings, aligner.py sequences them per book.

RULES:
- IR dataclasses are the contract; change with care
- No transcription-service specifics in this package
- Per-unit failures are outcome values, not exceptions
"""
