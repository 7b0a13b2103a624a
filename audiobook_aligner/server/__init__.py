"""HTTP job API for running alignments in the background."""
