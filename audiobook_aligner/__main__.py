"""Package entry point for ``python -m audiobook_aligner``."""

from audiobook_aligner.cli import main

if __name__ == "__main__":
    main()
