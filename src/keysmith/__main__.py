"""Entrypoint for ``python -m keysmith``; see keysmith.cli for usage."""

from keysmith.cli import main

if __name__ == "__main__":
    main()
