"""
Module Entry Point

Allows execution via: python -m openapi_snapshot

Delegates to the click CLI for both one-shot and watch modes.
"""

from openapi_snapshot.cli import main

if __name__ == "__main__":
    main()
