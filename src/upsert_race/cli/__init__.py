"""Command-line interface for upsert-race."""

from upsert_race.cli.main import main

__all__ = ["main"]
