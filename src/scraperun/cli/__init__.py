"""
CLI layer for scraperun.

Provides a Typer application that runs scrapers and inspects stored runs.
All run logic lives in ``scraperun.orchestrator``; this package handles
only terminal transport: argument parsing, live output and formatting.

Entry point::

    scraperun --help
"""

from scraperun.cli.app import app

__all__ = ["app"]
