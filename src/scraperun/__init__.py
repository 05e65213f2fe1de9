"""
scraperun - run untrusted scrapers in isolation and capture what they do.

Packages and modules:
- scraperun.core: Errors, logging, settings and the event bus
- scraperun.runs: Run records and their repositories
- scraperun.execution: Executors and the output stream limiter
- scraperun.orchestrator: The run lifecycle
- scraperun.cli: The ``scraperun`` command line
"""

__version__ = "0.1.0"
