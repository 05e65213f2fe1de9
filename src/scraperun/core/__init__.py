"""Core primitives shared by every scraperun module: errors, logging, settings, events."""
