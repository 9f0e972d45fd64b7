"""Event booking service: concurrency-safe event inventory and reservations."""

__version__ = "1.0.0"
