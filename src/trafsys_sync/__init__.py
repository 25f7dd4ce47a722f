"""Hourly TrafSys traffic-counter sync into PostgreSQL."""

__version__ = "0.1.0"
