"""Renewal Sync: schedules follow-up actions for expiring insurance policies."""

__version__ = "0.1.0"

__all__ = ["__version__"]
