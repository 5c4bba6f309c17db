"""ILIT policy tracker: Crummey letter dates, statuses and lead-time reconciliation."""

__version__ = "1.0.0"

__all__ = ["__version__"]
