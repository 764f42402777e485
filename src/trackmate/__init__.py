"""Personal task/habit tracker: local entry store with remote sync."""

__version__ = "0.1.0"
