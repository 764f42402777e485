"""Failure classification, conflict resolution, sync engine and scheduling."""
