"""Entry model, SQLite store, tracking decorator, reminders and repository."""
