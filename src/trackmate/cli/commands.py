# src/trackmate/cli/commands.py

from __future__ import annotations

import logging
import uuid
from collections.abc import Awaitable, Callable
from datetime import date, datetime, time

from ..core.result import Error, Transient
from ..core.state import AppState
from ..entries.models import Entry, EntryType, Habit, Recurrence, Reminder, StoredEntry, SyncState, Task

CommandHandler = Callable[[AppState, list[str]], Awaitable[str]]

logger = logging.getLogger(__name__)

_STATE_MARKS = {
    SyncState.PENDING: "~",
    SyncState.SYNCED: " ",
    SyncState.FAILED: "!",
}


class CommandRegistry:
    """Simple slash-command registry used by connectors (/help, /today, ...)."""

    def __init__(self) -> None:
        self._handlers: dict[str, CommandHandler] = {}
        self._help: dict[str, str] = {}

    def register(
        self,
        name: str,
        handler: CommandHandler,
        help_text: str,
        aliases: list[str] | None = None,
    ) -> None:
        aliases = aliases or []
        key = name.lower()
        self._handlers[key] = handler
        self._help[key] = help_text
        for alias in aliases:
            self._handlers[alias.lower()] = handler

    async def handle(self, state: AppState, line: str) -> str | None:
        """
        Handle a string like "/command args".
        Returns a reply string or None if not a command.
        """
        if not line.startswith("/"):
            return None

        parts = line[1:].split()
        if not parts:
            return "Empty command. Use /help to list available commands."

        name = parts[0].lower()
        args = parts[1:]

        handler = self._handlers.get(name)
        if not handler:
            return f"Unknown command: /{name}. Use /help to list available commands."

        return await handler(state, args)

    def build_help(self) -> str:
        lines = ["Available commands:"]
        for name, help_text in self._help.items():
            lines.append(f"  /{name} - {help_text}")
        return "\n".join(lines)


registry = CommandRegistry()


# ---- formatting / parsing helpers ----

def _fmt_error(action: str, result: Error) -> str:
    hint = " (will retry later)" if result.is_retriable else ""
    return f"Could not {action}: {result.failure}{hint}"


def _fmt_entry(entry: Entry, sync_state: SyncState | None = None) -> str:
    mark = _STATE_MARKS.get(sync_state, " ") if sync_state is not None else " "
    done = "x" if entry.is_done else " "
    at = f" {entry.time.strftime('%H:%M')}" if entry.time else ""
    if isinstance(entry, Habit):
        streak = f" streak={entry.streak_count}" if entry.streak_count else ""
        extra = f"{entry.recurrence.value}{streak}"
    elif isinstance(entry, Task):
        extra = f"due {entry.due_date.isoformat()}"
    else:
        extra = ""
    return f"{mark}[{done}] {entry.id[:8]}{at} {entry.title} ({extra})"


def _fmt_stored(items: list[StoredEntry]) -> str:
    if not items:
        return "Nothing here."
    return "\n".join(_fmt_entry(s.entry, s.sync_state) for s in items)


def _split_options(args: list[str]) -> tuple[dict[str, str], str]:
    """Split "key=value" tokens from free text: ["due=2024-05-01", "Buy", "milk"] -> ({"due": ...}, "Buy milk")."""
    opts: dict[str, str] = {}
    words: list[str] = []
    for token in args:
        key, sep, value = token.partition("=")
        if sep and key and value and key.isalpha():
            opts[key.lower()] = value
        else:
            words.append(token)
    return opts, " ".join(words).strip()


def _parse_day(raw: str | None, default: date) -> date:
    if not raw:
        return default
    if raw.lower() == "today":
        return default
    return date.fromisoformat(raw)


def _parse_time(raw: str | None) -> time | None:
    if not raw:
        return None
    return time.fromisoformat(raw)


def _parse_reminder(raw: str | None) -> Reminder | None:
    if not raw:
        return None
    reminder = Reminder.parse(raw.strip().lower().replace("-", "_"))
    if reminder is None:
        raise ValueError(f"unknown reminder {raw!r} (one of: {', '.join(r.value for r in Reminder)})")
    return reminder


async def _resolve_entry(state: AppState, token: str) -> Entry | str:
    """Find an entry by full id or unique id prefix. Returns the entry or an error message."""
    exact = await state.repository.get_entry_by_id(token)
    if not isinstance(exact, Error):
        return exact.value

    matches: list[Entry] = []
    for entry_type in (EntryType.TASK, EntryType.HABIT):
        listed = await state.repository.list_stored(entry_type)
        if isinstance(listed, Error):
            return _fmt_error("look up entries", listed)
        matches.extend(s.entry for s in listed.value if s.id.startswith(token))

    if not matches:
        return f"No entry with id {token}."
    if len(matches) > 1:
        return f"Id prefix {token} is ambiguous ({len(matches)} entries)."
    return matches[0]


# ---- commands ----

async def cmd_help(state: AppState, args: list[str]) -> str:
    return registry.build_help()


async def cmd_tasks(state: AppState, args: list[str]) -> str:
    result = await state.repository.list_stored(EntryType.TASK)
    if isinstance(result, Error):
        return _fmt_error("list tasks", result)
    return _fmt_stored(result.value)


async def cmd_habits(state: AppState, args: list[str]) -> str:
    result = await state.repository.list_stored(EntryType.HABIT)
    if isinstance(result, Error):
        return _fmt_error("list habits", result)
    return _fmt_stored(result.value)


async def cmd_today(state: AppState, args: list[str]) -> str:
    """
    /today              -> entries visible today
    /today 2024-05-01   -> entries visible on that day
    """
    try:
        day = _parse_day(args[0] if args else None, state.clock.today())
    except ValueError:
        return "Usage: /today [YYYY-MM-DD]"

    result = await state.repository.get_entries_visible_on(day)
    if isinstance(result, Error):
        return _fmt_error("load the day", result)
    if not result.value:
        return f"Nothing planned for {day.isoformat()}."
    lines = [f"{day.isoformat()}:"]
    lines.extend(_fmt_entry(e) for e in result.value)
    return "\n".join(lines)


async def cmd_add_task(state: AppState, args: list[str]) -> str:
    """/add-task [due=YYYY-MM-DD] [at=HH:MM] [remind=on_time] <title>"""
    opts, title = _split_options(args)
    if not title:
        return "Usage: /add-task [due=YYYY-MM-DD] [at=HH:MM] [remind=<reminder>] <title>"
    try:
        task = Task(
            id=str(uuid.uuid4()),
            title=title,
            time=_parse_time(opts.get("at")),
            created_at=state.clock.now(),
            reminder=_parse_reminder(opts.get("remind")),
            due_date=_parse_day(opts.get("due"), state.clock.today()),
        )
    except ValueError as e:
        return f"Invalid task: {e}"

    result = await state.repository.save_entry(task)
    if isinstance(result, Error):
        return _fmt_error("save the task", result)
    return f"Task added: {_fmt_entry(result.value, SyncState.PENDING)}"


async def cmd_add_habit(state: AppState, args: list[str]) -> str:
    """/add-habit [every=daily|weekly|none] [start=YYYY-MM-DD] [at=HH:MM] [remind=...] <title>"""
    opts, title = _split_options(args)
    if not title:
        return (
            "Usage: /add-habit [every=daily|weekly|none] [start=YYYY-MM-DD] "
            "[at=HH:MM] [remind=<reminder>] <title>"
        )
    try:
        habit = Habit(
            id=str(uuid.uuid4()),
            title=title,
            time=_parse_time(opts.get("at")),
            created_at=state.clock.now(),
            reminder=_parse_reminder(opts.get("remind")),
            start_date=_parse_day(opts.get("start"), state.clock.today()),
            recurrence=Recurrence.parse(opts.get("every", "daily")),
        )
    except ValueError as e:
        return f"Invalid habit: {e}"

    result = await state.repository.save_entry(habit)
    if isinstance(result, Error):
        return _fmt_error("save the habit", result)
    return f"Habit added: {_fmt_entry(result.value, SyncState.PENDING)}"


async def cmd_done(state: AppState, args: list[str]) -> str:
    """
    /done <id> [YYYY-MM-DD]     -> mark done (today by default)
    /undone <id> [YYYY-MM-DD]   -> revert
    """
    if not args:
        return "Usage: /done <id> [YYYY-MM-DD]"
    found = await _resolve_entry(state, args[0])
    if isinstance(found, str):
        return found
    try:
        day = _parse_day(args[1] if len(args) > 1 else None, state.clock.today())
    except ValueError:
        return "Usage: /done <id> [YYYY-MM-DD]"

    result = await state.repository.mark_entry_done(found, day)
    if isinstance(result, Error):
        return _fmt_error("mark it done", result)
    return f"Done: {_fmt_entry(result.value, SyncState.PENDING)}"


async def cmd_undone(state: AppState, args: list[str]) -> str:
    if not args:
        return "Usage: /undone <id> [YYYY-MM-DD]"
    found = await _resolve_entry(state, args[0])
    if isinstance(found, str):
        return found
    try:
        day = _parse_day(args[1] if len(args) > 1 else None, state.clock.today())
    except ValueError:
        return "Usage: /undone <id> [YYYY-MM-DD]"

    result = await state.repository.unmark_entry_done(found, day)
    if isinstance(result, Error):
        return _fmt_error("revert it", result)
    return f"Not done: {_fmt_entry(result.value, SyncState.PENDING)}"


async def cmd_delete(state: AppState, args: list[str]) -> str:
    if not args:
        return "Usage: /delete <id>"
    found = await _resolve_entry(state, args[0])
    if isinstance(found, str):
        return found

    result = await state.repository.delete_entry(found.id)
    if isinstance(result, Error):
        return _fmt_error("delete it", result)
    return f"Deleted {found.title!r} (remote delete pending)."


async def cmd_history(state: AppState, args: list[str]) -> str:
    """/history <id> -> completion dates of one entry, newest first"""
    if not args:
        return "Usage: /history <id>"
    found = await _resolve_entry(state, args[0])
    if isinstance(found, str):
        return found

    result = await state.repository.get_done_history(found.id)
    if isinstance(result, Error):
        return _fmt_error("load the history", result)
    if not result.value:
        return f"{found.title} has never been completed."
    lines = [f"{found.title} completed {len(result.value)} time(s):"]
    for done in result.value:
        mark = _STATE_MARKS.get(done.sync_state, " ")
        done_at = done.done_at.astimezone().strftime("%H:%M")
        lines.append(f"{mark} {done.date.isoformat()} at {done_at}")
    return "\n".join(lines)


async def cmd_sync(state: AppState, args: list[str]) -> str:
    result = await state.repository.sync_now()
    if isinstance(result, Error):
        return _fmt_error("sync", result)
    report = result.value
    lines = [
        f"Sync finished at {datetime.now().astimezone().strftime('%H:%M:%S')}:",
        f"  synced: {len(report.synced)}",
        f"  will retry: {len(report.transient)}",
        f"  failed: {len(report.permanent)}",
    ]
    if report.listing_errors:
        lines.append(f"  listing errors: {len(report.listing_errors)}")
    if report.pull_error is not None:
        retry = " (will retry)" if isinstance(report.pull_error, Transient) else ""
        lines.append(f"  pull failed{retry}: {report.pull_error.cause}")
    return "\n".join(lines)


async def cmd_pending(state: AppState, args: list[str]) -> str:
    result = await state.repository.get_pending_entries()
    if isinstance(result, Error):
        return _fmt_error("list pending entries", result)
    if not result.value:
        return "Everything is synced."
    return _fmt_stored(result.value)


registry.register("help", cmd_help, "Show this help message", aliases=["h", "?"])
registry.register("tasks", cmd_tasks, "List tasks (~ pending sync, ! sync failed)")
registry.register("habits", cmd_habits, "List habits (~ pending sync, ! sync failed)")
registry.register("today", cmd_today, "Entries visible today (or /today YYYY-MM-DD)")
registry.register("add-task", cmd_add_task, "Add a task: /add-task [due=..] [at=HH:MM] [remind=..] <title>")
registry.register("add-habit", cmd_add_habit, "Add a habit: /add-habit [every=daily|weekly] [at=HH:MM] <title>")
registry.register("done", cmd_done, "Mark an entry done: /done <id> [YYYY-MM-DD]")
registry.register("undone", cmd_undone, "Revert a completion: /undone <id> [YYYY-MM-DD]")
registry.register("history", cmd_history, "Completion dates of an entry: /history <id>")
registry.register("delete", cmd_delete, "Delete an entry: /delete <id>", aliases=["rm"])
registry.register("sync", cmd_sync, "Pull remote changes and push pending ones now")
registry.register("pending", cmd_pending, "List entries waiting to be synced")
