# src/blockreceipt/cli/commands.py

from __future__ import annotations

import time
from collections.abc import Callable

from ..core.state import AppState
from ..tasks.task_api import (
    TaskStatusView,
    cleanup_older_than,
    get_latest_for_subject,
    get_status,
    poll_response,
    project,
    submit_receipt,
)
from ..tasks.task_models import Task, TaskStatus

CommandHandler = Callable[[AppState, list[str]], str]


class CommandRegistry:
    """Simple slash-command registry used by the console (/help, /submit, ...)."""

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

    def handle(self, state: AppState, line: str) -> str | None:
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

        return handler(state, args)

    def build_help(self) -> str:
        lines = ["Available commands:"]
        for name, help_text in self._help.items():
            lines.append(f"  /{name} - {help_text}")
        return "\n".join(lines)


registry = CommandRegistry()


def _fmt_ts(ts: float | None) -> str:
    if ts is None:
        return "-"
    return time.strftime("%Y-%m-%d %H:%M:%S", time.localtime(ts))


def _task_line(task: Task) -> str:
    tail = ""
    if task.status == TaskStatus.FAILED and task.error:
        tail = f" error={task.error!r}"
    elif task.status == TaskStatus.COMPLETED and isinstance(task.result, dict):
        token = task.result.get("token_id")
        if token:
            tail = f" token={token}"
    return (
        f"{task.id} {task.kind:<17} {task.status.value:<10} "
        f"receipt={task.correlation_key or '-'} created={_fmt_ts(task.created_at)}{tail}"
    )


def _fmt_poll(view: TaskStatusView | None) -> str:
    resp = poll_response(view)
    if not resp["found"]:
        return "No such task."
    lines = [
        f"Task {resp['task_id']} ({resp['type']}): {resp['status']}",
        f"  completed={resp['completed']} failed={resp['failed']}",
    ]
    if resp["error"]:
        lines.append(f"  error: {resp['error']}")
    nft = resp["nft"]
    if nft:
        lines.append(
            f"  nft: token={nft['token_id']} contract={nft['contract_address']} "
            f"marketplace={nft['marketplace']} tx={nft['tx_hash']}"
        )
    return "\n".join(lines)


def cmd_help(state: AppState, args: list[str]) -> str:
    return registry.build_help()


def cmd_submit(state: AppState, args: list[str]) -> str:
    """
    /submit <receipt_id> <wallet> [total] [--encrypt] [--no-fallback]

    --encrypt attaches a demo encryption bundle so the saga ends with finalize-metadata.
    """
    flags = {a for a in args if a.startswith("--")}
    positional = [a for a in args if not a.startswith("--")]
    if len(positional) < 2:
        return "Usage: /submit <receipt_id> <wallet> [total] [--encrypt] [--no-fallback]"

    receipt_id, wallet = positional[0], positional[1]
    total: float | None = None
    if len(positional) > 2:
        try:
            total = float(positional[2])
        except ValueError:
            return f"Invalid total: {positional[2]!r}"

    encryption = None
    if "--encrypt" in flags:
        encryption = {
            "ciphertext": f"demo-ciphertext-{receipt_id}",
            "capsule_id": f"demo-capsule-{receipt_id}",
            "policy_id": f"demo-policy-{receipt_id}",
        }

    task = submit_receipt(
        state.task_store,
        receipt_id=receipt_id,
        wallet=wallet,
        total=total,
        encryption=encryption,
        allow_fallback="--no-fallback" not in flags,
    )
    return f"Submitted receipt {receipt_id}: task {task.id} ({task.kind}, {task.status.value})."


def cmd_status(state: AppState, args: list[str]) -> str:
    if not args:
        return "Usage: /status <task_id>"
    view = get_status(state.task_store, args[0])
    if view is None:
        return f"No task with id {args[0]}."
    return _fmt_poll(view)


def cmd_latest(state: AppState, args: list[str]) -> str:
    if not args:
        return "Usage: /latest <receipt_id>"
    task = get_latest_for_subject(state.task_store, args[0])
    if task is None:
        return f"No tasks for receipt {args[0]}."
    return _fmt_poll(project(task))


def cmd_tasks(state: AppState, args: list[str]) -> str:
    """
    /tasks           -> all tasks
    /tasks <status>  -> only pending|processing|completed|failed
    """
    if args:
        try:
            status = TaskStatus(args[0].lower())
        except ValueError:
            return "Usage: /tasks [pending|processing|completed|failed]"
        tasks = state.task_store.by_status(status)
    else:
        tasks = state.task_store.all_tasks()

    if not tasks:
        return "No tasks."
    return "\n".join(_task_line(t) for t in tasks)


def cmd_owner(state: AppState, args: list[str]) -> str:
    if not args:
        return "Usage: /owner <wallet>"
    tasks = state.task_store.by_owner(args[0])
    if not tasks:
        return f"No tasks for wallet {args[0]}."
    return "\n".join(_task_line(t) for t in tasks)


def cmd_cleanup(state: AppState, args: list[str]) -> str:
    """/cleanup [hours] -> drop finished tasks older than `hours` (default: retention setting)."""
    hours = float(getattr(state.settings, "task_retention_hours", 24.0))
    if args:
        try:
            hours = float(args[0])
        except ValueError:
            return "Usage: /cleanup [hours]"
    removed = cleanup_older_than(state.task_store, hours * 3600.0)
    return f"Removed {removed} finished task(s) older than {hours:g}h."


def cmd_stats(state: AppState, args: list[str]) -> str:
    stats = state.dispatcher.stats()
    counts = {s.value: len(state.task_store.by_status(s)) for s in TaskStatus}
    return (
        "Dispatcher:\n"
        f"  In flight: {stats['in_flight']}/{stats['max_concurrent']}\n"
        f"  Settled: completed={stats['completed']} failed={stats['failed']}\n"
        f"  Handlers: {', '.join(stats['handlers']) or '-'}\n"
        "Tasks: " + ", ".join(f"{k}={v}" for k, v in counts.items())
    )


registry.register("help", cmd_help, help_text="Show available commands.", aliases=["h", "?"])
registry.register(
    "submit",
    cmd_submit,
    help_text="Start a saga: /submit <receipt_id> <wallet> [total] [--encrypt] [--no-fallback].",
)
registry.register("status", cmd_status, help_text="Show one task: /status <task_id>.")
registry.register("latest", cmd_latest, help_text="Latest task for a receipt: /latest <receipt_id>.")
registry.register("tasks", cmd_tasks, help_text="List tasks: /tasks [status].", aliases=["ls"])
registry.register("owner", cmd_owner, help_text="Tasks for a wallet: /owner <wallet>.")
registry.register("cleanup", cmd_cleanup, help_text="Drop finished tasks: /cleanup [hours].")
registry.register("stats", cmd_stats, help_text="Dispatcher load and task counts.")
