"""
llm-router CLI - Inspect and manage boulders, background tasks, hooks and events.

Usage:
    python -m llm_router boulder status|list|show ID|report [ID]|resume|cancel
    python -m llm_router tasks list [--status S]|show ID|cancel ID|cleanup [--max-age N]
    python -m llm_router hooks list|init
    python -m llm_router events list [--type T] [--subject S] [--limit N] [--counts]

Every command takes --project-dir (default: current directory).
"""

import argparse
import asyncio
import logging
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import List, Optional

from llm_router.background import TERMINAL_STATUSES, TaskStatus, TaskStore
from llm_router.boulder.manager import BoulderStateManager
from llm_router.boulder.types import BoulderState, BoulderStatus
from llm_router.config import RouterConfig
from llm_router.hooks.builtin import ErrorTracker, RateLimitTracker, register_builtin_hooks
from llm_router.hooks.config_loader import create_default_config_if_needed, initialize_hook_system
from llm_router.hooks.manager import HookManager
from llm_router.hooks.types import ExternalHookDefinition
from llm_router.observability import EventJournal
from llm_router.output import (
    console,
    create_table,
    icon,
    print_error,
    print_header,
    print_info,
    print_key_value_table,
    print_list,
    print_muted,
    print_panel,
    print_subheader,
    print_success,
    print_table,
    print_warning,
    setup_rich_logging,
    spinner,
    status_markup,
)


def _short_time(timestamp: Optional[str]) -> str:
    return timestamp[:19].replace("T", " ") if timestamp else "N/A"


# =============================================================================
# boulder
# =============================================================================

def _print_boulder(boulder: BoulderState) -> None:
    print_header(f"Boulder {boulder.id}")
    print_key_value_table({
        "Status": status_markup(boulder.status.value),
        "Request": boulder.request,
        "Intent": boulder.intent.value if boulder.intent else "-",
        "Current Phase": boulder.current_phase.value,
        "Attempts": f"{boulder.attempts_made}/{boulder.max_attempts}",
        "Created": _short_time(boulder.created_at),
        "Updated": _short_time(boulder.updated_at),
        "Completed": _short_time(boulder.completed_at),
        "Escalation": boulder.escalation_reason or ("required" if boulder.escalation_required else "-"),
    })

    if boulder.checkpoints:
        print_subheader("Checkpoints")
        table = create_table(columns=["Phase", "Started", "Completed", "Result", "Error"])
        for checkpoint in boulder.checkpoints:
            if checkpoint.success is None:
                result = "[lr.muted]open[/]"
            else:
                result = f"[lr.ok]{icon('check')}[/]" if checkpoint.success else f"[lr.err]{icon('cross')}[/]"
            table.add_row(
                checkpoint.phase_id,
                f"[lr.timestamp]{_short_time(checkpoint.started_at)}[/]",
                f"[lr.timestamp]{_short_time(checkpoint.completed_at)}[/]",
                result,
                (checkpoint.error or "")[:60],
            )
        print_table(table)

    if boulder.implementation_attempts:
        print_subheader("Implementation Attempts")
        table = create_table(columns=["#", "Expert", "Result", "Details"])
        for attempt in boulder.implementation_attempts:
            table.add_row(
                str(attempt.attempt_number),
                attempt.expert,
                "[lr.ok]success[/]" if attempt.success else "[lr.err]failed[/]",
                (attempt.error or attempt.approach or "")[:60],
            )
        print_table(table)


def cmd_boulder_status(args) -> int:
    """Show the active boulder, if any."""
    manager = BoulderStateManager(args.project_dir)
    boulder = manager.get_current_boulder()
    if boulder is None:
        print_info("No active boulder")
        return 0
    _print_boulder(boulder)
    if boulder.status == BoulderStatus.CRASHED:
        print_warning("This boulder crashed. Run 'boulder resume' for a recovery plan.")
    return 0


def cmd_boulder_list(args) -> int:
    """List the active boulder and recent history."""
    manager = BoulderStateManager(args.project_dir)
    with spinner("Loading boulder history..."):
        summaries = manager.list_history()

    if not summaries:
        print_info("No boulders found")
        return 0

    print_header(f"Boulders ({len(summaries)})")
    table = create_table(columns=["ID", "Status", "Phase", "Attempts", "Updated", "Request"])
    for summary in summaries:
        table.add_row(
            f"[lr.accent]{summary.id}[/]",
            status_markup(summary.status),
            summary.current_phase,
            str(summary.attempts_made),
            f"[lr.timestamp]{_short_time(summary.updated_at)}[/]",
            summary.request_preview[:60],
        )
    print_table(table)
    return 0


def cmd_boulder_show(args) -> int:
    manager = BoulderStateManager(args.project_dir)
    boulder = manager.get_boulder(args.boulder_id)
    if boulder is None:
        print_error(f"Boulder not found: {args.boulder_id}")
        return 1
    _print_boulder(boulder)
    return 0


def cmd_boulder_report(args) -> int:
    """Print the escalation report for a boulder."""
    manager = BoulderStateManager(args.project_dir)
    boulder = manager.get_boulder(args.boulder_id) if args.boulder_id else manager.get_current_boulder()
    if boulder is None:
        print_error("No boulder found")
        return 1
    console.print(manager.generate_escalation_report(boulder), markup=False)
    return 0


def cmd_boulder_resume(args) -> int:
    """
    Show the recovery plan for a crashed boulder.

    The run itself is resumed by the next process that calls
    WorkflowOrchestrator.resume_crashed().
    """
    manager = BoulderStateManager(args.project_dir)
    recovery = manager.check_for_crashed_boulder()
    if not recovery.can_recover:
        print_info(recovery.message)
        return 0

    print_panel(recovery.message, title="Crashed Boulder", border_style="lr.warn")
    if recovery.suggestions:
        print_subheader("Suggestions")
        print_list(recovery.suggestions)
    return 0


def cmd_boulder_cancel(args) -> int:
    manager = BoulderStateManager(args.project_dir)
    boulder = manager.cancel()
    if boulder is None:
        print_info("No active boulder to cancel")
        return 1
    print_success(f"Boulder {boulder.id} cancelled and archived")
    return 0


# =============================================================================
# tasks
# =============================================================================

def _task_store(args) -> TaskStore:
    return TaskStore(RouterConfig(project_dir=args.project_dir).background_data_dir)


def cmd_tasks_list(args) -> int:
    store = _task_store(args)
    tasks = list(store.load_tasks().values())
    if args.status:
        tasks = [t for t in tasks if t.status.value == args.status]

    if not tasks:
        print_info("No background tasks found")
        return 0

    queued = {item.task_id for item in store.load_queue()}
    print_header(f"Background Tasks ({len(tasks)})")
    table = create_table(columns=["ID", "Expert", "Status", "Started", "Queued"])
    for task in sorted(tasks, key=lambda t: t.started_at, reverse=True):
        table.add_row(
            f"[lr.accent]{task.id}[/]",
            task.expert,
            status_markup(task.status.value),
            f"[lr.timestamp]{task.started_at.isoformat()[:19]}[/]",
            "yes" if task.id in queued else "",
        )
    print_table(table)
    return 0


def cmd_tasks_show(args) -> int:
    task = _task_store(args).load_tasks().get(args.task_id)
    if task is None:
        print_error(f"Task not found: {args.task_id}")
        return 1

    print_header(f"Task {task.id}")
    print_key_value_table({
        "Expert": task.expert,
        "Status": status_markup(task.status.value),
        "Started": task.started_at.isoformat()[:19],
        "Completed": task.completed_at.isoformat()[:19] if task.completed_at else "N/A",
    })
    if task.error:
        print_panel(task.error, title="Error", border_style="lr.err")
    if task.result:
        print_panel(task.result, title="Result")
    return 0


def cmd_tasks_cancel(args) -> int:
    """Cancel a persisted pending task and drop it from the queue."""
    store = _task_store(args)
    tasks = store.load_tasks()
    task = tasks.get(args.task_id)
    if task is None:
        print_error(f"Task not found: {args.task_id}")
        return 1
    if task.status in TERMINAL_STATUSES:
        print_warning(f"Task {task.id} is already {task.status.value}")
        return 1

    task.status = TaskStatus.CANCELLED
    task.completed_at = datetime.now(timezone.utc)
    queue = [item for item in store.load_queue() if item.task_id != task.id]
    if not (store.save_tasks(tasks) and store.save_queue(queue)):
        print_error("Could not save background task state")
        return 1
    print_success(f"Task {task.id} cancelled")
    return 0


def cmd_tasks_cleanup(args) -> int:
    store = _task_store(args)
    tasks = store.load_tasks()
    now = datetime.now(timezone.utc)
    kept = {
        task_id: task for task_id, task in tasks.items()
        if task.status not in TERMINAL_STATUSES or task.age_seconds(now) <= args.max_age
    }
    removed = len(tasks) - len(kept)
    if removed and not store.save_tasks(kept):
        print_error("Could not save background task state")
        return 1
    print_success(f"Removed {removed} finished task(s)")
    return 0


# =============================================================================
# hooks
# =============================================================================

def cmd_hooks_list(args) -> int:
    """List built-in and configured hooks as they would be registered."""
    manager = HookManager(cwd=str(args.project_dir))
    register_builtin_hooks(manager, RateLimitTracker(), error_tracker=ErrorTracker())
    config = initialize_hook_system(manager, args.project_dir)

    if not config["enabled"]:
        print_warning("Hook system is disabled in configuration")

    registered = manager.get_registered_hooks()
    hooks = registered["internal"] + registered["external"]
    print_header(f"Hooks ({len(hooks)})")
    table = create_table(columns=["ID", "Event", "Priority", "Kind", "Pattern", "Enabled"])
    for hook in sorted(hooks, key=lambda h: (h.event_type.value, -h.priority.weight)):
        enabled = hook.enabled and hook.id not in manager.disabled_hooks
        table.add_row(
            hook.id,
            hook.event_type.value,
            hook.priority.value,
            "external" if isinstance(hook, ExternalHookDefinition) else "internal",
            hook.tool_pattern or hook.expert_pattern or "",
            f"[lr.ok]{icon('check')}[/]" if enabled else f"[lr.muted]{icon('cross')}[/]",
        )
    print_table(table)
    return 0


def cmd_hooks_init(args) -> int:
    if create_default_config_if_needed(args.project_dir):
        print_success(f"Created {args.project_dir / '.llm-router' / 'hooks.json'}")
    else:
        print_muted("Hook config already exists")
    return 0


# =============================================================================
# events
# =============================================================================

async def _list_events(args) -> int:
    journal = EventJournal(args.project_dir)
    if not await journal.init():
        print_error("Could not open the event journal")
        return 1
    try:
        if args.counts:
            counts = await journal.count_by_type()
            print_header("Event Counts")
            print_key_value_table({k: str(v) for k, v in sorted(counts.items())})
            return 0
        events = await journal.list_events(event_type=args.type, subject=args.subject, limit=args.limit)
    finally:
        await journal.close()

    if not events:
        print_info("No matching events found")
        return 0

    print_header(f"Events ({len(events)})")
    table = create_table(columns=["#", "Timestamp", "Type", "Subject"])
    for event in events:
        table.add_row(
            str(event.id),
            f"[lr.timestamp]{_short_time(event.timestamp)}[/]",
            f"[lr.info]{event.event_type}[/]",
            event.subject or "",
        )
    print_table(table)
    return 0


def cmd_events_list(args) -> int:
    """List journaled hook events, newest first."""
    db_path = args.project_dir / ".llm-router" / "events.db"
    if not db_path.exists():
        print_warning(f"No events found at {db_path}")
        return 1
    return asyncio.run(_list_events(args))


# =============================================================================
# Parser
# =============================================================================

def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="llm-router",
        description="Inspect and manage llm-router state",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument(
        "--project-dir",
        type=Path,
        default=Path("."),
        help="Working directory containing .llm-router/ (default: current dir)",
    )
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable debug logging")

    groups = parser.add_subparsers(dest="group", help="Command group")

    boulder = groups.add_parser("boulder", help="Workflow state")
    boulder_cmds = boulder.add_subparsers(dest="command")
    boulder_cmds.add_parser("status", help="Show the active boulder").set_defaults(func=cmd_boulder_status)
    boulder_cmds.add_parser("list", help="List active and archived boulders").set_defaults(func=cmd_boulder_list)
    show = boulder_cmds.add_parser("show", help="Show one boulder")
    show.add_argument("boulder_id")
    show.set_defaults(func=cmd_boulder_show)
    report = boulder_cmds.add_parser("report", help="Print the escalation report")
    report.add_argument("boulder_id", nargs="?")
    report.set_defaults(func=cmd_boulder_report)
    boulder_cmds.add_parser("resume", help="Show the recovery plan for a crashed boulder").set_defaults(
        func=cmd_boulder_resume
    )
    boulder_cmds.add_parser("cancel", help="Cancel the active boulder").set_defaults(func=cmd_boulder_cancel)

    tasks = groups.add_parser("tasks", help="Background tasks")
    task_cmds = tasks.add_subparsers(dest="command")
    task_list = task_cmds.add_parser("list", help="List persisted tasks")
    task_list.add_argument("--status", "-s", choices=[s.value for s in TaskStatus])
    task_list.set_defaults(func=cmd_tasks_list)
    task_show = task_cmds.add_parser("show", help="Show one task")
    task_show.add_argument("task_id")
    task_show.set_defaults(func=cmd_tasks_show)
    task_cancel = task_cmds.add_parser("cancel", help="Cancel a pending task")
    task_cancel.add_argument("task_id")
    task_cancel.set_defaults(func=cmd_tasks_cancel)
    task_cleanup = task_cmds.add_parser("cleanup", help="Remove old finished tasks")
    task_cleanup.add_argument("--max-age", type=float, default=3600.0, help="Age in seconds (default: 3600)")
    task_cleanup.set_defaults(func=cmd_tasks_cleanup)

    hooks = groups.add_parser("hooks", help="Hook configuration")
    hook_cmds = hooks.add_subparsers(dest="command")
    hook_cmds.add_parser("list", help="List registered hooks").set_defaults(func=cmd_hooks_list)
    hook_cmds.add_parser("init", help="Create .llm-router/hooks.json").set_defaults(func=cmd_hooks_init)

    events = groups.add_parser("events", help="Event journal")
    event_cmds = events.add_subparsers(dest="command")
    event_list = event_cmds.add_parser("list", help="List journaled events")
    event_list.add_argument("--type", "-t", help="Filter by event type (e.g. onExpertCall)")
    event_list.add_argument("--subject", help="Filter by tool or expert name")
    event_list.add_argument("--limit", "-n", type=int, default=50, help="Max events to show")
    event_list.add_argument("--counts", action="store_true", help="Show counts per event type")
    event_list.set_defaults(func=cmd_events_list)

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    setup_rich_logging(logging.DEBUG if args.verbose else None)

    handler = getattr(args, "func", None)
    if handler is None:
        parser.print_help()
        return 1
    return handler(args)


if __name__ == "__main__":
    sys.exit(main())
