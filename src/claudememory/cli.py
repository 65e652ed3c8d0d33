"""Command-line interface for Claude Memory.

This module provides the ``claude-mem`` entry point. Every command builds a
:class:`~claudememory.coordinator.Coordinator` for the selected project and
instance, runs one operation and exits: 0 on success, 1 on error with the
message on stderr.

The instance identity comes from ``--instance-id`` or the
``CLAUDE_MEMORY_INSTANCE_ID`` environment variable. Without either, each
invocation acts as a fresh instance, so delegating and acknowledging from
separate shells only lines up when the variable is set.
"""

from __future__ import annotations

import argparse
import json
import os
import sys
from pathlib import Path
from typing import Any, NoReturn

from claudememory.config import ConfigValidationError, get_config_path, load_config
from claudememory.coordinator import Coordinator
from claudememory.inbox import MessageType
from claudememory.instances import InstanceStatus
from claudememory.logging_config import setup_logging
from claudememory.models import MemoryQuery, MemoryStatus, MemoryType
from claudememory.project import get_project_root
from claudememory.tasks import TaskPriority, TaskQueueError, TaskResult, TaskStatus
from claudememory.utils import dump_yaml
from claudememory.validators import ValidationError

__all__ = ["main"]

INSTANCE_ENV_VAR = "CLAUDE_MEMORY_INSTANCE_ID"
DEFAULT_RECALL_LIMIT = 10
DEFAULT_TIMELINE_LIMIT = 20


def _fail(message: str) -> NoReturn:
    print(f"Error: {message}", file=sys.stderr)
    sys.exit(1)


def _print_json(data: Any) -> None:
    print(json.dumps(data, indent=2))


def _split_csv(value: str | None) -> list[str] | None:
    if value is None:
        return None
    return [part.strip() for part in value.split(",") if part.strip()]


def _coordinator(args: argparse.Namespace, require_init: bool = True) -> Coordinator:
    coord = Coordinator(
        project_root=args.project_root,
        instance_id=args.instance_id,
        capabilities=_split_csv(args.capabilities),
    )
    if require_init and not coord.is_initialized():
        _fail(f"No memory store in {coord.project_root}. Run 'claude-mem init' first")
    return coord


def _ensure_registered(coord: Coordinator) -> None:
    if coord.instances.get_instance() is None:
        coord.instances.register()


def _format_memory(memory) -> str:
    marker = "*" if memory.importance >= 0.7 else " "
    status = "" if memory.status == MemoryStatus.ACTIVE else f" ({memory.status.value})"
    return f"{marker} {memory.id}  [{memory.type.value}] {memory.title}{status}"


def _format_task(task) -> str:
    claimed = f" <- {task.claimed_by.instance_id}" if task.claimed_by else ""
    return f"  {task.id}  {task.status.value:<11} {task.priority.value:<8} {task.title}{claimed}"


# ============ Memory commands ============


def cmd_init(args: argparse.Namespace) -> None:
    """Create the memory store in the project."""
    coord = _coordinator(args, require_init=False)
    already = coord.is_initialized()
    coord.memory.init(coord.config)
    if already:
        print(f"Memory store already initialized in {coord.memory.memory_dir}")
    else:
        print(f"Initialized memory store in {coord.memory.memory_dir}")


def cmd_store(args: argparse.Namespace) -> None:
    """Store a new memory."""
    coord = _coordinator(args)
    context = {"related_files": args.files} if args.files else None
    links = {"supersedes": args.supersedes} if args.supersedes else None
    memory = coord.remember(
        args.type,
        args.title,
        args.summary,
        details=args.details,
        tags=_split_csv(args.tags),
        importance=args.importance,
        confidence=args.confidence,
        context=context,
        links=links,
    )
    if args.json:
        _print_json(memory.to_dict())
    else:
        print(f"Stored {memory.type.value} memory {memory.id}")


def cmd_recall(args: argparse.Namespace) -> None:
    """Query memories."""
    coord = _coordinator(args)
    query = MemoryQuery(
        types=args.types,
        tags=_split_csv(args.tags),
        files=args.files,
        status=args.status,
        include_superseded=args.include_superseded,
        since=args.since,
        before=args.before,
        min_importance=0.7 if args.important else args.min_importance,
        search=args.search,
        limit=args.limit,
    )
    memories = coord.search(query)

    if args.json:
        _print_json([m.to_dict() for m in memories])
    elif not memories:
        print("No memories found.")
    else:
        print(f"=== Memories ({len(memories)}) ===")
        for memory in memories:
            print(_format_memory(memory))
            print(f"      {memory.summary}")


def cmd_show(args: argparse.Namespace) -> None:
    """Show one memory, optionally with the memories recorded around it."""
    coord = _coordinator(args)
    if args.context:
        memories = coord.get_context(args.memory_id, args.context)
        if not memories:
            _fail(f"Memory {args.memory_id} not found")
        if args.json:
            _print_json([m.to_dict() for m in memories])
        else:
            for memory in memories:
                print(_format_memory(memory))
        return

    memory = coord.get_memory(args.memory_id)
    if memory is None:
        _fail(f"Memory {args.memory_id} not found")
    if args.json:
        _print_json(memory.to_dict())
    else:
        print(dump_yaml(memory.to_dict()), end="")


def cmd_archive(args: argparse.Namespace) -> None:
    """Archive a memory."""
    coord = _coordinator(args)
    if coord.archive(args.memory_id) is None:
        _fail(f"Memory {args.memory_id} not found or already archived")
    print(f"Archived memory {args.memory_id}")


def cmd_timeline(args: argparse.Namespace) -> None:
    """Show the timeline, newest first."""
    coord = _coordinator(args)
    entries = coord.get_timeline(args.limit)
    if args.json:
        _print_json(entries)
        return
    if not entries:
        print("Timeline is empty.")
        return
    for entry in entries:
        supersedes = f" (supersedes {', '.join(entry['supersedes'])})" if entry.get("supersedes") else ""
        print(
            f"  {entry.get('timestamp', '')}  {entry['memory_id']}  "
            f"[{entry.get('type', '?')}] {entry.get('summary', '')}{supersedes}"
        )


def cmd_rebuild_index(args: argparse.Namespace) -> None:
    """Regenerate index.json from the memory files."""
    coord = _coordinator(args)
    index = coord.rebuild_index()
    total = sum(len(ids) for ids in index["by_status"].values())
    print(f"Rebuilt index from {total} memories")


# ============ Task commands ============


def cmd_delegate(args: argparse.Namespace) -> None:
    """Create a task for another instance."""
    coord = _coordinator(args)
    _ensure_registered(coord)
    task = coord.delegate(
        args.title,
        args.description,
        instructions=args.instructions,
        priority=args.priority,
        capabilities=_split_csv(args.require),
        specific_instance=args.to,
        timeout_minutes=args.timeout,
        files_involved=args.files,
    )
    if args.json:
        _print_json(task.to_dict())
    else:
        print(f"Delegated task {task.id}")


def cmd_tasks(args: argparse.Namespace) -> None:
    """List tasks."""
    coord = _coordinator(args)
    if args.stats:
        stats = coord.tasks.get_task_stats()
        if args.json:
            _print_json(stats)
        else:
            for name, count in stats.items():
                print(f"  {name:<12} {count}")
        return

    if args.available:
        tasks = coord.get_available_tasks()
    elif args.mine:
        tasks = coord.tasks.get_my_claimed_tasks()
    elif args.waiting:
        tasks = coord.tasks.get_waiting_tasks()
    elif args.overdue:
        tasks = coord.tasks.get_overdue_tasks()
    else:
        tasks = coord.tasks.list_tasks(args.status)

    if args.json:
        _print_json([t.to_dict() for t in tasks])
    elif not tasks:
        print("No tasks found.")
    else:
        print(f"=== Tasks ({len(tasks)}) ===")
        for task in tasks:
            print(_format_task(task))


def cmd_claim(args: argparse.Namespace) -> None:
    coord = _coordinator(args)
    _ensure_registered(coord)
    task = coord.claim_task(args.task_id)
    if task is None:
        _fail(f"Task {args.task_id} not found")
    print(f"Claimed task {task.id}: {task.title}")


def cmd_start(args: argparse.Namespace) -> None:
    coord = _coordinator(args)
    task = coord.start_task(args.task_id)
    if task is None:
        _fail(f"Task {args.task_id} not found")
    print(f"Started task {task.id}")


def cmd_progress(args: argparse.Namespace) -> None:
    coord = _coordinator(args)
    if coord.update_task_progress(args.task_id, args.message) is None:
        _fail(f"Task {args.task_id} not found")
    print(f"Recorded progress on {args.task_id}")


def cmd_complete(args: argparse.Namespace) -> None:
    """Mark a task completed with an optional result."""
    coord = _coordinator(args)
    result = TaskResult(
        success=True,
        output={"type": "text", "data": args.output} if args.output else None,
        artifacts=[{"path": p} for p in args.artifacts or []],
        generated_memories=list(args.memories or []),
    )
    if coord.complete_task(args.task_id, result) is None:
        _fail(f"Task {args.task_id} not found")
    print(f"Completed task {args.task_id}")


def cmd_fail(args: argparse.Namespace) -> None:
    coord = _coordinator(args)
    if coord.fail_task(args.task_id, args.code, args.message, args.details) is None:
        _fail(f"Task {args.task_id} not found")
    print(f"Marked task {args.task_id} as failed")


def cmd_cancel(args: argparse.Namespace) -> None:
    coord = _coordinator(args)
    if coord.cancel_task(args.task_id, args.reason) is None:
        _fail(f"Task {args.task_id} not found")
    print(f"Cancelled task {args.task_id}")


def cmd_ack(args: argparse.Namespace) -> None:
    """Acknowledge a finished task's result."""
    coord = _coordinator(args)
    task = coord.get_task(args.task_id)
    if task is None:
        _fail(f"Task {args.task_id} not found")
    if not task.is_terminal:
        _fail(f"Task {args.task_id} is {task.status.value}; only finished tasks can be acknowledged")
    task = coord.acknowledge_task(args.task_id)
    if args.json:
        _print_json(task.to_dict())
        return
    print(f"Acknowledged task {task.id} ({task.status.value})")
    if task.result is not None and task.result.error is not None:
        print(f"  Error: {task.result.error.code}: {task.result.error.message}")
    elif task.result is not None and task.result.output:
        print(f"  Output: {task.result.output.get('data')}")


# ============ Instance and message commands ============


def cmd_status(args: argparse.Namespace) -> None:
    """Show or set this instance's status."""
    coord = _coordinator(args)
    if args.set_status:
        coord.set_status(args.set_status, args.working_on)

    instance = coord.instances.get_instance()
    done = coord.check_delegated_tasks()
    unread = coord.get_messages()
    if args.json:
        _print_json({
            "instance": instance.to_dict() if instance else None,
            "completed_waits": [t.id for t in done],
            "unread_messages": len(unread),
        })
        return

    if instance is None:
        print(f"Instance {coord.instance_id} is not registered")
    else:
        working = f" on {instance.working_on}" if instance.working_on else ""
        print(f"Instance {instance.instance_id}: {instance.current_status.value}{working}")
        if instance.waiting_for:
            print(f"  Waiting for: {', '.join(instance.waiting_task_ids)}")
    if done:
        print(f"  Finished delegated tasks: {', '.join(t.id for t in done)}")
    print(f"  Unread messages: {len(unread)}")


def cmd_instances(args: argparse.Namespace) -> None:
    """List active instances."""
    coord = _coordinator(args)
    required = _split_csv(args.require)
    instances = coord.find_instances(required) if required else coord.get_active_instances()
    if args.json:
        _print_json([i.to_dict() for i in instances])
    elif not instances:
        print("No active instances found.")
    else:
        print(f"=== Active Instances ({len(instances)}) ===")
        for instance in instances:
            print(
                f"  {instance.instance_id:<24} {instance.current_status.value:<8} "
                f"{', '.join(instance.capabilities)}"
            )


def cmd_activity(args: argparse.Namespace) -> None:
    coord = _coordinator(args)
    entries = coord.get_activity(args.limit)
    if args.json:
        _print_json([e.to_dict() for e in entries])
        return
    for entry in entries:
        details = f": {entry.details}" if entry.details else ""
        print(f"  {entry.timestamp}  {entry.instance_id}  {entry.action}{details}")


def cmd_send(args: argparse.Namespace) -> None:
    """Send a message to another instance."""
    coord = _coordinator(args)
    msg = coord.send_message(
        args.recipient,
        args.type,
        args.message,
        subject=args.subject,
        related_task=args.task,
        related_memory=args.memory,
    )
    if args.json:
        _print_json(msg.to_dict())
    else:
        print(f"Sent message {msg.id} to {msg.to}")


def cmd_inbox(args: argparse.Namespace) -> None:
    """Show unread messages."""
    coord = _coordinator(args)
    messages = coord.get_messages()
    if args.json:
        _print_json([m.to_dict() for m in messages])
    elif not messages:
        print("No unread messages.")
    else:
        print(f"=== Unread Messages ({len(messages)}) ===")
        for msg in messages:
            subject = f" {msg.subject}:" if msg.subject else ""
            print(f"  {msg.id}  [{msg.type.value}] from {msg.sender}:{subject} {msg.message}")
    if args.mark_read:
        for msg in messages:
            coord.mark_read(msg.id)


def cmd_read(args: argparse.Namespace) -> None:
    coord = _coordinator(args)
    if coord.mark_read(args.message_id) is None:
        _fail(f"Message {args.message_id} not found")
    print(f"Marked {args.message_id} as read")


def cmd_reconcile(args: argparse.Namespace) -> None:
    """Repair task files and optionally the index and inbox."""
    coord = _coordinator(args)
    moved = coord.reconcile_tasks()
    print(f"Moved {moved} task files to match their status")
    if args.rebuild_index:
        coord.rebuild_index()
        print("Rebuilt memory index")
    if args.cleanup_inbox is not None:
        removed = coord.cleanup_inbox(args.cleanup_inbox)
        print(f"Removed {removed} old messages")


# ============ Config commands ============


def cmd_config_show(args: argparse.Namespace) -> None:
    config = load_config(get_project_root(args.project_root))
    if args.json:
        _print_json(config.to_dict())
    else:
        print(dump_yaml(config.to_dict()), end="")


def cmd_config_validate(args: argparse.Namespace) -> None:
    root = get_project_root(args.project_root)
    path = get_config_path(root)
    if not path.exists():
        print(f"No config file at {path}; defaults apply")
        return
    load_config(root, strict=True)
    print(f"Configuration is valid: {path}")


def build_parser() -> argparse.ArgumentParser:
    """Build the ``claude-mem`` argument parser."""
    parser = argparse.ArgumentParser(
        prog="claude-mem",
        description="Claude Memory - shared memory and task delegation for Claude instances",
    )
    parser.add_argument(
        "--project-root",
        type=Path,
        default=None,
        help="Project root directory (default: auto-detect)",
    )
    parser.add_argument(
        "--instance-id",
        default=os.environ.get(INSTANCE_ENV_VAR),
        help=f"Instance identity (default: ${INSTANCE_ENV_VAR}, else generated)",
    )
    parser.add_argument(
        "--capabilities",
        help="Comma-separated capabilities of this instance (default: from config)",
    )
    parser.add_argument(
        "--log-level",
        default="WARNING",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        help="Log level for stderr output (default: WARNING)",
    )

    subparsers = parser.add_subparsers(dest="command", help="Command to execute")

    init_parser = subparsers.add_parser("init", help="Create .claude-memory/ in the project")
    init_parser.set_defaults(func=cmd_init)

    # Memory
    store_parser = subparsers.add_parser("store", help="Store a memory")
    store_parser.add_argument("type", choices=[t.value for t in MemoryType])
    store_parser.add_argument("title")
    store_parser.add_argument("summary")
    store_parser.add_argument("--details", help="Long-form body")
    store_parser.add_argument("--tags", help="Comma-separated tags")
    store_parser.add_argument("--importance", type=float, default=0.5)
    store_parser.add_argument("--confidence", type=float, default=0.8)
    store_parser.add_argument("--file", dest="files", action="append", help="Related file (repeatable)")
    store_parser.add_argument("--supersedes", action="append", help="Id of a memory this replaces (repeatable)")
    store_parser.add_argument("--json", action="store_true", help="Output as JSON")
    store_parser.set_defaults(func=cmd_store)

    recall_parser = subparsers.add_parser("recall", help="Query memories")
    recall_parser.add_argument("search", nargs="?", help="Case-insensitive text to look for")
    recall_parser.add_argument(
        "--type", dest="types", action="append", choices=[t.value for t in MemoryType],
        help="Memory type (repeatable)",
    )
    recall_parser.add_argument("--tags", help="Comma-separated tags (any matches)")
    recall_parser.add_argument("--file", dest="files", action="append", help="Related file (repeatable)")
    recall_parser.add_argument(
        "--status", action="append", choices=[s.value for s in MemoryStatus],
        help="Status (repeatable, overrides --include-superseded)",
    )
    recall_parser.add_argument("--include-superseded", action="store_true")
    recall_parser.add_argument("--since", help="ISO 8601 timestamp (inclusive)")
    recall_parser.add_argument("--before", help="ISO 8601 timestamp (exclusive)")
    recall_parser.add_argument("--min-importance", type=float)
    recall_parser.add_argument("--important", action="store_true", help="Only importance >= 0.7")
    recall_parser.add_argument(
        "--limit", type=int, default=DEFAULT_RECALL_LIMIT,
        help=f"Maximum results, 0 for all (default: {DEFAULT_RECALL_LIMIT})",
    )
    recall_parser.add_argument("--json", action="store_true", help="Output as JSON")
    recall_parser.set_defaults(func=cmd_recall)

    show_parser = subparsers.add_parser("show", help="Show a memory")
    show_parser.add_argument("memory_id")
    show_parser.add_argument("--context", type=int, default=0, help="Also show N timeline neighbours each side")
    show_parser.add_argument("--json", action="store_true", help="Output as JSON")
    show_parser.set_defaults(func=cmd_show)

    archive_parser = subparsers.add_parser("archive", help="Archive a memory")
    archive_parser.add_argument("memory_id")
    archive_parser.set_defaults(func=cmd_archive)

    timeline_parser = subparsers.add_parser("timeline", help="Show the chronological ledger")
    timeline_parser.add_argument("--limit", type=int, default=DEFAULT_TIMELINE_LIMIT)
    timeline_parser.add_argument("--json", action="store_true", help="Output as JSON")
    timeline_parser.set_defaults(func=cmd_timeline)

    rebuild_parser = subparsers.add_parser("rebuild-index", help="Regenerate index.json from memory files")
    rebuild_parser.set_defaults(func=cmd_rebuild_index)

    # Tasks
    delegate_parser = subparsers.add_parser("delegate", help="Delegate a task")
    delegate_parser.add_argument("title")
    delegate_parser.add_argument("description")
    delegate_parser.add_argument("--instructions")
    delegate_parser.add_argument("--priority", default="normal", choices=[p.value for p in TaskPriority])
    delegate_parser.add_argument("--require", help="Comma-separated capabilities the claimer needs")
    delegate_parser.add_argument("--to", help="Only this instance may claim it")
    delegate_parser.add_argument("--timeout", type=float, help="Advisory timeout in minutes")
    delegate_parser.add_argument("--file", dest="files", action="append", help="File involved (repeatable)")
    delegate_parser.add_argument("--json", action="store_true", help="Output as JSON")
    delegate_parser.set_defaults(func=cmd_delegate)

    tasks_parser = subparsers.add_parser("tasks", help="List tasks")
    tasks_parser.add_argument("--status", choices=[s.value for s in TaskStatus])
    tasks_filter = tasks_parser.add_mutually_exclusive_group()
    tasks_filter.add_argument("--available", action="store_true", help="Pending tasks I can claim")
    tasks_filter.add_argument("--mine", action="store_true", help="Unfinished tasks I claimed")
    tasks_filter.add_argument("--waiting", action="store_true", help="My delegated, unacknowledged tasks")
    tasks_filter.add_argument("--overdue", action="store_true", help="Unfinished tasks past their timeout")
    tasks_filter.add_argument("--stats", action="store_true", help="Counts per status")
    tasks_parser.add_argument("--json", action="store_true", help="Output as JSON")
    tasks_parser.set_defaults(func=cmd_tasks)

    claim_parser = subparsers.add_parser("claim", help="Claim a pending task")
    claim_parser.add_argument("task_id")
    claim_parser.set_defaults(func=cmd_claim)

    start_parser = subparsers.add_parser("start", help="Start a claimed task")
    start_parser.add_argument("task_id")
    start_parser.set_defaults(func=cmd_start)

    progress_parser = subparsers.add_parser("progress", help="Record progress on a task")
    progress_parser.add_argument("task_id")
    progress_parser.add_argument("message")
    progress_parser.set_defaults(func=cmd_progress)

    complete_parser = subparsers.add_parser("complete", help="Complete a task")
    complete_parser.add_argument("task_id")
    complete_parser.add_argument("--output", help="Text result")
    complete_parser.add_argument("--artifact", dest="artifacts", action="append", help="Produced file (repeatable)")
    complete_parser.add_argument("--memory", dest="memories", action="append", help="Generated memory id (repeatable)")
    complete_parser.set_defaults(func=cmd_complete)

    fail_parser = subparsers.add_parser("fail", help="Fail a task")
    fail_parser.add_argument("task_id")
    fail_parser.add_argument("code")
    fail_parser.add_argument("message")
    fail_parser.add_argument("--details")
    fail_parser.set_defaults(func=cmd_fail)

    cancel_parser = subparsers.add_parser("cancel", help="Cancel an unfinished task")
    cancel_parser.add_argument("task_id")
    cancel_parser.add_argument("--reason")
    cancel_parser.set_defaults(func=cmd_cancel)

    ack_parser = subparsers.add_parser("ack", help="Acknowledge a finished task")
    ack_parser.add_argument("task_id")
    ack_parser.add_argument("--json", action="store_true", help="Output as JSON")
    ack_parser.set_defaults(func=cmd_ack)

    # Instances and messages
    status_parser = subparsers.add_parser("status", help="Show or set this instance's status")
    status_parser.add_argument("set_status", nargs="?", choices=[s.value for s in InstanceStatus])
    status_parser.add_argument("--working-on")
    status_parser.add_argument("--json", action="store_true", help="Output as JSON")
    status_parser.set_defaults(func=cmd_status)

    instances_parser = subparsers.add_parser("instances", help="List active instances")
    instances_parser.add_argument("--require", help="Comma-separated capabilities (all required)")
    instances_parser.add_argument("--json", action="store_true", help="Output as JSON")
    instances_parser.set_defaults(func=cmd_instances)

    activity_parser = subparsers.add_parser("activity", help="Show the shared activity log")
    activity_parser.add_argument("--limit", type=int, default=20)
    activity_parser.add_argument("--json", action="store_true", help="Output as JSON")
    activity_parser.set_defaults(func=cmd_activity)

    send_parser = subparsers.add_parser("send", help="Send a message to an instance")
    send_parser.add_argument("recipient")
    send_parser.add_argument("message")
    send_parser.add_argument("--type", default="info", choices=[t.value for t in MessageType])
    send_parser.add_argument("--subject")
    send_parser.add_argument("--task", help="Related task id")
    send_parser.add_argument("--memory", help="Related memory id")
    send_parser.add_argument("--json", action="store_true", help="Output as JSON")
    send_parser.set_defaults(func=cmd_send)

    inbox_parser = subparsers.add_parser("inbox", help="Show unread messages")
    inbox_parser.add_argument("--mark-read", action="store_true", help="Mark shown messages as read")
    inbox_parser.add_argument("--json", action="store_true", help="Output as JSON")
    inbox_parser.set_defaults(func=cmd_inbox)

    read_parser = subparsers.add_parser("read", help="Mark a message as read")
    read_parser.add_argument("message_id")
    read_parser.set_defaults(func=cmd_read)

    reconcile_parser = subparsers.add_parser("reconcile", help="Move task files to match their status")
    reconcile_parser.add_argument("--rebuild-index", action="store_true", help="Also regenerate index.json")
    reconcile_parser.add_argument(
        "--cleanup-inbox", type=float, metavar="DAYS",
        help="Also delete read messages older than DAYS",
    )
    reconcile_parser.set_defaults(func=cmd_reconcile)

    # Config
    config_parser = subparsers.add_parser("config", help="Configuration management")
    config_subparsers = config_parser.add_subparsers(dest="config_command", help="Config command")

    config_show_parser = config_subparsers.add_parser("show", help="Display effective configuration")
    config_show_parser.add_argument("--json", action="store_true", help="Output as JSON")
    config_show_parser.set_defaults(func=cmd_config_show)

    config_validate_parser = config_subparsers.add_parser("validate", help="Validate config.yaml")
    config_validate_parser.set_defaults(func=cmd_config_validate)

    return parser


def main(argv: list[str] | None = None) -> NoReturn:
    """Main entry point for the claude-mem CLI."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if not getattr(args, "func", None):
        parser.print_help()
        sys.exit(1)

    setup_logging(args.log_level)

    try:
        args.func(args)
    except ValidationError as e:
        print(f"Validation error: {e}", file=sys.stderr)
        sys.exit(1)
    except ConfigValidationError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        sys.exit(1)
    except (TaskQueueError, ValueError) as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)
    except PermissionError as e:
        print(f"Error: Permission denied: {e}", file=sys.stderr)
        sys.exit(1)
    except KeyboardInterrupt:
        print("\nOperation cancelled by user", file=sys.stderr)
        sys.exit(1)

    sys.exit(0)


if __name__ == "__main__":
    main()
