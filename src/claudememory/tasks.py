"""Task delegation queue for Claude Memory.

One instance delegates a task; any instance whose capabilities match can
claim it, work on it and report back. Each task is a single YAML file whose
directory encodes its lifecycle bucket:

    pending      .claude-memory-runtime/tasks/pending/
    claimed      .claude-memory-runtime/tasks/in_progress/
    in_progress  .claude-memory-runtime/tasks/in_progress/
    completed    .claude-memory/completed/          (version controlled)
    failed       .claude-memory-runtime/failed/
    cancelled    .claude-memory-runtime/tasks/cancelled/

Task Lifecycle States:
    pending -> claimed -> in_progress -> completed
       |          |            |
       +----------+------------+-----> failed / cancelled

Every rewrite of an existing task file is fenced by ``os.rename``: the writer
first renames the file to a dot-prefixed staging name in the destination
directory (``.<task id>.<epoch ms>.<hex>.yaml``), rewrites the staged copy and
renames it to ``<task id>.yaml``. Only one instance can win the first rename,
so when several instances race to claim the same pending task exactly one
succeeds and the others get :class:`InvalidTransitionError`. Listings ignore
staged files, and a lookup that finds one reports the task as mid-move.

If a process dies mid-transition a staged file is left behind, and a file
moved by hand can sit in a bucket that disagrees with its status field.
The status field wins: :meth:`TaskQueue.reconcile` moves such files back
where they belong, leaving staged files alone until they are older than
:data:`STAGING_GRACE_SECONDS`.
"""

from __future__ import annotations

import os
import socket
import time
from dataclasses import dataclass, field, fields
from datetime import timedelta
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Iterable

import yaml

from .logging_config import get_logger
from .project import get_memory_dir, get_project_root, get_runtime_dir
from .utils import load_yaml, now_iso, parse_timestamp, random_hex, save_yaml
from .validators import (
    ValidationError,
    validate_instance_id,
    validate_tags,
    validate_task_id,
    validate_text,
)

__all__ = [
    "TaskStatus",
    "TaskPriority",
    "TaskOrigin",
    "TaskTarget",
    "StatusHistoryEntry",
    "TaskClaim",
    "ProgressUpdate",
    "TaskError",
    "TaskResult",
    "WaitHandle",
    "Task",
    "TaskQueue",
    "TaskQueueError",
    "InvalidTransitionError",
    "bucket_for",
]

TASK_ID_HEX_LENGTH = 12
TASK_FILE_GLOB = "task_*.yaml"
STAGED_FILE_GLOB = ".task_*.yaml"

# A staged file older than this is treated as left behind by a dead process
STAGING_GRACE_SECONDS = 60.0
STAGING_ATTEMPTS = 3
STAGING_RETRY_DELAY = 0.05

logger = get_logger(__name__)


class TaskQueueError(Exception):
    """Base exception for task queue errors."""

    pass


class TaskStatus(Enum):
    """Task lifecycle states."""

    PENDING = "pending"  # Waiting for a capable instance
    CLAIMED = "claimed"  # Reserved by an instance, work not started
    IN_PROGRESS = "in_progress"  # Being worked on
    COMPLETED = "completed"  # Finished successfully
    FAILED = "failed"  # Finished with an error
    CANCELLED = "cancelled"  # Withdrawn before finishing

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset({TaskStatus.COMPLETED, TaskStatus.FAILED, TaskStatus.CANCELLED})


class TaskPriority(Enum):
    """Task priority levels."""

    LOW = "low"
    NORMAL = "normal"
    HIGH = "high"
    CRITICAL = "critical"


PRIORITY_ORDER = {
    TaskPriority.CRITICAL: 0,
    TaskPriority.HIGH: 1,
    TaskPriority.NORMAL: 2,
    TaskPriority.LOW: 3,
}


class InvalidTransitionError(TaskQueueError):
    """Raised when a task is not in a state that allows the operation.

    Attributes:
        task_id: Task the operation targeted
        operation: Name of the attempted operation (claim, start...)
        actual: Status the task was found in (None if it vanished or was mid-move)
        expected: Statuses that would have allowed the operation
    """

    def __init__(
        self,
        task_id: str,
        operation: str,
        actual: TaskStatus | None,
        expected: Iterable[TaskStatus],
    ):
        self.task_id = task_id
        self.operation = operation
        self.actual = actual
        self.expected = sorted(expected, key=lambda s: s.value)
        actual_text = actual.value if actual is not None else "missing"
        expected_text = ", ".join(s.value for s in self.expected)
        super().__init__(
            f"Cannot {operation} task {task_id}: status is {actual_text}, "
            f"expected one of: {expected_text}"
        )


def _known_fields(cls: type, data: dict[str, Any]) -> dict[str, Any]:
    names = {f.name for f in fields(cls)}
    return {k: v for k, v in data.items() if k in names}


def _drop_none(data: dict[str, Any]) -> dict[str, Any]:
    return {k: v for k, v in data.items() if v is not None}


def _sub(cls: type, value: Any) -> Any:
    if isinstance(value, dict):
        return cls.from_dict(value)
    return value


@dataclass
class TaskOrigin:
    """Who delegated a task."""

    instance_id: str
    machine: str | None = None
    session_id: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return _drop_none({
            "instance_id": self.instance_id,
            "machine": self.machine,
            "session_id": self.session_id,
        })

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> TaskOrigin:
        return cls(**_known_fields(cls, data))


@dataclass
class TaskTarget:
    """Who may claim a task.

    Empty capabilities and no specific instance means anyone may claim it.
    """

    capabilities: list[str] = field(default_factory=list)
    specific_instance: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return _drop_none({
            "capabilities": list(self.capabilities),
            "specific_instance": self.specific_instance,
        })

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> TaskTarget:
        known = _known_fields(cls, data)
        caps = known.get("capabilities")
        known["capabilities"] = [str(c) for c in caps] if isinstance(caps, list) else []
        return cls(**known)

    def is_claimable_by(self, instance_id: str, capabilities: Iterable[str]) -> bool:
        """Capability and targeting rule for claiming.

        Claimable when the task targets nobody in particular, or names this
        instance, or lists capabilities that are all among ``capabilities``.
        """
        if not self.capabilities and not self.specific_instance:
            return True
        if self.specific_instance and self.specific_instance == instance_id:
            return True
        return bool(self.capabilities) and set(self.capabilities).issubset(set(capabilities))


@dataclass
class StatusHistoryEntry:
    """One status change, appended on every transition."""

    status: TaskStatus
    timestamp: str
    by: str
    message: str | None = None

    def __post_init__(self):
        if isinstance(self.status, str):
            self.status = TaskStatus(self.status)

    def to_dict(self) -> dict[str, Any]:
        return _drop_none({
            "status": self.status.value,
            "timestamp": self.timestamp,
            "by": self.by,
            "message": self.message,
        })

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> StatusHistoryEntry:
        return cls(**_known_fields(cls, data))


@dataclass
class TaskClaim:
    instance_id: str
    claimed_at: str
    machine: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return _drop_none({
            "instance_id": self.instance_id,
            "machine": self.machine,
            "claimed_at": self.claimed_at,
        })

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> TaskClaim:
        return cls(**_known_fields(cls, data))


@dataclass
class ProgressUpdate:
    timestamp: str
    message: str

    def to_dict(self) -> dict[str, Any]:
        return {"timestamp": self.timestamp, "message": self.message}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ProgressUpdate:
        return cls(**_known_fields(cls, data))


@dataclass
class TaskError:
    code: str
    message: str
    details: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return _drop_none({"code": self.code, "message": self.message, "details": self.details})

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> TaskError:
        return cls(**_known_fields(cls, data))


@dataclass
class TaskResult:
    """Outcome reported by the instance that finished a task.

    Attributes:
        success: Whether the task succeeded
        output: Optional ``{"type": ..., "data": ...}`` payload
        error: Error details when the task failed
        artifacts: ``{"path", "description"}`` entries for produced files
        generated_memories: Ids of memories recorded while working on the task
    """

    success: bool
    output: dict[str, Any] | None = None
    error: TaskError | None = None
    artifacts: list[dict[str, Any]] = field(default_factory=list)
    generated_memories: list[str] = field(default_factory=list)

    def __post_init__(self):
        self.error = _sub(TaskError, self.error)

    def to_dict(self) -> dict[str, Any]:
        return _drop_none({
            "success": self.success,
            "output": self.output,
            "error": self.error.to_dict() if self.error else None,
            "artifacts": list(self.artifacts),
            "generated_memories": list(self.generated_memories),
        })

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> TaskResult:
        known = _known_fields(cls, data)
        known.setdefault("success", False)
        for key in ("artifacts", "generated_memories"):
            if not isinstance(known.get(key), list):
                known[key] = []
        return cls(**known)


@dataclass
class WaitHandle:
    """Requester's handle for polling a delegated task."""

    requester: str
    callback_type: str = "poll"
    timeout_at: str | None = None
    acknowledged: bool = False
    acknowledged_at: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return _drop_none({
            "requester": self.requester,
            "callback_type": self.callback_type,
            "timeout_at": self.timeout_at,
            "acknowledged": self.acknowledged,
            "acknowledged_at": self.acknowledged_at,
        })

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> WaitHandle:
        return cls(**_known_fields(cls, data))


@dataclass
class Task:
    """A unit of delegated work.

    The authoritative lifecycle state is ``status``; the directory a task
    file sits in is derived from it (see :func:`bucket_for`).
    """

    id: str
    created_by: TaskOrigin
    title: str
    description: str
    created_at: str = field(default_factory=now_iso)
    type: str = "request"
    priority: TaskPriority = TaskPriority.NORMAL
    instructions: str | None = None
    expected_output: dict[str, Any] | None = None
    target: TaskTarget = field(default_factory=TaskTarget)
    status: TaskStatus = TaskStatus.PENDING
    status_history: list[StatusHistoryEntry] = field(default_factory=list)
    claimed_by: TaskClaim | None = None
    progress_updates: list[ProgressUpdate] | None = None
    completed_at: str | None = None
    result: TaskResult | None = None
    wait_handle: WaitHandle | None = None
    related_memories: list[str] = field(default_factory=list)
    related_tasks: list[str] = field(default_factory=list)
    files_involved: list[str] = field(default_factory=list)

    def __post_init__(self):
        """Handle type conversions."""
        if isinstance(self.status, str):
            self.status = TaskStatus(self.status)
        if isinstance(self.priority, str):
            self.priority = TaskPriority(self.priority)
        self.created_by = _sub(TaskOrigin, self.created_by)
        self.target = _sub(TaskTarget, self.target) or TaskTarget()
        self.claimed_by = _sub(TaskClaim, self.claimed_by)
        self.result = _sub(TaskResult, self.result)
        self.wait_handle = _sub(WaitHandle, self.wait_handle)
        self.status_history = [_sub(StatusHistoryEntry, h) for h in self.status_history or []]
        if self.progress_updates is not None:
            self.progress_updates = [_sub(ProgressUpdate, p) for p in self.progress_updates]

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    def record(self, status: TaskStatus, by: str, message: str | None = None) -> None:
        """Set status and append the matching history entry."""
        self.status = status
        self.status_history.append(
            StatusHistoryEntry(status=status, timestamp=now_iso(), by=by, message=message)
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert task to the on-disk document."""
        return _drop_none({
            "id": self.id,
            "created_at": self.created_at,
            "created_by": self.created_by.to_dict(),
            "type": self.type,
            "priority": self.priority.value,
            "title": self.title,
            "description": self.description,
            "instructions": self.instructions,
            "expected_output": self.expected_output,
            "target": self.target.to_dict(),
            "status": self.status.value,
            "status_history": [h.to_dict() for h in self.status_history],
            "claimed_by": self.claimed_by.to_dict() if self.claimed_by else None,
            "progress_updates": (
                [p.to_dict() for p in self.progress_updates]
                if self.progress_updates is not None else None
            ),
            "completed_at": self.completed_at,
            "result": self.result.to_dict() if self.result else None,
            "wait_handle": self.wait_handle.to_dict() if self.wait_handle else None,
            "related_memories": list(self.related_memories),
            "related_tasks": list(self.related_tasks),
            "files_involved": list(self.files_involved),
        })

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Task:
        """Create Task from a persisted document.

        Raises:
            KeyError: If a required field is missing
            ValueError: If status or priority is unknown
        """
        known = _known_fields(cls, data)
        for required in ("id", "created_by", "title", "description"):
            if required not in known:
                raise KeyError(required)
        for key in ("related_memories", "related_tasks", "files_involved", "status_history"):
            if not isinstance(known.get(key), list):
                known[key] = []
        return cls(**known)


def bucket_for(status: TaskStatus, project_root: Path | None = None) -> Path:
    """Directory that holds tasks in ``status``."""
    runtime = get_runtime_dir(project_root)
    if status == TaskStatus.PENDING:
        return runtime / "tasks" / "pending"
    if status in (TaskStatus.CLAIMED, TaskStatus.IN_PROGRESS):
        return runtime / "tasks" / "in_progress"
    if status == TaskStatus.COMPLETED:
        return get_memory_dir(project_root) / "completed"
    if status == TaskStatus.FAILED:
        return runtime / "failed"
    return runtime / "tasks" / "cancelled"


# Search order when locating a task by id: the direction tasks move in, so a
# task moved mid-search is found in a later bucket.
_SEARCH_ORDER = (
    TaskStatus.PENDING,
    TaskStatus.IN_PROGRESS,
    TaskStatus.COMPLETED,
    TaskStatus.FAILED,
    TaskStatus.CANCELLED,
)

_ALL_STATUSES = frozenset(TaskStatus)


def _is_staged(path: Path) -> bool:
    return path.name.startswith(".")


def _staged_age(path: Path) -> float | None:
    """Seconds since ``path`` was staged, from the stamp in its name."""
    # .<task id>.<epoch ms>.<hex>.yaml
    parts = path.name.split(".")
    try:
        return time.time() - int(parts[2]) / 1000
    except (IndexError, ValueError):
        return None


class TaskQueue:
    """File-based task queue as seen by one instance."""

    def __init__(
        self,
        project_root: Path | None = None,
        instance_id: str | None = None,
        machine: str | None = None,
    ):
        self.project_root = get_project_root(project_root)
        self.instance_id = validate_instance_id(instance_id or f"instance_{random_hex(8)}")
        self.machine = machine or socket.gethostname()

    # ------------------------------------------------------------------
    # File access
    # ------------------------------------------------------------------

    def _bucket(self, status: TaskStatus) -> Path:
        return bucket_for(status, self.project_root)

    def _buckets(self) -> list[Path]:
        return [self._bucket(s) for s in _SEARCH_ORDER]

    def _read(self, path: Path, check_location: bool = True) -> Task | None:
        """Read a task file; None if it vanished or cannot be parsed."""
        try:
            data = load_yaml(path)
        except FileNotFoundError:
            return None
        except (yaml.YAMLError, OSError, UnicodeDecodeError) as e:
            logger.warning(f"Skipping unreadable task file {path}: {e}")
            return None
        try:
            if not isinstance(data, dict):
                raise ValueError("not a mapping")
            task = Task.from_dict(data)
        except (KeyError, ValueError, TypeError) as e:
            logger.warning(f"Skipping invalid task file {path}: {e}")
            return None

        if check_location and path.parent != self._bucket(task.status):
            logger.warning(
                f"Task {task.id} is {task.status.value} but stored in {path.parent.name}/; "
                "run reconcile to repair"
            )
        return task

    def _write(self, task: Task) -> Path:
        path = self._bucket(task.status) / f"{task.id}.yaml"
        save_yaml(path, task.to_dict())
        return path

    def _find(self, task_id: str) -> tuple[Path, Task] | None:
        try:
            validate_task_id(task_id)
        except ValidationError:
            return None
        # Two passes: a task may move between buckets while we look. Staged
        # copies are checked first since they become the plain file next.
        for _ in range(2):
            for bucket in dict.fromkeys(self._buckets()):
                candidates = [*sorted(bucket.glob(f".{task_id}.*.yaml")), bucket / f"{task_id}.yaml"]
                for path in candidates:
                    task = self._read(path, check_location=not _is_staged(path))
                    if task is not None:
                        return path, task
        return None

    def _stage(self, path: Path, bucket: Path) -> Path:
        """Rename ``path`` to a fresh staging name in ``bucket``.

        Raises:
            FileNotFoundError: If another instance moved the file first
        """
        staged = bucket / f".{path.stem}.{int(time.time() * 1000)}.{random_hex(6)}.yaml"
        bucket.mkdir(parents=True, exist_ok=True)
        os.rename(path, staged)
        return staged

    def _commit(self, staged: Path, task: Task) -> Path:
        """Rewrite a staged file and publish it under its status bucket."""
        save_yaml(staged, task.to_dict())
        path = self._bucket(task.status) / f"{task.id}.yaml"
        path.parent.mkdir(parents=True, exist_ok=True)
        os.replace(staged, path)
        return path

    def _list(self, buckets: Iterable[Path]) -> list[Task]:
        tasks: dict[str, Task] = {}
        for bucket in dict.fromkeys(buckets):
            if not bucket.is_dir():
                continue
            for path in sorted(bucket.glob(TASK_FILE_GLOB)):
                task = self._read(path)
                if task is not None:
                    tasks.setdefault(task.id, task)
        return list(tasks.values())

    def _transition(
        self,
        task_id: str,
        operation: str,
        allowed: Iterable[TaskStatus],
        new_status: TaskStatus,
        mutate: Callable[[Task], None] | None = None,
        message: str | None = None,
        record_history: bool = True,
    ) -> Task | None:
        """Move a task to ``new_status``.

        Returns None if the task does not exist.

        Raises:
            InvalidTransitionError: If the task is not in an allowed status,
                or another instance moved it first
        """
        allowed = frozenset(allowed)
        found = self._find(task_id)
        if found is None:
            return None
        path, task = found
        if task.status not in allowed:
            raise InvalidTransitionError(task_id, operation, task.status, allowed)
        if _is_staged(path) or path.parent != self._bucket(task.status):
            # Another instance is mid-move, or a crash stranded the file
            logger.info(f"Task {task_id} is not in its status bucket; refusing to {operation}")
            raise InvalidTransitionError(task_id, operation, None, allowed)

        try:
            staged = self._stage(path, self._bucket(new_status))
        except FileNotFoundError:
            current = self._find(task_id)
            actual = current[1].status if current and not _is_staged(current[0]) else None
            logger.info(f"Lost race to {operation} task {task_id} (now {actual})")
            raise InvalidTransitionError(task_id, operation, actual, allowed) from None

        # The file we won may have been rewritten since the lookup
        current = self._read(staged, check_location=False)
        if current is None or current.status not in allowed:
            os.rename(staged, path)
            actual = current.status if current else None
            logger.info(f"Task {task_id} changed to {actual} before {operation}")
            raise InvalidTransitionError(task_id, operation, actual, allowed)
        task = current

        if mutate is not None:
            mutate(task)
        if record_history:
            task.record(new_status, self.instance_id, message)
        self._commit(staged, task)
        return task

    # ------------------------------------------------------------------
    # Lifecycle operations
    # ------------------------------------------------------------------

    def create_task(
        self,
        title: str,
        description: str,
        *,
        instructions: str | None = None,
        priority: TaskPriority | str = TaskPriority.NORMAL,
        capabilities: Iterable[str] | None = None,
        specific_instance: str | None = None,
        expected_output: dict[str, Any] | None = None,
        timeout_minutes: float | None = None,
        related_memories: Iterable[str] | None = None,
        related_tasks: Iterable[str] | None = None,
        files_involved: Iterable[str] | None = None,
        session_id: str | None = None,
    ) -> Task:
        """Delegate a new task; it starts in pending.

        Raises:
            ValidationError: If an input is invalid
        """
        title = validate_text(title, "Title", 200).strip()
        description = validate_text(description, "Description")
        try:
            priority = TaskPriority(priority)
        except ValueError:
            raise ValidationError(f"Unknown priority: {priority}") from None
        if specific_instance is not None:
            specific_instance = validate_instance_id(specific_instance)
        timeout_at = None
        if timeout_minutes is not None:
            if isinstance(timeout_minutes, bool) or not isinstance(timeout_minutes, (int, float)) \
                    or timeout_minutes <= 0:
                raise ValidationError(f"timeout_minutes must be a positive number, got {timeout_minutes}")
            timeout_at = (parse_timestamp(now_iso()) + timedelta(minutes=timeout_minutes)).isoformat()

        task = Task(
            id=f"task_{random_hex(TASK_ID_HEX_LENGTH)}",
            created_by=TaskOrigin(self.instance_id, self.machine, session_id),
            title=title,
            description=description,
            instructions=instructions,
            priority=priority,
            expected_output=expected_output,
            target=TaskTarget(validate_tags(capabilities), specific_instance),
            wait_handle=WaitHandle(requester=self.instance_id, timeout_at=timeout_at),
            related_memories=list(related_memories or []),
            related_tasks=list(related_tasks or []),
            files_involved=list(files_involved or []),
        )
        task.record(TaskStatus.PENDING, self.instance_id, "Task created")
        self._write(task)
        logger.info(f"Created task {task.id}: {title[:50]}")
        return task

    def claim_task(self, task_id: str) -> Task | None:
        """Claim a pending task for this instance.

        Exactly one of several concurrent claimers succeeds.

        Raises:
            InvalidTransitionError: If the task is not pending or was claimed first
        """
        def mutate(task: Task) -> None:
            task.claimed_by = TaskClaim(self.instance_id, now_iso(), self.machine)

        task = self._transition(
            task_id, "claim", {TaskStatus.PENDING}, TaskStatus.CLAIMED, mutate,
            f"Claimed by {self.instance_id}",
        )
        if task is not None:
            logger.info(f"Claimed task {task_id}")
        return task

    def start_task(self, task_id: str) -> Task | None:
        """Begin work on a claimed task."""
        def mutate(task: Task) -> None:
            task.progress_updates = []

        return self._transition(
            task_id, "start", {TaskStatus.CLAIMED}, TaskStatus.IN_PROGRESS, mutate, "Work started"
        )

    def update_progress(self, task_id: str, message: str) -> Task | None:
        """Append a progress note to an in-progress task."""
        message = validate_text(message, "Progress message")

        def mutate(task: Task) -> None:
            if task.progress_updates is None:
                task.progress_updates = []
            task.progress_updates.append(ProgressUpdate(now_iso(), message))

        return self._transition(
            task_id, "update progress", {TaskStatus.IN_PROGRESS}, TaskStatus.IN_PROGRESS, mutate,
            record_history=False,
        )

    def complete_task(self, task_id: str, result: TaskResult | dict[str, Any] | None = None) -> Task | None:
        """Finish a claimed or in-progress task successfully."""
        if isinstance(result, dict):
            result = TaskResult.from_dict(result)

        def mutate(task: Task) -> None:
            task.completed_at = now_iso()
            task.result = result or TaskResult(success=True)

        task = self._transition(
            task_id, "complete", {TaskStatus.CLAIMED, TaskStatus.IN_PROGRESS},
            TaskStatus.COMPLETED, mutate, "Task completed",
        )
        if task is not None:
            logger.info(f"Completed task {task_id}")
        return task

    def fail_task(
        self, task_id: str, code: str, message: str, details: str | None = None
    ) -> Task | None:
        """Record that a task could not be finished."""
        def mutate(task: Task) -> None:
            task.completed_at = now_iso()
            task.result = TaskResult(success=False, error=TaskError(code, message, details))

        task = self._transition(
            task_id, "fail", _ALL_STATUSES - TERMINAL_STATUSES, TaskStatus.FAILED, mutate, message
        )
        if task is not None:
            logger.warning(f"Task {task_id} failed: {code}: {message}")
        return task

    def cancel_task(self, task_id: str, reason: str | None = None) -> Task | None:
        """Withdraw a task that has not finished yet."""
        def mutate(task: Task) -> None:
            task.completed_at = now_iso()

        task = self._transition(
            task_id, "cancel", _ALL_STATUSES - TERMINAL_STATUSES, TaskStatus.CANCELLED, mutate,
            reason or "Task cancelled",
        )
        if task is not None:
            logger.info(f"Cancelled task {task_id}")
        return task

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_task(self, task_id: str) -> Task | None:
        found = self._find(task_id)
        return found[1] if found else None

    def list_tasks(self, status: TaskStatus | str | None = None) -> list[Task]:
        """All tasks, or only those whose status field equals ``status``."""
        if status is None:
            return self._list(self._buckets())
        status = TaskStatus(status)
        return [t for t in self._list([self._bucket(status)]) if t.status == status]

    def get_claimable_tasks(self, capabilities: Iterable[str]) -> list[Task]:
        """Pending tasks this instance may claim, most urgent and oldest first."""
        capabilities = list(capabilities or [])
        tasks = [
            t for t in self.list_tasks(TaskStatus.PENDING)
            if t.target.is_claimable_by(self.instance_id, capabilities)
        ]
        tasks.sort(key=lambda t: (PRIORITY_ORDER[t.priority], t.created_at))
        return tasks

    def get_my_tasks(self) -> list[Task]:
        """Tasks this instance delegated."""
        return [t for t in self.list_tasks() if t.created_by.instance_id == self.instance_id]

    def get_my_claimed_tasks(self) -> list[Task]:
        """Unfinished tasks this instance has claimed."""
        return [
            t for t in self._list([self._bucket(TaskStatus.IN_PROGRESS)])
            if t.claimed_by and t.claimed_by.instance_id == self.instance_id
            and not t.is_terminal
        ]

    def get_waiting_tasks(self) -> list[Task]:
        """Tasks this instance delegated and has not acknowledged yet."""
        return [
            t for t in self.list_tasks()
            if t.wait_handle is not None
            and t.wait_handle.requester == self.instance_id
            and not t.wait_handle.acknowledged
        ]

    def check_completed_waits(self) -> list[Task]:
        """Unacknowledged delegated tasks that have reached a terminal state."""
        return [t for t in self.get_waiting_tasks() if t.is_terminal]

    def acknowledge_result(self, task_id: str) -> Task | None:
        """Mark a finished task's result as seen by the requester.

        Idempotent: acknowledging twice keeps the first ``acknowledged_at``.
        If another instance keeps moving the task, gives up after a few
        attempts and returns None.
        """
        for attempt in range(STAGING_ATTEMPTS):
            if attempt:
                time.sleep(STAGING_RETRY_DELAY)
            found = self._find(task_id)
            if found is None:
                return None
            path, task = found
            if task.wait_handle is not None and task.wait_handle.acknowledged:
                return task
            if _is_staged(path):
                continue
            try:
                staged = self._stage(path, path.parent)
            except FileNotFoundError:
                continue

            task = self._read(staged, check_location=False)
            if task is None:
                os.rename(staged, path)
                return None
            if task.wait_handle is None:
                task.wait_handle = WaitHandle(requester=task.created_by.instance_id)
            if not task.wait_handle.acknowledged:
                task.wait_handle.acknowledged = True
                task.wait_handle.acknowledged_at = now_iso()
            self._commit(staged, task)
            return task

        logger.info(f"Task {task_id} kept moving; not acknowledged")
        return None

    def get_overdue_tasks(self, now: str | None = None) -> list[Task]:
        """Unfinished tasks whose wait handle timeout has passed.

        Advisory only: nothing is failed or cancelled automatically.
        """
        current = parse_timestamp(now) if now else parse_timestamp(now_iso())
        overdue = []
        for task in self.list_tasks():
            if task.is_terminal or task.wait_handle is None or not task.wait_handle.timeout_at:
                continue
            try:
                if parse_timestamp(task.wait_handle.timeout_at) <= current:
                    overdue.append(task)
            except ValueError:
                logger.debug(f"Ignoring unparseable timeout on task {task.id}")
        return overdue

    def get_task_stats(self) -> dict[str, int]:
        """Counts per status plus a total."""
        tasks = self.list_tasks()
        stats = {status.value: 0 for status in TaskStatus}
        for task in tasks:
            stats[task.status.value] += 1
        stats["total"] = len(tasks)
        return stats

    # ------------------------------------------------------------------
    # Repair
    # ------------------------------------------------------------------

    def reconcile(self) -> int:
        """Move task files whose directory disagrees with their status.

        Staged files are restored once they are older than
        STAGING_GRACE_SECONDS and no published copy of the task exists.
        Younger ones belong to a transition still in flight.

        Returns:
            Number of files moved
        """
        moved = 0
        for bucket in dict.fromkeys(self._buckets()):
            if not bucket.is_dir():
                continue
            for path in sorted(bucket.glob(STAGED_FILE_GLOB)):
                if self._restore_staged(path):
                    moved += 1
            for path in sorted(bucket.glob(TASK_FILE_GLOB)):
                task = self._read(path)
                if task is None:
                    continue
                target = self._bucket(task.status) / path.name
                if target == path:
                    continue
                target.parent.mkdir(parents=True, exist_ok=True)
                try:
                    os.replace(path, target)
                except FileNotFoundError:
                    continue
                moved += 1
                logger.info(f"Moved task {task.id} to {target.parent.name}/ to match status")
        return moved

    def _restore_staged(self, path: Path) -> bool:
        age = _staged_age(path)
        if age is None or age < STAGING_GRACE_SECONDS:
            return False
        task = self._read(path, check_location=False)
        if task is None:
            return False
        published = [b / f"{task.id}.yaml" for b in dict.fromkeys(self._buckets())]
        if any(p.exists() for p in published):
            logger.warning(f"Leaving stale staged file {path}: task {task.id} is already published")
            return False
        target = self._bucket(task.status) / f"{task.id}.yaml"
        target.parent.mkdir(parents=True, exist_ok=True)
        try:
            os.rename(path, target)
        except FileNotFoundError:
            return False
        logger.info(f"Restored abandoned staged task {task.id} to {target.parent.name}/")
        return True
