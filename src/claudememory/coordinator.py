"""Coordinator facade for Claude Memory.

One :class:`Coordinator` per agent process wires the memory repository,
task queue, instance registry and inbox together under a single instance
identity and records what the agent does in the shared activity log.

Example:
    coord = Coordinator(project_root, capabilities=["coding", "git"])
    coord.init()

    coord.remember("decision", "Use JWT for API auth", "Stateless, 1h expiry",
                   tags=["auth"], importance=0.8)
    task = coord.delegate("Run browser tests", "Check the login flow",
                          capabilities=["browser_testing"])
    ...
    for done in coord.check_delegated_tasks():
        coord.acknowledge_task(done.id)

    coord.shutdown()
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, Iterable

from .config import MemoryConfig, load_config
from .inbox import DEFAULT_CLEANUP_AGE_DAYS, Inbox, InboxMessage, MessageType
from .index_store import IndexStore
from .instances import (
    DEFAULT_TOOL,
    ActivityEntry,
    Instance,
    InstanceRegistry,
    InstanceStatus,
    RecoveredSession,
)
from .logging_config import get_logger
from .memory import MemoryRepository
from .models import Memory, MemoryQuery, MemoryType
from .project import get_project_root
from .tasks import Task, TaskPriority, TaskQueue, TaskResult
from .utils import random_hex
from .validators import validate_instance_id

__all__ = ["Coordinator"]

logger = get_logger(__name__)


class Coordinator:
    """Everything one agent instance does, in one place.

    Args:
        project_root: Project directory (auto-detected if None)
        instance_id: Identity of this instance (generated if None)
        capabilities: Advertised capabilities (config default if None)
        tool: Name of the hosting tool, recorded in session info
        config: Project configuration (loaded from config.yaml if None)
    """

    def __init__(
        self,
        project_root: Path | None = None,
        instance_id: str | None = None,
        capabilities: Iterable[str] | None = None,
        tool: str = DEFAULT_TOOL,
        config: MemoryConfig | None = None,
    ):
        self.project_root = get_project_root(project_root)
        self.instance_id = validate_instance_id(instance_id or f"instance_{random_hex(8)}")
        self.config = config or load_config(self.project_root)
        self.capabilities = list(
            capabilities if capabilities is not None else self.config.instance.capabilities
        )

        self.index = IndexStore(self.project_root)
        self.memory = MemoryRepository(self.project_root, self.instance_id, self.index)
        self.tasks = TaskQueue(self.project_root, self.instance_id)
        self.inbox = Inbox(self.project_root)
        self.instances = InstanceRegistry(
            self.project_root, self.instance_id, self.capabilities, tool,
            machine=self.tasks.machine,
        )

    # ============ Lifecycle ============

    def init(self, start_heartbeat: bool = True) -> Instance:
        """Set up storage (if needed), register, and start the heartbeat."""
        self.memory.init(self.config)
        instance = self.instances.register()
        if start_heartbeat:
            self.instances.start_heartbeat(self.config.instance.heartbeat_interval_seconds)
        logger.debug(f"Coordinator ready as {self.instance_id} in {self.project_root}")
        return instance

    def is_initialized(self) -> bool:
        return self.memory.is_initialized()

    def shutdown(self) -> None:
        """Stop the heartbeat and mark this instance offline."""
        self.instances.go_offline()

    def recover_session(self, previous_id: str) -> RecoveredSession | None:
        """Continue as ``previous_id``, picking up its waits and unread mail."""
        recovered = self.instances.recover_session(previous_id, self.inbox)
        if recovered is not None:
            self._set_identity(previous_id)
        return recovered

    def _set_identity(self, instance_id: str) -> None:
        self.instance_id = instance_id
        self.memory.instance_id = instance_id
        self.tasks.instance_id = instance_id
        self.instances.instance_id = instance_id

    # ============ Memory ============

    def remember(
        self,
        memory_type: MemoryType | str,
        title: str,
        summary: str,
        **kwargs: Any,
    ) -> Memory:
        """Store a memory. Keyword arguments as for MemoryRepository.create."""
        memory = self.memory.create(memory_type, title, summary, **kwargs)
        self.instances.log_activity("stored_memory", f"{memory.type.value}: {memory.title}")
        return memory

    def get_memory(self, memory_id: str) -> Memory | None:
        return self.memory.get(memory_id)

    def recall(self, search: str | None = None, **filters: Any) -> list[Memory]:
        """Query memories; ``limit`` of None or 0 means no limit."""
        return self.memory.query(MemoryQuery(search=search, **filters))

    def search(self, query: MemoryQuery) -> list[Memory]:
        return self.memory.query(query)

    def get_recent(self, limit: int = 10) -> list[Memory]:
        return self.memory.get_recent(limit)

    def get_important(self, min_importance: float = 0.7) -> list[Memory]:
        return self.memory.get_important(min_importance)

    def get_for_files(self, files: Iterable[str]) -> list[Memory]:
        return self.memory.get_for_files(files)

    def get_timeline(self, limit: int | None = None) -> list[dict[str, Any]]:
        return self.memory.get_timeline(limit)

    def get_context(self, memory_id: str, window: int = 5) -> list[Memory]:
        return self.memory.get_context(memory_id, window)

    def archive(self, memory_id: str) -> Memory | None:
        return self.memory.archive(memory_id)

    def rebuild_index(self) -> dict[str, Any]:
        return self.memory.rebuild_index()

    # ============ Tasks ============

    def delegate(
        self,
        title: str,
        description: str,
        *,
        priority: TaskPriority | str = TaskPriority.NORMAL,
        capabilities: Iterable[str] | None = None,
        specific_instance: str | None = None,
        **kwargs: Any,
    ) -> Task:
        """Create a task for another instance and start waiting for it."""
        session = self.instances.get_instance()
        session_id = (session.session_info or {}).get("session_id") if session else None
        task = self.tasks.create_task(
            title,
            description,
            priority=priority,
            capabilities=capabilities,
            specific_instance=specific_instance,
            session_id=session_id,
            **kwargs,
        )
        self.instances.wait_for_task(task.id)
        self.instances.log_activity("delegated_task", task.title)
        return task

    def get_available_tasks(self) -> list[Task]:
        """Pending tasks this instance is allowed to claim."""
        return self.tasks.get_claimable_tasks(self.capabilities)

    def claim_task(self, task_id: str) -> Task | None:
        task = self.tasks.claim_task(task_id)
        if task is not None:
            self.instances.log_activity("claimed_task", task.title)
        return task

    def start_task(self, task_id: str) -> Task | None:
        task = self.tasks.start_task(task_id)
        if task is not None:
            self.instances.update_status(InstanceStatus.ACTIVE, task.title)
        return task

    def update_task_progress(self, task_id: str, message: str) -> Task | None:
        return self.tasks.update_progress(task_id, message)

    def complete_task(self, task_id: str, result: TaskResult | dict[str, Any] | None = None) -> Task | None:
        task = self.tasks.complete_task(task_id, result)
        if task is not None:
            self.instances.log_activity("completed_task", task.title)
        return task

    def fail_task(self, task_id: str, code: str, message: str, details: str | None = None) -> Task | None:
        task = self.tasks.fail_task(task_id, code, message, details)
        if task is not None:
            self.instances.log_activity("failed_task", f"{task.title}: {message}")
        return task

    def cancel_task(self, task_id: str, reason: str | None = None) -> Task | None:
        task = self.tasks.cancel_task(task_id, reason)
        if task is not None:
            self.instances.log_activity("cancelled_task", task.title)
        return task

    def check_delegated_tasks(self) -> list[Task]:
        """Delegated tasks that finished and have not been acknowledged."""
        return self.tasks.check_completed_waits()

    def acknowledge_task(self, task_id: str) -> Task | None:
        task = self.tasks.acknowledge_result(task_id)
        self.instances.clear_wait(task_id)
        return task

    def get_task(self, task_id: str) -> Task | None:
        return self.tasks.get_task(task_id)

    def reconcile_tasks(self) -> int:
        return self.tasks.reconcile()

    # ============ Instances and messages ============

    def set_status(self, status: InstanceStatus | str, working_on: str | None = None) -> Instance:
        return self.instances.update_status(status, working_on)

    def get_active_instances(self) -> list[Instance]:
        return self.instances.get_active_instances()

    def find_instances(self, capabilities: Iterable[str]) -> list[Instance]:
        return self.instances.get_instances_with_capabilities(capabilities)

    def send_message(
        self,
        to: str,
        message_type: MessageType | str,
        message: str,
        subject: str | None = None,
        related_task: str | None = None,
        related_memory: str | None = None,
    ) -> InboxMessage:
        return self.inbox.send(
            self.instance_id, to, message_type, message, subject, related_task, related_memory
        )

    def get_messages(self) -> list[InboxMessage]:
        """Unread messages for this instance, newest first."""
        return self.inbox.get_unread(self.instance_id)

    def mark_read(self, message_id: str) -> InboxMessage | None:
        return self.inbox.mark_read(message_id)

    def get_activity(self, limit: int = 20) -> list[ActivityEntry]:
        return self.instances.get_recent_activity(limit)

    def touch_file(self, path: str) -> bool:
        return self.instances.touch_file(path)

    def cleanup_inbox(self, max_age_days: float = DEFAULT_CLEANUP_AGE_DAYS) -> int:
        return self.inbox.cleanup(max_age_days)
