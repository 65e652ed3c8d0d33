"""Instance presence registry for Claude Memory.

All instances share one document, ``.claude-memory-runtime/instances/activity.yaml``:

    instances:
      instance_1a2b3c4d:
        instance_id: "instance_1a2b3c4d"
        machine: "laptop"
        capabilities: ["coding", "testing"]
        first_seen: "..."
        last_activity: "..."
        current_status: "active"
        waiting_for: [{task_id: "...", since: "..."}]
        files_touched: ["src/app.py"]
        session_info: {session_id: "...", tool: "claude-code-cli", started: "..."}
    heartbeat:
      interval_seconds: 60
      stale_after_seconds: 300
      offline_after_seconds: 900
    recent_activity: [newest first, at most 100 entries]

An instance counts as active while its ``last_activity`` is younger than
``stale_after_seconds``. The threshold is read from the document itself, so
every instance agrees on it. Instances are never deleted; they age out.

Each update re-reads the document under an advisory lock on
``locks/registry.lock`` and replaces it atomically. Whatever is on disk (an
empty file, invalid YAML, an older schema) loads as a complete document.
"""

from __future__ import annotations

import socket
import threading
from dataclasses import dataclass, field, fields
from datetime import timedelta
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Iterable

import yaml

from .file_lock import DEFAULT_LOCK_TIMEOUT_SECONDS, advisory_lock
from .inbox import Inbox, InboxMessage
from .logging_config import get_logger
from .project import get_locks_dir, get_project_root, get_runtime_dir
from .utils import load_yaml, now_iso, parse_timestamp, random_hex, save_yaml
from .validators import validate_instance_id, validate_tags

__all__ = [
    "InstanceStatus",
    "Instance",
    "ActivityEntry",
    "RecoveredSession",
    "InstanceRegistry",
    "HeartbeatTimer",
    "default_registry",
    "merge_registry_with_defaults",
    "DEFAULT_TOOL",
]

REGISTRY_FILENAME = "activity.yaml"
REGISTRY_LOCK_FILENAME = "registry.lock"
DEFAULT_TOOL = "claude-code-cli"
MAX_ACTIVITY_ENTRIES = 100
MAX_FILES_TOUCHED = 20

DEFAULT_HEARTBEAT = {
    "interval_seconds": 60,
    "stale_after_seconds": 300,
    "offline_after_seconds": 900,
}

logger = get_logger(__name__)


class InstanceStatus(Enum):
    ACTIVE = "active"
    IDLE = "idle"
    WAITING = "waiting"
    OFFLINE = "offline"


@dataclass
class Instance:
    """One instance's entry in the registry."""

    instance_id: str
    machine: str | None = None
    capabilities: list[str] = field(default_factory=list)
    first_seen: str = ""
    last_activity: str = ""
    current_status: InstanceStatus = InstanceStatus.ACTIVE
    working_on: str | None = None
    waiting_for: list[dict[str, str]] = field(default_factory=list)
    files_touched: list[str] = field(default_factory=list)
    session_info: dict[str, str] | None = None

    def __post_init__(self):
        if isinstance(self.current_status, str):
            self.current_status = InstanceStatus(self.current_status)

    def to_dict(self) -> dict[str, Any]:
        data = {
            "instance_id": self.instance_id,
            "machine": self.machine,
            "capabilities": list(self.capabilities),
            "first_seen": self.first_seen,
            "last_activity": self.last_activity,
            "current_status": self.current_status.value,
            "working_on": self.working_on,
            "waiting_for": [dict(w) for w in self.waiting_for],
            "files_touched": list(self.files_touched),
            "session_info": dict(self.session_info) if self.session_info else None,
        }
        return {k: v for k, v in data.items() if v is not None}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Instance:
        names = {f.name for f in fields(cls)}
        known = {k: v for k, v in data.items() if k in names}
        if "instance_id" not in known:
            raise KeyError("instance_id")
        for key in ("capabilities", "files_touched"):
            value = known.get(key)
            known[key] = [str(v) for v in value] if isinstance(value, list) else []
        waits = known.get("waiting_for")
        known["waiting_for"] = [
            w for w in waits if isinstance(w, dict) and "task_id" in w
        ] if isinstance(waits, list) else []
        if not isinstance(known.get("session_info"), dict):
            known["session_info"] = None
        return cls(**known)

    @property
    def waiting_task_ids(self) -> list[str]:
        return [str(w["task_id"]) for w in self.waiting_for]


@dataclass
class ActivityEntry:
    timestamp: str
    instance_id: str
    action: str
    details: str | None = None

    def to_dict(self) -> dict[str, Any]:
        data = {
            "timestamp": self.timestamp,
            "instance_id": self.instance_id,
            "action": self.action,
            "details": self.details,
        }
        return {k: v for k, v in data.items() if v is not None}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ActivityEntry:
        return cls(
            timestamp=str(data.get("timestamp", "")),
            instance_id=str(data.get("instance_id", "")),
            action=str(data.get("action", "")),
            details=data.get("details"),
        )


@dataclass
class RecoveredSession:
    """Outstanding obligations picked up from a previous session."""

    pending_waits: list[str]
    unread_messages: list[InboxMessage]


def default_registry() -> dict[str, Any]:
    """Return an empty, structurally complete registry document."""
    return {
        "instances": {},
        "heartbeat": dict(DEFAULT_HEARTBEAT),
        "recent_activity": [],
    }


def merge_registry_with_defaults(raw: Any) -> dict[str, Any]:
    """Merge a persisted registry document over the defaults.

    Malformed instance entries and activity entries are dropped, heartbeat
    thresholds that are not positive integers fall back to their defaults,
    and unknown top-level keys are kept.

    Pure function: ``raw`` is not modified.
    """
    merged = default_registry()
    if not isinstance(raw, dict):
        return merged

    for key, value in raw.items():
        if key not in merged:
            merged[key] = value

    instances = raw.get("instances")
    if isinstance(instances, dict):
        merged["instances"] = {
            str(k): dict(v) for k, v in instances.items() if isinstance(v, dict)
        }

    heartbeat = raw.get("heartbeat")
    if isinstance(heartbeat, dict):
        for key, value in heartbeat.items():
            if key in DEFAULT_HEARTBEAT:
                if isinstance(value, int) and not isinstance(value, bool) and value > 0:
                    merged["heartbeat"][key] = value
            else:
                merged["heartbeat"][key] = value

    activity = raw.get("recent_activity")
    if isinstance(activity, list):
        merged["recent_activity"] = [dict(a) for a in activity if isinstance(a, dict)]

    return merged


class HeartbeatTimer:
    """Calls ``beat`` every ``interval`` seconds on a daemon thread.

    Exceptions raised by ``beat`` are logged and the timer keeps running.
    """

    def __init__(self, beat: Callable[[], None], interval: float):
        if interval <= 0:
            raise ValueError(f"Heartbeat interval must be > 0, got {interval}")
        self.beat = beat
        self.interval = interval
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        if self.is_running:
            return
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._run, name="claudememory-heartbeat", daemon=True)
        self._thread.start()

    def stop(self, timeout: float | None = 5.0) -> None:
        self._stop_event.set()
        if self._thread is not None and self._thread is not threading.current_thread():
            self._thread.join(timeout)
        self._thread = None

    def _run(self) -> None:
        while not self._stop_event.wait(self.interval):
            try:
                self.beat()
            except Exception as e:
                logger.warning(f"Heartbeat failed: {e}")


class InstanceRegistry:
    """Presence registry as seen by one instance."""

    def __init__(
        self,
        project_root: Path | None = None,
        instance_id: str | None = None,
        capabilities: Iterable[str] | None = None,
        tool: str = DEFAULT_TOOL,
        machine: str | None = None,
        lock_timeout: float = DEFAULT_LOCK_TIMEOUT_SECONDS,
    ):
        self.project_root = get_project_root(project_root)
        self.instance_id = validate_instance_id(instance_id or f"instance_{random_hex(8)}")
        self.capabilities = validate_tags(capabilities if capabilities is not None else ["coding"])
        self.tool = tool
        self.machine = machine or socket.gethostname()
        self.registry_path = get_runtime_dir(self.project_root) / "instances" / REGISTRY_FILENAME
        self.lock_path = get_locks_dir(self.project_root) / REGISTRY_LOCK_FILENAME
        self.lock_timeout = lock_timeout
        self._heartbeat: HeartbeatTimer | None = None

    # ------------------------------------------------------------------
    # Document access
    # ------------------------------------------------------------------

    def load_registry(self) -> dict[str, Any]:
        """Load the registry, always returning a complete document."""
        try:
            raw = load_yaml(self.registry_path)
        except FileNotFoundError:
            return default_registry()
        except (yaml.YAMLError, OSError, UnicodeDecodeError) as e:
            logger.warning(f"Corrupt instance registry, using defaults: {e}")
            return default_registry()
        if raw is not None and not isinstance(raw, dict):
            logger.warning("Instance registry is not a mapping, using defaults")
        return merge_registry_with_defaults(raw)

    def _update(self, mutate: Callable[[dict[str, Any]], Any]) -> Any:
        with advisory_lock(self.lock_path, timeout=self.lock_timeout):
            registry = self.load_registry()
            result = mutate(registry)
            # Mutators return False when there was nothing to change
            if result is not False:
                save_yaml(self.registry_path, registry)
        return result

    @staticmethod
    def _append_activity(
        registry: dict[str, Any], instance_id: str, action: str, details: str | None = None
    ) -> None:
        entry = ActivityEntry(now_iso(), instance_id, action, details).to_dict()
        registry["recent_activity"] = [entry] + registry["recent_activity"][:MAX_ACTIVITY_ENTRIES - 1]

    def _instances(self, registry: dict[str, Any]) -> list[Instance]:
        result = []
        for key, data in registry["instances"].items():
            try:
                result.append(Instance.from_dict(data))
            except (KeyError, ValueError, TypeError) as e:
                logger.debug(f"Skipping malformed registry entry {key}: {e}")
        return result

    # ------------------------------------------------------------------
    # Presence
    # ------------------------------------------------------------------

    def register(self, waiting_for: list[dict[str, str]] | None = None) -> Instance:
        """Insert or replace this instance's entry as active."""
        now = now_iso()
        instance = Instance(
            instance_id=self.instance_id,
            machine=self.machine,
            capabilities=list(self.capabilities),
            first_seen=now,
            last_activity=now,
            current_status=InstanceStatus.WAITING if waiting_for else InstanceStatus.ACTIVE,
            waiting_for=list(waiting_for or []),
            session_info={
                "session_id": f"session_{random_hex(8)}",
                "tool": self.tool,
                "started": now,
            },
        )

        def mutate(registry: dict[str, Any]) -> None:
            registry["instances"][self.instance_id] = instance.to_dict()
            self._append_activity(
                registry, self.instance_id, "registered",
                f"Instance registered with capabilities: {', '.join(self.capabilities)}",
            )

        self._update(mutate)
        logger.info(f"Registered instance {self.instance_id}")
        return instance

    def get_instance(self, instance_id: str | None = None) -> Instance | None:
        data = self.load_registry()["instances"].get(instance_id or self.instance_id)
        if data is None:
            return None
        try:
            return Instance.from_dict(data)
        except (KeyError, ValueError, TypeError):
            return None

    def heartbeat(self) -> bool:
        """Bump last_activity. Does nothing if this instance is not registered.

        Returns:
            True if the entry existed and was updated
        """
        def mutate(registry: dict[str, Any]) -> bool:
            entry = registry["instances"].get(self.instance_id)
            if entry is None:
                return False
            entry["last_activity"] = now_iso()
            return True

        return self._update(mutate)

    def update_status(self, status: InstanceStatus | str, working_on: str | None = None) -> Instance:
        """Set this instance's status, registering it first if needed."""
        status = InstanceStatus(status)

        def mutate(registry: dict[str, Any]) -> bool:
            entry = registry["instances"].get(self.instance_id)
            if entry is None:
                return False
            entry["current_status"] = status.value
            entry["last_activity"] = now_iso()
            if working_on is not None:
                entry["working_on"] = working_on
            return True

        if not self._update(mutate):
            self.register()
            return self.update_status(status, working_on)
        return self.get_instance()

    def start_heartbeat(self, interval_seconds: float | None = None) -> HeartbeatTimer:
        """Start (or restart) the background heartbeat."""
        self.stop_heartbeat()
        if interval_seconds is None:
            interval_seconds = self.load_registry()["heartbeat"]["interval_seconds"]
        self._heartbeat = HeartbeatTimer(self.heartbeat, interval_seconds)
        self._heartbeat.start()
        return self._heartbeat

    def stop_heartbeat(self) -> None:
        if self._heartbeat is not None:
            self._heartbeat.stop()
            self._heartbeat = None

    def go_offline(self) -> None:
        """Stop the heartbeat and mark this instance offline.

        Tasks held by this instance are left untouched.
        """
        self.stop_heartbeat()
        self.update_status(InstanceStatus.OFFLINE)
        self.log_activity("went_offline")
        logger.info(f"Instance {self.instance_id} went offline")

    def touch_file(self, path: str) -> bool:
        """Record a file as recently touched (most recent last, at most 20)."""
        def mutate(registry: dict[str, Any]) -> bool:
            entry = registry["instances"].get(self.instance_id)
            if entry is None:
                return False
            files = [f for f in entry.get("files_touched") or [] if f != path]
            files.append(path)
            entry["files_touched"] = files[-MAX_FILES_TOUCHED:]
            entry["last_activity"] = now_iso()
            return True

        return self._update(mutate)

    def wait_for_task(self, task_id: str) -> bool:
        """Add a task to this instance's wait-set and mark it waiting."""
        def mutate(registry: dict[str, Any]) -> bool:
            entry = registry["instances"].get(self.instance_id)
            if entry is None:
                return False
            waits = [w for w in entry.get("waiting_for") or [] if isinstance(w, dict)]
            if not any(w.get("task_id") == task_id for w in waits):
                waits.append({"task_id": task_id, "since": now_iso()})
            entry["waiting_for"] = waits
            entry["current_status"] = InstanceStatus.WAITING.value
            return True

        return self._update(mutate)

    def clear_wait(self, task_id: str) -> bool:
        """Remove a task from the wait-set; back to active once it is empty."""
        def mutate(registry: dict[str, Any]) -> bool:
            entry = registry["instances"].get(self.instance_id)
            if entry is None or not entry.get("waiting_for"):
                return False
            entry["waiting_for"] = [
                w for w in entry["waiting_for"]
                if not (isinstance(w, dict) and w.get("task_id") == task_id)
            ]
            if not entry["waiting_for"]:
                entry["current_status"] = InstanceStatus.ACTIVE.value
            return True

        return self._update(mutate)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_active_instances(self) -> list[Instance]:
        """Instances whose last activity is within the staleness threshold."""
        registry = self.load_registry()
        stale_after = timedelta(seconds=registry["heartbeat"]["stale_after_seconds"])
        now = parse_timestamp(now_iso())

        active = []
        for instance in self._instances(registry):
            try:
                last = parse_timestamp(instance.last_activity)
            except ValueError:
                continue
            if now - last < stale_after:
                active.append(instance)
        return active

    def get_instances_with_capabilities(self, required: Iterable[str]) -> list[Instance]:
        """Active instances that have every one of ``required``."""
        required = set(required)
        return [i for i in self.get_active_instances() if required.issubset(i.capabilities)]

    def log_activity(self, action: str, details: str | None = None) -> None:
        self._update(lambda registry: self._append_activity(
            registry, self.instance_id, action, details
        ))

    def get_recent_activity(self, limit: int = 20) -> list[ActivityEntry]:
        """Activity log entries, newest first."""
        entries = self.load_registry()["recent_activity"]
        return [ActivityEntry.from_dict(e) for e in entries[:limit]]

    # ------------------------------------------------------------------
    # Session recovery
    # ------------------------------------------------------------------

    def recover_session(self, previous_id: str, inbox: Inbox | None = None) -> RecoveredSession | None:
        """Take over the identity of a previous session.

        Collects the previous instance's pending waits and unread messages,
        then re-registers under ``previous_id``. The wait-set carries over.

        Returns:
            The recovered obligations, or None if ``previous_id`` is unknown
        """
        previous_id = validate_instance_id(previous_id)
        previous = self.get_instance(previous_id)
        if previous is None:
            return None

        inbox = inbox or Inbox(self.project_root)
        recovered = RecoveredSession(
            pending_waits=previous.waiting_task_ids,
            unread_messages=inbox.get_unread(previous_id),
        )

        self.instance_id = previous_id
        self.register(waiting_for=previous.waiting_for)
        logger.info(
            f"Recovered session {previous_id}: {len(recovered.pending_waits)} waits, "
            f"{len(recovered.unread_messages)} unread messages"
        )
        return recovered
