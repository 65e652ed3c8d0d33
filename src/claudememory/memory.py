"""Memory repository for Claude Memory.

Memories are the durable knowledge shared by every instance working on a
project: decisions, facts, preferences, conclusions. Each memory is one YAML
file under ``.claude-memory/memories/`` named
``<YYYY-MM-DDTHH-MM-SS>_<type>_<id>.yaml``, so a plain directory listing
is already chronological.

Creating a memory touches several files in a fixed order:

1. the memory file itself (the point at which the memory exists)
2. ``index.json`` (via :class:`~claudememory.index_store.IndexStore`)
3. ``timeline.json``
4. every memory it supersedes

A crash part-way leaves a memory that is on disk but missing from the index;
:meth:`MemoryRepository.rebuild_index` repairs that.

Example:
    repo = MemoryRepository(project_root, instance_id="instance_1a2b3c4d")
    decision = repo.create(
        MemoryType.DECISION,
        title="Use JWT for API auth",
        summary="Stateless tokens, 1h expiry",
        tags=["auth"],
        importance=0.8,
    )
    repo.query(MemoryQuery(tags=["auth"]))
"""

from __future__ import annotations

from datetime import UTC, datetime
from pathlib import Path
from typing import Any, Iterable

import yaml

from .config import get_config_path, MemoryConfig, save_config
from .index_store import IndexStore
from .logging_config import get_logger
from .models import (
    DEFAULT_CONFIDENCE,
    DEFAULT_IMPORTANCE,
    HIGH_IMPORTANCE_THRESHOLD,
    Memory,
    MemoryContext,
    MemoryLinks,
    MemoryQuery,
    MemoryStatus,
    MemoryType,
)
from .project import ensure_gitignore_entry, get_memory_dir, get_runtime_dir, get_project_root
from .utils import filename_timestamp, load_yaml, now_iso, parse_timestamp, random_hex, save_yaml
from .validators import (
    ValidationError,
    clamp_unit_interval,
    validate_memory_id,
    validate_tags,
    validate_text,
)

__all__ = [
    "MEMORIES_SUBDIR",
    "MemoryRepository",
    # Re-exported data model
    "Memory",
    "MemoryContext",
    "MemoryLinks",
    "MemoryQuery",
    "MemoryStatus",
    "MemoryType",
]

MEMORIES_SUBDIR = "memories"
COMPLETED_SUBDIR = "completed"
ARCHIVE_SUBDIR = "archive"
MEMORY_ID_LENGTH = 12
MAX_TITLE_LENGTH = 200

# Directories created by init(), relative to the memory and runtime roots
MEMORY_SUBDIRS = (MEMORIES_SUBDIR, COMPLETED_SUBDIR, ARCHIVE_SUBDIR)
RUNTIME_SUBDIRS = (
    "instances",
    "inbox",
    "tasks/pending",
    "tasks/in_progress",
    "tasks/cancelled",
    "failed",
    "artifacts",
    "locks",
)

logger = get_logger(__name__)

README_TEXT = """\
# Claude Memory

This directory is shared memory for every Claude instance working on this
project. It is version controlled; live coordination state (pending tasks,
who is online, messages) lives in `.claude-memory-runtime/`, which is git
ignored.

## Starting a session

1. `claude-mem instances` shows who else is active
2. `claude-mem recall` loads recent memories, `claude-mem recall --important`
   the high-importance ones
3. `claude-mem tasks` lists delegated tasks you can claim

## Storing memories

Record a memory when a decision is made, a root cause is found, the user
states a preference, an investigation concludes or a milestone is reached:

    claude-mem store decision "Use JWT for API auth" "Stateless, 1h expiry" --tags auth --importance 0.8

Types: `decision`, `event`, `fact`, `preference`, `context`, `conclusion`.
A newer memory can replace an older one with `--supersedes <id>`; the old
one stays readable but drops out of default recall.

## Delegating work

    claude-mem delegate "Run browser tests" "Check the login flow" --capabilities browser_testing

An instance with the required capabilities claims the task
(`claude-mem claim <task id>`), starts it, and completes or fails it.
Completed tasks are kept in `completed/`.

## Layout

```
.claude-memory/
  README.md        this file
  config.yaml      project settings
  index.json       lookup index (derived, rebuildable)
  timeline.json    chronological ledger
  memories/        one YAML file per memory
  completed/       finished tasks with results
  archive/         archived memories
```

## Resolving conflicts

Follow `supersedes` links first, then prefer the most recent active memory.
`claude-mem timeline` shows what was recorded around the same time.
"""


def _as_list(value: Any) -> list[Any]:
    if value is None:
        return []
    if isinstance(value, (list, tuple, set)):
        return list(value)
    return [value]


def _timestamp_key(memory: Memory) -> datetime:
    try:
        return parse_timestamp(memory.timestamp)
    except ValueError:
        return datetime.min.replace(tzinfo=UTC)


class MemoryRepository:
    """Creates, reads, queries and supersedes memories for one project."""

    def __init__(
        self,
        project_root: Path | None = None,
        instance_id: str | None = None,
        index_store: IndexStore | None = None,
    ):
        self.project_root = get_project_root(project_root)
        self.instance_id = instance_id or f"instance_{random_hex(8)}"
        self.memory_dir = get_memory_dir(self.project_root)
        self.runtime_dir = get_runtime_dir(self.project_root)
        self.memories_dir = self.memory_dir / MEMORIES_SUBDIR
        self.index = index_store or IndexStore(self.project_root)

    # ------------------------------------------------------------------
    # Scaffolding
    # ------------------------------------------------------------------

    def init(self, config: MemoryConfig | None = None) -> None:
        """Create both storage trees and their initial documents.

        Existing documents are left untouched, so calling this again is safe.
        """
        for sub in MEMORY_SUBDIRS:
            (self.memory_dir / sub).mkdir(parents=True, exist_ok=True)
        for sub in RUNTIME_SUBDIRS:
            (self.runtime_dir / sub).mkdir(parents=True, exist_ok=True)

        self.index.initialize()

        if not get_config_path(self.project_root).exists():
            save_config(config or MemoryConfig(), self.project_root)

        readme = self.memory_dir / "README.md"
        if not readme.exists():
            readme.write_text(README_TEXT, encoding="utf-8")

        ensure_gitignore_entry(self.project_root)
        logger.info(f"Initialized memory store in {self.memory_dir}")

    def is_initialized(self) -> bool:
        return self.memory_dir.is_dir()

    # ------------------------------------------------------------------
    # File access
    # ------------------------------------------------------------------

    def _find_file(self, memory_id: str) -> Path | None:
        try:
            validate_memory_id(memory_id)
        except ValidationError:
            return None
        if not self.memories_dir.is_dir():
            return None
        for path in self.memories_dir.glob(f"*_{memory_id}.yaml"):
            return path
        return None

    def _read(self, path: Path) -> Memory | None:
        try:
            data = load_yaml(path)
            if not isinstance(data, dict):
                raise ValueError("not a mapping")
            return Memory.from_dict(data)
        except FileNotFoundError:
            return None
        except (yaml.YAMLError, ValueError, KeyError, TypeError) as e:
            logger.warning(f"Skipping unreadable memory file {path.name}: {e}")
            return None

    def _write(self, path: Path, memory: Memory) -> None:
        save_yaml(path, memory.to_dict())

    def _load(self, memory_id: str) -> tuple[Path, Memory] | None:
        path = self._find_file(memory_id)
        if path is None:
            return None
        memory = self._read(path)
        if memory is None:
            return None
        return path, memory

    def _track_access(self, path: Path, memory: Memory) -> Memory:
        memory.access_count += 1
        memory.last_accessed = now_iso()
        self._write(path, memory)
        return memory

    def list_all(self) -> list[Memory]:
        """Load every readable memory file, without access tracking."""
        if not self.memories_dir.is_dir():
            return []
        memories = []
        for path in sorted(self.memories_dir.glob("*.yaml")):
            memory = self._read(path)
            if memory is not None:
                memories.append(memory)
        return memories

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    def create(
        self,
        memory_type: MemoryType | str,
        title: str,
        summary: str,
        *,
        details: str | None = None,
        tags: Iterable[str] | None = None,
        importance: float = DEFAULT_IMPORTANCE,
        confidence: float = DEFAULT_CONFIDENCE,
        context: MemoryContext | dict[str, Any] | None = None,
        links: MemoryLinks | dict[str, Any] | None = None,
        expires_at: str | None = None,
    ) -> Memory:
        """Record a new memory.

        Args:
            memory_type: Kind of memory
            title: One-line headline
            summary: Short description
            details: Optional long-form body
            tags: Tags (stripped, de-duplicated)
            importance: Clamped into [0, 1]
            confidence: Clamped into [0, 1]
            context: Optional provenance (related files are indexed)
            links: Optional relations; ``supersedes`` targets are superseded
            expires_at: Optional ISO 8601 expiry

        Returns:
            The stored memory

        Raises:
            ValidationError: If an input is invalid
        """
        try:
            memory_type = MemoryType(memory_type)
        except ValueError:
            valid = ", ".join(t.value for t in MemoryType)
            raise ValidationError(f"Unknown memory type '{memory_type}' (expected one of: {valid})") from None

        title = validate_text(title, "Title", MAX_TITLE_LENGTH).strip()
        summary = validate_text(summary, "Summary").strip()
        if isinstance(context, dict):
            context = MemoryContext.from_dict(context)
        if isinstance(links, dict):
            links = MemoryLinks.from_dict(links)
        if links is not None:
            for target in links.supersedes:
                validate_memory_id(target)
        if expires_at is not None:
            parse_timestamp(expires_at)

        timestamp = now_iso()
        memory = Memory(
            id=random_hex(MEMORY_ID_LENGTH),
            type=memory_type,
            status=MemoryStatus.ACTIVE,
            timestamp=timestamp,
            instance_id=self.instance_id,
            title=title,
            summary=summary,
            details=details,
            context=context,
            links=links,
            tags=validate_tags(tags),
            importance=clamp_unit_interval(importance, "importance"),
            confidence=clamp_unit_interval(confidence, "confidence"),
            expires_at=expires_at,
            last_accessed=timestamp,
            access_count=0,
        )

        filename = f"{filename_timestamp(timestamp)}_{memory_type.value}_{memory.id}.yaml"
        self._write(self.memories_dir / filename, memory)
        self.index.add(memory)
        self.index.append_timeline(memory)

        if links is not None:
            for target in links.supersedes:
                self.supersede(target, memory.id)

        logger.info(f"Stored {memory_type.value} memory {memory.id}: {title[:50]}")
        return memory

    def get(self, memory_id: str) -> Memory | None:
        """Read a memory by id, recording the access.

        Returns:
            The memory with updated ``access_count``/``last_accessed``, or
            None if no such memory exists (or the id is malformed)
        """
        loaded = self._load(memory_id)
        if loaded is None:
            return None
        return self._track_access(*loaded)

    def query(self, query: MemoryQuery | None = None, **filters: Any) -> list[Memory]:
        """Find memories matching a filter, newest first.

        Either pass a :class:`MemoryQuery` or its fields as keyword arguments.
        Only the returned memories have their access recorded.

        Raises:
            ValidationError: If ``limit`` is negative
        """
        if query is None:
            query = MemoryQuery(**filters)
        index = self.index.load_index()

        def union(mapping: dict[str, list[str]], keys: Iterable[str]) -> set[str]:
            ids: set[str] = set()
            for key in keys:
                ids.update(mapping.get(key, []))
            return ids

        if query.types:
            candidates = union(index["by_type"], (t.value for t in query.types))
        else:
            candidates = union(index["by_type"], index["by_type"].keys())
        if query.tags:
            candidates &= union(index["by_tag"], query.tags)
        if query.files:
            candidates &= union(index["by_file"], query.files)

        statuses = query.status_filter()
        candidates &= union(index["by_status"], (s.value for s in statuses))

        since = parse_timestamp(query.since) if query.since else None
        before = parse_timestamp(query.before) if query.before else None

        matches: list[tuple[Path, Memory]] = []
        for memory_id in candidates:
            loaded = self._load(memory_id)
            if loaded is None:
                logger.debug(f"Index references missing memory {memory_id}")
                continue
            path, memory = loaded
            if memory.status not in statuses:
                continue
            if since or before:
                try:
                    ts = parse_timestamp(memory.timestamp)
                except ValueError:
                    continue
                if since and ts < since:
                    continue
                if before and ts >= before:
                    continue
            if query.min_importance is not None and memory.importance < query.min_importance:
                continue
            if query.search and not memory.matches_text(query.search):
                continue
            matches.append((path, memory))

        matches.sort(key=lambda pm: _timestamp_key(pm[1]), reverse=True)
        if query.limit:
            matches = matches[:query.limit]

        return [self._track_access(path, memory) for path, memory in matches]

    def _change_status(
        self, memory_id: str, status: MemoryStatus, allowed_from: set[MemoryStatus],
        superseded_by: str | None = None,
    ) -> Memory | None:
        loaded = self._load(memory_id)
        if loaded is None:
            logger.debug(f"Cannot mark missing memory {memory_id} as {status.value}")
            return None
        path, memory = loaded
        if memory.status not in allowed_from:
            logger.info(
                f"Ignoring {memory.status.value} -> {status.value} for memory {memory_id}"
            )
            return None

        memory.status = status
        if superseded_by is not None:
            memory.links = memory.links or MemoryLinks()
            memory.links.superseded_by = superseded_by
        self._write(path, memory)
        self.index.set_status(memory_id, status)
        return memory

    def supersede(self, old_id: str, new_id: str) -> Memory | None:
        """Mark ``old_id`` as superseded by ``new_id``.

        Returns:
            The updated memory, or None if it does not exist or is not active
        """
        memory = self._change_status(
            old_id, MemoryStatus.SUPERSEDED, {MemoryStatus.ACTIVE}, superseded_by=new_id
        )
        if memory is not None:
            logger.info(f"Memory {old_id} superseded by {new_id}")
        return memory

    def archive(self, memory_id: str) -> Memory | None:
        """Archive an active or superseded memory.

        Returns:
            The updated memory, or None if it does not exist or is already archived
        """
        return self._change_status(
            memory_id, MemoryStatus.ARCHIVED, {MemoryStatus.ACTIVE, MemoryStatus.SUPERSEDED}
        )

    def get_recent(self, limit: int = 10) -> list[Memory]:
        return self.query(MemoryQuery(status=[MemoryStatus.ACTIVE], limit=limit))

    def get_important(self, min_importance: float = HIGH_IMPORTANCE_THRESHOLD) -> list[Memory]:
        return self.query(MemoryQuery(status=[MemoryStatus.ACTIVE], min_importance=min_importance))

    def get_for_files(self, files: Iterable[str]) -> list[Memory]:
        return self.query(MemoryQuery(status=[MemoryStatus.ACTIVE], files=_as_list(files)))

    def get_timeline(self, limit: int | None = None) -> list[dict[str, Any]]:
        """Timeline entries, newest first."""
        entries = self.index.load_timeline()["entries"]
        entries = sorted(entries, key=lambda e: str(e.get("timestamp", "")), reverse=True)
        return entries[:limit] if limit else entries

    def get_context(self, memory_id: str, window: int = 5) -> list[Memory]:
        """Memories recorded around ``memory_id``.

        Returns the memories within ``window`` timeline positions on either
        side of the target (chronological order), ``[memory]`` if the target
        has dropped out of the timeline, or ``[]`` if it does not exist.
        """
        memory = self.get(memory_id)
        if memory is None:
            return []

        entries = self.index.load_timeline()["entries"]
        position = next(
            (i for i, e in enumerate(entries) if e.get("memory_id") == memory_id), None
        )
        if position is None:
            return [memory]

        nearby = entries[max(0, position - window):position + window + 1]
        result = []
        for entry in nearby:
            if entry["memory_id"] == memory_id:
                result.append(memory)
                continue
            neighbour = self.get(entry["memory_id"])
            if neighbour is not None:
                result.append(neighbour)
        return result

    def rebuild_index(self) -> dict[str, Any]:
        """Regenerate ``index.json`` from the memory files on disk."""
        return self.index.rebuild(self.list_all())
