"""Index and timeline maintenance for the memory store.

``index.json`` is a derived lookup structure over the memory files:

    {
        "version": "1.0",
        "last_updated": "...",
        "by_type":   {"decision": [ids], "event": [...], ...},
        "by_tag":    {"auth": [ids], ...},
        "by_file":   {"src/auth.py": [ids], ...},
        "by_status": {"active": [ids], "superseded": [...], "archived": [...]},
        "recent":    [ids, newest first, at most 50],
        "high_importance": [ids with importance >= 0.7]
    }

``timeline.json`` is a bounded chronological ledger (last 500 entries) used
for temporal context lookups.

Both documents may be missing, truncated or written by another version of
the tool. Loading never fails: whatever is present is merged over
structurally complete defaults. The memory files stay authoritative and
:meth:`IndexStore.rebuild` regenerates the index from them.

Every read-modify-write cycle runs under an advisory lock on
``.claude-memory-runtime/locks/index.lock`` and re-reads the document from
disk, so concurrent instances never work from a stale cached copy.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Callable, Iterable

from .file_lock import DEFAULT_LOCK_TIMEOUT_SECONDS, advisory_lock
from .logging_config import get_logger
from .models import HIGH_IMPORTANCE_THRESHOLD, Memory, MemoryStatus, MemoryType
from .project import get_locks_dir, get_memory_dir
from .utils import load_json, now_iso, save_json

__all__ = [
    "INDEX_FILENAME",
    "TIMELINE_FILENAME",
    "INDEX_VERSION",
    "RECENT_LIMIT",
    "TIMELINE_LIMIT",
    "IndexStore",
    "empty_index",
    "empty_timeline",
    "merge_index_with_defaults",
    "merge_timeline_with_defaults",
]

INDEX_FILENAME = "index.json"
TIMELINE_FILENAME = "timeline.json"
INDEX_LOCK_FILENAME = "index.lock"
INDEX_VERSION = "1.0"
RECENT_LIMIT = 50
TIMELINE_LIMIT = 500

logger = get_logger(__name__)


def empty_index() -> dict[str, Any]:
    """Return a structurally complete, empty index."""
    return {
        "version": INDEX_VERSION,
        "last_updated": now_iso(),
        "by_type": {t.value: [] for t in MemoryType},
        "by_tag": {},
        "by_file": {},
        "by_status": {s.value: [] for s in MemoryStatus},
        "recent": [],
        "high_importance": [],
    }


def empty_timeline() -> dict[str, Any]:
    """Return an empty timeline document."""
    return {"entries": [], "last_updated": now_iso()}


def _id_list(value: Any) -> list[str] | None:
    if not isinstance(value, list):
        return None
    return [v for v in value if isinstance(v, str)]


def _merge_id_map(default: dict[str, list[str]], raw: Any) -> dict[str, list[str]]:
    merged = {key: list(ids) for key, ids in default.items()}
    if not isinstance(raw, dict):
        return merged
    for key, value in raw.items():
        ids = _id_list(value)
        if ids is not None:
            merged[str(key)] = ids
    return merged


def merge_index_with_defaults(raw: Any) -> dict[str, Any]:
    """Merge a persisted (possibly partial or foreign) index over defaults.

    Each top-level map is merged shallowly so that every known type and
    status key is present. Lists that are missing or malformed fall back to
    empty lists. Unknown top-level keys are carried through untouched.

    Pure function: ``raw`` is not modified.
    """
    merged = empty_index()
    if not isinstance(raw, dict):
        return merged

    for key, value in raw.items():
        if key not in merged:
            merged[key] = value

    if isinstance(raw.get("version"), str):
        merged["version"] = raw["version"]
    if isinstance(raw.get("last_updated"), str):
        merged["last_updated"] = raw["last_updated"]

    for key in ("by_type", "by_tag", "by_file", "by_status"):
        merged[key] = _merge_id_map(merged[key], raw.get(key))

    for key in ("recent", "high_importance"):
        ids = _id_list(raw.get(key))
        if ids is not None:
            merged[key] = ids

    return merged


def merge_timeline_with_defaults(raw: Any) -> dict[str, Any]:
    """Merge a persisted timeline over defaults, dropping malformed entries."""
    merged = empty_timeline()
    if not isinstance(raw, dict):
        return merged
    if isinstance(raw.get("last_updated"), str):
        merged["last_updated"] = raw["last_updated"]
    entries = raw.get("entries")
    if isinstance(entries, list):
        merged["entries"] = [
            e for e in entries if isinstance(e, dict) and isinstance(e.get("memory_id"), str)
        ]
    return merged


def _remove_everywhere(ids_by_key: dict[str, list[str]], memory_id: str) -> None:
    for key, ids in ids_by_key.items():
        if memory_id in ids:
            ids_by_key[key] = [i for i in ids if i != memory_id]


class IndexStore:
    """Owns ``index.json`` and ``timeline.json`` for one project."""

    def __init__(self, project_root: Path | None = None,
                 lock_timeout: float = DEFAULT_LOCK_TIMEOUT_SECONDS):
        self.memory_dir = get_memory_dir(project_root)
        self.index_path = self.memory_dir / INDEX_FILENAME
        self.timeline_path = self.memory_dir / TIMELINE_FILENAME
        self.lock_path = get_locks_dir(project_root) / INDEX_LOCK_FILENAME
        self.lock_timeout = lock_timeout

    # ------------------------------------------------------------------
    # Loading and saving
    # ------------------------------------------------------------------

    def _load_document(self, path: Path, merge: Callable[[Any], dict[str, Any]]) -> dict[str, Any]:
        try:
            raw = load_json(path)
        except FileNotFoundError:
            return merge(None)
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            logger.warning(f"Corrupt {path.name}, using defaults: {e}")
            return merge(None)
        except OSError as e:
            logger.warning(f"Cannot read {path}, using defaults: {e}")
            return merge(None)

        if not isinstance(raw, dict):
            logger.warning(f"{path.name} is not a JSON object, using defaults")
        return merge(raw)

    def load_index(self) -> dict[str, Any]:
        """Load the index, always returning a structurally complete document."""
        return self._load_document(self.index_path, merge_index_with_defaults)

    def load_timeline(self) -> dict[str, Any]:
        """Load the timeline, always returning a complete document."""
        return self._load_document(self.timeline_path, merge_timeline_with_defaults)

    def save_index(self, index: dict[str, Any]) -> None:
        index["last_updated"] = now_iso()
        save_json(self.index_path, index)

    def save_timeline(self, timeline: dict[str, Any]) -> None:
        timeline["last_updated"] = now_iso()
        save_json(self.timeline_path, timeline)

    def _update_index(self, mutate: Callable[[dict[str, Any]], None]) -> dict[str, Any]:
        with advisory_lock(self.lock_path, timeout=self.lock_timeout):
            index = self.load_index()
            mutate(index)
            self.save_index(index)
        return index

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def add(self, memory: Memory) -> None:
        """Index a newly created memory."""

        def mutate(index: dict[str, Any]) -> None:
            mid = memory.id
            index["by_type"].setdefault(memory.type.value, []).append(mid)
            for tag in memory.tags:
                index["by_tag"].setdefault(tag, []).append(mid)
            for path in memory.related_files:
                index["by_file"].setdefault(path, []).append(mid)
            index["by_status"].setdefault(memory.status.value, []).append(mid)

            index["recent"] = ([mid] + [i for i in index["recent"] if i != mid])[:RECENT_LIMIT]

            if memory.importance >= HIGH_IMPORTANCE_THRESHOLD and mid not in index["high_importance"]:
                index["high_importance"].append(mid)

        self._update_index(mutate)
        logger.debug(f"Indexed memory {memory.id}")

    def set_status(self, memory_id: str, status: MemoryStatus) -> None:
        """Move an id into a single status bucket.

        Leaving the active state also drops the id from ``recent`` and
        ``high_importance``. Type, tag and file lists keep the id so that
        queries for superseded or archived memories still find it.
        """

        def mutate(index: dict[str, Any]) -> None:
            _remove_everywhere(index["by_status"], memory_id)
            index["by_status"].setdefault(status.value, []).append(memory_id)
            if status != MemoryStatus.ACTIVE:
                index["recent"] = [i for i in index["recent"] if i != memory_id]
                index["high_importance"] = [i for i in index["high_importance"] if i != memory_id]

        self._update_index(mutate)

    def append_timeline(self, memory: Memory) -> dict[str, Any]:
        """Append a timeline entry for a memory, keeping the last 500."""
        entry: dict[str, Any] = {
            "timestamp": memory.timestamp,
            "memory_id": memory.id,
            "type": memory.type.value,
            "summary": memory.title,
        }
        if memory.links and memory.links.supersedes:
            entry["supersedes"] = list(memory.links.supersedes)

        with advisory_lock(self.lock_path, timeout=self.lock_timeout):
            timeline = self.load_timeline()
            timeline["entries"].append(entry)
            timeline["entries"] = timeline["entries"][-TIMELINE_LIMIT:]
            self.save_timeline(timeline)
        return entry

    def rebuild(self, memories: Iterable[Memory]) -> dict[str, Any]:
        """Regenerate the index from the given memories.

        Ids that no longer have a memory file disappear. ``recent`` is
        rebuilt from timestamps, ``high_importance`` from active memories
        at or above the threshold.
        """
        ordered = sorted(memories, key=lambda m: m.timestamp)
        index = empty_index()
        for memory in ordered:
            index["by_type"].setdefault(memory.type.value, []).append(memory.id)
            for tag in memory.tags:
                index["by_tag"].setdefault(tag, []).append(memory.id)
            for path in memory.related_files:
                index["by_file"].setdefault(path, []).append(memory.id)
            index["by_status"].setdefault(memory.status.value, []).append(memory.id)

        active = [m for m in ordered if m.status == MemoryStatus.ACTIVE]
        index["recent"] = [m.id for m in reversed(active)][:RECENT_LIMIT]
        index["high_importance"] = [
            m.id for m in active if m.importance >= HIGH_IMPORTANCE_THRESHOLD
        ]

        with advisory_lock(self.lock_path, timeout=self.lock_timeout):
            self.save_index(index)
        logger.info(f"Rebuilt index from {len(ordered)} memories")
        return index

    def initialize(self) -> None:
        """Write empty index and timeline documents if they are absent."""
        with advisory_lock(self.lock_path, timeout=self.lock_timeout):
            if not self.index_path.exists():
                self.save_index(empty_index())
            if not self.timeline_path.exists():
                self.save_timeline(empty_timeline())
