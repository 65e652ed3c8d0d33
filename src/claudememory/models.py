"""Memory data model shared by the repository and the index store.

Memories are persisted one per YAML file. ``from_dict`` ignores keys it does
not know and fills in defaults for keys that are missing, so files written by
older or newer versions still load.
"""

from __future__ import annotations

from dataclasses import dataclass, field, fields
from enum import Enum
from typing import Any

from .utils import now_iso
from .validators import ValidationError

__all__ = [
    "MemoryType",
    "MemoryStatus",
    "MemoryContext",
    "MemoryLinks",
    "Memory",
    "MemoryQuery",
    "HIGH_IMPORTANCE_THRESHOLD",
    "DEFAULT_IMPORTANCE",
    "DEFAULT_CONFIDENCE",
]

HIGH_IMPORTANCE_THRESHOLD = 0.7
DEFAULT_IMPORTANCE = 0.5
DEFAULT_CONFIDENCE = 0.8


class MemoryType(Enum):
    """Kinds of knowledge an instance can record."""

    DECISION = "decision"  # A choice that was made, and why
    EVENT = "event"  # Something that happened (deploy, incident...)
    FACT = "fact"  # Something learned about the system
    PREFERENCE = "preference"  # What the user wants
    CONTEXT = "context"  # Background for ongoing work
    CONCLUSION = "conclusion"  # Outcome of an investigation


class MemoryStatus(Enum):
    """Memory lifecycle: active -> superseded -> archived, never backwards."""

    ACTIVE = "active"
    SUPERSEDED = "superseded"
    ARCHIVED = "archived"


def _known_fields(cls: type, data: dict[str, Any]) -> dict[str, Any]:
    names = {f.name for f in fields(cls)}
    return {k: v for k, v in data.items() if k in names}


def _str_list(value: Any) -> list[str]:
    if not isinstance(value, list):
        return []
    return [str(v) for v in value if isinstance(v, (str, int, float)) and not isinstance(v, bool)]


def _drop_none(data: dict[str, Any]) -> dict[str, Any]:
    return {k: v for k, v in data.items() if v is not None}


@dataclass
class MemoryContext:
    """Where a memory came from."""

    conversation_id: str | None = None
    triggered_by: str | None = None
    related_files: list[str] = field(default_factory=list)
    working_directory: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return _drop_none({
            "conversation_id": self.conversation_id,
            "triggered_by": self.triggered_by,
            "related_files": list(self.related_files),
            "working_directory": self.working_directory,
        })

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> MemoryContext:
        known = _known_fields(cls, data)
        known["related_files"] = _str_list(known.get("related_files"))
        return cls(**known)


@dataclass
class MemoryLinks:
    """Relations to other memories and tasks."""

    supersedes: list[str] = field(default_factory=list)
    superseded_by: str | None = None
    derived_from: list[str] = field(default_factory=list)
    related_to: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {}
        if self.supersedes:
            data["supersedes"] = list(self.supersedes)
        if self.superseded_by is not None:
            data["superseded_by"] = self.superseded_by
        if self.derived_from:
            data["derived_from"] = list(self.derived_from)
        if self.related_to:
            data["related_to"] = list(self.related_to)
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> MemoryLinks:
        known = _known_fields(cls, data)
        for key in ("supersedes", "derived_from", "related_to"):
            known[key] = _str_list(known.get(key))
        return cls(**known)


@dataclass
class Memory:
    """A unit of persisted knowledge.

    Attributes:
        id: 12 lowercase hex characters
        type: Kind of memory
        status: Lifecycle state
        timestamp: Creation time (ISO 8601, UTC)
        instance_id: Instance that recorded the memory
        title: One-line headline
        summary: Short description
        details: Optional long-form body
        context: Optional provenance
        links: Optional relations to other memories
        tags: Ordered, de-duplicated tags
        importance: Weight in [0, 1]; >= 0.7 counts as high importance
        confidence: Certainty in [0, 1]
        expires_at: Optional expiry timestamp
        last_accessed: Last read time
        access_count: Number of reads
    """

    id: str
    type: MemoryType
    title: str
    summary: str
    status: MemoryStatus = MemoryStatus.ACTIVE
    timestamp: str = field(default_factory=now_iso)
    instance_id: str = ""
    details: str | None = None
    context: MemoryContext | None = None
    links: MemoryLinks | None = None
    tags: list[str] = field(default_factory=list)
    importance: float = DEFAULT_IMPORTANCE
    confidence: float = DEFAULT_CONFIDENCE
    expires_at: str | None = None
    last_accessed: str | None = None
    access_count: int = 0

    def __post_init__(self):
        """Handle type conversions."""
        if isinstance(self.type, str):
            self.type = MemoryType(self.type)
        if isinstance(self.status, str):
            self.status = MemoryStatus(self.status)
        if isinstance(self.context, dict):
            self.context = MemoryContext.from_dict(self.context)
        if isinstance(self.links, dict):
            self.links = MemoryLinks.from_dict(self.links)

    @property
    def related_files(self) -> list[str]:
        return list(self.context.related_files) if self.context else []

    def matches_text(self, needle: str) -> bool:
        """Case-insensitive substring match over title, summary, details and tags."""
        needle = needle.lower()
        haystacks = [self.title, self.summary, self.details or "", *self.tags]
        return any(needle in h.lower() for h in haystacks)

    def to_dict(self) -> dict[str, Any]:
        """Convert to the on-disk document (keys in a stable order)."""
        data: dict[str, Any] = {
            "id": self.id,
            "type": self.type.value,
            "status": self.status.value,
            "timestamp": self.timestamp,
            "instance_id": self.instance_id,
            "title": self.title,
            "summary": self.summary,
            "details": self.details,
            "context": self.context.to_dict() if self.context else None,
            "links": self.links.to_dict() if self.links else None,
            "tags": list(self.tags),
            "importance": self.importance,
            "confidence": self.confidence,
            "expires_at": self.expires_at,
            "last_accessed": self.last_accessed,
            "access_count": self.access_count,
        }
        return _drop_none(data)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Memory:
        """Create Memory from a persisted document.

        Raises:
            ValueError: If type or status is not a known value
            KeyError: If id, type, title or summary is missing
        """
        known = _known_fields(cls, data)
        for required in ("id", "type", "title", "summary"):
            if required not in known:
                raise KeyError(required)
        known["id"] = str(known["id"])
        known["tags"] = _str_list(known.get("tags"))
        for key in ("context", "links"):
            if known.get(key) is not None and not isinstance(known[key], dict):
                known[key] = None
        return cls(**known)


@dataclass
class MemoryQuery:
    """Filter for MemoryRepository.query.

    All given filters are ANDed; ``tags`` matches any of its tags. ``since``
    is inclusive and ``before`` exclusive. ``limit`` of None or 0 means no
    limit.
    """

    types: list[MemoryType] | None = None
    tags: list[str] | None = None
    files: list[str] | None = None
    status: list[MemoryStatus] | None = None
    include_superseded: bool = False
    since: str | None = None
    before: str | None = None
    min_importance: float | None = None
    search: str | None = None
    limit: int | None = None

    def __post_init__(self):
        if self.limit is not None and self.limit < 0:
            raise ValidationError(f"Limit must be 0 (unlimited) or positive, got {self.limit}")
        if self.types is not None:
            self.types = [MemoryType(t) if isinstance(t, str) else t for t in self.types]
        if self.status is not None:
            self.status = [MemoryStatus(s) if isinstance(s, str) else s for s in self.status]

    def status_filter(self) -> set[MemoryStatus]:
        """Statuses a result may have."""
        if self.status:
            return set(self.status)
        if self.include_superseded:
            return {MemoryStatus.ACTIVE, MemoryStatus.SUPERSEDED}
        return {MemoryStatus.ACTIVE}
