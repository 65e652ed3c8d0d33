"""Common utilities for Claude Memory.

This module provides shared helpers used across the claudememory package:
- File I/O helpers (atomic writes, JSON and YAML documents)
- Timestamp formatting and parsing
- Random identifier generation
"""

from __future__ import annotations

import json
import os
import secrets
import tempfile
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

import yaml

__all__ = [
    "atomic_write",
    "load_json",
    "save_json",
    "dump_yaml",
    "load_yaml",
    "save_yaml",
    "now_iso",
    "format_timestamp",
    "parse_timestamp",
    "filename_timestamp",
    "random_hex",
]


def atomic_write(filepath: Path, content: str) -> None:
    """Write content to file atomically using tmp file + rename.

    Readers either see the previous content or the new content, never a
    partially written file.

    Args:
        filepath: Path to write to
        content: Content to write

    Raises:
        OSError: If write fails
    """
    filepath = Path(filepath)
    filepath.parent.mkdir(parents=True, exist_ok=True)

    # Temp file must live in the same directory for os.replace to be atomic
    fd, tmp_path = tempfile.mkstemp(dir=filepath.parent, prefix=f".{filepath.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, 'w', encoding="utf-8") as f:
            f.write(content)
        os.replace(tmp_path, filepath)
    except BaseException:
        try:
            os.unlink(tmp_path)
        except OSError:
            pass
        raise


def load_json(filepath: Path) -> Any:
    """Load and parse JSON from file.

    Raises:
        FileNotFoundError: If file doesn't exist
        json.JSONDecodeError: If file contains invalid JSON
    """
    with open(filepath, encoding="utf-8") as f:
        return json.load(f)


def save_json(filepath: Path, data: Any) -> None:
    """Save data to JSON file atomically (2-space indent)."""
    atomic_write(filepath, json.dumps(data, indent=2) + "\n")


class _QuotedStr(str):
    """String value that is always emitted double-quoted."""


class _DocumentDumper(yaml.SafeDumper):
    """SafeDumper that keeps string values on one double-quoted line.

    Shell hooks read fields with ``grep '^title:' | cut -d'"' -f2``, so every
    string value has to be double-quoted and must never be folded.
    """


def _represent_quoted(dumper: yaml.SafeDumper, data: _QuotedStr) -> yaml.ScalarNode:
    return dumper.represent_scalar("tag:yaml.org,2002:str", str(data), style='"')


_DocumentDumper.add_representer(_QuotedStr, _represent_quoted)


def _quote_values(obj: Any) -> Any:
    if isinstance(obj, dict):
        return {key: _quote_values(value) for key, value in obj.items()}
    if isinstance(obj, (list, tuple)):
        return [_quote_values(item) for item in obj]
    if isinstance(obj, str):
        return _QuotedStr(obj)
    return obj


def dump_yaml(data: Any) -> str:
    """Serialize data to YAML text.

    Mapping keys keep insertion order and stay unquoted. String values are
    double-quoted on a single line with newlines escaped.
    """
    return yaml.dump(
        _quote_values(data),
        Dumper=_DocumentDumper,
        sort_keys=False,
        allow_unicode=True,
        default_flow_style=False,
        width=float("inf"),
    )


def load_yaml(filepath: Path) -> Any:
    """Load and parse a YAML document with ``yaml.safe_load``.

    Raises:
        FileNotFoundError: If file doesn't exist
        yaml.YAMLError: If file contains invalid YAML
    """
    with open(filepath, encoding="utf-8") as f:
        return yaml.safe_load(f)


def save_yaml(filepath: Path, data: Any) -> None:
    """Save data to a YAML file atomically."""
    atomic_write(filepath, dump_yaml(data))


def now_iso() -> str:
    """Return the current UTC time as an ISO 8601 string."""
    return datetime.now(UTC).isoformat()


def format_timestamp(dt: datetime) -> str:
    """Format datetime as ISO 8601 string, assuming UTC when naive."""
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=UTC)
    return dt.isoformat()


def parse_timestamp(ts: str) -> datetime:
    """Parse ISO 8601 timestamp string into an aware datetime.

    Naive timestamps are taken to be UTC so that values written by other
    tools compare correctly with our own.

    Raises:
        ValueError: If timestamp format is invalid
    """
    if not isinstance(ts, str):
        raise ValueError(f"Timestamp must be a string, got {type(ts).__name__}")
    dt = datetime.fromisoformat(ts.strip())
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=UTC)
    return dt


def filename_timestamp(ts: str) -> str:
    """Turn an ISO timestamp into a filename-safe sortable prefix.

    Example:
        >>> filename_timestamp("2025-01-22T10:30:45.123456+00:00")
        '2025-01-22T10-30-45'
    """
    return ts.replace(":", "-").replace(".", "-")[:19]


def random_hex(length: int) -> str:
    """Return ``length`` lowercase hex characters from a CSPRNG."""
    return secrets.token_hex((length + 1) // 2)[:length]
