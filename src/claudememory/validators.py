"""Input validation utilities for Claude Memory.

Identifiers end up embedded in file names (memory files, task files, inbox
messages), so every identifier is checked against a strict pattern before it
touches the filesystem. All validators raise :class:`ValidationError` with a
message suitable for showing to the user.
"""

from __future__ import annotations

import math
import re
from typing import Any, Iterable

__all__ = [
    "ValidationError",
    "validate_instance_id",
    "validate_memory_id",
    "validate_task_id",
    "validate_message_id",
    "validate_text",
    "validate_tags",
    "clamp_unit_interval",
]

MAX_INSTANCE_ID_LENGTH = 64
MAX_TITLE_LENGTH = 200
MAX_TAG_LENGTH = 64

INSTANCE_ID_PATTERN = re.compile(r"^[a-zA-Z0-9_-]+$")
MEMORY_ID_PATTERN = re.compile(r"^[a-f0-9]{8,32}$")
TASK_ID_PATTERN = re.compile(r"^task_[a-f0-9]{8,32}$")
MESSAGE_ID_PATTERN = re.compile(r"^msg_[a-f0-9]{8,32}$")


class ValidationError(ValueError):
    """Raised when validation fails."""

    pass


def validate_instance_id(instance_id: Any) -> str:
    """Validate an instance ID.

    Instance IDs must be 1-64 characters of letters, digits, hyphens and
    underscores, and must not start or end with a hyphen.

    Returns:
        The validated, stripped instance ID

    Raises:
        ValidationError: If validation fails

    Examples:
        >>> validate_instance_id("instance_1a2b3c4d")
        'instance_1a2b3c4d'
        >>> validate_instance_id("../etc")
        Traceback (most recent call last):
        ...
        ValidationError: Instance ID contains invalid characters...
    """
    if not isinstance(instance_id, str):
        raise ValidationError(f"Instance ID must be a string, got {type(instance_id).__name__}")

    instance_id = instance_id.strip()
    if not instance_id:
        raise ValidationError("Instance ID cannot be empty")

    if len(instance_id) > MAX_INSTANCE_ID_LENGTH:
        raise ValidationError(
            f"Instance ID too long (max {MAX_INSTANCE_ID_LENGTH} characters, got {len(instance_id)})"
        )

    if not INSTANCE_ID_PATTERN.match(instance_id):
        raise ValidationError(
            "Instance ID contains invalid characters. "
            f"Only alphanumeric, hyphens, and underscores allowed: '{instance_id}'"
        )

    if instance_id.startswith("-") or instance_id.endswith("-"):
        raise ValidationError(f"Instance ID cannot start or end with a hyphen: '{instance_id}'")

    return instance_id


def _validate_pattern(value: Any, pattern: re.Pattern, label: str) -> str:
    if not isinstance(value, str):
        raise ValidationError(f"{label} must be a string, got {type(value).__name__}")
    value = value.strip()
    if not pattern.match(value):
        raise ValidationError(f"Invalid {label.lower()}: '{value}'")
    return value


def validate_memory_id(memory_id: Any) -> str:
    """Validate a memory ID (lowercase hex)."""
    return _validate_pattern(memory_id, MEMORY_ID_PATTERN, "Memory ID")


def validate_task_id(task_id: Any) -> str:
    """Validate a task ID (``task_`` + lowercase hex)."""
    return _validate_pattern(task_id, TASK_ID_PATTERN, "Task ID")


def validate_message_id(message_id: Any) -> str:
    """Validate a message ID (``msg_`` + lowercase hex)."""
    return _validate_pattern(message_id, MESSAGE_ID_PATTERN, "Message ID")


def validate_text(value: Any, field_name: str, max_length: int | None = None) -> str:
    """Validate a required, non-blank text field.

    Raises:
        ValidationError: If value is not a string, is blank, or is too long
    """
    if not isinstance(value, str):
        raise ValidationError(f"{field_name} must be a string, got {type(value).__name__}")
    if not value.strip():
        raise ValidationError(f"{field_name} cannot be empty")
    if max_length is not None and len(value) > max_length:
        raise ValidationError(
            f"{field_name} too long (max {max_length} characters, got {len(value)})"
        )
    return value


def validate_tags(tags: Iterable[Any] | None) -> list[str]:
    """Normalize a tag list: strip, drop blanks, de-duplicate keeping order.

    Raises:
        ValidationError: If a tag is not a string or is too long
    """
    if tags is None:
        return []
    if isinstance(tags, str):
        tags = [tags]

    result: list[str] = []
    for tag in tags:
        if not isinstance(tag, str):
            raise ValidationError(f"Tags must be strings, got {type(tag).__name__}")
        tag = tag.strip()
        if not tag:
            continue
        if len(tag) > MAX_TAG_LENGTH:
            raise ValidationError(f"Tag too long (max {MAX_TAG_LENGTH} characters): '{tag[:20]}...'")
        if tag not in result:
            result.append(tag)
    return result


def clamp_unit_interval(value: Any, field_name: str) -> float:
    """Clamp a numeric value into [0, 1].

    Raises:
        ValidationError: If value is not a real number or is NaN

    Examples:
        >>> clamp_unit_interval(1.7, "importance")
        1.0
        >>> clamp_unit_interval(-3, "confidence")
        0.0
    """
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValidationError(f"{field_name} must be a number, got {type(value).__name__}")
    if math.isnan(value):
        raise ValidationError(f"{field_name} cannot be NaN")
    return min(1.0, max(0.0, float(value)))
