"""Point-to-point messages between instances.

Each message is one YAML file in ``.claude-memory-runtime/inbox/`` named
``<message id>_to_<recipient>.yaml``. The recipient is part of the file
name, so listing one instance's mail needs no parsing of other instances'
messages. Delivery is best effort: there is no acknowledgement beyond the
``read`` flag.
"""

from __future__ import annotations

from dataclasses import dataclass, fields
from datetime import timedelta
from enum import Enum
from pathlib import Path
from typing import Any

import yaml

from .logging_config import get_logger
from .project import get_runtime_dir
from .utils import load_yaml, now_iso, parse_timestamp, random_hex, save_yaml
from .validators import ValidationError, validate_instance_id, validate_message_id, validate_text

__all__ = [
    "MessageType",
    "InboxMessage",
    "Inbox",
    "DEFAULT_CLEANUP_AGE_DAYS",
]

INBOX_SUBDIR = "inbox"
MESSAGE_ID_HEX_LENGTH = 12
DEFAULT_CLEANUP_AGE_DAYS = 7

logger = get_logger(__name__)


class MessageType(Enum):
    INFO = "info"
    WARNING = "warning"
    REQUEST = "request"
    RESPONSE = "response"


@dataclass
class InboxMessage:
    """A message from one instance to another.

    ``sender`` is stored as ``from`` on disk.
    """

    id: str
    sender: str
    to: str
    message: str
    type: MessageType = MessageType.INFO
    timestamp: str = ""
    subject: str | None = None
    read: bool = False
    read_at: str | None = None
    related_task: str | None = None
    related_memory: str | None = None

    def __post_init__(self):
        if isinstance(self.type, str):
            self.type = MessageType(self.type)
        if not self.timestamp:
            self.timestamp = now_iso()

    def to_dict(self) -> dict[str, Any]:
        data = {
            "id": self.id,
            "from": self.sender,
            "to": self.to,
            "timestamp": self.timestamp,
            "type": self.type.value,
            "subject": self.subject,
            "message": self.message,
            "read": self.read,
            "read_at": self.read_at,
            "related_task": self.related_task,
            "related_memory": self.related_memory,
        }
        return {k: v for k, v in data.items() if v is not None}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> InboxMessage:
        """Create from a persisted document.

        Raises:
            KeyError: If a required field is missing
            ValueError: If the message type is unknown
        """
        data = dict(data)
        if "from" in data:
            data["sender"] = data.pop("from")
        names = {f.name for f in fields(cls)}
        known = {k: v for k, v in data.items() if k in names}
        for required in ("id", "sender", "to", "message"):
            if required not in known:
                raise KeyError(required)
        return cls(**known)


class Inbox:
    """Mailboxes for all instances of one project."""

    def __init__(self, project_root: Path | None = None):
        self.inbox_dir = get_runtime_dir(project_root) / INBOX_SUBDIR

    def _read(self, path: Path) -> InboxMessage | None:
        try:
            data = load_yaml(path)
        except FileNotFoundError:
            return None
        except (yaml.YAMLError, OSError, UnicodeDecodeError) as e:
            logger.warning(f"Skipping unreadable message {path.name}: {e}")
            return None
        try:
            if not isinstance(data, dict):
                raise ValueError("not a mapping")
            return InboxMessage.from_dict(data)
        except (KeyError, ValueError, TypeError) as e:
            logger.warning(f"Skipping invalid message {path.name}: {e}")
            return None

    def _files(self, pattern: str = "*.yaml") -> list[Path]:
        if not self.inbox_dir.is_dir():
            return []
        return sorted(self.inbox_dir.glob(pattern))

    def send(
        self,
        sender: str,
        to: str,
        message_type: MessageType | str,
        body: str,
        subject: str | None = None,
        related_task: str | None = None,
        related_memory: str | None = None,
    ) -> InboxMessage:
        """Deliver a message to ``to``'s inbox.

        Raises:
            ValidationError: If the recipient, type or body is invalid
        """
        to = validate_instance_id(to)
        try:
            message_type = MessageType(message_type)
        except ValueError:
            raise ValidationError(f"Unknown message type: {message_type}") from None
        body = validate_text(body, "Message")

        msg = InboxMessage(
            id=f"msg_{random_hex(MESSAGE_ID_HEX_LENGTH)}",
            sender=sender,
            to=to,
            message=body,
            type=message_type,
            subject=subject,
            related_task=related_task,
            related_memory=related_memory,
        )
        save_yaml(self.inbox_dir / f"{msg.id}_to_{to}.yaml", msg.to_dict())
        logger.debug(f"Sent {message_type.value} message {msg.id} from {sender} to {to}")
        return msg

    def get_unread(self, instance_id: str) -> list[InboxMessage]:
        """Unread messages addressed to ``instance_id``, newest first."""
        suffix = f"_to_{instance_id}.yaml"
        messages = []
        for path in self._files():
            # Exact suffix: "agent-1" must not match "..._to_agent-10.yaml"
            if not path.name.endswith(suffix):
                continue
            msg = self._read(path)
            if msg is not None and not msg.read and msg.to == instance_id:
                messages.append(msg)
        messages.sort(key=lambda m: m.timestamp, reverse=True)
        return messages

    def mark_read(self, message_id: str) -> InboxMessage | None:
        """Flag a message as read.

        Returns:
            The updated message, or None if it does not exist
        """
        try:
            validate_message_id(message_id)
        except ValidationError:
            return None

        for path in self._files(f"{message_id}_to_*.yaml"):
            msg = self._read(path)
            if msg is None:
                continue
            if not msg.read:
                msg.read = True
                msg.read_at = now_iso()
                save_yaml(path, msg.to_dict())
            return msg
        return None

    def cleanup(self, max_age_days: float = DEFAULT_CLEANUP_AGE_DAYS) -> int:
        """Delete read messages older than ``max_age_days``.

        Unread messages are never deleted.

        Returns:
            Number of messages deleted
        """
        cutoff = parse_timestamp(now_iso()) - timedelta(days=max_age_days)
        removed = 0
        for path in self._files():
            msg = self._read(path)
            if msg is None or not msg.read:
                continue
            try:
                sent = parse_timestamp(msg.timestamp)
            except ValueError:
                continue
            if sent < cutoff:
                try:
                    path.unlink()
                except FileNotFoundError:
                    continue
                removed += 1
        if removed:
            logger.info(f"Removed {removed} old messages from inbox")
        return removed
