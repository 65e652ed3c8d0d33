"""Configuration system for Claude Memory.

Each project keeps its settings in ``.claude-memory/config.yaml``. The file
is version controlled, so every instance working on the project shares it.

This module:
- Defines the configuration schema as dataclass sections
- Provides defaults for every setting (a missing file is not an error)
- Validates values and reports problems as ConfigValidationError
- Guards against oversized or deeply nested YAML documents

Example configuration (.claude-memory/config.yaml):
    version: "1.0"
    storage:
      max_memories: 1000
      max_tasks: 100
      prune_after_days: 90
      archive_instead_of_delete: true
    retrieval:
      auto_load_recent: 10
      auto_load_high_importance: true
      max_context_memories: 20
    instance:
      capabilities: ["coding", "testing"]
      heartbeat_interval_seconds: 60

Two loading modes exist. ``load_config(root)`` is lenient: any problem is
logged and the defaults are used, so a broken config never stops an agent.
``load_config(root, strict=True)`` raises instead, for ``claude-mem config
validate``.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any

import yaml

from .logging_config import get_logger
from .project import get_memory_dir
from .utils import save_yaml

__all__ = [
    "CONFIG_FILENAME",
    "CONFIG_VERSION",
    "StorageConfig",
    "RetrievalConfig",
    "InstanceConfig",
    "MemoryConfig",
    "ConfigValidationError",
    "get_config_path",
    "load_config",
    "save_config",
]

CONFIG_FILENAME = "config.yaml"
CONFIG_VERSION = "1.0"

# YAML DoS prevention limits
MAX_CONFIG_FILE_SIZE_BYTES = 1 * 1024 * 1024  # 1MB
MAX_YAML_NESTING_DEPTH = 10

logger = get_logger(__name__)


class ConfigValidationError(Exception):
    """Raised when configuration validation fails."""

    pass


def _require_int(name: str, value: Any, minimum: int, maximum: int | None = None) -> None:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ConfigValidationError(f"{name} must be an integer, got {type(value).__name__}")
    if value < minimum:
        raise ConfigValidationError(f"{name} must be >= {minimum}, got {value}")
    if maximum is not None and value > maximum:
        raise ConfigValidationError(f"{name} too high (max {maximum}), got {value}")


def _require_bool(name: str, value: Any) -> None:
    if not isinstance(value, bool):
        raise ConfigValidationError(f"{name} must be a boolean, got {type(value).__name__}")


@dataclass
class StorageConfig:
    """Storage limits and retention.

    Advisory: validated and saved, but not enforced by this package. These
    settings are for external tooling such as pruning scripts.

    Attributes:
        max_memories: Soft cap on stored memories
        max_tasks: Soft cap on open tasks
        prune_after_days: Age after which memories are eligible for pruning
        archive_instead_of_delete: Move pruned memories to archive/ instead of deleting
    """

    max_memories: int = 1000
    max_tasks: int = 100
    prune_after_days: int = 90
    archive_instead_of_delete: bool = True

    def validate(self) -> None:
        _require_int("storage.max_memories", self.max_memories, 1)
        _require_int("storage.max_tasks", self.max_tasks, 1)
        _require_int("storage.prune_after_days", self.prune_after_days, 1, 3650)
        _require_bool("storage.archive_instead_of_delete", self.archive_instead_of_delete)


@dataclass
class RetrievalConfig:
    """How much context a new session loads.

    Advisory: validated and saved for session start hooks to read. Queries
    in this package take their limits from the caller.

    Attributes:
        auto_load_recent: Recent memories loaded at session start
        auto_load_high_importance: Also load high-importance memories
        max_context_memories: Upper bound on memories loaded into context
    """

    auto_load_recent: int = 10
    auto_load_high_importance: bool = True
    max_context_memories: int = 20

    def validate(self) -> None:
        _require_int("retrieval.auto_load_recent", self.auto_load_recent, 0, 50)
        _require_bool("retrieval.auto_load_high_importance", self.auto_load_high_importance)
        _require_int("retrieval.max_context_memories", self.max_context_memories, 1, 500)


@dataclass
class InstanceConfig:
    """Defaults applied to instances started in this project.

    Attributes:
        capabilities: Capability tags advertised when none are given explicitly
        heartbeat_interval_seconds: Interval of the background heartbeat
    """

    capabilities: list[str] = field(default_factory=lambda: ["coding", "testing"])
    heartbeat_interval_seconds: int = 60

    def validate(self) -> None:
        if not isinstance(self.capabilities, list) or not all(
            isinstance(c, str) and c.strip() for c in self.capabilities
        ):
            raise ConfigValidationError("instance.capabilities must be a list of non-empty strings")
        _require_int("instance.heartbeat_interval_seconds", self.heartbeat_interval_seconds, 1, 3600)


@dataclass
class MemoryConfig:
    """Complete configuration for one project."""

    version: str = CONFIG_VERSION
    storage: StorageConfig = field(default_factory=StorageConfig)
    retrieval: RetrievalConfig = field(default_factory=RetrievalConfig)
    instance: InstanceConfig = field(default_factory=InstanceConfig)

    def validate(self) -> None:
        """Validate all configuration sections.

        Raises:
            ConfigValidationError: If any validation fails
        """
        self.storage.validate()
        self.retrieval.validate()
        self.instance.validate()

    def to_dict(self) -> dict[str, Any]:
        return {
            "version": str(self.version),
            "storage": asdict(self.storage),
            "retrieval": asdict(self.retrieval),
            "instance": asdict(self.instance),
        }


def _check_yaml_nesting_depth(
    obj: Any, current_depth: int = 0, max_depth: int = MAX_YAML_NESTING_DEPTH
) -> None:
    """Reject documents nested deeper than max_depth.

    Raises:
        ConfigValidationError: If nesting depth exceeds max_depth
    """
    if current_depth > max_depth:
        raise ConfigValidationError(f"YAML nesting depth exceeds maximum of {max_depth} levels")

    if isinstance(obj, dict):
        for value in obj.values():
            _check_yaml_nesting_depth(value, current_depth + 1, max_depth)
    elif isinstance(obj, list):
        for item in obj:
            _check_yaml_nesting_depth(item, current_depth + 1, max_depth)


def _load_yaml_config(path: Path) -> dict[str, Any]:
    """Load a configuration mapping from a YAML file.

    Raises:
        ConfigValidationError: If the file is too large, unparseable or not a mapping
    """
    try:
        file_size = path.stat().st_size
    except OSError as e:
        raise ConfigValidationError(f"Failed to check file size for {path}: {e}") from e
    if file_size > MAX_CONFIG_FILE_SIZE_BYTES:
        raise ConfigValidationError(
            f"Configuration file too large: {file_size} bytes "
            f"(max {MAX_CONFIG_FILE_SIZE_BYTES} bytes)"
        )

    try:
        with open(path, encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigValidationError(f"Failed to parse YAML file {path}: {e}") from e
    except OSError as e:
        raise ConfigValidationError(f"Failed to load YAML file {path}: {e}") from e

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigValidationError(
            f"Configuration file {path} must contain a mapping, got {type(data).__name__}"
        )
    _check_yaml_nesting_depth(data)
    return data


def _merge_config_dict(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """Recursively merge configuration dictionaries."""
    result = base.copy()

    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _merge_config_dict(result[key], value)
        else:
            result[key] = value

    return result


def _section(data: dict[str, Any], name: str, cls: type) -> Any:
    section = data.get(name, {})
    if not isinstance(section, dict):
        raise ConfigValidationError(f"Section '{name}' must be a mapping")
    known = {k: v for k, v in section.items() if k in cls.__dataclass_fields__}
    unknown = sorted(set(section) - set(known))
    if unknown:
        logger.debug(f"Ignoring unknown keys in config section '{name}': {unknown}")
    return cls(**known)


def _dict_to_config(data: dict[str, Any]) -> MemoryConfig:
    """Convert a (merged) dictionary to MemoryConfig.

    Raises:
        ConfigValidationError: If a section has the wrong shape
    """
    return MemoryConfig(
        version=str(data.get("version", CONFIG_VERSION)),
        storage=_section(data, "storage", StorageConfig),
        retrieval=_section(data, "retrieval", RetrievalConfig),
        instance=_section(data, "instance", InstanceConfig),
    )


def get_config_path(project_root: Path | None = None) -> Path:
    """Get the path to the project's config.yaml."""
    return get_memory_dir(project_root) / CONFIG_FILENAME


def load_config(project_root: Path | None = None, strict: bool = False) -> MemoryConfig:
    """Load the project's configuration.

    Args:
        project_root: Optional project root (auto-detected if None)
        strict: Raise on any problem instead of falling back to defaults

    Returns:
        Validated configuration

    Raises:
        ConfigValidationError: Only when strict is True and the file is invalid
    """
    path = get_config_path(project_root)
    if not path.exists():
        return MemoryConfig()

    try:
        config_dict = _merge_config_dict(MemoryConfig().to_dict(), _load_yaml_config(path))
        config = _dict_to_config(config_dict)
        config.validate()
        return config
    except (ConfigValidationError, TypeError) as e:
        if strict:
            if isinstance(e, ConfigValidationError):
                raise
            raise ConfigValidationError(f"Invalid configuration in {path}: {e}") from e
        logger.warning(f"Invalid configuration in {path}, using defaults: {e}")
        return MemoryConfig()


def save_config(config: MemoryConfig, project_root: Path | None = None) -> Path:
    """Validate and write configuration atomically.

    Returns:
        Path of the written file
    """
    config.validate()
    path = get_config_path(project_root)
    save_yaml(path, config.to_dict())
    return path
