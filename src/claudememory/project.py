"""Project root detection and storage layout for Claude Memory.

Priority order for the project root:
1. Explicit project_root parameter (if provided)
2. CLAUDE_MEMORY_ROOT environment variable
3. Auto-detect by searching upward for marker files
4. Current working directory (fallback)

Layout below the project root::

    .claude-memory/              version controlled
        README.md config.yaml index.json timeline.json
        memories/ completed/ archive/
    .claude-memory-runtime/      git ignored
        instances/activity.yaml
        inbox/ tasks/pending/ tasks/in_progress/ tasks/cancelled/
        failed/ artifacts/ locks/
"""

import os
from pathlib import Path
from typing import Optional

from .logging_config import get_logger

__all__ = [
    "MEMORY_DIR_NAME",
    "RUNTIME_DIR_NAME",
    "ROOT_ENV_VAR",
    "find_project_root",
    "get_project_root",
    "get_memory_dir",
    "get_runtime_dir",
    "get_locks_dir",
    "ensure_gitignore_entry",
]

MEMORY_DIR_NAME = ".claude-memory"
RUNTIME_DIR_NAME = ".claude-memory-runtime"
ROOT_ENV_VAR = "CLAUDE_MEMORY_ROOT"

# Marker files that indicate a project root
PROJECT_MARKERS = [
    MEMORY_DIR_NAME,
    RUNTIME_DIR_NAME,
    ".git",
    "pyproject.toml",
    "package.json",
]

logger = get_logger(__name__)


def find_project_root(start_path: Optional[Path] = None, max_depth: int = 10) -> Optional[Path]:
    """Find project root by searching upward for marker files.

    Args:
        start_path: Directory to start searching from (default: cwd)
        max_depth: Maximum number of parent directories to check

    Returns:
        Path to project root if found, None otherwise
    """
    current = (start_path or Path.cwd()).resolve()

    for _ in range(max_depth):
        for marker in PROJECT_MARKERS:
            if (current / marker).exists():
                return current

        parent = current.parent
        if parent == current:  # Reached root of filesystem
            break
        current = parent

    return None


def get_project_root(project_root: Optional[Path] = None) -> Path:
    """Get the project root directory with smart detection.

    Args:
        project_root: Optional explicit project root path

    Returns:
        Absolute path to the project root directory
    """
    if project_root is not None:
        return Path(project_root).resolve()

    env_root = os.getenv(ROOT_ENV_VAR)
    if env_root:
        return Path(env_root).resolve()

    detected_root = find_project_root()
    if detected_root is not None:
        return detected_root

    return Path.cwd().resolve()


def get_memory_dir(project_root: Optional[Path] = None) -> Path:
    """Get the version-controlled ``.claude-memory`` directory."""
    return get_project_root(project_root) / MEMORY_DIR_NAME


def get_runtime_dir(project_root: Optional[Path] = None) -> Path:
    """Get the git-ignored ``.claude-memory-runtime`` directory."""
    return get_project_root(project_root) / RUNTIME_DIR_NAME


def get_locks_dir(project_root: Optional[Path] = None) -> Path:
    """Get the directory holding advisory lock files."""
    return get_runtime_dir(project_root) / "locks"


def ensure_gitignore_entry(project_root: Optional[Path] = None) -> bool:
    """Add the runtime directory to the project's .gitignore once.

    Args:
        project_root: Optional project root path

    Returns:
        True if the entry was added, False if it was already present
    """
    gitignore = get_project_root(project_root) / ".gitignore"
    entry = f"{RUNTIME_DIR_NAME}/"

    existing = ""
    if gitignore.exists():
        existing = gitignore.read_text(encoding="utf-8")
        lines = {line.strip() for line in existing.splitlines()}
        if entry in lines or RUNTIME_DIR_NAME in lines:
            return False

    with open(gitignore, "a", encoding="utf-8") as f:
        if existing and not existing.endswith("\n"):
            f.write("\n")
        f.write(f"\n# Claude Memory runtime state (local only)\n{entry}\n")

    logger.info(f"Added {entry} to {gitignore}")
    return True
