"""Pytest configuration and shared fixtures for claudememory tests.

This module provides fixtures for:
- Temporary project roots (initialized or bare)
- Repository, queue, registry and inbox objects bound to a project
- Helpers for writing documents with chosen timestamps
"""

from datetime import UTC, datetime, timedelta

import pytest

from claudememory.inbox import Inbox
from claudememory.index_store import IndexStore
from claudememory.instances import InstanceRegistry
from claudememory.memory import MemoryRepository
from claudememory.tasks import TaskQueue


@pytest.fixture(autouse=True)
def isolate_environment(monkeypatch):
    """Keep the developer's environment out of project and identity detection."""
    monkeypatch.delenv("CLAUDE_MEMORY_ROOT", raising=False)
    monkeypatch.delenv("CLAUDE_MEMORY_INSTANCE_ID", raising=False)


@pytest.fixture
def project_root(tmp_path):
    """Create a bare project directory.

    Returns:
        Path: Project root containing only a .git marker
    """
    root = tmp_path / "project"
    root.mkdir()
    (root / ".git").mkdir()
    return root


@pytest.fixture
def repo(project_root):
    """Create an initialized MemoryRepository."""
    repository = MemoryRepository(project_root, instance_id="agent-1")
    repository.init()
    return repository


@pytest.fixture
def index_store(project_root):
    return IndexStore(project_root)


@pytest.fixture
def queue(project_root):
    """TaskQueue acting as the delegating instance."""
    return TaskQueue(project_root, instance_id="requester", machine="test-host")


@pytest.fixture
def worker_queue(project_root):
    """TaskQueue acting as a worker instance on the same project."""
    return TaskQueue(project_root, instance_id="worker", machine="test-host")


@pytest.fixture
def registry(project_root):
    return InstanceRegistry(
        project_root, instance_id="agent-1", capabilities=["coding", "testing"], machine="test-host"
    )


@pytest.fixture
def inbox(project_root):
    return Inbox(project_root)


@pytest.fixture
def iso_ago():
    """Return a function producing ISO timestamps relative to now.

    Example:
        iso_ago(minutes=10) -> timestamp ten minutes in the past
    """
    def _iso_ago(**delta):
        return (datetime.now(UTC) - timedelta(**delta)).isoformat()

    return _iso_ago
