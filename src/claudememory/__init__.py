"""Claude Memory - shared memory and task delegation for concurrent agents.

This package lets independent agent processes working on the same project
coordinate through nothing but the filesystem:
- A durable, multiply-indexed memory store (decisions, facts, events...)
- A task delegation queue with an atomic claim/start/complete state machine
- An instance presence registry with heartbeats and capability matching
- A one-file-per-message inbox for point-to-point messages

Persisted state lives in two trees under the project root:
``.claude-memory/`` (version controlled) and ``.claude-memory-runtime/``
(git ignored).
"""

__version__ = "0.1.0"

__all__ = [
    "__version__",
    "coordinator",
    "models",
    "memory",
    "index_store",
    "tasks",
    "instances",
    "inbox",
    "config",
    "cli",
    "file_lock",
    "logging_config",
    "project",
    "utils",
    "validators",
]
