"""Checkpoint persistence for orchestration runs."""

from manowarAgent.persistence.checkpoint_store import (
    Checkpoint,
    CheckpointPointer,
    CheckpointStore,
    FileCheckpointStore,
    InMemoryCheckpointStore,
    SqliteCheckpointStore,
    build_checkpoint_store,
)

__all__ = [
    "Checkpoint",
    "CheckpointPointer",
    "CheckpointStore",
    "FileCheckpointStore",
    "InMemoryCheckpointStore",
    "SqliteCheckpointStore",
    "build_checkpoint_store",
]
