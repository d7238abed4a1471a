"""Durable checkpoint storage keyed by thread id.

Every backend is append-only: a checkpoint, once written, is never changed.
Checkpoint ids are zero-padded nanosecond timestamps so lexical order is time
order, and each store guarantees they strictly increase per thread.
"""

from __future__ import annotations

import json
import logging
import os
import re
import sqlite3
import threading
import time
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional
from urllib.parse import quote

from manowarAgent.persistence.serialization import (
    decode_state,
    deserialize_state,
    encode_state,
    serialize_state,
)
from manowarAgent.utils.error_handler import CheckpointIOError

LOGGER = logging.getLogger("manowar.persistence")

ID_WIDTH = 20
_ID_RE = re.compile(rf"\d{{{ID_WIDTH}}}")


@dataclass(frozen=True, slots=True)
class CheckpointPointer:
    thread_id: str
    checkpoint_id: str


@dataclass(frozen=True, slots=True)
class Checkpoint:
    thread_id: str
    checkpoint_id: str
    state: Dict[str, Any]
    metadata: Dict[str, Any] = field(default_factory=dict)
    parent_checkpoint_id: Optional[str] = None

    @property
    def pointer(self) -> CheckpointPointer:
        return CheckpointPointer(self.thread_id, self.checkpoint_id)

    def to_record(self) -> Dict[str, Any]:
        """``{config, checkpoint, metadata}`` layout used on disk."""
        return {
            "config": {
                "thread_id": self.thread_id,
                "checkpoint_id": self.checkpoint_id,
                "parent_checkpoint_id": self.parent_checkpoint_id,
            },
            "checkpoint": encode_state(self.state),
            "metadata": dict(self.metadata),
        }

    @classmethod
    def from_record(cls, record: Dict[str, Any]) -> "Checkpoint":
        try:
            config = record["config"]
            return cls(
                thread_id=config["thread_id"],
                checkpoint_id=config["checkpoint_id"],
                state=decode_state(record["checkpoint"]),
                metadata=dict(record.get("metadata") or {}),
                parent_checkpoint_id=config.get("parent_checkpoint_id"),
            )
        except (KeyError, TypeError, ValueError, AttributeError) as e:
            raise CheckpointIOError(f"corrupt checkpoint record: {e!r}") from e


class CheckpointIdClock:
    """Strictly increasing zero-padded nanosecond ids."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._last = 0

    def next_id(self, floor: Optional[str] = None) -> str:
        with self._lock:
            candidate = time.time_ns()
            minimum = max(self._last, int(floor) if floor else 0)
            if candidate <= minimum:
                candidate = minimum + 1
            self._last = candidate
            return f"{candidate:0{ID_WIDTH}d}"


def _utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


class CheckpointStore(ABC):
    """Append-only snapshot store, one namespace per thread id."""

    def __init__(self) -> None:
        self._clock = CheckpointIdClock()

    @abstractmethod
    def put(
        self,
        thread_id: str,
        state: Dict[str, Any],
        metadata: Optional[Dict[str, Any]] = None,
        parent_checkpoint_id: Optional[str] = None,
    ) -> CheckpointPointer:
        """Write a new checkpoint and return a pointer to it."""

    @abstractmethod
    def get(self, thread_id: str, checkpoint_id: Optional[str] = None) -> Optional[Checkpoint]:
        """Return the given checkpoint, or the latest one when no id is given."""

    @abstractmethod
    def list(
        self,
        thread_id: str,
        before: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> Iterator[Checkpoint]:
        """Yield checkpoints in strictly descending id order."""

    @abstractmethod
    def delete_thread(self, thread_id: str) -> None:
        """Remove every checkpoint of a thread."""

    @staticmethod
    def _select_ids(ids: List[str], before: Optional[str], limit: Optional[int]) -> List[str]:
        ordered = sorted(set(ids), reverse=True)
        if before is not None:
            ordered = [cid for cid in ordered if cid < before]
        if limit is not None:
            ordered = ordered[:max(0, limit)]
        return ordered


class InMemoryCheckpointStore(CheckpointStore):
    """Process-scoped store; snapshots are kept serialized so callers can't mutate them."""

    def __init__(self) -> None:
        super().__init__()
        self._lock = threading.Lock()
        self._threads: Dict[str, Dict[str, str]] = {}

    def put(self, thread_id, state, metadata=None, parent_checkpoint_id=None):
        with self._lock:
            entries = self._threads.setdefault(thread_id, {})
            checkpoint_id = self._clock.next_id(max(entries) if entries else None)
            checkpoint = Checkpoint(thread_id, checkpoint_id, state, dict(metadata or {}), parent_checkpoint_id)
            try:
                entries[checkpoint_id] = json.dumps(checkpoint.to_record(), ensure_ascii=False)
            except (TypeError, ValueError) as e:
                raise CheckpointIOError(f"state for thread {thread_id} is not serializable: {e}") from e
            return checkpoint.pointer

    def get(self, thread_id, checkpoint_id=None):
        with self._lock:
            entries = self._threads.get(thread_id) or {}
            if not entries:
                return None
            key = checkpoint_id or max(entries)
            payload = entries.get(key)
        return Checkpoint.from_record(json.loads(payload)) if payload else None

    def list(self, thread_id, before=None, limit=None):
        with self._lock:
            entries = dict(self._threads.get(thread_id) or {})
        for checkpoint_id in self._select_ids(list(entries), before, limit):
            yield Checkpoint.from_record(json.loads(entries[checkpoint_id]))

    def delete_thread(self, thread_id):
        with self._lock:
            self._threads.pop(thread_id, None)


class FileCheckpointStore(CheckpointStore):
    """One directory per thread, one JSON file per checkpoint.

    Files are written to a temporary name and moved into place with
    ``os.replace``, so a checkpoint file either exists complete or not at all.
    """

    SUFFIX = ".json"

    def __init__(self, root: str = "data/checkpoints"):
        super().__init__()
        self.root = Path(root)
        self._lock = threading.Lock()
        try:
            self.root.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise CheckpointIOError(f"cannot create checkpoint directory {self.root}: {e}") from e

    def _thread_dir(self, thread_id: str) -> Path:
        return self.root / quote(thread_id, safe="")

    def _ids(self, thread_id: str) -> List[str]:
        directory = self._thread_dir(thread_id)
        if not directory.is_dir():
            return []
        try:
            return [
                p.name[: -len(self.SUFFIX)]
                for p in directory.iterdir()
                if p.name.endswith(self.SUFFIX) and not p.name.startswith(".")
            ]
        except OSError as e:
            raise CheckpointIOError(f"cannot list checkpoints for thread {thread_id}: {e}") from e

    def _read(self, thread_id: str, checkpoint_id: str) -> Optional[Checkpoint]:
        if not _ID_RE.fullmatch(checkpoint_id):
            LOGGER.warning(f"Ignoring malformed checkpoint id {checkpoint_id!r} for thread {thread_id}")
            return None
        path = self._thread_dir(thread_id) / f"{checkpoint_id}{self.SUFFIX}"
        try:
            with open(path, "r", encoding="utf-8") as f:
                record = json.load(f)
        except FileNotFoundError:
            return None
        except (OSError, ValueError) as e:
            raise CheckpointIOError(f"cannot read checkpoint {checkpoint_id} of thread {thread_id}: {e}") from e
        return Checkpoint.from_record(record)

    def put(self, thread_id, state, metadata=None, parent_checkpoint_id=None):
        directory = self._thread_dir(thread_id)
        with self._lock:
            existing = self._ids(thread_id)
            checkpoint_id = self._clock.next_id(max(existing) if existing else None)
            checkpoint = Checkpoint(thread_id, checkpoint_id, state, dict(metadata or {}), parent_checkpoint_id)
            record = checkpoint.to_record()

            target = directory / f"{checkpoint_id}{self.SUFFIX}"
            temp = directory / f".{checkpoint_id}.{uuid.uuid4().hex}.tmp"
            try:
                directory.mkdir(parents=True, exist_ok=True)
                with open(temp, "w", encoding="utf-8") as f:
                    json.dump(record, f, ensure_ascii=False)
                    f.flush()
                    os.fsync(f.fileno())
                os.replace(temp, target)
            except (OSError, TypeError, ValueError) as e:
                try:
                    temp.unlink()
                except OSError:
                    pass
                raise CheckpointIOError(f"cannot write checkpoint for thread {thread_id}: {e}") from e

        LOGGER.debug(f"Checkpoint {checkpoint_id} written for thread {thread_id}")
        return checkpoint.pointer

    def get(self, thread_id, checkpoint_id=None):
        if checkpoint_id is None:
            ids = self._ids(thread_id)
            if not ids:
                return None
            checkpoint_id = max(ids)
        return self._read(thread_id, checkpoint_id)

    def list(self, thread_id, before=None, limit=None):
        for checkpoint_id in self._select_ids(self._ids(thread_id), before, limit):
            checkpoint = self._read(thread_id, checkpoint_id)
            if checkpoint is not None:
                yield checkpoint

    def delete_thread(self, thread_id):
        directory = self._thread_dir(thread_id)
        if not directory.exists():
            return
        try:
            for path in directory.iterdir():
                path.unlink()
            directory.rmdir()
        except OSError as e:
            raise CheckpointIOError(f"cannot delete thread {thread_id}: {e}") from e


class SqliteCheckpointStore(CheckpointStore):
    """SQLite store, one row per (thread_id, checkpoint_id), insert-only."""

    def __init__(self, db_path: str = "data/checkpoints.db"):
        super().__init__()
        db_dir = os.path.dirname(db_path)
        if db_dir and not os.path.exists(db_dir):
            os.makedirs(db_dir, exist_ok=True)
        self.db_path = db_path
        self._lock = threading.Lock()
        self._init_db()

    def _connect(self) -> sqlite3.Connection:
        try:
            return sqlite3.connect(self.db_path)
        except sqlite3.Error as e:
            raise CheckpointIOError(f"cannot open checkpoint database {self.db_path}: {e}") from e

    def _init_db(self):
        conn = self._connect()
        try:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS checkpoints (
                    thread_id TEXT NOT NULL,
                    checkpoint_id TEXT NOT NULL,
                    parent_checkpoint_id TEXT,
                    state_json TEXT NOT NULL,
                    metadata_json TEXT NOT NULL,
                    created_at TEXT NOT NULL,
                    PRIMARY KEY (thread_id, checkpoint_id)
                )
            """)
            conn.commit()
        except sqlite3.Error as e:
            raise CheckpointIOError(f"cannot initialize checkpoint schema: {e}") from e
        finally:
            conn.close()

    @staticmethod
    def _row_to_checkpoint(row) -> Checkpoint:
        thread_id, checkpoint_id, parent_id, state_json, metadata_json = row
        try:
            metadata = json.loads(metadata_json)
            if not isinstance(metadata, dict):
                raise ValueError("metadata is not an object")
            return Checkpoint(
                thread_id=thread_id,
                checkpoint_id=checkpoint_id,
                state=deserialize_state(state_json),
                metadata=metadata,
                parent_checkpoint_id=parent_id,
            )
        except (KeyError, TypeError, ValueError, AttributeError) as e:
            raise CheckpointIOError(f"corrupt checkpoint {checkpoint_id} of thread {thread_id}: {e!r}") from e

    def put(self, thread_id, state, metadata=None, parent_checkpoint_id=None):
        try:
            state_json = serialize_state(state)
            metadata_json = json.dumps(dict(metadata or {}), ensure_ascii=False)
        except (TypeError, ValueError) as e:
            raise CheckpointIOError(f"state for thread {thread_id} is not serializable: {e}") from e

        with self._lock:
            conn = self._connect()
            try:
                with conn:
                    row = conn.execute(
                        "SELECT MAX(checkpoint_id) FROM checkpoints WHERE thread_id = ?",
                        (thread_id,),
                    ).fetchone()
                    checkpoint_id = self._clock.next_id(row[0] if row else None)
                    conn.execute(
                        """INSERT INTO checkpoints
                           (thread_id, checkpoint_id, parent_checkpoint_id, state_json, metadata_json, created_at)
                           VALUES (?, ?, ?, ?, ?, ?)""",
                        (thread_id, checkpoint_id, parent_checkpoint_id, state_json, metadata_json, _utc_now()),
                    )
            except sqlite3.Error as e:
                raise CheckpointIOError(f"cannot write checkpoint for thread {thread_id}: {e}") from e
            finally:
                conn.close()
        return CheckpointPointer(thread_id, checkpoint_id)

    def get(self, thread_id, checkpoint_id=None):
        conn = self._connect()
        try:
            if checkpoint_id is None:
                cursor = conn.execute(
                    """SELECT thread_id, checkpoint_id, parent_checkpoint_id, state_json, metadata_json
                       FROM checkpoints WHERE thread_id = ?
                       ORDER BY checkpoint_id DESC LIMIT 1""",
                    (thread_id,),
                )
            else:
                cursor = conn.execute(
                    """SELECT thread_id, checkpoint_id, parent_checkpoint_id, state_json, metadata_json
                       FROM checkpoints WHERE thread_id = ? AND checkpoint_id = ?""",
                    (thread_id, checkpoint_id),
                )
            row = cursor.fetchone()
        except sqlite3.Error as e:
            raise CheckpointIOError(f"cannot read checkpoint of thread {thread_id}: {e}") from e
        finally:
            conn.close()
        return self._row_to_checkpoint(row) if row else None

    def list(self, thread_id, before=None, limit=None):
        query = """SELECT thread_id, checkpoint_id, parent_checkpoint_id, state_json, metadata_json
                   FROM checkpoints WHERE thread_id = ?"""
        params: List[Any] = [thread_id]
        if before is not None:
            query += " AND checkpoint_id < ?"
            params.append(before)
        query += " ORDER BY checkpoint_id DESC"
        if limit is not None:
            query += " LIMIT ?"
            params.append(max(0, limit))

        conn = self._connect()
        try:
            rows = conn.execute(query, params).fetchall()
        except sqlite3.Error as e:
            raise CheckpointIOError(f"cannot list checkpoints for thread {thread_id}: {e}") from e
        finally:
            conn.close()
        for row in rows:
            yield self._row_to_checkpoint(row)

    def delete_thread(self, thread_id):
        conn = self._connect()
        try:
            with conn:
                conn.execute("DELETE FROM checkpoints WHERE thread_id = ?", (thread_id,))
        except sqlite3.Error as e:
            raise CheckpointIOError(f"cannot delete thread {thread_id}: {e}") from e
        finally:
            conn.close()


def build_checkpoint_store(settings) -> CheckpointStore:
    """Create the configured backend."""
    persistence = settings.persistence
    backend = persistence.checkpoint_backend
    if backend == "memory":
        return InMemoryCheckpointStore()
    if backend == "sqlite":
        path = persistence.checkpoint_path
        if not path.endswith(".db"):
            path = os.path.join(path, "checkpoints.db")
        return SqliteCheckpointStore(path)
    return FileCheckpointStore(persistence.checkpoint_path)
