"""Observability events emitted by graph steps.

Each step returns the events it produced in the ``events`` state channel;
the run driver hands them to sinks (logger, memory writer) after the step
commits, so the step engine never talks to observers directly.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Any, Dict, Literal

EventKind = Literal[
    "message_added",
    "tool_invoked",
    "memory_wiped",
    "wipe_aborted",
    "step_failed",
    "checkpoint_written",
    "run_completed",
    "run_failed",
    "run_cancelled",
]


@dataclass(frozen=True, slots=True)
class StepEvent:
    """A single observability event."""

    kind: EventKind
    run_id: str
    phase: str
    payload: Dict[str, Any] = field(default_factory=dict)
    timestamp: float = field(default_factory=time.time)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind,
            "run_id": self.run_id,
            "phase": self.phase,
            "payload": dict(self.payload),
            "timestamp": self.timestamp,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "StepEvent":
        return cls(
            kind=data["kind"],
            run_id=data.get("run_id", ""),
            phase=data.get("phase", ""),
            payload=dict(data.get("payload") or {}),
            timestamp=data.get("timestamp", time.time()),
        )


def step_event(kind: EventKind, run_id: str, phase: str, **payload: Any) -> StepEvent:
    return StepEvent(kind=kind, run_id=run_id, phase=phase, payload=payload)
