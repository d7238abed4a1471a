"""In-process run lifecycle tracking.

pending → running → success | error | cancelled

Terminal runs are immutable: any further transition raises RunStateError.
Each workflow keeps at most ``max_runs_per_workflow`` records, oldest first out.
"""

from __future__ import annotations

import logging
import threading
import time
import uuid
from dataclasses import asdict, dataclass, field, replace
from typing import Any, Dict, List, Literal, Optional

from manowarAgent.utils.error_handler import RunStateError

LOGGER = logging.getLogger("manowar.runs")

RunStatus = Literal["pending", "running", "success", "error", "cancelled"]
TriggerType = Literal["manual", "cron"]

TERMINAL_STATUSES = frozenset({"success", "error", "cancelled"})


@dataclass(frozen=True, slots=True)
class TriggerInfo:
    type: TriggerType = "manual"
    trigger_id: Optional[str] = None

    @classmethod
    def cron(cls, trigger_id: str) -> "TriggerInfo":
        return cls(type="cron", trigger_id=trigger_id)


@dataclass(frozen=True, slots=True)
class TrackedRun:
    run_id: str
    workflow_id: str
    status: RunStatus
    created_at: float
    input: Dict[str, Any] = field(default_factory=dict)
    triggered_by: TriggerInfo = field(default_factory=TriggerInfo)
    thread_id: Optional[str] = None
    resumed_from: Optional[str] = None
    started_at: Optional[float] = None
    ended_at: Optional[float] = None
    output: Optional[Dict[str, Any]] = None
    error: Optional[str] = None
    token_totals: Dict[str, int] = field(default_factory=dict)
    cost_wei: int = 0

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @property
    def duration_seconds(self) -> Optional[float]:
        if self.started_at is None or self.ended_at is None:
            return None
        return self.ended_at - self.started_at

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["duration_seconds"] = self.duration_seconds
        return data


@dataclass(slots=True)
class CronExecution:
    trigger_id: str
    run_id: str
    executed_at: float
    success: bool
    error: Optional[str] = None


class RunTracker:
    """线程安全的运行记录表"""

    def __init__(self, max_runs_per_workflow: int = 100, *, clock=time.time):
        if max_runs_per_workflow < 1:
            raise ValueError("max_runs_per_workflow must be at least 1")
        self.max_runs_per_workflow = max_runs_per_workflow
        self._clock = clock
        self._lock = threading.Lock()
        self._runs: Dict[str, TrackedRun] = {}
        self._by_workflow: Dict[str, List[str]] = {}
        self._cron: Dict[str, List[CronExecution]] = {}

    # ========== Lifecycle ==========

    def create_run(
        self,
        workflow_id: str,
        input: Optional[Dict[str, Any]] = None,
        *,
        run_id: Optional[str] = None,
        triggered_by: Optional[TriggerInfo] = None,
        thread_id: Optional[str] = None,
        resumed_from: Optional[str] = None,
    ) -> TrackedRun:
        run = TrackedRun(
            run_id=run_id or f"run-{uuid.uuid4().hex[:12]}",
            workflow_id=workflow_id,
            status="pending",
            created_at=self._clock(),
            input=dict(input or {}),
            triggered_by=triggered_by or TriggerInfo(),
            thread_id=thread_id,
            resumed_from=resumed_from,
        )
        with self._lock:
            if run.run_id in self._runs:
                raise RunStateError(f"Run {run.run_id} already exists")
            self._runs[run.run_id] = run
            order = self._by_workflow.setdefault(workflow_id, [])
            order.append(run.run_id)
            self._prune(order)
        LOGGER.info(f"Run {run.run_id} created for workflow {workflow_id} ({run.triggered_by.type})")
        return run

    def start_run(self, run_id: str) -> TrackedRun:
        return self._transition(run_id, "running", allowed_from=("pending",), started_at=self._clock())

    def complete_run(
        self,
        run_id: str,
        output: Optional[Dict[str, Any]] = None,
        *,
        token_totals: Optional[Dict[str, int]] = None,
        cost_wei: int = 0,
    ) -> TrackedRun:
        return self._finish(run_id, "success", output=output, token_totals=token_totals, cost_wei=cost_wei)

    def fail_run(
        self,
        run_id: str,
        error: str,
        *,
        token_totals: Optional[Dict[str, int]] = None,
        cost_wei: int = 0,
    ) -> TrackedRun:
        return self._finish(run_id, "error", error=error, token_totals=token_totals, cost_wei=cost_wei)

    def cancel_run(
        self,
        run_id: str,
        *,
        token_totals: Optional[Dict[str, int]] = None,
        cost_wei: int = 0,
    ) -> TrackedRun:
        return self._finish(run_id, "cancelled", token_totals=token_totals, cost_wei=cost_wei)

    def _finish(self, run_id: str, status: RunStatus, **fields: Any) -> TrackedRun:
        fields["token_totals"] = dict(fields.get("token_totals") or {})
        return self._transition(
            run_id, status, allowed_from=("pending", "running"), ended_at=self._clock(), **fields
        )

    def _transition(self, run_id: str, status: RunStatus, *, allowed_from, **fields: Any) -> TrackedRun:
        with self._lock:
            run = self._runs.get(run_id)
            if run is None:
                raise RunStateError(f"Unknown run: {run_id}")
            if run.status not in allowed_from:
                raise RunStateError(f"Run {run_id} cannot move from {run.status} to {status}")
            updated = replace(run, status=status, **fields)
            self._runs[run_id] = updated
            if updated.is_terminal:
                self._prune(self._by_workflow.get(run.workflow_id, []))
        LOGGER.info(f"Run {run_id}: {run.status} → {status}")
        return updated

    def _prune(self, order: List[str]) -> None:
        """Drop the oldest finished runs above the cap; live runs are never dropped."""
        excess = len(order) - self.max_runs_per_workflow
        if excess <= 0:
            return
        for run_id in list(order):
            if excess == 0:
                break
            run = self._runs.get(run_id)
            if run is not None and not run.is_terminal:
                continue
            order.remove(run_id)
            self._runs.pop(run_id, None)
            excess -= 1
            LOGGER.debug(f"Pruned run {run_id}")

    # ========== Queries ==========

    def get_run(self, run_id: str) -> Optional[TrackedRun]:
        with self._lock:
            return self._runs.get(run_id)

    def list_runs(
        self,
        workflow_id: Optional[str] = None,
        *,
        status: Optional[RunStatus] = None,
        trigger_type: Optional[TriggerType] = None,
        since: Optional[float] = None,
        until: Optional[float] = None,
        limit: Optional[int] = None,
    ) -> List[TrackedRun]:
        """Runs matching every given filter, newest first."""
        with self._lock:
            runs = list(self._runs.values())

        selected = [
            run for run in runs
            if (workflow_id is None or run.workflow_id == workflow_id)
            and (status is None or run.status == status)
            and (trigger_type is None or run.triggered_by.type == trigger_type)
            and (since is None or run.created_at >= since)
            and (until is None or run.created_at <= until)
        ]
        selected.sort(key=lambda run: run.created_at, reverse=True)
        if limit is not None:
            selected = selected[:max(limit, 0)]
        return selected

    def get_run_stats(self, workflow_id: Optional[str] = None) -> Dict[str, Any]:
        runs = self.list_runs(workflow_id)
        by_status = {status: 0 for status in ("pending", "running", "success", "error", "cancelled")}
        for run in runs:
            by_status[run.status] += 1

        durations = [run.duration_seconds for run in runs if run.duration_seconds is not None]
        finished = sum(by_status[s] for s in TERMINAL_STATUSES)
        return {
            "total": len(runs),
            "by_status": by_status,
            "average_duration_seconds": sum(durations) / len(durations) if durations else None,
            "total_tokens": sum(run.token_totals.get("total_tokens", 0) for run in runs),
            "total_cost_wei": sum(run.cost_wei for run in runs),
            "success_rate": by_status["success"] / finished if finished else None,
        }

    def trigger_stats(self) -> Dict[str, Dict[str, Any]]:
        """Per-trigger run counts and success rate; manual runs are grouped under ``manual``."""
        stats: Dict[str, Dict[str, Any]] = {}
        for run in self.list_runs():
            key = run.triggered_by.trigger_id if run.triggered_by.type == "cron" else "manual"
            entry = stats.setdefault(key, {"type": run.triggered_by.type, "runs": 0, "success": 0, "finished": 0})
            entry["runs"] += 1
            if run.is_terminal:
                entry["finished"] += 1
            if run.status == "success":
                entry["success"] += 1
        for entry in stats.values():
            entry["success_rate"] = entry["success"] / entry["finished"] if entry["finished"] else None
        return stats

    # ========== Cron bookkeeping ==========

    def record_cron_execution(self, trigger_id: str, run_id: str, success: bool, error: Optional[str] = None) -> None:
        execution = CronExecution(trigger_id, run_id, self._clock(), success, error)
        with self._lock:
            history = self._cron.setdefault(trigger_id, [])
            history.append(execution)
            del history[:-self.max_runs_per_workflow]

    def cron_stats(self, trigger_id: str) -> Dict[str, Any]:
        with self._lock:
            history = list(self._cron.get(trigger_id, []))
        successes = sum(1 for e in history if e.success)
        last = history[-1] if history else None
        return {
            "trigger_id": trigger_id,
            "executions": len(history),
            "successes": successes,
            "failures": len(history) - successes,
            "success_rate": successes / len(history) if history else None,
            "last_executed_at": last.executed_at if last else None,
            "last_error": next((e.error for e in reversed(history) if not e.success), None),
        }
