"""Run driver: executes the orchestration graph, checkpoints every step and
keeps the RunTracker record in sync.

Runs are asyncio tasks and may execute concurrently; each run owns its own
TokenLedger (from the shared LedgerBook), ToolBindingManager, curator and
compiled graph. Only the collaborator clients, the model-spec cache, the
checkpoint store and the tracker are shared.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Set

from langchain_core.messages import HumanMessage
from langgraph.errors import GraphRecursionError

from manowarAgent.clients import Collaborators
from manowarAgent.config.settings import Settings, get_settings
from manowarAgent.context.curator import MemoryCurator
from manowarAgent.context.model_specs import ModelSpecCache
from manowarAgent.context.token_ledger import LedgerBook, TokenLedger
from manowarAgent.context.window_monitor import ContextWindowMonitor
from manowarAgent.graph.builder import build_state_graph
from manowarAgent.graph.deps import RunDependencies
from manowarAgent.graph.events import StepEvent, step_event
from manowarAgent.graph.message_utils import last_ai_message, message_text
from manowarAgent.graph.routing import resume_point
from manowarAgent.persistence.checkpoint_store import (
    Checkpoint,
    CheckpointPointer,
    CheckpointStore,
    build_checkpoint_store,
)
from manowarAgent.runtime.events import EventSink, LoggingEventSink, MemoryEventWriter
from manowarAgent.runtime.model_resolver import ModelResolver, build_model_resolver, resolve_coordinator_config
from manowarAgent.runtime.run_tracker import RunTracker, TrackedRun, TriggerInfo
from manowarAgent.tools.bindings import ToolBindingManager
from manowarAgent.tools.workflow import WorkflowDefinition, parse_workflow
from manowarAgent.utils.error_handler import CheckpointIOError, ConfigurationError, ManowarError, RunStateError

LOGGER = logging.getLogger("manowar.orchestrator")

_DONE = object()


class RunCancelled(Exception):
    """Raised inside the driver when the run's cancel flag is observed."""


@dataclass(slots=True)
class RunResult:
    run_id: str
    thread_id: str
    status: str
    state: Dict[str, Any] = field(default_factory=dict)
    error: Optional[str] = None
    last_checkpoint_id: Optional[str] = None
    steps: int = 0
    ledger: Optional[TokenLedger] = None

    @property
    def final_output(self) -> str:
        last = last_ai_message(self.state.get("messages", []))
        return message_text(last) if last is not None else ""


class RunHandle:
    """Handle to a run started with ``Orchestrator.start``.

    ``cancel()`` may be called at any time; the in-flight step is abandoned
    and the run ends ``cancelled``. Awaiting the handle yields the RunResult.
    """

    def __init__(self, run_id: str, thread_id: str, task: "asyncio.Task[RunResult]", cancel_event: asyncio.Event):
        self.run_id = run_id
        self.thread_id = thread_id
        self._task = task
        self._cancel_event = cancel_event

    def cancel(self) -> None:
        self._cancel_event.set()

    @property
    def cancelled(self) -> bool:
        return self._cancel_event.is_set()

    def done(self) -> bool:
        return self._task.done()

    async def result(self) -> RunResult:
        return await asyncio.shield(self._task)

    def __await__(self):
        return self.result().__await__()


def token_totals(ledger: TokenLedger) -> Dict[str, int]:
    totals = ledger.agent_totals().values()
    input_tokens = sum(t.input_tokens for t in totals)
    output_tokens = sum(t.output_tokens for t in totals)
    return {
        "input_tokens": input_tokens,
        "output_tokens": output_tokens,
        "total_tokens": input_tokens + output_tokens,
    }


class Orchestrator:
    """编排引擎入口：启动、恢复、取消 run

    Args:
        settings: application settings (defaults to ``get_settings()``)
        store: checkpoint backend (defaults to the configured one)
        tracker: run record table
        collaborators: HTTP clients for the external services
        model_resolver: ``model_id -> chat model``; built from settings when omitted
        sinks: event sinks receiving every step event
        record_runs_in_memory: also forward completed runs to long-term memory
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        *,
        store: Optional[CheckpointStore] = None,
        tracker: Optional[RunTracker] = None,
        collaborators: Optional[Collaborators] = None,
        model_resolver: Optional[ModelResolver] = None,
        spec_cache: Optional[ModelSpecCache] = None,
        ledgers: Optional[LedgerBook] = None,
        sinks: Optional[Iterable[EventSink]] = None,
        record_runs_in_memory: bool = False,
    ):
        self.settings = settings or get_settings()
        self.store = store or build_checkpoint_store(self.settings)
        self.tracker = tracker or RunTracker(self.settings.persistence.max_runs_per_workflow)
        self.collaborators = collaborators or Collaborators.from_settings(self.settings)
        self.spec_cache = spec_cache or ModelSpecCache.from_settings(self.settings, self.collaborators.model_specs)
        self.ledgers = ledgers or LedgerBook()
        self.sinks: List[EventSink] = list(sinks) if sinks is not None else [LoggingEventSink()]
        self.record_runs_in_memory = record_runs_in_memory
        self._model_resolver = model_resolver
        # the event loop only keeps weak references to tasks
        self._live_tasks: Set[asyncio.Task] = set()

    # ========== Public API ==========

    def start(
        self,
        workflow: WorkflowDefinition,
        goal: str,
        *,
        thread_id: Optional[str] = None,
        trigger_id: Optional[str] = None,
    ) -> RunHandle:
        """Create the run record and schedule the run on the running event loop."""
        run_id = f"run-{uuid.uuid4().hex[:12]}"
        thread_id = thread_id or run_id
        run = self.tracker.create_run(
            workflow.id,
            {"goal": goal},
            run_id=run_id,
            triggered_by=TriggerInfo.cron(trigger_id) if trigger_id else TriggerInfo(),
            thread_id=thread_id,
        )
        initial = self.initial_state(workflow, goal, run_id=run_id, thread_id=thread_id)
        return self._launch(run, workflow, initial)

    async def execute(
        self,
        workflow: WorkflowDefinition,
        goal: str,
        *,
        thread_id: Optional[str] = None,
        trigger_id: Optional[str] = None,
    ) -> RunResult:
        return await self.start(workflow, goal, thread_id=thread_id, trigger_id=trigger_id)

    async def resume(self, thread_id: str, *, checkpoint_id: Optional[str] = None) -> RunHandle:
        """Continue a thread from its latest (or the given) checkpoint as a new run.

        Raises:
            RunStateError: no checkpoint, or the checkpointed run had already ended
            ConfigurationError: the checkpoint carries no usable workflow definition
        """
        checkpoint = await self._store_call(self.store.get, thread_id, checkpoint_id)
        if checkpoint is None:
            raise RunStateError(f"No checkpoint found for thread {thread_id}")

        state = dict(checkpoint.state)
        next_phase = resume_point(state)
        if next_phase is None:
            raise RunStateError(f"Thread {thread_id} already finished at checkpoint {checkpoint.checkpoint_id}")

        workflow_data = checkpoint.metadata.get("workflow")
        if not isinstance(workflow_data, dict):
            raise ConfigurationError(f"Checkpoint {checkpoint.checkpoint_id} has no workflow definition")
        workflow = parse_workflow(workflow_data)

        previous_run_id = state.get("run_id")
        run_id = f"run-{uuid.uuid4().hex[:12]}"
        run = self.tracker.create_run(
            workflow.id,
            {"goal": state.get("active_goal", ""), "checkpoint_id": checkpoint.checkpoint_id},
            run_id=run_id,
            thread_id=thread_id,
            resumed_from=previous_run_id,
        )
        state.update(run_id=run_id, resume_from=next_phase, events=[])
        LOGGER.info(
            f"Resuming thread {thread_id} at {next_phase} "
            f"(checkpoint {checkpoint.checkpoint_id}, previous run {previous_run_id})"
        )
        return self._launch(
            run,
            workflow,
            state,
            ledger_entries=checkpoint.metadata.get("token_ledger") or [],
            parent_checkpoint_id=checkpoint.checkpoint_id,
        )

    async def list_checkpoints(
        self, thread_id: str, *, before: Optional[str] = None, limit: Optional[int] = None
    ) -> List[Checkpoint]:
        return await self._store_call(lambda: list(self.store.list(thread_id, before=before, limit=limit)))

    async def aclose(self) -> None:
        await self.collaborators.aclose()

    # ========== State ==========

    def initial_state(self, workflow: WorkflowDefinition, goal: str, *, run_id: str, thread_id: str) -> Dict[str, Any]:
        governance = self.settings.governance
        threshold = workflow.cleanup_threshold or self.settings.context.cleanup_threshold
        return {
            "run_id": run_id,
            "thread_id": thread_id,
            "workflow_id": workflow.id,
            "active_goal": goal,
            "messages": [HumanMessage(content=goal)],
            "completed_actions": [],
            "context_enhancements": [],
            "multimodal_output": None,
            "token_metrics": {},
            "window_health": {},
            "context_baseline_tokens": 0,
            "cleanup_threshold": threshold,
            "needs_cleanup": False,
            "total_cost_wei": self.settings.pricing.orchestration,
            "last_summary": None,
            "preserved_facts": [],
            "suggested_tools": [],
            "tool_boxer_reasoning": None,
            "phase": "start",
            "round_trips": 0,
            "max_round_trips": workflow.max_round_trips or governance.max_round_trips,
            "coordinator_failures": 0,
            "max_coordinator_retries": governance.max_coordinator_retries,
            "coordinator_failed": False,
            "loop_count": 1,
            "max_loops": workflow.max_loops or governance.max_loops,
            "resume_from": None,
            "last_evaluation": None,
            "suggested_improvements": [],
            "events": [],
            "last_error": None,
        }

    @staticmethod
    def recursion_limit(state: Dict[str, Any]) -> int:
        """Upper bound on graph steps for one run, derived from the loop and round-trip caps."""
        per_loop = 2 * (state.get("max_round_trips", 10) + 1) + 2 * (state.get("max_coordinator_retries", 0) + 1) + 8
        return per_loop * max(state.get("max_loops", 1), 1) + 10

    # ========== Driver ==========

    def _launch(
        self,
        run: TrackedRun,
        workflow: WorkflowDefinition,
        initial: Dict[str, Any],
        *,
        ledger_entries: Optional[List[Dict[str, Any]]] = None,
        parent_checkpoint_id: Optional[str] = None,
    ) -> RunHandle:
        cancel_event = asyncio.Event()
        task = asyncio.get_running_loop().create_task(
            self._run(run, workflow, initial, cancel_event, ledger_entries, parent_checkpoint_id),
            name=f"manowar-{run.run_id}",
        )
        handle = RunHandle(run.run_id, initial["thread_id"], task, cancel_event)
        self._live_tasks.add(task)
        task.add_done_callback(self._live_tasks.discard)
        return handle

    def _dependencies(self, workflow: WorkflowDefinition, ledger: TokenLedger, state: Dict[str, Any]) -> RunDependencies:
        """Per-run wiring; raises ConfigurationError before any step executes."""
        try:
            return self._build_dependencies(workflow, ledger, state)
        except ConfigurationError:
            raise
        except Exception as e:
            raise ConfigurationError(f"Cannot prepare workflow {workflow.id}: {e}") from e

    def _build_dependencies(
        self, workflow: WorkflowDefinition, ledger: TokenLedger, state: Dict[str, Any]
    ) -> RunDependencies:
        config = resolve_coordinator_config(self.settings, workflow.coordinator_model)
        resolver = self._model_resolver or build_model_resolver(config)
        model_id = config["id"]
        if not model_id:
            raise ConfigurationError("Coordinator model id is missing")
        model = resolver(model_id)
        return RunDependencies(
            settings=self.settings,
            workflow=workflow,
            bindings=ToolBindingManager.from_workflow(workflow),
            ledger=ledger,
            collaborators=self.collaborators,
            monitor=ContextWindowMonitor(self.spec_cache, cleanup_threshold=state["cleanup_threshold"]),
            curator=MemoryCurator(
                self.collaborators.inference,
                self.collaborators.memory,
                model=self.settings.models.summarizer,
                timeout_seconds=self.settings.governance.step_timeout_seconds,
            ),
            coordinator_model=model,
            coordinator_model_id=model_id,
        )

    async def _run(
        self,
        run: TrackedRun,
        workflow: WorkflowDefinition,
        initial: Dict[str, Any],
        cancel_event: asyncio.Event,
        ledger_entries: Optional[List[Dict[str, Any]]],
        parent_checkpoint_id: Optional[str],
    ) -> RunResult:
        run_id, thread_id = run.run_id, initial["thread_id"]
        ledger = self.ledgers.ledger_for(run_id)
        if ledger_entries:
            restored = ledger.import_checkpoints(ledger_entries)
            LOGGER.info(f"Restored {restored} ledger entries for run {run_id}")

        sinks = list(self.sinks)
        if self.record_runs_in_memory:
            sinks.append(MemoryEventWriter(self.collaborators.memory, workflow.id))

        result = RunResult(run_id=run_id, thread_id=thread_id, status="running", state=initial, ledger=ledger,
                           last_checkpoint_id=parent_checkpoint_id)
        try:
            deps = self._dependencies(workflow, ledger, initial)
        except ConfigurationError as e:
            LOGGER.error(f"Run {run_id} misconfigured: {e}")
            self.tracker.fail_run(run_id, e.user_message)
            result.status, result.error = "error", e.user_message
            await self._emit(sinks, [step_event("run_failed", run_id, "start", error=e.user_message)])
            self.ledgers.release(run_id)
            return result

        self.tracker.start_run(run_id)
        try:
            await self._drive(build_state_graph(deps), workflow, initial, result, sinks, cancel_event)
        except RunCancelled:
            LOGGER.warning(f"Run {run_id} cancelled after {result.steps} steps")
            result.status = "cancelled"
            self.tracker.cancel_run(
                run_id, token_totals=token_totals(ledger), cost_wei=result.state.get("total_cost_wei", 0)
            )
            await self._emit(sinks, [step_event("run_cancelled", run_id, result.state.get("phase", ""))])
        except asyncio.CancelledError:
            result.status = "cancelled"
            self.tracker.cancel_run(
                run_id, token_totals=token_totals(ledger), cost_wei=result.state.get("total_cost_wei", 0)
            )
            raise
        except (ManowarError, GraphRecursionError) as e:
            message = e.user_message if isinstance(e, ManowarError) else f"Step limit exceeded: {e}"
            LOGGER.error(f"Run {run_id} failed: {message}")
            result.status, result.error = "error", message
            self.tracker.fail_run(
                run_id, message, token_totals=token_totals(ledger), cost_wei=result.state.get("total_cost_wei", 0)
            )
            await self._emit(sinks, [step_event("run_failed", run_id, result.state.get("phase", ""), error=message)])
        except Exception as e:
            LOGGER.exception(f"Run {run_id} crashed", exc_info=e)
            message = f"{type(e).__name__}: {e}"
            result.status, result.error = "error", message
            self.tracker.fail_run(
                run_id, message, token_totals=token_totals(ledger), cost_wei=result.state.get("total_cost_wei", 0)
            )
            await self._emit(sinks, [step_event("run_failed", run_id, result.state.get("phase", ""), error=message)])
        else:
            result.status = "success"
            totals = token_totals(ledger)
            cost = result.state.get("total_cost_wei", 0)
            output = {
                "final_output": result.final_output,
                "last_summary": result.state.get("last_summary"),
                "completed_actions": len(result.state.get("completed_actions") or []),
                "last_evaluation": result.state.get("last_evaluation"),
                "multimodal_output": result.state.get("multimodal_output"),
            }
            self.tracker.complete_run(run_id, output, token_totals=totals, cost_wei=cost)
            await self._emit(sinks, [step_event(
                "run_completed", run_id, result.state.get("phase", ""),
                goal=result.state.get("active_goal", ""),
                final_output=output["final_output"],
                total_tokens=totals["total_tokens"],
                cost_wei=cost,
                steps=result.steps,
            )])
        finally:
            self.ledgers.release(run_id)
        return result

    async def _drive(
        self,
        app,
        workflow: WorkflowDefinition,
        initial: Dict[str, Any],
        result: RunResult,
        sinks: List[EventSink],
        cancel_event: asyncio.Event,
    ) -> None:
        """Stream the graph; checkpoint the committed state after every node."""
        run_id, thread_id = result.run_id, result.thread_id
        workflow_record = workflow.model_dump(mode="json", by_alias=True)
        config = {"recursion_limit": self.recursion_limit(initial)}

        stream = app.astream(initial, config=config, stream_mode=["updates", "values"])
        pending_node: Optional[str] = None
        try:
            while True:
                if cancel_event.is_set():
                    raise RunCancelled()
                chunk = await self._next_chunk(stream, cancel_event)
                if chunk is _DONE:
                    break
                mode, data = chunk
                if mode == "updates":
                    nodes = [name for name in (data or {}) if not name.startswith("__")]
                    if nodes:
                        pending_node = nodes[-1]
                    continue
                if pending_node is None:
                    # input echo before the first step
                    continue

                result.state = data
                result.steps += 1
                pointer = await self._write_checkpoint(
                    thread_id,
                    data,
                    {
                        "run_id": run_id,
                        "workflow_id": workflow.id,
                        "workflow": workflow_record,
                        "node": pending_node,
                        "step": result.steps,
                        "token_ledger": result.ledger.export() if result.ledger else [],
                    },
                    result.last_checkpoint_id,
                )
                result.last_checkpoint_id = pointer.checkpoint_id
                events: List[StepEvent] = list(data.get("events") or [])
                events.append(step_event(
                    "checkpoint_written", run_id, pending_node,
                    checkpoint_id=pointer.checkpoint_id, step=result.steps,
                ))
                await self._emit(sinks, events)
                pending_node = None
        finally:
            await stream.aclose()

    @staticmethod
    async def _next_chunk(stream, cancel_event: asyncio.Event):
        next_task = asyncio.ensure_future(stream.__anext__())
        cancel_task = asyncio.ensure_future(cancel_event.wait())
        try:
            done, _ = await asyncio.wait({next_task, cancel_task}, return_when=asyncio.FIRST_COMPLETED)
        except asyncio.CancelledError:
            next_task.cancel()
            cancel_task.cancel()
            await asyncio.gather(next_task, return_exceptions=True)
            raise

        if cancel_task in done:
            next_task.cancel()
            await asyncio.gather(next_task, return_exceptions=True)
            raise RunCancelled()

        cancel_task.cancel()
        try:
            return next_task.result()
        except StopAsyncIteration:
            return _DONE

    async def _write_checkpoint(
        self,
        thread_id: str,
        state: Dict[str, Any],
        metadata: Dict[str, Any],
        parent_checkpoint_id: Optional[str],
    ) -> CheckpointPointer:
        return await self._store_call(self.store.put, thread_id, state, metadata, parent_checkpoint_id)

    async def _store_call(self, func, *args):
        """Run a blocking store call off the event loop with the checkpoint timeout."""
        timeout = self.settings.governance.checkpoint_timeout_seconds
        try:
            return await asyncio.wait_for(asyncio.to_thread(func, *args), timeout=timeout)
        except asyncio.TimeoutError as e:
            raise CheckpointIOError(f"Checkpoint operation timed out after {timeout}s") from e

    async def _emit(self, sinks: List[EventSink], events: List[StepEvent]) -> None:
        for event in events:
            for sink in sinks:
                try:
                    await sink.emit(event)
                except Exception as e:
                    LOGGER.error(f"Event sink {type(sink).__name__} failed on {event.kind}: {e}")
