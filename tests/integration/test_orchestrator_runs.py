"""
端到端编排测试

The coordinator is a scripted chat model and every collaborator is served by
``httpx.MockTransport``, so these runs exercise the real graph, checkpoint
store and run tracker without network access.
"""

import asyncio
import json

import pytest
from langchain_core.messages import AIMessage, HumanMessage, SystemMessage

from manowarAgent.persistence.checkpoint_store import InMemoryCheckpointStore
from manowarAgent.runtime.orchestrator import Orchestrator
from manowarAgent.runtime.run_tracker import RunTracker
from manowarAgent.tools.workflow import parse_workflow
from manowarAgent.utils.error_handler import CheckpointIOError, RunStateError

from tests.support import VALID_SUMMARY, ScriptedChatModel, final_message, tool_call_message

pytestmark = pytest.mark.integration


class RecordingSink:
    def __init__(self):
        self.events = []

    async def emit(self, event):
        self.events.append(event)

    def kinds(self):
        return [e.kind for e in self.events]


@pytest.fixture
def sink():
    return RecordingSink()


@pytest.fixture
def store():
    return InMemoryCheckpointStore()


@pytest.fixture
def model():
    return ScriptedChatModel()


@pytest.fixture
def orchestrator(settings, store, collaborators, spec_cache, model, sink):
    return Orchestrator(
        settings,
        store=store,
        tracker=RunTracker(),
        collaborators=collaborators,
        spec_cache=spec_cache,
        model_resolver=lambda model_id: model,
        sinks=[sink],
    )


async def _wait_for(predicate, timeout=2.0):
    async def poll():
        while not predicate():
            await asyncio.sleep(0.005)
    await asyncio.wait_for(poll(), timeout)


class TestSimpleRuns:
    @pytest.mark.asyncio
    async def test_final_answer_without_tools(self, orchestrator, store, model, workflow):
        model.script = [final_message("Tidal energy brief: ...")]

        result = await orchestrator.execute(workflow, "Write a brief about tidal energy")

        assert result.status == "success"
        assert result.final_output == "Tidal energy brief: ..."
        assert result.state["total_cost_wei"] == 15000
        assert result.steps == 5

        nodes = [cp.metadata["node"] for cp in reversed(list(store.list(result.thread_id)))]
        assert nodes == ["coordinating", "note-taking", "window-tracking", "tool-boxing", "graph-optimizing"]

        run = orchestrator.tracker.get_run(result.run_id)
        assert run.status == "success"
        assert run.cost_wei == 15000
        assert run.token_totals == {"input_tokens": 200, "output_tokens": 40, "total_tokens": 240}
        assert run.output["final_output"] == "Tidal energy brief: ..."

    @pytest.mark.asyncio
    async def test_coordinator_sees_workflow_tools(self, orchestrator, model, workflow):
        await orchestrator.execute(workflow, "goal")

        names = [t["function"]["name"] for t in model.bound_tools[0]]
        assert "web_search" in names and "delegate_to_writer" in names
        system = model.calls[0][0]
        assert isinstance(system, SystemMessage)
        assert "Research Brief" in system.content
        assert isinstance(model.calls[0][1], HumanMessage)

    @pytest.mark.asyncio
    async def test_tool_round_trip(self, orchestrator, model, services, workflow, sink):
        model.script = [
            tool_call_message(("web_search", {"query": "tidal energy"})),
            final_message("Done with sources."),
        ]

        result = await orchestrator.execute(workflow, "Write a brief about tidal energy")

        assert result.status == "success"
        assert result.state["total_cost_wei"] == 21000
        assert result.state["round_trips"] == 1
        assert len(services.calls_to("/tool/search-tool")) == 1
        # the second coordinator call sees the tool result
        assert model.calls[1][-1].content == "search-tool ok"
        assert "tool_invoked" in sink.kinds()
        assert sink.kinds()[-1] == "run_completed"

    @pytest.mark.asyncio
    async def test_checkpoints_chain_and_carry_metadata(self, orchestrator, store, workflow):
        result = await orchestrator.execute(workflow, "goal", thread_id="thread-chain")

        checkpoints = list(reversed(list(store.list("thread-chain"))))
        assert checkpoints[0].parent_checkpoint_id is None
        for previous, current in zip(checkpoints, checkpoints[1:]):
            assert current.parent_checkpoint_id == previous.checkpoint_id
        assert [cp.metadata["step"] for cp in checkpoints] == list(range(1, 6))
        last = checkpoints[-1]
        assert last.checkpoint_id == result.last_checkpoint_id
        assert last.metadata["run_id"] == result.run_id
        assert last.metadata["workflow"]["id"] == "wf-research"
        assert len(last.metadata["token_ledger"]) == 1
        json.dumps(last.metadata)


class TestGovernance:
    @pytest.mark.asyncio
    async def test_round_trip_cap(self, orchestrator, model, services, workflow):
        capped = workflow.model_copy(update={"max_round_trips": 2})
        model.script = [tool_call_message(("web_search", {"query": f"q{i}"})) for i in range(5)]

        result = await orchestrator.execute(capped, "keep searching")

        assert result.status == "success"
        assert len(model.calls) == 3
        assert len(services.calls_to("/tool/")) == 2
        assert result.state["round_trips"] == 2
        assert result.state["total_cost_wei"] == 10000 + 3 * 5000 + 2 * 1000

    @pytest.mark.asyncio
    async def test_coordinator_failures_are_retried(self, orchestrator, model, workflow):
        model.script = [RuntimeError("upstream 502"), final_message("Recovered.")]

        result = await orchestrator.execute(workflow, "goal")

        assert result.status == "success"
        assert result.final_output == "Recovered."
        assert result.state["coordinator_failures"] == 0
        assert any(
            isinstance(m, SystemMessage) and m.content.startswith("[ERROR]") for m in result.state["messages"]
        )

    @pytest.mark.asyncio
    async def test_retries_are_bounded(self, orchestrator, model, workflow):
        model.script = [RuntimeError("down")] * 3

        result = await orchestrator.execute(workflow, "goal")

        assert result.status == "success"
        assert len(model.calls) == 3
        assert result.state["coordinator_failed"] is True
        assert result.state["last_error"].startswith("RuntimeError")

    @pytest.mark.asyncio
    async def test_missing_api_key_fails_before_any_step(
        self, settings, store, collaborators, spec_cache, workflow, sink
    ):
        no_key = settings.model_copy(update={
            "models": settings.models.model_copy(update={"coordinator_api_key": None}),
        })
        orchestrator = Orchestrator(no_key, store=store, collaborators=collaborators, spec_cache=spec_cache,
                                    sinks=[sink])

        result = await orchestrator.execute(workflow, "goal")

        assert result.status == "error"
        assert "Missing API key" in result.error
        assert list(store.list(result.thread_id)) == []
        assert orchestrator.tracker.get_run(result.run_id).status == "error"
        assert sink.kinds() == ["run_failed"]

    @pytest.mark.asyncio
    async def test_colliding_binding_names_fail_the_run(self, orchestrator, store, workflow, sink):
        clash = workflow.steps[0].model_copy(update={"name": "web-search"})
        # model_copy skips validation, so the clash reaches the orchestrator
        broken = workflow.model_copy(update={"steps": [*workflow.steps, clash]})

        result = await orchestrator.execute(broken, "goal")

        assert result.status == "error"
        assert "web_search" in result.error
        assert orchestrator.tracker.get_run(result.run_id).status == "error"
        assert list(store.list(result.thread_id)) == []
        assert sink.kinds() == ["run_failed"]

    @pytest.mark.asyncio
    async def test_model_construction_failure_fails_the_run(
        self, settings, store, collaborators, spec_cache, workflow, sink
    ):
        def broken_resolver(model_id):
            raise RuntimeError(f"no client for {model_id}")

        orchestrator = Orchestrator(settings, store=store, collaborators=collaborators, spec_cache=spec_cache,
                                    model_resolver=broken_resolver, sinks=[sink])

        result = await orchestrator.execute(workflow, "goal")

        assert result.status == "error"
        assert "no client for" in result.error
        assert orchestrator.tracker.get_run(result.run_id).status == "error"


class FlakyStore(InMemoryCheckpointStore):
    """Fails every write from the ``fail_at``-th one on."""

    def __init__(self, fail_at):
        super().__init__()
        self.fail_at = fail_at
        self.writes = 0

    def put(self, thread_id, state, metadata=None, parent_checkpoint_id=None):
        self.writes += 1
        if self.writes >= self.fail_at:
            raise CheckpointIOError("disk full")
        return super().put(thread_id, state, metadata, parent_checkpoint_id)


class TestCheckpointFailures:
    @pytest.mark.asyncio
    async def test_failed_write_ends_run_in_error(self, settings, collaborators, spec_cache, model, workflow, sink):
        store = FlakyStore(fail_at=3)
        orchestrator = Orchestrator(settings, store=store, tracker=RunTracker(), collaborators=collaborators,
                                    spec_cache=spec_cache, model_resolver=lambda model_id: model, sinks=[sink])

        result = await orchestrator.execute(workflow, "goal", thread_id="thread-flaky")

        assert result.status == "error"
        assert result.error == "disk full"
        assert result.steps == 3
        run = orchestrator.tracker.get_run(result.run_id)
        assert run.status == "error"
        assert run.error == "disk full"
        assert [cp.metadata["node"] for cp in reversed(list(store.list("thread-flaky")))] == [
            "coordinating", "note-taking",
        ]
        assert result.last_checkpoint_id == store.get("thread-flaky").checkpoint_id
        assert sink.kinds()[-1] == "run_failed"
        assert orchestrator.ledgers.run_ids() == []


class TestMemoryWipe:
    @pytest.mark.asyncio
    async def test_wipe_at_eighty_five_percent(self, orchestrator, model, services, workflow, sink):
        # 6800 of an 8000-token effective window
        model.script = [final_message("Long answer.", 6000, 800)]
        services.summaries.append(VALID_SUMMARY)

        result = await orchestrator.execute(workflow, "Write a brief about tidal energy")

        assert result.status == "success"
        messages = result.state["messages"]
        assert len(messages) == 1
        assert isinstance(messages[0], SystemMessage)
        assert messages[0].content.startswith("[CONTEXT REFRESHED]")
        assert result.state["needs_cleanup"] is False
        assert result.state["context_baseline_tokens"] == 6950
        assert result.state["preserved_facts"] == ["source A is authoritative", "outline has 3 sections"]
        assert result.state["total_cost_wei"] == 20000
        assert result.steps == 6
        assert "memory_wiped" in sink.kinds()
        assert services.memories[0]["metadata"]["type"] == "memory_wipe"

    @pytest.mark.asyncio
    async def test_failed_summary_leaves_messages_untouched(self, orchestrator, model, services, workflow, sink):
        model.script = [final_message("Long answer.", 6000, 800)]
        services.summaries.append("not json at all")

        result = await orchestrator.execute(workflow, "goal")

        assert result.status == "success"
        messages = result.state["messages"]
        assert [type(m) for m in messages] == [HumanMessage, AIMessage]
        assert result.state["needs_cleanup"] is True
        assert "wipe_aborted" in sink.kinds()
        assert result.state["total_cost_wei"] == 15000

    @pytest.mark.asyncio
    async def test_summary_reaches_next_loop_coordinator(self, orchestrator, model, services, workflow):
        continuous = workflow.model_copy(update={"max_loops": 2})
        model.script = [final_message("Long answer.", 6000, 800), final_message("Second loop.")]
        services.summaries.append(VALID_SUMMARY)
        services.evaluations.append(json.dumps({"goalScore": 7, "efficiencyScore": 6, "improvements": []}))

        result = await orchestrator.execute(continuous, "goal")

        assert result.status == "success"
        second_system = model.calls[1][0].content
        assert "Researched the topic and drafted an outline." in second_system
        assert "- outline has 3 sections" in second_system


class TestContinuousMode:
    @pytest.mark.asyncio
    async def test_two_loops_with_evaluation(self, orchestrator, model, services, workflow):
        continuous = workflow.model_copy(update={"max_loops": 2})
        services.evaluations.append(json.dumps({
            "goalScore": 8, "efficiencyScore": 6, "improvements": ["cite sources"],
        }))

        result = await orchestrator.execute(continuous, "Write a brief about tidal energy")

        assert result.status == "success"
        assert result.steps == 12
        assert result.state["loop_count"] == 2
        assert result.state["last_evaluation"]["goal_score"] == 8
        assert result.state["context_enhancements"] == ["[Loop 1 Learning #1]: cite sources"]
        assert result.state["total_cost_wei"] == 10000 + 5000 + 5000 + 5000
        assert "cite sources" in model.calls[1][0].content

    @pytest.mark.asyncio
    async def test_evaluator_failure_does_not_stop_the_loop(self, orchestrator, model, workflow):
        continuous = workflow.model_copy(update={"max_loops": 2})

        result = await orchestrator.execute(continuous, "goal")

        assert result.status == "success"
        assert result.state["loop_count"] == 2
        assert result.state["last_evaluation"] is None


class TestConcurrentRuns:
    @pytest.mark.asyncio
    async def test_runs_keep_separate_ledgers(self, orchestrator, store, workflow):
        first, second = await asyncio.gather(
            orchestrator.execute(workflow, "goal A", thread_id="thread-a"),
            orchestrator.execute(workflow, "goal B", thread_id="thread-b"),
        )

        assert first.status == second.status == "success"
        for result in (first, second):
            assert result.state["token_metrics"]["coordinator"]["total_tokens"] == 240
            assert orchestrator.tracker.get_run(result.run_id).token_totals["total_tokens"] == 240
            assert result.state["total_cost_wei"] == 15000
        assert len(list(store.list("thread-a"))) == 5
        assert len(list(store.list("thread-b"))) == 5
        assert store.get("thread-a").state["active_goal"] == "goal A"
        assert orchestrator.ledgers.run_ids() == []


class TestCancelAndResume:
    @pytest.mark.asyncio
    async def test_cancel_mid_run_then_resume(self, orchestrator, store, model, workflow, sink):
        model.script = [tool_call_message(("web_search", {"query": "tidal"})), "block"]

        handle = orchestrator.start(workflow, "Write a brief", thread_id="thread-c")
        await _wait_for(lambda: len(model.calls) == 2)
        handle.cancel()
        cancelled = await handle

        assert cancelled.status == "cancelled"
        assert cancelled.steps == 2
        assert orchestrator.tracker.get_run(handle.run_id).status == "cancelled"
        assert "run_cancelled" in sink.kinds()
        assert store.get("thread-c").metadata["node"] == "executing-tools"

        resumed_handle = await orchestrator.resume("thread-c")
        resumed = await resumed_handle

        assert resumed.status == "success"
        assert resumed.run_id != handle.run_id
        assert resumed.final_output == "All tasks complete."
        assert resumed.state["total_cost_wei"] == 10000 + 5000 + 1000 + 5000
        run = orchestrator.tracker.get_run(resumed.run_id)
        assert run.resumed_from == handle.run_id
        assert run.token_totals["total_tokens"] == 480

        checkpoints = list(reversed(list(store.list("thread-c"))))
        assert len(checkpoints) == 2 + 5
        assert checkpoints[2].parent_checkpoint_id == checkpoints[1].checkpoint_id
        assert checkpoints[2].metadata["run_id"] == resumed.run_id

    @pytest.mark.asyncio
    async def test_resume_unknown_thread(self, orchestrator):
        with pytest.raises(RunStateError):
            await orchestrator.resume("no-such-thread")

    @pytest.mark.asyncio
    async def test_resume_finished_thread(self, orchestrator, workflow):
        result = await orchestrator.execute(workflow, "goal", thread_id="thread-done")
        assert result.status == "success"

        with pytest.raises(RunStateError):
            await orchestrator.resume("thread-done")

    @pytest.mark.asyncio
    async def test_list_checkpoints(self, orchestrator, workflow):
        await orchestrator.execute(workflow, "goal", thread_id="thread-l")

        checkpoints = await orchestrator.list_checkpoints("thread-l", limit=2)

        assert [cp.metadata["node"] for cp in checkpoints] == ["graph-optimizing", "tool-boxing"]


def test_recursion_limit_grows_with_caps():
    small = Orchestrator.recursion_limit({"max_round_trips": 1, "max_coordinator_retries": 0, "max_loops": 1})
    large = Orchestrator.recursion_limit({"max_round_trips": 10, "max_coordinator_retries": 2, "max_loops": 3})
    assert small < large
    assert large == (2 * 11 + 2 * 3 + 8) * 3 + 10


def test_workflow_overrides_win(settings, collaborators, spec_cache):
    orchestrator = Orchestrator(settings, collaborators=collaborators, spec_cache=spec_cache, sinks=[])
    workflow = parse_workflow({"id": "wf", "name": "n", "cleanup_threshold": 60, "max_round_trips": 3})

    state = orchestrator.initial_state(workflow, "goal", run_id="run-x", thread_id="t")

    assert state["cleanup_threshold"] == 60
    assert state["max_round_trips"] == 3
    assert state["max_loops"] == 1
    assert state["total_cost_wei"] == 10000
