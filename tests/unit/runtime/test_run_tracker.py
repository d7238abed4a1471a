"""Unit tests for RunTracker.

测试场景：
1. 生命周期 pending → running → success | error | cancelled
2. 终态不可变
3. 查询过滤与统计
4. 每个工作流的记录上限
5. cron 触发器统计
"""

import itertools

import pytest

from manowarAgent.runtime.run_tracker import RunTracker, TriggerInfo
from manowarAgent.utils.error_handler import RunStateError


@pytest.fixture
def tracker():
    ticks = itertools.count(1)
    return RunTracker(max_runs_per_workflow=5, clock=lambda: float(next(ticks)))


class TestLifecycle:
    def test_happy_path(self, tracker):
        run = tracker.create_run("wf-1", {"goal": "g"}, run_id="run-a")
        assert run.status == "pending"
        assert run.triggered_by == TriggerInfo()

        tracker.start_run("run-a")
        done = tracker.complete_run(
            "run-a", {"final_output": "ok"}, token_totals={"total_tokens": 120}, cost_wei=15000
        )

        assert done.status == "success"
        assert done.output == {"final_output": "ok"}
        assert done.token_totals == {"total_tokens": 120}
        assert done.cost_wei == 15000
        assert done.is_terminal
        assert done.duration_seconds == done.ended_at - done.started_at

    def test_fail_and_cancel(self, tracker):
        tracker.create_run("wf-1", run_id="run-a")
        tracker.start_run("run-a")
        failed = tracker.fail_run("run-a", "boom")
        assert failed.status == "error"
        assert failed.error == "boom"

        tracker.create_run("wf-1", run_id="run-b")
        assert tracker.cancel_run("run-b").status == "cancelled"

    @pytest.mark.parametrize("finish", [
        lambda t: t.complete_run("run-a"),
        lambda t: t.fail_run("run-a", "x"),
        lambda t: t.cancel_run("run-a"),
        lambda t: t.start_run("run-a"),
    ])
    def test_terminal_runs_are_immutable(self, tracker, finish):
        tracker.create_run("wf-1", run_id="run-a")
        tracker.start_run("run-a")
        tracker.complete_run("run-a", {"final_output": "ok"})

        with pytest.raises(RunStateError):
            finish(tracker)
        assert tracker.get_run("run-a").status == "success"

    def test_start_requires_pending(self, tracker):
        tracker.create_run("wf-1", run_id="run-a")
        tracker.start_run("run-a")
        with pytest.raises(RunStateError):
            tracker.start_run("run-a")

    def test_unknown_run(self, tracker):
        with pytest.raises(RunStateError):
            tracker.start_run("missing")
        assert tracker.get_run("missing") is None

    def test_duplicate_run_id_rejected(self, tracker):
        tracker.create_run("wf-1", run_id="run-a")
        with pytest.raises(RunStateError):
            tracker.create_run("wf-1", run_id="run-a")

    def test_generated_ids_are_unique(self, tracker):
        ids = {tracker.create_run("wf-1").run_id for _ in range(3)}
        assert len(ids) == 3

    def test_resumed_run_points_at_parent(self, tracker):
        tracker.create_run("wf-1", run_id="run-a", thread_id="t-1")
        resumed = tracker.create_run("wf-1", run_id="run-b", thread_id="t-1", resumed_from="run-a")
        assert resumed.resumed_from == "run-a"
        assert resumed.to_dict()["thread_id"] == "t-1"


class TestQueries:
    def test_list_runs_newest_first_with_filters(self, tracker):
        tracker.create_run("wf-1", run_id="run-1")
        tracker.create_run("wf-1", run_id="run-2", triggered_by=TriggerInfo.cron("nightly"))
        tracker.create_run("wf-2", run_id="run-3")
        tracker.start_run("run-2")
        tracker.complete_run("run-2")

        assert [r.run_id for r in tracker.list_runs()] == ["run-3", "run-2", "run-1"]
        assert [r.run_id for r in tracker.list_runs("wf-1")] == ["run-2", "run-1"]
        assert [r.run_id for r in tracker.list_runs(status="success")] == ["run-2"]
        assert [r.run_id for r in tracker.list_runs(trigger_type="cron")] == ["run-2"]
        assert [r.run_id for r in tracker.list_runs(limit=1)] == ["run-3"]

    def test_time_window(self, tracker):
        first = tracker.create_run("wf-1", run_id="run-1")
        second = tracker.create_run("wf-1", run_id="run-2")
        tracker.create_run("wf-1", run_id="run-3")

        window = tracker.list_runs(since=first.created_at, until=second.created_at)

        assert [r.run_id for r in window] == ["run-2", "run-1"]

    def test_run_stats(self, tracker):
        for run_id, outcome in [("a", "success"), ("b", "success"), ("c", "error"), ("d", None)]:
            tracker.create_run("wf-1", run_id=run_id)
            tracker.start_run(run_id)
            if outcome == "success":
                tracker.complete_run(run_id, token_totals={"total_tokens": 100}, cost_wei=15000)
            elif outcome == "error":
                tracker.fail_run(run_id, "bad", token_totals={"total_tokens": 10}, cost_wei=10000)

        stats = tracker.get_run_stats("wf-1")

        assert stats["total"] == 4
        assert stats["by_status"]["success"] == 2
        assert stats["by_status"]["error"] == 1
        assert stats["by_status"]["running"] == 1
        assert stats["total_tokens"] == 210
        assert stats["total_cost_wei"] == 40000
        assert stats["success_rate"] == pytest.approx(2 / 3)
        assert stats["average_duration_seconds"] == 1.0

    def test_empty_stats(self, tracker):
        stats = tracker.get_run_stats("wf-none")
        assert stats["total"] == 0
        assert stats["success_rate"] is None
        assert stats["average_duration_seconds"] is None

    def test_trigger_stats(self, tracker):
        tracker.create_run("wf-1", run_id="m1")
        tracker.create_run("wf-1", run_id="c1", triggered_by=TriggerInfo.cron("nightly"))
        tracker.cancel_run("c1")

        stats = tracker.trigger_stats()

        assert stats["manual"]["runs"] == 1
        assert stats["manual"]["success_rate"] is None
        assert stats["nightly"]["type"] == "cron"
        assert stats["nightly"]["success_rate"] == 0.0


class TestPruning:
    def test_oldest_finished_runs_are_dropped_per_workflow(self, tracker):
        for i in range(7):
            tracker.create_run("wf-1", run_id=f"run-{i}")
            tracker.complete_run(f"run-{i}")
        tracker.create_run("wf-2", run_id="other")

        remaining = [r.run_id for r in tracker.list_runs("wf-1")]

        assert len(remaining) == 5
        assert "run-0" not in remaining and "run-1" not in remaining
        assert tracker.get_run("run-0") is None
        assert tracker.get_run("other") is not None

    def test_live_runs_are_never_pruned(self):
        tracker = RunTracker(max_runs_per_workflow=1)
        tracker.create_run("wf-1", run_id="first")
        tracker.start_run("first")
        tracker.create_run("wf-1", run_id="second")

        assert tracker.get_run("first").status == "running"
        assert tracker.cancel_run("first").status == "cancelled"
        # once finished, the oldest run makes room for the live one
        assert tracker.get_run("first") is None
        assert tracker.start_run("second").status == "running"

    def test_pruning_catches_up_when_runs_finish(self, tracker):
        for i in range(7):
            tracker.create_run("wf-1", run_id=f"run-{i}")
        assert len(tracker.list_runs("wf-1")) == 7

        for i in range(7):
            tracker.fail_run(f"run-{i}", "boom")

        remaining = [r.run_id for r in tracker.list_runs("wf-1")]
        assert remaining == ["run-6", "run-5", "run-4", "run-3", "run-2"]

    def test_invalid_cap(self):
        with pytest.raises(ValueError):
            RunTracker(max_runs_per_workflow=0)


class TestCron:
    def test_cron_stats(self, tracker):
        tracker.record_cron_execution("nightly", "run-1", True)
        tracker.record_cron_execution("nightly", "run-2", False, "timeout")
        tracker.record_cron_execution("nightly", "run-3", True)

        stats = tracker.cron_stats("nightly")

        assert stats["executions"] == 3
        assert stats["successes"] == 2
        assert stats["failures"] == 1
        assert stats["last_error"] == "timeout"
        assert stats["success_rate"] == pytest.approx(2 / 3)

    def test_history_is_capped(self, tracker):
        for i in range(8):
            tracker.record_cron_execution("nightly", f"run-{i}", True)
        assert tracker.cron_stats("nightly")["executions"] == 5

    def test_unknown_trigger(self, tracker):
        assert tracker.cron_stats("missing")["executions"] == 0
