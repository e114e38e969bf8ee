"""Unit tests for goalpilot.engine.scheduler: bounded concurrent goals."""

from __future__ import annotations

import asyncio

import pytest

from conftest import make_report
from goalpilot.engine.scheduler import ConcurrencyScheduler, ScheduledTask
from goalpilot.engine.tab_manager import TabManager


class RecordingRunner:
    """GoalRunner double that tracks order and overlap of goal runs."""

    def __init__(self, delay: float = 0.01, fail_on: set[str] | None = None) -> None:
        self.delay = delay
        self.fail_on = fail_on or set()
        self.started: list[str] = []
        self.pages: dict[str, object] = {}
        self.running = 0
        self.max_running = 0
        self.cancelled: list[str] = []

    async def __call__(self, page, task: ScheduledTask):
        self.started.append(task.id)
        self.pages[task.id] = page
        self.running += 1
        self.max_running = max(self.max_running, self.running)
        try:
            await asyncio.sleep(self.delay)
        except asyncio.CancelledError:
            self.cancelled.append(task.id)
            raise
        finally:
            self.running -= 1
        if task.id in self.fail_on:
            raise RuntimeError(f"loop for {task.id} crashed")
        return make_report(task.instruction, success=not task.id.startswith("lose"))


def _tasks(*ids: str, **priorities: int) -> list[ScheduledTask]:
    return [ScheduledTask(id=i, instruction=f"goal {i}", priority=priorities.get(i, 0)) for i in ids]


# ---------------------------------------------------------------------------
# 1. ScheduledTask parsing
# ---------------------------------------------------------------------------

class TestScheduledTask:

    def test_from_dict(self):
        task = ScheduledTask.from_dict({"id": "buy", "instruction": " Buy socks ", "priority": 2, "timeout": 30}, 0)
        assert task == ScheduledTask(id="buy", instruction="Buy socks", priority=2, tab_id=None, timeout=30.0)

    def test_default_id_uses_position(self):
        assert ScheduledTask.from_dict({"instruction": "x"}, 4).id == "task-5"

    def test_instruction_required(self):
        with pytest.raises(ValueError, match="instruction"):
            ScheduledTask.from_dict({"id": "x"}, 0)


# ---------------------------------------------------------------------------
# 2. Ordering and concurrency
# ---------------------------------------------------------------------------

class TestScheduling:

    @pytest.mark.asyncio
    async def test_dispatch_in_priority_order_stable_for_ties(self, fake_context):
        runner = RecordingRunner(delay=0)
        scheduler = ConcurrencyScheduler(TabManager(fake_context), runner, max_concurrent_tasks=1)
        tasks = _tasks("low", "high", "mid-a", "mid-b", high=5, **{"mid-a": 1, "mid-b": 1})
        results = await scheduler.run_all(tasks)
        assert runner.started == ["high", "mid-a", "mid-b", "low"]
        assert [r.task_id for r in results] == ["high", "mid-a", "mid-b", "low"]

    @pytest.mark.asyncio
    async def test_five_tasks_two_at_a_time(self, fake_context):
        runner = RecordingRunner(delay=0.02)
        tabs = TabManager(fake_context, max_tabs=10)
        scheduler = ConcurrencyScheduler(tabs, runner, max_concurrent_tasks=2)
        results = await scheduler.run_all(_tasks("t1", "t2", "t3", "t4", "t5"))

        assert runner.max_running <= 2
        assert fake_context.max_open <= 2
        assert sorted(r.task_id for r in results) == ["t1", "t2", "t3", "t4", "t5"]
        assert all(r.success for r in results)
        assert len(tabs) == 0
        assert fake_context.pages == []
        assert scheduler.active_count == 0

    @pytest.mark.asyncio
    async def test_each_task_gets_its_own_tab(self, fake_context):
        runner = RecordingRunner(delay=0.01)
        scheduler = ConcurrencyScheduler(TabManager(fake_context), runner, max_concurrent_tasks=3)
        results = await scheduler.run_all(_tasks("a", "b", "c"))
        assert len({r.tab_id for r in results}) == 3
        assert len({id(p) for p in runner.pages.values()}) == 3

    @pytest.mark.asyncio
    async def test_unsuccessful_report_is_a_failed_result(self, fake_context):
        scheduler = ConcurrencyScheduler(TabManager(fake_context), RecordingRunner(delay=0))
        [result] = await scheduler.run_all(_tasks("lose-1"))
        assert result.success is False
        assert result.report is not None
        assert result.error == "gave up"

    def test_rejects_zero_concurrency(self, fake_context):
        with pytest.raises(ValueError):
            ConcurrencyScheduler(TabManager(fake_context), RecordingRunner(), max_concurrent_tasks=0)


# ---------------------------------------------------------------------------
# 3. Failure isolation and timeouts
# ---------------------------------------------------------------------------

class TestIsolation:

    @pytest.mark.asyncio
    async def test_crash_is_isolated(self, fake_context):
        runner = RecordingRunner(delay=0, fail_on={"b"})
        scheduler = ConcurrencyScheduler(TabManager(fake_context), runner, max_concurrent_tasks=3)
        results = {r.task_id: r for r in await scheduler.run_all(_tasks("a", "b", "c"))}
        assert results["a"].success and results["c"].success
        assert results["b"].success is False
        assert results["b"].error == "RuntimeError: loop for b crashed"
        assert fake_context.pages == []

    @pytest.mark.asyncio
    async def test_timeout_reports_and_cleans_up(self, fake_context):
        runner = RecordingRunner(delay=5.0)
        tabs = TabManager(fake_context)
        scheduler = ConcurrencyScheduler(tabs, runner, max_concurrent_tasks=2, default_timeout=0.05)
        [result] = await scheduler.run_all(_tasks("slow"))

        assert result.success is False
        assert result.timed_out is True
        assert result.error == "Task timeout after 0.05s"
        assert result.duration_seconds < 5.0

        await scheduler.drain()
        assert runner.cancelled == ["slow"]
        assert len(tabs) == 0
        assert scheduler.active_count == 0

    @pytest.mark.asyncio
    async def test_per_task_timeout_overrides_default(self, fake_context):
        runner = RecordingRunner(delay=0.05)
        scheduler = ConcurrencyScheduler(TabManager(fake_context), runner, default_timeout=0.01)
        task = ScheduledTask(id="patient", instruction="x", timeout=2.0)
        [result] = await scheduler.run_all([task])
        assert result.success is True

    @pytest.mark.asyncio
    async def test_timed_out_task_holds_its_slot_until_cleanup(self, fake_context):
        runner = RecordingRunner(delay=5.0)
        scheduler = ConcurrencyScheduler(TabManager(fake_context), runner, max_concurrent_tasks=1, default_timeout=0.02)
        results = await scheduler.run_all(_tasks("a", "b"))
        await scheduler.drain()
        assert [r.timed_out for r in results] == [True, True]
        assert runner.max_running == 1


# ---------------------------------------------------------------------------
# 4. Tab reuse
# ---------------------------------------------------------------------------

class TestTabReuse:

    @pytest.mark.asyncio
    async def test_named_tab_is_reused_and_left_open(self, fake_context):
        tabs = TabManager(fake_context)
        existing = await tabs.create_tab()
        runner = RecordingRunner(delay=0)
        scheduler = ConcurrencyScheduler(tabs, runner)
        task = ScheduledTask(id="reuse", instruction="x", tab_id=existing)
        [result] = await scheduler.run_all([task])
        assert result.success is True
        assert result.tab_id == existing
        assert runner.pages["reuse"] is tabs.get_page(existing)
        assert existing in tabs

    @pytest.mark.asyncio
    async def test_unknown_tab_fails_only_that_task(self, fake_context):
        runner = RecordingRunner(delay=0)
        scheduler = ConcurrencyScheduler(TabManager(fake_context), runner)
        tasks = [ScheduledTask(id="ghost", instruction="x", tab_id="tab_404_0"), *_tasks("real")]
        results = {r.task_id: r for r in await scheduler.run_all(tasks)}
        assert results["ghost"].success is False
        assert results["ghost"].error.startswith("TabError")
        assert results["real"].success is True
        assert runner.started == ["real"]
