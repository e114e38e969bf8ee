"""GoalPilot Report Generator: markdown reports for runs and batches.

Renders a single control-loop RunReport (verdict, task history, evaluation,
failure artifacts, cost) or a batch of scheduler TaskResults.
"""

from __future__ import annotations

import dataclasses
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from goalpilot.engine.control_loop import RunReport
    from goalpilot.engine.cost_tracker import CostSummary
    from goalpilot.engine.scheduler import TaskResult


def _clip(text: str, limit: int = 80) -> str:
    text = " ".join(text.split()).replace("|", "\\|")
    return text if len(text) <= limit else text[: limit - 3] + "..."


class ReportGenerator:
    """Generates markdown reports from run results."""

    def generate(self, report: RunReport, cost: CostSummary | None = None) -> str:
        """Render one run as markdown."""
        sections = [
            self._header(report),
            self._summary(report),
            self._history_table(report),
            self._evaluation_section(report),
            self._artifacts_section(report),
            self._cost_section(cost),
        ]
        return "\n\n".join(s for s in sections if s) + "\n"

    def generate_batch(self, results: list[TaskResult], cost: CostSummary | None = None) -> str:
        """Render a scheduler batch as markdown."""
        succeeded = sum(1 for r in results if r.success)
        timed_out = sum(1 for r in results if r.timed_out)
        verdict = "PASS" if results and succeeded == len(results) else "FAIL"
        lines = [
            "# GoalPilot Batch Report",
            "",
            f"**Verdict:** {verdict}",
            "",
            "## Summary",
            f"- Tasks: {succeeded}/{len(results)} succeeded",
            f"- Timed out: {timed_out}",
            f"- Total duration: {sum(r.duration_seconds for r in results):.1f}s (summed across tasks)",
            "",
            "## Tasks",
            "| Task | Tab | Result | Cycles | Duration | Notes |",
            "|------|-----|--------|--------|----------|-------|",
        ]
        for r in results:
            result_str = "PASS" if r.success else ("TIMEOUT" if r.timed_out else "FAIL")
            cycles = str(r.report.cycles) if r.report else "-"
            notes = r.error or (r.report.summary if r.report else "")
            lines.append(
                f"| {r.task_id} | {r.tab_id or '-'} | {result_str} | {cycles} | "
                f"{r.duration_seconds:.1f}s | {_clip(notes)} |"
            )
        text = "\n".join(lines)
        cost_section = self._cost_section(cost)
        if cost_section:
            text += "\n\n" + cost_section
        return text + "\n"

    # -- Sections ----------------------------------------------------------------

    def _header(self, r: RunReport) -> str:
        verdict = "PASS" if r.success else "FAIL"
        return (
            f"# GoalPilot Report\n"
            f"\n"
            f"**Goal:** {r.instruction}\n"
            f"**Status:** {r.status.value}\n"
            f"**Final URL:** {r.final_url or '-'}\n"
            f"**Verdict:** {verdict}"
        )

    def _summary(self, r: RunReport) -> str:
        text = (
            f"## Summary\n"
            f"- {r.summary}\n"
            f"- Tasks: {r.completed_count} completed, {r.failed_count} failed\n"
            f"- Cycles: {r.cycles}\n"
            f"- Duration: {r.duration_seconds:.1f}s"
        )
        if r.error:
            text += f"\n- Error: {r.error}"
        return text

    def _history_table(self, r: RunReport) -> str:
        if not r.history:
            return "## Task History\n\nNo tasks were executed."
        lines = [
            "## Task History",
            "| # | Action | Description | Result | Notes |",
            "|---|--------|-------------|--------|-------|",
        ]
        for index, task in enumerate(r.history, start=1):
            result_str = "PASS" if task.completed else "FAIL"
            if task.is_recovery:
                result_str += " (recovery)"
            notes = task.error or task.reasoning or ""
            lines.append(
                f"| {index} | {task.kind.value} | {_clip(task.description, 60)} | {result_str} | {_clip(notes)} |"
            )
        return "\n".join(lines)

    def _evaluation_section(self, r: RunReport) -> str:
        ev = r.evaluation
        if ev is None:
            return "## Goal Evaluation\n\nNo evaluation was recorded."
        return (
            f"## Goal Evaluation\n"
            f"- Achieved: {'yes' if ev.achieved else 'no'}\n"
            f"- Confidence: {ev.confidence:.2f}\n"
            f"- Reasoning: {ev.reasoning or '-'}"
        )

    def _artifacts_section(self, r: RunReport) -> str:
        artifacts = [(t.id, t.artifact) for t in r.history if t.artifact]
        if not artifacts:
            return ""
        lines = ["## Failure Screenshots", ""]
        for task_id, path in artifacts:
            lines.append(f"- **{task_id}**: `{path}`")
        return "\n".join(lines)

    def _cost_section(self, cost: CostSummary | None) -> str:
        if cost is None:
            return ""
        cs = dataclasses.asdict(cost)
        lines = [
            "## Cost Breakdown",
            f"- **Total cost:** ${cs['total_cost_usd']:.4f}",
            f"- **Budget limit:** ${cs['budget_limit_usd']:.2f}",
            f"- **Budget remaining:** ${cs['budget_remaining_usd']:.4f}",
            f"- **Oracle calls:** {cs['call_count']}",
        ]
        if cs["calls_by_model"]:
            lines.append("- **By model:**")
            for model, count in cs["calls_by_model"].items():
                lines.append(f"  - {model}: {count} calls, ${cs['cost_by_model'].get(model, 0.0):.4f}")
        return "\n".join(lines)
