"""Unit tests for whole-day workout pruning."""

import pytest

from coachforce.core.domain.errors import PruningInvariantError
from coachforce.core.tools.job_context import JobContext
from coachforce.program.models import Phase, PhaseResult, WorkoutTemplate
from coachforce.program.pruning import phase_memo_key, prune_days, prune_excess_workouts


def template(day, phase_id="p1", suffix=""):
    return WorkoutTemplate(
        template_id=f"{phase_id}_d{day}{suffix}", day_number=day, name=f"Day {day}", phase_id=phase_id
    )


def store_phase(context, phase_id, start, end, days):
    phase = Phase(phase_id=phase_id, name=f"Phase {phase_id}", start_day=start, end_day=end)
    context.set_tool_result(
        phase_memo_key(phase_id),
        PhaseResult(phase=phase, workout_templates=[template(d, phase_id) for d in days]),
    )


class TestPruneDays:
    def test_counts_add_up(self):
        templates = [template(1), template(1, suffix="b"), template(2), template(3)]

        outcome = prune_days(templates, [1])

        assert outcome.removed_count == 2
        assert outcome.kept_count == 2
        assert outcome.original_valid_count == 4
        assert outcome.days_removed == [1]

    def test_zero_days_keeps_everything(self):
        templates = [template(1), template(2)]

        outcome = prune_days(templates, [])

        assert outcome.removed_count == 0
        assert outcome.kept_count == 2

    def test_templates_without_phase_are_not_counted(self):
        orphan = WorkoutTemplate(template_id="x", day_number=5, name="Orphan")

        outcome = prune_days([template(1), orphan], [5])

        assert outcome.original_valid_count == 1
        assert outcome.invalid_count == 1
        assert outcome.kept_count == 1
        assert outcome.removed_count == 0
        assert any("Selected days with no workouts" in w for w in outcome.warnings)


class TestPruneExcessWorkouts:
    @pytest.mark.asyncio
    async def test_prunes_and_replaces_memo(self, generation):
        context = JobContext(job_id="j")
        store_phase(context, "p1", 1, 7, [1, 2, 3, 4, 5])
        store_phase(context, "p2", 8, 14, [8, 9, 10, 11, 12])
        model = generation.model(days_to_remove=[4, 5, 11, 12])

        result = await prune_excess_workouts(model, context, ["p1", "p2"], 10, 6)

        assert result["removedCount"] == 4
        assert result["keptCount"] == 6
        assert result["originalCount"] == 10
        assert result["removedCount"] + result["keptCount"] == result["originalCount"]
        assert result["daysRemoved"] == [4, 5, 11, 12]
        p1 = context.get_tool_result(phase_memo_key("p1"))
        assert [t.day_number for t in p1.workout_templates] == [1, 2, 3]
        assert p1.debug_trace["pruned"] is True
        assert result["phaseUpdates"] == [
            {"phaseId": "p1", "before": 5, "after": 3},
            {"phaseId": "p2", "before": 5, "after": 3},
        ]

    @pytest.mark.asyncio
    async def test_zero_days_selected_is_soft_failure(self, generation):
        context = JobContext(job_id="j")
        store_phase(context, "p1", 1, 7, [1, 2, 3, 4, 5, 6])
        model = generation.model(days_to_remove=[])

        result = await prune_excess_workouts(model, context, ["p1"], 6, 3)

        assert result["removedCount"] == 0
        assert result["keptCount"] == 6
        assert "error" not in result

    @pytest.mark.asyncio
    async def test_missing_phase_results_are_skipped(self, generation):
        context = JobContext(job_id="j")
        store_phase(context, "p1", 1, 7, [1, 2, 3])
        model = generation.model(days_to_remove=[3])

        result = await prune_excess_workouts(model, context, ["p1", "p_missing"], 3, 2)

        assert result["removedCount"] == 1
        assert [u["phaseId"] for u in result["phaseUpdates"]] == ["p1"]

    @pytest.mark.asyncio
    async def test_nothing_stored_returns_error_payload(self, generation):
        result = await prune_excess_workouts(generation.model(), JobContext(job_id="j"), ["p1"], 10, 5)

        assert result["error"]
        assert result["removedCount"] == 0

    @pytest.mark.asyncio
    async def test_template_tagged_with_foreign_phase_fails_before_write_back(self, generation):
        context = JobContext(job_id="j")
        store_phase(context, "p1", 1, 7, [1, 2, 3])
        stored = context.get_tool_result(phase_memo_key("p1"))
        mislabeled = stored.model_copy(
            update={"workout_templates": stored.workout_templates + [template(4, "p9")]}
        )
        context.replace_tool_result(phase_memo_key("p1"), mislabeled)
        model = generation.model(days_to_remove=[2])

        with pytest.raises(PruningInvariantError, match="stored before pruning"):
            await prune_excess_workouts(model, context, ["p1"], 4, 3)

        assert context.get_tool_result(phase_memo_key("p1")) is mislabeled
