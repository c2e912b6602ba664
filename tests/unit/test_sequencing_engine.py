"""
Unit tests for the stitch sequencing engine.
"""

import pytest

from helix.core.errors import InvalidTubeStateError
from helix.core.state import SKIP_LADDER, CompletionOutcome, DistractorLevel, TubeState
from helix.sequencing.engine import advance_stitch


@pytest.fixture
def scenario_tube(make_tube):
    """Stitch A current with skip 3 / L1, stitch B at position 3."""
    return make_tube(
        "thread-T1-001",
        (0, "A", 3, "L1", 1),
        (3, "B", 1, "L1", 2),
    )


class TestPerfectMastery:
    """Tests for the advance-on-mastery path."""

    def test_mastered_stitch_moves_to_its_skip_number(self, scenario_tube):
        result = advance_stitch(scenario_tube, CompletionOutcome(5, 5))

        assert result.positions[3].stitch_id == "A"
        assert result.positions[3].skip_number == 5
        assert result.positions[3].distractor_level == DistractorLevel.L2
        assert result.positions[0].stitch_id == "B"
        assert set(result.positions) == {0, 3}

    def test_other_entries_keep_their_positions(self, make_tube):
        tube = make_tube(
            "t",
            (0, "A", 1, "L1", 1),
            (1, "B", 1, "L1", 2),
            (2, "C", 1, "L1", 3),
            (7, "D", 1, "L1", 4),
        )

        result = advance_stitch(tube, CompletionOutcome(3, 3))

        assert result.positions[0].stitch_id == "B"
        assert result.positions[1].stitch_id == "A"
        assert result.positions[2].stitch_id == "C"
        assert result.positions[7].stitch_id == "D"

    def test_collision_lowest_order_keeps_slot(self, make_tube):
        # A (order 1) targets position 3, which D (order 4) already holds
        tube = make_tube(
            "t",
            (0, "A", 3, "L1", 1),
            (1, "B", 1, "L1", 2),
            (3, "D", 1, "L1", 4),
        )

        result = advance_stitch(tube, CompletionOutcome(2, 2))

        assert result.positions[0].stitch_id == "B"
        assert result.positions[3].stitch_id == "A"
        assert result.positions[4].stitch_id == "D"

    def test_collision_incumbent_with_lower_order_stays(self, make_tube):
        tube = make_tube(
            "t",
            (0, "Z", 3, "L2", 9),
            (1, "B", 1, "L1", 2),
            (3, "C", 1, "L1", 3),
            (4, "E", 1, "L1", 5),
        )

        result = advance_stitch(tube, CompletionOutcome(1, 1))

        assert result.positions[3].stitch_id == "C"
        # Cascades past the occupied slot 4 to the first free one
        assert result.positions[4].stitch_id == "E"
        assert result.positions[5].stitch_id == "Z"
        assert result.positions[5].distractor_level == DistractorLevel.L3

    def test_single_entry_tube_promoted_in_place(self, make_tube):
        tube = make_tube("t", (0, "A", 1, "L1", 1))

        result = advance_stitch(tube, CompletionOutcome(4, 4))

        assert list(result.positions) == [0]
        assert result.positions[0].stitch_id == "A"
        assert result.positions[0].skip_number == 3

    def test_input_tube_not_mutated(self, scenario_tube):
        before = scenario_tube.to_dict()

        advance_stitch(scenario_tube, CompletionOutcome(5, 5))

        assert scenario_tube.to_dict() == before


class TestNonPerfect:
    """Tests for the repeat-until-mastered path."""

    def test_partial_score_leaves_tube_unchanged(self, scenario_tube):
        result = advance_stitch(scenario_tube, CompletionOutcome(3, 5))

        assert result == scenario_tube
        assert result.positions[0].stitch_id == "A"
        assert result.positions[0].skip_number == 3
        assert result.positions[0].distractor_level == DistractorLevel.L1

    def test_partial_score_is_idempotent(self, scenario_tube):
        once = advance_stitch(scenario_tube, CompletionOutcome(0, 5))
        twice = advance_stitch(once, CompletionOutcome(0, 5))

        assert once == twice == scenario_tube

    def test_no_questions_records_no_progress(self, scenario_tube):
        result = advance_stitch(scenario_tube, CompletionOutcome(0, 0))

        assert result == scenario_tube
        assert result is not scenario_tube


class TestInvariants:
    """Property-style checks over repeated completions."""

    def test_ladder_monotonicity(self, make_tube):
        tube = make_tube("t", (0, "A", 1, "L1", 1))
        skips = []
        levels = []

        for _ in range(8):
            tube = advance_stitch(tube, CompletionOutcome(1, 1))
            entry = tube.positions[tube.position_of("A")]
            skips.append(entry.skip_number)
            levels.append(entry.distractor_level)

        assert skips == [3, 5, 10, 25, 100, 100, 100, 100]
        assert skips == sorted(skips)
        assert set(skips) <= set(SKIP_LADDER)
        assert levels[:3] == [DistractorLevel.L2, DistractorLevel.L3, DistractorLevel.L3]

    @pytest.mark.parametrize("outcome", [(5, 5), (3, 5), (0, 0)])
    def test_exactly_one_current_entry(self, make_tube, outcome):
        tube = make_tube(
            "t",
            *[(position, f"s{position}", 1, "L1", position) for position in range(6)],
        )

        for _ in range(10):
            tube = advance_stitch(tube, CompletionOutcome(*outcome))
            assert 0 in tube.positions
            stitch_ids = [entry.stitch_id for entry in tube.positions.values()]
            assert len(stitch_ids) == len(set(stitch_ids)) == 6

    def test_deterministic(self, scenario_tube):
        first = advance_stitch(scenario_tube, CompletionOutcome(5, 5))
        second = advance_stitch(scenario_tube, CompletionOutcome(5, 5))

        assert first == second


class TestInvalidState:
    def test_missing_current_entry_raises(self, make_tube):
        tube = make_tube("thread-x", (2, "A", 1, "L1", 1))

        with pytest.raises(InvalidTubeStateError) as exc_info:
            advance_stitch(tube, CompletionOutcome(1, 1), tube_number=2)

        assert exc_info.value.tube_number == 2
        assert exc_info.value.thread_id == "thread-x"

    def test_empty_tube_raises(self):
        with pytest.raises(InvalidTubeStateError):
            advance_stitch(TubeState(thread_id="t"), CompletionOutcome(0, 1))
