"""
Unit tests for the FSRS memory model

Tests cover:
- Rating parsing
- Retrievability (decay) calculations
- Initial state from the first grade
- Stability and difficulty updates on success and failure
- Bound invariants over randomised inputs
- Batched replay through FSRSModel
"""

import math

import numpy as np
import pytest
import torch

from recall_model.fsrs.errors import InvalidInput, InvalidState
from recall_model.fsrs.model import (
    D_MAX,
    D_MIN,
    DTYPE,
    S_MAX,
    S_MIN,
    CardMemoryState,
    FSRSModel,
    MemoryModel,
    Rating,
    init_state,
    predict_retrievability,
    update_state,
)
from recall_model.fsrs.parameters import WEIGHT_BOUNDS, ParameterVector
from recall_model.fsrs.scheduler import memory_state, next_interval


class TestRating:
    """Tests for Rating enum"""

    def test_rating_values(self):
        assert Rating.AGAIN == 1
        assert Rating.HARD == 2
        assert Rating.GOOD == 3
        assert Rating.EASY == 4

    def test_parse_accepts_ints_and_numpy_ints(self):
        assert Rating.parse(3) is Rating.GOOD
        assert Rating.parse(np.int64(1)) is Rating.AGAIN
        assert Rating.parse(Rating.EASY) is Rating.EASY

    @pytest.mark.parametrize("value", [0, 5, -1, 2.5, "3", None, True])
    def test_parse_rejects_invalid(self, value):
        with pytest.raises(InvalidInput):
            Rating.parse(value)

    def test_only_again_is_failure(self):
        assert not Rating.AGAIN.is_success
        assert all(r.is_success for r in (Rating.HARD, Rating.GOOD, Rating.EASY))


class TestRetrievability:
    """Tests for the power forgetting curve"""

    @pytest.mark.parametrize("stability", [0.1, 1.0, 2.4, 100.0, 36500.0])
    def test_retrievability_at_zero_elapsed_is_exactly_one(self, stability):
        state = CardMemoryState(stability=stability, difficulty=5.0)
        assert predict_retrievability(state, 0) == 1.0

    def test_retrievability_at_stability(self):
        """R = 0.9 when elapsed equals stability"""
        state = CardMemoryState(stability=10.0, difficulty=5.0)
        assert math.isclose(predict_retrievability(state, 10.0), 0.9, rel_tol=1e-12)

    def test_retrievability_decreases_over_time(self):
        state = CardMemoryState(stability=10.0, difficulty=5.0)
        values = [predict_retrievability(state, t) for t in [0, 0.5, 1, 5, 10, 20, 365]]
        assert all(a > b for a, b in zip(values, values[1:]))

    def test_retrievability_increases_with_stability(self):
        values = [
            predict_retrievability(CardMemoryState(stability=s, difficulty=5.0), 7.0)
            for s in [0.1, 1.0, 5.0, 30.0, 300.0]
        ]
        assert all(a < b for a, b in zip(values, values[1:]))

    def test_retrievability_in_unit_interval(self):
        state = CardMemoryState(stability=0.1, difficulty=10.0)
        r = predict_retrievability(state, 1e6)
        assert 0.0 <= r <= 1.0

    def test_negative_elapsed_rejected(self, mid_state):
        with pytest.raises(InvalidInput):
            predict_retrievability(mid_state, -1)

    def test_non_finite_elapsed_rejected(self, mid_state):
        with pytest.raises(InvalidInput):
            predict_retrievability(mid_state, float("nan"))

    def test_zero_stability_rejected(self):
        with pytest.raises(InvalidState):
            predict_retrievability(CardMemoryState(stability=0.0, difficulty=5.0), 1)


class TestInitState:
    """Tests for the first-review state"""

    def test_init_stability_uses_grade_weights(self, default_params):
        for rating in Rating:
            state = init_state(rating, default_params)
            assert state.stability == pytest.approx(default_params[rating - 1])

    def test_init_stability_increases_with_rating(self):
        stabilities = [init_state(r).stability for r in Rating]
        assert stabilities == sorted(stabilities)
        assert len(set(stabilities)) == 4

    def test_init_difficulty_good_is_w4(self, default_params):
        assert init_state(Rating.GOOD).difficulty == pytest.approx(default_params[4])

    def test_init_difficulty_again_highest(self):
        assert init_state(Rating.AGAIN).difficulty > init_state(Rating.EASY).difficulty

    def test_init_difficulty_bounded(self):
        params = ParameterVector.default().replace(init_difficulty=10.0, init_difficulty_slope=5.0)
        for rating in Rating:
            assert D_MIN <= init_state(rating, params).difficulty <= D_MAX

    @pytest.mark.parametrize("grade", [0, 5, 7])
    def test_invalid_grade(self, grade):
        with pytest.raises(InvalidInput):
            init_state(grade)


class TestUpdateState:
    """Tests for the post-review update"""

    def test_again_reduces_stability(self, mid_state):
        new = update_state(mid_state, 10.0, Rating.AGAIN)
        assert new.stability < mid_state.stability

    def test_again_never_increases_stability_even_when_formula_would(self):
        # Tiny stability: the raw failure formula exceeds the previous value
        state = CardMemoryState(stability=0.1, difficulty=1.0)
        params = ParameterVector.default().replace(failure_scale=5.0, failure_retrievability_gain=2.0)
        new = update_state(state, 100.0, Rating.AGAIN, params)
        assert new.stability <= state.stability
        assert new.stability >= S_MIN

    def test_good_increases_stability(self, mid_state):
        new = update_state(mid_state, 10.0, Rating.GOOD)
        assert new.stability > mid_state.stability

    def test_success_stability_ordered_by_grade(self, mid_state):
        hard = update_state(mid_state, 10.0, Rating.HARD).stability
        good = update_state(mid_state, 10.0, Rating.GOOD).stability
        easy = update_state(mid_state, 10.0, Rating.EASY).stability
        assert mid_state.stability < hard < good < easy

    def test_same_day_review_keeps_stability_on_success(self, mid_state):
        new = update_state(mid_state, 0, Rating.GOOD)
        assert new.stability == pytest.approx(mid_state.stability)

    def test_same_day_review_is_finite_on_failure(self, mid_state):
        new = update_state(mid_state, 0, Rating.AGAIN)
        assert math.isfinite(new.stability)
        assert S_MIN <= new.stability <= mid_state.stability

    def test_difficulty_moves_with_grade(self, mid_state):
        assert update_state(mid_state, 5, Rating.AGAIN).difficulty > mid_state.difficulty
        assert update_state(mid_state, 5, Rating.EASY).difficulty < mid_state.difficulty

    def test_difficulty_mean_reversion(self):
        high = CardMemoryState(stability=10.0, difficulty=9.5)
        assert update_state(high, 10, Rating.GOOD).difficulty < high.difficulty

    def test_difficulty_saturates(self):
        hardest = CardMemoryState(stability=10.0, difficulty=D_MAX)
        easiest = CardMemoryState(stability=10.0, difficulty=D_MIN)
        assert update_state(hardest, 1, Rating.AGAIN).difficulty <= D_MAX
        assert update_state(easiest, 1, Rating.EASY).difficulty >= D_MIN

    def test_successive_successes_at_ninety_percent_point(self):
        """Reviewing at the predicted 90% point never lowers stability"""
        for grade in (Rating.HARD, Rating.GOOD, Rating.EASY):
            state = init_state(grade)
            stabilities = [state.stability]
            for _ in range(10):
                interval = next_interval(state, 0.9)
                state = update_state(state, interval, grade)
                stabilities.append(state.stability)
            assert all(a <= b for a, b in zip(stabilities, stabilities[1:]))
            assert stabilities[-1] > stabilities[0]

    def test_rejects_invalid_arguments(self, mid_state):
        with pytest.raises(InvalidInput):
            update_state(mid_state, 1, 5)
        with pytest.raises(InvalidInput):
            update_state(mid_state, -0.5, Rating.GOOD)
        with pytest.raises(InvalidState):
            update_state(CardMemoryState(stability=-1.0, difficulty=5.0), 1, Rating.GOOD)
        with pytest.raises(InvalidState):
            update_state(CardMemoryState(stability=1.0, difficulty=11.0), 1, Rating.GOOD)

    def test_memory_model_wrapper(self, default_params, mid_state):
        model = MemoryModel(default_params)
        assert model.update_state(mid_state, 3, Rating.GOOD) == update_state(mid_state, 3, Rating.GOOD)
        assert model.init_state(Rating.EASY) == init_state(Rating.EASY)


class TestBoundsInvariant:
    """Randomised checks that updates stay inside the declared ranges"""

    @pytest.mark.parametrize("seed", range(5))
    def test_update_state_within_bounds(self, seed):
        rng = np.random.default_rng(seed)
        for _ in range(200):
            params = ParameterVector(
                rng.uniform(low, high) for low, high in WEIGHT_BOUNDS
            )
            state = CardMemoryState(
                stability=float(np.clip(np.exp(rng.uniform(np.log(S_MIN), np.log(S_MAX))), S_MIN, S_MAX)),
                difficulty=float(rng.uniform(D_MIN, D_MAX)),
            )
            elapsed = float(rng.choice([0.0, rng.exponential(30.0), rng.uniform(0, 1e4)]))
            grade = int(rng.integers(1, 5))

            new = update_state(state, elapsed, grade, params)

            assert S_MIN <= new.stability <= S_MAX
            assert D_MIN <= new.difficulty <= D_MAX
            if grade == Rating.AGAIN:
                assert new.stability <= state.stability

    @pytest.mark.parametrize("stability", [0.05, S_MIN * 0.999, S_MAX * 1.001, 1e6])
    @pytest.mark.parametrize("grade", list(Rating))
    def test_stability_outside_bounds_rejected(self, stability, grade):
        state = CardMemoryState(stability=stability, difficulty=5.0)
        with pytest.raises(InvalidState):
            update_state(state, 1.0, grade)

    def test_stability_at_bounds_accepted(self):
        floor = CardMemoryState(stability=S_MIN, difficulty=5.0)
        ceiling = CardMemoryState(stability=S_MAX, difficulty=5.0)

        assert update_state(floor, 1.0, Rating.AGAIN).stability <= S_MIN
        assert update_state(ceiling, 1e6, Rating.GOOD).stability == S_MAX

    def test_retrievability_accepts_any_positive_stability(self):
        state = CardMemoryState(stability=0.05, difficulty=5.0)
        assert 0 < predict_retrievability(state, 1.0) < 1


class TestEndToEnd:
    """Replay of a short card history"""

    def test_forgetting_branch_fires(self, three_review_card):
        first = init_state(Rating.GOOD)
        second = update_state(first, 1, Rating.GOOD)
        final = memory_state(three_review_card)

        assert second.stability > first.stability
        assert final.stability < second.stability
        assert predict_retrievability(final, 0) == 1.0


class TestFSRSModel:
    """Tests for the batched torch recurrence"""

    def test_matches_scalar_replay(self, default_params):
        cards = [
            [(0, 3), (1, 3), (3, 1)],
            [(0, 4), (5, 3)],
            [(0, 1), (1, 1), (1, 3), (4, 3)],
        ]
        max_len = max(len(c) for c in cards)
        t = torch.zeros(max_len, len(cards), dtype=DTYPE)
        r = torch.zeros(max_len, len(cards), dtype=DTYPE)
        for j, card in enumerate(cards):
            for i, (elapsed, grade) in enumerate(card):
                t[i, j] = elapsed
                r[i, j] = grade

        model = FSRSModel(default_params)
        with torch.no_grad():
            out = model(t, r)

        for j, card in enumerate(cards):
            state = memory_state(card, default_params)
            assert out["stability"][j].item() == pytest.approx(state.stability)
            assert out["difficulty"][j].item() == pytest.approx(state.difficulty)

        assert out["retrievability"].shape == (max_len - 1, len(cards))

    def test_padding_does_not_change_state(self):
        t = torch.tensor([[0.0, 0.0], [2.0, 0.0]], dtype=DTYPE)
        r = torch.tensor([[3.0, 3.0], [3.0, 0.0]], dtype=DTYPE)
        with torch.no_grad():
            out = FSRSModel()(t, r)
        assert out["stability"][1].item() == pytest.approx(init_state(Rating.GOOD).stability)

    def test_gradients_flow_to_weights(self):
        t = torch.tensor([[0.0], [3.0], [7.0]], dtype=DTYPE)
        r = torch.tensor([[3.0], [3.0], [1.0]], dtype=DTYPE)
        model = FSRSModel()
        out = model(t, r)
        out["retrievability"].sum().backward()

        assert model.w.grad is not None
        assert torch.isfinite(model.w.grad).all()
        # Initial stability for GOOD drives every prediction
        assert model.w.grad[2].item() != 0.0

    def test_parameter_vector_roundtrip(self, default_params):
        assert FSRSModel(default_params).parameter_vector() == default_params
