"""
Tests for the FSRS parameter vector and weight clamping
"""

import pytest
import torch

from recall_model.fsrs.errors import InvalidInput
from recall_model.fsrs.parameters import (
    DEFAULT_WEIGHTS,
    NUM_WEIGHTS,
    WEIGHT_BOUNDS,
    ParameterVector,
    clip_weights,
    coerce_params,
)


class TestParameterVector:
    """Tests for ParameterVector construction and helpers"""

    def test_default_has_seventeen_weights(self):
        params = ParameterVector.default()
        assert len(params) == NUM_WEIGHTS == 17
        assert params.to_list() == list(DEFAULT_WEIGHTS)

    def test_defaults_within_bounds(self):
        assert ParameterVector.default().is_within_bounds()

    def test_wrong_length_rejected(self):
        with pytest.raises(InvalidInput):
            ParameterVector([1.0] * 16)
        with pytest.raises(InvalidInput):
            ParameterVector([1.0] * 18)

    @pytest.mark.parametrize("bad", [float("nan"), float("inf"), float("-inf")])
    def test_non_finite_rejected(self, bad):
        weights = list(DEFAULT_WEIGHTS)
        weights[8] = bad
        with pytest.raises(InvalidInput):
            ParameterVector(weights)

    def test_clipped_projects_into_bounds(self):
        weights = [1000.0] * NUM_WEIGHTS
        weights[7] = -3.0
        clipped = ParameterVector(weights).clipped()

        assert clipped.is_within_bounds()
        assert clipped[0] == WEIGHT_BOUNDS[0][1]
        assert clipped[7] == WEIGHT_BOUNDS[7][0]

    def test_clipped_leaves_original_unchanged(self):
        original = ParameterVector([1000.0] * NUM_WEIGHTS)
        original.clipped()
        assert original[0] == 1000.0

    def test_replace_by_name(self, default_params):
        updated = default_params.replace(hard_penalty=0.5, easy_bonus=3.0)
        assert updated[15] == 0.5
        assert updated[16] == 3.0
        assert default_params[15] == DEFAULT_WEIGHTS[15]

    def test_replace_unknown_name(self, default_params):
        with pytest.raises(InvalidInput):
            default_params.replace(not_a_weight=1.0)

    def test_value_semantics(self):
        a = ParameterVector.default()
        b = ParameterVector(list(DEFAULT_WEIGHTS))
        assert a == b
        assert hash(a) == hash(b)
        assert a != a.replace(init_difficulty=5.5)

    def test_tensor_roundtrip(self, default_params):
        tensor = default_params.to_tensor()
        assert tensor.dtype == torch.float64
        assert ParameterVector.from_tensor(tensor) == default_params

    def test_as_dict_names(self, default_params):
        d = default_params.as_dict()
        assert d["init_stability_good"] == DEFAULT_WEIGHTS[2]
        assert ParameterVector.name_of(4) == "init_difficulty"


class TestCoerceParams:
    """Tests for accepted parameter representations"""

    def test_none_gives_defaults(self):
        assert coerce_params(None) == ParameterVector.default()

    def test_list_and_tensor(self):
        assert coerce_params(list(DEFAULT_WEIGHTS)) == ParameterVector.default()
        assert coerce_params(torch.tensor(DEFAULT_WEIGHTS)) == ParameterVector(
            torch.tensor(DEFAULT_WEIGHTS).double().tolist()
        )

    def test_rejects_other_types(self):
        with pytest.raises(InvalidInput):
            coerce_params(3.0)


class TestClipWeights:
    """Tests for in-place clamping after optimizer steps"""

    def test_clamps_in_place(self):
        w = torch.nn.Parameter(torch.full((NUM_WEIGHTS,), 1000.0, dtype=torch.float64))
        result = clip_weights(w)

        assert result is w
        highs = torch.tensor([b[1] for b in WEIGHT_BOUNDS], dtype=torch.float64)
        assert torch.equal(w.detach(), highs)

    def test_noop_within_bounds(self, default_params):
        w = default_params.to_tensor()
        clip_weights(w)
        assert ParameterVector.from_tensor(w) == default_params
