"""
FSRS parameter vector

The model is configured by a single fixed-length vector of 17 weights.
Each index has a semantic role and a closed clamping interval; the
trainer projects the vector back into those intervals after every
optimizer step.
"""
import math
from typing import Iterable, Iterator, List, Sequence, Tuple

import torch

from .errors import InvalidInput

NUM_WEIGHTS = 17

DEFAULT_WEIGHTS: Tuple[float, ...] = (
    0.4,    # w[0]: Initial stability for AGAIN
    0.6,    # w[1]: Initial stability for HARD
    2.4,    # w[2]: Initial stability for GOOD
    5.8,    # w[3]: Initial stability for EASY
    4.93,   # w[4]: Initial difficulty for GOOD
    0.94,   # w[5]: Initial difficulty slope per grade
    0.86,   # w[6]: Difficulty change per grade step
    0.01,   # w[7]: Difficulty mean reversion
    1.49,   # w[8]: Success stability scale (exponent)
    0.14,   # w[9]: Success stability decay
    0.94,   # w[10]: Success retrievability gain
    2.18,   # w[11]: Failure stability scale
    0.05,   # w[12]: Failure difficulty exponent
    0.34,   # w[13]: Failure stability exponent
    1.26,   # w[14]: Failure retrievability gain
    0.29,   # w[15]: Hard penalty
    2.61,   # w[16]: Easy bonus
)

WEIGHT_NAMES: Tuple[str, ...] = (
    "init_stability_again",
    "init_stability_hard",
    "init_stability_good",
    "init_stability_easy",
    "init_difficulty",
    "init_difficulty_slope",
    "difficulty_step",
    "difficulty_mean_reversion",
    "success_scale",
    "success_stability_decay",
    "success_retrievability_gain",
    "failure_scale",
    "failure_difficulty_exponent",
    "failure_stability_exponent",
    "failure_retrievability_gain",
    "hard_penalty",
    "easy_bonus",
)

# Closed clamping interval per weight
WEIGHT_BOUNDS: Tuple[Tuple[float, float], ...] = (
    (0.1, 100.0),
    (0.1, 100.0),
    (0.1, 100.0),
    (0.1, 100.0),
    (1.0, 10.0),
    (0.1, 5.0),
    (0.1, 5.0),
    (0.0, 0.5),
    (0.0, 3.0),
    (0.1, 0.8),
    (0.01, 2.5),
    (0.5, 5.0),
    (0.01, 0.2),
    (0.01, 0.9),
    (0.01, 2.0),
    (0.0, 1.0),
    (1.0, 10.0),
)


class ParameterVector:
    """
    Immutable ordered vector of FSRS weights.

    Holders pass it around by value; the trainer builds a new vector at
    the end of a fit instead of mutating the one it was given.
    """

    __slots__ = ("_weights",)

    def __init__(self, weights: Iterable[float] = DEFAULT_WEIGHTS):
        values = tuple(float(w) for w in weights)
        if len(values) != NUM_WEIGHTS:
            raise InvalidInput(
                f"Expected {NUM_WEIGHTS} weights, got {len(values)}"
            )
        for i, value in enumerate(values):
            if not math.isfinite(value):
                raise InvalidInput(f"Weight w[{i}] is not finite: {value}")
        self._weights = values

    @classmethod
    def default(cls) -> "ParameterVector":
        return cls(DEFAULT_WEIGHTS)

    @classmethod
    def from_tensor(cls, tensor: torch.Tensor) -> "ParameterVector":
        return cls(tensor.detach().cpu().double().tolist())

    def to_tensor(self, dtype: torch.dtype = torch.float64) -> torch.Tensor:
        return torch.tensor(self._weights, dtype=dtype)

    def to_list(self) -> List[float]:
        return list(self._weights)

    def clipped(self) -> "ParameterVector":
        """Project every weight into its clamping interval"""
        return ParameterVector(
            min(high, max(low, w))
            for w, (low, high) in zip(self._weights, WEIGHT_BOUNDS)
        )

    def is_within_bounds(self) -> bool:
        return all(
            low <= w <= high
            for w, (low, high) in zip(self._weights, WEIGHT_BOUNDS)
        )

    def replace(self, **updates: float) -> "ParameterVector":
        """Return a copy with named weights replaced, e.g. ``replace(hard_penalty=0.5)``"""
        weights = list(self._weights)
        for name, value in updates.items():
            if name not in WEIGHT_NAMES:
                raise InvalidInput(f"Unknown weight name: {name}")
            weights[WEIGHT_NAMES.index(name)] = value
        return ParameterVector(weights)

    @staticmethod
    def name_of(index: int) -> str:
        return WEIGHT_NAMES[index]

    def as_dict(self) -> dict:
        return dict(zip(WEIGHT_NAMES, self._weights))

    def __len__(self) -> int:
        return NUM_WEIGHTS

    def __getitem__(self, index):
        return self._weights[index]

    def __iter__(self) -> Iterator[float]:
        return iter(self._weights)

    def __eq__(self, other) -> bool:
        if isinstance(other, ParameterVector):
            return self._weights == other._weights
        return NotImplemented

    def __hash__(self) -> int:
        return hash(self._weights)

    def __repr__(self) -> str:
        inner = ", ".join(f"{w:.4f}" for w in self._weights)
        return f"ParameterVector([{inner}])"


def coerce_params(params) -> ParameterVector:
    """Accept None (defaults), a ParameterVector or any float sequence"""
    if params is None:
        return ParameterVector.default()
    if isinstance(params, ParameterVector):
        return params
    if isinstance(params, torch.Tensor):
        return ParameterVector.from_tensor(params)
    if isinstance(params, Sequence):
        return ParameterVector(params)
    raise InvalidInput(f"Cannot interpret {type(params).__name__} as a parameter vector")


def clip_weights(weights: torch.Tensor) -> torch.Tensor:
    """
    Clamp a weight tensor into WEIGHT_BOUNDS in place.

    Applied right after an optimizer step, outside autograd.
    """
    with torch.no_grad():
        lows = torch.tensor([b[0] for b in WEIGHT_BOUNDS], dtype=weights.dtype, device=weights.device)
        highs = torch.tensor([b[1] for b in WEIGHT_BOUNDS], dtype=weights.dtype, device=weights.device)
        weights.copy_(torch.maximum(torch.minimum(weights, highs), lows))
    return weights
