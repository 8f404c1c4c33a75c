"""
FSRS memory model

Core formulas (w is the 17-weight ParameterVector):
- Retrievability  R(t,S) = (1 + t/(9*S))^(-1)
- Initial state   S0 = w[g-1],  D0 = w4 - w5*(g-3)
- Difficulty      D' = w7*w4 + (1-w7)*(D - w6*(g-3)),  clamped to [1, 10]
- Success         S' = S*(1 + e^w8 * (11-D) * S^-w9 * (e^((1-R)*w10) - 1) * hard * easy)
- Failure         S' = min(S, w11 * D^-w12 * ((S+1)^w13 - 1) * e^((1-R)*w14))

The equations are written once on torch tensors. FSRSModel replays padded
batches of card histories for training; the scalar helpers (init_state,
update_state, predict_retrievability) run the same code on 0-d tensors.
"""
import math
import operator
from dataclasses import dataclass
from enum import IntEnum
from typing import Dict, Optional

import torch
import torch.nn as nn

from .errors import InvalidInput, InvalidState, NumericInstability
from .parameters import ParameterVector, coerce_params

DTYPE = torch.float64

S_MIN = 0.1
S_MAX = 36500.0
D_MIN = 1.0
D_MAX = 10.0

# Stability is the number of days for R to fall to 0.9: R(S, S) = (1 + 1/9)^-1
FACTOR = 1.0 / 9.0
DECAY = -1.0


class Rating(IntEnum):
    """Review rating options"""
    AGAIN = 1  # Completely forgot
    HARD = 2   # Difficult to recall
    GOOD = 3   # Recalled correctly
    EASY = 4   # Recalled easily

    @property
    def is_success(self) -> bool:
        return self is not Rating.AGAIN

    @classmethod
    def parse(cls, value) -> "Rating":
        """Convert an int-like grade to a Rating, raising InvalidInput otherwise"""
        if isinstance(value, Rating):
            return value
        if isinstance(value, bool):
            raise InvalidInput(f"Grade must be an integer 1-4, got {value!r}")
        try:
            number = operator.index(value)
        except TypeError:
            raise InvalidInput(f"Grade must be an integer 1-4, got {value!r}") from None
        try:
            return cls(number)
        except ValueError:
            raise InvalidInput(f"Grade must be between 1 and 4, got {number}") from None


@dataclass(frozen=True)
class CardMemoryState:
    """Latent memory state of a single card"""
    stability: float
    difficulty: float

    def to_dict(self) -> Dict[str, float]:
        return {"stability": self.stability, "difficulty": self.difficulty}


# === Tensor equations ===

def power_forgetting_curve(t: torch.Tensor, s: torch.Tensor) -> torch.Tensor:
    return (1 + FACTOR * t / s) ** DECAY


def init_stability(w: torch.Tensor, rating: torch.Tensor) -> torch.Tensor:
    return w[rating.long() - 1].clamp(S_MIN, S_MAX)


def init_difficulty(w: torch.Tensor, rating: torch.Tensor) -> torch.Tensor:
    return (w[4] - w[5] * (rating - 3)).clamp(D_MIN, D_MAX)


def next_difficulty(w: torch.Tensor, d: torch.Tensor, rating: torch.Tensor) -> torch.Tensor:
    new_d = d - w[6] * (rating - 3)
    # Mean reversion towards the initial difficulty of a GOOD first review
    new_d = w[7] * w[4] + (1 - w[7]) * new_d
    return new_d.clamp(D_MIN, D_MAX)


def stability_after_success(
    w: torch.Tensor,
    s: torch.Tensor,
    d: torch.Tensor,
    r: torch.Tensor,
    rating: torch.Tensor,
) -> torch.Tensor:
    one = torch.ones_like(s)
    hard_penalty = torch.where(rating == Rating.HARD, w[15] * one, one)
    easy_bonus = torch.where(rating == Rating.EASY, w[16] * one, one)
    return s * (
        1
        + torch.exp(w[8])
        * (11 - d)
        * s.pow(-w[9])
        * (torch.exp((1 - r) * w[10]) - 1)
        * hard_penalty
        * easy_bonus
    )


def stability_after_failure(
    w: torch.Tensor,
    s: torch.Tensor,
    d: torch.Tensor,
    r: torch.Tensor,
) -> torch.Tensor:
    new_s = (
        w[11]
        * d.pow(-w[12])
        * ((s + 1).pow(w[13]) - 1)
        * torch.exp((1 - r) * w[14])
    )
    return torch.minimum(new_s, s)


def step(
    w: torch.Tensor,
    s: torch.Tensor,
    d: torch.Tensor,
    t: torch.Tensor,
    rating: torch.Tensor,
):
    """
    Apply one review to a (batch of) memory states.

    Returns (retrievability before the review, new stability, new difficulty).
    """
    r = power_forgetting_curve(t, s)
    success_s = stability_after_success(w, s, d, r, rating)
    failure_s = stability_after_failure(w, s, d, r)
    new_s = torch.where(rating == Rating.AGAIN, failure_s, success_s)
    new_s = new_s.clamp(S_MIN, S_MAX)
    new_d = next_difficulty(w, d, rating)
    return r, new_s, new_d


class FSRSModel(nn.Module):
    """
    Batched FSRS recurrence with the weight vector as a trainable parameter.

    Histories are padded tensors of shape [seq_len, batch]. Steps where the
    mask is False leave a card's state untouched, so every card is replayed
    strictly in its own order and independently of the others.
    """

    def __init__(self, params=None):
        super().__init__()
        self.w = nn.Parameter(coerce_params(params).to_tensor(DTYPE))

    def forward(
        self,
        t_history: torch.Tensor,
        r_history: torch.Tensor,
        mask: Optional[torch.Tensor] = None,
    ) -> Dict[str, torch.Tensor]:
        """
        Replay review histories.

        Args:
            t_history: Elapsed days before each review [seq_len, batch]
            r_history: Ratings 1-4 (0 on padding) [seq_len, batch]
            mask: True on real reviews [seq_len, batch]

        Returns:
            Dict with
            - retrievability: predicted R before reviews 2..n [seq_len-1, batch]
            - stability / difficulty: final state per card [batch]
        """
        t_history = t_history.to(DTYPE)
        r_history = r_history.to(DTYPE)
        if mask is None:
            mask = r_history > 0

        s = init_stability(self.w, r_history[0])
        d = init_difficulty(self.w, r_history[0])

        predictions = []
        for i in range(1, t_history.shape[0]):
            valid = mask[i]
            # Neutral inputs on padding keep the unused branch finite for autograd
            t = torch.where(valid, t_history[i], torch.zeros_like(t_history[i]))
            rating = torch.where(valid, r_history[i], torch.full_like(r_history[i], float(Rating.GOOD)))

            r, new_s, new_d = step(self.w, s, d, t, rating)
            predictions.append(r)
            s = torch.where(valid, new_s, s)
            d = torch.where(valid, new_d, d)

        if predictions:
            retrievability = torch.stack(predictions)
        else:
            retrievability = torch.empty((0, t_history.shape[1]), dtype=DTYPE)

        return {
            "retrievability": retrievability,
            "stability": s,
            "difficulty": d,
        }

    def parameter_vector(self) -> ParameterVector:
        return ParameterVector.from_tensor(self.w)


# === Scalar API ===

def _check_elapsed(elapsed_days) -> float:
    try:
        elapsed = float(elapsed_days)
    except (TypeError, ValueError):
        raise InvalidInput(f"elapsed_days must be a number, got {elapsed_days!r}") from None
    if not math.isfinite(elapsed) or elapsed < 0:
        raise InvalidInput(f"elapsed_days must be finite and >= 0, got {elapsed_days!r}")
    return elapsed


def _check_state(state: CardMemoryState, check_bounds: bool = True) -> None:
    """
    Reject states the equations are not defined for.

    With ``check_bounds`` the state must also lie inside the range every
    update clamps into, so a lapse can never raise stability to S_MIN and
    a success can never cut it down to S_MAX.
    """
    if not isinstance(state, CardMemoryState):
        raise InvalidState(f"Expected CardMemoryState, got {type(state).__name__}")
    if not math.isfinite(state.stability) or state.stability <= 0:
        raise InvalidState(f"Stability must be finite and > 0, got {state.stability}")
    if not check_bounds:
        return
    if not (S_MIN <= state.stability <= S_MAX):
        raise InvalidState(
            f"Stability must be within [{S_MIN}, {S_MAX}], got {state.stability}"
        )
    if not (D_MIN <= state.difficulty <= D_MAX):
        raise InvalidState(
            f"Difficulty must be within [{D_MIN}, {D_MAX}], got {state.difficulty}"
        )


def _to_state(stability: torch.Tensor, difficulty: torch.Tensor) -> CardMemoryState:
    s, d = float(stability), float(difficulty)
    if not (math.isfinite(s) and math.isfinite(d)):
        raise NumericInstability(f"Non-finite memory state: stability={s}, difficulty={d}")
    return CardMemoryState(stability=s, difficulty=d)


def init_state(first_grade, params=None) -> CardMemoryState:
    """Memory state after the very first review of a card"""
    rating = Rating.parse(first_grade)
    w = coerce_params(params).to_tensor(DTYPE)
    g = torch.tensor(float(rating), dtype=DTYPE)
    with torch.no_grad():
        return _to_state(init_stability(w, g), init_difficulty(w, g))


def update_state(
    prev_state: CardMemoryState,
    elapsed_days: float,
    grade,
    params=None,
) -> CardMemoryState:
    """Memory state after reviewing a card ``elapsed_days`` after its previous review"""
    _check_state(prev_state)
    elapsed = _check_elapsed(elapsed_days)
    rating = Rating.parse(grade)
    w = coerce_params(params).to_tensor(DTYPE)

    with torch.no_grad():
        _, new_s, new_d = step(
            w,
            torch.tensor(prev_state.stability, dtype=DTYPE),
            torch.tensor(prev_state.difficulty, dtype=DTYPE),
            torch.tensor(elapsed, dtype=DTYPE),
            torch.tensor(float(rating), dtype=DTYPE),
        )
    return _to_state(new_s, new_d)


def predict_retrievability(state: CardMemoryState, elapsed_days: float) -> float:
    """Probability of recall ``elapsed_days`` after the last review"""
    _check_state(state, check_bounds=False)
    elapsed = _check_elapsed(elapsed_days)
    if elapsed == 0:
        return 1.0
    r = (1 + FACTOR * elapsed / state.stability) ** DECAY
    if not math.isfinite(r):
        raise NumericInstability(f"Non-finite retrievability for {state}")
    return r


class MemoryModel:
    """
    MemoryModel bound to one ParameterVector.

    Thin convenience wrapper so callers do not need to pass ``params``
    on every call.
    """

    def __init__(self, params=None):
        self.params = coerce_params(params)

    def init_state(self, first_grade) -> CardMemoryState:
        return init_state(first_grade, self.params)

    def update_state(self, prev_state: CardMemoryState, elapsed_days: float, grade) -> CardMemoryState:
        return update_state(prev_state, elapsed_days, grade, self.params)

    def predict_retrievability(self, state: CardMemoryState, elapsed_days: float) -> float:
        return predict_retrievability(state, elapsed_days)
