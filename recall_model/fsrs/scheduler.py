"""
Interval scheduling from a fitted parameter vector.

The forgetting curve R(t,S) = (1 + t/(9*S))^(-1) inverts in closed form:

    t = 9 * S * (1/r - 1)

so the interval for a target retention r needs no root finding. Intervals
are continuous; rounding to whole days is left to the caller.
"""

import math
from dataclasses import dataclass
from typing import Any, Dict, Optional, Sequence

from .dataset import validate_sequence
from .errors import InvalidState, InvalidTarget
from .model import (
    DECAY,
    FACTOR,
    CardMemoryState,
    Rating,
    init_state,
    update_state,
)
from .parameters import coerce_params


def check_target_retention(target_retention) -> float:
    try:
        r = float(target_retention)
    except (TypeError, ValueError):
        raise InvalidTarget(f"target_retention must be a number, got {target_retention!r}") from None
    if not (0 < r < 1):
        raise InvalidTarget(f"target_retention must be in (0, 1), got {target_retention!r}")
    return r


def next_interval(state: CardMemoryState, target_retention: float, params=None) -> float:
    """
    Days until the predicted recall probability decays to ``target_retention``.

    ``params`` is accepted for symmetry with the other operations; the
    forgetting curve itself has no fitted weights.
    """
    r = check_target_retention(target_retention)
    if not isinstance(state, CardMemoryState):
        raise InvalidState(f"Expected CardMemoryState, got {type(state).__name__}")
    if not math.isfinite(state.stability) or state.stability <= 0:
        raise InvalidState(f"Stability must be finite and > 0, got {state.stability}")
    return state.stability / FACTOR * (r ** (1 / DECAY) - 1)


def memory_state(events: Sequence[Any], params=None) -> CardMemoryState:
    """Replay a card's chronological review history into its current memory state"""
    params = coerce_params(params)
    history = validate_sequence(events)
    state = init_state(history[0].grade, params)
    for event in history[1:]:
        state = update_state(state, event.elapsed_days, event.grade, params)
    return state


@dataclass(frozen=True)
class ItemState:
    """Memory state after a hypothetical review and the interval it leads to"""
    memory: CardMemoryState
    interval: float

    def to_dict(self) -> Dict[str, Any]:
        return {**self.memory.to_dict(), "interval": self.interval}


@dataclass(frozen=True)
class NextStates:
    """Outcome of reviewing a card now, for each of the four ratings"""
    again: ItemState
    hard: ItemState
    good: ItemState
    easy: ItemState

    def for_rating(self, rating) -> ItemState:
        return getattr(self, Rating.parse(rating).name.lower())

    def to_dict(self) -> Dict[str, Dict[str, Any]]:
        return {rating.name.lower(): self.for_rating(rating).to_dict() for rating in Rating}


def next_states(
    state: Optional[CardMemoryState],
    target_retention: float,
    elapsed_days: float = 0.0,
    params=None,
) -> NextStates:
    """
    Preview what would happen for each rating.

    Args:
        state: Current memory state, or None for a card never reviewed
        target_retention: Desired recall probability at the next review
        elapsed_days: Days since the last review
        params: ParameterVector (default weights when None)
    """
    check_target_retention(target_retention)
    params = coerce_params(params)

    outcomes = {}
    for rating in Rating:
        if state is None:
            new_state = init_state(rating, params)
        else:
            new_state = update_state(state, elapsed_days, rating, params)
        outcomes[rating.name.lower()] = ItemState(
            memory=new_state,
            interval=next_interval(new_state, target_retention, params),
        )
    return NextStates(**outcomes)


class Scheduler:
    """Scheduler bound to a fitted ParameterVector and a target retention"""

    def __init__(self, params=None, target_retention: float = 0.9):
        self.params = coerce_params(params)
        self.target_retention = check_target_retention(target_retention)

    def next_interval(self, state: CardMemoryState, target_retention: Optional[float] = None) -> float:
        if target_retention is None:
            target_retention = self.target_retention
        return next_interval(state, target_retention, self.params)

    def next_states(self, state: Optional[CardMemoryState], elapsed_days: float = 0.0) -> NextStates:
        return next_states(state, self.target_retention, elapsed_days, self.params)

    def memory_state(self, events: Sequence[Any]) -> CardMemoryState:
        return memory_state(events, self.params)
