"""
Optimal retention via review simulation.

A deck of cards is simulated day by day under a daily time budget: due
cards are reviewed (recall drawn from the model's retrievability), new
cards are learned up to a daily limit, and every card is rescheduled with
next_interval at the retention being evaluated. The optimal retention
maximises memorised cards per second of review time.
"""

import logging
from dataclasses import dataclass
from typing import Optional, Tuple

import numpy as np
import torch
from scipy import optimize

from .errors import InvalidInput
from .model import DECAY, DTYPE, FACTOR, S_MIN, init_difficulty, init_stability, step
from .parameters import coerce_params
from .scheduler import check_target_retention

logger = logging.getLogger(__name__)

RETENTION_BOUNDS = (0.75, 0.95)


@dataclass
class SimulatorConfig:
    """Configuration for the review simulator"""
    deck_size: int = 10000
    learn_span: int = 365  # days
    max_cost_perday: float = 1800.0  # seconds
    max_ivl: float = 36500.0  # days
    recall_cost: float = 10.0  # seconds per successful review
    forget_cost: float = 30.0  # seconds per failed review
    learn_cost: float = 10.0  # seconds per new card
    first_rating_prob: Tuple[float, float, float, float] = (0.15, 0.2, 0.6, 0.05)
    review_rating_prob: Tuple[float, float, float] = (0.3, 0.6, 0.1)  # hard, good, easy
    learn_limit: int = 10  # new cards per day
    seed: Optional[int] = 42

    def validate(self) -> None:
        if self.deck_size < 1 or self.learn_span < 1:
            raise InvalidInput("deck_size and learn_span must be >= 1")
        for name, probs in (
            ("first_rating_prob", self.first_rating_prob),
            ("review_rating_prob", self.review_rating_prob),
        ):
            if any(p < 0 for p in probs) or not np.isclose(sum(probs), 1.0):
                raise InvalidInput(f"{name} must be non-negative and sum to 1, got {probs}")


@dataclass
class SimulationResult:
    memorized: float  # expected number of cards recalled at the end of the span
    total_cost: float  # seconds spent
    review_count: int
    learned: int

    @property
    def memorized_per_cost(self) -> float:
        return self.memorized / self.total_cost if self.total_cost > 0 else 0.0


def _review(w: torch.Tensor, s, d, elapsed, ratings):
    _, new_s, new_d = step(
        w,
        torch.from_numpy(s),
        torch.from_numpy(d),
        torch.from_numpy(elapsed),
        torch.from_numpy(ratings),
    )
    return new_s.numpy(), new_d.numpy()


def _intervals(stability: np.ndarray, retention: float, max_ivl: float) -> np.ndarray:
    ivl = stability / FACTOR * (retention ** (1 / DECAY) - 1)
    return np.clip(np.round(ivl), 1, max_ivl)


def simulate(config: SimulatorConfig, params=None, target_retention: float = 0.9) -> SimulationResult:
    """Simulate ``config.learn_span`` days of reviews scheduled at ``target_retention``"""
    config.validate()
    retention = check_target_retention(target_retention)
    w = coerce_params(params).to_tensor(DTYPE)
    rng = np.random.default_rng(config.seed)

    n = config.deck_size
    learned = np.zeros(n, dtype=bool)
    due = np.full(n, np.inf)
    last_review = np.zeros(n)
    stability = np.full(n, S_MIN)
    difficulty = np.ones(n)

    total_cost = 0.0
    review_count = 0
    next_new = 0

    with torch.no_grad():
        for day in range(config.learn_span):
            budget = config.max_cost_perday

            # Reviews
            idx = np.flatnonzero(learned & (due <= day))
            if len(idx):
                elapsed = day - last_review[idx]
                r = (1 + FACTOR * elapsed / stability[idx]) ** DECAY
                recalled = rng.random(len(idx)) < r
                costs = np.where(recalled, config.recall_cost, config.forget_cost)
                allowed = np.cumsum(costs) <= budget
                idx, elapsed, recalled = idx[allowed], elapsed[allowed], recalled[allowed]
                budget -= costs[allowed].sum()

                ratings = np.where(
                    recalled,
                    rng.choice([2.0, 3.0, 4.0], size=len(idx), p=config.review_rating_prob),
                    1.0,
                )
                if len(idx):
                    new_s, new_d = _review(w, stability[idx], difficulty[idx], elapsed, ratings)
                    stability[idx], difficulty[idx] = new_s, new_d
                    last_review[idx] = day
                    due[idx] = day + _intervals(new_s, retention, config.max_ivl)
                    review_count += len(idx)

            # New cards
            n_learn = int(min(
                config.learn_limit,
                max(budget, 0) // config.learn_cost,
                n - next_new,
            ))
            if n_learn > 0:
                idx = np.arange(next_new, next_new + n_learn)
                ratings = torch.from_numpy(
                    rng.choice([1.0, 2.0, 3.0, 4.0], size=n_learn, p=config.first_rating_prob)
                )
                stability[idx] = init_stability(w, ratings).numpy()
                difficulty[idx] = init_difficulty(w, ratings).numpy()
                learned[idx] = True
                last_review[idx] = day
                due[idx] = day + _intervals(stability[idx], retention, config.max_ivl)
                budget -= n_learn * config.learn_cost
                next_new += n_learn

            total_cost += config.max_cost_perday - budget

    elapsed = config.learn_span - last_review[learned]
    memorized = float(np.sum((1 + FACTOR * elapsed / stability[learned]) ** DECAY))
    return SimulationResult(
        memorized=memorized,
        total_cost=float(total_cost),
        review_count=review_count,
        learned=int(learned.sum()),
    )


def find_optimal_retention(config: SimulatorConfig, params=None) -> float:
    """Retention in RETENTION_BOUNDS that maximises memorised cards per unit of review time"""
    config.validate()

    def objective(retention: float) -> float:
        result = simulate(config, params, retention)
        logger.debug(
            f"retention={retention:.3f} memorized={result.memorized:.1f} cost={result.total_cost:.0f}"
        )
        return -result.memorized_per_cost

    result = optimize.minimize_scalar(
        objective,
        bounds=RETENTION_BOUNDS,
        method="bounded",
        options={"xatol": 0.005},
    )
    optimal = float(result.x)
    logger.info(f"Optimal retention: {optimal:.3f}")
    return optimal
