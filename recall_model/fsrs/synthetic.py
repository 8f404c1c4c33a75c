"""
Synthetic review histories generated from a known parameter vector.

Every card follows the model itself: intervals come from the closed-form
inverse at a random target retention (with log-normal noise), recall is a
Bernoulli draw from the predicted retrievability and the state is updated
with the drawn grade.
"""

from typing import List, Sequence

import numpy as np
import torch

from .dataset import ReviewEvent
from .model import DECAY, DTYPE, FACTOR, Rating, init_difficulty, init_stability, step
from .parameters import coerce_params


def generate_sequences(
    params=None,
    num_cards: int = 500,
    min_reviews: int = 2,
    max_reviews: int = 8,
    seed: int = 42,
    interval_noise: float = 0.1,
    retention_range: Sequence[float] = (0.7, 0.95),
    first_rating_prob: Sequence[float] = (0.15, 0.2, 0.6, 0.05),
    review_rating_prob: Sequence[float] = (0.3, 0.6, 0.1),
) -> List[List[ReviewEvent]]:
    """
    Generate ``num_cards`` chronological review sequences.

    Args:
        params: ParameterVector the histories are drawn from
        num_cards: Number of cards
        min_reviews / max_reviews: Per-card history length range (inclusive)
        seed: Random seed
        interval_noise: Sigma of the log-normal factor applied to each interval
        retention_range: Target retention is drawn uniformly from this range
        first_rating_prob: Probabilities of AGAIN/HARD/GOOD/EASY on the first review
        review_rating_prob: Probabilities of HARD/GOOD/EASY given a successful recall
    """
    rng = np.random.default_rng(seed)
    w = coerce_params(params).to_tensor(DTYPE)

    lengths = rng.integers(min_reviews, max_reviews + 1, size=num_cards)
    first = rng.choice([1.0, 2.0, 3.0, 4.0], size=num_cards, p=first_rating_prob)

    grades = [first]
    elapsed = [np.zeros(num_cards)]

    with torch.no_grad():
        g = torch.from_numpy(first)
        s = init_stability(w, g)
        d = init_difficulty(w, g)

        for _ in range(1, max_reviews):
            stability = s.numpy()
            retention = rng.uniform(retention_range[0], retention_range[1], size=num_cards)
            interval = stability / FACTOR * (retention ** (1 / DECAY) - 1)
            interval *= rng.lognormal(0.0, interval_noise, size=num_cards)
            t = np.maximum(1.0, np.round(interval))

            r = (1 + FACTOR * t / stability) ** DECAY
            recalled = rng.random(num_cards) < r
            grade = np.where(
                recalled,
                rng.choice([2.0, 3.0, 4.0], size=num_cards, p=review_rating_prob),
                1.0,
            )

            _, s, d = step(w, s, d, torch.from_numpy(t), torch.from_numpy(grade))
            grades.append(grade)
            elapsed.append(t)

    return [
        [
            ReviewEvent(elapsed_days=float(elapsed[i][card]), grade=Rating(int(grades[i][card])))
            for i in range(lengths[card])
        ]
        for card in range(num_cards)
    ]
