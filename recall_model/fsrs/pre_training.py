"""
Pre-training of initial stabilities.

Before gradient descent, the four initial stabilities w[0..3] are fitted
directly from the second review of each card: for every first rating, the
recall rate observed after each delta_t is matched against R(delta_t, S0)
by minimising weighted log loss with a bounded scalar optimiser.
"""

import logging
from collections import defaultdict
from typing import Dict, List, Sequence, Tuple

import numpy as np
from scipy import optimize

from .dataset import CardSequence, expand_sequence, split_data
from .model import DECAY, FACTOR, Rating
from .parameters import WEIGHT_BOUNDS, ParameterVector

logger = logging.getLogger(__name__)

EPS = 1e-7


def _group_first_reviews(
    sequences: Sequence[CardSequence],
) -> Dict[int, Tuple[np.ndarray, np.ndarray, np.ndarray]]:
    """Per first rating: (delta_t, recall_rate, count) arrays"""
    items = [item for seq in sequences for item in expand_sequence(seq[:2])]
    pretrain_items, _ = split_data(items)

    stats: Dict[int, Dict[float, List[int]]] = defaultdict(lambda: defaultdict(lambda: [0, 0]))
    for item in pretrain_items:
        first, second = item.reviews
        cell = stats[int(first.grade)][second.elapsed_days]
        cell[0] += int(second.recalled)
        cell[1] += 1

    grouped = {}
    for rating, by_delta in stats.items():
        delta_t = np.array(sorted(by_delta), dtype=np.float64)
        recalled = np.array([by_delta[t][0] for t in delta_t], dtype=np.float64)
        count = np.array([by_delta[t][1] for t in delta_t], dtype=np.float64)
        grouped[rating] = (delta_t, recalled / count, count)
    return grouped


def _fit_stability(
    delta_t: np.ndarray,
    recall: np.ndarray,
    count: np.ndarray,
    bounds: Tuple[float, float],
) -> float:
    def loss(stability: float) -> float:
        r = np.clip((1 + FACTOR * delta_t / stability) ** DECAY, EPS, 1 - EPS)
        bce = -(recall * np.log(r) + (1 - recall) * np.log(1 - r))
        return float(np.sum(bce * count))

    result = optimize.minimize_scalar(loss, bounds=bounds, method="bounded")
    return float(result.x)


def pretrain(
    sequences: Sequence[CardSequence],
    init_params: ParameterVector,
    min_reviews: int = 1,
) -> ParameterVector:
    """
    Fit w[0..3] from first/second review pairs.

    Ratings with fewer than ``min_reviews`` pairs keep their current value.
    The result is made non-decreasing from AGAIN to EASY.
    """
    grouped = _group_first_reviews(sequences)
    weights = init_params.to_list()

    for rating in Rating:
        index = rating - 1
        if rating not in grouped:
            continue
        delta_t, recall, count = grouped[rating]
        if count.sum() < min_reviews:
            continue
        weights[index] = _fit_stability(delta_t, recall, count, WEIGHT_BOUNDS[index])
        logger.debug(
            f"Pre-trained initial stability for {rating.name}: {weights[index]:.4f} "
            f"({int(count.sum())} reviews)"
        )

    initial = np.maximum.accumulate(np.array(weights[:4]))
    weights[:4] = initial.tolist()

    fitted = ParameterVector(weights).clipped()
    logger.info(f"Initial stabilities after pre-training: {[round(w, 4) for w in fitted[:4]]}")
    return fitted
