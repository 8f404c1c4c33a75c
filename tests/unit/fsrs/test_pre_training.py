"""
Tests for pre-training of initial stabilities
"""

import pytest

from recall_model.fsrs.dataset import ReviewEvent, validate_dataset
from recall_model.fsrs.model import FACTOR, Rating
from recall_model.fsrs.parameters import ParameterVector
from recall_model.fsrs.pre_training import pretrain


def _cards_for_stability(first_grade, stability, delta_ts=(1, 3, 5, 10), per_delta=200):
    """Second reviews whose recall rate follows R(t, stability) exactly (up to rounding)"""
    cards = []
    for t in delta_ts:
        recall = (1 + FACTOR * t / stability) ** -1
        n_recalled = round(per_delta * recall)
        for i in range(per_delta):
            grade = Rating.GOOD if i < n_recalled else Rating.AGAIN
            cards.append([ReviewEvent(0, first_grade), ReviewEvent(t, grade)])
    return validate_dataset(cards)


class TestPretrain:
    """Tests for fitting w[0..3]"""

    def test_recovers_initial_stability(self, default_params):
        cards = _cards_for_stability(Rating.GOOD, 6.0)
        fitted = pretrain(cards, default_params)
        assert fitted[2] == pytest.approx(6.0, rel=0.1)

    def test_untouched_ratings_keep_values(self, default_params):
        cards = _cards_for_stability(Rating.GOOD, 3.0)
        fitted = pretrain(cards, default_params)
        assert fitted[0] == default_params[0]
        assert fitted[1] == default_params[1]
        assert fitted[3] == default_params[3]
        assert fitted[4:] == default_params[4:]

    def test_initial_stabilities_non_decreasing(self, default_params):
        cards = _cards_for_stability(Rating.AGAIN, 20.0)
        fitted = pretrain(cards, default_params)
        stabilities = list(fitted[:4])
        assert stabilities == sorted(stabilities)
        assert fitted.is_within_bounds()

    def test_min_reviews_threshold(self, default_params):
        cards = _cards_for_stability(Rating.EASY, 40.0, per_delta=5)
        fitted = pretrain(cards, default_params, min_reviews=1000)
        assert fitted == default_params

    def test_single_review_cards_ignored(self):
        start = ParameterVector.default()
        fitted = pretrain(validate_dataset([[(0, 3)], [(0, 2)]]), start)
        assert fitted == start
