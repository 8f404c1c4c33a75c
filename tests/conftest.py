"""
Root pytest configuration and shared fixtures.

This conftest.py is automatically loaded by pytest for all tests in the tests/ directory.
"""

import pytest

from recall_model.fsrs.model import CardMemoryState, Rating
from recall_model.fsrs.dataset import ReviewEvent
from recall_model.fsrs.parameters import ParameterVector
from recall_model.fsrs.synthetic import generate_sequences


# ============================================================================
# Pytest Configuration
# ============================================================================

def pytest_configure(config):
    """Configure pytest with custom markers."""
    config.addinivalue_line(
        "markers", "unit: unit tests for isolated components"
    )
    config.addinivalue_line(
        "markers", "slow: mark test as slow running"
    )


# ============================================================================
# Model Fixtures
# ============================================================================

@pytest.fixture
def default_params() -> ParameterVector:
    """Default FSRS weights"""
    return ParameterVector.default()


@pytest.fixture
def mid_state() -> CardMemoryState:
    """A reviewed card with moderate stability and difficulty"""
    return CardMemoryState(stability=10.0, difficulty=5.0)


@pytest.fixture
def three_review_card():
    """Good on day 0, Good a day later, forgotten three days after that"""
    return [
        ReviewEvent(elapsed_days=0, grade=Rating.GOOD),
        ReviewEvent(elapsed_days=1, grade=Rating.GOOD),
        ReviewEvent(elapsed_days=3, grade=Rating.AGAIN),
    ]


@pytest.fixture(scope="session")
def synthetic_sequences():
    """Review histories drawn from the default weights"""
    return generate_sequences(num_cards=300, min_reviews=2, max_reviews=7, seed=7)
