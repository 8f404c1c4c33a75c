"""
Tests for settings and logging setup
"""

import logging

from loguru import logger

from recall_model.core.config import Settings
from recall_model.core.logging import setup_logging


class TestSettings:
    """Tests for environment-driven settings"""

    def test_defaults(self):
        settings = Settings()
        assert settings.LEARNING_RATE == 4e-2
        assert settings.DEFAULT_RETENTION == 0.9

    def test_env_prefix(self, monkeypatch):
        monkeypatch.setenv("RECALL_BATCH_SIZE", "64")
        monkeypatch.setenv("RECALL_LOG_LEVEL", "DEBUG")
        settings = Settings()
        assert settings.BATCH_SIZE == 64
        assert settings.LOG_LEVEL == "DEBUG"


class TestLogging:
    """Tests for routing standard logging into loguru"""

    def test_stdlib_records_reach_loguru(self):
        setup_logging("DEBUG")
        messages = []
        sink_id = logger.add(lambda message: messages.append(message.record["message"]), level="DEBUG")
        try:
            logging.getLogger("recall_model.fsrs.trainer").warning("loss spiked")
        finally:
            logger.remove(sink_id)

        assert "loss spiked" in messages
