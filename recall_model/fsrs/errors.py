"""
Error taxonomy for the memory model, trainer and scheduler.

Invalid arguments fail immediately. Non-finite numbers produced while
computing are a modeling bug and are surfaced as NumericInstability,
never retried.
"""
from typing import Optional


class FSRSError(Exception):
    """Base class for all recall_model.fsrs errors"""


class InvalidInput(FSRSError, ValueError):
    """Malformed review event or argument (bad grade, negative elapsed days, empty sequence)"""


class InvalidDataset(InvalidInput):
    """A training or evaluation dataset failed validation"""

    def __init__(
        self,
        message: str,
        card_index: Optional[int] = None,
        event_index: Optional[int] = None,
    ):
        location = []
        if card_index is not None:
            location.append(f"card {card_index}")
        if event_index is not None:
            location.append(f"event {event_index}")
        if location:
            message = f"{message} ({', '.join(location)})"
        super().__init__(message)
        self.card_index = card_index
        self.event_index = event_index


class InvalidTarget(InvalidInput):
    """Target retention outside the open interval (0, 1)"""


class InvalidState(InvalidInput):
    """Card memory state outside its domain (e.g. stability <= 0)"""


class NumericInstability(FSRSError, ArithmeticError):
    """A loss, gradient or state value became non-finite"""

    def __init__(
        self,
        message: str,
        epoch: Optional[int] = None,
        batch_index: Optional[int] = None,
    ):
        if epoch is not None:
            message = f"{message} (epoch {epoch}, batch {batch_index})"
        super().__init__(message)
        self.epoch = epoch
        self.batch_index = batch_index
