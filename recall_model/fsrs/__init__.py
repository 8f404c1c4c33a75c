"""
FSRS memory model, parameter fitting and scheduling

Includes:
- ParameterVector: the 17 FSRS weights with clamping bounds
- MemoryModel: initial state, post-review update and retrievability
- FSRSTrainer / fit: gradient-based fitting of the weights to review logs
- Scheduler: closed-form next interval for a target retention
- Optimal retention: simulation-based search for the best target retention
"""
from .errors import (
    FSRSError,
    InvalidInput,
    InvalidDataset,
    InvalidTarget,
    InvalidState,
    NumericInstability,
)
from .parameters import (
    DEFAULT_WEIGHTS,
    NUM_WEIGHTS,
    WEIGHT_BOUNDS,
    ParameterVector,
    clip_weights,
)
from .model import (
    CardMemoryState,
    FSRSModel,
    MemoryModel,
    Rating,
    init_state,
    predict_retrievability,
    update_state,
)
from .dataset import FSRSItem, ReviewEvent, filter_outlier, split_data
from .trainer import FSRSTrainer, ProgressState, TrainingConfig, TrainingMetrics, fit
from .evaluation import ModelEvaluation, evaluate
from .scheduler import ItemState, NextStates, Scheduler, memory_state, next_interval, next_states
from .optimal_retention import SimulatorConfig, find_optimal_retention, simulate

__all__ = [
    # Errors
    "FSRSError",
    "InvalidInput",
    "InvalidDataset",
    "InvalidTarget",
    "InvalidState",
    "NumericInstability",
    # Parameters
    "DEFAULT_WEIGHTS",
    "NUM_WEIGHTS",
    "WEIGHT_BOUNDS",
    "ParameterVector",
    "clip_weights",
    # Memory model
    "CardMemoryState",
    "FSRSModel",
    "MemoryModel",
    "Rating",
    "init_state",
    "predict_retrievability",
    "update_state",
    # Data
    "FSRSItem",
    "ReviewEvent",
    "filter_outlier",
    "split_data",
    # Training
    "FSRSTrainer",
    "ProgressState",
    "TrainingConfig",
    "TrainingMetrics",
    "fit",
    "ModelEvaluation",
    "evaluate",
    # Scheduling
    "ItemState",
    "NextStates",
    "Scheduler",
    "memory_state",
    "next_interval",
    "next_states",
    "SimulatorConfig",
    "find_optimal_retention",
    "simulate",
]
