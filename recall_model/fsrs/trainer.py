"""
FSRS trainer: fits the ParameterVector to review histories.

Per batch, every card is replayed through FSRSModel from its first review;
each later review contributes a binary cross-entropy term between the
retrievability predicted before that review and the observed recall.
Gradients are clipped, Adam takes a step and the weights are projected
back into their bounds.
"""

import logging
import math
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

import torch
from torch.utils.data import DataLoader

from recall_model.core.config import Settings, settings as default_settings

from .dataset import (
    LengthBucketSampler,
    ReviewBatch,
    ReviewSequenceDataset,
    collate_sequences,
)
from .errors import InvalidInput, NumericInstability
from .loss import FSRSLoss
from .model import FSRSModel
from .parameters import ParameterVector, clip_weights, coerce_params
from .pre_training import pretrain

logger = logging.getLogger(__name__)


@dataclass
class TrainingConfig:
    """Configuration for FSRS training."""
    # Optimization
    learning_rate: float = 4e-2
    batch_size: int = 512
    max_epochs: int = 5
    gradient_clip_norm: Optional[float] = 1.0
    convergence_tolerance: float = 1e-5

    # Scheduler
    lr_scheduler: str = "cosine"  # cosine, none

    # Data
    seed: Optional[int] = 2023
    pretrain: bool = True

    # Parallel partial-loss computation within a batch
    num_workers: int = 1

    # Cancellation (checked between batches)
    deadline_seconds: Optional[float] = None

    # Logging
    log_interval: int = 10  # Log every N batches

    @classmethod
    def from_settings(cls, settings: Optional[Settings] = None, **overrides: Any) -> "TrainingConfig":
        settings = settings or default_settings
        values = dict(
            learning_rate=settings.LEARNING_RATE,
            batch_size=settings.BATCH_SIZE,
            max_epochs=settings.MAX_EPOCHS,
            gradient_clip_norm=settings.GRADIENT_CLIP_NORM,
            convergence_tolerance=settings.CONVERGENCE_TOLERANCE,
            num_workers=settings.NUM_WORKERS,
            seed=settings.SEED,
        )
        values.update(overrides)
        return cls(**values)

    def validate(self) -> None:
        if not (self.learning_rate > 0 and math.isfinite(self.learning_rate)):
            raise InvalidInput(f"learning_rate must be > 0, got {self.learning_rate}")
        if self.batch_size < 1:
            raise InvalidInput(f"batch_size must be >= 1, got {self.batch_size}")
        if self.max_epochs < 0:
            raise InvalidInput(f"max_epochs must be >= 0, got {self.max_epochs}")
        if self.num_workers < 1:
            raise InvalidInput(f"num_workers must be >= 1, got {self.num_workers}")
        if self.lr_scheduler not in ("cosine", "none"):
            raise InvalidInput(f"Unknown lr_scheduler: {self.lr_scheduler}")


@dataclass
class ProgressState:
    """Progress reported after every batch"""
    epoch: int
    epoch_total: int
    items_processed: int
    items_total: int

    @property
    def fraction(self) -> float:
        total = self.epoch_total * self.items_total
        if total == 0:
            return 1.0
        return ((self.epoch - 1) * self.items_total + self.items_processed) / total


@dataclass
class TrainingMetrics:
    """Metrics tracked during training."""
    epochs_run: int = 0
    initial_loss: float = float('nan')
    final_loss: float = float('nan')
    loss_history: List[float] = field(default_factory=list)
    stop_reason: str = ""
    num_cards: int = 0
    num_reviews: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "epochs_run": self.epochs_run,
            "initial_loss": self.initial_loss,
            "final_loss": self.final_loss,
            "loss_history": list(self.loss_history),
            "stop_reason": self.stop_reason,
            "num_cards": self.num_cards,
            "num_reviews": self.num_reviews,
        }


class _DeadlineReached(Exception):
    pass


class FSRSTrainer:
    """
    Trainer for the FSRS weight vector.

    Handles validation, optional pre-training, the epoch loop and metrics.
    The weights live in a model owned by a single ``fit`` call; nothing is
    shared between calls.
    """

    def __init__(self, config: Optional[TrainingConfig] = None):
        self.config = config or TrainingConfig()
        self.config.validate()
        self.loss_fn = FSRSLoss()
        self.metrics = TrainingMetrics()

    def fit(
        self,
        dataset: Sequence[Sequence[Any]],
        init_params=None,
        progress: Optional[Callable[[ProgressState], None]] = None,
    ) -> ParameterVector:
        """
        Fit the parameter vector to a collection of card review sequences.

        Args:
            dataset: Per-card chronological review events
            init_params: Starting vector (default: DEFAULT_WEIGHTS)
            progress: Optional callback receiving a ProgressState per batch

        Returns:
            A new, bounded ParameterVector

        Raises:
            InvalidDataset: on any malformed card, before any update
            NumericInstability: on a non-finite loss or gradient
        """
        config = self.config
        train_set = ReviewSequenceDataset(dataset)
        params = coerce_params(init_params).clipped()

        self.metrics = TrainingMetrics(
            num_cards=len(train_set),
            num_reviews=train_set.num_reviews,
        )

        if train_set.num_reviews == 0:
            logger.warning("No card has more than one review; returning initial parameters")
            self.metrics.stop_reason = "no_data"
            return params

        if config.pretrain:
            params = pretrain(train_set.sequences, params)

        model = FSRSModel(params)
        sampler = LengthBucketSampler(
            [len(seq) for seq in train_set.sequences],
            batch_size=config.batch_size,
            seed=config.seed,
        )
        loader = DataLoader(
            train_set,
            batch_sampler=sampler,
            collate_fn=collate_sequences,
            num_workers=0,
        )

        optimizer = torch.optim.Adam(model.parameters(), lr=config.learning_rate)
        scheduler = self._create_scheduler(optimizer, max(1, config.max_epochs * len(loader)))

        self.metrics.initial_loss = self._dataset_loss(model, train_set)
        logger.info(
            f"Training on {len(train_set)} cards ({train_set.num_reviews} reviews), "
            f"initial loss: {self.metrics.initial_loss:.4f}"
        )

        deadline = None
        if config.deadline_seconds is not None:
            deadline = time.monotonic() + config.deadline_seconds

        executor = ThreadPoolExecutor(max_workers=config.num_workers) if config.num_workers > 1 else None
        previous_loss = float('inf')
        self.metrics.stop_reason = "max_epochs"
        try:
            for epoch in range(1, config.max_epochs + 1):
                sampler.set_epoch(epoch)
                try:
                    epoch_loss = self.train_epoch(
                        model, optimizer, scheduler, loader, epoch,
                        executor=executor, deadline=deadline, progress=progress,
                    )
                except _DeadlineReached:
                    self.metrics.epochs_run = epoch
                    self.metrics.stop_reason = "deadline"
                    logger.info(f"Deadline reached during epoch {epoch}")
                    break

                self.metrics.epochs_run = epoch
                self.metrics.loss_history.append(epoch_loss)
                logger.info(
                    f"Epoch {epoch}/{config.max_epochs} - "
                    f"train_loss: {epoch_loss:.4f}, "
                    f"lr: {optimizer.param_groups[0]['lr']:.5f}"
                )

                if previous_loss - epoch_loss < config.convergence_tolerance:
                    self.metrics.stop_reason = "converged"
                    logger.info(f"Converged after {epoch} epochs")
                    break
                previous_loss = epoch_loss
        finally:
            if executor is not None:
                executor.shutdown(wait=True)

        fitted = model.parameter_vector()
        self.metrics.final_loss = self._dataset_loss(model, train_set)
        logger.info(
            f"Finished after {self.metrics.epochs_run} epochs ({self.metrics.stop_reason}), "
            f"final loss: {self.metrics.final_loss:.4f}"
        )
        return fitted

    def _create_scheduler(
        self,
        optimizer: torch.optim.Optimizer,
        total_steps: int,
    ) -> Optional[torch.optim.lr_scheduler.LRScheduler]:
        """Create learning rate scheduler."""
        if self.config.lr_scheduler == "cosine":
            return torch.optim.lr_scheduler.CosineAnnealingLR(
                optimizer,
                T_max=total_steps,
            )
        return None

    def train_epoch(
        self,
        model: FSRSModel,
        optimizer: torch.optim.Optimizer,
        scheduler,
        dataloader: DataLoader,
        epoch: int,
        executor: Optional[ThreadPoolExecutor] = None,
        deadline: Optional[float] = None,
        progress: Optional[Callable[[ProgressState], None]] = None,
    ) -> float:
        """
        Run single training epoch.

        Returns:
            Mean loss per review over the epoch
        """
        total_loss = 0.0
        total_count = 0.0
        items_processed = 0
        items_total = len(dataloader.dataset)

        for batch_idx, batch in enumerate(dataloader):
            loss_sum, count = self.train_step(model, optimizer, batch, epoch, batch_idx, executor)
            if scheduler is not None:
                scheduler.step()

            total_loss += loss_sum
            total_count += count
            items_processed += batch.batch_size

            if progress is not None:
                progress(ProgressState(
                    epoch=epoch,
                    epoch_total=self.config.max_epochs,
                    items_processed=items_processed,
                    items_total=items_total,
                ))

            # Log progress
            if batch_idx % self.config.log_interval == 0 and count > 0:
                logger.debug(
                    f"Epoch {epoch} [{batch_idx}/{len(dataloader)}] - "
                    f"loss: {loss_sum / count:.4f}"
                )

            if deadline is not None and time.monotonic() >= deadline:
                raise _DeadlineReached()

        return total_loss / total_count if total_count > 0 else 0.0

    def train_step(
        self,
        model: FSRSModel,
        optimizer: torch.optim.Optimizer,
        batch: ReviewBatch,
        epoch: int,
        batch_idx: int,
        executor: Optional[ThreadPoolExecutor] = None,
    ) -> Tuple[float, float]:
        """
        One optimizer step on a batch.

        Returns:
            (summed loss, number of reviews) for the batch before the step
        """
        optimizer.zero_grad()
        loss_sum, count = self._compute_batch_loss(model, batch, executor)
        if count.item() == 0:
            return 0.0, 0.0

        loss = loss_sum / count
        if not torch.isfinite(loss):
            raise NumericInstability(f"Non-finite loss {loss.item()}", epoch, batch_idx)

        # Backward pass
        loss.backward()
        grad = model.w.grad
        if grad is None or not torch.isfinite(grad).all():
            raise NumericInstability("Non-finite gradient", epoch, batch_idx)

        # Gradient clipping
        if self.config.gradient_clip_norm:
            torch.nn.utils.clip_grad_norm_(
                model.parameters(),
                self.config.gradient_clip_norm,
            )

        optimizer.step()
        clip_weights(model.w)

        if not torch.isfinite(model.w).all():
            raise NumericInstability("Non-finite weights after update", epoch, batch_idx)

        return loss_sum.item(), count.item()

    def _compute_batch_loss(
        self,
        model: FSRSModel,
        batch: ReviewBatch,
        executor: Optional[ThreadPoolExecutor] = None,
    ) -> Tuple[torch.Tensor, torch.Tensor]:
        """
        Summed loss and review count for a batch.

        With an executor, disjoint card partitions are replayed in parallel
        and their partial sums added up.
        """
        if executor is None or batch.batch_size < 2:
            return self._partial_loss(model, batch)

        futures = [
            executor.submit(self._partial_loss, model, part)
            for part in batch.split(self.config.num_workers)
        ]
        results = [future.result() for future in futures]
        loss_sum = torch.stack([r[0] for r in results]).sum()
        count = torch.stack([r[1] for r in results]).sum()
        return loss_sum, count

    def _partial_loss(
        self,
        model: FSRSModel,
        batch: ReviewBatch,
    ) -> Tuple[torch.Tensor, torch.Tensor]:
        out = model(batch.t_history, batch.r_history, batch.mask)
        return self.loss_fn(out["retrievability"], batch.labels, batch.label_mask)

    def _dataset_loss(self, model: FSRSModel, dataset: ReviewSequenceDataset) -> float:
        """Mean loss per review over a whole dataset, without gradients"""
        loader = DataLoader(
            dataset,
            batch_sampler=LengthBucketSampler(
                [len(seq) for seq in dataset.sequences],
                batch_size=self.config.batch_size,
                shuffle=False,
            ),
            collate_fn=collate_sequences,
        )
        total_loss = 0.0
        total_count = 0.0
        with torch.no_grad():
            for batch in loader:
                loss_sum, count = self._partial_loss(model, batch)
                total_loss += loss_sum.item()
                total_count += count.item()
        return total_loss / total_count if total_count > 0 else 0.0

    def compute_loss(self, dataset: Sequence[Sequence[Any]], params=None) -> float:
        """Mean per-review log loss of ``params`` on ``dataset``"""
        return self._dataset_loss(FSRSModel(params), ReviewSequenceDataset(dataset))


def fit(
    dataset: Sequence[Sequence[Any]],
    init_params=None,
    config: Optional[TrainingConfig] = None,
    progress: Optional[Callable[[ProgressState], None]] = None,
) -> ParameterVector:
    """Fit a ParameterVector to review histories (see FSRSTrainer.fit)"""
    return FSRSTrainer(config).fit(dataset, init_params, progress=progress)
