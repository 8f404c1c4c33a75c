"""
Evaluation metrics for a fitted parameter vector.

Every card is replayed and each review after the first yields a
(prediction, recalled) pair.
"""

from dataclasses import dataclass
from typing import Any, Dict, List, Sequence, Tuple

import numpy as np
import torch
from sklearn.metrics import log_loss, roc_auc_score

from .dataset import LengthBucketSampler, ReviewSequenceDataset, collate_sequences
from .model import FSRSModel

RMSE_BINS = 20


@dataclass
class ModelEvaluation:
    """Prediction quality of a parameter vector on a dataset"""
    log_loss: float
    rmse_bins: float
    auc: float
    count: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "log_loss": self.log_loss,
            "rmse_bins": self.rmse_bins,
            "auc": self.auc,
            "count": self.count,
        }


def collect_predictions(
    dataset: Sequence[Sequence[Any]],
    params=None,
    batch_size: int = 512,
) -> Tuple[np.ndarray, np.ndarray]:
    """Replay every card; return (predicted retrievability, observed recall) arrays"""
    data = ReviewSequenceDataset(dataset)
    model = FSRSModel(params)
    sampler = LengthBucketSampler(
        [len(seq) for seq in data.sequences],
        batch_size=batch_size,
        shuffle=False,
    )

    predictions: List[np.ndarray] = []
    labels: List[np.ndarray] = []
    with torch.no_grad():
        for indices in sampler:
            batch = collate_sequences([data[i] for i in indices])
            out = model(batch.t_history, batch.r_history, batch.mask)
            mask = batch.label_mask
            predictions.append(out["retrievability"][mask].numpy())
            labels.append(batch.labels[mask].numpy())

    if not predictions:
        return np.empty(0), np.empty(0)
    return np.concatenate(predictions), np.concatenate(labels)


def rmse_bins(predictions: np.ndarray, labels: np.ndarray, n_bins: int = RMSE_BINS) -> float:
    """
    Calibration RMSE: predictions are bucketed into equal-width bins and the
    mean prediction of each bin is compared to its observed recall rate,
    weighted by bin size.
    """
    if len(predictions) == 0:
        return 0.0
    bins = np.minimum((predictions * n_bins).astype(int), n_bins - 1)
    counts = np.bincount(bins, minlength=n_bins)
    pred_sum = np.bincount(bins, weights=predictions, minlength=n_bins)
    label_sum = np.bincount(bins, weights=labels, minlength=n_bins)

    filled = counts > 0
    pred_mean = pred_sum[filled] / counts[filled]
    label_mean = label_sum[filled] / counts[filled]
    weights = counts[filled]
    return float(np.sqrt(np.sum(weights * (pred_mean - label_mean) ** 2) / np.sum(weights)))


def evaluate(dataset: Sequence[Sequence[Any]], params=None) -> ModelEvaluation:
    """Log loss, binned RMSE and AUC of ``params`` on ``dataset``"""
    predictions, labels = collect_predictions(dataset, params)
    if len(predictions) == 0:
        return ModelEvaluation(log_loss=0.0, rmse_bins=0.0, auc=0.5, count=0)

    clipped = np.clip(predictions, 1e-7, 1 - 1e-7)
    loss = log_loss(labels, clipped, labels=[0.0, 1.0])

    if len(np.unique(labels)) > 1:
        auc = float(roc_auc_score(labels, predictions))
    else:
        auc = 0.5

    return ModelEvaluation(
        log_loss=float(loss),
        rmse_bins=rmse_bins(predictions, labels),
        auc=auc,
        count=int(len(predictions)),
    )
