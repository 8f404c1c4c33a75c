import torch
import torch.nn as nn


class FSRSLoss(nn.Module):
    """
    Masked binary cross-entropy between predicted retrievability and recall.

    Returns the summed loss and the number of contributing reviews rather
    than their mean, so partial results from disjoint card partitions can
    be added up in any order before dividing once.
    """

    def __init__(self, eps: float = 1e-7):
        super().__init__()
        self.eps = eps

    def forward(self, predictions, labels, mask):
        """
        Args:
            predictions: retrievability before each review [T, B]
            labels: 1.0 if recalled else 0.0 [T, B]
            mask: True for real (non-padding) reviews [T, B]

        Returns:
            (sum_loss, count) as tensors
        """
        # R is exactly 1 for same-day reviews; keep log() finite
        probs = predictions.clamp(self.eps, 1 - self.eps)
        bce = nn.functional.binary_cross_entropy(probs, labels, reduction="none")
        weights = mask.to(bce.dtype)
        return (bce * weights).sum(), weights.sum()
