"""
Review history datasets for FSRS training.

A dataset is a collection of per-card review sequences in chronological
order. Cards are independent: batches may group and shuffle cards freely,
but events inside one card are never reordered.
"""

import math
from collections import defaultdict
from dataclasses import dataclass
from typing import Any, Dict, Iterator, List, Mapping, Optional, Sequence, Tuple

import numpy as np
import torch
from torch.nn.utils.rnn import pad_sequence
from torch.utils.data import Dataset, Sampler

from .errors import InvalidDataset, InvalidInput
from .model import DTYPE, Rating


@dataclass(frozen=True)
class ReviewEvent:
    """Single review: days since the previous review (0 for the first) and its grade"""
    elapsed_days: float
    grade: int

    @property
    def recalled(self) -> bool:
        return self.grade != Rating.AGAIN

    @classmethod
    def from_dict(cls, d: Mapping[str, Any]) -> "ReviewEvent":
        """Create from a review log dictionary ({"elapsed_days": .., "grade": ..})"""
        grade = d.get("grade", d.get("rating"))
        elapsed = d.get("elapsed_days", d.get("delta_t", 0))
        return cls(elapsed_days=elapsed, grade=grade)

    def to_dict(self) -> Dict[str, Any]:
        return {"elapsed_days": self.elapsed_days, "grade": int(self.grade)}


CardSequence = Tuple[ReviewEvent, ...]


def _coerce_event(raw: Any, card_index: int, event_index: int) -> ReviewEvent:
    if isinstance(raw, ReviewEvent):
        elapsed, grade = raw.elapsed_days, raw.grade
    elif isinstance(raw, Mapping):
        event = ReviewEvent.from_dict(raw)
        elapsed, grade = event.elapsed_days, event.grade
    elif isinstance(raw, (tuple, list)) and len(raw) == 2:
        elapsed, grade = raw
    else:
        raise InvalidDataset(f"Unrecognised review event {raw!r}", card_index, event_index)

    try:
        rating = Rating.parse(grade)
    except InvalidInput as e:
        raise InvalidDataset(str(e), card_index, event_index) from None

    try:
        elapsed = float(elapsed)
    except (TypeError, ValueError):
        raise InvalidDataset(f"elapsed_days must be a number, got {elapsed!r}", card_index, event_index) from None
    if not math.isfinite(elapsed) or elapsed < 0:
        raise InvalidDataset(f"elapsed_days must be finite and >= 0, got {elapsed}", card_index, event_index)

    return ReviewEvent(elapsed_days=elapsed, grade=rating)


def validate_sequence(events: Sequence[Any], card_index: int = 0) -> CardSequence:
    """Validate one card history and return it as a tuple of normalised ReviewEvents"""
    if events is None or len(events) == 0:
        raise InvalidDataset("Card review sequence is empty", card_index)
    return tuple(
        _coerce_event(raw, card_index, event_index)
        for event_index, raw in enumerate(events)
    )


def validate_dataset(sequences: Sequence[Sequence[Any]]) -> List[CardSequence]:
    """
    Validate a whole dataset up front.

    Any malformed card aborts the call; nothing is skipped silently. The
    input collection is left untouched.
    """
    if sequences is None or len(sequences) == 0:
        raise InvalidDataset("Dataset contains no card sequences")
    return [validate_sequence(events, i) for i, events in enumerate(sequences)]


# === Items (one review with its card's history) ===

@dataclass(frozen=True)
class FSRSItem:
    """
    A single review together with the earlier reviews of the same card.

    The last review is the one being predicted; the rest is history.
    """
    reviews: CardSequence

    def history(self) -> CardSequence:
        return self.reviews[:-1]

    def current(self) -> ReviewEvent:
        return self.reviews[-1]


def expand_sequence(events: Sequence[ReviewEvent]) -> List[FSRSItem]:
    """One item per review after the first: [e0, e1], [e0, e1, e2], ..."""
    events = tuple(events)
    return [FSRSItem(reviews=events[:i + 1]) for i in range(1, len(events))]


def filter_outlier(items: Sequence[FSRSItem]) -> List[FSRSItem]:
    """
    Drop rare delta_t groups among two-review items.

    Items are grouped by first rating, then by the delta_t of the second
    review. Within each rating the smallest groups are removed while the
    removed total stays within 5% of that rating's items.
    """
    groups: Dict[int, Dict[float, List[FSRSItem]]] = defaultdict(lambda: defaultdict(list))
    for item in items:
        first, current = item.reviews[0], item.current()
        groups[int(first.grade)][current.elapsed_days].append(item)

    filtered: List[FSRSItem] = []
    for rating in sorted(groups):
        sub_groups = sorted(
            groups[rating].items(),
            key=lambda kv: (-len(kv[1]), kv[0]),
        )
        total = sum(len(group) for _, group in sub_groups)
        removed = 0
        for _, group in reversed(sub_groups):
            if removed + len(group) > total // 20:
                filtered.extend(group)
            else:
                removed += len(group)
    return filtered


def split_data(items: Sequence[FSRSItem]) -> Tuple[List[FSRSItem], List[FSRSItem]]:
    """Split into (pre-training items with exactly two reviews, remaining items)"""
    pretrain = [item for item in items if len(item.reviews) == 2]
    train = [item for item in items if len(item.reviews) != 2]
    return filter_outlier(pretrain), train


# === Torch dataset and batching ===

class ReviewSequenceDataset(Dataset):
    """Validated card sequences, indexable by card"""

    def __init__(self, sequences: Sequence[Sequence[Any]]):
        self.sequences: List[CardSequence] = validate_dataset(sequences)

    def __len__(self) -> int:
        return len(self.sequences)

    def __getitem__(self, index: int) -> CardSequence:
        return self.sequences[index]

    @property
    def num_reviews(self) -> int:
        """Reviews that carry a prediction (all but the first of each card)"""
        return sum(len(seq) - 1 for seq in self.sequences)


@dataclass
class ReviewBatch:
    """Padded tensors for a batch of cards, time-major [seq_len, batch]"""
    t_history: torch.Tensor
    r_history: torch.Tensor
    mask: torch.Tensor
    labels: torch.Tensor  # [seq_len-1, batch], 1.0 when recalled

    @property
    def batch_size(self) -> int:
        return self.t_history.shape[1]

    @property
    def label_mask(self) -> torch.Tensor:
        return self.mask[1:]

    def split(self, parts: int) -> List["ReviewBatch"]:
        """Partition the cards of this batch into at most ``parts`` disjoint batches"""
        parts = max(1, min(parts, self.batch_size))
        columns = torch.arange(self.batch_size).chunk(parts)
        return [
            ReviewBatch(
                t_history=self.t_history[:, cols],
                r_history=self.r_history[:, cols],
                mask=self.mask[:, cols],
                labels=self.labels[:, cols],
            )
            for cols in columns
        ]


def collate_sequences(sequences: Sequence[CardSequence]) -> ReviewBatch:
    """Pad a list of card sequences into a ReviewBatch"""
    t_history = pad_sequence(
        [torch.tensor([e.elapsed_days for e in seq], dtype=DTYPE) for seq in sequences]
    )
    r_history = pad_sequence(
        [torch.tensor([float(e.grade) for e in seq], dtype=DTYPE) for seq in sequences]
    )
    mask = pad_sequence(
        [torch.ones(len(seq), dtype=torch.bool) for seq in sequences]
    )
    labels = (r_history[1:] > Rating.AGAIN).to(DTYPE)
    return ReviewBatch(t_history=t_history, r_history=r_history, mask=mask, labels=labels)


class LengthBucketSampler(Sampler):
    """
    Batch sampler grouping cards of similar history length.

    Cards are sorted by length and cut into batches, then the batch order
    is shuffled; reshuffled every epoch via ``set_epoch``.
    """

    def __init__(
        self,
        lengths: Sequence[int],
        batch_size: int,
        seed: Optional[int] = None,
        shuffle: bool = True,
    ):
        if batch_size < 1:
            raise InvalidInput(f"batch_size must be >= 1, got {batch_size}")
        self.lengths = list(lengths)
        self.batch_size = batch_size
        self.seed = seed
        self.shuffle = shuffle
        self.epoch = 0

    def set_epoch(self, epoch: int) -> None:
        self.epoch = epoch

    def _batches(self) -> List[List[int]]:
        order = sorted(range(len(self.lengths)), key=lambda i: self.lengths[i])
        batches = [
            order[i:i + self.batch_size]
            for i in range(0, len(order), self.batch_size)
        ]
        if self.shuffle:
            seed = None if self.seed is None else self.seed + self.epoch
            rng = np.random.default_rng(seed)
            batches = [batches[i] for i in rng.permutation(len(batches))]
        return batches

    def __iter__(self) -> Iterator[List[int]]:
        return iter(self._batches())

    def __len__(self) -> int:
        return math.ceil(len(self.lengths) / self.batch_size)
