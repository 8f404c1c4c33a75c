"""
CLI script for fitting FSRS parameters.

Usage:
    python -m recall_model.fsrs.train_fsrs --input reviews.json --epochs 5

For synthetic data testing:
    python -m recall_model.fsrs.train_fsrs --synthetic --num_cards 1000

The input file holds {"cards": [[{"elapsed_days": 0, "grade": 3}, ...], ...]}.
"""

import argparse
import json
import logging
from pathlib import Path
from typing import Any, List, Optional, Sequence

from recall_model.core.config import settings
from recall_model.core.logging import setup_logging

from .evaluation import evaluate
from .parameters import ParameterVector
from .scheduler import memory_state, next_interval
from .synthetic import generate_sequences
from .trainer import FSRSTrainer, TrainingConfig

logger = logging.getLogger(__name__)


def load_review_file(path: str) -> List[List[Any]]:
    """Read card sequences from a JSON file"""
    with open(path, "r") as f:
        data = json.load(f)
    if isinstance(data, dict):
        data = data.get("cards", [])
    return data


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Fit FSRS memory model parameters to review logs"
    )

    # Data arguments
    parser.add_argument(
        "--input", type=str, default=None,
        help="JSON file with per-card review sequences"
    )
    parser.add_argument(
        "--synthetic", action="store_true",
        help="Use synthetic data instead of an input file"
    )
    parser.add_argument(
        "--num_cards", type=int, default=1000,
        help="Number of synthetic cards to generate"
    )

    # Training arguments
    parser.add_argument(
        "--epochs", type=int, default=settings.MAX_EPOCHS,
        help="Maximum number of training epochs"
    )
    parser.add_argument(
        "--batch_size", type=int, default=settings.BATCH_SIZE,
        help="Cards per optimization step"
    )
    parser.add_argument(
        "--learning_rate", type=float, default=settings.LEARNING_RATE,
        help="Learning rate"
    )
    parser.add_argument(
        "--num_workers", type=int, default=settings.NUM_WORKERS,
        help="Threads computing partial batch losses"
    )
    parser.add_argument(
        "--init_params", type=str, default=None,
        help="JSON file with a starting weight list"
    )

    # Scheduling arguments
    parser.add_argument(
        "--retention", type=float, default=settings.DEFAULT_RETENTION,
        help="Target retention for the sample intervals printed after fitting"
    )

    # Output arguments
    parser.add_argument(
        "--output", type=str, default=None,
        help="Write the fitted weights to this JSON file"
    )
    parser.add_argument(
        "--seed", type=int, default=settings.SEED,
        help="Random seed"
    )
    parser.add_argument(
        "--log_level", type=str, default=settings.LOG_LEVEL,
        help="Log level"
    )
    return parser


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    setup_logging(args.log_level)

    if args.synthetic:
        logger.info(f"Generating {args.num_cards} synthetic cards...")
        cards = generate_sequences(num_cards=args.num_cards, seed=args.seed)
    elif args.input:
        cards = load_review_file(args.input)
    else:
        logger.error("Either --input or --synthetic is required")
        return 2

    init_params = None
    if args.init_params:
        init_params = ParameterVector(json.loads(Path(args.init_params).read_text()))

    config = TrainingConfig.from_settings(
        learning_rate=args.learning_rate,
        batch_size=args.batch_size,
        max_epochs=args.epochs,
        num_workers=args.num_workers,
        seed=args.seed,
    )
    trainer = FSRSTrainer(config)
    params = trainer.fit(cards, init_params)

    evaluation = evaluate(cards, params)
    logger.info(
        f"log_loss: {evaluation.log_loss:.4f}, rmse_bins: {evaluation.rmse_bins:.4f}, "
        f"auc: {evaluation.auc:.4f} over {evaluation.count} reviews"
    )

    if cards:
        state = memory_state(cards[0], params)
        logger.info(
            f"First card: stability={state.stability:.2f}, difficulty={state.difficulty:.2f}, "
            f"next interval at {args.retention:.2f}: {next_interval(state, args.retention, params):.1f} days"
        )

    output = json.dumps(params.to_list())
    print(output)
    if args.output:
        Path(args.output).write_text(output)
        logger.info(f"Saved weights to {args.output}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
