#!/usr/bin/env python3
"""
spamformer - Command Line Entry Point

Train, evaluate and run a from-scratch transformer spam classifier.

Usage:
    python -m spamformer train data/train.csv --checkpoint model.json
    python -m spamformer evaluate data/test.json --checkpoint model.json
    python -m spamformer predict "WIN a FREE prize now" --checkpoint model.json

train:
    1. Build a vocabulary from the training file
    2. Build a Transformer from the configuration
    3. Train for the configured number of epochs, checkpointing every epoch

evaluate:
    Report loss, accuracy, precision, recall and F1 on a labelled file.

predict:
    Print the predicted class and the class probabilities of one text.

Configuration comes from spamformer.config.CONFIG, optionally overridden by a
YAML/JSON file (--config) and then by the flags below.
"""

import argparse
import logging
import sys

import numpy as np

from .config import TransformerConfig, load_config
from .core.transformer import Transformer
from .evaluate import Predictor, evaluate
from .optim import build_optimizer
from .train import Trainer
from .utils.checkpoint import CheckpointError, load_model
from .utils.data import DatasetError, Tokenizer, create_vocabulary, load_dataset, read_records

logger = logging.getLogger("spamformer")


def print_separator(title=""):
    """Print a visual separator."""
    print("\n" + "=" * 60)
    if title:
        print(f"  {title}")
        print("=" * 60)


def build_parser():
    parser = argparse.ArgumentParser(
        prog="spamformer",
        description="From-scratch transformer encoder for spam classification",
    )
    parser.add_argument("--config", default=None, help="YAML or JSON file overriding the defaults")
    parser.add_argument("--log-level", default="INFO", help="Logging level (DEBUG, INFO, ...)")

    sub = parser.add_subparsers(dest="command", required=True)

    train = sub.add_parser("train", help="Train a model on a CSV/JSON dataset")
    train.add_argument("dataset", help="Training file (.csv or .json)")
    train.add_argument("--checkpoint", required=True, help="Where to save the model")
    train.add_argument("--epochs", type=int, default=None)
    train.add_argument("--batch-size", dest="batch_size", type=int, default=None)
    train.add_argument("--learning-rate", dest="learning_rate", type=float, default=None)
    train.add_argument("--optimizer", choices=["adam", "sgd"], default=None)
    train.add_argument("--seed", type=int, default=None)

    evaluate_cmd = sub.add_parser("evaluate", help="Evaluate a saved model")
    evaluate_cmd.add_argument("dataset", help="Labelled file (.csv or .json)")
    evaluate_cmd.add_argument("--checkpoint", required=True)
    evaluate_cmd.add_argument("--batch-size", dest="batch_size", type=int, default=None)

    predict = sub.add_parser("predict", help="Classify a single text")
    predict.add_argument("text")
    predict.add_argument("--checkpoint", required=True)

    return parser


def run_train(args, config):
    np.random.seed(config["seed"])

    print_separator("STEP 1: Building Vocabulary")
    texts, labels = read_records(args.dataset)
    vocabulary = create_vocabulary(texts, max_vocab_size=config["max_vocab_size"])
    tokenizer = Tokenizer(vocabulary, config["max_seq_len"])
    print(f"  Vocabulary size: {len(vocabulary)}")

    print_separator("STEP 2: Building Model")
    model_config = TransformerConfig.from_dict(
        config, vocab_size=len(vocabulary), unk_id=vocabulary.unk_id
    )
    model = Transformer(model_config)
    print(f"  Layers: {model_config.num_layers}, model dim: {model_config.model_dim}, "
          f"feed-forward dim: {model_config.feed_forward_dim}")
    print(f"  Total trainable parameters: {model.count_parameters():,}")

    print_separator("STEP 3: Training")
    optimizer = build_optimizer(
        config["optimizer"],
        learning_rate=config["learning_rate"],
        beta1=config["beta1"],
        beta2=config["beta2"],
        eps=config["optimizer_eps"],
        momentum=config["momentum"],
    )
    trainer = Trainer(
        model,
        optimizer,
        epochs=config["epochs"],
        batch_size=config["batch_size"],
        max_grad_norm=config["max_grad_norm"],
        shuffle=config["shuffle"],
        checkpoint_path=args.checkpoint,
        vocabulary=vocabulary,
    )
    history = trainer.fit(tokenizer.encode_batch(texts), np.array(labels, dtype=np.int64))

    if history:
        print(f"\n  Initial loss: {history[0].loss:.4f}")
        print(f"  Final loss: {history[-1].loss:.4f}")
        print(f"  Final accuracy: {history[-1].accuracy * 100:.2f}%")
    print(f"  Model saved to {args.checkpoint}")


def run_evaluate(args, config):
    model, vocabulary = load_model(args.checkpoint)
    if vocabulary is None:
        raise CheckpointError(f"Checkpoint {args.checkpoint} has no vocabulary")

    # Pad to the length the model was trained with
    tokenizer = Tokenizer(vocabulary, model.config.max_seq_len)
    inputs, labels = load_dataset(args.dataset, tokenizer)

    loss, metrics = evaluate(model, inputs, labels, batch_size=config["batch_size"])

    print_separator("Evaluation")
    print(f"  Samples:   {len(labels)}")
    print(f"  Loss:      {loss:.4f}")
    print(f"  Accuracy:  {metrics['accuracy'] * 100:.2f}%")
    print(f"  Precision: {metrics['precision']:.4f}")
    print(f"  Recall:    {metrics['recall']:.4f}")
    print(f"  F1 score:  {metrics['f1_score']:.4f}")


def run_predict(args, config):
    predictor = Predictor.from_checkpoint(args.checkpoint)
    predicted_class, probabilities = predictor.predict(args.text)

    print(f"Predicted class: {predicted_class}")
    print("Probabilities: " + ", ".join(f"{p:.4f}" for p in probabilities))


COMMANDS = {
    "train": run_train,
    "evaluate": run_evaluate,
    "predict": run_predict,
}


def main(argv=None):
    """Parse arguments and dispatch; returns the process exit status."""
    args = build_parser().parse_args(argv)

    logging.basicConfig(
        level=getattr(logging, str(args.log_level).upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    overrides = {
        key: getattr(args, key, None)
        for key in ("epochs", "batch_size", "learning_rate", "optimizer", "seed")
    }

    try:
        config = load_config(args.config, **overrides)
        COMMANDS[args.command](args, config)
    except (DatasetError, CheckpointError, FileNotFoundError, ValueError) as e:
        logger.error("%s failed: %s", args.command, e)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
