"""
Configuration for the spam classification transformer.

Defaults live in CONFIG, a flat dictionary with one key per hyperparameter.
A run copies it, optionally overrides it from a YAML or JSON file, and then
hands explicit values to each component. Nothing in the numerical core reads
this module directly.

The model architecture itself is captured by TransformerConfig, which is the
record persisted alongside the weights in a checkpoint.
"""

import json
from dataclasses import asdict, dataclass, fields
from pathlib import Path

import yaml


CONFIG = {
    # ==========================================================================
    # MODEL ARCHITECTURE
    # ==========================================================================

    # Width of the per-token feature vector flowing through the encoder
    "model_dim": 32,

    # Number of attention heads. Only the standalone multi-head utility splits
    # into heads; the encoder uses single-head attention. model_dim must still
    # be divisible by this value.
    "num_heads": 2,

    # Number of stacked encoder layers
    "num_layers": 2,

    # Hidden width of each feed-forward sublayer
    "feed_forward_dim": 64,

    # Number of output classes (2 for spam / not spam)
    "num_classes": 2,

    # How per-token vectors are reduced to one vector per sequence:
    # "mean" averages all positions, "first" keeps the first token
    "pooling": "mean",

    # ==========================================================================
    # DATA
    # ==========================================================================

    # Every sequence is padded or truncated to this many tokens
    "max_seq_len": 128,

    # Maximum vocabulary size including special tokens (None = unlimited)
    "max_vocab_size": 20000,

    # ==========================================================================
    # TRAINING HYPERPARAMETERS
    # ==========================================================================

    # "adam" (adaptive moments) or "sgd" (plain gradient descent)
    "optimizer": "adam",

    # Step size for parameter updates
    "learning_rate": 0.001,

    # Exponential decay rates for the first and second moment estimates
    "beta1": 0.9,
    "beta2": 0.999,

    # Momentum for SGD (0 = plain gradient descent)
    "momentum": 0.0,

    "epochs": 10,
    "batch_size": 32,

    # Maximum global gradient norm (None disables clipping)
    "max_grad_norm": 1.0,

    # Reshuffle training samples every epoch
    "shuffle": True,

    # Seed for numpy's global generator (weight init and shuffling)
    "seed": 42,

    # ==========================================================================
    # NUMERICAL STABILITY
    # ==========================================================================

    # Added to the variance in layer normalization
    "epsilon": 1e-6,

    # Added to the denominator of the Adam update
    "optimizer_eps": 1e-8,
}

_OPTIMIZERS = ("adam", "sgd")
_POOLING = ("mean", "first")


@dataclass
class TransformerConfig:
    """Architecture record of a Transformer classifier.

    Attributes:
        vocab_size: Number of rows in the embedding matrix
        num_layers: Number of encoder layers
        model_dim: Width of the token representations
        num_heads: Head count for multi-head attention (model_dim % num_heads == 0)
        feed_forward_dim: Hidden width of the feed-forward sublayers
        num_classes: Number of output logits
        epsilon: Layer-norm stability constant
        unk_id: Embedding row used for out-of-range token ids
        pooling: "mean" or "first"
        max_seq_len: Padded sequence length the model is trained and served with
    """

    vocab_size: int
    num_layers: int = 2
    model_dim: int = 32
    num_heads: int = 2
    feed_forward_dim: int = 64
    num_classes: int = 2
    epsilon: float = 1e-6
    unk_id: int = 1
    pooling: str = "mean"
    max_seq_len: int = 128

    def __post_init__(self):
        assert self.vocab_size > 0, "vocab_size must be positive"
        assert self.model_dim > 0, "model_dim must be positive"
        assert self.num_layers >= 0, "num_layers must be non-negative"
        assert self.num_heads > 0, "num_heads must be positive"
        assert self.model_dim % self.num_heads == 0, \
            f"model_dim ({self.model_dim}) must be divisible by num_heads ({self.num_heads})"
        assert self.feed_forward_dim > 0, "feed_forward_dim must be positive"
        assert self.num_classes > 0, "num_classes must be positive"
        assert 0 <= self.unk_id < self.vocab_size, \
            f"unk_id ({self.unk_id}) outside vocabulary of size {self.vocab_size}"
        assert self.pooling in _POOLING, f"pooling must be one of {_POOLING}"
        assert self.max_seq_len > 0, "max_seq_len must be positive"

    @classmethod
    def from_dict(cls, config, **overrides):
        """Build from a CONFIG-style dict, ignoring keys that are not model fields."""
        names = {f.name for f in fields(cls)}
        values = {k: v for k, v in config.items() if k in names}
        values.update(overrides)
        return cls(**values)

    def to_dict(self):
        return asdict(self)


def load_config(path=None, **overrides):
    """
    Build a run configuration.

    Layers, later wins: CONFIG defaults -> file (YAML or JSON) -> overrides.
    Overrides whose value is None are ignored so argparse namespaces can be
    passed straight through.

    Args:
        path: Optional path to a .yaml/.yml/.json file with a flat mapping
        **overrides: Individual keys to replace

    Returns:
        A new validated dict; CONFIG itself is never mutated

    Raises:
        FileNotFoundError: If path does not exist
        ValueError: If the file cannot be parsed or holds invalid values
    """
    config = CONFIG.copy()

    if path is not None:
        config.update(_read_config_file(Path(path)))

    config.update({k: v for k, v in overrides.items() if v is not None})
    validate_config(config)
    return config


def _read_config_file(path):
    if not path.exists():
        raise FileNotFoundError(f"Configuration file not found: {path}")

    with open(path, "r", encoding="utf-8") as f:
        try:
            if path.suffix == ".json":
                data = json.load(f)
            else:
                data = yaml.safe_load(f)
        except (yaml.YAMLError, json.JSONDecodeError) as e:
            raise ValueError(f"Error parsing configuration {path}: {e}") from e

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValueError(f"Configuration {path} must contain a mapping")
    return data


_INT_KEYS = ("model_dim", "num_heads", "num_layers", "feed_forward_dim", "num_classes",
             "max_seq_len", "epochs", "batch_size", "seed")
_FLOAT_KEYS = ("learning_rate", "beta1", "beta2", "momentum", "epsilon", "optimizer_eps")


def _is_int(value):
    return isinstance(value, int) and not isinstance(value, bool)


def _is_number(value):
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def validate_config(config):
    """
    Check a run configuration.

    Raises:
        ValueError: On unknown keys, values of the wrong type or out-of-range values
    """
    unknown = sorted(set(config) - set(CONFIG))
    if unknown:
        raise ValueError(f"Unknown configuration keys: {unknown}")

    # Types first, so the range checks below only ever compare numbers
    for key in _INT_KEYS:
        if not _is_int(config[key]):
            raise ValueError(f"{key} must be an integer, got {config[key]!r}")
    for key in _FLOAT_KEYS:
        if not _is_number(config[key]):
            raise ValueError(f"{key} must be a number, got {config[key]!r}")
    if config["max_vocab_size"] is not None and not _is_int(config["max_vocab_size"]):
        raise ValueError(f"max_vocab_size must be an integer or null, got {config['max_vocab_size']!r}")
    if config["max_grad_norm"] is not None and not _is_number(config["max_grad_norm"]):
        raise ValueError(f"max_grad_norm must be a number or null, got {config['max_grad_norm']!r}")
    if not isinstance(config["shuffle"], bool):
        raise ValueError(f"shuffle must be true or false, got {config['shuffle']!r}")

    for key in ("model_dim", "num_heads", "feed_forward_dim", "num_classes",
                "max_seq_len", "batch_size"):
        if config[key] <= 0:
            raise ValueError(f"{key} must be positive")
    if config["num_layers"] < 0:
        raise ValueError("num_layers must be non-negative")
    if config["epochs"] < 0:
        raise ValueError("epochs must be non-negative")
    if config["model_dim"] % config["num_heads"] != 0:
        raise ValueError(
            f"model_dim ({config['model_dim']}) must be divisible by "
            f"num_heads ({config['num_heads']})"
        )
    if config["learning_rate"] <= 0:
        raise ValueError("learning_rate must be positive")
    if not (0.0 <= config["beta1"] < 1.0 and 0.0 <= config["beta2"] < 1.0):
        raise ValueError("beta1 and beta2 must lie in [0, 1)")
    if not 0.0 <= config["momentum"] < 1.0:
        raise ValueError("momentum must lie in [0, 1)")
    if config["epsilon"] <= 0 or config["optimizer_eps"] <= 0:
        raise ValueError("epsilon and optimizer_eps must be positive")
    if config["max_grad_norm"] is not None and config["max_grad_norm"] <= 0:
        raise ValueError("max_grad_norm must be positive (or null to disable clipping)")
    if config["optimizer"] not in _OPTIMIZERS:
        raise ValueError(f"optimizer must be one of {_OPTIMIZERS}")
    if config["pooling"] not in _POOLING:
        raise ValueError(f"pooling must be one of {_POOLING}")
    if config["max_vocab_size"] is not None and config["max_vocab_size"] < 2:
        raise ValueError("max_vocab_size must leave room for [PAD] and [UNK]")
