"""
Model persistence.

A checkpoint is one JSON document:

    {
        "format_version": 1,
        "config": {...TransformerConfig fields...},
        "vocabulary": {"[PAD]": 0, "[UNK]": 1, ...} or null,
        "parameters": {"encoder.0.feed_forward.W1": {"shape": [r, c], "data": [[...]]}, ...}
    }

json writes floats with repr(), the shortest string that parses back to the
same double, so values survive the round trip bit for bit.
"""

import json
import logging
import os
from pathlib import Path

import numpy as np

from ..config import TransformerConfig
from ..core.transformer import Transformer
from .data import Vocabulary

logger = logging.getLogger(__name__)

FORMAT_VERSION = 1


class CheckpointError(Exception):
    """A checkpoint file is missing, unreadable, unwritable or inconsistent."""


def save_model(model, path, vocabulary=None):
    """
    Write model configuration, parameters and (optionally) vocabulary.

    The document is written to a temporary sibling first and then moved into
    place, so an interrupted save never leaves a truncated checkpoint.

    Raises:
        CheckpointError: If the file cannot be written; no temporary file is left
    """
    path = Path(path)

    document = {
        "format_version": FORMAT_VERSION,
        "config": model.config.to_dict(),
        "vocabulary": dict(vocabulary) if vocabulary is not None else None,
        "parameters": {
            name: {"shape": list(param.shape), "data": param.tolist()}
            for name, param in model.named_parameters()
        },
    }

    tmp_path = path.with_name(path.name + ".tmp")
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(tmp_path, "w", encoding="utf-8") as f:
            json.dump(document, f)
        os.replace(tmp_path, path)
    except OSError as e:
        if tmp_path.is_file():
            tmp_path.unlink()
        raise CheckpointError(f"Could not write checkpoint {path}: {e}") from e

    logger.info("Saved checkpoint to %s (%d parameters)", path, model.count_parameters())


def load_model(path):
    """
    Rebuild a Transformer from a checkpoint.

    Returns:
        model: Transformer with the saved configuration and weights
        vocabulary: Vocabulary, or None if the checkpoint has none

    Raises:
        CheckpointError: On any missing, unreadable or inconsistent content
    """
    path = Path(path)
    if not path.is_file():
        raise CheckpointError(f"Checkpoint not found: {path}")

    try:
        with open(path, "r", encoding="utf-8") as f:
            document = json.load(f)
    except (OSError, UnicodeDecodeError, json.JSONDecodeError) as e:
        raise CheckpointError(f"Could not read checkpoint {path}: {e}") from e

    if not isinstance(document, dict):
        raise CheckpointError(f"Checkpoint {path} must contain a JSON object")

    version = document.get("format_version")
    if version != FORMAT_VERSION:
        raise CheckpointError(f"Unsupported checkpoint format version: {version!r}")

    try:
        config = TransformerConfig(**document["config"])
        parameters = document["parameters"]
        state = {
            name: np.array(entry["data"], dtype=np.float64).reshape(entry["shape"])
            for name, entry in parameters.items()
        }
    except (KeyError, TypeError, ValueError, AssertionError, AttributeError) as e:
        raise CheckpointError(f"Malformed checkpoint {path}: {e}") from e

    model = Transformer(config)
    try:
        model.load_state_dict(state)
    except ValueError as e:
        raise CheckpointError(f"Checkpoint {path} does not match its configuration: {e}") from e

    vocabulary = None
    if document.get("vocabulary") is not None:
        try:
            vocabulary = Vocabulary.from_mapping(document["vocabulary"])
        except (ValueError, TypeError, AttributeError) as e:
            raise CheckpointError(f"Malformed vocabulary in {path}: {e}") from e
        if len(vocabulary) != config.vocab_size:
            raise CheckpointError(
                f"Vocabulary size {len(vocabulary)} does not match vocab_size {config.vocab_size}"
            )

    logger.info("Loaded checkpoint from %s", path)
    return model, vocabulary
