"""
Data Utilities

This module handles everything between raw text files and id matrices:
- Vocabulary creation (token-to-id mapping with special tokens)
- Tokenization, padding and truncation
- Dataset loading from CSV or JSON files
- Batching (grouping sequences together, optional shuffling)

Tokenization is word level: lowercase, drop everything that is not a letter,
digit or whitespace, split on whitespace.
"""

import csv
import json
import logging
from collections import Counter
from collections.abc import Mapping
from pathlib import Path

import numpy as np

logger = logging.getLogger(__name__)

PAD_TOKEN = "[PAD]"
UNK_TOKEN = "[UNK]"
CLS_TOKEN = "[CLS]"
SEP_TOKEN = "[SEP]"

SPECIAL_TOKENS = (PAD_TOKEN, UNK_TOKEN, CLS_TOKEN, SEP_TOKEN)


class DatasetError(Exception):
    """A dataset file is missing, unreadable or malformed."""


# =============================================================================
# VOCABULARY
# =============================================================================

class Vocabulary(Mapping):
    """
    Immutable token -> id mapping.

    Ids are 0..len-1 with no gaps. [PAD] and [UNK] must be present; every
    lookup helper falls back to [UNK].
    """

    def __init__(self, tokens):
        tokens = list(tokens)
        if len(set(tokens)) != len(tokens):
            raise ValueError("Vocabulary tokens must be unique")
        for token in (PAD_TOKEN, UNK_TOKEN):
            if token not in tokens:
                raise ValueError(f"Vocabulary must contain {token}")

        self._idx_to_word = tuple(tokens)
        self._word_to_idx = {word: idx for idx, word in enumerate(tokens)}

    def __getitem__(self, token):
        return self._word_to_idx[token]

    def __iter__(self):
        return iter(self._idx_to_word)

    def __len__(self):
        return len(self._idx_to_word)

    def __repr__(self):
        return f"Vocabulary(size={len(self)})"

    @property
    def pad_id(self):
        return self._word_to_idx[PAD_TOKEN]

    @property
    def unk_id(self):
        return self._word_to_idx[UNK_TOKEN]

    def id_of(self, token):
        return self._word_to_idx.get(token, self.unk_id)

    def token_of(self, idx):
        if 0 <= idx < len(self._idx_to_word):
            return self._idx_to_word[idx]
        return UNK_TOKEN

    def tokens(self):
        """Tokens ordered by id."""
        return list(self._idx_to_word)

    @classmethod
    def from_mapping(cls, word_to_idx):
        """Rebuild from a token -> id dict (e.g. read back from a checkpoint)."""
        ordered = sorted(word_to_idx.items(), key=lambda item: item[1])
        if [idx for _, idx in ordered] != list(range(len(ordered))):
            raise ValueError("Vocabulary ids must be contiguous and start at 0")
        return cls(word for word, _ in ordered)


def preprocess_text(text):
    """Lowercase, keep letters, digits and whitespace, split into words."""
    cleaned = "".join(c for c in text.lower() if c.isalnum() or c.isspace())
    return cleaned.split()


def create_vocabulary(texts, max_vocab_size=None, special_tokens=SPECIAL_TOKENS):
    """
    Create a vocabulary from a corpus.

    Special tokens come first, in the given order ([PAD] = 0, [UNK] = 1 by
    default). The remaining ids go to corpus words by descending frequency;
    words with equal counts keep their first-appearance order.

    Args:
        texts: Iterable of raw strings
        max_vocab_size: Upper bound on the total size, special tokens included
        special_tokens: Reserved tokens; must include [PAD] and [UNK]

    Returns:
        Vocabulary
    """
    counts = Counter()
    for text in texts:
        counts.update(preprocess_text(text))

    vocab = list(special_tokens)
    # Counter.most_common is stable for ties, which keeps insertion order
    words = [word for word, _ in counts.most_common() if word not in special_tokens]

    if max_vocab_size is not None:
        words = words[:max(0, max_vocab_size - len(vocab))]

    return Vocabulary(vocab + words)


class Tokenizer:
    """
    Convert text to fixed-length id sequences.

    Args:
        vocabulary: Vocabulary shared with the model's embeddings
        max_seq_len: Length every encoded sequence is padded or truncated to
    """

    def __init__(self, vocabulary, max_seq_len=128):
        assert max_seq_len > 0, "max_seq_len must be positive"
        self.vocabulary = vocabulary
        self.max_seq_len = max_seq_len

    def tokenize(self, text):
        """Text -> list of ids (unknown words map to [UNK])."""
        return [self.vocabulary.id_of(word) for word in preprocess_text(text)]

    def pad_or_truncate(self, sequence, max_length=None):
        """Right-pad with [PAD] or cut to exactly max_length ids."""
        max_length = self.max_seq_len if max_length is None else max_length
        sequence = list(sequence)[:max_length]
        return sequence + [self.vocabulary.pad_id] * (max_length - len(sequence))

    def encode(self, text):
        return self.pad_or_truncate(self.tokenize(text))

    def encode_batch(self, texts):
        """List of texts -> int64 array of shape (len(texts), max_seq_len)."""
        encoded = [self.encode(text) for text in texts]
        return np.array(encoded, dtype=np.int64).reshape(len(encoded), self.max_seq_len)

    def decode(self, token_ids, skip_padding=True):
        words = [self.vocabulary.token_of(int(idx)) for idx in token_ids]
        if skip_padding:
            words = [w for w in words if w != PAD_TOKEN]
        return " ".join(words)


# =============================================================================
# DATASET LOADING
# =============================================================================

def read_records(path):
    """
    Read (text, label) records from a file.

    Formats, chosen by extension:
        .csv:  header row, then one record per row; the "text" and "label"
               columns are used when named in the header, otherwise the
               first two columns
        .json: an array of {"text": ..., "label": ...} objects

    Returns:
        texts: list of str
        labels: list of int

    Raises:
        DatasetError: On a missing file, unsupported extension or bad content
    """
    path = Path(path)
    suffix = path.suffix.lower()

    if suffix not in (".csv", ".json"):
        raise DatasetError(f"Unsupported file format: {suffix or path.name!r}")
    if not path.is_file():
        raise DatasetError(f"Dataset not found: {path}")

    try:
        if suffix == ".csv":
            texts, labels = _read_csv(path)
        else:
            texts, labels = _read_json(path)
    except (OSError, UnicodeDecodeError, csv.Error, json.JSONDecodeError) as e:
        raise DatasetError(f"Could not read {path}: {e}") from e

    logger.info("Read %d records from %s", len(texts), path)
    return texts, labels


def _parse_label(raw, where):
    if isinstance(raw, bool):
        raise DatasetError(f"Label must be an integer at {where}, got {raw!r}")
    try:
        label = int(raw)
    except (TypeError, ValueError) as e:
        raise DatasetError(f"Label must be an integer at {where}, got {raw!r}") from e
    if isinstance(raw, float) and raw != label:
        raise DatasetError(f"Label must be an integer at {where}, got {raw!r}")
    if label < 0:
        raise DatasetError(f"Label must be non-negative at {where}, got {label}")
    return label


def _read_csv(path):
    texts, labels = [], []

    with open(path, "r", encoding="utf-8", newline="") as f:
        reader = csv.reader(f)
        header = next(reader, None)
        if header is None:
            return texts, labels

        names = [h.strip().lower() for h in header]
        text_col = names.index("text") if "text" in names else 0
        label_col = names.index("label") if "label" in names else 1

        for line_no, row in enumerate(reader, start=2):
            if not row:
                continue
            where = f"{path}:{line_no}"
            if len(row) <= max(text_col, label_col):
                raise DatasetError(f"Missing text or label field at {where}")
            texts.append(row[text_col])
            labels.append(_parse_label(row[label_col].strip(), where))

    return texts, labels


def _read_json(path):
    with open(path, "r", encoding="utf-8") as f:
        data = json.load(f)

    if not isinstance(data, list):
        raise DatasetError(f"{path} must contain a JSON array of records")

    texts, labels = [], []
    for i, item in enumerate(data):
        where = f"{path}[{i}]"
        if not isinstance(item, dict):
            raise DatasetError(f"Record must be an object at {where}")
        if not isinstance(item.get("text"), str):
            raise DatasetError(f"Missing text field in JSON entry at {where}")
        if "label" not in item:
            raise DatasetError(f"Missing label field in JSON entry at {where}")
        texts.append(item["text"])
        labels.append(_parse_label(item["label"], where))

    return texts, labels


def load_dataset(path, tokenizer):
    """
    Load a dataset file as model-ready arrays.

    Returns:
        inputs: int64 array (num_samples, max_seq_len) of padded ids
        labels: int64 array (num_samples,)

    Raises:
        DatasetError: See read_records
    """
    texts, labels = read_records(path)
    return tokenizer.encode_batch(texts), np.array(labels, dtype=np.int64)


# =============================================================================
# BATCHING
# =============================================================================

def batch(inputs, labels, batch_size):
    """
    Split a dataset into consecutive (input_chunk, label_chunk) pairs.

    The last chunk may be smaller than batch_size.
    """
    assert batch_size > 0, "batch_size must be positive"
    assert len(inputs) == len(labels), "inputs and labels must have the same length"

    return [
        (inputs[i:i + batch_size], labels[i:i + batch_size])
        for i in range(0, len(inputs), batch_size)
    ]


class DataLoader:
    """
    Iterate over (inputs, labels) batches, reshuffling every epoch if asked.

    Shuffling draws from numpy's global generator, so np.random.seed makes
    runs reproducible.
    """

    def __init__(self, inputs, labels, batch_size=32, shuffle=True):
        assert len(inputs) == len(labels), "inputs and labels must have the same length"
        assert batch_size > 0, "batch_size must be positive"

        self.inputs = np.asarray(inputs, dtype=np.int64)
        self.labels = np.asarray(labels, dtype=np.int64)
        self.batch_size = batch_size
        self.shuffle = shuffle
        self.num_samples = len(self.labels)

    def __iter__(self):
        indices = np.arange(self.num_samples)
        if self.shuffle:
            np.random.shuffle(indices)

        for i in range(0, self.num_samples, self.batch_size):
            batch_indices = indices[i:i + self.batch_size]
            yield self.inputs[batch_indices], self.labels[batch_indices]

    def __len__(self):
        return (self.num_samples + self.batch_size - 1) // self.batch_size
