import numpy as np
import pytest

from spamformer.config import TransformerConfig
from spamformer.core.transformer import Transformer
from spamformer.utils.data import Tokenizer, create_vocabulary

SPAM = [
    "win a free prize now",
    "free cash prize claim now",
    "claim your free reward today",
    "win cash now free",
]
HAM = [
    "meeting moved to tomorrow",
    "lunch with the team tomorrow",
    "see you at the meeting",
    "notes from the team lunch",
]


@pytest.fixture(autouse=True)
def seed():
    np.random.seed(0)


@pytest.fixture
def corpus():
    texts = SPAM + HAM
    labels = [1] * len(SPAM) + [0] * len(HAM)
    return texts, labels


@pytest.fixture
def vocabulary(corpus):
    texts, _ = corpus
    return create_vocabulary(texts)


@pytest.fixture
def tokenizer(vocabulary):
    return Tokenizer(vocabulary, max_seq_len=6)


@pytest.fixture
def small_config(vocabulary):
    return TransformerConfig(
        vocab_size=len(vocabulary),
        num_layers=1,
        model_dim=8,
        num_heads=2,
        feed_forward_dim=16,
        num_classes=2,
        epsilon=1e-6,
        unk_id=vocabulary.unk_id,
        max_seq_len=6,
    )


@pytest.fixture
def model(small_config):
    return Transformer(small_config)
