# Collaborators around the numerical core: text, datasets and persistence

from .data import (
    PAD_TOKEN,
    SPECIAL_TOKENS,
    UNK_TOKEN,
    DataLoader,
    DatasetError,
    Tokenizer,
    Vocabulary,
    batch,
    create_vocabulary,
    load_dataset,
    read_records,
)
from .checkpoint import CheckpointError, load_model, save_model
