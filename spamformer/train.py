"""
Training

This module implements:
- clip_gradients: Global-norm gradient clipping
- train_epoch: One pass over the data (forward, loss, backward, update)
- Trainer: Epoch loop with metrics and optional checkpointing

Every batch goes through the same steps:
    1. Forward pass: token ids -> logits
    2. Loss: cross-entropy against the labels
    3. Gradient of the loss w.r.t. the logits
    4. Backward pass through every layer
    5. Gradient clipping
    6. Optimizer step (parameters change in place)
"""

import logging
from collections import namedtuple

import numpy as np

from .loss import CrossEntropyLoss
from .utils.checkpoint import save_model
from .utils.data import DataLoader, load_dataset

logger = logging.getLogger(__name__)

EpochResult = namedtuple("EpochResult", ["epoch", "loss", "accuracy"])


def clip_gradients(params_and_grads, max_norm=1.0):
    """
    Scale all gradients down together if their global L2 norm exceeds max_norm.

    Direction is preserved, only the magnitude is limited.

    Returns:
        The total norm before clipping
    """
    total_norm_sq = 0.0
    for _, grad in params_and_grads:
        if grad is not None:
            total_norm_sq += np.sum(grad ** 2)

    total_norm = float(np.sqrt(total_norm_sq))

    if total_norm > max_norm:
        scale = max_norm / (total_norm + 1e-8)
        for _, grad in params_and_grads:
            if grad is not None:
                grad *= scale

    return total_norm


def train_epoch(model, batches, loss_fn, optimizer, max_grad_norm=None):
    """
    Train for one epoch.

    Args:
        model: Transformer
        batches: Iterable of (inputs, labels) pairs
        loss_fn: CrossEntropyLoss
        optimizer: SGD or Adam
        max_grad_norm: Clip threshold, None to disable

    Returns:
        (mean batch loss, accuracy); both 0.0 when there were no samples
    """
    total_loss = 0.0
    num_batches = 0
    correct = 0
    total = 0

    for inputs, labels in batches:
        labels = np.asarray(labels, dtype=np.int64)
        if labels.size == 0:
            continue

        logits = model.forward(inputs)
        loss = loss_fn.forward(logits, labels)

        model.backward(loss_fn.backward())

        params_and_grads = model.get_params_and_grads()
        if max_grad_norm is not None:
            clip_gradients(params_and_grads, max_grad_norm)
        optimizer.step(params_and_grads)

        total_loss += loss
        num_batches += 1
        correct += int(np.sum(np.argmax(logits, axis=-1) == labels))
        total += labels.size

    if num_batches == 0:
        return 0.0, 0.0
    return total_loss / num_batches, correct / total


class Trainer:
    """
    Runs training epochs in order and reports per-epoch loss and accuracy.

    Args:
        model: Transformer to train in place
        optimizer: SGD or Adam
        loss_fn: Defaults to CrossEntropyLoss
        epochs: Number of passes over the data
        batch_size: Samples per parameter update
        max_grad_norm: Gradient clipping threshold (None disables)
        shuffle: Reshuffle samples every epoch
        checkpoint_path: If set, the model is saved after every epoch and at the end
        vocabulary: Stored in checkpoints so inference can rebuild the tokenizer
    """

    def __init__(self, model, optimizer, loss_fn=None, epochs=10, batch_size=32,
                 max_grad_norm=1.0, shuffle=True, checkpoint_path=None, vocabulary=None):
        assert epochs >= 0, "epochs must be non-negative"
        assert batch_size > 0, "batch_size must be positive"

        self.model = model
        self.optimizer = optimizer
        self.loss_fn = loss_fn if loss_fn is not None else CrossEntropyLoss()
        self.epochs = epochs
        self.batch_size = batch_size
        self.max_grad_norm = max_grad_norm
        self.shuffle = shuffle
        self.checkpoint_path = checkpoint_path
        self.vocabulary = vocabulary

        self.history = []

    def fit(self, inputs, labels):
        """
        Train on in-memory arrays.

        Args:
            inputs: (num_samples, seq_len) token ids
            labels: (num_samples,) class ids

        Returns:
            List of EpochResult, one per epoch
        """
        data_loader = DataLoader(inputs, labels, batch_size=self.batch_size, shuffle=self.shuffle)
        logger.info("Training on %d samples, %d batches per epoch, %d epochs",
                    data_loader.num_samples, len(data_loader), self.epochs)

        for epoch in range(1, self.epochs + 1):
            loss, accuracy = train_epoch(self.model, data_loader, self.loss_fn,
                                         self.optimizer, self.max_grad_norm)
            result = EpochResult(epoch, loss, accuracy)
            self.history.append(result)

            logger.info("Epoch %d/%d: Loss: %.4f, Accuracy: %.2f%%",
                        epoch, self.epochs, loss, accuracy * 100.0)
            self._checkpoint()

        if self.epochs == 0:
            self._checkpoint()
        return self.history

    def train_from_file(self, dataset_path, tokenizer):
        """
        Load a dataset file and train on it.

        Raises:
            DatasetError: If the file cannot be loaded; the model is untouched
        """
        inputs, labels = load_dataset(dataset_path, tokenizer)
        return self.fit(inputs, labels)

    def _checkpoint(self):
        if self.checkpoint_path is not None:
            save_model(self.model, self.checkpoint_path, self.vocabulary)
