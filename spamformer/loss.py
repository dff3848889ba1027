"""
Cross-Entropy Loss

For classification we use the negative log-probability of the true class:
    L = -mean(log(softmax(logits)[i, label_i]))

The gradient of softmax followed by cross-entropy has a simple closed form:
    dL/d(logits) = (softmax(logits) - one_hot(labels)) / batch_size

i.e. the difference between what was predicted and what was correct.
"""

import numpy as np

from .core.activations import softmax

__all__ = ["softmax", "cross_entropy_loss", "gradients", "CrossEntropyLoss"]


def _check_labels(logits, labels):
    logits = np.asarray(logits, dtype=np.float64)
    labels = np.asarray(labels, dtype=np.int64).reshape(-1)

    assert logits.ndim == 2, f"logits must be (batch, num_classes), got {logits.shape}"
    assert logits.shape[0] == labels.shape[0], \
        f"Logits and labels batch sizes must match ({logits.shape[0]} != {labels.shape[0]})."
    assert np.all((labels >= 0) & (labels < logits.shape[1])), \
        "Label index out of bounds for logits."
    return logits, labels


def cross_entropy_loss(logits, labels):
    """
    Mean cross-entropy over a batch.

    Args:
        logits: (batch, num_classes) raw scores
        labels: (batch,) class ids in [0, num_classes)

    Returns:
        Scalar loss; 0.0 for an empty batch
    """
    logits, labels = _check_labels(logits, labels)
    if labels.size == 0:
        return 0.0

    # log-softmax via the max-shift identity, so exp() never overflows and
    # log() never sees an underflowed zero
    shifted = logits - np.max(logits, axis=-1, keepdims=True)
    log_probs = shifted - np.log(np.sum(np.exp(shifted), axis=-1, keepdims=True))

    return float(-np.mean(log_probs[np.arange(labels.size), labels]))


def gradients(logits, labels):
    """
    Gradient of the mean cross-entropy w.r.t. the logits.

    Returns:
        (batch, num_classes) array: softmax(logits) with 1 subtracted at each
        true class, divided by the batch size
    """
    logits, labels = _check_labels(logits, labels)
    if labels.size == 0:
        return np.zeros_like(logits)

    grad = softmax(logits)
    grad[np.arange(labels.size), labels] -= 1.0
    return grad / labels.size


class CrossEntropyLoss:
    """
    Stateful cross-entropy: forward caches the batch so backward needs no
    arguments, mirroring the layer interface.
    """

    def __init__(self):
        self.logits = None
        self.labels = None

    def forward(self, logits, labels):
        """
        Args:
            logits: (batch, num_classes) raw scores
            labels: (batch,) class ids

        Returns:
            Mean cross-entropy over the batch
        """
        self.logits = logits
        self.labels = labels
        return cross_entropy_loss(logits, labels)

    def backward(self):
        """dL/d(logits) for the batch seen by the last forward call."""
        return gradients(self.logits, self.labels)
