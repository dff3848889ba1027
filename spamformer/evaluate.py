"""
Evaluation and inference.

- classification_metrics: accuracy, precision, recall and F1 from predictions
- evaluate: loss and metrics of a model over a labelled dataset
- Predictor: single-text inference, optionally from a checkpoint
"""

import numpy as np

from .core.activations import softmax
from .loss import cross_entropy_loss
from .utils.checkpoint import CheckpointError, load_model
from .utils.data import Tokenizer, batch


def classification_metrics(predictions, labels, positive_class=1):
    """
    Compute accuracy plus precision, recall and F1 for one positive class.

    For spam detection the positive class is spam (label 1). Any ratio whose
    denominator is zero is reported as 0.0.

    Returns:
        Dict with keys accuracy, precision, recall, f1_score (all in [0, 1])
    """
    predictions = np.asarray(predictions, dtype=np.int64)
    labels = np.asarray(labels, dtype=np.int64)
    assert predictions.shape == labels.shape, "predictions and labels must have the same shape"

    if labels.size == 0:
        return {"accuracy": 0.0, "precision": 0.0, "recall": 0.0, "f1_score": 0.0}

    predicted_pos = predictions == positive_class
    actual_pos = labels == positive_class

    true_positive = int(np.sum(predicted_pos & actual_pos))
    false_positive = int(np.sum(predicted_pos & ~actual_pos))
    false_negative = int(np.sum(~predicted_pos & actual_pos))

    accuracy = float(np.mean(predictions == labels))
    precision = true_positive / (true_positive + false_positive) if true_positive + false_positive else 0.0
    recall = true_positive / (true_positive + false_negative) if true_positive + false_negative else 0.0
    f1_score = 2 * precision * recall / (precision + recall) if precision + recall else 0.0

    return {"accuracy": accuracy, "precision": precision, "recall": recall, "f1_score": f1_score}


def evaluate(model, inputs, labels, batch_size=32, positive_class=1):
    """
    Evaluate a model without updating it.

    Args:
        model: Transformer
        inputs: (num_samples, seq_len) token ids
        labels: (num_samples,) class ids
        batch_size: Samples per forward pass
        positive_class: Class used for precision / recall / F1

    Returns:
        loss: Sample-weighted mean cross-entropy (0.0 for an empty dataset)
        metrics: See classification_metrics
    """
    labels = np.asarray(labels, dtype=np.int64)

    total_loss = 0.0
    predictions = []

    for batch_inputs, batch_labels in batch(inputs, labels, batch_size):
        logits = model.forward(batch_inputs)
        total_loss += cross_entropy_loss(logits, batch_labels) * len(batch_labels)
        predictions.append(np.argmax(logits, axis=-1))

    if labels.size == 0:
        return 0.0, classification_metrics([], [], positive_class)

    predictions = np.concatenate(predictions)
    loss = total_loss / labels.size
    return loss, classification_metrics(predictions, labels, positive_class)


class Predictor:
    """
    Classify single texts.

    Args:
        model: Trained Transformer
        tokenizer: Tokenizer built on the model's vocabulary
    """

    def __init__(self, model, tokenizer):
        self.model = model
        self.tokenizer = tokenizer

    @classmethod
    def from_checkpoint(cls, path, max_seq_len=None):
        """
        Rebuild model and tokenizer from a checkpoint.

        Args:
            path: Checkpoint written by save_model with a vocabulary
            max_seq_len: Padding length; defaults to the one the model was
                         trained with (config.max_seq_len)

        Raises:
            CheckpointError: If the checkpoint cannot be loaded or has no vocabulary
        """
        model, vocabulary = load_model(path)
        if vocabulary is None:
            raise CheckpointError(f"Checkpoint {path} has no vocabulary; cannot tokenize text")
        if max_seq_len is None:
            max_seq_len = model.config.max_seq_len
        return cls(model, Tokenizer(vocabulary, max_seq_len))

    def predict(self, text):
        """
        Returns:
            predicted_class: int
            probabilities: list of float, one per class, summing to 1
        """
        logits = self.model.forward([self.tokenizer.encode(text)])
        probabilities = softmax(logits)[0]
        return int(np.argmax(probabilities)), probabilities.tolist()
