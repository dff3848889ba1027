"""
Transformer Encoder Classifier

This module implements:
- EncoderLayer: Single encoder layer (attention + FFN, each with residual + norm)
- Pooling: Sequence of token vectors -> one vector per sequence
- ClassificationHead: Pooled vector -> class logits
- Transformer: Complete classifier, token ids -> logits

The encoder is the Post-LN variant from "Attention Is All You Need": layer
normalization is applied AFTER each residual addition.
"""

import numpy as np

from ..config import TransformerConfig
from .activations import softmax
from .attention import SelfAttention
from .layers import Embeddings, FeedForwardNetwork, LayerNorm, Linear


class EncoderLayer:
    """
    Single Encoder Layer.

    Architecture (Post-LN):

        x ──► [SelfAttention] ──+──► [LayerNorm] ──► n1
        │                       │
        └───────────────────────┘  (Residual Connection 1)

        n1 ──► [FFN] ──+──► [LayerNorm] ──► output
        │              │
        └──────────────┘  (Residual Connection 2)

    Where FFN is:
        FFN(x) = ReLU(x @ W1 + b1) @ W2 + b2

    Attention and layer normalization hold no learned state here; the only
    trainable parameters are those of the feed-forward network. The output has
    exactly the input's shape, so layers chain freely.
    """

    def __init__(self, model_dim, feed_forward_dim, epsilon=1e-6):
        self.model_dim = model_dim
        self.epsilon = epsilon

        self.attention = SelfAttention()
        self.norm1 = LayerNorm(model_dim, epsilon)
        self.feed_forward = FeedForwardNetwork(model_dim, feed_forward_dim)
        self.norm2 = LayerNorm(model_dim, epsilon)

    def forward(self, x):
        """
        Args:
            x: (seq_len, model_dim) or (batch, seq_len, model_dim)

        Returns:
            Array with the same shape as x
        """
        assert x.shape[-1] == self.model_dim, \
            f"EncoderLayer expects {self.model_dim} features, got {x.shape[-1]}"

        # Sub-layer 1: self-attention, residual, norm
        n1 = self.norm1.forward(x + self.attention.forward(x))

        # Sub-layer 2: feed-forward, residual, norm
        return self.norm2.forward(n1 + self.feed_forward.forward(n1))

    def backward(self, grad_output):
        # =====================================================================
        # Second sub-layer
        # =====================================================================
        # r2 = n1 + ffn(n1): gradient reaches n1 through both terms
        grad_r2 = self.norm2.backward(grad_output)
        grad_n1 = grad_r2 + self.feed_forward.backward(grad_r2)

        # =====================================================================
        # First sub-layer
        # =====================================================================
        # r1 = x + attn(x)
        grad_r1 = self.norm1.backward(grad_n1)
        return grad_r1 + self.attention.backward(grad_r1)

    def zero_grad(self):
        self.feed_forward.zero_grad()

    def get_params_and_grads(self):
        """Only the feed-forward network is trainable: (W1, b1, W2, b2) pairs."""
        return self.feed_forward.get_params_and_grads()


class Pooling:
    """
    Reduce (batch, seq_len, dim) to (batch, dim).

    Modes:
        mean:  average over all positions
        first: keep position 0 (the first token of the sequence)

    An empty sequence pools to the zero vector instead of NaN.
    """

    def __init__(self, mode="mean"):
        assert mode in ("mean", "first"), f"Unknown pooling mode: {mode}"
        self.mode = mode
        self.input_shape = None

    def forward(self, x):
        """
        Args:
            x: Token representations, shape (batch, seq_len, dim)

        Returns:
            Pooled vectors, shape (batch, dim)
        """
        self.input_shape = x.shape
        batch, seq_len, dim = x.shape

        if seq_len == 0:
            return np.zeros((batch, dim))
        if self.mode == "mean":
            return np.mean(x, axis=1)
        return x[:, 0, :].copy()

    def backward(self, grad_output):
        """
        Args:
            grad_output: dL/d(pooled), shape (batch, dim)

        Returns:
            dL/dx, shape (batch, seq_len, dim)
        """
        batch, seq_len, dim = self.input_shape
        grad_input = np.zeros(self.input_shape)

        if seq_len == 0:
            return grad_input
        if self.mode == "mean":
            # Every position contributed 1/seq_len of the average
            grad_input[:] = grad_output[:, np.newaxis, :] / seq_len
        else:
            grad_input[:, 0, :] = grad_output
        return grad_input


class ClassificationHead(Linear):
    """
    Affine map from the pooled representation to class logits.

        logits = x @ W + b

    W has shape (model_dim, num_classes), b has shape (1, num_classes). There
    is no non-linearity: the output is raw logits, one row per input row.
    """

    def __init__(self, model_dim, num_classes):
        super().__init__(model_dim, num_classes)

    def forward(self, x):
        """
        Args:
            x: Pooled representations, shape (batch, model_dim)

        Returns:
            Logits, shape (batch, num_classes)
        """
        assert x.ndim == 2, f"ClassificationHead expects a (batch, model_dim) matrix, got {x.shape}"
        return super().forward(x)


class Transformer:
    """
    Transformer Encoder for Sequence Classification.

    Complete architecture:

        Token IDs ──► [Embeddings + PositionalEncoding] ──► [EncoderLayer] x N
                                                                  │
                                                                  ▼
                              Logits ◄── [ClassificationHead] ◄── [Pooling]

    Training:
        Input:  (batch, seq_len) padded token ids
        Target: (batch,) class ids
        Loss:   Cross-entropy between the logits and the targets

    Parameters are addressed in a fixed order everywhere (optimizer state,
    checkpoints): encoder layers, then the classification head, then the
    embeddings.
    """

    def __init__(self, config):
        if isinstance(config, dict):
            config = TransformerConfig(**config)
        self.config = config

        self.embeddings = Embeddings(config.vocab_size, config.model_dim, unk_id=config.unk_id)

        self.layers = [
            EncoderLayer(config.model_dim, config.feed_forward_dim, config.epsilon)
            for _ in range(config.num_layers)
        ]

        self.pooling = Pooling(config.pooling)
        self.head = ClassificationHead(config.model_dim, config.num_classes)

        self._encoded = False

    def forward(self, token_ids):
        """
        Compute class logits.

        Args:
            token_ids: Integer ids, shape (batch, seq_len); a 1-D sequence is
                       treated as a batch of one

        Returns:
            Logits, shape (batch, num_classes)
        """
        ids = np.asarray(token_ids, dtype=np.int64)
        if ids.ndim == 1:
            ids = ids[np.newaxis, :]
        assert ids.ndim == 2, f"Transformer expects (batch, seq_len) token ids, got {ids.shape}"

        h = self.embeddings.forward(ids)  # (batch, seq, model_dim)

        # Attention is undefined on empty input; pooling supplies the fallback
        self._encoded = h.size > 0
        if self._encoded:
            for layer in self.layers:
                h = layer.forward(h)

        pooled = self.pooling.forward(h)  # (batch, model_dim)
        return self.head.forward(pooled)  # (batch, num_classes)

    def backward(self, grad_logits):
        """
        Backpropagate dL/d(logits) through every component.

        Args:
            grad_logits: Gradient w.r.t. logits, shape (batch, num_classes)
        """
        grad = self.head.backward(grad_logits)
        grad = self.pooling.backward(grad)

        if self._encoded:
            for layer in reversed(self.layers):
                grad = layer.backward(grad)
        else:
            for layer in self.layers:
                layer.zero_grad()

        self.embeddings.backward(grad)

    def predict_proba(self, token_ids):
        """
        Class probabilities.

        Args:
            token_ids: Same as forward

        Returns:
            (batch, num_classes) array whose rows sum to 1
        """
        return softmax(self.forward(token_ids))

    def predict(self, token_ids):
        """Most likely class per sequence, shape (batch,)."""
        return np.argmax(self.forward(token_ids), axis=-1)

    # =========================================================================
    # Parameter access
    # =========================================================================

    def named_parameters(self):
        """List of (name, parameter) in the fixed layer order."""
        named = []
        for i, layer in enumerate(self.layers):
            ffn = layer.feed_forward
            named.extend([
                (f"encoder.{i}.feed_forward.W1", ffn.W1),
                (f"encoder.{i}.feed_forward.b1", ffn.b1),
                (f"encoder.{i}.feed_forward.W2", ffn.W2),
                (f"encoder.{i}.feed_forward.b2", ffn.b2),
            ])
        named.append(("head.W", self.head.W))
        named.append(("head.b", self.head.b))
        named.append(("embeddings.weight", self.embeddings.weight))
        return named

    def parameters(self):
        return [param for _, param in self.named_parameters()]

    def get_params_and_grads(self):
        """Collect (parameter, gradient) pairs for the optimizer."""
        params = []
        for layer in self.layers:
            params.extend(layer.get_params_and_grads())
        params.extend(self.head.get_params_and_grads())
        params.extend(self.embeddings.get_params_and_grads())
        return params

    def count_parameters(self):
        """Total number of trainable scalars."""
        return sum(param.size for param in self.parameters())

    def state_dict(self):
        """Copies of every parameter, keyed by name."""
        return {name: param.copy() for name, param in self.named_parameters()}

    def load_state_dict(self, state):
        """
        Copy parameter values in place.

        Raises:
            ValueError: If a parameter is missing, unexpected or mis-shaped
        """
        named = dict(self.named_parameters())

        missing = sorted(set(named) - set(state))
        unexpected = sorted(set(state) - set(named))
        if missing or unexpected:
            raise ValueError(f"State mismatch: missing={missing}, unexpected={unexpected}")

        # Validate everything before touching any parameter
        values = {}
        for name, param in named.items():
            value = np.asarray(state[name], dtype=np.float64)
            if value.shape != param.shape:
                raise ValueError(f"Shape mismatch for {name}: expected {param.shape}, got {value.shape}")
            values[name] = value

        for name, param in named.items():
            param[...] = values[name]

    def save(self, path, vocabulary=None):
        """Write a checkpoint; see utils.checkpoint.save_model."""
        from ..utils.checkpoint import save_model
        save_model(self, path, vocabulary)

    @classmethod
    def load(cls, path):
        """Rebuild a model from a checkpoint, discarding any stored vocabulary."""
        from ..utils.checkpoint import load_model
        model, _ = load_model(path)
        return model
