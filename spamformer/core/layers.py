"""
Core Neural Network Layers

This module implements the building blocks of the encoder:
- positional_encoding: Deterministic sinusoidal position matrix
- apply_layer_norm: Pure per-row normalization
- Linear: Fully connected layer (matrix multiplication + bias)
- LayerNorm: Layer normalization with a backward pass
- Embeddings: Token id to vector lookup plus positional encoding
- FeedForwardNetwork: Two affine transforms with a ReLU in between

Every trainable layer implements:
- forward(x): Compute output from input, caching what backward needs
- backward(grad_output): Fill parameter gradients, return gradient w.r.t. input
- get_params_and_grads(): List of (parameter, gradient) pairs for the optimizer

All arrays are float64. Layers accept a single sequence (seq_len, dim) or a
batch (batch, seq_len, dim); the last axis is always the feature axis.
"""

import numpy as np

from .activations import ReLU


def positional_encoding(seq_len, dim):
    """
    Sinusoidal positional encoding.

        PE(pos, i) = sin(pos / 10000^(2*floor(i/2)/dim))   if i is even
        PE(pos, i) = cos(pos / 10000^(2*floor(i/2)/dim))   if i is odd

    Each pair of columns (2k, 2k+1) shares one frequency. The wavelengths form
    a geometric progression, so low columns change quickly with position and
    high columns change slowly. Odd dims are fine: the last column is a sine.

    Args:
        seq_len: Number of positions (rows); 0 gives an empty matrix
        dim: Embedding dimension (columns), must be positive

    Returns:
        Array of shape (seq_len, dim)
    """
    assert seq_len >= 0, f"seq_len must be non-negative, got {seq_len}"
    assert dim > 0, f"dim must be positive, got {dim}"

    position = np.arange(seq_len, dtype=np.float64)[:, np.newaxis]  # (seq_len, 1)
    i = np.arange(dim)

    # 10000^(2*floor(i/2)/dim), computed once per column
    div_term = np.power(10000.0, (2 * (i // 2)) / dim)
    angles = position / div_term  # (seq_len, dim)

    return np.where(i % 2 == 0, np.sin(angles), np.cos(angles))


def apply_layer_norm(x, epsilon, gamma=None, beta=None):
    """
    Normalize every row of x to zero mean and unit variance.

        y = (x - mean) / sqrt(var + epsilon) * gamma + beta

    The variance is the biased one (divides by the row length). Without
    gamma/beta the scale stays 1 and the shift stays 0, which is how the
    encoder uses it.

    Args:
        x: Array of shape (..., features)
        epsilon: Stability constant added to the variance
        gamma: Optional scale of shape (features,)
        beta: Optional shift of shape (features,)

    Returns:
        Array of the same shape as x
    """
    x = np.asarray(x, dtype=np.float64)
    assert x.ndim >= 1 and x.shape[-1] > 0, "layer norm needs at least one feature"

    mean = np.mean(x, axis=-1, keepdims=True)
    var = np.var(x, axis=-1, keepdims=True)
    y = (x - mean) / np.sqrt(var + epsilon)

    if gamma is not None:
        assert np.shape(gamma) == (x.shape[-1],), "gamma size mismatch"
        y = y * gamma
    if beta is not None:
        assert np.shape(beta) == (x.shape[-1],), "beta size mismatch"
        y = y + beta
    return y


class Linear:
    """
    Fully Connected (Dense) Layer.

    Forward:
        y = x @ W + b

    Where:
        x: input of shape (..., in_features)
        W: weight matrix of shape (in_features, out_features)
        b: bias row of shape (1, out_features), broadcast over every row
        y: output of shape (..., out_features)

    Backward:
        Given dL/dy:
        - dL/dx = dL/dy @ W^T
        - dL/dW = x^T @ dL/dy   (summed over every leading position)
        - dL/db = sum(dL/dy)    (summed over every leading position)

    Weight Initialization:
        Xavier/Glorot: W ~ Normal(0, sqrt(2 / (fan_in + fan_out))), which keeps
        activation variance roughly constant from layer to layer.
    """

    def __init__(self, in_features, out_features):
        assert in_features > 0 and out_features > 0, "Linear dimensions must be positive"

        self.in_features = in_features
        self.out_features = out_features

        scale = np.sqrt(2.0 / (in_features + out_features))
        self.W = np.random.randn(in_features, out_features) * scale
        self.b = np.zeros((1, out_features))

        # Filled by backward()
        self.grad_W = None
        self.grad_b = None

        self.x = None

    def forward(self, x):
        """
        Compute the affine transformation.

        Args:
            x: Input array of shape (..., in_features)

        Returns:
            Output of shape (..., out_features)
        """
        assert x.shape[-1] == self.in_features, \
            f"Linear expects {self.in_features} input features, got {x.shape[-1]}"

        self.x = x
        return x @ self.W + self.b

    def backward(self, grad_output):
        """
        Compute gradients for backpropagation.

        Fills grad_W = x^T @ dL/dy and grad_b = sum(dL/dy) over every
        leading axis.

        Args:
            grad_output: dL/dy, shape (..., out_features)

        Returns:
            dL/dx, shape (..., in_features)
        """
        grad_input = grad_output @ self.W.T

        # Flatten every leading axis so batch and sequence positions both sum
        x_2d = self.x.reshape(-1, self.in_features)
        grad_2d = grad_output.reshape(-1, self.out_features)

        self.grad_W = x_2d.T @ grad_2d
        self.grad_b = np.sum(grad_2d, axis=0, keepdims=True)

        return grad_input

    def zero_grad(self):
        self.grad_W = np.zeros_like(self.W)
        self.grad_b = np.zeros_like(self.b)

    def get_params_and_grads(self):
        """Return [(W, grad_W), (b, grad_b)] for the optimizer."""
        return [(self.W, self.grad_W), (self.b, self.grad_b)]


class LayerNorm:
    """
    Layer Normalization.

    Forward:
        y = gamma * (x - mean) / sqrt(var + eps) + beta

    Each row is normalized independently across its features. With
    elementwise_affine=False (the encoder's setting) gamma is fixed at 1 and
    beta at 0 and the layer has no trainable parameters.

    Backward:
        Every input in a row moves the row's mean and variance, so dL/dx has
        three parts: the direct path through (x - mean) * std_inv, the path
        through the mean and the path through the variance.
    """

    def __init__(self, normalized_shape, eps=1e-6, elementwise_affine=False):
        self.normalized_shape = normalized_shape
        self.eps = eps
        self.elementwise_affine = elementwise_affine

        if elementwise_affine:
            self.gamma = np.ones(normalized_shape)
            self.beta = np.zeros(normalized_shape)
        else:
            self.gamma = None
            self.beta = None

        self.grad_gamma = None
        self.grad_beta = None

        # Cache for backward pass
        self.x = None
        self.mean = None
        self.x_norm = None
        self.std_inv = None

    def forward(self, x):
        """
        Normalize over the last axis.

        Args:
            x: Input of shape (..., normalized_shape)

        Returns:
            Normalized array of the same shape
        """
        assert x.shape[-1] == self.normalized_shape, \
            f"LayerNorm expects {self.normalized_shape} features, got {x.shape[-1]}"

        self.x = x
        self.mean = np.mean(x, axis=-1, keepdims=True)
        var = np.var(x, axis=-1, keepdims=True)
        self.std_inv = 1.0 / np.sqrt(var + self.eps)
        self.x_norm = (x - self.mean) * self.std_inv

        if self.elementwise_affine:
            return self.gamma * self.x_norm + self.beta
        return self.x_norm

    def backward(self, grad_output):
        """
        Backward pass through layer normalization.

        Args:
            grad_output: dL/dy, same shape as the forward input

        Returns:
            dL/dx, same shape as the forward input
        """
        N = self.normalized_shape

        if self.elementwise_affine:
            grad_2d = grad_output.reshape(-1, N)
            self.grad_gamma = np.sum(grad_2d * self.x_norm.reshape(-1, N), axis=0)
            self.grad_beta = np.sum(grad_2d, axis=0)
            dx_norm = grad_output * self.gamma
        else:
            dx_norm = grad_output

        x_centered = self.x - self.mean

        # d(std_inv)/d(var) = -0.5 * (var + eps)^(-3/2)
        dvar = np.sum(dx_norm * x_centered * -0.5 * self.std_inv ** 3, axis=-1, keepdims=True)

        # d(mean)/d(x_i) = 1/N
        dmean = np.sum(dx_norm * -self.std_inv, axis=-1, keepdims=True)
        dmean += dvar * np.mean(-2.0 * x_centered, axis=-1, keepdims=True)

        grad_input = dx_norm * self.std_inv
        grad_input += dvar * 2.0 * x_centered / N
        grad_input += dmean / N

        return grad_input

    def get_params_and_grads(self):
        """Return [(gamma, grad_gamma), (beta, grad_beta)], or [] without affine parameters."""
        if not self.elementwise_affine:
            return []
        return [(self.gamma, self.grad_gamma), (self.beta, self.grad_beta)]


class Embeddings:
    """
    Token Embeddings with Positional Encoding.

    Forward:
        y[pos] = weight[token_ids[pos]] + PE[pos]

    A lookup table with one row per vocabulary entry, followed by the fixed
    sinusoidal encoding for the sequence length. Ids outside the vocabulary
    fall back to the unknown-token row rather than failing, since the
    tokenizer may have been built against a different vocabulary.

    Backward:
        The gradient of a row is the sum of the gradients at every position
        that looked it up (scatter-add). Positional encoding is a constant
        addition and passes the gradient through unchanged. Nothing flows back
        to the discrete ids.
    """

    def __init__(self, vocab_size, model_dim, unk_id=1, init_range=0.1):
        assert vocab_size > 0 and model_dim > 0, "Embeddings dimensions must be positive"
        assert 0 <= unk_id < vocab_size, f"unk_id {unk_id} outside vocabulary"

        self.vocab_size = vocab_size
        self.model_dim = model_dim
        self.unk_id = unk_id

        # Small symmetric uniform init keeps initial activations tame
        self.weight = np.random.uniform(-init_range, init_range, (vocab_size, model_dim))
        self.grad_weight = None

        self._pe_cache = {}
        self.ids = None

    def positional_encoding(self, seq_len):
        """
        Positional encoding for this model width, cached per sequence length.

        Args:
            seq_len: Number of positions

        Returns:
            Array of shape (seq_len, model_dim); shared, do not modify
        """
        if seq_len not in self._pe_cache:
            self._pe_cache[seq_len] = positional_encoding(seq_len, self.model_dim)
        return self._pe_cache[seq_len]

    def resolve(self, token_ids):
        """Map token ids to valid rows, replacing out-of-range ids by unk_id."""
        ids = np.asarray(token_ids, dtype=np.int64)
        return np.where((ids >= 0) & (ids < self.vocab_size), ids, self.unk_id)

    def encode(self, token_ids):
        """
        Embed a single sequence.

        Args:
            token_ids: Sequence of integer ids, length L

        Returns:
            Array of shape (L, model_dim); read-only over the lookup matrix
        """
        ids = self.resolve(token_ids)
        assert ids.ndim == 1, "encode expects a 1-D sequence of ids"
        return self.weight[ids] + self.positional_encoding(len(ids))

    def forward(self, token_ids):
        """
        Embed a batch of sequences.

        Args:
            token_ids: Integer array of shape (batch, seq_len)

        Returns:
            Array of shape (batch, seq_len, model_dim)
        """
        ids = self.resolve(token_ids)
        assert ids.ndim == 2, "forward expects a (batch, seq_len) id matrix"

        self.ids = ids
        return self.weight[ids] + self.positional_encoding(ids.shape[1])

    def backward(self, grad_output):
        """
        Accumulate the lookup-matrix gradient.

        Args:
            grad_output: dL/dy, shape (batch, seq_len, model_dim)

        Returns:
            None; token ids are discrete and have no gradient
        """
        self.grad_weight = np.zeros_like(self.weight)

        # np.add.at is unbuffered: repeated ids accumulate instead of overwrite
        np.add.at(self.grad_weight, self.ids, grad_output)
        return None

    def get_params_and_grads(self):
        return [(self.weight, self.grad_weight)]


class FeedForwardNetwork:
    """
    Position-wise Feed-Forward Network.

        FFN(x) = max(0, x @ W1 + b1) @ W2 + b2

    The first transform expands model_dim -> hidden_dim, the second projects
    back, so the output has exactly the input's shape. The same weights are
    applied to every position independently.
    """

    def __init__(self, input_dim, hidden_dim):
        self.input_dim = input_dim
        self.hidden_dim = hidden_dim

        self.linear1 = Linear(input_dim, hidden_dim)
        self.activation = ReLU()
        self.linear2 = Linear(hidden_dim, input_dim)

    @property
    def W1(self):
        return self.linear1.W

    @property
    def b1(self):
        return self.linear1.b

    @property
    def W2(self):
        return self.linear2.W

    @property
    def b2(self):
        return self.linear2.b

    def forward(self, x):
        """
        Apply the two transforms position-wise.

        Args:
            x: Input of shape (..., input_dim)

        Returns:
            Output of the same shape
        """
        assert x.shape[-1] == self.input_dim, \
            f"FeedForwardNetwork expects {self.input_dim} input features, got {x.shape[-1]}"

        hidden = self.activation.forward(self.linear1.forward(x))
        return self.linear2.forward(hidden)

    def backward(self, grad_output):
        """
        Backpropagate through linear2, ReLU and linear1 in reverse order.

        Args:
            grad_output: dL/dy, shape (..., input_dim)

        Returns:
            dL/dx, shape (..., input_dim)
        """
        grad_hidden = self.activation.backward(self.linear2.backward(grad_output))
        return self.linear1.backward(grad_hidden)

    def zero_grad(self):
        self.linear1.zero_grad()
        self.linear2.zero_grad()

    def get_params_and_grads(self):
        """Return the (W1, b1, W2, b2) pairs, in that order."""
        return self.linear1.get_params_and_grads() + self.linear2.get_params_and_grads()
