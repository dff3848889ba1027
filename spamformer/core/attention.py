"""
Self-Attention

This module implements the attention computations of the encoder:
- scaled_dot_product_attention: the core formula, a pure function
- multi_head_attention: column-split heads, a standalone utility
- SelfAttention: Q = K = V = x attention with a backward pass, used by
  every encoder layer

The formula:
    Attention(Q, K, V) = softmax(Q @ K^T / sqrt(d_k)) @ V

Where:
    Q = Query: "What am I looking for?"
    K = Key: "What do I contain?"
    V = Value: "What information do I provide?"
    d_k = Key dimension (for scaling)

None of these carry learned state: there are no Q/K/V or output projections.
"""

import numpy as np

from .activations import Softmax, softmax


def _check_qkv(query, key, value):
    assert query.ndim >= 2 and key.ndim >= 2 and value.ndim >= 2, \
        "Q, K and V must be matrices"
    assert query.size > 0 and key.size > 0 and value.size > 0, \
        "Inputs must be non-empty."
    assert query.shape[-1] == key.shape[-1], \
        f"Query and Key dimensions must match ({query.shape[-1]} != {key.shape[-1]})."
    assert key.shape[-2] == value.shape[-2], \
        f"Key and Value must have the same number of tokens ({key.shape[-2]} != {value.shape[-2]})."


def scaled_dot_product_attention(query, key, value, return_weights=False):
    """
    Scaled dot-product attention.

    Step by step:
        1. Raw scores:   scores = Q @ K^T          (q_len, k_len)
        2. Scale:        scores = scores / sqrt(d_k)
        3. Softmax:      weights = softmax(scores) row-wise
        4. Mix values:   output = weights @ V      (q_len, v_dim)

    Without the 1/sqrt(d_k) factor the dot products grow with the head width
    and push the softmax into saturated, near one-hot rows.

    Leading axes (a batch) broadcast through np.matmul.

    Args:
        query: (..., q_len, d_k)
        key: (..., k_len, d_k)
        value: (..., k_len, v_dim)
        return_weights: Also return the attention weight matrix

    Returns:
        output of shape (..., q_len, v_dim), and the (..., q_len, k_len)
        weights when return_weights is set
    """
    _check_qkv(query, key, value)

    scale = 1.0 / np.sqrt(key.shape[-1])
    scores = np.matmul(query, np.swapaxes(key, -1, -2)) * scale

    # weights[i, j] = how much position i attends to position j
    weights = softmax(scores)
    output = np.matmul(weights, value)

    if return_weights:
        return output, weights
    return output


def split_heads(x, num_heads):
    """
    Split the last axis into num_heads equal column slices.

    Args:
        x: (..., seq_len, model_dim) with model_dim % num_heads == 0

    Returns:
        List of num_heads arrays of shape (..., seq_len, model_dim // num_heads)
    """
    assert num_heads > 0, "num_heads must be positive"
    assert x.shape[-1] % num_heads == 0, \
        f"d_model ({x.shape[-1]}) must be divisible by num_heads ({num_heads})"
    return np.split(x, num_heads, axis=-1)


def merge_heads(heads):
    """Concatenate head outputs back along the feature axis (inverse of split_heads)."""
    return np.concatenate(heads, axis=-1)


def multi_head_attention(query, key, value, num_heads):
    """
    Multi-head attention without learned projections.

    Each of Q, K, V is split column-wise into num_heads slices; head h attends
    with (Q_h, K_h, V_h) independently, and the head outputs are concatenated
    back to model_dim width. Concatenation is the last step: there is no
    output projection mixing the heads.

    Args:
        query, key, value: (..., seq_len, model_dim)
        num_heads: Number of heads; model_dim must be divisible by it

    Returns:
        Array with the same shape as query
    """
    _check_qkv(query, key, value)
    assert value.shape[-1] == query.shape[-1], \
        "Value width must equal the query width for multi-head attention."

    heads = [
        scaled_dot_product_attention(q, k, v)
        for q, k, v in zip(
            split_heads(query, num_heads),
            split_heads(key, num_heads),
            split_heads(value, num_heads),
        )
    ]
    return merge_heads(heads)


class SelfAttention:
    """
    Single-head self-attention with Q = K = V = x.

    Forward is exactly scaled_dot_product_attention(x, x, x). The class exists
    to cache the intermediate tensors so the encoder can backpropagate.

    Backward:
        output = A @ x,  A = softmax(x @ x^T * s)
        - grad_A      = grad_output @ x^T
        - grad_scores = softmax_backward(grad_A) * s
        - x reaches the output three times (as Q, as K and as V), so the
          input gradient is the sum of all three paths:
          grad_x = grad_scores @ x + grad_scores^T @ x + A^T @ grad_output
    """

    def __init__(self):
        self.softmax = Softmax()

        # Cache for backward pass
        self.x = None
        self.scale = None
        self.attn_weights = None

    def forward(self, x):
        """
        Args:
            x: (seq_len, dim) or (batch, seq_len, dim)

        Returns:
            Array with the same shape as x
        """
        _check_qkv(x, x, x)

        self.x = x
        self.scale = 1.0 / np.sqrt(x.shape[-1])

        scores = np.matmul(x, np.swapaxes(x, -1, -2)) * self.scale
        self.attn_weights = self.softmax.forward(scores)

        return np.matmul(self.attn_weights, x)

    def backward(self, grad_output):
        """
        Args:
            grad_output: dL/d(output), same shape as the forward input

        Returns:
            dL/dx summed over the query, key and value paths
        """
        x = self.x

        # Value path
        grad_v = np.matmul(np.swapaxes(self.attn_weights, -1, -2), grad_output)

        # Back through the softmax and the scale
        grad_attn = np.matmul(grad_output, np.swapaxes(x, -1, -2))
        grad_scores = self.softmax.backward(grad_attn) * self.scale

        # Query and key paths of scores = x @ x^T
        grad_q = np.matmul(grad_scores, x)
        grad_k = np.matmul(np.swapaxes(grad_scores, -1, -2), x)

        return grad_q + grad_k + grad_v
