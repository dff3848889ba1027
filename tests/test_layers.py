import numpy as np
import pytest

from spamformer.core.activations import check_gradient, numerical_gradient
from spamformer.core.layers import (
    Embeddings,
    FeedForwardNetwork,
    LayerNorm,
    Linear,
    apply_layer_norm,
    positional_encoding,
)


# ── Positional encoding ──────────────────────────────────────────────

def test_positional_encoding_values():
    pe = positional_encoding(4, 6)

    assert pe.shape == (4, 6)
    # Position 0: sin(0) = 0 on even columns, cos(0) = 1 on odd columns
    assert np.allclose(pe[0], [0, 1, 0, 1, 0, 1])
    assert pe[1, 0] == pytest.approx(np.sin(1.0))
    assert pe[1, 1] == pytest.approx(np.cos(1.0))
    assert pe[1, 2] == pytest.approx(np.sin(1.0 / 10000 ** (2 / 6)))
    assert pe[3, 5] == pytest.approx(np.cos(3.0 / 10000 ** (4 / 6)))


def test_positional_encoding_odd_dim_and_empty():
    assert positional_encoding(3, 5).shape == (3, 5)
    assert positional_encoding(0, 4).shape == (0, 4)


def test_positional_encoding_is_deterministic():
    assert np.array_equal(positional_encoding(7, 8), positional_encoding(7, 8))


@pytest.mark.parametrize("seq_len, dim", [(3, 0), (-1, 4)])
def test_positional_encoding_rejects_invalid_dims(seq_len, dim):
    with pytest.raises(AssertionError):
        positional_encoding(seq_len, dim)


# ── Layer normalization ──────────────────────────────────────────────

@pytest.mark.parametrize("width", [2, 3, 8, 33])
def test_layer_norm_zero_mean_unit_variance(width):
    x = np.random.randn(5, width) * 3.0 + 7.0
    y = apply_layer_norm(x, 1e-6)

    assert np.allclose(y.mean(axis=-1), 0.0, atol=1e-9)
    assert np.allclose(y.var(axis=-1), 1.0, atol=1e-4)


def test_layer_norm_single_row():
    y = apply_layer_norm(np.array([1.0, 2.0, 3.0, 4.0]), 1e-5)

    assert abs(y.mean()) < 1e-6
    assert abs(y.var() - 1.0) < 1e-5


def test_layer_norm_gamma_beta():
    x = np.random.randn(3, 4)
    gamma = np.array([1.0, 2.0, 3.0, 4.0])
    beta = np.array([0.5, 0.0, -0.5, 1.0])

    expected = apply_layer_norm(x, 1e-6) * gamma + beta
    assert np.allclose(apply_layer_norm(x, 1e-6, gamma, beta), expected)


def test_layer_norm_constant_row_stays_finite():
    y = apply_layer_norm(np.full((1, 4), 3.0), 1e-6)
    assert np.array_equal(y, np.zeros((1, 4)))


def test_layer_norm_class_matches_function():
    x = np.random.randn(2, 3, 6)
    assert np.allclose(LayerNorm(6, 1e-6).forward(x), apply_layer_norm(x, 1e-6))


@pytest.mark.parametrize("affine", [False, True])
def test_layer_norm_gradient(affine):
    ln = LayerNorm(6, 1e-6, elementwise_affine=affine)
    if affine:
        ln.gamma = np.random.randn(6)
        ln.beta = np.random.randn(6)
    assert check_gradient(ln, np.random.randn(2, 3, 6))


def test_layer_norm_without_affine_has_no_params():
    assert LayerNorm(4).get_params_and_grads() == []


# ── Linear ───────────────────────────────────────────────────────────

def test_linear_shapes():
    linear = Linear(8, 4)

    assert linear.W.shape == (8, 4)
    assert linear.b.shape == (1, 4)
    assert linear.forward(np.random.randn(2, 3, 8)).shape == (2, 3, 4)


def test_linear_input_gradient():
    assert check_gradient(Linear(5, 3), np.random.randn(2, 4, 5))


def test_linear_parameter_gradients():
    linear = Linear(4, 3)
    x = np.random.randn(6, 4)
    upstream = np.random.randn(6, 3)

    linear.forward(x)
    linear.backward(upstream)
    grad_W, grad_b = linear.grad_W.copy(), linear.grad_b.copy()

    def loss(_):
        return np.sum(linear.forward(x) * upstream)

    assert np.allclose(grad_W, numerical_gradient(loss, linear.W), atol=1e-6)
    assert np.allclose(grad_b, numerical_gradient(loss, linear.b), atol=1e-6)


def test_linear_rejects_wrong_width():
    with pytest.raises(AssertionError):
        Linear(4, 2).forward(np.ones((3, 5)))


# ── Feed-forward ─────────────────────────────────────────────────────

def test_feed_forward_preserves_shape():
    ffn = FeedForwardNetwork(4, 8)
    x = np.array([[1.0, 2.0, 3.0, 4.0], [4.0, 3.0, 2.0, 1.0]])

    assert ffn.forward(x).shape == (2, 4)
    assert ffn.W1.shape == (4, 8) and ffn.b1.shape == (1, 8)
    assert ffn.W2.shape == (8, 4) and ffn.b2.shape == (1, 4)


def test_feed_forward_matches_formula():
    ffn = FeedForwardNetwork(3, 5)
    x = np.random.randn(4, 3)

    expected = np.maximum(0, x @ ffn.W1 + ffn.b1) @ ffn.W2 + ffn.b2
    assert np.allclose(ffn.forward(x), expected)


def test_feed_forward_gradient():
    assert check_gradient(FeedForwardNetwork(4, 6), np.random.randn(2, 3, 4))


def test_feed_forward_rejects_wrong_width():
    with pytest.raises(AssertionError):
        FeedForwardNetwork(4, 8).forward(np.ones((2, 3)))


# ── Embeddings ───────────────────────────────────────────────────────

def test_embeddings_init_range():
    emb = Embeddings(20, 6)

    assert emb.weight.shape == (20, 6)
    assert np.all(np.abs(emb.weight) <= 0.1)


def test_embeddings_encode_adds_positions():
    emb = Embeddings(5, 4)
    encoded = emb.encode([3, 0, 2])

    assert encoded.shape == (3, 4)
    assert np.allclose(encoded, emb.weight[[3, 0, 2]] + positional_encoding(3, 4))


def test_embeddings_unknown_id_falls_back():
    emb = Embeddings(5, 4, unk_id=1)
    encoded = emb.encode([0, 99, -3])
    pe = positional_encoding(3, 4)

    assert np.allclose(encoded[1], emb.weight[1] + pe[1])
    assert np.allclose(encoded[2], emb.weight[1] + pe[2])


def test_embeddings_encode_is_read_only():
    emb = Embeddings(5, 4)
    before = emb.weight.copy()
    emb.encode([1, 2, 3])
    assert np.array_equal(emb.weight, before)


def test_embeddings_forward_and_scatter_add_backward():
    emb = Embeddings(5, 3)
    ids = np.array([[1, 1, 4], [0, 1, 2]])

    out = emb.forward(ids)
    assert out.shape == (2, 3, 3)

    emb.backward(np.ones_like(out))
    # Token 1 was looked up three times
    assert np.allclose(emb.grad_weight[1], 3.0)
    assert np.allclose(emb.grad_weight[3], 0.0)
    assert emb.get_params_and_grads()[0][0] is emb.weight
