import numpy as np
import pytest

from spamformer.config import TransformerConfig
from spamformer.core.activations import check_gradient
from spamformer.core.transformer import ClassificationHead, EncoderLayer, Pooling, Transformer
from spamformer.loss import cross_entropy_loss, gradients


@pytest.mark.parametrize("seq_len", [1, 3, 7])
@pytest.mark.parametrize("model_dim, ffn_dim", [(4, 8), (8, 16)])
def test_encoder_layer_preserves_shape(seq_len, model_dim, ffn_dim):
    layer = EncoderLayer(model_dim, ffn_dim)

    assert layer.forward(np.random.randn(seq_len, model_dim)).shape == (seq_len, model_dim)
    assert layer.forward(np.random.randn(2, seq_len, model_dim)).shape == (2, seq_len, model_dim)


def test_encoder_layer_output_is_normalized():
    out = EncoderLayer(6, 12).forward(np.random.randn(4, 6))

    assert np.allclose(out.mean(axis=-1), 0.0, atol=1e-9)
    assert np.allclose(out.var(axis=-1), 1.0, atol=1e-4)


def test_encoder_layer_gradient():
    assert check_gradient(EncoderLayer(4, 8), np.random.randn(2, 3, 4))


def test_encoder_layer_rejects_wrong_width():
    with pytest.raises(AssertionError):
        EncoderLayer(4, 8).forward(np.ones((3, 5)))


@pytest.mark.parametrize("mode", ["mean", "first"])
def test_pooling(mode):
    x = np.random.randn(2, 3, 4)
    pooled = Pooling(mode).forward(x)

    expected = x.mean(axis=1) if mode == "mean" else x[:, 0, :]
    assert np.allclose(pooled, expected)


@pytest.mark.parametrize("mode", ["mean", "first"])
def test_pooling_gradient(mode):
    assert check_gradient(Pooling(mode), np.random.randn(2, 3, 4))


def test_pooling_empty_sequence_is_zero():
    pooling = Pooling("mean")

    assert np.array_equal(pooling.forward(np.zeros((2, 0, 4))), np.zeros((2, 4)))
    assert pooling.backward(np.ones((2, 4))).shape == (2, 0, 4)


def test_pooling_rejects_unknown_mode():
    with pytest.raises(AssertionError):
        Pooling("max")


def test_classification_head_known_values():
    head = ClassificationHead(4, 2)
    head.W[...] = [[0.1, 0.2], [0.3, 0.4], [0.5, 0.6], [0.7, 0.8]]
    head.b[...] = [[0.1, -0.1]]

    logits = head.forward(np.array([[1.0, 2.0, 3.0, 4.0], [4.0, 3.0, 2.0, 1.0]]))
    assert np.allclose(logits, [[5.1, 5.9], [3.1, 3.9]])


def test_classification_head_requires_matrix():
    with pytest.raises(AssertionError):
        ClassificationHead(4, 2).forward(np.ones((2, 3, 4)))


def test_transformer_forward_shapes(model, small_config):
    ids = np.random.randint(0, small_config.vocab_size, size=(3, 6))

    assert model.forward(ids).shape == (3, 2)
    # A single sequence is a batch of one
    assert model.forward(ids[0]).shape == (1, 2)
    assert np.allclose(model.predict_proba(ids).sum(axis=-1), 1.0)
    assert model.predict(ids).shape == (3,)


def test_transformer_accepts_dict_config(small_config):
    model = Transformer(small_config.to_dict())
    assert model.config == small_config


def test_transformer_unknown_ids_use_unk(model, small_config):
    unk = small_config.unk_id
    assert np.allclose(model.forward([[2, 10 ** 6]]), model.forward([[2, unk]]))


def test_transformer_empty_sequence_returns_head_bias(model):
    model.head.b[...] = [[0.25, -0.5]]

    logits = model.forward(np.zeros((2, 0), dtype=np.int64))
    assert np.allclose(logits, [[0.25, -0.5], [0.25, -0.5]])

    model.backward(np.ones((2, 2)))
    for _, grad in model.get_params_and_grads():
        assert np.all(np.isfinite(grad))


def test_transformer_empty_batch(model):
    assert model.forward(np.zeros((0, 4), dtype=np.int64)).shape == (0, 2)


def test_parameter_order_and_count(small_config):
    config = TransformerConfig(**{**small_config.to_dict(), "num_layers": 2})
    model = Transformer(config)

    names = [name for name, _ in model.named_parameters()]
    assert names == [
        "encoder.0.feed_forward.W1", "encoder.0.feed_forward.b1",
        "encoder.0.feed_forward.W2", "encoder.0.feed_forward.b2",
        "encoder.1.feed_forward.W1", "encoder.1.feed_forward.b1",
        "encoder.1.feed_forward.W2", "encoder.1.feed_forward.b2",
        "head.W", "head.b", "embeddings.weight",
    ]

    V, D, F, C = config.vocab_size, config.model_dim, config.feed_forward_dim, config.num_classes
    per_layer = D * F + F + F * D + D
    assert model.count_parameters() == 2 * per_layer + D * C + C + V * D


def test_params_and_grads_follow_parameter_order(model, small_config):
    ids = np.random.randint(0, small_config.vocab_size, size=(2, 5))
    model.backward(gradients(model.forward(ids), [0, 1]))

    pairs = model.get_params_and_grads()
    assert len(pairs) == len(model.parameters())
    for (param, grad), expected in zip(pairs, model.parameters()):
        assert param is expected
        assert grad.shape == param.shape


@pytest.mark.parametrize("pooling", ["mean", "first"])
def test_full_model_gradients_match_finite_differences(small_config, pooling):
    config = TransformerConfig(**{**small_config.to_dict(), "pooling": pooling})
    model = Transformer(config)
    ids = np.random.randint(0, config.vocab_size, size=(2, 4))
    labels = np.array([0, 1])

    model.backward(gradients(model.forward(ids), labels))
    analytical = {name: grad.copy() for (name, _), (_, grad)
                  in zip(model.named_parameters(), model.get_params_and_grads())}
    params = dict(model.named_parameters())

    eps = 1e-5
    checked = ["head.W", "encoder.0.feed_forward.W1", "encoder.0.feed_forward.b2", "embeddings.weight"]
    for name in checked:
        param = params[name]
        # Probe a handful of entries per parameter
        for flat in np.random.choice(param.size, size=min(param.size, 6), replace=False):
            idx = np.unravel_index(flat, param.shape)
            original = param[idx]
            param[idx] = original + eps
            plus = cross_entropy_loss(model.forward(ids), labels)
            param[idx] = original - eps
            minus = cross_entropy_loss(model.forward(ids), labels)
            param[idx] = original

            numeric = (plus - minus) / (2 * eps)
            assert analytical[name][idx] == pytest.approx(numeric, rel=1e-4, abs=1e-7), name


def test_save_and_load_reproduce_outputs(model, small_config, tmp_path):
    ids = np.random.randint(0, small_config.vocab_size, size=(3, 6))
    path = tmp_path / "model.json"

    model.save(path)
    restored = Transformer.load(path)

    assert restored.config == model.config
    assert np.array_equal(restored.forward(ids), model.forward(ids))


def test_load_state_dict_rejects_bad_shape(model):
    state = model.state_dict()
    state["head.W"] = np.zeros((1, 1))
    before = model.state_dict()

    with pytest.raises(ValueError):
        model.load_state_dict(state)

    # Nothing was overwritten
    for name, value in model.state_dict().items():
        assert np.array_equal(value, before[name])


def test_load_state_dict_rejects_missing_key(model):
    state = model.state_dict()
    del state["head.b"]

    with pytest.raises(ValueError):
        model.load_state_dict(state)
