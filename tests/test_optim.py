import numpy as np
import pytest

from spamformer.optim import SGD, Adam, build_optimizer


def test_sgd_single_step():
    params = np.array([[1.0, 2.0], [3.0, 4.0]])
    grads = np.array([[0.1, 0.2], [0.3, 0.4]])

    SGD(learning_rate=0.001).step([(params, grads)])

    assert np.allclose(params, [[0.9999, 1.9998], [2.9997, 3.9996]])


def test_sgd_momentum_accumulates_velocity():
    param = np.array([1.0])
    grad = np.array([1.0])
    optimizer = SGD(learning_rate=0.1, momentum=0.9)

    optimizer.step([(param, grad)])
    assert param[0] == pytest.approx(0.9)

    # velocity = 0.9 * -0.1 - 0.1 = -0.19
    optimizer.step([(param, grad)])
    assert param[0] == pytest.approx(0.71)


def test_sgd_updates_in_place():
    param = np.ones((2, 2))
    alias = param
    SGD(learning_rate=0.5).step([(param, np.ones((2, 2)))])

    assert alias is param
    assert np.allclose(alias, 0.5)


def test_adam_first_step_moves_by_learning_rate():
    param = np.array([1.0, -2.0, 3.0])
    grad = np.array([0.5, -40.0, 1e-3])

    Adam(learning_rate=0.01).step([(param, grad)])

    # After bias correction m_hat / sqrt(v_hat) = sign(grad)
    assert np.allclose(param, [0.99, -1.99, 2.99], atol=1e-6)


def test_adam_state_is_lazy_and_counts_steps():
    optimizer = Adam()
    assert optimizer.t == 0
    assert optimizer.moment1 == {} and optimizer.moment2 == {}

    pairs = [(np.zeros(3), np.ones(3)), (np.zeros((2, 2)), np.ones((2, 2)))]
    optimizer.step(pairs)
    optimizer.step(pairs)

    assert optimizer.t == 2
    assert set(optimizer.moment1) == {0, 1}
    assert optimizer.moment2[1].shape == (2, 2)


def test_adam_matches_reference_update():
    param = np.array([0.5])
    optimizer = Adam(learning_rate=0.1, beta1=0.9, beta2=0.999, eps=1e-8)
    m = v = 0.0
    expected = 0.5

    for t, g in enumerate([0.2, -0.1, 0.4], start=1):
        optimizer.step([(param, np.array([g]))])
        m = 0.9 * m + 0.1 * g
        v = 0.999 * v + 0.001 * g * g
        expected -= 0.1 * (m / (1 - 0.9 ** t)) / (np.sqrt(v / (1 - 0.999 ** t)) + 1e-8)

    assert param[0] == pytest.approx(expected)


@pytest.mark.parametrize("optimizer", [SGD(), Adam()])
def test_shape_mismatch_raises(optimizer):
    with pytest.raises(AssertionError):
        optimizer.step([(np.zeros((2, 2)), np.zeros(3))])


@pytest.mark.parametrize("optimizer", [SGD(), Adam()])
def test_missing_gradient_is_skipped(optimizer):
    param = np.ones(2)
    optimizer.step([(param, None)])
    assert np.array_equal(param, np.ones(2))


def test_build_optimizer():
    assert isinstance(build_optimizer("sgd", momentum=0.5), SGD)
    adam = build_optimizer("Adam", learning_rate=0.01)
    assert isinstance(adam, Adam) and adam.lr == 0.01

    with pytest.raises(ValueError):
        build_optimizer("rmsprop")
