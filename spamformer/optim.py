"""
Optimizers

Both optimizers consume a list of (parameter, gradient) pairs, as produced by
Transformer.get_params_and_grads(), and update the parameters in place.

- SGD: plain gradient descent, with optional momentum
- Adam: adaptive moment estimation with bias correction

Per-parameter state (velocities, moment estimates) is allocated lazily on the
first step and keyed by the parameter's position in the list, so the list
order must stay the same from one step to the next.
"""

import numpy as np


def _check_pair(param, grad):
    assert param.shape == grad.shape, \
        f"Parameter and gradient shapes must match ({param.shape} != {grad.shape})."


class SGD:
    """
    Stochastic Gradient Descent.

    The basic update rule is:
        param = param - learning_rate * gradient

    With momentum, a velocity is kept for each parameter:
        velocity = momentum * velocity - learning_rate * gradient
        param = param + velocity

    Momentum smooths noisy gradients and builds up speed along directions
    that stay consistent from batch to batch.
    """

    def __init__(self, learning_rate=0.001, momentum=0.0):
        assert learning_rate > 0, "learning_rate must be positive"
        assert 0.0 <= momentum < 1.0, "momentum must lie in [0, 1)"

        self.lr = learning_rate
        self.momentum = momentum
        self.velocities = {}

    def step(self, params_and_grads):
        """
        Update parameters in place.

        Args:
            params_and_grads: List of (parameter, gradient) arrays; entries
                              whose gradient is None are skipped
        """
        for i, (param, grad) in enumerate(params_and_grads):
            if grad is None:
                continue
            _check_pair(param, grad)

            if self.momentum > 0:
                if i not in self.velocities:
                    self.velocities[i] = np.zeros_like(param)

                self.velocities[i] = self.momentum * self.velocities[i] - self.lr * grad
                param += self.velocities[i]
            else:
                param -= self.lr * grad


class Adam:
    """
    Adam: Adaptive Moment Estimation.

    Each step t, for every parameter:
        m = beta1 * m + (1 - beta1) * grad          (first moment: mean)
        v = beta2 * v + (1 - beta2) * grad^2        (second moment: uncentered variance)
        m_hat = m / (1 - beta1^t)
        v_hat = v / (1 - beta2^t)
        param = param - lr * m_hat / (sqrt(v_hat) + eps)

    m and v start at zero, which biases them towards zero during the first
    steps; dividing by (1 - beta^t) removes that bias. The effective step is
    roughly lr in each coordinate, regardless of the raw gradient scale.
    """

    def __init__(self, learning_rate=0.001, beta1=0.9, beta2=0.999, eps=1e-8):
        assert learning_rate > 0, "learning_rate must be positive"
        assert 0.0 <= beta1 < 1.0 and 0.0 <= beta2 < 1.0, "betas must lie in [0, 1)"

        self.lr = learning_rate
        self.beta1 = beta1
        self.beta2 = beta2
        self.eps = eps

        self.t = 0
        self.moment1 = {}
        self.moment2 = {}

    def step(self, params_and_grads):
        """
        Update parameters in place.

        Args:
            params_and_grads: List of (parameter, gradient) arrays; entries
                              whose gradient is None are skipped
        """
        self.t += 1
        correction1 = 1.0 - self.beta1 ** self.t
        correction2 = 1.0 - self.beta2 ** self.t

        for i, (param, grad) in enumerate(params_and_grads):
            if grad is None:
                continue
            _check_pair(param, grad)

            if i not in self.moment1:
                self.moment1[i] = np.zeros_like(param)
                self.moment2[i] = np.zeros_like(param)

            m = self.moment1[i]
            v = self.moment2[i]
            assert m.shape == param.shape, \
                f"Parameter {i} changed shape since the first step ({m.shape} -> {param.shape})."

            m *= self.beta1
            m += (1.0 - self.beta1) * grad
            v *= self.beta2
            v += (1.0 - self.beta2) * grad ** 2

            m_hat = m / correction1
            v_hat = v / correction2

            param -= self.lr * m_hat / (np.sqrt(v_hat) + self.eps)


def build_optimizer(name, learning_rate=0.001, beta1=0.9, beta2=0.999, eps=1e-8, momentum=0.0):
    """
    Create an optimizer by name ("sgd" or "adam").

    Raises:
        ValueError: For an unknown name
    """
    name = name.lower()
    if name == "sgd":
        return SGD(learning_rate=learning_rate, momentum=momentum)
    if name == "adam":
        return Adam(learning_rate=learning_rate, beta1=beta1, beta2=beta2, eps=eps)
    raise ValueError(f"Unknown optimizer: {name!r} (expected 'sgd' or 'adam')")
