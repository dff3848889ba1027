"""
Activation Functions

Non-linearities used by the encoder and the loss, each with a forward pass
and a backward pass:
- softmax: row-wise stable softmax over the last axis (pure function)
- ReLU: rectified linear unit used inside the feed-forward sublayer
- Softmax: stateful wrapper caching its output for backpropagation

Also holds the finite-difference helpers used to verify every backward pass.

Chain rule reminder: if y = f(x) and L is the loss, dL/dx = dL/dy * dy/dx.
"""

import logging

import numpy as np

logger = logging.getLogger(__name__)


def softmax(x):
    """
    Numerically stable softmax over the last axis.

    softmax(x)_i = exp(x_i - max(x)) / sum_j(exp(x_j - max(x)))

    Subtracting the row maximum leaves the result unchanged but keeps every
    exponent <= 0, so exp() can never overflow.

    Args:
        x: Array of shape (..., n) with n >= 1

    Returns:
        Array of the same shape; every row is non-negative and sums to 1
    """
    x = np.asarray(x, dtype=np.float64)
    assert x.ndim >= 1 and x.shape[-1] > 0, "softmax needs at least one column"

    x_shifted = x - np.max(x, axis=-1, keepdims=True)
    exp_x = np.exp(x_shifted)
    return exp_x / np.sum(exp_x, axis=-1, keepdims=True)


class ReLU:
    """
    Rectified Linear Unit.

    Forward:
        y = max(0, x)

    Backward:
        dy/dx = 1 if x > 0, else 0

    The gradient at exactly x=0 is conventionally taken as 0.
    """

    def __init__(self):
        self.cache = None

    def forward(self, x):
        """
        Args:
            x: Input array of any shape

        Returns:
            max(0, x), same shape
        """
        # We need to remember which elements were positive
        self.cache = x
        return np.maximum(0, x)

    def backward(self, grad_output):
        """
        Args:
            grad_output: dL/dy, same shape as x

        Returns:
            dL/dx, zero wherever the unit was inactive
        """
        # (x > 0) is a boolean mask: gradient passes where the unit was active
        return grad_output * (self.cache > 0)


class Softmax:
    """
    Softmax activation with a backward pass.

    The Jacobian of softmax is:
        d(s_i)/d(x_j) = s_i * (delta_ij - s_j)

    Contracting it with an upstream gradient g gives the cheap form:
        dL/dx = s * (g - sum(g * s))
    """

    def __init__(self):
        self.output = None

    def forward(self, x):
        """Softmax over the last axis, cached for backward."""
        self.output = softmax(x)
        return self.output

    def backward(self, grad_output):
        """
        Args:
            grad_output: dL/ds, same shape as the forward output

        Returns:
            dL/dx, same shape
        """
        s = self.output

        # How much the shared normalizer moves the gradient, per row
        sum_grad_s = np.sum(grad_output * s, axis=-1, keepdims=True)

        return s * (grad_output - sum_grad_s)


# =============================================================================
# GRADIENT VERIFICATION UTILITIES
# =============================================================================

def numerical_gradient(func, x, eps=1e-5):
    """
    Central-difference gradient of a scalar function.

        df/dx ~= (f(x + eps) - f(x - eps)) / (2 * eps)

    x is perturbed in place and restored after each element, so func may
    close over an array it also reads through another reference (for example
    a layer's weight matrix).

    Args:
        func: Callable returning a scalar; receives x
        x: float64 array at which to evaluate the gradient
        eps: Perturbation size

    Returns:
        Array of the same shape as x
    """
    grad = np.zeros_like(x)

    it = np.nditer(x, flags=["multi_index"], op_flags=["readwrite"])
    while not it.finished:
        idx = it.multi_index
        original = x[idx]

        x[idx] = original + eps
        f_plus = func(x)

        x[idx] = original - eps
        f_minus = func(x)

        grad[idx] = (f_plus - f_minus) / (2 * eps)
        x[idx] = original

        it.iternext()

    return grad


def check_gradient(layer, x, eps=1e-5, tolerance=1e-4):
    """
    Verify a layer's backward pass against finite differences.

    A random upstream gradient g turns the layer into the scalar function
    L(x) = sum(layer.forward(x) * g), whose true input gradient is exactly
    what layer.backward(g) must return.

    Args:
        layer: Object with forward(x) and backward(grad_output)
        x: Input to test (float64)
        eps: Perturbation size for the numerical gradient
        tolerance: Maximum allowed relative error

    Returns:
        True if the analytical and numerical gradients agree
    """
    y = layer.forward(x.copy())
    grad_output = np.random.randn(*y.shape)
    analytical_grad = layer.backward(grad_output)

    def loss_func(x_test):
        return np.sum(layer.forward(x_test) * grad_output)

    numerical_grad = numerical_gradient(loss_func, x.copy(), eps)

    max_diff = np.max(np.abs(analytical_grad - numerical_grad))
    relative_error = max_diff / (np.max(np.abs(numerical_grad)) + eps)

    if relative_error < tolerance:
        logger.debug("Gradient check passed for %s (max diff %.2e)",
                     type(layer).__name__, max_diff)
        return True

    logger.warning("Gradient check failed for %s (max diff %.2e, relative %.2e)",
                   type(layer).__name__, max_diff, relative_error)
    return False
