"""
Shared fixtures for gradient checking.

Finite differences are only reliable in double precision, so the
check_gradients fixture switches the default dtype to float64 for the whole
test: build layers and tensors inside the test body, after requesting it.
"""

import numpy as np
import pytest

from slmnet.tensor import default_dtype
from slmnet.utils import numerical_gradient


@pytest.fixture
def float64():
    """Create tensors and parameters in float64 for the duration of a test."""
    with default_dtype(np.float64):
        yield


@pytest.fixture
def check_gradients(float64):
    """
    Compare backward() gradients with central finite differences.

    Usage:
        check_gradients(lambda: loss_of(x, w), [x, w])
    """

    def check(build_loss, tensors, rtol=1e-4, atol=1e-6):
        for tensor in tensors:
            tensor.grad.fill(0.0)
        build_loss().backward()

        for position, tensor in enumerate(tensors):
            analytical = tensor.grad.copy()
            numerical = numerical_gradient(build_loss, tensor)
            max_error = np.max(np.abs(analytical - numerical))
            assert np.allclose(analytical, numerical, rtol=rtol, atol=atol), (
                f"Gradient of tensor #{position} (shape {tensor.shape}) does not "
                f"match finite differences, max abs error {max_error:.3e}"
            )

    return check
