"""
Loss Functions

Functions:
    cross_entropy_loss: Fused softmax + cross-entropy for classification
                        and next-token prediction
"""

import numpy as np

from slmnet import ops
from slmnet.errors import ShapeError
from slmnet.tensor import Tensor, as_index_array, as_tensor

# Probabilities are floored here before taking the log
PROBABILITY_FLOOR = 1e-9


def cross_entropy_loss(logits: Tensor, targets) -> Tensor:
    """
    Compute the mean cross-entropy between softmax(logits) and target classes.

    Formula:
        loss = -1/N * sum_i log(softmax(logits)[i, target_i])

    The softmax is computed inside the loss and its gradient is fused with the
    cross-entropy gradient, which has the simple closed form:
        d_loss/d_logits = (softmax(logits) - one_hot(targets)) / N

    For the correct class the gradient is (p - 1), negative; for every other
    class it is p, positive. Training therefore raises the probability of the
    correct class and lowers all others.

    Args:
        logits: Raw model outputs, shape (N, vocab_size)
        targets: Integer class ids, N values in [0, vocab_size)

    Returns:
        Scalar loss tensor of shape (1,)

    Raises:
        ShapeError: If logits are not 2D or the number of targets is not N
        ValueError: If a target id is outside [0, vocab_size)
    """
    logits = as_tensor(logits)
    if logits.ndim != 2:
        raise ShapeError(
            f"cross_entropy_loss expects logits of shape (N, vocab_size), got "
            f"{list(logits.shape)}"
        )
    target_ids = as_index_array(targets)
    num_rows, vocab_size = logits.shape
    if target_ids.size != num_rows:
        raise ShapeError(
            f"Expected {num_rows} targets for logits of shape {list(logits.shape)}, "
            f"got {target_ids.size}"
        )
    if target_ids.min() < 0 or target_ids.max() >= vocab_size:
        raise ValueError(f"Target ids must be in [0, {vocab_size})")

    rows = np.arange(num_rows)
    probabilities = ops.softmax_rows(logits.data)
    correct_probabilities = np.maximum(
        probabilities[rows, target_ids], PROBABILITY_FLOOR
    )
    loss = -np.sum(np.log(correct_probabilities)) / num_rows

    def backward(upstream: np.ndarray) -> None:
        if logits.requires_grad:
            gradient = probabilities.copy()
            gradient[rows, target_ids] -= 1.0
            logits.grad += gradient / num_rows * upstream.reshape(-1)[0]

    return Tensor._from_op(
        np.array([loss], dtype=logits.dtype), (logits,), backward
    )
