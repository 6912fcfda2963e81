"""
Differentiable Tensor Operations

Every function in this module computes its forward result with NumPy and, when
any input requires gradients, attaches a Context whose backward rule adds the
local gradient into each input's grad buffer. Gradients are always accumulated
with +=, never assigned, so a tensor consumed by several operations receives
the sum of the contributions from every path.

Functions:
    add: Elementwise addition with bias-row broadcasting
    mul: Elementwise multiplication with scalar broadcasting
    pow: Elementwise power with a constant exponent
    relu: Rectified Linear Unit
    sigmoid: Logistic sigmoid
    dot: 2D matrix multiplication
    sum: Reduction of all elements to a scalar
    softmax: Row-wise softmax (forward only, see its docstring)
    slice_columns: Differentiable column block of a 2D tensor
    concat_columns: Differentiable horizontal concatenation of 2D tensors

Non-differentiable helpers:
    transpose: 2D transpose into a fresh buffer
"""

import logging
from typing import Sequence

import numpy as np

from slmnet.errors import ShapeError
from slmnet.tensor import Tensor, as_tensor

logger = logging.getLogger(__name__)

_softmax_warned = False


def add(a, b) -> Tensor:
    """
    Add two tensors.

    Supported shapes:
        - identical shapes: elementwise
        - b of shape (1, C) with a of shape (..., C): the bias row is added to
          every row of a

    Backward:
        d_a = upstream
        d_b = upstream, or upstream summed over the broadcast rows

    Raises:
        ShapeError: For any other combination of shapes
    """
    a, b = as_tensor(a), as_tensor(b)

    if a.shape == b.shape:
        broadcast = False
    elif a.ndim >= 2 and b.ndim == 2 and b.shape == (1, a.shape[-1]):
        broadcast = True
    else:
        raise ShapeError(
            f"Shapes {list(a.shape)} and {list(b.shape)} are incompatible for add "
            "(only equal shapes and bias-row broadcasting are supported)"
        )

    def backward(upstream: np.ndarray) -> None:
        if a.requires_grad:
            a.grad += upstream
        if b.requires_grad:
            if broadcast:
                b.grad += upstream.reshape(-1, b.shape[1]).sum(axis=0, keepdims=True)
            else:
                b.grad += upstream

    return Tensor._from_op(a.data + b.data, (a, b), backward)


def mul(a, b) -> Tensor:
    """
    Multiply two tensors elementwise, or scale a tensor by a single-element one.

    Backward (elementwise):
        d_a = b * upstream,  d_b = a * upstream
    Backward (scalar s times tensor t):
        d_t = s * upstream,  d_s = sum(t * upstream)

    Raises:
        ShapeError: If shapes differ and neither operand has exactly one element
    """
    a, b = as_tensor(a), as_tensor(b)

    if a.shape == b.shape:
        mode = "elementwise"
        result = a.data * b.data
    elif b.size == 1:
        mode = "scalar_b"
        result = a.data * b.data.reshape(-1)[0]
    elif a.size == 1:
        mode = "scalar_a"
        result = b.data * a.data.reshape(-1)[0]
    else:
        raise ShapeError(
            f"Shapes {list(a.shape)} and {list(b.shape)} are incompatible for mul"
        )

    def backward(upstream: np.ndarray) -> None:
        if mode == "elementwise":
            if a.requires_grad:
                a.grad += b.data * upstream
            if b.requires_grad:
                b.grad += a.data * upstream
        elif mode == "scalar_b":
            scalar = b.data.reshape(-1)[0]
            if a.requires_grad:
                a.grad += scalar * upstream
            if b.requires_grad:
                b.grad += np.sum(a.data * upstream)
        else:
            scalar = a.data.reshape(-1)[0]
            if b.requires_grad:
                b.grad += scalar * upstream
            if a.requires_grad:
                a.grad += np.sum(b.data * upstream)

    return Tensor._from_op(result, (a, b), backward)


def pow(x, exponent: float) -> Tensor:
    """Elementwise x ** exponent; d_x = exponent * x ** (exponent - 1) * upstream."""
    x = as_tensor(x)

    def backward(upstream: np.ndarray) -> None:
        if x.requires_grad:
            x.grad += exponent * np.power(x.data, exponent - 1) * upstream

    return Tensor._from_op(np.power(x.data, exponent), (x,), backward)


def relu(x) -> Tensor:
    """max(0, x); the gradient passes only where the input was positive."""
    x = as_tensor(x)

    def backward(upstream: np.ndarray) -> None:
        if x.requires_grad:
            x.grad += (x.data > 0) * upstream

    return Tensor._from_op(np.maximum(x.data, 0), (x,), backward)


def sigmoid(x) -> Tensor:
    """
    Logistic sigmoid 1 / (1 + exp(-x)).

    Evaluated as 0.5 * (1 + tanh(x / 2)), which is the same function but never
    overflows for large negative inputs.

    Backward uses the forward output s: d_x = s * (1 - s) * upstream
    """
    x = as_tensor(x)
    output = 0.5 * (1.0 + np.tanh(0.5 * x.data))

    def backward(upstream: np.ndarray) -> None:
        if x.requires_grad:
            x.grad += output * (1.0 - output) * upstream

    return Tensor._from_op(output, (x,), backward)


def dot(a, b) -> Tensor:
    """
    Matrix multiplication of two 2D tensors.

    Forward:  C = A @ B          (M, K) @ (K, N) -> (M, N)
    Backward: d_A = upstream @ B^T
              d_B = A^T @ upstream

    Raises:
        ShapeError: If either operand is not 2D or the inner dimensions differ
    """
    a, b = as_tensor(a), as_tensor(b)
    if a.ndim != 2 or b.ndim != 2:
        raise ShapeError(
            "Matrix multiplication is only supported for 2D tensors, got "
            f"{list(a.shape)} and {list(b.shape)}"
        )
    if a.shape[1] != b.shape[0]:
        raise ShapeError(
            f"Incompatible shapes for matrix multiplication: {list(a.shape)} "
            f"and {list(b.shape)}"
        )

    def backward(upstream: np.ndarray) -> None:
        if a.requires_grad:
            a.grad += upstream @ b.data.T
        if b.requires_grad:
            b.grad += a.data.T @ upstream

    return Tensor._from_op(a.data @ b.data, (a, b), backward)


def sum(x) -> Tensor:
    """Sum all elements into a tensor of shape (1,)."""
    x = as_tensor(x)

    def backward(upstream: np.ndarray) -> None:
        if x.requires_grad:
            x.grad += upstream.reshape(-1)[0]

    total = np.array([np.sum(x.data)], dtype=x.dtype)
    return Tensor._from_op(total, (x,), backward)


def softmax_rows(values: np.ndarray) -> np.ndarray:
    """
    Numerically stable row-wise softmax of a NumPy array.

    The row maximum is subtracted before exponentiating, which leaves the
    result unchanged but keeps every exponent <= 0 so exp() cannot overflow.
    Entries equal to -inf get probability exactly 0.
    """
    shifted = values - np.max(values, axis=-1, keepdims=True)
    exponentials = np.exp(shifted)
    return exponentials / np.sum(exponentials, axis=-1, keepdims=True)


def softmax(x) -> Tensor:
    """
    Row-wise softmax of a 2D tensor.

    The backward rule is deliberately empty. Softmax is meant to be the last
    stage before cross_entropy_loss, which computes the combined
    softmax + cross-entropy gradient itself. Using this op in the middle of a
    graph stops gradient flow at this point. Attention uses
    slmnet.attention.causal_softmax, which has a full backward rule.

    Raises:
        ShapeError: If the input is not 2D
    """
    global _softmax_warned
    x = as_tensor(x)
    if x.ndim != 2:
        raise ShapeError(f"softmax expects a 2D tensor, got shape {list(x.shape)}")

    if x.requires_grad and not _softmax_warned:
        logger.warning(
            "softmax() does not propagate gradients; use cross_entropy_loss on "
            "the logits instead of differentiating through softmax"
        )
        _softmax_warned = True

    def backward(upstream: np.ndarray) -> None:
        pass

    return Tensor._from_op(softmax_rows(x.data), (x,), backward)


def transpose(x) -> Tensor:
    """Transpose a 2D tensor into a fresh buffer; the result has no context."""
    x = as_tensor(x)
    if x.ndim != 2:
        raise ShapeError(
            f"Transpose is only supported for 2D tensors, got shape {list(x.shape)}"
        )
    return Tensor._wrap(np.ascontiguousarray(x.data.T.copy()))


def slice_columns(x, start: int, stop: int) -> Tensor:
    """
    Copy columns [start, stop) of a 2D tensor.

    The gradient of the slice is added back into the same column block of x.
    """
    x = as_tensor(x)
    if x.ndim != 2:
        raise ShapeError(
            f"slice_columns expects a 2D tensor, got shape {list(x.shape)}"
        )
    if not 0 <= start < stop <= x.shape[1]:
        raise ShapeError(
            f"Column range [{start}, {stop}) is out of bounds for shape "
            f"{list(x.shape)}"
        )

    def backward(upstream: np.ndarray) -> None:
        if x.requires_grad:
            x.grad[:, start:stop] += upstream

    return Tensor._from_op(x.data[:, start:stop].copy(), (x,), backward)


def concat_columns(tensors: Sequence[Tensor]) -> Tensor:
    """
    Concatenate 2D tensors with equal row counts side by side.

    Backward hands each input the column block of the upstream gradient at
    the offset where that input was placed.
    """
    tensors = [as_tensor(tensor) for tensor in tensors]
    if not tensors:
        raise ShapeError("concat_columns needs at least one tensor")
    rows = tensors[0].shape[0]
    for tensor in tensors:
        if tensor.ndim != 2 or tensor.shape[0] != rows:
            raise ShapeError(
                "concat_columns expects 2D tensors with matching row counts, got "
                f"{[list(t.shape) for t in tensors]}"
            )

    offsets = np.cumsum([0] + [tensor.shape[1] for tensor in tensors])

    def backward(upstream: np.ndarray) -> None:
        for tensor, begin, end in zip(tensors, offsets[:-1], offsets[1:]):
            if tensor.requires_grad:
                tensor.grad += upstream[:, begin:end]

    combined = np.concatenate([tensor.data for tensor in tensors], axis=1)
    return Tensor._from_op(combined, tensors, backward)
