"""
Tensor: the data container and computation-graph node.

A Tensor stores a contiguous NumPy buffer together with an optional gradient
buffer of the same shape. Tensors produced by a differentiable operation also
carry a Context describing how they were made: the tensors they depend on and
a rule that pushes gradients back into those inputs. Following the contexts
from a scalar result back to the leaves yields the computation graph that
backward() walks.

The graph is built eagerly during the forward pass and never stored as a
separate object: it exists only as the chain of context -> inputs references.

Classes:
    Context: A graph node's inputs and local gradient rule
    Tensor: N-dimensional numeric buffer with gradient and graph context

Functions:
    as_tensor: Wrap lists, arrays and scalars as (non-trainable) Tensors
    as_index_array: Convert an integer-valued Tensor/array to flat int64 indices
    get_default_dtype / set_default_dtype / default_dtype: Precision settings

Reference:
    "Automatic Differentiation in Machine Learning: a Survey"
    (Baydin et al., 2018) Section 3.2 - Reverse mode
"""

import logging
from contextlib import contextmanager
from typing import Callable, Iterator, List, Optional, Sequence, Tuple, Union

import numpy as np

from slmnet.errors import GraphError, ShapeError

logger = logging.getLogger(__name__)

_default_dtype = np.dtype(np.float32)


def get_default_dtype() -> np.dtype:
    """Return the floating point dtype used for newly constructed tensors."""
    return _default_dtype


def set_default_dtype(dtype) -> None:
    """
    Set the floating point dtype used for newly constructed tensors.

    Args:
        dtype: Any NumPy floating dtype (np.float32, np.float64, ...)

    Raises:
        TypeError: If dtype is not a floating point type
    """
    global _default_dtype
    dtype = np.dtype(dtype)
    if not np.issubdtype(dtype, np.floating):
        raise TypeError(f"Default dtype must be a floating point type, got {dtype}")
    _default_dtype = dtype


@contextmanager
def default_dtype(dtype) -> Iterator[None]:
    """Temporarily switch the default dtype, e.g. float64 for gradient checks."""
    previous = get_default_dtype()
    set_default_dtype(dtype)
    try:
        yield
    finally:
        set_default_dtype(previous)


def _infer_shape(value) -> Tuple[int, ...]:
    """Infer the shape of nested sequences, rejecting ragged nesting."""
    if isinstance(value, np.ndarray):
        return value.shape
    if isinstance(value, (list, tuple)):
        if len(value) == 0:
            raise ShapeError("Cannot infer a tensor shape from an empty sequence")
        child_shapes = [_infer_shape(child) for child in value]
        first_shape = child_shapes[0]
        for position, child_shape in enumerate(child_shapes[1:], start=1):
            if child_shape != first_shape:
                raise ShapeError(
                    "Nested sequences have inconsistent lengths: element 0 has "
                    f"shape {list(first_shape)}, element {position} has shape "
                    f"{list(child_shape)}"
                )
        return (len(value),) + first_shape
    return ()


def _check_dimensions(shape: Tuple[int, ...]) -> None:
    if any(dimension <= 0 for dimension in shape):
        raise ShapeError(f"All dimensions must be positive, got {list(shape)}")


class Context:
    """
    Record of how a tensor was produced.

    Attributes:
        inputs: Tensors the result depends on, in operand order
        backward: Callable taking the result's accumulated gradient array and
                  adding the local gradient contribution into each input's
                  grad buffer in place
    """

    __slots__ = ("inputs", "backward")

    def __init__(
        self,
        inputs: Sequence["Tensor"],
        backward: Callable[[np.ndarray], None],
    ):
        self.inputs = tuple(inputs)
        self.backward = backward


class Tensor:
    """
    N-dimensional numeric buffer that participates in automatic differentiation.

    Invariants:
        - grad is not None exactly when requires_grad is True
        - the product of shape equals the number of elements in data

    A tensor owns its buffers unless it is a view returned by reshape(). A view
    keeps a reference to its base and its data and grad arrays are NumPy views
    over the base's memory, so accumulating into one is visible in the other.

    Example:
        >>> w = Tensor([[1.0, 0.0], [0.0, 1.0]], requires_grad=True)
        >>> x = Tensor([[1.0, 2.0]])
        >>> loss = (x @ w).sum()
        >>> loss.backward()
        >>> w.grad
        array([[1., 1.],
               [2., 2.]], dtype=float32)
    """

    def __init__(
        self,
        data,
        shape: Optional[Sequence[int]] = None,
        requires_grad: bool = False,
        dtype=None,
    ):
        """
        Build a tensor from nested sequences or from a flat buffer and a shape.

        Args:
            data: Nested lists/tuples, a NumPy array, a flat buffer or a scalar
            shape: Explicit shape for a flat buffer. Inferred when omitted.
            requires_grad: Whether gradients should be accumulated for this tensor
            dtype: Floating dtype; defaults to get_default_dtype()

        Raises:
            ShapeError: Ragged nesting, non-positive dimensions, or a buffer whose
                        length does not match the explicit shape
        """
        dtype = np.dtype(dtype) if dtype is not None else get_default_dtype()
        # Validates nesting before NumPy sees it
        _infer_shape(data)

        if shape is None:
            array = np.array(data, dtype=dtype)
            if array.ndim == 0:
                array = array.reshape(1)
        else:
            shape = tuple(int(dimension) for dimension in shape)
            flat = np.array(data, dtype=dtype).reshape(-1)
            expected_size = int(np.prod(shape))
            if flat.size != expected_size:
                raise ShapeError(
                    f"Buffer of length {flat.size} does not match shape "
                    f"{list(shape)} (size {expected_size})"
                )
            array = flat.reshape(shape)

        _check_dimensions(array.shape)
        self._setup(np.ascontiguousarray(array), requires_grad)

    def _setup(self, array: np.ndarray, requires_grad: bool) -> None:
        self.data = array
        self.requires_grad = bool(requires_grad)
        self.grad: Optional[np.ndarray] = (
            np.zeros_like(array) if self.requires_grad else None
        )
        self._ctx: Optional[Context] = None
        self._base: Optional["Tensor"] = None

    @classmethod
    def _wrap(cls, array: np.ndarray, requires_grad: bool = False) -> "Tensor":
        """Adopt an array produced by an operation without copying it."""
        tensor = cls.__new__(cls)
        array = np.ascontiguousarray(array)
        if array.ndim == 0:
            array = array.reshape(1)
        tensor._setup(array, requires_grad)
        return tensor

    @classmethod
    def _from_op(
        cls,
        array: np.ndarray,
        inputs: Sequence["Tensor"],
        backward: Callable[[np.ndarray], None],
    ) -> "Tensor":
        """
        Build the result of a differentiable operation.

        The result requires gradients when any input does, and only then gets a
        Context linking it into the graph.
        """
        requires_grad = any(tensor.requires_grad for tensor in inputs)
        result = cls._wrap(array, requires_grad=requires_grad)
        if requires_grad:
            result._ctx = Context(inputs, backward)
        return result

    # ------------------------------------------------------------------
    # Factories
    # ------------------------------------------------------------------

    @staticmethod
    def _normalize_shape(shape: Union[int, Sequence[int]]) -> Tuple[int, ...]:
        if isinstance(shape, (int, np.integer)):
            return (int(shape),)
        return tuple(int(dimension) for dimension in shape)

    @classmethod
    def zeros(
        cls, shape: Union[int, Sequence[int]], requires_grad: bool = False
    ) -> "Tensor":
        shape = cls._normalize_shape(shape)
        _check_dimensions(shape)
        return cls._wrap(np.zeros(shape, dtype=get_default_dtype()), requires_grad)

    @classmethod
    def ones(
        cls, shape: Union[int, Sequence[int]], requires_grad: bool = False
    ) -> "Tensor":
        shape = cls._normalize_shape(shape)
        _check_dimensions(shape)
        return cls._wrap(np.ones(shape, dtype=get_default_dtype()), requires_grad)

    @classmethod
    def random(
        cls, shape: Union[int, Sequence[int]], requires_grad: bool = False
    ) -> "Tensor":
        """Uniform noise in [-1, 1], drawn from NumPy's global generator."""
        shape = cls._normalize_shape(shape)
        _check_dimensions(shape)
        values = np.random.uniform(-1.0, 1.0, size=shape)
        return cls._wrap(values.astype(get_default_dtype()), requires_grad)

    # ------------------------------------------------------------------
    # Metadata
    # ------------------------------------------------------------------

    @property
    def shape(self) -> Tuple[int, ...]:
        return self.data.shape

    @property
    def size(self) -> int:
        return int(self.data.size)

    @property
    def ndim(self) -> int:
        return self.data.ndim

    @property
    def dtype(self) -> np.dtype:
        return self.data.dtype

    @property
    def base(self) -> Optional["Tensor"]:
        """The tensor whose buffers this view aliases, or None."""
        return self._base

    @property
    def is_view(self) -> bool:
        return self._base is not None

    def __len__(self) -> int:
        return self.shape[0]

    def __repr__(self) -> str:
        body = np.array2string(self.data, precision=4, separator=", ")
        suffix = ", requires_grad=True" if self.requires_grad else ""
        return f"Tensor({body}, shape={list(self.shape)}{suffix})"

    def item(self) -> float:
        if self.size != 1:
            raise ShapeError(
                f"item() requires a single-element tensor, got shape {list(self.shape)}"
            )
        return float(self.data.reshape(-1)[0])

    def tolist(self) -> list:
        return self.data.tolist()

    def numpy(self) -> np.ndarray:
        """Return a copy of the data as a NumPy array."""
        return self.data.copy()

    # ------------------------------------------------------------------
    # Non-differentiable shape manipulation
    # ------------------------------------------------------------------

    def reshape(self, new_shape: Union[int, Sequence[int]]) -> "Tensor":
        """
        Return a view with a new shape that shares data and grad with self.

        The view has no context and never becomes a graph node. backward()
        looks through it to its base, so reshaping an intermediate result does
        not disconnect the graph.

        Raises:
            ShapeError: If the element count differs
        """
        new_shape = self._normalize_shape(new_shape)
        new_size = int(np.prod(new_shape))
        if new_size != self.size:
            raise ShapeError(
                f"Cannot reshape from {list(self.shape)} (size {self.size}) "
                f"to {list(new_shape)} (size {new_size})"
            )
        _check_dimensions(new_shape)

        view = Tensor.__new__(Tensor)
        view.data = self.data.reshape(new_shape)
        view.requires_grad = self.requires_grad
        view.grad = self.grad.reshape(new_shape) if self.grad is not None else None
        view._ctx = None
        view._base = self
        return view

    def transpose(self) -> "Tensor":
        from slmnet import ops

        return ops.transpose(self)

    # ------------------------------------------------------------------
    # Differentiable operations (delegate to slmnet.ops)
    # ------------------------------------------------------------------

    def add(self, other) -> "Tensor":
        from slmnet import ops

        return ops.add(self, other)

    def mul(self, other) -> "Tensor":
        from slmnet import ops

        return ops.mul(self, other)

    def pow(self, exponent: float) -> "Tensor":
        from slmnet import ops

        return ops.pow(self, exponent)

    def relu(self) -> "Tensor":
        from slmnet import ops

        return ops.relu(self)

    def sigmoid(self) -> "Tensor":
        from slmnet import ops

        return ops.sigmoid(self)

    def dot(self, other) -> "Tensor":
        from slmnet import ops

        return ops.dot(self, other)

    def sum(self) -> "Tensor":
        from slmnet import ops

        return ops.sum(self)

    def softmax(self) -> "Tensor":
        from slmnet import ops

        return ops.softmax(self)

    __add__ = add
    __mul__ = mul
    __pow__ = pow
    __matmul__ = dot

    def __radd__(self, other) -> "Tensor":
        from slmnet import ops

        return ops.add(other, self)

    def __rmul__(self, other) -> "Tensor":
        from slmnet import ops

        return ops.mul(other, self)

    # ------------------------------------------------------------------
    # Reverse pass
    # ------------------------------------------------------------------

    @staticmethod
    def _parents(node: "Tensor") -> Tuple["Tensor", ...]:
        if node._ctx is not None:
            return node._ctx.inputs
        if node._base is not None:
            return (node._base,)
        return ()

    def _topological_order(self) -> List["Tensor"]:
        """
        Depth-first post-order over the graph rooted at self.

        Only context-bearing tensors are returned; every node comes after all
        of its inputs, so walking the list backwards visits each node after
        every one of its consumers.
        """
        visited = set()
        order: List[Tensor] = []
        stack: List[Tuple[Tensor, bool]] = [(self, False)]

        while stack:
            node, inputs_done = stack.pop()
            if inputs_done:
                order.append(node)
                continue
            if id(node) in visited:
                continue
            visited.add(id(node))

            if node._ctx is not None:
                stack.append((node, True))
            for parent in reversed(self._parents(node)):
                if id(parent) not in visited:
                    stack.append((parent, False))

        return order

    def backward(self) -> None:
        """
        Run reverse-mode differentiation from this scalar tensor.

        Interior gradients are recomputed from scratch on every call, while leaf
        gradients (parameters) accumulate with +=. Call the optimizer's
        zero_grad() between independent backward passes; two calls without it
        leave exactly twice the gradient in every leaf.

        Raises:
            GraphError: If requires_grad is False or the tensor is not a scalar
        """
        if not self.requires_grad:
            raise GraphError(
                "backward() called on a tensor that does not require gradients"
            )
        if self.size != 1:
            raise GraphError(
                "backward() can only be called on a scalar tensor, got shape "
                f"{list(self.shape)}"
            )

        order = self._topological_order()
        logger.debug("backward: %d graph nodes", len(order))

        for node in order:
            node.grad.fill(0.0)
        self.grad.fill(1.0)

        for node in reversed(order):
            node._ctx.backward(node.grad)


def as_tensor(value) -> Tensor:
    """Return value unchanged if it is a Tensor, else wrap it (no gradient)."""
    if isinstance(value, Tensor):
        return value
    return Tensor(value)


def as_index_array(values) -> np.ndarray:
    """
    Convert an integer-valued Tensor, array or list into flat int64 indices.

    Raises:
        ValueError: If any value is not integral
    """
    raw = values.data if isinstance(values, Tensor) else np.asarray(values)
    indices = raw.astype(np.int64).reshape(-1)
    if not np.array_equal(indices, raw.reshape(-1)):
        raise ValueError("Index tensor must contain integer values")
    return indices


# =============================================================================
# EDUCATIONAL DEMO
# Run with: python -m slmnet.tensor
# =============================================================================
if __name__ == "__main__":
    print("=" * 70)
    print("TENSOR AND AUTOGRAD DEMO")
    print("=" * 70)
    print()

    weights = Tensor([[1.0, 0.0], [0.0, 1.0]], requires_grad=True)
    inputs = Tensor([[1.0, 2.0]])
    output = inputs @ weights
    print(f"x @ W = {output.data}")

    loss = output.sum()
    loss.backward()
    print("After sum(x @ W).backward():")
    print(f"  dL/dW =\n{weights.grad}")
    print()
    print("Each weight W[i, j] receives x[i], so the gradient is the outer")
    print("product of the input with the all-ones upstream gradient.")
