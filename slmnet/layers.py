"""
Neural Network Layers

This module implements the parameter-owning building blocks that models are
assembled from. Layers do not implement their own backward passes: their
forward methods are compositions of differentiable operations, so calling
backward() on a loss computed from a layer's output fills the grad buffer of
every parameter automatically.

Every layer exposes the same two-method contract:
    forward(inputs) -> Tensor
    parameters() -> ordered list of trainable Tensors

Classes:
    Layer: Base class with recursive parameter collection
    Dense: Fully connected layer (y = xW + b)
    Sequential: Ordered composition of layers
    ReLU, Sigmoid: Stateless activation layers
    Embedding: Token ID to dense vector lookup table
    LayerNorm: Layer normalization with learnable scale and shift
    PositionalEncoding: Fixed sinusoidal position information

Reference:
    - "Attention Is All You Need" (Vaswani et al., 2017)
    - "Layer Normalization" (Ba et al., 2016)
    - "Delving Deep into Rectifiers" (He et al., 2015) - He initialization
"""

from typing import List, Sequence

import numpy as np

from slmnet import ops
from slmnet.errors import ShapeError
from slmnet.tensor import Tensor, as_index_array, as_tensor

__all__ = [
    "Layer",
    "Dense",
    "Sequential",
    "ReLU",
    "Sigmoid",
    "Embedding",
    "LayerNorm",
    "PositionalEncoding",
]


class Layer:
    """
    Base class for all layers.

    parameters() walks the attributes of the layer in definition order and
    collects every Tensor with requires_grad=True, recursing into nested layers
    and into lists or tuples of layers. A tensor reachable along several paths
    is reported once, at its first position.
    """

    def forward(self, inputs: Tensor) -> Tensor:
        raise NotImplementedError(
            f"{type(self).__name__} must implement forward()"
        )

    def __call__(self, inputs: Tensor) -> Tensor:
        return self.forward(inputs)

    def parameters(self) -> List[Tensor]:
        collected: List[Tensor] = []
        seen = set()
        for value in vars(self).values():
            for tensor in _collect_parameters(value):
                if id(tensor) not in seen:
                    seen.add(id(tensor))
                    collected.append(tensor)
        return collected


def _collect_parameters(value) -> List[Tensor]:
    if isinstance(value, Tensor):
        return [value] if value.requires_grad else []
    if isinstance(value, Layer):
        return value.parameters()
    if isinstance(value, (list, tuple)):
        found: List[Tensor] = []
        for item in value:
            found.extend(_collect_parameters(item))
        return found
    return []


class Dense(Layer):
    """
    Fully Connected (Dense) Layer.

    Computes the affine transformation: y = x @ W + b

    Attributes:
        weights: Weight matrix of shape (in_features, out_features)
        bias: Bias row of shape (1, out_features) or None

    Weight Initialization:
        He initialization for ReLU networks: W ~ U(-limit, limit) with
        limit = sqrt(2 / fan_in). The bias starts at zero.
    """

    def __init__(self, in_features: int, out_features: int, use_bias: bool = True):
        """
        Args:
            in_features: Size of input dimension (fan_in)
            out_features: Size of output dimension
            use_bias: Whether to include a bias term
        """
        self.in_features = in_features
        self.out_features = out_features

        limit = np.sqrt(2.0 / in_features)
        self.weights = Tensor(
            np.random.uniform(-limit, limit, size=(in_features, out_features)),
            requires_grad=True,
        )
        self.bias = (
            Tensor.zeros((1, out_features), requires_grad=True) if use_bias else None
        )

    def forward(self, inputs: Tensor) -> Tensor:
        """
        Args:
            inputs: Tensor of shape (batch, in_features)

        Returns:
            Tensor of shape (batch, out_features)
        """
        output = ops.dot(inputs, self.weights)
        if self.bias is not None:
            output = ops.add(output, self.bias)
        return output


class Sequential(Layer):
    """Runs layers in order, feeding each output into the next layer."""

    def __init__(self, layers: Sequence[Layer]):
        self.layers = list(layers)

    def forward(self, inputs: Tensor) -> Tensor:
        current = inputs
        for layer in self.layers:
            current = layer.forward(current)
        return current


class ReLU(Layer):
    def forward(self, inputs: Tensor) -> Tensor:
        return ops.relu(inputs)


class Sigmoid(Layer):
    def forward(self, inputs: Tensor) -> Tensor:
        return ops.sigmoid(inputs)


class Embedding(Layer):
    """
    Embedding Layer (Lookup Table).

    Converts discrete token IDs into dense vectors by selecting rows of a
    learned weight matrix.

    Forward accepts token IDs of any shape and returns one row per ID, shape
    (number_of_ids, embedding_dimension). Backward scatter-adds the upstream
    gradient into the selected rows, so a token that appears several times in
    the input receives the sum of all its contributions.

    Reference: "Attention Is All You Need" Section 3.4
    """

    def __init__(self, vocabulary_size: int, embedding_dimension: int):
        """
        Args:
            vocabulary_size: Number of unique tokens in vocabulary
            embedding_dimension: Size of embedding vectors
        """
        self.vocabulary_size = vocabulary_size
        self.embedding_dimension = embedding_dimension
        self.weight = Tensor.random(
            (vocabulary_size, embedding_dimension), requires_grad=True
        )

    def forward(self, token_ids) -> Tensor:
        """
        Args:
            token_ids: Integer-valued Tensor, array or list, any shape.
                      Values must lie in [0, vocabulary_size).

        Returns:
            Tensor of shape (number_of_ids, embedding_dimension)
        """
        indices = as_index_array(token_ids)
        if indices.size == 0:
            raise ShapeError("Embedding needs at least one token id")
        if indices.min() < 0 or indices.max() >= self.vocabulary_size:
            raise ValueError(
                f"Token ids must be in [0, {self.vocabulary_size}), got range "
                f"[{indices.min()}, {indices.max()}]"
            )
        weight = self.weight

        def backward(upstream: np.ndarray) -> None:
            if weight.requires_grad:
                # np.add.at accumulates repeated indices instead of overwriting
                np.add.at(weight.grad, indices, upstream)

        return Tensor._from_op(weight.data[indices], (weight,), backward)


class LayerNorm(Layer):
    """
    Layer Normalization.

    Normalizes every row of a 2D input to zero mean and unit variance across
    its features, then applies a learnable scale (gamma) and shift (beta).

    Formula:
        x_hat = (x - mean) / sqrt(var + eps)
        y = gamma * x_hat + beta

    Backward (per row, C features, d_hat = gamma * upstream):
        d_gamma = sum over rows of upstream * x_hat
        d_beta  = sum over rows of upstream
        d_x     = std_inv / C * (C * d_hat - sum(d_hat) - x_hat * sum(d_hat * x_hat))

    The input gradient is the exact Jacobian-vector product; it accounts for
    the dependence of mean and variance on every element of the row.

    Reference: "Layer Normalization" (Ba et al., 2016)
    """

    def __init__(self, features: int, epsilon: float = 1e-5):
        """
        Args:
            features: Size of the last dimension to normalize over
            epsilon: Small constant added to the variance
        """
        self.features = features
        self.epsilon = epsilon

        self.gamma = Tensor.ones((1, features), requires_grad=True)
        self.beta = Tensor.zeros((1, features), requires_grad=True)

        # Cache from the most recent forward pass
        self._mean_cache = None
        self._variance_cache = None
        self._normalized_cache = None

    def forward(self, inputs: Tensor) -> Tensor:
        """
        Args:
            inputs: Tensor of shape (rows, features)

        Returns:
            Tensor of the same shape
        """
        x = as_tensor(inputs)
        if x.ndim != 2 or x.shape[1] != self.features:
            raise ShapeError(
                f"LayerNorm({self.features}) expects input of shape "
                f"(rows, {self.features}), got {list(x.shape)}"
            )
        gamma, beta = self.gamma, self.beta
        feature_count = self.features

        mean = np.mean(x.data, axis=-1, keepdims=True)
        variance = np.var(x.data, axis=-1, keepdims=True)
        std_inv = 1.0 / np.sqrt(variance + self.epsilon)
        normalized = (x.data - mean) * std_inv

        self._mean_cache = mean
        self._variance_cache = variance
        self._normalized_cache = normalized

        def backward(upstream: np.ndarray) -> None:
            if gamma.requires_grad:
                gamma.grad += np.sum(upstream * normalized, axis=0, keepdims=True)
            if beta.requires_grad:
                beta.grad += np.sum(upstream, axis=0, keepdims=True)
            if x.requires_grad:
                d_normalized = upstream * gamma.data
                x.grad += (std_inv / feature_count) * (
                    feature_count * d_normalized
                    - np.sum(d_normalized, axis=-1, keepdims=True)
                    - normalized
                    * np.sum(d_normalized * normalized, axis=-1, keepdims=True)
                )

        output = gamma.data * normalized + beta.data
        return Tensor._from_op(output, (x, gamma, beta), backward)


class PositionalEncoding(Layer):
    """
    Sinusoidal Positional Encoding.

    Adds a fixed, position-dependent pattern to token embeddings so the model
    can tell positions apart:
        PE(pos, 2i)   = sin(pos / 10000^(2i/d_model))
        PE(pos, 2i+1) = cos(pos / 10000^(2i/d_model))

    The table is constant, so this layer has no parameters; the gradient
    passes straight through the addition to the embeddings.

    Reference: "Attention Is All You Need" Section 3.5
    """

    def __init__(self, max_sequence_length: int, embedding_dimension: int):
        self.max_sequence_length = max_sequence_length
        self.embedding_dimension = embedding_dimension
        self.encoding_table = self._create_encoding_table()

    def _create_encoding_table(self) -> np.ndarray:
        positions = np.arange(self.max_sequence_length)[:, np.newaxis]
        dimension_indices = np.arange(self.embedding_dimension)[np.newaxis, :]

        # 2 * (i // 2) gives the [0, 0, 2, 2, 4, 4, ...] exponent pattern
        angle_rates = 1.0 / np.power(
            10000.0, (2 * (dimension_indices // 2)) / self.embedding_dimension
        )
        angles = positions * angle_rates

        table = np.zeros_like(angles)
        table[:, 0::2] = np.sin(angles[:, 0::2])
        table[:, 1::2] = np.cos(angles[:, 1::2])
        return table

    def get_encoding(self, sequence_length: int) -> np.ndarray:
        if sequence_length > self.max_sequence_length:
            raise ValueError(
                f"Sequence length {sequence_length} exceeds maximum "
                f"{self.max_sequence_length}"
            )
        return self.encoding_table[:sequence_length]

    def forward(self, inputs: Tensor) -> Tensor:
        """
        Args:
            inputs: Embeddings of shape (sequence_length, embedding_dimension)
        """
        x = as_tensor(inputs)
        if x.ndim != 2 or x.shape[1] != self.embedding_dimension:
            raise ShapeError(
                f"PositionalEncoding expects shape (sequence_length, "
                f"{self.embedding_dimension}), got {list(x.shape)}"
            )
        encoding = Tensor(self.get_encoding(x.shape[0]), dtype=x.dtype)
        return ops.add(x, encoding)
