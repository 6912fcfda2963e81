"""
Multi-Head Causal Self-Attention

This module implements the attention mechanism of a decoder-only transformer
on top of the autograd engine. Each step of the computation is a
differentiable operation, so gradients reach the query, key, value and output
projections through the ordinary backward() pass.

Reference: "Attention Is All You Need" (Vaswani et al., 2017) Section 3.2
           https://arxiv.org/abs/1706.03762

Functions:
    create_causal_mask: Lower-triangular boolean mask
    attention_scores: Scaled dot products Q @ K^T / sqrt(d_k)
    causal_softmax: Masked row-wise softmax with a full backward rule

Classes:
    MultiHeadAttention: Multi-head causal self-attention layer
"""

from typing import List, Optional

import numpy as np

from slmnet import ops
from slmnet.errors import ShapeError
from slmnet.layers import Dense, Layer
from slmnet.tensor import Tensor, as_tensor


def create_causal_mask(
    sequence_length: int, key_length: Optional[int] = None
) -> np.ndarray:
    """
    Create a causal (autoregressive) attention mask.

    Position i may attend to positions 0..i and never to a later one.

    Args:
        sequence_length: Number of query positions (rows)
        key_length: Number of key positions (columns); defaults to sequence_length

    Returns:
        Boolean array of shape (sequence_length, key_length);
        True = may attend, False = masked

    Example for sequence_length=3:
        [[True,  False, False],
         [True,  True,  False],
         [True,  True,  True ]]
    """
    if key_length is None:
        key_length = sequence_length
    return np.tri(sequence_length, key_length, dtype=bool)


def attention_scores(query: Tensor, key: Tensor) -> Tensor:
    """
    Compute scaled attention scores for one head.

    Forward:
        scores = Q @ K^T / sqrt(d_k)

    Backward (scale = 1 / sqrt(d_k)):
        d_Q = upstream @ K * scale
        d_K = upstream^T @ Q * scale

    Why scaling by sqrt(d_k)?
        For large d_k the dot products grow in magnitude and push softmax into
        regions with vanishing gradients. Scaling keeps their variance constant.

    Args:
        query: Tensor of shape (seq_len_q, d_k)
        key: Tensor of shape (seq_len_k, d_k)

    Returns:
        Tensor of shape (seq_len_q, seq_len_k)
    """
    query, key = as_tensor(query), as_tensor(key)
    if query.ndim != 2 or key.ndim != 2 or query.shape[1] != key.shape[1]:
        raise ShapeError(
            "attention_scores expects 2D query and key with the same width, got "
            f"{list(query.shape)} and {list(key.shape)}"
        )
    # Scalar in the input dtype so float32 scores are not promoted to float64
    scale = query.dtype.type(1.0 / np.sqrt(query.shape[1]))

    def backward(upstream: np.ndarray) -> None:
        if query.requires_grad:
            query.grad += (upstream @ key.data) * scale
        if key.requires_grad:
            key.grad += (upstream.T @ query.data) * scale

    return Tensor._from_op((query.data @ key.data.T) * scale, (query, key), backward)


def causal_softmax(scores: Tensor) -> Tensor:
    """
    Apply the causal mask and a row-wise softmax.

    Every score whose column index is greater than its row index is replaced
    by -inf before normalizing, so the attention weight on any future position
    is exactly zero and each row still sums to one.

    Backward is the softmax Jacobian-vector product
        d_scores = s * (upstream - sum(upstream * s))
    which is zero at masked positions because s is zero there.
    """
    scores = as_tensor(scores)
    if scores.ndim != 2:
        raise ShapeError(
            f"causal_softmax expects a 2D tensor, got shape {list(scores.shape)}"
        )
    allowed = create_causal_mask(*scores.shape)
    masked = np.where(allowed, scores.data, -np.inf)
    weights = ops.softmax_rows(masked)

    def backward(upstream: np.ndarray) -> None:
        if scores.requires_grad:
            weighted_sum = np.sum(upstream * weights, axis=-1, keepdims=True)
            scores.grad += weights * (upstream - weighted_sum)

    return Tensor._from_op(weights, (scores,), backward)


class MultiHeadAttention(Layer):
    """
    Multi-Head Causal Self-Attention Layer.

    Architecture:
        1. Linear projections: Q, K, V = x @ W^Q, x @ W^K, x @ W^V
        2. Split into h heads: column blocks of width d_k = d_model / h
        3. Per head: softmax(mask(Q_h @ K_h^T / sqrt(d_k))) @ V_h
        4. Concatenate heads back into (seq_len, d_model)
        5. Output projection: @ W^O

    The split and the merge are differentiable column operations, so the
    gradient of each head is routed back to its own column offsets in Q, K
    and V.

    Attributes:
        embedding_dimension: Total dimension of the model (d_model)
        num_heads: Number of attention heads (h)
        head_dimension: Dimension of each head (d_k = d_model / h)
        last_attention_weights: Post-softmax weights of the last forward pass,
                                one (seq_len, seq_len) array per head

    Reference: "Attention Is All You Need" Section 3.2.2
    """

    def __init__(self, embedding_dimension: int, num_heads: int):
        """
        Raises:
            ShapeError: If embedding_dimension is not divisible by num_heads
        """
        if embedding_dimension % num_heads != 0:
            raise ShapeError(
                f"Embedding dimension ({embedding_dimension}) must be divisible by "
                f"number of heads ({num_heads})"
            )

        self.embedding_dimension = embedding_dimension
        self.num_heads = num_heads
        self.head_dimension = embedding_dimension // num_heads

        # W^Q, W^K, W^V and W^O in the paper, all without bias
        self.query_projection = Dense(
            embedding_dimension, embedding_dimension, use_bias=False
        )
        self.key_projection = Dense(
            embedding_dimension, embedding_dimension, use_bias=False
        )
        self.value_projection = Dense(
            embedding_dimension, embedding_dimension, use_bias=False
        )
        self.output_projection = Dense(
            embedding_dimension, embedding_dimension, use_bias=False
        )

        self.last_attention_weights: List[np.ndarray] = []

    def _split_heads(self, projected: Tensor) -> List[Tensor]:
        return [
            ops.slice_columns(
                projected, head * self.head_dimension, (head + 1) * self.head_dimension
            )
            for head in range(self.num_heads)
        ]

    def forward(self, inputs: Tensor) -> Tensor:
        """
        Args:
            inputs: Tensor of shape (sequence_length, embedding_dimension)

        Returns:
            Tensor of shape (sequence_length, embedding_dimension)
        """
        x = as_tensor(inputs)
        if x.ndim != 2 or x.shape[1] != self.embedding_dimension:
            raise ShapeError(
                f"MultiHeadAttention expects shape (sequence_length, "
                f"{self.embedding_dimension}), got {list(x.shape)}"
            )

        query_heads = self._split_heads(self.query_projection(x))
        key_heads = self._split_heads(self.key_projection(x))
        value_heads = self._split_heads(self.value_projection(x))

        head_outputs = []
        self.last_attention_weights = []
        for query, key, value in zip(query_heads, key_heads, value_heads):
            weights = causal_softmax(attention_scores(query, key))
            self.last_attention_weights.append(weights.data)
            head_outputs.append(ops.dot(weights, value))

        return self.output_projection(ops.concat_columns(head_outputs))
