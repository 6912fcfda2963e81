"""
Transformer Architecture Components

This module implements the feed-forward network and the transformer block
(attention + FFN + residual connections) used by a decoder-only model.

The transformer block is the repeating unit that gets stacked to build the
model. Each block lets the model:
1. Attend to earlier context (via causal attention)
2. Process information position by position (via FFN)
3. Keep information flowing (via residual connections)

Reference: "Attention Is All You Need" (Vaswani et al., 2017) Section 3.1, 3.3
           "Language Models are Unsupervised Multitask Learners" (GPT-2 paper)

Classes:
    FeedForward: Position-wise feed-forward network
    TransformerBlock: Single pre-norm transformer decoder block
"""

from typing import Optional

from slmnet import ops
from slmnet.attention import MultiHeadAttention
from slmnet.layers import Dense, LayerNorm, Layer, ReLU
from slmnet.tensor import Tensor


class FeedForward(Layer):
    """
    Position-wise Feed-Forward Network.

        FFN(x) = Dense_2(ReLU(Dense_1(x)))

    The hidden dimension defaults to 4x the model dimension: the network
    expands the representation, applies the non-linearity and compresses it
    back.

    Reference: "Attention Is All You Need" Section 3.3
    """

    def __init__(
        self, embedding_dimension: int, hidden_dimension: Optional[int] = None
    ):
        self.embedding_dimension = embedding_dimension
        self.hidden_dimension = hidden_dimension or (4 * embedding_dimension)

        self.expand = Dense(embedding_dimension, self.hidden_dimension)
        self.activation = ReLU()
        self.compress = Dense(self.hidden_dimension, embedding_dimension)

    def forward(self, inputs: Tensor) -> Tensor:
        return self.compress(self.activation(self.expand(inputs)))


class TransformerBlock(Layer):
    """
    Single Transformer Decoder Block.

    Uses the Pre-LayerNorm arrangement (normalize before attention and FFN),
    which trains more stably than normalizing after the residual addition.

    Architecture (Pre-LN):
        x1 = x  + MultiHeadAttention(LayerNorm_1(x))
        x2 = x1 + FeedForward(LayerNorm_2(x1))

    The two LayerNorms are independent instances with their own parameters.
    """

    def __init__(self, embedding_dimension: int, num_heads: int):
        self.embedding_dimension = embedding_dimension
        self.num_heads = num_heads

        self.attention_norm = LayerNorm(embedding_dimension)
        self.attention = MultiHeadAttention(embedding_dimension, num_heads)
        self.feed_forward_norm = LayerNorm(embedding_dimension)
        self.feed_forward = FeedForward(embedding_dimension)

    def forward(self, inputs: Tensor) -> Tensor:
        """
        Args:
            inputs: Tensor of shape (sequence_length, embedding_dimension)

        Returns:
            Tensor of the same shape
        """
        attended = ops.add(inputs, self.attention(self.attention_norm(inputs)))
        return ops.add(
            attended, self.feed_forward(self.feed_forward_norm(attended))
        )
