"""
Decoder-Only Language Model Assembly

Builds a small GPT-style character model out of the layers in this package.

Architecture:
    Token ids (seq_len,)
           |
    [Embedding] -> (seq_len, embedding_dim)
           |
    [PositionalEncoding]
           |
    [TransformerBlock] x num_layers
           |
    [LayerNorm]
           |
    [Dense] -> (seq_len, vocab_size) logits

The logits feed straight into cross_entropy_loss for training.

Classes:
    ModelConfig: Configuration dataclass for model hyperparameters

Functions:
    build_language_model: Assemble the model as a Sequential
    count_parameters: Total number of trainable scalars in a layer
"""

from dataclasses import dataclass

from slmnet.errors import ShapeError
from slmnet.layers import (
    Dense,
    Embedding,
    Layer,
    LayerNorm,
    PositionalEncoding,
    Sequential,
)
from slmnet.transformer import TransformerBlock


@dataclass
class ModelConfig:
    """
    Configuration for the language model.

    Attributes:
        vocab_size: Size of the token vocabulary
        embedding_dim: Dimension of token embeddings (d_model in papers)
        num_heads: Number of attention heads
        num_layers: Number of transformer blocks
        max_sequence_length: Longest sequence the positional encoding covers
    """

    vocab_size: int
    embedding_dim: int = 32
    num_heads: int = 4
    num_layers: int = 2
    max_sequence_length: int = 64

    def __post_init__(self):
        for name in (
            "vocab_size",
            "embedding_dim",
            "num_heads",
            "num_layers",
            "max_sequence_length",
        ):
            if getattr(self, name) <= 0:
                raise ValueError(f"{name} must be positive, got {getattr(self, name)}")
        if self.embedding_dim % self.num_heads != 0:
            raise ShapeError(
                f"embedding_dim ({self.embedding_dim}) must be divisible by "
                f"num_heads ({self.num_heads})"
            )


def build_language_model(config: ModelConfig) -> Sequential:
    """
    Assemble a decoder-only transformer language model.

    Args:
        config: ModelConfig with model hyperparameters

    Returns:
        Sequential mapping a (seq_len,) token id tensor to
        (seq_len, vocab_size) logits
    """
    layers = [
        Embedding(config.vocab_size, config.embedding_dim),
        PositionalEncoding(config.max_sequence_length, config.embedding_dim),
    ]
    layers.extend(
        TransformerBlock(config.embedding_dim, config.num_heads)
        for _ in range(config.num_layers)
    )
    layers.append(LayerNorm(config.embedding_dim))
    layers.append(Dense(config.embedding_dim, config.vocab_size))
    return Sequential(layers)


def count_parameters(layer: Layer) -> int:
    """Count total number of trainable scalars."""
    return sum(parameter.size for parameter in layer.parameters())
