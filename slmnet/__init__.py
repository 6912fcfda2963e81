"""
slmnet: A Small Reverse-Mode Autograd Engine for Transformers

This package implements automatic differentiation from scratch on top of
NumPy, together with the layers, losses and optimizers needed to train a
small decoder-only transformer language model.

Modules:
    tensor: Tensor data container and the backward() graph traversal
    ops: Differentiable operations with hand-derived gradient rules
    layers: Dense, Embedding, LayerNorm, activations, Sequential
    attention: Multi-head causal self-attention
    transformer: Feed-forward network and transformer block
    losses: Fused softmax + cross-entropy loss
    optimizer: SGD and Adam optimizers, gradient clipping
    tokenizer: Character-level tokenizer
    model: Model configuration and assembly
    utils: Checkpointing and numerical gradient checks

Reference:
    "Attention Is All You Need" (Vaswani et al., 2017)
    https://arxiv.org/abs/1706.03762
"""

import logging as _logging

from slmnet.errors import GraphError, ShapeError, SlmnetError
from slmnet.tensor import (
    Tensor,
    as_tensor,
    default_dtype,
    get_default_dtype,
    set_default_dtype,
)
from slmnet import ops
from slmnet.layers import (
    Dense,
    Embedding,
    Layer,
    LayerNorm,
    PositionalEncoding,
    ReLU,
    Sequential,
    Sigmoid,
)
from slmnet.attention import MultiHeadAttention
from slmnet.transformer import FeedForward, TransformerBlock
from slmnet.losses import cross_entropy_loss
from slmnet.optimizer import SGD, Adam, Optimizer, clip_gradient_norm
from slmnet.tokenizer import CharacterTokenizer
from slmnet.model import ModelConfig, build_language_model, count_parameters

__version__ = "1.0.0"

# Silent unless the application configures logging
_logging.getLogger(__name__).addHandler(_logging.NullHandler())
