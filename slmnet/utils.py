"""
Utility Functions for Training and Testing

This module provides:
- Model checkpointing (save/load) in NumPy's .npz format
- Finite-difference gradients for checking backward rules

Functions:
    save_checkpoint: Save parameters, config and vocabulary
    load_checkpoint: Restore parameters in place and return saved metadata
    numerical_gradient: Central-difference gradient of a scalar function
"""

import json
import logging
from dataclasses import asdict, is_dataclass
from typing import Any, Callable, Dict, Optional, Sequence

import numpy as np

from slmnet.errors import ShapeError
from slmnet.layers import Layer
from slmnet.tensor import Tensor

logger = logging.getLogger(__name__)


def save_checkpoint(
    model: Layer,
    filepath: str,
    step: int = 0,
    config: Optional[Any] = None,
    vocabulary: Optional[Sequence[str]] = None,
) -> None:
    """
    Save a model checkpoint.

    Parameters are stored in model.parameters() order under the keys
    param_0000, param_0001, ... Each array keeps its shape, so loading can
    check that the checkpoint matches the model it is restored into.

    Args:
        model: Layer whose parameters are saved
        filepath: Path to save checkpoint (should end in .npz)
        step: Current training step
        config: Optional config dataclass or dict, stored as JSON
        vocabulary: Optional tokenizer vocabulary
    """
    save_dict = {}

    for index, parameter in enumerate(model.parameters()):
        save_dict[f"param_{index:04d}"] = parameter.data

    save_dict["step"] = np.array([step])

    if config is not None:
        config_dict = asdict(config) if is_dataclass(config) else dict(config)
        save_dict["config"] = np.array(json.dumps(config_dict))

    if vocabulary is not None:
        save_dict["vocabulary"] = np.array(json.dumps(list(vocabulary)))

    np.savez(filepath, **save_dict)
    logger.info("Saved checkpoint to %s", filepath)


def load_checkpoint(model: Layer, filepath: str) -> Dict[str, Any]:
    """
    Load a model checkpoint.

    Parameter values are copied into the existing tensors, so optimizers and
    views that reference them stay valid.

    Args:
        model: Layer to load parameters into
        filepath: Path to checkpoint file

    Returns:
        Dict with keys "step", "config" (dict or None) and "vocabulary"
        (list or None)

    Raises:
        ShapeError: If the number of parameters or any parameter shape differs
    """
    parameters = model.parameters()

    with np.load(filepath) as data:
        saved_keys = sorted(
            (key for key in data.files if key.startswith("param_")),
            key=lambda key: int(key.split("_")[1]),
        )
        if len(saved_keys) != len(parameters):
            raise ShapeError(
                f"Checkpoint holds {len(saved_keys)} parameters, model has "
                f"{len(parameters)}"
            )

        saved_arrays = [data[key] for key in saved_keys]
        for key, parameter, saved in zip(saved_keys, parameters, saved_arrays):
            if saved.shape != parameter.shape:
                raise ShapeError(
                    f"{key}: checkpoint shape {list(saved.shape)} does not match "
                    f"model shape {list(parameter.shape)}"
                )
        for parameter, saved in zip(parameters, saved_arrays):
            parameter.data[...] = saved

        step = int(data["step"][0]) if "step" in data.files else 0
        config = json.loads(str(data["config"])) if "config" in data.files else None
        vocabulary = (
            json.loads(str(data["vocabulary"])) if "vocabulary" in data.files else None
        )

    logger.info("Loaded checkpoint from %s (step %d)", filepath, step)
    return {"step": step, "config": config, "vocabulary": vocabulary}


def numerical_gradient(
    function: Callable[[], Tensor], tensor: Tensor, epsilon: float = 1e-6
) -> np.ndarray:
    """
    Estimate d function() / d tensor with central differences.

    Each element of tensor.data is nudged by +/- epsilon in place, the scalar
    function is re-evaluated, and the element is restored.

        grad[i] = (f(x + eps * e_i) - f(x - eps * e_i)) / (2 * eps)

    Use float64 tensors (see slmnet.tensor.default_dtype); in float32 the
    rounding error of f swamps the difference for small epsilon.

    Args:
        function: Zero-argument callable returning a single-element Tensor
        tensor: Tensor whose elements are perturbed
        epsilon: Perturbation size

    Returns:
        Array with the shape of tensor
    """
    flat = tensor.data.reshape(-1)
    gradient = np.zeros(flat.size, dtype=np.float64)

    for index in range(flat.size):
        original = flat[index]

        flat[index] = original + epsilon
        loss_plus = function().item()

        flat[index] = original - epsilon
        loss_minus = function().item()

        flat[index] = original
        gradient[index] = (loss_plus - loss_minus) / (2 * epsilon)

    return gradient.reshape(tensor.shape)
