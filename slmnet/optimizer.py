"""
Optimizers for Training Neural Networks

Optimizers hold a list of parameter tensors and update their data in place
from the gradients accumulated by backward().

Training loop contract:
    logits = model(inputs)
    loss = cross_entropy_loss(logits, targets)
    optimizer.zero_grad()      # gradients accumulate otherwise
    loss.backward()
    optimizer.step()

Reference:
    - "Adam: A Method for Stochastic Optimization" (Kingma & Ba, 2014)

Classes:
    Optimizer: Base class holding parameters and the learning rate
    SGD: Plain stochastic gradient descent
    Adam: Adaptive moment estimation with bias correction

Functions:
    clip_gradient_norm: Rescale gradients in place to a maximum global norm
"""

import logging
from typing import List, Sequence

import numpy as np

from slmnet.tensor import Tensor

logger = logging.getLogger(__name__)


class Optimizer:
    """
    Base class for optimizers.

    Attributes:
        parameters: Tensors updated by step(), not owned by the optimizer
        learning_rate: Step size for updates
    """

    def __init__(self, parameters: Sequence[Tensor], learning_rate: float):
        """
        Raises:
            ValueError: If parameters or learning_rate is missing
        """
        if parameters is None or learning_rate is None:
            raise ValueError("Both 'parameters' and 'learning_rate' must be provided")
        self.parameters: List[Tensor] = list(parameters)
        self.learning_rate = learning_rate

    def step(self) -> None:
        raise NotImplementedError(f"{type(self).__name__} must implement step()")

    def zero_grad(self) -> None:
        """Reset the gradient of every managed parameter to zero."""
        for parameter in self.parameters:
            if parameter.grad is not None:
                parameter.grad.fill(0.0)


class SGD(Optimizer):
    """
    Stochastic Gradient Descent.

    Update rule:
        theta = theta - lr * g
    """

    def __init__(self, parameters: Sequence[Tensor], learning_rate: float = 0.01):
        super().__init__(parameters, learning_rate)

    def step(self) -> None:
        for parameter in self.parameters:
            if parameter.grad is not None:
                parameter.data -= self.learning_rate * parameter.grad


class Adam(Optimizer):
    """
    Adam Optimizer (Adaptive Moment Estimation).

    Algorithm (at each step t):
        m_t = beta1 * m_{t-1} + (1 - beta1) * g_t          # Momentum
        v_t = beta2 * v_{t-1} + (1 - beta2) * g_t^2       # Velocity (squared gradient)
        m_hat = m_t / (1 - beta1^t)                        # Bias correction
        v_hat = v_t / (1 - beta2^t)                        # Bias correction
        theta_t = theta_{t-1} - lr * m_hat / (sqrt(v_hat) + eps)

    Bias correction:
        m and v start at zero, so early estimates are biased towards zero.
        Dividing by (1 - beta^t) removes that bias; at t=1 the corrected
        estimates are exactly g and g^2.

    Attributes:
        beta1: Exponential decay rate for first moment (momentum)
        beta2: Exponential decay rate for second moment (velocity)
        epsilon: Small constant for numerical stability
        momentum: First moment buffer for each parameter, same order
        velocity: Second moment buffer for each parameter, same order
        step_count: Number of optimization steps taken
    """

    def __init__(
        self,
        parameters: Sequence[Tensor],
        learning_rate: float = 0.001,
        beta1: float = 0.9,
        beta2: float = 0.999,
        epsilon: float = 1e-8,
    ):
        super().__init__(parameters, learning_rate)
        self.beta1 = beta1
        self.beta2 = beta2
        self.epsilon = epsilon
        self.step_count: int = 0

        self.momentum: List[np.ndarray] = [
            np.zeros_like(parameter.data) for parameter in self.parameters
        ]
        self.velocity: List[np.ndarray] = [
            np.zeros_like(parameter.data) for parameter in self.parameters
        ]

    def step(self) -> None:
        self.step_count += 1

        # Bias correction factors
        bias_correction_1 = 1.0 - (self.beta1**self.step_count)
        bias_correction_2 = 1.0 - (self.beta2**self.step_count)

        for parameter, momentum, velocity in zip(
            self.parameters, self.momentum, self.velocity
        ):
            if parameter.grad is None:
                continue
            gradient = parameter.grad

            momentum *= self.beta1
            momentum += (1.0 - self.beta1) * gradient

            velocity *= self.beta2
            velocity += (1.0 - self.beta2) * np.square(gradient)

            momentum_corrected = momentum / bias_correction_1
            velocity_corrected = velocity / bias_correction_2

            parameter.data -= (
                self.learning_rate
                * momentum_corrected
                / (np.sqrt(velocity_corrected) + self.epsilon)
            )

        logger.debug(
            "Adam step %d over %d parameters", self.step_count, len(self.parameters)
        )

    def get_state(self) -> dict:
        """Get optimizer state for checkpointing."""
        return {
            "momentum": [buffer.copy() for buffer in self.momentum],
            "velocity": [buffer.copy() for buffer in self.velocity],
            "step_count": self.step_count,
        }

    def load_state(self, state: dict) -> None:
        """Load optimizer state from checkpoint."""
        if len(state["momentum"]) != len(self.parameters):
            raise ValueError(
                f"State holds {len(state['momentum'])} buffers, optimizer manages "
                f"{len(self.parameters)} parameters"
            )
        self.momentum = [np.array(buffer, copy=True) for buffer in state["momentum"]]
        self.velocity = [np.array(buffer, copy=True) for buffer in state["velocity"]]
        self.step_count = int(state["step_count"])


def clip_gradient_norm(
    parameters: Sequence[Tensor], max_norm: float
) -> float:
    """
    Clip gradients by global norm, in place.

    If the total norm of all gradients exceeds max_norm, scale them down
    proportionally so the total norm equals max_norm.

    Algorithm:
        total_norm = sqrt(sum(norm(g)^2 for g in gradients))
        if total_norm > max_norm:
            g *= max_norm / total_norm   for every gradient

    Args:
        parameters: Tensors whose gradients are clipped
        max_norm: Maximum allowed gradient norm

    Returns:
        The total norm before clipping, 0.0 if no parameter has a gradient
    """
    gradients = [p.grad for p in parameters if p.grad is not None]
    if not gradients:
        return 0.0

    total_norm = float(np.sqrt(sum(np.sum(np.square(g)) for g in gradients)))

    if total_norm > max_norm:
        clip_coefficient = max_norm / total_norm
        for gradient in gradients:
            gradient *= clip_coefficient
        logger.debug("Clipped gradient norm %.4f to %.4f", total_norm, max_norm)

    return total_norm
