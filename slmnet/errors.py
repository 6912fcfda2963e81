"""
Exception types raised by slmnet.

Every error is raised synchronously at the call that violates a contract.
The classes subclass the matching built-in exception so callers that already
catch ValueError or RuntimeError keep working.
"""


class SlmnetError(Exception):
    """Base class for all slmnet errors."""


class ShapeError(SlmnetError, ValueError):
    """Incompatible, ragged or otherwise invalid tensor shapes."""


class GraphError(SlmnetError, RuntimeError):
    """Misuse of the computation graph, e.g. backward() on a non-scalar."""
