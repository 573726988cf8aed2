"""Exception hierarchy raised by layers and networks."""

from __future__ import annotations


class LayerNetError(Exception):
    """Base class for every error raised by layernet.

    Catching this catches all of the errors below.
    """


class ShapeError(LayerNetError, ValueError):
    """Raised when dimensions conflict with a layer's topology.

    Examples are an odd input count for a pooling layer, an activation layer
    asked for ``inputs != outputs``, or a feed-forward vector of the wrong length.
    """


class NotSupportedError(LayerNetError, NotImplementedError):
    """Raised when an operation is meaningful but not offered by a layer kind."""


class DeserializationError(LayerNetError, ValueError):
    """Raised when a serialized document lacks a field or has an unknown ``type``."""


class NetStateError(LayerNetError, RuntimeError):
    """Raised when a network is used before it has been made ready."""


__all__ = [
    "DeserializationError",
    "LayerNetError",
    "NetStateError",
    "NotSupportedError",
    "ShapeError",
]
