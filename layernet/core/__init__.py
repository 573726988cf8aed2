"""Core numerical primitives: layers, activations and the network."""

from . import activations, errors, layers, types
from .network import NeuralNet

__all__ = ["NeuralNet", "activations", "errors", "layers", "types"]
