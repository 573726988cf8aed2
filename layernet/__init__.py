"""layernet public API."""

from .core import activations, layers, types  # noqa: F401
from .core.errors import (
    DeserializationError,
    LayerNetError,
    NetStateError,
    NotSupportedError,
    ShapeError,
)
from .core.layers import (
    ActivationLayer,
    AdditionPooling,
    Convolutional1D,
    Convolutional2D,
    Linear,
    MaxOut,
    MaxPooling2D,
    ProductPooling,
    RestrictedBoltzmannMachine,
)
from .core.network import NeuralNet
from .training.pipelines import build_network, load_preset, presets, run_pipeline
from .training.trainer import SGDOptimizer, Trainer

__all__ = [
    "ActivationLayer",
    "AdditionPooling",
    "Convolutional1D",
    "Convolutional2D",
    "DeserializationError",
    "LayerNetError",
    "Linear",
    "MaxOut",
    "MaxPooling2D",
    "NetStateError",
    "NeuralNet",
    "NotSupportedError",
    "ProductPooling",
    "RestrictedBoltzmannMachine",
    "SGDOptimizer",
    "ShapeError",
    "Trainer",
    "activations",
    "build_network",
    "layers",
    "load_preset",
    "presets",
    "run_pipeline",
    "types",
]
