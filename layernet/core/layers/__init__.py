"""Layer kinds and their shared contracts."""

from .activation import ACTIVATION_KINDS, ActivationLayer
from .base import (
    Layer,
    ParameterizedLayer,
    clamp_norms,
    deserialize_layer,
    layer_types,
    register_layer,
)
from .conv1d import Convolutional1D
from .conv2d import Convolutional2D, Image
from .linear import Linear
from .maxout import MaxOut
from .pooling import AdditionPooling, MaxPooling2D, ProductPooling
from .rbm import RestrictedBoltzmannMachine

__all__ = [
    "ACTIVATION_KINDS",
    "ActivationLayer",
    "AdditionPooling",
    "Convolutional1D",
    "Convolutional2D",
    "Image",
    "Layer",
    "Linear",
    "MaxOut",
    "MaxPooling2D",
    "ParameterizedLayer",
    "ProductPooling",
    "RestrictedBoltzmannMachine",
    "clamp_norms",
    "deserialize_layer",
    "layer_types",
    "register_layer",
]
