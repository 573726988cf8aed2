"""Element-wise nonlinearity layers."""

from __future__ import annotations

from typing import Any, Mapping

import numpy as np

from ..activations import ActivationFunction, get_activation
from ..errors import ShapeError
from ..types import FLEXIBLE_SIZE, Array, LayerKind
from .base import Document, Layer, register_layer, require_field

ACTIVATION_KINDS = tuple(kind for kind in LayerKind if kind.is_activation)


@register_layer(*ACTIVATION_KINDS)
class ActivationLayer(Layer):
    """Applies one activation function to each input independently.

    ``ActivationLayer("tanh")`` takes its size from the upstream layer when it is
    added to a network.
    """

    element_wise = True

    def __init__(self, kind: LayerKind | str, size: int = FLEXIBLE_SIZE) -> None:
        super().__init__()
        self.function: ActivationFunction = get_activation(kind)
        self.resize(size, size)

    @property
    def kind(self) -> LayerKind:  # type: ignore[override]
        return self.function.kind

    @property
    def inputs(self) -> int:
        return self.outputs

    def resize(self, inputs: int, outputs: int) -> None:
        if inputs != outputs:
            raise ShapeError(
                f"{self.kind.value} layer requires inputs == outputs, got {inputs}->{outputs}"
            )
        if outputs != self.outputs:
            self._allocate(outputs)

    def fit_inputs(self, inputs: int) -> None:
        self.resize(inputs, inputs)

    def feed_forward(self, x: Array) -> Array:
        x = self._check_input(x)
        self._activation[...] = self.function.fn(x)
        return self._activation

    def back_prop_error(self, upstream: Layer) -> None:
        self._check_upstream(upstream)
        slope = self.function.derivative(upstream.activation, self._activation)
        np.multiply(self._error, slope, out=upstream.error)

    def _document(self) -> Document:
        return {"size": self.outputs}

    @classmethod
    def from_document(cls, doc: Mapping[str, Any], kind: LayerKind) -> "ActivationLayer":
        return cls(kind, int(require_field(doc, "size")))

    def __repr__(self) -> str:
        return f"[{self.kind.value}:{self.outputs}]"


__all__ = ["ACTIVATION_KINDS", "ActivationLayer"]
