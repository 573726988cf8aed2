"""Fully connected layer."""

from __future__ import annotations

from typing import Any, List, Mapping, Tuple

import numpy as np

from ..errors import DeserializationError, ShapeError
from ..types import FLEXIBLE_SIZE, Array, LayerKind
from .base import Document, ParameterizedLayer, clamp_norms, read_matrix, register_layer


@register_layer(LayerKind.LINEAR)
class Linear(ParameterizedLayer):
    """Dense layer computing ``bias + x @ W``.

    ``weights`` has ``inputs + 1`` rows and ``outputs`` columns; the last row is
    the bias. ``Linear(3)`` leaves the input width flexible until the layer is
    joined to a network.
    """

    kind = LayerKind.LINEAR

    def __init__(self, outputs: int = FLEXIBLE_SIZE, inputs: int = FLEXIBLE_SIZE) -> None:
        super().__init__()
        self.weights: Array = np.zeros((1, 0))
        self._mask: Array | None = None
        self.resize(inputs, outputs)

    @property
    def inputs(self) -> int:
        return int(self.weights.shape[0] - 1)

    @property
    def bias(self) -> Array:
        return self.weights[-1]

    def resize(self, inputs: int, outputs: int) -> None:
        if inputs < 0 or outputs < 0:
            raise ShapeError(f"Negative layer size {inputs}->{outputs}")
        if inputs == self.inputs and outputs == self.outputs:
            return
        self.weights = np.zeros((int(inputs) + 1, int(outputs)))
        self._mask = None
        self._allocate(outputs)

    def _parameters(self) -> List[Tuple[Array, bool]]:
        return [(self.weights[:-1], False), (self.weights[-1], True)]

    def _effective(self) -> Array:
        if self._mask is None:
            return self.weights[:-1]
        return self.weights[:-1] * self._mask

    def feed_forward(self, x: Array) -> Array:
        x = self._check_input(x)
        np.add(self.weights[-1], x @ self._effective(), out=self._activation)
        return self._activation

    def back_prop_error(self, upstream) -> None:
        self._check_upstream(upstream)
        np.dot(self._effective(), self._error, out=upstream.error)

    def update_deltas(self, upstream_activation: Array, deltas: Array) -> None:
        x = np.asarray(upstream_activation, dtype=np.float64).reshape(-1)
        n = self.inputs * self.outputs
        grad = np.outer(x, self._error)
        if self._mask is not None:
            grad *= self._mask
        deltas[:n] += grad.reshape(-1)
        deltas[n : n + self.outputs] += self._error

    def drop_connect(self, rand: np.random.Generator, probability: float) -> None:
        """Mask each connection with ``probability`` until called again with 0."""

        if probability <= 0.0:
            self._mask = None
            return
        self._mask = (rand.uniform(size=(self.inputs, self.outputs)) >= probability).astype(
            np.float64
        )

    def max_norm(self, low: float, high: float) -> None:
        clamp_norms(self.weights[:-1].T, low, high)

    def perturb_weights(
        self,
        rand: np.random.Generator,
        deviation: float,
        start: int = 0,
        count: int | None = None,
    ) -> None:
        stop = self.outputs if count is None else min(self.outputs, start + count)
        if stop <= start:
            return
        self.weights[:, start:stop] += rand.normal(
            0.0, deviation, size=(self.weights.shape[0], stop - start)
        )

    # ------------------------------------------------------------------
    # Node-level edits

    def set_weights_to_identity(self, start: int = 0, count: int | None = None) -> None:
        stop = self.outputs if count is None else min(self.outputs, start + count)
        for i in range(start, stop):
            self.weights[:, i] = 0.0
            if i < self.inputs:
                self.weights[i, i] = 1.0

    def renormalize_input(
        self, input: int, old_min: float, old_max: float, new_min: float, new_max: float
    ) -> None:
        """Adjust weights so outputs are unchanged after rescaling one input feature."""

        f = (old_max - old_min) / (new_max - new_min)
        g = old_min - new_min * f
        self.weights[-1] += self.weights[input] * g
        self.weights[input] *= f

    def transform_weights(self, transform: Array, offset: Array) -> None:
        """Fold ``x -> transform @ (x + offset)`` into the weights so raw ``x`` can be fed directly."""

        transform = np.asarray(transform, dtype=np.float64)
        if transform.shape[0] != self.inputs:
            raise ShapeError("Transformation matrix does not match the layer's inputs")
        if transform.shape[0] != transform.shape[1]:
            raise ShapeError("Expected a square transformation matrix")
        w = transform.T @ self.weights[:-1]
        self.weights[:-1] = w
        self.weights[-1] += np.asarray(offset, dtype=np.float64) @ w

    def swap_outputs(self, a: int, b: int) -> None:
        self.weights[:, [a, b]] = self.weights[:, [b, a]]

    def swap_inputs(self, a: int, b: int) -> None:
        self.weights[[a, b]] = self.weights[[b, a]]

    def invert_output(self, index: int) -> None:
        self.weights[:, index] *= -1.0

    def invert_input(self, index: int) -> None:
        self.weights[index] *= -1.0

    # ------------------------------------------------------------------

    def _document(self) -> Document:
        return {"weights": self.weights.tolist()}

    @classmethod
    def from_document(cls, doc: Mapping[str, Any], kind: LayerKind) -> "Linear":
        weights = read_matrix(doc, "weights")
        if weights.ndim != 2 or weights.shape[0] < 1:
            raise DeserializationError("linear weights must be a non-empty list of rows")
        layer = cls(weights.shape[1], weights.shape[0] - 1)
        layer.weights[...] = weights
        return layer


__all__ = ["Linear"]
