"""MaxOut layer."""

from __future__ import annotations

from typing import Any, List, Mapping, Tuple

import numpy as np

from ..errors import DeserializationError, ShapeError
from ..types import FLEXIBLE_SIZE, Array, LayerKind
from .base import Document, ParameterizedLayer, clamp_norms, read_matrix, register_layer

EXPLORATION_RATE = 0.1


@register_layer(LayerKind.MAXOUT)
class MaxOut(ParameterizedLayer):
    """Each output keeps the largest of ``(x[j] + bias[j]) * weights[j, i]`` over ``j``.

    ``winners[i]`` records which input won for output ``i``. When a generator is
    passed to :meth:`feed_forward`, each output is sent to a uniformly random
    input with probability ``EXPLORATION_RATE`` instead.
    """

    kind = LayerKind.MAXOUT
    stochastic = True

    def __init__(self, outputs: int = FLEXIBLE_SIZE, inputs: int = FLEXIBLE_SIZE) -> None:
        super().__init__()
        self.bias: Array = np.zeros(0)
        self.weights: Array = np.zeros((0, 0))
        self.winners: Array = np.zeros(0, dtype=np.int64)
        self._allocate(0)
        self.resize(inputs, outputs)

    @property
    def inputs(self) -> int:
        return int(self.bias.shape[0])

    def resize(self, inputs: int, outputs: int) -> None:
        if inputs < 0 or outputs < 0:
            raise ShapeError(f"Negative layer size {inputs}->{outputs}")
        if inputs == self.inputs and outputs == self.outputs:
            return
        self.bias = np.zeros(int(inputs))
        self.weights = np.zeros((int(inputs), int(outputs)))
        self.winners = np.zeros(int(outputs), dtype=np.int64)
        self._allocate(outputs)

    def _parameters(self) -> List[Tuple[Array, bool]]:
        return [(self.bias, True), (self.weights, False)]

    def feed_forward(self, x: Array, rand: np.random.Generator | None = None) -> Array:
        x = self._check_input(x)
        if self.inputs == 0:
            self._activation[...] = 0.0
            return self._activation
        candidates = (x + self.bias)[:, None] * self.weights
        winners = np.argmax(candidates, axis=0)
        if rand is not None:
            explore = rand.uniform(size=self.outputs) < EXPLORATION_RATE
            picks = rand.integers(0, self.inputs, size=self.outputs)
            winners = np.where(explore, picks, winners)
        self.winners[...] = winners
        self._activation[...] = candidates[winners, np.arange(self.outputs)]
        return self._activation

    def back_prop_error(self, upstream) -> None:
        self._check_upstream(upstream)
        up = upstream.error
        up[...] = 0.0
        cols = np.arange(self.outputs)
        np.add.at(up, self.winners, self.weights[self.winners, cols] * self._error)

    def update_deltas(self, upstream_activation: Array, deltas: Array) -> None:
        x = np.asarray(upstream_activation, dtype=np.float64).reshape(-1)
        n_in = self.inputs
        cols = np.arange(self.outputs)
        w = self.winners
        bias_delta = deltas[:n_in]
        weight_delta = deltas[n_in:].reshape(n_in, self.outputs)
        np.add.at(bias_delta, w, self._error * self.weights[w, cols])
        weight_delta[w, cols] += self._error * (x[w] + self.bias[w])

    def max_norm(self, low: float, high: float) -> None:
        clamp_norms(self.weights.T, low, high)

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
            0.0, deviation, size=(self.inputs, stop - start)
        )

    def _document(self) -> Document:
        return {"bias": self.bias.tolist(), "weights": self.weights.tolist()}

    @classmethod
    def from_document(cls, doc: Mapping[str, Any], kind: LayerKind) -> "MaxOut":
        bias = read_matrix(doc, "bias")
        weights = read_matrix(doc, "weights")
        if bias.ndim != 1 or weights.ndim != 2 or weights.shape[0] != bias.shape[0]:
            raise DeserializationError("maxout weights must have one row per bias value")
        layer = cls(weights.shape[1], bias.shape[0])
        layer.bias[...] = bias
        layer.weights[...] = weights
        return layer


__all__ = ["EXPLORATION_RATE", "MaxOut"]
