"""Restricted Boltzmann machine layer."""

from __future__ import annotations

from typing import Any, List, Mapping, Tuple

import numpy as np

from ..activations import logistic
from ..errors import ShapeError
from ..types import FLEXIBLE_SIZE, Array, LayerKind
from .base import Document, ParameterizedLayer, clamp_norms, read_matrix, register_layer


def _bernoulli(rand: np.random.Generator, p: Array) -> Array:
    return (rand.uniform(size=p.shape) < p).astype(np.float64)


@register_layer(LayerKind.RBM)
class RestrictedBoltzmannMachine(ParameterizedLayer):
    """Bidirectional layer between a visible and a hidden vector.

    ``weights`` is ``outputs x inputs`` (one row per hidden unit). Going forward,
    ``activation = bias + weights @ v``. Going backward,
    ``activation_reverse = weights.T @ h + bias_reverse``. The layer can be
    trained by backprop like a dense layer, or directly with
    :meth:`contrastive_divergence`.
    """

    kind = LayerKind.RBM

    def __init__(self, outputs: int = FLEXIBLE_SIZE, inputs: int = FLEXIBLE_SIZE) -> None:
        super().__init__()
        self.weights: Array = np.zeros((0, 0))
        self.bias: Array = np.zeros(0)
        self.bias_reverse: Array = np.zeros(0)
        self.activation_reverse: Array = np.zeros(0)
        self.resize(inputs, outputs)

    @property
    def inputs(self) -> int:
        return int(self.bias_reverse.shape[0])

    def resize(self, inputs: int, outputs: int) -> None:
        if inputs < 0 or outputs < 0:
            raise ShapeError(f"Negative layer size {inputs}->{outputs}")
        if inputs == self.inputs and outputs == self.outputs:
            return
        self.weights = np.zeros((int(outputs), int(inputs)))
        self.bias = np.zeros(int(outputs))
        self.bias_reverse = np.zeros(int(inputs))
        self.activation_reverse = np.zeros(int(inputs))
        self._allocate(outputs)

    def _parameters(self) -> List[Tuple[Array, bool]]:
        return [(self.bias, True), (self.weights, False)]

    def reset_weights(self, rand: np.random.Generator) -> None:
        super().reset_weights(rand)
        magnitude = max(0.03, 1.0 / max(1, self.outputs))
        self.bias_reverse[...] = rand.normal(0.0, magnitude, size=self.inputs)

    # ------------------------------------------------------------------
    # Passes

    def feed_forward(self, x: Array) -> Array:
        x = self._check_input(x)
        np.add(self.bias, self.weights @ x, out=self._activation)
        return self._activation

    def feed_backward(self, hidden: Array) -> Array:
        hidden = np.asarray(hidden, dtype=np.float64).reshape(-1)
        if hidden.shape[0] != self.outputs:
            raise ShapeError(f"rbm layer expects {self.outputs} hidden values, got {hidden.shape[0]}")
        np.add(self.weights.T @ hidden, self.bias_reverse, out=self.activation_reverse)
        return self.activation_reverse

    def back_prop_error(self, upstream) -> None:
        self._check_upstream(upstream)
        np.dot(self.weights.T, self._error, out=upstream.error)

    def update_deltas(self, upstream_activation: Array, deltas: Array) -> None:
        x = np.asarray(upstream_activation, dtype=np.float64).reshape(-1)
        n_out = self.outputs
        deltas[:n_out] += self._error
        deltas[n_out:] += np.outer(self._error, x).reshape(-1)

    # ------------------------------------------------------------------
    # Sampling

    def resample_hidden(self, rand: np.random.Generator) -> Array:
        """Replace each hidden value ``p`` by a Bernoulli(p) draw."""

        p = np.clip(self._activation, 0.0, 1.0)
        self._activation[...] = (rand.uniform(size=self.outputs) < p).astype(np.float64)
        return self._activation

    def resample_visible(self, rand: np.random.Generator) -> Array:
        p = np.clip(self.activation_reverse, 0.0, 1.0)
        self.activation_reverse[...] = (rand.uniform(size=self.inputs) < p).astype(np.float64)
        return self.activation_reverse

    def draw_sample(self, rand: np.random.Generator, iterations: int) -> Array:
        """Run a Gibbs chain from random hidden bits; the sample ends in ``activation_reverse``."""

        hidden = rand.integers(0, 2, size=self.outputs).astype(np.float64)
        for _ in range(iterations):
            visible = _bernoulli(rand, self._visible_probabilities(hidden))
            hidden = _bernoulli(rand, self._hidden_probabilities(visible))
        self._activation[...] = hidden
        self.activation_reverse[...] = self._visible_probabilities(hidden)
        return self.activation_reverse

    def free_energy(self, visible: Array) -> float:
        visible = self._check_input(visible)
        hidden_net = self.bias + self.weights @ visible
        return float(-self.bias_reverse @ visible - np.sum(np.logaddexp(0.0, hidden_net)))

    def _hidden_probabilities(self, visible: Array) -> Array:
        return logistic(self.bias + self.weights @ visible)

    def _visible_probabilities(self, hidden: Array) -> Array:
        return logistic(self.weights.T @ hidden + self.bias_reverse)

    def contrastive_divergence(
        self,
        rand: np.random.Generator,
        visible_sample: Array,
        learning_rate: float,
        gibbs_samples: int = 1,
    ) -> None:
        """Take one CD-k step towards the distribution that produced ``visible_sample``."""

        v0 = self._check_input(visible_sample)
        h0 = self._hidden_probabilities(v0)
        hidden = _bernoulli(rand, h0)
        for _ in range(max(1, gibbs_samples) - 1):
            visible = _bernoulli(rand, self._visible_probabilities(hidden))
            hidden = _bernoulli(rand, self._hidden_probabilities(visible))
        v1 = self._visible_probabilities(hidden)
        h1 = self._hidden_probabilities(v1)
        self.weights += learning_rate * (np.outer(h0, v0) - np.outer(h1, v1))
        self.bias += learning_rate * (h0 - h1)
        self.bias_reverse += learning_rate * (v0 - v1)
        self._activation[...] = h1
        self.activation_reverse[...] = v1

    # ------------------------------------------------------------------

    def max_norm(self, low: float, high: float) -> None:
        clamp_norms(self.weights, low, high)

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
        self.weights[start:stop] += rand.normal(0.0, deviation, size=(stop - start, self.inputs))

    def copy_weights(self, source: "ParameterizedLayer") -> None:
        super().copy_weights(source)
        self.bias_reverse[...] = source.bias_reverse  # type: ignore[attr-defined]

    def _document(self) -> Document:
        return {
            "bias": self.bias.tolist(),
            "biasRev": self.bias_reverse.tolist(),
            "weights": self.weights.tolist(),
        }

    @classmethod
    def from_document(cls, doc: Mapping[str, Any], kind: LayerKind) -> "RestrictedBoltzmannMachine":
        bias = read_matrix(doc, "bias")
        bias_reverse = read_matrix(doc, "biasRev")
        weights = read_matrix(doc, "weights", (bias.shape[0], bias_reverse.shape[0]))
        layer = cls(bias.shape[0], bias_reverse.shape[0])
        layer.bias[...] = bias
        layer.bias_reverse[...] = bias_reverse
        layer.weights[...] = weights
        return layer


__all__ = ["RestrictedBoltzmannMachine"]
