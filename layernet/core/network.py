"""Ordered stack of layers trained by backpropagation."""

from __future__ import annotations

import copy
import logging
from typing import Any, Iterator, List, Mapping, Sequence

import numpy as np
from scipy.optimize import linear_sum_assignment
from scipy.spatial.distance import cdist

from .errors import DeserializationError, NetStateError, NotSupportedError, ShapeError
from .layers import ActivationLayer, Layer, Linear, ParameterizedLayer, deserialize_layer
from .types import FLEXIBLE_SIZE, Array, NetState

logger = logging.getLogger(__name__)


class NeuralNet:
    """A feed-forward network that owns its layers.

    Layers are composed with :meth:`add_layer`, which infers missing widths
    ("last write wins": the layer being added keeps its declared shape and its
    neighbours are resized to fit). :meth:`begin_incremental_learning` fixes the
    external shapes, initialises the weights and makes the network ready.

    Randomness is drawn from ``rand`` only.
    """

    def __init__(
        self,
        rand: np.random.Generator | None = None,
        *,
        seed: int = 0,
        learning_rate: float = 0.1,
    ) -> None:
        self.rand = rand if rand is not None else np.random.default_rng(seed)
        self.learning_rate = float(learning_rate)
        self._layers: List[Layer] = []
        self._gradient: Array | None = None
        self.state = NetState.UNCONFIGURED

    # ------------------------------------------------------------------
    # Structure

    @property
    def layers(self) -> Sequence[Layer]:
        return tuple(self._layers)

    @property
    def layer_count(self) -> int:
        return len(self._layers)

    def layer(self, index: int) -> Layer:
        return self._layers[index]

    @property
    def output_layer(self) -> Layer:
        if not self._layers:
            raise NetStateError("The network has no layers")
        return self._layers[-1]

    def __len__(self) -> int:
        return len(self._layers)

    def __iter__(self) -> Iterator[Layer]:
        return iter(self._layers)

    def add_layer(self, layer: Layer, position: int | None = None) -> Layer:
        """Insert ``layer`` (at the end by default) and reconcile neighbour shapes.

        If the shapes cannot be reconciled the error propagates and the network,
        including the rejected layer, is left exactly as it was.
        """

        if position is None:
            position = len(self._layers)
        if not 0 <= position <= len(self._layers):
            raise IndexError(f"Layer position {position} out of range")
        saved = [(item, copy.deepcopy(item.__dict__)) for item in [*self._layers, layer]]
        self._layers.insert(position, layer)
        try:
            self._reconcile(position)
        except (ShapeError, NotSupportedError):
            del self._layers[position]
            for item, state in saved:
                item.__dict__ = state
            raise
        self._changed()
        logger.debug("Added %r at position %d", layer, position)
        return layer

    def _reconcile(self, position: int) -> None:
        layer = self._layers[position]
        if position > 0:
            upstream = self._layers[position - 1]
            if upstream.outputs != layer.inputs:
                if layer.inputs == FLEXIBLE_SIZE:
                    layer.resize_inputs(upstream)
                else:
                    self._set_outputs(position - 1, layer.inputs)
        if position + 1 < len(self._layers):
            downstream = self._layers[position + 1]
            if layer.outputs != downstream.inputs:
                if layer.outputs == FLEXIBLE_SIZE and not layer.element_wise:
                    layer.resize(layer.inputs, downstream.inputs)
                else:
                    self._propagate_from(position + 1)

    def add_layers(self, *layers: Layer) -> None:
        for layer in layers:
            self.add_layer(layer)

    def release_layer(self, index: int) -> Layer:
        """Remove and return the layer at ``index``; the caller now owns it."""

        layer = self._layers.pop(index)
        self._changed()
        return layer

    def clear(self) -> None:
        self._layers.clear()
        self._changed()

    def _changed(self) -> None:
        self._gradient = None
        self.state = NetState.ASSEMBLING if self._layers else NetState.UNCONFIGURED

    def _set_outputs(self, index: int, size: int) -> None:
        layer = self._layers[index]
        if layer.element_wise:
            layer.resize(size, size)
            if index > 0 and self._layers[index - 1].outputs != size:
                self._set_outputs(index - 1, size)
        else:
            layer.resize(layer.inputs, size)

    def _propagate_from(self, index: int) -> None:
        for i in range(max(1, index), len(self._layers)):
            upstream, layer = self._layers[i - 1], self._layers[i]
            if layer.inputs == upstream.outputs:
                break
            layer.resize_inputs(upstream)

    def _check_assembled(self) -> None:
        for i, (upstream, layer) in enumerate(zip(self._layers, self._layers[1:])):
            if upstream.outputs != layer.inputs:
                raise ShapeError(
                    f"Layer {i} outputs {upstream.outputs} values but layer {i + 1} "
                    f"expects {layer.inputs}"
                )
        for i, layer in enumerate(self._layers):
            if layer.inputs == FLEXIBLE_SIZE or layer.outputs == FLEXIBLE_SIZE:
                raise ShapeError(f"Layer {i} ({layer!r}) still has a flexible size")

    @property
    def inputs(self) -> int:
        return self._layers[0].inputs if self._layers else 0

    @property
    def outputs(self) -> int:
        return self._layers[-1].outputs if self._layers else 0

    def count_weights(self) -> int:
        return sum(layer.count_weights() for layer in self._layers)

    def _weighted(self) -> List[ParameterizedLayer]:
        return [layer for layer in self._layers if isinstance(layer, ParameterizedLayer)]

    # ------------------------------------------------------------------
    # Training entry points

    def begin_incremental_learning(self, feature_dims: int, label_dims: int) -> None:
        """Fix the external widths, initialise weights and become ``READY``."""

        if not self._layers:
            raise NetStateError("Add at least one layer before training")
        first = self._layers[0]
        if first.inputs != feature_dims:
            first.fit_inputs(feature_dims)
        self._propagate_all()
        if self.output_layer.outputs != label_dims:
            self._set_outputs(len(self._layers) - 1, label_dims)
            self._propagate_all()
        self._check_assembled()
        self.reset_weights()
        self._gradient = None
        self.state = NetState.READY
        logger.info(
            "Network ready: %d layers, %d->%d, %d weights",
            len(self._layers),
            self.inputs,
            self.outputs,
            self.count_weights(),
        )

    def _propagate_all(self) -> None:
        for i in range(1, len(self._layers)):
            upstream, layer = self._layers[i - 1], self._layers[i]
            if layer.inputs != upstream.outputs:
                layer.resize_inputs(upstream)

    def train_incremental(self, x: Array, y: Array) -> None:
        """Take one stochastic gradient step on a single ``(x, y)`` pair."""

        prediction = self.forward_prop(x, stochastic=True)
        blame = np.asarray(y, dtype=np.float64).reshape(-1) - prediction
        self.backpropagate(blame)
        if self._gradient is None or self._gradient.shape[0] != self.count_weights():
            self._gradient = np.zeros(self.count_weights())
        self._gradient[...] = 0.0
        self.update_gradient(x, self._gradient)
        self.step(self.learning_rate, self._gradient)

    def _require_ready(self) -> None:
        if self.state not in (NetState.READY, NetState.TRAINED):
            raise NetStateError(
                f"Network is {self.state.value}; call begin_incremental_learning first"
            )

    # ------------------------------------------------------------------
    # Passes

    def forward_prop(self, x: Array, stochastic: bool = False) -> Array:
        """Feed ``x`` through every layer; returns the output layer's activation buffer.

        With ``stochastic=True``, stochastic layers draw from :attr:`rand`.
        """

        self._require_ready()
        signal = np.asarray(x, dtype=np.float64).reshape(-1)
        for layer in self._layers:
            if stochastic and layer.stochastic:
                signal = layer.feed_forward(signal, rand=self.rand)  # type: ignore[call-arg]
            else:
                signal = layer.feed_forward(signal)
        return signal

    def predict(self, x: Array) -> Array:
        return self.forward_prop(x).copy()

    def copy_prediction(self, out: Array) -> Array:
        """Copy the output layer's current activation into ``out``."""

        out[...] = self.output_layer.activation
        return out

    def feed_through(self, matrix: Array) -> Array:
        rows = np.atleast_2d(np.asarray(matrix, dtype=np.float64))
        out = np.empty((rows.shape[0], self.outputs))
        for i, row in enumerate(rows):
            out[i] = self.forward_prop(row)
        return out

    def sum_squared_error(self, features: Array, labels: Array) -> float:
        predictions = self.feed_through(features)
        labels = np.asarray(labels, dtype=np.float64).reshape(predictions.shape)
        return float(np.sum((labels - predictions) ** 2))

    def backpropagate(self, blame: Array) -> None:
        """Set the output layer's error to ``blame`` and walk it back to layer 0."""

        output = self.output_layer
        blame = np.asarray(blame, dtype=np.float64).reshape(-1)
        if blame.shape[0] != output.outputs:
            raise ShapeError(f"Blame has {blame.shape[0]} values, network outputs {output.outputs}")
        output.error[...] = blame
        self.backpropagate_from_layer(len(self._layers) - 1)

    def backpropagate_from_layer(self, index: int) -> None:
        """Propagate the error already stored in layer ``index`` upstream."""

        for i in range(index, 0, -1):
            self._layers[i].back_prop_error(self._layers[i - 1])

    def update_gradient(self, x: Array, gradient: Array) -> None:
        """Accumulate every layer's deltas into slices of ``gradient``."""

        if gradient.shape[0] != self.count_weights():
            raise ShapeError(
                f"Gradient has {gradient.shape[0]} values, network has {self.count_weights()}"
            )
        upstream = np.asarray(x, dtype=np.float64).reshape(-1)
        offset = 0
        for layer in self._layers:
            if isinstance(layer, ParameterizedLayer):
                n = layer.count_weights()
                layer.update_deltas(upstream, gradient[offset : offset + n])
                offset += n
            upstream = layer.activation

    def step(self, learning_rate: float, gradient: Array) -> None:
        """Add ``learning_rate * gradient`` to the weights."""

        if gradient.shape[0] != self.count_weights():
            raise ShapeError(
                f"Gradient has {gradient.shape[0]} values, network has {self.count_weights()}"
            )
        offset = 0
        for layer in self._weighted():
            n = layer.count_weights()
            layer.apply_deltas(learning_rate, gradient[offset : offset + n])
            offset += n
        self.state = NetState.TRAINED

    # ------------------------------------------------------------------
    # Whole-network weight operations

    def weights(self) -> Array:
        vectors = [layer.weights_to_vector() for layer in self._weighted()]
        return np.concatenate(vectors) if vectors else np.zeros(0)

    def set_weights(self, vector: Array) -> None:
        vector = np.asarray(vector, dtype=np.float64).reshape(-1)
        if vector.shape[0] != self.count_weights():
            raise ShapeError(
                f"Weight vector has {vector.shape[0]} values, network has {self.count_weights()}"
            )
        offset = 0
        for layer in self._weighted():
            offset += layer.vector_to_weights(vector[offset:])

    def copy_weights(self, other: "NeuralNet") -> None:
        """Copy weight values from a network with identical topology."""

        mine, theirs = self._weighted(), other._weighted()
        if len(mine) != len(theirs) or len(self._layers) != len(other._layers):
            raise ShapeError("Networks have different topologies")
        for dst, src in zip(mine, theirs):
            dst.copy_weights(src)

    def copy_structure(self, other: "NeuralNet") -> None:
        """Replace this network's layers and settings with deep copies of ``other``'s."""

        self._layers = [copy.deepcopy(layer) for layer in other._layers]
        self.learning_rate = other.learning_rate
        self._gradient = None
        self.state = other.state

    def reset_weights(self) -> None:
        for layer in self._weighted():
            layer.reset_weights(self.rand)

    def perturb_all_weights(self, deviation: float) -> None:
        for layer in self._weighted():
            layer.perturb_weights(self.rand, deviation)

    def max_norm(self, low: float, high: float, output_layer: bool = False) -> None:
        """Clamp per-unit weight norms, skipping the last weighted layer unless asked."""

        weighted = self._weighted()
        if not output_layer:
            weighted = weighted[:-1]
        for layer in weighted:
            layer.max_norm(low, high)

    def _layer_range(self, start_layer: int, layer_count: int | None) -> List[Layer]:
        stop = len(self._layers) if layer_count is None else start_layer + layer_count
        return self._layers[start_layer:stop]

    def scale_weights(
        self,
        factor: float,
        scale_biases: bool = True,
        start_layer: int = 0,
        layer_count: int | None = None,
    ) -> None:
        for layer in self._layer_range(start_layer, layer_count):
            if isinstance(layer, ParameterizedLayer):
                layer.scale_weights(factor, scale_biases)

    def diminish_weights(
        self,
        amount: float,
        regularize_biases: bool = True,
        start_layer: int = 0,
        layer_count: int | None = None,
    ) -> None:
        for layer in self._layer_range(start_layer, layer_count):
            if isinstance(layer, ParameterizedLayer):
                layer.diminish_weights(amount, regularize_biases)

    # ------------------------------------------------------------------
    # Unit alignment

    def _unit_pair(self, index: int) -> tuple[Linear, List[ActivationLayer], Linear]:
        """Return a hidden Linear layer, the activations after it, and the next Linear."""

        layer = self._layers[index]
        if not isinstance(layer, Linear):
            raise NotSupportedError(f"Layer {index} is {layer.kind.value}, not linear")
        between: List[ActivationLayer] = []
        for follower in self._layers[index + 1 :]:
            if isinstance(follower, ActivationLayer):
                between.append(follower)
                continue
            if isinstance(follower, Linear):
                return layer, between, follower
            break
        raise NotSupportedError(f"Layer {index} is not a hidden linear layer")

    def swap_nodes(self, layer: int, a: int, b: int) -> None:
        """Exchange hidden units ``a`` and ``b`` without changing the network's function."""

        first, _, second = self._unit_pair(layer)
        first.swap_outputs(a, b)
        second.swap_inputs(a, b)

    def invert_node(self, layer: int, node: int) -> None:
        """Negate a hidden unit; only valid when the activations after it are odd."""

        first, between, second = self._unit_pair(layer)
        for act in between:
            if not act.function.odd:
                raise NotSupportedError(f"Cannot invert a unit followed by {act.kind.value}")
        first.invert_output(node)
        second.invert_input(node)

    def align(self, other: "NeuralNet") -> None:
        """Reorder hidden units so each one lines up with its closest match in ``other``."""

        if len(self._layers) != len(other._layers):
            raise ShapeError("Networks have different layer counts")
        for index, (mine, theirs) in enumerate(zip(self._layers, other._layers)):
            if (mine.kind, mine.inputs, mine.outputs) != (theirs.kind, theirs.inputs, theirs.outputs):
                raise ShapeError(f"Layer {index} differs between the networks")
        for index, layer in enumerate(self._layers):
            if not isinstance(layer, Linear):
                continue
            try:
                self._unit_pair(index)
            except NotSupportedError:
                continue
            theirs = other._layers[index]
            cost = cdist(theirs.weights.T, layer.weights.T)  # type: ignore[attr-defined]
            rows, match = linear_sum_assignment(cost)
            current = list(range(layer.outputs))
            for target, wanted in enumerate(match):
                here = current.index(int(wanted))
                if here != target:
                    self.swap_nodes(index, target, here)
                    current[target], current[here] = current[here], current[target]
            logger.debug("Aligned layer %d, total distance %.6f", index, cost[rows, match].sum())

    # ------------------------------------------------------------------
    # Serialization

    def serialize(self) -> dict:
        return {
            "type": "neuralnet",
            "learningRate": self.learning_rate,
            "layers": [layer.serialize() for layer in self._layers],
        }

    @classmethod
    def deserialize(
        cls, doc: Mapping[str, Any], rand: np.random.Generator | None = None
    ) -> "NeuralNet":
        if not isinstance(doc, Mapping):
            raise DeserializationError(f"Expected a mapping, got {type(doc).__name__}")
        if "layers" not in doc:
            raise DeserializationError("Network document is missing field 'layers'")
        net = cls(rand, learning_rate=float(doc.get("learningRate", 0.1)))
        net._layers = [deserialize_layer(entry) for entry in doc["layers"]]
        try:
            net._check_assembled()
        except ShapeError as exc:
            raise DeserializationError(str(exc)) from exc
        net.state = NetState.READY if net._layers else NetState.UNCONFIGURED
        return net

    def __repr__(self) -> str:
        lines = [f"NeuralNet({self.state.value}, {self.count_weights()} weights)"]
        lines.extend(f"  {i}: {layer!r}" for i, layer in enumerate(self._layers))
        return "\n".join(lines)


__all__ = ["NeuralNet"]
