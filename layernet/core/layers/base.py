"""Layer contracts shared by every layer kind.

A layer owns two buffers of length ``outputs``: ``activation`` (written by
:meth:`Layer.feed_forward`) and ``error`` (the blame term, written either by the
caller at the output layer or by the downstream layer's
:meth:`Layer.back_prop_error`).  Both are overwritten in place, so for one
training example the calls must run in this order::

    feed_forward (ascending layers) -> back_prop_error (descending layers)
    -> update_deltas -> next example's feed_forward

``error`` holds the derivative of the objective being ascended with respect to
the layer's output (``target - prediction`` for squared error), which is why
``apply_deltas`` adds ``learning_rate * deltas``.
"""

from __future__ import annotations

import abc
from typing import Any, Callable, ClassVar, Dict, List, Mapping, Tuple, Type

import numpy as np

from ..errors import DeserializationError, NotSupportedError, ShapeError
from ..types import Array, LayerKind

Document = Dict[str, Any]

_LAYER_TYPES: Dict[LayerKind, Type["Layer"]] = {}


def register_layer(*kinds: LayerKind) -> Callable[[Type["Layer"]], Type["Layer"]]:
    """Class decorator mapping serialized ``type`` tags to a layer class."""

    def _decorator(cls: Type["Layer"]) -> Type["Layer"]:
        for kind in kinds:
            _LAYER_TYPES[kind] = cls
        return cls

    return _decorator


def require_field(doc: Mapping[str, Any], name: str) -> Any:
    try:
        return doc[name]
    except KeyError as exc:
        kind = doc.get("type", "<untyped>")
        raise DeserializationError(f"{kind} document is missing field {name!r}") from exc


def read_matrix(doc: Mapping[str, Any], name: str, shape: Tuple[int, ...] | None = None) -> Array:
    """Read a numeric field, optionally checking its shape."""

    value = require_field(doc, name)
    try:
        array = np.array(value, dtype=np.float64)
    except (TypeError, ValueError) as exc:
        raise DeserializationError(f"Field {name!r} is not numeric") from exc
    if shape is not None:
        if array.size == 0 and 0 in shape:
            array = array.reshape(shape)
        if array.shape != tuple(shape):
            raise DeserializationError(
                f"Field {name!r} has shape {array.shape}, expected {tuple(shape)}"
            )
    return array


def deserialize_layer(doc: Mapping[str, Any]) -> "Layer":
    """Rebuild a layer from the document produced by :meth:`Layer.serialize`."""

    if not isinstance(doc, Mapping):
        raise DeserializationError(f"Expected a mapping, got {type(doc).__name__}")
    tag = require_field(doc, "type")
    try:
        kind = LayerKind(tag)
    except ValueError as exc:
        raise DeserializationError(f"Unrecognized layer type: {tag!r}") from exc
    cls = _LAYER_TYPES.get(kind)
    if cls is None:
        raise DeserializationError(f"No layer class registered for type {tag!r}")
    try:
        return cls.from_document(doc, kind)
    except (TypeError, ValueError) as exc:
        if isinstance(exc, DeserializationError):
            raise
        raise DeserializationError(f"Malformed {tag} document: {exc}") from exc


def layer_types() -> List[str]:
    return sorted(kind.value for kind in _LAYER_TYPES)


def clamp_norms(units: Array, low: float, high: float) -> None:
    """Rescale each row of ``units`` in place so its norm lies in ``[low, high]``.

    A zero row becomes the uniform unit vector scaled to ``low``.
    """

    if units.size == 0:
        return
    norms = np.sqrt(np.sum(units * units, axis=1))
    dead = norms == 0.0
    scale = np.ones_like(norms)
    over = norms > high
    under = (norms < low) & ~dead
    scale[over] = high / norms[over]
    scale[under] = low / norms[under]
    units *= scale[:, None]
    if low > 0.0 and np.any(dead):
        units[dead] = low / np.sqrt(units.shape[1])


class Layer(abc.ABC):
    """One stage of the feed-forward computation."""

    kind: ClassVar[LayerKind]
    element_wise: ClassVar[bool] = False
    has_weights: ClassVar[bool] = False
    stochastic: ClassVar[bool] = False

    def __init__(self) -> None:
        self._activation: Array = np.zeros(0)
        self._error: Array = np.zeros(0)

    def _allocate(self, outputs: int) -> None:
        self._activation = np.zeros(int(outputs))
        self._error = np.zeros(int(outputs))

    # ------------------------------------------------------------------
    # Shape

    @property
    @abc.abstractmethod
    def inputs(self) -> int:
        """Number of values fed into this layer."""

    @property
    def outputs(self) -> int:
        return int(self._activation.shape[0])

    @abc.abstractmethod
    def resize(self, inputs: int, outputs: int) -> None:
        """Reallocate for a new shape; raises :class:`ShapeError` if impossible."""

    def fit_inputs(self, inputs: int) -> None:
        """Resize for ``inputs`` values, deriving the output width where the kind allows."""

        self.resize(inputs, self.outputs)

    def resize_inputs(self, upstream: "Layer") -> None:
        """Resize so that this layer consumes ``upstream``'s outputs."""

        self.fit_inputs(upstream.outputs)

    # ------------------------------------------------------------------
    # Buffers

    @property
    def activation(self) -> Array:
        return self._activation

    @property
    def error(self) -> Array:
        return self._error

    # ------------------------------------------------------------------
    # Computation

    @abc.abstractmethod
    def feed_forward(self, x: Array) -> Array:
        """Compute ``activation`` from ``x`` and return it."""

    @abc.abstractmethod
    def back_prop_error(self, upstream: "Layer") -> None:
        """Write ``upstream.error`` from this layer's ``error``."""

    def feed_through(self, matrix: Array) -> Array:
        """Feed every row of ``matrix`` and return the stacked activations."""

        rows = np.atleast_2d(np.asarray(matrix, dtype=np.float64))
        out = np.empty((rows.shape[0], self.outputs))
        for i, row in enumerate(rows):
            out[i] = self.feed_forward(row)
        return out

    def count_weights(self) -> int:
        return 0

    def max_norm(self, low: float, high: float) -> None:
        raise NotSupportedError(f"{self.kind.value} layers have no weights to constrain")

    # ------------------------------------------------------------------
    # Serialization

    def serialize(self) -> Document:
        doc: Document = {"type": self.kind.value}
        doc.update(self._document())
        return doc

    @abc.abstractmethod
    def _document(self) -> Document:
        """Kind-specific fields of the serialized document."""

    @classmethod
    @abc.abstractmethod
    def from_document(cls, doc: Mapping[str, Any], kind: LayerKind) -> "Layer":
        """Inverse of :meth:`serialize`."""

    @staticmethod
    def deserialize(doc: Mapping[str, Any]) -> "Layer":
        return deserialize_layer(doc)

    # ------------------------------------------------------------------
    # Helpers

    def _check_input(self, x: Array) -> Array:
        x = np.asarray(x, dtype=np.float64).reshape(-1)
        if x.shape[0] != self.inputs:
            raise ShapeError(
                f"{self.kind.value} layer expects {self.inputs} inputs, got {x.shape[0]}"
            )
        return x

    def _check_upstream(self, upstream: "Layer") -> None:
        if upstream.outputs != self.inputs:
            raise ShapeError(
                f"Upstream layer has {upstream.outputs} outputs but {self.kind.value} "
                f"layer expects {self.inputs} inputs"
            )

    def __repr__(self) -> str:
        return f"[{type(self).__name__}:{self.inputs}->{self.outputs}]"


class ParameterizedLayer(Layer):
    """A layer that owns trainable weights.

    Subclasses describe their weight arrays through :meth:`_parameters`, listed
    in the order used by :meth:`weights_to_vector` and by delta buffers.
    """

    has_weights: ClassVar[bool] = True

    @abc.abstractmethod
    def _parameters(self) -> List[Tuple[Array, bool]]:
        """Return ``(array, is_bias)`` pairs; arrays must be writable views."""

    @abc.abstractmethod
    def update_deltas(self, upstream_activation: Array, deltas: Array) -> None:
        """Add the gradient for the current example into ``deltas``."""

    @abc.abstractmethod
    def perturb_weights(
        self,
        rand: np.random.Generator,
        deviation: float,
        start: int = 0,
        count: int | None = None,
    ) -> None:
        """Add Gaussian noise to the weights feeding outputs ``[start, start+count)``."""

    def count_weights(self) -> int:
        return int(sum(p.size for p, _ in self._parameters()))

    def weights_to_vector(self) -> Array:
        params = self._parameters()
        if not params:
            return np.zeros(0)
        return np.concatenate([p.reshape(-1) for p, _ in params])

    def vector_to_weights(self, vector: Array) -> int:
        vector = np.asarray(vector, dtype=np.float64).reshape(-1)
        total = self.count_weights()
        if vector.shape[0] < total:
            raise ShapeError(
                f"{self.kind.value} layer needs {total} weights, vector holds {vector.shape[0]}"
            )
        offset = 0
        for p, _ in self._parameters():
            p[...] = vector[offset : offset + p.size].reshape(p.shape)
            offset += p.size
        return total

    def apply_deltas(self, learning_rate: float, deltas: Array) -> None:
        deltas = np.asarray(deltas, dtype=np.float64).reshape(-1)
        if deltas.shape[0] != self.count_weights():
            raise ShapeError(
                f"Delta buffer has {deltas.shape[0]} values, layer has {self.count_weights()}"
            )
        offset = 0
        for p, _ in self._parameters():
            p += learning_rate * deltas[offset : offset + p.size].reshape(p.shape)
            offset += p.size

    def reset_weights(self, rand: np.random.Generator) -> None:
        magnitude = max(0.03, 1.0 / max(1, self.inputs))
        for p, _ in self._parameters():
            p[...] = rand.normal(0.0, magnitude, size=p.shape)

    def scale_weights(self, factor: float, scale_biases: bool = True) -> None:
        for p, is_bias in self._parameters():
            if scale_biases or not is_bias:
                p *= factor

    def diminish_weights(self, amount: float, regularize_biases: bool = True) -> None:
        for p, is_bias in self._parameters():
            if regularize_biases or not is_bias:
                p[...] = np.sign(p) * np.maximum(np.abs(p) - amount, 0.0)

    def copy_weights(self, source: "ParameterizedLayer") -> None:
        if source.kind != self.kind:
            raise ShapeError(f"Cannot copy {source.kind.value} weights into {self.kind.value}")
        mine = self._parameters()
        theirs = source._parameters()
        if [p.shape for p, _ in mine] != [p.shape for p, _ in theirs]:
            raise ShapeError("Cannot copy weights between layers of different shapes")
        for dst, src in zip(mine, theirs):
            dst[0][...] = src[0]

    def drop_out(self, rand: np.random.Generator, probability: float) -> None:
        """Zero each activation independently with ``probability``."""

        dropped = rand.uniform(size=self.outputs) < probability
        self._activation[dropped] = 0.0

    def drop_connect(self, rand: np.random.Generator, probability: float) -> None:
        raise NotSupportedError(f"{self.kind.value} layers do not support drop_connect")

    def __repr__(self) -> str:
        return (
            f"[{type(self).__name__}:{self.inputs}->{self.outputs}, "
            f"weights={self.count_weights()}]"
        )


__all__ = [
    "Document",
    "Layer",
    "ParameterizedLayer",
    "clamp_norms",
    "deserialize_layer",
    "layer_types",
    "read_matrix",
    "register_layer",
    "require_field",
]
