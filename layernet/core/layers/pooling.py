"""Pooling layers: pairwise product/addition and 2-D max pooling."""

from __future__ import annotations

from typing import Any, ClassVar, Mapping

import numpy as np

from ..errors import ShapeError
from ..types import FLEXIBLE_SIZE, Array, LayerKind
from .base import Document, Layer, register_layer, require_field


class _PairPooling(Layer):
    """Combines inputs ``2i`` and ``2i+1`` into output ``i``."""

    def __init__(self, inputs: int = FLEXIBLE_SIZE) -> None:
        super().__init__()
        self.resize(inputs, inputs // 2)

    @property
    def inputs(self) -> int:
        return 2 * self.outputs

    def resize(self, inputs: int, outputs: int) -> None:
        if inputs % 2 != 0:
            raise ShapeError(f"{self.kind.value} layer needs an even input count, got {inputs}")
        if outputs * 2 != inputs:
            raise ShapeError(
                f"{self.kind.value} layer needs outputs * 2 == inputs, got {inputs}->{outputs}"
            )
        if outputs != self.outputs:
            self._allocate(outputs)

    def fit_inputs(self, inputs: int) -> None:
        self.resize(inputs, inputs // 2)

    def _document(self) -> Document:
        return {"inputs": self.inputs}

    @classmethod
    def from_document(cls, doc: Mapping[str, Any], kind: LayerKind) -> "_PairPooling":
        return cls(int(require_field(doc, "inputs")))


@register_layer(LayerKind.PRODUCT_POOLING)
class ProductPooling(_PairPooling):
    kind = LayerKind.PRODUCT_POOLING

    def feed_forward(self, x: Array) -> Array:
        x = self._check_input(x)
        np.multiply(x[0::2], x[1::2], out=self._activation)
        return self._activation

    def back_prop_error(self, upstream: Layer) -> None:
        self._check_upstream(upstream)
        x = upstream.activation
        up = upstream.error
        up[0::2] = self._error * x[1::2]
        up[1::2] = self._error * x[0::2]


@register_layer(LayerKind.ADDITION_POOLING)
class AdditionPooling(_PairPooling):
    kind = LayerKind.ADDITION_POOLING

    def feed_forward(self, x: Array) -> Array:
        x = self._check_input(x)
        np.add(x[0::2], x[1::2], out=self._activation)
        return self._activation

    def back_prop_error(self, upstream: Layer) -> None:
        # Both partial derivatives of a sum are 1.
        self._check_upstream(upstream)
        up = upstream.error
        up[0::2] = self._error
        up[1::2] = self._error


@register_layer(LayerKind.MAX_POOLING_2D)
class MaxPooling2D(Layer):
    """Non-overlapping ``region_size`` x ``region_size`` max pooling.

    Inputs are channel-interleaved: value ``(x, y, c)`` lives at
    ``(y * input_cols + x) * input_channels + c``. Outputs are ordered by block
    row, then block column, then channel.
    """

    kind: ClassVar[LayerKind] = LayerKind.MAX_POOLING_2D

    def __init__(
        self,
        input_cols: int,
        input_rows: int,
        input_channels: int = 1,
        region_size: int = 2,
    ) -> None:
        super().__init__()
        if region_size < 1:
            raise ShapeError(f"region_size must be positive, got {region_size}")
        if input_cols % region_size or input_rows % region_size:
            raise ShapeError(
                f"Input {input_cols}x{input_rows} is not a multiple of region size {region_size}"
            )
        self.input_cols = int(input_cols)
        self.input_rows = int(input_rows)
        self.input_channels = int(input_channels)
        self.region_size = int(region_size)
        self._allocate(self._expected_outputs())
        self.winners = np.zeros(self.outputs, dtype=np.int64)
        self._gather = self._block_indices()

    def _expected_outputs(self) -> int:
        s = self.region_size
        return (self.input_cols // s) * (self.input_rows // s) * self.input_channels

    @property
    def inputs(self) -> int:
        return self.input_cols * self.input_rows * self.input_channels

    def resize(self, inputs: int, outputs: int) -> None:
        if inputs != self.inputs or outputs != self.outputs:
            raise ShapeError(
                f"maxpool2 geometry is fixed at {self.inputs}->{self.outputs}, "
                f"cannot resize to {inputs}->{outputs}"
            )

    def _block_indices(self) -> Array:
        """Return an ``(outputs, region_size**2)`` table of input indices."""

        s = self.region_size
        c = self.input_channels
        yy, xx, ch = np.meshgrid(
            np.arange(self.input_rows // s),
            np.arange(self.input_cols // s),
            np.arange(c),
            indexing="ij",
        )
        dy, dx = np.meshgrid(np.arange(s), np.arange(s), indexing="ij")
        y = yy.reshape(-1, 1) * s + dy.reshape(1, -1)
        x = xx.reshape(-1, 1) * s + dx.reshape(1, -1)
        return (y * self.input_cols + x) * c + ch.reshape(-1, 1)

    def feed_forward(self, x: Array) -> Array:
        x = self._check_input(x)
        candidates = x[self._gather]
        best = np.argmax(candidates, axis=1)
        rows = np.arange(self.outputs)
        self.winners[...] = self._gather[rows, best]
        self._activation[...] = candidates[rows, best]
        return self._activation

    def back_prop_error(self, upstream: Layer) -> None:
        self._check_upstream(upstream)
        up = upstream.error
        up[...] = 0.0
        up[self.winners] = self._error

    def _document(self) -> Document:
        return {
            "icol": self.input_cols,
            "irow": self.input_rows,
            "ichan": self.input_channels,
            "size": self.region_size,
        }

    @classmethod
    def from_document(cls, doc: Mapping[str, Any], kind: LayerKind) -> "MaxPooling2D":
        return cls(
            int(require_field(doc, "icol")),
            int(require_field(doc, "irow")),
            int(require_field(doc, "ichan")),
            int(require_field(doc, "size")),
        )

    def __repr__(self) -> str:
        return (
            f"[MaxPooling2D:{self.input_cols}x{self.input_rows}x{self.input_channels}"
            f"/{self.region_size}]"
        )


__all__ = ["AdditionPooling", "MaxPooling2D", "ProductPooling"]
