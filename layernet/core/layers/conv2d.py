"""Two-dimensional convolution and the ``Image`` addressing view it uses."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, List, Mapping, Tuple

import numpy as np

from ..errors import DeserializationError, NotSupportedError, ShapeError
from ..types import Array, LayerKind
from .base import (
    Document,
    Layer,
    ParameterizedLayer,
    clamp_norms,
    read_matrix,
    register_layer,
    require_field,
)


class Image:
    """Addressing view over a flat ``width x height x channels`` buffer.

    ``index(x, y, z)`` maps viewport coordinates to a flat index, or ``-1`` when
    the point falls outside the image (zero padding). Coordinates may be numpy
    arrays, and so may the offsets ``dx``, ``dy`` and ``dz``; everything
    broadcasts.

    In normal mode the horizontal coordinate is ``x + dx * sx - px``, so ``dx``
    selects a strided window. With ``invert_stride`` it is ``(x + dx) / sx - px``
    and only exists when ``(x + dx) % sx == 0``; this walks a strided image as
    if it had been dilated. ``flip`` rotates the image by 180 degrees.
    Interlaced buffers store ``(y * width + x) * channels + z``, others store
    ``(z * height + y) * width + x``.
    """

    def __init__(
        self,
        data: Array | None,
        width: int,
        height: int,
        channels: int = 1,
        interlaced: bool = True,
    ) -> None:
        self.data = data
        self.width = int(width)
        self.height = int(height)
        self.channels = int(channels)
        self.interlaced = interlaced
        self.dx: Any = 0
        self.dy: Any = 0
        self.dz: Any = 0
        self.px = 0
        self.py = 0
        self.sx = 1
        self.sy = 1
        self.invert_stride = False
        self.flip = False

    def index(self, x: Any, y: Any, z: Any = 0) -> Array:
        x = np.asarray(x, dtype=np.int64)
        y = np.asarray(y, dtype=np.int64)
        z = np.asarray(z, dtype=np.int64) + self.dz
        if self.invert_stride:
            x = x + self.dx
            y = y + self.dy
            valid = (x % self.sx == 0) & (y % self.sy == 0)
            x = x // self.sx - self.px
            y = y // self.sy - self.py
        else:
            x = x + np.asarray(self.dx) * self.sx - self.px
            y = y + np.asarray(self.dy) * self.sy - self.py
            valid = True
        if self.flip:
            x = self.width - x - 1
            y = self.height - y - 1
        valid = (
            valid
            & (x >= 0)
            & (x < self.width)
            & (y >= 0)
            & (y < self.height)
            & (z >= 0)
            & (z < self.channels)
        )
        if self.interlaced:
            flat = (y * self.width + x) * self.channels + z
        else:
            flat = (z * self.height + y) * self.width + x
        return np.where(valid, flat, -1)

    def gather(self, x: Any, y: Any, z: Any = 0) -> Array:
        return take(self.data, self.index(x, y, z))

    def read(self, x: int, y: int, z: int = 0) -> float:
        return float(self.gather(x, y, z))


def take(data: Array, indices: Array) -> Array:
    """``data[indices]`` with ``-1`` entries reading as zero."""

    if data.size == 0:
        return np.zeros(indices.shape)
    return np.where(indices >= 0, data[np.maximum(indices, 0)], 0.0)


@dataclass
class _Plan:
    """Index tables for one geometry."""

    columns: Array  # (positions, kernel elements) into the input
    outputs: Array  # (positions, kernels) into the activation
    errors: Array  # (kernels, input positions, taps) into the error, inverted stride
    flipped: Array  # (taps, channels) into a kernel row, flipped
    upstream: Array  # (input positions, channels) into the upstream error


@register_layer(LayerKind.CONV2D)
class Convolutional2D(ParameterizedLayer):
    """Strided, padded 2-D convolution with ``k_count`` kernels.

    Each kernel row holds ``k_width * k_height * channels`` values, laid out
    interlaced or not according to ``kernels_interlaced``. The output is
    ``output_width x output_height x k_count`` with
    ``output = (dim - k + 2 * padding) // stride + 1``.
    """

    kind = LayerKind.CONV2D

    def __init__(
        self,
        width: int,
        height: int,
        channels: int,
        k_width: int,
        k_height: int,
        k_count: int = 0,
        *,
        stride_x: int = 1,
        stride_y: int | None = None,
        padding_x: int = 0,
        padding_y: int | None = None,
    ) -> None:
        super().__init__()
        self.width = int(width)
        self.height = int(height)
        self.channels = int(channels)
        self.k_width = int(k_width)
        self.k_height = int(k_height)
        self.stride_x = int(stride_x)
        self.stride_y = int(stride_x if stride_y is None else stride_y)
        self.padding_x = int(padding_x)
        self.padding_y = int(padding_x if padding_y is None else padding_y)
        self.input_interlaced = True
        self.kernels_interlaced = True
        self.output_interlaced = True
        self.output_width = 0
        self.output_height = 0
        self.kernels: Array = np.zeros((int(k_count), self._kernel_elements()))
        self.bias: Array = np.zeros(int(k_count))
        self._plan: _Plan | None = None
        self._update_output_size()

    @classmethod
    def flexible(cls, k_width: int, k_height: int, k_count: int) -> "Convolutional2D":
        """A layer whose input geometry is taken from an upstream convolution."""

        return cls(0, 0, 0, k_width, k_height, k_count)

    # ------------------------------------------------------------------
    # Geometry

    @property
    def k_count(self) -> int:
        return int(self.bias.shape[0])

    @property
    def inputs(self) -> int:
        return self.width * self.height * self.channels

    def _kernel_elements(self) -> int:
        return self.k_width * self.k_height * self.channels

    def _output_dims(
        self, width: int, height: int, stride: Tuple[int, int], padding: Tuple[int, int]
    ) -> Tuple[int, int]:
        """Validate a geometry and return its ``(output_width, output_height)``."""

        if stride[0] < 1 or stride[1] < 1:
            raise ShapeError("Stride must be positive")
        if padding[0] < 0 or padding[1] < 0:
            raise ShapeError("Padding must not be negative")
        if width == 0 or height == 0:
            return 0, 0
        out_w = (width - self.k_width + 2 * padding[0]) // stride[0] + 1
        out_h = (height - self.k_height + 2 * padding[1]) // stride[1] + 1
        if out_w <= 0 or out_h <= 0:
            raise ShapeError(
                f"Kernel {self.k_width}x{self.k_height} does not fit input "
                f"{width}x{height} with padding {padding[0]},{padding[1]}"
            )
        return out_w, out_h

    def _update_output_size(self) -> None:
        self.output_width, self.output_height = self._output_dims(
            self.width,
            self.height,
            (self.stride_x, self.stride_y),
            (self.padding_x, self.padding_y),
        )
        self._allocate(self.output_width * self.output_height * self.k_count)
        self._plan = None

    def resize(self, inputs: int, outputs: int) -> None:
        if inputs == self.inputs and outputs == self.outputs:
            return
        raise NotSupportedError(
            "conv2 layers can only be resized from an upstream conv2 layer"
        )

    def resize_inputs(self, upstream: Layer) -> None:
        if not isinstance(upstream, Convolutional2D):
            raise NotSupportedError(
                f"conv2 layers cannot take their geometry from a {upstream.kind.value} layer"
            )
        self._output_dims(
            upstream.output_width,
            upstream.output_height,
            (self.stride_x, self.stride_y),
            (self.padding_x, self.padding_y),
        )
        self.width = upstream.output_width
        self.height = upstream.output_height
        self.channels = upstream.k_count
        self.input_interlaced = upstream.output_interlaced
        self.kernels = np.zeros((self.k_count, self._kernel_elements()))
        self._update_output_size()

    def set_stride(self, stride_x: int, stride_y: int | None = None) -> None:
        stride = (int(stride_x), int(stride_x if stride_y is None else stride_y))
        self._output_dims(self.width, self.height, stride, (self.padding_x, self.padding_y))
        self.stride_x, self.stride_y = stride
        self._update_output_size()

    def set_padding(self, padding_x: int, padding_y: int | None = None) -> None:
        padding = (int(padding_x), int(padding_x if padding_y is None else padding_y))
        self._output_dims(self.width, self.height, (self.stride_x, self.stride_y), padding)
        self.padding_x, self.padding_y = padding
        self._update_output_size()

    def set_interlaced(
        self, input: bool = True, kernels: bool = True, output: bool = True
    ) -> None:
        self.input_interlaced = bool(input)
        self.kernels_interlaced = bool(kernels)
        self.output_interlaced = bool(output)
        self._plan = None

    def add_kernel(self, rand: np.random.Generator | None = None) -> None:
        self.add_kernels(1, rand)

    def add_kernels(self, count: int, rand: np.random.Generator | None = None) -> None:
        rows = np.zeros((int(count), self._kernel_elements()))
        bias = np.zeros(int(count))
        if rand is not None:
            magnitude = max(0.03, 1.0 / max(1, self.inputs))
            rows[...] = rand.normal(0.0, magnitude, size=rows.shape)
            bias[...] = rand.normal(0.0, magnitude, size=bias.shape)
        self.kernels = np.vstack([self.kernels, rows])
        self.bias = np.concatenate([self.bias, bias])
        self._update_output_size()

    # ------------------------------------------------------------------
    # Index tables

    def _kernel_taps(self) -> Tuple[Array, Array, Array]:
        """Return ``(kx, ky, c)`` for every element of a kernel row, in row order."""

        ky, kx, c = np.meshgrid(
            np.arange(self.k_height),
            np.arange(self.k_width),
            np.arange(self.channels),
            indexing="ij",
        )
        kx, ky, c = kx.reshape(-1), ky.reshape(-1), c.reshape(-1)
        image = Image(None, self.k_width, self.k_height, self.channels, self.kernels_interlaced)
        order = np.argsort(image.index(kx, ky, c))
        return kx[order], ky[order], c[order]

    def _build_plan(self) -> _Plan:
        kx, ky, kc = self._kernel_taps()
        oy, ox = np.meshgrid(
            np.arange(self.output_height), np.arange(self.output_width), indexing="ij"
        )
        ox, oy = ox.reshape(-1, 1), oy.reshape(-1, 1)
        kernel_ids = np.arange(self.k_count)

        source = Image(None, self.width, self.height, self.channels, self.input_interlaced)
        source.sx, source.sy = self.stride_x, self.stride_y
        source.px, source.py = self.padding_x, self.padding_y
        source.dx, source.dy = ox, oy
        columns = source.index(kx[None, :], ky[None, :], kc[None, :])

        target = Image(
            None, self.output_width, self.output_height, self.k_count, self.output_interlaced
        )
        outputs = target.index(ox, oy, kernel_ids[None, :])

        # Backprop as a full convolution: walk the error image with an inverted
        # stride and read each kernel through a flipped view.
        ty, tx = np.meshgrid(np.arange(self.k_height), np.arange(self.k_width), indexing="ij")
        tx, ty = tx.reshape(-1), ty.reshape(-1)
        iy, ix = np.meshgrid(np.arange(self.height), np.arange(self.width), indexing="ij")
        ix, iy = ix.reshape(1, -1, 1), iy.reshape(1, -1, 1)

        err = Image(
            None, self.output_width, self.output_height, self.k_count, self.output_interlaced
        )
        err.invert_stride = True
        err.sx, err.sy = self.stride_x, self.stride_y
        err.dx = ix - (self.k_width - 1 - self.padding_x)
        err.dy = iy - (self.k_height - 1 - self.padding_y)
        errors = err.index(tx[None, None, :], ty[None, None, :], kernel_ids[:, None, None])

        kernel = Image(None, self.k_width, self.k_height, self.channels, self.kernels_interlaced)
        kernel.flip = True
        channel_ids = np.arange(self.channels)
        flipped = kernel.index(tx[:, None], ty[:, None], channel_ids[None, :])

        upstream = Image(None, self.width, self.height, self.channels, self.input_interlaced)
        up = upstream.index(ix.reshape(-1, 1), iy.reshape(-1, 1), channel_ids[None, :])
        return _Plan(columns, outputs, errors, flipped, up)

    @property
    def plan(self) -> _Plan:
        if self._plan is None:
            self._plan = self._build_plan()
        return self._plan

    # ------------------------------------------------------------------
    # Computation

    def _parameters(self) -> List[Tuple[Array, bool]]:
        return [(self.kernels, False), (self.bias, True)]

    def feed_forward(self, x: Array) -> Array:
        x = self._check_input(x)
        plan = self.plan
        net = take(x, plan.columns) @ self.kernels.T + self.bias
        self._activation[plan.outputs] = net
        return self._activation

    def back_prop_error(self, upstream: Layer) -> None:
        self._check_upstream(upstream)
        plan = self.plan
        errors = take(self._error, plan.errors)
        kernels = self.kernels[:, plan.flipped]
        upstream.error[plan.upstream] = np.einsum("nqt,ntc->qc", errors, kernels)

    def update_deltas(self, upstream_activation: Array, deltas: Array) -> None:
        x = np.asarray(upstream_activation, dtype=np.float64).reshape(-1)
        plan = self.plan
        err = self._error[plan.outputs]
        n = self.kernels.size
        deltas[:n] += (err.T @ take(x, plan.columns)).reshape(-1)
        deltas[n:] += err.sum(axis=0)

    def max_norm(self, low: float, high: float) -> None:
        clamp_norms(self.kernels, low, high)

    def perturb_weights(
        self,
        rand: np.random.Generator,
        deviation: float,
        start: int = 0,
        count: int | None = None,
    ) -> None:
        stop = self.k_count if count is None else min(self.k_count, start + count)
        if stop <= start:
            return
        self.kernels[start:stop] += rand.normal(
            0.0, deviation, size=(stop - start, self.kernels.shape[1])
        )

    def drop_out(self, rand: np.random.Generator, probability: float) -> None:
        raise NotSupportedError("conv2 layers do not support drop_out")

    def drop_connect(self, rand: np.random.Generator, probability: float) -> None:
        raise NotSupportedError("conv2 layers do not support drop_connect")

    # ------------------------------------------------------------------

    def _document(self) -> Document:
        return {
            "width": self.width,
            "height": self.height,
            "channels": self.channels,
            "kWidth": self.k_width,
            "kHeight": self.k_height,
            "strideX": self.stride_x,
            "strideY": self.stride_y,
            "paddingX": self.padding_x,
            "paddingY": self.padding_y,
            "outputWidth": self.output_width,
            "outputHeight": self.output_height,
            "inputInterlaced": self.input_interlaced,
            "kernelsInterlaced": self.kernels_interlaced,
            "outputInterlaced": self.output_interlaced,
            "bias": self.bias.tolist(),
            "kernels": self.kernels.tolist(),
        }

    @classmethod
    def from_document(cls, doc: Mapping[str, Any], kind: LayerKind) -> "Convolutional2D":
        bias = read_matrix(doc, "bias")
        layer = cls(
            int(require_field(doc, "width")),
            int(require_field(doc, "height")),
            int(require_field(doc, "channels")),
            int(require_field(doc, "kWidth")),
            int(require_field(doc, "kHeight")),
            int(bias.shape[0]),
            stride_x=int(require_field(doc, "strideX")),
            stride_y=int(require_field(doc, "strideY")),
            padding_x=int(require_field(doc, "paddingX")),
            padding_y=int(require_field(doc, "paddingY")),
        )
        layer.set_interlaced(
            bool(require_field(doc, "inputInterlaced")),
            bool(require_field(doc, "kernelsInterlaced")),
            bool(require_field(doc, "outputInterlaced")),
        )
        expected = (int(require_field(doc, "outputWidth")), int(require_field(doc, "outputHeight")))
        if expected != (layer.output_width, layer.output_height):
            raise DeserializationError(
                f"conv2 document declares output {expected}, geometry gives "
                f"{(layer.output_width, layer.output_height)}"
            )
        layer.kernels[...] = read_matrix(doc, "kernels", layer.kernels.shape)
        layer.bias[...] = bias
        return layer

    def __repr__(self) -> str:
        return (
            f"[Convolutional2D:{self.width}x{self.height}x{self.channels}"
            f"*{self.k_width}x{self.k_height}x{self.k_count}"
            f"->{self.output_width}x{self.output_height}x{self.k_count}]"
        )


__all__ = ["Convolutional2D", "Image", "take"]
