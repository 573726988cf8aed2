"""One-dimensional valid convolution."""

from __future__ import annotations

from typing import Any, List, Mapping, Tuple

import numpy as np
from numpy.lib.stride_tricks import sliding_window_view

from ..errors import ShapeError
from ..types import Array, LayerKind
from .base import (
    Document,
    ParameterizedLayer,
    clamp_norms,
    read_matrix,
    register_layer,
    require_field,
)


@register_layer(LayerKind.CONV1D)
class Convolutional1D(ParameterizedLayer):
    """Stride-1, unpadded convolution over channel-interleaved samples.

    Input value ``(sample s, channel c)`` lives at ``s * input_channels + c``.
    Each channel has ``kernels_per_channel`` kernels of width ``kernel_size``;
    kernel ``c * kernels_per_channel + k`` only sees channel ``c``. Outputs are
    ordered by sample, then channel, then kernel.
    """

    kind = LayerKind.CONV1D

    def __init__(
        self,
        input_samples: int,
        input_channels: int,
        kernel_size: int,
        kernels_per_channel: int = 1,
    ) -> None:
        super().__init__()
        if kernel_size < 1 or kernel_size > input_samples:
            raise ShapeError(
                f"kernel_size must be in [1, {input_samples}], got {kernel_size}"
            )
        self.input_samples = int(input_samples)
        self.input_channels = int(input_channels)
        self.kernel_size = int(kernel_size)
        self.kernels_per_channel = int(kernels_per_channel)
        self.output_samples = self.input_samples - self.kernel_size + 1
        n_kernels = self.input_channels * self.kernels_per_channel
        self.kernels: Array = np.zeros((n_kernels, self.kernel_size))
        self.bias: Array = np.zeros(n_kernels)
        self._channel_of = np.repeat(np.arange(self.input_channels), self.kernels_per_channel)
        self._allocate(self.output_samples * n_kernels)

    @property
    def inputs(self) -> int:
        return self.input_samples * self.input_channels

    def resize(self, inputs: int, outputs: int) -> None:
        if inputs != self.inputs or outputs != self.outputs:
            raise ShapeError(
                f"conv1 geometry is fixed at {self.inputs}->{self.outputs}, "
                f"cannot resize to {inputs}->{outputs}"
            )

    def _parameters(self) -> List[Tuple[Array, bool]]:
        return [(self.bias, True), (self.kernels, False)]

    def _windows(self, x: Array) -> Array:
        """Return ``(output_samples, kernels, kernel_size)`` input windows."""

        samples = x.reshape(self.input_samples, self.input_channels)
        windows = sliding_window_view(samples, self.kernel_size, axis=0)
        return windows[:, self._channel_of, :]

    def feed_forward(self, x: Array) -> Array:
        x = self._check_input(x)
        net = np.einsum("okl,kl->ok", self._windows(x), self.kernels) + self.bias
        self._activation[...] = net.reshape(-1)
        return self._activation

    def back_prop_error(self, upstream) -> None:
        self._check_upstream(upstream)
        err = self._error.reshape(self.output_samples, -1)
        up = np.zeros((self.input_samples, self.input_channels))
        for tap in range(self.kernel_size):
            contrib = err * self.kernels[:, tap]
            up[tap : tap + self.output_samples] += contrib.reshape(
                self.output_samples, self.input_channels, self.kernels_per_channel
            ).sum(axis=2)
        upstream.error[...] = up.reshape(-1)

    def update_deltas(self, upstream_activation: Array, deltas: Array) -> None:
        x = np.asarray(upstream_activation, dtype=np.float64).reshape(-1)
        err = self._error.reshape(self.output_samples, -1)
        n_kernels = self.bias.shape[0]
        deltas[:n_kernels] += err.sum(axis=0)
        deltas[n_kernels:] += np.einsum("ok,okl->kl", err, self._windows(x)).reshape(-1)

    def max_norm(self, low: float, high: float) -> None:
        clamp_norms(self.kernels, low, high)

    def perturb_weights(
        self,
        rand: np.random.Generator,
        deviation: float,
        start: int = 0,
        count: int | None = None,
    ) -> None:
        n_kernels = self.kernels.shape[0]
        stop = n_kernels if count is None else min(n_kernels, start + count)
        if stop <= start:
            return
        self.kernels[start:stop] += rand.normal(
            0.0, deviation, size=(stop - start, self.kernel_size)
        )

    def _document(self) -> Document:
        return {
            "isam": self.input_samples,
            "ichan": self.input_channels,
            "osam": self.output_samples,
            "kpc": self.kernels_per_channel,
            "kern": self.kernels.tolist(),
            "bias": self.bias.tolist(),
        }

    @classmethod
    def from_document(cls, doc: Mapping[str, Any], kind: LayerKind) -> "Convolutional1D":
        samples = int(require_field(doc, "isam"))
        channels = int(require_field(doc, "ichan"))
        output_samples = int(require_field(doc, "osam"))
        kpc = int(require_field(doc, "kpc"))
        kernel_size = samples - output_samples + 1
        layer = cls(samples, channels, kernel_size, kpc)
        layer.kernels[...] = read_matrix(doc, "kern", layer.kernels.shape)
        layer.bias[...] = read_matrix(doc, "bias", layer.bias.shape)
        return layer


__all__ = ["Convolutional1D"]
