"""Element-wise activation functions with closed-form derivatives."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Dict

import numpy as np

from .types import Array, LayerKind

BEND_AMOUNT = 0.5
BEND_SIZE = 0.5
LEAK = 0.01


@dataclass(frozen=True)
class ActivationFunction:
    """``fn(x)`` and ``derivative(x, fx)`` for one activation kind."""

    kind: LayerKind
    fn: Callable[[Array], Array]
    derivative: Callable[[Array, Array], Array]
    odd: bool = False

    def __call__(self, x: Array) -> Array:
        return self.fn(x)


def logistic(x: Array) -> Array:
    """Return the logistic function, saturating to 0/1 beyond +/-700."""

    x = np.asarray(x, dtype=np.float64)
    out = np.empty_like(x)
    high = x >= 700.0
    low = x < -700.0
    mid = ~(high | low)
    out[high] = 1.0
    out[low] = 0.0
    out[mid] = 1.0 / (np.exp(-x[mid]) + 1.0)
    return out


def tanh(x: Array) -> Array:
    return np.tanh(x)


def rectifier(x: Array) -> Array:
    return np.maximum(x, 0.0)


def leaky_rectifier(x: Array) -> Array:
    return np.where(x >= 0.0, x, LEAK * x)


def softplus(x: Array) -> Array:
    x = np.asarray(x, dtype=np.float64)
    out = x.copy()
    small = x <= 500.0
    out[small] = np.log1p(np.exp(x[small]))
    return out


def gaussian(x: Array) -> Array:
    return np.exp(-(x * x))


def sine(x: Array) -> Array:
    return np.sin(x)


def bent_identity(x: Array) -> Array:
    return BEND_AMOUNT * (np.sqrt(x * x + BEND_SIZE * BEND_SIZE) - BEND_SIZE) + x


def sigexp(x: Array) -> Array:
    x = np.asarray(x, dtype=np.float64)
    out = np.empty_like(x)
    neg = x <= 0.0
    out[neg] = np.exp(x[neg]) - 1.0
    out[~neg] = np.log(x[~neg] + 1.0)
    return out


def softroot(x: Array) -> Array:
    d = np.sqrt(x * x + 1.0)
    return np.sqrt(d + x) - np.sqrt(d - x)


def _softroot_derivative(x: Array, fx: Array) -> Array:
    x = np.asarray(x, dtype=np.float64)
    out = np.zeros_like(x)
    live = np.abs(x) <= 1e7
    xl = x[live]
    d = np.sqrt(xl * xl + 1.0)
    t = xl / d
    out[live] = (t + 1.0) / (2.0 * np.sqrt(d + xl)) - (t - 1.0) / (2.0 * np.sqrt(d - xl))
    return out


def _sigexp_derivative(x: Array, fx: Array) -> Array:
    x = np.asarray(x, dtype=np.float64)
    out = np.empty_like(x)
    neg = x <= 0.0
    out[neg] = np.exp(x[neg])
    out[~neg] = 1.0 / (x[~neg] + 1.0)
    return out


_FUNCTIONS: Dict[LayerKind, ActivationFunction] = {
    f.kind: f
    for f in (
        ActivationFunction(LayerKind.TANH, tanh, lambda x, fx: 1.0 - fx * fx, odd=True),
        ActivationFunction(LayerKind.LOGISTIC, logistic, lambda x, fx: fx * (1.0 - fx)),
        ActivationFunction(
            LayerKind.RECTIFIER, rectifier, lambda x, fx: (x >= 0.0).astype(np.float64)
        ),
        ActivationFunction(
            LayerKind.LEAKY_RECTIFIER,
            leaky_rectifier,
            lambda x, fx: np.where(x >= 0.0, 1.0, LEAK),
        ),
        ActivationFunction(LayerKind.SOFTPLUS, softplus, lambda x, fx: logistic(x)),
        ActivationFunction(
            LayerKind.GAUSSIAN, gaussian, lambda x, fx: -2.0 * x * np.exp(-(x * x))
        ),
        ActivationFunction(LayerKind.SINE, sine, lambda x, fx: np.cos(x), odd=True),
        ActivationFunction(
            LayerKind.BENT_IDENTITY,
            bent_identity,
            lambda x, fx: BEND_AMOUNT * x / np.sqrt(x * x + BEND_SIZE * BEND_SIZE) + 1.0,
        ),
        ActivationFunction(LayerKind.SIGEXP, sigexp, _sigexp_derivative),
        ActivationFunction(LayerKind.SOFTROOT, softroot, _softroot_derivative, odd=True),
    )
}


def get_activation(kind: LayerKind | str) -> ActivationFunction:
    """Return the activation registered for ``kind``."""

    try:
        return _FUNCTIONS[LayerKind(kind)]
    except (KeyError, ValueError) as exc:
        available = ", ".join(sorted(k.value for k in _FUNCTIONS))
        raise KeyError(f"Unknown activation {kind!r}. Available activations: {available}") from exc


def available_activations() -> list[str]:
    return sorted(k.value for k in _FUNCTIONS)


__all__ = [
    "ActivationFunction",
    "available_activations",
    "bent_identity",
    "gaussian",
    "get_activation",
    "leaky_rectifier",
    "logistic",
    "rectifier",
    "sigexp",
    "sine",
    "softplus",
    "softroot",
    "tanh",
]
