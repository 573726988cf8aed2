"""Loss registry used by the optimizer and the trainer."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Dict, Iterable

import numpy as np

from ..core.types import Array

LossFn = Callable[[Array, Array], tuple[float, Array]]


@dataclass(frozen=True)
class Loss:
    """Loss wrapper returning both the scalar loss and dL/dy.

    The network's blame term is ``-dL/dy``. Squared-error gradients are those
    of half the squared error, so the blame for ``mse`` and ``sse`` is exactly
    ``target - prediction``.
    """

    name: str
    fn: LossFn

    def __call__(self, predictions: Array, targets: Array) -> tuple[float, Array]:
        return self.fn(predictions, targets)

    def blame(self, predictions: Array, targets: Array) -> Array:
        _, grad = self.fn(predictions, targets)
        return -grad


class LossRegistry:
    """Central registry for loss functions."""

    def __init__(self) -> None:
        self._registry: Dict[str, Loss] = {}

    def register(self, name: str, fn: LossFn) -> None:
        self._registry[name] = Loss(name, fn)

    def names(self) -> Iterable[str]:
        return sorted(self._registry)

    def get(self, name: str) -> Loss:
        if name not in self._registry:
            available = ", ".join(sorted(self._registry))
            raise KeyError(f"Unknown loss {name!r}. Available losses: {available}")
        return self._registry[name]


REGISTRY = LossRegistry()


def _as_pair(pred: Array, target: Array) -> tuple[Array, Array]:
    pred = np.asarray(pred, dtype=np.float64)
    target = np.asarray(target, dtype=np.float64).reshape(pred.shape)
    return pred, target


def _mse(pred: Array, target: Array) -> tuple[float, Array]:
    pred, target = _as_pair(pred, target)
    diff = pred - target
    loss = float(np.mean(np.square(diff)))
    return loss, diff


def _sse(pred: Array, target: Array) -> tuple[float, Array]:
    pred, target = _as_pair(pred, target)
    diff = pred - target
    return float(np.sum(np.square(diff))), diff


def _mae(pred: Array, target: Array) -> tuple[float, Array]:
    pred, target = _as_pair(pred, target)
    diff = pred - target
    loss = float(np.mean(np.abs(diff)))
    return loss, np.sign(diff)


def _huber(pred: Array, target: Array, delta: float = 1.0) -> tuple[float, Array]:
    pred, target = _as_pair(pred, target)
    diff = pred - target
    abs_diff = np.abs(diff)
    quadratic = np.minimum(abs_diff, delta)
    linear = abs_diff - quadratic
    loss = float(np.mean(0.5 * quadratic**2 + delta * linear))
    grad = np.where(abs_diff <= delta, diff, delta * np.sign(diff))
    return loss, grad


def _softmax(logits: Array) -> Array:
    shifted = logits - np.max(logits, axis=-1, keepdims=True)
    exp = np.exp(shifted)
    return exp / np.sum(exp, axis=-1, keepdims=True)


def _cross_entropy(logits: Array, target: Array) -> tuple[float, Array]:
    """Softmax cross-entropy over the last axis; targets are one-hot rows."""

    logits, target = _as_pair(logits, target)
    probs = _softmax(logits)
    eps = 1e-9
    per_row = -np.sum(target * np.log(probs + eps), axis=-1)
    return float(np.mean(per_row)), probs - target


REGISTRY.register("mse", _mse)
REGISTRY.register("sse", _sse)
REGISTRY.register("mae", _mae)
REGISTRY.register("huber", _huber)
REGISTRY.register("ce", _cross_entropy)

__all__ = ["Loss", "LossRegistry", "REGISTRY"]
