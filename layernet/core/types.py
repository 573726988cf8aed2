"""Core typing contracts for layernet."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional

import numpy as np

Array = np.ndarray

# Size used for a layer dimension that has not been decided yet.
FLEXIBLE_SIZE = 0


class LayerKind(str, Enum):
    """Closed set of layer kinds; the value is the serialized ``type`` tag."""

    LINEAR = "linear"
    TANH = "tanh"
    LOGISTIC = "logistic"
    RECTIFIER = "rectifier"
    LEAKY_RECTIFIER = "leakyrectifier"
    SOFTPLUS = "softplus"
    GAUSSIAN = "gaussian"
    SINE = "sine"
    BENT_IDENTITY = "bentidentity"
    SIGEXP = "sigexp"
    SOFTROOT = "softroot"
    PRODUCT_POOLING = "productpool"
    ADDITION_POOLING = "additionpool"
    MAXOUT = "maxout"
    RBM = "rbm"
    CONV1D = "conv1"
    CONV2D = "conv2"
    MAX_POOLING_2D = "maxpool2"

    @property
    def is_activation(self) -> bool:
        return self in _ACTIVATION_KINDS


_ACTIVATION_KINDS = frozenset(
    {
        LayerKind.TANH,
        LayerKind.LOGISTIC,
        LayerKind.RECTIFIER,
        LayerKind.LEAKY_RECTIFIER,
        LayerKind.SOFTPLUS,
        LayerKind.GAUSSIAN,
        LayerKind.SINE,
        LayerKind.BENT_IDENTITY,
        LayerKind.SIGEXP,
        LayerKind.SOFTROOT,
    }
)


class NetState(str, Enum):
    """Lifecycle of a :class:`layernet.core.network.NeuralNet`."""

    UNCONFIGURED = "unconfigured"
    ASSEMBLING = "assembling"
    READY = "ready"
    TRAINED = "trained"


@dataclass(frozen=True)
class RunResult:
    """Summary returned by :func:`layernet.training.pipelines.run_pipeline`."""

    epochs: int
    metrics_path: str
    manifest_path: str
    summary_path: str = ""
    model_path: str = ""


@dataclass
class TrainingResult:
    """Outcome of :meth:`layernet.training.trainer.Trainer.run`."""

    epochs: int
    steps: int
    best_epoch: int
    best_loss: float
    stopped_early: bool = False
    restored_epoch: Optional[int] = None
    history: List[Dict[str, float]] = field(default_factory=list)


__all__ = [
    "Array",
    "FLEXIBLE_SIZE",
    "LayerKind",
    "NetState",
    "RunResult",
    "TrainingResult",
]
