"""Evaluation metrics computed over prediction matrices."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Iterable, List, Mapping

import numpy as np

from ..core.types import Array

_KNOWN = ("accuracy", "misclassification", "mse", "rmse", "mae", "sse")


@dataclass(frozen=True)
class MetricResult:
    name: str
    value: float


def default_metrics(task_type: str) -> List[str]:
    if task_type == "regression":
        return ["mse", "rmse", "mae"]
    if task_type == "classification":
        return ["mse", "accuracy"]
    raise ValueError(f"Unknown task type: {task_type}")


def _class_indices(values: Array) -> Array:
    if values.ndim == 2 and values.shape[1] > 1:
        return np.argmax(values, axis=1)
    return np.rint(values.reshape(-1)).astype(int)


def compute_metric(name: str, predictions: Array, targets: Array) -> MetricResult:
    key = name.lower()
    preds = np.atleast_2d(np.asarray(predictions, dtype=np.float64))
    targs = np.asarray(targets, dtype=np.float64).reshape(preds.shape)
    if key == "mse":
        value = float(np.mean((preds - targs) ** 2))
    elif key == "sse":
        value = float(np.sum((preds - targs) ** 2))
    elif key == "rmse":
        value = float(np.sqrt(np.mean((preds - targs) ** 2)))
    elif key == "mae":
        value = float(np.mean(np.abs(preds - targs)))
    elif key in {"accuracy", "misclassification"}:
        hits = float(np.mean(_class_indices(preds) == _class_indices(targs)))
        value = hits if key == "accuracy" else 1.0 - hits
    else:
        raise KeyError(f"Unknown metric {name!r}. Available metrics: {', '.join(_KNOWN)}")
    return MetricResult(name=key, value=value)


def compute_metrics(names: Iterable[str], predictions: Array, targets: Array) -> Mapping[str, float]:
    results: Dict[str, float] = {}
    for name in names:
        metric = compute_metric(name, predictions, targets)
        results[metric.name] = metric.value
    return results


__all__ = ["MetricResult", "compute_metric", "compute_metrics", "default_metrics"]
