"""Pure in-memory synthetic datasets."""

from __future__ import annotations

import numpy as np

from ..registry import DatasetSpec, DataSpec, register_dataset
from ..utils import deterministic_split, one_hot


def _make_sine(freq: float, n_points: int, noise: float, seed: int) -> tuple[np.ndarray, np.ndarray]:
    rng = np.random.default_rng(seed)
    x = np.linspace(-1.0, 1.0, n_points).reshape(-1, 1)
    y = np.sin(freq * np.pi * x) + noise * rng.standard_normal(size=x.shape)
    return x, y


def _make_blobs(
    n_classes: int, n_features: int, n_per_class: int, spread: float, seed: int
) -> tuple[np.ndarray, np.ndarray]:
    rng = np.random.default_rng(seed)
    centers = rng.uniform(-3.0, 3.0, size=(n_classes, n_features))
    classes = np.repeat(np.arange(n_classes), n_per_class)
    X = centers[classes] + spread * rng.standard_normal(size=(classes.size, n_features))
    return X, one_hot(classes, n_classes)


@register_dataset("sine")
def build_sine_dataset(
    *,
    freq: float = 1.0,
    n_points: int = 256,
    noise: float = 0.05,
    seed: int = 0,
    val_split: float = 0.1,
    test_split: float = 0.2,
) -> DatasetSpec:
    """One-input regression onto ``sin(freq * pi * x)`` plus Gaussian noise."""

    x, y = _make_sine(freq, n_points, noise, seed)
    splits = deterministic_split(x.shape[0], val_split=val_split, test_split=test_split, seed=seed)
    provenance = {
        "type": "synthetic",
        "freq": freq,
        "n_points": n_points,
        "noise": noise,
        "seed": seed,
        "val_split": val_split,
        "test_split": test_split,
    }
    return DatasetSpec(
        name="sine",
        features=x,
        labels=y,
        data_spec=DataSpec(d_in=1, d_out=1, task_type="regression"),
        provenance=provenance,
        split_indices=splits,
    )


@register_dataset("blobs")
def build_blobs_dataset(
    *,
    n_classes: int = 3,
    n_features: int = 2,
    n_per_class: int = 50,
    spread: float = 0.5,
    seed: int = 0,
    val_split: float = 0.2,
    test_split: float = 0.2,
) -> DatasetSpec:
    """Gaussian class clusters with one-hot labels."""

    X, y = _make_blobs(n_classes, n_features, n_per_class, spread, seed)
    splits = deterministic_split(X.shape[0], val_split=val_split, test_split=test_split, seed=seed)
    provenance = {
        "type": "synthetic",
        "n_classes": n_classes,
        "n_features": n_features,
        "n_per_class": n_per_class,
        "spread": spread,
        "seed": seed,
        "val_split": val_split,
        "test_split": test_split,
    }
    return DatasetSpec(
        name="blobs",
        features=X,
        labels=y,
        data_spec=DataSpec(
            d_in=n_features,
            d_out=n_classes,
            task_type="classification",
            num_classes=n_classes,
        ),
        provenance=provenance,
        split_indices=splits,
    )


__all__ = ["build_blobs_dataset", "build_sine_dataset"]
