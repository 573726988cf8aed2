"""Fisher's Iris classification dataset."""

from __future__ import annotations

import numpy as np
from sklearn.datasets import load_iris

from ..registry import DatasetSpec, DataSpec, register_dataset
from ..utils import deterministic_split, one_hot, standardize


@register_dataset("iris")
def build_iris_dataset(
    *,
    val_split: float = 0.2,
    test_split: float = 0.2,
    seed: int = 0,
    standardize_inputs: bool = True,
) -> DatasetSpec:
    """Return the 150-row Iris dataset with one-hot labels over 3 classes."""

    bunch = load_iris()
    X = np.asarray(bunch.data, dtype=np.float64)
    y = one_hot(bunch.target, num_classes=3)

    normalization: dict[str, dict[str, list[float]]] = {}
    if standardize_inputs:
        X, mean, std = standardize(X)
        normalization["inputs"] = {
            "mean": mean.flatten().tolist(),
            "std": std.flatten().tolist(),
        }

    splits = deterministic_split(X.shape[0], val_split=val_split, test_split=test_split, seed=seed)
    data_spec = DataSpec(
        d_in=int(X.shape[1]),
        d_out=3,
        task_type="classification",
        num_classes=3,
        normalization=normalization,
        extra={"class_names": [str(name) for name in bunch.target_names]},
    )
    provenance = {
        "source": "sklearn.datasets.load_iris",
        "val_split": val_split,
        "test_split": test_split,
        "seed": seed,
        "standardize_inputs": standardize_inputs,
    }
    return DatasetSpec(
        name="iris",
        features=X,
        labels=y,
        data_spec=data_spec,
        provenance=provenance,
        split_indices=splits,
    )


__all__ = ["build_iris_dataset"]
