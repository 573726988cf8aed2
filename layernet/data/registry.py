"""Dataset registry and metadata contracts."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, MutableMapping, Tuple

import numpy as np

from ..core.types import Array
from .utils import SplitIndices

TASK_TYPES = ("regression", "classification")


@dataclass(frozen=True)
class DataSpec:
    """Structural information about a dataset.

    Attributes
    ----------
    d_in:
        Number of feature columns fed to the network.
    d_out:
        Number of label columns the network must produce.
    task_type:
        ``"regression"`` or ``"classification"`` (one-hot labels).
    num_classes:
        Number of classes when ``task_type`` is ``"classification"``.
    normalization:
        Metadata describing any scaling already applied to the features. It
        is recorded in the run manifest and never interpreted here.
    """

    d_in: int
    d_out: int
    task_type: str
    num_classes: int | None = None
    normalization: Dict[str, Any] = field(default_factory=dict)
    extra: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class DatasetSpec:
    """An in-memory dataset with fixed train/val/test partitions."""

    name: str
    features: Array
    labels: Array
    data_spec: DataSpec
    provenance: Dict[str, Any]
    split_indices: SplitIndices

    @property
    def splits(self) -> Dict[str, int]:
        return dict(self.split_indices.sizes)

    def split(self, name: str) -> Tuple[Array, Array]:
        """Return ``(features, labels)`` rows for ``name``."""

        if name not in {"train", "val", "test"}:
            raise ValueError(f"Unknown split: {name}")
        indices = getattr(self.split_indices, name)
        return self.features[indices], self.labels[indices]


DatasetFactory = Callable[..., DatasetSpec]


_REGISTRY: MutableMapping[str, DatasetFactory] = {}


def register_dataset(
    name: str | None = None,
    factory: DatasetFactory | None = None,
) -> Callable[[DatasetFactory], DatasetFactory] | DatasetFactory:
    """Register a dataset factory.

    ``register_dataset`` can be used both as a decorator::

        @register_dataset("iris")
        def make_iris(**kwargs):
            ...

    or directly::

        register_dataset("iris", make_iris)
    """

    def _decorator(func: DatasetFactory) -> DatasetFactory:
        _REGISTRY[str(name or func.__name__)] = func
        return func

    if factory is not None:
        return _decorator(factory)
    if name is None:
        raise TypeError("register_dataset requires a name when used without a decorator")
    return _decorator


def get_dataset(dataset: str, /, **options: Any) -> DatasetSpec:
    """Build the :class:`DatasetSpec` registered as ``dataset``."""

    if dataset not in _REGISTRY:
        available = ", ".join(sorted(_REGISTRY))
        raise KeyError(f"Unknown dataset {dataset!r}. Available datasets: {available}")
    spec = _REGISTRY[dataset](**options)
    _validate_spec(spec)
    return spec


def available_datasets() -> Iterable[str]:
    """Return the sorted list of available dataset identifiers."""

    return sorted(_REGISTRY)


def _validate_spec(spec: DatasetSpec) -> None:
    if spec.data_spec.task_type not in TASK_TYPES:
        raise ValueError(f"Invalid task type: {spec.data_spec.task_type}")
    if spec.data_spec.task_type == "classification" and spec.data_spec.num_classes is None:
        raise ValueError("Classification datasets must define num_classes")
    if spec.features.ndim != 2 or spec.labels.ndim != 2:
        raise ValueError("Features and labels must be 2-D matrices")
    if spec.features.shape[0] != spec.labels.shape[0]:
        raise ValueError(
            f"{spec.features.shape[0]} feature rows but {spec.labels.shape[0]} label rows"
        )
    if spec.features.shape[1] != spec.data_spec.d_in or spec.labels.shape[1] != spec.data_spec.d_out:
        raise ValueError("DataSpec dimensions do not match the stored matrices")


__all__ = [
    "DataSpec",
    "DatasetSpec",
    "TASK_TYPES",
    "available_datasets",
    "get_dataset",
    "register_dataset",
]
