"""Dataset registry and built-in loaders."""

from . import loaders  # noqa: F401
from .registry import DatasetSpec, DataSpec, available_datasets, get_dataset, register_dataset
from .utils import SplitIndices, deterministic_split, one_hot, seed_everything, standardize

__all__ = [
    "DataSpec",
    "DatasetSpec",
    "SplitIndices",
    "available_datasets",
    "deterministic_split",
    "get_dataset",
    "one_hot",
    "register_dataset",
    "seed_everything",
    "standardize",
]
