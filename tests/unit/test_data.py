"""Dataset registry and built-in loaders."""

from __future__ import annotations

import numpy as np
import pytest

from layernet.data import (
    DatasetSpec,
    DataSpec,
    available_datasets,
    deterministic_split,
    get_dataset,
    one_hot,
    register_dataset,
    seed_everything,
    standardize,
)


def test_builtin_datasets_are_registered():
    assert {"blobs", "iris", "sine"} <= set(available_datasets())
    with pytest.raises(KeyError, match="Available datasets"):
        get_dataset("mnist")


def test_iris_dataset():
    spec = get_dataset("iris", seed=1)
    assert spec.features.shape == (150, 4)
    assert spec.labels.shape == (150, 3)
    assert spec.data_spec.task_type == "classification"
    assert spec.data_spec.num_classes == 3
    np.testing.assert_allclose(spec.labels.sum(axis=1), 1.0)
    np.testing.assert_allclose(spec.features.mean(axis=0), 0.0, atol=1e-9)
    assert spec.splits == {"train": 90, "val": 30, "test": 30}
    assert "inputs" in spec.data_spec.normalization
    x, y = spec.split("val")
    assert x.shape == (30, 4) and y.shape == (30, 3)


def test_iris_without_standardization():
    spec = get_dataset("iris", standardize_inputs=False)
    assert spec.features.min() > 0.0
    assert spec.data_spec.normalization == {}


def test_sine_dataset_is_deterministic():
    a = get_dataset("sine", n_points=64, seed=3)
    b = get_dataset("sine", n_points=64, seed=3)
    np.testing.assert_allclose(a.labels, b.labels)
    np.testing.assert_array_equal(a.split_indices.train, b.split_indices.train)
    assert a.data_spec.d_in == a.data_spec.d_out == 1
    assert a.data_spec.task_type == "regression"
    clean = get_dataset("sine", n_points=5, noise=0.0, val_split=0.2, test_split=0.2)
    np.testing.assert_allclose(clean.labels.ravel(), np.sin(np.pi * np.linspace(-1.0, 1.0, 5)), atol=1e-12)


def test_blobs_dataset():
    spec = get_dataset("blobs", n_classes=4, n_features=3, n_per_class=10)
    assert spec.features.shape == (40, 3)
    assert spec.labels.shape == (40, 4)
    assert spec.data_spec.num_classes == 4
    assert sum(spec.splits.values()) == 40


def test_split_rejects_unknown_names():
    with pytest.raises(ValueError):
        get_dataset("blobs").split("holdout")


def test_register_dataset_validates_specs():
    def _broken(**_options):
        return DatasetSpec(
            name="broken",
            features=np.zeros((4, 2)),
            labels=np.zeros((4, 1)),
            data_spec=DataSpec(d_in=3, d_out=1, task_type="regression"),
            provenance={},
            split_indices=deterministic_split(4, val_split=0.25, test_split=0.25),
        )

    register_dataset("broken-test", _broken)
    with pytest.raises(ValueError, match="dimensions"):
        get_dataset("broken-test")


def test_register_dataset_needs_a_name_without_decorator():
    with pytest.raises(TypeError):
        register_dataset()


def test_deterministic_split_partitions_indices():
    splits = deterministic_split(20, val_split=0.1, test_split=0.2, seed=5)
    assert splits.sizes == {"train": 14, "val": 2, "test": 4}
    combined = np.concatenate([splits.train, splits.val, splits.test])
    np.testing.assert_array_equal(np.sort(combined), np.arange(20))
    again = deterministic_split(20, val_split=0.1, test_split=0.2, seed=5)
    np.testing.assert_array_equal(splits.test, again.test)
    with pytest.raises(ValueError):
        deterministic_split(10, val_split=0.6, test_split=0.5)


def test_standardize_and_one_hot():
    data = np.array([[1.0, 5.0], [3.0, 5.0]])
    scaled, mean, std = standardize(data)
    np.testing.assert_allclose(scaled, [[-1.0, 0.0], [1.0, 0.0]])
    np.testing.assert_allclose(mean, [[2.0, 5.0]])
    np.testing.assert_allclose(std, [[1.0, 1.0]])
    np.testing.assert_array_equal(one_hot(np.array([2, 0]), 3), [[0, 0, 1], [1, 0, 0]])
    assert one_hot(np.array([1, 3])).shape == (2, 4)
    with pytest.raises(ValueError):
        one_hot(np.array([-1]))


def test_seed_everything_returns_reproducible_generator():
    assert seed_everything(4).integers(0, 1000) == seed_everything(4).integers(0, 1000)
