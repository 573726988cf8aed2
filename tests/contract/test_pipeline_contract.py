import json
from pathlib import Path

import numpy as np

from layernet.reporting import load_network
from layernet.training import pipelines


def _sine_config(run_dir, seed=11):
    return {
        "data": {"name": "sine", "options": {"freq": 1.0, "n_points": 48, "seed": 0}},
        "model": {
            "layers": [
                {"type": "linear", "outputs": 4},
                {"type": "tanh"},
                {"type": "linear", "outputs": 1},
            ]
        },
        "train": {
            "epochs": 3,
            "batch_size": 4,
            "seed": seed,
            "lr": 0.05,
            "metrics": ["mse", "mae"],
            "run_dir": str(run_dir),
            "enable_plots": False,
        },
    }


def test_pipeline_produces_artifacts(tmp_path):
    config = _sine_config(tmp_path / "run")
    result = pipelines.run_pipeline(config)
    run_dir = Path(config["train"]["run_dir"])

    assert result.epochs == 3
    assert Path(result.metrics_path).exists()
    for name in (
        "metrics_train.csv",
        "metrics_val.jsonl",
        "metrics_val.csv",
        "metrics_test.json",
        "config.json",
        "summary.json",
    ):
        assert (run_dir / name).exists(), name

    manifest = json.loads(Path(result.manifest_path).read_text())
    assert manifest["config"]["train"]["seed"] == 11
    assert manifest["dataset"]["type"] == "synthetic"
    assert manifest["network"]["layers"] == ["linear", "tanh", "linear"]
    assert manifest["network"]["weights"] == (1 + 1) * 4 + (4 + 1) * 1

    metrics = [
        json.loads(line) for line in Path(result.metrics_path).read_text().splitlines() if line
    ]
    assert [entry["epoch"] for entry in metrics] == [1, 2, 3]
    first = metrics[0]
    assert first["split"] == "train"
    assert "sha" in first and first["seed"] == 11
    assert all({"loss", "mse", "mae"} <= set(entry) for entry in metrics)

    test_metrics = json.loads((run_dir / "metrics_test.json").read_text())
    assert {"loss", "mse", "mae"} <= set(test_metrics)

    network = load_network(result.model_path)
    assert network.inputs == 1 and network.outputs == 1
    assert np.isfinite(network.predict(np.array([0.25]))).all()


def test_pipeline_determinism(tmp_path):
    first = pipelines.run_pipeline(_sine_config(tmp_path / "run_a", seed=99))
    second = pipelines.run_pipeline(_sine_config(tmp_path / "run_b", seed=99))

    assert Path(first.metrics_path).read_bytes() == Path(second.metrics_path).read_bytes()
    assert Path(first.summary_path).read_bytes() == Path(second.summary_path).read_bytes()
    assert Path(first.model_path).read_bytes() == Path(second.model_path).read_bytes()


def test_presets_run_end_to_end(tmp_path):
    for name in ("blobs-maxout", "iris-logistic"):
        config = pipelines.load_preset(name)
        config["train"]["epochs"] = 2
        config["train"]["run_dir"] = str(tmp_path / name)
        result = pipelines.run_pipeline(config)
        summary = json.loads(Path(result.summary_path).read_text())
        train = summary["splits"]["train"]
        assert train["records"] == 2
        assert "accuracy" in train["metrics"]
        assert summary["training"]["epochs"] == 2
        assert summary["training"]["best_epoch"] in (1, 2)
