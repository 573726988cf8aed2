"""Pipeline assembly: presets, network construction and end-to-end runs."""

from __future__ import annotations

import json
import logging
import time
from copy import deepcopy
from pathlib import Path
from typing import Any, Callable, Dict, Mapping, Sequence

import numpy as np

from ..core.layers import (
    ACTIVATION_KINDS,
    ActivationLayer,
    AdditionPooling,
    Convolutional1D,
    Convolutional2D,
    Layer,
    Linear,
    MaxOut,
    MaxPooling2D,
    ProductPooling,
    RestrictedBoltzmannMachine,
)
from ..core.network import NeuralNet
from ..core.types import LayerKind, RunResult
from ..data import registry
from ..data.utils import seed_everything
from ..reporting.artifacts import git_sha, save_network, write_manifest
from ..reporting.metrics import CsvSink, JsonlSink
from ..reporting.plots import PlotAdapter
from ..reporting.summary import write_summary
from .metrics import compute_metrics, default_metrics
from .trainer import SGDOptimizer, Trainer

logger = logging.getLogger(__name__)

_PRESETS: Dict[str, Mapping[str, object]] = {
    "sine-tanh": {
        "data": {"name": "sine", "options": {"freq": 1.0, "n_points": 256, "seed": 0}},
        "model": {
            "layers": [
                {"type": "linear", "outputs": 16},
                {"type": "tanh"},
                {"type": "linear", "outputs": 1},
            ]
        },
        "train": {
            "epochs": 20,
            "batch_size": 4,
            "seed": 7,
            "lr": 0.05,
            "loss": "mse",
            "metrics": ["mse", "mae"],
            "run_dir": "runs/sine-tanh",
            "enable_plots": False,
        },
    },
    "blobs-maxout": {
        "data": {"name": "blobs", "options": {"n_classes": 3, "seed": 0}},
        "model": {
            "layers": [
                {"type": "maxout", "outputs": 8},
                {"type": "linear", "outputs": 3},
                {"type": "logistic"},
            ]
        },
        "train": {
            "epochs": 15,
            "batch_size": 1,
            "seed": 3,
            "lr": 0.05,
            "momentum": 0.5,
            "loss": "mse",
            "metrics": ["mse", "accuracy"],
            "run_dir": "runs/blobs-maxout",
            "enable_plots": False,
        },
    },
}

_PRESET_DIR = Path(__file__).resolve().parents[2] / "configs" / "presets"
_FILE_PRESETS_CACHE: Dict[str, Mapping[str, object]] | None = None


def _read_preset_file(path: Path) -> Mapping[str, object]:
    text = path.read_text()
    suffix = path.suffix.lower()
    if suffix in {".yaml", ".yml"}:
        try:
            import yaml
        except ImportError as exc:  # pragma: no cover - declared dependency
            raise RuntimeError("PyYAML is required to load preset files in YAML format") from exc
        data = yaml.safe_load(text) or {}
    elif suffix == ".json":
        data = json.loads(text or "{}")
    else:
        raise ValueError(f"Unsupported preset file type: {path.suffix}")

    if not isinstance(data, Mapping):
        raise TypeError(f"Preset {path.name} must decode to a mapping")
    return data


def _file_presets() -> Dict[str, Mapping[str, object]]:
    global _FILE_PRESETS_CACHE
    if _FILE_PRESETS_CACHE is None:
        found: Dict[str, Mapping[str, object]] = {}
        if _PRESET_DIR.exists():
            for file in sorted(_PRESET_DIR.iterdir()):
                if file.suffix.lower() not in {".yaml", ".yml", ".json"}:
                    continue
                data = _read_preset_file(file)
                missing = {"data", "model", "train"} - set(data)
                if missing:
                    missing_str = ", ".join(sorted(missing))
                    raise KeyError(f"Preset {file.name} is missing required sections: {missing_str}")
                found[file.stem] = json.loads(json.dumps(data))
        _FILE_PRESETS_CACHE = found
    return {name: deepcopy(cfg) for name, cfg in _FILE_PRESETS_CACHE.items()}


def presets() -> Mapping[str, Mapping[str, object]]:
    combined: Dict[str, Mapping[str, object]] = {}
    combined.update({name: deepcopy(cfg) for name, cfg in _PRESETS.items()})
    combined.update(_file_presets())
    return combined


def load_preset(name: str) -> Mapping[str, object]:
    file_presets = _file_presets()
    if name in file_presets:
        return file_presets[name]
    if name not in _PRESETS:
        available = ", ".join(sorted(presets()))
        raise KeyError(f"Unknown preset {name!r}. Available presets: {available}")
    return deepcopy(_PRESETS[name])


# ----------------------------------------------------------------------
# Network construction


def _pooling(cls: type) -> Callable[[Mapping[str, Any]], Layer]:
    return lambda cfg: cls(int(cfg.get("inputs", 0)))


def _conv2(cfg: Mapping[str, Any]) -> Layer:
    stride = _pair(cfg.get("stride", 1))
    padding = _pair(cfg.get("padding", 0))
    geometry = {
        "stride_x": stride[0],
        "stride_y": stride[-1],
        "padding_x": padding[0],
        "padding_y": padding[-1],
    }
    if "width" in cfg:
        layer = Convolutional2D(
            int(cfg["width"]),
            int(cfg["height"]),
            int(cfg.get("channels", 1)),
            int(cfg["k_width"]),
            int(cfg["k_height"]),
            int(cfg.get("k_count", 1)),
            **geometry,
        )
    else:
        layer = Convolutional2D(
            0,
            0,
            0,
            int(cfg["k_width"]),
            int(cfg["k_height"]),
            int(cfg.get("k_count", 1)),
            **geometry,
        )
    if "interlaced" in cfg:
        flags = cfg["interlaced"]
        layer.set_interlaced(bool(flags["input"]), bool(flags["kernels"]), bool(flags["output"]))
    return layer


def _pair(value: Any) -> Sequence[int]:
    if isinstance(value, (list, tuple)):
        return [int(v) for v in value]
    return [int(value)]


_BUILDERS: Dict[LayerKind, Callable[[Mapping[str, Any]], Layer]] = {
    LayerKind.LINEAR: lambda cfg: Linear(int(cfg.get("outputs", 0)), int(cfg.get("inputs", 0))),
    LayerKind.MAXOUT: lambda cfg: MaxOut(int(cfg.get("outputs", 0)), int(cfg.get("inputs", 0))),
    LayerKind.RBM: lambda cfg: RestrictedBoltzmannMachine(
        int(cfg.get("outputs", 0)), int(cfg.get("inputs", 0))
    ),
    LayerKind.PRODUCT_POOLING: _pooling(ProductPooling),
    LayerKind.ADDITION_POOLING: _pooling(AdditionPooling),
    LayerKind.CONV1D: lambda cfg: Convolutional1D(
        int(cfg["input_samples"]),
        int(cfg.get("input_channels", 1)),
        int(cfg["kernel_size"]),
        int(cfg.get("kernels_per_channel", 1)),
    ),
    LayerKind.CONV2D: _conv2,
    LayerKind.MAX_POOLING_2D: lambda cfg: MaxPooling2D(
        int(cfg["input_cols"]),
        int(cfg["input_rows"]),
        int(cfg.get("input_channels", 1)),
        int(cfg.get("region_size", 2)),
    ),
}


def build_layer(cfg: Mapping[str, Any]) -> Layer:
    """Construct one layer from a config such as ``{"type": "linear", "outputs": 3}``."""

    if "type" not in cfg:
        raise KeyError("Layer config is missing 'type'")
    try:
        kind = LayerKind(str(cfg["type"]))
    except ValueError as exc:
        available = ", ".join(sorted(k.value for k in LayerKind))
        raise ValueError(f"Unknown layer type {cfg['type']!r}. Available: {available}") from exc
    if kind in ACTIVATION_KINDS:
        return ActivationLayer(kind, int(cfg.get("size", 0)))
    return _BUILDERS[kind](cfg)


def build_network(
    model_cfg: Mapping[str, Any],
    *,
    rand: np.random.Generator | None = None,
    learning_rate: float = 0.1,
) -> NeuralNet:
    """Assemble (but do not size) a network from ``model_cfg["layers"]``."""

    layer_cfgs = model_cfg.get("layers")
    if not layer_cfgs:
        raise ValueError("Model config must list at least one layer under 'layers'")
    network = NeuralNet(rand, learning_rate=learning_rate)
    for cfg in layer_cfgs:
        network.add_layer(build_layer(cfg))
    return network


# ----------------------------------------------------------------------
# Runs


def run_pipeline(config: Mapping[str, object]) -> RunResult:
    """Train one network end to end and write its artifacts under ``train.run_dir``."""

    data_cfg = dict(config["data"])  # type: ignore[arg-type]
    model_cfg = dict(config["model"])  # type: ignore[arg-type]
    train_cfg = dict(config["train"])  # type: ignore[arg-type]

    seed = int(train_cfg.get("seed", 0))
    rand = seed_everything(seed)
    dataset = registry.get_dataset(str(data_cfg["name"]), **dict(data_cfg.get("options", {})))
    spec = dataset.data_spec

    lr = float(train_cfg.get("lr", 0.1))
    network = build_network(model_cfg, rand=rand, learning_rate=lr)
    network.begin_incremental_learning(spec.d_in, spec.d_out)

    loss_name = str(train_cfg.get("loss", "mse"))
    metric_names = list(train_cfg.get("metrics") or default_metrics(spec.task_type))
    run_dir = _resolve_run_dir(train_cfg, dataset.name)
    run_dir.mkdir(parents=True, exist_ok=True)
    logger.info(
        "Run %s: dataset=%s splits=%s loss=%s metrics=%s weights=%d",
        run_dir,
        dataset.name,
        dataset.splits,
        loss_name,
        ",".join(metric_names),
        network.count_weights(),
    )
    logger.debug("Network:\n%r", network)

    sha = git_sha()
    sink_fields = {"seed": seed, "sha": sha}
    train_jsonl = JsonlSink(run_dir / "metrics_train.jsonl", split="train", **sink_fields)
    train_csv = CsvSink(run_dir / "metrics_train.csv", split="train", **sink_fields)
    val_jsonl = JsonlSink(run_dir / "metrics_val.jsonl", split="val", **sink_fields)
    val_csv = CsvSink(run_dir / "metrics_val.csv", split="val", **sink_fields)
    plots = PlotAdapter(run_dir, enable_plots=bool(train_cfg.get("enable_plots", False)))
    split_loggers = {
        "train": [train_jsonl, train_csv, plots.for_split("train")],
        "val": [val_jsonl, val_csv, plots.for_split("val")],
    }

    optimizer = SGDOptimizer(
        network,
        learning_rate=lr,
        momentum=float(train_cfg.get("momentum", 0.0)),
        loss=loss_name,
    )
    trainer = Trainer(network, optimizer, rand=rand)
    train_x, train_y = dataset.split("train")
    validation = dataset.split("val") if dataset.splits["val"] > 0 else None
    result = trainer.run(
        train_x,
        train_y,
        epochs=int(train_cfg.get("epochs", 1)),
        batch_size=int(train_cfg.get("batch_size", 1)),
        validation=validation,
        window_epochs=int(train_cfg.get("window_epochs", 0)),
        min_window_improvement=float(train_cfg.get("min_window_improvement", 0.0)),
        split_loggers=split_loggers,
        metric_names=metric_names,
    )
    plots.close()

    test_metrics: Dict[str, float] = {}
    if dataset.splits["test"] > 0:
        test_x, test_y = dataset.split("test")
        predictions = network.feed_through(test_x)
        test_metrics["loss"] = optimizer.loss(predictions, test_y)[0]
        test_metrics.update(compute_metrics(metric_names, predictions, test_y))
    (run_dir / "metrics_test.json").write_text(json.dumps(test_metrics, indent=2))

    safe_config = json.loads(json.dumps(config))
    model_path = save_network(network, run_dir / "model.json")
    manifest = write_manifest(
        run_dir / "manifest.json",
        config=safe_config,
        dataset_provenance=dataset.provenance,
        network={
            "layers": [layer.kind.value for layer in network.layers],
            "weights": network.count_weights(),
            "best_epoch": result.best_epoch,
            "stopped_early": result.stopped_early,
        },
    )
    summary_path = write_summary(
        run_dir / "summary.json",
        {"train": train_jsonl.path, "val": val_jsonl.path},
        result=result,
        tail=int(train_cfg.get("summary_tail", 32)),
    )
    (run_dir / "config.json").write_text(json.dumps(safe_config, indent=2))
    logger.info(
        "Run finished after %d epochs (best epoch %d, loss %.6f)",
        result.epochs,
        result.best_epoch,
        result.best_loss,
    )

    return RunResult(
        epochs=result.epochs,
        metrics_path=str(train_jsonl.path),
        manifest_path=manifest,
        summary_path=summary_path,
        model_path=model_path,
    )


def _resolve_run_dir(train_cfg: Mapping[str, object], dataset: str) -> Path:
    if "run_dir" in train_cfg:
        return Path(str(train_cfg["run_dir"]))
    timestamp = time.strftime("%Y%m%d-%H%M%S")
    return Path("runs") / timestamp / dataset


__all__ = ["build_layer", "build_network", "load_preset", "presets", "run_pipeline"]
