"""Deterministic run summaries built from the epoch logs and the training outcome."""

from __future__ import annotations

import json
import math
from pathlib import Path
from typing import Dict, List, Mapping, Sequence, Tuple

import numpy as np

from ..core.types import TrainingResult
from .metrics import read_jsonl

# Metrics where a larger value is better; everything else is minimised.
HIGHER_IS_BETTER = frozenset({"accuracy"})
_NOT_METRICS = frozenset({"epoch", "seed", "split", "sha"})


def _area(y: np.ndarray, x: np.ndarray) -> float:
    trapezoid = getattr(np, "trapezoid", None)
    if callable(trapezoid):
        return float(trapezoid(y, x))
    return float(np.trapz(y, x))


def compute_auc(points: Sequence[float]) -> float:
    """Return the area under ``points`` along an implicit epoch axis."""

    if not points:
        return 0.0
    y = np.asarray(points, dtype=np.float64)
    x = np.arange(len(points), dtype=np.float64)
    return _area(y, x)


def _series(records: Sequence[Mapping[str, object]]) -> Dict[str, List[Tuple[int, float]]]:
    """Group the finite values of every metric as ``(epoch, value)`` pairs."""

    series: Dict[str, List[Tuple[int, float]]] = {}
    for record in records:
        epoch = int(record["epoch"])  # type: ignore[arg-type]
        for name, value in record.items():
            if name in _NOT_METRICS or not isinstance(value, (int, float)):
                continue
            series.setdefault(name, []).append((epoch, float(value)))
    return series


def _describe(name: str, points: List[Tuple[int, float]], tail: int) -> Dict[str, float]:
    epochs = [epoch for epoch, _ in points]
    values = np.asarray([value for _, value in points], dtype=np.float64)
    best = int(np.argmax(values)) if name in HIGHER_IS_BETTER else int(np.argmin(values))
    return {
        "min": float(values.min()),
        "max": float(values.max()),
        "last": float(values[-1]),
        "best": float(values[best]),
        "best_epoch": epochs[best],
        "tail_auc": compute_auc(values[-tail:].tolist()),
    }


def _finite_or_none(value: float) -> float | None:
    return float(value) if math.isfinite(value) else None


def build_summary(
    logs: Mapping[str, Sequence[Mapping[str, object]]],
    result: TrainingResult | None = None,
    *,
    tail: int = 32,
) -> Dict[str, object]:
    """Summarise each split's epoch log and, when given, how training ended."""

    splits: Dict[str, object] = {}
    for split, records in sorted(logs.items()):
        if not records:
            continue
        window = min(tail, len(records))
        splits[split] = {
            "records": len(records),
            "tail_window": window,
            "metrics": {
                name: _describe(name, points, window)
                for name, points in sorted(_series(records).items())
            },
        }
    summary: Dict[str, object] = {"version": 2, "splits": splits}
    if result is not None:
        monitored = "val" if any("val_loss" in r for r in result.history) else "train"
        summary["training"] = {
            "epochs": result.epochs,
            "steps": result.steps,
            "monitored_split": monitored,
            "best_epoch": result.best_epoch,
            "best_loss": _finite_or_none(result.best_loss),
            "stopped_early": result.stopped_early,
            "restored_epoch": result.restored_epoch,
        }
    return summary


def write_summary(
    out_summary_json: str | Path,
    logs: Mapping[str, str | Path],
    *,
    result: TrainingResult | None = None,
    tail: int = 32,
) -> str:
    """Write the summary of the JSONL epoch logs named per split in ``logs``."""

    out_path = Path(out_summary_json)
    out_path.parent.mkdir(parents=True, exist_ok=True)
    records = {split: read_jsonl(path) for split, path in logs.items()}
    summary = build_summary(records, result, tail=tail)
    out_path.write_text(json.dumps(summary, sort_keys=True, indent=2))
    return str(out_path)


__all__ = ["HIGHER_IS_BETTER", "build_summary", "compute_auc", "write_summary"]
