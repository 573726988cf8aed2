"""Per-epoch metric logs written while a network trains."""

from __future__ import annotations

import csv
import json
import math
from pathlib import Path
from typing import Dict, List, Mapping

from .artifacts import git_sha

_HEADER = ("epoch", "split", "seed", "sha")


class _EpochSink:
    """One row per epoch: the header fields, then each metric in name order.

    A metric that diverged to NaN or infinity is recorded as ``None`` so the
    logs stay valid JSON and CSV.
    """

    def __init__(
        self,
        path: str | Path,
        *,
        split: str = "train",
        seed: int | None = None,
        sha: str | None = None,
    ) -> None:
        self.path = Path(path)
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text("")
        self.split = split
        self.seed = seed
        self.sha = sha or git_sha()
        self.epochs_written = 0

    def record(self, epoch: int, metrics: Mapping[str, float]) -> Dict[str, object]:
        row: Dict[str, object] = {
            "epoch": int(epoch),
            "split": self.split,
            "seed": self.seed,
            "sha": self.sha,
        }
        for name in sorted(metrics):
            value = metrics[name]
            if isinstance(value, bool) or not isinstance(value, (int, float)):
                continue
            row[name] = float(value) if math.isfinite(value) else None
        return row

    def on_epoch(self, epoch: int, metrics: Mapping[str, float]) -> None:
        self._write(self.record(epoch, metrics))
        self.epochs_written += 1

    __call__ = on_epoch

    def _write(self, row: Mapping[str, object]) -> None:
        raise NotImplementedError


class JsonlSink(_EpochSink):
    """Append each epoch as one JSON object per line."""

    def _write(self, row: Mapping[str, object]) -> None:
        with self.path.open("a", encoding="utf-8") as handle:
            handle.write(json.dumps(row) + "\n")


class CsvSink(_EpochSink):
    """Write epochs as CSV; the columns are fixed by the first epoch written."""

    def __init__(self, path: str | Path, **kwargs: object) -> None:
        super().__init__(path, **kwargs)  # type: ignore[arg-type]
        self.columns: List[str] = []

    def _write(self, row: Mapping[str, object]) -> None:
        first = not self.columns
        if first:
            self.columns = list(_HEADER) + [name for name in row if name not in _HEADER]
        with self.path.open("a", encoding="utf-8", newline="") as handle:
            writer = csv.DictWriter(
                handle, fieldnames=self.columns, restval="", extrasaction="ignore"
            )
            if first:
                writer.writeheader()
            writer.writerow(row)


def read_jsonl(path: str | Path) -> List[Dict[str, object]]:
    """Load the rows written by :class:`JsonlSink`; a missing file has none."""

    path = Path(path)
    if not path.exists():
        return []
    return [json.loads(line) for line in path.read_text().splitlines() if line.strip()]


__all__ = ["CsvSink", "JsonlSink", "read_jsonl"]
