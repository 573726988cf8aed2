"""Headless-safe plotting adapters."""

from __future__ import annotations

from pathlib import Path
from typing import Dict, List, Mapping, Tuple


class PlotAdapter:
    """Collect per-epoch losses for each split and draw them on close."""

    def __init__(self, run_dir: str | Path, enable_plots: bool = False) -> None:
        self.enable_plots = enable_plots
        self.run_dir = Path(run_dir)
        self._history: Dict[str, List[Tuple[int, float]]] = {}
        if self.enable_plots:
            self.run_dir.mkdir(parents=True, exist_ok=True)

    def for_split(self, split: str) -> "_SplitRecorder":
        return _SplitRecorder(self, split)

    def record(self, split: str, epoch: int, metrics: Mapping[str, float]) -> None:
        if not self.enable_plots or "loss" not in metrics:
            return
        self._history.setdefault(split, []).append((int(epoch), float(metrics["loss"])))

    def close(self) -> str | None:
        if not self.enable_plots or not self._history:
            return None
        import matplotlib

        matplotlib.use("Agg", force=True)
        import matplotlib.pyplot as plt  # imported lazily for headless safety

        fig, ax = plt.subplots()
        for split, points in sorted(self._history.items()):
            epochs, losses = zip(*points)
            ax.plot(epochs, losses, label=split)
        ax.set_xlabel("Epoch")
        ax.set_ylabel("Loss")
        ax.set_title("Training Curve")
        ax.legend()
        plot_path = self.run_dir / "loss.png"
        fig.savefig(plot_path)
        plt.close(fig)
        return str(plot_path)


class _SplitRecorder:
    def __init__(self, adapter: PlotAdapter, split: str) -> None:
        self._adapter = adapter
        self._split = split

    def on_epoch(self, epoch: int, metrics: Mapping[str, float]) -> None:
        self._adapter.record(self._split, epoch, metrics)


__all__ = ["PlotAdapter"]
