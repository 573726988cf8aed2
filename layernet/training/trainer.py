"""Stochastic gradient descent driver and the epoch loop around it."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Mapping, Sequence, Tuple

import numpy as np

from ..core.network import NeuralNet
from ..core.types import Array, TrainingResult
from .losses import REGISTRY as LOSS_REGISTRY
from .metrics import compute_metrics

logger = logging.getLogger(__name__)


class SGDOptimizer:
    """Mini-batch SGD with momentum over a :class:`NeuralNet`.

    One flat gradient buffer is shared across batches. :meth:`begin_batch`
    decays it by ``momentum`` (zeroing it when momentum is 0), each example
    adds its deltas, and :meth:`apply` steps by ``learning_rate / batch_size``.
    """

    def __init__(
        self,
        network: NeuralNet,
        learning_rate: float = 0.1,
        momentum: float = 0.0,
        loss: str = "mse",
    ) -> None:
        self.network = network
        self.learning_rate = float(learning_rate)
        self.momentum = float(momentum)
        self.loss = LOSS_REGISTRY.get(loss)
        self._gradient: Array | None = None

    @property
    def gradient(self) -> Array:
        size = self.network.count_weights()
        if self._gradient is None or self._gradient.shape[0] != size:
            self._gradient = np.zeros(size)
        return self._gradient

    def update_delta(self, x: Array, y: Array) -> None:
        prediction = self.network.forward_prop(x, stochastic=True)
        self.network.backpropagate(self.loss.blame(prediction, y))
        self.network.update_gradient(x, self.gradient)

    def begin_batch(self) -> None:
        self.gradient[...] *= self.momentum

    def apply(self, batch_size: int) -> None:
        self.network.step(self.learning_rate / max(1, batch_size), self.gradient)

    def optimize_batch(
        self, features: Array, labels: Array, indices: Sequence[int] | None = None
    ) -> None:
        if indices is None:
            indices = range(features.shape[0])
        self.begin_batch()
        count = 0
        for i in indices:
            self.update_delta(features[i], labels[i])
            count += 1
        self.apply(count)

    def optimize_incremental(self, x: Array, y: Array) -> None:
        self.begin_batch()
        self.update_delta(x, y)
        self.apply(1)


class Trainer:
    """Run shuffled epochs of :class:`SGDOptimizer` with validation-window stopping."""

    def __init__(
        self,
        network: NeuralNet,
        optimizer: SGDOptimizer,
        callbacks: Sequence[object] | None = None,
        rand: np.random.Generator | None = None,
    ) -> None:
        self.network = network
        self.optimizer = optimizer
        self.callbacks = list(callbacks or [])
        self.rand = rand if rand is not None else network.rand

    def run(
        self,
        features: Array,
        labels: Array,
        *,
        epochs: int,
        batch_size: int = 1,
        validation: Tuple[Array, Array] | None = None,
        validation_portion: float = 0.0,
        window_epochs: int = 0,
        min_window_improvement: float = 0.0,
        split_loggers: Mapping[str, Sequence[object]] | None = None,
        metric_names: Sequence[str] = ("mse",),
        checkpoint_dir: str | Path | None = None,
    ) -> TrainingResult:
        features = np.atleast_2d(np.asarray(features, dtype=np.float64))
        labels = np.asarray(labels, dtype=np.float64).reshape(features.shape[0], -1)
        if batch_size < 1:
            raise ValueError("batch_size must be at least 1")
        if validation is None and validation_portion > 0.0:
            features, labels, validation = self._hold_out(features, labels, validation_portion)
        split_loggers = split_loggers or {}

        best_loss = float("inf")
        best_epoch = 0
        best_weights: Array | None = None
        window_best = float("inf")
        stopped_early = False
        steps = 0
        history = []
        epoch = 0
        logger.info(
            "Training %d rows for up to %d epochs (batch %d, validation %s)",
            features.shape[0],
            epochs,
            batch_size,
            "none" if validation is None else validation[0].shape[0],
        )

        for epoch in range(1, epochs + 1):
            order = self.rand.permutation(features.shape[0])
            for start in range(0, order.shape[0], batch_size):
                self.optimizer.optimize_batch(features, labels, order[start : start + batch_size])
                steps += 1

            train_metrics = self._evaluate(features, labels, metric_names)
            self._emit_epoch("train", epoch, train_metrics, split_loggers)
            record = {"epoch": float(epoch), "loss": train_metrics["loss"]}
            current = train_metrics["loss"]
            if validation is not None:
                val_metrics = self._evaluate(validation[0], validation[1], metric_names)
                self._emit_epoch("val", epoch, val_metrics, split_loggers)
                record["val_loss"] = val_metrics["loss"]
                current = val_metrics["loss"]
            history.append(record)

            if current < best_loss:
                best_loss = current
                best_epoch = epoch
                best_weights = self.network.weights()
                if checkpoint_dir is not None:
                    self._save_checkpoint(Path(checkpoint_dir) / "best.npz", best_weights)

            if validation is not None and window_epochs > 0 and epoch % window_epochs == 0:
                if np.isfinite(window_best):
                    improvement = (window_best - current) / max(abs(window_best), 1e-12)
                    if improvement < min_window_improvement:
                        stopped_early = True
                        logger.info(
                            "Stopping at epoch %d: window improvement %.6f < %.6f",
                            epoch,
                            improvement,
                            min_window_improvement,
                        )
                        break
                window_best = min(window_best, current)

        if checkpoint_dir is not None:
            self._save_checkpoint(Path(checkpoint_dir) / "last.npz", self.network.weights())
        restored_epoch = None
        if best_weights is not None and best_epoch != epoch:
            logger.warning("Restoring weights from epoch %d (loss %.6f)", best_epoch, best_loss)
            self.network.set_weights(best_weights)
            restored_epoch = best_epoch
        return TrainingResult(
            epochs=epoch,
            steps=steps,
            best_epoch=best_epoch,
            best_loss=best_loss,
            stopped_early=stopped_early,
            restored_epoch=restored_epoch,
            history=history,
        )

    # ------------------------------------------------------------------
    # Internal helpers

    def _hold_out(
        self, features: Array, labels: Array, portion: float
    ) -> Tuple[Array, Array, Tuple[Array, Array]]:
        if not 0.0 < portion < 1.0:
            raise ValueError("validation_portion must be in (0, 1)")
        order = self.rand.permutation(features.shape[0])
        n_val = max(1, int(round(portion * features.shape[0])))
        val_idx, train_idx = order[:n_val], order[n_val:]
        return features[train_idx], labels[train_idx], (features[val_idx], labels[val_idx])

    def _evaluate(self, features: Array, labels: Array, metric_names: Sequence[str]) -> dict:
        predictions = self.network.feed_through(features)
        targets = np.asarray(labels, dtype=np.float64).reshape(predictions.shape)
        loss_value, _ = self.optimizer.loss(predictions, targets)
        metrics = {"loss": float(loss_value)}
        metrics.update(compute_metrics(metric_names, predictions, targets))
        return metrics

    def _emit_epoch(
        self,
        split: str,
        epoch: int,
        metrics: Mapping[str, float],
        loggers: Mapping[str, Sequence[object]],
    ) -> None:
        logger.info(
            "epoch %d %s %s",
            epoch,
            split,
            " ".join(f"{name}={value:.6f}" for name, value in sorted(metrics.items())),
        )
        for callback in self.callbacks:
            if hasattr(callback, "on_epoch"):
                callback.on_epoch(epoch, metrics)  # type: ignore[attr-defined]
        for callback in loggers.get(split, []):
            if hasattr(callback, "on_epoch"):
                callback.on_epoch(epoch, metrics)  # type: ignore[attr-defined]
            elif callable(callback):
                callback(epoch, metrics)

    @staticmethod
    def _save_checkpoint(path: Path, weights: Array) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        with path.open("wb") as handle:
            np.savez_compressed(handle, weights=weights)


__all__ = ["SGDOptimizer", "Trainer"]
