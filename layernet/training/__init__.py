"""Optimizers, losses, metrics and end-to-end pipelines."""

from .objective import WeightVectorObjective
from .pipelines import build_layer, build_network, load_preset, presets, run_pipeline
from .trainer import SGDOptimizer, Trainer

__all__ = [
    "SGDOptimizer",
    "Trainer",
    "WeightVectorObjective",
    "build_layer",
    "build_network",
    "load_preset",
    "presets",
    "run_pipeline",
]
