"""View a network as a function of one flat weight vector."""

from __future__ import annotations

import numpy as np

from ..core.network import NeuralNet
from ..core.types import Array


class WeightVectorObjective:
    """Sum-squared-error objective over ``features``/``labels``.

    Lets derivative-free optimizers (hill climbers, evolutionary search) treat
    the network's weights as a single point in ``dimensions``-dimensional space.
    """

    def __init__(self, network: NeuralNet, features: Array, labels: Array) -> None:
        self.network = network
        self.features = np.atleast_2d(np.asarray(features, dtype=np.float64))
        self.labels = np.asarray(labels, dtype=np.float64).reshape(self.features.shape[0], -1)

    @property
    def dimensions(self) -> int:
        return self.network.count_weights()

    def init_vector(self) -> Array:
        return self.network.weights()

    def compute_error(self, vector: Array) -> float:
        self.network.set_weights(vector)
        return self.network.sum_squared_error(self.features, self.labels)


__all__ = ["WeightVectorObjective"]
