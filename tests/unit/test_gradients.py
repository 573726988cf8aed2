"""Finite-difference checks of every layer's delta and backprop computations.

For an injected error vector ``b`` the objective is ``b . activation``; its
gradient with respect to the weights must equal the accumulated deltas, and its
gradient with respect to the input must equal the upstream error.
"""

import numpy as np
import pytest

from layernet.core.layers import (
    ActivationLayer,
    AdditionPooling,
    Convolutional1D,
    Convolutional2D,
    Linear,
    MaxOut,
    ProductPooling,
    RestrictedBoltzmannMachine,
)

EPS = 1e-6


def _objective(layer, x, blame):
    return float(blame @ layer.feed_forward(x))


def _check_weight_gradient(layer, x, rng):
    blame = rng.normal(size=layer.outputs)
    layer.feed_forward(x)
    layer.error[...] = blame
    deltas = np.zeros(layer.count_weights())
    layer.update_deltas(x, deltas)

    base = layer.weights_to_vector()
    numeric = np.zeros_like(base)
    for i in range(base.size):
        probe = base.copy()
        probe[i] += EPS
        layer.vector_to_weights(probe)
        up = _objective(layer, x, blame)
        probe[i] -= 2 * EPS
        layer.vector_to_weights(probe)
        down = _objective(layer, x, blame)
        numeric[i] = (up - down) / (2 * EPS)
    layer.vector_to_weights(base)
    np.testing.assert_allclose(deltas, numeric, rtol=1e-5, atol=1e-6)


def _check_input_gradient(layer, x, rng):
    blame = rng.normal(size=layer.outputs)
    upstream = Linear(layer.inputs, 1)
    upstream.activation[...] = x
    layer.feed_forward(x)
    layer.error[...] = blame
    layer.back_prop_error(upstream)
    analytic = upstream.error.copy()

    numeric = np.zeros_like(x)
    for i in range(x.size):
        probe = x.copy()
        probe[i] += EPS
        up = _objective(layer, probe, blame)
        probe[i] -= 2 * EPS
        down = _objective(layer, probe, blame)
        numeric[i] = (up - down) / (2 * EPS)
    np.testing.assert_allclose(analytic, numeric, rtol=1e-5, atol=1e-6)


def _randomized(layer, rng):
    layer.reset_weights(rng)
    layer.perturb_weights(rng, 0.3)
    return layer


def _conv2(width, height, channels, kw, kh, count, stride=1, padding=0, interlaced=True):
    layer = Convolutional2D(width, height, channels, kw, kh, count)
    layer.set_stride(stride)
    layer.set_padding(padding)
    layer.set_interlaced(interlaced, interlaced, interlaced)
    return layer


_WEIGHTED = {
    "linear": lambda: Linear(3, 4),
    "maxout": lambda: MaxOut(3, 4),
    "rbm": lambda: RestrictedBoltzmannMachine(3, 4),
    "conv1": lambda: Convolutional1D(6, 2, 3, 2),
    "conv2": lambda: _conv2(4, 4, 2, 3, 3, 2),
    "conv2-strided-padded": lambda: _conv2(5, 5, 1, 3, 3, 2, stride=2, padding=1),
    "conv2-planar": lambda: _conv2(4, 3, 2, 2, 2, 3, interlaced=False),
}


@pytest.mark.parametrize("name", sorted(_WEIGHTED))
def test_update_deltas_matches_finite_difference(name):
    rng = np.random.default_rng(11)
    layer = _randomized(_WEIGHTED[name](), rng)
    x = rng.normal(size=layer.inputs)
    _check_weight_gradient(layer, x, rng)


@pytest.mark.parametrize("name", sorted(_WEIGHTED))
def test_back_prop_error_matches_finite_difference(name):
    rng = np.random.default_rng(12)
    layer = _randomized(_WEIGHTED[name](), rng)
    x = rng.normal(size=layer.inputs)
    _check_input_gradient(layer, x, rng)


@pytest.mark.parametrize("kind", ["tanh", "logistic", "softplus", "bentidentity", "sine"])
def test_activation_backprop_matches_finite_difference(kind):
    rng = np.random.default_rng(13)
    layer = ActivationLayer(kind, 5)
    _check_input_gradient(layer, rng.normal(size=5), rng)


@pytest.mark.parametrize("cls", [ProductPooling, AdditionPooling])
def test_pair_pooling_backprop_matches_finite_difference(cls):
    rng = np.random.default_rng(14)
    layer = cls(6)
    _check_input_gradient(layer, rng.normal(size=6), rng)


def test_update_deltas_accumulates():
    rng = np.random.default_rng(15)
    layer = _randomized(Linear(2, 3), rng)
    x = rng.normal(size=3)
    layer.feed_forward(x)
    layer.error[...] = [1.0, -1.0]
    once = np.zeros(layer.count_weights())
    layer.update_deltas(x, once)
    twice = np.zeros(layer.count_weights())
    layer.update_deltas(x, twice)
    layer.update_deltas(x, twice)
    np.testing.assert_allclose(twice, 2 * once)
