import itertools

import numpy as np
import pytest

from layernet.core.errors import ShapeError
from layernet.core.layers import RestrictedBoltzmannMachine


def _rbm(seed=0, outputs=3, inputs=4):
    layer = RestrictedBoltzmannMachine(outputs, inputs)
    layer.reset_weights(np.random.default_rng(seed))
    return layer


def test_rbm_shapes():
    layer = RestrictedBoltzmannMachine(3, 4)
    assert layer.inputs == 4
    assert layer.outputs == 3
    assert layer.weights.shape == (3, 4)
    assert layer.activation_reverse.shape == (4,)
    assert layer.count_weights() == 3 + 3 * 4


def test_feed_backward_uses_transposed_weights():
    layer = _rbm()
    hidden = np.array([1.0, 0.0, 1.0])
    expected = layer.weights.T @ hidden + layer.bias_reverse
    np.testing.assert_allclose(layer.feed_backward(hidden), expected)
    with pytest.raises(ShapeError):
        layer.feed_backward(np.ones(4))


def test_free_energy_of_blank_machine():
    layer = RestrictedBoltzmannMachine(3, 4)
    assert layer.free_energy(np.ones(4)) == pytest.approx(-3 * np.log(2.0))


def test_free_energy_marginalizes_hidden_units():
    layer = _rbm(seed=5)
    visible = np.array([1.0, 0.0, 1.0, 1.0])
    total = 0.0
    for bits in itertools.product([0.0, 1.0], repeat=layer.outputs):
        hidden = np.array(bits)
        energy = -(layer.bias_reverse @ visible) - layer.bias @ hidden - hidden @ layer.weights @ visible
        total += np.exp(-energy)
    assert layer.free_energy(visible) == pytest.approx(-np.log(total))


def test_resample_hidden_draws_bits():
    layer = RestrictedBoltzmannMachine(3, 2)
    layer.bias[...] = [-1.0, 1.0, 2.0]
    layer.feed_forward(np.zeros(2))
    sample = layer.resample_hidden(np.random.default_rng(0))
    np.testing.assert_array_equal(sample, [0.0, 1.0, 1.0])


def test_resample_visible_draws_bits():
    layer = _rbm(seed=2)
    layer.feed_backward(np.ones(3))
    sample = layer.resample_visible(np.random.default_rng(1))
    assert set(np.unique(sample)) <= {0.0, 1.0}


def test_draw_sample_returns_visible_probabilities():
    layer = _rbm(seed=3)
    sample = layer.draw_sample(np.random.default_rng(4), iterations=5)
    assert sample.shape == (4,)
    assert np.all((sample > 0.0) & (sample < 1.0))
    assert set(np.unique(layer.activation)) <= {0.0, 1.0}


def test_draw_sample_is_reproducible():
    a = _rbm(seed=3).draw_sample(np.random.default_rng(9), iterations=3).copy()
    b = _rbm(seed=3).draw_sample(np.random.default_rng(9), iterations=3).copy()
    np.testing.assert_allclose(a, b)


def test_contrastive_divergence_learns_a_pattern():
    layer = _rbm(seed=7)
    pattern = np.array([1.0, 1.0, 0.0, 0.0])
    rand = np.random.default_rng(8)
    before = layer.free_energy(pattern)
    original = layer.weights.copy()
    for _ in range(300):
        layer.contrastive_divergence(rand, pattern, learning_rate=0.1)
    assert not np.allclose(layer.weights, original)
    assert layer.free_energy(pattern) < before - 1.0
    reconstruction = layer.activation_reverse
    assert np.all(reconstruction[:2] > 0.5)
    assert np.all(reconstruction[2:] < 0.5)


def test_contrastive_divergence_with_longer_chain():
    layer = _rbm(seed=1)
    pattern = np.array([0.0, 1.0, 0.0, 1.0])
    layer.contrastive_divergence(np.random.default_rng(0), pattern, 0.05, gibbs_samples=4)
    assert layer.activation.shape == (3,)
    assert np.all((layer.activation_reverse > 0.0) & (layer.activation_reverse < 1.0))


def test_copy_weights_includes_reverse_bias():
    source = _rbm(seed=4)
    target = RestrictedBoltzmannMachine(3, 4)
    target.copy_weights(source)
    np.testing.assert_allclose(target.weights, source.weights)
    np.testing.assert_allclose(target.bias_reverse, source.bias_reverse)
