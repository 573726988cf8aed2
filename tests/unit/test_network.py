import json

import numpy as np
import pytest

from layernet.core.errors import NetStateError, NotSupportedError, ShapeError
from layernet.core.layers import (
    ActivationLayer,
    AdditionPooling,
    Convolutional1D,
    Convolutional2D,
    Linear,
    MaxOut,
    MaxPooling2D,
    ProductPooling,
)
from layernet.core.network import NeuralNet
from layernet.core.types import NetState


def _mlp(seed=0, hidden="tanh"):
    net = NeuralNet(seed=seed)
    net.add_layer(Linear(5))
    net.add_layer(ActivationLayer(hidden))
    net.add_layer(Linear(3))
    net.add_layer(ActivationLayer("logistic"))
    net.begin_incremental_learning(4, 3)
    return net


def _assert_assembled(net):
    for upstream, layer in zip(net.layers, net.layers[1:]):
        assert upstream.outputs == layer.inputs


def test_flexible_layers_take_their_shape_from_neighbours():
    net = _mlp()
    _assert_assembled(net)
    assert [(layer.inputs, layer.outputs) for layer in net.layers] == [
        (4, 5),
        (5, 5),
        (5, 3),
        (3, 3),
    ]
    assert net.count_weights() == (4 + 1) * 5 + (5 + 1) * 3


def test_last_added_layer_wins_over_earlier_neighbours():
    net = NeuralNet()
    first = net.add_layer(Linear(7, 2))
    net.add_layer(Linear(3, 4))
    assert first.outputs == 4
    _assert_assembled(net)

    middle = Linear(2, 6)
    net.add_layer(middle, position=1)
    assert first.outputs == 6
    assert net.layer(2).inputs == 2
    _assert_assembled(net)


def test_state_machine_guards_forward_prop():
    net = NeuralNet()
    assert net.state is NetState.UNCONFIGURED
    net.add_layer(Linear(2))
    assert net.state is NetState.ASSEMBLING
    with pytest.raises(NetStateError):
        net.forward_prop(np.zeros(3))
    net.begin_incremental_learning(3, 2)
    assert net.state is NetState.READY
    net.train_incremental(np.ones(3), np.zeros(2))
    assert net.state is NetState.TRAINED
    net.add_layer(ActivationLayer("tanh"))
    assert net.state is NetState.ASSEMBLING
    with pytest.raises(NetStateError):
        net.predict(np.zeros(3))


def test_begin_incremental_learning_requires_layers():
    with pytest.raises(NetStateError):
        NeuralNet().begin_incremental_learning(2, 2)


def test_begin_incremental_learning_rejects_fixed_geometry_mismatch():
    net = NeuralNet()
    net.add_layer(MaxPooling2D(4, 4))
    net.add_layer(Linear(2))
    with pytest.raises(ShapeError):
        net.begin_incremental_learning(15, 2)


def test_train_incremental_reduces_error():
    net = _mlp(seed=3)
    x = np.array([0.5, -1.0, 0.25, 2.0])
    y = np.array([1.0, 0.0, 1.0])
    before = np.sum((net.predict(x) - y) ** 2)
    for _ in range(50):
        net.train_incremental(x, y)
    after = np.sum((net.predict(x) - y) ** 2)
    assert after < before


def test_gradient_and_step_match_finite_difference():
    net = _mlp(seed=4)
    x = np.array([0.1, 0.2, -0.3, 0.4])
    y = np.array([0.0, 1.0, 0.0])
    prediction = net.forward_prop(x)
    net.backpropagate(y - prediction)
    gradient = np.zeros(net.count_weights())
    net.update_gradient(x, gradient)

    weights = net.weights()
    eps = 1e-6
    numeric = np.zeros_like(weights)
    for i in range(weights.size):
        for sign in (1.0, -1.0):
            probe = weights.copy()
            probe[i] += sign * eps
            net.set_weights(probe)
            numeric[i] -= sign * 0.5 * np.sum((y - net.predict(x)) ** 2) / (2 * eps)
    net.set_weights(weights)
    np.testing.assert_allclose(gradient, numeric, rtol=1e-4, atol=1e-7)

    net.step(0.01, gradient)
    np.testing.assert_allclose(net.weights(), weights + 0.01 * gradient)


def test_backpropagate_checks_blame_length():
    net = _mlp()
    net.forward_prop(np.zeros(4))
    with pytest.raises(ShapeError):
        net.backpropagate(np.zeros(2))


def test_weights_round_trip_and_copy():
    net = _mlp(seed=1)
    other = _mlp(seed=2)
    assert not np.allclose(net.weights(), other.weights())
    other.copy_weights(net)
    np.testing.assert_array_equal(other.weights(), net.weights())
    with pytest.raises(ShapeError):
        net.set_weights(np.zeros(3))


def test_copy_structure_is_deep():
    net = _mlp(seed=1)
    clone = NeuralNet(seed=9)
    clone.copy_structure(net)
    x = np.array([0.3, 0.1, -0.2, 0.5])
    np.testing.assert_allclose(clone.predict(x), net.predict(x))
    clone.layer(0).weights[0, 0] += 1.0
    assert not np.allclose(clone.predict(x), net.predict(x))


def test_serialize_round_trip_restores_predictions():
    net = _mlp(seed=5)
    doc = json.loads(json.dumps(net.serialize()))
    assert doc["type"] == "neuralnet"
    restored = NeuralNet.deserialize(doc)
    assert restored.state is NetState.READY
    x = np.array([1.0, 0.0, -1.0, 0.5])
    np.testing.assert_allclose(restored.predict(x), net.predict(x))
    assert "Linear" in repr(restored)


def test_swap_nodes_preserves_function():
    net = _mlp(seed=6)
    x = np.array([0.2, 0.4, -0.6, 0.8])
    before = net.predict(x)
    net.swap_nodes(0, 1, 3)
    np.testing.assert_allclose(net.predict(x), before)
    with pytest.raises(NotSupportedError):
        net.swap_nodes(2, 0, 1)


def test_invert_node_requires_odd_activation():
    net = _mlp(seed=7, hidden="tanh")
    x = np.array([0.2, 0.4, -0.6, 0.8])
    before = net.predict(x)
    net.invert_node(0, 2)
    np.testing.assert_allclose(net.predict(x), before)

    logistic_net = _mlp(seed=7, hidden="logistic")
    with pytest.raises(NotSupportedError):
        logistic_net.invert_node(0, 2)


def test_align_recovers_a_permutation():
    reference = _mlp(seed=8)
    shuffled = NeuralNet()
    shuffled.copy_structure(reference)
    shuffled.swap_nodes(0, 0, 4)
    shuffled.swap_nodes(0, 1, 2)
    assert not np.allclose(shuffled.weights(), reference.weights())
    shuffled.align(reference)
    np.testing.assert_allclose(shuffled.weights(), reference.weights())


def test_max_norm_skips_the_output_layer_by_default():
    net = _mlp(seed=9)
    net.scale_weights(100.0)
    net.max_norm(0.0, 1.0)
    hidden = np.linalg.norm(net.layer(0).weights[:-1], axis=0)
    assert np.all(hidden <= 1.0 + 1e-9)
    output = np.linalg.norm(net.layer(2).weights[:-1], axis=0)
    assert np.any(output > 1.0)
    net.max_norm(0.0, 1.0, output_layer=True)
    output = np.linalg.norm(net.layer(2).weights[:-1], axis=0)
    assert np.all(output <= 1.0 + 1e-9)


def test_scale_weights_limits_layer_range():
    net = _mlp(seed=10)
    first, last = net.layer(0).weights.copy(), net.layer(2).weights.copy()
    net.scale_weights(2.0, start_layer=2, layer_count=1)
    np.testing.assert_array_equal(net.layer(0).weights, first)
    np.testing.assert_allclose(net.layer(2).weights, 2.0 * last)
    net.diminish_weights(10.0, start_layer=0, layer_count=1)
    np.testing.assert_array_equal(net.layer(0).weights, 0.0)


def test_perturb_all_weights_is_reproducible():
    a, b = _mlp(seed=11), _mlp(seed=11)
    a.perturb_all_weights(0.1)
    b.perturb_all_weights(0.1)
    np.testing.assert_array_equal(a.weights(), b.weights())


def test_release_layer_returns_ownership():
    net = _mlp()
    layer = net.release_layer(3)
    assert isinstance(layer, ActivationLayer)
    assert net.layer_count == 3
    assert net.state is NetState.ASSEMBLING


def test_stochastic_layers_only_draw_when_asked():
    net = NeuralNet(seed=12)
    net.add_layer(MaxOut(6))
    net.add_layer(ProductPooling())
    net.begin_incremental_learning(4, 3)
    x = np.array([0.5, -0.5, 1.0, 0.1])
    first = net.predict(x)
    np.testing.assert_array_equal(net.predict(x), first)
    net.forward_prop(x, stochastic=True)


def test_convolutional_stack_assembles():
    net = NeuralNet(seed=13)
    net.add_layer(Convolutional2D(6, 6, 1, 3, 3, 2))
    net.add_layer(Convolutional2D.flexible(2, 2, 3))
    net.add_layer(Linear(2))
    net.begin_incremental_learning(36, 2)
    _assert_assembled(net)
    assert net.layer(1).inputs == 4 * 4 * 2
    assert net.predict(np.linspace(0.0, 1.0, 36)).shape == (2,)


def test_rejected_layer_leaves_the_network_untouched():
    net = NeuralNet(seed=14)
    net.add_layer(Convolutional1D(10, 1, 3, 1))
    net.begin_incremental_learning(10, 8)
    x = np.linspace(-1.0, 1.0, 10)
    before = net.predict(x)
    with pytest.raises(ShapeError):
        net.add_layer(MaxPooling2D(4, 4, 1, 2))
    assert net.layer_count == 1
    assert net.state == NetState.READY
    np.testing.assert_array_equal(net.predict(x), before)


def test_rejected_insert_restores_resized_neighbours():
    net = NeuralNet(seed=15)
    net.add_layer(Linear(5))
    net.add_layer(ActivationLayer("tanh"))
    net.add_layer(Convolutional1D(6, 1, 3, 1))
    with pytest.raises(ShapeError):
        net.add_layer(Linear(4, 7), position=2)
    assert [layer.outputs for layer in net.layers] == [6, 6, 4]
    assert net.layer(1).inputs == 6
    assert net.layer(2).inputs == 6


def test_flexible_pair_pooling_can_lead_the_network():
    for pooling in (ProductPooling(), AdditionPooling()):
        net = NeuralNet(seed=16)
        net.add_layer(pooling)
        net.add_layer(Linear(2))
        net.begin_incremental_learning(6, 2)
        assert net.layer(0).inputs == 6
        assert net.layer(0).outputs == 3
        assert net.layer(1).inputs == 3
        assert net.predict(np.ones(6)).shape == (2,)


def test_align_rejects_layers_with_different_inputs():
    first = NeuralNet(seed=17)
    first.add_layers(Linear(3), ActivationLayer("tanh"), Linear(2))
    first.begin_incremental_learning(4, 2)
    second = NeuralNet(seed=18)
    second.add_layers(Linear(3), ActivationLayer("tanh"), Linear(2))
    second.begin_incremental_learning(5, 2)
    with pytest.raises(ShapeError):
        first.align(second)
