import json

import numpy as np
import pytest

from layernet.core.errors import DeserializationError
from layernet.core.layers import (
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
    deserialize_layer,
    layer_types,
)
from layernet.core.types import LayerKind


def _strided_conv2():
    layer = Convolutional2D(5, 4, 2, 3, 2, 3)
    layer.set_stride(2, 1)
    layer.set_padding(1, 0)
    layer.set_interlaced(False, True, False)
    return layer


_FACTORIES = {
    "linear": lambda: Linear(3, 4),
    "logistic": lambda: ActivationLayer("logistic", 4),
    "productpool": lambda: ProductPooling(6),
    "additionpool": lambda: AdditionPooling(6),
    "maxout": lambda: MaxOut(3, 4),
    "rbm": lambda: RestrictedBoltzmannMachine(3, 4),
    "conv1": lambda: Convolutional1D(8, 2, 3, 2),
    "conv2": _strided_conv2,
    "maxpool2": lambda: MaxPooling2D(4, 6, 3, 2),
}


@pytest.mark.parametrize("name", sorted(_FACTORIES))
def test_serialize_round_trip(name):
    rng = np.random.default_rng(0)
    layer = _FACTORIES[name]()
    if layer.has_weights:
        layer.reset_weights(rng)
    doc = json.loads(json.dumps(layer.serialize()))
    assert doc["type"] == name
    clone = Layer.deserialize(doc)
    assert type(clone) is type(layer)
    assert (clone.inputs, clone.outputs) == (layer.inputs, layer.outputs)
    if layer.has_weights:
        np.testing.assert_array_equal(clone.weights_to_vector(), layer.weights_to_vector())
    x = rng.normal(size=layer.inputs)
    np.testing.assert_allclose(clone.feed_forward(x), layer.feed_forward(x))


def test_every_kind_is_registered():
    assert set(layer_types()) == {kind.value for kind in LayerKind}


def test_document_field_names():
    assert set(Linear(2, 2).serialize()) == {"type", "weights"}
    assert set(RestrictedBoltzmannMachine(2, 2).serialize()) == {
        "type",
        "bias",
        "biasRev",
        "weights",
    }
    assert set(Convolutional1D(4, 1, 2).serialize()) == {
        "type",
        "isam",
        "ichan",
        "osam",
        "kpc",
        "kern",
        "bias",
    }
    assert set(MaxPooling2D(2, 2).serialize()) == {"type", "icol", "irow", "ichan", "size"}
    assert ProductPooling(4).serialize() == {"type": "productpool", "inputs": 4}


@pytest.mark.parametrize(
    "doc",
    [
        {"weights": [[1.0]]},
        {"type": "perceptron"},
        {"type": "linear"},
        {"type": "linear", "weights": "abc"},
        {"type": "linear", "weights": [1.0, 2.0]},
        {"type": "rbm", "bias": [0.0], "biasRev": [0.0, 0.0], "weights": [[1.0]]},
        {"type": "maxpool2", "icol": 3, "irow": 4, "ichan": 1, "size": 2},
        {"type": "productpool", "inputs": 3},
        [1, 2, 3],
    ],
)
def test_malformed_documents_raise(doc):
    with pytest.raises(DeserializationError):
        deserialize_layer(doc)


def test_conv2_document_with_inconsistent_output_size():
    doc = _strided_conv2().serialize()
    doc["outputWidth"] += 1
    with pytest.raises(DeserializationError):
        deserialize_layer(doc)


def _assert_same_layer(clone, layer):
    assert (clone.width, clone.height, clone.channels) == (layer.width, layer.height, layer.channels)
    assert (clone.padding_x, clone.padding_y) == (layer.padding_x, layer.padding_y)
    assert (clone.output_width, clone.output_height) == (layer.output_width, layer.output_height)
    np.testing.assert_array_equal(clone.weights_to_vector(), layer.weights_to_vector())
    x = np.linspace(-1.0, 1.0, layer.inputs)
    np.testing.assert_allclose(clone.feed_forward(x), layer.feed_forward(x))


def test_padded_conv2_larger_kernel_than_input_round_trips():
    layer = Convolutional2D(2, 2, 1, 3, 3, 1, padding_x=1)
    layer.reset_weights(np.random.default_rng(1))
    assert (layer.output_width, layer.output_height) == (2, 2)
    _assert_same_layer(deserialize_layer(json.loads(json.dumps(layer.serialize()))), layer)


def test_flexible_padded_conv2_round_trips():
    upstream = Convolutional2D(4, 4, 1, 3, 3, 2)
    layer = Convolutional2D.flexible(3, 3, 1)
    layer.set_padding(1)
    layer.resize_inputs(upstream)
    layer.reset_weights(np.random.default_rng(2))
    assert (layer.output_width, layer.output_height) == (2, 2)
    _assert_same_layer(deserialize_layer(layer.serialize()), layer)
