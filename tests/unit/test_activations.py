import numpy as np
import pytest

from layernet.core import activations
from layernet.core.types import LayerKind

_POINTS = np.array([-2.5, -1.1, -0.3, 0.2, 0.7, 1.9, 3.2])


@pytest.mark.parametrize("name", activations.available_activations())
def test_derivative_matches_finite_difference(name):
    fn = activations.get_activation(name)
    eps = 1e-6
    numeric = (fn(_POINTS + eps) - fn(_POINTS - eps)) / (2 * eps)
    analytic = fn.derivative(_POINTS, fn(_POINTS))
    np.testing.assert_allclose(analytic, numeric, rtol=1e-5, atol=1e-6)


def test_logistic_saturates():
    out = activations.logistic(np.array([-800.0, 0.0, 800.0]))
    np.testing.assert_array_equal(out, [0.0, 0.5, 1.0])


def test_softplus_is_identity_for_large_inputs():
    assert activations.softplus(np.array([600.0]))[0] == 600.0
    assert activations.softplus(np.array([0.0]))[0] == pytest.approx(np.log(2.0))


def test_bent_identity_values():
    assert activations.bent_identity(np.array([0.0]))[0] == pytest.approx(0.0)
    expected = 0.5 * (np.sqrt(4.0 + 0.25) - 0.5) + 2.0
    assert activations.bent_identity(np.array([2.0]))[0] == pytest.approx(expected)


def test_leaky_rectifier_slope():
    out = activations.leaky_rectifier(np.array([-10.0, 3.0]))
    np.testing.assert_allclose(out, [-0.1, 3.0])


def test_softroot_derivative_vanishes_far_out():
    fn = activations.get_activation("softroot")
    x = np.array([2e7, -2e7])
    np.testing.assert_array_equal(fn.derivative(x, fn(x)), [0.0, 0.0])


def test_odd_functions_are_flagged():
    odd = {f for f in activations.available_activations() if activations.get_activation(f).odd}
    assert odd == {"tanh", "sine", "softroot"}
    for name in odd:
        fn = activations.get_activation(name)
        np.testing.assert_allclose(fn(-_POINTS), -fn(_POINTS), atol=1e-12)


def test_unknown_activation_lists_choices():
    with pytest.raises(KeyError, match="tanh"):
        activations.get_activation("swish")
    with pytest.raises(KeyError):
        activations.get_activation(LayerKind.LINEAR)
