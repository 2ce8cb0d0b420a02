"""
Tests for the polynomial basis expansion and lag buffers.
"""
import os
import sys

import numpy as np
import pytest

sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..', 'src')))

from narx_efe.features import backshift, feature_dimension, pol, regressor


class TestPol:
    """Elementwise power basis."""

    @pytest.mark.parametrize("d", [1, 2, 5])
    @pytest.mark.parametrize("p", [1, 2, 3])
    @pytest.mark.parametrize("z", [True, False])
    def test_dimension(self, d, p, z):
        x = np.linspace(-1.0, 2.0, d)
        assert pol(x, degree=p, zero_order=z).shape[0] == d * p + (1 if z else 0)

    def test_powers_are_elementwise_and_ordered(self):
        x = np.array([2.0, -3.0])
        out = np.asarray(pol(x, degree=3, zero_order=True))
        np.testing.assert_allclose(out, [1.0, 2.0, -3.0, 4.0, 9.0, 8.0, -27.0])

    def test_no_constant_without_zero_order(self):
        x = np.array([0.5, 1.5])
        out = np.asarray(pol(x, degree=2, zero_order=False))
        np.testing.assert_allclose(out, [0.5, 1.5, 0.25, 2.25])

    def test_invalid_degree(self):
        with pytest.raises(ValueError):
            pol(np.ones(2), degree=0)

    def test_feature_dimension_helper(self):
        assert feature_dimension(3, degree=1, zero_order=True) == 4
        assert feature_dimension(3, degree=2, zero_order=False) == 6

    def test_regressor_concatenates_outputs_then_inputs(self):
        out = np.asarray(regressor([1.0, 2.0], [3.0], degree=1, zero_order=True))
        np.testing.assert_allclose(out, [1.0, 1.0, 2.0, 3.0])


class TestBackshift:
    """Fixed-capacity FIFO push."""

    def test_push_and_drop_oldest(self):
        x = np.array([1.0, 2.0, 3.0, 4.0])
        out = np.asarray(backshift(x, 9.0))
        assert out[0] == 9.0
        np.testing.assert_array_equal(out[1:], x[:-1])

    def test_random_buffers(self):
        rng = np.random.default_rng(7)
        for n in [1, 2, 6]:
            x = rng.normal(size=n)
            a = float(rng.normal())
            out = np.asarray(backshift(x, a))
            assert out.shape == x.shape
            assert out[0] == a
            np.testing.assert_array_equal(out[1:], x[:-1])

    def test_input_not_mutated(self):
        x = np.array([1.0, 2.0])
        backshift(x, 5.0)
        np.testing.assert_array_equal(x, [1.0, 2.0])

    def test_empty_buffer_stays_empty(self):
        assert np.asarray(backshift(np.zeros(0), 1.0)).shape == (0,)
