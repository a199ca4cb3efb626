import jax.numpy as jnp
import numpy as np
import pytest

from dyjax.models.dycore.errors import ConfigurationError
from dyjax.models.dycore.spectral import SpectralField, SpectralLayout, layout, take_padded


@pytest.mark.parametrize("trunc", [0, 1, 5, 21])
def test_triangular_size_and_bounds(trunc):
    lay = SpectralLayout(trunc)
    assert lay.size == (trunc + 1) * (trunc + 2) // 2
    assert len(list(lay)) == lay.size
    assert np.all(lay.m <= lay.n)
    assert np.all(lay.n <= trunc)
    assert np.all(lay.m >= 0)


def test_index_matches_enumeration():
    lay = SpectralLayout(7)
    for k, (m, n) in enumerate(lay):
        assert lay.index(m, n) == k


def test_entries_outside_triangle_do_not_exist():
    lay = SpectralLayout(4)
    assert (2, 4) in lay
    assert (3, 2) not in lay
    assert (0, 5) not in lay
    with pytest.raises(IndexError):
        lay.index(3, 2)


def test_neighbours_point_past_end_when_missing():
    lay = SpectralLayout(3)
    up = lay.neighbours(lay, +1)
    down = lay.neighbours(lay, -1)
    assert up[lay.index(1, 3)] == lay.size
    assert down[lay.index(2, 2)] == lay.size
    assert up[lay.index(1, 1)] == lay.index(1, 2)
    assert down[lay.index(0, 3)] == lay.index(0, 2)


def test_take_padded_returns_zero_row():
    coeffs = jnp.arange(1.0, 4.0)
    out = take_padded(coeffs, np.array([2, 3, 0]))
    np.testing.assert_array_equal(np.asarray(out), [3.0, 0.0, 1.0])


def test_restrict_and_extend_between_truncations():
    small, large = layout(2), layout(4)
    coeffs = jnp.arange(small.size, dtype=jnp.complex128) + 1.0
    extended = small.extend(coeffs, large)
    assert extended.shape == (large.size,)
    np.testing.assert_array_equal(np.asarray(small.restrict(extended, large)), np.asarray(coeffs))
    assert complex(extended[large.index(3, 4)]) == 0.0


def test_spectral_field_access_and_arithmetic():
    field = SpectralField.zeros(3, dtype="complex128").set((1, 2), 2.0 + 1.0j)
    assert complex(field[1, 2]) == 2.0 + 1.0j
    doubled = field + field
    assert complex(doubled[1, 2]) == 4.0 + 2.0j
    assert complex((3.0 * field)[1, 2]) == 6.0 + 3.0j
    assert len(field) == 10


def test_spectral_field_rejects_wrong_size_and_mixed_truncations():
    with pytest.raises(ConfigurationError):
        SpectralField(jnp.zeros(7, dtype=jnp.complex128), 3)
    with pytest.raises(ConfigurationError):
        SpectralField.zeros(3) + SpectralField.zeros(4)
