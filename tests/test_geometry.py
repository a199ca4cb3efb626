import numpy as np
import pytest

from dyjax.models.dycore import Config, ConfigurationError, Constants, Geometry
from dyjax.models.dycore.geometry import check_grid_size, epsilon
from dyjax.models.dycore.vertical import VerticalGrid


def test_gaussian_grid(geometry):
    mu = np.asarray(geometry.sinlat)
    assert mu.shape == (geometry.nlat,)
    assert np.all(np.diff(mu) > 0)
    np.testing.assert_allclose(np.sum(np.asarray(geometry.weights)), 2.0, rtol=1e-12)
    np.testing.assert_allclose(mu, -mu[::-1], atol=1e-14)
    assert geometry.lon.shape == (geometry.nlon,)


def test_legendre_functions_are_orthonormal(geometry):
    table = np.asarray(geometry.legendre)
    weights = np.asarray(geometry.weights)
    vl = geometry.vlayout
    for m in range(vl.trunc + 1):
        rows = table[vl.m == m]
        gram = (rows * weights) @ rows.T
        np.testing.assert_allclose(gram, np.eye(rows.shape[0]), atol=1e-12)


def test_epsilon():
    np.testing.assert_allclose(epsilon(0, 1), np.sqrt(1.0 / 3.0))
    assert epsilon(2, 2) == 0.0
    assert epsilon(0, 0) == 0.0


def test_geometry_is_frozen(geometry):
    with pytest.raises(AttributeError):
        geometry.nlat = 3


@pytest.mark.parametrize("trunc, nlon, nlat", [(5, 12, 10), (5, 20, 6), (21, 60, 32)])
def test_undersized_grids_are_rejected(trunc, nlon, nlat):
    with pytest.raises(ConfigurationError):
        check_grid_size(trunc, nlon, nlat)
    with pytest.raises(ConfigurationError):
        Geometry(Config.create(trunc=trunc, nlon=nlon, nlat=nlat, nlev=5, NF="float64"))


def test_default_grid_sizes_are_valid():
    for trunc in (5, 21, 30, 42):
        config = Config.create(trunc=trunc)
        check_grid_size(trunc, config.nlon, config.nlat)


def test_unknown_number_format():
    with pytest.raises(ConfigurationError):
        Config.create(trunc=5, NF="float16")
    with pytest.raises(ValueError):
        Config.create(trunc=5, NF="bfloat16")


def test_vertical_grid():
    vertical = VerticalGrid(5, Constants())
    assert vertical.hsg[-1] == 1.0
    np.testing.assert_allclose(np.sum(vertical.dhs), 1.0 - vertical.hsg[0])
    assert np.all(vertical.tref > 0)
    with pytest.raises(ConfigurationError):
        VerticalGrid(3, hsg=[0.0, 0.5, 0.4, 1.0])
