"""Pytest configuration: float64 runs on a small T5 model.

Double precision must be switched on before any array is created, so it is
done here at import time rather than in a fixture.
"""

import jax

jax.config.update("jax_enable_x64", True)

import numpy as np
import pytest

from dyjax.models.dycore import Config, DynamicalCore, Geometry
from dyjax.models.dycore.legendre import LegendreTransform
from dyjax.models.dycore.transformer import Transformer

TRUNC = 5
NLEV = 5

@pytest.fixture(scope="session")
def config():
    return Config.create(trunc=TRUNC, nlev=NLEV, NF="float64")

@pytest.fixture(scope="session")
def geometry(config):
    return Geometry(config)

@pytest.fixture(scope="session")
def transformer(geometry):
    return Transformer(geometry, LegendreTransform(geometry))

@pytest.fixture(scope="session")
def core(config):
    return DynamicalCore(config)

@pytest.fixture
def rng():
    return np.random.default_rng(1234)

@pytest.fixture
def random_spectral(rng):
    """Factory of random coefficients of a real field (m = 0 entries real)."""
    def make(geometry, nlev=None, vector=False):
        lay = geometry.vlayout if vector else geometry.layout
        shape = (lay.size,) if nlev is None else (lay.size, nlev)
        coeffs = rng.standard_normal(shape) + 1j * rng.standard_normal(shape)
        zonal = lay.m == 0
        coeffs[zonal] = coeffs[zonal].real
        return coeffs.astype(geometry.CNF)
    return make
