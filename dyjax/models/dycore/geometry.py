#!/usr/bin/env python3
"""
Geometry of the spectral model: grids, quadrature and transform tables.

A Geometry is built once per run from Config and Constants and shared by
every component. It is frozen after construction.

Based on SPEEDY geometry.f90 and legendre.f90, with Gaussian quadrature and
associated Legendre functions from pyshtools.
"""

import logging
import jax
import jax.numpy as jnp
import numpy as np
import pyshtools as pysh

from .state import Config
from .constants import Constants
from .errors import ConfigurationError
from .spectral import SpectralLayout, layout
from .vertical import VerticalGrid

logger = logging.getLogger(__name__)

def check_grid_size(trunc: int, nlon: int, nlat: int) -> None:
    """
    Gaussian-grid sizing rule for alias-free quadratic terms at truncation T:
    nlon >= 2*(floor(3T/2)+1) and nlat >= floor(3T/2)+1. The vector layout at
    T+1 additionally needs nlon > 2*(T+1) to stay below the Nyquist wavenumber.
    """
    t3 = (3 * trunc) // 2 + 1
    if nlon < 2 * t3 or nlon <= 2 * (trunc + 1):
        raise ConfigurationError(
            f"nlon={nlon} is too small for T{trunc}: need nlon >= {max(2 * t3, 2 * trunc + 3)}")
    if nlat < t3:
        raise ConfigurationError(
            f"nlat={nlat} is too small for T{trunc}: need nlat >= {t3}")

def epsilon(m, n) -> np.ndarray:
    """
    Recursion coefficient eps(m, n) = sqrt((n^2 - m^2) / (4 n^2 - 1)),
    zero where n <= m or n == 0.
    """
    m = np.asarray(m, dtype=np.float64)
    n = np.asarray(n, dtype=np.float64)
    denom = np.where(n > 0, 4.0 * n**2 - 1.0, 1.0)
    return np.where(n > m, np.sqrt(np.maximum(n**2 - m**2, 0.0) / denom), 0.0)

class Geometry:
    """
    Immutable spherical geometry and transform tables.

    Attributes:
        config, constants: Inputs the geometry was built from
        trunc, nlon, nlat, nlev: Resolution
        NF, CNF: Real and complex dtypes of all model arrays
        radius: Planet radius (m)
        layout: Triangular layout at T (prognostic fields)
        vlayout: Triangular layout at T+1 (vector components, meridional derivatives)
        vindex: Offsets of layout entries inside vlayout
        sinlat, weights: Gaussian nodes and weights, south to north
        lat, lon: Latitudes and longitudes in degrees
        coslat, coriolis: cos(lat) and 2*Omega*sin(lat) per latitude
        legendre: Orthonormal associated Legendre functions [vlayout.size, nlat]
        legendre_weighted: legendre times quadrature weights
        vertical: VerticalGrid
    """

    def __init__(self, config: Config, constants: Constants = None):
        if constants is None:
            constants = Constants()
        self.config = config
        self.constants = constants

        self.trunc = config.trunc
        self.nlon = config.nlon
        self.nlat = config.nlat
        self.nlev = config.nlev
        self.radius = constants.rearth

        check_grid_size(self.trunc, self.nlon, self.nlat)

        self.NF = jnp.dtype(config.NF)
        self.CNF = jnp.dtype(config.CNF)
        if jax.dtypes.canonicalize_dtype(self.NF) != self.NF:
            raise ConfigurationError(
                f"Number format {config.NF} needs jax_enable_x64; "
                f"call jax.config.update('jax_enable_x64', True) before building the model")

        # ====================================================================
        # Spectral layouts
        # ====================================================================

        self.layout: SpectralLayout = layout(self.trunc)
        self.vlayout: SpectralLayout = layout(self.trunc + 1)
        self.vindex = self.layout.positions_in(self.vlayout)

        # ====================================================================
        # Horizontal grid
        # ====================================================================

        mu, weights = self._setup_gaussian_grid()
        self._sinlat = mu
        self._weights = weights
        self.sinlat = jnp.asarray(mu, dtype=self.NF)
        self.weights = jnp.asarray(weights, dtype=self.NF)
        self.lat = np.degrees(np.arcsin(mu))
        self.lon = np.linspace(0.0, 360.0, self.nlon, endpoint=False)
        self.coslat = jnp.asarray(np.sqrt(1.0 - mu**2), dtype=self.NF)
        self.coriolis = jnp.asarray(2.0 * constants.omega * mu, dtype=self.NF)

        # ====================================================================
        # Legendre tables
        # ====================================================================

        table = self._setup_legendre_polynomials(mu)
        self._legendre = table
        self.legendre = jnp.asarray(table, dtype=self.NF)
        self.legendre_weighted = jnp.asarray(table * weights[np.newaxis, :], dtype=self.NF)

        # ====================================================================
        # Vertical grid
        # ====================================================================

        self.vertical = VerticalGrid(self.nlev, constants)

        self._frozen = True
        logger.debug("Geometry T%d: %dx%d grid, %d levels, %s",
                     self.trunc, self.nlon, self.nlat, self.nlev, self.NF)

    def __setattr__(self, name, value):
        if getattr(self, '_frozen', False):
            raise AttributeError(f"Geometry is immutable, cannot set '{name}'")
        super().__setattr__(name, value)

    def __delattr__(self, name):
        raise AttributeError(f"Geometry is immutable, cannot delete '{name}'")

    # ========================================================================
    # Setup
    # ========================================================================

    def _setup_gaussian_grid(self):
        """
        Gaussian nodes mu = sin(lat) and weights from pyshtools, sorted
        south to north. The weights integrate over mu in [-1, 1] and sum to 2.
        """
        nodes, weights = pysh.expand.SHGLQ(self.nlat - 1)
        order = np.argsort(nodes)
        return np.asarray(nodes)[order], np.asarray(weights)[order]

    def _setup_legendre_polynomials(self, mu: np.ndarray) -> np.ndarray:
        """
        Associated Legendre functions on vlayout, orthonormal in mu:
        int_{-1}^{1} P_n^m P_n'^m dmu = delta(n, n').

        pyshtools' 4pi-normalised PlmBar (no Condon-Shortley phase) integrates
        to 2(2 - delta_m0) over mu, hence the rescaling.
        """
        vl = self.vlayout
        lmax = vl.trunc
        pidx = vl.n * (vl.n + 1) // 2 + vl.m
        norm = np.sqrt(2.0 * (2.0 - (vl.m == 0)))

        table = np.empty((vl.size, mu.size))
        for j, z in enumerate(mu):
            p = pysh.legendre.PlmBar(lmax, z, cnorm=0, csphase=1)
            table[:, j] = p[pidx] / norm
        return table

    # ========================================================================
    # Helpers
    # ========================================================================

    def epsilon(self, m, n) -> np.ndarray:
        return epsilon(m, n)

    def zeros_spectral(self, nlev: int = None, vector: bool = False) -> jax.Array:
        size = self.vlayout.size if vector else self.layout.size
        shape = (size,) if nlev is None else (size, nlev)
        return jnp.zeros(shape, dtype=self.CNF)

    def zeros_grid(self, nlev: int = None) -> jax.Array:
        shape = (self.nlon, self.nlat) if nlev is None else (self.nlon, self.nlat, nlev)
        return jnp.zeros(shape, dtype=self.NF)

    def __repr__(self) -> str:
        return (f"Geometry(T{self.trunc}, {self.nlon}x{self.nlat} grid, "
                f"{self.nlev} levels, NF={self.NF})")
