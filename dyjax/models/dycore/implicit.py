#!/usr/bin/env python3
"""
Semi-implicit solver for gravity wave terms.

The linearised divergence, temperature and surface pressure equations about
the reference profile couple only within one total wavenumber n. Their
vertical coupling matrix B is diagonalised once, B = E diag(lambda) E^-1,
so the implicit solve becomes kx independent scalar divisions per n.

Based on SPEEDY implicit.f90
"""

import logging
import jax
import jax.numpy as jnp
import numpy as np
from functools import partial
from typing import Tuple

from .state import Config
from .constants import Constants
from .errors import ConfigurationError
from .geometry import Geometry
from .vertical import VerticalGrid

logger = logging.getLogger(__name__)

class VerticalModes:
    """
    Vertical normal modes of the reference atmosphere.

    Attributes (numpy, [kx, kx] unless noted):
        xc: Temperature increment due to divergence
        xd: Geopotential increment due to temperature
        xe: Geopotential increment due to divergence (xd @ xc)
        matrix: Gravity wave operator B = R*tref (x) dhs - xe
        eigenvalues: Squared gravity wave speeds [kx], descending
        eigenvectors, inverse: E and E^-1
    """

    def __init__(self, constants: Constants, vertical_grid: VerticalGrid):
        self.constants = constants
        self.vertical_grid = vertical_grid
        self.nlev = vertical_grid.nlev

        self.xc, self.xd, self.xe = self._setup_coupling_matrices()
        self.matrix = np.outer(constants.rgas * vertical_grid.tref, vertical_grid.dhs) - self.xe
        self.eigenvalues, self.eigenvectors, self.inverse = self._decompose(self.matrix)

        logger.debug("Vertical modes: gravity wave speeds %s m/s",
                     np.round(np.sqrt(self.eigenvalues), 1).tolist())

    def _setup_coupling_matrices(self) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
        kx = self.nlev
        akap = self.constants.akap
        rgas = self.constants.rgas
        tref = self.vertical_grid.tref
        dhs = self.vertical_grid.dhs
        fsg = self.vertical_grid.fsg
        hsg = self.vertical_grid.hsg

        # YA: temperature increment due to divergence
        ya = -akap * np.outer(tref, dhs)

        # XA: temperature increment due to log(ps) tendency, bidiagonal
        xa = np.zeros((kx, kx))
        k = np.arange(1, kx)
        xa[k, k - 1] = 0.5 * (akap * tref[k] / fsg[k] - (tref[k] - tref[k - 1]) / dhs[k])
        k = np.arange(kx - 1)
        xa[k, k] = 0.5 * (akap * tref[k] / fsg[k] - (tref[k + 1] - tref[k]) / dhs[k])

        # XB: sigma-dot at lower interfaces due to divergence
        dsum = np.cumsum(dhs)
        rows = np.arange(kx - 1)[:, np.newaxis]
        cols = np.arange(kx)[np.newaxis, :]
        xb = np.zeros((kx, kx))
        xb[:kx - 1, :] = dhs[cols] * dsum[rows] - np.where(cols <= rows, dhs[cols], 0.0)

        xc = ya + xa @ xb

        # XD: hydrostatic integration, diagonal half layer plus full layers below
        xd = np.zeros((kx, kx))
        kk, k1 = np.meshgrid(np.arange(kx), np.arange(kx), indexing='ij')
        below = k1 > kk
        xd[below] = rgas * np.log(hsg[k1[below] + 1] / hsg[k1[below]])
        xd[np.arange(kx), np.arange(kx)] = rgas * np.log(hsg[1:] / fsg)

        return xc, xd, xd @ xc

    def _decompose(self, matrix: np.ndarray) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
        """Eigen-decomposition; eigenvalues must be real and positive."""
        values, vectors = np.linalg.eig(matrix)
        scale = np.max(np.abs(values))
        if np.any(np.abs(values.imag) > 1e-6 * scale) or np.any(values.real <= 0.0):
            raise ConfigurationError(
                f"Reference profile has vertical modes that are not real and positive: {values}")
        order = np.argsort(values.real)[::-1]
        values = values.real[order]
        vectors = vectors.real[:, order]
        return values, vectors, np.linalg.inv(vectors)

class ImplicitSolver:
    """
    Semi-implicit solver for a fixed solver step dt_s.

    Solves, for every total wavenumber n,
        (I + xi^2 n(n+1)/a^2 B) div = divdt + xi n(n+1)/a^2 (xd tdt + R tref psdt)
    with xi = alph * dt_s, then updates psdt and tdt with the implicit
    divergence. Built once per dt_s, then applied at each timestep.
    """

    def __init__(self, config: Config, geometry: Geometry, modes: VerticalModes, dt: float):
        """
        Args:
            config: Model configuration (alph)
            geometry: Geometry (layout, radius, number format)
            modes: VerticalModes of the reference atmosphere
            dt: Solver step, dt for the initial step and 2*dt for leapfrog
        """
        self.config = config
        self.geometry = geometry
        self.modes = modes
        self.dt = float(dt)
        self.xi = config.alph * self.dt

        NF = geometry.NF
        a = geometry.radius
        n = geometry.layout.n.astype(np.float64)
        self.el2 = n * (n + 1.0) / a**2
        vertical = modes.vertical_grid

        self.elz = jnp.asarray(self.xi * self.el2, dtype=NF)
        self.factor = jnp.asarray(
            1.0 / (1.0 + self.xi**2 * np.outer(self.el2, modes.eigenvalues)), dtype=NF)
        self.eigenvectors = jnp.asarray(modes.eigenvectors, dtype=NF)
        self.inverse = jnp.asarray(modes.inverse, dtype=NF)
        self.tref1 = jnp.asarray(vertical.tref1, dtype=NF)
        self.xd = jnp.asarray(modes.xd, dtype=NF)
        self.xc = jnp.asarray(self.xi * modes.xc, dtype=NF)
        self.dhsx = jnp.asarray(self.xi * vertical.dhs, dtype=NF)

    def operator(self, n: int) -> np.ndarray:
        """Full implicit matrix of total wavenumber n."""
        el2 = n * (n + 1.0) / self.geometry.radius**2
        return np.eye(self.modes.nlev) + self.xi**2 * el2 * self.modes.matrix

    @partial(jax.jit, static_argnums=(0,))
    def apply(self, divdt: jax.Array, tdt: jax.Array, psdt: jax.Array) -> Tuple[jax.Array, jax.Array, jax.Array]:
        """
        Apply implicit corrections to tendencies for gravity wave terms.

        Args:
            divdt: Divergence tendency [nlm, kx] (complex)
            tdt: Temperature tendency [nlm, kx] (complex)
            psdt: Log surface pressure tendency [nlm] (complex)

        Returns:
            Updated (divdt, tdt, psdt)
        """
        # Geopotential tendency from temperature and surface pressure
        ye = tdt @ self.xd.T + psdt[:, jnp.newaxis] * self.tref1[jnp.newaxis, :]
        yf = divdt + self.elz[:, jnp.newaxis] * ye

        # Per-mode scalar solve
        modal = (yf @ self.inverse.T) * self.factor
        divdt_new = modal @ self.eigenvectors.T
        divdt_new = divdt_new.at[0, :].set(0.0)

        psdt_new = psdt - divdt_new @ self.dhsx
        tdt_new = tdt + divdt_new @ self.xc.T
        return divdt_new, tdt_new, psdt_new
