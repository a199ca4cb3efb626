#!/usr/bin/env python3
"""
Horizontal hyperdiffusion of the prognostic fields.

Backward implicit damping of the tendencies:
    F_t <- (F_t - dmp * F_past) / (1 + dmp * dt_s)
with dmp ~ (n(n+1)/T(T+1))^npowhd, an orographic correction of
temperature, zonal-mean drag and extra del^2 diffusion on the top level.

Based on SPEEDY horizontal_diffusion.f90 and time_stepping.f90
"""

import jax
import jax.numpy as jnp
import numpy as np
from functools import partial

from .state import Config, SpectralState
from .geometry import Geometry

class HorizontalDiffusion:
    """
    Damping coefficients on the T layout and their application.

    Uses del^(2*npowhd) hyperdiffusion for:
    - Vorticity and temperature: thd timescale
    - Divergence and humidity: thdd timescale
    - Stratospheric extra del^2 diffusion on the top level: thds timescale
    - Stratospheric drag of the top-level zonal mean: tdrs timescale
    """

    def __init__(self, config: Config, geometry: Geometry, phis: jax.Array):
        """
        Args:
            config: Config with diffusion timescales (hours)
            geometry: Geometry (layout and vertical grid)
            phis: Spectral truncated surface geopotential [nlm]
        """
        self.config = config
        self.geometry = geometry
        NF = geometry.NF
        trunc = config.trunc
        lay = geometry.layout

        hdiff = 1.0 / (config.thd * 3600.0)
        hdifd = 1.0 / (config.thdd * 3600.0)
        hdifs = 1.0 / (config.thds * 3600.0)

        # Normalised Laplacian eigenvalue n(n+1) / T(T+1)
        n = lay.n.astype(np.float64)
        elap = n * (n + 1.0) / float(trunc * (trunc + 1))
        elapn = elap ** config.npowhd

        self.dmp = jnp.asarray(hdiff * elapn, dtype=NF)
        self.dmpd = jnp.asarray(hdifd * elapn, dtype=NF)
        self.dmps = jnp.asarray(hdifs * elap, dtype=NF)
        self.sdrag = 1.0 / (config.tdrs * 3600.0)
        self.zonal = jnp.asarray(lay.m == 0)

        # Orographic temperature correction t + tcorh (x) tcorv
        constants = geometry.constants
        vertical = geometry.vertical
        k = np.arange(vertical.nlev)
        tcorv = np.where(k >= 1, vertical.fsg ** vertical.rgam, 0.0)
        gamlat = constants.gamma / (1000.0 * constants.grav)
        self.tcorv = jnp.asarray(tcorv, dtype=NF)
        self.tcorh = gamlat * phis

    def corrected_temperature(self, t: jax.Array) -> jax.Array:
        return t + self.tcorh[:, jnp.newaxis] * self.tcorv[jnp.newaxis, :]

    @partial(jax.jit, static_argnums=(0,))
    def apply(self, tend: SpectralState, past: SpectralState, dt: float) -> SpectralState:
        """
        Add horizontal diffusion to tendencies with the backward implicit scheme.

        Application order:
        1. del^(2*npowhd) diffusion of vorticity, divergence and temperature,
           temperature with orographic correction
        2. Stratospheric zonal drag (m=0 entries, top level)
        3. Stratospheric extra del^2 diffusion (top level)
        4. Humidity diffusion with the divergence coefficients

        Args:
            tend: Tendencies [nlm, kx]
            past: State the damping acts on (the leapfrog past level)
            dt: Solver step (dt or 2*dt)

        Returns:
            Tendencies with diffusion added; ps unchanged
        """
        dmp1 = (1.0 / (1.0 + self.dmp * dt))[:, jnp.newaxis]
        dmp1d = (1.0 / (1.0 + self.dmpd * dt))[:, jnp.newaxis]
        dmp1s = 1.0 / (1.0 + self.dmps * dt)
        dmp = self.dmp[:, jnp.newaxis]
        dmpd = self.dmpd[:, jnp.newaxis]

        t_corrected = self.corrected_temperature(past.t)

        vordt = (tend.vor - dmp * past.vor) * dmp1
        divdt = (tend.div - dmpd * past.div) * dmp1d
        tdt = (tend.t - dmp * t_corrected) * dmp1

        # Zonal drag on the top level
        drag = jnp.where(self.zonal, self.sdrag, 0.0).astype(self.dmp.dtype)
        vordt = vordt.at[:, 0].add(-drag * past.vor[:, 0])
        divdt = divdt.at[:, 0].add(-drag * past.div[:, 0])

        # Extra diffusion on the top level
        vordt = vordt.at[:, 0].set((vordt[:, 0] - self.dmps * past.vor[:, 0]) * dmp1s)
        divdt = divdt.at[:, 0].set((divdt[:, 0] - self.dmps * past.div[:, 0]) * dmp1s)
        tdt = tdt.at[:, 0].set((tdt[:, 0] - self.dmps * t_corrected[:, 0]) * dmp1s)

        qdt = (tend.q - dmpd * past.q) * dmp1d

        return SpectralState(vor=vordt, div=divdt, t=tdt, q=qdt, ps=tend.ps)
