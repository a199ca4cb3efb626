#!/usr/bin/env python3
"""
Tendencies of the primitive equations by the transform method.

Implements:
- Inverse transforms of the present level to grid-point variables
- Pointwise nonlinear terms on the grid (advection, Coriolis, energy conversion)
- Forward transforms and flux divergences back to spectral tendencies
- Linear gravity wave terms, kept separate for the semi-implicit solver
- Geopotential calculation (hydrostatic equation)

Based on SPEEDY:
- geopotential.f90
- tendencies.f90
"""

import jax
import jax.numpy as jnp
import numpy as np
from functools import partial
from typing import Optional

from .state import Config, SpectralState, GridVariables, GridTendencies
from .constants import Constants
from .geometry import Geometry
from .transformer import Transformer
from .boundaries import Boundaries

def _integrate_down(increment: jax.Array) -> jax.Array:
    """
    Running sum over the last (level) axis, starting from zero at the model
    top. Returns values on the kx+1 half levels.
    """
    moved = jnp.moveaxis(increment, -1, 0)
    init = jnp.zeros_like(moved[0])

    def scan_level(carry, inc):
        carry = carry + inc
        return carry, carry

    _, stack = jax.lax.scan(scan_level, init, moved)
    return jnp.moveaxis(jnp.concatenate([init[jnp.newaxis], stack], axis=0), 0, -1)

def _half_level_flux(sigdt: jax.Array, field: jax.Array) -> jax.Array:
    """sigdt * (field[k] - field[k-1]) on interior half levels, zero at top and bottom."""
    flux = sigdt[..., 1:-1] * (field[..., 1:] - field[..., :-1])
    pad = [(0, 0)] * (flux.ndim - 1) + [(1, 1)]
    return jnp.pad(flux, pad)

class Dynamics:
    """
    Dynamical tendencies as a three-stage pipeline:

    1. grid_variables: spectral present level -> GridVariables
    2. grid_tendencies: GridVariables -> GridTendencies (pointwise)
    3. spectral_tendencies: GridTendencies -> spectral SpectralState

    compute_tendencies chains the stages and adds parameterization tendencies.
    linear_terms returns the gravity wave terms linearised about the
    reference atmosphere, which the integrator adds at its chosen level.
    """

    def __init__(self, config: Config, constants: Constants, geometry: Geometry,
                 transformer: Transformer, boundaries: Boundaries):
        """
        Args:
            config: Model configuration
            constants: Physical constants
            geometry: Geometry instance
            transformer: Transformer instance
            boundaries: Boundaries (surface geopotential)
        """
        self.config = config
        self.constants = constants
        self.geometry = geometry
        self.transformer = transformer
        self.boundaries = boundaries

        NF = geometry.NF
        vertical = geometry.vertical
        self.nlev = vertical.nlev
        self.hsg = jnp.asarray(vertical.hsg, dtype=NF)
        self.fsg = jnp.asarray(vertical.fsg, dtype=NF)
        self.fsgr = jnp.asarray(vertical.fsgr, dtype=NF)
        self.dhs = jnp.asarray(vertical.dhs, dtype=NF)
        self.dhsr = jnp.asarray(vertical.dhsr, dtype=NF)
        self.tref = jnp.asarray(vertical.tref, dtype=NF)
        self.tref2 = jnp.asarray(vertical.tref2, dtype=NF)
        self.tref3 = jnp.asarray(vertical.tref3, dtype=NF)
        self.xgeop1 = jnp.asarray(vertical.xgeop1, dtype=NF)
        self.xgeop2 = jnp.asarray(vertical.xgeop2, dtype=NF)
        self.coriolis = geometry.coriolis
        self.phis = boundaries.phis
        self._setup_geopotential_correction(vertical)

    def _setup_geopotential_correction(self, vertical):
        """Lapse-rate correction of the zonal-mean geopotential in the free troposphere."""
        kx = self.nlev
        self.zonal_index = np.nonzero(self.geometry.layout.m == 0)[0]
        self.corf_levels = np.arange(1, kx - 1)
        k = self.corf_levels
        corf = vertical.xgeop1[k] * 0.5 * np.log(vertical.hsg[k + 1] / vertical.fsg[k]) / \
            np.log(vertical.fsg[k + 1] / vertical.fsg[k - 1])
        self.corf = jnp.asarray(corf, dtype=self.geometry.NF)

    # ========================================================================
    # Main Public Interface
    # ========================================================================

    @partial(jax.jit, static_argnums=(0,))
    def compute_tendencies(self, state: SpectralState,
                           physics: Optional[GridTendencies] = None,
                           forcing: Optional[SpectralState] = None) -> SpectralState:
        """
        Explicit dynamical tendencies of the present level.

        Args:
            state: Present level
            physics: Grid-point parameterization tendencies [nlon, nlat, kx],
                added before the forward transforms
            forcing: Spectral tendencies, added after the forward transforms

        Returns:
            SpectralState of tendencies (linear gravity wave terms excluded)
        """
        gridvars = self.grid_variables(state)
        gridtend = self.grid_tendencies(gridvars)
        if physics is not None:
            gridtend = gridtend._replace(
                u=gridtend.u + physics.u,
                v=gridtend.v + physics.v,
                t=gridtend.t + physics.t,
                q=gridtend.q + physics.q,
            )
        tend = self.spectral_tendencies(gridtend, gridvars)
        if forcing is not None:
            tend = tend + forcing
        return tend

    # ========================================================================
    # Stage 1: Transform to Grid Space
    # ========================================================================

    @partial(jax.jit, static_argnums=(0,))
    def grid_variables(self, state: SpectralState) -> GridVariables:
        """
        Transform the spectral present level to grid point space.

        Returns:
            GridVariables; vor is absolute vorticity (relative + coriolis)
        """
        tr = self.transformer
        vorg = tr.spec_3d_to_grid(state.vor)
        divg = tr.spec_3d_to_grid(state.div)
        tg = tr.spec_3d_to_grid(state.t)
        qg = tr.spec_3d_to_grid(state.q)

        u_spec, v_spec = tr.vor_div_to_uv(state.vor, state.div)
        ug = tr.spec_3d_to_grid(u_spec, kcos=True, vector=True)
        vg = tr.spec_3d_to_grid(v_spec, kcos=True, vector=True)

        vorg = vorg + self.coriolis[jnp.newaxis, :, jnp.newaxis]
        tanom = tg - self.tref[jnp.newaxis, jnp.newaxis, :]

        # Log surface pressure gradient
        px = tr.spec_to_grid(tr.grad_lon(state.ps), kcos=True)
        py = tr.spec_to_grid(tr.grad_lat(state.ps), kcos=True, vector=True)

        umean = jnp.einsum('ijk,k->ij', ug, self.dhs)
        vmean = jnp.einsum('ijk,k->ij', vg, self.dhs)
        dmean = jnp.einsum('ijk,k->ij', divg, self.dhs)

        return GridVariables(vor=vorg, div=divg, u=ug, v=vg, t=tg, tanom=tanom, q=qg,
                             px=px, py=py, umean=umean, vmean=vmean, dmean=dmean)

    # ========================================================================
    # Stage 2: Grid-Point Tendencies
    # ========================================================================

    @partial(jax.jit, static_argnums=(0,))
    def grid_tendencies(self, gv: GridVariables) -> GridTendencies:
        """
        Nonlinear terms of the primitive equations, pointwise on the grid.

        Returns:
            GridTendencies of u, v, t, q [nlon, nlat, kx] and the surface
            pressure advection ps [nlon, nlat]
        """
        rgas = self.constants.rgas
        akap = self.constants.akap
        dhsr = self.dhsr
        px = gv.px[:, :, jnp.newaxis]
        py = gv.py[:, :, jnp.newaxis]

        # Pressure gradient work relative to the vertical mean wind
        puv = (gv.u - gv.umean[:, :, jnp.newaxis]) * px + (gv.v - gv.vmean[:, :, jnp.newaxis]) * py

        # Sigma-dot for continuity and for pressure advection on half levels
        sigdt = _integrate_down(-self.dhs * (puv + gv.div - gv.dmean[:, :, jnp.newaxis]))
        sigm = _integrate_down(-self.dhs * puv)

        # Winds
        temp_u = _half_level_flux(sigdt, gv.u)
        utend = gv.v * gv.vor - gv.tanom * rgas * px - (temp_u[..., 1:] + temp_u[..., :-1]) * dhsr

        temp_v = _half_level_flux(sigdt, gv.v)
        vtend = -gv.u * gv.vor - gv.tanom * rgas * py - (temp_v[..., 1:] + temp_v[..., :-1]) * dhsr

        # Temperature
        temp_t = _half_level_flux(sigdt, gv.tanom)
        temp_t = temp_t.at[..., 1:-1].add(sigm[..., 1:-1] * (self.tref[1:] - self.tref[:-1]))
        ttend = gv.tanom * gv.div
        ttend = ttend - (temp_t[..., 1:] + temp_t[..., :-1]) * dhsr
        ttend = ttend + self.fsgr * gv.tanom * (sigdt[..., 1:] + sigdt[..., :-1])
        ttend = ttend + self.tref3 * (sigm[..., 1:] + sigm[..., :-1])
        ttend = ttend + akap * (gv.t * puv - gv.tanom * gv.dmean[:, :, jnp.newaxis])

        # Humidity, no vertical advection across the two uppermost interior interfaces
        temp_q = _half_level_flux(sigdt, gv.q)
        temp_q = temp_q.at[..., 1:3].set(0.0)
        qtend = gv.q * gv.div - (temp_q[..., 1:] + temp_q[..., :-1]) * dhsr

        # Surface pressure advection by the vertical mean wind
        pstend = -gv.umean * gv.px - gv.vmean * gv.py

        return GridTendencies(u=utend, v=vtend, t=ttend, q=qtend, ps=pstend)

    # ========================================================================
    # Stage 3: Transform Tendencies to Spectral
    # ========================================================================

    @partial(jax.jit, static_argnums=(0,))
    def spectral_tendencies(self, gt: GridTendencies, gv: GridVariables) -> SpectralState:
        """
        Forward transforms of the grid tendencies plus the terms that are
        divergences of grid products.

        Args:
            gt: Grid-point tendencies (including any parameterizations)
            gv: Grid variables of the present level

        Returns:
            SpectralState of tendencies [nlm, kx], ps [nlm]
        """
        tr = self.transformer

        vordt, divdt = tr.grid_3d_to_vor_div(gt.u, gt.v, kcos=True)

        # Kinetic energy
        ke = 0.5 * (gv.u**2 + gv.v**2)
        divdt = divdt - tr.laplacian(tr.grid_3d_to_spec(ke))

        # Orographic forcing
        divdt = divdt - tr.laplacian(self.phis)[:, jnp.newaxis]

        # Temperature: -div(u T', v T')
        _, t_advection = tr.grid_3d_to_vor_div(-gv.u * gv.tanom, -gv.v * gv.tanom, kcos=True)
        tdt = tr.grid_3d_to_spec(gt.t) + t_advection

        # Humidity: -div(u q, v q)
        _, q_advection = tr.grid_3d_to_vor_div(-gv.u * gv.q, -gv.v * gv.q, kcos=True)
        qdt = tr.grid_3d_to_spec(gt.q) + q_advection

        psdt = tr.grid_to_spec(gt.ps)
        psdt = psdt.at[0].set(0.0)

        return SpectralState(vor=vordt, div=divdt, t=tdt, q=qdt, ps=psdt)

    # ========================================================================
    # Linear Gravity Wave Terms
    # ========================================================================

    @partial(jax.jit, static_argnums=(0,))
    def linear_terms(self, state: SpectralState) -> SpectralState:
        """
        Terms linear about the reference atmosphere, computed in spectral space.

        Includes:
        - Surface pressure tendency from the vertical mean divergence
        - Vertical advection of the reference temperature
        - Pressure gradient force (geopotential of T and R*tref*lnps) on divergence

        Returns:
            SpectralState with zero vorticity and humidity tendencies
        """
        rgas = self.constants.rgas
        div = state.div

        dmeanc = div @ self.dhs
        psdt = -dmeanc
        psdt = psdt.at[0].set(0.0)

        sigdtc = _integrate_down(-self.dhs * (div - dmeanc[:, jnp.newaxis]))
        sigdtc = sigdtc.at[:, -1].set(0.0)

        temp = jnp.zeros_like(sigdtc)
        temp = temp.at[:, 1:-1].set(sigdtc[:, 1:-1] * (self.tref[1:] - self.tref[:-1]))
        tdt = (-(temp[:, 1:] + temp[:, :-1]) * self.dhsr
               + self.tref3 * (sigdtc[:, 1:] + sigdtc[:, :-1])
               - self.tref2 * dmeanc[:, jnp.newaxis])

        phi = self.geopotential(state.t, surface=False)
        divdt = -self.transformer.laplacian(phi + rgas * self.tref * state.ps[:, jnp.newaxis])

        zeros = jnp.zeros_like(state.vor)
        return SpectralState(vor=zeros, div=divdt, t=tdt, q=jnp.zeros_like(state.q), ps=psdt)

    # ========================================================================
    # Geopotential Calculation
    # ========================================================================

    @partial(jax.jit, static_argnums=(0, 2))
    def geopotential(self, t: jax.Array, surface: bool = True) -> jax.Array:
        """
        Spectral geopotential from spectral temperature.
        Integrates the hydrostatic equation dPhi/d(ln p) = -R*T from the surface.

        Args:
            t: Temperature [nlm, kx]
            surface: Include the surface geopotential phis

        Returns:
            Geopotential [nlm, kx]
        """
        kx = self.nlev
        xgeop1, xgeop2 = self.xgeop1, self.xgeop2

        phi_bottom = xgeop1[kx - 1] * t[:, kx - 1]
        if surface:
            phi_bottom = phi_bottom + self.phis

        def scan_geopotential(phi_below, k):
            phi_k = phi_below + xgeop2[k + 1] * t[:, k + 1] + xgeop1[k] * t[:, k]
            return phi_k, phi_k

        _, phi_stack = jax.lax.scan(scan_geopotential, phi_bottom, jnp.arange(kx - 2, -1, -1))
        phi = jnp.concatenate([phi_stack[::-1].T, phi_bottom[:, jnp.newaxis]], axis=1)

        # Lapse-rate correction, zonal-mean entries only
        if kx > 2:
            k = self.corf_levels
            zi = self.zonal_index
            t_diff = t[zi][:, k + 1] - t[zi][:, k - 1]
            phi = phi.at[zi[:, np.newaxis], k[np.newaxis, :]].add(self.corf * t_diff)

        return phi
