#!/usr/bin/env python3
"""
Spectral differential operators and wind conversions.

All operators act on the flat triangular layout and on any trailing level
axes. Operators that couple n-1 and n+1 map the T layout to the T+1 vector
layout or back, so no information is lost at the truncation edge.
Based on SPEEDY spectral.f90
"""

import jax
import jax.numpy as jnp
import numpy as np
from functools import partial
from typing import Tuple

from .geometry import Geometry
from .legendre import LegendreTransform
from .spectral import take_padded

def _bcast(coef: jax.Array, spec: jax.Array) -> jax.Array:
    """Broadcast a per-coefficient table over trailing axes of spec."""
    return coef.reshape(coef.shape + (1,) * (spec.ndim - 1))

class Transformer:
    """
    Spectral transforms and differential operators on the sphere.

    Combines:
    - Spectral transforms (grid <-> spectral, with cos(lat) weighting)
    - Differential operators (Laplacian, zonal and meridional gradients)
    - Wind conversions (vor/div <-> U/V)
    """

    def __init__(self, geometry: Geometry, legendre: LegendreTransform = None):
        """
        Args:
            geometry: Geometry instance
            legendre: LegendreTransform built on the same geometry
        """
        if legendre is None:
            legendre = LegendreTransform(geometry)
        self.geometry = geometry
        self.legendre = legendre
        self.NF = geometry.NF
        self.CNF = geometry.CNF

        coslat = np.sqrt(1.0 - np.asarray(geometry._sinlat) ** 2)
        self.cosgr = jnp.asarray(1.0 / coslat, dtype=self.NF)
        self.cosgr2 = jnp.asarray(1.0 / coslat**2, dtype=self.NF)

        self.el2, self.elm2 = self._setup_spectral_coefficients()
        self.gradx, self.vgradx = self._setup_zonal_coefficients()
        self.gradym, self.gradyp = self._setup_gradient_coefficients()
        self.uvdx, self.uvdym, self.uvdyp = self._setup_uv_coefficients()
        self.vddym, self.vddyp = self._setup_vd_coefficients()
        self._setup_neighbours()

    # ========================================================================
    # Coefficient Setup
    # ========================================================================

    def _real(self, x):
        return jnp.asarray(x, dtype=self.NF)

    def _setup_neighbours(self):
        """Offsets of (m, n-1), (m, n) and (m, n+1) between the two layouts."""
        lay, vlay = self.geometry.layout, self.geometry.vlayout
        # T -> T+1 operators read T coefficients
        self.up_prev = vlay.neighbours(lay, -1)
        self.up_self = vlay.neighbours(lay, 0)
        self.up_next = vlay.neighbours(lay, +1)
        # T+1 -> T operators read T+1 coefficients
        self.down_prev = lay.neighbours(vlay, -1)
        self.down_self = self.geometry.vindex
        self.down_next = lay.neighbours(vlay, +1)

    def _setup_spectral_coefficients(self) -> Tuple[jax.Array, jax.Array]:
        """el2 = n(n+1)/a^2 and its inverse (zero at n=0) on the T layout."""
        a = self.geometry.radius
        n = self.geometry.layout.n.astype(np.float64)
        el2 = n * (n + 1.0) / a**2
        elm2 = np.zeros_like(el2)
        elm2[n > 0] = 1.0 / el2[n > 0]
        return self._real(el2), self._real(elm2)

    def _setup_zonal_coefficients(self) -> Tuple[jax.Array, jax.Array]:
        """i*m on both layouts."""
        m = self.geometry.layout.m.astype(np.float64)
        vm = self.geometry.vlayout.m.astype(np.float64)
        return (jnp.asarray(1j * m, dtype=self.CNF), jnp.asarray(1j * vm, dtype=self.CNF))

    def _setup_gradient_coefficients(self) -> Tuple[jax.Array, jax.Array]:
        """
        Meridional gradient on the T+1 layout from T coefficients:
            gradym(m,n) = (n-1) eps(m,n) / a      multiplies f(m, n-1)
            gradyp(m,n) = (n+2) eps(m,n+1) / a    multiplies f(m, n+1)
        """
        a = self.geometry.radius
        vl = self.geometry.vlayout
        m, n = vl.m.astype(np.float64), vl.n.astype(np.float64)
        eps0 = self.geometry.epsilon(m, n)
        eps1 = self.geometry.epsilon(m, n + 1)
        gradym = (n - 1.0) * eps0 / a
        gradyp = (n + 2.0) * eps1 / a
        return self._real(gradym), self._real(gradyp)

    def _setup_uv_coefficients(self) -> Tuple[jax.Array, jax.Array, jax.Array]:
        """
        Coefficients of U = u cos(lat), V = v cos(lat) on the T+1 layout.
        They include the inverse Laplacian, so they act on vorticity and
        divergence directly:
            uvdx(m,n)  = -a m / (n(n+1))
            uvdym(m,n) = -a eps(m,n) / n        (zero at (0,1): psi(0,0) = 0)
            uvdyp(m,n) = -a eps(m,n+1) / (n+1)
        """
        a = self.geometry.radius
        vl = self.geometry.vlayout
        m, n = vl.m.astype(np.float64), vl.n.astype(np.float64)
        pos = n > 0
        uvdx = np.zeros_like(n)
        uvdx[pos] = -a * m[pos] / (n[pos] * (n[pos] + 1.0))
        uvdym = np.zeros_like(n)
        uvdym[pos] = -a * self.geometry.epsilon(m[pos], n[pos]) / n[pos]
        uvdym[(m == 0) & (n == 1)] = 0.0
        uvdyp = -a * self.geometry.epsilon(m, n + 1) / (n + 1.0)
        return (jnp.asarray(1j * uvdx, dtype=self.CNF), self._real(uvdym), self._real(uvdyp))

    def _setup_vd_coefficients(self) -> Tuple[jax.Array, jax.Array]:
        """
        Vorticity/divergence from cos-weighted winds on the T layout:
            vddym(m,n) = (n+1) eps(m,n) / a     multiplies A(m, n-1)
            vddyp(m,n) = n eps(m,n+1) / a       multiplies A(m, n+1)
        """
        a = self.geometry.radius
        lay = self.geometry.layout
        m, n = lay.m.astype(np.float64), lay.n.astype(np.float64)
        vddym = (n + 1.0) * self.geometry.epsilon(m, n) / a
        vddyp = n * self.geometry.epsilon(m, n + 1) / a
        return self._real(vddym), self._real(vddyp)

    # ========================================================================
    # Convenience transformation methods
    # ========================================================================

    @partial(jax.jit, static_argnums=(0, 2, 3))
    def spec_to_grid(self, spec: jax.Array, kcos: bool = False, vector: bool = False) -> jax.Array:
        """
        Spectral [nlm] -> grid [nlon, nlat].

        kcos divides by cos(lat), turning U = u cos(lat) into u.
        """
        grid = self.legendre.spec_to_grid(spec, vector)
        if kcos: grid = grid * self.cosgr[jnp.newaxis, :]
        return grid

    @partial(jax.jit, static_argnums=(0, 2, 3))
    def spec_3d_to_grid(self, spec_3d: jax.Array, kcos: bool = False, vector: bool = False) -> jax.Array:
        """Spectral [nlm, nlev] -> grid [nlon, nlat, nlev]."""
        grid = self.legendre.spec_3d_to_grid(spec_3d, vector)
        if kcos: grid = grid * self.cosgr[jnp.newaxis, :, jnp.newaxis]
        return grid

    @partial(jax.jit, static_argnums=(0, 2))
    def grid_to_spec(self, grid: jax.Array, vector: bool = False) -> jax.Array:
        """Grid [nlon, nlat] -> spectral [nlm]."""
        return self.legendre.grid_to_spec(grid, vector)

    @partial(jax.jit, static_argnums=(0, 2))
    def grid_3d_to_spec(self, grid_3d: jax.Array, vector: bool = False) -> jax.Array:
        """Grid [nlon, nlat, nlev] -> spectral [nlm, nlev]."""
        return self.legendre.grid_3d_to_spec(grid_3d, vector)

    def _forward(self, grid: jax.Array, vector: bool) -> jax.Array:
        if grid.ndim == 3:
            return self.legendre.grid_3d_to_spec(grid, vector)
        return self.legendre.grid_to_spec(grid, vector)

    # ========================================================================
    # Differential Operators
    # ========================================================================

    @partial(jax.jit, static_argnums=(0,))
    def laplacian(self, spec: jax.Array) -> jax.Array:
        """Apply Laplacian: -n(n+1)/a^2."""
        return -spec * _bcast(self.el2, spec)

    @partial(jax.jit, static_argnums=(0,))
    def inverse_laplacian(self, spec: jax.Array) -> jax.Array:
        """Apply inverse Laplacian; the (0,0) mode maps to zero."""
        return -spec * _bcast(self.elm2, spec)

    @partial(jax.jit, static_argnums=(0, 2))
    def d_dlon(self, spec: jax.Array, vector: bool = False) -> jax.Array:
        """Exact zonal derivative d/dlambda: multiply by i*m."""
        coef = self.vgradx if vector else self.gradx
        return _bcast(coef, spec) * spec

    @partial(jax.jit, static_argnums=(0, 2))
    def grad_lon(self, spec: jax.Array, vector: bool = False) -> jax.Array:
        """
        Zonal gradient times cos(lat): (1/a) d/dlambda. Dividing the
        gridded result by cos(lat) gives (1/(a cos(lat))) d/dlambda.
        """
        return self.d_dlon(spec, vector) / self.geometry.radius

    @partial(jax.jit, static_argnums=(0,))
    def grad_lat(self, spec: jax.Array) -> jax.Array:
        """
        Meridional gradient times cos(lat): (cos(lat)/a) d/dlat.
        Maps T coefficients to the T+1 layout.
        """
        prev = take_padded(spec, self.up_prev)
        nxt = take_padded(spec, self.up_next)
        return -_bcast(self.gradym, prev) * prev + _bcast(self.gradyp, nxt) * nxt

    # ========================================================================
    # Wind Conversions
    # ========================================================================

    @partial(jax.jit, static_argnums=(0,))
    def vor_div_to_uv(self, vor: jax.Array, div: jax.Array) -> Tuple[jax.Array, jax.Array]:
        """
        Vorticity and divergence (T) to U = u cos(lat), V = v cos(lat) (T+1).

        u cos(lat) = -(cos(lat)/a) dpsi/dlat + (1/a) dchi/dlambda
        v cos(lat) =  (cos(lat)/a) dchi/dlat + (1/a) dpsi/dlambda
        with psi, chi the inverse Laplacians of vor, div.
        """
        vor_prev, vor_self, vor_next = (take_padded(vor, self.up_prev),
                                        take_padded(vor, self.up_self),
                                        take_padded(vor, self.up_next))
        div_prev, div_self, div_next = (take_padded(div, self.up_prev),
                                        take_padded(div, self.up_self),
                                        take_padded(div, self.up_next))
        uvdx = _bcast(self.uvdx, vor_self)
        uvdym = _bcast(self.uvdym, vor_self)
        uvdyp = _bcast(self.uvdyp, vor_self)

        u = uvdym * vor_prev + uvdx * div_self - uvdyp * vor_next
        v = -uvdym * div_prev + uvdx * vor_self + uvdyp * div_next
        return u, v

    @partial(jax.jit, static_argnums=(0, 3))
    def grid_to_vor_div(self, ug: jax.Array, vg: jax.Array, kcos: bool = False) -> Tuple[jax.Array, jax.Array]:
        """
        Grid winds to spectral vorticity and divergence on the T layout.

        kcos=True: inputs are u, v and are divided by cos(lat);
        kcos=False: inputs are u cos(lat), v cos(lat) and are divided by cos^2(lat).
        The weighted fields are transformed on the T+1 layout.
        """
        w = self.cosgr if kcos else self.cosgr2
        w = w.reshape((1, -1) + (1,) * (ug.ndim - 2))
        au = self._forward(ug * w, True)
        av = self._forward(vg * w, True)

        au_prev, au_self, au_next = (take_padded(au, self.down_prev), au[self.down_self],
                                     take_padded(au, self.down_next))
        av_prev, av_self, av_next = (take_padded(av, self.down_prev), av[self.down_self],
                                     take_padded(av, self.down_next))
        gradx = _bcast(self.gradx, au_self) / self.geometry.radius
        vddym = _bcast(self.vddym, au_self)
        vddyp = _bcast(self.vddyp, au_self)

        vor = vddym * au_prev + gradx * av_self - vddyp * au_next
        div = -vddym * av_prev + gradx * au_self + vddyp * av_next
        return vor, div

    @partial(jax.jit, static_argnums=(0, 3))
    def grid_3d_to_vor_div(self, ug_3d: jax.Array, vg_3d: jax.Array, kcos: bool = False) -> Tuple[jax.Array, jax.Array]:
        """grid_to_vor_div for [nlon, nlat, nlev] winds."""
        return self.grid_to_vor_div(ug_3d, vg_3d, kcos)

    # ========================================================================
    # Filtering
    # ========================================================================

    @partial(jax.jit, static_argnums=(0,))
    def spectral_truncation(self, fg: jax.Array) -> jax.Array:
        """
        Spectrally filtered grid-point field: grid -> T -> grid.

        Args:
            fg: Original grid-point field [nlon, nlat]

        Returns:
            Field with all scales above T removed [nlon, nlat]
        """
        return self.spec_to_grid(self.grid_to_spec(fg))
