#!/usr/bin/env python3
"""
Spectral transform: Fourier along longitude, Legendre along latitude.

Forward (grid -> spectral):  rfft / nlon, then a quadrature-weighted sum over
latitudes for every (m, n) of the triangular layout.
Inverse (spectral -> grid):  for every m a sum over n of coefficient times
Legendre function (segment_sum keyed by m), then irfft * nlon.

Grid arrays are [nlon, nlat] in the geometry's NF, spectral arrays are flat
triangular [nlm] in CNF. `vector=True` selects the T+1 layout used for wind
components and meridional derivatives.
Based on SPEEDY legendre.f90 and spectral.f90
"""

import jax
import jax.numpy as jnp
from functools import partial, lru_cache

from .geometry import Geometry
from .spectral import SpectralField

class LegendreTransform:
    """
    Vectorized spherical harmonic transform on a Gaussian grid.

    Holds only views of Geometry tables: the scalar tables are the T rows
    of the T+1 tables.
    """

    def __init__(self, geometry: Geometry):
        self.geometry = geometry
        self.nlon = geometry.nlon

        vindex = geometry.vindex
        self._tables = {
            False: (geometry.legendre[vindex], geometry.legendre_weighted[vindex],
                    jnp.asarray(geometry.layout.m), geometry.layout.mmax),
            True: (geometry.legendre, geometry.legendre_weighted,
                   jnp.asarray(geometry.vlayout.m), geometry.vlayout.mmax),
        }

    # ========================================================================
    # Fourier Transforms
    # ========================================================================

    @partial(jax.jit, static_argnums=(0, 2))
    def fourier(self, grid: jax.Array, mmax: int) -> jax.Array:
        """
        Direct Fourier transform along longitude.

        Args:
            grid: Real grid values [nlon, nlat]
            mmax: Largest zonal wavenumber to keep

        Returns:
            Complex Fourier coefficients [mmax+1, nlat]
        """
        full = jnp.fft.rfft(grid, axis=0) / self.nlon
        return full[:mmax + 1, :].astype(self.geometry.CNF)

    @partial(jax.jit, static_argnums=(0,))
    def fourier_inverse(self, fourier: jax.Array) -> jax.Array:
        """
        Inverse Fourier transform along longitude.

        Args:
            fourier: Complex Fourier coefficients [mmax+1, nlat]

        Returns:
            Real grid values [nlon, nlat]
        """
        nfull = self.nlon // 2 + 1
        padded = jnp.zeros((nfull, fourier.shape[1]), dtype=fourier.dtype)
        padded = padded.at[:fourier.shape[0], :].set(fourier)
        grid = jnp.fft.irfft(padded, n=self.nlon, axis=0) * self.nlon
        return grid.astype(self.geometry.NF)

    # ========================================================================
    # Legendre Transforms
    # ========================================================================

    @partial(jax.jit, static_argnums=(0, 2))
    def legendre(self, fourier: jax.Array, vector: bool = False) -> jax.Array:
        """
        Direct Legendre transform by Gaussian quadrature.

        Args:
            fourier: Fourier coefficients [mmax+1, nlat]

        Returns:
            Spectral coefficients [nlm]
        """
        _, weighted, m_index, _ = self._tables[vector]
        return jnp.einsum('kj,kj->k', fourier[m_index], weighted).astype(self.geometry.CNF)

    @partial(jax.jit, static_argnums=(0, 2))
    def legendre_inverse(self, spec: jax.Array, vector: bool = False) -> jax.Array:
        """
        Inverse Legendre transform.

        Args:
            spec: Spectral coefficients [nlm]

        Returns:
            Fourier coefficients [mmax+1, nlat]
        """
        table, _, m_index, mmax = self._tables[vector]
        contrib = spec[:, jnp.newaxis] * table
        return jax.ops.segment_sum(contrib, m_index, num_segments=mmax + 1)

    # ========================================================================
    # Composite transforms
    # ========================================================================

    @partial(jax.jit, static_argnums=(0, 2))
    def grid_to_spec(self, grid: jax.Array, vector: bool = False) -> jax.Array:
        """Grid [nlon, nlat] -> spectral [nlm]."""
        mmax = self._tables[vector][3]
        return self.legendre(self.fourier(grid, mmax), vector)

    @partial(jax.jit, static_argnums=(0, 2))
    def spec_to_grid(self, spec: jax.Array, vector: bool = False) -> jax.Array:
        """Spectral [nlm] -> grid [nlon, nlat]."""
        return self.fourier_inverse(self.legendre_inverse(spec, vector))

    @partial(jax.jit, static_argnums=(0, 2))
    def grid_3d_to_spec(self, grid_3d: jax.Array, vector: bool = False) -> jax.Array:
        """Grid [nlon, nlat, nlev] -> spectral [nlm, nlev]."""
        return jax.vmap(lambda g: self.grid_to_spec(g, vector), in_axes=-1, out_axes=-1)(grid_3d)

    @partial(jax.jit, static_argnums=(0, 2))
    def spec_3d_to_grid(self, spec_3d: jax.Array, vector: bool = False) -> jax.Array:
        """Spectral [nlm, nlev] -> grid [nlon, nlat, nlev]."""
        return jax.vmap(lambda s: self.spec_to_grid(s, vector), in_axes=-1, out_axes=-1)(spec_3d)

# ============================================================================
# Functional interface on SpectralField values
# ============================================================================

@lru_cache(maxsize=8)
def get_transform(geometry: Geometry) -> LegendreTransform:
    """One shared transform per geometry."""
    return LegendreTransform(geometry)

def spectral(grid: jax.Array, geometry: Geometry) -> SpectralField:
    """
    Forward transform of a grid field ([nlon, nlat] or [nlon, nlat, nlev])
    to a SpectralField at the geometry's truncation. Scales above T are
    discarded.
    """
    transform = get_transform(geometry)
    grid = jnp.asarray(grid, dtype=geometry.NF)
    if grid.ndim == 3:
        coeffs = transform.grid_3d_to_spec(grid)
    else:
        coeffs = transform.grid_to_spec(grid)
    return SpectralField(coeffs, geometry.trunc)

def gridded(field: SpectralField, geometry: Geometry) -> jax.Array:
    """Inverse transform of a SpectralField to the geometry's grid."""
    transform = get_transform(geometry)
    if field.trunc == geometry.trunc:
        vector = False
    elif field.trunc == geometry.trunc + 1:
        vector = True
    else:
        # Coefficients beyond T are dropped, missing ones are zero
        target = geometry.layout
        source = field.layout
        if field.trunc > geometry.trunc:
            coeffs = target.restrict(field.coeffs, source)
        else:
            coeffs = source.extend(field.coeffs, target)
        field = SpectralField(coeffs, geometry.trunc)
        vector = False
    coeffs = jnp.asarray(field.coeffs, dtype=geometry.CNF)
    if coeffs.ndim == 2:
        return transform.spec_3d_to_grid(coeffs, vector)
    return transform.spec_to_grid(coeffs, vector)
