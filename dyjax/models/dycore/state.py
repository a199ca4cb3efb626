#!/usr/bin/env python3
"""
Type definitions for the dynamical core.

This module contains the configuration and all the NamedTuple states used
throughout the model to avoid circular import dependencies.

Spectral arrays use the flat triangular layout of spectral.py: axis 0 runs
over the (T+1)(T+2)/2 coefficients with m <= n <= T, axis 1 over levels.
Grid arrays are [nlon, nlat, nlev] inside the model (longitude fastest for
the FFT) and [nlev, nlat, nlon] in GridState output.
"""

import jax
from typing import NamedTuple, Optional

from dyjax.models.base import add_operators
from .errors import ConfigurationError

# Supported number formats and their complex counterparts
NUMBER_FORMATS = {
    'float32': 'complex64',
    'float64': 'complex128',
}

# ============================================================================
# Spectral and Grid State Classes
# ============================================================================

@add_operators
class SpectralState(NamedTuple):
    """Single time level of spectral variables"""
    vor: jax.Array  # Vorticity [nlm, nlev]
    div: jax.Array  # Divergence [nlm, nlev]
    t: jax.Array    # Temperature [nlm, nlev]
    q: jax.Array    # Specific humidity [nlm, nlev]
    ps: jax.Array   # Log surface pressure [nlm]

@add_operators
class GridState(NamedTuple):
    """Grid-point fields for output and analysis"""
    u: jax.Array     # Zonal wind [nlev, nlat, nlon]
    v: jax.Array     # Meridional wind [nlev, nlat, nlon]
    vor: jax.Array   # Relative vorticity [nlev, nlat, nlon]
    div: jax.Array   # Divergence [nlev, nlat, nlon]
    t: jax.Array     # Temperature [nlev, nlat, nlon]
    q: jax.Array     # Specific humidity [nlev, nlat, nlon]
    ps: jax.Array    # Surface pressure in Pa [nlat, nlon]

class GridVariables(NamedTuple):
    """
    Grid-point variables of the present time level needed by the
    nonlinear terms. All 3-D arrays are [nlon, nlat, nlev].
    """
    vor: jax.Array     # Absolute vorticity (relative + coriolis)
    div: jax.Array     # Divergence
    u: jax.Array       # Zonal wind
    v: jax.Array       # Meridional wind
    t: jax.Array       # Temperature
    tanom: jax.Array   # Temperature anomaly from the reference profile
    q: jax.Array       # Specific humidity
    px: jax.Array      # Zonal gradient of log surface pressure [nlon, nlat]
    py: jax.Array      # Meridional gradient of log surface pressure [nlon, nlat]
    umean: jax.Array   # Vertical mean zonal wind [nlon, nlat]
    vmean: jax.Array   # Vertical mean meridional wind [nlon, nlat]
    dmean: jax.Array   # Vertical mean divergence [nlon, nlat]

@add_operators
class GridTendencies(NamedTuple):
    """
    Grid-point tendencies [nlon, nlat, nlev].

    Also the interface for externally supplied parameterization tendencies;
    ps stays None there because parameterizations do not change mass.
    """
    u: jax.Array
    v: jax.Array
    t: jax.Array
    q: jax.Array
    ps: Optional[jax.Array] = None

# ============================================================================
# Main Model State
# ============================================================================

class PrognosticState(NamedTuple):
    """
    Prognostic state for leapfrog time stepping.

    Contains:
    - past: Filtered previous level
    - present: Current level
    - step: Number of completed steps; 0 means past == present is the
      initial condition and the next step is the forward-Euler start

    The future level only exists inside TimeIntegrator.step:
        future = past + 2*dt * tendencies(present)
        past, present = RAW_filter(past, present, future)
    """
    past: SpectralState
    present: SpectralState
    step: int = 0

    @classmethod
    def from_initial(cls, state: SpectralState) -> 'PrognosticState':
        """Both levels start from the initial condition."""
        return cls(past=state, present=state, step=0)

# ============================================================================
# Configuration
# ============================================================================

class Config(NamedTuple):
    """Model configuration"""
    # Spectral resolution
    trunc: int = 30     # Spectral truncation (T30)
    # Grid resolution (derived from trunc when not given)
    nlon: int = 96      # Number of longitudes
    nlat: int = 48      # Number of Gaussian latitudes
    # Vertical levels
    nlev: int = 8       # Number of sigma levels

    # Time stepping
    dt: float = 2400.0  # Time step in seconds (default: 40 minutes)
    NF: str = 'float32' # Number format of all real arrays
    rob: float = 0.05   # Robert filter coefficient
    wil: float = 0.53   # Williams filter coefficient
    alph: float = 0.5   # Semi-implicit coefficient (0 = explicit gravity waves)

    # Diffusion parameters
    npowhd: int = 4
    thd: float = 2.4        # Vorticity/temp diffusion timescale (hours)
    thdd: float = 2.4       # Divergence diffusion timescale (hours)
    thds: float = 12.0      # Stratospheric diffusion timescale (hours)
    tdrs: float = 24.0*30.0 # Stratospheric drag timescale (hours)

    # Blow-up threshold on any spectral coefficient magnitude
    max_coeff: float = 1.0e6

    @classmethod
    def create(cls, trunc: int = 30, nlon: Optional[int] = None, nlat: Optional[int] = None,
               nlev: int = 8, dt: float = 2400.0, NF: str = 'float32', **kwargs) -> 'Config':
        """
        Create configuration with automatic computation of derived parameters.

        Args:
            trunc: Spectral truncation (default: T30)
            nlon: Number of longitudes (default: SPEEDY rule from trunc)
            nlat: Number of latitudes (default: nlon // 2)
            nlev: Number of vertical levels (default: 8)
            dt: Model time step in seconds (default: 2400s = 40 min)
            NF: Number format, 'float32' or 'float64'
            **kwargs: Override any other Config parameters

        Returns:
            Config with all derived parameters filled in

        Example:
            config = Config.create(trunc=30, dt=2400.0, nlev=8)
            config = Config.create(trunc=42, dt=1800.0, NF='float64')
        """
        if trunc < 1:
            raise ConfigurationError(f"trunc={trunc} must be at least 1")
        if nlev < 2:
            raise ConfigurationError(f"nlev={nlev} must be at least 2")
        if not dt > 0:
            raise ConfigurationError(f"dt={dt}s must be positive")
        if NF not in NUMBER_FORMATS:
            raise ConfigurationError(
                f"Unknown number format '{NF}', expected one of {list(NUMBER_FORMATS)}")

        # Rule: nlon should be at least 3*trunc and divisible by 4
        if nlon is None:
            nlon = 4 * ((3 * trunc + 6) // 4)
        if nlat is None:
            nlat = nlon // 2

        return cls(trunc=trunc, nlon=nlon, nlat=nlat, nlev=nlev, dt=float(dt), NF=NF, **kwargs)

    @property
    def CNF(self) -> str:
        """Complex number format matching NF."""
        return NUMBER_FORMATS[self.NF]

    def __repr__(self) -> str:
        """Pretty print configuration."""
        return (
            f"Config(\n"
            f"  Resolution: T{self.trunc}, {self.nlon}x{self.nlat} grid, {self.nlev} levels\n"
            f"  Number format: {self.NF}\n"
            f"  Time step: dt={self.dt}s ({self.dt/60:.1f} min)\n"
            f"  Semi-implicit: α={self.alph}, Robert={self.rob}, Williams={self.wil}\n"
            f"  Diffusion: thd={self.thd}h, thdd={self.thdd}h, thds={self.thds}h, tdrs={self.tdrs}h\n"
            f"  Blow-up threshold: {self.max_coeff:.1e}\n"
            f")"
        )
