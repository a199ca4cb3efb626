#!/usr/bin/env python3
"""
Time stepping for the dynamical core.

Based on SPEEDY time_stepping.f90 module.
Implements Leapfrog scheme with Robert-Asselin-Williams filter:
    future = past + 2*dt * tendency(present)
    d = rob * (past - 2*present + future)
    past <- present + wil*d
    present <- future - (1-wil)*d
The first step from a fresh initial condition is a forward Euler step.
"""

import logging
import jax
import jax.numpy as jnp
import numpy as np
from functools import partial
from typing import Dict, Optional, Tuple, Union

from .state import Config, SpectralState, GridTendencies, PrognosticState
from .errors import ConfigurationError, NumericalInstabilityError
from .geometry import Geometry
from .spectral import SpectralField
from .dynamics import Dynamics
from .diffusion import HorizontalDiffusion
from .implicit import ImplicitSolver, VerticalModes

logger = logging.getLogger(__name__)

# ============================================================================
# Input Validation
# ============================================================================

def _check_array(name: str, value, shape: Tuple[int, ...], dtype) -> jax.Array:
    if tuple(np.shape(value)) != shape:
        raise ConfigurationError(f"Field '{name}' has shape {tuple(np.shape(value))}, expected {shape}")
    found = getattr(value, 'dtype', None)
    if found is None or jnp.dtype(found) != dtype:
        raise ConfigurationError(f"Field '{name}' has number format {found}, expected {dtype}")
    return jnp.asarray(value)

def check_spectral_state(state: SpectralState, geometry: Geometry) -> SpectralState:
    """
    Validate a spectral state against the geometry.

    Fields may be bare [nlm(, nlev)] arrays on the geometry's layout or
    SpectralField values at the geometry's truncation; both come back as
    bare arrays.

    Raises:
        ConfigurationError: wrong truncation, shape or number format
    """
    nlm, kx = geometry.layout.size, geometry.nlev
    fields = {}
    for name, value in zip(SpectralState._fields, state):
        if isinstance(value, SpectralField):
            if value.trunc != geometry.trunc:
                raise ConfigurationError(
                    f"Field '{name}' is truncated at T{value.trunc}, the model runs at T{geometry.trunc}")
            value = value.coeffs
        shape = (nlm,) if name == 'ps' else (nlm, kx)
        fields[name] = _check_array(name, value, shape, geometry.CNF)
    return SpectralState(**fields)

def check_grid_tendencies(tend: GridTendencies, geometry: Geometry) -> GridTendencies:
    """
    Validate grid-point tendencies: [nlon, nlat, nlev] in NF, ps optional [nlon, nlat].

    Raises:
        ConfigurationError: wrong shape or number format
    """
    shape = (geometry.nlon, geometry.nlat, geometry.nlev)
    fields = {name: _check_array(name, getattr(tend, name), shape, geometry.NF)
              for name in ('u', 'v', 't', 'q')}
    if tend.ps is not None:
        fields['ps'] = _check_array('ps', tend.ps, shape[:2], geometry.NF)
    return GridTendencies(**fields)

class Leapfrog:
    """
    Leapfrog with Robert-Asselin-Williams filter on arbitrary pytrees.

    Args:
        rob: Filter strength (0 disables the filter)
        wil: Williams coefficient; 1 is the classic Robert-Asselin filter,
             0.5 conserves the three-level mean
    """

    def __init__(self, rob: float = 0.05, wil: float = 0.53):
        self.rob = rob
        self.wil = wil

    def euler(self, present, tendency, dt: float):
        """Forward Euler: present + dt * tendency."""
        return jax.tree_util.tree_map(lambda x, f: x + dt * f, present, tendency)

    def leapfrog(self, past, tendency, dt: float):
        """Centred step over 2*dt: past + 2*dt * tendency."""
        return jax.tree_util.tree_map(lambda x, f: x + 2.0 * dt * f, past, tendency)

    def filter(self, past, present, future):
        """
        Robert-Asselin-Williams filter.

        The future level is corrected by -(1-wil)*d rather than taken over
        unfiltered, so wil=0.5 leaves the three-level mean unchanged.

        Returns:
            (present_filtered, future_corrected)
        """
        rob, wil = self.rob, self.wil

        def displacement(p, c, f):
            return rob * (p - 2.0 * c + f)

        d = jax.tree_util.tree_map(displacement, past, present, future)
        present_filtered = jax.tree_util.tree_map(lambda c, x: c + wil * x, present, d)
        future = jax.tree_util.tree_map(lambda f, x: f - (1.0 - wil) * x, future, d)
        return present_filtered, future

    def __repr__(self) -> str:
        return f"Leapfrog(rob={self.rob}, wil={self.wil})"

class TimeIntegrator:
    """
    Advances a PrognosticState by one leapfrog cycle.

    Implements:
    - Forward Euler for initialization (state.step == 0)
    - Semi-implicit leapfrog with horizontal diffusion and RAW filter
    - Blow-up check on the new levels before anything is returned
    """

    def __init__(self, config: Config, dynamics: Dynamics, diffusion: HorizontalDiffusion,
                 modes: VerticalModes):
        """
        Args:
            config: Model configuration (dt, rob, wil, alph, max_coeff)
            dynamics: Dynamics instance
            diffusion: HorizontalDiffusion instance
            modes: Vertical modes the implicit solvers are built from
        """
        self.config = config
        self.dynamics = dynamics
        self.diffusion = diffusion
        self.modes = modes
        self.geometry = dynamics.geometry
        self.scheme = Leapfrog(config.rob, config.wil)
        self.semi_implicit = config.alph > 0.0
        self._solvers: Dict[float, ImplicitSolver] = {}

    def solver(self, dt: float) -> Optional[ImplicitSolver]:
        """Implicit solver for solver step dt, built on first use."""
        if not self.semi_implicit:
            return None
        dt = float(dt)
        if dt not in self._solvers:
            logger.debug("Building implicit solver for dt = %.1f s", dt)
            self._solvers[dt] = ImplicitSolver(self.config, self.geometry, self.modes, dt)
        return self._solvers[dt]

    # ========================================================================
    # Public Interface
    # ========================================================================

    def step(self, state: PrognosticState, dt: Optional[float] = None,
             tendencies: Union[SpectralState, GridTendencies, None] = None) -> PrognosticState:
        """
        One time step.

        Args:
            state: Prognostic state; never modified
            dt: Time step in seconds (default: config.dt)
            tendencies: Parameterization tendencies of the present level,
                either spectral (SpectralState, added after the transforms)
                or grid-point (GridTendencies, added before them)

        Returns:
            New PrognosticState with step incremented

        Raises:
            ConfigurationError: non-positive dt, or tendencies whose shape,
                truncation or number format do not match the geometry
            NumericalInstabilityError: a new coefficient is non-finite or
                exceeds config.max_coeff; no new state is returned
        """
        if dt is None:
            dt = self.config.dt
        if not dt > 0:
            raise ConfigurationError(f"Time step must be positive, got {dt}")
        dt = float(dt)

        physics, forcing = None, None
        if isinstance(tendencies, GridTendencies):
            physics = check_grid_tendencies(tendencies, self.geometry)
        elif isinstance(tendencies, SpectralState):
            forcing = check_spectral_state(tendencies, self.geometry)
        elif tendencies is not None:
            raise ConfigurationError(
                f"Tendencies must be a SpectralState or GridTendencies, got {type(tendencies).__name__}")

        if state.step == 0:
            past, present = self._initial_step(self.solver(dt), dt, state.present, physics, forcing)
        else:
            past, present = self._leapfrog_step(self.solver(2.0 * dt), dt, state.past,
                                                state.present, physics, forcing)

        self._check(state.step + 1, past, present)
        return PrognosticState(past=past, present=present, step=state.step + 1)

    # ========================================================================
    # Steps
    # ========================================================================

    def _tendencies(self, solver: Optional[ImplicitSolver], dt_s: float, present: SpectralState,
                    past: SpectralState, physics, forcing) -> SpectralState:
        """
        Total tendencies for a step of length dt_s:
        explicit terms of present, linear terms (past, or present when explicit),
        implicit correction, horizontal diffusion.
        """
        tend = self.dynamics.compute_tendencies(present, physics, forcing)
        if solver is None:
            tend = tend + self.dynamics.linear_terms(present)
        else:
            tend = tend + self.dynamics.linear_terms(past)
            divdt, tdt, psdt = solver.apply(tend.div, tend.t, tend.ps)
            tend = tend._replace(div=divdt, t=tdt, ps=psdt)
        return self.diffusion.apply(tend, past, dt_s)

    @partial(jax.jit, static_argnums=(0, 1, 2))
    def _initial_step(self, solver, dt, present, physics, forcing) -> Tuple[SpectralState, SpectralState]:
        """
        Initialization step: forward Euler over dt, no filter.
        Returns (past, present) = (initial condition, Euler result).
        """
        tend = self._tendencies(solver, dt, present, present, physics, forcing)
        future = self.scheme.euler(present, tend, dt)
        return present, future

    @partial(jax.jit, static_argnums=(0, 1, 2))
    def _leapfrog_step(self, solver, dt, past, present, physics, forcing) -> Tuple[SpectralState, SpectralState]:
        """
        Regular step: leapfrog over 2*dt then RAW filter.
        Returns (past, present) = (filtered present, future).
        """
        tend = self._tendencies(solver, 2.0 * dt, present, past, physics, forcing)
        future = self.scheme.leapfrog(past, tend, dt)
        return self.scheme.filter(past, present, future)

    # ========================================================================
    # Blow-up Check
    # ========================================================================

    def _check(self, step: int, past: SpectralState, present: SpectralState):
        """Raise NumericalInstabilityError on the first offending field."""
        limit = self.config.max_coeff
        for level in (present, past):
            for name, value in level.max_abs().items():
                value = float(value)
                if not np.isfinite(value) or value > limit:
                    raise NumericalInstabilityError(step=step, field=name, value=value)
