#!/usr/bin/env python3
"""
Spectral primitive-equation dynamical core in JAX.

Wires Geometry, transforms, Boundaries, Dynamics and the time integrator
together and exposes step/diagnose/integrate to a driver.
"""

import logging
import os
import jax
import jax.numpy as jnp
import numpy as np
from functools import partial
from typing import Callable, Dict, List, Optional, Tuple, Union

from .state import Config, SpectralState, GridState, GridTendencies, PrognosticState
from .constants import Constants
from .errors import ConfigurationError, NumericalInstabilityError
from .geometry import Geometry
from .legendre import LegendreTransform
from .transformer import Transformer
from .boundaries import Boundaries
from .dynamics import Dynamics
from .diffusion import HorizontalDiffusion
from .implicit import VerticalModes
from .integration import TimeIntegrator, check_spectral_state
from .diagnostics import Diagnostics, format_diagnostics

logger = logging.getLogger(__name__)

class DynamicalCore:
    """
    Main dynamical core class.

    Coordinates the modular components:
    - Geometry: grids, quadrature and Legendre tables
    - LegendreTransform, Transformer: spectral transforms and operators
    - Boundaries: orography, land-sea mask, albedo
    - Dynamics: transform-method tendencies
    - TimeIntegrator: semi-implicit leapfrog with RAW filter

    Handles:
    - Initialization
    - Time stepping
    - Diagnosis on the grid
    """

    def __init__(self, config: Config, boundaries: Union[Boundaries, str, os.PathLike, None] = None,
                 constants: Optional[Constants] = None):
        """
        Initialize the dynamical core.

        Args:
            config: Model configuration
            boundaries: Boundaries on a grid matching config, a NetCDF file with
                orog/lsm/alb, or None for an aquaplanet
            constants: Physical constants (default: Constants())
        """
        if constants is None:
            constants = Constants()
        self.config = config
        self.constants = constants

        self.geometry = Geometry(config, constants)
        self.legendre = LegendreTransform(self.geometry)
        self.transformer = Transformer(self.geometry, self.legendre)
        self.boundaries = self._setup_boundaries(boundaries)

        self.dynamics = Dynamics(config, constants, self.geometry, self.transformer, self.boundaries)
        self.diffusion = HorizontalDiffusion(config, self.geometry, self.boundaries.phis)
        self.modes = VerticalModes(constants, self.geometry.vertical)
        self.integrator = TimeIntegrator(config, self.dynamics, self.diffusion, self.modes)
        self.diagnostics = Diagnostics(self.transformer)

        logger.info("Dynamical core initialized: T%d, %dx%d grid, %d levels, NF=%s",
                    config.trunc, config.nlon, config.nlat, config.nlev, config.NF)
        logger.info("Time step: %.0fs (%.1f min), semi-implicit alpha = %.2f",
                    config.dt, config.dt / 60.0, config.alph)

    def _setup_boundaries(self, boundaries) -> Boundaries:
        if boundaries is None:
            return Boundaries.aquaplanet(self.geometry, self.transformer)
        if isinstance(boundaries, Boundaries):
            # Revalidate against this geometry
            return Boundaries(self.geometry, self.transformer, boundaries.phi0,
                              boundaries.land_sea_mask, boundaries.albedo)
        return Boundaries.from_netcdf(boundaries, self.geometry, self.transformer, self.constants)

    # ========================================================================
    # Initial Conditions
    # ========================================================================

    def initialize_from_rest(self) -> PrognosticState:
        """
        Reference atmosphere at rest.

        Based on SPEEDY prognostics.f90:initialize_from_rest_state()

        Initializes:
        1. Vorticity and divergence to zero
        2. Temperature with:
        - Stratosphere (k=0,1): T = 216K
        - Troposphere (k>=2): T decreases with height following lapse rate
        3. Surface pressure consistent with hydrostatic balance
        4. Specific humidity in troposphere

        Returns:
            PrognosticState with past == present
        """
        c = self.constants
        geo = self.geometry
        tr = self.transformer
        kx = geo.nlev
        NF, CNF = geo.NF, geo.CNF
        fsg = jnp.asarray(geo.vertical.fsg, dtype=NF)
        phis = self.boundaries.phis
        phis0 = self.boundaries.phi0trunc

        tref = 288.0   # Surface reference temperature (K)
        ttop = 216.0   # Stratospheric temperature (K)
        gam1 = c.gamma / (1000.0 * c.grav)
        rgam = c.rgas * gam1

        zeros = geo.zeros_spectral(kx)

        # Temperature
        surfs = -gam1 * phis
        surfs = surfs.at[0].add(2.0**0.5 * tref)
        t = zeros.at[:, 2:].set(surfs[:, jnp.newaxis] * fsg[jnp.newaxis, 2:] ** rgam)
        t = t.at[0, :2].set(2.0**0.5 * ttop)

        # Log surface pressure, p_ref = 1013 hPa at z = 0
        surfg = float(np.log(1.013)) + jnp.log(1.0 - gam1 / tref * phis0) / rgam
        ps = tr.grid_to_spec(surfg.astype(NF))

        # Specific humidity (g/kg)
        esref = 17.0
        qref = c.refrh1 * 0.622 * esref
        qexp = c.hscale / c.hshum
        surfq = tr.grid_to_spec((qref * jnp.exp(qexp * surfg)).astype(NF))
        q = zeros.at[:, 2:].set(surfq[:, jnp.newaxis] * fsg[jnp.newaxis, 2:] ** qexp)

        state = SpectralState(vor=zeros, div=zeros, t=t.astype(CNF), q=q.astype(CNF), ps=ps)
        return PrognosticState.from_initial(state)

    def initial_state(self, state: SpectralState) -> PrognosticState:
        """
        Validate a user-supplied spectral state and start a run from it.

        Fields are bare arrays on the geometry's layout or SpectralField
        values at the model truncation.

        Raises:
            ConfigurationError: wrong truncation, shape or number format
        """
        return PrognosticState.from_initial(check_spectral_state(state, self.geometry))

    # ========================================================================
    # Time Stepping
    # ========================================================================

    def tendencies(self, state: Union[PrognosticState, SpectralState],
                   physics: Optional[GridTendencies] = None,
                   forcing: Optional[SpectralState] = None) -> SpectralState:
        """
        Full explicit tendencies of the present level (nonlinear plus linear
        terms, no implicit correction or diffusion).
        """
        present = state.present if isinstance(state, PrognosticState) else state
        return (self.dynamics.compute_tendencies(present, physics, forcing)
                + self.dynamics.linear_terms(present))

    def step(self, state: PrognosticState, dt: Optional[float] = None,
             tendencies: Union[SpectralState, GridTendencies, None] = None) -> PrognosticState:
        """
        Perform one time step.

        Delegates to TimeIntegrator.step()
        """
        return self.integrator.step(state, dt, tendencies)

    def integrate(self, state: PrognosticState, nsteps: int,
                  physics_fn: Optional[Callable[[PrognosticState], Union[SpectralState, GridTendencies]]] = None,
                  save_freq: Optional[int] = None,
                  log_freq: Optional[int] = None) -> Tuple[PrognosticState, Optional[SpectralState]]:
        """
        Integrate forward in time.

        Args:
            state: Initial prognostic state
            nsteps: Number of time steps
            physics_fn: Called with the current state before every step; returns
                parameterization tendencies passed on to step()
            save_freq: Save the present level every save_freq steps
            log_freq: Log diagnostics every log_freq steps

        Returns:
            final_state: State after nsteps steps
            trajectory: If save_freq provided, stacked SpectralState of present
                levels from the initial state on (length nsteps // save_freq + 1)
        """
        saved: List[SpectralState] = []
        if save_freq: saved.append(state.present)

        for i in range(nsteps):
            tendencies = physics_fn(state) if physics_fn is not None else None
            try:
                state = self.step(state, tendencies=tendencies)
            except NumericalInstabilityError as e:
                logger.error("Integration aborted: %s", e)
                raise
            if save_freq and (i + 1) % save_freq == 0:
                saved.append(state.present)
            if log_freq and (i + 1) % log_freq == 0:
                logger.info(format_diagnostics(state.step, self.diagnostics.compute(state.present)))

        if not saved:
            return state, None
        trajectory = jax.tree_util.tree_map(lambda *xs: jnp.stack(xs, axis=0), *saved)
        return state, trajectory

    # ========================================================================
    # Diagnosis
    # ========================================================================

    @partial(jax.jit, static_argnums=(0,))
    def _diagnose(self, state: SpectralState) -> GridState:
        """
        Convert a single spectral state to grid-point fields [lev, lat, lon].
        """
        tr = self.transformer
        u_spec, v_spec = tr.vor_div_to_uv(state.vor, state.div)

        u = tr.spec_3d_to_grid(u_spec, kcos=True, vector=True).transpose((2, 1, 0))
        v = tr.spec_3d_to_grid(v_spec, kcos=True, vector=True).transpose((2, 1, 0))
        vor = tr.spec_3d_to_grid(state.vor).transpose((2, 1, 0))
        div = tr.spec_3d_to_grid(state.div).transpose((2, 1, 0))
        t = tr.spec_3d_to_grid(state.t).transpose((2, 1, 0))
        q = tr.spec_3d_to_grid(state.q).transpose((2, 1, 0))
        ps = self.constants.p0 * jnp.exp(tr.spec_to_grid(state.ps)).transpose((1, 0))

        return GridState(u=u, v=v, vor=vor, div=div, t=t, q=q, ps=ps)

    def diagnose(self, state: Union[PrognosticState, SpectralState]) -> GridState:
        """
        Grid-point view of the present level.

        Args:
            state: PrognosticState (present level is used), SpectralState or a
                SpectralState with a leading batch/time axis

        Returns:
            GridState; surface pressure in Pa
        """
        spectral = state.present if isinstance(state, PrognosticState) else state
        if spectral.vor.ndim == 2:
            return self._diagnose(spectral)
        return jax.vmap(self._diagnose)(spectral)

    @property
    def grid_info(self) -> Dict[str, object]:
        """Coordinates of the grid-point output."""
        return {
            'nlon': self.geometry.nlon,
            'nlat': self.geometry.nlat,
            'nlev': self.geometry.nlev,
            'lat': self.geometry.lat,
            'lon': self.geometry.lon,
            'lev': self.geometry.vertical.fsg,
        }

# ============================================================================
# Entry points
# ============================================================================

def run(NF: str = 'float32', nsteps: int = 72, save_freq: Optional[int] = None,
        boundaries=None, log_freq: Optional[int] = None,
        **config_kwargs) -> Tuple[DynamicalCore, PrognosticState, Optional[SpectralState]]:
    """
    Build a core in number format NF and integrate from rest.

    Args:
        NF: 'float32' or 'float64' (float64 needs jax_enable_x64)
        nsteps: Number of time steps
        save_freq: Trajectory save frequency in steps
        boundaries: Boundaries or NetCDF path, None for an aquaplanet
        log_freq: Diagnostics log frequency in steps
        **config_kwargs: Passed to Config.create (trunc, nlev, dt, ...)

    Returns:
        (core, final_state, trajectory)
    """
    config = Config.create(NF=NF, **config_kwargs)
    core = DynamicalCore(config, boundaries=boundaries)
    state = core.initialize_from_rest()
    final_state, trajectory = core.integrate(state, nsteps, save_freq=save_freq, log_freq=log_freq)
    return core, final_state, trajectory

def main():
    """Integrate an aquaplanet from rest for a few days and write NetCDF output."""
    from timeit import default_timer as timer
    from dyjax.utils.inout import trajectory_dataset

    logging.basicConfig(level=logging.INFO, format='%(asctime)s %(name)s %(levelname)s: %(message)s')
    logger.info("JAX version: %s", jax.__version__)

    trunc = 30
    nlev = 8
    dt = 2400.0
    ndays = 5
    save_hours = 6

    nsteps = ndays * int(86400 / dt)
    save_freq = int(save_hours * 3600 / dt)

    start = timer()
    core, final_state, trajectory = run(NF='float32', nsteps=nsteps, save_freq=save_freq,
                                        log_freq=save_freq * 4, trunc=trunc, nlev=nlev, dt=dt)
    elapsed = timer() - start
    logger.info("Integrated %d steps in %.2fs (%.2f ms/step)", nsteps, elapsed, 1000 * elapsed / nsteps)

    ds = trajectory_dataset(core, trajectory, start='2000-01-01', interval_seconds=save_freq * dt)
    ds.to_netcdf('dycore.nc')
    logger.info("Trajectory written to dycore.nc")
    return final_state, trajectory

if __name__ == "__main__":
    main()
