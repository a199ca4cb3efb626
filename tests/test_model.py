import jax.numpy as jnp
import numpy as np
import pytest

from dyjax.models.dycore import (
    Boundaries, Config, ConfigurationError, DynamicalCore, GridTendencies, SpectralState, run
)
from dyjax.models.dycore.spectral import SpectralField


def test_rest_atmosphere_stays_at_rest(core):
    state = core.initialize_from_rest()
    initial = state.present
    for _ in range(4):
        state = core.step(state)

    assert state.step == 4
    assert float(jnp.max(jnp.abs(state.present.vor))) < 1e-12
    assert float(jnp.max(jnp.abs(state.present.div))) < 1e-12
    np.testing.assert_allclose(np.asarray(state.present.t), np.asarray(initial.t), atol=1e-8)
    np.testing.assert_allclose(np.asarray(state.present.ps), np.asarray(initial.ps), atol=1e-10)


def test_rest_state_profile(core):
    grid = core.diagnose(core.initialize_from_rest())
    nlev, nlat, nlon = core.config.nlev, core.config.nlat, core.config.nlon
    assert grid.t.shape == (nlev, nlat, nlon)
    assert grid.ps.shape == (nlat, nlon)
    np.testing.assert_allclose(np.asarray(grid.t[0]), 216.0, rtol=1e-10)
    np.testing.assert_allclose(np.asarray(grid.ps), 1.013e5, rtol=1e-10)
    np.testing.assert_allclose(np.asarray(grid.u), 0.0, atol=1e-12)
    # Temperature decreases with height in the troposphere
    assert np.all(np.diff(np.asarray(grid.t[2:, 0, 0])) > 0)


def test_tendencies_vanish_at_rest(core):
    tend = core.tendencies(core.initialize_from_rest())
    for name, value in tend.max_abs().items():
        assert float(value) < 1e-12, name


def test_diagnose_is_idempotent(core):
    state = core.step(core.initialize_from_rest())
    first = core.diagnose(state)
    second = core.diagnose(state)
    for a, b in zip(first, second):
        np.testing.assert_array_equal(np.asarray(a), np.asarray(b))


def test_diagnose_trajectory(core):
    state = core.initialize_from_rest()
    final, trajectory = core.integrate(state, nsteps=4, save_freq=2)
    assert final.step == 4
    assert trajectory.vor.shape[0] == 3
    grid = core.diagnose(trajectory)
    assert grid.u.shape == (3, core.config.nlev, core.config.nlat, core.config.nlon)


def test_integrate_with_grid_physics(core):
    state = core.initialize_from_rest()
    shape = (core.config.nlon, core.config.nlat, core.config.nlev)
    heating = jnp.zeros(shape).at[:, :, -1].set(1.0e-5)
    physics = GridTendencies(u=jnp.zeros(shape), v=jnp.zeros(shape), t=heating, q=jnp.zeros(shape))

    final, trajectory = core.integrate(state, nsteps=3, physics_fn=lambda s: physics)
    assert trajectory is None
    warming = core.diagnostics.compute(final.present).temp - core.diagnostics.compute(state.present).temp
    assert float(warming[-1]) > 0.0


def test_initial_state_validation(core):
    rest = core.initialize_from_rest().present
    state = core.initial_state(rest)
    assert state.step == 0

    with pytest.raises(ConfigurationError):
        core.initial_state(rest._replace(vor=rest.vor[:, :2]))
    with pytest.raises(ConfigurationError):
        core.initial_state(rest._replace(t=rest.t.astype(jnp.complex64)))


def test_diagnostics_at_rest(core):
    values = core.diagnostics.compute(core.initialize_from_rest().present)
    np.testing.assert_allclose(np.asarray(values.reke), 0.0, atol=1e-12)
    np.testing.assert_allclose(np.asarray(values.deke), 0.0, atol=1e-12)
    np.testing.assert_allclose(float(values.temp[0]), 216.0, rtol=1e-12)


def test_flow_over_mountain_stays_finite(config):
    geometry_core = DynamicalCore(config)
    geometry = geometry_core.geometry
    lon = np.radians(geometry.lon)[:, np.newaxis]
    lat = np.radians(geometry.lat)[np.newaxis, :]
    height = 1500.0 * np.exp(-((lon - np.pi) ** 2 + (lat - np.pi / 4) ** 2) / 0.3)
    mountain = Boundaries(geometry, geometry_core.transformer,
                          phi0=jnp.asarray(geometry.constants.grav * height),
                          land_sea_mask=jnp.asarray((height > 100.0).astype(np.float64)),
                          albedo=jnp.full((geometry.nlon, geometry.nlat), 0.2))

    core = DynamicalCore(config, boundaries=mountain)
    state = core.initialize_from_rest()
    final, _ = core.integrate(state, nsteps=6)
    assert all(bool(v) for v in final.present.all_finite().values())
    # Orography spins up a circulation
    assert float(jnp.max(jnp.abs(final.present.div))) > 0.0
    grid = core.diagnose(final)
    assert float(np.min(np.asarray(grid.ps))) < 1.0e5


def test_explicit_scheme_runs(config):
    core = DynamicalCore(config._replace(alph=0.0, dt=600.0))
    assert core.integrator.solver(600.0) is None
    state = core.initialize_from_rest()
    final, _ = core.integrate(state, nsteps=2)
    assert final.step == 2


def test_run_entry_point():
    core, final, trajectory = run(NF="float64", nsteps=2, save_freq=1, trunc=5, nlev=5)
    assert isinstance(core, DynamicalCore)
    assert final.step == 2
    assert isinstance(trajectory, SpectralState)
    assert trajectory.t.shape[0] == 3


def test_float32_number_format():
    core, final, _ = run(NF="float32", nsteps=2, trunc=5, nlev=5)
    assert final.present.t.dtype == jnp.complex64
    assert core.diagnose(final).t.dtype == jnp.float32


def test_mismatched_boundaries_are_rejected(core):
    geometry = core.geometry
    zeros = jnp.zeros((geometry.nlon, geometry.nlat))
    with pytest.raises(ConfigurationError):
        Boundaries(geometry, core.transformer, jnp.zeros((geometry.nlon + 1, geometry.nlat)), zeros, zeros)
    with pytest.raises(ConfigurationError):
        Boundaries(geometry, core.transformer, zeros.astype(jnp.float32), zeros, zeros)
    with pytest.raises(ConfigurationError):
        DynamicalCore(Config.create(trunc=7, nlev=5, NF="float64"), boundaries=core.boundaries)


def test_rossby_haurwitz_vorticity_tendency(core):
    # A single spherical harmonic of vorticity only feels the planetary
    # vorticity gradient and drifts westward at 2 omega m / (n (n + 1))
    geometry = core.geometry
    m, n = 2, 3
    k = geometry.layout.index(m, n)
    vor = geometry.zeros_spectral(geometry.nlev).at[k].set(1.0e-6 * (1.0 + 0.5j))
    state = core.initialize_from_rest().present._replace(vor=vor)

    tend = core.dynamics.compute_tendencies(state)
    expected = 1j * 2.0 * core.constants.omega * m / (n * (n + 1)) * np.asarray(vor)
    scale = float(np.max(np.abs(expected)))
    np.testing.assert_allclose(np.asarray(tend.vor), expected, rtol=1e-8, atol=1e-8 * scale)


def test_zonally_symmetric_state_has_zonal_tendencies(core, random_spectral):
    geometry = core.geometry
    zonal = geometry.layout.m == 0
    nlev = geometry.nlev

    def zonal_field(scale, nlev=nlev, mean=True):
        coeffs = scale * random_spectral(geometry, nlev)
        coeffs[~zonal] = 0.0
        if not mean:
            coeffs[0] = 0.0
        return jnp.asarray(coeffs)

    rest = core.initialize_from_rest().present
    state = SpectralState(vor=zonal_field(1.0e-5, mean=False), div=zonal_field(1.0e-6, mean=False),
                          t=rest.t + zonal_field(1.0), q=rest.q + zonal_field(0.1),
                          ps=rest.ps + zonal_field(0.01, nlev=None))

    tend = core.tendencies(state)
    for name, value in tend._asdict().items():
        value = np.asarray(value)
        scale = float(np.max(np.abs(value[zonal])))
        assert scale > 0.0, name
        assert float(np.max(np.abs(value[~zonal]))) <= 1e-10 * scale, name


def test_initial_state_accepts_spectral_fields(core):
    rest = core.initialize_from_rest().present
    trunc = core.geometry.trunc
    state = core.initial_state(rest._replace(t=SpectralField(rest.t, trunc), ps=SpectralField(rest.ps, trunc)))
    np.testing.assert_array_equal(np.asarray(state.present.t), np.asarray(rest.t))
    assert isinstance(state.present.ps, jnp.ndarray)

    coarse = SpectralField.zeros(trunc - 1, nlev=core.geometry.nlev, dtype=core.geometry.CNF)
    with pytest.raises(ConfigurationError):
        core.initial_state(rest._replace(vor=coarse))
