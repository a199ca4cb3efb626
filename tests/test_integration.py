import jax.numpy as jnp
import numpy as np
import pytest

from dyjax.models.dycore import (
    Config, ConfigurationError, DynamicalCore, GridTendencies, NumericalInstabilityError, PrognosticState,
    SpectralState
)
from dyjax.models.dycore.integration import Leapfrog
from dyjax.models.dycore.spectral import SpectralField


def _oscillate(dt, nsteps, omega=1.0, rob=0.05, wil=0.53):
    """Integrate dF/dt = i omega F from F = 1 with Euler start, leapfrog and RAW filter."""
    scheme = Leapfrog(rob, wil)
    tendency = lambda f: 1j * omega * f
    past = 1.0 + 0.0j
    present = scheme.euler(past, tendency(past), dt)
    for _ in range(nsteps - 1):
        future = scheme.leapfrog(past, tendency(present), dt)
        past, present = scheme.filter(past, present, future)
    return present, np.exp(1j * omega * dt * nsteps)


def test_leapfrog_amplitude_within_one_percent():
    numerical, exact = _oscillate(dt=0.01, nsteps=1000)
    assert abs(abs(numerical) - 1.0) < 0.01
    assert abs(numerical - exact) < 0.01


def test_leapfrog_phase_error_is_second_order():
    coarse, exact_coarse = _oscillate(dt=0.01, nsteps=1000)
    fine, exact_fine = _oscillate(dt=0.005, nsteps=2000)
    error_coarse = abs(np.angle(coarse / exact_coarse))
    error_fine = abs(np.angle(fine / exact_fine))
    assert error_coarse / error_fine >= 3.5


def test_raw_filter_displacement():
    scheme = Leapfrog(rob=0.1, wil=0.5)
    present, future = scheme.filter(1.0, 2.0, 5.0)
    d = 0.1 * (1.0 - 4.0 + 5.0)
    assert present == pytest.approx(2.0 + 0.5 * d)
    assert future == pytest.approx(5.0 - 0.5 * d)


def test_first_step_is_forward_euler_and_later_steps_rotate(core):
    state = core.initialize_from_rest()
    assert state.step == 0
    first = core.step(state)
    assert first.step == 1
    # past becomes the initial condition
    np.testing.assert_array_equal(np.asarray(first.past.t), np.asarray(state.present.t))
    second = core.step(first)
    assert second.step == 2


def test_no_torn_state_on_blow_up(core):
    state = core.step(core.initialize_from_rest())
    before = {name: np.asarray(value).copy() for name, value in state.present._asdict().items()}

    forcing = state.present * 0.0
    forcing = forcing._replace(vor=jnp.full_like(forcing.vor, 1.0e6))
    with pytest.raises(NumericalInstabilityError) as excinfo:
        core.step(state, tendencies=forcing)
    assert excinfo.value.step == 2
    assert excinfo.value.field == 'vor'

    for name, value in state.present._asdict().items():
        np.testing.assert_array_equal(np.asarray(value), before[name])
    assert state.step == 1


def test_non_finite_state_is_reported(core):
    state = core.initialize_from_rest()
    bad = state.present._replace(q=state.present.q.at[3, 1].set(jnp.nan))
    with pytest.raises(NumericalInstabilityError) as excinfo:
        core.step(PrognosticState.from_initial(bad))
    assert excinfo.value.field == 'q'
    assert isinstance(excinfo.value, FloatingPointError)


def test_non_positive_time_step_is_rejected(core):
    state = core.initialize_from_rest()
    with pytest.raises(ConfigurationError):
        core.step(state, dt=0.0)


def test_smaller_time_step_builds_new_solver(core):
    state = core.initialize_from_rest()
    core.step(state, dt=core.config.dt / 2)
    assert core.config.dt / 2 in core.integrator._solvers


def _amplitude_error(dt, nsteps, wil):
    numerical, _ = _oscillate(dt, nsteps, wil=wil)
    return abs(abs(numerical) - 1.0)


def test_williams_correction_gives_second_order_amplitude():
    raw_ratio = _amplitude_error(0.01, 1000, wil=0.5) / _amplitude_error(0.005, 2000, wil=0.5)
    robert_ratio = _amplitude_error(0.01, 1000, wil=1.0) / _amplitude_error(0.005, 2000, wil=1.0)
    assert raw_ratio >= 3.8
    # Robert-Asselin damping is first order
    assert robert_ratio < 2.5
    assert _amplitude_error(0.01, 1000, wil=1.0) > _amplitude_error(0.01, 1000, wil=0.5)


def test_mismatched_tendencies_are_rejected(core):
    state = core.initialize_from_rest()
    forcing = state.present * 0.0
    shape = (core.config.nlon, core.config.nlat, core.config.nlev)
    zeros = jnp.zeros(shape)
    physics = GridTendencies(u=zeros, v=zeros, t=zeros, q=zeros)

    with pytest.raises(ConfigurationError):
        core.step(state, tendencies=SpectralState(*(x.astype(jnp.complex64) for x in forcing)))
    with pytest.raises(ConfigurationError):
        core.step(state, tendencies=forcing._replace(vor=forcing.vor[:, :2]))
    with pytest.raises(ConfigurationError):
        core.step(state, tendencies=forcing._replace(div=SpectralField(forcing.div[:10], 3)))
    with pytest.raises(ConfigurationError):
        core.step(state, tendencies=physics._replace(t=zeros.astype(jnp.float32)))
    with pytest.raises(ConfigurationError):
        core.step(state, tendencies=physics._replace(ps=zeros))
    with pytest.raises(ConfigurationError):
        core.step(state, tendencies=forcing._asdict())

    # Matching tendencies, also as SpectralField values, are accepted
    trunc = core.geometry.trunc
    new = core.step(state, tendencies=forcing._replace(t=SpectralField(forcing.t, trunc)))
    np.testing.assert_allclose(np.asarray(new.present.t), np.asarray(core.step(state).present.t))
    new = core.step(state, tendencies=physics._replace(ps=zeros[:, :, 0]))
    assert new.step == 1


def test_forcing_does_not_change_number_format():
    core = DynamicalCore(Config.create(trunc=5, nlev=5, NF="float32"))
    state = core.initialize_from_rest()
    wide = SpectralState(*(x.astype(jnp.complex128) for x in state.present * 0.0))
    with pytest.raises(ConfigurationError):
        core.step(state, tendencies=wide)
    assert core.step(state, tendencies=state.present * 0.0).present.t.dtype == jnp.complex64
