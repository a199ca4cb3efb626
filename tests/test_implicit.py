import jax.numpy as jnp
import numpy as np
import pytest

from dyjax.models.dycore import ConfigurationError, Constants
from dyjax.models.dycore.implicit import ImplicitSolver, VerticalModes
from dyjax.models.dycore.vertical import VerticalGrid


@pytest.fixture(scope="module")
def modes(geometry):
    return VerticalModes(geometry.constants, geometry.vertical)


def test_gravity_wave_speeds_are_real_and_positive(modes):
    assert modes.eigenvalues.shape == (modes.nlev,)
    assert np.all(modes.eigenvalues > 0)
    assert np.all(np.diff(modes.eigenvalues) <= 0)
    # Fastest external mode of a ~288 K atmosphere travels at a few hundred m/s
    assert 100.0 < np.sqrt(modes.eigenvalues[0]) < 500.0
    reconstructed = modes.eigenvectors @ np.diag(modes.eigenvalues) @ modes.inverse
    np.testing.assert_allclose(reconstructed, modes.matrix, atol=1e-8 * np.abs(modes.matrix).max())


def test_mode_solve_equals_direct_inversion(config, geometry, modes, random_spectral):
    dt = 2.0 * config.dt
    solver = ImplicitSolver(config, geometry, modes, dt)
    kx = geometry.nlev
    divdt = random_spectral(geometry, nlev=kx) * 1e-10
    tdt = random_spectral(geometry, nlev=kx) * 1e-5
    psdt = random_spectral(geometry) * 1e-9

    div_new, t_new, ps_new = solver.apply(jnp.asarray(divdt), jnp.asarray(tdt), jnp.asarray(psdt))

    xi = config.alph * dt
    a = geometry.radius
    tref1 = modes.vertical_grid.tref1
    dhs = modes.vertical_grid.dhs
    for k, (m, n) in enumerate(geometry.layout):
        if n == 0:
            np.testing.assert_array_equal(np.asarray(div_new[k]), 0.0)
            continue
        el2 = n * (n + 1.0) / a**2
        rhs = divdt[k] + xi * el2 * (modes.xd @ tdt[k] + tref1 * psdt[k])
        expected = np.linalg.solve(solver.operator(n), rhs)
        np.testing.assert_allclose(np.asarray(div_new[k]), expected,
                                   rtol=1e-9, atol=1e-12 * np.abs(expected).max())
        np.testing.assert_allclose(complex(ps_new[k]), psdt[k] - xi * dhs @ expected,
                                   rtol=1e-9, atol=1e-20)
        np.testing.assert_allclose(np.asarray(t_new[k]), tdt[k] + xi * modes.xc @ expected,
                                   rtol=1e-9, atol=1e-15)


def test_solver_operator_at_zero_wavenumber_is_identity(config, geometry, modes):
    solver = ImplicitSolver(config, geometry, modes, config.dt)
    np.testing.assert_array_equal(solver.operator(0), np.eye(geometry.nlev))


def test_unstable_reference_profile_is_rejected():
    vertical = VerticalGrid(5, Constants())
    # A reference atmosphere with negative temperatures has no real gravity waves
    vertical.tref = -vertical.tref
    with pytest.raises(ConfigurationError):
        VerticalModes(Constants(), vertical)
