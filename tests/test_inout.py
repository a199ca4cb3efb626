import numpy as np
import pandas as pd
import xarray as xr

from dyjax.models.dycore import GridState, SpectralState
from dyjax.utils.inout import (
    GRID_DIMS, read_state, read_trajectory, trajectory_dataset, write_state, write_trajectory
)


def test_spectral_state_round_trips_through_netcdf(tmp_path, core):
    state = core.step(core.initialize_from_rest()).present
    path = tmp_path / "state.nc"
    write_state(path, state, metadata={'truncation': 'T5'})

    with xr.open_dataset(path) as ds:
        assert 'vor_re' in ds and 'vor_im' in ds
        assert ds.attrs['truncation'] == 'T5'

    back = read_state(path, SpectralState)
    for name in SpectralState._fields:
        np.testing.assert_array_equal(np.asarray(getattr(back, name)), np.asarray(getattr(state, name)))


def test_trajectory_dataset(tmp_path, core):
    _, trajectory = core.integrate(core.initialize_from_rest(), nsteps=2, save_freq=1)
    ds = trajectory_dataset(core, trajectory, start='2000-01-01', interval_seconds=core.config.dt)

    assert ds.sizes['time'] == 3
    assert ds['t'].dims == ('time', 'lev', 'lat', 'lon')
    assert ds['ps'].dims == ('time', 'lat', 'lon')
    assert ds['ps'].attrs['units'] == 'Pa'
    assert pd.Timestamp(ds.time.values[1]) - pd.Timestamp(ds.time.values[0]) == pd.Timedelta(seconds=core.config.dt)
    np.testing.assert_allclose(ds['lat'].values, core.geometry.lat)

    path = tmp_path / "trajectory.nc"
    ds.to_netcdf(path)
    with xr.open_dataset(path) as reread:
        np.testing.assert_allclose(reread['ps'].values, ds['ps'].values)


def test_write_and_read_grid_trajectory(tmp_path, core):
    _, trajectory = core.integrate(core.initialize_from_rest(), nsteps=2, save_freq=1)
    grid = core.diagnose(trajectory)
    time = np.arange(3) * core.config.dt
    dims = {name: ('time',) + d for name, d in GRID_DIMS.items()}
    info = core.grid_info
    path = tmp_path / "grid.nc"

    write_trajectory(path, grid, time, coords={'lev': info['lev'], 'lat': info['lat'], 'lon': info['lon']},
                     dims=dims)
    # Existing files are replaced
    write_trajectory(path, grid, time, coords={'lev': info['lev'], 'lat': info['lat'], 'lon': info['lon']},
                     dims=dims)

    back, back_time = read_trajectory(path, GridState)
    np.testing.assert_allclose(back_time, time)
    np.testing.assert_allclose(np.asarray(back.t), np.asarray(grid.t))

    first, _ = read_trajectory(path, GridState, time_slice=slice(0, 1))
    assert first.u.shape[0] == 1
