#!/usr/bin/env python3
import os
import jax.numpy as jnp
import numpy as np
import pandas as pd
import xarray as xr
from typing import Union, Optional, Dict, Any, Tuple, NamedTuple
from pathlib import Path

# Dimension names of the grid-point output fields
GRID_DIMS = {
   'u': ('lev', 'lat', 'lon'),
   'v': ('lev', 'lat', 'lon'),
   'vor': ('lev', 'lat', 'lon'),
   'div': ('lev', 'lat', 'lon'),
   't': ('lev', 'lat', 'lon'),
   'q': ('lev', 'lat', 'lon'),
   'ps': ('lat', 'lon'),
}

GRID_ATTRS = {
   'u': {'long_name': 'zonal wind', 'units': 'm s-1'},
   'v': {'long_name': 'meridional wind', 'units': 'm s-1'},
   'vor': {'long_name': 'relative vorticity', 'units': 's-1'},
   'div': {'long_name': 'divergence', 'units': 's-1'},
   't': {'long_name': 'temperature', 'units': 'K'},
   'q': {'long_name': 'specific humidity', 'units': 'g kg-1'},
   'ps': {'long_name': 'surface pressure', 'units': 'Pa'},
}

def _to_dataset(state: NamedTuple, dims: Dict[str, Tuple[str, ...]],
                coords: Optional[Dict[str, Any]] = None,
                metadata: Optional[Dict[str, Any]] = None,
                attrs: Optional[Dict[str, Dict[str, str]]] = None) -> xr.Dataset:
   """Collect the non-None fields of a state into an xarray Dataset."""
   ds = xr.Dataset()
   if coords:
      for name, values in coords.items(): ds.coords[name] = np.asarray(values)
   for field in state._fields:
      array = getattr(state, field)
      if array is None: continue
      da = xr.DataArray(np.asarray(array), dims=dims[field])
      if attrs and field in attrs: da.attrs.update(attrs[field])
      ds[field] = da
   if metadata: ds.attrs.update(metadata)
   return ds

def _default_dims(state: NamedTuple, leading: Tuple[str, ...] = ()) -> Dict[str, Tuple[str, ...]]:
   dims = {}
   for field in state._fields:
      array = getattr(state, field)
      if array is None: continue
      dims[field] = tuple(leading) + tuple(f'd{i}' for i in range(len(leading), jnp.ndim(array)))
   return dims

def write_trajectory(filename: Union[str, Path], state: NamedTuple, time,
                     metadata: Optional[Dict[str, Any]] = None,
                     coords: Optional[Dict[str, Any]] = None,
                     dims: Optional[Dict[str, Tuple[str, ...]]] = None) -> None:
   """Write a state trajectory (leading time axis) to a NetCDF file using xarray.
   Args:
      filename: Output file path, replaced if it exists
      state: NamedTuple of arrays with a leading time axis, e.g. a stacked GridState
      time: Time coordinate values
      metadata: Optional global attributes
      coords: Optional coordinate arrays for the other dimensions
      dims: Optional mapping of field names to dimension names
   Example:
      grid = core.diagnose(trajectory)
      dims = {name: ('time',) + d for name, d in GRID_DIMS.items()}
      coords = {'lev': core.grid_info['lev'], 'lat': core.grid_info['lat'], 'lon': core.grid_info['lon']}
      write_trajectory('output.nc', grid, time, coords=coords, dims=dims)
   """
   fpath = Path(filename)
   if fpath.exists(): os.remove(fpath)
   if dims is None: dims = _default_dims(state, leading=('time',))
   all_coords = {'time': time}
   if coords:
      for name, values in coords.items():
         if name != 'time': all_coords[name] = values
   ds = _to_dataset(state, dims, coords=all_coords, metadata=metadata)
   ds.to_netcdf(fpath)

def read_trajectory(filename: Union[str, Path], state_type: type,
                    time_slice: Optional[slice] = None) -> Tuple[NamedTuple, np.ndarray]:
   """Read a state trajectory from a NetCDF file.
   Args:
      filename: Input file path
      state_type: NamedTuple class to construct (e.g. GridState)
      time_slice: Optional slice for partial time reading
   Returns:
      tuple: (state, time)
   """
   with xr.open_dataset(filename) as ds:
      time = ds.time.values
      if time_slice: time = time[time_slice]
      fields = {}
      for field in state_type._fields:
         if field not in ds:
            if field in state_type._field_defaults:
               continue
            raise KeyError(f"Field {field} not found in file {filename}")
         array = ds[field].values
         if time_slice: array = array[time_slice]
         fields[field] = jnp.asarray(array)
   return state_type(**fields), time

def write_state(filename: Union[str, Path], state: NamedTuple,
                metadata: Optional[Dict[str, Any]] = None,
                coords: Optional[Dict[str, Any]] = None,
                dims: Optional[Dict[str, Tuple[str, ...]]] = None) -> None:
   """Write a single state to a NetCDF file.
   Similar to write_trajectory but without a time dimension. Complex spectral
   fields are split into '<field>_re' and '<field>_im' since NetCDF has no
   complex type."""
   fpath = Path(filename)
   if fpath.exists(): os.remove(fpath)
   if dims is None: dims = _default_dims(state)
   ds = _to_dataset(state, dims, coords=coords, metadata=metadata)
   for name in list(ds.data_vars):
      if np.iscomplexobj(ds[name].values):
         ds[f'{name}_re'] = ds[name].real
         ds[f'{name}_im'] = ds[name].imag
         ds = ds.drop_vars(name)
   ds.to_netcdf(fpath)

def read_state(filename: Union[str, Path], state_type: type) -> NamedTuple:
   """Read a single state written by write_state."""
   fields = {}
   with xr.open_dataset(filename) as ds:
      for field in state_type._fields:
         if field in ds:
            fields[field] = jnp.asarray(ds[field].values)
         elif f'{field}_re' in ds and f'{field}_im' in ds:
            fields[field] = jnp.asarray(ds[f'{field}_re'].values + 1j * ds[f'{field}_im'].values)
         elif field not in state_type._field_defaults:
            raise KeyError(f"Field {field} not found in file {filename}")
   return state_type(**fields)

def trajectory_dataset(core, trajectory, start: Union[str, pd.Timestamp] = '2000-01-01',
                       interval_seconds: float = 21600.0,
                       metadata: Optional[Dict[str, Any]] = None) -> xr.Dataset:
   """Grid-point Dataset of a saved spectral trajectory.
   Args:
      core: DynamicalCore the trajectory was produced by
      trajectory: SpectralState with a leading time axis (from integrate)
      start: Time of the first saved state
      interval_seconds: Time between saved states
      metadata: Optional global attributes added to the model description
   Returns:
      xr.Dataset with (time, lev, lat, lon) fields and surface pressure in Pa
   """
   grid = core.diagnose(trajectory)
   ntime = grid.u.shape[0]
   time = pd.date_range(start=pd.Timestamp(start), periods=ntime,
                        freq=pd.Timedelta(seconds=interval_seconds))
   info = core.grid_info
   coords = {'time': time, 'lev': info['lev'], 'lat': info['lat'], 'lon': info['lon']}
   dims = {name: ('time',) + d for name, d in GRID_DIMS.items()}
   attrs = {
      'model': 'dyjax spectral dynamical core',
      'truncation': f"T{core.config.trunc}",
      'dt_seconds': float(core.config.dt),
      'number_format': str(core.config.NF),
   }
   if metadata: attrs.update(metadata)
   ds = _to_dataset(grid, dims, coords=coords, metadata=attrs, attrs=GRID_ATTRS)
   ds['lev'].attrs.update({'long_name': 'sigma at full levels', 'positive': 'down'})
   ds['lat'].attrs.update({'long_name': 'latitude', 'units': 'degrees_north'})
   ds['lon'].attrs.update({'long_name': 'longitude', 'units': 'degrees_east'})
   return ds
