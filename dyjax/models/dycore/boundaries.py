#!/usr/bin/env python3
"""
Static boundary fields of the dynamical core.

Implements:
- Surface geopotential, land-sea mask and albedo on the model grid
- Spectral truncation of orography and spectral copies for the dynamics
- Reading boundary fields from NetCDF (orog, lsm, alb)

Based on SPEEDY boundaries.f90
"""

import logging
import pathlib
import jax
import jax.numpy as jnp
import numpy as np
import xarray as xr
from typing import Optional, Union

from .constants import Constants
from .errors import ConfigurationError
from .geometry import Geometry
from .transformer import Transformer

logger = logging.getLogger(__name__)

class Boundaries:
    """
    Read-only boundary fields consumed once at setup.

    Grid fields [nlon, nlat] in the geometry's NF:
        phi0: Surface geopotential (m^2/s^2)
        phi0trunc: phi0 with all scales above T removed
        land_sea_mask: Land fraction in [0, 1]
        albedo: Surface albedo
    Spectral fields [nlm] in CNF:
        phis: Spectral surface geopotential (of phi0trunc)
        land_sea_mask_spec, albedo_spec
    """

    def __init__(self, geometry: Geometry, transformer: Transformer,
                 phi0, land_sea_mask, albedo):
        """
        Args:
            geometry: Geometry the fields live on
            transformer: Transformer built on the same geometry
            phi0: Surface geopotential [nlon, nlat]
            land_sea_mask: Land fraction [nlon, nlat]
            albedo: Surface albedo [nlon, nlat]
        """
        self.geometry = geometry
        self.transformer = transformer

        self.phi0 = self._check_field('phi0', phi0)
        self.land_sea_mask = self._check_field('land_sea_mask', land_sea_mask)
        self.albedo = self._check_field('albedo', albedo)

        # Orography as seen by the dynamics
        self.phi0trunc = transformer.spectral_truncation(self.phi0)
        self.phis = transformer.grid_to_spec(self.phi0trunc)
        self.land_sea_mask_spec = transformer.grid_to_spec(self.land_sea_mask)
        self.albedo_spec = transformer.grid_to_spec(self.albedo)

        self._frozen = True
        logger.debug("Boundaries: max |phi0| = %.1f m^2/s^2, land fraction %.3f",
                     float(jnp.max(jnp.abs(self.phi0))), float(jnp.mean(self.land_sea_mask)))

    def __setattr__(self, name, value):
        if getattr(self, '_frozen', False):
            raise AttributeError(f"Boundaries are read-only, cannot set '{name}'")
        super().__setattr__(name, value)

    def _check_field(self, name: str, field) -> jax.Array:
        """Shape and number format must match the geometry exactly."""
        expected = (self.geometry.nlon, self.geometry.nlat)
        shape = tuple(np.shape(field))
        if shape != expected:
            raise ConfigurationError(
                f"Boundary field '{name}' has shape {shape}, expected (nlon, nlat) = {expected}")
        dtype = getattr(field, 'dtype', None)
        if dtype is None or jnp.dtype(dtype) != self.geometry.NF:
            raise ConfigurationError(
                f"Boundary field '{name}' has number format {dtype}, expected {self.geometry.NF}")
        return jnp.asarray(field)

    # ========================================================================
    # Constructors
    # ========================================================================

    @classmethod
    def aquaplanet(cls, geometry: Geometry, transformer: Transformer,
                   albedo: float = 0.07) -> 'Boundaries':
        """Flat ocean planet with uniform albedo."""
        zeros = geometry.zeros_grid()
        return cls(geometry, transformer,
                   phi0=zeros,
                   land_sea_mask=zeros,
                   albedo=jnp.full_like(zeros, albedo))

    @classmethod
    def from_netcdf(cls, path: Union[str, pathlib.Path], geometry: Geometry,
                    transformer: Transformer, constants: Optional[Constants] = None) -> 'Boundaries':
        """
        Read boundary fields from a NetCDF file on the model grid.

        Fields read:
        - orog: Orography (m), converted to geopotential phi0 = g * orog
        - lsm: Land-sea mask (fractional)
        - alb: Albedo

        Variables are stored (lat, lon). Files with a 'lat' coordinate are
        sorted south to north; files without one are assumed north to south.
        """
        if constants is None:
            constants = geometry.constants
        path = pathlib.Path(path)
        if not path.exists():
            raise FileNotFoundError(f"Boundary file not found: {path}")

        logger.info("Reading boundary fields from %s", path.name)
        with xr.open_dataset(path) as ds:
            if 'lat' in ds.coords:
                ds = ds.sortby('lat')
                flip = False
            else:
                flip = True

            def read(name):
                if name not in ds.variables:
                    raise KeyError(f"'{name}' field not found in {path.name}")
                values = np.asarray(ds[name].values, dtype=np.float64).T  # [lon, lat]
                if flip: values = values[:, ::-1]
                return jnp.asarray(values, dtype=geometry.NF)

            orog = read('orog')
            lsm = read('lsm')
            alb = read('alb')

        return cls(geometry, transformer,
                   phi0=(constants.grav * orog).astype(geometry.NF),
                   land_sea_mask=lsm,
                   albedo=alb)

    def __repr__(self) -> str:
        return (f"Boundaries({self.geometry.nlon}x{self.geometry.nlat}, "
                f"max orography {float(jnp.max(self.phi0)) / self.geometry.constants.grav:.0f} m)")
