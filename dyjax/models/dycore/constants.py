#!/usr/bin/env python3
"""
Physical and dynamical constants for the dynamical core.

Based on SPEEDY Fortran modules:
- physical_constants.f90
- dynamical_constants.f90

Tunable numerical settings (time step, filter and diffusion coefficients)
live in Config (state.py) rather than here.
"""

from typing import NamedTuple

class Constants(NamedTuple):
    """
    Physical and dynamical constants.
    """

    # ========================================================================
    # Planet
    # ========================================================================

    rearth: float = 6.371e6    # Planet radius (m)
    omega: float = 7.292e-5    # Angular velocity (rad/s)
    grav: float = 9.81         # Gravitational acceleration (m/s^2)

    # ========================================================================
    # Thermodynamics
    # ========================================================================

    p0: float = 1.0e5          # Reference pressure (Pa)
    cp: float = 1004.0         # Specific heat at constant pressure (J/kg/K)
    akap: float = 2.0/7.0      # R/Cp
    rgas: float = 2.0/7.0 * 1004.0  # Gas constant for dry air (J/kg/K)

    # ========================================================================
    # Reference atmosphere
    # ========================================================================

    gamma: float = 6.0         # Reference lapse rate (K/km)
    hscale: float = 7.5        # Scale height for pressure (km)
    hshum: float = 2.5         # Scale height for specific humidity (km)
    refrh1: float = 0.7        # Reference relative humidity of near-surface air

def create_constants(**kwargs) -> Constants:
    """
    Create Constants with optional overrides.

    The gas constant follows akap and cp unless it is given explicitly.

    Example:
        constants = create_constants(rearth=3.3895e6, omega=7.088e-5)
    """
    defaults = Constants._field_defaults
    if 'rgas' not in kwargs and ('akap' in kwargs or 'cp' in kwargs):
        kwargs['rgas'] = kwargs.get('akap', defaults['akap']) * kwargs.get('cp', defaults['cp'])
    return Constants(**kwargs)

DEFAULT_CONSTANTS = Constants()
