"""
Spectral primitive-equation dynamical core for JAX.

Hydrostatic sigma-coordinate dynamics with a semi-implicit leapfrog
scheme, following the SPEEDY formulation.
"""

from .main import DynamicalCore, run
from .state import (
    Config, SpectralState, GridState, GridTendencies, PrognosticState
)
from .constants import Constants, create_constants
from .errors import DycoreError, ConfigurationError, NumericalInstabilityError
from .geometry import Geometry
from .boundaries import Boundaries
from .diagnostics import DiagnosticValues

__all__ = [
    # Main class
    'DynamicalCore',
    'run',
    # States
    'Config',
    'SpectralState',
    'GridState',
    'GridTendencies',
    'PrognosticState',
    'DiagnosticValues',
    # Setup
    'Constants',
    'create_constants',
    'Geometry',
    'Boundaries',
    # Errors
    'DycoreError',
    'ConfigurationError',
    'NumericalInstabilityError',
]
