#!/usr/bin/env python3
"""
Vertical sigma grid and reference atmosphere.

Defines sigma half/full levels, layer thicknesses, the reference temperature
profile linearized about by the semi-implicit scheme and the constants of
the hydrostatic integration.
Based on SPEEDY geometry.f90, implicit.f90 and geopotential.f90
"""

import numpy as np
from typing import Optional, Tuple

from .constants import Constants
from .errors import ConfigurationError

# SPEEDY half-level (interface) presets, top to surface
SIGMA_PRESETS = {
    8: (0.000, 0.050, 0.140, 0.260, 0.420, 0.600, 0.770, 0.900, 1.000),
    7: (0.020, 0.140, 0.260, 0.420, 0.600, 0.770, 0.900, 1.000),
    5: (0.000, 0.150, 0.350, 0.650, 0.900, 1.000),
}

class VerticalGrid:
    """
    Sigma coordinate levels, sigma = p / p_s.

    Level 0 is the model top, level nlev-1 the lowest layer. All tables are
    numpy arrays; consumers convert them to the model number format.
    """

    def __init__(self, nlev: int, constants: Optional[Constants] = None,
                 hsg: Optional[np.ndarray] = None):
        if constants is None:
            constants = Constants()
        self.nlev = nlev
        self.constants = constants

        if hsg is not None:
            self.hsg = np.asarray(hsg, dtype=np.float64)
        elif nlev in SIGMA_PRESETS:
            self.hsg = np.array(SIGMA_PRESETS[nlev])
        else:
            self.hsg = np.linspace(0.0, 1.0, nlev + 1)

        if self.hsg.shape != (nlev + 1,):
            raise ConfigurationError(
                f"Need {nlev + 1} sigma half levels for {nlev} layers, got {self.hsg.shape[0]}")
        if np.any(np.diff(self.hsg) <= 0) or self.hsg[-1] != 1.0 or self.hsg[0] < 0.0:
            raise ConfigurationError("Sigma half levels must increase from >= 0 to 1")

        # Full levels: midpoints of half levels
        self.fsg = 0.5 * (self.hsg[1:] + self.hsg[:-1])
        self.fsgr = constants.akap / (2.0 * self.fsg)

        # Layer thickness and its reciprocal (halved)
        self.dhs = np.diff(self.hsg)
        self.dhsr = 0.5 / self.dhs

        self.tref, self.tref1, self.tref2, self.tref3 = self._setup_reference_temperature()
        self.xgeop1, self.xgeop2 = self._setup_geopotential_constants()

    @property
    def rgam(self) -> float:
        """Polytropic exponent R*gamma/(1000*g) of the reference atmosphere."""
        c = self.constants
        return c.rgas * c.gamma / (1000.0 * c.grav)

    def _setup_reference_temperature(self) -> Tuple[np.ndarray, ...]:
        """
        T_ref(sigma) = 288 K * max(0.2, sigma)^(R*gamma/(1000*g))

        Returns tref together with R*tref, akap*tref and fsgr*tref.
        """
        tref = 288.0 * np.maximum(0.2, self.fsg) ** self.rgam
        tref1 = self.constants.rgas * tref
        tref2 = self.constants.akap * tref
        tref3 = self.fsgr * tref
        return tref, tref1, tref2, tref3

    def _setup_geopotential_constants(self) -> Tuple[np.ndarray, np.ndarray]:
        """
        Hydrostatic integration weights.

        xgeop1[k] = R log(hsg[k+1] / fsg[k])  (lower half of layer k)
        xgeop2[k] = R log(fsg[k] / hsg[k])    (upper half of layer k, k >= 1)
        """
        rgas = self.constants.rgas
        xgeop1 = rgas * np.log(self.hsg[1:] / self.fsg)
        xgeop2 = np.zeros(self.nlev)
        xgeop2[1:] = rgas * np.log(self.fsg[1:] / self.hsg[1:-1])
        return xgeop1, xgeop2

    def __repr__(self) -> str:
        return f"VerticalGrid(nlev={self.nlev}, hsg={np.round(self.hsg, 3).tolist()})"
