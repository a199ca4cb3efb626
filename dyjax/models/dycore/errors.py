#!/usr/bin/env python3
"""
Error types raised by the dynamical core.

Setup problems (grid sizing, number formats, boundary and state shapes,
reference profiles) raise ConfigurationError while objects are being built.
A run that blows up raises NumericalInstabilityError from the integrator.
Spectral truncation of unresolved scales is expected and never an error.
"""

from typing import Optional

class DycoreError(Exception):
    """Base class for all dynamical core errors."""

class ConfigurationError(DycoreError, ValueError):
    """Invalid configuration detected while constructing model components."""

class NumericalInstabilityError(DycoreError, FloatingPointError):
    """
    A prognostic field became non-finite or exceeded the blow-up threshold.

    Attributes:
        step: Index of the step that failed (number of completed steps + 1)
        field: Name of the offending prognostic field
        value: Largest coefficient magnitude found in that field
    """

    def __init__(self, step: int, field: str, value: Optional[float] = None):
        self.step = step
        self.field = field
        self.value = value
        msg = f"Numerical instability at step {step} in field '{field}'"
        if value is not None:
            msg += f" (max |coeff| = {value:.3e})"
        super().__init__(msg)

    def __reduce__(self):
        return (self.__class__, (self.step, self.field, self.value))
