#!/usr/bin/env python3
"""
Global diagnostics of the dynamical core.

Based on SPEEDY diagnostics.f90.
Computes:
- Eddy kinetic energy (rotational and divergent components)
- Global-mean temperature
"""

import jax
import jax.numpy as jnp
import numpy as np
from functools import partial
from typing import NamedTuple

from .state import SpectralState
from .transformer import Transformer

class DiagnosticValues(NamedTuple):
    """
    Diagnostic values for one timestep.

    All arrays have shape [kx] for vertical profiles.
    """
    reke: jax.Array  # Rotational eddy kinetic energy [kx]
    deke: jax.Array  # Divergent eddy kinetic energy [kx]
    temp: jax.Array  # Global-mean temperature [kx]

class Diagnostics:
    """
    Per-level energy and temperature summaries from the spectral state.
    Eddies are all entries with m >= 1.
    """

    def __init__(self, transformer: Transformer):
        self.transformer = transformer
        self.eddy = jnp.asarray(transformer.geometry.layout.m >= 1)

    @partial(jax.jit, static_argnums=(0,))
    def compute(self, state: SpectralState) -> DiagnosticValues:
        """
        Args:
            state: SpectralState with vor, div, t [nlm, kx]

        Returns:
            DiagnosticValues with reke, deke, temp profiles
        """
        eddy = self.eddy[:, jnp.newaxis]

        # Global mean from the (0,0) coefficient
        temp = jnp.sqrt(0.5) * jnp.real(state.t[0])

        # KE = -sum(psi * conj(zeta)) with psi the streamfunction
        psi = self.transformer.inverse_laplacian(state.vor)
        reke = -jnp.sum(jnp.where(eddy, jnp.real(psi * jnp.conj(state.vor)), 0.0), axis=0)

        chi = self.transformer.inverse_laplacian(state.div)
        deke = -jnp.sum(jnp.where(eddy, jnp.real(chi * jnp.conj(state.div)), 0.0), axis=0)

        return DiagnosticValues(reke=reke, deke=deke, temp=temp)

def format_diagnostics(step: int, values: DiagnosticValues) -> str:
    """One log line per quantity, levels top to bottom."""
    def fmt(x):
        return ' '.join(f"{v:8.2f}" for v in np.asarray(x))
    return (f"step {step:6d}\n"
            f"  reke: {fmt(values.reke)}\n"
            f"  deke: {fmt(values.deke)}\n"
            f"  temp: {fmt(values.temp)}")
