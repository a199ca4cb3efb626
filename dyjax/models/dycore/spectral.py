#!/usr/bin/env python3
"""
Triangular spectral storage.

Coefficients of a field truncated at total wavenumber T are stored
contiguously, m-major, for 0 <= m <= n <= T:

    (0,0) (0,1) ... (0,T) (1,1) (1,2) ... (1,T) ... (T,T)

so index(m, n) = m*(2T+3-m)/2 + (n-m) and there are (T+1)(T+2)/2 entries.
Entries with m > n or n > T do not exist in the array at all. Operators that
couple n-1, n and n+1 use precomputed neighbour index tables; a missing
neighbour points at one past the end of the source array, where take_padded
finds a zero row.
"""

import jax
import jax.numpy as jnp
import numpy as np
from functools import lru_cache
from typing import Iterator, Tuple

from .errors import ConfigurationError

class SpectralLayout:
    """
    Index tables for a triangular truncation.

    Attributes:
        trunc: Maximum total wavenumber T
        size: Number of coefficients, (T+1)(T+2)/2
        mmax: Largest zonal wavenumber (= T)
        m: Zonal wavenumber of each entry [size]
        n: Total wavenumber of each entry [size]
    """

    def __init__(self, trunc: int):
        if trunc < 0:
            raise ConfigurationError(f"Truncation must be non-negative, got {trunc}")
        self.trunc = int(trunc)
        self.mmax = self.trunc
        self.size = (self.trunc + 1) * (self.trunc + 2) // 2

        # m-major enumeration of the triangle
        m = np.concatenate([np.full(self.trunc + 1 - k, k) for k in range(self.trunc + 1)])
        n = np.concatenate([np.arange(k, self.trunc + 1) for k in range(self.trunc + 1)])
        self.m = m.astype(np.int32)
        self.n = n.astype(np.int32)
        self.m.setflags(write=False)
        self.n.setflags(write=False)

    def index(self, m: int, n: int) -> int:
        """Offset of (m, n); raises IndexError for entries outside the triangle."""
        if not (0 <= m <= n <= self.trunc):
            raise IndexError(f"(m={m}, n={n}) is not part of the T{self.trunc} triangle")
        return m * (2 * self.trunc + 3 - m) // 2 + (n - m)

    def __iter__(self) -> Iterator[Tuple[int, int]]:
        for m, n in zip(self.m, self.n):
            yield int(m), int(n)

    def __len__(self) -> int:
        return self.size

    def __contains__(self, mn) -> bool:
        m, n = mn
        return 0 <= m <= n <= self.trunc

    def __eq__(self, other) -> bool:
        return isinstance(other, SpectralLayout) and other.trunc == self.trunc

    def __hash__(self) -> int:
        return hash(('SpectralLayout', self.trunc))

    def __repr__(self) -> str:
        return f"SpectralLayout(T{self.trunc}, size={self.size})"

    # ========================================================================
    # Index tables between layouts
    # ========================================================================

    def neighbours(self, source: 'SpectralLayout', dn: int) -> np.ndarray:
        """
        For every entry (m, n) of this layout, the offset of (m, n+dn) in
        source, or source.size where that entry does not exist.
        """
        nn = self.n + dn
        valid = (nn >= self.m) & (nn <= source.trunc)
        idx = self.m * (2 * source.trunc + 3 - self.m) // 2 + (nn - self.m)
        return np.where(valid, idx, source.size).astype(np.int32)

    def positions_in(self, other: 'SpectralLayout') -> np.ndarray:
        """Offsets of all entries of this layout inside a larger layout."""
        if other.trunc < self.trunc:
            raise ConfigurationError(
                f"Cannot place T{self.trunc} coefficients inside T{other.trunc}")
        return (self.m * (2 * other.trunc + 3 - self.m) // 2 + (self.n - self.m)).astype(np.int32)

    def restrict(self, coeffs: jax.Array, source: 'SpectralLayout') -> jax.Array:
        """Keep the entries of this layout from coefficients stored on source."""
        return coeffs[self.positions_in(source)]

    def extend(self, coeffs: jax.Array, target: 'SpectralLayout') -> jax.Array:
        """Embed coefficients of this layout into target, zero elsewhere."""
        out = jnp.zeros((target.size,) + coeffs.shape[1:], dtype=coeffs.dtype)
        return out.at[self.positions_in(target)].set(coeffs)

@lru_cache(maxsize=None)
def layout(trunc: int) -> SpectralLayout:
    """Shared layout instance per truncation."""
    return SpectralLayout(trunc)

def take_padded(coeffs: jax.Array, index: np.ndarray) -> jax.Array:
    """Gather rows of coeffs; index == len(coeffs) selects a zero row."""
    zero = jnp.zeros((1,) + coeffs.shape[1:], dtype=coeffs.dtype)
    return jnp.concatenate([coeffs, zero], axis=0)[index]

# ============================================================================
# Spectral Field
# ============================================================================

@jax.tree_util.register_pytree_node_class
class SpectralField:
    """
    Complex coefficients of one field on a triangular truncation.

    The truncation is static pytree metadata, so fields of different
    truncations never mix under jit or tree_map. Axis 0 of coeffs is the
    layout axis; an optional trailing axis holds vertical levels.
    """

    def __init__(self, coeffs: jax.Array, trunc: int):
        coeffs = jnp.asarray(coeffs)
        expected = (trunc + 1) * (trunc + 2) // 2
        if coeffs.ndim not in (1, 2) or coeffs.shape[0] != expected:
            raise ConfigurationError(
                f"T{trunc} needs {expected} coefficients on axis 0, got shape {coeffs.shape}")
        self.coeffs = coeffs
        self.trunc = int(trunc)

    @classmethod
    def zeros(cls, trunc: int, nlev: int = None, dtype='complex64') -> 'SpectralField':
        size = (trunc + 1) * (trunc + 2) // 2
        shape = (size,) if nlev is None else (size, nlev)
        return cls(jnp.zeros(shape, dtype=dtype), trunc)

    @property
    def layout(self) -> SpectralLayout:
        return layout(self.trunc)

    @property
    def nlev(self):
        return None if self.coeffs.ndim == 1 else self.coeffs.shape[1]

    @property
    def dtype(self):
        return self.coeffs.dtype

    def tree_flatten(self):
        return (self.coeffs,), self.trunc

    @classmethod
    def tree_unflatten(cls, trunc, children):
        obj = object.__new__(cls)
        obj.coeffs = children[0]
        obj.trunc = trunc
        return obj

    # ========================================================================
    # Access
    # ========================================================================

    def __getitem__(self, mn: Tuple[int, int]) -> jax.Array:
        m, n = mn
        return self.coeffs[self.layout.index(m, n)]

    def __iter__(self) -> Iterator[Tuple[Tuple[int, int], jax.Array]]:
        for k, mn in enumerate(self.layout):
            yield mn, self.coeffs[k]

    def __len__(self) -> int:
        return self.coeffs.shape[0]

    def set(self, mn: Tuple[int, int], value) -> 'SpectralField':
        """Return a copy with coefficient (m, n) replaced."""
        k = self.layout.index(*mn)
        return SpectralField(self.coeffs.at[k].set(value), self.trunc)

    # ========================================================================
    # Arithmetic
    # ========================================================================

    def _check(self, other: 'SpectralField'):
        if other.trunc != self.trunc:
            raise ConfigurationError(
                f"Cannot combine T{self.trunc} and T{other.trunc} spectral fields")

    def __add__(self, other):
        if isinstance(other, SpectralField):
            self._check(other)
            return SpectralField(self.coeffs + other.coeffs, self.trunc)
        return NotImplemented

    def __sub__(self, other):
        if isinstance(other, SpectralField):
            self._check(other)
            return SpectralField(self.coeffs - other.coeffs, self.trunc)
        return NotImplemented

    def __mul__(self, other):
        if isinstance(other, SpectralField):
            self._check(other)
            return SpectralField(self.coeffs * other.coeffs, self.trunc)
        return SpectralField(self.coeffs * other, self.trunc)

    __rmul__ = __mul__

    def __neg__(self):
        return SpectralField(-self.coeffs, self.trunc)

    def __repr__(self) -> str:
        return f"SpectralField(T{self.trunc}, shape={tuple(self.coeffs.shape)}, dtype={self.coeffs.dtype})"
