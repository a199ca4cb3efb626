import jax
import jax.numpy as jnp
from typing import TypeVar, NamedTuple

State = TypeVar('State', bound=NamedTuple)

def _state_op(op, state1: NamedTuple, state2: NamedTuple) -> NamedTuple:
   """Apply a binary operation field by field between two states."""
   if type(state1) != type(state2):
      raise TypeError(f"Cannot operate between {type(state1)} and {type(state2)}")
   return jax.tree_util.tree_map(
      lambda x, y: op(x,y) if (x is not None and y is not None) else None,
      state1, state2, is_leaf=lambda x: x is None)

def _scalar_op(op, state: NamedTuple, scalar) -> NamedTuple:
   """Apply a binary operation between every field and a scalar."""
   return jax.tree_util.tree_map(
      lambda x: op(x,scalar) if x is not None else None, state, is_leaf=lambda x: x is None)

def _binary(op, reflected: bool = False):
   """Build a dunder method that dispatches on state or scalar operands."""
   def method(self, other):
      if hasattr(other, '_fields'):
         return _state_op(op, other, self) if reflected else _state_op(op, self, other)
      if reflected: return _scalar_op(lambda x, s: op(s, x), self, other)
      return _scalar_op(op, self, other)
   return method

_BINARY_OPS = {
   '__add__': (jnp.add, False),
   '__sub__': (jnp.subtract, False),
   '__mul__': (jnp.multiply, False),
   '__truediv__': (jnp.divide, False),
   '__radd__': (jnp.add, True),
   '__rsub__': (jnp.subtract, True),
   '__rmul__': (jnp.multiply, True),
}

def _neg(self):
   return _scalar_op(jnp.multiply, self, -1.0)

def _max_abs(self) -> dict:
   """Largest coefficient magnitude of every field, keyed by field name."""
   return {name: jnp.max(jnp.abs(value)) for name, value in zip(self._fields, self)
           if value is not None}

def _all_finite(self) -> dict:
   """Whether every coefficient of a field is finite, keyed by field name."""
   return {name: jnp.all(jnp.isfinite(value)) for name, value in zip(self._fields, self)
           if value is not None}

def add_operators(cls):
   """Decorator to add arithmetic operators to a NamedTuple class.

   Operands may be another instance of the same class (field-wise) or a
   scalar (broadcast to every field). Fields set to None propagate as None.
   """
   for name, (op, reflected) in _BINARY_OPS.items():
      setattr(cls, name, jax.jit(_binary(op, reflected)))
   cls.__neg__ = jax.jit(_neg)
   cls.max_abs = _max_abs
   cls.all_finite = _all_finite
   return cls
