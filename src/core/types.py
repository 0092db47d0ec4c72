# Copyright (c) 2025.
# This file is part of HybridJIT, released under the MIT License.
"""
Core typed data structures for HybridJIT.

This module defines the lightweight containers shared by every layer of the
hybrid inference engine. They are intentionally minimal: they carry keys and
values only, while all numerical work happens in the factor and conditional
classes.

Types
-----
Key
    Opaque integer naming one random variable. Symbol keys pack a
    character into the top byte (``symbol("x", 1)``) so they print as ``x1``.

DiscreteKey
    ``(key, cardinality)`` pair for a categorical variable.

DiscreteValues / VectorValues
    Plain mappings ``Key -> int`` and ``Key -> jnp.ndarray``.

HybridValues
    Pair of a continuous and a discrete assignment.

Notes
-----
Mappings are never mutated by the library: every query copies what it needs,
so callers may share value dictionaries between queries.
"""

from __future__ import annotations

import string
from dataclasses import dataclass, field
from typing import Callable, Dict, Mapping, NamedTuple, NewType, Optional

import jax.numpy as jnp

from .errors import MissingAssignmentError

Key = NewType("Key", int)

DiscreteValues = Dict[Key, int]
VectorValues = Dict[Key, jnp.ndarray]
KeyFormatter = Callable[[Key], str]

_CHR_BITS = 8
_INDEX_BITS = 64 - _CHR_BITS
_INDEX_MASK = (1 << _INDEX_BITS) - 1


class DiscreteKey(NamedTuple):
    """Categorical variable: key plus number of values it can take."""
    key: Key
    cardinality: int


def symbol(char: str, index: int) -> Key:
    """Pack a one-character label and an index into a single integer key."""
    if len(char) != 1:
        raise ValueError(f"Symbol label must be a single character, got '{char}'")
    if index < 0 or index > _INDEX_MASK:
        raise ValueError(f"Symbol index out of range: {index}")
    return Key((ord(char) << _INDEX_BITS) | index)


def symbol_chr(key: Key) -> str:
    return chr(int(key) >> _INDEX_BITS)


def symbol_index(key: Key) -> int:
    return int(key) & _INDEX_MASK


def symbol_shorthand(char: str) -> Callable[[int], Key]:
    """Return ``f(i) = symbol(char, i)``, e.g. ``X = symbol_shorthand("x")``."""
    def make(index: int) -> Key:
        return symbol(char, index)
    return make


def default_key_formatter(key: Key) -> str:
    """Render symbol keys as ``x1`` and plain integers as decimal."""
    c = int(key) >> _INDEX_BITS
    if 0 < c < 256 and symbol_chr(key) in string.ascii_letters:
        return f"{symbol_chr(key)}{symbol_index(key)}"
    return str(int(key))


def lookup_vector(values: Mapping[Key, jnp.ndarray], key: Key) -> jnp.ndarray:
    """Fetch one continuous value as a 1-D array, failing on a missing key."""
    try:
        return jnp.atleast_1d(jnp.asarray(values[key]))
    except KeyError:
        raise MissingAssignmentError(
            key, f"No continuous value for key {default_key_formatter(key)}"
        ) from None


def vector_values_equal(a: Mapping[Key, jnp.ndarray], b: Mapping[Key, jnp.ndarray],
                        tol: float = 1e-9) -> bool:
    if set(a.keys()) != set(b.keys()):
        return False
    for k in a:
        va = jnp.atleast_1d(jnp.asarray(a[k]))
        vb = jnp.atleast_1d(jnp.asarray(b[k]))
        if va.shape != vb.shape or not bool(jnp.all(jnp.abs(va - vb) <= tol)):
            return False
    return True


def render_discrete_values(values: Mapping[Key, int],
                           formatter: KeyFormatter = default_key_formatter) -> str:
    return "{" + ", ".join(f"{formatter(k)}: {v}" for k, v in sorted(values.items())) + "}"


def render_vector_values(values: Mapping[Key, jnp.ndarray],
                         formatter: KeyFormatter = default_key_formatter) -> str:
    parts = []
    for k in sorted(values):
        vec = jnp.atleast_1d(jnp.asarray(values[k]))
        parts.append(f"{formatter(k)}: [{' '.join(f'{float(v):g}' for v in vec)}]")
    return "{" + ", ".join(parts) + "}"


@dataclass(frozen=True, eq=False)
class HybridValues:
    """Continuous and discrete assignment evaluated together."""
    continuous: Mapping[Key, jnp.ndarray] = field(default_factory=dict)
    discrete: Mapping[Key, int] = field(default_factory=dict)

    def at(self, key: Key) -> jnp.ndarray:
        return lookup_vector(self.continuous, key)

    def at_discrete(self, key: Key) -> int:
        try:
            return int(self.discrete[key])
        except KeyError:
            raise MissingAssignmentError(key) from None

    def equals(self, other: "HybridValues", tol: float = 1e-9) -> bool:
        if not isinstance(other, HybridValues):
            return False
        if {k: int(v) for k, v in self.discrete.items()} != \
                {k: int(v) for k, v in other.discrete.items()}:
            return False
        return vector_values_equal(self.continuous, other.continuous, tol)

    def render(self, formatter: Optional[KeyFormatter] = None) -> str:
        formatter = formatter or default_key_formatter
        return (
            "HybridValues(continuous="
            + render_vector_values(self.continuous, formatter)
            + ", discrete="
            + render_discrete_values(self.discrete, formatter)
            + ")"
        )

    def __str__(self) -> str:
        return self.render()


def continuous_part(values) -> Mapping[Key, jnp.ndarray]:
    """Accept either a :class:`HybridValues` or a plain continuous mapping."""
    if isinstance(values, HybridValues):
        return values.continuous
    return values


def discrete_part(values) -> Mapping[Key, int]:
    if isinstance(values, HybridValues):
        return values.discrete
    return values
