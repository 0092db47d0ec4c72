# Copyright (c) 2025.
# This file is part of HybridJIT, released under the MIT License.
"""
Linear Gaussian factor in Jacobian form.

A :class:`JacobianFactor` on keys ``k_1 .. k_p`` stores one dense block
``A_j`` per key, a right-hand side ``b`` and per-row sigmas. Its residual and
error are

    r(x)  = Σ_j A_j x_j − b
    E(x)  = 0.5 * || r(x) / sigma ||²

A factor with no keys is a constant: its error is ``0.5 ||b / sigma||²``.
These are the continuous payloads of the hybrid layer and the inputs of the
dense eliminator in :mod:`optimization.solvers`.
"""

from __future__ import annotations

from typing import Dict, Mapping, Optional, Sequence, Tuple

import jax.numpy as jnp

from ..core.types import (
    Key,
    KeyFormatter,
    continuous_part,
    default_key_formatter,
    lookup_vector,
)
from .noise import as_sigmas, whiten


def _fmt_matrix(M: jnp.ndarray) -> str:
    rows = ["[" + " ".join(f"{float(v):g}" for v in row) + "]" for row in M]
    return "[" + " ".join(rows) + "]"


def _fmt_vector(v: jnp.ndarray) -> str:
    return "[" + " ".join(f"{float(x):g}" for x in v) + "]"


class JacobianFactor:
    """Whitened linear least-squares factor ``0.5 ||(Σ A_j x_j − b)/σ||²``."""

    def __init__(self, keys: Sequence[Key], blocks: Sequence[jnp.ndarray],
                 b, sigmas=None) -> None:
        keys = tuple(keys)
        if len(keys) != len(blocks):
            raise ValueError(f"{len(keys)} keys but {len(blocks)} blocks")
        if len(set(keys)) != len(keys):
            raise ValueError("Duplicate key in JacobianFactor")
        self._b = jnp.atleast_1d(jnp.asarray(b, dtype=float))
        rows = self._b.shape[0]
        mats = []
        for key, block in zip(keys, blocks):
            A = jnp.asarray(block, dtype=float)
            if A.ndim == 0:
                A = A.reshape(1, 1)
            elif A.ndim == 1:
                A = A.reshape(rows, -1)
            if A.shape[0] != rows:
                raise ValueError(
                    f"Block for key {default_key_formatter(key)} has {A.shape[0]} rows, "
                    f"expected {rows}"
                )
            mats.append(A)
        self._keys: Tuple[Key, ...] = keys
        self._blocks: Tuple[jnp.ndarray, ...] = tuple(mats)
        self._sigmas = as_sigmas(sigmas, rows)

    @classmethod
    def from_terms(cls, terms: Sequence[Tuple[Key, jnp.ndarray]], b, sigmas=None) -> "JacobianFactor":
        return cls([k for k, _ in terms], [A for _, A in terms], b, sigmas)

    # --- Accessors ---

    @property
    def keys(self) -> Tuple[Key, ...]:
        return self._keys

    @property
    def blocks(self) -> Tuple[jnp.ndarray, ...]:
        return self._blocks

    @property
    def b(self) -> jnp.ndarray:
        return self._b

    @property
    def sigmas(self) -> jnp.ndarray:
        return self._sigmas

    @property
    def rows(self) -> int:
        return int(self._b.shape[0])

    def block(self, key: Key) -> jnp.ndarray:
        return self._blocks[self._keys.index(key)]

    def dims(self) -> Dict[Key, int]:
        return {k: int(A.shape[1]) for k, A in zip(self._keys, self._blocks)}

    # --- Evaluation ---

    def unwhitened_error(self, values) -> jnp.ndarray:
        values = continuous_part(values)
        r = -self._b
        for key, A in zip(self._keys, self._blocks):
            r = r + A @ lookup_vector(values, key)
        return r

    def whitened_error(self, values) -> jnp.ndarray:
        return self.unwhitened_error(values) / self._sigmas

    def error(self, values) -> float:
        r = self.whitened_error(values)
        return float(0.5 * jnp.dot(r, r))

    def to_dense(self, ordering: Sequence[Key], dims: Mapping[Key, int]):
        """Whitened ``(A, b)`` with columns laid out in ``ordering``."""
        cols = []
        for key in ordering:
            if key in self._keys:
                cols.append(self.block(key))
            else:
                cols.append(jnp.zeros((self.rows, dims[key])))
        A = jnp.concatenate(cols, axis=1) if cols else jnp.zeros((self.rows, 0))
        return whiten(A, self._b, self._sigmas)

    # --- Testable ---

    def equals(self, other, tol: float = 1e-9) -> bool:
        if type(other) is not type(self) or other.keys != self._keys:
            return False
        if other.b.shape != self._b.shape:
            return False
        for A, B in zip(self._blocks, other.blocks):
            if A.shape != B.shape or not bool(jnp.all(jnp.abs(A - B) <= tol)):
                return False
        return bool(jnp.all(jnp.abs(self._b - other.b) <= tol)) and bool(
            jnp.all(jnp.abs(self._sigmas - other.sigmas) <= tol)
        )

    def render(self, formatter: Optional[KeyFormatter] = None) -> str:
        formatter = formatter or default_key_formatter
        lines = [f"{type(self).__name__}"]
        for key, A in zip(self._keys, self._blocks):
            lines.append(f"  A[{formatter(key)}] = {_fmt_matrix(A)}")
        lines.append(f"  b = {_fmt_vector(self._b)}")
        lines.append(f"  sigmas = {_fmt_vector(self._sigmas)}")
        return "\n".join(lines)

    def __str__(self) -> str:
        return self.render()
