# Copyright (c) 2025.
# This file is part of HybridJIT, released under the MIT License.
"""
Gaussian conditional density p(x_F | x_P).

A :class:`GaussianConditional` is a :class:`JacobianFactor` whose first
``nr_frontals`` keys are frontal. With ``R`` the (square) frontal block,
``S_j`` the parent blocks and ``d`` the right-hand side, the density is

    p(x_F | x_P) = C · exp(−E),   E = 0.5 ||(R x_F + Σ S_j x_j − d) / σ||²
    log C        = −n/2 log(2π) + log |det(R / σ)|

Capabilities used by the hybrid layer:

solve(parents)
    Conditional mean ``R⁻¹ (d − Σ S_j x_j)`` (back-substitution primitive).

sample(parents, rng)
    ``mean + (R/σ)⁻¹ z`` with ``z ~ N(0, I)`` drawn from the caller's stream.
    Frontals already in ``parents`` are conditioned on instead of redrawn.

likelihood(measurements)
    Substitute measured frontals; returns a factor over the parents only.
"""

from __future__ import annotations

import math
from typing import Dict, List, Mapping, Optional, Sequence, Tuple

import jax.numpy as jnp
import numpy as np

from ..core.config import default_rng
from ..core.types import (
    Key,
    KeyFormatter,
    continuous_part,
    default_key_formatter,
    lookup_vector,
)
from .jacobian_factor import JacobianFactor
from .noise import LOG_2PI


class GaussianConditional(JacobianFactor):
    """Linear Gaussian conditional; frontal keys come first in ``keys``."""

    def __init__(self, keys: Sequence[Key], blocks: Sequence[jnp.ndarray], d,
                 sigmas=None, nr_frontals: int = 1) -> None:
        super().__init__(keys, blocks, d, sigmas)
        if not 1 <= nr_frontals <= len(self.keys):
            raise ValueError(f"nr_frontals={nr_frontals} invalid for {len(self.keys)} keys")
        self._nr_frontals = nr_frontals
        R = self.R
        if R.shape[0] != R.shape[1]:
            raise ValueError(f"Frontal block must be square, got shape {tuple(R.shape)}")

    @classmethod
    def from_terms(cls, terms: Sequence[Tuple[Key, jnp.ndarray]], d, sigmas=None,
                   nr_frontals: int = 1) -> "GaussianConditional":
        return cls([k for k, _ in terms], [A for _, A in terms], d, sigmas, nr_frontals)

    @classmethod
    def from_mean_and_stddev(cls, key: Key, mean, sigma,
                             parent_terms: Sequence[Tuple[Key, jnp.ndarray]] = ()
                             ) -> "GaussianConditional":
        """``x = Σ A_j x_j + mean + noise`` with isotropic ``sigma``."""
        mean = jnp.atleast_1d(jnp.asarray(mean, dtype=float))
        n = mean.shape[0]
        keys = [key] + [k for k, _ in parent_terms]
        blocks = [jnp.eye(n)] + [-jnp.asarray(A, dtype=float).reshape(n, -1)
                                 for _, A in parent_terms]
        return cls(keys, blocks, mean, jnp.full((n,), float(sigma)), nr_frontals=1)

    # --- Structure ---

    @property
    def nr_frontals(self) -> int:
        return self._nr_frontals

    @property
    def frontals(self) -> Tuple[Key, ...]:
        return self.keys[: self._nr_frontals]

    @property
    def parents(self) -> Tuple[Key, ...]:
        return self.keys[self._nr_frontals:]

    @property
    def R(self) -> jnp.ndarray:
        return jnp.concatenate(self.blocks[: self._nr_frontals], axis=1)

    @property
    def d(self) -> jnp.ndarray:
        return self.b

    # --- Density ---

    def log_normalization_constant(self) -> float:
        Rw = self.R / self.sigmas[:, None]
        _, logdet = jnp.linalg.slogdet(Rw)
        return float(-0.5 * self.rows * LOG_2PI + logdet)

    def log_probability(self, values) -> float:
        return self.log_normalization_constant() - self.error(values)

    def evaluate(self, values) -> float:
        return math.exp(self.log_probability(values))

    __call__ = evaluate

    # --- Solving / sampling ---

    def _rhs(self, parent_values: Mapping[Key, jnp.ndarray]) -> jnp.ndarray:
        rhs = self.d
        for key, S in zip(self.parents, self.blocks[self._nr_frontals:]):
            rhs = rhs - S @ lookup_vector(parent_values, key)
        return rhs

    def _split(self, x: jnp.ndarray) -> Dict[Key, jnp.ndarray]:
        out: Dict[Key, jnp.ndarray] = {}
        offset = 0
        for key, A in zip(self.frontals, self.blocks):
            dim = A.shape[1]
            out[key] = x[offset: offset + dim]
            offset += dim
        return out

    def solve(self, parent_values=None) -> Dict[Key, jnp.ndarray]:
        """Conditional mean of the frontals given parent values."""
        parent_values = continuous_part(parent_values or {})
        return self._split(jnp.linalg.solve(self.R, self._rhs(parent_values)))

    def sample(self, parent_values=None,
               rng: Optional[np.random.Generator] = None) -> Dict[Key, jnp.ndarray]:
        """
        Draw the frontals given the parents.

        Frontals already present in ``parent_values`` are held fixed: the
        remaining ones are drawn from the Gaussian conditioned on them,

            x_a | x_b ~ N(μ_a − Λ_aa⁻¹ Λ_ab (x_b − μ_b), Λ_aa⁻¹),  Λ = Rwᵀ Rw
        """
        parent_values = continuous_part(parent_values or {})
        rng = default_rng() if rng is None else rng
        mean = jnp.linalg.solve(self.R, self._rhs(parent_values))
        Rw = self.R / self.sigmas[:, None]
        if not any(k in parent_values for k in self.frontals):
            z = jnp.asarray(rng.standard_normal(self.rows))
            return self._split(mean + jnp.linalg.solve(Rw, z))

        free_idx: List[int] = []
        fixed_idx: List[int] = []
        offset = 0
        for key, A in zip(self.frontals, self.blocks):
            dim = int(A.shape[1])
            (fixed_idx if key in parent_values else free_idx).extend(range(offset, offset + dim))
            offset += dim
        fixed = {k: lookup_vector(parent_values, k) for k in self.frontals if k in parent_values}
        if not free_idx:
            return fixed

        ia, ib = jnp.asarray(free_idx), jnp.asarray(fixed_idx)
        x_b = jnp.concatenate([fixed[k] for k in self.frontals if k in fixed])
        info = Rw.T @ Rw
        info_aa = info[jnp.ix_(ia, ia)]
        mean_a = mean[ia] - jnp.linalg.solve(info_aa, info[jnp.ix_(ia, ib)] @ (x_b - mean[ib]))
        chol = jnp.linalg.cholesky(info_aa)
        z = jnp.asarray(rng.standard_normal(len(free_idx)))
        x_a = mean_a + jnp.linalg.solve(chol.T, z)

        out: Dict[Key, jnp.ndarray] = {}
        start = 0
        for key, A in zip(self.frontals, self.blocks):
            if key in fixed:
                out[key] = fixed[key]
                continue
            dim = int(A.shape[1])
            out[key] = x_a[start: start + dim]
            start += dim
        return out

    def likelihood(self, measurements) -> JacobianFactor:
        """Factor on the parents with the frontals fixed to ``measurements``."""
        measurements = continuous_part(measurements)
        x_f = jnp.concatenate([lookup_vector(measurements, k) for k in self.frontals])
        b = self.d - self.R @ x_f
        return JacobianFactor(self.parents, self.blocks[self._nr_frontals:], b, self.sigmas)

    # --- Testable ---

    def equals(self, other, tol: float = 1e-9) -> bool:
        return (
            isinstance(other, GaussianConditional)
            and other.nr_frontals == self._nr_frontals
            and super().equals(other, tol)
        )

    def render(self, formatter: Optional[KeyFormatter] = None) -> str:
        formatter = formatter or default_key_formatter
        given = " ".join(formatter(k) for k in self.parents)
        head = "GaussianConditional p(" + " ".join(formatter(k) for k in self.frontals)
        head += (" | " + given + ")") if given else ")"
        body = super().render(formatter).split("\n", 1)[1]
        return head + "\n" + body
