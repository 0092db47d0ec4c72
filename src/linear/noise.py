# Copyright (c) 2025.
# This file is part of HybridJIT, released under the MIT License.
"""
Diagonal noise models.

Every Gaussian factor in HybridJIT carries a vector of per-row standard
deviations ``sigmas``. Rows are whitened by dividing by ``sigma`` so that

    error = 0.5 * || (A x - b) / sigma ||²

The helpers here are the only place that turns sigmas into whitened rows
or normalizing constants:

    • `as_sigmas(sigmas, rows)`:
        Broadcasts ``None``, a scalar or a vector to one sigma per row.

    • `whiten(A, b, sigmas)`:
        Returns the whitened pair ``(A / sigma, b / sigma)``.

    • `compute_log_normalizer(sigmas)`:
        ``n log(2π) + log det Σ`` for ``Σ = diag(sigma²)``. Mixture factors
        built from modes with different noise models use it to derive the
        per-mode error offsets (see :mod:`hybrid.mixture`).
"""

from __future__ import annotations

import math
from typing import Optional, Sequence

import jax.numpy as jnp

LOG_2PI = math.log(2.0 * math.pi)


def as_sigmas(sigmas, rows: int) -> jnp.ndarray:
    """Broadcast ``None``, a scalar or a vector to a length-``rows`` sigma vector."""
    if sigmas is None:
        return jnp.ones((rows,))
    s = jnp.atleast_1d(jnp.asarray(sigmas, dtype=float))
    if s.shape[0] == 1 and rows != 1:
        s = jnp.full((rows,), s[0])
    if s.shape != (rows,):
        raise ValueError(f"Expected {rows} sigmas, got shape {tuple(s.shape)}")
    if bool(jnp.any(s <= 0.0)):
        raise ValueError("Sigmas must be strictly positive")
    return s


def whiten(A: jnp.ndarray, b: jnp.ndarray, sigmas: jnp.ndarray):
    inv = 1.0 / sigmas
    return A * inv[:, None], b * inv


def compute_log_normalizer(sigmas: Sequence[float]) -> float:
    """Return ``n log(2π) + log det Σ`` for a diagonal covariance."""
    s = jnp.atleast_1d(jnp.asarray(sigmas, dtype=float))
    return float(s.shape[0] * LOG_2PI + 2.0 * jnp.sum(jnp.log(s)))


def offsets_from_log_normalizers(log_normalizers: Sequence[Optional[float]]):
    """Per-mode error offsets ``0.5 (L_m - min L)``; ``None`` entries stay ``None``."""
    present = [v for v in log_normalizers if v is not None]
    if not present:
        return [None for _ in log_normalizers]
    lowest = min(present)
    return [None if v is None else 0.5 * (v - lowest) for v in log_normalizers]
