# Copyright (c) 2025.
# This file is part of HybridJIT, released under the MIT License.
"""
Dense linear elimination kernels for HybridJIT.

This module holds the numerical inner loop of the reference hybrid
eliminator (:meth:`hybrid.factor_graph.HybridGaussianFactorGraph.eliminate_sequential`):
for one fixed discrete assignment, the selected Gaussian factors are stacked
into a single whitened system and reduced to upper-triangular form.

Key Concepts
------------
triangularize(Ab)
    JIT-compiled QR of the augmented matrix ``[A | b]``; returns only the
    ``R`` factor, whose last column holds the rotated right-hand side.

eliminate_dense(A, b, rank_tol)
    Splits the triangularized system into

        R x = d        the square upper-triangular conditional system
        e_min          0.5 * (residual that no x can explain)²
        log |det R|    needed for the Gaussian marginal mass

    Rows are sign-normalized so that ``diag(R) > 0``; two modes with the
    same Gaussian structure therefore produce numerically identical
    conditionals.

Notes
-----
The marginal mass of a mode, integrating out all continuous variables, is

    ∫ exp(−0.5 ||A x − b||²) dx = exp(−e_min) · (2π)^{n/2} / |det R|

which is what lets the eliminator compare modes on a true-probability basis.
"""

from __future__ import annotations

from dataclasses import dataclass

import jax
import jax.numpy as jnp


@dataclass(frozen=True)
class DenseElimination:
    R: jnp.ndarray           # (n, n), upper triangular, positive diagonal
    d: jnp.ndarray           # (n,)
    error: float             # minimal error 0.5 * residual²
    log_abs_det: float       # log |det R|


@jax.jit
def triangularize(Ab: jnp.ndarray) -> jnp.ndarray:
    return jnp.linalg.qr(Ab, mode="r")


def eliminate_dense(A: jnp.ndarray, b: jnp.ndarray, rank_tol: float = 1e-12) -> DenseElimination:
    """
    QR-eliminate the whitened least-squares system ``min 0.5 ||A x − b||²``.

    Args:
        A: (m, n) whitened coefficient matrix
        b: (m,) whitened right-hand side
        rank_tol: smallest admissible |R_ii|

    Returns:
        DenseElimination with the triangular system, the minimal error and
        log |det R|.

    Raises:
        ValueError: if the system does not determine every variable.
    """
    m, n = A.shape
    if m < n:
        raise ValueError(f"Underdetermined system: {m} rows for {n} unknowns")
    Ab = jnp.concatenate([A, b[:, None]], axis=1)
    Rfull = triangularize(Ab)

    R = Rfull[:n, :n]
    d = Rfull[:n, n]
    diag = jnp.diag(R)
    if bool(jnp.any(jnp.abs(diag) <= rank_tol)):
        raise ValueError("Singular system: a continuous variable is not determined")
    signs = jnp.where(diag < 0.0, -1.0, 1.0)
    R = R * signs[:, None]
    d = d * signs

    residual = Rfull[n, n] if Rfull.shape[0] > n else 0.0
    return DenseElimination(
        R=R,
        d=d,
        error=float(0.5 * residual * residual),
        log_abs_det=float(jnp.sum(jnp.log(jnp.abs(diag)))),
    )
