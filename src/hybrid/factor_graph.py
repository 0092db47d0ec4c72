# Copyright (c) 2025.
# This file is part of HybridJIT, released under the MIT License.
"""
Hybrid Gaussian factor graph and reference eliminator.

The graph is the structure handed to elimination: a flat list of
:class:`HybridFactor` entries (discrete potentials, Jacobian factors and
mixture factors). :meth:`HybridBayesNet.to_factor_graph` builds one from a
net plus measurements, and :meth:`HybridGaussianFactorGraph.eliminate_sequential`
turns it back into a :class:`HybridBayesNet`.

Key Features
------------
• Graph tree
    All continuous and hybrid factors are summed with
    :func:`hybrid.mixture.combine` into one decision tree whose leaf under a
    mode is ``(active Gaussian factors, summed offset)``.

• Reference elimination
    For every joint discrete assignment (canonical order) the selected
    Gaussian factors are stacked into one whitened system and QR-eliminated
    by :func:`optimization.solvers.eliminate_dense`. The exact Gaussian
    marginal gives each mode's log mass

        log φ(a) − s_a − e_min(a) + n/2 log 2π − log |det R(a)|

    where φ is the product of discrete factors. The result is one
    conditional per continuous key in ordering order (a GaussianMixture
    where modes differ), followed by one joint DiscreteConditional over all
    discrete keys.

Modes with zero mass (pruned leaves, zero discrete potential) become
unavailable leaves. Elimination enumerates every discrete assignment, so it
is meant for the small graphs of tests and examples.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from typing import Dict, Iterator, List, Optional, Sequence, Tuple

import jax.numpy as jnp

from ..core.config import get_config
from ..core.decision_tree import DecisionTree, cartesian_product, merge_discrete_keys
from ..core.errors import DegenerateAssignmentError
from ..core.types import DiscreteKey, HybridValues, Key, KeyFormatter
from ..discrete.discrete_conditional import DiscreteConditional
from ..discrete.discrete_factor import safe_log
from ..linear.gaussian_conditional import GaussianConditional
from ..linear.noise import LOG_2PI
from ..optimization.solvers import eliminate_dense
from .bayes_net import HybridBayesNet
from .hybrid_factor import HybridCategory, HybridFactor
from .mixture import GaussianMixture, combine, graph_tree_of

logger = logging.getLogger(__name__)


@dataclass
class HybridGaussianFactorGraph:
    """
    Mutable list of hybrid factors.

    - factors: HybridFactor entries in insertion order

    ``push_back`` wraps raw factors and conditionals and checks that every
    discrete key keeps one cardinality across the graph.
    """
    factors: List[HybridFactor] = field(default_factory=list)

    def push_back(self, factor) -> None:
        wrapped = HybridFactor.wrap(factor)
        merge_discrete_keys(self.discrete_keys(), wrapped.discrete_keys)
        self.factors.append(wrapped)

    def extend(self, factors) -> None:
        for f in factors:
            self.push_back(f)

    def __len__(self) -> int:
        return len(self.factors)

    def __iter__(self) -> Iterator[HybridFactor]:
        return iter(self.factors)

    def __getitem__(self, i: int) -> HybridFactor:
        return self.factors[i]

    # --- Keys ---

    def continuous_keys(self) -> Tuple[Key, ...]:
        """Continuous keys in order of first appearance."""
        seen: List[Key] = []
        for f in self.factors:
            for k in f.continuous_keys:
                if k not in seen:
                    seen.append(k)
        return tuple(seen)

    def discrete_keys(self) -> Tuple[DiscreteKey, ...]:
        return merge_discrete_keys(*[f.discrete_keys for f in self.factors])

    def _dims(self) -> Dict[Key, int]:
        dims: Dict[Key, int] = {}
        for f in self.factors:
            if f.is_continuous():
                dims.update(f.inner.dims())
            elif f.is_hybrid():
                for leaf in graph_tree_of(f.inner).leaves():
                    if leaf is not None:
                        for g in leaf[0]:
                            dims.update(g.dims())
        return dims

    # --- Evaluation ---

    def error_tree(self, continuous_values) -> DecisionTree:
        total = DecisionTree.constant(0.0)
        for f in self.factors:
            total = total + f.error_tree(continuous_values)
        return total

    def error(self, values: HybridValues) -> float:
        return float(self.error_tree(values.continuous)(values.discrete))

    def graph_tree(self) -> DecisionTree:
        """Decision tree of ``(Gaussian factors, offset)`` over the hybrid keys."""
        tree = DecisionTree.constant(((), 0.0))
        for f in self.factors:
            if f.category is HybridCategory.CONTINUOUS:
                tree = combine(tree, DecisionTree.constant(((f.inner,), 0.0)))
            elif f.category is HybridCategory.HYBRID:
                tree = combine(tree, f.inner)
        return tree

    # --- Elimination ---

    def eliminate_sequential(self, ordering: Optional[Sequence[Key]] = None) -> HybridBayesNet:
        """
        Eliminate every continuous key, then the discrete keys jointly.

        Args:
            ordering: continuous elimination order; defaults to the order in
                which keys first appear in the graph.

        Returns:
            HybridBayesNet in elimination order: one conditional per
            continuous key, then the joint discrete conditional.
        """
        cfg = get_config()
        ordering = self.continuous_keys() if ordering is None else tuple(ordering)
        if set(ordering) != set(self.continuous_keys()):
            raise ValueError("Ordering must list exactly the continuous keys of the graph")
        dims = self._dims()
        offsets: Dict[Key, int] = {}
        n = 0
        for key in ordering:
            offsets[key] = n
            n += dims[key]

        dkeys = self.discrete_keys()
        discrete_factors = [f.inner for f in self.factors if f.is_discrete()]
        gtree = self.graph_tree()

        log_masses: List[float] = []
        solutions = []
        for assignment in cartesian_product(dkeys):
            log_phi = sum(safe_log(f(assignment)) for f in discrete_factors)
            leaf = gtree(assignment)
            if leaf is None or log_phi == -math.inf:
                log_masses.append(-math.inf)
                solutions.append(None)
                continue
            gaussians, s = leaf
            constant = sum(g.error({}) for g in gaussians if not g.keys)
            keyed = [g for g in gaussians if g.keys]
            if n == 0:
                log_masses.append(log_phi - s - constant)
                solutions.append(None)
                continue
            dense_parts = [g.to_dense(ordering, dims) for g in keyed]
            A = jnp.concatenate([p[0] for p in dense_parts], axis=0) if keyed else jnp.zeros((0, n))
            b = jnp.concatenate([p[1] for p in dense_parts]) if keyed else jnp.zeros((0,))
            dense = eliminate_dense(A, b, cfg.rank_tol)
            log_masses.append(
                log_phi - s - constant - dense.error + 0.5 * n * LOG_2PI - dense.log_abs_det
            )
            solutions.append(dense)

        peak = max(log_masses)
        if peak == -math.inf:
            raise DegenerateAssignmentError("Every discrete assignment has zero mass")

        def cols(k: Key) -> slice:
            return slice(offsets[k], offsets[k] + dims[k])

        conditionals: list = []
        for i, key in enumerate(ordering):
            rows = slice(offsets[key], offsets[key] + dims[key])

            parents = [
                k for k in ordering[i + 1:]
                if any(
                    sol is not None and float(jnp.max(jnp.abs(sol.R[rows, cols(k)]))) > cfg.rank_tol
                    for sol in solutions
                )
            ]
            unique: List[GaussianConditional] = []
            per_mode = []
            for sol, lm in zip(solutions, log_masses):
                if sol is None or lm == -math.inf:
                    per_mode.append(None)
                    continue
                blocks = [sol.R[rows, cols(key)]] + [sol.R[rows, cols(k)] for k in parents]
                cond = GaussianConditional([key] + parents, blocks, sol.d[rows])
                match = next((u for u in unique if u.equals(cond, cfg.equals_tol)), None)
                if match is None:
                    unique.append(cond)
                else:
                    cond = match
                per_mode.append(cond)

            tree = DecisionTree.from_table(dkeys, per_mode)
            if tree.is_leaf:
                conditionals.append(tree.value)
            else:
                conditionals.append(GaussianMixture((key,), parents, tree.discrete_keys(), tree))

        if dkeys:
            weights = [math.exp(lm - peak) for lm in log_masses]
            total = sum(weights)
            table = DecisionTree.from_table(dkeys, [w / total for w in weights])
            conditionals.append(DiscreteConditional(dkeys, (), table))

        logger.debug(
            "Eliminated %d continuous keys over %d discrete assignments",
            len(ordering), len(log_masses),
        )
        return HybridBayesNet(conditionals)

    # --- Testable ---

    def equals(self, other, tol: float = 1e-9) -> bool:
        return (
            isinstance(other, HybridGaussianFactorGraph)
            and len(other) == len(self)
            and all(a.equals(b, tol) for a, b in zip(self.factors, other.factors))
        )

    def render(self, formatter: Optional[KeyFormatter] = None) -> str:
        lines = [f"HybridGaussianFactorGraph of size {len(self)}"]
        for i, f in enumerate(self.factors):
            lines.append(f"factor {i}: " + f.render(formatter))
        return "\n".join(lines)

    def __str__(self) -> str:
        return self.render()
