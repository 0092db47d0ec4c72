# Copyright (c) 2025.
# This file is part of HybridJIT, released under the MIT License.
"""
Hybrid Bayes net: an immutable, ordered sequence of HybridConditionals.

Storage and walk order
----------------------
Conditionals are stored in elimination order, as produced by
:meth:`HybridGaussianFactorGraph.eliminate_sequential`: the parents of a
conditional are frontal in conditionals stored *after* it, and a joint
discrete conditional over the modes usually comes last. Solving and
sampling therefore walk the sequence from the last conditional to the
first, which resolves every parent before its children.

Queries
-------
choose(assignment)
    Pure Gaussian Bayes net for one discrete assignment.

evaluate(values) / log_probability(values) / error(values)
    Exact joint density (and its logs) at a HybridValues.

error_tree(x), log_probability_tree(x), evaluate_tree(x)
    The same quantities at continuous values ``x``, for every discrete
    assignment at once. Gaussian terms use error plus the mode's
    log-normalizer offset, discrete terms ``-log P``.

discrete_posterior() / optimize()
    MPE: the discrete assignment maximizing
        Π P_discrete(m) · Π_hybrid C_m / C_max
    (every Gaussian at its own mean), followed by back-substitution.
    Ties within ``tie_tol`` go to the first assignment in canonical order
    (keys ascending, values ascending).

sample(given, rng)
    Ancestral sampling threading one caller-owned generator.

Transforms
----------
prune(max_nr_leaves), to_factor_graph(measurements) and append(c) return
new nets or graphs; no operation mutates an existing net.
"""

from __future__ import annotations

import logging
import math
from typing import Dict, Iterator, List, Mapping, Optional, Sequence, Tuple

import numpy as np

from ..core.config import default_rng, get_config
from ..core.decision_tree import DecisionTree, merge_discrete_keys
from ..core.errors import (
    DegenerateAssignmentError,
    MissingMeasurementError,
    UnresolvedParentError,
)
from ..core.types import (
    DiscreteKey,
    HybridValues,
    Key,
    KeyFormatter,
    VectorValues,
    continuous_part,
    default_key_formatter,
)
from ..discrete.discrete_conditional import DiscreteConditional
from ..discrete.discrete_factor import DiscreteFactor
from ..linear.gaussian_bayes_net import GaussianBayesNet
from .hybrid_factor import HybridCategory, HybridConditional

logger = logging.getLogger(__name__)


class HybridBayesNet:
    """Ordered hybrid conditionals; see the module docstring for conventions."""

    def __init__(self, conditionals: Sequence = ()) -> None:
        self._conditionals: Tuple[HybridConditional, ...] = tuple(
            HybridConditional.wrap(c) for c in conditionals
        )
        self._discrete_keys = merge_discrete_keys(
            *[c.discrete_keys for c in self._conditionals]
        )

    # --- Container ---

    @property
    def conditionals(self) -> Tuple[HybridConditional, ...]:
        return self._conditionals

    def __len__(self) -> int:
        return len(self._conditionals)

    def __iter__(self) -> Iterator[HybridConditional]:
        return iter(self._conditionals)

    def __getitem__(self, i: int) -> HybridConditional:
        return self._conditionals[i]

    at = __getitem__

    def append(self, conditional) -> "HybridBayesNet":
        return HybridBayesNet(self._conditionals + (HybridConditional.wrap(conditional),))

    def discrete_keys(self) -> Tuple[DiscreteKey, ...]:
        return self._discrete_keys

    def continuous_keys(self) -> Tuple[Key, ...]:
        seen: List[Key] = []
        for c in self._conditionals:
            for k in c.continuous_keys:
                if k not in seen:
                    seen.append(k)
        return tuple(seen)

    # --- Choosing a mode ---

    def choose(self, assignment: Mapping[Key, int]) -> GaussianBayesNet:
        """Gaussian net for one discrete assignment; discrete conditionals drop out."""
        chosen = []
        for c in self._conditionals:
            g = c.choose(assignment)
            if g is not None:
                chosen.append(g)
        return GaussianBayesNet(chosen)

    # --- Density at a HybridValues ---

    def log_probability(self, values: HybridValues) -> float:
        return float(sum(c.log_probability(values) for c in self._conditionals))

    def evaluate(self, values: HybridValues) -> float:
        return math.exp(self.log_probability(values))

    __call__ = evaluate

    def error(self, values: HybridValues) -> float:
        return float(self.error_tree(values.continuous)(values.discrete))

    # --- Trees over all discrete assignments ---

    def error_tree(self, continuous_values) -> DecisionTree:
        x = continuous_part(continuous_values)
        total = DecisionTree.constant(0.0)
        for c in self._conditionals:
            if c.category is HybridCategory.CONTINUOUS:
                e = c.inner.error(x)
                total = total.map(lambda v: v + e)
            elif c.category is HybridCategory.DISCRETE:
                total = total + c.inner.error_tree()
            elif c.category is HybridCategory.HYBRID:
                total = total + c.inner.error_tree(x)
            else:
                raise ValueError(f"Unhandled hybrid category {c.category!r}")
        return total

    def log_probability_tree(self, continuous_values) -> DecisionTree:
        return -self.error_tree(continuous_values)

    def evaluate_tree(self, continuous_values) -> DecisionTree:
        return self.log_probability_tree(continuous_values).map(math.exp)

    # --- MPE ---

    def discrete_posterior(self) -> DiscreteFactor:
        """Normalized MPE posterior over every discrete key in the net."""
        log_tree = DecisionTree.constant(0.0)
        for c in self._conditionals:
            if c.category is HybridCategory.DISCRETE:
                log_tree = log_tree + c.inner.log_tree()
            elif c.category is HybridCategory.HYBRID:
                log_tree = log_tree + c.inner.relative_log_normalizers()
        keys = self._discrete_keys
        peak = log_tree.max()
        if peak == -math.inf:
            raise DegenerateAssignmentError("No discrete assignment has positive probability")
        unnormalized = DiscreteFactor(keys, log_tree.map(lambda v: math.exp(v - peak)))
        return unnormalized.normalize()

    def optimize_continuous(self, assignment: Mapping[Key, int]) -> VectorValues:
        """Back-substitution in the Gaussian net selected by ``assignment``."""
        return self.choose(assignment).optimize()

    def optimize(self) -> HybridValues:
        posterior = self.discrete_posterior()
        assignment, value = posterior.argmax(get_config().tie_tol)
        if not value > 0.0:
            raise DegenerateAssignmentError("No discrete assignment has positive probability")
        logger.debug("MPE assignment %s with posterior %.6g", assignment, value)
        return HybridValues(self.optimize_continuous(assignment), assignment)

    # --- Sampling ---

    def sample(self, given: Optional[HybridValues] = None,
               rng: Optional[np.random.Generator] = None) -> HybridValues:
        rng = default_rng() if rng is None else rng
        given = given or HybridValues()
        continuous = dict(given.continuous)
        discrete = {k: int(v) for k, v in given.discrete.items()}

        for c in reversed(self._conditionals):
            if c.category is HybridCategory.DISCRETE:
                if all(k in discrete for k in c.frontals):
                    continue
            elif all(k in continuous for k in c.frontals):
                continue
            for key in c.continuous_parents:
                if key not in continuous:
                    raise UnresolvedParentError(key, f"Continuous parent "
                                                f"{default_key_formatter(key)} is unresolved")
            for dk in c.discrete_parents:
                if dk.key not in discrete:
                    raise UnresolvedParentError(dk.key, f"Discrete parent "
                                                f"{default_key_formatter(dk.key)} is unresolved")

            # Frontals already in ``given`` are conditioned on, never redrawn.
            if c.category is HybridCategory.DISCRETE:
                drawn = c.inner.sample(discrete, rng)
                discrete.update({k: v for k, v in drawn.items() if k not in discrete})
            elif c.category in (HybridCategory.CONTINUOUS, HybridCategory.HYBRID):
                drawn = c.choose(discrete).sample(continuous, rng)
                continuous.update({k: v for k, v in drawn.items() if k not in continuous})
            else:
                raise ValueError(f"Unhandled hybrid category {c.category!r}")
        return HybridValues(continuous, discrete)

    # --- Pruning ---

    def prune(self, max_nr_leaves: int) -> "HybridBayesNet":
        """
        New net keeping only the ``max_nr_leaves`` most probable discrete
        assignments.

        Assignments are ranked by :meth:`discrete_posterior`, the same tree
        :meth:`optimize` maximizes, so the MPE always survives. The discrete
        conditionals' joint is masked to the survivors, renormalized and
        refactored into a chain occupying the original discrete slots,
        ``P(F_k | F_later) = joint(F_k, F_later) / joint(F_later)``, and
        every mixture gets the same mask (modes with zero pruned
        probability become unavailable). Continuous conditionals are shared
        with the original net. A net without discrete conditionals is
        returned unchanged.
        """
        slots = [i for i, c in enumerate(self._conditionals)
                 if c.category is HybridCategory.DISCRETE]
        if not slots:
            return HybridBayesNet(self._conditionals)

        kept = self.discrete_posterior().prune(max_nr_leaves)
        logger.debug("Pruned discrete posterior over %d keys to %d assignments",
                     len(kept.discrete_keys), kept.nr_nonzero())

        joint = None
        for i in slots:
            joint = self._conditionals[i].inner if joint is None else joint * self._conditionals[i].inner
        survivors = kept.max_marginal(joint.keys)
        mask = DiscreteFactor(survivors.discrete_keys,
                              survivors.tree.map(lambda p: 1.0 if p > 0.0 else 0.0))
        pruned = (joint * mask).normalize()

        frontal_sets = {i: self._conditionals[i].inner.frontals for i in slots}
        all_frontals = {dk.key for i in slots for dk in frontal_sets[i]}
        external = [dk for dk in pruned.discrete_keys if dk.key not in all_frontals]

        replaced: Dict[int, DiscreteConditional] = {}
        for n, i in enumerate(slots):
            later = [dk for j in slots[n + 1:] for dk in frontal_sets[j]] + external
            replaced[i] = DiscreteConditional.from_joint(pruned, frontal_sets[i], later)

        out = []
        for i, c in enumerate(self._conditionals):
            if i in replaced:
                out.append(replaced[i])
            elif c.category is HybridCategory.HYBRID:
                out.append(c.inner.prune(kept))
            else:
                out.append(c)
        return HybridBayesNet(out)

    # --- Conversion ---

    def to_factor_graph(self, measurements=None):
        """
        Hybrid factor graph with ``measurements`` substituted.

        Conditionals whose continuous frontals are all measured become
        likelihood factors on their parents, and a partly measured conditional
        raises MissingMeasurementError. A conditional with no measured frontal
        is not an error: it is carried over as a factor on all of its keys
        (a mixture becomes its MixtureFactor), so unobserved variables stay in
        the graph for elimination. Only partial coverage of one conditional
        counts as a missing measurement.
        """
        from .factor_graph import HybridGaussianFactorGraph

        measurements = continuous_part(measurements or {})
        graph = HybridGaussianFactorGraph()
        for c in self._conditionals:
            if c.category is HybridCategory.DISCRETE:
                graph.push_back(c.inner)
                continue
            measured = [k for k in c.frontals if k in measurements]
            if len(measured) == len(c.frontals):
                graph.push_back(c.inner.likelihood(measurements))
            elif not measured:
                if c.category is HybridCategory.HYBRID:
                    graph.push_back(c.inner.as_mixture_factor())
                else:
                    graph.push_back(c.inner)
            else:
                missing = [k for k in c.frontals if k not in measurements]
                raise MissingMeasurementError(
                    missing,
                    "Measurements cover only part of the frontals "
                    f"{[default_key_formatter(k) for k in c.frontals]}",
                )
        logger.debug("Converted Bayes net of size %d to a factor graph of size %d",
                     len(self), len(graph))
        return graph

    # --- Testable ---

    def equals(self, other, tol: float = 1e-9) -> bool:
        return (
            isinstance(other, HybridBayesNet)
            and len(other) == len(self)
            and all(a.equals(b, tol) for a, b in zip(self._conditionals, other.conditionals))
        )

    def render(self, formatter: Optional[KeyFormatter] = None) -> str:
        lines = [f"HybridBayesNet of size {len(self)}"]
        for i, c in enumerate(self._conditionals):
            lines.append(f"conditional {i}: " + c.render(formatter))
        return "\n".join(lines)

    def __str__(self) -> str:
        return self.render()
