# Copyright (c) 2025.
# This file is part of HybridJIT, released under the MIT License.
"""
Mixture factors and Gaussian mixture conditionals.

A mixture is a decision tree over its own discrete keys whose leaves select
the continuous payload that applies under each joint mode.

MixtureFactor
-------------
Leaves are pairs ``(factor, s)``: a :class:`JacobianFactor` plus a scalar
``s ≥ 0`` added to its error. ``s`` carries the log-normalizer difference
between modes so that errors stay comparable as probabilities when modes
have different noise scales. Built from raw per-mode log-normalizers
``L_m = n log 2π + log det Σ_m`` the offset is ``s_m = 0.5 (L_m − min L)``.

GaussianMixture
---------------
Leaves are :class:`GaussianConditional` objects, all with the same frontal
keys. For a mode ``m`` with log-normalization constant ``logC_m`` its
contribution to an error tree is

    E_m(x) + (logC_max − logC_m)

with ``logC_max`` the largest constant among the available modes. Pruned
modes are ``None`` leaves: their error is ``inf`` and they can never be
selected.

combine(a, b)
-------------
Sum of two mixtures as a "graph tree" over the union of their discrete
keys. Leaves are ``(factors, s)`` where ``factors`` is the tuple of every
continuous factor active under the joint mode and ``s`` the summed offsets;
a pruned leaf on either side gives a pruned (``None``) result.
"""

from __future__ import annotations

import math
from typing import Any, Optional, Sequence, Tuple, Union

from ..core.decision_tree import DecisionTree, apply
from ..core.errors import DegenerateAssignmentError
from ..core.types import (
    DiscreteKey,
    Key,
    KeyFormatter,
    continuous_part,
    default_key_formatter,
    discrete_part,
)
from ..discrete.discrete_factor import DiscreteFactor, as_discrete_keys
from ..linear.gaussian_conditional import GaussianConditional
from ..linear.jacobian_factor import JacobianFactor
from ..linear.noise import offsets_from_log_normalizers

GraphLeaf = Optional[Tuple[Tuple[JacobianFactor, ...], float]]


def _check_tree_keys(tree: DecisionTree, discrete_keys: Sequence[DiscreteKey]) -> None:
    declared = dict(discrete_keys)
    for dk in tree.discrete_keys():
        if declared.get(dk.key) != dk.cardinality:
            raise ValueError(
                f"Tree branches on {default_key_formatter(dk.key)} "
                f"which is not a declared discrete key"
            )


class MixtureFactor:
    """Decision tree of ``(JacobianFactor, offset)`` leaves."""

    def __init__(self, continuous_keys: Sequence[Key], discrete_keys: Sequence[DiscreteKey],
                 factors: Union[Sequence[Optional[JacobianFactor]], DecisionTree],
                 log_normalizers: Optional[Sequence[Optional[float]]] = None) -> None:
        self._continuous_keys = tuple(continuous_keys)
        self._discrete_keys = as_discrete_keys(discrete_keys)
        if isinstance(factors, DecisionTree):
            if log_normalizers is not None:
                raise ValueError("log_normalizers only apply to a table of factors")
            tree = factors.map(
                lambda leaf: leaf if leaf is None or isinstance(leaf, tuple) else (leaf, 0.0)
            )
        else:
            factors = list(factors)
            if log_normalizers is None:
                offsets = [0.0] * len(factors)
            else:
                if len(log_normalizers) != len(factors):
                    raise ValueError("One log-normalizer per factor is required")
                offsets = offsets_from_log_normalizers(log_normalizers)
            leaves = [None if f is None else (f, float(s)) for f, s in zip(factors, offsets)]
            tree = DecisionTree.from_table(self._discrete_keys, leaves)
        _check_tree_keys(tree, self._discrete_keys)

        allowed = set(self._continuous_keys)
        for leaf in tree.leaves():
            if leaf is not None and not set(leaf[0].keys) <= allowed:
                raise ValueError("Mixture component uses keys outside the continuous keys")
        self._tree: DecisionTree = tree

    @property
    def continuous_keys(self) -> Tuple[Key, ...]:
        return self._continuous_keys

    @property
    def discrete_keys(self) -> Tuple[DiscreteKey, ...]:
        return self._discrete_keys

    @property
    def keys(self) -> Tuple[Key, ...]:
        return self._continuous_keys + tuple(dk.key for dk in self._discrete_keys)

    @property
    def tree(self) -> DecisionTree:
        return self._tree

    def factors(self) -> Tuple[JacobianFactor, ...]:
        return tuple(leaf[0] for leaf in self._tree.leaves() if leaf is not None)

    def choose(self, assignment) -> JacobianFactor:
        leaf = self._tree(discrete_part(assignment))
        if leaf is None:
            raise DegenerateAssignmentError("Selected mixture component was pruned")
        return leaf[0]

    def error_tree(self, continuous_values) -> DecisionTree:
        x = continuous_part(continuous_values)
        return self._tree.map(
            lambda leaf: math.inf if leaf is None else leaf[0].error(x) + leaf[1]
        )

    def error(self, values) -> float:
        leaf = self._tree(values.discrete)
        if leaf is None:
            return math.inf
        return leaf[0].error(values.continuous) + leaf[1]

    def graph_tree(self) -> DecisionTree:
        return self._tree.map(lambda leaf: None if leaf is None else ((leaf[0],), leaf[1]))

    def equals(self, other, tol: float = 1e-9) -> bool:
        return (
            isinstance(other, MixtureFactor)
            and other.continuous_keys == self._continuous_keys
            and set(other.discrete_keys) == set(self._discrete_keys)
            and self._tree.equals(other.tree, tol)
        )

    def render(self, formatter: Optional[KeyFormatter] = None) -> str:
        formatter = formatter or default_key_formatter

        def fmt(leaf: Any) -> str:
            if leaf is None:
                return "nullptr"
            return f"offset {leaf[1]:.6g}\n" + leaf[0].render(formatter)

        keys = " ".join(formatter(k) for k in self.keys)
        return f"MixtureFactor({keys})\n" + self._tree.render(formatter, fmt)

    def __str__(self) -> str:
        return self.render()


class GaussianMixture:
    """Conditional p(x_F | x_P, m) with one GaussianConditional per mode."""

    def __init__(self, continuous_frontals: Sequence[Key], continuous_parents: Sequence[Key],
                 discrete_parents: Sequence[DiscreteKey],
                 conditionals: Union[Sequence[Optional[GaussianConditional]], DecisionTree]) -> None:
        self._frontals = tuple(continuous_frontals)
        self._parents = tuple(continuous_parents)
        self._discrete_parents = as_discrete_keys(discrete_parents)
        if isinstance(conditionals, DecisionTree):
            tree = conditionals
        else:
            tree = DecisionTree.from_table(self._discrete_parents, list(conditionals))
        _check_tree_keys(tree, self._discrete_parents)

        constants = []
        for c in tree.leaves():
            if c is None:
                continue
            if not isinstance(c, GaussianConditional):
                raise ValueError(f"Mixture component must be a GaussianConditional, got {type(c).__name__}")
            if c.frontals != self._frontals or not set(c.parents) <= set(self._parents):
                raise ValueError("Mixture component keys disagree with the mixture's keys")
            constants.append(c.log_normalization_constant())
        if not constants:
            raise DegenerateAssignmentError("Every mixture component is pruned")
        self._tree: DecisionTree = tree
        self._log_c_max = max(constants)

    # --- Structure ---

    @property
    def frontals(self) -> Tuple[Key, ...]:
        return self._frontals

    @property
    def continuous_parents(self) -> Tuple[Key, ...]:
        return self._parents

    @property
    def continuous_keys(self) -> Tuple[Key, ...]:
        return self._frontals + self._parents

    @property
    def discrete_keys(self) -> Tuple[DiscreteKey, ...]:
        return self._discrete_parents

    @property
    def conditionals(self) -> DecisionTree:
        return self._tree

    def log_normalization_constant(self) -> float:
        """Largest log-normalization constant among the available modes."""
        return self._log_c_max

    def _offset(self, c: GaussianConditional) -> float:
        return self._log_c_max - c.log_normalization_constant()

    # --- Queries ---

    def choose(self, assignment) -> GaussianConditional:
        c = self._tree(discrete_part(assignment))
        if c is None:
            raise DegenerateAssignmentError("Selected mixture component was pruned")
        return c

    def error_tree(self, continuous_values) -> DecisionTree:
        x = continuous_part(continuous_values)
        return self._tree.map(
            lambda c: math.inf if c is None else c.error(x) + self._offset(c)
        )

    def error(self, values) -> float:
        c = self._tree(values.discrete)
        if c is None:
            return math.inf
        return c.error(values.continuous) + self._offset(c)

    def relative_log_normalizers(self) -> DecisionTree:
        """Tree of ``logC_m − logC_max`` (``-inf`` for pruned modes)."""
        return self._tree.map(lambda c: -math.inf if c is None else -self._offset(c))

    def log_probability(self, values) -> float:
        c = self._tree(values.discrete)
        if c is None:
            return -math.inf
        return c.log_probability(values.continuous)

    def evaluate(self, values) -> float:
        return math.exp(self.log_probability(values))

    # --- Transforms ---

    def as_mixture_factor(self) -> MixtureFactor:
        tree = self._tree.map(lambda c: None if c is None else (c, self._offset(c)))
        return MixtureFactor(self.continuous_keys, self._discrete_parents, tree)

    def likelihood(self, measurements) -> Union[MixtureFactor, DiscreteFactor]:
        """
        Fix the frontals to ``measurements``.

        Returns a MixtureFactor on the continuous parents that keeps each
        mode's offset, or, when there are no continuous parents, a
        DiscreteFactor with values ``exp(−(E_m + s_m))``.
        """
        measurements = continuous_part(measurements)
        if not self._parents:
            values = self._tree.map(
                lambda c: 0.0 if c is None
                else math.exp(-(c.likelihood(measurements).error({}) + self._offset(c)))
            )
            return DiscreteFactor(self._discrete_parents, values)
        tree = self._tree.map(
            lambda c: None if c is None else (c.likelihood(measurements), self._offset(c))
        )
        return MixtureFactor(self._parents, self._discrete_parents, tree)

    def prune(self, probabilities: DiscreteFactor) -> "GaussianMixture":
        """Mark modes with zero (max-marginal) probability as pruned."""
        own = {dk.key for dk in self._discrete_parents}
        mask = probabilities.max_marginal(own).tree
        tree = apply(self._tree, mask, lambda c, p: c if p > 0.0 else None)
        return GaussianMixture(self._frontals, self._parents, self._discrete_parents, tree)

    def graph_tree(self) -> DecisionTree:
        return self.as_mixture_factor().graph_tree()

    # --- Testable ---

    def equals(self, other, tol: float = 1e-9) -> bool:
        return (
            isinstance(other, GaussianMixture)
            and other.frontals == self._frontals
            and other.continuous_parents == self._parents
            and set(other.discrete_keys) == set(self._discrete_parents)
            and self._tree.equals(other.conditionals, tol)
        )

    def render(self, formatter: Optional[KeyFormatter] = None) -> str:
        formatter = formatter or default_key_formatter
        given = [formatter(k) for k in self._parents]
        given += [formatter(dk.key) for dk in self._discrete_parents]
        head = "GaussianMixture p(" + " ".join(formatter(k) for k in self._frontals)
        head += " | " + " ".join(given) + ")"
        fmt = lambda c: "nullptr" if c is None else c.render(formatter)
        return head + "\n" + self._tree.render(formatter, fmt)

    def __str__(self) -> str:
        return self.render()


def _concat(a: GraphLeaf, b: GraphLeaf) -> GraphLeaf:
    if a is None or b is None:
        return None
    return a[0] + b[0], a[1] + b[1]


def graph_tree_of(mixture) -> DecisionTree:
    if isinstance(mixture, DecisionTree):
        return mixture
    return mixture.graph_tree()


def combine(a, b) -> DecisionTree:
    """Sum of two mixtures (or graph trees) over the union of their discrete keys."""
    return apply(graph_tree_of(a), graph_tree_of(b), _concat)
