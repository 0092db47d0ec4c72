# Copyright (c) 2025.
# This file is part of HybridJIT, released under the MIT License.
"""
Non-negative potentials over discrete keys.

A :class:`DiscreteFactor` pairs an ordered list of :class:`DiscreteKey` with
a :class:`DecisionTree` of floats. Tables passed as flat sequences are laid
out in C order of the keys as given (last key fastest).

Primary Methods
---------------
evaluate(assignment) / error(assignment)
    Potential value and its negative log.

a * b, a / b
    Pointwise product / quotient over the union of keys (0 / 0 is 0).

sum_out(keys), max_out(keys), marginal(keys)
    Eliminate keys by summation or maximization.

prune(max_nr_assignments)
    Keep the most probable assignments, zero the rest and renormalize.
"""

from __future__ import annotations

import math
from typing import Dict, Iterable, Iterator, Optional, Sequence, Tuple, Union

from ..core.errors import DegenerateAssignmentError
from ..core.decision_tree import DecisionTree, merge_discrete_keys
from ..core.types import (
    DiscreteKey,
    Key,
    KeyFormatter,
    default_key_formatter,
    discrete_part,
)


def safe_log(p: float) -> float:
    return math.log(p) if p > 0.0 else -math.inf


def neg_log(p: float) -> float:
    return -math.log(p) if p > 0.0 else math.inf


def safe_divide(a: float, b: float) -> float:
    if b == 0.0:
        return 0.0 if a == 0.0 else math.inf
    return a / b


def as_discrete_keys(keys: Iterable) -> Tuple[DiscreteKey, ...]:
    if isinstance(keys, DiscreteKey):
        keys = [keys]
    return tuple(DiscreteKey(Key(k), int(c)) for k, c in keys)


class DiscreteFactor:
    """Decision-tree potential over an explicit list of discrete keys."""

    def __init__(self, keys: Sequence[DiscreteKey],
                 values: Union[Sequence[float], DecisionTree]) -> None:
        keys = as_discrete_keys(keys)
        if isinstance(values, DecisionTree):
            declared = {dk.key for dk in keys}
            merged = merge_discrete_keys(keys, values.discrete_keys())
            if any(dk.key not in declared for dk in merged):
                raise ValueError("Decision tree uses keys the factor does not declare")
            tree = values
        else:
            tree = DecisionTree.from_table(keys, [float(v) for v in values])
        self._keys = keys
        self._tree: DecisionTree = tree

    # --- Accessors ---

    @property
    def discrete_keys(self) -> Tuple[DiscreteKey, ...]:
        return self._keys

    @property
    def keys(self) -> Tuple[Key, ...]:
        return tuple(dk.key for dk in self._keys)

    @property
    def tree(self) -> DecisionTree:
        return self._tree

    def cardinality(self, key: Key) -> int:
        return dict(self._keys)[key]

    # --- Evaluation ---

    def __call__(self, assignment) -> float:
        return float(self._tree(discrete_part(assignment)))

    evaluate = __call__

    def error(self, assignment) -> float:
        return neg_log(self(assignment))

    def error_tree(self) -> DecisionTree:
        return self._tree.map(neg_log)

    def log_tree(self) -> DecisionTree:
        return self._tree.map(safe_log)

    def enumerate(self) -> Iterator[Tuple[Dict[Key, int], float]]:
        return self._tree.enumerate(self._keys)

    # --- Algebra ---

    def __mul__(self, other: "DiscreteFactor") -> "DiscreteFactor":
        keys = merge_discrete_keys(self._keys, other.discrete_keys)
        return DiscreteFactor(keys, self._tree * other.tree)

    def __truediv__(self, other: "DiscreteFactor") -> "DiscreteFactor":
        keys = merge_discrete_keys(self._keys, other.discrete_keys)
        return DiscreteFactor(keys, self._tree.apply(other.tree, safe_divide))

    def _eliminate(self, keys: Iterable[Key], op) -> "DiscreteFactor":
        drop = set(keys)
        tree = self._tree
        for dk in self._keys:
            if dk.key in drop:
                tree = tree.combine(dk, op)
        return DiscreteFactor([dk for dk in self._keys if dk.key not in drop], tree)

    def sum_out(self, keys: Iterable[Key]) -> "DiscreteFactor":
        return self._eliminate(keys, lambda a, b: a + b)

    def max_out(self, keys: Iterable[Key]) -> "DiscreteFactor":
        return self._eliminate(keys, max)

    def marginal(self, keep: Iterable[Key]) -> "DiscreteFactor":
        keep = set(keep)
        return self.sum_out([k for k in self.keys if k not in keep])

    def max_marginal(self, keep: Iterable[Key]) -> "DiscreteFactor":
        keep = set(keep)
        return self.max_out([k for k in self.keys if k not in keep])

    def sum(self) -> float:
        return self._tree.sum(self._keys)

    def normalize(self) -> "DiscreteFactor":
        total = self.sum()
        if not total > 0.0:
            raise DegenerateAssignmentError("Discrete factor has no positive mass")
        return DiscreteFactor(self._keys, self._tree.map(lambda v: v / total))

    def argmax(self, tie_tol: float = 0.0) -> Tuple[Dict[Key, int], float]:
        return self._tree.argmax(self._keys, tie_tol)

    def nr_nonzero(self) -> int:
        return sum(1 for _, v in self.enumerate() if v > 0.0)

    def prune(self, max_nr_assignments: int) -> "DiscreteFactor":
        """
        Keep the ``max_nr_assignments`` most probable assignments.

        Assignments are ranked by value (descending), equal values by
        canonical assignment order, so the cut-off is deterministic. Zero
        entries are never kept. The kept mass is renormalized to one.
        """
        if max_nr_assignments < 1:
            raise ValueError(f"max_nr_assignments must be >= 1, got {max_nr_assignments}")
        ranked = [(-v, i, a) for i, (a, v) in enumerate(self.enumerate()) if v > 0.0]
        if not ranked:
            raise DegenerateAssignmentError("Cannot prune a factor with no positive mass")
        ranked.sort(key=lambda item: (item[0], item[1]))
        kept = ranked[:max_nr_assignments]
        total = sum(-v for v, _, _ in kept)
        survivors = {tuple(sorted(a.items())): -v / total for v, _, a in kept}
        tree = DecisionTree.from_function(
            self._keys, lambda a: survivors.get(tuple(sorted(a.items())), 0.0)
        )
        return DiscreteFactor(self._keys, tree)

    # --- Testable ---

    def equals(self, other, tol: float = 1e-9) -> bool:
        return (
            type(other) is type(self)
            and set(other.discrete_keys) == set(self._keys)
            and self._tree.equals(other.tree, tol)
        )

    def _render_table(self, formatter: KeyFormatter) -> str:
        ordered = sorted(self._keys, key=lambda dk: dk.key)
        header = " ".join(formatter(dk.key) for dk in ordered) + " | value"
        rows = [header]
        for a, v in self._tree.enumerate(ordered):
            rows.append(" ".join(str(a[dk.key]) for dk in ordered) + f" | {v:.6g}")
        return "\n".join(rows)

    def render(self, formatter: Optional[KeyFormatter] = None) -> str:
        formatter = formatter or default_key_formatter
        keys = " ".join(formatter(k) for k in self.keys)
        return f"DiscreteFactor({keys})\n" + self._render_table(formatter)

    def __str__(self) -> str:
        return self.render()
