# Copyright (c) 2025.
# This file is part of HybridJIT, released under the MIT License.
"""
Discrete conditional distributions P(frontals | parents).

Tables can be given three ways:

    • A signature string, one row per parent assignment, entries separated
      by ``/``: ``"0.5/0.5"`` (no parents) or ``"1/1 2/3"`` (binary parent).
      Rows are normalized independently, so weights need not sum to one.

    • A flat sequence laid out in C order of ``parents + frontals`` (the
      same layout as the signature rows, concatenated).

    • A ready-made :class:`DecisionTree` (used by pruning and elimination);
      no normalization is applied.

Rows are parent assignments in C order of the parents as given (last parent
fastest); within a row, frontal assignments are in C order of the frontals.
"""

from __future__ import annotations

from typing import Dict, List, Mapping, Optional, Sequence, Tuple, Union

import numpy as np

from ..core.config import default_rng
from ..core.decision_tree import DecisionTree, cartesian_product
from ..core.errors import DegenerateAssignmentError, MissingAssignmentError
from ..core.types import (
    DiscreteKey,
    Key,
    KeyFormatter,
    default_key_formatter,
    discrete_part,
)
from .discrete_factor import DiscreteFactor, as_discrete_keys, safe_divide, safe_log


def parse_signature(signature: str) -> List[List[float]]:
    """Parse ``"1/1 2/3"`` into ``[[1, 1], [2, 3]]``."""
    rows = []
    for token in signature.split():
        try:
            rows.append([float(x) for x in token.split("/")])
        except ValueError as exc:
            raise ValueError(f"Malformed signature row '{token}'") from exc
    if not rows:
        raise ValueError("Empty signature")
    return rows


def _product(keys: Sequence[DiscreteKey]) -> int:
    n = 1
    for dk in keys:
        n *= dk.cardinality
    return n


class DiscreteConditional(DiscreteFactor):
    """Normalized table P(F | P) stored as a decision tree."""

    def __init__(self, frontals, parents: Sequence[DiscreteKey] = (),
                 table: Union[str, Sequence[float], DecisionTree] = None) -> None:
        frontals = as_discrete_keys(frontals)
        parents = as_discrete_keys(parents)
        if not frontals:
            raise ValueError("A discrete conditional needs at least one frontal key")
        if table is None:
            raise ValueError("A discrete conditional needs a table")

        if isinstance(table, DecisionTree):
            tree = table
        else:
            if isinstance(table, str):
                rows = parse_signature(table)
            else:
                flat = [float(v) for v in table]
                width = _product(frontals)
                if len(flat) % width:
                    raise ValueError(f"Table size {len(flat)} is not a multiple of {width}")
                rows = [flat[i: i + width] for i in range(0, len(flat), width)]
            if len(rows) != _product(parents):
                raise ValueError(
                    f"Expected {_product(parents)} rows (one per parent assignment), got {len(rows)}"
                )
            values: List[float] = []
            for row in rows:
                if len(row) != _product(frontals):
                    raise ValueError(f"Row {row} should have {_product(frontals)} entries")
                if any(v < 0.0 for v in row):
                    raise ValueError(f"Negative probability in row {row}")
                total = sum(row)
                values.extend(safe_divide(v, total) for v in row)
            tree = DecisionTree.from_table(parents + frontals, values)

        super().__init__(frontals + parents, tree)
        self._nr_frontals = len(frontals)

    @classmethod
    def from_joint(cls, joint: DiscreteFactor, frontals: Sequence[DiscreteKey],
                   parents: Sequence[DiscreteKey] = ()) -> "DiscreteConditional":
        """``P(F | P) = joint(F, P) / joint(P)`` after marginalizing everything else."""
        frontals = as_discrete_keys(frontals)
        parents = as_discrete_keys(parents)
        numerator = joint.marginal([dk.key for dk in frontals + parents])
        denominator = joint.marginal([dk.key for dk in parents])
        quotient = numerator.tree.apply(denominator.tree, safe_divide)
        return cls(frontals, parents, quotient)

    # --- Structure ---

    @property
    def nr_frontals(self) -> int:
        return self._nr_frontals

    @property
    def frontals(self) -> Tuple[DiscreteKey, ...]:
        return self.discrete_keys[: self._nr_frontals]

    @property
    def parents(self) -> Tuple[DiscreteKey, ...]:
        return self.discrete_keys[self._nr_frontals:]

    # --- Queries ---

    def log_probability(self, assignment) -> float:
        return safe_log(self(assignment))

    def _parent_slice(self, parent_values: Mapping[Key, int]) -> Dict[Key, int]:
        parent_values = discrete_part(parent_values)
        out = {}
        for dk in self.parents:
            if dk.key not in parent_values:
                raise MissingAssignmentError(
                    dk.key, f"Parent {default_key_formatter(dk.key)} has no value"
                )
            out[dk.key] = int(parent_values[dk.key])
        return out

    def choose(self, parent_values: Mapping[Key, int]) -> "DiscreteConditional":
        """Restrict to one parent assignment, leaving P(F)."""
        tree = self.tree.restrict(self._parent_slice(parent_values))
        return DiscreteConditional(self.frontals, (), tree)

    def _row(self, parent_values) -> List[Tuple[Dict[Key, int], float]]:
        row_tree = self.tree.restrict(self._parent_slice(parent_values))
        return [(a, float(row_tree(a))) for a in cartesian_product(self.frontals)]

    def argmax(self, parent_values: Optional[Mapping[Key, int]] = None,
               tie_tol: float = 0.0) -> Dict[Key, int]:
        best, best_p = None, None
        for a, p in self._row(parent_values or {}):
            if best_p is None or p > best_p + tie_tol:
                best, best_p = a, p
        return best

    def sample(self, parent_values: Optional[Mapping[Key, int]] = None,
               rng: Optional[np.random.Generator] = None) -> Dict[Key, int]:
        """
        Draw the frontals given the parents.

        Frontals already present in ``parent_values`` are held fixed and the
        rest are drawn from the renormalized row ``P(free | fixed, parents)``;
        the fixed values are returned unchanged.
        """
        rng = default_rng() if rng is None else rng
        values = discrete_part(parent_values or {})
        fixed = {dk.key: int(values[dk.key]) for dk in self.frontals if dk.key in values}
        free = [dk for dk in self.frontals if dk.key not in fixed]
        if not free:
            return fixed

        restricted = self.tree.restrict({**self._parent_slice(values), **fixed})
        row = [(a, float(restricted(a))) for a in cartesian_product(free)]
        probs = np.array([p for _, p in row], dtype=float)
        total = probs.sum()
        if not total > 0.0:
            raise DegenerateAssignmentError("Conditional row has no positive probability")
        index = int(rng.choice(len(row), p=probs / total))
        return {**fixed, **row[index][0]}

    # --- Testable ---

    def equals(self, other, tol: float = 1e-9) -> bool:
        return (
            isinstance(other, DiscreteConditional)
            and other.nr_frontals == self._nr_frontals
            and set(other.frontals) == set(self.frontals)
            and super().equals(other, tol)
        )

    def render(self, formatter: Optional[KeyFormatter] = None) -> str:
        formatter = formatter or default_key_formatter
        head = "P(" + " ".join(formatter(dk.key) for dk in self.frontals)
        if self.parents:
            head += " | " + " ".join(formatter(dk.key) for dk in self.parents)
        return head + "):\n" + self._render_table(formatter)
