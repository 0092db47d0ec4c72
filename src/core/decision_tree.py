# Copyright (c) 2025.
# This file is part of HybridJIT, released under the MIT License.
"""
Generic decision-tree algebra over discrete assignments.

A :class:`DecisionTree` is an immutable function from assignments of a set of
discrete keys to leaf values of any type (floats, factors, tuples of
factors, conditionals, ...). Every hybrid query in HybridJIT is written in
terms of this one container.

Representation
--------------
• Leaf
    Holds one immutable value.

• Choice
    Labeled by a key; has exactly ``cardinality`` ordered children.

Canonical form
--------------
• Labels increase from the root downwards (smaller Key nearer the root), so
  two trees over overlapping key sets can be merged in one simultaneous walk.

• A choice whose children are all the same collapses into that child, so a
  value that does not depend on a key never branches on it. Equal sibling
  subtrees are shared, and ``apply`` memoizes on node identity, so shared
  input structure produces shared output structure.

Leaf sameness (used for collapsing) is exact: numbers compare with ``==``,
tuples elementwise, and every other object by identity. Tolerant comparison
is only used by :meth:`DecisionTree.equals`.

Canonical assignment order
--------------------------
Enumeration visits keys in ascending order with values ascending and the
last (largest) key varying fastest. ``from_table`` reads values in C order of
the keys *as given*, so ``from_table(keys, table)`` matches
``numpy.reshape(table, [k.cardinality for k in keys])``.

Combinators
-----------
apply(t1, t2, op)
    Tree over the union of both key sets with ``op(t1(a), t2(a))`` at every
    assignment. A key present in only one operand is broadcast.

map(fn), choose(key, value), restrict(assignment), combine(key, op)
    Unary transform, restriction, and elimination of one key by folding its
    branches with a binary operator (sum-out, max-out).
"""

from __future__ import annotations

import itertools
import operator
from dataclasses import dataclass
from typing import (
    Any,
    Callable,
    Dict,
    Generic,
    Iterator,
    List,
    Mapping,
    Optional,
    Sequence,
    Tuple,
    TypeVar,
)

from .errors import (
    DegenerateAssignmentError,
    MissingAssignmentError,
    StructuralMismatchError,
)
from .types import DiscreteKey, Key, KeyFormatter, default_key_formatter

V = TypeVar("V")
W = TypeVar("W")

_NUMBERS = (int, float)


@dataclass(frozen=True, eq=False)
class _Leaf:
    value: Any


@dataclass(frozen=True, eq=False)
class _Choice:
    label: Key
    branches: Tuple[Any, ...]


def _values_same(a: Any, b: Any) -> bool:
    if a is b:
        return True
    if isinstance(a, tuple) and isinstance(b, tuple):
        return len(a) == len(b) and all(_values_same(x, y) for x, y in zip(a, b))
    if isinstance(a, _NUMBERS) and isinstance(b, _NUMBERS):
        return a == b
    return False


def _same(a, b) -> bool:
    if a is b:
        return True
    if isinstance(a, _Leaf) and isinstance(b, _Leaf):
        return _values_same(a.value, b.value)
    if isinstance(a, _Choice) and isinstance(b, _Choice):
        return (
            a.label == b.label
            and len(a.branches) == len(b.branches)
            and all(_same(x, y) for x, y in zip(a.branches, b.branches))
        )
    return False


def _make_choice(label: Key, branches: Sequence[Any]):
    shared: List[Any] = []
    for branch in branches:
        for seen in shared:
            if _same(seen, branch):
                branch = seen
                break
        shared.append(branch)
    first = shared[0]
    if all(b is first for b in shared[1:]):
        return first
    return _Choice(label, tuple(shared))


def _branch(node, label: Key, index: int):
    if isinstance(node, _Choice) and node.label == label:
        return node.branches[index]
    return node


def _top(label_nodes: Sequence[Any]) -> Tuple[Key, int]:
    label, card = None, None
    for node in label_nodes:
        if isinstance(node, _Choice) and (label is None or node.label < label):
            label, card = node.label, len(node.branches)
    for node in label_nodes:
        if isinstance(node, _Choice) and node.label == label and len(node.branches) != card:
            raise StructuralMismatchError(
                f"Key {default_key_formatter(label)} has cardinality {card} in one "
                f"tree and {len(node.branches)} in the other"
            )
    return label, card


def _apply(f, g, op, cache: Dict[Tuple[int, int], Any]):
    memo = (id(f), id(g))
    hit = cache.get(memo)
    if hit is not None:
        return hit
    if isinstance(f, _Leaf) and isinstance(g, _Leaf):
        out = _Leaf(op(f.value, g.value))
    else:
        label, card = _top((f, g))
        out = _make_choice(
            label,
            [_apply(_branch(f, label, i), _branch(g, label, i), op, cache) for i in range(card)],
        )
    cache[memo] = out
    return out


def _map(node, fn, cache: Dict[int, Any]):
    hit = cache.get(id(node))
    if hit is not None:
        return hit
    if isinstance(node, _Leaf):
        out = _Leaf(fn(node.value))
    else:
        out = _make_choice(node.label, [_map(b, fn, cache) for b in node.branches])
    cache[id(node)] = out
    return out


def _choose(node, key: Key, value: int, cache: Dict[int, Any]):
    if isinstance(node, _Leaf) or node.label > key:
        return node
    if node.label == key:
        if not 0 <= value < len(node.branches):
            raise ValueError(
                f"Value {value} out of range for key {default_key_formatter(key)} "
                f"with cardinality {len(node.branches)}"
            )
        return node.branches[value]
    hit = cache.get(id(node))
    if hit is not None:
        return hit
    out = _make_choice(node.label, [_choose(b, key, value, cache) for b in node.branches])
    cache[id(node)] = out
    return out


def _collect_keys(node, found: Dict[Key, int]) -> None:
    if isinstance(node, _Choice):
        found[node.label] = len(node.branches)
        for b in node.branches:
            _collect_keys(b, found)


def _count_leaves(node, cache: Dict[int, int]) -> int:
    if isinstance(node, _Leaf):
        return 1
    hit = cache.get(id(node))
    if hit is None:
        hit = sum(_count_leaves(b, cache) for b in node.branches)
        cache[id(node)] = hit
    return hit


def _leaves_close(a: Any, b: Any, tol: float) -> bool:
    if a is b:
        return True
    if a is None or b is None:
        return False
    if isinstance(a, _NUMBERS) and isinstance(b, _NUMBERS):
        if a == b:
            return True
        return abs(a - b) <= tol
    if isinstance(a, tuple) and isinstance(b, tuple):
        return len(a) == len(b) and all(_leaves_close(x, y, tol) for x, y in zip(a, b))
    if hasattr(a, "equals"):
        return bool(a.equals(b, tol))
    return bool(a == b)


def _format_value(value: Any, formatter: KeyFormatter) -> str:
    if isinstance(value, float):
        return f"{value:.6g}"
    if hasattr(value, "render"):
        return value.render(formatter)
    if isinstance(value, tuple):
        return "(" + ", ".join(_format_value(v, formatter) for v in value) + ")"
    return str(value)


def cartesian_product(discrete_keys: Sequence[DiscreteKey]) -> Iterator[Dict[Key, int]]:
    """All assignments to ``discrete_keys`` in canonical order."""
    ordered = sorted(discrete_keys, key=lambda dk: dk.key)
    for values in itertools.product(*[range(dk.cardinality) for dk in ordered]):
        yield {dk.key: v for dk, v in zip(ordered, values)}


def merge_discrete_keys(*key_lists: Sequence[DiscreteKey]) -> Tuple[DiscreteKey, ...]:
    """Union of discrete keys sorted by key; conflicting cardinalities raise."""
    merged: Dict[Key, int] = {}
    for keys in key_lists:
        for dk in keys:
            card = merged.get(dk.key)
            if card is not None and card != dk.cardinality:
                raise StructuralMismatchError(
                    f"Key {default_key_formatter(dk.key)} used with cardinalities "
                    f"{card} and {dk.cardinality}"
                )
            merged[dk.key] = dk.cardinality
    return tuple(DiscreteKey(k, c) for k, c in sorted(merged.items()))


class DecisionTree(Generic[V]):
    """Immutable function from discrete assignments to leaf values."""

    __slots__ = ("_root",)

    def __init__(self, root) -> None:
        self._root = root

    # --- Construction ---

    @classmethod
    def constant(cls, value: V) -> "DecisionTree[V]":
        return cls(_Leaf(value))

    @classmethod
    def from_table(cls, keys: Sequence[DiscreteKey], values: Sequence[V]) -> "DecisionTree[V]":
        """Build from a flat table laid out in C order of ``keys``."""
        keys = [DiscreteKey(Key(k[0]), int(k[1])) for k in keys]
        values = list(values)
        if len({dk.key for dk in keys}) != len(keys):
            raise ValueError("Duplicate key in decision tree table")
        expected = 1
        for dk in keys:
            if dk.cardinality < 1:
                raise ValueError(f"Cardinality must be >= 1, got {dk.cardinality}")
            expected *= dk.cardinality
        if len(values) != expected:
            raise ValueError(f"Table has {len(values)} entries, expected {expected}")

        strides: Dict[Key, int] = {}
        stride = 1
        for dk in reversed(keys):
            strides[dk.key] = stride
            stride *= dk.cardinality
        ordered = sorted(keys, key=lambda dk: dk.key)

        def build(depth: int, offset: int):
            if depth == len(ordered):
                return _Leaf(values[offset])
            dk = ordered[depth]
            step = strides[dk.key]
            return _make_choice(
                dk.key, [build(depth + 1, offset + i * step) for i in range(dk.cardinality)]
            )

        return cls(build(0, 0))

    @classmethod
    def from_function(cls, keys: Sequence[DiscreteKey],
                      fn: Callable[[Dict[Key, int]], V]) -> "DecisionTree[V]":
        """Build by calling ``fn`` on every assignment of ``keys``."""
        ordered = sorted(keys, key=lambda dk: dk.key)
        return cls.from_table(ordered, [fn(a) for a in cartesian_product(ordered)])

    # --- Inspection ---

    @property
    def is_leaf(self) -> bool:
        return isinstance(self._root, _Leaf)

    @property
    def value(self) -> V:
        if not self.is_leaf:
            raise ValueError("Tree is not a single leaf")
        return self._root.value

    def discrete_keys(self) -> Tuple[DiscreteKey, ...]:
        found: Dict[Key, int] = {}
        _collect_keys(self._root, found)
        return tuple(DiscreteKey(k, c) for k, c in sorted(found.items()))

    def labels(self) -> Tuple[Key, ...]:
        return tuple(dk.key for dk in self.discrete_keys())

    def nr_leaves(self) -> int:
        """Number of leaves reached by distinct root-to-leaf paths."""
        return _count_leaves(self._root, {})

    def leaves(self) -> Iterator[V]:
        stack = [self._root]
        while stack:
            node = stack.pop()
            if isinstance(node, _Leaf):
                yield node.value
            else:
                stack.extend(reversed(node.branches))

    def __call__(self, assignment: Mapping[Key, int]) -> V:
        node = self._root
        while isinstance(node, _Choice):
            try:
                value = int(assignment[node.label])
            except KeyError:
                raise MissingAssignmentError(
                    node.label,
                    f"Assignment lacks discrete key {default_key_formatter(node.label)}",
                ) from None
            if not 0 <= value < len(node.branches):
                raise ValueError(
                    f"Value {value} out of range for key "
                    f"{default_key_formatter(node.label)} with cardinality {len(node.branches)}"
                )
            node = node.branches[value]
        return node.value

    evaluate = __call__

    def enumerate(self, keys: Optional[Sequence[DiscreteKey]] = None
                  ) -> Iterator[Tuple[Dict[Key, int], V]]:
        """Yield ``(assignment, value)`` over ``keys`` (default: the tree's keys)."""
        keys = self.discrete_keys() if keys is None else merge_discrete_keys(keys)
        for assignment in cartesian_product(keys):
            yield assignment, self(assignment)

    # --- Combinators ---

    def apply(self, other: "DecisionTree[W]", op: Callable[[V, W], Any]) -> "DecisionTree":
        return DecisionTree(_apply(self._root, other._root, op, {}))

    def map(self, fn: Callable[[V], W]) -> "DecisionTree[W]":
        return DecisionTree(_map(self._root, fn, {}))

    def choose(self, key: Key, value: int) -> "DecisionTree[V]":
        """Restrict one key to a value; a key the tree does not use is ignored."""
        return DecisionTree(_choose(self._root, key, int(value), {}))

    def restrict(self, assignment: Mapping[Key, int]) -> "DecisionTree[V]":
        node = self._root
        for key in sorted(assignment):
            node = _choose(node, key, int(assignment[key]), {})
        return DecisionTree(node)

    def combine(self, discrete_key: DiscreteKey, op: Callable[[V, V], V]) -> "DecisionTree[V]":
        """Eliminate ``discrete_key`` by folding its branches with ``op``.

        A key absent from the tree is folded ``cardinality`` times over the
        unchanged tree, so summing out an unused binary key doubles it.
        """
        key, card = discrete_key
        present = dict(self.discrete_keys()).get(key)
        if present is not None and present != card:
            raise StructuralMismatchError(
                f"Key {default_key_formatter(key)} has cardinality {present}, not {card}"
            )
        result = self.choose(key, 0)
        for i in range(1, card):
            result = result.apply(self.choose(key, i), op)
        return result

    # --- Reductions on numeric leaves ---

    def sum(self, keys: Optional[Sequence[DiscreteKey]] = None) -> float:
        return float(sum(value for _, value in self.enumerate(keys)))

    def max(self) -> float:
        return float(max(self.leaves()))

    def min(self) -> float:
        return float(min(self.leaves()))

    def normalize(self) -> "DecisionTree[float]":
        total = self.sum()
        if not total > 0.0:
            raise DegenerateAssignmentError("Cannot normalize a tree with no positive mass")
        return self.map(lambda v: v / total)

    def argmax(self, keys: Optional[Sequence[DiscreteKey]] = None,
               tie_tol: float = 0.0) -> Tuple[Dict[Key, int], float]:
        """Maximizing assignment; ties within ``tie_tol`` keep the earliest.

        "Earliest" is the canonical assignment order, so among equal maxima
        the assignment with the smallest values on the smallest keys wins.
        """
        best, best_value = None, None
        for assignment, value in self.enumerate(keys):
            if best_value is None or value > best_value + tie_tol:
                best, best_value = assignment, value
        return best, best_value

    def _lift(self, other, op) -> "DecisionTree":
        if isinstance(other, DecisionTree):
            return self.apply(other, op)
        return self.map(lambda v: op(v, other))

    def __add__(self, other):
        return self._lift(other, operator.add)

    def __radd__(self, other):
        return self.map(lambda v: other + v)

    def __sub__(self, other):
        return self._lift(other, operator.sub)

    def __rsub__(self, other):
        return self.map(lambda v: other - v)

    def __mul__(self, other):
        return self._lift(other, operator.mul)

    def __rmul__(self, other):
        return self.map(lambda v: other * v)

    def __truediv__(self, other):
        return self._lift(other, operator.truediv)

    def __neg__(self):
        return self.map(operator.neg)

    # --- Testable ---

    def equals(self, other: "DecisionTree", tol: float = 1e-9) -> bool:
        if not isinstance(other, DecisionTree):
            return False
        try:
            keys = merge_discrete_keys(self.discrete_keys(), other.discrete_keys())
        except StructuralMismatchError:
            return False
        return all(
            _leaves_close(self(a), other(a), tol) for a in cartesian_product(keys)
        )

    def render(self, formatter: Optional[KeyFormatter] = None,
               value_formatter: Optional[Callable[[Any], str]] = None) -> str:
        formatter = formatter or default_key_formatter
        fmt = value_formatter or (lambda v: _format_value(v, formatter))
        lines: List[str] = []

        def visit(node, indent: str, prefix: str) -> None:
            if isinstance(node, _Leaf):
                lines.append(f"{indent}{prefix}Leaf {fmt(node.value)}")
                return
            lines.append(f"{indent}{prefix}Choice({formatter(node.label)})")
            for i, b in enumerate(node.branches):
                visit(b, indent + " ", f"{i} ")

        visit(self._root, "", "")
        return "\n".join(lines)

    def __str__(self) -> str:
        return self.render()

    def __repr__(self) -> str:
        return f"DecisionTree(keys={[tuple(dk) for dk in self.discrete_keys()]}, nr_leaves={self.nr_leaves()})"


def apply(t1: DecisionTree, t2: DecisionTree, op: Callable[[Any, Any], Any]) -> DecisionTree:
    """Module-level form of :meth:`DecisionTree.apply`."""
    return t1.apply(t2, op)
