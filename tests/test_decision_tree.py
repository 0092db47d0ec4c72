from __future__ import annotations

import math
import operator

import pytest

from hybrid_jit.core.decision_tree import DecisionTree, apply, cartesian_product
from hybrid_jit.core.errors import MissingAssignmentError, StructuralMismatchError
from hybrid_jit.core.types import DiscreteKey

A = DiscreteKey(1, 2)
B = DiscreteKey(2, 3)
C = DiscreteKey(3, 2)


def test_from_table_reads_c_order():
    """The last key in the given order varies fastest."""
    t = DecisionTree.from_table([A, B], [0.0, 1.0, 2.0, 3.0, 4.0, 5.0])
    assert t({1: 0, 2: 0}) == 0.0
    assert t({1: 0, 2: 2}) == 2.0
    assert t({1: 1, 2: 1}) == 4.0

    # Same table with the key order reversed.
    u = DecisionTree.from_table([B, A], [0.0, 3.0, 1.0, 4.0, 2.0, 5.0])
    assert t.equals(u)


def test_identical_leaves_collapse():
    t = DecisionTree.from_table([A], [7.0, 7.0])
    assert t.is_leaf
    assert t.value == 7.0
    assert t.discrete_keys() == ()

    s = DecisionTree.from_table([A, C], [1.0, 2.0, 1.0, 2.0])
    # Does not depend on A, so only C remains.
    assert s.labels() == (3,)
    assert s.nr_leaves() == 2


def test_objects_compare_by_identity_when_collapsing():
    class Payload:
        def equals(self, other, tol=1e-9):
            return True

    p, q = Payload(), Payload()
    t = DecisionTree.from_table([A], [p, q])
    assert not t.is_leaf
    assert t({1: 0}) is p and t({1: 1}) is q

    shared = DecisionTree.from_table([A], [p, p])
    assert shared.is_leaf


def test_missing_assignment_names_the_key():
    t = DecisionTree.from_table([A, B], list(range(6)))
    with pytest.raises(MissingAssignmentError) as info:
        t({1: 1})
    assert info.value.key == 2


def test_apply_broadcasts_over_union_of_keys():
    ta = DecisionTree.from_table([A], [1.0, 2.0])
    tc = DecisionTree.from_table([C], [10.0, 20.0])
    total = apply(ta, tc, operator.add)

    assert {dk.key for dk in total.discrete_keys()} == {1, 3}
    for a in cartesian_product([A, C]):
        assert total(a) == ta(a) + tc(a)
    assert total.nr_leaves() == 4


def test_apply_with_full_overlap_keeps_leaf_count():
    t1 = DecisionTree.from_table([A, B], [float(i) for i in range(6)])
    t2 = DecisionTree.from_table([B, A], [float(10 * i) for i in range(6)])
    out = t1 + t2
    assert out.nr_leaves() == 6
    assert out({1: 1, 2: 2}) == 5.0 + 50.0


def test_apply_rejects_cardinality_conflict():
    t1 = DecisionTree.from_table([DiscreteKey(1, 2)], [0.0, 1.0])
    t2 = DecisionTree.from_table([DiscreteKey(1, 3)], [0.0, 1.0, 2.0])
    with pytest.raises(StructuralMismatchError):
        t1 + t2


def test_choose_and_restrict():
    t = DecisionTree.from_table([A, B], [float(i) for i in range(6)])
    chosen = t.choose(1, 1)
    assert chosen.labels() == (2,)
    assert chosen({2: 0}) == 3.0

    assert t.restrict({1: 0, 2: 1}).value == 1.0
    # Choosing a key the tree does not use changes nothing.
    assert t.choose(3, 1).equals(t)


def test_combine_sums_and_maxes_out_a_key():
    t = DecisionTree.from_table([A, B], [1.0, 2.0, 3.0, 4.0, 5.0, 6.0])
    summed = t.combine(A, operator.add)
    assert summed.labels() == (2,)
    assert [summed({2: v}) for v in range(3)] == [5.0, 7.0, 9.0]

    maxed = t.combine(B, max)
    assert [maxed({1: v}) for v in range(2)] == [3.0, 6.0]

    with pytest.raises(StructuralMismatchError):
        t.combine(DiscreteKey(1, 4), operator.add)


def test_enumerate_is_canonical():
    t = DecisionTree.from_table([B, A], [float(i) for i in range(6)])
    assignments = [a for a, _ in t.enumerate()]
    assert assignments == [
        {1: 0, 2: 0}, {1: 0, 2: 1}, {1: 0, 2: 2},
        {1: 1, 2: 0}, {1: 1, 2: 1}, {1: 1, 2: 2},
    ]


def test_argmax_prefers_first_canonical_assignment_on_ties():
    t = DecisionTree.from_table([A, C], [0.1, 0.4, 0.4, 0.1])
    best, value = t.argmax()
    assert best == {1: 0, 3: 1}
    assert value == pytest.approx(0.4)

    nearly = DecisionTree.from_table([A, C], [0.1, 0.4, 0.4 + 1e-12, 0.1])
    assert nearly.argmax(tie_tol=1e-9)[0] == {1: 0, 3: 1}
    assert nearly.argmax(tie_tol=0.0)[0] == {1: 1, 3: 0}


def test_sum_counts_unused_keys():
    t = DecisionTree.from_table([A], [1.0, 3.0])
    assert t.sum() == 4.0
    assert t.sum([A, C]) == 8.0
    assert t.normalize()({1: 1}) == pytest.approx(0.75)
    assert t.max() == 3.0
    assert t.min() == 1.0


def test_arithmetic_sugar():
    t = DecisionTree.from_table([A], [1.0, 2.0])
    assert (t * 2.0)({1: 1}) == 4.0
    assert (1.0 - t)({1: 1}) == -1.0
    assert (-t)({1: 0}) == -1.0
    assert t.map(math.exp)({1: 0}) == pytest.approx(math.e)


def test_equals_uses_tolerance():
    t = DecisionTree.from_table([A], [1.0, 2.0])
    u = DecisionTree.from_table([A], [1.0, 2.0 + 1e-7])
    assert t.equals(u, tol=1e-6)
    assert not t.equals(u, tol=1e-9)
    assert not t.equals(DecisionTree.from_table([C], [1.0, 2.0]))


def test_render_shows_choices_and_leaves():
    t = DecisionTree.from_table([A], [1.0, 2.0])
    text = t.render()
    assert text.splitlines()[0] == "Choice(1)"
    assert " 0 Leaf 1" in text
    assert " 1 Leaf 2" in text


def test_from_table_validates_size():
    with pytest.raises(ValueError):
        DecisionTree.from_table([A, B], [0.0] * 5)
