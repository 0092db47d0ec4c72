from __future__ import annotations

import numpy as np
import pytest

from hybrid_jit.core.errors import DegenerateAssignmentError, MissingAssignmentError
from hybrid_jit.core.types import DiscreteKey
from hybrid_jit.discrete.discrete_conditional import DiscreteConditional, parse_signature
from hybrid_jit.discrete.discrete_factor import DiscreteFactor

A = DiscreteKey(1, 2)
B = DiscreteKey(2, 2)
C = DiscreteKey(3, 3)


def test_parse_signature_rows():
    assert parse_signature("1/1 2/3") == [[1.0, 1.0], [2.0, 3.0]]
    with pytest.raises(ValueError):
        parse_signature("1/x")
    with pytest.raises(ValueError):
        parse_signature("   ")


def test_signature_rows_are_normalized():
    """
    P(B | A) with signature "1/3 2/2": each row is normalized on its own.
    """
    p = DiscreteConditional(B, [A], "1/3 2/2")
    assert p({1: 0, 2: 0}) == pytest.approx(0.25)
    assert p({1: 0, 2: 1}) == pytest.approx(0.75)
    assert p({1: 1, 2: 1}) == pytest.approx(0.5)

    assert p.frontals == (B,)
    assert p.parents == (A,)
    assert p.nr_frontals == 1


def test_flat_table_matches_signature():
    p = DiscreteConditional(B, [A], "1/3 2/2")
    q = DiscreteConditional(B, [A], [1.0, 3.0, 2.0, 2.0])
    assert p.equals(q)


def test_row_count_is_checked():
    with pytest.raises(ValueError):
        DiscreteConditional(B, [A], "1/1")
    with pytest.raises(ValueError):
        DiscreteConditional(C, (), "1/1")
    with pytest.raises(ValueError):
        DiscreteConditional(B, (), "-1/2")


def test_choose_restricts_to_parent_row():
    p = DiscreteConditional(C, [A], "1/1/2 0/1/0")
    row = p.choose({1: 1})
    assert row.parents == ()
    assert [row({3: v}) for v in range(3)] == pytest.approx([0.0, 1.0, 0.0])

    with pytest.raises(MissingAssignmentError):
        p.choose({})


def test_argmax_per_parent_row():
    p = DiscreteConditional(C, [A], "1/1/2 3/1/0")
    assert p.argmax({1: 0}) == {3: 2}
    assert p.argmax({1: 1}) == {3: 0}

    tied = DiscreteConditional(B, (), "1/1")
    assert tied.argmax() == {2: 0}


def test_sample_follows_row_probabilities():
    """
    Draws from P(B | A=1) with P(B=1 | A=1) = 0.8 should land near 0.8.
    """
    p = DiscreteConditional(B, [A], "1/1 1/4")
    rng = np.random.default_rng(11)
    draws = [p.sample({1: 1}, rng)[2] for _ in range(2000)]
    assert np.mean(draws) == pytest.approx(0.8, abs=0.04)


def test_sample_is_reproducible_with_same_seed():
    p = DiscreteConditional(C, (), "1/2/3")
    rng_a, rng_b = np.random.default_rng(5), np.random.default_rng(5)
    a = [p.sample(rng=rng_a)[3] for _ in range(20)]
    b = [p.sample(rng=rng_b)[3] for _ in range(20)]
    assert a == b


def test_sample_holds_given_frontals_fixed():
    """
    P(A, B) puts 0.97 on (0, 0). With A = 1 given, B is drawn from the
    renormalized row P(B | A=1) = 0.5 / 0.5 and A comes back unchanged.
    """
    p = DiscreteConditional([A, B], (), [0.97, 0.01, 0.01, 0.01])
    rng = np.random.default_rng(13)
    draws = [p.sample({1: 1}, rng) for _ in range(400)]
    assert all(d[1] == 1 for d in draws)
    assert np.mean([d[2] for d in draws]) == pytest.approx(0.5, abs=0.08)

    assert p.sample({1: 0, 2: 1}, rng) == {1: 0, 2: 1}


def test_sample_rejects_empty_row():
    p = DiscreteConditional(B, [A], "1/1 0/0")
    with pytest.raises(DegenerateAssignmentError):
        p.sample({1: 1}, np.random.default_rng(0))


def test_from_joint_divides_by_parent_marginal():
    """
    joint(A, B) = [[0.1, 0.3], [0.2, 0.4]]  ->  P(B | A) = [[0.25, 0.75], [1/3, 2/3]].
    """
    joint = DiscreteFactor([A, B], [0.1, 0.3, 0.2, 0.4])
    p = DiscreteConditional.from_joint(joint, [B], [A])
    expected = DiscreteConditional(B, [A], "1/3 1/2")
    assert p.equals(expected, tol=1e-12)

    prior = DiscreteConditional.from_joint(joint, [A])
    assert prior({1: 0}) == pytest.approx(0.4)


def test_product_and_marginals():
    prior = DiscreteConditional(A, (), "0.7/0.3")
    given = DiscreteConditional(B, [A], "3/1 1/3")
    joint = prior * given

    assert joint.sum() == pytest.approx(1.0)
    assert joint({1: 0, 2: 0}) == pytest.approx(0.525)
    assert joint.marginal([2])({2: 1}) == pytest.approx(0.175 + 0.225)
    assert joint.max_marginal([1])({1: 1}) == pytest.approx(0.225)


def test_prune_keeps_most_probable_assignments():
    f = DiscreteFactor([A, B], [0.1, 0.4, 0.4, 0.1])
    pruned = f.prune(1)
    # (0, 1) and (1, 0) tie; the earlier assignment is kept.
    assert pruned({1: 0, 2: 1}) == pytest.approx(1.0)
    assert pruned.nr_nonzero() == 1

    two = f.prune(2)
    assert two({1: 1, 2: 0}) == pytest.approx(0.5)
    assert two({1: 0, 2: 0}) == 0.0

    with pytest.raises(ValueError):
        f.prune(0)


def test_render_lists_table_rows():
    p = DiscreteConditional(B, [A], "1/1 1/3")
    text = p.render()
    assert text.startswith("P(2 | 1):")
    assert "1 1 | 0.75" in text
