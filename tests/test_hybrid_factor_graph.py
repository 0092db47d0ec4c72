from __future__ import annotations

import math

import jax.numpy as jnp
import pytest

from hybrid_jit.core.errors import DegenerateAssignmentError, StructuralMismatchError
from hybrid_jit.core.types import DiscreteKey, HybridValues, symbol_shorthand
from hybrid_jit.discrete.discrete_factor import DiscreteFactor
from hybrid_jit.hybrid.factor_graph import HybridGaussianFactorGraph
from hybrid_jit.hybrid.mixture import GaussianMixture, MixtureFactor
from hybrid_jit.linear.gaussian_conditional import GaussianConditional
from hybrid_jit.linear.jacobian_factor import JacobianFactor

X = symbol_shorthand("x")
M = symbol_shorthand("m")

I1 = jnp.eye(1)


def _prior(key, value, sigma=1.0):
    return JacobianFactor([key], [I1], jnp.array([value]), sigma)


def _between(k0, k1, delta, sigma=1.0):
    return JacobianFactor([k0, k1], [-I1, I1], jnp.array([delta]), sigma)


def test_push_back_checks_cardinalities():
    graph = HybridGaussianFactorGraph()
    graph.push_back(DiscreteFactor([DiscreteKey(M(0), 2)], [1.0, 1.0]))
    with pytest.raises(StructuralMismatchError):
        graph.push_back(DiscreteFactor([DiscreteKey(M(0), 3)], [1.0, 1.0, 1.0]))
    assert len(graph) == 1


def test_keys_in_order_of_appearance():
    m = DiscreteKey(M(0), 2)
    graph = HybridGaussianFactorGraph()
    graph.extend([
        _between(X(2), X(1), 1.0),
        _prior(X(0), 0.0),
        MixtureFactor([X(0), X(1)], [m], [_between(X(0), X(1), 0.0), _between(X(0), X(1), 1.0)]),
    ])
    assert graph.continuous_keys() == (X(2), X(1), X(0))
    assert graph.discrete_keys() == (m,)


def test_error_tree_sums_factors():
    """
    prior x0 = 0, and x1 - x0 = {0, 1}[m]. At x0 = 0, x1 = 1 mode 1 fits
    exactly while mode 0 leaves 0.5; the discrete factor adds -log φ.
    """
    m = DiscreteKey(M(0), 2)
    graph = HybridGaussianFactorGraph()
    graph.push_back(_prior(X(0), 0.0))
    graph.push_back(MixtureFactor([X(0), X(1)], [m],
                                  [_between(X(0), X(1), 0.0), _between(X(0), X(1), 1.0)]))
    graph.push_back(DiscreteFactor([m], [0.5, 0.25]))

    x = {X(0): jnp.array([0.0]), X(1): jnp.array([1.0])}
    tree = graph.error_tree(x)
    assert tree({M(0): 0}) == pytest.approx(0.5 + math.log(2.0))
    assert tree({M(0): 1}) == pytest.approx(math.log(4.0))
    assert graph.error(HybridValues(x, {M(0): 1})) == pytest.approx(math.log(4.0))


def test_graph_tree_collects_active_factors():
    m = DiscreteKey(M(0), 2)
    prior = _prior(X(0), 0.0)
    f0, f1 = _between(X(0), X(1), 0.0), _between(X(0), X(1), 1.0)
    graph = HybridGaussianFactorGraph([])
    graph.extend([prior, MixtureFactor([X(0), X(1)], [m], [f0, f1]), DiscreteFactor([m], [1.0, 1.0])])

    gtree = graph.graph_tree()
    factors, offset = gtree({M(0): 1})
    assert factors[0] is prior
    assert factors[1] is f1
    assert offset == 0.0


def test_eliminate_pure_gaussian_chain():
    """
    x0 = 0 (prior), x1 - x0 = 1, x2 - x1 = 1: elimination gives one
    conditional per key and back-substitution recovers (0, 1, 2).
    """
    graph = HybridGaussianFactorGraph()
    graph.extend([_prior(X(0), 0.0), _between(X(0), X(1), 1.0), _between(X(1), X(2), 1.0)])
    net = graph.eliminate_sequential()
    assert len(net) == 3
    assert all(c.is_continuous() for c in net)
    assert net[0].frontals == (X(0),)
    assert net[0].continuous_parents == (X(1),)

    solution = net.optimize()
    for i, expected in enumerate([0.0, 1.0, 2.0]):
        assert float(solution.at(X(i))[0]) == pytest.approx(expected, abs=1e-9)


def test_eliminate_respects_ordering():
    graph = HybridGaussianFactorGraph()
    graph.extend([_prior(X(0), 0.0), _between(X(0), X(1), 1.0)])
    net = graph.eliminate_sequential([X(1), X(0)])
    assert net[0].frontals == (X(1),)
    assert net[1].frontals == (X(0),)
    solution = net.optimize()
    assert float(solution.at(X(1))[0]) == pytest.approx(1.0)

    with pytest.raises(ValueError):
        graph.eliminate_sequential([X(0)])


def test_eliminate_underdetermined_system():
    graph = HybridGaussianFactorGraph()
    graph.push_back(_between(X(0), X(1), 1.0))
    with pytest.raises(ValueError):
        graph.eliminate_sequential()


def test_eliminate_hybrid_posterior():
    """
    x0 ~ N(0, 1), z = x0 + {0, 3}[m] + N(0, 1) with z measured at 2.9:
    the marginal of z under each mode is N({0, 3}, 2).
    """
    m = DiscreteKey(M(0), 2)
    z = symbol_shorthand("z")(0)
    gm = GaussianMixture((z,), (X(0),), [m], [
        GaussianConditional.from_mean_and_stddev(z, mu, 1.0, [(X(0), I1)]) for mu in (0.0, 3.0)
    ])
    graph = HybridGaussianFactorGraph()
    graph.push_back(gm.likelihood({z: jnp.array([2.9])}))
    graph.push_back(_prior(X(0), 0.0))
    graph.push_back(DiscreteFactor([m], [0.5, 0.5]))

    net = graph.eliminate_sequential()
    assert net[0].is_hybrid()
    assert net[1].is_discrete()

    w0 = math.exp(-2.9 ** 2 / 4.0)
    w1 = math.exp(-0.1 ** 2 / 4.0)
    assert net[1].inner({M(0): 1}) == pytest.approx(w1 / (w0 + w1), rel=1e-9)

    solution = net.optimize()
    assert solution.discrete == {M(0): 1}
    # Posterior mean of x0 under mode 1 is (2.9 - 3) / 2.
    assert float(solution.at(X(0))[0]) == pytest.approx(-0.05, abs=1e-9)


def test_eliminate_with_pruned_leaf():
    m = DiscreteKey(M(0), 2)
    graph = HybridGaussianFactorGraph()
    graph.push_back(MixtureFactor([X(0)], [m], [_prior(X(0), 1.0), None]))
    graph.push_back(DiscreteFactor([m], [0.5, 0.5]))
    net = graph.eliminate_sequential()
    discrete = net[len(net) - 1].inner
    assert discrete({M(0): 0}) == pytest.approx(1.0)
    assert discrete({M(0): 1}) == 0.0
    assert net.optimize().discrete == {M(0): 0}


def test_eliminate_without_mass_raises():
    m = DiscreteKey(M(0), 2)
    graph = HybridGaussianFactorGraph()
    graph.push_back(DiscreteFactor([m], [0.0, 0.0]))
    with pytest.raises(DegenerateAssignmentError):
        graph.eliminate_sequential()


def test_equals_and_render():
    a = HybridGaussianFactorGraph()
    a.push_back(_prior(X(0), 1.0))
    b = HybridGaussianFactorGraph()
    b.push_back(_prior(X(0), 1.0))
    assert a.equals(b)
    b.push_back(_prior(X(1), 1.0))
    assert not a.equals(b)
    assert str(b).startswith("HybridGaussianFactorGraph of size 2")
