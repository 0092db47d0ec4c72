from __future__ import annotations

import jax.numpy as jnp
import numpy as np
import pytest

from hybrid_jit.core.config import set_config
from hybrid_jit.core.types import DiscreteKey, symbol_shorthand
from hybrid_jit.discrete.discrete_conditional import DiscreteConditional
from hybrid_jit.hybrid.bayes_net import HybridBayesNet
from hybrid_jit.hybrid.mixture import GaussianMixture
from hybrid_jit.linear.gaussian_conditional import GaussianConditional

X = symbol_shorthand("x")
Z = symbol_shorthand("z")
M = symbol_shorthand("m")


@pytest.fixture(autouse=True)
def reset_config():
    """Every test starts from default configuration and a fresh default stream."""
    set_config(None)
    yield
    set_config(None)


@pytest.fixture
def rng():
    return np.random.default_rng(2025)


@pytest.fixture
def gaussian_mixture_model():
    """
    Factory for P(m) p(z | m): one binary mode, two 1-D Gaussians on z.
    """
    def build(means=(1.0, 3.0), sigmas=(2.0, 2.0), prior="0.5/0.5"):
        m = DiscreteKey(M(0), 2)
        components = [
            GaussianConditional.from_mean_and_stddev(Z(0), mu, sigma)
            for mu, sigma in zip(means, sigmas)
        ]
        mixture = GaussianMixture((Z(0),), (), [m], components)
        return HybridBayesNet([mixture, DiscreteConditional(m, (), prior)]), m

    return build


@pytest.fixture
def chain_net():
    """
    Two-mode chain stored in elimination order:

        p(x1 | x0, m1) p(x0 | m0) P(m1 | m0) P(m0)

    with x1 = x0 + {0, 2}[m1] (σ = 1), x0 = {-1, 1}[m0] (σ = 0.5),
    P(m1 | m0) = 3/1 1/3 and P(m0) = 0.7/0.3.
    """
    m0 = DiscreteKey(M(0), 2)
    m1 = DiscreteKey(M(1), 2)
    x1_given = [
        GaussianConditional.from_mean_and_stddev(X(1), mu, 1.0, [(X(0), jnp.eye(1))])
        for mu in (0.0, 2.0)
    ]
    x0_given = [
        GaussianConditional.from_mean_and_stddev(X(0), mu, 0.5) for mu in (-1.0, 1.0)
    ]
    net = HybridBayesNet([
        GaussianMixture((X(1),), (X(0),), [m1], x1_given),
        GaussianMixture((X(0),), (), [m0], x0_given),
        DiscreteConditional(m1, [m0], "3/1 1/3"),
        DiscreteConditional(m0, (), "0.7/0.3"),
    ])
    return net, m0, m1
