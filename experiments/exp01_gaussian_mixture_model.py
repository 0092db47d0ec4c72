from __future__ import annotations

import jax.numpy as jnp
import numpy as np

from hybrid_jit.core.types import DiscreteKey, symbol_shorthand
from hybrid_jit.discrete.discrete_conditional import DiscreteConditional
from hybrid_jit.hybrid.bayes_net import HybridBayesNet
from hybrid_jit.hybrid.mixture import GaussianMixture
from hybrid_jit.linear.gaussian_conditional import GaussianConditional

Z = symbol_shorthand("z")
M = symbol_shorthand("m")


def setup_mixture_model(sigmas=(8.0, 4.0)) -> HybridBayesNet:
    """
    Two-component Gaussian mixture on a scalar measurement z:

        P(m)     = 0.5 / 0.5
        p(z | m) = N(z; {1, 3}[m], sigmas[m]^2)

    Stored in elimination order: the mixture first, its mode prior last.
    """
    m = DiscreteKey(M(0), 2)
    components = [
        GaussianConditional.from_mean_and_stddev(Z(0), mu, sigma)
        for mu, sigma in zip((1.0, 3.0), sigmas)
    ]
    return HybridBayesNet([
        GaussianMixture((Z(0),), (), [m], components),
        DiscreteConditional(m, (), "0.5/0.5"),
    ])


def print_posterior(net: HybridBayesNet, label: str):
    print(f"\n=== {label} ===")
    for z in (-4.0, 0.0, 2.0, 4.0, 8.0):
        graph = net.to_factor_graph({Z(0): jnp.array([z])})
        posterior = graph.eliminate_sequential()[0].inner
        p1 = posterior({M(0): 1})
        print(f"z = {z:5.1f}: P(m=0 | z) = {1.0 - p1:.4f}, P(m=1 | z) = {p1:.4f}")


def main():
    equal = setup_mixture_model(sigmas=(2.0, 2.0))
    print_posterior(equal, label="EQUAL VARIANCES")

    unequal = setup_mixture_model(sigmas=(8.0, 4.0))
    print_posterior(unequal, label="DIFFERENT VARIANCES")

    # Ancestral samples: how often each mode is drawn.
    rng = np.random.default_rng(0)
    samples = [unequal.sample(rng=rng) for _ in range(200)]
    frac = np.mean([s.discrete[M(0)] for s in samples])
    print(f"\nfraction of samples in mode 1: {frac:.3f}")

    solution = unequal.optimize()
    print(f"MPE: m = {solution.discrete[M(0)]}, z = {float(solution.at(Z(0))[0]):.3f}")


if __name__ == "__main__":
    main()
