# Copyright (c) 2025.
# This file is part of HybridJIT, released under the MIT License.

import time

import jax.numpy as jnp
import numpy as np

from hybrid_jit.core.types import DiscreteKey, symbol_shorthand
from hybrid_jit.discrete.discrete_conditional import DiscreteConditional
from hybrid_jit.hybrid.bayes_net import HybridBayesNet
from hybrid_jit.hybrid.mixture import GaussianMixture
from hybrid_jit.linear.gaussian_conditional import GaussianConditional

X = symbol_shorthand("x")
M = symbol_shorthand("m")


def build_switching_chain(num_steps: int = 8) -> HybridBayesNet:
    """
    Switching random walk stored in elimination order:

        p(x_N | x_{N-1}, m_N) ... p(x_1 | x_0, m_1) p(x_0) P(m_1) ... P(m_N)

    - Mode 0 ("stay"): x_k = x_{k-1} + N(0, 0.1^2)
    - Mode 1 ("jump"): x_k = x_{k-1} + 1 + N(0, 0.5^2)
    - Each mode has an independent prior 0.7/0.3.
    """
    conditionals = []
    for k in range(num_steps, 0, -1):
        m = DiscreteKey(M(k), 2)
        components = [
            GaussianConditional.from_mean_and_stddev(X(k), 0.0, 0.1, [(X(k - 1), jnp.eye(1))]),
            GaussianConditional.from_mean_and_stddev(X(k), 1.0, 0.5, [(X(k - 1), jnp.eye(1))]),
        ]
        conditionals.append(GaussianMixture((X(k),), (X(k - 1),), [m], components))
    conditionals.append(GaussianConditional.from_mean_and_stddev(X(0), 0.0, 1.0))
    for k in range(1, num_steps + 1):
        conditionals.append(DiscreteConditional(DiscreteKey(M(k), 2), (), "0.7/0.3"))
    return HybridBayesNet(conditionals)


def timed(label: str, fn):
    t0 = time.time()
    out = fn()
    t1 = time.time()
    print(f"{label:<28s} {(t1 - t0) * 1000.0:10.3f} ms")
    return out


def run_benchmark(num_steps: int = 8, max_nr_leaves: int = 16, num_samples: int = 50):
    print("=== Switching Chain Prune / MPE Benchmark ===")
    print(f"num_steps = {num_steps}, modes = {2 ** num_steps}, max_nr_leaves = {max_nr_leaves}")

    net = timed("build", lambda: build_switching_chain(num_steps))

    x = {X(k): jnp.array([0.5 * k]) for k in range(num_steps + 1)}
    tree = timed("error_tree", lambda: net.error_tree(x))
    print(f"error_tree leaves: {tree.nr_leaves()}")

    pruned = timed("prune", lambda: net.prune(max_nr_leaves))

    posterior = timed("discrete_posterior (pruned)", pruned.discrete_posterior)
    print(f"nonzero assignments after pruning: {posterior.nr_nonzero()}")

    solution = timed("optimize (pruned)", pruned.optimize)
    modes = "".join(str(solution.discrete[M(k)]) for k in range(1, num_steps + 1))
    print(f"MPE modes: {modes}")
    print(f"x_N (MPE): {float(solution.at(X(num_steps))[0]):.4f}")

    rng = np.random.default_rng(0)
    timed(f"sample x{num_samples} (pruned)",
          lambda: [pruned.sample(rng=rng) for _ in range(num_samples)])


if __name__ == "__main__":
    # Example:
    #   python3 benchmarks/bench_prune_mixture_chain.py
    run_benchmark(num_steps=6, max_nr_leaves=8)
    run_benchmark(num_steps=8, max_nr_leaves=16)
