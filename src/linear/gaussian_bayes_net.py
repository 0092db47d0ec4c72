# Copyright (c) 2025.
# This file is part of HybridJIT, released under the MIT License.
"""Pure Gaussian Bayes net, the result of fixing every discrete variable."""

from __future__ import annotations

import logging
import math
from typing import Dict, Iterator, Optional, Sequence, Tuple

import jax.numpy as jnp
import numpy as np

from ..core.config import default_rng
from ..core.errors import UnresolvedParentError
from ..core.types import Key, KeyFormatter, continuous_part, default_key_formatter
from .gaussian_conditional import GaussianConditional

logger = logging.getLogger(__name__)


class GaussianBayesNet:
    """
    Ordered GaussianConditionals stored in elimination order.

    Each conditional's parents are frontal in conditionals stored after it,
    so solving and sampling walk the sequence from last to first.
    """

    def __init__(self, conditionals: Sequence[GaussianConditional] = ()) -> None:
        self._conditionals: Tuple[GaussianConditional, ...] = tuple(conditionals)

    @property
    def conditionals(self) -> Tuple[GaussianConditional, ...]:
        return self._conditionals

    def __len__(self) -> int:
        return len(self._conditionals)

    def __iter__(self) -> Iterator[GaussianConditional]:
        return iter(self._conditionals)

    def __getitem__(self, i: int) -> GaussianConditional:
        return self._conditionals[i]

    def _check_parents(self, conditional: GaussianConditional, known) -> None:
        for key in conditional.parents:
            if key not in known:
                raise UnresolvedParentError(
                    key,
                    f"Parent {default_key_formatter(key)} of "
                    f"{[default_key_formatter(k) for k in conditional.frontals]} is unresolved",
                )

    def optimize(self, given=None) -> Dict[Key, jnp.ndarray]:
        """Back-substitution: every frontal set to its conditional mean."""
        solution: Dict[Key, jnp.ndarray] = dict(continuous_part(given or {}))
        logger.debug("Back-substituting %d Gaussian conditionals", len(self))
        for conditional in reversed(self._conditionals):
            self._check_parents(conditional, solution)
            solution.update(conditional.solve(solution))
        return solution

    def sample(self, given=None, rng: Optional[np.random.Generator] = None) -> Dict[Key, jnp.ndarray]:
        rng = default_rng() if rng is None else rng
        result: Dict[Key, jnp.ndarray] = dict(continuous_part(given or {}))
        for conditional in reversed(self._conditionals):
            if all(k in result for k in conditional.frontals):
                continue
            self._check_parents(conditional, result)
            drawn = conditional.sample(result, rng)
            result.update({k: v for k, v in drawn.items() if k not in result})
        return result

    def error(self, values) -> float:
        return float(sum(c.error(values) for c in self._conditionals))

    def log_probability(self, values) -> float:
        return float(sum(c.log_probability(values) for c in self._conditionals))

    def evaluate(self, values) -> float:
        return math.exp(self.log_probability(values))

    __call__ = evaluate

    def equals(self, other, tol: float = 1e-9) -> bool:
        return (
            isinstance(other, GaussianBayesNet)
            and len(other) == len(self)
            and all(a.equals(b, tol) for a, b in zip(self._conditionals, other.conditionals))
        )

    def render(self, formatter: Optional[KeyFormatter] = None) -> str:
        lines = [f"GaussianBayesNet of size {len(self)}"]
        for i, c in enumerate(self._conditionals):
            lines.append(f"conditional {i}: " + c.render(formatter))
        return "\n".join(lines)

    def __str__(self) -> str:
        return self.render()
