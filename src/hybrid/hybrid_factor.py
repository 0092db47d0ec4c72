# Copyright (c) 2025.
# This file is part of HybridJIT, released under the MIT License.
"""
Tagged hybrid factors and conditionals.

Every factor or conditional that enters a hybrid graph or Bayes net is
wrapped in a :class:`HybridFactor` (or :class:`HybridConditional`): a
discriminant :class:`HybridCategory` plus the concrete payload. The category
is derived from the key lists alone:

    continuous keys   discrete keys   category
    ---------------   -------------   ----------
    non-empty         empty           Continuous
    empty             non-empty       Discrete
    non-empty         non-empty       Hybrid
    empty             empty           Continuous (a constant factor)

and must match the payload type:

    Continuous   JacobianFactor        (GaussianConditional for conditionals)
    Discrete     DiscreteFactor        (DiscreteConditional)
    Hybrid       MixtureFactor         (GaussianMixture)

All per-kind behaviour (error trees, printing, equality, choosing a mode) is
an explicit dispatch on the category.
"""

from __future__ import annotations

import enum
import math
from typing import Optional, Sequence, Tuple

from ..core.decision_tree import DecisionTree
from ..core.types import (
    DiscreteKey,
    HybridValues,
    Key,
    KeyFormatter,
    continuous_part,
    default_key_formatter,
)
from ..discrete.discrete_conditional import DiscreteConditional
from ..discrete.discrete_factor import DiscreteFactor
from ..linear.gaussian_conditional import GaussianConditional
from ..linear.jacobian_factor import JacobianFactor
from .mixture import GaussianMixture, MixtureFactor


class HybridCategory(enum.Enum):
    DISCRETE = "Discrete"
    CONTINUOUS = "Continuous"
    HYBRID = "Hybrid"


def categorize(continuous_keys: Sequence[Key],
               discrete_keys: Sequence[DiscreteKey]) -> HybridCategory:
    if continuous_keys and discrete_keys:
        return HybridCategory.HYBRID
    if discrete_keys:
        return HybridCategory.DISCRETE
    return HybridCategory.CONTINUOUS


def collect_keys(continuous_keys: Sequence[Key],
                 discrete_keys: Sequence[DiscreteKey]) -> Tuple[Key, ...]:
    """Full key list: continuous keys followed by the discrete keys."""
    return tuple(continuous_keys) + tuple(dk.key for dk in discrete_keys)


def _unhandled(category) -> ValueError:
    return ValueError(f"Unhandled hybrid category {category!r}")


class HybridFactor:
    """Category tag, key lists and payload of one factor in a hybrid graph."""

    _PAYLOADS = {
        HybridCategory.DISCRETE: (DiscreteFactor,),
        HybridCategory.CONTINUOUS: (JacobianFactor,),
        HybridCategory.HYBRID: (MixtureFactor, GaussianMixture),
    }

    def __init__(self, continuous_keys: Sequence[Key], discrete_keys: Sequence[DiscreteKey],
                 inner) -> None:
        self._continuous_keys = tuple(continuous_keys)
        self._discrete_keys = tuple(discrete_keys)
        self._category = categorize(self._continuous_keys, self._discrete_keys)
        if not isinstance(inner, self._PAYLOADS[self._category]):
            raise ValueError(
                f"{type(inner).__name__} cannot be the payload of a "
                f"{self._category.value} {type(self).__name__}"
            )
        self._inner = inner

    @classmethod
    def wrap(cls, obj) -> "HybridFactor":
        """Wrap a concrete factor, deriving its key lists."""
        if isinstance(obj, cls):
            return obj
        if isinstance(obj, HybridFactor):
            return cls(obj.continuous_keys, obj.discrete_keys, obj.inner)
        if isinstance(obj, DiscreteFactor):
            return cls((), obj.discrete_keys, obj)
        if isinstance(obj, JacobianFactor):
            return cls(obj.keys, (), obj)
        if isinstance(obj, (MixtureFactor, GaussianMixture)):
            return cls(obj.continuous_keys, obj.discrete_keys, obj)
        raise TypeError(f"Cannot wrap {type(obj).__name__} as a {cls.__name__}")

    # --- Accessors ---

    @property
    def category(self) -> HybridCategory:
        return self._category

    @property
    def continuous_keys(self) -> Tuple[Key, ...]:
        return self._continuous_keys

    @property
    def discrete_keys(self) -> Tuple[DiscreteKey, ...]:
        return self._discrete_keys

    @property
    def keys(self) -> Tuple[Key, ...]:
        return collect_keys(self._continuous_keys, self._discrete_keys)

    @property
    def inner(self):
        return self._inner

    def is_discrete(self) -> bool:
        return self._category is HybridCategory.DISCRETE

    def is_continuous(self) -> bool:
        return self._category is HybridCategory.CONTINUOUS

    def is_hybrid(self) -> bool:
        return self._category is HybridCategory.HYBRID

    # --- Evaluation ---

    def error_tree(self, continuous_values) -> DecisionTree:
        """Per-mode error as a tree over this factor's discrete keys."""
        if self._category is HybridCategory.DISCRETE:
            return self._inner.error_tree()
        elif self._category is HybridCategory.CONTINUOUS:
            return DecisionTree.constant(self._inner.error(continuous_part(continuous_values)))
        elif self._category is HybridCategory.HYBRID:
            return self._inner.error_tree(continuous_values)
        raise _unhandled(self._category)

    def error(self, values: HybridValues) -> float:
        if self._category is HybridCategory.DISCRETE:
            return self._inner.error(values.discrete)
        elif self._category is HybridCategory.CONTINUOUS:
            return self._inner.error(values.continuous)
        elif self._category is HybridCategory.HYBRID:
            return self._inner.error(values)
        raise _unhandled(self._category)

    # --- Testable ---

    def equals(self, other, tol: float = 1e-9) -> bool:
        if not isinstance(other, HybridFactor) or other.category is not self._category:
            return False
        if other.continuous_keys != self._continuous_keys:
            return False
        if set(other.discrete_keys) != set(self._discrete_keys):
            return False
        return self._inner.equals(other.inner, tol)

    def render(self, formatter: Optional[KeyFormatter] = None) -> str:
        formatter = formatter or default_key_formatter
        keys = " ".join(formatter(k) for k in self.keys)
        return f"{self._category.value} [{keys}]\n" + self._inner.render(formatter)

    def __str__(self) -> str:
        return self.render()


class HybridConditional(HybridFactor):
    """A HybridFactor whose payload is a normalized conditional."""

    _PAYLOADS = {
        HybridCategory.DISCRETE: (DiscreteConditional,),
        HybridCategory.CONTINUOUS: (GaussianConditional,),
        HybridCategory.HYBRID: (GaussianMixture,),
    }

    @property
    def frontals(self) -> Tuple[Key, ...]:
        if self._category is HybridCategory.DISCRETE:
            return tuple(dk.key for dk in self._inner.frontals)
        elif self._category in (HybridCategory.CONTINUOUS, HybridCategory.HYBRID):
            return tuple(self._inner.frontals)
        raise _unhandled(self._category)

    @property
    def continuous_parents(self) -> Tuple[Key, ...]:
        if self._category is HybridCategory.DISCRETE:
            return ()
        elif self._category is HybridCategory.CONTINUOUS:
            return tuple(self._inner.parents)
        elif self._category is HybridCategory.HYBRID:
            return self._inner.continuous_parents
        raise _unhandled(self._category)

    @property
    def discrete_parents(self) -> Tuple[DiscreteKey, ...]:
        if self._category is HybridCategory.DISCRETE:
            return self._inner.parents
        elif self._category is HybridCategory.CONTINUOUS:
            return ()
        elif self._category is HybridCategory.HYBRID:
            return self._inner.discrete_keys
        raise _unhandled(self._category)

    def choose(self, assignment) -> Optional[GaussianConditional]:
        """Gaussian conditional selected by ``assignment`` (None if discrete)."""
        if self._category is HybridCategory.DISCRETE:
            return None
        elif self._category is HybridCategory.CONTINUOUS:
            return self._inner
        elif self._category is HybridCategory.HYBRID:
            return self._inner.choose(assignment)
        raise _unhandled(self._category)

    def log_probability(self, values: HybridValues) -> float:
        if self._category is HybridCategory.DISCRETE:
            return self._inner.log_probability(values.discrete)
        elif self._category is HybridCategory.CONTINUOUS:
            return self._inner.log_probability(values.continuous)
        elif self._category is HybridCategory.HYBRID:
            return self._inner.log_probability(values)
        raise _unhandled(self._category)

    def evaluate(self, values: HybridValues) -> float:
        return math.exp(self.log_probability(values))

    def render(self, formatter: Optional[KeyFormatter] = None) -> str:
        formatter = formatter or default_key_formatter
        return f"Hybrid Conditional ({self._category.value})\n" + self._inner.render(formatter)
