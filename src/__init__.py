# Copyright (c) 2025.
# This file is part of HybridJIT, released under the MIT License.
"""
HybridJIT: hybrid discrete/continuous Bayes nets on a decision-tree algebra.

Importing the package enables double precision in JAX (unless
``HYBRID_JIT_ENABLE_X64=0``) before any array is created.
"""

import jax

from .core.config import get_config

if get_config().enable_x64:
    jax.config.update("jax_enable_x64", True)

from .core.decision_tree import DecisionTree, apply, cartesian_product  # noqa: E402
from .core.errors import (  # noqa: E402
    ConfigurationError,
    DegenerateAssignmentError,
    HybridError,
    MissingAssignmentError,
    MissingMeasurementError,
    StructuralMismatchError,
    UnresolvedParentError,
)
from .core.types import (  # noqa: E402
    DiscreteKey,
    HybridValues,
    Key,
    symbol,
    symbol_shorthand,
)
from .discrete.discrete_conditional import DiscreteConditional  # noqa: E402
from .discrete.discrete_factor import DiscreteFactor  # noqa: E402
from .hybrid.bayes_net import HybridBayesNet  # noqa: E402
from .hybrid.factor_graph import HybridGaussianFactorGraph  # noqa: E402
from .hybrid.hybrid_factor import HybridCategory, HybridConditional, HybridFactor  # noqa: E402
from .hybrid.mixture import GaussianMixture, MixtureFactor, combine  # noqa: E402
from .linear.gaussian_bayes_net import GaussianBayesNet  # noqa: E402
from .linear.gaussian_conditional import GaussianConditional  # noqa: E402
from .linear.jacobian_factor import JacobianFactor  # noqa: E402

__version__ = "0.1.0"
