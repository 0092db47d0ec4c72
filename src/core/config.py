# Copyright (c) 2025.
# This file is part of HybridJIT, released under the MIT License.
"""
Runtime configuration for HybridJIT.

A single frozen :class:`HybridConfig` holds the numeric tolerances and the
seed of the process-default random stream. Values come from dataclass
defaults and can be overridden through environment variables:

    HYBRID_JIT_EQUALS_TOL   default tolerance used by ``equals``
    HYBRID_JIT_TIE_TOL      tolerance for ties when maximizing a posterior
    HYBRID_JIT_RANK_TOL     smallest pivot accepted by the dense eliminator
    HYBRID_JIT_SEED         seed of the process-default random stream
    HYBRID_JIT_ENABLE_X64   "1"/"0", enable double precision in JAX

Usage::

    from hybrid_jit.core.config import get_config

    tol = get_config().equals_tol
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, fields
from functools import lru_cache
from typing import Mapping, Optional

import numpy as np

from .errors import ConfigurationError

logger = logging.getLogger(__name__)

ENV_PREFIX = "HYBRID_JIT_"

_TRUE = {"1", "true", "yes", "on"}
_FALSE = {"0", "false", "no", "off"}


@dataclass(frozen=True)
class HybridConfig:
    equals_tol: float = 1e-9
    tie_tol: float = 1e-9      # posterior values closer than this are ties
    rank_tol: float = 1e-12    # pivots below this make a system singular
    default_seed: int = 42
    enable_x64: bool = True


def _parse(name: str, raw: str, kind: type):
    if kind is bool:
        lowered = raw.strip().lower()
        if lowered in _TRUE:
            return True
        if lowered in _FALSE:
            return False
        raise ConfigurationError(f"Cannot parse boolean from '{raw}'", config_key=name)
    try:
        return kind(raw)
    except ValueError as exc:
        raise ConfigurationError(
            f"Cannot parse {kind.__name__} from '{raw}'", config_key=name
        ) from exc


def load_config(env: Optional[Mapping[str, str]] = None) -> HybridConfig:
    """Build a :class:`HybridConfig` from defaults plus environment overrides."""
    env = os.environ if env is None else env
    overrides = {}
    for f in fields(HybridConfig):
        name = ENV_PREFIX + f.name.upper()
        if f.name == "default_seed":
            name = ENV_PREFIX + "SEED"
        if name in env:
            kind = type(getattr(HybridConfig, f.name))
            overrides[f.name] = _parse(name, env[name], kind)
    cfg = HybridConfig(**overrides)
    if cfg.equals_tol < 0 or cfg.tie_tol < 0 or cfg.rank_tol < 0:
        raise ConfigurationError("Tolerances must be non-negative")
    if overrides:
        logger.debug("Loaded config overrides: %s", overrides)
    return cfg


@lru_cache(maxsize=1)
def _cached_config() -> HybridConfig:
    return load_config()


_override: Optional[HybridConfig] = None
_default_rng: Optional[np.random.Generator] = None


def get_config() -> HybridConfig:
    """Return the active configuration."""
    if _override is not None:
        return _override
    return _cached_config()


def set_config(cfg: Optional[HybridConfig]) -> None:
    """Replace the active configuration (``None`` restores env/defaults).

    The process-default random stream is reset so that it is re-seeded from
    the new configuration on next use.
    """
    global _override, _default_rng
    _override = cfg
    _default_rng = None
    _cached_config.cache_clear()


def default_rng() -> np.random.Generator:
    """Process-default random stream used when sampling without a generator."""
    global _default_rng
    if _default_rng is None:
        _default_rng = np.random.default_rng(get_config().default_seed)
    return _default_rng
