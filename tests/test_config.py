from __future__ import annotations

import pytest

from hybrid_jit.core.config import (
    HybridConfig,
    default_rng,
    get_config,
    load_config,
    set_config,
)
from hybrid_jit.core.errors import ConfigurationError


def test_defaults():
    cfg = load_config({})
    assert cfg == HybridConfig()
    assert cfg.tie_tol == pytest.approx(1e-9)
    assert cfg.default_seed == 42
    assert cfg.enable_x64 is True


def test_environment_overrides():
    cfg = load_config({
        "HYBRID_JIT_TIE_TOL": "1e-6",
        "HYBRID_JIT_SEED": "7",
        "HYBRID_JIT_ENABLE_X64": "off",
    })
    assert cfg.tie_tol == pytest.approx(1e-6)
    assert cfg.default_seed == 7
    assert cfg.enable_x64 is False


@pytest.mark.parametrize("env", [
    {"HYBRID_JIT_SEED": "seven"},
    {"HYBRID_JIT_ENABLE_X64": "maybe"},
    {"HYBRID_JIT_EQUALS_TOL": "-1"},
])
def test_invalid_values_raise(env):
    with pytest.raises(ConfigurationError):
        load_config(env)


def test_error_names_the_variable():
    with pytest.raises(ConfigurationError) as info:
        load_config({"HYBRID_JIT_RANK_TOL": "tiny"})
    assert info.value.config_key == "HYBRID_JIT_RANK_TOL"
    assert info.value.to_dict()["error_type"] == "ConfigurationError"


def test_set_config_replaces_and_reseeds():
    set_config(HybridConfig(default_seed=123))
    assert get_config().default_seed == 123
    first = default_rng().integers(0, 1_000_000, size=4).tolist()

    set_config(HybridConfig(default_seed=123))
    again = default_rng().integers(0, 1_000_000, size=4).tolist()
    assert first == again

    set_config(None)
    assert get_config().default_seed == load_config().default_seed
