import pytest

from ibcfrontrun.config import (
    REQUIRED_VARIABLES,
    ConfigError,
    expand_config_path,
    load_settings,
)


def full_environ(**overrides):
    env = {key: f"value-{field}" for key, field in REQUIRED_VARIABLES}
    env["CHAIN_A_ID_ENV"] = "gaia_9000-1"
    env["CHAIN_B_ID_ENV"] = "gaia_9001-1"
    env["RLY_CONFIG_FILE_ENV"] = "/srv/relayer"
    env.update(overrides)
    return env


def test_load_settings_reads_required_values():
    settings = load_settings(full_environ())
    assert settings.chain_a_id == "gaia_9000-1"
    assert settings.chain_b_id == "gaia_9001-1"
    assert settings.rly_config_path == "/srv/relayer"
    assert settings.transfer_channel_a == "value-transfer_channel_a"
    assert settings.path_unordered == "value-path_unordered"


def test_load_settings_uses_binary_defaults():
    settings = load_settings(full_environ())
    assert settings.simd_binary == "simd"
    assert settings.rly_binary == "rly"
    assert settings.fee == "200000uatom"
    assert settings.gas_flags == "--gas=auto --gas-adjustment=1.2"


def test_load_settings_binary_overrides():
    settings = load_settings(full_environ(SIMD_BINARY_ENV="/opt/gaiad", RLY_BINARY_ENV="/opt/rly"))
    assert settings.simd_binary == "/opt/gaiad"
    assert settings.rly_binary == "/opt/rly"


def test_empty_optional_keeps_default():
    settings = load_settings(full_environ(SIMD_BINARY_ENV=""))
    assert settings.simd_binary == "simd"


def test_missing_variables_raise():
    env = full_environ()
    del env["CHAIN_B_RPC_ENV"]
    env["ORDERED_CHANNEL_A_ENV"] = ""
    with pytest.raises(ConfigError) as info:
        load_settings(env)
    assert set(info.value.missing) == {"CHAIN_B_RPC_ENV", "ORDERED_CHANNEL_A_ENV"}
    assert "CHAIN_B_RPC_ENV" in str(info.value)


def test_empty_environment_reports_every_variable():
    with pytest.raises(ConfigError) as info:
        load_settings({})
    assert len(info.value.missing) == len(REQUIRED_VARIABLES)


def test_expand_tilde_uses_home():
    assert expand_config_path("~/.relayer", {"HOME": "/home/tester"}) == "/home/tester/.relayer"


def test_expand_env_references():
    env = {"HOME": "/home/tester", "SUB": "cfg"}
    assert expand_config_path("$HOME/.relayer/${SUB}", env) == "/home/tester/.relayer/cfg"


def test_expand_unset_variable_becomes_empty():
    assert expand_config_path("/a/$NOPE/b", {}) == "/a//b"


def test_expand_tilde_without_home_raises():
    with pytest.raises(ConfigError):
        expand_config_path("~/x", {})


def test_load_settings_expands_config_path():
    env = full_environ(RLY_CONFIG_FILE_ENV="~/.relayer", HOME="/home/tester")
    assert load_settings(env).rly_config_path == "/home/tester/.relayer"


def test_log_summary_mentions_chains():
    settings = load_settings(full_environ())
    lines = settings.log_summary()
    assert any("gaia_9000-1" in line for line in lines)
    assert any("gaia_9001-1" in line for line in lines)
    assert any(settings.rly_config_path in line for line in lines)


def test_settings_is_frozen():
    settings = load_settings(full_environ())
    with pytest.raises(AttributeError):
        settings.chain_a_id = "other"  # type: ignore[misc]
    assert settings.chain_a_id == "gaia_9000-1"