"""Run-time settings for the testbed, read from the environment."""

from __future__ import annotations

import logging
import os
import re
from dataclasses import dataclass
from typing import Mapping, Optional

log = logging.getLogger(__name__)

# Environment variables that must be present and non-empty, with the field each fills.
REQUIRED_VARIABLES = (
    ("CHAIN_A_ID_ENV", "chain_a_id"),
    ("CHAIN_A_RPC_ENV", "chain_a_rpc"),
    ("CHAIN_A_HOME_ENV", "chain_a_home"),
    ("CHAIN_B_ID_ENV", "chain_b_id"),
    ("CHAIN_B_RPC_ENV", "chain_b_rpc"),
    ("CHAIN_B_HOME_ENV", "chain_b_home"),
    ("RLY_CONFIG_FILE_ENV", "rly_config_path"),
    ("RLY_PATH_TRANSFER_ENV", "path_transfer"),
    ("RLY_PATH_ORDERED_ENV", "path_ordered"),
    ("RLY_PATH_UNORDERED_ENV", "path_unordered"),
    ("TRANSFER_CHANNEL_A_ENV", "transfer_channel_a"),
    ("TRANSFER_CHANNEL_B_ENV", "transfer_channel_b"),
    ("ORDERED_CHANNEL_A_ENV", "ordered_channel_a"),
    ("ORDERED_CHANNEL_B_ENV", "ordered_channel_b"),
    ("UNORDERED_CHANNEL_A_ENV", "unordered_channel_a"),
    ("UNORDERED_CHANNEL_B_ENV", "unordered_channel_b"),
)

# Environment variables that override a built-in default when set.
OPTIONAL_VARIABLES = (
    ("SIMD_BINARY_ENV", "simd_binary"),
    ("RLY_BINARY_ENV", "rly_binary"),
)

_ENV_REFERENCE = re.compile(r"\$(?:\{([^}]*)\}|([A-Za-z0-9_]+))")


class ConfigError(Exception):
    """Raised when the environment does not describe a usable testbed."""

    def __init__(self, message: str, missing: tuple[str, ...] = ()) -> None:
        super().__init__(message)
        self.missing = missing


@dataclass(frozen=True)
class Settings:
    """Everything the scenarios need to reach both chains and the relayer."""

    chain_a_id: str
    chain_a_rpc: str
    chain_a_home: str
    chain_b_id: str
    chain_b_rpc: str
    chain_b_home: str
    rly_config_path: str
    path_transfer: str
    path_ordered: str
    path_unordered: str
    transfer_channel_a: str
    transfer_channel_b: str
    ordered_channel_a: str
    ordered_channel_b: str
    unordered_channel_a: str
    unordered_channel_b: str
    simd_binary: str = "simd"
    rly_binary: str = "rly"
    keyring_backend: str = "test"
    src_port: str = "transfer"
    dst_port: str = "transfer"
    ibc_version: str = "ics20-1"
    gas_flags: str = "--gas=auto --gas-adjustment=1.2"
    fee: str = "200000uatom"
    user_a_key: str = "usera"
    user_b_key: str = "userb"
    attacker_b_key: str = "attackerb"
    mock_dex_b_key: str = "mockDexB"
    ibc_denom: str = "token"
    stake_denom: str = "uatom"

    def log_summary(self) -> list[str]:
        """Log the loaded configuration and return the lines written."""
        lines = [
            "--- Script Configuration Loaded ---",
            f"SIMD Binary: {self.simd_binary}",
            f"RLY Binary: {self.rly_binary}",
            f"Chain A ID: {self.chain_a_id}, RPC: {self.chain_a_rpc}, Home: {self.chain_a_home}",
            f"Chain B ID: {self.chain_b_id}, RPC: {self.chain_b_rpc}, Home: {self.chain_b_home}",
            f"Relayer Config Path: {self.rly_config_path}",
            f"Relayer Path (Transfer): {self.path_transfer}",
            f"Relayer Path (Ordered): {self.path_ordered}",
            f"Relayer Path (Unordered): {self.path_unordered}",
            f"Auto-discovered Channels - Transfer: A={self.transfer_channel_a}, B={self.transfer_channel_b}",
            f"Auto-discovered Channels - Ordered: A={self.ordered_channel_a}, B={self.ordered_channel_b}",
            f"Auto-discovered Channels - Unordered: A={self.unordered_channel_a}, B={self.unordered_channel_b}",
            f"Default Keyring Backend: {self.keyring_backend}",
            f"Default Source Port: {self.src_port}",
            f"Default Destination Port: {self.dst_port}",
            f"Default IBC Version: {self.ibc_version}",
            f"Default Gas Flags: {self.gas_flags}",
            f"Default Fee: {self.fee}",
            f"User A Key Name: {self.user_a_key}",
            f"User B Key Name: {self.user_b_key}",
            f"Attacker B Key Name: {self.attacker_b_key}",
            f"Mock DEX B Key Name: {self.mock_dex_b_key}",
            f"IBC Token Denom: {self.ibc_denom}",
            f"Attacker Stake Denom: {self.stake_denom}",
            "-----------------------------------",
        ]
        for line in lines:
            log.info(line)
        return lines


def expand_config_path(path: str, environ: Optional[Mapping[str, str]] = None) -> str:
    """Expand a leading ``~/`` and any ``$VAR``/``${VAR}`` references in *path*."""
    env = os.environ if environ is None else environ
    if not path:
        return path
    if path.startswith("~/"):
        home = env.get("HOME") or env.get("USERPROFILE")
        if not home:
            raise ConfigError("could not determine the user home directory to expand the relayer config path")
        path = os.path.normpath(os.path.join(home, path[2:]))

    def substitute(match: re.Match[str]) -> str:
        name = match.group(1) if match.group(1) is not None else match.group(2)
        return env.get(name, "")

    return _ENV_REFERENCE.sub(substitute, path)


def load_settings(environ: Optional[Mapping[str, str]] = None) -> Settings:
    """Build :class:`Settings` from *environ* (``os.environ`` by default)."""
    env = os.environ if environ is None else environ
    values: dict[str, str] = {}
    missing: list[str] = []
    for key, field_name in REQUIRED_VARIABLES:
        value = env.get(key, "")
        if not value:
            missing.append(key)
        values[field_name] = value
    for key, field_name in OPTIONAL_VARIABLES:
        value = env.get(key, "")
        if value:
            values[field_name] = value

    if values["rly_config_path"]:
        values["rly_config_path"] = expand_config_path(values["rly_config_path"], env)

    if missing:
        raise ConfigError(
            f"Required environment variables are not set: {missing}. "
            "Please run this script using the Makefile (e.g., 'make run') which sets these variables.",
            tuple(missing),
        )
    return Settings(**values)