"""Checks that the testbed is configured, reachable and able to relay."""

from __future__ import annotations

import argparse
import logging
import time
from typing import Callable, Optional, Sequence

from .chain import ChainClient, ChainError
from .config import ConfigError, Settings, load_settings

log = logging.getLogger(__name__)


def validate_config(settings: Settings) -> None:
    """Raise :class:`ConfigError` if a required setting is empty."""
    s = settings
    if not s.chain_a_id or not s.chain_b_id:
        raise ConfigError("chain IDs not set")
    if not s.chain_a_rpc or not s.chain_b_rpc:
        raise ConfigError("chain RPC endpoints not set")
    if not s.path_transfer or not s.path_ordered or not s.path_unordered:
        raise ConfigError("relayer paths not set")
    if not s.transfer_channel_a or not s.transfer_channel_b:
        raise ConfigError("transfer channel IDs not discovered")
    if not s.ordered_channel_a or not s.ordered_channel_b:
        raise ConfigError("ordered channel IDs not discovered")
    if not s.unordered_channel_a or not s.unordered_channel_b:
        raise ConfigError("unordered channel IDs not discovered")

    log.info("  Chain A: %s (%s)", s.chain_a_id, s.chain_a_rpc)
    log.info("  Chain B: %s (%s)", s.chain_b_id, s.chain_b_rpc)
    log.info("  Transfer channels: A=%s, B=%s", s.transfer_channel_a, s.transfer_channel_b)
    log.info("  Ordered channels: A=%s, B=%s", s.ordered_channel_a, s.ordered_channel_b)
    log.info("  Unordered channels: A=%s, B=%s", s.unordered_channel_a, s.unordered_channel_b)


def validate_chains(client: ChainClient) -> None:
    """Raise :class:`ChainError` unless both chains answer a status query."""
    s = client.settings
    for label, rpc in (("Chain A", s.chain_a_rpc), ("Chain B", s.chain_b_rpc)):
        try:
            client.status(rpc)
        except ChainError as exc:
            raise ChainError(f"{label} ({rpc}) not accessible: {exc}") from exc


def validate_relayer_setup(client: ChainClient) -> None:
    """Raise :class:`ChainError` unless every relayer path exists with channels."""
    s = client.settings
    paths = (
        (s.path_transfer, s.transfer_channel_a, s.transfer_channel_b),
        (s.path_ordered, s.ordered_channel_a, s.ordered_channel_b),
        (s.path_unordered, s.unordered_channel_a, s.unordered_channel_b),
    )
    for path, channel_a, channel_b in paths:
        log.info("  Checking path: %s", path)
        client.show_path(path)
        if not channel_a or not channel_b:
            raise ChainError(f"channel IDs for path {path} are empty")
        log.info("    ✓ Channels: A=%s, B=%s", channel_a, channel_b)


def basic_ibc_transfer(client: ChainClient, sleep: Callable[[float], None] = time.sleep) -> str:
    """Send and relay a one-token transfer; return the packet sequence."""
    s = client.settings
    try:
        user_a = client.key_address(s.user_a_key, s.chain_a_home)
    except ChainError as exc:
        raise ChainError(f"failed to get userA address: {exc}") from exc
    try:
        user_b = client.key_address(s.user_b_key, s.chain_b_home)
    except ChainError as exc:
        raise ChainError(f"failed to get userB address: {exc}") from exc
    log.info("  UserA address: %s", user_a)
    log.info("  UserB address: %s", user_b)

    try:
        initial = client.query_balance(s.chain_b_id, s.chain_b_rpc, user_b, s.ibc_denom)
    except ChainError as exc:
        log.warning("  Warning: Could not query initial balance: %s", exc)
        initial = "unknown"
    log.info("  UserB initial %s balance: %s", s.ibc_denom, initial)

    amount = "1" + s.ibc_denom
    log.info("  Sending test transfer: %s from userA to userB", amount)
    try:
        tx_hash = client.ibc_transfer(
            s.chain_a_id, s.chain_a_rpc, s.chain_a_home, s.user_a_key, user_b,
            s.src_port, s.transfer_channel_a, amount, s.fee, s.gas_flags,
        )
    except ChainError as exc:
        raise ChainError(f"test IBC transfer failed: {exc}") from exc
    log.info("  Transfer submitted, tx hash: %s", tx_hash)
    log.info("  Waiting for transaction to be indexed...")
    sleep(5)

    try:
        sequence = client.find_packet_sequence(
            s.chain_a_id, s.chain_a_rpc, tx_hash, s.src_port, s.transfer_channel_a
        )
    except ChainError as exc:
        raise ChainError(f"could not find packet sequence: {exc}") from exc
    log.info("  Packet sequence: %s", sequence)

    log.info("  Relaying packet...")
    try:
        client.relay_packet(s.path_transfer, s.transfer_channel_a, sequence)
    except ChainError as exc:
        log.warning("  Warning: Relay command failed: %s (packet might already be relayed)", exc)

    log.info("  Waiting for packet to be processed...")
    sleep(8)

    try:
        client.find_recv_packet_tx(s.chain_b_id, s.chain_b_rpc, s.dst_port, s.transfer_channel_b, sequence)
    except ChainError as exc:
        raise ChainError(f"packet was not received on Chain B: {exc}") from exc

    try:
        final = client.query_balance(s.chain_b_id, s.chain_b_rpc, user_b, s.ibc_denom)
    except ChainError as exc:
        log.warning("  Warning: Could not query final balance: %s", exc)
    else:
        log.info("  UserB final %s balance: %s", s.ibc_denom, final)

    log.info("  ✓ Test IBC transfer completed successfully")
    return sequence


def main(argv: Optional[Sequence[str]] = None) -> int:
    """Validate the testbed; return the process exit status."""
    parser = argparse.ArgumentParser(
        prog="ibcfrontrun-validate",
        description="Validate the two-chain IBC testbed before running the scenarios.",
    )
    parser.parse_args(argv)
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(message)s")

    try:
        settings = load_settings()
    except ConfigError as exc:
        log.error("FATAL: %s", exc)
        return 1
    settings.log_summary()
    client = ChainClient(settings)

    log.info("=== IBC Front-Running Testbed Setup Validation ===")
    steps = (
        ("1. Verifying configuration...", lambda: validate_config(settings),
         "✓ Configuration loaded successfully", "Configuration validation failed"),
        ("2. Testing chain connectivity...", lambda: validate_chains(client),
         "✓ Both chains are accessible", "Chain connectivity failed"),
        ("3. Validating relayer setup...", lambda: validate_relayer_setup(client),
         "✓ Relayer paths and channels are properly configured", "Relayer setup validation failed"),
        ("4. Testing basic IBC functionality...", lambda: basic_ibc_transfer(client),
         "✓ Basic IBC transfer successful", "Basic IBC test failed"),
    )
    for intro, action, success, failure in steps:
        log.info("")
        log.info(intro)
        try:
            action()
        except (ConfigError, ChainError) as exc:
            log.error("%s: %s", failure, exc)
            return 1
        log.info(success)

    log.info("")
    log.info("=== All Validations Passed! ===")
    log.info("The testbed is ready for front-running experiments.")
    log.info("You can now run 'make run' to execute all test cases.")
    return 0