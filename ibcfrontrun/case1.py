"""Scenario 1: an attacker acts on the destination chain before a packet is relayed."""

from __future__ import annotations

import argparse
import logging
import time
from typing import Callable, Optional, Sequence

from .chain import Addresses, ChainClient, ChainError
from .config import ConfigError, Settings, load_settings
from .models import HeightOrder, TxResponse, compare_heights

log = logging.getLogger(__name__)

TRANSFER_AMOUNT = "100"
ATTACKER_AMOUNT = "1"


def check_settings(settings: Settings) -> None:
    """Raise :class:`ConfigError` unless the transfer path and channels are set."""
    if not settings.path_transfer:
        raise ConfigError(
            "ibcPathTransfer (from RLY_PATH_TRANSFER_ENV) is not set. Ensure Makefile passes this env var"
        )
    if not settings.transfer_channel_a or not settings.transfer_channel_b:
        raise ConfigError(
            "auto-discovered channel IDs (transferChannelA, transferChannelB) are not set. "
            "Ensure 'make setup-relayer' was run successfully"
        )


def verdict(attacker_height: int, recv_height: int) -> str:
    """Outcome message for the attacker's block against the victim's RecvPacket block."""
    order = compare_heights(attacker_height, recv_height)
    if order is HeightOrder.BEFORE:
        return (
            f"SUCCESS: Attacker's tx (block {attacker_height}) processed before "
            f"victim's RecvPacket (block {recv_height})."
        )
    if order is HeightOrder.SAME:
        return (
            f"INFO: Attacker's tx and victim's RecvPacket are in the SAME block ({attacker_height}). "
            "Manual check of intra-block order might be needed if tx index is not available or not parsed."
        )
    return (
        f"FAILURE: Attacker's tx (block {attacker_height}) processed after "
        f"victim's RecvPacket (block {recv_height})."
    )


def _height(tx: TxResponse) -> int:
    try:
        return tx.height_int()
    except ValueError:
        return 0


def _setup(client: ChainClient) -> Addresses:
    s = client.settings
    addresses = client.resolve_addresses()
    log.info("--- Case 1 Setup ---")
    log.info("User A Address (Chain A): %s", addresses.user_a)
    log.info("User B Address (Chain B - Victim's Recipient): %s", addresses.user_b)
    log.info("Attacker B Address (Chain B): %s", addresses.attacker_b)
    log.info("Attacker B Receiver Address (Chain B): %s", addresses.attacker_receiver)
    log.info("Using IBC Path from ENV (RLY_PATH_TRANSFER_ENV): %s", s.path_transfer)
    log.info("Using Auto-discovered Channel ID on Chain A (for send_packet): %s", s.transfer_channel_a)
    log.info("Using Auto-discovered Channel ID on Chain B (for recv_packet): %s", s.transfer_channel_b)
    log.info("--------------------")
    check_settings(s)
    return addresses


def run(client: ChainClient, sleep: Callable[[float], None] = time.sleep) -> Optional[HeightOrder]:
    """Run the scenario; return how the attacker's block relates to the RecvPacket block.

    Returns None when the heights could not both be found.
    """
    s = client.settings
    log.info("Starting Case 1: Relayer Front-Running Scenario")
    try:
        addresses = _setup(client)
    except (ConfigError, ChainError) as exc:
        raise ChainError(f"Setup failed: {exc}") from exc

    victim_amount = TRANSFER_AMOUNT + s.ibc_denom
    log.info(
        "Step 1: userA (%s) on %s sending %s to userB (%s) on %s via channel %s",
        s.user_a_key, s.chain_a_id, victim_amount, s.user_b_key, s.chain_b_id, s.transfer_channel_a,
    )
    try:
        transfer_hash = client.ibc_transfer(
            s.chain_a_id, s.chain_a_rpc, s.chain_a_home, s.user_a_key, addresses.user_b,
            s.src_port, s.transfer_channel_a, victim_amount, s.fee, s.gas_flags,
        )
    except ChainError as exc:
        raise ChainError(f"Failed to initiate IBC transfer: {exc}") from exc
    log.info("Victim's IBC transfer submitted. Tx hash on %s: %s", s.chain_a_id, transfer_hash)
    log.info("Waiting a few seconds for the transaction to be indexed...")
    sleep(6)

    log.info("Step 2: Observing packet sequence number on %s", s.chain_a_id)
    try:
        sequence = client.find_packet_sequence(
            s.chain_a_id, s.chain_a_rpc, transfer_hash, s.src_port, s.transfer_channel_a
        )
    except ChainError as exc:
        raise ChainError(f"Failed to find packet sequence: {exc}") from exc
    log.info("Observed SendPacket sequence: %s for channel %s", sequence, s.transfer_channel_a)

    attacker_amount = ATTACKER_AMOUNT + s.ibc_denom
    log.info(
        "Step 3: attackerB (%s) on %s performing a transaction (%s) BEFORE victim's packet is relayed",
        s.attacker_b_key, s.chain_b_id, attacker_amount,
    )
    try:
        attacker_hash = client.bank_send(
            s.chain_b_id, s.chain_b_rpc, s.chain_b_home, s.attacker_b_key,
            addresses.attacker_receiver, attacker_amount, s.fee, s.gas_flags,
        )
    except ChainError as exc:
        raise ChainError(f"Attacker's transaction failed: {exc}") from exc
    log.info("Attacker's transaction submitted. Tx hash on %s: %s", s.chain_b_id, attacker_hash)
    log.info("Waiting a few seconds for attacker's transaction to be confirmed...")
    sleep(6)

    log.info(
        "Step 4: Manually relaying specific packet (seq: %s) using path %s, src channel %s",
        sequence, s.path_transfer, s.transfer_channel_a,
    )
    try:
        client.relay_packet(s.path_transfer, s.transfer_channel_a, sequence)
    except ChainError as exc:
        log.warning(
            "Warning: Relaying specific packet command failed: %s. "
            "The packet might have been relayed by another process.", exc,
        )
    else:
        log.info("Specific packet relay command executed.")
    log.info("Waiting a few seconds for packet to be relayed and processed...")
    sleep(10)

    log.info("Step 5: Verification")
    attacker_tx: Optional[TxResponse]
    try:
        attacker_tx = client.query_tx(s.chain_b_id, s.chain_b_rpc, attacker_hash)
    except ChainError as exc:
        log.warning("Warning: Could not query attacker's tx info on %s: %s", s.chain_b_id, exc)
        attacker_tx = None
    else:
        log.info(
            "Attacker's transaction (%s) on %s was included in block: %s",
            attacker_hash, s.chain_b_id, attacker_tx.height,
        )

    result: Optional[HeightOrder] = None
    try:
        recv_tx = client.find_recv_packet_tx(
            s.chain_b_id, s.chain_b_rpc, s.dst_port, s.transfer_channel_b, sequence
        )
    except ChainError as exc:
        log.warning(
            "Warning: Could not find RecvPacket tx for sequence %s on %s (port %s, channel %s): %s. "
            "The packet may not have been processed.",
            sequence, s.chain_b_id, s.dst_port, s.transfer_channel_b, exc,
        )
    else:
        log.info(
            "Victim's IBC packet (seq: %s) was processed in tx %s on %s in block: %s",
            sequence, recv_tx.txhash, s.chain_b_id, recv_tx.height,
        )
        if attacker_tx is not None:
            attacker_height = _height(attacker_tx)
            recv_height = _height(recv_tx)
            log.info(verdict(attacker_height, recv_height))
            result = compare_heights(attacker_height, recv_height)

    for label, key, address in (
        ("userB", s.user_b_key, addresses.user_b),
        ("attackerB", s.attacker_b_key, addresses.attacker_b),
    ):
        try:
            balance = client.query_balance(s.chain_b_id, s.chain_b_rpc, address, s.ibc_denom)
        except ChainError as exc:
            log.warning("Warning: Could not query %s balance on %s: %s", label, s.chain_b_id, exc)
        else:
            log.info(
                "Final balance of %s (%s) on %s: %s %s", label, key, s.chain_b_id, balance, s.ibc_denom
            )

    log.info("Case 1 finished.")
    return result


def main(argv: Optional[Sequence[str]] = None) -> int:
    """Run scenario 1 against the configured testbed; return the exit status."""
    parser = argparse.ArgumentParser(
        prog="ibcfrontrun-case1",
        description="Relayer front-running: act on the destination chain before a packet is relayed.",
    )
    parser.parse_args(argv)
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(message)s")

    try:
        settings = load_settings()
    except ConfigError as exc:
        log.error("FATAL: %s", exc)
        return 1
    settings.log_summary()

    try:
        run(ChainClient(settings))
    except ChainError as exc:
        log.error("%s", exc)
        return 1
    return 0