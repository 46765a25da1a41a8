"""Scenario 2: a high-fee attacker transaction races a relayed packet into the same block."""

from __future__ import annotations

import argparse
import concurrent.futures
import logging
import time
from typing import Callable, Optional, Sequence

from .chain import Addresses, ChainClient, ChainError
from .config import ConfigError, Settings, load_settings

log = logging.getLogger(__name__)

ATTACKER_HIGH_FEE = "300000uatom"
ATTACKER_GAS_FLAGS = "--gas=auto --gas-adjustment=1.3"
TRANSFER_AMOUNT = "100"
ATTACKER_AMOUNT = "1"
RELAY_TIMEOUT = 25.0


def intra_block_verdict(attacker_index: int, recv_index: int) -> Optional[bool]:
    """Whether the attacker's tx precedes the RecvPacket tx within a block.

    Returns None when either transaction was not found (index -1).
    """
    if attacker_index == -1 or recv_index == -1:
        return None
    return attacker_index < recv_index


def _check_settings(settings: Settings) -> None:
    if not settings.path_transfer:
        raise ConfigError("ibcPathTransfer (from RLY_PATH_TRANSFER_ENV) is not set in config")
    if not settings.transfer_channel_a or not settings.transfer_channel_b:
        raise ConfigError(
            "auto-discovered channel IDs (transferChannelA, transferChannelB) are not set. "
            "Ensure 'make setup-relayer' was run successfully"
        )


def _setup(client: ChainClient) -> Addresses:
    s = client.settings
    addresses = client.resolve_addresses()
    log.info("--- Case 2 Setup ---")
    log.info("User A Address (Chain A): %s", addresses.user_a)
    log.info("User B Address (Chain B - Victim's Recipient): %s", addresses.user_b)
    log.info("Attacker B Address (Chain B): %s", addresses.attacker_b)
    log.info("Attacker B Receiver Address (Chain B): %s", addresses.attacker_receiver)
    log.info("Using IBC Path from ENV (RLY_PATH_TRANSFER_ENV): %s", s.path_transfer)
    log.info("Using Auto-discovered Channel ID on Chain A (for send_packet): %s", s.transfer_channel_a)
    log.info("Using Auto-discovered Channel ID on Chain B (for recv_packet): %s", s.transfer_channel_b)
    log.info("Attacker's High Fee: %s, Attacker's Gas Flags: %s", ATTACKER_HIGH_FEE, ATTACKER_GAS_FLAGS)
    log.info("--------------------")
    _check_settings(s)
    return addresses


def _relay(client: ChainClient, sequence: str) -> Optional[ChainError]:
    s = client.settings
    log.info(
        "Submitting relay command for packet sequence %s (path: %s, src chan: %s)",
        sequence, s.path_transfer, s.transfer_channel_a,
    )
    try:
        client.relay_packet(s.path_transfer, s.transfer_channel_a, sequence)
    except ChainError as exc:
        log.warning(
            "Warning: relaySpecificPacket command returned an error: %s. "
            "This might be okay if packet is already relayed or in flight.", exc,
        )
        return exc
    return None


def run(client: ChainClient, sleep: Callable[[float], None] = time.sleep) -> Optional[bool]:
    """Run the scenario; return whether the attacker's tx landed before the RecvPacket tx.

    Returns None when the order could not be determined.
    """
    s = client.settings
    log.info("Starting Case 2: Validator Front-Running (Fee Manipulation)")
    try:
        addresses = _setup(client)
    except (ConfigError, ChainError) as exc:
        raise ChainError(f"Setup failed: {exc}") from exc

    victim_amount = TRANSFER_AMOUNT + s.ibc_denom
    log.info(
        "Step 1: userA (%s) on %s sending %s to userB (%s) on %s via channel %s (fee: %s, gas: %s)",
        s.user_a_key, s.chain_a_id, victim_amount, s.user_b_key, s.chain_b_id,
        s.transfer_channel_a, s.fee, s.gas_flags,
    )
    try:
        transfer_hash = client.ibc_transfer(
            s.chain_a_id, s.chain_a_rpc, s.chain_a_home, s.user_a_key, addresses.user_b,
            s.src_port, s.transfer_channel_a, victim_amount, s.fee, s.gas_flags,
        )
    except ChainError as exc:
        raise ChainError(f"Failed to initiate IBC transfer: {exc}") from exc
    log.info("Victim's IBC transfer submitted on %s. Tx hash: %s", s.chain_a_id, transfer_hash)
    log.info("Waiting for transaction to be indexed on Chain A...")
    sleep(6)

    try:
        sequence = client.find_packet_sequence(
            s.chain_a_id, s.chain_a_rpc, transfer_hash, s.src_port, s.transfer_channel_a
        )
    except ChainError as exc:
        raise ChainError(f"Failed to find packet sequence from tx {transfer_hash}: {exc}") from exc
    log.info("Observed SendPacket sequence: %s for channel %s", sequence, s.transfer_channel_a)

    log.info(
        "Step 2 & 3: Relaying victim's packet and simultaneously submitting "
        "attacker's high-fee transaction to Chain B"
    )
    executor = concurrent.futures.ThreadPoolExecutor(max_workers=1)
    try:
        relay_future = executor.submit(_relay, client, sequence)

        attacker_amount = ATTACKER_AMOUNT + s.ibc_denom
        log.info(
            "AttackerB (%s) submitting transaction (%s) with high fee (%s) and gas flags (%s) on %s",
            s.attacker_b_key, attacker_amount, ATTACKER_HIGH_FEE, ATTACKER_GAS_FLAGS, s.chain_b_id,
        )
        try:
            attacker_hash = client.bank_send(
                s.chain_b_id, s.chain_b_rpc, s.chain_b_home, s.attacker_b_key,
                addresses.attacker_receiver, attacker_amount, ATTACKER_HIGH_FEE, ATTACKER_GAS_FLAGS,
            )
        except ChainError as exc:
            raise ChainError(f"Attacker's high-fee transaction failed to submit: {exc}") from exc
        log.info("Attacker's high-fee transaction submitted on %s. Tx hash: %s", s.chain_b_id, attacker_hash)

        try:
            relay_error = relay_future.result(timeout=RELAY_TIMEOUT)
        except concurrent.futures.TimeoutError:
            log.warning("Warning: Timeout waiting for relay command to finish.")
        else:
            if relay_error is not None:
                log.info("Relay command finished with error: %s", relay_error)
            else:
                log.info("Relay command finished successfully.")
    finally:
        executor.shutdown(wait=False)

    log.info("Waiting for transactions to be included in a block on Chain B...")
    sleep(10)

    log.info("Step 4 & 5: Observation and Verification on Chain B")
    try:
        attacker_tx = client.query_tx(s.chain_b_id, s.chain_b_rpc, attacker_hash)
    except ChainError as exc:
        raise ChainError(
            f"Failed to query attacker's transaction {attacker_hash} on {s.chain_b_id}: {exc}"
        ) from exc
    log.info(
        "Attacker's transaction %s on %s included in block: %s", attacker_hash, s.chain_b_id, attacker_tx.height
    )

    try:
        recv_tx = client.find_recv_packet_tx(
            s.chain_b_id, s.chain_b_rpc, s.dst_port, s.transfer_channel_b, sequence
        )
    except ChainError as exc:
        raise ChainError(
            f"Failed to find RecvPacket transaction for sequence {sequence} on {s.chain_b_id} "
            f"(port {s.dst_port}, channel {s.transfer_channel_b}): {exc}. "
            "The packet might not have been processed or the relay failed."
        ) from exc
    log.info(
        "Victim's IBC packet (seq: %s) processed in tx %s on %s, block: %s",
        sequence, recv_tx.txhash, s.chain_b_id, recv_tx.height,
    )

    if attacker_tx.height != recv_tx.height:
        try:
            attacker_height = attacker_tx.height_int()
            recv_height = recv_tx.height_int()
        except ValueError:
            log.error(
                "ERROR: Failed to parse block heights for comparison. Attacker: %s, RecvPacket: %s",
                attacker_tx.height, recv_tx.height,
            )
            log.info("Case 2 finished.")
            return None
        if attacker_height < recv_height:
            log.info(
                "SUCCESS: Attacker's tx (block %d) was included BEFORE RecvPacket tx (block %d). "
                "Front-running achieved across blocks!", attacker_height, recv_height,
            )
            outcome = True
        else:
            log.info(
                "FAILURE: Attacker's tx (block %d) was included AFTER RecvPacket tx (block %d). "
                "Front-running failed.", attacker_height, recv_height,
            )
            outcome = False
        log.info("Case 2 finished.")
        return outcome

    log.info(
        "Both attacker's tx and RecvPacket tx are in the SAME block: %s. Checking intra-block order...",
        attacker_tx.height,
    )
    try:
        block = client.query_block(s.chain_b_rpc, attacker_tx.height)
    except ChainError as exc:
        raise ChainError(f"Failed to query block {attacker_tx.height} on {s.chain_b_id}: {exc}") from exc

    positions = block.tx_indices([attacker_hash, recv_tx.txhash])
    attacker_index = positions[attacker_hash]
    recv_index = positions[recv_tx.txhash]
    log.info("Attacker's tx index in block: %d", attacker_index)
    log.info("RecvPacket tx index in block: %d", recv_index)

    outcome = intra_block_verdict(attacker_index, recv_index)
    if outcome is None:
        log.error(
            "ERROR: Could not find one or both transactions in the block's tx list by hash. "
            "Attacker found: %s, RecvPacket found: %s",
            str(attacker_index != -1).lower(), str(recv_index != -1).lower(),
        )
    elif outcome:
        log.info(
            "SUCCESS: Attacker's transaction (index %d) appeared BEFORE RecvPacket transaction "
            "(index %d) in block %s due to higher fee.", attacker_index, recv_index, attacker_tx.height,
        )
    else:
        log.info(
            "FAILURE: Attacker's transaction (index %d) did NOT appear before RecvPacket transaction "
            "(index %d) in block %s.", attacker_index, recv_index, attacker_tx.height,
        )
    log.info("Case 2 finished.")
    return outcome


def main(argv: Optional[Sequence[str]] = None) -> int:
    """Run scenario 2 against the configured testbed; return the exit status."""
    parser = argparse.ArgumentParser(
        prog="ibcfrontrun-case2",
        description="Validator fee front-running: a high-fee tx races a relayed packet.",
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