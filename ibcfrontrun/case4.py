"""Scenario 4: front-running a packet on ordered and on unordered channels."""

from __future__ import annotations

import argparse
import enum
import logging
import time
from typing import Callable, Optional, Sequence

from .chain import Addresses, ChainClient, ChainError
from .config import ConfigError, Settings, load_settings
from .models import HeightOrder, TxResponse, compare_heights

log = logging.getLogger(__name__)

TRANSFER_AMOUNT = "10"
ATTACKER_AMOUNT = "1"
PAUSE_BETWEEN_RUNS = 15


class ChannelKind(enum.Enum):
    """Ordering guarantee of the channel under test."""

    ORDERED = "ORDERED"
    UNORDERED = "UNORDERED"


def check_settings(settings: Settings) -> None:
    """Raise :class:`ConfigError` unless both paths and all four channels are set.

    Logs a warning when the ordered and unordered runs would use the same
    path and source channel.
    """
    if not settings.path_ordered or not settings.path_unordered:
        raise ConfigError(
            "one or both relayer paths (ibcPathOrdered, ibcPathUnordered) are not set from ENV variables"
        )
    if not all(
        (
            settings.ordered_channel_a,
            settings.ordered_channel_b,
            settings.unordered_channel_a,
            settings.unordered_channel_b,
        )
    ):
        raise ConfigError(
            "auto-discovered channel IDs for ordered/unordered tests are not set. "
            "Ensure 'make setup-relayer' was run successfully"
        )
    if (
        settings.path_ordered == settings.path_unordered
        and settings.ordered_channel_a == settings.unordered_channel_a
    ):
        log.warning(
            "WARNING: Ordered and Unordered tests are configured to use the same path name AND same "
            "source channel ID. This may not be a meaningful distinction unless the path itself has "
            "different 'order' settings in the relayer config and different channel IDs were "
            "generated on link."
        )


def ordering_verdict(kind: ChannelKind, first_height: int, second_height: int) -> str:
    """Message on the receive blocks of the first and second packet for a channel kind."""
    if kind is ChannelKind.UNORDERED:
        return "INFO: For UNORDERED channels, Packet1 and Packet2 can be processed in any order."
    if first_height > second_height:
        return (
            f"CRITICAL ORDERING VIOLATION: Packet1 processed in block {first_height} AFTER "
            f"Packet2 in block {second_height} on an ORDERED channel!"
        )
    if first_height == second_height:
        return (
            f"INFO: Packet1 and Packet2 processed in the SAME block ({first_height}) on ORDERED channel. "
            "Intra-block order should ensure Packet1 is first."
        )
    return (
        f"INFO: Packet1 (block {first_height}) processed before Packet2 (block {second_height}) "
        "as expected for ORDERED channel."
    )


def _front_run_message(attacker_height: int, recv_height: int) -> str:
    order = compare_heights(attacker_height, recv_height)
    if order is HeightOrder.BEFORE:
        return (
            f"RESULT: SUCCESSFUL Front-run. Attacker's tx (block {attacker_height}) processed "
            f"BEFORE Packet2 (block {recv_height})."
        )
    if order is HeightOrder.SAME:
        return (
            f"RESULT: POTENTIAL Front-run. Attacker's tx and Packet2 are in the SAME block "
            f"({attacker_height}). Intra-block order check needed for definitive result."
        )
    return (
        f"RESULT: FAILED Front-run. Attacker's tx (block {attacker_height}) processed "
        f"AFTER Packet2 (block {recv_height})."
    )


def _height(tx: TxResponse) -> int:
    try:
        return tx.height_int()
    except ValueError:
        return 0


def _find_recv(client: ChainClient, tag: str, label: str, dst_channel: str, sequence: str) -> Optional[TxResponse]:
    s = client.settings
    try:
        tx = client.find_recv_packet_tx(s.chain_b_id, s.chain_b_rpc, s.dst_port, dst_channel, sequence)
    except ChainError as exc:
        log.warning(
            "%s WARNING: Could not find RecvPacket for %s (seq %s) on %s (port %s, channel %s): %s",
            tag, label, sequence, s.chain_b_id, s.dst_port, dst_channel, exc,
        )
        return None
    log.info(
        "%s %s (seq %s) processed in tx %s on %s, block: %s",
        tag, label, sequence, tx.txhash, s.chain_b_id, tx.height,
    )
    return tx


def _relay(client: ChainClient, tag: str, label: str, path_name: str, src_channel: str, sequence: str) -> None:
    try:
        client.relay_packet(path_name, src_channel, sequence)
    except ChainError as exc:
        log.warning("%s WARNING: Relaying %s (seq %s) command failed: %s.", tag, label, sequence, exc)
    else:
        log.info("%s %s (seq %s) relay command executed.", tag, label, sequence)


def run_front_run_test(
    client: ChainClient,
    kind: ChannelKind,
    path_name: str,
    src_channel: str,
    dst_channel: str,
    sleep: Callable[[float], None] = time.sleep,
) -> Optional[HeightOrder]:
    """Send two packets, act as attacker between relaying them, and compare blocks.

    Returns how the attacker's block relates to the second packet's receive
    block, or None when a step failed or the heights could not be found.
    """
    s = client.settings
    tag = f"[{kind.value}]"
    log.info("%s Test: Simulating front-running scenario using path %s.", tag, path_name)

    addresses = client.resolve_addresses()
    transfer_amount = TRANSFER_AMOUNT + s.ibc_denom
    attacker_amount = ATTACKER_AMOUNT + s.ibc_denom

    log.info(
        "%s Step 1: userA (%s) sending two IBC transfers (%s each) via %s channel %s (port %s)",
        tag, s.user_a_key, transfer_amount, kind.value, src_channel, s.src_port,
    )
    hashes: list[str] = []
    for label, pause in (("Packet1", 5), ("Packet2", None)):
        try:
            tx_hash = client.ibc_transfer(
                s.chain_a_id, s.chain_a_rpc, s.chain_a_home, s.user_a_key, addresses.user_b,
                s.src_port, src_channel, transfer_amount, s.fee, s.gas_flags,
            )
        except ChainError as exc:
            log.error("%s ERROR: Failed to send %s: %s", tag, label, exc)
            return None
        log.info("%s %s sent. Tx hash on %s: %s", tag, label, s.chain_a_id, tx_hash)
        hashes.append(tx_hash)
        if pause is not None:
            sleep(pause)
    log.info("%s Waiting for packets to be indexed on Chain A...", tag)
    sleep(6)

    log.info(
        "%s Step 2: Observing packet sequence numbers on %s for port %s, channel %s",
        tag, s.chain_a_id, s.src_port, src_channel,
    )
    sequences: list[str] = []
    for label, tx_hash in zip(("Packet1", "Packet2"), hashes):
        try:
            seq = client.find_packet_sequence(s.chain_a_id, s.chain_a_rpc, tx_hash, s.src_port, src_channel)
        except ChainError as exc:
            log.error("%s ERROR: Failed to find %s sequence: %s", tag, label, exc)
            return None
        log.info("%s Observed %s sequence: %s", tag, label, seq)
        sequences.append(seq)
    first_seq, second_seq = sequences

    log.info(
        "%s Step 3: Controlled Relaying of Packet1 (seq %s) via path %s, src chan %s",
        tag, first_seq, path_name, src_channel,
    )
    _relay(client, tag, "Packet1", path_name, src_channel, first_seq)
    log.info("%s Waiting a moment for Packet1 to potentially process on Chain B...", tag)
    sleep(8)

    log.info(
        "%s Step 3b: AttackerB (%s) performing transaction (%s) on %s BEFORE Packet2 (seq %s) is relayed",
        tag, s.attacker_b_key, attacker_amount, s.chain_b_id, second_seq,
    )
    try:
        attacker_hash = client.bank_send(
            s.chain_b_id, s.chain_b_rpc, s.chain_b_home, s.attacker_b_key,
            addresses.attacker_receiver, attacker_amount, s.fee, s.gas_flags,
        )
    except ChainError as exc:
        log.error("%s ERROR: Attacker's transaction failed: %s", tag, exc)
        return None
    log.info("%s Attacker's transaction submitted. Tx hash on %s: %s", tag, s.chain_b_id, attacker_hash)
    log.info("%s Waiting for attacker's transaction to confirm...", tag)
    sleep(6)

    log.info(
        "%s Step 4: Controlled Relaying of Packet2 (seq %s) via path %s, src chan %s, AFTER attacker's action",
        tag, second_seq, path_name, src_channel,
    )
    _relay(client, tag, "Packet2", path_name, src_channel, second_seq)
    log.info("%s Waiting for Packet2 to process on Chain B...", tag)
    sleep(8)

    log.info("%s Step 5: Verification on Chain B", tag)
    attacker_tx: Optional[TxResponse]
    try:
        attacker_tx = client.query_tx(s.chain_b_id, s.chain_b_rpc, attacker_hash)
    except ChainError as exc:
        log.warning("%s WARNING: Could not query attacker's tx info on %s: %s", tag, s.chain_b_id, exc)
        attacker_tx = None
    else:
        log.info("%s Attacker's tx (%s) on %s in block: %s", tag, attacker_hash, s.chain_b_id, attacker_tx.height)

    first_recv = _find_recv(client, tag, "Packet1", dst_channel, first_seq)
    second_recv = _find_recv(client, tag, "Packet2", dst_channel, second_seq)

    result: Optional[HeightOrder] = None
    if attacker_tx is not None and second_recv is not None:
        attacker_height = _height(attacker_tx)
        second_height = _height(second_recv)
        log.info("%s Attacker Tx Block: %d, Packet2 Recv Block: %d", tag, attacker_height, second_height)
        log.info("%s %s", tag, _front_run_message(attacker_height, second_height))
        result = compare_heights(attacker_height, second_height)
    else:
        log.info(
            "%s RESULT: Inconclusive. Could not retrieve all necessary transaction details "
            "for Packet2 front-run analysis.", tag,
        )

    if first_recv is not None and second_recv is not None:
        first_height = _height(first_recv)
        second_height = _height(second_recv)
        log.info(
            "%s Packet1 (seq %s) Recv Block: %d, Packet2 (seq %s) Recv Block: %d",
            tag, first_seq, first_height, second_seq, second_height,
        )
        log.info("%s %s", tag, ordering_verdict(kind, first_height, second_height))

    log.info("%s Test finished.", tag)
    return result


def _setup(client: ChainClient) -> Addresses:
    s = client.settings
    addresses = client.resolve_addresses()
    log.info("--- Case 4 Setup ---")
    log.info("User A Address (Chain A): %s", addresses.user_a)
    log.info("User B Address (Chain B - Recipient): %s", addresses.user_b)
    log.info("Attacker B Address (Chain B): %s", addresses.attacker_b)
    log.info("Attacker B Receiver Address (Chain B): %s", addresses.attacker_receiver)
    log.info("Using IBC Path (Ordered) from ENV (RLY_PATH_ORDERED_ENV): %s", s.path_ordered)
    log.info(
        "  Src Channel (Chain A): %s, Dst Channel (Chain B for recv_packet): %s",
        s.ordered_channel_a, s.ordered_channel_b,
    )
    log.info("Using IBC Path (Unordered) from ENV (RLY_PATH_UNORDERED_ENV): %s", s.path_unordered)
    log.info(
        "  Src Channel (Chain A): %s, Dst Channel (Chain B for recv_packet): %s",
        s.unordered_channel_a, s.unordered_channel_b,
    )
    log.info("--------------------")
    check_settings(s)
    return addresses


def run(
    client: ChainClient, sleep: Callable[[float], None] = time.sleep
) -> dict[ChannelKind, Optional[HeightOrder]]:
    """Run the scenario on the ordered and then the unordered channel."""
    s = client.settings
    log.info("Starting Case 4: Ordered vs. Unordered Channel Front-Running")
    try:
        _setup(client)
    except (ConfigError, ChainError) as exc:
        raise ChainError(f"Setup failed: {exc}") from exc

    results: dict[ChannelKind, Optional[HeightOrder]] = {}

    log.info("--- RUN A: Testing with ORDERED Channel ---")
    log.info(
        "Path: %s, Chain A src channel: %s, Chain B dst channel (for recv_packet): %s",
        s.path_ordered, s.ordered_channel_a, s.ordered_channel_b,
    )
    results[ChannelKind.ORDERED] = run_front_run_test(
        client, ChannelKind.ORDERED, s.path_ordered, s.ordered_channel_a, s.ordered_channel_b, sleep
    )

    log.info("Waiting a bit before starting the unordered channel test...")
    sleep(PAUSE_BETWEEN_RUNS)

    log.info("--- RUN B: Testing with UNORDERED Channel ---")
    log.info(
        "Path: %s, Chain A src channel: %s, Chain B dst channel (for recv_packet): %s",
        s.path_unordered, s.unordered_channel_a, s.unordered_channel_b,
    )
    results[ChannelKind.UNORDERED] = run_front_run_test(
        client, ChannelKind.UNORDERED, s.path_unordered, s.unordered_channel_a, s.unordered_channel_b, sleep
    )

    log.info("Case 4 finished.")
    return results


def main(argv: Optional[Sequence[str]] = None) -> int:
    """Run scenario 4 against the configured testbed; return the exit status."""
    parser = argparse.ArgumentParser(
        prog="ibcfrontrun-case4",
        description="Channel ordering impact: front-run a packet on ordered and unordered channels.",
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