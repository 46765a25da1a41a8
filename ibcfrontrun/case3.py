"""Scenario 3: a sandwich trade on a modelled DEX around a large incoming transfer."""

from __future__ import annotations

import argparse
import dataclasses
import logging
import re
import time
from dataclasses import dataclass
from typing import Callable, Optional, Sequence

from .chain import Addresses, ChainClient, ChainError
from .config import ConfigError, Settings, load_settings
from .dex import LiquidityPool, PoolError, price_impact
from .models import TxResponse

log = logging.getLogger(__name__)

PREEMPTIVE_BUY_AMOUNT = "100"
LARGE_TRANSFER_AMOUNT = "5000"
POST_TRANSFER_SELL_AMOUNT = "190"
INITIAL_RESERVE_STAKE = "2000"
INITIAL_RESERVE_IBC = "2000"

_DECIMAL = re.compile(r"[+-]?[0-9]+")


@dataclass(frozen=True)
class MevResult:
    """Outcome of the attacker's round trip IBC -> stake -> IBC."""

    investment: int
    final_output: int
    profit: int
    profit_percent: Optional[float]
    sequence_valid: Optional[bool] = None

    @property
    def profitable(self) -> bool:
        return self.profit > 0


def _parse_amount(text: str, label: str) -> int:
    if not _DECIMAL.fullmatch(text):
        raise ChainError(f"invalid {label}: {text}")
    return int(text, 10)


def _height(tx: Optional[TxResponse]) -> int:
    if tx is None:
        return 0
    try:
        return tx.height_int()
    except ValueError:
        return 0


def sequence_is_valid(buy_height: int, recv_height: int, sell_height: int) -> bool:
    """Whether buy, receive and sell landed in non-decreasing block order."""
    return buy_height <= recv_height <= sell_height


def mev_analysis(investment: int, final_output: int) -> MevResult:
    """Profit of turning *investment* IBC tokens into *final_output* IBC tokens."""
    profit = final_output - investment
    percent = profit / investment * 100 if investment > 0 else None
    return MevResult(
        investment=investment,
        final_output=final_output,
        profit=profit,
        profit_percent=percent,
    )


def execute_swap(
    client: ChainClient,
    user_key: str,
    user_addr: str,
    dex_addr: str,
    input_amount: str,
    output_amount: str,
    input_denom: str,
    output_denom: str,
    sleep: Callable[[float], None] = time.sleep,
) -> tuple[str, str]:
    """Swap on chain B as two bank sends; return the input and output tx hashes.

    The DEX's balance of *output_denom* is checked first; the swap is refused
    with :class:`ChainError` when it cannot cover *output_amount*.
    """
    s = client.settings
    log.info("Executing real DEX swap: %s %s → %s %s", input_amount, input_denom, output_amount, output_denom)

    try:
        dex_balance = client.query_balance(s.chain_b_id, s.chain_b_rpc, dex_addr, output_denom)
    except ChainError as exc:
        raise ChainError(f"failed to verify DEX reserves: {exc}") from exc
    needed = _parse_amount(output_amount, "output amount")
    held = _parse_amount(dex_balance, "DEX balance")
    if held < needed:
        raise ChainError(
            f"DEX has insufficient {output_denom} reserves: has {dex_balance}, needs {output_amount}"
        )

    log.info("Step 1: User sends %s %s to DEX", input_amount, input_denom)
    try:
        input_hash = client.bank_send(
            s.chain_b_id, s.chain_b_rpc, s.chain_b_home, user_key, dex_addr,
            input_amount + input_denom, s.fee, s.gas_flags,
        )
    except ChainError as exc:
        raise ChainError(f"failed to send input tokens to DEX: {exc}") from exc

    sleep(3)

    log.info("Step 2: DEX sends %s %s to user", output_amount, output_denom)
    try:
        output_hash = client.bank_send(
            s.chain_b_id, s.chain_b_rpc, s.chain_b_home, s.mock_dex_b_key, user_addr,
            output_amount + output_denom, s.fee, s.gas_flags,
        )
    except ChainError as exc:
        raise ChainError(f"failed to send output tokens from DEX: {exc}") from exc

    log.info("Real swap completed: Input TX %s, Output TX %s", input_hash, output_hash)
    return input_hash, output_hash


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
    addresses = client.resolve_addresses(include_dex=True)
    log.info("--- Case 3 Setup (DEX Simulation) ---")
    log.info("User A Address (Chain A): %s", addresses.user_a)
    log.info("User B Address (Chain B - Victim's Recipient): %s", addresses.user_b)
    log.info("Attacker B Address (Chain B): %s", addresses.attacker_b)
    log.info("DEX Address (Chain B): %s", addresses.mock_dex)
    log.info("Using IBC Path from ENV (RLY_PATH_TRANSFER_ENV): %s", s.path_transfer)
    log.info("Using Auto-discovered Channel ID on Chain A (for send_packet): %s", s.transfer_channel_a)
    log.info("Using Auto-discovered Channel ID on Chain B (for recv_packet): %s", s.transfer_channel_b)
    log.info("Attacker Stake Denom (global): %s, IBC Token Denom (global): %s", s.stake_denom, s.ibc_denom)
    log.info(
        "Initial DEX reserves: %s %s, %s %s",
        INITIAL_RESERVE_STAKE, s.stake_denom, INITIAL_RESERVE_IBC, s.ibc_denom,
    )
    log.info("---------------------------------------")
    _check_settings(s)
    return addresses


def _log_balance(client: ChainClient, address: str, key_name: str, denom: str) -> None:
    s = client.settings
    try:
        balance = client.query_balance(s.chain_b_id, s.chain_b_rpc, address, denom)
    except ChainError as exc:
        log.warning("Balance query error for %s (%s) denom %s: %s", key_name, address, denom, exc)
    else:
        log.info("Balance of %s (%s): %s %s", key_name, address, balance, denom)


def _log_all_balances(client: ChainClient, addresses: Addresses) -> None:
    s = client.settings
    _log_balance(client, addresses.user_b, s.user_b_key, s.ibc_denom)
    _log_balance(client, addresses.attacker_b, s.attacker_b_key, s.stake_denom)
    _log_balance(client, addresses.attacker_b, s.attacker_b_key, s.ibc_denom)
    _log_balance(client, addresses.mock_dex, s.mock_dex_b_key, s.stake_denom)
    _log_balance(client, addresses.mock_dex, s.mock_dex_b_key, s.ibc_denom)


def _log_pool(prefix: str, pool: LiquidityPool) -> None:
    log.info(
        "%s - Stake Reserve: %s, IBC Reserve: %s, K: %s",
        prefix, pool.reserve_stake, pool.reserve_ibc, pool.k,
    )


def _initialize_dex(client: ChainClient, dex_addr: str, sleep: Callable[[float], None]) -> LiquidityPool:
    s = client.settings
    pool = LiquidityPool.create(INITIAL_RESERVE_STAKE, INITIAL_RESERVE_IBC)

    log.info("--- Initializing DEX with Real On-Chain Reserves ---")
    stake_reserve = INITIAL_RESERVE_STAKE + s.stake_denom
    log.info("Funding DEX with %s stake token reserves", stake_reserve)
    log.info("DEX account was pre-funded during chain initialization")
    log.info("Simulated stake reserve funding: %s", stake_reserve)
    log.info("Simulated IBC reserve funding: %s", INITIAL_RESERVE_IBC + s.ibc_denom)
    sleep(3)

    log.info("--- Verifying On-Chain DEX Reserves ---")
    for denom, label in ((s.stake_denom, "stake"), (s.ibc_denom, "IBC")):
        try:
            balance = client.query_balance(s.chain_b_id, s.chain_b_rpc, dex_addr, denom)
        except ChainError as exc:
            log.warning("Warning: Could not query DEX %s balance: %s", label, exc)
        else:
            log.info("DEX on-chain %s balance: %s %s", label, balance, denom)

    _log_pool("DEX mathematical state", pool)
    log.info("--- DEX Initialization Complete ---")
    return pool


def _query_or_none(client: ChainClient, tx_hash: str) -> Optional[TxResponse]:
    s = client.settings
    try:
        return client.query_tx(s.chain_b_id, s.chain_b_rpc, tx_hash)
    except ChainError:
        return None


def run(client: ChainClient, sleep: Callable[[float], None] = time.sleep) -> MevResult:
    """Run the sandwich scenario and return the attacker's profit analysis.

    Raises :class:`ChainError` when a step the scenario depends on fails.
    """
    s = client.settings
    log.info("Starting Case 3: Cross-Chain MEV (On-Chain DEX Simulation)")
    try:
        addresses = _setup(client)
    except (ConfigError, ChainError) as exc:
        raise ChainError(f"Setup failed: {exc}") from exc

    try:
        pool = _initialize_dex(client, addresses.mock_dex, sleep)
    except PoolError as exc:
        raise ChainError(f"Failed to initialize DEX with real reserves: {exc}") from exc

    log.info("--- Initial Balances on Chain B (for reference) ---")
    _log_all_balances(client, addresses)
    log.info("----------------------------------------------------")

    log.info(
        "Step 1 & 2: Attacker (%s) performs 'pre-emptive buy' on Chain B DEX (swapping %s %s for stake tokens)",
        s.attacker_b_key, PREEMPTIVE_BUY_AMOUNT, s.ibc_denom,
    )
    buy_amount = int(PREEMPTIVE_BUY_AMOUNT, 10)
    try:
        impact_buy = price_impact(buy_amount, pool.reserve_ibc, pool.reserve_stake)
    except PoolError as exc:
        raise ChainError(f"Failed to calculate price impact for preemptive buy: {exc}") from exc
    log.info("Price impact of preemptive buy: %.4f%%", impact_buy)
    expected_stake = pool.swap_ibc_for_stake(buy_amount)

    try:
        buy_input_hash, buy_output_hash = execute_swap(
            client, s.attacker_b_key, addresses.attacker_b, addresses.mock_dex,
            PREEMPTIVE_BUY_AMOUNT, str(expected_stake), s.ibc_denom, s.stake_denom, sleep,
        )
    except ChainError as exc:
        raise ChainError(f"Attacker's pre-emptive buy swap failed: {exc}") from exc
    log.info("Attacker's 'pre-emptive buy' input tx hash on %s: %s", s.chain_b_id, buy_input_hash)
    log.info("Attacker's 'pre-emptive buy' output tx hash on %s: %s", s.chain_b_id, buy_output_hash)
    log.info(
        "Attacker received %s %s for %s %s",
        expected_stake, s.stake_denom, PREEMPTIVE_BUY_AMOUNT, s.ibc_denom,
    )
    log.info("Waiting for attacker's pre-emptive buy to confirm...")
    sleep(6)

    victim_amount = LARGE_TRANSFER_AMOUNT + s.ibc_denom
    log.info(
        "Step 3: userA (%s) on %s sending large IBC transfer (%s) to userB (%s) on %s via channel %s",
        s.user_a_key, s.chain_a_id, victim_amount, s.user_b_key, s.chain_b_id, s.transfer_channel_a,
    )
    try:
        transfer_hash = client.ibc_transfer(
            s.chain_a_id, s.chain_a_rpc, s.chain_a_home, s.user_a_key, addresses.user_b,
            s.src_port, s.transfer_channel_a, victim_amount, s.fee, s.gas_flags,
        )
    except ChainError as exc:
        raise ChainError(f"Victim's large IBC transfer failed: {exc}") from exc
    log.info("Victim's large IBC transfer submitted on %s. Tx hash: %s", s.chain_a_id, transfer_hash)
    log.info("Waiting for victim's transfer to be indexed on Chain A...")
    sleep(6)

    log.info("Step 4: Observing and relaying victim's IBC packet")
    try:
        sequence = client.find_packet_sequence(
            s.chain_a_id, s.chain_a_rpc, transfer_hash, s.src_port, s.transfer_channel_a
        )
    except ChainError as exc:
        raise ChainError(
            f"Failed to find packet sequence from victim's transfer tx {transfer_hash}: {exc}"
        ) from exc
    log.info(
        "Observed SendPacket sequence: %s for port %s, channel %s",
        sequence, s.src_port, s.transfer_channel_a,
    )

    try:
        client.relay_packet(s.path_transfer, s.transfer_channel_a, sequence)
    except ChainError as exc:
        log.warning(
            "Warning: Relaying specific packet command failed: %s. "
            "Packet might have been relayed by another process.", exc,
        )
    else:
        log.info("Specific packet relay command executed for victim's transfer.")
    log.info("Waiting for victim's IBC transfer to be processed on Chain B...")
    sleep(10)

    try:
        recv_tx = client.find_recv_packet_tx(
            s.chain_b_id, s.chain_b_rpc, s.dst_port, s.transfer_channel_b, sequence
        )
    except ChainError as exc:
        raise ChainError(
            f"Victim's IBC packet (seq {sequence}) not found on Chain B "
            f"(port {s.dst_port}, channel {s.transfer_channel_b}): {exc}. Aborting."
        ) from exc
    log.info(
        "Victim's IBC packet (seq %s) processed in tx %s on %s (block %s)",
        sequence, recv_tx.txhash, s.chain_b_id, recv_tx.height,
    )

    victim_transfer = int(LARGE_TRANSFER_AMOUNT, 10)
    log.info(
        "Market Impact: Large IBC transfer of %s %s increases token supply on Chain B",
        victim_transfer, s.ibc_denom,
    )
    victim_swap = victim_transfer // 2
    victim_stake = pool.swap_ibc_for_stake(victim_swap)
    log.info(
        "Victim's market activity: swapped %s %s for %s %s",
        victim_swap, s.ibc_denom, victim_stake, s.stake_denom,
    )
    _log_pool("Updated DEX state", pool)

    log.info(
        "Step 5: Attacker (%s) performs 'post-IBC sell' on Chain B DEX (swapping %s %s for IBC tokens)",
        s.attacker_b_key, POST_TRANSFER_SELL_AMOUNT, s.stake_denom,
    )
    sell_amount = int(POST_TRANSFER_SELL_AMOUNT, 10)
    try:
        impact_sell = price_impact(sell_amount, pool.reserve_stake, pool.reserve_ibc)
    except PoolError as exc:
        raise ChainError(f"Failed to calculate price impact for post-IBC sell: {exc}") from exc
    log.info("Price impact of post-IBC sell: %.4f%%", impact_sell)
    expected_ibc = pool.swap_stake_for_ibc(sell_amount)

    try:
        sell_input_hash, sell_output_hash = execute_swap(
            client, s.attacker_b_key, addresses.attacker_b, addresses.mock_dex,
            POST_TRANSFER_SELL_AMOUNT, str(expected_ibc), s.stake_denom, s.ibc_denom, sleep,
        )
    except ChainError as exc:
        raise ChainError(f"Attacker's post-IBC sell swap failed: {exc}") from exc
    log.info("Attacker's 'post-IBC sell' input tx hash on %s: %s", s.chain_b_id, sell_input_hash)
    log.info("Attacker's 'post-IBC sell' output tx hash on %s: %s", s.chain_b_id, sell_output_hash)
    log.info(
        "Attacker received %s %s for %s %s",
        expected_ibc, s.ibc_denom, POST_TRANSFER_SELL_AMOUNT, s.stake_denom,
    )
    log.info("Waiting for attacker's post-IBC sell to confirm...")
    sleep(6)

    log.info("Step 6: Verification - Logging transaction details and final balances")
    buy_input_tx = _query_or_none(client, buy_input_hash)
    buy_output_tx = _query_or_none(client, buy_output_hash)
    victim_recv_tx = _query_or_none(client, recv_tx.txhash)
    sell_input_tx = _query_or_none(client, sell_input_hash)
    sell_output_tx = _query_or_none(client, sell_output_hash)

    log.info("--- Transaction Summary on Chain B (DEX Simulation) ---")
    for label, tx in (
        ("1a. Attacker Pre-emptive Buy Input Tx", buy_input_tx),
        ("1b. Attacker Pre-emptive Buy Output Tx", buy_output_tx),
        ("2. Victim's IBC RecvPacket Tx", victim_recv_tx),
        ("3a. Attacker Post-IBC Sell Input Tx", sell_input_tx),
        ("3b. Attacker Post-IBC Sell Output Tx", sell_output_tx),
    ):
        if tx is not None:
            log.info("%s: %s, Block: %s, Timestamp: %s", label, tx.txhash, tx.height, tx.timestamp)

    if buy_input_tx is None or victim_recv_tx is None or sell_input_tx is None:
        log.info("Could not retrieve all transaction details for full sequence verification.")
        valid = False
    else:
        buy_height = _height(buy_input_tx)
        recv_height = _height(victim_recv_tx)
        sell_height = _height(sell_input_tx)
        valid = sequence_is_valid(buy_height, recv_height, sell_height)
        if valid:
            log.info(
                "SUCCESS: Transaction sequence appears correct based on block heights: "
                "Buy (H:%d) -> Recv (H:%d) -> Sell (H:%d)", buy_height, recv_height, sell_height,
            )
        else:
            log.error(
                "ERROR: Transaction sequence is NOT as expected based on block heights: "
                "Buy (H:%d), Recv (H:%d), Sell (H:%d)", buy_height, recv_height, sell_height,
            )

    result = dataclasses.replace(mev_analysis(buy_amount, expected_ibc), sequence_valid=valid)
    log.info("--- MEV Analysis ---")
    log.info("Initial IBC token investment: %s %s", result.investment, s.ibc_denom)
    log.info("Stake tokens obtained: %s %s", expected_stake, s.stake_denom)
    log.info("Final IBC tokens received: %s %s", result.final_output, s.ibc_denom)
    log.info("Net profit: %s %s", result.profit, s.ibc_denom)
    log.info(
        "Total price impact caused: %.4f%% + %.4f%% = %.4f%%",
        impact_buy, impact_sell, impact_buy + impact_sell,
    )
    if result.profit_percent is not None:
        log.info("Profit percentage: %.4f%%", result.profit_percent)

    if valid:
        if result.profitable:
            log.info("DEX MEV scenario executed successfully with PROFIT!")
        else:
            log.info("DEX MEV scenario executed but resulted in LOSS.")
    else:
        log.info("DEX MEV scenario sequence FAILED or was incomplete.")

    log.info("--- Final Balances on Chain B ---")
    _log_all_balances(client, addresses)
    _log_pool("Final DEX state", pool)
    log.info("Case 3: DEX simulation finished.")
    return result


def main(argv: Optional[Sequence[str]] = None) -> int:
    """Run scenario 3 against the configured testbed; return the exit status."""
    parser = argparse.ArgumentParser(
        prog="ibcfrontrun-case3",
        description="Cross-chain MEV: sandwich a large incoming transfer on a modelled DEX.",
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
    except (ChainError, PoolError) as exc:
        log.error("%s", exc)
        return 1
    return 0