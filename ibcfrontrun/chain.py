"""Client for the chain and relayer command-line tools."""

from __future__ import annotations

import json
import logging
import subprocess
from dataclasses import dataclass
from typing import Callable, Mapping, Optional, Sequence

from .config import Settings
from .models import Block, Coin, TxResponse, find_send_packet_sequence, has_recv_packet

log = logging.getLogger(__name__)

Runner = Callable[[str, Sequence[str], bool], "tuple[str, str]"]

# Relayer stderr fragments that mean the packet needs no further relaying.
_BENIGN_RELAY_MARKERS = (
    "no packets to relay found",
    "already relayed",
    "0/0 packets relayed",
    "light client state is not within trust period",
    "failed to send messages: 0/1 messages failed",
    "result does not exist",
)


class CommandError(Exception):
    """An external command could not be run or exited with a failure."""

    def __init__(
        self,
        command: Sequence[str],
        stdout: str,
        stderr: str,
        reason: str,
        returncode: Optional[int] = None,
    ) -> None:
        self.command = list(command)
        self.stdout = stdout
        self.stderr = stderr
        self.returncode = returncode
        super().__init__(
            f"command '{' '.join(self.command)}' failed: {reason}\nStdout: {stdout}\nStderr: {stderr}"
        )


class ChainError(Exception):
    """A chain or relayer operation did not give the expected result."""


@dataclass(frozen=True)
class Addresses:
    """Account addresses the scenarios work with."""

    user_a: str
    user_b: str
    attacker_b: str
    attacker_receiver: str
    mock_dex: str = ""


def run_command(name: str, args: Sequence[str], echo: bool = False) -> tuple[str, str]:
    """Run *name* with *args*; return stripped stdout and stderr.

    Raises :class:`CommandError` if the program cannot start or exits non-zero.
    """
    command = [name, *args]
    if echo:
        log.info("Executing: %s", " ".join(command))
    try:
        completed = subprocess.run(command, capture_output=True, text=True, check=False)
    except OSError as exc:
        raise CommandError(command, "", "", str(exc)) from exc
    stdout = completed.stdout.strip()
    stderr = completed.stderr.strip()
    if completed.returncode != 0:
        raise CommandError(
            command, stdout, stderr, f"exit status {completed.returncode}", completed.returncode
        )
    return stdout, stderr


def split_gas_flags(flags: str) -> list[str]:
    """Split a gas flag string on single spaces."""
    return flags.split(" ")


def parse_balance(stdout: str, denom: str) -> str:
    """Amount of *denom* in a balances query response, ``"0"`` when absent."""
    try:
        data = json.loads(stdout)
    except ValueError:
        if not stdout.strip() or '"balances":[]' in stdout or stdout == "{}":
            return "0"
        raise ValueError(f"failed to parse balance query response: {stdout}") from None
    if data is None:
        return "0"
    if not isinstance(data, Mapping):
        raise ValueError(f"balance query response is not a JSON object: {stdout}")
    coins = [
        Coin(str(item.get("denom") or ""), str(item.get("amount") or ""))
        for item in data.get("balances") or ()
        if isinstance(item, Mapping)
    ]
    for coin in coins:
        if coin.denom == denom:
            return coin.amount or "0"
    return "0"


def is_benign_relay_error(stderr: str) -> bool:
    """Whether relayer stderr only says the packet needs no more relaying."""
    lowered = stderr.lower()
    return any(marker in lowered for marker in _BENIGN_RELAY_MARKERS)


class ChainClient:
    """Runs chain and relayer commands described by :class:`Settings`."""

    def __init__(self, settings: Settings, runner: Optional[Runner] = None) -> None:
        self.settings = settings
        self._runner = runner or run_command

    def _simd(self, args: Sequence[str], echo: bool = False) -> tuple[str, str]:
        return self._runner(self.settings.simd_binary, list(args), echo)

    def _rly(self, args: Sequence[str], echo: bool = False) -> tuple[str, str]:
        return self._runner(self.settings.rly_binary, list(args), echo)

    def _tx_flags(self, chain_id: str, node: str, home: str, fee: str, gas_flags: str) -> list[str]:
        flags = [
            "--chain-id", chain_id,
            "--node", node,
            "--home", home,
            "--keyring-backend", self.settings.keyring_backend,
            "--fees", fee,
            "-y",
            "-o", "json",
        ]
        flags.extend(split_gas_flags(gas_flags or self.settings.gas_flags))
        return flags

    def _submit(self, args: list[str], label: str) -> str:
        try:
            stdout, _ = self._simd(args, echo=True)
        except CommandError as exc:
            raise ChainError(f"{label} failed: {exc}") from exc
        try:
            response = TxResponse.from_json(stdout)
        except ValueError as exc:
            raise ChainError(
                f"failed to unmarshal {label} tx response: {exc}\nResponse: {stdout}"
            ) from exc
        if response.code != 0:
            raise ChainError(f"{label} tx failed with code {response.code}: {response.raw_log}")
        return response.txhash

    def key_address(self, key_name: str, home: str) -> str:
        """Address of *key_name* in the keyring under *home*."""
        keyring = self.settings.keyring_backend
        args = ["keys", "show", key_name, "-a", "--keyring-backend", keyring, "--home", home]
        try:
            stdout, _ = self._simd(args)
        except CommandError as exc:
            raise ChainError(
                f"getting address for key '{key_name}' (home: {home}, keyring: {keyring}): {exc}"
            ) from exc
        return stdout.strip()

    def ibc_transfer(
        self, chain_id, node, home, from_key, to_addr, src_port, src_channel, amount, fee, gas_flags=""
    ) -> str:
        """Submit an ICS-20 transfer and return its transaction hash."""
        args = ["tx", "ibc-transfer", "transfer", src_port, src_channel, to_addr, amount, "--from", from_key]
        args.extend(self._tx_flags(chain_id, node, home, fee, gas_flags))
        return self._submit(args, "ibc transfer")

    def bank_send(self, chain_id, node, home, from_key, to_addr, amount, fee, gas_flags="") -> str:
        """Submit a bank send and return its transaction hash."""
        args = ["tx", "bank", "send", from_key, to_addr, amount]
        args.extend(self._tx_flags(chain_id, node, home, fee, gas_flags))
        return self._submit(args, "bank send")

    def query_tx(self, chain_id: str, node: str, tx_hash: str) -> TxResponse:
        args = ["query", "tx", tx_hash, "--chain-id", chain_id, "--node", node, "-o", "json"]
        try:
            stdout, _ = self._simd(args)
        except CommandError as exc:
            raise ChainError(f"querying tx {tx_hash} failed: {exc}") from exc
        try:
            response = TxResponse.from_json(stdout)
        except ValueError as exc:
            raise ChainError(
                f"failed to unmarshal query tx response for {tx_hash}: {exc}\nResponse: {stdout}"
            ) from exc
        if not response.txhash:
            raise ChainError(f"tx {tx_hash} not found or invalid response: {stdout}")
        return response

    def find_packet_sequence(self, chain_id, node, tx_hash, src_port, src_channel) -> str:
        """Sequence of the packet a transaction sent on the port and channel."""
        try:
            tx = self.query_tx(chain_id, node, tx_hash)
        except ChainError as exc:
            raise ChainError(f"finding packet sequence, queryTx failed for {tx_hash}: {exc}") from exc
        if tx.code != 0:
            raise ChainError(f"tx {tx_hash} failed with code {tx.code}: {tx.raw_log}")
        sequence = find_send_packet_sequence(tx, src_port, src_channel)
        if sequence is None:
            raise ChainError(
                f"packet sequence not found in tx {tx_hash} for port {src_port}, "
                f"channel {src_channel}. Raw log: {tx.raw_log}"
            )
        return sequence

    def relay_packet(self, path_name: str, src_channel: str, sequence: str) -> None:
        """Flush pending packets on a relayer path; benign failures are ignored."""
        args = ["tx", "flush", path_name, src_channel, "--home", self.settings.rly_config_path]
        where = f"path {path_name}, seq {sequence}, chan {src_channel}"
        try:
            _, stderr = self._rly(args, echo=True)
        except CommandError as exc:
            if is_benign_relay_error(exc.stderr):
                log.info(
                    "Relay command (%s) had non-critical stderr: %s (Original error: %s)",
                    where, exc.stderr, exc,
                )
                return
            raise ChainError(f"relay packet ({where}) failed: {exc}. Stderr: {exc.stderr}") from exc
        log.info("Relay command (%s) potentially successful. Stderr: %s", where, stderr)

    def find_recv_packet_tx(self, chain_id, node, dst_port, dst_channel, sequence) -> TxResponse:
        """The transaction that received the given packet on the destination chain."""
        where = f"port {dst_port}, chan {dst_channel}, seq {sequence}"
        query = (
            f"recv_packet.packet_dst_port='{dst_port}' AND "
            f"recv_packet.packet_dst_channel='{dst_channel}' AND "
            f"recv_packet.packet_sequence='{sequence}'"
        )
        args = [
            "query", "txs", "--query", query,
            "--node", node,
            "--chain-id", chain_id,
            "-o", "json",
            "--limit", "1",
            "--order_by", "asc",
        ]
        try:
            stdout, _ = self._simd(args)
        except CommandError as exc:
            raise ChainError(f"querying txs by events for RecvPacket failed ({where}): {exc}") from exc
        try:
            data = json.loads(stdout)
            if not isinstance(data, Mapping):
                raise ValueError("search result is not a JSON object")
            txs = [TxResponse.from_dict(item) for item in data.get("txs") or ()]
        except (ValueError, TypeError) as exc:
            raise ChainError(
                f"failed to unmarshal SearchTxsResult for RecvPacket ({where}): {exc}\nResponse: {stdout}"
            ) from exc
        if not txs:
            raise ChainError(
                f"no RecvPacket transaction found for port {dst_port}, channel {dst_channel}, sequence {sequence}"
            )
        if len(txs) > 1:
            log.warning(
                "Warning: Found multiple RecvPacket transactions for port %s, channel %s, sequence %s. "
                "Using the first one.",
                dst_port, dst_channel, sequence,
            )
        first = txs[0]
        if has_recv_packet(first, dst_port, dst_channel, sequence):
            return first
        raise ChainError(
            "no RecvPacket transaction found with matching event attributes for "
            f"port {dst_port}, channel {dst_channel}, sequence {sequence}, despite initial query success. "
            f"TxHash: {first.txhash}, RawLog: {first.raw_log}"
        )

    def query_balance(self, chain_id: str, node: str, address: str, denom: str) -> str:
        """Balance of *denom* held by *address*, as a decimal string."""
        args = ["query", "bank", "balances", address, "--node", node, "--chain-id", chain_id, "-o", "json"]
        try:
            stdout, _ = self._simd(args)
        except CommandError as exc:
            if (
                "not found" in exc.stderr
                or "no balance" in exc.stderr
                or 'amount:"0"' in exc.stdout
                or 'amount":"0"' in exc.stdout
            ):
                return "0"
            raise ChainError(
                f"query balance for {address} denom {denom} failed: {exc}. "
                f"Stderr: {exc.stderr}. Stdout: {exc.stdout}"
            ) from exc
        try:
            return parse_balance(stdout, denom)
        except ValueError as exc:
            raise ChainError(
                f"failed to unmarshal balance query response for {address}, denom {denom}: {exc}"
            ) from exc

    def query_block(self, node: str, height: str) -> Block:
        args = ["query", "block", height, "--node", node, "-o", "json"]
        try:
            stdout, _ = self._simd(args)
        except CommandError as exc:
            raise ChainError(f"querying block {height} on node {node} failed: {exc}") from exc
        try:
            return Block.from_json(stdout)
        except (ValueError, AttributeError) as exc:
            raise ChainError(
                f"failed to unmarshal query block response for height {height}: {exc}\nResponse: {stdout}"
            ) from exc

    def status(self, node: str) -> str:
        """Status output of the node; raises ChainError if it cannot be reached."""
        try:
            stdout, _ = self._simd(["status", "--node", node])
        except CommandError as exc:
            raise ChainError(f"{exc}, stderr: {exc.stderr}") from exc
        return stdout

    def show_path(self, path_name: str) -> str:
        """Relayer description of a path; raises ChainError if it is unknown."""
        try:
            stdout, _ = self._rly(["paths", "show", path_name, "--home", self.settings.rly_config_path])
        except CommandError as exc:
            raise ChainError(f"relayer path {path_name} not found: {exc}, stderr: {exc.stderr}") from exc
        return stdout

    def resolve_addresses(self, include_dex: bool = False) -> Addresses:
        """Look up the scenario accounts in both keyrings."""
        s = self.settings
        lookups = [
            ("userA", "A", s.user_a_key, s.chain_a_home),
            ("userB", "B", s.user_b_key, s.chain_b_home),
            ("attackerB", "B", s.attacker_b_key, s.chain_b_home),
        ]
        if include_dex:
            lookups.append(("mockDexB", "B", s.mock_dex_b_key, s.chain_b_home))
        found: list[str] = []
        for label, chain, key, home in lookups:
            try:
                found.append(self.key_address(key, home))
            except ChainError as exc:
                raise ChainError(f"getting {label} address on chain {chain}: {exc}") from exc
        user_a, user_b, attacker_b = found[:3]
        return Addresses(
            user_a=user_a,
            user_b=user_b,
            attacker_b=attacker_b,
            attacker_receiver=attacker_b,
            mock_dex=found[3] if include_dex else "",
        )