"""Chain query responses and helpers for reading them."""

from __future__ import annotations

import base64
import binascii
import enum
import hashlib
import json
from dataclasses import dataclass, field
from typing import Any, Iterable, Iterator, Mapping, Optional


@dataclass(frozen=True)
class Attribute:
    key: str
    value: str


@dataclass(frozen=True)
class Event:
    type: str
    attributes: tuple[Attribute, ...] = ()

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Event":
        attributes = tuple(
            Attribute(str(attr.get("key", "")), str(attr.get("value", "")))
            for attr in data.get("attributes") or ()
        )
        return cls(type=str(data.get("type", "")), attributes=attributes)

    def attribute_map(self) -> dict[str, str]:
        """Attributes as a mapping; a later duplicate key wins."""
        return {attr.key: attr.value for attr in self.attributes}


@dataclass(frozen=True)
class LogEntry:
    msg_index: int = 0
    log: str = ""
    events: tuple[Event, ...] = ()


def _log_entry_from_dict(data: Mapping[str, Any]) -> LogEntry:
    return LogEntry(
        msg_index=int(data.get("msg_index") or 0),
        log=str(data.get("log") or ""),
        events=tuple(Event.from_dict(e) for e in data.get("events") or ()),
    )


@dataclass(frozen=True)
class TxResponse:
    height: str = ""
    txhash: str = ""
    code: int = 0
    raw_log: str = ""
    logs: tuple[LogEntry, ...] = ()
    events: tuple[Event, ...] = ()
    gas_wanted: str = ""
    gas_used: str = ""
    timestamp: str = ""

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "TxResponse":
        if not isinstance(data, Mapping):
            raise ValueError("transaction response is not a JSON object")
        return cls(
            height=str(data.get("height") or ""),
            txhash=str(data.get("txhash") or ""),
            code=int(data.get("code") or 0),
            raw_log=str(data.get("raw_log") or ""),
            logs=tuple(_log_entry_from_dict(entry) for entry in data.get("logs") or ()),
            events=tuple(Event.from_dict(e) for e in data.get("events") or ()),
            gas_wanted=str(data.get("gas_wanted") or ""),
            gas_used=str(data.get("gas_used") or ""),
            timestamp=str(data.get("timestamp") or ""),
        )

    @classmethod
    def from_json(cls, text: str) -> "TxResponse":
        """Parse a transaction response; raises ValueError on malformed input."""
        return cls.from_dict(json.loads(text))

    def all_events(self) -> Iterator[Event]:
        """Events from the message logs first, then the top-level events."""
        for entry in self.logs:
            yield from entry.events
        yield from self.events

    def height_int(self) -> int:
        """Block height as an integer; raises ValueError if it is not one."""
        return int(self.height, 10)


@dataclass(frozen=True)
class Coin:
    denom: str
    amount: str


@dataclass(frozen=True)
class Block:
    height: str = ""
    txs: tuple[str, ...] = field(default_factory=tuple)

    @classmethod
    def from_json(cls, text: str) -> "Block":
        """Parse a block query response; raises ValueError on malformed input."""
        data = json.loads(text)
        if not isinstance(data, Mapping):
            raise ValueError("block response is not a JSON object")
        block = data.get("block") or {}
        header = block.get("header") or {}
        block_data = block.get("data") or {}
        return cls(
            height=str(header.get("height") or ""),
            txs=tuple(str(tx) for tx in block_data.get("txs") or ()),
        )

    def tx_indices(self, tx_hashes: Iterable[str]) -> dict[str, int]:
        """Position of each given transaction hash in the block, -1 if absent.

        Transactions that are not valid base64 are skipped.
        """
        wanted = {h: h.upper() for h in tx_hashes}
        positions: dict[str, int] = {}
        for index, b64_tx in enumerate(self.txs):
            try:
                digest = tx_hash_from_base64(b64_tx)
            except ValueError:
                continue
            positions[digest] = index
        return {original: positions.get(upper, -1) for original, upper in wanted.items()}


class HeightOrder(enum.Enum):
    BEFORE = "before"
    SAME = "same"
    AFTER = "after"


def find_send_packet_sequence(tx: TxResponse, src_port: str, src_channel: str) -> Optional[str]:
    """Sequence of the send_packet event for the port and channel, if any."""
    for event in tx.all_events():
        if event.type != "send_packet":
            continue
        attrs = event.attribute_map()
        sequence = attrs.get("packet_sequence", "")
        if (
            attrs.get("packet_src_port", "") == src_port
            and attrs.get("packet_src_channel", "") == src_channel
            and sequence
        ):
            return sequence
    return None


def has_recv_packet(tx: TxResponse, dst_port: str, dst_channel: str, sequence: str) -> bool:
    """Whether the transaction holds a matching recv_packet event."""
    for event in tx.all_events():
        if event.type != "recv_packet":
            continue
        attrs = event.attribute_map()
        if (
            attrs.get("packet_dst_port", "") == dst_port
            and attrs.get("packet_dst_channel", "") == dst_channel
            and attrs.get("packet_sequence", "") == sequence
        ):
            return True
    return False


def sha256_hex_upper(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest().upper()


def tx_hash_from_base64(b64_tx: str) -> str:
    """Hash of a base64-encoded transaction as found in block data."""
    try:
        raw = base64.b64decode(b64_tx, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise ValueError(f"failed to decode base64 tx: {exc}") from exc
    return sha256_hex_upper(raw)


def compare_heights(first: int, second: int) -> HeightOrder:
    """Where block *first* lies relative to block *second*."""
    if first < second:
        return HeightOrder.BEFORE
    if first == second:
        return HeightOrder.SAME
    return HeightOrder.AFTER