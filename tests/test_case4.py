import dataclasses
import json
import logging
import re

import pytest

from ibcfrontrun.case4 import (
    ChannelKind,
    check_settings,
    ordering_verdict,
    run,
    run_front_run_test,
)
from ibcfrontrun.chain import ChainClient, ChainError, CommandError
from ibcfrontrun.config import ConfigError, load_settings
from ibcfrontrun.models import HeightOrder, compare_heights

ENV = {
    "CHAIN_A_ID_ENV": "gaia_9000-1",
    "CHAIN_A_RPC_ENV": "http://localhost:26657",
    "CHAIN_A_HOME_ENV": "/tmp/chain-a-data",
    "CHAIN_B_ID_ENV": "gaia_9001-1",
    "CHAIN_B_RPC_ENV": "http://localhost:27657",
    "CHAIN_B_HOME_ENV": "/tmp/chain-b-data",
    "RLY_CONFIG_FILE_ENV": "/tmp/relayer",
    "RLY_PATH_TRANSFER_ENV": "a-b-transfer",
    "RLY_PATH_ORDERED_ENV": "a-b-ordered",
    "RLY_PATH_UNORDERED_ENV": "a-b-unordered",
    "TRANSFER_CHANNEL_A_ENV": "channel-0",
    "TRANSFER_CHANNEL_B_ENV": "channel-0",
    "ORDERED_CHANNEL_A_ENV": "channel-1",
    "ORDERED_CHANNEL_B_ENV": "channel-1",
    "UNORDERED_CHANNEL_A_ENV": "channel-2",
    "UNORDERED_CHANNEL_B_ENV": "channel-2",
    "SIMD_BINARY_ENV": "simd",
    "RLY_BINARY_ENV": "rly",
}


@pytest.fixture
def settings():
    return load_settings(dict(ENV))


class FakeChain:
    def __init__(self, attacker_height=5, recv_heights=None, fail_transfer=False, fail_keys=False):
        self.attacker_height = attacker_height
        self.recv_heights = recv_heights or {}
        self.fail_transfer = fail_transfer
        self.fail_keys = fail_keys
        self.transfers = {}
        self.relayed = []
        self.calls = []

    def __call__(self, name, args, echo=False):
        args = list(args)
        self.calls.append((name, args))
        if args[0] == "keys":
            if self.fail_keys:
                raise CommandError([name, *args], "", "key not found", "exit status 1", 1)
            return f"addr-{args[2]}", ""
        if args[:2] == ["tx", "ibc-transfer"]:
            if self.fail_transfer:
                raise CommandError([name, *args], "", "boom", "exit status 1", 1)
            tx_hash = f"T{len(self.transfers) + 1}"
            self.transfers[tx_hash] = (args[3], args[4], str(len(self.transfers) + 1))
            return json.dumps({"txhash": tx_hash, "code": 0, "height": "0"}), ""
        if args[:3] == ["tx", "bank", "send"]:
            return json.dumps({"txhash": "ATK", "code": 0, "height": "0"}), ""
        if args[:2] == ["tx", "flush"]:
            self.relayed.append((args[2], args[3]))
            return "", ""
        if args[:2] == ["query", "tx"]:
            tx_hash = args[2]
            if tx_hash == "ATK":
                return json.dumps({"txhash": "ATK", "code": 0, "height": str(self.attacker_height)}), ""
            port, channel, seq = self.transfers[tx_hash]
            event = {
                "type": "send_packet",
                "attributes": [
                    {"key": "packet_src_port", "value": port},
                    {"key": "packet_src_channel", "value": channel},
                    {"key": "packet_sequence", "value": seq},
                ],
            }
            return json.dumps({"txhash": tx_hash, "code": 0, "height": "3", "events": [event]}), ""
        if args[:2] == ["query", "txs"]:
            query = args[3]
            port = re.search(r"packet_dst_port='([^']*)'", query).group(1)
            channel = re.search(r"packet_dst_channel='([^']*)'", query).group(1)
            seq = re.search(r"packet_sequence='([^']*)'", query).group(1)
            event = {
                "type": "recv_packet",
                "attributes": [
                    {"key": "packet_dst_port", "value": port},
                    {"key": "packet_dst_channel", "value": channel},
                    {"key": "packet_sequence", "value": seq},
                ],
            }
            height = self.recv_heights.get(seq, 7)
            tx = {"txhash": f"R{seq}", "code": 0, "height": str(height), "events": [event]}
            return json.dumps({"txs": [tx]}), ""
        raise AssertionError(f"unexpected command {args}")


def test_channel_kind_values():
    assert ChannelKind("ORDERED") is ChannelKind.ORDERED
    assert ChannelKind.UNORDERED.value == "UNORDERED"


def test_ordering_verdict_violation_on_ordered():
    message = ordering_verdict(ChannelKind.ORDERED, 9, 4)
    assert "CRITICAL ORDERING VIOLATION" in message
    assert "9" in message and "4" in message


def test_ordering_verdict_same_block_on_ordered():
    assert "SAME block" in ordering_verdict(ChannelKind.ORDERED, 6, 6)


def test_ordering_verdict_expected_on_ordered():
    message = ordering_verdict(ChannelKind.ORDERED, 4, 9)
    assert "as expected for ORDERED channel" in message
    assert "VIOLATION" not in message


@pytest.mark.parametrize("first, second", [(9, 4), (4, 9), (5, 5)])
def test_ordering_verdict_unordered_any_order(first, second):
    assert "any order" in ordering_verdict(ChannelKind.UNORDERED, first, second)


def test_check_settings_missing_path(settings):
    with pytest.raises(ConfigError):
        check_settings(dataclasses.replace(settings, path_unordered=""))


def test_check_settings_missing_channel(settings):
    with pytest.raises(ConfigError):
        check_settings(dataclasses.replace(settings, ordered_channel_b=""))


def test_check_settings_warns_on_identical_setup(settings, caplog):
    same = dataclasses.replace(
        settings, path_unordered=settings.path_ordered, unordered_channel_a=settings.ordered_channel_a
    )
    with caplog.at_level(logging.WARNING):
        check_settings(same)
    assert "same path name" in caplog.text


@pytest.mark.parametrize("attacker_height", [5, 7, 9])
def test_run_front_run_test_compares_attacker_with_second_packet(settings, attacker_height):
    fake = FakeChain(attacker_height=attacker_height, recv_heights={"1": 6, "2": 7})
    client = ChainClient(settings, runner=fake)
    result = run_front_run_test(client, ChannelKind.ORDERED, "a-b-ordered", "channel-1", "channel-1", lambda _: None)
    assert result is compare_heights(attacker_height, 7)


def test_run_front_run_test_attacker_before(settings):
    fake = FakeChain(attacker_height=5, recv_heights={"1": 4, "2": 8})
    client = ChainClient(settings, runner=fake)
    result = run_front_run_test(client, ChannelKind.UNORDERED, "a-b-unordered", "channel-2", "channel-2", lambda _: None)
    assert result is HeightOrder.BEFORE


def test_run_front_run_test_relays_packets_in_order(settings):
    fake = FakeChain()
    client = ChainClient(settings, runner=fake)
    run_front_run_test(client, ChannelKind.ORDERED, "a-b-ordered", "channel-1", "channel-1", lambda _: None)
    assert fake.relayed == [("a-b-ordered", "channel-1"), ("a-b-ordered", "channel-1")]
    flush_index = [i for i, (_, args) in enumerate(fake.calls) if args[:2] == ["tx", "flush"]]
    send_index = [i for i, (_, args) in enumerate(fake.calls) if args[:3] == ["tx", "bank", "send"]]
    assert flush_index[0] < send_index[0] < flush_index[1]


def test_run_front_run_test_transfer_failure_returns_none(settings):
    fake = FakeChain(fail_transfer=True)
    client = ChainClient(settings, runner=fake)
    result = run_front_run_test(client, ChannelKind.ORDERED, "a-b-ordered", "channel-1", "channel-1", lambda _: None)
    assert result is None
    assert fake.relayed == []


def test_run_covers_both_channel_kinds(settings):
    fake = FakeChain(attacker_height=5, recv_heights={})
    pauses = []
    results = run(ChainClient(settings, runner=fake), pauses.append)
    assert set(results) == {ChannelKind.ORDERED, ChannelKind.UNORDERED}
    assert all(value is HeightOrder.BEFORE for value in results.values())
    assert 15 in pauses
    assert [path for path, _ in fake.relayed] == ["a-b-ordered"] * 2 + ["a-b-unordered"] * 2


def test_run_setup_failure_raises(settings):
    fake = FakeChain(fail_keys=True)
    with pytest.raises(ChainError, match="Setup failed"):
        run(ChainClient(settings, runner=fake), lambda _: None)