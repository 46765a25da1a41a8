import dataclasses
import json

import pytest

from ibcfrontrun.case3 import (
    MevResult,
    execute_swap,
    mev_analysis,
    run,
    sequence_is_valid,
)
from ibcfrontrun.chain import ChainClient, ChainError
from ibcfrontrun.config import Settings


def make_settings(**overrides):
    values = dict(
        chain_a_id="gaia_9000-1",
        chain_a_rpc="http://localhost:26657",
        chain_a_home="/tmp/chain-a-data",
        chain_b_id="gaia_9001-1",
        chain_b_rpc="http://localhost:27657",
        chain_b_home="/tmp/chain-b-data",
        rly_config_path="/tmp/relayer",
        path_transfer="a-b-transfer",
        path_ordered="a-b-ordered",
        path_unordered="a-b-unordered",
        transfer_channel_a="channel-0",
        transfer_channel_b="channel-1",
        ordered_channel_a="channel-2",
        ordered_channel_b="channel-3",
        unordered_channel_a="channel-4",
        unordered_channel_b="channel-5",
    )
    values.update(overrides)
    return Settings(**values)


class FakeChain:
    """Answers chain and relayer commands like a tiny two-chain testbed."""

    def __init__(self, settings, dex_balance="1000000000", failing_queries=()):
        self.settings = settings
        self.dex_balance = dex_balance
        self.failing_queries = set(failing_queries)
        self.block = 0
        self.heights = {}
        self.sends = []
        self.commands = []
        self.counter = 0
        self.recv_hash = None

    def _new_hash(self, prefix):
        self.counter += 1
        self.block += 1
        tx_hash = f"{prefix}{self.counter:04d}"
        self.heights[tx_hash] = self.block
        return tx_hash

    def _tx_json(self, tx_hash):
        s = self.settings
        events = []
        if tx_hash.startswith("XFER"):
            events.append({"type": "send_packet", "attributes": [
                {"key": "packet_src_port", "value": s.src_port},
                {"key": "packet_src_channel", "value": s.transfer_channel_a},
                {"key": "packet_sequence", "value": "7"},
            ]})
        if tx_hash.startswith("RECV"):
            events.append({"type": "recv_packet", "attributes": [
                {"key": "packet_dst_port", "value": s.dst_port},
                {"key": "packet_dst_channel", "value": s.transfer_channel_b},
                {"key": "packet_sequence", "value": "7"},
            ]})
        return {
            "txhash": tx_hash,
            "height": str(self.heights[tx_hash]),
            "code": 0,
            "events": events,
            "timestamp": "2024-01-01T00:00:00Z",
        }

    def __call__(self, name, args, echo):
        self.commands.append((name, list(args)))
        if name == self.settings.rly_binary:
            if args[:2] == ["tx", "flush"]:
                self.recv_hash = self._new_hash("RECV")
            return "", ""
        if args[:2] == ["keys", "show"]:
            return f"cosmos1{args[2].lower()}", ""
        if args[:3] == ["tx", "bank", "send"]:
            tx_hash = self._new_hash("SEND")
            self.sends.append((args[3], args[4], args[5], tx_hash))
            return json.dumps({"txhash": tx_hash, "code": 0}), ""
        if args[:3] == ["tx", "ibc-transfer", "transfer"]:
            tx_hash = self._new_hash("XFER")
            return json.dumps({"txhash": tx_hash, "code": 0}), ""
        if args[:2] == ["query", "tx"]:
            tx_hash = args[2]
            if tx_hash in self.failing_queries or any(
                tx_hash.startswith(p) for p in self.failing_queries
            ):
                return json.dumps({}), ""
            return json.dumps(self._tx_json(tx_hash)), ""
        if args[:2] == ["query", "txs"]:
            if self.recv_hash is None:
                return json.dumps({"txs": []}), ""
            return json.dumps({"txs": [self._tx_json(self.recv_hash)]}), ""
        if args[:3] == ["query", "bank", "balances"]:
            balances = [
                {"denom": self.settings.stake_denom, "amount": self.dex_balance},
                {"denom": self.settings.ibc_denom, "amount": self.dex_balance},
            ]
            return json.dumps({"balances": balances}), ""
        raise AssertionError(f"unexpected command {name} {args}")


def make_client(**fake_options):
    settings = make_settings()
    fake = FakeChain(settings, **fake_options)
    return ChainClient(settings, runner=fake), fake


class TestSequenceIsValid:
    @pytest.mark.parametrize("heights", [(1, 2, 3), (5, 5, 5), (4, 4, 9), (2, 8, 8)])
    def test_ordered_heights_are_valid(self, heights):
        assert sequence_is_valid(*heights) is True

    @pytest.mark.parametrize("heights", [(3, 2, 4), (1, 5, 4), (9, 1, 1)])
    def test_out_of_order_heights_are_invalid(self, heights):
        assert sequence_is_valid(*heights) is False


class TestMevAnalysis:
    def test_profit_and_percentage(self):
        result = mev_analysis(100, 120)
        assert result.profit == 20
        assert result.profit_percent == pytest.approx(20.0)
        assert result.profitable is True

    def test_loss_is_not_profitable(self):
        result = mev_analysis(100, 90)
        assert result.profit < 0
        assert result.profitable is False
        assert result.profit_percent < 0

    def test_zero_investment_has_no_percentage(self):
        result = mev_analysis(0, 5)
        assert result.profit_percent is None
        assert result.final_output == 5

    def test_break_even_is_not_profitable(self):
        result = mev_analysis(100, 100)
        assert result.profit == 0
        assert result.profitable is False
        assert result.sequence_valid is None


class TestExecuteSwap:
    def test_sends_input_then_output(self):
        client, fake = make_client()
        sleeps = []
        s = client.settings
        input_hash, output_hash = execute_swap(
            client, s.attacker_b_key, "cosmos1attacker", "cosmos1dex",
            "100", "95", s.ibc_denom, s.stake_denom, sleeps.append,
        )
        assert [send[3] for send in fake.sends] == [input_hash, output_hash]
        assert fake.sends[0][:3] == (s.attacker_b_key, "cosmos1dex", "100" + s.ibc_denom)
        assert fake.sends[1][:3] == (s.mock_dex_b_key, "cosmos1attacker", "95" + s.stake_denom)
        assert sleeps == [3]

    def test_insufficient_reserves_refused(self):
        client, fake = make_client(dex_balance="10")
        s = client.settings
        with pytest.raises(ChainError, match="insufficient"):
            execute_swap(
                client, s.attacker_b_key, "cosmos1attacker", "cosmos1dex",
                "100", "95", s.ibc_denom, s.stake_denom, lambda _: None,
            )
        assert fake.sends == []

    def test_invalid_output_amount(self):
        client, fake = make_client()
        s = client.settings
        with pytest.raises(ChainError, match="invalid output amount"):
            execute_swap(
                client, s.attacker_b_key, "cosmos1attacker", "cosmos1dex",
                "100", "lots", s.ibc_denom, s.stake_denom, lambda _: None,
            )
        assert fake.sends == []


class TestRun:
    def test_full_scenario_reports_valid_sequence(self):
        client, fake = make_client()
        result = run(client, sleep=lambda _: None)
        s = client.settings
        assert isinstance(result, MevResult)
        assert result.sequence_valid is True
        assert result.investment == 100
        last_from, last_to, last_amount, _ = fake.sends[-1]
        assert last_from == s.mock_dex_b_key
        assert last_amount == f"{result.final_output}{s.ibc_denom}"
        assert result.profitable is (result.profit > 0)

    def test_missing_recv_details_make_sequence_invalid(self):
        client, _ = make_client(failing_queries=("RECV",))
        result = run(client, sleep=lambda _: None)
        assert result.sequence_valid is False

    def test_empty_dex_aborts(self):
        client, fake = make_client(dex_balance="0")
        with pytest.raises(ChainError, match="pre-emptive buy"):
            run(client, sleep=lambda _: None)
        assert fake.sends == []

    def test_missing_path_fails_setup(self):
        settings = dataclasses.replace(make_settings(), path_transfer="")
        client = ChainClient(settings, runner=FakeChain(settings))
        with pytest.raises(ChainError, match="Setup failed"):
            run(client, sleep=lambda _: None)

    def test_missing_channel_fails_setup(self):
        settings = dataclasses.replace(make_settings(), transfer_channel_b="")
        client = ChainClient(settings, runner=FakeChain(settings))
        with pytest.raises(ChainError, match="channel IDs"):
            run(client, sleep=lambda _: None)