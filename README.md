# ibcfrontrun

A set of scripted experiments that check whether a transaction on a
destination chain can be ordered ahead of an incoming IBC packet. The
scripts drive two locally running Cosmos chains through the chain binary's
command line and an IBC relayer (`rly`), run as subprocesses, then inspect
block heights and intra-block transaction order and log the outcome.

## Experiments

| Command                 | Scenario                                                                   |
|-------------------------|----------------------------------------------------------------------------|
| `ibcfrontrun-validate`  | Checks configuration, chain connectivity, relayer paths and one transfer   |
| `ibcfrontrun-case1`     | Relayer front-running: attacker acts before the victim's packet is relayed |
| `ibcfrontrun-case2`     | Fee front-running: high-fee attacker transaction races the `RecvPacket`    |
| `ibcfrontrun-case3`     | Cross-chain MEV sandwich against a constant-product DEX model              |
| `ibcfrontrun-case4`     | Front-running on ordered versus unordered channels                         |

Each experiment logs its steps, transaction hashes and block heights, and
logs a verdict such as `SUCCESS: ...`, `FAILURE: ...` or `INFO: ...` when
the heights it needs could be found. Every command exits with status 0 on
completion and 1 when the configuration is incomplete or a required step
fails.

## Installation

```
pip install .
```

For the test suite:

```
pip install ".[test]"
pytest
```

## Prerequisites

* Two chains running locally, each with its own home directory that holds a
  `test` keyring with the keys `usera` (chain A) and `userb`, `attackerb`
  and `mockDexB` (chain B).
* A relayer configured with a transfer path, an ordered path and an
  unordered path between the chains, with channels already linked.

## Configuration

All settings come from environment variables. These are required; a run
stops with an error listing any that are missing:

| Variable                  | Meaning                                                 |
|---------------------------|---------------------------------------------------------|
| `CHAIN_A_ID_ENV`          | Chain ID of chain A                                     |
| `CHAIN_A_RPC_ENV`         | RPC endpoint of chain A                                 |
| `CHAIN_A_HOME_ENV`        | Home directory of chain A                               |
| `CHAIN_B_ID_ENV`          | Chain ID of chain B                                     |
| `CHAIN_B_RPC_ENV`         | RPC endpoint of chain B                                 |
| `CHAIN_B_HOME_ENV`        | Home directory of chain B                               |
| `RLY_CONFIG_FILE_ENV`     | Relayer home directory (`~/` and `$VARS` are expanded)  |
| `RLY_PATH_TRANSFER_ENV`   | Relayer path used for plain transfers                   |
| `RLY_PATH_ORDERED_ENV`    | Relayer path over an ordered channel                    |
| `RLY_PATH_UNORDERED_ENV`  | Relayer path over an unordered channel                  |
| `TRANSFER_CHANNEL_A_ENV`  | Transfer channel ID on chain A                          |
| `TRANSFER_CHANNEL_B_ENV`  | Transfer channel ID on chain B                          |
| `ORDERED_CHANNEL_A_ENV`   | Ordered channel ID on chain A                           |
| `ORDERED_CHANNEL_B_ENV`   | Ordered channel ID on chain B                           |
| `UNORDERED_CHANNEL_A_ENV` | Unordered channel ID on chain A                         |
| `UNORDERED_CHANNEL_B_ENV` | Unordered channel ID on chain B                         |

Optional:

| Variable          | Default | Meaning                   |
|-------------------|---------|---------------------------|
| `SIMD_BINARY_ENV` | `simd`  | Chain command-line binary |
| `RLY_BINARY_ENV`  | `rly`   | Relayer binary            |

Transactions use the `transfer` port, a fee of `200000uatom` and
`--gas=auto --gas-adjustment=1.2`; the fee scenario gives the attacker
`300000uatom` and `--gas-adjustment=1.3`. The IBC token denomination is
`token` and the staking denomination is `uatom`.

## Running

Validate the setup first, then run the experiments one at a time:

```
ibcfrontrun-validate
ibcfrontrun-case1
ibcfrontrun-case2
ibcfrontrun-case3
ibcfrontrun-case4
```

The scenarios sleep between steps so that transactions are indexed and
packets relayed; a full run takes a minute or more per case.

## Using the library

The building blocks are importable:

* `ibcfrontrun.config.load_settings` reads the environment into a
  `Settings` object and raises `ConfigError` when variables are missing.
* `ibcfrontrun.chain.ChainClient` wraps the chain and relayer commands
  (transfers, bank sends, transaction, block and balance queries, packet
  relaying) and raises `ChainError` on failure. It takes an optional runner
  callable, so commands can be replaced in tests.
* `ibcfrontrun.models` parses transaction and block responses and finds
  `send_packet` / `recv_packet` events and transaction positions in a block.
* `ibcfrontrun.dex.LiquidityPool` models the constant-product pool used in
  the sandwich scenario:

```python
from ibcfrontrun.dex import LiquidityPool, price_impact

pool = LiquidityPool.create(2000, 2000)
stake = pool.swap_ibc_for_stake(100)
impact = price_impact(190, pool.reserve_stake, pool.reserve_ibc)
```

Each scenario module also has a `run(client, sleep)` function that returns
its outcome instead of only logging it.

## What the package does not do

The package only runs experiments against an environment that already
exists. It does not build or install the chain binary or the relayer,
initialise chain home directories, keys or genesis files, start or stop
the chains, create or link relayer paths, or discover channel IDs; all of
that must be in place, and the channel IDs supplied through the
environment, before any command is run. The DEX in the sandwich scenario
is a model kept in memory; on chain, swaps are carried out as plain bank
sends to and from the `mockDexB` account.