"""Constant-product liquidity pool used to model a DEX on the destination chain."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from fractions import Fraction
from typing import Union

log = logging.getLogger(__name__)

Amount = Union[int, str]

_DECIMAL = re.compile(r"[+-]?[0-9]+")


class PoolError(Exception):
    """Raised for invalid pool amounts or impossible pool arithmetic."""


def _to_int(value: Amount, label: str) -> int:
    if isinstance(value, bool):
        raise PoolError(f"invalid {label}: {value}")
    if isinstance(value, int):
        return value
    if isinstance(value, str) and _DECIMAL.fullmatch(value):
        return int(value, 10)
    raise PoolError(f"invalid {label}: {value}")


def swap_output(input_amount: int, input_reserve: int, output_reserve: int) -> int:
    """Output of a constant-product swap, rounded down.

    ``output = input * output_reserve // (input_reserve + input)``
    """
    denominator = input_reserve + input_amount
    if denominator == 0:
        raise PoolError("swap denominator is zero")
    return (input_amount * output_reserve) // denominator


def price_impact(input_amount: int, input_reserve: int, output_reserve: int) -> float:
    """Percentage drop of the output/input price caused by a trade."""
    if input_reserve == 0 or output_reserve == 0:
        raise PoolError("reserves cannot be zero")
    current_price = Fraction(output_reserve, input_reserve)
    new_input_reserve = input_reserve + input_amount
    if new_input_reserve == 0:
        raise PoolError("reserves cannot be zero")
    output_amount = swap_output(input_amount, input_reserve, output_reserve)
    new_price = Fraction(output_reserve - output_amount, new_input_reserve)
    return float((current_price - new_price) / current_price * 100)


@dataclass
class LiquidityPool:
    """Reserves of stake and IBC tokens and their product ``k``."""

    reserve_stake: int
    reserve_ibc: int
    k: int

    @classmethod
    def create(cls, reserve_stake: Amount, reserve_ibc: Amount) -> "LiquidityPool":
        """A pool holding the given reserves; amounts may be decimal strings."""
        stake = _to_int(reserve_stake, "initial stake reserve amount")
        ibc = _to_int(reserve_ibc, "initial IBC reserve amount")
        pool = cls(reserve_stake=stake, reserve_ibc=ibc, k=stake * ibc)
        log.info(
            "DEX Pool initialized - Stake Reserve: %s, IBC Reserve: %s, K: %s",
            pool.reserve_stake, pool.reserve_ibc, pool.k,
        )
        return pool

    def swap_stake_for_ibc(self, stake_amount: Amount) -> int:
        """Swap stake tokens into the pool; return the IBC tokens paid out."""
        amount = _to_int(stake_amount, "stake amount")
        output = swap_output(amount, self.reserve_stake, self.reserve_ibc)
        self.reserve_stake += amount
        self.reserve_ibc -= output
        new_k = self.reserve_stake * self.reserve_ibc
        log.info(
            "Swap Stake->IBC: Input %s stake, Output %s IBC, New K: %s (vs old K: %s)",
            amount, output, new_k, self.k,
        )
        self.k = new_k
        return output

    def swap_ibc_for_stake(self, ibc_amount: Amount) -> int:
        """Swap IBC tokens into the pool; return the stake tokens paid out."""
        amount = _to_int(ibc_amount, "IBC amount")
        output = swap_output(amount, self.reserve_ibc, self.reserve_stake)
        self.reserve_ibc += amount
        self.reserve_stake -= output
        new_k = self.reserve_stake * self.reserve_ibc
        log.info(
            "Swap IBC->Stake: Input %s IBC, Output %s stake, New K: %s (vs old K: %s)",
            amount, output, new_k, self.k,
        )
        self.k = new_k
        return output