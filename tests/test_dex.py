import pytest

from ibcfrontrun.dex import LiquidityPool, PoolError, price_impact, swap_output


def test_create_from_strings_sets_product():
    pool = LiquidityPool.create("2000", "2000")
    assert pool.reserve_stake == 2000
    assert pool.reserve_ibc == 2000
    assert pool.k == 2000 * 2000


def test_create_from_ints_matches_strings():
    assert LiquidityPool.create(300, 700) == LiquidityPool.create("300", "700")


@pytest.mark.parametrize("bad", ["abc", "", "1.5", "12x"])
def test_create_rejects_invalid_amount(bad):
    with pytest.raises(PoolError):
        LiquidityPool.create(bad, "2000")


def test_swap_output_zero_input_is_zero():
    assert swap_output(0, 10, 10) == 0


def test_swap_output_zero_denominator_raises():
    with pytest.raises(PoolError):
        swap_output(0, 0, 5)


@pytest.mark.parametrize(
    "amount,in_res,out_res",
    [(100, 2000, 2000), (2500, 2100, 1905), (1, 3, 7), (190, 870, 4600)],
)
def test_swap_output_is_floor_of_constant_product(amount, in_res, out_res):
    result = swap_output(amount, in_res, out_res)
    assert result * (in_res + amount) <= amount * out_res
    assert (result + 1) * (in_res + amount) > amount * out_res
    assert result < out_res


def test_swap_ibc_for_stake_updates_reserves():
    pool = LiquidityPool.create("2000", "2000")
    out = pool.swap_ibc_for_stake("100")
    assert out == swap_output(100, 2000, 2000)
    assert pool.reserve_ibc == 2100
    assert pool.reserve_stake == 2000 - out
    assert pool.k == pool.reserve_stake * pool.reserve_ibc


def test_swap_stake_for_ibc_updates_reserves():
    pool = LiquidityPool.create(2000, 2000)
    out = pool.swap_stake_for_ibc(190)
    assert pool.reserve_stake == 2190
    assert pool.reserve_ibc == 2000 - out
    assert pool.k == pool.reserve_stake * pool.reserve_ibc


def test_k_never_decreases():
    pool = LiquidityPool.create("2000", "2000")
    previous = pool.k
    for step in (pool.swap_ibc_for_stake, pool.swap_stake_for_ibc) * 3:
        step(137)
        assert pool.k >= previous
        previous = pool.k


def test_round_trip_without_victim_is_not_profitable():
    pool = LiquidityPool.create("2000", "2000")
    stake = pool.swap_ibc_for_stake(100)
    back = pool.swap_stake_for_ibc(stake)
    assert back <= 100


def test_sandwich_around_large_trade_is_profitable():
    pool = LiquidityPool.create("2000", "2000")
    pool.swap_ibc_for_stake("100")
    pool.swap_ibc_for_stake(5000 // 2)
    back = pool.swap_stake_for_ibc("190")
    assert back > 100


def test_swap_rejects_invalid_amount():
    pool = LiquidityPool.create(10, 10)
    with pytest.raises(PoolError):
        pool.swap_stake_for_ibc("ten")


def test_price_impact_zero_input():
    assert price_impact(0, 2000, 2000) == 0.0


@pytest.mark.parametrize("in_res,out_res", [(0, 10), (10, 0)])
def test_price_impact_zero_reserve_raises(in_res, out_res):
    with pytest.raises(PoolError):
        price_impact(5, in_res, out_res)


def test_price_impact_grows_with_trade_size():
    impacts = [price_impact(amount, 2000, 2000) for amount in (10, 100, 1000, 5000)]
    assert impacts == sorted(impacts)
    assert all(0 < value < 100 for value in impacts)


def test_price_impact_does_not_change_pool():
    pool = LiquidityPool.create(2000, 2000)
    price_impact(100, pool.reserve_ibc, pool.reserve_stake)
    assert (pool.reserve_stake, pool.reserve_ibc) == (2000, 2000)