"""
Integer liquidity math for concentrated liquidity pools.
Tick to sqrt price conversion and amount/liquidity conversions, all in
arbitrary precision integers so results match on-chain units exactly.
"""
from typing import Tuple

Q96 = 1 << 96
MIN_TICK = -887272
MAX_TICK = 887272
MAX_UINT256 = (1 << 256) - 1

# Multipliers for each set bit of |tick|, Q128.128
_TICK_BIT_RATIOS: Tuple[Tuple[int, int], ...] = (
    (0x2, 0xfff97272373d413259a46990580e213a),
    (0x4, 0xfff2e50f5f656932ef12357cf3c7fdcc),
    (0x8, 0xffe5caca7e10e4e61c3624eaa0941cd0),
    (0x10, 0xffcb9843d60f6159c9db58835c926644),
    (0x20, 0xff973b41fa98c081472e6896dfb254c0),
    (0x40, 0xff2ea16466c96a3843ec78b326b52861),
    (0x80, 0xfe5dee046a99a2a811c461f1969c3053),
    (0x100, 0xfcbe86c7900a88aedcffc83b479aa3a4),
    (0x200, 0xf987a7253ac413176f2b074cf7815e54),
    (0x400, 0xf3392b0822b70005940c7a398e4b70f3),
    (0x800, 0xe7159475a2c29b7443b29c7fa6e889d9),
    (0x1000, 0xd097f3bdfd2022b8845ad8f792aa5825),
    (0x2000, 0xa9f746462d870fdf8a65dc1f90e061e5),
    (0x4000, 0x70d869a156d2a1b890bb3df62baf32f7),
    (0x8000, 0x31be135f97d08fd981231505542fcfa6),
    (0x10000, 0x9aa508b5b7a84e1c677de54f3e99bc9),
    (0x20000, 0x5d6af8dedb81196699c329225ee604),
    (0x40000, 0x2216e584f5fa1ea926041bedfe98),
    (0x80000, 0x48a170391f7dc42444e8fa2),
)


def get_sqrt_ratio_at_tick(tick: int) -> int:
    """
    sqrt(1.0001^tick) as a Q64.96 fixed point number

    Args:
        tick: Tick index in [MIN_TICK, MAX_TICK]

    Returns:
        sqrtPriceX96 at the given tick
    """
    abs_tick = abs(tick)
    if abs_tick > MAX_TICK:
        raise ValueError(f"Tick {tick} outside [{MIN_TICK}, {MAX_TICK}]")

    ratio = 0xfffcb933bd6fad37aa2d162d1a594001 if abs_tick & 0x1 else 1 << 128
    for bit, multiplier in _TICK_BIT_RATIOS:
        if abs_tick & bit:
            ratio = (ratio * multiplier) >> 128

    if tick > 0:
        ratio = MAX_UINT256 // ratio

    # round up so the result is never below the true price
    return (ratio >> 32) + (0 if ratio % (1 << 32) == 0 else 1)


def _sorted(sqrt_a: int, sqrt_b: int) -> Tuple[int, int]:
    return (sqrt_b, sqrt_a) if sqrt_a > sqrt_b else (sqrt_a, sqrt_b)


def get_liquidity_for_amount0(sqrt_a: int, sqrt_b: int, amount0: int) -> int:
    sqrt_a, sqrt_b = _sorted(sqrt_a, sqrt_b)
    intermediate = sqrt_a * sqrt_b // Q96
    return amount0 * intermediate // (sqrt_b - sqrt_a)


def get_liquidity_for_amount1(sqrt_a: int, sqrt_b: int, amount1: int) -> int:
    sqrt_a, sqrt_b = _sorted(sqrt_a, sqrt_b)
    return amount1 * Q96 // (sqrt_b - sqrt_a)


def get_amount0_for_liquidity(sqrt_a: int, sqrt_b: int, liquidity: int) -> int:
    sqrt_a, sqrt_b = _sorted(sqrt_a, sqrt_b)
    return ((liquidity << 96) * (sqrt_b - sqrt_a) // sqrt_b) // sqrt_a


def get_amount1_for_liquidity(sqrt_a: int, sqrt_b: int, liquidity: int) -> int:
    sqrt_a, sqrt_b = _sorted(sqrt_a, sqrt_b)
    return liquidity * (sqrt_b - sqrt_a) // Q96


def _range_prices(tick_lower: int, tick_upper: int, current_tick: int) -> Tuple[int, int, int]:
    return (
        get_sqrt_ratio_at_tick(tick_lower),
        get_sqrt_ratio_at_tick(tick_upper),
        get_sqrt_ratio_at_tick(current_tick),
    )


def estimate_amount1_from_amount0(amount0: int, tick_lower: int, tick_upper: int, current_tick: int) -> int:
    """
    Amount of token1 that pairs with amount0 in [tick_lower, tick_upper] at current_tick

    Returns 0 when the current price is outside the range, since then the
    range only accepts one of the two tokens.
    """
    sqrt_lower, sqrt_upper, sqrt_price = _range_prices(tick_lower, tick_upper, current_tick)
    if sqrt_price <= sqrt_lower or sqrt_price >= sqrt_upper or amount0 == 0:
        return 0
    liquidity = get_liquidity_for_amount0(sqrt_price, sqrt_upper, amount0)
    return get_amount1_for_liquidity(sqrt_lower, sqrt_price, liquidity)


def estimate_amount0_from_amount1(amount1: int, tick_lower: int, tick_upper: int, current_tick: int) -> int:
    """
    Amount of token0 that pairs with amount1 in [tick_lower, tick_upper] at current_tick

    Returns 0 when the current price is outside the range.
    """
    sqrt_lower, sqrt_upper, sqrt_price = _range_prices(tick_lower, tick_upper, current_tick)
    if sqrt_price <= sqrt_lower or sqrt_price >= sqrt_upper or amount1 == 0:
        return 0
    liquidity = get_liquidity_for_amount1(sqrt_lower, sqrt_price, amount1)
    return get_amount0_for_liquidity(sqrt_price, sqrt_upper, liquidity)
