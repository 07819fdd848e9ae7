"""
Pool, position and planning records.
"""
from dataclasses import dataclass
from typing import Optional, Tuple

from .token import TokenInfo


@dataclass(frozen=True)
class TickRange:
    """Ordered tick bounds of a liquidity range"""
    lower: int
    upper: int

    def __post_init__(self):
        if self.lower >= self.upper:
            raise ValueError(f"Tick range must satisfy lower < upper, got [{self.lower}, {self.upper}]")


@dataclass(frozen=True)
class Pool:
    """Read-only pool snapshot for one poll cycle"""
    pool_id: str
    current_tick: int
    fee_tier: int
    token_a: TokenInfo
    token_b: TokenInfo


@dataclass(frozen=True)
class Position:
    """Liquidity position as reported by the position source"""
    position_id: str
    pool_id: str
    tick_lower: int
    tick_upper: int
    liquidity: int
    pool: Optional[Pool] = None


@dataclass(frozen=True)
class Withdrawal:
    """Simulated full withdrawal: on-chain liquidity and the amounts it returns"""
    liquidity: int
    amount_a: int
    amount_b: int


@dataclass(frozen=True)
class SwapQuote:
    """Exact-output swap quote"""
    amount_in: int
    amount_out: int
    route: Tuple


@dataclass(frozen=True)
class SwapPlan:
    """Swap decided by the planner, executed by the rebalancer"""
    amount_in: int
    expected_out: int
    route: Tuple


@dataclass(frozen=True)
class LiquidityTarget:
    """Where the planned liquidity should go"""
    currency_a: str
    currency_b: str
    fee_tier: int
    tick_range: TickRange
    current_tick: int


@dataclass(frozen=True)
class LiquidityPlan:
    """Deposit amounts, optionally preceded by a swap"""
    deposit_a: int
    deposit_b: int
    swap_plan: Optional[SwapPlan] = None

    @property
    def is_empty(self) -> bool:
        return self.deposit_a == 0 or self.deposit_b == 0
