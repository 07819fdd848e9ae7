"""
Data models for the LP range rebalancer.
"""
from .token import TokenKind, TokenInfo, normalize_token_address
from .position import (
    TickRange,
    Pool,
    Position,
    SwapQuote,
    Withdrawal,
    SwapPlan,
    LiquidityTarget,
    LiquidityPlan,
)

__all__ = [
    'TokenKind', 'TokenInfo', 'normalize_token_address',
    'TickRange', 'Pool', 'Position', 'SwapQuote', 'Withdrawal', 'SwapPlan',
    'LiquidityTarget', 'LiquidityPlan',
]
