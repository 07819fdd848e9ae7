"""
Unit tests for the data models.
"""
import pytest
import sys
import os

# Add parent directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from models import (
    LiquidityPlan,
    SwapPlan,
    TickRange,
    TokenInfo,
    TokenKind,
    normalize_token_address,
)

WETH = "0xC02aaA39b223FE8D0A0e5C4F27eAD9083C756Cc2"
USDC = "0xA0b86991c6218b36c1d19D4a2e9Eb0cE3606eB48"
FALLBACK = "0x0000000000000000000000000000000000000001"


pytestmark = pytest.mark.unit


class TestTokenNormalization:
    """Test canonical token address derivation."""

    def test_missing_info_uses_fallback(self):
        assert normalize_token_address(None, FALLBACK, WETH) == FALLBACK

    def test_native_maps_to_wrapped_token(self):
        info = TokenInfo(kind=TokenKind.NATIVE, address="", symbol="ETH")
        assert normalize_token_address(info, FALLBACK, WETH) == WETH

    def test_erc20_uses_its_address(self):
        info = TokenInfo(kind=TokenKind.ERC20, address=USDC, symbol="USDC", decimals=6)
        assert normalize_token_address(info, FALLBACK, WETH) == USDC

    def test_erc20_without_address_uses_fallback(self):
        info = TokenInfo(kind=TokenKind.ERC20, address="")
        assert normalize_token_address(info, FALLBACK, WETH) == FALLBACK

    def test_every_kind_is_handled(self):
        for kind in TokenKind:
            info = TokenInfo(kind=kind, address=USDC)
            assert normalize_token_address(info, FALLBACK, WETH) in (USDC, WETH)

    def test_from_address_tags_native_sentinels(self):
        assert TokenInfo.from_address("0x0000000000000000000000000000000000000000").kind is TokenKind.NATIVE
        assert TokenInfo.from_address("0xEeeeeEeeeEeEeeEeEeEeeEEEeeeeEeeeeeeeEEeE").kind is TokenKind.NATIVE
        assert TokenInfo.from_address(USDC, symbol="USDC", decimals=6).kind is TokenKind.ERC20


class TestTickRange:
    """Test tick range validation."""

    def test_valid_range(self):
        tick_range = TickRange(lower=-60, upper=60)
        assert (tick_range.lower, tick_range.upper) == (-60, 60)
        assert tick_range == TickRange(lower=-60, upper=60)

    def test_degenerate_range_rejected(self):
        with pytest.raises(ValueError):
            TickRange(lower=100, upper=100)
        with pytest.raises(ValueError):
            TickRange(lower=200, upper=100)


class TestLiquidityPlan:
    """Test deposit plan helpers."""

    def test_is_empty_when_either_side_is_zero(self):
        assert LiquidityPlan(deposit_a=0, deposit_b=10).is_empty
        assert LiquidityPlan(deposit_a=10, deposit_b=0).is_empty
        assert not LiquidityPlan(deposit_a=10, deposit_b=10).is_empty

    def test_swap_plan_is_optional(self):
        plan = LiquidityPlan(deposit_a=1, deposit_b=2)
        assert plan.swap_plan is None

        swap = SwapPlan(amount_in=3, expected_out=4, route=("a", 500, "b"))
        assert LiquidityPlan(deposit_a=1, deposit_b=2, swap_plan=swap).swap_plan == swap
