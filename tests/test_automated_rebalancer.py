"""
Unit tests for the rebalance sequence of a single position.
The venue client is mocked; the planner runs with a fake estimator.
"""
import pytest
import sys
import os
from unittest.mock import Mock

# Add parent directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from automated_rebalancer import AutomatedRebalancer
from liquidity_planner import EstimateDirection, LiquidityPlanner
from models import Pool, Position, SwapQuote, TickRange, TokenInfo, TokenKind, Withdrawal
from utils import InsufficientBalanceError, TransactionError

USDC = "0xA0b86991c6218b36c1d19D4a2e9Eb0cE3606eB48"
WETH = "0xC02aaA39b223FE8D0A0e5C4F27eAD9083C756Cc2"
ROUTER = "0x68b3465833fb72A70ecDF485E0e4C7bD8665Fc45"
POSITION_MANAGER = "0xC36442b4a4522E871399CD717aBDD847Ab11FE88"
SIGNER = "0x2222222222222222222222222222222222222222"


pytestmark = pytest.mark.unit


def half_ratio(target, known_amount, direction):
    if direction is EstimateDirection.A_TO_B:
        return known_amount // 2
    return known_amount * 2


def withdrawal(amount_a, amount_b, liquidity=10**12):
    return Withdrawal(liquidity=liquidity, amount_a=amount_a, amount_b=amount_b)


class TestAutomatedRebalancer:
    """Test withdraw, swap and deposit sequencing."""

    def setup_method(self):
        """Set up test fixtures."""
        self.config = Mock()
        self.config.TICK_HALF_WIDTH = 10
        self.config.SLIPPAGE_PERCENT = 0.1
        self.config.WETH_ADDRESS = WETH
        self.config.UNISWAP_V3_ROUTER = ROUTER
        self.config.UNISWAP_V3_POSITION_MANAGER = POSITION_MANAGER

        self.client = Mock()
        self.client.wallet_address = SIGNER
        self.client.simulate_withdrawal.return_value = withdrawal(1000, 0)
        self.client.estimate_other_amount.side_effect = half_ratio
        self.client.quote.return_value = SwapQuote(amount_in=300, amount_out=500, route=(USDC, 500, WETH))
        self.client.submit_transaction.side_effect = lambda payload, description: f"0x{description}"
        self.client.ensure_allowance.return_value = None

        self.planner = LiquidityPlanner(self.client, self.client, swap_safe_mode=True)
        self.rebalancer = AutomatedRebalancer(self.config, self.client, self.planner)

        self.pool = Pool(
            pool_id="0x88e6A0c2dDD26FEEb64F039a2c41296FcB3f5640",
            current_tick=500,
            fee_tier=500,
            token_a=TokenInfo.from_address(USDC, "USDC", 6),
            token_b=TokenInfo.from_address(WETH, "WETH", 18)
        )
        self.position = Position(
            position_id="4242",
            pool_id=self.pool.pool_id,
            tick_lower=450,
            tick_upper=480,
            liquidity=10**12,
            pool=self.pool
        )

    def submitted(self):
        return [call.args[1] for call in self.client.submit_transaction.call_args_list]

    def test_target_range_uses_fee_tier_spacing(self):
        assert self.rebalancer.compute_target_range(self.pool) == TickRange(lower=400, upper=600)

    def test_full_rebalance_sequence(self):
        """Withdraw, swap the shortfall, re-plan on post-swap balances, deposit."""
        result = self.rebalancer.rebalance(self.position)

        assert self.submitted() == ["remove-liquidity", "swap", "add-liquidity"]
        assert result.withdrawn
        assert result.deposited
        assert result.skipped_reason is None
        assert result.target_range == TickRange(lower=400, upper=600)
        assert result.swap_plan.amount_in == 300
        assert result.tx_hashes == {
            'remove-liquidity': '0xremove-liquidity',
            'swap': '0xswap',
            'add-liquidity': '0xadd-liquidity',
        }

        self.client.remove_liquidity_payload.assert_called_once_with("4242", 10**12, 1000, 0, 0.1, SIGNER)
        self.client.swap_payload.assert_called_once_with(USDC, WETH, 300, 500, 0.1, (USDC, 500, WETH), SIGNER)

        # second planning pass sees 700 A and 500 B
        assert (result.plan.deposit_a, result.plan.deposit_b) == (700, 350)
        assert result.plan.swap_plan is None
        self.client.add_liquidity_payload.assert_called_once_with(
            USDC, WETH, 500, TickRange(lower=400, upper=600), 700, 350, 0.1, SIGNER
        )

    def test_allowances_checked_before_spending(self):
        self.rebalancer.rebalance(self.position)

        allowance_calls = [call.args for call in self.client.ensure_allowance.call_args_list]
        assert allowance_calls == [
            (USDC, ROUTER, 300),
            (USDC, POSITION_MANAGER, 700),
            (WETH, POSITION_MANAGER, 350),
        ]

    def test_quote_covers_shortfall_only(self):
        self.rebalancer.rebalance(self.position)

        self.client.quote.assert_called_once_with(500, USDC, WETH, True, 500)

    def test_no_withdraw_when_nothing_to_withdraw(self):
        """Zero withdrawable amounts leave nothing to deposit either."""
        self.client.simulate_withdrawal.return_value = withdrawal(0, 0)

        result = self.rebalancer.rebalance(self.position)

        assert self.submitted() == []
        assert not result.withdrawn
        assert result.skipped_reason == 'empty deposit amounts'

    def test_withdraws_on_chain_liquidity_when_indexer_lags(self):
        """The removal uses the liquidity read from chain, not the indexer snapshot."""
        self.client.simulate_withdrawal.return_value = withdrawal(1000, 0, liquidity=7 * 10**11)

        result = self.rebalancer.rebalance(self.position)

        assert result.withdrawn
        self.client.simulate_withdrawal.assert_called_once_with("4242")
        self.client.remove_liquidity_payload.assert_called_once_with("4242", 7 * 10**11, 1000, 0, 0.1, SIGNER)

    def test_no_withdraw_when_chain_liquidity_is_gone(self):
        self.client.simulate_withdrawal.return_value = withdrawal(0, 0, liquidity=0)

        result = self.rebalancer.rebalance(self.position)

        assert not result.withdrawn
        self.client.remove_liquidity_payload.assert_not_called()

    def test_deposit_skipped_when_a_side_is_empty(self):
        """A position holding only B cannot be paired at the current price."""
        self.client.simulate_withdrawal.return_value = withdrawal(0, 800)

        result = self.rebalancer.rebalance(self.position)

        assert self.submitted() == ["remove-liquidity"]
        assert not result.deposited
        assert result.skipped_reason == 'empty deposit amounts'
        self.client.add_liquidity_payload.assert_not_called()

    def test_no_swap_when_b_is_sufficient(self):
        self.client.simulate_withdrawal.return_value = withdrawal(1000, 800)

        result = self.rebalancer.rebalance(self.position)

        self.client.quote.assert_not_called()
        assert self.submitted() == ["remove-liquidity", "add-liquidity"]
        assert (result.plan.deposit_a, result.plan.deposit_b) == (1000, 500)

    def test_missing_pool_is_skipped(self):
        position = Position(position_id="1", pool_id="0xpool", tick_lower=0, tick_upper=10,
                            liquidity=10, pool=None)

        result = self.rebalancer.rebalance(position)

        assert result.skipped_reason == 'missing pool data'
        self.client.simulate_withdrawal.assert_not_called()

    def test_native_token_is_wrapped(self):
        pool = Pool(
            pool_id=self.pool.pool_id,
            current_tick=500,
            fee_tier=500,
            token_a=TokenInfo.from_address(USDC, "USDC", 6),
            token_b=TokenInfo(kind=TokenKind.NATIVE, address="", symbol="ETH")
        )
        position = Position(position_id="7", pool_id=pool.pool_id, tick_lower=450, tick_upper=480,
                            liquidity=10**12, pool=pool)

        self.rebalancer.rebalance(position)

        assert self.client.swap_payload.call_args.args[1] == WETH

    def test_insufficient_balance_propagates_after_withdraw(self):
        self.client.quote.return_value = SwapQuote(amount_in=1000, amount_out=500, route=(USDC, 500, WETH))

        with pytest.raises(InsufficientBalanceError):
            self.rebalancer.rebalance(self.position)

        assert self.submitted() == ["remove-liquidity"]

    def test_failed_swap_stops_before_deposit(self):
        def submit(payload, description):
            if description == "swap":
                raise TransactionError("Transaction 0xswap reverted")
            return f"0x{description}"

        self.client.submit_transaction.side_effect = submit

        with pytest.raises(TransactionError):
            self.rebalancer.rebalance(self.position)

        self.client.add_liquidity_payload.assert_not_called()
