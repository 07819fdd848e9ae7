"""
Core rebalancing logic for the LP range rebalancer.
Withdraws an out-of-range position and redeploys it around the current price.
"""
import logging
from dataclasses import dataclass, field
from typing import Dict, Optional

from config import Config
from liquidity_planner import LiquidityPlanner
from models import (
    LiquidityPlan,
    LiquidityTarget,
    Pool,
    Position,
    SwapPlan,
    TickRange,
    TokenInfo,
    normalize_token_address,
)
from utils import LiquidityUtils

logger = logging.getLogger(__name__)


@dataclass
class RebalanceResult:
    """Outcome of one position's rebalance"""
    position_id: str
    target_range: Optional[TickRange] = None
    withdrawn: bool = False
    swap_plan: Optional[SwapPlan] = None
    plan: Optional[LiquidityPlan] = None
    tx_hashes: Dict[str, str] = field(default_factory=dict)
    skipped_reason: Optional[str] = None

    @property
    def deposited(self) -> bool:
        return 'add-liquidity' in self.tx_hashes


class AutomatedRebalancer:
    """
    Rebalances a single position: withdraw, optionally swap, then deposit.

    Every transaction is awaited before the next step so the signer account
    never has two rebalancing transactions in flight.
    """

    def __init__(self, config: Config, client, planner: LiquidityPlanner):
        """
        Initialize the rebalancer

        Args:
            config: Configuration object
            client: Venue client (withdrawable amounts, payloads, transaction execution)
            planner: Liquidity planner
        """
        self.config = config
        self.client = client
        self.planner = planner

    @property
    def recipient(self) -> str:
        return self.client.wallet_address

    @staticmethod
    def _format(amount: int, token: TokenInfo) -> str:
        return LiquidityUtils.format_token_amount(amount, token.decimals, token.symbol)

    def compute_target_range(self, pool: Pool) -> TickRange:
        """Target range centred on the pool's current tick"""
        spacing = LiquidityUtils.get_tick_spacing(pool.fee_tier)
        return LiquidityUtils.compute_tick_range(pool.current_tick, spacing, self.config.TICK_HALF_WIDTH)

    def rebalance(self, position: Position) -> RebalanceResult:
        """
        Move a position's liquidity into a new range around the current price

        Errors from the venue or the planner propagate to the caller. A
        withdrawal that succeeded before a later failure is not rolled back;
        the tokens stay in the signer wallet.

        Args:
            position: Out-of-range position with non-zero liquidity

        Returns:
            RebalanceResult describing what was done
        """
        result = RebalanceResult(position_id=position.position_id)
        pool = position.pool
        if pool is None:
            logger.warning(f"No pool data for position {position.position_id}")
            result.skipped_reason = 'missing pool data'
            return result

        target_range = self.compute_target_range(pool)
        result.target_range = target_range
        currency_a = normalize_token_address(pool.token_a, pool.token_a.address, self.config.WETH_ADDRESS)
        currency_b = normalize_token_address(pool.token_b, pool.token_b.address, self.config.WETH_ADDRESS)
        logger.info(
            f"Target range for position {position.position_id}: "
            f"[{target_range.lower}, {target_range.upper}] (current tick {pool.current_tick})"
        )

        withdrawal = self.client.simulate_withdrawal(position.position_id)
        available_a, available_b = int(withdrawal.amount_a), int(withdrawal.amount_b)
        # the indexer can lag the chain; withdraw what the chain holds
        liquidity = int(withdrawal.liquidity)
        if liquidity != int(position.liquidity):
            logger.warning(
                f"Position {position.position_id} liquidity on chain ({liquidity}) "
                f"differs from indexer ({position.liquidity})"
            )

        if liquidity > 0 and (available_a > 0 or available_b > 0):
            logger.info(f"Removing liquidity from position {position.position_id} (liquidity={liquidity})")
            payload = self.client.remove_liquidity_payload(
                position.position_id,
                liquidity,
                available_a,
                available_b,
                self.config.SLIPPAGE_PERCENT,
                self.recipient
            )
            result.tx_hashes['remove-liquidity'] = self.client.submit_transaction(payload, "remove-liquidity")
            result.withdrawn = True

        target = LiquidityTarget(
            currency_a=currency_a,
            currency_b=currency_b,
            fee_tier=pool.fee_tier,
            tick_range=target_range,
            current_tick=pool.current_tick
        )

        plan = self.planner.plan_liquidity(available_a, available_b, target, allow_swap=True)

        if plan.swap_plan:
            swap = plan.swap_plan
            result.swap_plan = swap
            logger.info(
                f"Swapping {self._format(swap.amount_in, pool.token_a)} "
                f"for {self._format(swap.expected_out, pool.token_b)}"
            )

            self.client.ensure_allowance(currency_a, self.config.UNISWAP_V3_ROUTER, swap.amount_in)
            swap_payload = self.client.swap_payload(
                currency_a,
                currency_b,
                swap.amount_in,
                swap.expected_out,
                self.config.SLIPPAGE_PERCENT,
                swap.route,
                self.recipient
            )
            result.tx_hashes['swap'] = self.client.submit_transaction(swap_payload, "swap")

            # post-swap balances come from the quote, never from a fresh venue read
            post_swap_a = available_a - swap.amount_in
            post_swap_b = available_b + swap.expected_out
            plan = self.planner.plan_liquidity(post_swap_a, post_swap_b, target, allow_swap=False)

        result.plan = plan

        if plan.is_empty:
            logger.warning(
                f"Skipping add liquidity due to empty amounts (A={plan.deposit_a}, B={plan.deposit_b})"
            )
            result.skipped_reason = 'empty deposit amounts'
            return result

        logger.info(
            f"Adding liquidity with {self._format(plan.deposit_a, pool.token_a)} "
            f"and {self._format(plan.deposit_b, pool.token_b)}"
        )
        self.client.ensure_allowance(currency_a, self.config.UNISWAP_V3_POSITION_MANAGER, plan.deposit_a)
        self.client.ensure_allowance(currency_b, self.config.UNISWAP_V3_POSITION_MANAGER, plan.deposit_b)
        add_payload = self.client.add_liquidity_payload(
            currency_a,
            currency_b,
            pool.fee_tier,
            target_range,
            plan.deposit_a,
            plan.deposit_b,
            self.config.SLIPPAGE_PERCENT,
            self.recipient
        )
        result.tx_hashes['add-liquidity'] = self.client.submit_transaction(add_payload, "add-liquidity")
        return result
