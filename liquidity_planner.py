"""
Liquidity planning for range redeployment.
Turns two token balances and a target range into deposit amounts, deciding
whether part of token A has to be swapped into token B first.
"""
import logging
from enum import Enum
from typing import Optional

from models import LiquidityPlan, LiquidityTarget, SwapPlan
from utils import InsufficientBalanceError

logger = logging.getLogger(__name__)


class EstimateDirection(Enum):
    """Which side of the pair is known when asking the ratio estimator"""
    A_TO_B = "a_to_b"
    B_TO_A = "b_to_a"


def _require_amount(name: str, value) -> int:
    # bool is an int subclass but never a valid amount
    if isinstance(value, bool) or not isinstance(value, int):
        raise TypeError(f"{name} must be an integer amount in smallest units, got {type(value).__name__}")
    if value < 0:
        raise ValueError(f"{name} must not be negative, got {value}")
    return value


class LiquidityPlanner:
    """
    Two-stage planner for redeploying a balance pair into a target range.

    The estimator must provide ``estimate_other_amount(target, known_amount, direction)``
    and the quoter ``quote(amount, token_in, token_out, safe_mode, fee_tier)``.
    Both are queried fresh on every call; the planner never retries.
    """

    def __init__(self, estimator, quoter, swap_safe_mode: bool = True):
        self.estimator = estimator
        self.quoter = quoter
        self.swap_safe_mode = swap_safe_mode

    def _estimate(self, target: LiquidityTarget, known_amount: int, direction: EstimateDirection) -> int:
        return int(self.estimator.estimate_other_amount(target, known_amount, direction))

    def plan_liquidity(
        self,
        available_a: int,
        available_b: int,
        target: LiquidityTarget,
        allow_swap: bool
    ) -> LiquidityPlan:
        """
        Plan deposit amounts for the target range

        Args:
            available_a: Token A balance in smallest units
            available_b: Token B balance in smallest units
            target: Target pool, range and current tick
            allow_swap: Whether a B shortfall may be covered by swapping A

        Returns:
            LiquidityPlan with the swap (if any) and both deposit amounts

        Raises:
            InsufficientBalanceError: If covering the shortfall would use all of token A
        """
        working_a = _require_amount("available_a", available_a)
        working_b = _require_amount("available_b", available_b)
        swap_plan: Optional[SwapPlan] = None

        required_b = self._estimate(target, working_a, EstimateDirection.A_TO_B)
        logger.debug(f"Required B for {working_a} A: {required_b} (available B: {working_b})")

        if allow_swap and required_b > working_b:
            shortfall = required_b - working_b
            quote = self.quoter.quote(
                shortfall,
                target.currency_a,
                target.currency_b,
                self.swap_safe_mode,
                target.fee_tier
            )
            amount_in = int(quote.amount_in)
            amount_out = int(quote.amount_out)

            if amount_in >= working_a:
                raise InsufficientBalanceError(
                    f"Insufficient token A balance to cover swap for rebalancing "
                    f"(need {amount_in}, have {working_a}, shortfall {shortfall})"
                )

            swap_plan = SwapPlan(amount_in=amount_in, expected_out=amount_out, route=quote.route)
            working_a -= amount_in
            working_b += amount_out
            logger.info(f"Planned swap of {amount_in} A for {amount_out} B to cover shortfall of {shortfall}")

        deposit_a = working_a
        deposit_b = self._estimate(target, working_a, EstimateDirection.A_TO_B)

        if deposit_b > working_b:
            deposit_a = self._estimate(target, working_b, EstimateDirection.B_TO_A)
            deposit_b = working_b
            logger.debug(f"Capped deposit by available B: A={deposit_a}, B={deposit_b}")

        deposit_a = min(deposit_a, working_a)

        return LiquidityPlan(deposit_a=deposit_a, deposit_b=deposit_b, swap_plan=swap_plan)
