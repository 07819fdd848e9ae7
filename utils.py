"""
LP Range Rebalancer - Utility Functions
Tick range helpers, error types, logging setup and retry handling
"""
import logging
import time
import functools
from decimal import Decimal
from pathlib import Path
from typing import Dict, Any, Callable, Optional

import requests
from web3.exceptions import TimeExhausted, TransactionNotFound

from models import TickRange

logger = logging.getLogger(__name__)

# Fee tier (hundredths of a bip) -> tick spacing
FEE_TIER_SPACING = {
    100: 1,
    500: 10,
    3000: 60,
    10000: 200,
}

SLIPPAGE_SCALE = 1_000_000


class RebalancerError(Exception):
    """Base class for rebalancer errors"""


class ConfigurationError(RebalancerError, ValueError):
    """Raised when required configuration is missing or malformed"""


class InsufficientBalanceError(RebalancerError):
    """Raised when a planned swap would consume the whole input balance"""


class TransactionError(RebalancerError):
    """Raised when a transaction reverts or is not confirmed in time"""


class VenueQueryError(RebalancerError):
    """Raised when the position indexer returns errors or malformed data"""


class LiquidityUtils:
    """Utility functions for concentrated liquidity ranges"""

    @staticmethod
    def get_tick_spacing(fee_tier: int) -> int:
        """
        Get tick spacing for a given fee tier

        Args:
            fee_tier: Fee tier (100, 500, 3000, 10000)

        Returns:
            Tick spacing, 1 for unknown tiers
        """
        spacing = FEE_TIER_SPACING.get(int(fee_tier))
        if spacing is None:
            logger.warning(f"Unknown fee tier {fee_tier}, falling back to tick spacing 1")
            return 1
        return spacing

    @staticmethod
    def compute_tick_range(current_tick: int, spacing: int, half_width: int) -> TickRange:
        """
        Compute a target tick range centred on the current tick

        The current tick is snapped down to the nearest spacing boundary and the
        range extends half_width spacing units on each side. A zero half width
        is widened to one spacing unit per side so the range is never empty.

        Args:
            current_tick: Current pool tick
            spacing: Tick spacing of the pool
            half_width: Half width of the range in spacing units

        Returns:
            TickRange with lower < upper, both multiples of spacing
        """
        if spacing <= 0:
            raise ValueError(f"Tick spacing must be positive, got {spacing}")
        if half_width < 0:
            raise ValueError(f"Half width must not be negative, got {half_width}")

        rounded = (current_tick // spacing) * spacing
        lower = rounded - half_width * spacing
        upper = rounded + half_width * spacing

        if lower == upper:
            return TickRange(lower=rounded - spacing, upper=rounded + spacing)
        return TickRange(lower=lower, upper=upper)

    @staticmethod
    def apply_slippage(amount: int, slippage_percent: float) -> int:
        """
        Minimum acceptable amount after slippage, in integer arithmetic

        Args:
            amount: Amount in smallest token units
            slippage_percent: Slippage tolerance in percent (0.1 = 0.1%)

        Returns:
            amount reduced by the slippage tolerance, rounded down
        """
        ppm = int(Decimal(str(slippage_percent)) * (SLIPPAGE_SCALE // 100))
        ppm = min(max(ppm, 0), SLIPPAGE_SCALE)
        return amount * (SLIPPAGE_SCALE - ppm) // SLIPPAGE_SCALE

    @staticmethod
    def format_token_amount(amount: int, decimals: int, symbol: str = "") -> str:
        """
        Format token amount for display

        Args:
            amount: Amount in smallest units
            decimals: Token decimals
            symbol: Token symbol

        Returns:
            Formatted string
        """
        formatted_amount = Decimal(amount).scaleb(-decimals)
        return f"{formatted_amount:f} {symbol}".strip()


class ErrorHandler:
    """Error handling utilities"""

    @staticmethod
    def handle_transaction_error(error: Exception) -> Dict[str, Any]:
        """
        Classify errors and provide meaningful messages

        Args:
            error: Exception object

        Returns:
            Error information dictionary
        """
        error_msg = str(error)
        lowered = error_msg.lower()

        if isinstance(error, InsufficientBalanceError):
            return {
                'type': 'insufficient_balance',
                'message': error_msg,
                'suggestion': 'Position will be retried on the next cycle'
            }
        elif "insufficient funds" in lowered:
            return {
                'type': 'insufficient_funds',
                'message': 'Insufficient native balance for gas fees',
                'suggestion': 'Add more native token to the signer wallet'
            }
        elif "gas" in lowered:
            return {
                'type': 'gas_limit',
                'message': 'Transaction gas limit exceeded',
                'suggestion': 'Increase MAX_GAS_LIMIT'
            }
        elif "slippage" in lowered or "too little received" in lowered or "price slippage check" in lowered:
            return {
                'type': 'slippage',
                'message': 'Price slippage too high',
                'suggestion': 'Increase SLIPPAGE_PERCENT'
            }
        elif "deadline" in lowered or "transaction too old" in lowered:
            return {
                'type': 'deadline',
                'message': 'Transaction deadline exceeded',
                'suggestion': 'Increase TX_DEADLINE_SECONDS'
            }
        elif "nonce" in lowered:
            return {
                'type': 'nonce',
                'message': 'Nonce error',
                'suggestion': 'Wait for pending transactions from the signer account'
            }
        elif isinstance(error, TransactionError):
            return {
                'type': 'transaction',
                'message': error_msg,
                'suggestion': 'Check the transaction on a block explorer'
            }
        else:
            return {
                'type': 'unknown',
                'message': error_msg,
                'suggestion': 'Check venue connectivity and try again'
            }


class Logger:
    """Logging utilities"""

    @staticmethod
    def setup_logging(level: str = "INFO", log_file: Optional[str] = None):
        """
        Set up logging configuration

        Args:
            level: Logging level (DEBUG, INFO, WARNING, ERROR)
            log_file: Optional log file path, parent directory is created
        """
        log_level = getattr(logging, level.upper(), logging.INFO)

        formatter = logging.Formatter(
            '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
        )

        console_handler = logging.StreamHandler()
        console_handler.setFormatter(formatter)

        handlers = [console_handler]
        if log_file:
            Path(log_file).parent.mkdir(parents=True, exist_ok=True)
            file_handler = logging.FileHandler(log_file)
            file_handler.setFormatter(formatter)
            handlers.append(file_handler)

        logging.basicConfig(
            level=log_level,
            handlers=handlers,
            force=True
        )

    @staticmethod
    def log_transaction(tx_hash: str, operation: str, success: bool, details: Dict[str, Any] = None):
        """
        Log transaction details

        Args:
            tx_hash: Transaction hash
            operation: Operation type (remove-liquidity, swap, add-liquidity, approve)
            success: Whether transaction was successful
            details: Additional details
        """
        status = "SUCCESS" if success else "FAILED"
        logger.info(f"Transaction {status}: {operation} - {tx_hash}")

        if details:
            for key, value in details.items():
                logger.info(f"  {key}: {value}")


def is_retryable_error(error: Exception) -> bool:
    """
    Check if an error is retryable

    Args:
        error: Exception to check

    Returns:
        True if error is retryable, False otherwise
    """
    if isinstance(error, (InsufficientBalanceError, ConfigurationError)):
        return False

    retryable_errors = (
        requests.ConnectionError,
        requests.Timeout,
        TransactionNotFound,
        TimeExhausted,
        ConnectionError,
        TimeoutError,
    )

    error_str = str(error).lower()
    retryable_messages = [
        'connection',
        'timeout',
        'timed out',
        'network',
        'too many requests',
        'service unavailable',
    ]

    return isinstance(error, retryable_errors) or any(msg in error_str for msg in retryable_messages)


def retry_on_failure(max_retries: int = 3, delay: float = 2.0, backoff_factor: float = 1.5):
    """
    Decorator to retry read-only calls on retryable failures with exponential backoff

    Args:
        max_retries: Maximum number of retry attempts
        delay: Initial delay between retries in seconds
        backoff_factor: Multiplier for delay after each retry
    """
    def decorator(func: Callable) -> Callable:
        @functools.wraps(func)
        def wrapper(*args, **kwargs):
            current_delay = delay

            for attempt in range(max_retries + 1):
                try:
                    return func(*args, **kwargs)
                except Exception as e:
                    if attempt == max_retries or not is_retryable_error(e):
                        raise

                    logger.warning(f"Function {func.__name__} failed (attempt {attempt + 1}/{max_retries + 1}): {e}")
                    logger.info(f"Retrying in {current_delay:.1f} seconds...")

                    time.sleep(current_delay)
                    current_delay *= backoff_factor

        return wrapper
    return decorator
