"""
Unit tests for the range calculator and shared utilities.
"""
import logging
import pytest
import sys
import os
from unittest.mock import Mock, patch

import requests

# Add parent directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from utils import (
    ConfigurationError,
    ErrorHandler,
    InsufficientBalanceError,
    LiquidityUtils,
    Logger,
    TransactionError,
    is_retryable_error,
    retry_on_failure,
)


pytestmark = pytest.mark.unit


class TestComputeTickRange:
    """Test target range computation around the current tick."""

    def test_range_centred_on_current_tick(self):
        """Tick 500, spacing 10, half width 10 gives [400, 600]."""
        tick_range = LiquidityUtils.compute_tick_range(500, 10, 10)
        assert tick_range.lower == 400
        assert tick_range.upper == 600

    def test_current_tick_snaps_down_to_spacing(self):
        """Ticks between boundaries snap down before widening."""
        tick_range = LiquidityUtils.compute_tick_range(509, 10, 10)
        assert (tick_range.lower, tick_range.upper) == (400, 600)

    def test_negative_tick_uses_floor(self):
        """Negative ticks round towards negative infinity."""
        tick_range = LiquidityUtils.compute_tick_range(-5, 10, 2)
        assert (tick_range.lower, tick_range.upper) == (-30, 10)

        tick_range = LiquidityUtils.compute_tick_range(-200, 60, 1)
        assert (tick_range.lower, tick_range.upper) == (-300, -180)

    def test_zero_half_width_is_widened(self):
        """A zero half width still yields a non-empty range."""
        tick_range = LiquidityUtils.compute_tick_range(500, 10, 0)
        assert (tick_range.lower, tick_range.upper) == (490, 510)

    def test_range_properties_hold_across_ticks(self):
        """lower < upper, both on spacing, and the snapped tick lies inside."""
        for spacing in (1, 10, 60, 200):
            for half_width in (0, 1, 5, 10):
                for current_tick in (-887, -61, -1, 0, 1, 59, 60, 12345):
                    tick_range = LiquidityUtils.compute_tick_range(current_tick, spacing, half_width)
                    rounded = (current_tick // spacing) * spacing

                    assert tick_range.lower < tick_range.upper
                    assert tick_range.lower % spacing == 0
                    assert tick_range.upper % spacing == 0
                    assert tick_range.lower <= rounded <= tick_range.upper

    def test_invalid_arguments(self):
        """Non-positive spacing and negative half width are rejected."""
        with pytest.raises(ValueError):
            LiquidityUtils.compute_tick_range(500, 0, 10)
        with pytest.raises(ValueError):
            LiquidityUtils.compute_tick_range(500, 10, -1)


class TestLiquidityUtils:
    """Test fee tier, slippage and formatting helpers."""

    def test_tick_spacing_for_known_tiers(self):
        assert LiquidityUtils.get_tick_spacing(100) == 1
        assert LiquidityUtils.get_tick_spacing(500) == 10
        assert LiquidityUtils.get_tick_spacing(3000) == 60
        assert LiquidityUtils.get_tick_spacing(10000) == 200

    def test_unknown_tier_falls_back_to_one(self):
        assert LiquidityUtils.get_tick_spacing(42) == 1

    def test_apply_slippage(self):
        """Slippage is applied in integer parts per million."""
        assert LiquidityUtils.apply_slippage(1_000_000, 0.1) == 999_000
        assert LiquidityUtils.apply_slippage(1_000_000, 0.5) == 995_000
        assert LiquidityUtils.apply_slippage(1000, 0) == 1000
        assert LiquidityUtils.apply_slippage(0, 0.1) == 0

    def test_apply_slippage_keeps_big_int_precision(self):
        amount = 10**30 + 7
        assert LiquidityUtils.apply_slippage(amount, 1) == amount * 990_000 // 1_000_000

    def test_format_token_amount(self):
        assert LiquidityUtils.format_token_amount(1_500_000, 6, "USDC") == "1.500000 USDC"
        assert LiquidityUtils.format_token_amount(10**18, 18) == "1.000000000000000000"


class TestErrorHandler:
    """Test error classification."""

    def test_insufficient_balance(self):
        info = ErrorHandler.handle_transaction_error(InsufficientBalanceError("need 10, have 5"))
        assert info['type'] == 'insufficient_balance'
        assert info['message'] == "need 10, have 5"

    def test_message_based_classification(self):
        assert ErrorHandler.handle_transaction_error(Exception("nonce too low"))['type'] == 'nonce'
        assert ErrorHandler.handle_transaction_error(
            Exception("execution reverted: Too little received"))['type'] == 'slippage'
        assert ErrorHandler.handle_transaction_error(
            Exception("insufficient funds for transfer"))['type'] == 'insufficient_funds'
        assert ErrorHandler.handle_transaction_error(
            Exception("execution reverted: Transaction too old"))['type'] == 'deadline'

    def test_transaction_error(self):
        info = ErrorHandler.handle_transaction_error(TransactionError("Transaction 0xabc reverted"))
        assert info['type'] == 'transaction'

    def test_unknown_error_keeps_message(self):
        info = ErrorHandler.handle_transaction_error(RuntimeError("boom"))
        assert info == {
            'type': 'unknown',
            'message': 'boom',
            'suggestion': 'Check venue connectivity and try again'
        }


class TestRetry:
    """Test retry handling for read-only venue queries."""

    def test_retryable_errors(self):
        assert is_retryable_error(requests.ConnectionError("reset"))
        assert is_retryable_error(requests.Timeout())
        assert is_retryable_error(Exception("503 Service Unavailable"))
        assert not is_retryable_error(ValueError("bad value"))

    def test_domain_errors_are_never_retried(self):
        assert not is_retryable_error(InsufficientBalanceError("connection"))
        assert not is_retryable_error(ConfigurationError("timeout"))

    @patch('utils.time.sleep')
    def test_retries_until_success(self, mock_sleep):
        func = Mock(side_effect=[requests.ConnectionError("down"), requests.ConnectionError("down"), "ok"])
        func.__name__ = "query"

        wrapped = retry_on_failure(max_retries=3, delay=2.0, backoff_factor=1.5)(func)

        assert wrapped() == "ok"
        assert func.call_count == 3
        assert [call.args[0] for call in mock_sleep.call_args_list] == [2.0, 3.0]

    @patch('utils.time.sleep')
    def test_non_retryable_error_raises_immediately(self, mock_sleep):
        func = Mock(side_effect=ValueError("malformed"))
        func.__name__ = "query"

        with pytest.raises(ValueError):
            retry_on_failure(max_retries=3)(func)()

        assert func.call_count == 1
        mock_sleep.assert_not_called()

    @patch('utils.time.sleep')
    def test_gives_up_after_max_retries(self, mock_sleep):
        func = Mock(side_effect=requests.Timeout("slow"))
        func.__name__ = "query"

        with pytest.raises(requests.Timeout):
            retry_on_failure(max_retries=2, delay=0.1)(func)()

        assert func.call_count == 3
        assert mock_sleep.call_count == 2


class TestLogger:
    """Test logging setup."""

    def test_setup_logging_creates_log_directory(self, tmp_path):
        log_file = tmp_path / "nested" / "rebalancer.log"
        root = logging.getLogger()
        try:
            Logger.setup_logging(level="DEBUG", log_file=str(log_file))
            logging.getLogger("test").info("hello")

            assert log_file.parent.is_dir()
            assert root.level == logging.DEBUG
        finally:
            for handler in list(root.handlers):
                if isinstance(handler, logging.FileHandler):
                    handler.close()
                    root.removeHandler(handler)

        assert "hello" in log_file.read_text()
