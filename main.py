#!/usr/bin/env python3
"""
Main application for the LP range rebalancer.
Validates configuration, wires the components together and runs the poll loop.
"""
import logging
import signal
import sys

from config import Config
from automated_rebalancer import AutomatedRebalancer
from liquidity_planner import LiquidityPlanner
from position_monitor import PollLoop, PositionMonitor
from subgraph_client import SubgraphClient
from uniswap_client import UniswapV3Client
from utils import ConfigurationError, Logger

logger = logging.getLogger(__name__)


class RebalancerApp:
    """Main application class for the range rebalancer"""

    def __init__(self, config: Config):
        """
        Initialize the application

        Args:
            config: Validated configuration object
        """
        self.config = config
        self.client = UniswapV3Client(config)
        self.position_source = SubgraphClient(config)
        self.planner = LiquidityPlanner(self.client, self.client, swap_safe_mode=config.SWAP_SAFE_MODE)
        self.rebalancer = AutomatedRebalancer(config, self.client, self.planner)
        self.monitor = PositionMonitor(config, self.position_source, self.rebalancer)
        self.loop = PollLoop(self.monitor, config.poll_interval_seconds)

        self.config.check_signer(self.client.wallet_address)
        logger.info("RebalancerApp initialized")

    def signal_handler(self, signum, frame):
        """Handle shutdown signals"""
        logger.info(f"Received signal {signum}, shutting down gracefully...")
        self.loop.stop()

    def run(self):
        """Run the poll loop until a shutdown signal arrives"""
        signal.signal(signal.SIGINT, self.signal_handler)
        signal.signal(signal.SIGTERM, self.signal_handler)

        chain = self.config.get_chain_info()
        logger.info("Starting LP range rebalancer")
        logger.info(f"Chain: {chain['chain_name']} ({chain['chain_id']})")
        logger.info(f"Owner: {self.config.LP_OWNER_ADDRESS}")
        logger.info(f"Pool: {self.config.POOL_ID}")
        logger.info(f"Tick half width: {self.config.TICK_HALF_WIDTH}, slippage: {self.config.SLIPPAGE_PERCENT}%")
        logger.info(f"Swap safe mode: {self.config.SWAP_SAFE_MODE}")
        logger.info(f"Poll interval: {self.config.poll_interval_seconds} seconds")
        logger.info("Press Ctrl+C to stop")

        self.loop.run_forever()
        logger.info("LP range rebalancer stopped")


def main() -> int:
    """Entry point; returns the process exit status"""
    try:
        config = Config()
    except ConfigurationError as e:
        Logger.setup_logging()
        logger.error(f"Configuration could not be loaded: {e}")
        return 1

    Logger.setup_logging(level=config.LOG_LEVEL, log_file=config.LOG_FILE)

    try:
        config.validate_config()
        logger.info("Configuration validation passed")
    except ConfigurationError as e:
        logger.error(f"Configuration validation failed: {e}")
        return 1

    try:
        app = RebalancerApp(config)
    except ConnectionError as e:
        logger.error(f"Failed to start: {e}")
        return 1

    app.run()
    return 0


if __name__ == "__main__":
    sys.exit(main())
