"""
Configuration management for the LP range rebalancer.
Loads settings from environment variables.
"""
import logging
import os
from typing import Dict, Any, List, Optional

from dotenv import load_dotenv
from web3 import Web3

from utils import ConfigurationError

logger = logging.getLogger(__name__)

# Load environment variables from .env (does not override the real environment)
load_dotenv()


def _env_bool(name: str, default: bool = True) -> bool:
    """Only the literal 'false' turns a default-on flag off"""
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() != 'false'


def _env_number(name: str, default: str, cast=int):
    """Parse a numeric variable, naming it when the value is malformed"""
    raw = os.getenv(name, default)
    try:
        return cast(raw)
    except ValueError:
        raise ConfigurationError(f"{name} must be a number, got '{raw}'")


class Config:
    """
    Runtime configuration, built once at startup and passed to every component.

    Values are read from the environment when the object is constructed so a
    fresh Config reflects the current environment.
    """

    def __init__(self):
        # Monitoring target
        self.LP_OWNER_ADDRESS = os.getenv('LP_OWNER_ADDRESS', '')
        self.POOL_ID = os.getenv('POOL_ID', '')

        # Signing key - raw hex or a ${VARIABLE_NAME} reference to another variable
        self.PRIVATE_KEY = self._resolve_private_key(os.getenv('PRIVATE_KEY'))

        # Network settings
        self.ETHEREUM_RPC_URL = os.getenv('ETHEREUM_RPC_URL', 'https://mainnet.infura.io/v3/YOUR_PROJECT_ID')
        self.CHAIN_ID = _env_number('CHAIN_ID', '1', int)
        self.CHAIN_NAME = os.getenv('CHAIN_NAME', 'Ethereum Mainnet')

        # Position indexer
        self.SUBGRAPH_URL = os.getenv(
            'SUBGRAPH_URL',
            'https://gateway.thegraph.com/api/subgraphs/id/5zvR82QoaXYFyDEKLZ9t6v9adgnptxYpKpSbxtgVENFV'
        )
        self.SUBGRAPH_API_KEY = os.getenv('SUBGRAPH_API_KEY', '')
        self.REQUEST_TIMEOUT_SECONDS = _env_number('REQUEST_TIMEOUT_SECONDS', '30', float)

        # Contracts (mainnet defaults)
        self.UNISWAP_V3_POSITION_MANAGER = os.getenv(
            'UNISWAP_V3_POSITION_MANAGER', '0xC36442b4a4522E871399CD717aBDD847Ab11FE88')
        self.UNISWAP_V3_ROUTER = os.getenv('UNISWAP_V3_ROUTER', '0x68b3465833fb72A70ecDF485E0e4C7bD8665Fc45')
        self.UNISWAP_V3_QUOTER = os.getenv('UNISWAP_V3_QUOTER', '0x61fFE014bA17989E743c5F6cB21bF9697530B21e')
        self.WETH_ADDRESS = os.getenv('WETH_ADDRESS', '0xC02aaA39b223FE8D0A0e5C4F27eAD9083C756Cc2')

        # Rebalancing
        self.SLIPPAGE_PERCENT = _env_number('SLIPPAGE_PERCENT', '0.1', float)
        self.POLL_INTERVAL_MS = _env_number('POLL_INTERVAL_MS', '60000', int)
        self.TICK_HALF_WIDTH = _env_number('TICK_HALF_WIDTH', '10', int)
        self.SWAP_SAFE_MODE = _env_bool('SWAP_SAFE_MODE', default=True)

        # Transactions
        self.MAX_GAS_LIMIT = _env_number('MAX_GAS_LIMIT', '1000000', int)
        self.TX_TIMEOUT_SECONDS = _env_number('TX_TIMEOUT_SECONDS', '180', int)
        self.TX_DEADLINE_SECONDS = _env_number('TX_DEADLINE_SECONDS', '1800', int)

        # Error handling
        self.MAX_RETRIES = _env_number('MAX_RETRIES', '3', int)
        self.RETRY_DELAY_SECONDS = _env_number('RETRY_DELAY_SECONDS', '2.0', float)

        # Logging
        self.LOG_LEVEL = os.getenv('LOG_LEVEL', 'INFO')
        self.LOG_FILE = os.getenv('LOG_FILE', 'logs/rebalancer.log')

    @staticmethod
    def _resolve_private_key(raw: Optional[str]) -> Optional[str]:
        """Resolve ${VARIABLE_NAME} references, pass raw keys through"""
        if not raw:
            return None
        raw = raw.strip()
        if raw.startswith('${') and raw.endswith('}'):
            env_var_name = raw[2:-1]
            value = os.getenv(env_var_name)
            if not value:
                raise ConfigurationError(f"Environment variable '{env_var_name}' referenced in PRIVATE_KEY is not set")
            return value.strip()
        return raw

    @property
    def poll_interval_seconds(self) -> float:
        return self.POLL_INTERVAL_MS / 1000.0

    def validate_config(self) -> bool:
        """Validate that required configuration is present"""
        errors: List[str] = []

        if not self.PRIVATE_KEY:
            errors.append("PRIVATE_KEY is required to sign rebalancing transactions")

        if not self.LP_OWNER_ADDRESS:
            errors.append("LP_OWNER_ADDRESS is required")
        elif not self._is_valid_address(self.LP_OWNER_ADDRESS):
            errors.append(f"Invalid LP_OWNER_ADDRESS format: {self.LP_OWNER_ADDRESS}")

        if not self.POOL_ID:
            errors.append("POOL_ID is required")
        elif not self._is_valid_address(self.POOL_ID):
            errors.append(f"Invalid POOL_ID format: {self.POOL_ID}")

        if not self.ETHEREUM_RPC_URL or 'YOUR_PROJECT_ID' in self.ETHEREUM_RPC_URL:
            errors.append("ETHEREUM_RPC_URL must be set to a valid RPC endpoint")

        if not self.SUBGRAPH_URL:
            errors.append("SUBGRAPH_URL is required")

        for name in ('UNISWAP_V3_POSITION_MANAGER', 'UNISWAP_V3_ROUTER', 'UNISWAP_V3_QUOTER', 'WETH_ADDRESS'):
            value = getattr(self, name)
            if not self._is_valid_address(value):
                errors.append(f"Invalid {name} format: {value}")

        if self.SLIPPAGE_PERCENT < 0 or self.SLIPPAGE_PERCENT >= 100:
            errors.append(f"SLIPPAGE_PERCENT must be in [0, 100), got {self.SLIPPAGE_PERCENT}")

        if self.POLL_INTERVAL_MS <= 0:
            errors.append(f"POLL_INTERVAL_MS must be positive, got {self.POLL_INTERVAL_MS}")

        if self.TICK_HALF_WIDTH < 0:
            errors.append(f"TICK_HALF_WIDTH must not be negative, got {self.TICK_HALF_WIDTH}")

        if errors:
            raise ConfigurationError("Configuration validation failed:\n" + "\n".join(f"- {error}" for error in errors))

        return True

    def check_signer(self, signer_address: str) -> bool:
        """
        Warn when the signing account differs from the monitored owner

        Monitoring and signing addresses may legitimately differ, so this never raises.

        Args:
            signer_address: Address derived from PRIVATE_KEY

        Returns:
            True if the addresses match
        """
        if signer_address.lower() != self.LP_OWNER_ADDRESS.lower():
            logger.warning(
                f"Signer address {signer_address} does not match monitored address {self.LP_OWNER_ADDRESS}"
            )
            return False
        return True

    def get_chain_info(self) -> Dict[str, Any]:
        """Get chain and contract information"""
        return {
            'chain_id': self.CHAIN_ID,
            'chain_name': self.CHAIN_NAME,
            'position_manager': self.UNISWAP_V3_POSITION_MANAGER,
            'router': self.UNISWAP_V3_ROUTER,
            'quoter': self.UNISWAP_V3_QUOTER,
            'weth': self.WETH_ADDRESS
        }

    @staticmethod
    def _is_valid_address(address: str) -> bool:
        """Check if address is a valid EVM address"""
        if not address:
            return False

        if not (address.startswith('0x') and len(address) == 42):
            return False

        return Web3.is_address(address.lower())
