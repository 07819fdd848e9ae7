"""
Uniswap V3 client for interacting with the liquidity venue.
Handles position reads, ratio estimates, swap quotes, payload construction
and transaction execution for the signer account.
"""
import logging
from typing import Dict, Any, Optional, Tuple

from eth_account import Account
from hexbytes import HexBytes
from web3 import Web3
from web3.exceptions import ContractLogicError, TimeExhausted

import liquidity_math
from config import Config
from liquidity_planner import EstimateDirection
from models import LiquidityTarget, SwapQuote, TickRange, Withdrawal
from utils import (
    FEE_TIER_SPACING,
    ConfigurationError,
    LiquidityUtils,
    Logger,
    TransactionError,
    VenueQueryError,
    retry_on_failure,
)

logger = logging.getLogger(__name__)

MAX_UINT128 = (1 << 128) - 1


def _struct(name: str, components: list) -> Dict[str, Any]:
    return {
        "name": name,
        "type": "tuple",
        "internalType": "struct",
        "components": [{"name": n, "type": t, "internalType": t} for n, t in components]
    }


def _outputs(*items) -> list:
    return [{"name": n, "type": t, "internalType": t} for n, t in items]


class UniswapV3Client:
    """Client for interacting with Uniswap V3 protocol"""

    def __init__(self, config: Config, w3: Optional[Web3] = None):
        """
        Initialize the Uniswap V3 client

        Args:
            config: Configuration object
            w3: Optional pre-built Web3 instance (a HTTP provider is created otherwise)
        """
        self.config = config

        if w3 is None:
            w3 = Web3(Web3.HTTPProvider(
                config.ETHEREUM_RPC_URL,
                request_kwargs={'timeout': config.REQUEST_TIMEOUT_SECONDS}
            ))
            if not w3.is_connected():
                raise ConnectionError(f"Failed to connect to {config.CHAIN_NAME} RPC")
        self.w3 = w3

        if config.PRIVATE_KEY:
            self.account = Account.from_key(config.PRIVATE_KEY)
            self.wallet_address = self.account.address
        else:
            self.account = None
            self.wallet_address = None

        # read-only venue queries retry on network errors
        retry = retry_on_failure(max_retries=config.MAX_RETRIES, delay=config.RETRY_DELAY_SECONDS)
        self.simulate_withdrawal = retry(self.simulate_withdrawal)
        self.quote = retry(self.quote)

        self.chain_info = config.get_chain_info()
        logger.info(f"Connected to {self.chain_info['chain_name']} (Chain ID: {self.chain_info['chain_id']})")
        if self.wallet_address:
            logger.info(f"Signer: {self.wallet_address}")

        self.position_manager_abi = self._get_position_manager_abi()
        self.router_abi = self._get_router_abi()
        self.quoter_abi = self._get_quoter_abi()
        self.erc20_abi = self._get_erc20_abi()

        self.position_manager = self.w3.eth.contract(
            address=Web3.to_checksum_address(config.UNISWAP_V3_POSITION_MANAGER),
            abi=self.position_manager_abi
        )
        self.router = self.w3.eth.contract(
            address=Web3.to_checksum_address(config.UNISWAP_V3_ROUTER),
            abi=self.router_abi
        )
        self.quoter = self.w3.eth.contract(
            address=Web3.to_checksum_address(config.UNISWAP_V3_QUOTER),
            abi=self.quoter_abi
        )

    def _get_position_manager_abi(self) -> list:
        """Get NonfungiblePositionManager ABI"""
        return [
            {
                "name": "positions",
                "type": "function",
                "stateMutability": "view",
                "inputs": [{"name": "tokenId", "type": "uint256", "internalType": "uint256"}],
                "outputs": _outputs(
                    ("nonce", "uint96"), ("operator", "address"), ("token0", "address"),
                    ("token1", "address"), ("fee", "uint24"), ("tickLower", "int24"),
                    ("tickUpper", "int24"), ("liquidity", "uint128"),
                    ("feeGrowthInside0LastX128", "uint256"), ("feeGrowthInside1LastX128", "uint256"),
                    ("tokensOwed0", "uint128"), ("tokensOwed1", "uint128")
                )
            },
            {
                "name": "decreaseLiquidity",
                "type": "function",
                "stateMutability": "payable",
                "inputs": [_struct("params", [
                    ("tokenId", "uint256"), ("liquidity", "uint128"), ("amount0Min", "uint256"),
                    ("amount1Min", "uint256"), ("deadline", "uint256")
                ])],
                "outputs": _outputs(("amount0", "uint256"), ("amount1", "uint256"))
            },
            {
                "name": "collect",
                "type": "function",
                "stateMutability": "payable",
                "inputs": [_struct("params", [
                    ("tokenId", "uint256"), ("recipient", "address"),
                    ("amount0Max", "uint128"), ("amount1Max", "uint128")
                ])],
                "outputs": _outputs(("amount0", "uint256"), ("amount1", "uint256"))
            },
            {
                "name": "mint",
                "type": "function",
                "stateMutability": "payable",
                "inputs": [_struct("params", [
                    ("token0", "address"), ("token1", "address"), ("fee", "uint24"),
                    ("tickLower", "int24"), ("tickUpper", "int24"),
                    ("amount0Desired", "uint256"), ("amount1Desired", "uint256"),
                    ("amount0Min", "uint256"), ("amount1Min", "uint256"),
                    ("recipient", "address"), ("deadline", "uint256")
                ])],
                "outputs": _outputs(
                    ("tokenId", "uint256"), ("liquidity", "uint128"),
                    ("amount0", "uint256"), ("amount1", "uint256")
                )
            },
            {
                "name": "multicall",
                "type": "function",
                "stateMutability": "payable",
                "inputs": [{"name": "data", "type": "bytes[]", "internalType": "bytes[]"}],
                "outputs": _outputs(("results", "bytes[]"))
            }
        ]

    def _get_router_abi(self) -> list:
        """Get SwapRouter02 ABI"""
        return [
            {
                "name": "exactInputSingle",
                "type": "function",
                "stateMutability": "payable",
                "inputs": [_struct("params", [
                    ("tokenIn", "address"), ("tokenOut", "address"), ("fee", "uint24"),
                    ("recipient", "address"), ("amountIn", "uint256"),
                    ("amountOutMinimum", "uint256"), ("sqrtPriceLimitX96", "uint160")
                ])],
                "outputs": _outputs(("amountOut", "uint256"))
            }
        ]

    def _get_quoter_abi(self) -> list:
        """Get QuoterV2 ABI"""
        return [
            {
                "name": "quoteExactOutputSingle",
                "type": "function",
                "stateMutability": "nonpayable",
                "inputs": [_struct("params", [
                    ("tokenIn", "address"), ("tokenOut", "address"), ("amount", "uint256"),
                    ("fee", "uint24"), ("sqrtPriceLimitX96", "uint160")
                ])],
                "outputs": _outputs(
                    ("amountIn", "uint256"), ("sqrtPriceX96After", "uint160"),
                    ("initializedTicksCrossed", "uint32"), ("gasEstimate", "uint256")
                )
            }
        ]

    def _get_erc20_abi(self) -> list:
        """Get ERC20 ABI for allowance handling"""
        return [
            {
                "name": "allowance",
                "type": "function",
                "stateMutability": "view",
                "inputs": [
                    {"name": "owner", "type": "address", "internalType": "address"},
                    {"name": "spender", "type": "address", "internalType": "address"}
                ],
                "outputs": _outputs(("", "uint256"))
            },
            {
                "name": "approve",
                "type": "function",
                "stateMutability": "nonpayable",
                "inputs": [
                    {"name": "spender", "type": "address", "internalType": "address"},
                    {"name": "amount", "type": "uint256", "internalType": "uint256"}
                ],
                "outputs": _outputs(("", "bool"))
            }
        ]

    def get_position_info(self, position_id: str) -> Dict[str, Any]:
        """Get information about a specific position"""
        position = self.position_manager.functions.positions(int(position_id)).call()
        return {
            'token_id': int(position_id),
            'token0': position[2],
            'token1': position[3],
            'fee': position[4],
            'tick_lower': position[5],
            'tick_upper': position[6],
            'liquidity': position[7],
            'tokens_owed0': position[10],
            'tokens_owed1': position[11]
        }

    def simulate_withdrawal(self, position_id: str) -> Withdrawal:
        """
        Full withdrawal of the position as it stands on chain right now

        Reads the position's current liquidity and simulates decreaseLiquidity
        for all of it with eth_call. The returned liquidity is the amount the
        withdrawal transaction must remove.

        Args:
            position_id: Position token id

        Returns:
            Withdrawal with the on-chain liquidity and amounts in smallest units
        """
        info = self.get_position_info(position_id)
        liquidity = int(info['liquidity'])
        if liquidity == 0:
            return Withdrawal(liquidity=0, amount_a=0, amount_b=0)

        params = (int(position_id), liquidity, 0, 0, self._deadline())
        amount0, amount1 = self.position_manager.functions.decreaseLiquidity(params).call({
            'from': Web3.to_checksum_address(self.config.LP_OWNER_ADDRESS)
        })
        return Withdrawal(liquidity=liquidity, amount_a=int(amount0), amount_b=int(amount1))

    def fetch_withdrawable_amounts(self, position_id: str) -> Tuple[int, int]:
        """Amounts (amount_a, amount_b) a full withdrawal would return right now"""
        withdrawal = self.simulate_withdrawal(position_id)
        return withdrawal.amount_a, withdrawal.amount_b

    def estimate_other_amount(self, target: LiquidityTarget, known_amount: int,
                              direction: EstimateDirection) -> int:
        """
        Matching amount of the other token for a deposit into target.tick_range

        Args:
            target: Target pool, range and current tick
            known_amount: Amount of the known side in smallest units
            direction: A_TO_B when known_amount is token A, B_TO_A otherwise

        Returns:
            Matching amount of the other token
        """
        tick_range = target.tick_range
        if direction is EstimateDirection.A_TO_B:
            return liquidity_math.estimate_amount1_from_amount0(
                known_amount, tick_range.lower, tick_range.upper, target.current_tick
            )
        return liquidity_math.estimate_amount0_from_amount1(
            known_amount, tick_range.lower, tick_range.upper, target.current_tick
        )

    def quote(self, amount: int, token_in: str, token_out: str, safe_mode: bool, fee_tier: int) -> SwapQuote:
        """
        Quote the input needed to receive exactly amount of token_out

        Safe mode only quotes through the target pool's fee tier; otherwise
        every standard fee tier is quoted and the cheapest route wins.

        Args:
            amount: Exact output amount wanted
            token_in: Input token address
            token_out: Output token address
            safe_mode: Restrict the route to the target fee tier
            fee_tier: Fee tier of the target pool

        Returns:
            SwapQuote with amount_in, amount_out and route (token_in, fee, token_out)
        """
        fee_tiers = [fee_tier] if safe_mode else sorted(set(FEE_TIER_SPACING) | {fee_tier})
        token_in = Web3.to_checksum_address(token_in)
        token_out = Web3.to_checksum_address(token_out)

        best: Optional[SwapQuote] = None
        for fee in fee_tiers:
            try:
                result = self.quoter.functions.quoteExactOutputSingle(
                    (token_in, token_out, amount, fee, 0)
                ).call()
            except ContractLogicError as e:
                logger.debug(f"No quote through fee tier {fee}: {e}")
                continue

            amount_in = int(result[0])
            if best is None or amount_in < best.amount_in:
                best = SwapQuote(amount_in=amount_in, amount_out=amount, route=(token_in, fee, token_out))

        if best is None:
            raise VenueQueryError(f"No swap route from {token_in} to {token_out} for {amount}")

        logger.info(f"Swap quote: {best.amount_in} in -> {best.amount_out} out via fee tier {best.route[1]}")
        return best

    def _deadline(self) -> int:
        return int(self.w3.eth.get_block('latest')['timestamp']) + self.config.TX_DEADLINE_SECONDS

    def remove_liquidity_payload(self, position_id: str, liquidity: int, amount_a: int, amount_b: int,
                                 slippage_percent: float, recipient: str):
        """
        Withdraw all liquidity and collect the tokens in one multicall

        Args:
            position_id: Position token id
            liquidity: Liquidity to remove
            amount_a: Expected token A amount
            amount_b: Expected token B amount
            slippage_percent: Slippage tolerance in percent
            recipient: Address receiving the tokens

        Returns:
            Contract function ready to be built into a transaction
        """
        token_id = int(position_id)
        decrease_params = (
            token_id,
            liquidity,
            LiquidityUtils.apply_slippage(amount_a, slippage_percent),
            LiquidityUtils.apply_slippage(amount_b, slippage_percent),
            self._deadline()
        )
        collect_params = (token_id, Web3.to_checksum_address(recipient), MAX_UINT128, MAX_UINT128)

        calls = [
            self.position_manager.encode_abi('decreaseLiquidity', args=[decrease_params]),
            self.position_manager.encode_abi('collect', args=[collect_params]),
        ]
        return self.position_manager.functions.multicall(calls)

    def swap_payload(self, token_in: str, token_out: str, amount_in: int, expected_out: int,
                     slippage_percent: float, route: Tuple, recipient: str):
        """
        Exact-input swap along a quoted route

        Args:
            token_in: Input token address
            token_out: Output token address
            amount_in: Amount of token_in to sell
            expected_out: Quoted output amount
            slippage_percent: Slippage tolerance in percent
            route: Route from the quote, (token_in, fee, token_out)
            recipient: Address receiving the output

        Returns:
            Contract function ready to be built into a transaction
        """
        fee = int(route[1])
        params = (
            Web3.to_checksum_address(token_in),
            Web3.to_checksum_address(token_out),
            fee,
            Web3.to_checksum_address(recipient),
            amount_in,
            LiquidityUtils.apply_slippage(expected_out, slippage_percent),
            0
        )
        return self.router.functions.exactInputSingle(params)

    def add_liquidity_payload(self, currency_a: str, currency_b: str, fee_tier: int, tick_range: TickRange,
                              amount_a: int, amount_b: int, slippage_percent: float, recipient: str):
        """
        Open a new position at tick_range

        Args:
            currency_a: Token0 address
            currency_b: Token1 address
            fee_tier: Pool fee tier
            tick_range: Target range
            amount_a: Token0 amount to deposit
            amount_b: Token1 amount to deposit
            slippage_percent: Slippage tolerance in percent
            recipient: Owner of the new position

        Returns:
            Contract function ready to be built into a transaction
        """
        params = (
            Web3.to_checksum_address(currency_a),
            Web3.to_checksum_address(currency_b),
            fee_tier,
            tick_range.lower,
            tick_range.upper,
            amount_a,
            amount_b,
            LiquidityUtils.apply_slippage(amount_a, slippage_percent),
            LiquidityUtils.apply_slippage(amount_b, slippage_percent),
            Web3.to_checksum_address(recipient),
            self._deadline()
        )
        return self.position_manager.functions.mint(params)

    def ensure_allowance(self, token: str, spender: str, amount: int) -> Optional[str]:
        """
        Approve spender for amount of token when the current allowance is lower

        Returns:
            Approval transaction hash, or None when no approval was needed
        """
        owner = self._require_signer()
        token_contract = self.w3.eth.contract(address=Web3.to_checksum_address(token), abi=self.erc20_abi)
        spender = Web3.to_checksum_address(spender)

        current = token_contract.functions.allowance(owner, spender).call()
        if current >= amount:
            return None

        logger.info(f"Approving {amount} of {token} for {spender}")
        return self.submit_transaction(token_contract.functions.approve(spender, amount), "approve")

    def _require_signer(self) -> str:
        if self.account is None:
            raise ConfigurationError("PRIVATE_KEY is required to submit transactions")
        return self.wallet_address

    def build_transaction(self, sender: str, payload) -> Dict[str, Any]:
        """Build a transaction for payload with a buffered, capped gas limit"""
        transaction = payload.build_transaction({
            'from': sender,
            'nonce': self.w3.eth.get_transaction_count(sender, 'pending'),
            'value': 0,
            'chainId': self.config.CHAIN_ID
        })
        transaction['gas'] = min(int(transaction['gas']) * 12 // 10, self.config.MAX_GAS_LIMIT)
        return transaction

    def sign_and_submit(self, transaction: Dict[str, Any]) -> str:
        """Sign transaction with the signer account and broadcast it"""
        self._require_signer()
        signed_txn = self.account.sign_transaction(transaction)
        tx_hash = self.w3.eth.send_raw_transaction(signed_txn.raw_transaction)
        return Web3.to_hex(tx_hash)

    def wait_for_confirmation(self, tx_hash: str) -> Dict[str, Any]:
        """
        Wait for the receipt of tx_hash

        Raises:
            TransactionError: If the transaction reverted or was not mined in time
        """
        try:
            receipt = self.w3.eth.wait_for_transaction_receipt(
                HexBytes(tx_hash), timeout=self.config.TX_TIMEOUT_SECONDS
            )
        except TimeExhausted as e:
            raise TransactionError(f"Transaction {tx_hash} not confirmed within {self.config.TX_TIMEOUT_SECONDS}s") from e

        if receipt['status'] != 1:
            raise TransactionError(f"Transaction {tx_hash} reverted")
        return receipt

    def submit_transaction(self, payload, description: str) -> str:
        """
        Build, sign, submit and await one transaction

        Args:
            payload: Contract function to execute
            description: Short label for logs

        Returns:
            Transaction hash
        """
        sender = self._require_signer()
        transaction = self.build_transaction(sender, payload)
        tx_hash = self.sign_and_submit(transaction)
        logger.info(f"{description} tx sent: {tx_hash}")

        receipt = self.wait_for_confirmation(tx_hash)
        Logger.log_transaction(tx_hash, description, True, {'gas_used': receipt.get('gasUsed')})
        return tx_hash
