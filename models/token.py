"""
Token metadata as a tagged variant.
"""
from dataclasses import dataclass
from enum import Enum
from typing import Optional

ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"
NATIVE_SENTINEL = "0xeeeeeeeeeeeeeeeeeeeeeeeeeeeeeeeeeeeeeeee"


class TokenKind(Enum):
    """How a pool side is represented on chain"""
    ERC20 = "erc20"
    NATIVE = "native"


@dataclass(frozen=True)
class TokenInfo:
    """Display and identity metadata for one side of a pool"""
    kind: TokenKind
    address: str
    symbol: str = "UNKNOWN"
    decimals: int = 18

    @classmethod
    def from_address(cls, address: str, symbol: str = "UNKNOWN", decimals: int = 18) -> 'TokenInfo':
        """Build token info, tagging the zero address and the 0xeee... sentinel as native"""
        lowered = (address or "").lower()
        kind = TokenKind.NATIVE if lowered in (ZERO_ADDRESS, NATIVE_SENTINEL) else TokenKind.ERC20
        return cls(kind=kind, address=address or "", symbol=symbol, decimals=decimals)


def normalize_token_address(info: Optional[TokenInfo], fallback: str, wrapped_native: str) -> str:
    """
    Derive the canonical token address used in pool and router calls

    Args:
        info: Token metadata, may be missing
        fallback: Address to use when metadata is missing or empty
        wrapped_native: Wrapped native token address (e.g. WETH)

    Returns:
        Canonical token address
    """
    if info is None:
        return fallback
    if info.kind is TokenKind.NATIVE:
        return wrapped_native
    if info.kind is TokenKind.ERC20:
        return info.address or fallback
    raise ValueError(f"Unhandled token kind: {info.kind}")
