"""Native and ERC-20 balances for the impersonated wallet, read over eth_call."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Dict, List, Optional

from eth_utils import function_signature_to_4byte_selector

from ..config import settings
from ..core.validation import validate_address
from ..providers.base import NetworkProvider


logger = logging.getLogger(__name__)

NATIVE_TOKEN_ADDRESS = "0x0000000000000000000000000000000000000000"


def _selector(signature: str) -> str:
    return "0x" + function_signature_to_4byte_selector(signature).hex()


BALANCE_OF_SELECTOR = _selector("balanceOf(address)")
DECIMALS_SELECTOR = _selector("decimals()")
SYMBOL_SELECTOR = _selector("symbol()")
NAME_SELECTOR = _selector("name()")


COMMON_TOKENS: Dict[int, List[Dict[str, Any]]] = {
    1: [
        {"address": "0xdAC17F958D2ee523a2206206994597C13D831ec7", "symbol": "USDT", "name": "Tether USD", "decimals": 6},
        {"address": "0xA0b86991c6218b36c1d19D4a2e9Eb0cE3606eB48", "symbol": "USDC", "name": "USD Coin", "decimals": 6},
        {"address": "0x6B175474E89094C44Da98b954EedeAC495271d0F", "symbol": "DAI", "name": "Dai Stablecoin", "decimals": 18},
    ],
    137: [
        {"address": "0xc2132D05D31c914a87C6611C10748AEb04B58e8F", "symbol": "USDT", "name": "Tether USD", "decimals": 6},
        {"address": "0x2791Bca1f2de4661ED88A30C99A7a9449Aa84174", "symbol": "USDC", "name": "USD Coin", "decimals": 6},
    ],
    42161: [
        {"address": "0xFd086bC7CD5C481DCC9C85ebE478A1C0b69FCbb9", "symbol": "USDT", "name": "Tether USD", "decimals": 6},
        {"address": "0xFF970A61A04b1cA14834A43f5dE4533eBDDB5CC8", "symbol": "USDC", "name": "USD Coin", "decimals": 6},
    ],
}


@dataclass
class TokenBalance:
    token_address: str
    symbol: str
    name: str
    decimals: int
    balance: int

    @property
    def balance_formatted(self) -> str:
        return format_units(self.balance, self.decimals)


@dataclass
class WalletBalance:
    native: int
    tokens: List[TokenBalance] = field(default_factory=list)

    @property
    def native_formatted(self) -> str:
        return format_units(self.native, 18)


def format_units(amount: int, decimals: int) -> str:
    if decimals == 0:
        return str(amount)
    value = Decimal(amount) / (Decimal(10) ** decimals)
    text = format(value.normalize(), "f")
    return text if "." in text else f"{text}.0"


def _strip_0x(value: str) -> str:
    return value[2:] if value and value.startswith("0x") else (value or "")


def _decode_uint(result: str) -> int:
    raw = _strip_0x(result)
    if not raw:
        raise ValueError("Empty call result")
    return int(raw[:64], 16)


def _decode_string(result: str) -> str:
    """ABI string, or a bytes32 for tokens that predate the string return type."""
    data = bytes.fromhex(_strip_0x(result))
    if len(data) == 32:
        return data.rstrip(b"\x00").decode("utf-8", errors="replace")
    if len(data) < 64:
        return ""
    offset = int.from_bytes(data[0:32], "big")
    length = int.from_bytes(data[offset:offset + 32], "big")
    return data[offset + 32:offset + 32 + length].decode("utf-8", errors="replace")


async def get_native_balance(address: str, provider: NetworkProvider) -> int:
    try:
        return await provider.get_balance(address)
    except Exception as e:
        logger.error(f"Failed to get native balance for {address}: {e}")
        return 0


async def get_token_balance(
    token_address: str,
    wallet_address: str,
    provider: NetworkProvider,
    timeout_s: Optional[float] = None,
) -> Optional[TokenBalance]:
    """balanceOf + metadata for one token; None if the lookup fails or times out."""
    token = validate_address(token_address)
    wallet = validate_address(wallet_address)
    if not (token.valid and wallet.valid):
        logger.warning(f"Skipping token {token_address}: invalid address")
        return None

    timeout = timeout_s if timeout_s is not None else settings.token_balance_timeout_ms / 1000
    owner_arg = wallet.value[2:].lower().rjust(64, "0")

    try:
        balance_raw, decimals_raw, symbol_raw, name_raw = await asyncio.wait_for(
            asyncio.gather(
                provider.call({"to": token.value, "data": BALANCE_OF_SELECTOR + owner_arg}),
                provider.call({"to": token.value, "data": DECIMALS_SELECTOR}),
                provider.call({"to": token.value, "data": SYMBOL_SELECTOR}),
                provider.call({"to": token.value, "data": NAME_SELECTOR}),
            ),
            timeout=timeout,
        )
        decimals = _decode_uint(decimals_raw)
        if not 0 <= decimals <= 255:
            raise ValueError(f"Invalid token decimals: {decimals}")

        return TokenBalance(
            token_address=token.value,
            symbol=_decode_string(symbol_raw) or "UNKNOWN",
            name=_decode_string(name_raw) or "Unknown Token",
            decimals=decimals,
            balance=_decode_uint(balance_raw),
        )
    except asyncio.TimeoutError:
        logger.warning(f"Token balance fetch timeout for {token.value}")
        return None
    except Exception as e:
        logger.error(f"Failed to get token balance for {token.value}: {e}")
        return None


async def get_wallet_balance(
    address: str,
    network_id: int,
    provider: NetworkProvider,
    token_addresses: Optional[List[str]] = None,
) -> WalletBalance:
    native = await get_native_balance(address, provider)

    if token_addresses is None:
        token_addresses = [t["address"] for t in COMMON_TOKENS.get(network_id, [])]

    results = await asyncio.gather(
        *(get_token_balance(token, address, provider) for token in token_addresses)
    )
    return WalletBalance(native=native, tokens=[r for r in results if r is not None])


def to_safe_balances(balance: WalletBalance) -> List[Dict[str, Any]]:
    """Shape a WalletBalance the way embedded apps expect a balances reply."""
    items = [
        {
            "tokenInfo": {
                "type": "NATIVE_TOKEN",
                "address": NATIVE_TOKEN_ADDRESS,
                "decimals": 18,
                "symbol": "ETH",
                "name": "Ether",
                "logoUri": "",
            },
            "balance": str(balance.native),
            "fiatBalance": "0",
            "fiatConversion": "0",
        }
    ]
    for token in balance.tokens:
        items.append({
            "tokenInfo": {
                "type": "ERC20",
                "address": token.token_address,
                "decimals": token.decimals,
                "symbol": token.symbol,
                "name": token.name,
                "logoUri": "",
            },
            "balance": str(token.balance),
            "fiatBalance": "0",
            "fiatConversion": "0",
        })
    return [{"fiatTotal": "0", "items": items}]
