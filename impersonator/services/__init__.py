"""Service layer helpers"""

from .balance import (
    COMMON_TOKENS,
    TokenBalance,
    WalletBalance,
    get_native_balance,
    get_token_balance,
    get_wallet_balance,
    to_safe_balances,
)

__all__ = [
    "COMMON_TOKENS",
    "TokenBalance",
    "WalletBalance",
    "get_native_balance",
    "get_token_balance",
    "get_wallet_balance",
    "to_safe_balances",
]
