"""
Tests for wallet balance lookups.
"""

import asyncio

import pytest
from unittest.mock import AsyncMock, MagicMock

from impersonator.services.balance import (
    BALANCE_OF_SELECTOR,
    DECIMALS_SELECTOR,
    NAME_SELECTOR,
    SYMBOL_SELECTOR,
    format_units,
    get_native_balance,
    get_token_balance,
    get_wallet_balance,
    to_safe_balances,
)


WALLET = "0x9999999999999999999999999999999999999999"
TOKEN = "0x3000000000000000000000000000000000000003"


def abi_string(text: str) -> str:
    raw = text.encode()
    padded = raw.ljust(32 * ((len(raw) + 31) // 32), b"\x00")
    return "0x" + f"{32:064x}" + f"{len(raw):064x}" + padded.hex()


def token_provider(balance=1_500_000, decimals=6, symbol="TKN", name="Test Token") -> MagicMock:
    async def call(tx, block="latest"):
        data = tx["data"]
        if data.startswith(BALANCE_OF_SELECTOR):
            return "0x" + f"{balance:064x}"
        if data == DECIMALS_SELECTOR:
            return "0x" + f"{decimals:064x}"
        if data == SYMBOL_SELECTOR:
            return abi_string(symbol)
        if data == NAME_SELECTOR:
            return abi_string(name)
        raise AssertionError(f"unexpected call {data}")

    provider = MagicMock()
    provider.call = AsyncMock(side_effect=call)
    provider.get_balance = AsyncMock(return_value=2 * 10**18)
    return provider


def test_format_units():
    assert format_units(1_500_000, 6) == "1.5"
    assert format_units(10**18, 18) == "1.0"
    assert format_units(0, 18) == "0.0"
    assert format_units(42, 0) == "42"


@pytest.mark.asyncio
async def test_token_balance_decodes_metadata():
    provider = token_provider()

    balance = await get_token_balance(TOKEN, WALLET, provider)

    assert balance.symbol == "TKN"
    assert balance.name == "Test Token"
    assert balance.decimals == 6
    assert balance.balance == 1_500_000
    assert balance.balance_formatted == "1.5"

    balance_call = next(
        c.args[0] for c in provider.call.await_args_list
        if c.args[0]["data"].startswith(BALANCE_OF_SELECTOR)
    )
    assert balance_call["data"].endswith("9" * 40)


@pytest.mark.asyncio
async def test_bytes32_symbol_supported():
    provider = token_provider()
    original = provider.call.side_effect

    async def call(tx, block="latest"):
        if tx["data"] == SYMBOL_SELECTOR:
            return "0x" + b"MKR".ljust(32, b"\x00").hex()
        return await original(tx, block)

    provider.call.side_effect = call

    balance = await get_token_balance(TOKEN, WALLET, provider)

    assert balance.symbol == "MKR"


@pytest.mark.asyncio
async def test_token_balance_none_on_failure():
    provider = MagicMock()
    provider.call = AsyncMock(side_effect=RuntimeError("execution reverted"))

    assert await get_token_balance(TOKEN, WALLET, provider) is None


@pytest.mark.asyncio
async def test_token_balance_none_on_timeout():
    async def slow(tx, block="latest"):
        await asyncio.sleep(1)

    provider = MagicMock()
    provider.call = AsyncMock(side_effect=slow)

    assert await get_token_balance(TOKEN, WALLET, provider, timeout_s=0.01) is None


@pytest.mark.asyncio
async def test_invalid_token_address_skipped():
    provider = token_provider()

    assert await get_token_balance("not-an-address", WALLET, provider) is None
    provider.call.assert_not_awaited()


@pytest.mark.asyncio
async def test_native_balance_zero_on_error():
    provider = MagicMock()
    provider.get_balance = AsyncMock(side_effect=RuntimeError("node down"))

    assert await get_native_balance(WALLET, provider) == 0


@pytest.mark.asyncio
async def test_wallet_balance_and_safe_shape():
    provider = token_provider()

    balance = await get_wallet_balance(WALLET, 1, provider, token_addresses=[TOKEN])
    [group] = to_safe_balances(balance)

    assert balance.native == 2 * 10**18
    assert balance.native_formatted == "2.0"
    assert group["fiatTotal"] == "0"
    assert [item["tokenInfo"]["type"] for item in group["items"]] == ["NATIVE_TOKEN", "ERC20"]
    assert group["items"][1]["tokenInfo"]["symbol"] == "TKN"
    assert group["items"][1]["balance"] == "1500000"


@pytest.mark.asyncio
async def test_unknown_network_has_no_default_tokens():
    provider = token_provider()

    balance = await get_wallet_balance(WALLET, 999, provider)

    assert balance.tokens == []
    provider.call.assert_not_awaited()
