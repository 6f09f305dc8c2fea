"""
Tests for NonceManager.
"""

import asyncio

import pytest
from unittest.mock import AsyncMock, MagicMock

from impersonator.core.execution.nonce_manager import NonceManager


ADDRESS = "0x1111111111111111111111111111111111111111"
OTHER = "0x2222222222222222222222222222222222222222"


def make_provider(pending: int = 5) -> MagicMock:
    provider = MagicMock()
    provider.get_transaction_count = AsyncMock(return_value=pending)
    return provider


@pytest.mark.asyncio
async def test_local_increment_then_network_jump():
    provider = make_provider(5)
    manager = NonceManager(provider)

    assert await manager.get_next_nonce(ADDRESS) == 5
    assert await manager.get_next_nonce(ADDRESS) == 6

    provider.get_transaction_count.return_value = 10
    assert await manager.get_next_nonce(ADDRESS) == 10
    assert await manager.get_next_nonce(ADDRESS) == 11


@pytest.mark.asyncio
async def test_queries_pending_block():
    provider = make_provider(0)
    manager = NonceManager(provider)

    await manager.get_next_nonce(ADDRESS)

    provider.get_transaction_count.assert_awaited_once_with(ADDRESS, "pending")


@pytest.mark.asyncio
async def test_refresh_overwrites_local_high_water_mark():
    provider = make_provider(5)
    manager = NonceManager(provider)

    for _ in range(3):
        await manager.get_next_nonce(ADDRESS)
    assert manager.get_state(ADDRESS).last_issued == 7

    provider.get_transaction_count.return_value = 6
    assert await manager.refresh_nonce(ADDRESS) == 6
    assert manager.get_state(ADDRESS).last_issued == 6

    # Next issue continues from the refreshed value
    assert await manager.get_next_nonce(ADDRESS) == 7


@pytest.mark.asyncio
async def test_addresses_are_independent():
    provider = make_provider(3)
    manager = NonceManager(provider)

    assert await manager.get_next_nonce(ADDRESS) == 3
    assert await manager.get_next_nonce(ADDRESS) == 4
    assert await manager.get_next_nonce(OTHER) == 3


@pytest.mark.asyncio
async def test_state_keyed_case_insensitively():
    provider = make_provider(1)
    manager = NonceManager(provider)
    mixed = "0xAbCdEf0000000000000000000000000000000000"

    await manager.get_next_nonce(mixed)

    assert manager.get_state(mixed.lower()) is not None
    manager.clear_state(mixed.upper().replace("0X", "0x"))
    assert manager.get_state(mixed) is None


@pytest.mark.asyncio
async def test_concurrent_calls_issue_distinct_nonces():
    provider = MagicMock()

    async def slow_count(address, block):
        await asyncio.sleep(0.01)
        return 5

    provider.get_transaction_count = slow_count
    manager = NonceManager(provider)

    nonces = await asyncio.gather(*(manager.get_next_nonce(ADDRESS) for _ in range(4)))

    assert sorted(nonces) == [5, 6, 7, 8]
