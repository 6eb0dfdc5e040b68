"""Nonce and gas price allocation."""

from decimal import Decimal

import pytest

from hyperchain_bootstrap.errors import NonceAcquisitionFailure
from hyperchain_bootstrap.nonce import GasPricePolicy, NonceAllocator
from hyperchain_bootstrap.testing import ANVIL_DEPLOYER, InMemoryChain


def test_allocate_nonce_gap_free():
    """Nonces start from the pending count and increase by one."""
    l1 = InMemoryChain(ANVIL_DEPLOYER, starting_nonce=5)
    allocator = NonceAllocator(l1, ANVIL_DEPLOYER)
    assert not allocator.synced

    nonces = [allocator.allocate_nonce() for _ in range(10)]
    assert nonces == list(range(5, 15))
    assert allocator.synced


def test_explicit_starting_nonce_skips_network():
    """An explicit starting nonce is used as is."""
    l1 = InMemoryChain(ANVIL_DEPLOYER, starting_nonce=5)
    l1.fail_transaction_count = True
    allocator = NonceAllocator(l1, ANVIL_DEPLOYER, starting_nonce=12)
    assert allocator.allocate_nonce() == 12
    assert allocator.allocate_nonce() == 13


def test_nonce_acquisition_failure():
    """A failed nonce read is reported as such."""
    l1 = InMemoryChain(ANVIL_DEPLOYER)
    l1.fail_transaction_count = True
    allocator = NonceAllocator(l1, ANVIL_DEPLOYER)
    with pytest.raises(NonceAcquisitionFailure):
        allocator.allocate_nonce()


def test_sync_nonce_restarts_from_network():
    """After a resync the network count is used again."""
    l1 = InMemoryChain(ANVIL_DEPLOYER, starting_nonce=3)
    allocator = NonceAllocator(l1, ANVIL_DEPLOYER)
    assert allocator.allocate_nonce() == 3
    assert allocator.allocate_nonce() == 4
    assert allocator.sync_nonce() == 3
    assert allocator.allocate_nonce() == 3


def test_gas_price_multiplier():
    """Network price is marked up and cached until refreshed."""
    l1 = InMemoryChain(ANVIL_DEPLOYER, gas_price=10 * 10**9)
    allocator = NonceAllocator(l1, ANVIL_DEPLOYER)
    assert allocator.current_gas_price() == 14 * 10**9

    l1.gas_price = 20 * 10**9
    assert allocator.current_gas_price() == 14 * 10**9
    assert allocator.refresh_gas_price() == 28 * 10**9
    assert allocator.current_gas_price() == 28 * 10**9


def test_gas_price_override():
    """A fixed gas price ignores the network."""
    l1 = InMemoryChain(ANVIL_DEPLOYER, gas_price=10 * 10**9)
    allocator = NonceAllocator(l1, ANVIL_DEPLOYER, gas_price_policy=GasPricePolicy(override=30 * 10**9))
    assert allocator.current_gas_price() == 30 * 10**9


def test_gas_price_rounds_down():
    policy = GasPricePolicy(multiplier=Decimal("1.4"))
    assert policy.apply(3) == 4
    assert policy.apply(0) == 0
