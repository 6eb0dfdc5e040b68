"""Shared fixtures: an in-memory L1 and L2 with a fake bridgehub."""

import pytest

from hyperchain_bootstrap.config import DeploymentConfig, create_test_deployment_config
from hyperchain_bootstrap.executor import StepExecutor
from hyperchain_bootstrap.nonce import NonceAllocator
from hyperchain_bootstrap.registry import AddressRegistry
from hyperchain_bootstrap.sequencer import DeploymentSequencer
from hyperchain_bootstrap.steps import StepContext
from hyperchain_bootstrap.testing import ANVIL_DEPLOYER, ANVIL_OWNER, FakeBridgehub, InMemoryChain, InMemoryRollup, StaticArtifactStore

#: Fixed salt so tests can predict addresses
TEST_SALT = b"\x01" * 32


@pytest.fixture()
def rollup() -> InMemoryRollup:
    return InMemoryRollup()


@pytest.fixture()
def l1(rollup) -> InMemoryChain:
    return InMemoryChain(ANVIL_DEPLOYER, rollup=rollup)


@pytest.fixture()
def bridgehub(l1) -> FakeBridgehub:
    return FakeBridgehub(l1)


@pytest.fixture()
def artifacts() -> StaticArtifactStore:
    return StaticArtifactStore()


@pytest.fixture()
def config() -> DeploymentConfig:
    return create_test_deployment_config(ANVIL_DEPLOYER, ANVIL_OWNER, create2_salt=TEST_SALT)


@pytest.fixture()
def registry() -> AddressRegistry:
    return AddressRegistry()


@pytest.fixture()
def make_sequencer(l1, rollup, artifacts):
    """Build a sequencer for a config and registry."""

    def _make(config: DeploymentConfig, registry: AddressRegistry, starting_nonce: int | None = None, max_attempts: int = 1) -> DeploymentSequencer:
        allocator = NonceAllocator(l1, config.deployer_address, starting_nonce, config.gas_price_policy)
        executor = StepExecutor(l1, registry, inclusion_timeout=1)
        return DeploymentSequencer(
            config=config,
            executor=executor,
            allocator=allocator,
            registry=registry,
            l1=l1,
            l2=rollup,
            artifacts=artifacts,
            salt=config.create2_salt,
            max_attempts=max_attempts,
        )

    return _make


@pytest.fixture()
def make_context(l1, rollup, artifacts, config):
    """Build a step context over a registry."""

    def _make(registry: AddressRegistry) -> StepContext:
        return StepContext(
            config=config,
            registry=registry.snapshot(),
            salt=TEST_SALT,
            gas_price=l1.gas_price,
            l1=l1,
            l2=rollup,
            artifacts=artifacts,
        )

    return _make
