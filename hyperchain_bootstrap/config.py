"""Deployment configuration.

:py:class:`DeploymentConfig` is created once per orchestrator and never mutated.
It is usually assembled from environment variables and an address snapshot
file. See :py:meth:`DeploymentConfig.from_environment`.
"""

import logging
import os
from dataclasses import dataclass, field
from decimal import Decimal
from pathlib import Path
from types import MappingProxyType
from typing import Mapping

from eth_typing import HexAddress
from eth_utils import to_bytes

from hyperchain_bootstrap.nonce import DEFAULT_GAS_PRICE_MULTIPLIER, GasPricePolicy
from hyperchain_bootstrap.registry import load_address_registry

logger = logging.getLogger(__name__)

#: Bootloader bytecode hash used by test deployments
L2_BOOTLOADER_BYTECODE_HASH = bytes.fromhex("1000100000000000000000000000000000000000000000000000000000000000")

#: Default account bytecode hash used by test deployments
L2_DEFAULT_ACCOUNT_BYTECODE_HASH = bytes.fromhex("1001000000000000000000000000000000000000000000000000000000000000")

ZERO_HASH = b"\x00" * 32

ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"

#: Stands for the native token (ETH) wherever a token address is expected
ADDRESS_ONE = "0x0000000000000000000000000000000000000001"

#: Network names where we deploy our own CREATE2 factory and Multicall3
LOCAL_NETWORKS = frozenset({"localhost", "hardhat"})

#: Chain id of the first hyperchain (Era) on local setups
DEFAULT_ERA_CHAIN_ID = 270

DEFAULT_MAX_NUMBER_OF_HYPERCHAINS = 100


def _parse_hash(value: str | bytes, name: str) -> bytes:
    if isinstance(value, bytes):
        raw = value
    else:
        raw = to_bytes(hexstr=value)
    if len(raw) != 32:
        raise ValueError(f"{name} must be 32 bytes, got {len(raw)}")
    return raw


@dataclass(slots=True, frozen=True)
class GenesisParameters:
    """Genesis and proof system constants baked into new hyperchains.

    Defaults are the values used for local and test deployments.
    """

    protocol_version: int = 21

    genesis_root: bytes = ZERO_HASH

    genesis_rollup_leaf_index: int = 0

    genesis_batch_commitment: bytes = ZERO_HASH

    priority_tx_max_gas_limit: int = 72_000_000

    recursion_node_level_vk_hash: bytes = ZERO_HASH

    recursion_leaf_level_vk_hash: bytes = ZERO_HASH

    recursion_circuits_set_vks_hash: bytes = ZERO_HASH

    @classmethod
    def from_environment(cls, environ: Mapping[str, str] | None = None) -> "GenesisParameters":
        """Read ``CONTRACTS_*`` environment variables, falling back to the defaults."""
        env = os.environ if environ is None else environ
        defaults = cls()

        def _hash(key: str, default: bytes) -> bytes:
            value = env.get(key)
            return _parse_hash(value, key) if value else default

        def _int(key: str, default: int) -> int:
            value = env.get(key)
            return int(value) if value else default

        return cls(
            protocol_version=_int("CONTRACTS_LATEST_PROTOCOL_VERSION", defaults.protocol_version),
            genesis_root=_hash("CONTRACTS_GENESIS_ROOT", defaults.genesis_root),
            genesis_rollup_leaf_index=_int("CONTRACTS_GENESIS_ROLLUP_LEAF_INDEX", defaults.genesis_rollup_leaf_index),
            genesis_batch_commitment=_hash("CONTRACTS_GENESIS_BATCH_COMMITMENT", defaults.genesis_batch_commitment),
            priority_tx_max_gas_limit=_int("CONTRACTS_PRIORITY_TX_MAX_GAS_LIMIT", defaults.priority_tx_max_gas_limit),
            recursion_node_level_vk_hash=_hash("CONTRACTS_RECURSION_NODE_LEVEL_VK_HASH", defaults.recursion_node_level_vk_hash),
            recursion_leaf_level_vk_hash=_hash("CONTRACTS_RECURSION_LEAF_LEVEL_VK_HASH", defaults.recursion_leaf_level_vk_hash),
            recursion_circuits_set_vks_hash=_hash("CONTRACTS_RECURSION_CIRCUITS_SET_VKS_HASH", defaults.recursion_circuits_set_vks_hash),
        )


@dataclass(slots=True, frozen=True)
class DeploymentConfig:
    """Immutable per-run configuration."""

    #: Address of the signing account. The keys live in the chain client.
    deployer_address: HexAddress

    #: Owner of the deployed protocol (governance admin)
    owner_address: HexAddress

    #: 32-byte hash of the L2 bootloader code
    bootloader_bytecode_hash: bytes = L2_BOOTLOADER_BYTECODE_HASH

    #: 32-byte hash of the L2 default account code
    default_account_bytecode_hash: bytes = L2_DEFAULT_ACCOUNT_BYTECODE_HASH

    #: Initial address registry contents
    addresses: Mapping[str, str] = field(default_factory=dict)

    #: Show per-step progress and log each step at INFO level
    verbose: bool = False

    #: Network name, e.g. ``localhost`` or ``sepolia``.
    #:
    #: Decides whether local-only bootstrap contracts are deployed.
    network: str = "localhost"

    era_chain_id: int = DEFAULT_ERA_CHAIN_ID

    genesis: GenesisParameters = field(default_factory=GenesisParameters)

    gas_price_policy: GasPricePolicy = field(default_factory=GasPricePolicy)

    #: CREATE2 salt. Generated once per run when not given.
    create2_salt: bytes | None = None

    #: Delay between batch commit and execute, seconds
    validator_timelock_execution_delay: int = 0

    max_number_of_hyperchains: int = DEFAULT_MAX_NUMBER_OF_HYPERCHAINS

    def __post_init__(self):
        _parse_hash(self.bootloader_bytecode_hash, "bootloader_bytecode_hash")
        _parse_hash(self.default_account_bytecode_hash, "default_account_bytecode_hash")
        if self.create2_salt is not None:
            _parse_hash(self.create2_salt, "create2_salt")
        # Frozen: swap in a read-only copy of the snapshot
        object.__setattr__(self, "addresses", MappingProxyType(dict(self.addresses)))

    @property
    def is_local_network(self) -> bool:
        return self.network in LOCAL_NETWORKS

    @classmethod
    def from_environment(
        cls,
        deployer_address: HexAddress,
        environ: Mapping[str, str] | None = None,
    ) -> "DeploymentConfig":
        """Assemble the configuration from environment variables.

        - ``OWNER_ADDRESS``: defaults to the deployer
        - ``CHAIN_ETH_NETWORK``: defaults to ``localhost``
        - ``CONTRACTS_ERA_CHAIN_ID``
        - ``ADDRESSES_FILE``: JSON address snapshot
        - ``GAS_PRICE_GWEI``: fixed gas price, otherwise network price * ``GAS_PRICE_MULTIPLIER``
        - ``CREATE2_SALT``: 0x-prefixed 32 bytes
        - ``VERBOSE``
        - ``CONTRACTS_*`` genesis parameters, see :py:meth:`GenesisParameters.from_environment`
        """
        env = os.environ if environ is None else environ

        addresses = {}
        addresses_file = env.get("ADDRESSES_FILE")
        if addresses_file:
            addresses = dict(load_address_registry(Path(addresses_file)))

        gas_price_gwei = env.get("GAS_PRICE_GWEI")
        gas_price_policy = GasPricePolicy(
            override=int(Decimal(gas_price_gwei) * 10**9) if gas_price_gwei else None,
            multiplier=Decimal(env.get("GAS_PRICE_MULTIPLIER", DEFAULT_GAS_PRICE_MULTIPLIER)),
        )

        salt = env.get("CREATE2_SALT")

        config = cls(
            deployer_address=deployer_address,
            owner_address=env.get("OWNER_ADDRESS") or deployer_address,
            addresses=addresses,
            verbose=env.get("VERBOSE", "").lower() in ("1", "true", "yes"),
            network=env.get("CHAIN_ETH_NETWORK", "localhost"),
            era_chain_id=int(env.get("CONTRACTS_ERA_CHAIN_ID", DEFAULT_ERA_CHAIN_ID)),
            genesis=GenesisParameters.from_environment(env),
            gas_price_policy=gas_price_policy,
            create2_salt=_parse_hash(salt, "CREATE2_SALT") if salt else None,
        )
        logger.info(
            "Deployment config: deployer %s, owner %s, network %s, %d known addresses",
            config.deployer_address,
            config.owner_address,
            config.network,
            len(config.addresses),
        )
        return config


def create_test_deployment_config(
    deployer_address: HexAddress,
    owner_address: HexAddress,
    addresses: Mapping[str, str] | None = None,
    **kwargs,
) -> DeploymentConfig:
    """Configuration used by local test deployments.

    Uses the test bootstrap code hashes and default genesis parameters.
    """
    return DeploymentConfig(
        deployer_address=deployer_address,
        owner_address=owner_address,
        bootloader_bytecode_hash=L2_BOOTLOADER_BYTECODE_HASH,
        default_account_bytecode_hash=L2_DEFAULT_ACCOUNT_BYTECODE_HASH,
        addresses=addresses or {},
        **kwargs,
    )
