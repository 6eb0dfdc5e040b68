"""Orchestrator for one deployment run.

:py:class:`HyperchainDeployer` wires the address registry, nonce allocator,
step executor and sequencer together for one deployer account and one salt.

Example:

.. code-block:: python

    config = DeploymentConfig.from_environment(account.address)
    deployer = HyperchainDeployer(config, l1_client, ArtifactStore(Path("artifacts")), l2_client=l2_client)

    deployer.initial_bridgehub_deployment()
    deployer.register_hyperchain(chain_id=270)
    deployer.deploy_shared_bridge_on_l2_through_l1(chain_id=270)

    save_address_registry(deployer.registry, Path("deployed.json"))

Do not share one deployer between threads or accounts.
Run another instance for another account.
"""

import logging
from typing import Iterable, Sequence

from hyperchain_bootstrap.artifacts import ArtifactSource
from hyperchain_bootstrap.bootstrap import FacetCut, bridgehub_bootstrap_steps, l2_shared_bridge_steps, register_hyperchain_steps, resolve_base_token
from hyperchain_bootstrap.bytecode_publisher import DEFAULT_L2_TIMEOUT, DEFAULT_POLL_INTERVAL, BytecodePublisher
from hyperchain_bootstrap.client import ChainClient
from hyperchain_bootstrap.config import DeploymentConfig
from hyperchain_bootstrap.errors import SequenceAborted
from hyperchain_bootstrap.executor import DEFAULT_INCLUSION_TIMEOUT, StepExecutor
from hyperchain_bootstrap.nonce import NonceAllocator
from hyperchain_bootstrap.registry import AddressRegistry
from hyperchain_bootstrap.sequencer import DeploymentSequencer
from hyperchain_bootstrap.steps import DeploymentStep
from hyperchain_bootstrap.utils import generate_salt

logger = logging.getLogger(__name__)


class HyperchainDeployer:
    """Deploy and register hyperchain contracts from one account."""

    def __init__(
        self,
        config: DeploymentConfig,
        l1: ChainClient,
        artifacts: ArtifactSource,
        l2: ChainClient | None = None,
        starting_nonce: int | None = None,
        inclusion_timeout: float = DEFAULT_INCLUSION_TIMEOUT,
        l2_timeout: float = DEFAULT_L2_TIMEOUT,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
        max_attempts: int = 1,
    ):
        """
        :param l1:
            Signing client for the deployer account.

        :param l2:
            Read-only rollup client. Needed for L2 deployments only.

        :param starting_nonce:
            Nonce of the first transaction. Read from the network if not given.

        :param max_attempts:
            Submissions per step when a transaction is not mined in time.
        """
        self.config = config
        self.l1 = l1
        self.l2 = l2
        self.artifacts = artifacts

        #: Same salt for predicting and deploying, through the whole run
        self.salt = config.create2_salt or generate_salt()

        self.registry = AddressRegistry(config.addresses)
        self.allocator = NonceAllocator(l1, config.deployer_address, starting_nonce, config.gas_price_policy)
        self.executor = StepExecutor(l1, self.registry, inclusion_timeout)
        self.sequencer = DeploymentSequencer(
            config=config,
            executor=self.executor,
            allocator=self.allocator,
            registry=self.registry,
            l1=l1,
            l2=l2,
            artifacts=artifacts,
            salt=self.salt,
            max_attempts=max_attempts,
        )

        self.publisher = None
        if l2 is not None:
            self.publisher = BytecodePublisher(
                l1,
                l2,
                executor=self.executor,
                allocator=self.allocator,
                salt=self.salt,
                l2_gas_limit=config.genesis.priority_tx_max_gas_limit,
                l2_timeout=l2_timeout,
                poll_interval=poll_interval,
            )

        logger.info(
            "Deployer %s on %s, salt 0x%s, %d known addresses",
            config.deployer_address,
            config.network,
            self.salt.hex(),
            len(self.registry),
        )

    def __repr__(self) -> str:
        return f"<HyperchainDeployer {self.config.deployer_address} on {self.config.network}>"

    def run(self, steps: Sequence[DeploymentStep]) -> AddressRegistry:
        return self.sequencer.run(steps)

    def initial_bridgehub_deployment(
        self,
        extra_facets: Iterable[FacetCut] = (),
        only_verifier: bool = False,
        diamond_upgrade_init: int = 1,
    ) -> AddressRegistry:
        """Deploy the bridgehub, state transition manager and bridges.

        See :py:func:`~hyperchain_bootstrap.bootstrap.bridgehub_bootstrap_steps`.
        """
        steps = bridgehub_bootstrap_steps(extra_facets, only_verifier, diamond_upgrade_init)
        return self.run(steps)

    def register_hyperchain(
        self,
        chain_id: int | None = None,
        base_token_symbol: str | None = None,
        tokens: list[dict] | None = None,
        extra_facets: Iterable[FacetCut] = (),
    ) -> AddressRegistry:
        """Register the base token and create a new chain.

        :param chain_id:
            Defaults to the era chain id of the config.

        :param base_token_symbol:
            Symbol in ``tokens``. ETH when not given.
        """
        chain_id = chain_id or self.config.era_chain_id
        base_token = resolve_base_token(tokens or [], base_token_symbol)
        logger.info("Registering chain %d with base token %s", chain_id, base_token)
        return self.run(register_hyperchain_steps(chain_id, base_token, extra_facets))

    def bootstrap_and_register(
        self,
        resume_from: str | None = None,
        only_verifier: bool = False,
        diamond_upgrade_init: int = 1,
        register: bool = True,
        chain_id: int | None = None,
        base_token_symbol: str | None = None,
        tokens: list[dict] | None = None,
        extra_facets: Iterable[FacetCut] = (),
    ) -> AddressRegistry:
        """Initial bridgehub deployment followed by the chain registration.

        :param resume_from:
            Step of an aborted run to continue from, in either step list.
            When it is a registration step, the bridgehub deployment is not run again.

        :param register:
            Register the chain after the bridgehub deployment.

        :raise ValueError:
            ``resume_from`` is not a step of this run.
        """
        extra_facets = tuple(extra_facets)
        bootstrap_steps = bridgehub_bootstrap_steps(extra_facets, only_verifier, diamond_upgrade_init)

        register_steps = []
        if register and not only_verifier:
            chain_id = chain_id or self.config.era_chain_id
            base_token = resolve_base_token(tokens or [], base_token_symbol)
            register_steps = register_hyperchain_steps(chain_id, base_token, extra_facets)

        bootstrap_names = [s.name for s in bootstrap_steps]
        register_names = [s.name for s in register_steps]
        if resume_from is not None and resume_from not in bootstrap_names + register_names:
            raise ValueError(f"Cannot resume from {resume_from}, steps of this run are: {', '.join(bootstrap_names + register_names)}")

        if resume_from in register_names:
            logger.info("Resuming chain registration at %s, bridgehub deployment already done", resume_from)
            return self.sequencer.run(register_steps, resume_from=resume_from)

        self.sequencer.run(bootstrap_steps, resume_from=resume_from)
        if register_steps:
            self.sequencer.run(register_steps)
        return self.registry

    def deploy_shared_bridge_on_l2_through_l1(self, chain_id: int | None = None) -> AddressRegistry:
        """Publish the L2 bridge bytecodes and deploy the L2 shared bridge from L1."""
        assert self.publisher is not None, "L2 client needed to deploy on L2"
        chain_id = chain_id or self.config.era_chain_id
        return self.run(l2_shared_bridge_steps(self.publisher, chain_id))

    def resume(self, aborted: SequenceAborted, steps: Sequence[DeploymentStep]) -> AddressRegistry:
        """Continue an aborted run from its failed step.

        The nonce is read from the network again, as the failed
        transaction may or may not have consumed it.
        """
        assert aborted.salt == self.salt, "Resume must use the salt of the aborted run, set create2_salt in the config"
        for name, address in aborted.registry.items():
            self.registry.set(name, address)
        self.allocator.sync_nonce()
        return self.sequencer.run(steps, resume_from=aborted.step_name, completed_steps=aborted.completed_steps)


def initial_testnet_deployment_process(
    config: DeploymentConfig,
    l1: ChainClient,
    artifacts: ArtifactSource,
    extra_facets: Iterable[FacetCut] = (),
    base_token_symbol: str | None = None,
    tokens: list[dict] | None = None,
    **kwargs,
) -> HyperchainDeployer:
    """Bootstrap a test network: initial deployment followed by chain registration.

    Test tokens must already be deployed and listed in ``tokens``
    if a non-ETH base token is used.
    """
    extra_facets = tuple(extra_facets)
    deployer = HyperchainDeployer(config, l1, artifacts, **kwargs)
    deployer.initial_bridgehub_deployment(extra_facets=extra_facets)
    deployer.register_hyperchain(base_token_symbol=base_token_symbol, tokens=tokens, extra_facets=extra_facets)
    return deployer
