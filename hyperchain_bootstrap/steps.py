"""Deployment step descriptors.

A deployment is an ordered list of :py:class:`DeploymentStep`. The order
and the reason for it are data, so the sequencer can check preconditions
and a failed run can be resumed by slicing the list at the failed step.

Two kinds of conditions are kept apart:

- ``requires`` / ``after``: what must exist before the step runs.
  Unmet dependencies abort the run.

- ``enabled``: whether the step applies to this environment at all,
  e.g. deploying our own CREATE2 factory only on a local network.
  Disabled steps are skipped silently.
"""

from dataclasses import dataclass
from typing import Callable, Mapping

from hyperchain_bootstrap.artifacts import ArtifactSource
from hyperchain_bootstrap.client import ChainClient
from hyperchain_bootstrap.config import DeploymentConfig
from hyperchain_bootstrap.transactions import TransactionPayload, TransactionReceipt


@dataclass(slots=True)
class StepContext:
    """Everything a step may look at while building its transaction."""

    config: DeploymentConfig

    #: Address registry of the run, read-only for steps
    registry: Mapping[str, str]

    #: CREATE2 salt of the run
    salt: bytes

    #: Gas price of the run in wei
    gas_price: int

    #: Client of the layer the deployer transacts on
    l1: ChainClient

    artifacts: ArtifactSource

    #: Client of the rollup, for steps that wait on L2
    l2: ChainClient | None = None


@dataclass(slots=True, frozen=True)
class DeploymentStep:
    """One named unit of work in a deployment sequence."""

    name: str

    #: Build the payload of the step's single transaction
    build: Callable[[StepContext], TransactionPayload]

    #: Registry keys that must be present before the step runs
    requires: tuple[str, ...] = ()

    #: Registry key the step writes on success.
    #:
    #: For deployments the created contract address.
    #: For configuration steps, the value of :py:attr:`read_output`.
    provides: str | None = None

    #: Names of earlier steps that must have completed, used for
    #: cross-layer barriers which do not produce a registry entry
    after: tuple[str, ...] = ()

    #: Environment predicate. ``None`` means always enabled.
    enabled: Callable[[DeploymentConfig], bool] | None = None

    #: Idempotency predicate: when it returns ``True`` the transaction is not sent.
    already_satisfied: Callable[[StepContext], bool] | None = None

    #: Resolve the ``provides`` address of a configuration step
    #: after its transaction is included (or found already satisfied)
    read_output: Callable[[StepContext], str] | None = None

    #: Synchronisation barrier run after inclusion, e.g. waiting for L2.
    #: Later steps do not start before it returns.
    barrier: Callable[[StepContext, TransactionReceipt], None] | None = None

    #: Why the step sits where it does in the sequence
    rationale: str = ""

    def is_enabled(self, config: DeploymentConfig) -> bool:
        return self.enabled is None or self.enabled(config)


def local_network_only(config: DeploymentConfig) -> bool:
    """``enabled`` predicate for contracts public networks already provide."""
    return config.is_local_network
