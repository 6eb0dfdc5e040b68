"""Exceptions raised by the deployment orchestrator.

All recovery is forward-only: none of these errors triggers a rollback
of on-chain state. :py:class:`SequenceAborted` is the terminal signal
of a run and carries enough context to resume it.
"""

from typing import Mapping


class DeploymentError(Exception):
    """Base class for all orchestrator failures."""


class NonceAcquisitionFailure(DeploymentError):
    """Could not read the starting nonce of the deployer account.

    Raised before any transaction is issued.
    """


class TransactionReverted(DeploymentError):
    """The network included the transaction, but it reverted."""

    def __init__(self, reason: str | None, tx_hash: str | None = None):
        self.reason = reason
        self.tx_hash = tx_hash
        super().__init__(f"Transaction {tx_hash} reverted: {reason or '<no revert reason>'}")


class InclusionTimeout(DeploymentError):
    """The transaction was not mined within the bounded wait."""

    def __init__(self, tx_hash: str, timeout: float):
        self.tx_hash = tx_hash
        self.timeout = timeout
        super().__init__(f"Transaction {tx_hash} was not included within {timeout}s")


class L2InclusionTimeout(InclusionTimeout):
    """An L1 → L2 message was not processed on L2 within the bounded wait."""

    def __init__(self, pending: str, timeout: float):
        self.tx_hash = pending
        self.timeout = timeout
        DeploymentError.__init__(self, f"Not processed on L2 within {timeout}s: {pending}")


class AddressDerivationMismatch(DeploymentError):
    """The network deployed a contract at a different address than we predicted."""

    def __init__(self, contract_name: str, predicted: str, actual: str | None):
        self.contract_name = contract_name
        self.predicted = predicted
        self.actual = actual
        super().__init__(f"{contract_name}: predicted address {predicted}, network reported {actual}")


class UnmetPrecondition(DeploymentError):
    """A step was reached before everything it depends on exists."""

    def __init__(self, step_name: str, missing: list[str]):
        self.step_name = step_name
        self.missing = missing
        super().__init__(f"Step {step_name} requires {', '.join(missing)} which are not available")


class RegistrationQueryFailed(DeploymentError):
    """The read-only query of an idempotency guard failed.

    We never assume "not registered" on a failed query,
    as that could register the same entity twice.
    """


class SequenceAborted(DeploymentError):
    """A deployment sequence halted on its first failed step.

    Already committed transactions are final. To continue, construct a new
    orchestrator from :py:attr:`registry` and rerun the same step list with
    ``resume_from=step_name``.
    """

    def __init__(
        self,
        step_name: str,
        cause: BaseException,
        step_index: int,
        registry: Mapping[str, str],
        completed_steps: tuple[str, ...],
        salt: bytes,
    ):
        #: Name of the step that failed
        self.step_name = step_name

        #: The underlying error
        self.cause = cause

        #: Position of the failed step in the step list
        self.step_index = step_index

        #: Address registry contents at the moment of failure
        self.registry = dict(registry)

        #: Names of the steps that completed (or were satisfied) before the failure
        self.completed_steps = completed_steps

        #: CREATE2 salt of the run, needed to resume with consistent addresses
        self.salt = salt

        super().__init__(f"Deployment aborted at step {step_name}: {cause}")
