"""Execute one deployment step.

:py:class:`StepExecutor` sends exactly one transaction per call,
waits for it to be mined and records the outcome in the address registry.

It never retries. A second call issues a second transaction.
Retrying belongs to the caller, which must allocate a fresh nonce first,
see :py:class:`hyperchain_bootstrap.sequencer.DeploymentSequencer`.
"""

import logging
from dataclasses import dataclass

from eth_typing import ChecksumAddress
from eth_utils import to_checksum_address

from hyperchain_bootstrap.client import ChainClient
from hyperchain_bootstrap.create2 import derive_l1_create2_address
from hyperchain_bootstrap.errors import AddressDerivationMismatch, TransactionReverted
from hyperchain_bootstrap.registry import AddressRegistry
from hyperchain_bootstrap.steps import DeploymentStep, StepContext
from hyperchain_bootstrap.transactions import DeployPayload, TransactionIntent, TransactionReceipt

logger = logging.getLogger(__name__)

#: How long we wait for a transaction to be mined, seconds
DEFAULT_INCLUSION_TIMEOUT = 120.0


@dataclass(slots=True, frozen=True)
class StepResult:
    """Outcome of a successfully mined step."""

    #: Address written to the registry, if the step provides one
    address: ChecksumAddress | None

    #: ``None`` when the step was skipped by its idempotency guard
    receipt: TransactionReceipt | None


def predict_address(intent: TransactionIntent) -> ChecksumAddress | None:
    """Predict the address a deployment intent will create.

    :return:
        ``None`` for plain ``CREATE`` and for calls
    """
    payload = intent.payload
    if isinstance(payload, DeployPayload) and payload.deterministic:
        return derive_l1_create2_address(payload.factory, intent.salt, payload.init_code)
    return None


class StepExecutor:
    """Submit a step, wait for inclusion, update the registry."""

    def __init__(
        self,
        client: ChainClient,
        registry: AddressRegistry,
        inclusion_timeout: float = DEFAULT_INCLUSION_TIMEOUT,
    ):
        assert inclusion_timeout > 0, f"Bad timeout {inclusion_timeout}"
        self.client = client
        self.registry = registry
        self.inclusion_timeout = inclusion_timeout

    def execute(self, step: DeploymentStep, intent: TransactionIntent, context: StepContext) -> StepResult:
        """Send the step transaction and record its output.

        :raise TransactionReverted:
            The transaction was mined with a failed status.

        :raise InclusionTimeout:
            The transaction was not mined within :py:attr:`inclusion_timeout`.

        :raise AddressDerivationMismatch:
            A ``CREATE2`` deployment landed at a different address than predicted.
        """
        result = self.submit(step, intent)
        address = self.record_output(step, context, result.address)
        return StepResult(address=address, receipt=result.receipt)

    def submit(self, step: DeploymentStep, intent: TransactionIntent) -> StepResult:
        """Send the step transaction and wait for it, without touching the registry.

        The returned address is the created contract for deployments,
        not yet registered.

        Raises the same as :py:meth:`execute`.
        """
        predicted = predict_address(intent)
        if predicted:
            logger.info("Step %s: predicted address %s", step.name, predicted)

        tx_hash = self.client.send_transaction(intent)
        logger.info("Step %s: sent %s, nonce %d", step.name, tx_hash, intent.nonce)

        receipt = self.client.wait_for_receipt(tx_hash, self.inclusion_timeout)

        if not receipt.success:
            raise TransactionReverted(receipt.revert_reason, tx_hash=tx_hash)

        address = None
        if isinstance(intent.payload, DeployPayload):
            address = self._check_created_address(step, receipt, predicted)

        logger.info("Step %s: included in block %d", step.name, receipt.block_number)
        return StepResult(address=address, receipt=receipt)

    def record_output(
        self,
        step: DeploymentStep,
        context: StepContext,
        address: str | None = None,
    ) -> ChecksumAddress | None:
        """Write the step output to the registry.

        Also used for steps their idempotency guard skipped,
        where the output is read from the chain.
        """
        if step.read_output:
            address = step.read_output(context)

        if step.provides is None:
            return None

        assert address, f"Step {step.name} provides {step.provides} but produced no address"
        stored = self.registry.set(step.provides, address)
        logger.info("Registered %s at %s", step.provides, stored)
        return stored

    def _check_created_address(
        self,
        step: DeploymentStep,
        receipt: TransactionReceipt,
        predicted: ChecksumAddress | None,
    ) -> ChecksumAddress:
        actual = receipt.contract_address
        if predicted is not None:
            if actual is None or to_checksum_address(actual) != predicted:
                raise AddressDerivationMismatch(step.name, predicted, actual)
            return predicted

        assert actual, f"Step {step.name}: no contract address in receipt {receipt.tx_hash}"
        return to_checksum_address(actual)
