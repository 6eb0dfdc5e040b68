"""Drive a deployment through its ordered step list.

For each step, in list order:

1. Skip it if its ``enabled`` predicate rejects the network
2. Check its ``requires`` registry keys and ``after`` steps, abort if missing
3. Ask its idempotency guard whether the work is already done
4. Allocate a nonce and send the transaction
5. Run its cross-layer barrier, if any
6. Write its output to the address registry

The first failure halts the run with :py:class:`~hyperchain_bootstrap.errors.SequenceAborted`.
Nothing is rolled back: mined transactions are final. The exception carries
the registry contents and the salt, so the same step list can be rerun
with ``resume_from`` set to the failed step.

Example:

.. code-block:: python

    try:
        sequencer.run(steps)
    except SequenceAborted as e:
        print(format_abort_diagnostic(e))
        # fix the cause, then
        resumed = DeploymentSequencer(..., registry=AddressRegistry(e.registry), salt=e.salt)
        resumed.run(steps, resume_from=e.step_name, completed_steps=e.completed_steps)
"""

import logging
from typing import Sequence

from tqdm_loggable.auto import tqdm

from hyperchain_bootstrap.artifacts import ArtifactSource
from hyperchain_bootstrap.client import ChainClient
from hyperchain_bootstrap.config import DeploymentConfig
from hyperchain_bootstrap.errors import InclusionTimeout, SequenceAborted, UnmetPrecondition
from hyperchain_bootstrap.executor import StepExecutor, StepResult
from hyperchain_bootstrap.guard import ensure_registered
from hyperchain_bootstrap.nonce import NonceAllocator
from hyperchain_bootstrap.registry import AddressRegistry
from hyperchain_bootstrap.steps import DeploymentStep, StepContext
from hyperchain_bootstrap.transactions import TransactionIntent

logger = logging.getLogger(__name__)


class DeploymentSequencer:
    """Runs step lists for one deployer account.

    Owns nothing shared: the allocator, the registry and the executor
    belong to this run only.
    """

    def __init__(
        self,
        config: DeploymentConfig,
        executor: StepExecutor,
        allocator: NonceAllocator,
        registry: AddressRegistry,
        l1: ChainClient,
        artifacts: ArtifactSource,
        salt: bytes,
        l2: ChainClient | None = None,
        max_attempts: int = 1,
    ):
        """
        :param salt:
            CREATE2 salt used by every intent of the run.

        :param max_attempts:
            How many times a step is submitted when it is not mined in time.
            Each attempt re-reads the nonce and gas price from the network.
            Reverts are never retried.
        """
        assert len(salt) == 32, f"Salt must be 32 bytes, got {len(salt)}"
        assert max_attempts >= 1, f"Bad max_attempts {max_attempts}"
        assert executor.registry is registry, "Executor must write to the sequencer's registry"
        self.config = config
        self.executor = executor
        self.allocator = allocator
        self.registry = registry
        self.l1 = l1
        self.l2 = l2
        self.artifacts = artifacts
        self.salt = salt
        self.max_attempts = max_attempts

    def make_context(self) -> StepContext:
        return StepContext(
            config=self.config,
            registry=self.registry.snapshot(),
            salt=self.salt,
            gas_price=self.allocator.current_gas_price(),
            l1=self.l1,
            l2=self.l2,
            artifacts=self.artifacts,
        )

    def run(
        self,
        steps: Sequence[DeploymentStep],
        resume_from: str | None = None,
        completed_steps: Sequence[str] = (),
    ) -> AddressRegistry:
        """Run the steps in order.

        :param steps:
            The full step list.

        :param resume_from:
            Name of the step to start from. Earlier steps are not run.

        :param completed_steps:
            Step names completed by an earlier, aborted run.
            Needed when a remaining step waits on an earlier barrier with ``after``.

        :return:
            The address registry, with the outputs of all run steps.

        :raise NonceAcquisitionFailure:
            The starting nonce could not be read. Nothing was sent.

        :raise SequenceAborted:
            On the first failure, with the cause attached.
        """
        names = [s.name for s in steps]
        assert len(set(names)) == len(names), f"Duplicate step names in {names}"

        start = 0
        if resume_from is not None:
            assert resume_from in names, f"Cannot resume: no step named {resume_from}"
            start = names.index(resume_from)
            logger.info("Resuming at step %d/%d: %s", start + 1, len(steps), resume_from)

        completed = list(completed_steps)

        # Fail before anything is sent if the nonce cannot be read
        if not self.allocator.synced:
            self.allocator.sync_nonce()

        progress_bar = tqdm(
            total=len(steps) - start,
            desc="Deploying",
            unit="step",
            disable=not self.config.verbose,
        )

        try:
            for idx in range(start, len(steps)):
                step = steps[idx]
                progress_bar.set_description(f"Deploying {step.name}")
                try:
                    ran = self.run_step(step, completed)
                except Exception as e:
                    logger.error("Step %d/%d %s failed: %s", idx + 1, len(steps), step.name, e)
                    raise SequenceAborted(
                        step_name=step.name,
                        cause=e,
                        step_index=idx,
                        registry=self.registry.snapshot(),
                        completed_steps=tuple(completed),
                        salt=self.salt,
                    ) from e

                if ran:
                    completed.append(step.name)
                progress_bar.update(1)
        finally:
            progress_bar.close()

        logger.info("Deployment finished, %d steps completed, %d addresses registered", len(completed), len(self.registry))
        return self.registry

    def run_step(self, step: DeploymentStep, completed: Sequence[str]) -> bool:
        """Run one step with its preconditions, guard and barrier.

        :return:
            ``False`` if the step is disabled for this network.
        """
        if not step.is_enabled(self.config):
            logger.info("Skipping %s on network %s", step.name, self.config.network)
            return False

        missing = [key for key in step.requires if key not in self.registry]
        missing += [f"step {name}" for name in step.after if name not in completed]
        if missing:
            raise UnmetPrecondition(step.name, missing)

        context = self.make_context()

        if step.already_satisfied is None:
            self._execute(step, context)
            return True

        ran = ensure_registered(
            lambda: step.already_satisfied(context),
            lambda: self._execute(step, context),
            description=step.name,
        )
        if not ran:
            self.executor.record_output(step, context)
        return True

    def _execute(self, step: DeploymentStep, context: StepContext) -> StepResult:
        result, context = self._submit_with_retry(step, context)
        if step.barrier:
            logger.info("Step %s: waiting on barrier", step.name)
            step.barrier(context, result.receipt)
        address = self.executor.record_output(step, context, result.address)
        return StepResult(address=address, receipt=result.receipt)

    def _submit_with_retry(self, step: DeploymentStep, context: StepContext) -> tuple[StepResult, StepContext]:
        """Submit a step, resubmitting on inclusion timeout.

        A resubmission is built from a fresh context, so values quoted
        at the old gas price, like a priority transaction base cost, follow the new one.

        :return:
            The result and the context the mined transaction was built from.
        """
        for attempt in range(1, self.max_attempts + 1):
            if attempt > 1:
                context = self.make_context()
            intent = TransactionIntent(
                nonce=self.allocator.allocate_nonce(),
                gas_price=context.gas_price,
                salt=self.salt,
                payload=step.build(context),
            )
            try:
                return self.executor.submit(step, intent), context
            except InclusionTimeout as e:
                if attempt >= self.max_attempts:
                    raise
                logger.warning(
                    "Step %s not mined, attempt %d/%d: %s. Re-reading nonce and gas price.",
                    step.name,
                    attempt,
                    self.max_attempts,
                    e,
                )
                self.allocator.sync_nonce()
                self.allocator.refresh_gas_price()
        raise AssertionError("Unreachable")


def format_abort_diagnostic(aborted: SequenceAborted) -> str:
    """Human readable report of an aborted run, for the process exit message."""
    lines = [
        f"Deployment failed at step #{aborted.step_index + 1}: {aborted.step_name}",
        f"Cause: {type(aborted.cause).__name__}: {aborted.cause}",
        f"Salt: 0x{aborted.salt.hex()}",
        f"Completed steps: {', '.join(aborted.completed_steps) or '<none>'}",
        "Registered addresses:",
    ]
    for name, address in sorted(aborted.registry.items()):
        lines.append(f"  {name}: {address}")
    lines.append(f"Resume with RESUME_FROM={aborted.step_name} using the addresses and salt above")
    return "\n".join(lines)
