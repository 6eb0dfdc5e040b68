"""Deployment sequencer: ordering, abort and resume."""

import pytest

from hyperchain_bootstrap.bootstrap import CREATE2_FACTORY
from hyperchain_bootstrap.config import create_test_deployment_config
from hyperchain_bootstrap.errors import InclusionTimeout, NonceAcquisitionFailure, SequenceAborted, TransactionReverted, UnmetPrecondition
from hyperchain_bootstrap.registry import AddressRegistry
from hyperchain_bootstrap.sequencer import format_abort_diagnostic
from hyperchain_bootstrap.steps import DeploymentStep, local_network_only
from hyperchain_bootstrap.testing import ANVIL_DEPLOYER, ANVIL_OWNER
from hyperchain_bootstrap.transactions import CallPayload, DeployPayload

TARGET = "0x5FbDB2315678afecb367f032d93F642f64180aa3"


def _call_step(name: str, function_name: str | None = None, **kwargs) -> DeploymentStep:
    return DeploymentStep(
        name=name,
        build=lambda context: CallPayload(TARGET, function_name or name, ("uint256",), (1,)),
        **kwargs,
    )


def _deploy_step(name: str, requires=(), **kwargs) -> DeploymentStep:
    return DeploymentStep(
        name=name,
        build=lambda context: DeployPayload(
            contract_name=name,
            bytecode=context.artifacts.get(name).bytecode,
            factory=context.registry[CREATE2_FACTORY],
        ),
        requires=(CREATE2_FACTORY,) + tuple(requires),
        provides=name,
        **kwargs,
    )


def _factory_step() -> DeploymentStep:
    return DeploymentStep(
        name=CREATE2_FACTORY,
        build=lambda context: DeployPayload(contract_name=CREATE2_FACTORY, bytecode=context.artifacts.get(CREATE2_FACTORY).bytecode),
        provides=CREATE2_FACTORY,
    )


def _four_steps() -> list[DeploymentStep]:
    return [
        _factory_step(),
        _deploy_step("DefaultUpgrade"),
        _deploy_step("ValidatorTimelock", requires=("DefaultUpgrade",)),
        _deploy_step("Governance"),
    ]


def test_nonces_in_step_order(l1, config, registry, make_sequencer):
    """Starting nonce 5, three steps: nonces 5, 6, 7."""
    l1.nonce = 5
    steps = [_call_step("a"), _call_step("b"), _call_step("c")]

    make_sequencer(config, registry).run(steps)

    assert l1.sent_nonces == [5, 6, 7]
    assert l1.mined_keys == ["a", "b", "c"]


def test_run_registers_outputs(l1, config, registry, make_sequencer):
    result = make_sequencer(config, registry).run(_four_steps())
    assert result is registry
    assert set(registry) == {CREATE2_FACTORY, "DefaultUpgrade", "ValidatorTimelock", "Governance"}
    assert l1.sent_nonces == [0, 1, 2, 3]


def test_failure_keeps_earlier_outputs_only(l1, config, registry, make_sequencer):
    """A failure at step k leaves the outputs of steps before k only."""
    l1.revert_on("ValidatorTimelock", "Initializable: contract is already initialized")

    with pytest.raises(SequenceAborted) as exc_info:
        make_sequencer(config, registry).run(_four_steps())

    aborted = exc_info.value
    assert aborted.step_name == "ValidatorTimelock"
    assert aborted.step_index == 2
    assert isinstance(aborted.cause, TransactionReverted)
    assert aborted.completed_steps == (CREATE2_FACTORY, "DefaultUpgrade")
    assert aborted.salt == config.create2_salt
    assert set(aborted.registry) == {CREATE2_FACTORY, "DefaultUpgrade"}
    assert set(registry) == {CREATE2_FACTORY, "DefaultUpgrade"}
    assert "Governance" not in l1.mined_keys


def test_resume_after_failure(l1, config, make_sequencer):
    """Resume reruns only the failed step and those after it."""
    steps = _four_steps()
    l1.revert_on("ValidatorTimelock")

    with pytest.raises(SequenceAborted) as exc_info:
        make_sequencer(config, AddressRegistry()).run(steps)
    aborted = exc_info.value

    l1.clear_faults()
    resumed_config = create_test_deployment_config(ANVIL_DEPLOYER, ANVIL_OWNER, create2_salt=aborted.salt)
    registry = AddressRegistry(aborted.registry)
    make_sequencer(resumed_config, registry).run(steps, resume_from=aborted.step_name, completed_steps=aborted.completed_steps)

    assert set(registry) == {CREATE2_FACTORY, "DefaultUpgrade", "ValidatorTimelock", "Governance"}
    # The reverted attempt consumed a nonce
    assert l1.mined_keys == [CREATE2_FACTORY, "DefaultUpgrade", "ValidatorTimelock", "ValidatorTimelock", "Governance"]
    assert l1.sent_nonces == [0, 1, 2, 3, 4]


def test_unmet_precondition(l1, config, registry, make_sequencer):
    """A step missing its inputs aborts without sending."""
    steps = [_deploy_step("Governance")]

    with pytest.raises(SequenceAborted) as exc_info:
        make_sequencer(config, registry).run(steps)

    assert isinstance(exc_info.value.cause, UnmetPrecondition)
    assert exc_info.value.cause.missing == [CREATE2_FACTORY]
    assert l1.sent == []


def test_after_unmet(l1, config, registry, make_sequencer):
    """A step waiting on a barrier step that has not run aborts."""
    steps = [_call_step("consume", after=("publish",)), _call_step("publish")]

    with pytest.raises(SequenceAborted) as exc_info:
        make_sequencer(config, registry).run(steps)

    assert isinstance(exc_info.value.cause, UnmetPrecondition)
    assert l1.sent == []


def test_local_only_step_skipped_on_public_network(l1, registry, make_sequencer):
    """The network decides, not the registry."""
    config = create_test_deployment_config(ANVIL_DEPLOYER, ANVIL_OWNER, network="sepolia", create2_salt=b"\x01" * 32)
    steps = [_call_step("deployMulticall", enabled=local_network_only), _call_step("b")]

    make_sequencer(config, registry).run(steps)

    assert l1.mined_keys == ["b"]


def test_local_only_step_runs_on_local_network(l1, config, registry, make_sequencer):
    steps = [_call_step("deployMulticall", enabled=local_network_only), _call_step("b")]
    make_sequencer(config, registry).run(steps)
    assert l1.mined_keys == ["deployMulticall", "b"]


def test_timeout_without_retry(l1, config, registry, make_sequencer):
    l1.drop_next("b")
    steps = [_call_step("a"), _call_step("b")]

    with pytest.raises(SequenceAborted) as exc_info:
        make_sequencer(config, registry).run(steps)

    assert isinstance(exc_info.value.cause, InclusionTimeout)
    assert l1.mined_keys == ["a"]


def test_timeout_retry_refetches_nonce(l1, config, registry, make_sequencer):
    """A retried step gets its nonce from the network again."""
    l1.nonce = 5
    l1.drop_next("b")
    steps = [_call_step("a"), _call_step("b"), _call_step("c")]

    make_sequencer(config, registry, max_attempts=2).run(steps)

    assert l1.sent_nonces == [5, 6, 6, 7]
    assert l1.mined_keys == ["a", "b", "c"]


def test_nonce_failure_before_any_transaction(l1, config, registry, make_sequencer):
    l1.fail_transaction_count = True
    with pytest.raises(NonceAcquisitionFailure):
        make_sequencer(config, registry).run([_call_step("a")])
    assert l1.sent == []


def test_guard_skipped_step_counts_as_completed(l1, config, registry, make_sequencer):
    """Satisfied steps send nothing, later steps may wait on them."""
    steps = [
        _call_step("register", already_satisfied=lambda context: True),
        _call_step("b", after=("register",)),
    ]
    make_sequencer(config, registry).run(steps)
    assert l1.mined_keys == ["b"]


def test_abort_diagnostic(l1, config, registry, make_sequencer):
    l1.revert_on("Governance", "Governance: bad admin")

    with pytest.raises(SequenceAborted) as exc_info:
        make_sequencer(config, registry).run(_four_steps())

    diagnostic = format_abort_diagnostic(exc_info.value)
    assert "Governance" in diagnostic
    assert "Governance: bad admin" in diagnostic
    assert "TransactionReverted" in diagnostic
    assert registry["DefaultUpgrade"] in diagnostic
