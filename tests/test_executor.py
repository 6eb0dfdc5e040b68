"""Step executor."""

import pytest
from eth_utils import to_checksum_address

from hyperchain_bootstrap.create2 import derive_l1_create2_address
from hyperchain_bootstrap.errors import AddressDerivationMismatch, InclusionTimeout, TransactionReverted
from hyperchain_bootstrap.executor import StepExecutor
from hyperchain_bootstrap.steps import DeploymentStep
from hyperchain_bootstrap.transactions import CallPayload, DeployPayload, TransactionIntent

FACTORY = "0x4e59b44847b379578588920cA78FbF26c0B4956C"

PROXY_ADMIN = "0x5FbDB2315678afecb367f032d93F642f64180aa3"

GOVERNANCE = "0x70997970C51812dc3A010C7d01b50e0d17dc79C8"


@pytest.fixture()
def factory(l1) -> str:
    l1.code[to_checksum_address(FACTORY)] = b"\x01"
    return FACTORY


def _deploy_step(name: str, factory: str | None) -> DeploymentStep:
    return DeploymentStep(
        name=name,
        build=lambda context: DeployPayload(
            contract_name=name,
            bytecode=context.artifacts.get(name).bytecode,
            constructor_types=("uint256",),
            constructor_args=(270,),
            factory=factory,
        ),
        provides=name,
    )


def _transfer_ownership_step() -> DeploymentStep:
    return DeploymentStep(
        name="TransferProxyAdminOwnership",
        build=lambda context: CallPayload(PROXY_ADMIN, "transferOwnership", ("address",), (GOVERNANCE,)),
    )


def _intent(l1, context, step, nonce=0) -> TransactionIntent:
    return TransactionIntent(nonce=nonce, gas_price=l1.gas_price, salt=context.salt, payload=step.build(context))


def test_create2_deployment_registered(l1, registry, make_context, factory):
    """The deployed address matches the prediction and is registered."""
    executor = StepExecutor(l1, registry)
    context = make_context(registry)
    step = _deploy_step("Multicall3", factory)
    intent = _intent(l1, context, step)

    result = executor.execute(step, intent, context)

    expected = derive_l1_create2_address(factory, context.salt, intent.payload.init_code)
    assert result.address == expected
    assert result.receipt.success
    assert registry["Multicall3"] == expected
    assert l1.get_code(expected)


def test_plain_create_registered(l1, registry, make_context):
    """Without a factory the receipt address is used."""
    executor = StepExecutor(l1, registry)
    context = make_context(registry)
    step = _deploy_step("Create2Factory", None)

    result = executor.execute(step, _intent(l1, context, step), context)

    assert registry["Create2Factory"] == result.address
    assert l1.get_code(result.address)


def test_address_mismatch(l1, registry, make_context, factory):
    """A network reported address other than predicted is an error."""
    l1.misreport_address("Multicall3")
    executor = StepExecutor(l1, registry)
    context = make_context(registry)
    step = _deploy_step("Multicall3", factory)

    with pytest.raises(AddressDerivationMismatch):
        executor.execute(step, _intent(l1, context, step), context)

    assert "Multicall3" not in registry


def test_revert_reason(l1, registry, make_context):
    """Reverts carry the revert reason and change nothing."""
    l1.revert_on("transferOwnership", "Ownable: caller is not the owner")
    executor = StepExecutor(l1, registry)
    context = make_context(registry)
    step = _transfer_ownership_step()

    with pytest.raises(TransactionReverted) as exc_info:
        executor.execute(step, _intent(l1, context, step), context)

    assert exc_info.value.reason == "Ownable: caller is not the owner"
    assert exc_info.value.tx_hash
    assert len(registry) == 0


def test_inclusion_timeout(l1, registry, make_context):
    l1.drop_next("transferOwnership")
    executor = StepExecutor(l1, registry, inclusion_timeout=0.1)
    context = make_context(registry)
    step = _transfer_ownership_step()

    with pytest.raises(InclusionTimeout):
        executor.execute(step, _intent(l1, context, step), context)


def test_execute_twice_sends_twice(l1, registry, make_context):
    """The executor does not deduplicate."""
    executor = StepExecutor(l1, registry)
    context = make_context(registry)
    step = _transfer_ownership_step()

    executor.execute(step, _intent(l1, context, step, nonce=0), context)
    executor.execute(step, _intent(l1, context, step, nonce=1), context)

    assert l1.mined_keys == ["transferOwnership", "transferOwnership"]
