"""Cross-layer bytecode publishing and the L2 barrier."""

import eth_abi
import pytest

from hyperchain_bootstrap.bootstrap import l2_shared_bridge_steps
from hyperchain_bootstrap.bytecode_publisher import BytecodePublisher
from hyperchain_bootstrap.create2 import derive_address, hash_l2_bytecode
from hyperchain_bootstrap.errors import L2InclusionTimeout, SequenceAborted
from hyperchain_bootstrap.executor import StepExecutor
from hyperchain_bootstrap.nonce import NonceAllocator
from hyperchain_bootstrap.steps import DeploymentStep
from hyperchain_bootstrap.transactions import CallPayload, TransactionIntent

BRIDGEHUB = "0x5FbDB2315678afecb367f032d93F642f64180aa3"

TARGET = "0xe7f1725E7734CE288F8367e1Bb143E90bb3F0512"


@pytest.fixture()
def publisher(l1, rollup) -> BytecodePublisher:
    return BytecodePublisher(l1, rollup, l2_timeout=0.2, poll_interval=0.01)


def test_publish(l1, rollup, config, registry, artifacts):
    """Bytecodes are known on L2 once publish returns."""
    registry.set("BridgehubProxy", BRIDGEHUB)
    allocator = NonceAllocator(l1, config.deployer_address)
    executor = StepExecutor(l1, registry)
    publisher = BytecodePublisher(l1, rollup, executor=executor, allocator=allocator, l2_timeout=0.2, poll_interval=0.01)
    bytecodes = [artifacts.get("UpgradeableBeacon").bytecode, artifacts.get("BeaconProxy").bytecode]

    receipt = publisher.publish(bytecodes, target_chain_id=270)

    assert receipt.l2_confirmed
    assert receipt.l1_receipt.success
    assert receipt.bytecode_hashes == [hash_l2_bytecode(b) for b in bytecodes]
    assert all(rollup.is_known(h) for h in receipt.bytecode_hashes)

    payload = l1.mined[-1].payload
    assert payload.function_name == "requestL2TransactionDirect"
    assert payload.value == receipt.base_cost == 10**15
    request = payload.args[0]
    assert request[0] == 270
    assert request[6] == 800
    assert request[7] == bytecodes


def test_not_known_before_l1_inclusion(l1, rollup, config, registry, make_context, publisher, artifacts):
    """The test L2 learns a bytecode only when its L1 transaction is mined."""
    registry.set("BridgehubProxy", BRIDGEHUB)
    step = publisher.publish_step("Publish", lambda c: [c.artifacts.get("BeaconProxy").bytecode], target_chain_id=270)
    context = make_context(registry)
    bytecode_hash = hash_l2_bytecode(artifacts.get("BeaconProxy").bytecode)

    tx_hash = l1.send_transaction(TransactionIntent(nonce=0, gas_price=1, salt=context.salt, payload=step.build(context)))
    assert not rollup.is_known(bytecode_hash)

    l1.wait_for_receipt(tx_hash, timeout=1)
    assert rollup.is_known(bytecode_hash)


def test_dependent_step_sees_published_bytecode(l1, rollup, config, registry, make_sequencer, publisher, artifacts):
    """A step after the publish barrier observes the bytecode as available."""
    registry.set("BridgehubProxy", BRIDGEHUB)
    bytecode_hash = hash_l2_bytecode(artifacts.get("BeaconProxy").bytecode)
    observed = []

    def build(context):
        observed.append(rollup.is_known(bytecode_hash))
        return CallPayload(TARGET, "useBytecode", ("bytes32",), (bytecode_hash,))

    steps = [
        publisher.publish_step("Publish", lambda c: [c.artifacts.get("BeaconProxy").bytecode], target_chain_id=270),
        DeploymentStep(name="Consume", build=build, after=("Publish",)),
    ]

    make_sequencer(config, registry).run(steps)

    assert observed == [True]
    assert l1.mined_keys == ["requestL2TransactionDirect", "useBytecode"]


def test_l2_timeout_blocks_dependent_step(l1, rollup, config, registry, make_sequencer, publisher):
    """If L2 never processes the message, the dependent step is never sent."""
    rollup.auto_process = False
    registry.set("BridgehubProxy", BRIDGEHUB)

    steps = [
        publisher.publish_step("Publish", lambda c: [c.artifacts.get("BeaconProxy").bytecode], target_chain_id=270),
        DeploymentStep(name="Consume", build=lambda c: CallPayload(TARGET, "useBytecode"), after=("Publish",)),
    ]

    with pytest.raises(SequenceAborted) as exc_info:
        make_sequencer(config, registry).run(steps)

    assert exc_info.value.step_name == "Publish"
    assert isinstance(exc_info.value.cause, L2InclusionTimeout)
    assert exc_info.value.completed_steps == ()
    assert l1.mined_keys == ["requestL2TransactionDirect"]


def test_l2_shared_bridge_at_predicted_address(l1, rollup, config, registry, make_sequencer, publisher, artifacts):
    """The L2 bridge lands where derive_address said it would."""
    registry.set("BridgehubProxy", BRIDGEHUB)

    make_sequencer(config, registry).run(l2_shared_bridge_steps(publisher, chain_id=270))

    bytecode_hash = hash_l2_bytecode(artifacts.get("L2SharedBridge").bytecode)
    constructor_input = eth_abi.encode(["uint256"], [config.era_chain_id])
    predicted = derive_address(config.create2_salt, bytecode_hash, constructor_input, config.deployer_address)

    # Recomputed later in the run, same address
    assert derive_address(config.create2_salt, bytecode_hash, constructor_input, config.deployer_address) == predicted
    assert registry["L2SharedBridge"] == predicted
    assert rollup.get_code(predicted)
    assert rollup.events[-1] == f"deployed:{predicted}"


def test_retried_publish_quotes_base_cost_at_new_gas_price(l1, rollup, config, registry, make_sequencer, publisher):
    """A publish resubmitted after a gas price rise pays the base cost quoted at the new price."""
    registry.set("BridgehubProxy", BRIDGEHUB)
    quoted_gas_prices = []

    def base_cost(query):
        quoted_gas_prices.append(query.args[1])
        # Network gas price rises while the first publish is pending
        l1.gas_price = 20 * 10**9
        return query.args[1] * 1_000

    l1.call_handlers["l2TransactionBaseCost"] = base_cost
    l1.drop_next("requestL2TransactionDirect")
    steps = [publisher.publish_step("Publish", lambda c: [c.artifacts.get("BeaconProxy").bytecode], target_chain_id=270)]

    make_sequencer(config, registry, max_attempts=2).run(steps)

    first, retried = l1.sent
    assert retried.gas_price > first.gas_price
    assert quoted_gas_prices == [first.gas_price, retried.gas_price]
    assert retried.payload.value == retried.gas_price * 1_000
    assert l1.mined == [retried]
