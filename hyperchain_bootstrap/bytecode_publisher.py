"""Publish bytecode on L2 by sending a message through L1.

An L2 contract can only be created from bytecode the rollup already knows.
We make it known by sending a priority transaction through the bridgehub on L1
with the bytecodes attached as *factory dependencies*. The rollup processes
the message asynchronously, some time after the L1 transaction is mined.

Publishing and using the bytecode are not atomic. Anything deploying
from a published bytecode must wait until the L2 knows its hash. We do this by
polling the ``KnownCodesStorage`` system contract, see :py:meth:`BytecodePublisher.wait_for_l2_inclusion`.

In a step list the publish is a barrier step:

.. code-block:: python

    publish = publisher.publish_step(
        "PublishL2BridgeBytecodes",
        lambda context: [context.artifacts.get(name).bytecode for name in ("UpgradeableBeacon", "BeaconProxy")],
        target_chain_id=270,
    )

    deploy = DeploymentStep(..., after=(publish.name,))
"""

import logging
import time
from dataclasses import dataclass
from typing import Callable, Iterable

from eth_typing import HexAddress

from hyperchain_bootstrap.client import ChainClient
from hyperchain_bootstrap.config import DEFAULT_ERA_CHAIN_ID, ZERO_ADDRESS
from hyperchain_bootstrap.create2 import hash_l2_bytecode
from hyperchain_bootstrap.errors import L2InclusionTimeout
from hyperchain_bootstrap.executor import StepExecutor
from hyperchain_bootstrap.nonce import NonceAllocator
from hyperchain_bootstrap.steps import DeploymentStep, StepContext
from hyperchain_bootstrap.transactions import CallPayload, ContractQuery, TransactionIntent, TransactionReceipt

logger = logging.getLogger(__name__)

#: L2 system contract tracking which bytecode hashes are known
L2_KNOWN_CODES_STORAGE_ADDRESS = "0x0000000000000000000000000000000000008004"

#: L2 system contract creating contracts
L2_CONTRACT_DEPLOYER_ADDRESS = "0x0000000000000000000000000000000000008006"

#: Gas per pubdata byte limit of priority transactions
REQUIRED_L2_GAS_PRICE_PER_PUBDATA = 800

#: L2 gas limit of publishing transactions
DEFAULT_L2_GAS_LIMIT = 72_000_000

#: How long we wait for the rollup to process a message, seconds
DEFAULT_L2_TIMEOUT = 300.0

DEFAULT_POLL_INTERVAL = 2.0

#: ``L2TransactionRequestDirect`` struct
L2_TRANSACTION_REQUEST_DIRECT = "(uint256,uint256,address,uint256,bytes,uint256,uint256,bytes[],address)"


@dataclass(slots=True)
class PublishReceipt:
    """Result of a bytecode publish."""

    #: The L1 priority transaction
    l1_receipt: TransactionReceipt

    #: L2 hashes of the published bytecodes, in the order given
    bytecode_hashes: list[bytes]

    target_chain_id: int

    #: Native token paid for the L2 execution, wei
    base_cost: int

    #: All hashes are known on L2
    l2_confirmed: bool = False


def build_l2_transaction_request(
    l1: ChainClient,
    bridgehub: HexAddress | str,
    target_chain_id: int,
    gas_price: int,
    refund_recipient: HexAddress | str,
    l2_contract: HexAddress | str = ZERO_ADDRESS,
    l2_calldata: bytes = b"",
    factory_deps: list[bytes] | None = None,
    l2_gas_limit: int = DEFAULT_L2_GAS_LIMIT,
) -> CallPayload:
    """Build a ``requestL2TransactionDirect`` priority transaction.

    Asks the bridgehub for the base cost and sends exactly that as the mint value.

    :param l2_contract:
        Called on L2 with ``l2_calldata``. Zero address for no call.

    :param factory_deps:
        Bytecodes made known on L2 by this transaction.
    """
    base_cost = l1.call(
        ContractQuery(
            target=bridgehub,
            function_name="l2TransactionBaseCost",
            arg_types=("uint256", "uint256", "uint256", "uint256"),
            args=(target_chain_id, gas_price, l2_gas_limit, REQUIRED_L2_GAS_PRICE_PER_PUBDATA),
            result_types=("uint256",),
        )
    )
    factory_deps = list(factory_deps or [])
    logger.info(
        "L2 transaction to chain %d: contract %s, %d factory deps, base cost %d wei",
        target_chain_id,
        l2_contract,
        len(factory_deps),
        base_cost,
    )

    request = (
        target_chain_id,
        base_cost,
        l2_contract,
        0,
        l2_calldata,
        l2_gas_limit,
        REQUIRED_L2_GAS_PRICE_PER_PUBDATA,
        factory_deps,
        refund_recipient,
    )
    return CallPayload(
        target=bridgehub,
        function_name="requestL2TransactionDirect",
        arg_types=(L2_TRANSACTION_REQUEST_DIRECT,),
        args=(request,),
        value=base_cost,
    )


def build_publish_payload(
    l1: ChainClient,
    bridgehub: HexAddress | str,
    bytecodes: list[bytes],
    target_chain_id: int,
    gas_price: int,
    refund_recipient: HexAddress | str,
    l2_gas_limit: int = DEFAULT_L2_GAS_LIMIT,
) -> CallPayload:
    """Build an L2 transaction with no call, carrying the bytecodes as factory deps."""
    assert bytecodes, "Nothing to publish"
    return build_l2_transaction_request(
        l1,
        bridgehub,
        target_chain_id,
        gas_price,
        refund_recipient,
        factory_deps=bytecodes,
        l2_gas_limit=l2_gas_limit,
    )


def is_bytecode_known(l2: ChainClient, bytecode_hash: bytes) -> bool:
    """Has the rollup seen this bytecode hash."""
    marker = l2.call(
        ContractQuery(
            target=L2_KNOWN_CODES_STORAGE_ADDRESS,
            function_name="getMarker",
            arg_types=("bytes32",),
            args=(bytecode_hash,),
            result_types=("uint256",),
        )
    )
    return marker != 0


class BytecodePublisher:
    """Publish L2 bytecodes through L1 and wait until L2 knows them."""

    def __init__(
        self,
        l1: ChainClient,
        l2: ChainClient,
        executor: StepExecutor | None = None,
        allocator: NonceAllocator | None = None,
        salt: bytes = b"\x00" * 32,
        l2_gas_limit: int = DEFAULT_L2_GAS_LIMIT,
        l2_timeout: float = DEFAULT_L2_TIMEOUT,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
    ):
        """
        :param executor:
            Needed for :py:meth:`publish` only. Publish steps run by the sequencer
            go through the sequencer's executor.

        :param allocator:
            Needed for :py:meth:`publish` only.

        :param l2_timeout:
            Seconds to wait for the rollup to process a publish.

        :param poll_interval:
            Seconds between L2 polls.
        """
        self.l1 = l1
        self.l2 = l2
        self.executor = executor
        self.allocator = allocator
        self.salt = salt
        self.l2_gas_limit = l2_gas_limit
        self.l2_timeout = l2_timeout
        self.poll_interval = poll_interval

    def publish(
        self,
        bytecodes: list[bytes],
        target_chain_id: int = DEFAULT_ERA_CHAIN_ID,
        gas_price: int | None = None,
    ) -> PublishReceipt:
        """Send one publish message and wait for both layers.

        :param gas_price:
            Defaults to the allocator's gas price.

        :raise TransactionReverted:
            The L1 transaction reverted.

        :raise L2InclusionTimeout:
            The rollup did not process the message in time.
        """
        assert self.executor is not None and self.allocator is not None, "publish() needs an executor and an allocator"
        if gas_price is None:
            gas_price = self.allocator.current_gas_price()

        bytecode_hashes = [hash_l2_bytecode(b) for b in bytecodes]
        bridgehub = self.executor.registry["BridgehubProxy"]
        payload = build_publish_payload(
            self.l1,
            bridgehub,
            bytecodes,
            target_chain_id,
            gas_price,
            refund_recipient=self.allocator.address,
            l2_gas_limit=self.l2_gas_limit,
        )
        step = DeploymentStep(name="PublishBytecodes", build=lambda context: payload, requires=("BridgehubProxy",))
        intent = TransactionIntent(
            nonce=self.allocator.allocate_nonce(),
            gas_price=gas_price,
            salt=self.salt,
            payload=payload,
        )
        result = self.executor.submit(step, intent)
        self.wait_for_l2_inclusion(bytecode_hashes)
        return PublishReceipt(
            l1_receipt=result.receipt,
            bytecode_hashes=bytecode_hashes,
            target_chain_id=target_chain_id,
            base_cost=payload.value,
            l2_confirmed=True,
        )

    def wait_for_l2_inclusion(self, bytecode_hashes: Iterable[bytes], timeout: float | None = None):
        """Block until every hash is known on L2.

        :raise L2InclusionTimeout:
            Some hashes are still unknown after ``timeout`` seconds.
        """
        timeout = self.l2_timeout if timeout is None else timeout
        deadline = time.time() + timeout
        pending = list(bytecode_hashes)
        attempt = 0

        while True:
            attempt += 1
            pending = [h for h in pending if not is_bytecode_known(self.l2, h)]
            if not pending:
                logger.info("Published bytecodes known on L2 after %d poll(s)", attempt)
                return

            remaining = deadline - time.time()
            if remaining <= 0:
                raise L2InclusionTimeout(", ".join("0x" + h.hex() for h in pending), timeout)

            logger.info("Waiting for %d bytecodes on L2 (%.0fs remaining, poll #%d)", len(pending), remaining, attempt)
            time.sleep(min(self.poll_interval, remaining))

    def wait_for_l2_contract(self, address: HexAddress | str, timeout: float | None = None):
        """Block until L2 has code at ``address``.

        :raise L2InclusionTimeout:
            No code after ``timeout`` seconds.
        """
        timeout = self.l2_timeout if timeout is None else timeout
        deadline = time.time() + timeout
        while not self.l2.get_code(address):
            remaining = deadline - time.time()
            if remaining <= 0:
                raise L2InclusionTimeout(f"contract {address}", timeout)
            logger.info("Waiting for L2 contract %s (%.0fs remaining)", address, remaining)
            time.sleep(min(self.poll_interval, remaining))
        logger.info("L2 contract %s deployed", address)

    def publish_step(
        self,
        name: str,
        bytecodes: Callable[[StepContext], list[bytes]],
        target_chain_id: int,
        requires: tuple[str, ...] = ("BridgehubProxy",),
        rationale: str = "",
    ) -> DeploymentStep:
        """Publish as a barrier step.

        The step completes only once L2 knows every bytecode. Later steps
        that deploy from them declare ``after=(name,)``.

        :param bytecodes:
            Resolve the bytecodes when the step runs, usually from the artifacts.
        """

        def build(context: StepContext) -> CallPayload:
            return build_publish_payload(
                context.l1,
                context.registry["BridgehubProxy"],
                bytecodes(context),
                target_chain_id,
                context.gas_price,
                refund_recipient=context.config.deployer_address,
                l2_gas_limit=self.l2_gas_limit,
            )

        def barrier(context: StepContext, receipt: TransactionReceipt):
            logger.info("Publish %s mined in L1 block %d, waiting for L2", receipt.tx_hash, receipt.block_number)
            self.wait_for_l2_inclusion([hash_l2_bytecode(b) for b in bytecodes(context)])

        return DeploymentStep(
            name=name,
            build=build,
            requires=requires,
            barrier=barrier,
            rationale=rationale or "Later L2 deployments use these bytecodes, publishing is not atomic with them",
        )
