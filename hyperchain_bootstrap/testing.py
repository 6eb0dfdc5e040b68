"""In-memory chains for testing deployments without a node.

- :py:class:`InMemoryChain` plays L1: it checks nonces, mines on
  :py:meth:`~InMemoryChain.wait_for_receipt`, computes ``CREATE2`` addresses
  and lets tests inject reverts, dropped transactions and wrong addresses

- :py:class:`InMemoryRollup` plays L2: it learns bytecode hashes and
  runs contract deployer calls from L1 priority transactions,
  only once the L1 transaction is mined

- :py:class:`FakeBridgehub` answers the bridgehub registration queries

- :py:class:`StaticArtifactStore` hands out dummy bytecode for any contract name

Example::

    from hyperchain_bootstrap.testing import ANVIL_DEPLOYER, FakeBridgehub, InMemoryChain, InMemoryRollup

    rollup = InMemoryRollup()
    l1 = InMemoryChain(ANVIL_DEPLOYER, starting_nonce=5, rollup=rollup)
    bridgehub = FakeBridgehub(l1)
"""

import logging
from typing import Any, Callable

import eth_abi
from eth_typing import HexAddress
from eth_utils import keccak, to_bytes, to_checksum_address

from hyperchain_bootstrap.artifacts import ContractArtifact
from hyperchain_bootstrap.bytecode_publisher import L2_CONTRACT_DEPLOYER_ADDRESS
from hyperchain_bootstrap.config import ZERO_ADDRESS
from hyperchain_bootstrap.create2 import derive_address, derive_l1_create2_address, hash_l2_bytecode
from hyperchain_bootstrap.errors import InclusionTimeout
from hyperchain_bootstrap.transactions import CallPayload, ContractQuery, DeployPayload, TransactionIntent, TransactionReceipt, TransactionPayload, function_selector

logger = logging.getLogger(__name__)

#: Anvil test account #0
ANVIL_PRIVATE_KEY = "0xac0974bec39a17e36ba4a6b4d238ff944bacb478cbed5efcae784d7bf4f2ff80"

ANVIL_DEPLOYER = "0xf39Fd6e51aad88F6F4ce6aB8827279cffFb92266"

#: Anvil test account #1
ANVIL_OWNER = "0x70997970C51812dc3A010C7d01b50e0d17dc79C8"

_CREATE2_SELECTOR = function_selector("create2", ("bytes32", "bytes32", "bytes"))


def payload_key(payload: TransactionPayload) -> str:
    """Contract name for deployments, function name for calls.

    Used to pick transactions for fault injection.
    """
    if isinstance(payload, DeployPayload):
        return payload.contract_name
    return payload.function_name


class InMemoryRollup:
    """L2 that only knows what L1 priority transactions told it."""

    def __init__(self, chain_id: int = 270, auto_process: bool = True):
        """
        :param auto_process:
            Process messages as soon as their L1 transaction is mined.
            ``False`` holds them until :py:meth:`process` is called.
        """
        self.chain_id = chain_id
        self.auto_process = auto_process
        self.known_hashes: set[bytes] = set()
        self.code: dict[str, bytes] = {}
        self.queue: list[tuple[tuple, str]] = []

        #: Order of processed events, for ordering assertions
        self.events: list[str] = []

    def enqueue(self, request: tuple, sender: HexAddress | str):
        self.queue.append((request, sender))
        if self.auto_process:
            self.process()

    def process(self):
        """Apply all queued L1 → L2 messages."""
        queue, self.queue = self.queue, []
        for request, sender in queue:
            l2_contract, l2_calldata, factory_deps = request[2], request[4], request[7]
            for bytecode in factory_deps:
                bytecode_hash = hash_l2_bytecode(bytecode)
                self.known_hashes.add(bytecode_hash)
                self.events.append(f"known:0x{bytecode_hash.hex()}")

            if l2_contract.lower() == L2_CONTRACT_DEPLOYER_ADDRESS.lower() and l2_calldata[:4] == _CREATE2_SELECTOR:
                salt, bytecode_hash, constructor_input = eth_abi.decode(["bytes32", "bytes32", "bytes"], l2_calldata[4:])
                if bytecode_hash not in self.known_hashes:
                    logger.warning("L2 create2 of unknown bytecode 0x%s failed", bytecode_hash.hex())
                    continue
                address = derive_address(salt, bytecode_hash, constructor_input, sender)
                self.code[address] = bytecode_hash
                self.events.append(f"deployed:{address}")

    def is_known(self, bytecode_hash: bytes) -> bool:
        return bytecode_hash in self.known_hashes

    def get_chain_id(self) -> int:
        return self.chain_id

    def call(self, query: ContractQuery) -> Any:
        if query.function_name == "getMarker":
            return 1 if query.args[0] in self.known_hashes else 0
        raise ValueError(f"execution reverted: {query.signature} not supported on L2")

    def get_code(self, address: HexAddress | str) -> bytes:
        return self.code.get(to_checksum_address(address), b"")


class InMemoryChain:
    """L1 with a single deployer account.

    Transactions are mined one by one when their receipt is awaited.
    """

    def __init__(
        self,
        account: HexAddress | str,
        starting_nonce: int = 0,
        chain_id: int = 9,
        gas_price: int = 10 * 10**9,
        base_cost: int = 10**15,
        rollup: InMemoryRollup | None = None,
    ):
        self.account = to_checksum_address(account)
        self.nonce = starting_nonce
        self.chain_id = chain_id
        self.gas_price = gas_price
        self.rollup = rollup
        self.block_number = 0

        self.code: dict[str, bytes] = {}

        #: Every submission, including dropped ones
        self.sent: list[TransactionIntent] = []

        #: Mined transactions, successful or reverted
        self.mined: list[TransactionIntent] = []

        #: Read-only call handlers by function name
        self.call_handlers: dict[str, Callable[[ContractQuery], Any]] = {
            "l2TransactionBaseCost": lambda query: base_cost,
        }

        #: State changing call handlers by function name. Raise to revert.
        self.transaction_handlers: dict[str, Callable[[CallPayload], None]] = {}

        #: Set to make the nonce read fail
        self.fail_transaction_count = False

        self._reverts: dict[str, str] = {}
        self._drops: dict[str, int] = {}
        self._misreported: set[str] = set()
        self._pending: dict[str, TransactionIntent] = {}
        self._dropped: set[str] = set()
        self._receipts: dict[str, TransactionReceipt] = {}

    def revert_on(self, key: str, reason: str = "execution reverted"):
        """Make transactions for this contract name or function name revert."""
        self._reverts[key] = reason

    def drop_next(self, key: str, count: int = 1):
        """Never mine the next ``count`` transactions for this contract or function name."""
        self._drops[key] = count

    def misreport_address(self, contract_name: str):
        """Report a different created address than the real one."""
        self._misreported.add(contract_name)

    def clear_faults(self):
        self._reverts.clear()
        self._drops.clear()
        self._misreported.clear()
        self.fail_transaction_count = False

    @property
    def sent_nonces(self) -> list[int]:
        return [i.nonce for i in self.sent]

    @property
    def mined_keys(self) -> list[str]:
        return [payload_key(i.payload) for i in self.mined]

    def get_transaction_count(self, address: HexAddress | str) -> int:
        if self.fail_transaction_count:
            raise ConnectionError("RPC unavailable")
        assert to_checksum_address(address) == self.account, f"Unknown account {address}"
        return self.nonce

    def get_chain_id(self) -> int:
        return self.chain_id

    def get_gas_price(self) -> int:
        return self.gas_price

    def send_transaction(self, intent: TransactionIntent) -> str:
        self.sent.append(intent)
        if intent.nonce != self.nonce:
            raise ValueError(f"Nonce mismatch: expected {self.nonce}, got {intent.nonce}")

        tx_hash = "0x" + keccak(text=f"{self.chain_id}:{len(self.sent)}").hex()
        key = payload_key(intent.payload)
        if self._drops.get(key, 0) > 0:
            self._drops[key] -= 1
            self._dropped.add(tx_hash)
            logger.info("Dropping %s %s", key, tx_hash)
            return tx_hash

        self.nonce += 1
        self._pending[tx_hash] = intent
        return tx_hash

    def wait_for_receipt(self, tx_hash: str, timeout: float) -> TransactionReceipt:
        if tx_hash in self._receipts:
            return self._receipts[tx_hash]

        if tx_hash in self._dropped:
            raise InclusionTimeout(tx_hash, timeout)

        intent = self._pending.pop(tx_hash)
        self.block_number += 1
        self.mined.append(intent)

        receipt = TransactionReceipt(tx_hash=tx_hash, status=1, block_number=self.block_number)
        key = payload_key(intent.payload)
        try:
            if key in self._reverts:
                raise ValueError(self._reverts[key])
            if isinstance(intent.payload, DeployPayload):
                receipt.contract_address = self._deploy(intent)
            else:
                self._transact(intent.payload)
        except ValueError as e:
            receipt.status = 0
            receipt.revert_reason = str(e)

        self._receipts[tx_hash] = receipt
        return receipt

    def _deploy(self, intent: TransactionIntent) -> str:
        payload = intent.payload
        if payload.deterministic:
            if not self.get_code(payload.factory):
                raise ValueError(f"No CREATE2 factory at {payload.factory}")
            address = derive_l1_create2_address(payload.factory, intent.salt, payload.init_code)
        else:
            address = to_checksum_address(keccak(to_bytes(hexstr=self.account) + intent.nonce.to_bytes(32, "big"))[12:])

        if address in self.code:
            raise ValueError(f"Contract already deployed at {address}")
        self.code[address] = payload.bytecode

        if payload.contract_name in self._misreported:
            return to_checksum_address(keccak(to_bytes(hexstr=address))[12:])
        return address

    def _transact(self, payload: CallPayload):
        handler = self.transaction_handlers.get(payload.function_name)
        if handler:
            handler(payload)
        if payload.function_name == "requestL2TransactionDirect" and self.rollup is not None:
            self.rollup.enqueue(payload.args[0], self.account)

    def call(self, query: ContractQuery) -> Any:
        handler = self.call_handlers.get(query.function_name)
        if handler is None:
            raise ValueError(f"execution reverted: no handler for {query.signature}")
        return handler(query)

    def get_code(self, address: HexAddress | str) -> bytes:
        return self.code.get(to_checksum_address(address), b"")


class FakeBridgehub:
    """Bridgehub registrations on an :py:class:`InMemoryChain`.

    Registering the same thing twice reverts, as on the real contract.
    """

    def __init__(self, chain: InMemoryChain):
        self.tokens: set[str] = set()
        self.state_transition_managers: set[str] = set()
        self.shared_bridge = ZERO_ADDRESS
        self.hyperchains: dict[int, str] = {}

        chain.call_handlers.update(
            {
                "tokenIsRegistered": lambda q: self._key(q.args[0]) in self.tokens,
                "stateTransitionManagerIsRegistered": lambda q: self._key(q.args[0]) in self.state_transition_managers,
                "sharedBridge": lambda q: self.shared_bridge,
                "getHyperchain": lambda q: self.hyperchains.get(q.args[0], ZERO_ADDRESS),
            }
        )
        chain.transaction_handlers.update(
            {
                "addToken": lambda p: self._add(self.tokens, p.args[0], "Token already registered"),
                "addStateTransitionManager": lambda p: self._add(self.state_transition_managers, p.args[0], "STM already registered"),
                "setSharedBridge": self._set_shared_bridge,
                "createNewChain": self._create_new_chain,
            }
        )

    @staticmethod
    def _key(address: str) -> str:
        return address.lower()

    def _add(self, registered: set[str], address: str, error: str):
        if self._key(address) in registered:
            raise ValueError(error)
        registered.add(self._key(address))

    def _set_shared_bridge(self, payload: CallPayload):
        self.shared_bridge = to_checksum_address(payload.args[0])

    def _create_new_chain(self, payload: CallPayload):
        chain_id, stm, base_token = payload.args[0:3]
        if chain_id in self.hyperchains:
            raise ValueError("Chain already registered")
        if self._key(base_token) not in self.tokens:
            raise ValueError("Token not registered")
        if self._key(stm) not in self.state_transition_managers:
            raise ValueError("STM not registered")
        self.hyperchains[chain_id] = to_checksum_address(keccak(text=f"hyperchain:{chain_id}")[12:])


def create_dummy_artifact(name: str, abi: list[dict] | None = None) -> ContractArtifact:
    """Artifact with unique one-word bytecode, which is also a valid L2 bytecode."""
    if abi is None:
        abi = [{"type": "function", "name": f"{name[0].lower()}{name[1:]}Version", "inputs": []}]
    return ContractArtifact(name=name, bytecode=keccak(text=name), abi=abi)


class StaticArtifactStore:
    """Artifacts from a dict, generating dummies for unknown names."""

    def __init__(self, artifacts: dict[str, ContractArtifact] | None = None, generate_missing: bool = True):
        self.artifacts = dict(artifacts or {})
        self.generate_missing = generate_missing

    def get(self, name: str) -> ContractArtifact:
        if name not in self.artifacts:
            if not self.generate_missing:
                raise FileNotFoundError(f"No artifact for {name}")
            self.artifacts[name] = create_dummy_artifact(name)
        return self.artifacts[name]
