"""Transaction value objects shared by the executor and the chain clients.

- :py:class:`DeployPayload` and :py:class:`CallPayload` describe what a
  step wants to do on-chain

- :py:class:`TransactionIntent` binds a payload to a nonce, gas price
  and salt for exactly one submission

- :py:class:`ContractQuery` is a read-only call

Calldata is encoded from the function name and ABI type strings,
so no contract ABI files are needed to talk to the opaque contracts.
"""

from dataclasses import dataclass, field
from typing import Any

import eth_abi
from eth_typing import HexAddress
from eth_utils import keccak

#: Gas limit for contract creation transactions
DEFAULT_DEPLOY_GAS_LIMIT = 10_000_000

#: Gas limit for configuration transactions
DEFAULT_CALL_GAS_LIMIT = 1_000_000


def function_signature(function_name: str, arg_types: tuple[str, ...] | list[str]) -> str:
    """Canonical Solidity signature, e.g. ``transferOwnership(address)``."""
    return f"{function_name}({','.join(arg_types)})"


def function_selector(function_name: str, arg_types: tuple[str, ...] | list[str]) -> bytes:
    """4-byte function selector."""
    return keccak(text=function_signature(function_name, arg_types))[0:4]


def encode_call_data(function_name: str, arg_types: tuple[str, ...], args: tuple | list) -> bytes:
    """Encode a contract call as selector + ABI encoded arguments."""
    assert len(arg_types) == len(args), f"{function_name}: {len(arg_types)} types given for {len(args)} arguments"
    return function_selector(function_name, arg_types) + eth_abi.encode(list(arg_types), list(args))


@dataclass(slots=True, frozen=True)
class DeployPayload:
    """Create a new contract."""

    #: Logical contract name, for logging and diagnostics
    contract_name: str

    #: Creation bytecode
    bytecode: bytes

    #: ABI types of the constructor arguments
    constructor_types: tuple[str, ...] = ()

    #: Constructor argument values
    constructor_args: tuple = ()

    #: CREATE2 factory used for the deployment.
    #:
    #: ``None`` means a plain ``CREATE`` transaction from the deployer account.
    factory: HexAddress | str | None = None

    gas_limit: int = DEFAULT_DEPLOY_GAS_LIMIT

    @property
    def constructor_input(self) -> bytes:
        """ABI encoded constructor arguments."""
        if not self.constructor_types:
            return b""
        return eth_abi.encode(list(self.constructor_types), list(self.constructor_args))

    @property
    def init_code(self) -> bytes:
        """Creation bytecode followed by the constructor arguments."""
        return self.bytecode + self.constructor_input

    @property
    def deterministic(self) -> bool:
        return self.factory is not None


@dataclass(slots=True, frozen=True)
class CallPayload:
    """State-changing call on an existing contract."""

    target: HexAddress | str

    function_name: str

    arg_types: tuple[str, ...] = ()

    args: tuple = ()

    #: Native token sent along, in wei
    value: int = 0

    gas_limit: int = DEFAULT_CALL_GAS_LIMIT

    @property
    def signature(self) -> str:
        return function_signature(self.function_name, self.arg_types)

    @property
    def data(self) -> bytes:
        return encode_call_data(self.function_name, self.arg_types, self.args)


#: Anything a deployment step can submit
TransactionPayload = DeployPayload | CallPayload


@dataclass(slots=True, frozen=True)
class ContractQuery:
    """Read-only contract call."""

    target: HexAddress | str

    function_name: str

    arg_types: tuple[str, ...] = ()

    args: tuple = ()

    #: ABI types of the return values
    result_types: tuple[str, ...] = ()

    @property
    def signature(self) -> str:
        return function_signature(self.function_name, self.arg_types)

    @property
    def data(self) -> bytes:
        return encode_call_data(self.function_name, self.arg_types, self.args)

    def decode_result(self, raw: bytes) -> Any:
        """Decode the raw return data.

        :return:
            A single value when the function returns one value, otherwise a tuple.
        """
        values = eth_abi.decode(list(self.result_types), raw)
        if len(self.result_types) == 1:
            return values[0]
        return values


@dataclass(slots=True, frozen=True)
class TransactionIntent:
    """One transaction to be issued from the deployer account.

    Built fresh for every submission attempt and never reused:
    a nonce must not be issued twice.
    """

    nonce: int

    #: Gas price in wei
    gas_price: int

    #: CREATE2 salt of the run.
    #:
    #: The same salt is used both to predict and to deploy an address.
    salt: bytes

    payload: TransactionPayload


@dataclass(slots=True)
class TransactionReceipt:
    """What we need to know about a mined transaction."""

    tx_hash: str

    #: 1 for success, 0 for revert
    status: int

    block_number: int

    #: Address of the contract created by this transaction, if any
    contract_address: str | None = None

    #: Decoded revert reason when ``status`` is 0
    revert_reason: str | None = None

    #: Client specific extra data
    extra: dict = field(default_factory=dict)

    @property
    def success(self) -> bool:
        return self.status == 1
