"""web3.py implementation of :py:class:`~hyperchain_bootstrap.client.ChainClient`.

Transactions are signed locally with an ``eth_account`` :py:class:`LocalAccount`
and broadcast with ``eth_sendRawTransaction``. Nonce and gas price come
from the :py:class:`~hyperchain_bootstrap.transactions.TransactionIntent`,
never from the node.

``CREATE2`` deployments are sent to a deterministic deployment proxy which
takes ``salt ++ init_code`` as calldata and returns the created address.

Example:

.. code-block:: python

    from eth_account import Account
    from web3 import Web3, HTTPProvider

    web3 = Web3(HTTPProvider(os.environ["JSON_RPC_L1"]))
    account = Account.from_key(os.environ["DEPLOYER_PRIVATE_KEY"])
    l1 = Web3ChainClient(web3, account)
"""

import logging
from typing import Any

from eth_account.signers.local import LocalAccount
from eth_typing import HexAddress
from eth_utils import to_checksum_address
from hexbytes import HexBytes
from web3 import Web3
from web3.exceptions import ContractLogicError, TimeExhausted

from hyperchain_bootstrap.errors import InclusionTimeout
from hyperchain_bootstrap.transactions import CallPayload, ContractQuery, DeployPayload, TransactionIntent, TransactionReceipt

logger = logging.getLogger(__name__)


class Web3ChainClient:
    """Talk to one chain through web3.py.

    :param account:
        Signing account. ``None`` for a read-only client, e.g. for L2 polling.
    """

    def __init__(self, web3: Web3, account: LocalAccount | None = None, poll_latency: float = 0.5):
        self.web3 = web3
        self.account = account
        self.poll_latency = poll_latency
        #: tx hash -> address the CREATE2 factory said it would create
        self._create2_addresses: dict[str, str] = {}
        #: tx hash -> transaction, for revert reason replay
        self._sent: dict[str, dict] = {}

    def __repr__(self) -> str:
        return f"<Web3ChainClient chain {self.web3.eth.chain_id} account {self.account.address if self.account else None}>"

    def get_transaction_count(self, address: HexAddress | str) -> int:
        return self.web3.eth.get_transaction_count(to_checksum_address(address), "pending")

    def get_chain_id(self) -> int:
        return self.web3.eth.chain_id

    def get_gas_price(self) -> int:
        return self.web3.eth.gas_price

    def build_transaction(self, intent: TransactionIntent) -> dict:
        """Turn an intent into a legacy gas price transaction dict."""
        assert self.account is not None, "Read-only client cannot build transactions"
        payload = intent.payload
        tx = {
            "from": self.account.address,
            "chainId": self.get_chain_id(),
            "nonce": intent.nonce,
            "gasPrice": intent.gas_price,
            "gas": payload.gas_limit,
            "value": 0,
        }
        if isinstance(payload, DeployPayload):
            if payload.deterministic:
                tx["to"] = to_checksum_address(payload.factory)
                tx["data"] = HexBytes(intent.salt + payload.init_code)
            else:
                tx["data"] = HexBytes(payload.init_code)
        elif isinstance(payload, CallPayload):
            tx["to"] = to_checksum_address(payload.target)
            tx["data"] = HexBytes(payload.data)
            tx["value"] = payload.value
        else:
            raise TypeError(f"Unknown payload {payload}")
        return tx

    def send_transaction(self, intent: TransactionIntent) -> str:
        tx = self.build_transaction(intent)

        create2_address = None
        if isinstance(intent.payload, DeployPayload) and intent.payload.deterministic:
            # The factory returns the created address, ask it before sending
            result = self.web3.eth.call({"from": tx["from"], "to": tx["to"], "data": tx["data"]})
            if len(result) >= 20:
                create2_address = to_checksum_address(result[-20:])

        signed = self.account.sign_transaction(tx)
        tx_hash = self.web3.eth.send_raw_transaction(signed.raw_transaction).hex()
        if not tx_hash.startswith("0x"):
            tx_hash = "0x" + tx_hash

        self._sent[tx_hash] = tx
        if create2_address:
            self._create2_addresses[tx_hash] = create2_address
        return tx_hash

    def wait_for_receipt(self, tx_hash: str, timeout: float) -> TransactionReceipt:
        try:
            raw = self.web3.eth.wait_for_transaction_receipt(tx_hash, timeout=timeout, poll_latency=self.poll_latency)
        except TimeExhausted as e:
            raise InclusionTimeout(tx_hash, timeout) from e

        contract_address = raw.get("contractAddress") or self._create2_addresses.get(tx_hash)
        receipt = TransactionReceipt(
            tx_hash=tx_hash,
            status=raw["status"],
            block_number=raw["blockNumber"],
            contract_address=contract_address,
            extra={"gas_used": raw["gasUsed"]},
        )
        if not receipt.success:
            receipt.revert_reason = self.get_revert_reason(tx_hash, raw["blockNumber"])
        return receipt

    def get_revert_reason(self, tx_hash: str, block_number: int) -> str | None:
        """Replay a failed transaction with ``eth_call`` to get its revert reason."""
        tx = self._sent.get(tx_hash)
        if tx is None:
            return None
        replay = {k: v for k, v in tx.items() if k in ("from", "to", "data", "value", "gas")}
        try:
            self.web3.eth.call(replay, block_number - 1)
        except ContractLogicError as e:
            return str(e)
        except ValueError as e:
            # Node specific error format
            logger.warning("Could not replay %s: %s", tx_hash, e)
            return str(e)
        return None

    def call(self, query: ContractQuery) -> Any:
        result = self.web3.eth.call({"to": to_checksum_address(query.target), "data": HexBytes(query.data)})
        return query.decode_result(bytes(result))

    def get_code(self, address: HexAddress | str) -> bytes:
        return bytes(self.web3.eth.get_code(to_checksum_address(address)))
