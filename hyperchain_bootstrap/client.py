"""Interface to a chain, as seen by the orchestrator.

The orchestrator never holds private keys and never speaks JSON-RPC itself.
It talks to each layer through a :py:class:`ChainClient`:

- :py:class:`hyperchain_bootstrap.web3_client.Web3ChainClient` for real networks
- :py:class:`hyperchain_bootstrap.testing.InMemoryChain` for tests
"""

from typing import Any, Protocol

from eth_typing import HexAddress

from hyperchain_bootstrap.transactions import ContractQuery, TransactionIntent, TransactionReceipt


class ChainClient(Protocol):
    """Account, transaction and contract access for one layer."""

    def get_transaction_count(self, address: HexAddress | str) -> int:
        """Pending transaction count of the account."""

    def get_chain_id(self) -> int:
        ...

    def get_gas_price(self) -> int:
        """Network suggested gas price in wei."""

    def send_transaction(self, intent: TransactionIntent) -> str:
        """Sign and broadcast the intent.

        :return:
            Transaction hash as a hex string.
        """

    def wait_for_receipt(self, tx_hash: str, timeout: float) -> TransactionReceipt:
        """Block until the transaction is mined.

        For CREATE2 deployments the receipt ``contract_address``
        is the address the factory created.

        :raise hyperchain_bootstrap.errors.InclusionTimeout:
            The transaction was not mined within ``timeout`` seconds.
        """

    def call(self, query: ContractQuery) -> Any:
        """Read-only contract call, decoded with the query's result types."""

    def get_code(self, address: HexAddress | str) -> bytes:
        ...
