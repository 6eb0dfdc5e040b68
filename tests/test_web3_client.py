"""web3.py client against a running Anvil.

Start Anvil and point ``JSON_RPC_ANVIL`` at it:

.. code-block:: shell

    anvil --port 8545 &
    JSON_RPC_ANVIL=http://localhost:8545 pytest tests/test_web3_client.py
"""

import os

import pytest
from eth_account import Account
from web3 import HTTPProvider, Web3

from hyperchain_bootstrap.create2 import derive_l1_create2_address
from hyperchain_bootstrap.testing import ANVIL_PRIVATE_KEY
from hyperchain_bootstrap.transactions import DeployPayload, TransactionIntent
from hyperchain_bootstrap.utils import generate_salt
from hyperchain_bootstrap.web3_client import Web3ChainClient

JSON_RPC_ANVIL = os.environ.get("JSON_RPC_ANVIL")

pytestmark = pytest.mark.skipif(not JSON_RPC_ANVIL, reason="JSON_RPC_ANVIL environment variable needed to run these tests")

#: Deterministic deployment proxy Anvil ships with
ANVIL_CREATE2_FACTORY = "0x4e59b44847b379578588920cA78FbF26c0B4956C"

#: Init code of a contract returning 42 for any call
ANSWER_BYTECODE = bytes.fromhex("600a600c600039600a6000f3602a60005260206000f3")


@pytest.fixture()
def client() -> Web3ChainClient:
    web3 = Web3(HTTPProvider(JSON_RPC_ANVIL))
    return Web3ChainClient(web3, Account.from_key(ANVIL_PRIVATE_KEY), poll_latency=0.1)


def _intent(client: Web3ChainClient, payload: DeployPayload, salt: bytes) -> TransactionIntent:
    return TransactionIntent(
        nonce=client.get_transaction_count(client.account.address),
        gas_price=client.get_gas_price() * 2,
        salt=salt,
        payload=payload,
    )


def test_plain_create(client):
    payload = DeployPayload(contract_name="Answer", bytecode=ANSWER_BYTECODE, gas_limit=200_000)
    tx_hash = client.send_transaction(_intent(client, payload, generate_salt()))

    receipt = client.wait_for_receipt(tx_hash, timeout=30)

    assert receipt.success
    assert client.get_code(receipt.contract_address) == bytes.fromhex("602a60005260206000f3")


def test_create2_through_factory(client):
    """The reported address is the one derived locally."""
    assert client.get_code(ANVIL_CREATE2_FACTORY), "Anvil has no deterministic deployment proxy"
    salt = generate_salt()
    payload = DeployPayload(contract_name="Answer", bytecode=ANSWER_BYTECODE, factory=ANVIL_CREATE2_FACTORY, gas_limit=200_000)

    tx_hash = client.send_transaction(_intent(client, payload, salt))
    receipt = client.wait_for_receipt(tx_hash, timeout=30)

    expected = derive_l1_create2_address(ANVIL_CREATE2_FACTORY, salt, ANSWER_BYTECODE)
    assert receipt.success
    assert receipt.contract_address == expected
    assert client.get_code(expected)


def test_nonce_follows_pending_count(client):
    nonce = client.get_transaction_count(client.account.address)
    payload = DeployPayload(contract_name="Answer", bytecode=ANSWER_BYTECODE, gas_limit=200_000)
    tx_hash = client.send_transaction(_intent(client, payload, generate_salt()))
    client.wait_for_receipt(tx_hash, timeout=30)
    assert client.get_transaction_count(client.account.address) == nonce + 1
    assert client.get_chain_id() == 31337
