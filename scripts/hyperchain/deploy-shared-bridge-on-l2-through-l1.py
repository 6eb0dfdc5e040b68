"""Deploy the L2 shared bridge by sending L1 → L2 transactions.

Publishes the bytecodes the L2 bridge needs through the bridgehub, waits
until L2 knows them and then deploys ``L2SharedBridge`` through the
L2 contract deployer. The L2 address is predicted from the salt.

Needs the addresses of a completed bootstrap run, at least ``BridgehubProxy``.

Environment variables
---------------------

``JSON_RPC_L1``, ``JSON_RPC_L2``
    L1 and L2 RPC URLs.

``DEPLOYER_PRIVATE_KEY``
    Deployer private key, with ETH on L1 for the L2 transaction base cost.

``ARTIFACTS_DIR``
    Directory with both L1 and L2 contract build output.

``ADDRESSES_FILE``
    Addresses written by ``deploy-bootstrap.py``.

``OUTPUT_FILE``
    Defaults to ``ADDRESSES_FILE``.

``CHAIN_ETH_ZKSYNC_NETWORK_ID``
    Target chain id. Defaults to ``CONTRACTS_ERA_CHAIN_ID``.

``NONCE``
    Nonce of the first transaction. Read from the network if not given.
"""

import logging
import os
import sys
from pathlib import Path

from eth_account import Account
from eth_account.signers.local import LocalAccount
from web3 import HTTPProvider, Web3

from hyperchain_bootstrap.artifacts import ArtifactStore
from hyperchain_bootstrap.config import DeploymentConfig
from hyperchain_bootstrap.deployer import HyperchainDeployer
from hyperchain_bootstrap.errors import SequenceAborted
from hyperchain_bootstrap.registry import save_address_registry
from hyperchain_bootstrap.sequencer import format_abort_diagnostic
from hyperchain_bootstrap.utils import get_url_domain, setup_console_logging
from hyperchain_bootstrap.web3_client import Web3ChainClient

logger = logging.getLogger(__name__)


def main():
    log_level = os.environ.get("LOG_LEVEL", "info")
    setup_console_logging(default_log_level=log_level)

    json_rpc_l1 = os.environ.get("JSON_RPC_L1")
    json_rpc_l2 = os.environ.get("JSON_RPC_L2")
    assert json_rpc_l1 and json_rpc_l2, "JSON_RPC_L1 and JSON_RPC_L2 environment variables required"

    private_key = os.environ.get("DEPLOYER_PRIVATE_KEY")
    assert private_key, "DEPLOYER_PRIVATE_KEY environment variable required"

    artifacts_dir = os.environ.get("ARTIFACTS_DIR")
    assert artifacts_dir, "ARTIFACTS_DIR environment variable required"

    addresses_file = os.environ.get("ADDRESSES_FILE")
    assert addresses_file, "ADDRESSES_FILE environment variable required"

    output_file = Path(os.environ.get("OUTPUT_FILE", addresses_file))
    nonce = os.environ.get("NONCE")
    chain_id = os.environ.get("CHAIN_ETH_ZKSYNC_NETWORK_ID")

    account: LocalAccount = Account.from_key(private_key)
    l1 = Web3ChainClient(Web3(HTTPProvider(json_rpc_l1)), account)
    l2 = Web3ChainClient(Web3(HTTPProvider(json_rpc_l2)))

    config = DeploymentConfig.from_environment(account.address)
    logger.info(
        "Deploying L2 shared bridge from %s, L1 %s, L2 %s",
        account.address,
        get_url_domain(json_rpc_l1),
        get_url_domain(json_rpc_l2),
    )

    deployer = HyperchainDeployer(
        config,
        l1,
        ArtifactStore(Path(artifacts_dir)),
        l2=l2,
        starting_nonce=int(nonce) if nonce else None,
    )

    try:
        deployer.deploy_shared_bridge_on_l2_through_l1(chain_id=int(chain_id) if chain_id else None)
    except SequenceAborted as e:
        save_address_registry(e.registry, output_file)
        print(format_abort_diagnostic(e), file=sys.stderr)
        sys.exit(1)

    save_address_registry(deployer.registry, output_file)
    print(f"L2 shared bridge at {deployer.registry['L2SharedBridge']}, addresses written to {output_file}")


if __name__ == "__main__":
    main()
