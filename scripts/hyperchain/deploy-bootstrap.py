"""Deploy the bridgehub and register the first hyperchain.

Runs the initial bridgehub deployment: CREATE2 factory and Multicall3
(local networks only), verifier, upgrades, validator timelock, governance,
bridgehub, state transition manager and the shared and legacy bridges.
Then registers the base token and creates a new chain.

Contracts must be compiled beforehand, we only read the build output.

Environment variables
---------------------

``JSON_RPC_L1``
    L1 RPC URL.

``DEPLOYER_PRIVATE_KEY``
    Deployer private key.

``ARTIFACTS_DIR``
    Hardhat ``artifacts/`` or Foundry ``out/`` directory.

``OUTPUT_FILE``
    Where to write the deployed addresses. Defaults to ``deployed-addresses.json``.

``NONCE``
    Nonce of the first transaction. Read from the network if not given.

``CHAIN_ETH_ZKSYNC_NETWORK_ID``
    Chain id of the new hyperchain. Defaults to ``CONTRACTS_ERA_CHAIN_ID``.

``ONLY_VERIFIER``
    Deploy the verifier only.

``DIAMOND_UPGRADE_INIT``
    Version of ``DiamondUpgradeInit<N>``. ``0`` means ``1``. Defaults to ``1``.

``SKIP_REGISTER_HYPERCHAIN``
    Stop after the bridgehub deployment.

``BASE_TOKEN_SYMBOL``, ``TOKENS_FILE``
    Non-ETH base token, looked up by symbol in a JSON token list.

``RESUME_FROM``
    Step to resume an aborted run from.
    Set ``ADDRESSES_FILE`` to the addresses and ``CREATE2_SALT`` to the salt of the aborted run.

Plus the configuration variables of :py:meth:`hyperchain_bootstrap.config.DeploymentConfig.from_environment`.

Example
-------

.. code-block:: shell

    anvil --port 8545 &

    JSON_RPC_L1=http://localhost:8545 \\
    DEPLOYER_PRIVATE_KEY=0xac0974bec39a17e36ba4a6b4d238ff944bacb478cbed5efcae784d7bf4f2ff80 \\
    ARTIFACTS_DIR=l1-contracts/artifacts \\
    python scripts/hyperchain/deploy-bootstrap.py
"""

import logging
import os
import sys
from pathlib import Path

from eth_account import Account
from eth_account.signers.local import LocalAccount
from tabulate import tabulate
from web3 import HTTPProvider, Web3

from hyperchain_bootstrap.artifacts import ArtifactStore
from hyperchain_bootstrap.bootstrap import load_testnet_tokens
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
    assert json_rpc_l1, "JSON_RPC_L1 environment variable required"

    private_key = os.environ.get("DEPLOYER_PRIVATE_KEY")
    assert private_key, "DEPLOYER_PRIVATE_KEY environment variable required"

    artifacts_dir = os.environ.get("ARTIFACTS_DIR")
    assert artifacts_dir, "ARTIFACTS_DIR environment variable required"

    output_file = Path(os.environ.get("OUTPUT_FILE", "deployed-addresses.json"))
    nonce = os.environ.get("NONCE")
    only_verifier = os.environ.get("ONLY_VERIFIER", "").lower() in ("true", "1", "yes")
    skip_register = os.environ.get("SKIP_REGISTER_HYPERCHAIN", "").lower() in ("true", "1", "yes")
    diamond_upgrade_init = int(os.environ.get("DIAMOND_UPGRADE_INIT", "1"))
    chain_id = os.environ.get("CHAIN_ETH_ZKSYNC_NETWORK_ID")
    base_token_symbol = os.environ.get("BASE_TOKEN_SYMBOL")
    tokens_file = os.environ.get("TOKENS_FILE")
    resume_from = os.environ.get("RESUME_FROM")

    account: LocalAccount = Account.from_key(private_key)
    web3 = Web3(HTTPProvider(json_rpc_l1))
    l1 = Web3ChainClient(web3, account)

    config = DeploymentConfig.from_environment(account.address)
    logger.info("Deploying from %s on %s, chain %d", account.address, get_url_domain(json_rpc_l1), l1.get_chain_id())

    deployer = HyperchainDeployer(
        config,
        l1,
        ArtifactStore(Path(artifacts_dir)),
        starting_nonce=int(nonce) if nonce else None,
    )

    try:
        deployer.bootstrap_and_register(
            resume_from=resume_from or None,
            only_verifier=only_verifier,
            diamond_upgrade_init=diamond_upgrade_init,
            register=not skip_register,
            chain_id=int(chain_id) if chain_id else None,
            base_token_symbol=base_token_symbol,
            tokens=load_testnet_tokens(Path(tokens_file)) if tokens_file else None,
        )
    except SequenceAborted as e:
        save_address_registry(e.registry, output_file)
        print(format_abort_diagnostic(e), file=sys.stderr)
        sys.exit(1)

    save_address_registry(deployer.registry, output_file)

    rows = sorted(deployer.registry.items())
    print(tabulate(rows, headers=["Contract", "Address"], tablefmt="simple"))
    print(f"Deployed {len(deployer.registry)} contracts, addresses written to {output_file}")


if __name__ == "__main__":
    main()
