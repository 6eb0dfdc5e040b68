"""The bridgehub bootstrap deployment as step lists.

Three lists are provided:

- :py:func:`bridgehub_bootstrap_steps`: everything from the CREATE2 factory
  to the legacy bridge upgrade
- :py:func:`register_hyperchain_steps`: base token and new chain registration
- :py:func:`l2_shared_bridge_steps`: publish the L2 bridge bytecodes and deploy the
  L2 shared bridge through L1

Each step's ``rationale`` says why it sits where it does. The order is fixed,
do not sort or parallelise the lists.

Most contracts are deployed with ``CREATE2`` through the ``Create2Factory``
using the run salt, proxies use ``TransparentUpgradeableProxy``
behind the ``TransparentProxyAdmin`` which ends up owned by ``Governance``.
"""

import enum
import json
import logging
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Callable, Iterable

import eth_abi
from eth_typing import HexAddress

from hyperchain_bootstrap.bytecode_publisher import L2_CONTRACT_DEPLOYER_ADDRESS, BytecodePublisher, build_l2_transaction_request
from hyperchain_bootstrap.config import ADDRESS_ONE, ZERO_ADDRESS, ZERO_HASH, DeploymentConfig
from hyperchain_bootstrap.create2 import derive_address, hash_l2_bytecode
from hyperchain_bootstrap.steps import DeploymentStep, StepContext, local_network_only
from hyperchain_bootstrap.transactions import CallPayload, ContractQuery, DeployPayload, encode_call_data

logger = logging.getLogger(__name__)

#: Registry key of the CREATE2 factory all deterministic deployments go through
CREATE2_FACTORY = "Create2Factory"

#: Facets of a new hyperchain diamond and whether they can be frozen
DIAMOND_FACETS = {
    "AdminFacet": False,
    "ExecutorFacet": True,
    "GettersFacet": False,
    "MailboxFacet": True,
}

#: Steps ordered as historically deployed rather than by dependency
HISTORICAL_ORDER_RATIONALE = "Order mimics the historical deployment process, not a known dependency. Flagged for review."

#: ``FacetCut[]``, init address, init calldata
DIAMOND_CUT_TYPE = "((address,uint8,bool,bytes4[])[],address,bytes)"

#: Governance ``Operation``: calls, predecessor, salt
GOVERNANCE_OPERATION_TYPE = "((address,uint256,bytes)[],bytes32,bytes32)"

#: ``InitializeDataNewChain`` of ``DiamondInit``
INITIALIZE_DATA_NEW_CHAIN_TYPES = [
    "address",  # verifier
    "(bytes32,bytes32,bytes32)",  # verifier params
    "bytes32",  # L2 bootloader bytecode hash
    "bytes32",  # L2 default account bytecode hash
    "uint256",  # priority tx max gas limit
    "(uint8,uint32,uint32,uint32,uint32,uint64)",  # fee params
    "address",  # blob versioned hash retriever
]

#: ``StateTransitionManagerInitializeData``
STM_INITIALIZE_DATA_TYPE = "(address,address,address,bytes32,uint64,bytes32," + DIAMOND_CUT_TYPE + ",uint256)"


class FacetCutAction(enum.IntEnum):
    add = 0
    replace = 1
    remove = 2


@dataclass(slots=True, frozen=True)
class FacetCut:
    """One entry of a diamond cut."""

    facet: HexAddress | str

    action: FacetCutAction

    is_freezable: bool

    selectors: tuple[bytes, ...]

    def as_abi_tuple(self) -> tuple:
        return (self.facet, int(self.action), self.is_freezable, list(self.selectors))


@dataclass(slots=True, frozen=True)
class FeeParams:
    """Fee parameters of a new chain. Defaults are those of a rollup."""

    pubdata_pricing_mode: int = 0

    batch_overhead_l1_gas: int = 1_000_000

    max_pubdata_per_batch: int = 120_000

    max_l2_gas_per_batch: int = 80_000_000

    priority_tx_max_pubdata: int = 99_000

    minimal_l2_gas_price: int = 250_000_000

    def as_abi_tuple(self) -> tuple:
        return (
            self.pubdata_pricing_mode,
            self.batch_overhead_l1_gas,
            self.max_pubdata_per_batch,
            self.max_l2_gas_per_batch,
            self.priority_tx_max_pubdata,
            self.minimal_l2_gas_price,
        )


def facet_cuts(context: StepContext, extra_facets: Iterable[FacetCut] = ()) -> list[FacetCut]:
    """Add cuts for all deployed diamond facets, followed by ``extra_facets``."""
    cuts = []
    for name, freezable in DIAMOND_FACETS.items():
        selectors = context.artifacts.get(name).get_function_selectors()
        cuts.append(FacetCut(context.registry[name], FacetCutAction.add, freezable, tuple(selectors)))
    cuts.extend(extra_facets)
    return cuts


def build_diamond_cut(context: StepContext, extra_facets: Iterable[FacetCut] = (), fee_params: FeeParams | None = None) -> tuple:
    """Diamond cut initialising a new chain, as an ABI tuple.

    Carries the L2 bootstrap code hashes and genesis parameters
    of the configuration.
    """
    config = context.config
    fee_params = fee_params or FeeParams()
    genesis = config.genesis
    init_calldata = eth_abi.encode(
        INITIALIZE_DATA_NEW_CHAIN_TYPES,
        [
            context.registry["Verifier"],
            (genesis.recursion_node_level_vk_hash, genesis.recursion_leaf_level_vk_hash, genesis.recursion_circuits_set_vks_hash),
            config.bootloader_bytecode_hash,
            config.default_account_bytecode_hash,
            genesis.priority_tx_max_gas_limit,
            fee_params.as_abi_tuple(),
            context.registry["BlobVersionedHashRetriever"],
        ],
    )
    cuts = [c.as_abi_tuple() for c in facet_cuts(context, extra_facets)]
    return (cuts, context.registry["DiamondInit"], init_calldata)


def _deploy_step(
    name: str,
    artifact: str | Callable[[DeploymentConfig], str] | None = None,
    constructor: Callable[[StepContext], tuple[tuple[str, ...], tuple]] | None = None,
    requires: tuple[str, ...] = (),
    enabled: Callable[[DeploymentConfig], bool] | None = None,
    deterministic: bool = True,
    rationale: str = "",
) -> DeploymentStep:
    """Deploy a contract and register it under ``name``.

    :param artifact:
        Artifact name, or a function choosing it from the config. Defaults to ``name``.

    :param constructor:
        Returns constructor ABI types and values.

    :param deterministic:
        Deploy through the CREATE2 factory.
    """

    def build(context: StepContext) -> DeployPayload:
        if callable(artifact):
            artifact_name = artifact(context.config)
        else:
            artifact_name = artifact or name
        types, args = constructor(context) if constructor else ((), ())
        return DeployPayload(
            contract_name=name,
            bytecode=context.artifacts.get(artifact_name).bytecode,
            constructor_types=types,
            constructor_args=args,
            factory=context.registry[CREATE2_FACTORY] if deterministic else None,
        )

    if deterministic:
        requires = (CREATE2_FACTORY,) + requires

    return DeploymentStep(
        name=name,
        build=build,
        requires=requires,
        provides=name,
        enabled=enabled,
        rationale=rationale,
    )


def _proxy_step(
    name: str,
    implementation: str,
    initializer: Callable[[StepContext], bytes] | None = None,
    requires: tuple[str, ...] = (),
    rationale: str = "",
) -> DeploymentStep:
    """Deploy a ``TransparentUpgradeableProxy`` administered by the proxy admin."""

    def constructor(context: StepContext):
        data = initializer(context) if initializer else b""
        return (
            ("address", "address", "bytes"),
            (context.registry[implementation], context.registry["TransparentProxyAdmin"], data),
        )

    return _deploy_step(
        name,
        artifact="TransparentUpgradeableProxy",
        constructor=constructor,
        requires=(implementation, "TransparentProxyAdmin") + requires,
        rationale=rationale,
    )


def _call_step(
    name: str,
    target: str,
    function_name: str,
    arg_types: tuple[str, ...],
    args: Callable[[StepContext], tuple],
    requires: tuple[str, ...] = (),
    already_satisfied: Callable[[StepContext], bool] | None = None,
    rationale: str = "",
) -> DeploymentStep:
    """Call a function on the registered contract ``target``."""

    def build(context: StepContext) -> CallPayload:
        return CallPayload(
            target=context.registry[target],
            function_name=function_name,
            arg_types=arg_types,
            args=args(context),
        )

    return DeploymentStep(
        name=name,
        build=build,
        requires=(target,) + requires,
        already_satisfied=already_satisfied,
        rationale=rationale,
    )


def _query(context: StepContext, target: str, function_name: str, arg_types=(), args=(), result_types=("bool",)):
    return context.l1.call(
        ContractQuery(
            target=context.registry[target],
            function_name=function_name,
            arg_types=arg_types,
            args=args,
            result_types=result_types,
        )
    )


def _same_address(a: str, b: str) -> bool:
    return a.lower() == b.lower()


def _verifier_artifact(config: DeploymentConfig) -> str:
    return "TestnetVerifier" if config.is_local_network else "Verifier"


def _stm_initializer(extra_facets: tuple[FacetCut, ...]) -> Callable[[StepContext], bytes]:
    def initializer(context: StepContext) -> bytes:
        genesis = context.config.genesis
        data = (
            context.config.deployer_address,
            context.registry["ValidatorTimelock"],
            context.registry["GenesisUpgrade"],
            genesis.genesis_root,
            genesis.genesis_rollup_leaf_index,
            genesis.genesis_batch_commitment,
            build_diamond_cut(context, extra_facets),
            genesis.protocol_version,
        )
        return encode_call_data("initialize", (STM_INITIALIZE_DATA_TYPE,), (data,))

    return initializer


def _legacy_bridge_upgrade_operation(context: StepContext) -> tuple:
    """Governance operation upgrading the legacy bridge proxy to its implementation."""
    upgrade_call = encode_call_data(
        "upgrade",
        ("address", "address"),
        (context.registry["ERC20BridgeProxy"], context.registry["ERC20BridgeImplementation"]),
    )
    calls = [(context.registry["TransparentProxyAdmin"], 0, upgrade_call)]
    return (calls, ZERO_HASH, ZERO_HASH)


def bridgehub_bootstrap_steps(
    extra_facets: Iterable[FacetCut] = (),
    only_verifier: bool = False,
    diamond_upgrade_init: int = 1,
) -> list[DeploymentStep]:
    """Steps of the initial bridgehub deployment.

    :param extra_facets:
        Additional diamond cuts for new chains, after the standard facets.

    :param only_verifier:
        Stop after deploying the verifier.

    :param diamond_upgrade_init:
        Version of the ``DiamondUpgradeInit<N>`` contract to deploy. ``0`` means version 1.
    """
    extra_facets = tuple(extra_facets)

    steps = [
        _deploy_step(
            CREATE2_FACTORY,
            deterministic=False,
            enabled=local_network_only,
            rationale="Public networks already have a CREATE2 factory, every deterministic deployment goes through it",
        ),
        _deploy_step(
            "Multicall3",
            enabled=local_network_only,
            rationale="Public networks already have Multicall3",
        ),
        _deploy_step(
            "Verifier",
            artifact=_verifier_artifact,
            rationale="Referenced by the diamond init data of every new chain",
        ),
    ]

    if only_verifier:
        return steps

    steps.append(
        _deploy_step(
            "DiamondUpgradeInit",
            artifact=f"DiamondUpgradeInit{diamond_upgrade_init or 1}",
            rationale="Initialises diamond upgrades of existing chains, deployed ahead of the upgrade contracts",
        )
    )

    steps += [
        _deploy_step("DefaultUpgrade", rationale="Must exist before the state transition manager"),
        _deploy_step("GenesisUpgrade", rationale="Referenced by the state transition manager initialisation"),
        _deploy_step(
            "ValidatorTimelock",
            constructor=lambda c: (
                ("address", "uint32", "uint256"),
                (c.config.deployer_address, c.config.validator_timelock_execution_delay, c.config.era_chain_id),
            ),
            rationale="Must exist before it is wired to the state transition manager",
        ),
        _deploy_step(
            "Governance",
            constructor=lambda c: (
                ("address", "address", "uint256"),
                (c.config.owner_address, ZERO_ADDRESS, 0),
            ),
            rationale="Must exist before proxy admin ownership is transferred to it",
        ),
        _deploy_step("TransparentProxyAdmin", artifact="ProxyAdmin", rationale="Administers all proxies deployed below"),
        _call_step(
            "TransferProxyAdminOwnership",
            "TransparentProxyAdmin",
            "transferOwnership",
            ("address",),
            lambda c: (c.registry["Governance"],),
            requires=("Governance",),
            rationale="Proxy upgrades go through governance",
        ),
        _deploy_step("BridgehubImplementation", artifact="Bridgehub"),
        _proxy_step(
            "BridgehubProxy",
            "BridgehubImplementation",
            initializer=lambda c: encode_call_data("initialize", ("address",), (c.config.deployer_address,)),
            rationale="Chains, tokens and bridges are registered in the bridgehub",
        ),
        _deploy_step(
            "BlobVersionedHashRetriever",
            rationale="Referenced by the diamond init data",
        ),
    ]

    for facet in DIAMOND_FACETS:
        constructor = None
        if facet == "MailboxFacet":
            constructor = lambda c: (("uint256",), (c.config.era_chain_id,))
        steps.append(_deploy_step(facet, constructor=constructor, rationale="Part of the diamond cut of new chains"))

    steps += [
        _deploy_step("DiamondInit", rationale="Part of the diamond cut of new chains"),
        _deploy_step(
            "StateTransitionManagerImplementation",
            artifact="StateTransitionManager",
            constructor=lambda c: (
                ("address", "uint256"),
                (c.registry["BridgehubProxy"], c.config.max_number_of_hyperchains),
            ),
            requires=("BridgehubProxy",),
        ),
        _proxy_step(
            "StateTransitionManagerProxy",
            "StateTransitionManagerImplementation",
            initializer=_stm_initializer(extra_facets),
            requires=(
                "ValidatorTimelock",
                "GenesisUpgrade",
                "DefaultUpgrade",
                "Verifier",
                "BlobVersionedHashRetriever",
                "DiamondInit",
            )
            + tuple(DIAMOND_FACETS),
            rationale="Initialisation carries the diamond cut, all facets and upgrades must exist",
        ),
        _call_step(
            "RegisterStateTransitionManager",
            "BridgehubProxy",
            "addStateTransitionManager",
            ("address",),
            lambda c: (c.registry["StateTransitionManagerProxy"],),
            requires=("StateTransitionManagerProxy",),
            already_satisfied=lambda c: _query(
                c,
                "BridgehubProxy",
                "stateTransitionManagerIsRegistered",
                ("address",),
                (c.registry["StateTransitionManagerProxy"],),
            ),
            rationale="New chains can only be created through a registered state transition manager",
        ),
        _call_step(
            "SetStateTransitionManagerInValidatorTimelock",
            "ValidatorTimelock",
            "setStateTransitionManager",
            ("address",),
            lambda c: (c.registry["StateTransitionManagerProxy"],),
            requires=("StateTransitionManagerProxy",),
            rationale="The timelock asks the state transition manager for chain validators",
        ),
        _deploy_step(
            "DummyL1ERC20Bridge",
            rationale=HISTORICAL_ORDER_RATIONALE,
        ),
        _proxy_step(
            "ERC20BridgeProxy",
            "DummyL1ERC20Bridge",
            rationale="Legacy bridge proxy deployed before the shared bridge. " + HISTORICAL_ORDER_RATIONALE,
        ),
        _deploy_step(
            "SharedBridgeImplementation",
            artifact="L1SharedBridge",
            constructor=lambda c: (
                ("address", "address", "uint256", "address"),
                (
                    c.registry.get("WETH", ZERO_ADDRESS),
                    c.registry["BridgehubProxy"],
                    c.config.era_chain_id,
                    c.registry.get("EraDiamondProxy", ZERO_ADDRESS),
                ),
            ),
            requires=("BridgehubProxy",),
        ),
        _proxy_step(
            "SharedBridgeProxy",
            "SharedBridgeImplementation",
            initializer=lambda c: encode_call_data("initialize", ("address",), (c.config.deployer_address,)),
        ),
        _call_step(
            "RegisterSharedBridge",
            "BridgehubProxy",
            "setSharedBridge",
            ("address",),
            lambda c: (c.registry["SharedBridgeProxy"],),
            requires=("SharedBridgeProxy",),
            already_satisfied=lambda c: _same_address(
                _query(c, "BridgehubProxy", "sharedBridge", result_types=("address",)),
                c.registry["SharedBridgeProxy"],
            ),
            rationale="Deposits route through the shared bridge registered in the bridgehub",
        ),
        _deploy_step(
            "ERC20BridgeImplementation",
            artifact="L1ERC20Bridge",
            constructor=lambda c: (("address",), (c.registry["SharedBridgeProxy"],)),
            requires=("SharedBridgeProxy",),
            rationale="Needs the shared bridge. " + HISTORICAL_ORDER_RATIONALE,
        ),
        _call_step(
            "ScheduleERC20BridgeUpgrade",
            "Governance",
            "scheduleTransparent",
            (GOVERNANCE_OPERATION_TYPE, "uint256"),
            lambda c: (_legacy_bridge_upgrade_operation(c), 0),
            requires=("ERC20BridgeProxy", "ERC20BridgeImplementation", "TransparentProxyAdmin"),
            rationale="Governance owns the proxy admin, upgrades are scheduled then executed",
        ),
        _call_step(
            "ExecuteERC20BridgeUpgrade",
            "Governance",
            "execute",
            (GOVERNANCE_OPERATION_TYPE,),
            lambda c: (_legacy_bridge_upgrade_operation(c),),
            requires=("ERC20BridgeProxy", "ERC20BridgeImplementation", "TransparentProxyAdmin"),
            rationale="Migrates the legacy bridge proxy to the implementation backed by the shared bridge",
        ),
    ]
    return steps


def register_hyperchain_steps(
    chain_id: int,
    base_token: HexAddress | str = ADDRESS_ONE,
    extra_facets: Iterable[FacetCut] = (),
) -> list[DeploymentStep]:
    """Steps registering a new hyperchain in the bridgehub.

    Both registrations are guarded, so the list can be rerun against
    a network where they already happened.

    :param base_token:
        Token used for gas on the new chain. :py:data:`~hyperchain_bootstrap.config.ADDRESS_ONE` for ETH.
    """
    extra_facets = tuple(extra_facets)

    def create_new_chain_args(context: StepContext) -> tuple:
        diamond_cut = eth_abi.encode([DIAMOND_CUT_TYPE], [build_diamond_cut(context, extra_facets)])
        return (
            chain_id,
            context.registry["StateTransitionManagerProxy"],
            base_token,
            int.from_bytes(context.salt, "big"),
            context.config.owner_address,
            diamond_cut,
        )

    def get_hyperchain(context: StepContext) -> str:
        return _query(context, "BridgehubProxy", "getHyperchain", ("uint256",), (chain_id,), ("address",))

    create_new_chain = _call_step(
        "CreateNewChain",
        "BridgehubProxy",
        "createNewChain",
        ("uint256", "address", "address", "uint256", "address", "bytes"),
        create_new_chain_args,
        requires=(
            "StateTransitionManagerProxy",
            "Verifier",
            "BlobVersionedHashRetriever",
            "DiamondInit",
        )
        + tuple(DIAMOND_FACETS),
        already_satisfied=lambda c: not _same_address(get_hyperchain(c), ZERO_ADDRESS),
        rationale="The base token must be registered first",
    )

    return [
        _call_step(
            "RegisterBaseToken",
            "BridgehubProxy",
            "addToken",
            ("address",),
            lambda c: (base_token,),
            already_satisfied=lambda c: _query(c, "BridgehubProxy", "tokenIsRegistered", ("address",), (base_token,)),
            rationale="A chain can only be created with a registered base token",
        ),
        replace(create_new_chain, provides="DiamondProxy", read_output=get_hyperchain),
    ]


def l2_shared_bridge_steps(
    publisher: BytecodePublisher,
    chain_id: int,
) -> list[DeploymentStep]:
    """Deploy the L2 shared bridge from L1.

    The bridge's token dependencies are published first as a barrier step.
    The bridge itself is then created by an L1 → L2 call to the L2 contract deployer.
    Its address is predicted from the run salt and we wait until L2 has code there.
    """
    dependencies = ("UpgradeableBeacon", "L2StandardERC20", "BeaconProxy")

    publish = publisher.publish_step(
        "PublishL2BridgeBytecodes",
        lambda c: [c.artifacts.get(name).bytecode for name in dependencies],
        target_chain_id=chain_id,
        rationale="The L2 shared bridge deploys token beacons and proxies from these bytecodes",
    )

    def constructor_input(context: StepContext) -> bytes:
        return eth_abi.encode(["uint256"], [context.config.era_chain_id])

    def predict(context: StepContext) -> str:
        bytecode = context.artifacts.get("L2SharedBridge").bytecode
        # L1 → L2 calls from an EOA keep the sender address on L2
        return derive_address(
            context.salt,
            hash_l2_bytecode(bytecode),
            constructor_input(context),
            context.config.deployer_address,
        )

    def build(context: StepContext) -> CallPayload:
        bytecode = context.artifacts.get("L2SharedBridge").bytecode
        create2_call = encode_call_data(
            "create2",
            ("bytes32", "bytes32", "bytes"),
            (context.salt, hash_l2_bytecode(bytecode), constructor_input(context)),
        )
        return build_l2_transaction_request(
            context.l1,
            context.registry["BridgehubProxy"],
            chain_id,
            context.gas_price,
            context.config.deployer_address,
            l2_contract=L2_CONTRACT_DEPLOYER_ADDRESS,
            l2_calldata=create2_call,
            factory_deps=[bytecode],
            l2_gas_limit=publisher.l2_gas_limit,
        )

    def barrier(context: StepContext, receipt):
        publisher.wait_for_l2_contract(predict(context))

    deploy = DeploymentStep(
        name="DeployL2SharedBridge",
        build=build,
        requires=("BridgehubProxy",),
        provides="L2SharedBridge",
        after=(publish.name,),
        read_output=predict,
        barrier=barrier,
        rationale="Deploys from bytecodes the publish step made known on L2",
    )
    return [publish, deploy]


def load_testnet_tokens(path: Path) -> list[dict]:
    """Load a token list, ``[{"name": ..., "symbol": ..., "decimals": ..., "address": ...}]``."""
    with open(path, "r") as inp:
        tokens = json.load(inp)
    assert isinstance(tokens, list), f"Token file {path} must contain a JSON list"
    return tokens


def resolve_base_token(tokens: list[dict], symbol: str | None = None) -> str:
    """Find the base token address by symbol.

    :return:
        The token address, or :py:data:`~hyperchain_bootstrap.config.ADDRESS_ONE` (ETH) when no symbol is given.
    """
    if symbol is None:
        return ADDRESS_ONE
    for token in tokens:
        if token.get("symbol") == symbol:
            return token["address"]
    raise ValueError(f"Base token {symbol} not in token list. Known: {', '.join(t.get('symbol', '?') for t in tokens)}")
