"""Nonce and gas price allocation for the deployer account.

Transactions are issued back to back without waiting for the node
to catch up, so the nonce is tracked locally:

- The starting nonce is read once from the network (pending transaction
  count) unless given explicitly
- Every allocation returns the previous value + 1

A failed starting nonce read aborts the run before anything is sent.

Each orchestrator owns its own :py:class:`NonceAllocator`. Never share one
between accounts or between concurrent runs.
"""

import logging
from dataclasses import dataclass
from decimal import ROUND_DOWN, Decimal

from eth_typing import HexAddress

from hyperchain_bootstrap.client import ChainClient
from hyperchain_bootstrap.errors import NonceAcquisitionFailure

logger = logging.getLogger(__name__)

#: Markup over the network suggested gas price,
#: to reduce the chance of underpriced transactions getting stuck.
DEFAULT_GAS_PRICE_MULTIPLIER = Decimal("1.4")


@dataclass(slots=True, frozen=True)
class GasPricePolicy:
    """How the gas price of the run is chosen.

    Example:

    .. code-block:: python

        # 30 gwei flat
        policy = GasPricePolicy(override=30 * 10**9)

        # Network price + 40%
        policy = GasPricePolicy()
    """

    #: Fixed gas price in wei. When set, the network is not asked.
    override: int | None = None

    #: Multiplier applied to the network suggested gas price
    multiplier: Decimal = DEFAULT_GAS_PRICE_MULTIPLIER

    def apply(self, network_gas_price: int) -> int:
        """Marked up gas price in wei, rounded down."""
        price = Decimal(network_gas_price) * Decimal(self.multiplier)
        return int(price.to_integral_value(rounding=ROUND_DOWN))


class NonceAllocator:
    """Hands out gap-free nonces and the gas price for one account."""

    def __init__(
        self,
        client: ChainClient,
        address: HexAddress | str,
        starting_nonce: int | None = None,
        gas_price_policy: GasPricePolicy | None = None,
    ):
        """
        :param client:
            Client of the layer the account transacts on.

        :param address:
            The deployer account.

        :param starting_nonce:
            Use this nonce for the first transaction instead of asking the network.

        :param gas_price_policy:
            Defaults to network price * :py:data:`DEFAULT_GAS_PRICE_MULTIPLIER`.
        """
        assert starting_nonce is None or starting_nonce >= 0, f"Bad starting nonce {starting_nonce}"
        self.client = client
        self.address = address
        self.gas_price_policy = gas_price_policy or GasPricePolicy()
        self._current_nonce = starting_nonce
        self._gas_price: int | None = None

    def __repr__(self) -> str:
        return f"<NonceAllocator {self.address} next nonce {self._current_nonce}>"

    @property
    def synced(self) -> bool:
        return self._current_nonce is not None

    def sync_nonce(self) -> int:
        """Read the pending transaction count from the network and restart from it.

        Used at the start of a run and before resubmitting after a timeout.

        :raise NonceAcquisitionFailure:
            If the network cannot be asked.
        """
        try:
            nonce = self.client.get_transaction_count(self.address)
        except Exception as e:
            raise NonceAcquisitionFailure(f"Could not read transaction count for {self.address}: {e}") from e

        logger.info("Nonce for %s synced from network: %d", self.address, nonce)
        self._current_nonce = nonce
        return nonce

    def allocate_nonce(self) -> int:
        """Get the nonce for the next transaction.

        Each call returns the previous value + 1.
        """
        if self._current_nonce is None:
            self.sync_nonce()
        nonce = self._current_nonce
        self._current_nonce += 1
        return nonce

    def current_gas_price(self) -> int:
        """Gas price in wei for the next transaction.

        Resolved once and then reused for the rest of the run,
        until :py:meth:`refresh_gas_price` is called.
        """
        if self._gas_price is None:
            self.refresh_gas_price()
        return self._gas_price

    def refresh_gas_price(self) -> int:
        """Resolve the gas price again from the policy."""
        policy = self.gas_price_policy
        if policy.override is not None:
            self._gas_price = policy.override
        else:
            network_price = self.client.get_gas_price()
            self._gas_price = policy.apply(network_price)
            logger.info(
                "Gas price %d wei (network %d wei * %s)",
                self._gas_price,
                network_price,
                policy.multiplier,
            )
        return self._gas_price
