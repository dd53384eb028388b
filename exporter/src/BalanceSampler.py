"""BalanceSampler: Periodic sampling of auxiliary metrics.

Every cycle copies the coordinator's watermarks and tracker counts into
gauges, then reads the account balances:

- native balance of the fulfillment (node) account
- LINK withdrawable from the oracle (queried as the oracle owner)
- LINK held by the oracle contract
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING

from web3 import Web3

if TYPE_CHECKING:
    from .ContractUtility import ContractUtility
    from .Coordinator import Coordinator
    from .PrometheusSink import PrometheusSink

logger = logging.getLogger(__name__)


class BalanceSampler:
    """Samples balances and watermark gauges on a fixed period.

    :ivar sample_period: Seconds between cycles.
    """

    DEFAULT_SAMPLE_PERIOD = 15.0

    def __init__(
        self,
        contracts: ContractUtility,
        coordinator: Coordinator,
        sink: PrometheusSink,
        oracle_address: str,
        node_address: str,
        link_address: str,
        sample_period: float = DEFAULT_SAMPLE_PERIOD,
    ) -> None:
        """Initialize the sampler.

        :param contracts: Connection and ABI helper.
        :param coordinator: Source of watermarks and tracker counts.
        :param sink: Metrics to update.
        :param oracle_address: Oracle contract address.
        :param node_address: Fulfillment account address.
        :param link_address: LINK token contract address.
        :param sample_period: Seconds between cycles (default: 15).
        """
        self.contracts = contracts
        self.coordinator = coordinator
        self.sink = sink
        self.node_address = Web3.to_checksum_address(node_address)
        self.oracle = contracts.contract(oracle_address, "Oracle")
        self.link = contracts.contract(link_address, "LinkToken")
        self.sample_period = sample_period

    def sample_tracking(self) -> None:
        """Copy watermarks and tracker counts into gauges."""
        self.sink.set_watermarks(
            current=self.coordinator.current_height.value,
            last_request=self.coordinator.last_request_height.value,
            last_response=self.coordinator.last_fulfillment_height.value,
        )
        self.sink.set_tracking(
            trackers=len(self.coordinator.trackers()),
            pending_jobs=self.coordinator.pending_count(),
        )

    def update_balances(self) -> bool:
        """Read all balances; stops at the first failure.

        :returns: True if every balance was updated.
        """
        logger.debug("fetching balances")

        try:
            balance = self.contracts.w3.eth.get_balance(self.node_address)
        except Exception as e:
            logger.error(f"failed to fetch oracle balance: {e}")
            return False
        self.sink.set_eth_balance(Web3.from_wei(balance, "ether"))

        try:
            owner = self.oracle.functions.owner().call()
            withdrawable = self.oracle.functions.withdrawable().call({"from": owner})
        except Exception as e:
            logger.error(f"failed to fetch withdrawable LINK balance: {e}")
            return False
        self.sink.set_link_balance("withdrawable", withdrawable)

        try:
            link_balance = self.link.functions.balanceOf(self.oracle.address).call()
        except Exception as e:
            logger.error(f"failed to fetch LINK balance: {e}")
            return False
        self.sink.set_link_balance("balance", link_balance)

        logger.debug("fetched balances")
        return True

    async def run(self) -> None:
        """Sample forever."""
        logger.info("Starting metric routine")
        while True:
            self.sample_tracking()
            await asyncio.to_thread(self.update_balances)
            await asyncio.sleep(self.sample_period)
