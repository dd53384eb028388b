"""Web3EventSource: Chain feeds backed by a web3 JSON-RPC connection.

Feeds are implemented by polling, which works against any HTTP endpoint:

- headers: ``eth_blockNumber``; every height between polls is emitted
- requests / fulfillments: ``eth_getLogs`` over bounded block ranges

Blocking RPC calls run in worker threads so the event loop stays free.
Each log feed remembers the last block it covered; a resubscription
resumes from there, re-reading at most a few blocks. A first fulfillment
subscription may start behind the head, at the request that revealed the
aggregator. Redelivered events are expected and are deduplicated downstream.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, AsyncIterator, Callable

from web3.exceptions import BadFunctionCallOutput, ContractLogicError

from .ContractUtility import ContractUtility
from .EventSource import AggregatorProbe, EventSource
from .Events import FulfillmentEvent, Header, RequestEvent

logger = logging.getLogger(__name__)


def decode_request(log: Any) -> RequestEvent:
    """Convert a decoded ``OracleRequest`` log into a RequestEvent."""
    args = log["args"]
    return RequestEvent(
        request_id=bytes(args["requestId"]),
        requester=args["requester"],
        spec_id=bytes(args["specId"]),
        payment=int(args["payment"]),
        block_number=int(log["blockNumber"]),
    )


def decode_fulfillment(log: Any) -> FulfillmentEvent:
    """Convert a decoded ``ChainlinkFulfilled`` log into a FulfillmentEvent."""
    return FulfillmentEvent(
        request_id=bytes(log["args"]["id"]),
        block_number=int(log["blockNumber"]),
    )


class Web3EventSource(EventSource):
    """EventSource polling a node through web3.

    :ivar contracts: Connection and ABI helper.
    :ivar poll_interval: Seconds between polls when caught up.
    :ivar max_block_range: Largest block range per ``eth_getLogs`` call.
    """

    DEFAULT_POLL_INTERVAL = 2.0
    DEFAULT_MAX_BLOCK_RANGE = 500

    def __init__(
        self,
        contracts: ContractUtility,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
        max_block_range: int = DEFAULT_MAX_BLOCK_RANGE,
    ) -> None:
        """Initialize the event source.

        :param contracts: Connection and ABI helper.
        :param poll_interval: Seconds between polls (default: 2.0).
        :param max_block_range: Max blocks per log query (default: 500).
        """
        self.contracts = contracts
        self.poll_interval = poll_interval
        self.max_block_range = max(1, max_block_range)
        self._cursors: dict[str, int] = {}

    def _block_number(self) -> int:
        return self.contracts.w3.eth.block_number

    async def subscribe_headers(self) -> AsyncIterator[Header]:
        start = await asyncio.to_thread(self._block_number)
        return self._poll_headers(start)

    async def _poll_headers(self, start: int) -> AsyncIterator[Header]:
        yield Header(number=start)
        last = start
        while True:
            await asyncio.sleep(self.poll_interval)
            head = await asyncio.to_thread(self._block_number)
            for number in range(last + 1, head + 1):
                yield Header(number=number)
            last = max(last, head)

    async def subscribe_requests(self, oracle_address: str) -> AsyncIterator[RequestEvent]:
        oracle = self.contracts.contract(oracle_address, "Oracle")
        return await self._subscribe_logs(
            f"requests:{oracle.address}", oracle.events.OracleRequest, decode_request
        )

    async def subscribe_fulfillments(
        self, aggregator_address: str, from_block: int | None = None
    ) -> AsyncIterator[FulfillmentEvent]:
        aggregator = self.contracts.contract(aggregator_address, "Aggregator")
        return await self._subscribe_logs(
            f"fulfillments:{aggregator.address}",
            aggregator.events.ChainlinkFulfilled,
            decode_fulfillment,
            from_block=from_block,
        )

    async def _subscribe_logs(
        self,
        cursor_key: str,
        event: Any,
        decode: Callable[[Any], Any],
        from_block: int | None = None,
    ) -> AsyncIterator[Any]:
        head = await asyncio.to_thread(self._block_number)
        start = self._cursors.get(cursor_key)
        if start is None:
            # First subscription: from_block when given, never past the head.
            start = head if from_block is None else min(from_block, head)
        if start < head:
            logger.info(f"{cursor_key}: resuming from block {start} (head {head})")
        return self._poll_logs(cursor_key, event, decode, start)

    async def _poll_logs(
        self, cursor_key: str, event: Any, decode: Callable[[Any], Any], start: int
    ) -> AsyncIterator[Any]:
        from_block = start
        while True:
            head = await asyncio.to_thread(self._block_number)
            if head >= from_block:
                to_block = min(head, from_block + self.max_block_range - 1)
                logs = await asyncio.to_thread(
                    event.get_logs, from_block=from_block, to_block=to_block
                )
                for log in sorted(logs, key=lambda e: (e["blockNumber"], e["logIndex"])):
                    yield decode(log)
                from_block = to_block + 1
                self._cursors[cursor_key] = from_block
                if to_block < head:
                    continue
            await asyncio.sleep(self.poll_interval)


class Web3AggregatorProbe(AggregatorProbe):
    """Confirms aggregators by calling their ``owner()`` getter."""

    def __init__(self, contracts: ContractUtility) -> None:
        self.contracts = contracts

    def is_aggregator(self, address: str) -> bool:
        """Probe an address for the aggregator interface.

        :param address: Requester address.
        :returns: False if the address has no code or ``owner()`` fails.
        :raises Exception: On transport errors (answer unknown).
        """
        aggregator = self.contracts.contract(address, "Aggregator")
        code = self.contracts.w3.eth.get_code(aggregator.address)
        if not code:
            return False
        try:
            aggregator.functions.owner().call()
        except (BadFunctionCallOutput, ContractLogicError) as e:
            logger.debug(f"{address}: owner() call failed: {e}")
            return False
        return True
