"""EventSource: Capability interfaces the exporter core depends on.

An event source provides three restartable feeds. Each ``subscribe_*``
coroutine performs the subscription setup and returns an async iterator
of decoded events. Delivery is at-least-once; a feed may end or raise at
any time and its owner is expected to subscribe again.
"""

from abc import abstractmethod
from typing import AsyncIterator

from .Events import FulfillmentEvent, Header, RequestEvent


class EventSource:
    """Abstract base class for chain event feeds."""

    @abstractmethod
    async def subscribe_headers(self) -> AsyncIterator[Header]:
        """Subscribe to new block headers.

        :returns: Async iterator of headers.
        """
        pass

    @abstractmethod
    async def subscribe_requests(self, oracle_address: str) -> AsyncIterator[RequestEvent]:
        """Subscribe to request events emitted by the oracle contract.

        :param oracle_address: Oracle contract address.
        :returns: Async iterator of request events.
        """
        pass

    @abstractmethod
    async def subscribe_fulfillments(
        self, aggregator_address: str, from_block: int | None = None
    ) -> AsyncIterator[FulfillmentEvent]:
        """Subscribe to fulfillment events emitted by an aggregator contract.

        :param aggregator_address: Aggregator contract address.
        :param from_block: First block to deliver on the initial
            subscription; None starts at the current head.
        :returns: Async iterator of fulfillment events.
        """
        pass


class AggregatorProbe:
    """Abstract capability check for newly observed requesters."""

    @abstractmethod
    def is_aggregator(self, address: str) -> bool:
        """Check whether an address is an aggregator contract.

        :param address: Contract address to probe.
        :returns: True if the contract answers like an aggregator.
        :raises Exception: On transport failure (the answer is unknown).
        """
        pass
