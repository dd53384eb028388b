"""OutcomeSink: Abstract observer for finalized requests."""

from abc import abstractmethod


class OutcomeSink:
    """Abstract base class for outcome observers.

    The core calls these methods inline on its event paths, so
    implementations must return quickly and never block.
    """

    @abstractmethod
    def observe_fulfilled(
        self, spec_id: str, requester: str, payment: int, latency_blocks: int
    ) -> None:
        """Record a request fulfilled within its deadline.

        :param spec_id: Printable spec ID label.
        :param requester: Aggregator contract address.
        :param payment: Promised payment in wei.
        :param latency_blocks: Blocks between request and fulfillment.
        """
        pass

    @abstractmethod
    def observe_missed(self, spec_id: str, requester: str, payment: int) -> None:
        """Record a request that passed its deadline unfulfilled.

        :param spec_id: Printable spec ID label.
        :param requester: Aggregator contract address.
        :param payment: Promised payment in wei.
        """
        pass

    def observe_orphan_fulfillment(self, requester: str) -> None:
        """Record a fulfillment with no matching pending request.

        Optional; the default does nothing.

        :param requester: Aggregator contract address.
        """
        pass
