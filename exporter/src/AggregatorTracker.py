"""AggregatorTracker: Per-aggregator SLA tracking.

One tracker exists for every aggregator contract the exporter has seen
issue a request. It owns that contract's JobRegistry and the supervised
fulfillment subscription, and turns registry removals into outcomes:

- fulfillment for a pending job -> observe_fulfilled(latency)
- deadline passed on a new block -> observe_missed
- fulfillment for an unknown job -> dropped (counted as an orphan)
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Callable

from .Events import FulfillmentEvent, PendingJob
from .JobRegistry import JobRegistry
from .Supervisor import FeedSupervisor

if TYPE_CHECKING:
    from .EventSource import EventSource
    from .OutcomeSink import OutcomeSink

logger = logging.getLogger(__name__)

# Blocks a request may stay unfulfilled before it counts as missed.
DEFAULT_MISS_THRESHOLD = 15

# Fulfillment subscriptions are cheap to set up; fail fast.
FULFILLMENT_SETUP_TIMEOUT = 3.0


class AggregatorTracker:
    """Tracks outstanding requests for one aggregator contract.

    :ivar address: Aggregator contract address.
    :ivar registry: Pending jobs issued by this aggregator.
    :ivar miss_threshold: Allowed request-to-fulfillment delta in blocks.
    :ivar orphan_fulfillments: Fulfillments dropped for lack of a pending job.
    :ivar start_block: First block the fulfillment feed must cover.
    """

    def __init__(
        self,
        address: str,
        sink: OutcomeSink,
        miss_threshold: int = DEFAULT_MISS_THRESHOLD,
        on_fulfillment_height: Callable[[int], object] | None = None,
        start_block: int | None = None,
    ) -> None:
        """Initialize the tracker.

        :param address: Aggregator contract address.
        :param sink: Receiver of fulfilled/missed outcomes.
        :param miss_threshold: Allowed delta in blocks (default: 15).
        :param on_fulfillment_height: Called with the height of every
            matched fulfillment (used for the last-response watermark).
        :param start_block: Height of the request that revealed this
            aggregator; the fulfillment feed starts there. None starts
            at the current head.
        :raises ValueError: If miss_threshold is negative.
        """
        if miss_threshold < 0:
            raise ValueError("miss_threshold must not be negative")

        self.address = address
        self.sink = sink
        self.miss_threshold = miss_threshold
        self.on_fulfillment_height = on_fulfillment_height
        self.registry = JobRegistry(label=address)
        self.orphan_fulfillments = 0
        self.start_block = start_block
        self.supervisor: FeedSupervisor | None = None

    def __repr__(self) -> str:
        return f"AggregatorTracker({self.address!r}, pending={len(self.registry)})"

    def on_request(self, job: PendingJob) -> bool:
        """Start tracking a request issued by this aggregator.

        :param job: Pending job built from the request event.
        :returns: True if the job is new, False for a redelivered request.
        """
        return self.registry.try_insert(job)

    def on_fulfillment(self, request_id: bytes, fulfillment_height: int) -> bool:
        """Finalize a pending job as fulfilled.

        :param request_id: Identifier of the fulfilled request.
        :param fulfillment_height: Height the fulfillment was included at.
        :returns: True if a pending job was finalized.
        """
        job = self.registry.remove(request_id)
        if job is None:
            self.orphan_fulfillments += 1
            logger.debug(
                f"[{self.address}] fulfillment for unknown request dropped "
                f"(request_id=0x{request_id.hex()}, height={fulfillment_height})"
            )
            self.sink.observe_orphan_fulfillment(self.address)
            return False

        latency = fulfillment_height - job.request_height
        logger.info(
            f"[{self.address}] job fulfilled (height={fulfillment_height}, "
            f"request_id=0x{job.key}, spec_id={job.spec_label}, "
            f"request_height={job.request_height}, latency={latency})"
        )
        if self.on_fulfillment_height is not None:
            self.on_fulfillment_height(fulfillment_height)
        self.sink.observe_fulfilled(job.spec_label, job.requester, job.payment, latency)
        return True

    def handle_fulfillment_event(self, event: FulfillmentEvent) -> bool:
        """Feed handler for decoded fulfillment events."""
        return self.on_fulfillment(event.request_id, event.block_number)

    def on_new_block(self, height: int) -> list[PendingJob]:
        """Finalize every job whose deadline passed as missed.

        :param height: Latest block height.
        :returns: The jobs that were reported as missed.
        """
        expired = self.registry.scan_expired(height, self.miss_threshold)
        for job in expired:
            logger.info(
                f"[{self.address}] job fulfillment slot missed "
                f"(height={job.request_height}, request_id=0x{job.key}, "
                f"spec_id={job.spec_label}, current_height={height})"
            )
            self.sink.observe_missed(job.spec_label, job.requester, job.payment)
        return expired

    def create_supervisor(
        self,
        source: EventSource,
        backoff_seconds: float = FeedSupervisor.DEFAULT_BACKOFF_SECONDS,
    ) -> FeedSupervisor:
        """Build the supervised fulfillment subscription for this aggregator.

        :param source: Event source providing the fulfillment feed.
        :param backoff_seconds: Delay before resubscribing (default: 5.0).
        :returns: The supervisor; the caller schedules ``supervisor.run()``.
        """
        self.supervisor = FeedSupervisor(
            name=f"aggregator {self.address}",
            subscribe=lambda: source.subscribe_fulfillments(
                self.address, from_block=self.start_block
            ),
            handle=self.handle_fulfillment_event,
            backoff_seconds=backoff_seconds,
            setup_timeout=FULFILLMENT_SETUP_TIMEOUT,
        )
        return self.supervisor
