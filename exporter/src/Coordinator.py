"""Coordinator: Aggregator discovery and block fan-out.

The coordinator sits between the oracle-wide feeds and the per-aggregator
trackers:

- Request events are routed to the tracker of their requester. A requester
  seen for the first time is probed once; confirmed aggregators get a new
  tracker (and fulfillment subscription), rejected addresses are ignored
  from then on.
- Block heights are fanned out to every tracker for deadline scans.
- Request, fulfillment and head heights are kept as monotonic watermarks.

.. code-block:: python

    >>> coordinator = Coordinator(probe, sink, spawn=start_fulfillment_loop)
    >>> coordinator.on_request(event)       # creates a tracker on first sight
    >>> coordinator.on_new_block(12345)     # deadline scan on every tracker
"""

from __future__ import annotations

import enum
import logging
import threading
from typing import TYPE_CHECKING, Callable

from web3 import Web3

from .AggregatorTracker import DEFAULT_MISS_THRESHOLD, AggregatorTracker
from .Events import PendingJob, RequestEvent
from .Watermark import Watermark

if TYPE_CHECKING:
    from .EventSource import AggregatorProbe
    from .OutcomeSink import OutcomeSink

logger = logging.getLogger(__name__)


class AggregatorStatus(enum.Enum):
    """Probe result cached per requester address."""

    CONFIRMED = "confirmed"
    REJECTED = "rejected"


class Coordinator:
    """Owns the aggregator trackers and the process-wide watermarks.

    :ivar probe: Capability check for new requester addresses.
    :ivar sink: Receiver of outcomes, shared by all trackers.
    :ivar miss_threshold: Deadline in blocks applied by every tracker.
    :ivar last_request_height: Highest request height seen.
    :ivar last_fulfillment_height: Highest matched fulfillment height seen.
    :ivar current_height: Highest block header height seen.
    """

    def __init__(
        self,
        probe: AggregatorProbe,
        sink: OutcomeSink,
        miss_threshold: int = DEFAULT_MISS_THRESHOLD,
        spawn: Callable[[AggregatorTracker], None] | None = None,
    ) -> None:
        """Initialize the coordinator.

        :param probe: Capability check for new requester addresses.
        :param sink: Receiver of outcomes.
        :param miss_threshold: Deadline in blocks (default: 15).
        :param spawn: Called once per new tracker to start its fulfillment loop.
        :raises ValueError: If miss_threshold is negative.
        """
        if miss_threshold < 0:
            raise ValueError("miss_threshold must not be negative")

        self.probe = probe
        self.sink = sink
        self.miss_threshold = miss_threshold
        self.spawn = spawn

        self.last_request_height = Watermark()
        self.last_fulfillment_height = Watermark()
        self.current_height = Watermark()

        self._trackers: dict[str, AggregatorTracker] = {}
        self._status: dict[str, AggregatorStatus] = {}
        self._lock = threading.Lock()

    @staticmethod
    def normalize_address(address: str) -> str:
        """Return the checksum form used as the tracker key."""
        return Web3.to_checksum_address(address)

    def get_tracker(self, address: str) -> AggregatorTracker | None:
        """Look up the tracker for an aggregator address."""
        return self._trackers.get(self.normalize_address(address))

    def trackers(self) -> list[AggregatorTracker]:
        """Snapshot of all registered trackers."""
        return list(self._trackers.values())

    def status(self, address: str) -> AggregatorStatus | None:
        """Cached probe result for an address, or None if never probed."""
        return self._status.get(self.normalize_address(address))

    def pending_count(self) -> int:
        """Total number of pending jobs across all trackers."""
        return sum(len(tracker.registry) for tracker in self.trackers())

    def on_request(self, event: RequestEvent) -> bool:
        """Route a request event to its aggregator's tracker.

        :param event: Decoded request event.
        :returns: True if a new pending job was inserted.
        """
        requester = self.normalize_address(event.requester)
        job = PendingJob.from_request(event)
        logger.info(
            f"received request (height={event.block_number}, requester={requester}, "
            f"request_id=0x{job.key}, spec_id={job.spec_label})"
        )
        self.last_request_height.advance(event.block_number)

        tracker = self._trackers.get(requester)
        if tracker is None:
            tracker = self._discover(requester, event.block_number)
            if tracker is None:
                return False

        if job.requester != requester:
            job = PendingJob(
                request_id=job.request_id,
                requester=requester,
                spec_id=job.spec_id,
                payment=job.payment,
                request_height=job.request_height,
            )
        return tracker.on_request(job)

    def _discover(self, requester: str, start_block: int) -> AggregatorTracker | None:
        """Probe a requester and create its tracker if it is an aggregator.

        The new tracker watches fulfillments from ``start_block``, the height
        of the request that revealed it, so a replayed request is matched
        even when the request feed is catching up behind the head.

        Creation is serialized so concurrent requests from a new address
        produce exactly one tracker and one subscription.
        """
        with self._lock:
            tracker = self._trackers.get(requester)
            if tracker is not None:
                return tracker

            if self._status.get(requester) is AggregatorStatus.REJECTED:
                logger.debug(f"requester {requester} previously rejected; dropping request")
                return None

            logger.debug(f"requester {requester} unknown; creating a new aggregator monitor")
            try:
                confirmed = self.probe.is_aggregator(requester)
            except Exception as e:
                logger.warning(f"failed to probe requester {requester}: {e}")
                return None

            if not confirmed:
                self._status[requester] = AggregatorStatus.REJECTED
                logger.warning(f"requester {requester} is not an aggregator")
                return None

            self._status[requester] = AggregatorStatus.CONFIRMED
            tracker = AggregatorTracker(
                address=requester,
                sink=self.sink,
                miss_threshold=self.miss_threshold,
                on_fulfillment_height=self.last_fulfillment_height.advance,
                start_block=start_block,
            )
            self._trackers[requester] = tracker

        logger.info(f"tracking aggregator {requester}")
        if self.spawn is not None:
            self.spawn(tracker)
        return tracker

    def on_new_block(self, height: int) -> int:
        """Advance the head watermark and run deadline scans.

        :param height: New block height.
        :returns: Number of jobs reported missed.
        """
        self.current_height.advance(height)
        missed = 0
        for tracker in self.trackers():
            missed += len(tracker.on_new_block(height))
        return missed
