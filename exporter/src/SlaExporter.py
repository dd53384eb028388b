"""SlaExporter: Main orchestrator for the request/fulfillment SLA monitor.

Architecture:
    - One supervised task per oracle-wide feed (block headers, requests)
    - One supervised fulfillment task per discovered aggregator contract,
      started lazily by the Coordinator when a new requester is confirmed
    - One periodic task sampling balances and watermark gauges
    - A Prometheus HTTP endpoint serving the sink's registry

Every task is its own failure domain: a feed that loses its subscription
restarts after a fixed delay without touching the others.
"""

from __future__ import annotations

import asyncio
import logging
import threading
from typing import TYPE_CHECKING

from .AggregatorTracker import DEFAULT_MISS_THRESHOLD, AggregatorTracker
from .BalanceSampler import BalanceSampler
from .ContractUtility import ContractUtility
from .Coordinator import Coordinator
from .PrometheusSink import PrometheusSink
from .Supervisor import FeedSupervisor
from .Web3EventSource import Web3AggregatorProbe, Web3EventSource

if TYPE_CHECKING:
    from .EventSource import AggregatorProbe, EventSource
    from .Events import Header, RequestEvent
    from .OutcomeSink import OutcomeSink

logger = logging.getLogger(__name__)

# Mainnet LINK token, used when no token address is configured.
DEFAULT_LINK_ADDRESS = "0x514910771af9ca656af840dff83e8264ecf986ca"

# Restart the head feed if no block arrives for this long. Log feeds carry no
# liveness timeout: they may be idle indefinitely and raise on every failed poll.
HEAD_LIVENESS_TIMEOUT = 120.0


class SlaExporter:
    """Wires feeds, coordinator and metrics together and runs them.

    :ivar oracle_address: Oracle contract whose requests are monitored.
    :ivar source: Provider of the three event feeds.
    :ivar coordinator: Aggregator discovery and block fan-out.
    :ivar restart_delay: Fixed backoff for every feed supervisor.
    :ivar sampler: Optional periodic auxiliary metrics task.
    """

    def __init__(
        self,
        oracle_address: str,
        source: EventSource,
        probe: AggregatorProbe,
        sink: OutcomeSink,
        miss_threshold: int = DEFAULT_MISS_THRESHOLD,
        restart_delay: float = FeedSupervisor.DEFAULT_BACKOFF_SECONDS,
        head_liveness_timeout: float | None = HEAD_LIVENESS_TIMEOUT,
    ) -> None:
        """Initialize the exporter.

        :param oracle_address: Oracle contract address.
        :param source: Event feeds.
        :param probe: Aggregator capability check.
        :param sink: Outcome receiver.
        :param miss_threshold: Deadline in blocks (default: 15).
        :param restart_delay: Feed restart delay in seconds (default: 5.0).
        :param head_liveness_timeout: Max seconds between headers (default: 120).
        """
        self.oracle_address = oracle_address
        self.source = source
        self.sink = sink
        self.restart_delay = restart_delay
        self.head_liveness_timeout = head_liveness_timeout
        self.sampler: BalanceSampler | None = None

        self.coordinator = Coordinator(
            probe=probe,
            sink=sink,
            miss_threshold=miss_threshold,
            spawn=self._spawn_tracker,
        )

        self._loop: asyncio.AbstractEventLoop | None = None
        self._tasks: set[asyncio.Task] = set()
        self._deferred: list[FeedSupervisor] = []
        self._spawn_lock = threading.Lock()
        self._wakeup: asyncio.Event | None = None
        self._failure: BaseException | None = None

        self.head_supervisor = FeedSupervisor(
            name="head",
            subscribe=self.source.subscribe_headers,
            handle=self._handle_header,
            backoff_seconds=restart_delay,
            liveness_timeout=head_liveness_timeout,
        )
        self.request_supervisor = FeedSupervisor(
            name="request",
            subscribe=lambda: self.source.subscribe_requests(self.oracle_address),
            handle=self._handle_request,
            backoff_seconds=restart_delay,
        )

    @classmethod
    def connect(
        cls,
        rpc_url: str,
        oracle_address: str,
        node_address: str,
        link_address: str = DEFAULT_LINK_ADDRESS,
        miss_threshold: int = DEFAULT_MISS_THRESHOLD,
        poll_interval: float = Web3EventSource.DEFAULT_POLL_INTERVAL,
        restart_delay: float = FeedSupervisor.DEFAULT_BACKOFF_SECONDS,
        sample_period: float = BalanceSampler.DEFAULT_SAMPLE_PERIOD,
    ) -> SlaExporter:
        """Build an exporter backed by a web3 connection.

        :param rpc_url: Node RPC endpoint.
        :param oracle_address: Oracle contract address.
        :param node_address: Fulfillment account address.
        :param link_address: LINK token address.
        :param miss_threshold: Deadline in blocks.
        :param poll_interval: Feed polling interval in seconds.
        :param restart_delay: Feed restart delay in seconds.
        :param sample_period: Balance sampling period in seconds.
        :returns: Configured exporter.
        :raises OracleValidationError: If the oracle cannot be confirmed.
        """
        contracts = ContractUtility(rpc_url)
        owner = contracts.validate_oracle(oracle_address)
        logger.info(f"Oracle {oracle_address} confirmed (owner={owner})")

        sink = PrometheusSink()
        exporter = cls(
            oracle_address=oracle_address,
            source=Web3EventSource(contracts, poll_interval=poll_interval),
            probe=Web3AggregatorProbe(contracts),
            sink=sink,
            miss_threshold=miss_threshold,
            restart_delay=restart_delay,
        )
        exporter.sampler = BalanceSampler(
            contracts=contracts,
            coordinator=exporter.coordinator,
            sink=sink,
            oracle_address=oracle_address,
            node_address=node_address,
            link_address=link_address,
            sample_period=sample_period,
        )
        return exporter

    def _handle_header(self, header: Header) -> None:
        self.coordinator.on_new_block(header.number)

    async def _handle_request(self, event: RequestEvent) -> None:
        # The aggregator probe is a blocking contract call.
        await asyncio.to_thread(self.coordinator.on_request, event)

    def _spawn_tracker(self, tracker: AggregatorTracker) -> None:
        """Start a tracker's fulfillment loop; safe to call from any thread.

        Trackers created while the exporter is not running are started as
        soon as ``run()`` begins.
        """
        supervisor = tracker.create_supervisor(self.source, self.restart_delay)
        with self._spawn_lock:
            if self._loop is None:
                logger.debug(f"{tracker.address}: exporter not running; fulfillment loop deferred")
                self._deferred.append(supervisor)
                return
            self._loop.call_soon_threadsafe(self._start_task, supervisor.run())

    def _start_task(self, coro) -> asyncio.Task:
        task = asyncio.ensure_future(coro)
        self._tasks.add(task)
        task.add_done_callback(self._task_done)
        return task

    def _task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if not task.cancelled() and task.exception() is not None and self._failure is None:
            self._failure = task.exception()
        if self._wakeup is not None:
            self._wakeup.set()

    async def run(self) -> None:
        """Start every feed and run until cancelled.

        :raises Exception: The first exception escaping any task.
        """
        self._wakeup = asyncio.Event()
        self._failure = None
        with self._spawn_lock:
            self._loop = asyncio.get_running_loop()
            deferred, self._deferred = self._deferred, []

        self._start_task(self.head_supervisor.run())
        self._start_task(self.request_supervisor.run())
        if self.sampler is not None:
            self._start_task(self.sampler.run())
        for supervisor in deferred:
            self._start_task(supervisor.run())

        try:
            while self._tasks:
                await self._wakeup.wait()
                self._wakeup.clear()
                if self._failure is not None:
                    raise self._failure
        finally:
            with self._spawn_lock:
                self._loop = None
            self.stop()
            for task in list(self._tasks):
                task.cancel()
            await asyncio.gather(*self._tasks, return_exceptions=True)

    def stop(self) -> None:
        """Stop every supervisor from resubscribing."""
        self.head_supervisor.stop()
        self.request_supervisor.stop()
        for tracker in self.coordinator.trackers():
            if tracker.supervisor is not None:
                tracker.supervisor.stop()
