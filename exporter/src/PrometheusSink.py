"""PrometheusSink: Exposes outcomes and chain state as Prometheus metrics.

Metric names follow the ``cl_mon_*`` convention:

- cl_mon_fulfilled_total{spec_id, requester}
- cl_mon_missed_total{spec_id, requester}
- cl_mon_revenue_total{spec_id, requester, status}   (LINK)
- cl_mon_response_time{spec_id}                       (histogram, blocks)
- cl_mon_orphan_fulfillments_total{requester}
- cl_mon_height, cl_mon_last_request, cl_mon_last_response
- cl_mon_eth_balance, cl_mon_link_balance{type}
- cl_mon_trackers, cl_mon_pending_jobs
"""

from __future__ import annotations

import logging
from decimal import Decimal

from prometheus_client import CollectorRegistry, Counter, Gauge, Histogram, start_http_server
from web3 import Web3

from .OutcomeSink import OutcomeSink

logger = logging.getLogger(__name__)

NAMESPACE = "cl"
SUBSYSTEM = "mon"

RESPONSE_TIME_BUCKETS = (1, 2, 3, 4, 5, 10, 15)


def wei_to_link(amount: int) -> float:
    """Convert an 18-decimal token amount to whole tokens."""
    return float(Web3.from_wei(amount, "ether"))


class PrometheusSink(OutcomeSink):
    """OutcomeSink backed by prometheus_client metrics.

    Every instance owns a separate CollectorRegistry.

    :ivar registry: Registry holding this sink's metrics.
    """

    def __init__(self, registry: CollectorRegistry | None = None) -> None:
        """Create and register all metrics.

        :param registry: Registry to use; a new one is created if omitted.
        """
        self.registry = registry if registry is not None else CollectorRegistry()
        common = {"namespace": NAMESPACE, "subsystem": SUBSYSTEM, "registry": self.registry}

        self.last_response = Gauge("last_response", "Height of the last response", **common)
        self.last_request = Gauge("last_request", "Height of the last oracle request", **common)
        self.height = Gauge("height", "Last synced height", **common)
        self.response_time = Histogram(
            "response_time",
            "Response time in blocks",
            ["spec_id"],
            buckets=RESPONSE_TIME_BUCKETS,
            **common,
        )
        self.fulfilled = Counter(
            "fulfilled",
            "Number of successfully fulfilled requests",
            ["spec_id", "requester"],
            **common,
        )
        self.missed = Counter(
            "missed", "Number of missed requests", ["spec_id", "requester"], **common
        )
        self.revenue = Counter(
            "revenue",
            "Number of LINK tokens earned",
            ["spec_id", "requester", "status"],
            **common,
        )
        self.orphan_fulfillments = Counter(
            "orphan_fulfillments",
            "Fulfillments observed without a matching pending request",
            ["requester"],
            **common,
        )
        self.eth_balance = Gauge("eth_balance", "Balance of the oracle account", **common)
        self.link_balance = Gauge(
            "link_balance", "Link balance of the oracle", ["type"], **common
        )
        self.trackers = Gauge("trackers", "Number of tracked aggregator contracts", **common)
        self.pending_jobs = Gauge("pending_jobs", "Number of requests awaiting fulfillment", **common)

    def observe_fulfilled(
        self, spec_id: str, requester: str, payment: int, latency_blocks: int
    ) -> None:
        self.response_time.labels(spec_id=spec_id).observe(latency_blocks)
        self.fulfilled.labels(spec_id=spec_id, requester=requester).inc()
        self.revenue.labels(spec_id=spec_id, requester=requester, status="fulfilled").inc(
            wei_to_link(payment)
        )

    def observe_missed(self, spec_id: str, requester: str, payment: int) -> None:
        self.missed.labels(spec_id=spec_id, requester=requester).inc()
        self.revenue.labels(spec_id=spec_id, requester=requester, status="missed").inc(
            wei_to_link(payment)
        )

    def observe_orphan_fulfillment(self, requester: str) -> None:
        self.orphan_fulfillments.labels(requester=requester).inc()

    def set_watermarks(self, current: int, last_request: int, last_response: int) -> None:
        """Copy watermark values into their gauges."""
        self.height.set(current)
        self.last_request.set(last_request)
        self.last_response.set(last_response)

    def set_tracking(self, trackers: int, pending_jobs: int) -> None:
        """Update tracker and pending job gauges."""
        self.trackers.set(trackers)
        self.pending_jobs.set(pending_jobs)

    def set_eth_balance(self, ether: Decimal) -> None:
        self.eth_balance.set(float(ether))

    def set_link_balance(self, kind: str, amount: int) -> None:
        """Set a LINK balance gauge.

        :param kind: "balance" or "withdrawable".
        :param amount: Amount in the token's smallest unit.
        """
        self.link_balance.labels(type=kind).set(wei_to_link(amount))

    def serve(self, host: str, port: int) -> None:
        """Expose this sink's registry over HTTP at /metrics."""
        start_http_server(port, addr=host, registry=self.registry)
        logger.info(f"Serving metrics on http://{host}:{port}/metrics")
