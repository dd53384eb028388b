"""Test doubles and event builders shared by the exporter tests."""

import threading

from web3 import Web3

from exporter.src.EventSource import AggregatorProbe
from exporter.src.Events import PendingJob, RequestEvent
from exporter.src.OutcomeSink import OutcomeSink

AGGREGATOR_A = Web3.to_checksum_address("0x" + "a1" * 20)
AGGREGATOR_B = Web3.to_checksum_address("0x" + "b2" * 20)
STRANGER = Web3.to_checksum_address("0x" + "c3" * 20)


class RecordingSink(OutcomeSink):
    """OutcomeSink that keeps every call for assertions."""

    def __init__(self) -> None:
        self.fulfilled: list[tuple[str, str, int, int]] = []
        self.missed: list[tuple[str, str, int]] = []
        self.orphans: list[str] = []
        self._lock = threading.Lock()

    def observe_fulfilled(self, spec_id, requester, payment, latency_blocks):
        with self._lock:
            self.fulfilled.append((spec_id, requester, payment, latency_blocks))

    def observe_missed(self, spec_id, requester, payment):
        with self._lock:
            self.missed.append((spec_id, requester, payment))

    def observe_orphan_fulfillment(self, requester):
        with self._lock:
            self.orphans.append(requester)

    @property
    def outcome_count(self) -> int:
        return len(self.fulfilled) + len(self.missed)


class StaticProbe(AggregatorProbe):
    """Probe answering from a fixed set of aggregator addresses."""

    def __init__(self, aggregators=(), failing=()) -> None:
        self.aggregators = set(aggregators)
        self.failing = set(failing)
        self.calls: list[str] = []
        self._lock = threading.Lock()

    def is_aggregator(self, address):
        with self._lock:
            self.calls.append(address)
        if address in self.failing:
            raise ConnectionError("rpc unavailable")
        return address in self.aggregators


def make_request(
    request_id: bytes = b"\xaa" * 32,
    requester: str = AGGREGATOR_A,
    spec_id: bytes = b"4c7b7ffb66b344fbaa64995af81e355a",
    payment: int = 10**18,
    block_number: int = 100,
) -> RequestEvent:
    return RequestEvent(
        request_id=request_id,
        requester=requester,
        spec_id=spec_id,
        payment=payment,
        block_number=block_number,
    )


def make_job(request_id: bytes = b"\xaa" * 32, request_height: int = 100, **kwargs) -> PendingJob:
    return PendingJob.from_request(
        make_request(request_id=request_id, block_number=request_height, **kwargs)
    )
