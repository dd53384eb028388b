"""Unit tests for the web3-backed event source."""

import asyncio
import itertools
from unittest.mock import MagicMock, PropertyMock

import pytest
from web3.exceptions import BadFunctionCallOutput

from exporter.src.Coordinator import Coordinator
from exporter.src.Events import FulfillmentEvent, Header, RequestEvent
from exporter.src.Web3EventSource import (
    Web3AggregatorProbe,
    Web3EventSource,
    decode_fulfillment,
    decode_request,
)
from exporter.tests.helpers import AGGREGATOR_A, make_request


def request_log(request_id: bytes, block: int, index: int = 0) -> dict:
    return {
        "args": {
            "requestId": request_id,
            "requester": AGGREGATOR_A,
            "specId": b"job".ljust(32, b"\x00"),
            "payment": 10**18,
        },
        "blockNumber": block,
        "logIndex": index,
    }


def make_contracts(block_numbers) -> MagicMock:
    contracts = MagicMock()
    type(contracts.w3.eth).block_number = PropertyMock(side_effect=block_numbers)
    return contracts


class TestDecoders:
    def test_decode_request(self) -> None:
        event = decode_request(request_log(b"\x01" * 32, 77))
        assert event == RequestEvent(
            request_id=b"\x01" * 32,
            requester=AGGREGATOR_A,
            spec_id=b"job".ljust(32, b"\x00"),
            payment=10**18,
            block_number=77,
        )

    def test_decode_fulfillment(self) -> None:
        log = {"args": {"id": b"\x02" * 32}, "blockNumber": 80, "logIndex": 3}
        assert decode_fulfillment(log) == FulfillmentEvent(b"\x02" * 32, 80)


class TestWeb3EventSourceHeaders:
    def test_emits_every_height(self) -> None:
        """Skipped heights between polls are all emitted."""
        contracts = make_contracts(iter([100, 100, 103]))
        source = Web3EventSource(contracts, poll_interval=0)

        async def collect():
            stream = await source.subscribe_headers()
            return [await stream.__anext__() for _ in range(4)]

        headers = asyncio.run(collect())
        assert headers == [Header(100), Header(101), Header(102), Header(103)]


class TestWeb3EventSourceLogs:
    def test_requests_sorted_by_position(self) -> None:
        contracts = make_contracts(iter([10, 12, 12]))
        event = contracts.contract.return_value.events.OracleRequest
        event.get_logs.return_value = [
            request_log(b"\x02" * 32, 12, 0),
            request_log(b"\x01" * 32, 11, 5),
        ]
        source = Web3EventSource(contracts, poll_interval=0)

        async def collect():
            stream = await source.subscribe_requests(AGGREGATOR_A)
            return [await stream.__anext__() for _ in range(2)]

        events = asyncio.run(collect())

        assert [e.block_number for e in events] == [11, 12]
        event.get_logs.assert_called_once_with(from_block=10, to_block=12)
        contracts.contract.assert_called_with(AGGREGATOR_A, "Oracle")

    def test_resubscribe_resumes_from_cursor(self) -> None:
        """A restarted feed continues after the last covered block."""
        contracts = make_contracts(itertools.chain([10], itertools.repeat(10)))
        event = contracts.contract.return_value.events.ChainlinkFulfilled
        event.get_logs.return_value = [
            {"args": {"id": b"\x01" * 32}, "blockNumber": 10, "logIndex": 0}
        ]
        source = Web3EventSource(contracts, poll_interval=0.001)

        async def first_then_second():
            stream = await source.subscribe_fulfillments(AGGREGATOR_A)
            await stream.__anext__()
            # Let the generator record its cursor, then drop the subscription
            event.get_logs.return_value = []
            task = asyncio.ensure_future(stream.__anext__())
            await asyncio.sleep(0.01)
            task.cancel()
            with pytest.raises(asyncio.CancelledError):
                await task
            return await source.subscribe_fulfillments(AGGREGATOR_A)

        asyncio.run(first_then_second())
        assert source._cursors[f"fulfillments:{contracts.contract.return_value.address}"] == 11

    def test_first_fulfillment_subscription_catches_up(self, probe, sink) -> None:
        """A request replayed behind the head is matched, not reported missed."""
        contracts = make_contracts(itertools.repeat(300))
        event = contracts.contract.return_value.events.ChainlinkFulfilled
        event.get_logs.return_value = [
            {"args": {"id": b"\xaa" * 32}, "blockNumber": 102, "logIndex": 0}
        ]
        source = Web3EventSource(contracts, poll_interval=0)
        coordinator = Coordinator(probe, sink)
        coordinator.on_request(make_request(request_id=b"\xaa" * 32, block_number=100))
        tracker = coordinator.get_tracker(AGGREGATOR_A)
        supervisor = tracker.create_supervisor(source)

        async def deliver_first():
            stream = await supervisor.subscribe()
            tracker.handle_fulfillment_event(await stream.__anext__())

        asyncio.run(deliver_first())
        coordinator.on_new_block(301)

        event.get_logs.assert_called_once_with(from_block=100, to_block=300)
        assert [latency for *_, latency in sink.fulfilled] == [2]
        assert sink.missed == []

    def test_start_block_never_past_head(self) -> None:
        contracts = make_contracts(itertools.repeat(50))
        event = contracts.contract.return_value.events.ChainlinkFulfilled
        event.get_logs.return_value = [
            {"args": {"id": b"\x01" * 32}, "blockNumber": 50, "logIndex": 0}
        ]
        source = Web3EventSource(contracts, poll_interval=0)

        async def collect():
            stream = await source.subscribe_fulfillments(AGGREGATOR_A, from_block=80)
            return await stream.__anext__()

        asyncio.run(collect())
        event.get_logs.assert_called_once_with(from_block=50, to_block=50)

    def test_max_block_range(self) -> None:
        contracts = make_contracts(iter([0, 1000]))
        event = contracts.contract.return_value.events.OracleRequest
        event.get_logs.return_value = [request_log(b"\x01" * 32, 5)]
        source = Web3EventSource(contracts, poll_interval=0, max_block_range=100)

        async def collect():
            stream = await source.subscribe_requests(AGGREGATOR_A)
            return await stream.__anext__()

        asyncio.run(collect())
        event.get_logs.assert_called_once_with(from_block=0, to_block=99)


class TestWeb3AggregatorProbe:
    def test_confirmed(self) -> None:
        contracts = MagicMock()
        contracts.w3.eth.get_code.return_value = b"\x60\x80"
        contracts.contract.return_value.functions.owner.return_value.call.return_value = AGGREGATOR_A

        assert Web3AggregatorProbe(contracts).is_aggregator(AGGREGATOR_A)
        contracts.contract.assert_called_once_with(AGGREGATOR_A, "Aggregator")

    def test_no_code(self) -> None:
        contracts = MagicMock()
        contracts.w3.eth.get_code.return_value = b""

        assert not Web3AggregatorProbe(contracts).is_aggregator(AGGREGATOR_A)

    def test_owner_call_fails(self) -> None:
        contracts = MagicMock()
        contracts.w3.eth.get_code.return_value = b"\x60\x80"
        owner_call = contracts.contract.return_value.functions.owner.return_value.call
        owner_call.side_effect = BadFunctionCallOutput("no owner")

        assert not Web3AggregatorProbe(contracts).is_aggregator(AGGREGATOR_A)

    def test_transport_error_propagates(self) -> None:
        contracts = MagicMock()
        contracts.w3.eth.get_code.side_effect = ConnectionError("down")

        with pytest.raises(ConnectionError):
            Web3AggregatorProbe(contracts).is_aggregator(AGGREGATOR_A)
