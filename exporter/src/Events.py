"""Events: Decoded chain events and the pending job record.

The exporter consumes three kinds of already-decoded records:

- Header: a new block header (only the height matters)
- RequestEvent: an ``OracleRequest`` log emitted by the oracle contract
- FulfillmentEvent: a ``ChainlinkFulfilled`` log emitted by an aggregator

.. code-block:: python

    >>> event = RequestEvent(b"\\xaa" * 32, "0xRequester", b"spec", 10**18, 100)
    >>> job = PendingJob.from_request(event)
    >>> job.request_height
    100
"""

from __future__ import annotations

from dataclasses import dataclass


def sanitize_spec_id(spec_id: bytes) -> str:
    """Render a bytes32 spec ID as a printable label.

    Spec IDs are usually ASCII job IDs padded with NUL bytes. Anything
    that is not printable text is rendered as hex.

    :param spec_id: Raw spec ID bytes.
    :returns: Label-safe string.
    """
    stripped = spec_id.rstrip(b"\x00")
    try:
        text = stripped.decode("utf-8")
    except UnicodeDecodeError:
        return "0x" + spec_id.hex()
    if not text.isprintable():
        return "0x" + spec_id.hex()
    return text


@dataclass(frozen=True)
class Header:
    """A new block header.

    :ivar number: Block height.
    """

    number: int


@dataclass(frozen=True)
class RequestEvent:
    """An oracle request observed on chain.

    :ivar request_id: Opaque request identifier (bytes32).
    :ivar requester: Address of the contract that issued the request.
    :ivar spec_id: Job specification identifier (bytes32).
    :ivar payment: Promised payment in wei.
    :ivar block_number: Height the request was included at.
    """

    request_id: bytes
    requester: str
    spec_id: bytes
    payment: int
    block_number: int


@dataclass(frozen=True)
class FulfillmentEvent:
    """A fulfillment reported by an aggregator contract.

    :ivar request_id: Identifier of the fulfilled request.
    :ivar block_number: Height the fulfillment was included at.
    """

    request_id: bytes
    block_number: int


@dataclass(frozen=True)
class PendingJob:
    """An outstanding request waiting for fulfillment.

    :ivar request_id: Opaque request identifier, unique key.
    :ivar requester: Aggregator contract that issued the request.
    :ivar spec_id: Job specification identifier.
    :ivar payment: Promised payment in wei.
    :ivar request_height: Height the request was observed at.
    """

    request_id: bytes
    requester: str
    spec_id: bytes
    payment: int
    request_height: int

    @classmethod
    def from_request(cls, event: RequestEvent) -> PendingJob:
        """Build a pending job from a request event."""
        return cls(
            request_id=event.request_id,
            requester=event.requester,
            spec_id=event.spec_id,
            payment=event.payment,
            request_height=event.block_number,
        )

    @property
    def key(self) -> str:
        """Hex form of the request ID, used as the registry key."""
        return self.request_id.hex()

    @property
    def spec_label(self) -> str:
        """Printable spec ID for logs and metric labels."""
        return sanitize_spec_id(self.spec_id)
