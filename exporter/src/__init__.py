"""
Chainlink SLA Exporter - Request/Fulfillment Correlation Module

This module tracks oracle requests until they are fulfilled or missed:
- Events: Decoded chain events and the PendingJob record
- JobRegistry: Per-aggregator pending table with duplicate suppression
- AggregatorTracker: Fulfillment and deadline handling for one aggregator
- Coordinator: Aggregator discovery, block fan-out and watermarks
- OutcomeSink / PrometheusSink: Outcome observers
- FeedSupervisor: Restartable subscription loops
- SlaExporter: Main orchestrator
"""

from .AggregatorTracker import DEFAULT_MISS_THRESHOLD, AggregatorTracker
from .Coordinator import AggregatorStatus, Coordinator
from .Errors import ExporterError, OracleValidationError
from .Events import FulfillmentEvent, Header, PendingJob, RequestEvent, sanitize_spec_id
from .EventSource import AggregatorProbe, EventSource
from .JobRegistry import JobRegistry
from .OutcomeSink import OutcomeSink
from .PrometheusSink import PrometheusSink
from .SlaExporter import DEFAULT_LINK_ADDRESS, SlaExporter
from .Supervisor import FeedSupervisor
from .Watermark import Watermark

__all__ = [
    "AggregatorProbe",
    "AggregatorStatus",
    "AggregatorTracker",
    "Coordinator",
    "DEFAULT_LINK_ADDRESS",
    "DEFAULT_MISS_THRESHOLD",
    "EventSource",
    "ExporterError",
    "FeedSupervisor",
    "FulfillmentEvent",
    "Header",
    "JobRegistry",
    "OracleValidationError",
    "OutcomeSink",
    "PendingJob",
    "PrometheusSink",
    "RequestEvent",
    "SlaExporter",
    "Watermark",
    "sanitize_spec_id",
]
