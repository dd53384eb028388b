"""Shared fixtures for exporter tests."""

import pytest

from exporter.tests.helpers import AGGREGATOR_A, AGGREGATOR_B, RecordingSink, StaticProbe


@pytest.fixture
def sink() -> RecordingSink:
    return RecordingSink()


@pytest.fixture
def probe() -> StaticProbe:
    return StaticProbe(aggregators={AGGREGATOR_A, AGGREGATOR_B})
