"""Shared fixtures."""

from __future__ import annotations

import pytest

from human_in_the_loop.broker import HumanQueryBroker
from human_in_the_loop.readiness import ReadinessGate

from .fakes import FakeTransport


@pytest.fixture
def gate() -> ReadinessGate:
    return ReadinessGate()


@pytest.fixture
def ready_gate(gate: ReadinessGate) -> ReadinessGate:
    gate.set("BOT")
    return gate


@pytest.fixture
def transport(gate: ReadinessGate) -> FakeTransport:
    return FakeTransport(gate)


@pytest.fixture
def broker(transport: FakeTransport, gate: ReadinessGate) -> HumanQueryBroker:
    return HumanQueryBroker(transport, gate, channel_id="C", user_id="U")
