"""Tests for HumanQueryBroker: asking, reply matching and the event loop."""

from __future__ import annotations

import asyncio

import pytest

from human_in_the_loop.broker import HumanQueryBroker, format_question
from human_in_the_loop.errors import (
    AlreadyPendingError,
    AskCancelledError,
    AskTransportError,
    CancelReason,
    NotReadyError,
    TransportError,
    TransportErrorKind,
)
from human_in_the_loop.models import InboundEvent
from human_in_the_loop.readiness import ReadinessGate

from .fakes import FakeTransport, settle


def _reply(text: str, author_id: str = "U", conversation_id: str = "T1") -> InboundEvent:
    return InboundEvent(
        conversation_id=conversation_id,
        channel_id=conversation_id,
        author_id=author_id,
        text=text,
    )


async def test_format_question_mentions_user():
    assert format_question("U", "Which branch?") == "<@U> Which branch?"


async def test_ask_before_ready_fails_without_transport_calls(
    broker: HumanQueryBroker, transport: FakeTransport
):
    with pytest.raises(NotReadyError, match="not ready"):
        await broker.ask("Anyone there?")

    assert transport.created == []
    assert transport.sent == []


async def test_ask_deploy_key_scenario(
    broker: HumanQueryBroker, transport: FakeTransport, ready_gate: ReadinessGate
):
    task = asyncio.create_task(broker.ask("What is the deploy key?"))
    await settle(lambda: bool(transport.sent))

    assert transport.created == [("C", "What is the deploy key?")]
    conversation, text = transport.sent[0]
    assert conversation.id == "T1"
    assert text == "<@U> What is the deploy key?"

    assert broker.handle_event(_reply("abc123")) is True
    assert await task == "abc123"
    assert len(broker.pending) == 0


async def test_sequential_questions_reuse_one_conversation(
    broker: HumanQueryBroker, transport: FakeTransport, ready_gate: ReadinessGate
):
    for question, answer in (("First?", "one"), ("Second?", "two")):
        task = asyncio.create_task(broker.ask(question))
        await settle(lambda: "T1" in broker.pending and len(transport.sent) > 0)
        broker.handle_event(_reply(answer))
        assert await task == answer

    assert transport.created == [("C", "First?")]
    assert [text for _, text in transport.sent] == ["<@U> First?", "<@U> Second?"]


async def test_second_question_while_pending_is_rejected(
    broker: HumanQueryBroker, transport: FakeTransport, ready_gate: ReadinessGate
):
    first = asyncio.create_task(broker.ask("First?"))
    await settle(lambda: bool(transport.sent))

    with pytest.raises(AlreadyPendingError):
        await broker.ask("Second?")
    assert len(transport.sent) == 1

    broker.handle_event(_reply("answer"))
    assert await first == "answer"


async def test_concurrent_first_questions_create_one_conversation(
    broker: HumanQueryBroker, transport: FakeTransport, ready_gate: ReadinessGate
):
    first = asyncio.create_task(broker.ask("First?"))
    second = asyncio.create_task(broker.ask("Second?"))

    with pytest.raises(AlreadyPendingError):
        await second
    await settle(lambda: bool(transport.sent))

    assert len(transport.created) == 1
    assert len(transport.sent) == 1
    broker.handle_event(_reply("answer"))
    assert await first == "answer"


async def test_events_from_other_authors_do_not_resolve(
    broker: HumanQueryBroker, transport: FakeTransport, ready_gate: ReadinessGate
):
    task = asyncio.create_task(broker.ask("Question?"))
    await settle(lambda: bool(transport.sent))

    assert broker.handle_event(_reply("I am the bot", author_id="BOT")) is False
    assert broker.handle_event(_reply("I am someone else", author_id="OTHER")) is False
    assert broker.handle_event(_reply("wrong thread", conversation_id="T9")) is False
    assert broker.pending.keys() == ["T1"]
    assert not task.done()

    assert broker.handle_event(_reply("right")) is True
    assert broker.handle_event(_reply("duplicate")) is False
    assert await task == "right"


async def test_create_failure_maps_to_transport_error(
    broker: HumanQueryBroker, transport: FakeTransport, ready_gate: ReadinessGate
):
    transport.create_error = TransportError(TransportErrorKind.FORBIDDEN, "no access")

    with pytest.raises(AskTransportError) as excinfo:
        await broker.ask("Question?")
    assert excinfo.value.error.kind is TransportErrorKind.FORBIDDEN
    assert transport.sent == []


async def test_send_failure_leaves_no_pending_state(
    broker: HumanQueryBroker, transport: FakeTransport, ready_gate: ReadinessGate
):
    transport.send_error = TransportError(TransportErrorKind.RATE_LIMITED, "slow down")

    with pytest.raises(AskTransportError):
        await broker.ask("Question?")
    assert len(broker.pending) == 0

    # The conversation survives and the next question can go through
    transport.send_error = None
    task = asyncio.create_task(broker.ask("Again?"))
    await settle(lambda: bool(transport.sent))
    broker.handle_event(_reply("yes"))
    assert await task == "yes"
    assert len(transport.created) == 1


async def test_reply_timeout_cancels_question(
    transport: FakeTransport, ready_gate: ReadinessGate
):
    broker = HumanQueryBroker(transport, ready_gate, channel_id="C", user_id="U", reply_timeout=0.01)

    with pytest.raises(AskCancelledError) as excinfo:
        await broker.ask("Quick?")
    assert excinfo.value.reason is CancelReason.TIMEOUT
    assert broker.handle_event(_reply("too late")) is False


async def test_dispatch_loop_resolves_reply(broker: HumanQueryBroker, transport: FakeTransport):
    events = asyncio.create_task(broker.dispatch_events())
    await settle(lambda: broker.gate.is_set)

    task = asyncio.create_task(broker.ask("What is the deploy key?"))
    await settle(lambda: bool(transport.sent))
    transport.push("BOT", "<@U> What is the deploy key?")
    transport.push("U", "abc123")

    assert await task == "abc123"
    transport.end()
    await events


async def test_stream_end_cancels_pending_with_shutting_down(
    broker: HumanQueryBroker, transport: FakeTransport
):
    events = asyncio.create_task(broker.dispatch_events())
    await settle(lambda: broker.gate.is_set)
    task = asyncio.create_task(broker.ask("Still there?"))
    await settle(lambda: bool(transport.sent))

    transport.end()
    await events

    with pytest.raises(AskCancelledError) as excinfo:
        await task
    assert excinfo.value.reason is CancelReason.SHUTTING_DOWN
    assert len(broker.pending) == 0


async def test_stream_error_cancels_pending_and_propagates(
    broker: HumanQueryBroker, transport: FakeTransport
):
    events = asyncio.create_task(broker.dispatch_events())
    await settle(lambda: broker.gate.is_set)
    task = asyncio.create_task(broker.ask("Still there?"))
    await settle(lambda: bool(transport.sent))

    transport.fail(TransportError(TransportErrorKind.DISCONNECTED, "socket closed"))
    with pytest.raises(TransportError):
        await events

    with pytest.raises(AskCancelledError):
        await task


async def test_shutdown_cancels_pending(
    broker: HumanQueryBroker, transport: FakeTransport, ready_gate: ReadinessGate
):
    task = asyncio.create_task(broker.ask("Question?"))
    await settle(lambda: bool(transport.sent))

    assert broker.shutdown() == 1
    with pytest.raises(AskCancelledError):
        await task
