"""Tests for StreamMultiplexer — event fan-out to independent subscribers."""

import asyncio

import pytest

from conftest import ScriptedModel, text_response, tool_response
from streamrun import Message, ToolCall, step_count_is, stream_run
from streamrun.llm.contracts import StreamEvent, StreamEventType
from streamrun.stream.multiplexer import StreamMultiplexer


def _text(seq: int, text: str) -> StreamEvent:
    return StreamEvent.text_delta("run-1", seq, 0, text)


def _finish(seq: int) -> StreamEvent:
    return StreamEvent.abort("run-1", seq, "done")


@pytest.mark.asyncio
async def test_publish_and_consume():
    mux = StreamMultiplexer()
    sub = mux.full_stream()

    mux.publish(_text(1, "hello"))
    mux.close(_finish(2))

    events = [e async for e in sub]

    assert [e.sequence for e in events] == [1, 2]
    assert events[0].payload["text"] == "hello"


@pytest.mark.asyncio
async def test_multiple_subscribers_see_same_sequence():
    mux = StreamMultiplexer()
    s1 = mux.full_stream()
    s2 = mux.full_stream()

    delivered = mux.publish(_text(1, "a"))
    mux.publish(_text(2, "b"))
    mux.close(_finish(3))

    assert delivered == 2
    events1 = [e async for e in s1]
    events2 = [e async for e in s2]
    assert events1 == events2
    assert [e.sequence for e in events1] == [1, 2, 3]


@pytest.mark.asyncio
async def test_late_subscriber_sees_only_suffix():
    mux = StreamMultiplexer()
    early = mux.full_stream()

    mux.publish(_text(1, "a"))
    late = mux.full_stream()
    mux.publish(_text(2, "b"))
    mux.close(_finish(3))

    assert [e.sequence for e in await early.collect()] == [1, 2, 3]
    assert [e.sequence for e in await late.collect()] == [2, 3]


@pytest.mark.asyncio
async def test_text_stream_filters_to_strings():
    mux = StreamMultiplexer()
    text = mux.text_stream()

    mux.publish(StreamEvent.step_start("run-1", 1, 0))
    mux.publish(_text(2, "Hel"))
    mux.publish(_text(3, "lo"))
    mux.close(_finish(4))

    assert await text.collect() == ["Hel", "lo"]


@pytest.mark.asyncio
async def test_custom_view():
    mux = StreamMultiplexer()
    seqs = mux.subscribe(
        predicate=lambda e: e.sequence % 2 == 0, transform=lambda e: e.sequence
    )

    for i in range(1, 5):
        mux.publish(_text(i, "x"))
    mux.close()

    assert await seqs.collect() == [2, 4]


@pytest.mark.asyncio
async def test_close_is_idempotent_and_delivers_one_terminal():
    mux = StreamMultiplexer()
    sub = mux.full_stream()

    assert mux.close(_finish(1)) is True
    assert mux.close(_finish(2)) is False

    events = await sub.collect()
    assert [e.sequence for e in events] == [1]


@pytest.mark.asyncio
async def test_publish_after_close_is_dropped():
    mux = StreamMultiplexer()
    sub = mux.full_stream()
    mux.close(_finish(1))

    assert mux.publish(_text(2, "late")) == 0
    assert [e.sequence for e in await sub.collect()] == [1]


@pytest.mark.asyncio
async def test_subscribe_after_close_is_empty():
    mux = StreamMultiplexer()
    mux.close(_finish(1))

    sub = mux.full_stream()

    assert await asyncio.wait_for(sub.collect(), 1) == []


@pytest.mark.asyncio
async def test_aclose_unsubscribes():
    mux = StreamMultiplexer()
    sub = mux.full_stream()
    assert mux.subscriber_count() == 1

    await sub.aclose()

    assert mux.subscriber_count() == 0
    assert mux.publish(_text(1, "x")) == 0


@pytest.mark.asyncio
async def test_slow_consumer_does_not_block_publisher():
    mux = StreamMultiplexer()
    slow = mux.full_stream()
    fast = mux.full_stream()

    for i in range(1000):
        mux.publish(_text(i, "x"))

    assert slow.pending == 1000
    first = await fast.__anext__()
    assert first.sequence == 0
    assert slow.pending == 1000


@pytest.mark.asyncio
async def test_subscriber_joining_mid_run(double_tool, collect):
    model = ScriptedModel(
        tool_response(ToolCall("c1", "double", {"x": 21})),
        text_response("The answer is 42"),
    )

    run = stream_run(
        model, [Message.user("hi")], tools=[double_tool], stop_when=step_count_is(5)
    )
    full = run.full_stream()

    # Wait until the first step has finished, then join
    async for event in full:
        if event.type == StreamEventType.STEP_FINISH:
            joined_after = event.sequence
            break
    late = run.full_stream()

    rest = await collect(full)
    late_events = await collect(late)

    # The late subscriber gets a contiguous suffix of what the early one saw
    assert late_events
    assert rest[-len(late_events) :] == late_events
    assert all(e.sequence > joined_after for e in late_events)
    assert late_events[-1].type == StreamEventType.RUN_FINISH
