"""
Stream Multiplexer — broadcast a run's events to any number of consumers.

Design:
- Each subscriber gets its own unbounded asyncio.Queue (no shared cursor, no
  cross-talk). A subscriber sees every event published after it subscribed,
  never the history before it.
- publish() never blocks the producer. Buffering is unbounded on purpose:
  inference and tool execution dominate cost, transport throughput doesn't,
  so a slow consumer may grow its own queue but never stalls the run or
  another consumer.
- close() delivers one terminal event (run-finish / error / abort) and then
  the end sentinel to every subscriber. Nothing is delivered after that.
- Views (text-only, full, custom) filter the same underlying sequence rather
  than having separate producer paths.

Usage:
    mux = StreamMultiplexer()
    text = mux.text_stream()
    full = mux.full_stream()

    mux.publish(event)            # from the step controller
    mux.close(terminal_event)

    async for chunk in text:      # str deltas only
        ...
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable

from streamrun.llm.contracts import StreamEvent, StreamEventType

logger = logging.getLogger(__name__)

# Sentinel to signal end of stream
_STREAM_END = object()

EventPredicate = Callable[[StreamEvent], bool]


class Subscription:
    """
    One consumer's view of the event sequence. An async iterator.

    Iterating to the end, or calling aclose(), unsubscribes.
    """

    def __init__(
        self,
        multiplexer: "StreamMultiplexer",
        queue: asyncio.Queue,
        predicate: EventPredicate | None = None,
        transform: Callable[[StreamEvent], Any] | None = None,
    ) -> None:
        self._multiplexer = multiplexer
        self._queue = queue
        self._predicate = predicate
        self._transform = transform
        self._finished = False

    def __aiter__(self) -> "Subscription":
        return self

    async def __anext__(self) -> Any:
        while not self._finished:
            item = await self._queue.get()
            if item is _STREAM_END:
                self._finish()
                break
            if self._predicate is None or self._predicate(item):
                return self._transform(item) if self._transform else item
        raise StopAsyncIteration

    async def aclose(self) -> None:
        self._finish()

    async def collect(self) -> list[Any]:
        """Drain the subscription into a list."""
        return [item async for item in self]

    @property
    def pending(self) -> int:
        """Events buffered but not yet consumed."""
        return self._queue.qsize()

    def _finish(self) -> None:
        if not self._finished:
            self._finished = True
            self._multiplexer._unsubscribe(self._queue)


class StreamMultiplexer:
    """
    Fan-out of one ordered event sequence to many independent subscribers.

    Single event loop. All methods are synchronous and non-blocking; only
    consumers suspend.
    """

    def __init__(self) -> None:
        self._subscribers: list[asyncio.Queue] = []
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def subscribe(
        self,
        predicate: EventPredicate | None = None,
        transform: Callable[[StreamEvent], Any] | None = None,
    ) -> Subscription:
        """
        Attach a new consumer. Returns its Subscription.

        Subscribing after close() yields an empty sequence.
        """
        queue: asyncio.Queue = asyncio.Queue()
        if self._closed:
            queue.put_nowait(_STREAM_END)
        else:
            self._subscribers.append(queue)
            logger.debug("Subscribed (total: %d)", len(self._subscribers))
        return Subscription(self, queue, predicate, transform)

    def full_stream(self) -> Subscription:
        """Every event, including the terminal one."""
        return self.subscribe()

    def text_stream(self) -> Subscription:
        """Text deltas only, as plain strings."""
        return self.subscribe(
            predicate=lambda e: e.type == StreamEventType.TEXT_DELTA,
            transform=lambda e: e.payload["text"],
        )

    def publish(self, event: StreamEvent) -> int:
        """
        Deliver an event to every current subscriber.

        Never blocks. A no-op once closed. Returns the number of subscribers
        that received the event.
        """
        if self._closed:
            return 0
        for queue in self._subscribers:
            queue.put_nowait(event)
        return len(self._subscribers)

    def close(self, terminal_event: StreamEvent | None = None) -> bool:
        """
        Deliver the terminal event, then end every subscription.

        Idempotent: returns False if already closed.
        """
        if self._closed:
            return False
        self._closed = True
        for queue in self._subscribers:
            if terminal_event is not None:
                queue.put_nowait(terminal_event)
            queue.put_nowait(_STREAM_END)
        logger.debug(
            "Multiplexer closed (%d subscribers, terminal=%s)",
            len(self._subscribers),
            terminal_event.type.value if terminal_event else None,
        )
        return True

    def _unsubscribe(self, queue: asyncio.Queue) -> None:
        try:
            self._subscribers.remove(queue)
        except ValueError:
            pass
