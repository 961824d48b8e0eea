"""Progress Stream.

Single-writer, multi-reader fan-out of ``state`` and ``step`` events for one
execution. The execution actor is the only writer. Readers join at any time and
first receive the latest ``state`` snapshot, then every subsequent event.

Two subscriber implementations sit behind ``ProgressStream.subscribe``:

- ``PushSubscription``: events are pushed into a bounded per-reader queue. On
  overflow the oldest event is dropped; the reader resynchronizes from the next
  ``state`` event.
- ``PollingSubscription``: wakes up on an interval and yields the latest
  ``state`` snapshot whenever its version changed.

Readers can submit control commands through their subscription. Commands are
forwarded to the execution's command queue and are not acknowledged by the
stream; their effect shows up in a later ``state`` event.
"""

from __future__ import annotations

import asyncio
from typing import AsyncIterator, Awaitable, Callable, Dict, Optional, Set

from execguard_ai.core.logging_config import get_logger

from ..schemas.domain import Execution, Step
from .models import ControlCommand, StreamEvent, StreamEventType, SubscriptionMode

logger = get_logger(__name__)

CommandSink = Callable[[str, ControlCommand], Awaitable[None]]


class Subscription:
    """Common reader API shared by push and polling subscribers."""

    def __init__(self, stream: "ProgressStream") -> None:
        self._stream = stream

    @property
    def execution_id(self) -> str:
        return self._stream.execution_id

    async def send(self, command: ControlCommand) -> None:
        """Forward a control command to the execution."""
        await self._stream.submit(command)

    def close(self) -> None:
        self._stream._detach(self)

    def __aiter__(self) -> AsyncIterator[StreamEvent]:
        return self.events()

    def events(self) -> AsyncIterator[StreamEvent]:
        raise NotImplementedError


class PushSubscription(Subscription):
    def __init__(self, stream: "ProgressStream", *, maxsize: int) -> None:
        super().__init__(stream)
        self._queue: asyncio.Queue[Optional[StreamEvent]] = asyncio.Queue(maxsize=maxsize)
        self.dropped = 0

    def _offer(self, event: Optional[StreamEvent]) -> None:
        if self._queue.full():
            self._queue.get_nowait()
            self.dropped += 1
        self._queue.put_nowait(event)

    async def events(self) -> AsyncIterator[StreamEvent]:
        try:
            while True:
                event = await self._queue.get()
                if event is None:
                    return
                yield event
        finally:
            self.close()


class PollingSubscription(Subscription):
    def __init__(self, stream: "ProgressStream", *, interval: float) -> None:
        super().__init__(stream)
        self._interval = interval
        self._seen = -1

    async def events(self) -> AsyncIterator[StreamEvent]:
        try:
            while True:
                latest = self._stream.latest_state
                if latest is not None and latest.version > self._seen:
                    # The snapshot reflects every event up to the stream's current version.
                    self._seen = self._stream.version
                    yield latest
                elif self._stream.closed:
                    return
                await asyncio.sleep(self._interval)
        finally:
            self.close()


class ProgressStream:
    """Event fan-out for one execution."""

    def __init__(
        self,
        execution_id: str,
        *,
        sink: Optional[CommandSink] = None,
        queue_size: int = 100,
        on_idle: Optional[Callable[["ProgressStream"], None]] = None,
    ) -> None:
        self.execution_id = execution_id
        self._sink = sink
        self._queue_size = queue_size
        self._on_idle = on_idle
        self._subscribers: Set[Subscription] = set()
        self._latest_state: Optional[StreamEvent] = None
        self._version = 0
        self.closed = False

    @property
    def version(self) -> int:
        return self._version

    @property
    def latest_state(self) -> Optional[StreamEvent]:
        return self._latest_state

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def publish_state(self, execution: Execution) -> StreamEvent:
        """Publish a full snapshot of ``execution``."""
        self._version += 1
        event = StreamEvent(
            type=StreamEventType.state,
            execution_id=self.execution_id,
            version=self._version,
            execution=execution.model_copy(deep=True),
        )
        self._latest_state = event
        self._fan_out(event)
        return event

    def publish_step(self, step: Step) -> StreamEvent:
        self._version += 1
        event = StreamEvent(
            type=StreamEventType.step,
            execution_id=self.execution_id,
            version=self._version,
            step=step.model_copy(deep=True),
        )
        self._fan_out(event)
        return event

    def _fan_out(self, event: StreamEvent) -> None:
        for sub in list(self._subscribers):
            if isinstance(sub, PushSubscription):
                sub._offer(event)

    def subscribe(self, mode: SubscriptionMode = "push", *, interval: float = 1.0) -> Subscription:
        """
        Attach a new reader.

        Args:
            mode: ``"push"`` for queued delivery, ``"poll"`` for interval polling.
            interval: Polling interval in seconds (poll mode only).

        Raises:
            ValueError: If a polling reader asks for a non-positive interval.
        """
        sub: Subscription
        if mode == "poll":
            if interval <= 0:
                raise ValueError(f"Polling interval must be positive, got {interval}")
            sub = PollingSubscription(self, interval=interval)
        else:
            push = PushSubscription(self, maxsize=self._queue_size)
            if self._latest_state is not None:
                push._offer(self._latest_state)
            if self.closed:
                push._offer(None)
            sub = push
        self._subscribers.add(sub)
        logger.debug(f"Reader subscribed to execution {self.execution_id} ({mode})")
        return sub

    def _detach(self, sub: Subscription) -> None:
        self._subscribers.discard(sub)
        self._release_if_idle()

    def _release_if_idle(self) -> None:
        if self.closed and not self._subscribers and self._on_idle is not None:
            self._on_idle(self)

    async def submit(self, command: ControlCommand) -> None:
        if self._sink is None:
            raise RuntimeError(f"Progress stream of execution {self.execution_id} does not accept commands")
        await self._sink(self.execution_id, command)

    def close(self) -> None:
        """End the stream; readers drain what they have and then stop."""
        if self.closed:
            return
        self.closed = True
        for sub in list(self._subscribers):
            if isinstance(sub, PushSubscription):
                sub._offer(None)
        self._release_if_idle()


class ProgressBus:
    """Registry of per-execution progress streams.

    A stream stays registered while its execution runs. Once it is closed and
    its last reader has detached it is dropped; a later ``stream`` call for the
    same execution starts a fresh one.
    """

    def __init__(self, *, sink: Optional[CommandSink] = None, queue_size: int = 100) -> None:
        self._sink = sink
        self._queue_size = queue_size
        self._streams: Dict[str, ProgressStream] = {}

    def bind_sink(self, sink: CommandSink) -> None:
        self._sink = sink
        for stream in self._streams.values():
            stream._sink = sink

    def stream(self, execution_id: str) -> ProgressStream:
        stream = self._streams.get(execution_id)
        if stream is None:
            stream = ProgressStream(execution_id, sink=self._sink, queue_size=self._queue_size, on_idle=self._forget)
            self._streams[execution_id] = stream
        return stream

    def get(self, execution_id: str) -> Optional[ProgressStream]:
        return self._streams.get(execution_id)

    @property
    def stream_count(self) -> int:
        return len(self._streams)

    def _forget(self, stream: ProgressStream) -> None:
        if self._streams.get(stream.execution_id) is stream:
            del self._streams[stream.execution_id]
            logger.debug(f"Released progress stream of execution {stream.execution_id}")
