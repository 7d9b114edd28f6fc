"""
Per-job event channels for Server-Sent Events.

Each job has at most one attached EventSink (last subscriber wins). A sink is
an asyncio.Queue drained by the SSE endpoint; events sent while nobody is
attached are dropped, since the record store stays the source of truth.
"""
import asyncio
import json
import logging
from typing import Any, AsyncIterator, Dict, Optional

from pydantic import BaseModel

logger = logging.getLogger(__name__)

EVENT_TYPES = frozenset({
    "log",
    "decision",
    "gather",
    "form",
    "chat",
    "agent",
    "tool",
    "scheduled",
    "state",
    "done",
    "error",
})


class StreamEvent(BaseModel):
    """SSE event structure."""

    event: str
    data: Dict[str, Any]
    id: Optional[int] = None

    def format(self) -> str:
        """Format as SSE message."""
        lines = []
        if self.id is not None:
            lines.append(f"id: {self.id}")
        lines.append(f"event: {self.event}")
        lines.append(f"data: {json.dumps(self.data, default=str)}")
        return "\n".join(lines) + "\n\n"


class EventSink:
    """Ordered event channel for a single subscriber of one job."""

    def __init__(self, job_id: str):
        self.job_id = job_id
        self._queue: asyncio.Queue = asyncio.Queue()
        self._closed = False
        self._counter = 0

    @property
    def closed(self) -> bool:
        return self._closed

    def send(self, event: str, data: Dict[str, Any]) -> bool:
        """Queue an event. Returns False when the sink is already closed."""
        if event not in EVENT_TYPES:
            raise ValueError(f"Unknown event type: {event}")
        if self._closed:
            return False
        self._counter += 1
        self._queue.put_nowait(StreamEvent(event=event, data=data, id=self._counter))
        return True

    def close(self) -> None:
        """End the stream after the events already queued."""
        if self._closed:
            return
        self._closed = True
        self._queue.put_nowait(None)

    async def next_event(self, timeout: Optional[float] = None) -> Optional[StreamEvent]:
        """
        Wait for the next event.

        Returns None once the sink is closed and drained.
        Raises asyncio.TimeoutError when ``timeout`` elapses first.
        """
        if timeout is None:
            return await self._queue.get()
        return await asyncio.wait_for(self._queue.get(), timeout=timeout)

    async def stream(self) -> AsyncIterator[StreamEvent]:
        while True:
            event = await self.next_event()
            if event is None:
                return
            yield event


class EventSinkRegistry:
    """
    Owns the job -> sink mapping for the transport layer.

    Constructed once per application and passed to the orchestrator.
    """

    def __init__(self):
        self._sinks: Dict[str, EventSink] = {}

    def attach(self, job_id: str) -> EventSink:
        """Attach a new subscriber, closing the previous one if any."""
        prior = self._sinks.get(job_id)
        if prior is not None:
            logger.info(f"Replacing subscriber for job {job_id}")
            prior.close()
        sink = EventSink(job_id)
        self._sinks[job_id] = sink
        return sink

    def get(self, job_id: str) -> Optional[EventSink]:
        return self._sinks.get(job_id)

    def send(self, job_id: str, event: str, data: Dict[str, Any]) -> bool:
        sink = self._sinks.get(job_id)
        if sink is None:
            if event not in EVENT_TYPES:
                raise ValueError(f"Unknown event type: {event}")
            logger.debug(f"No subscriber for job {job_id}, dropping '{event}' event")
            return False
        return sink.send(event, data)

    def close(self, job_id: str) -> None:
        sink = self._sinks.pop(job_id, None)
        if sink is not None:
            sink.close()

    def detach(self, job_id: str, sink: EventSink) -> None:
        """Remove ``sink`` if it is still the job's current subscriber."""
        if self._sinks.get(job_id) is sink:
            del self._sinks[job_id]
        sink.close()

    @property
    def connection_count(self) -> int:
        return len(self._sinks)
