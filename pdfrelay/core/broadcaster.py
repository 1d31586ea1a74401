"""
Per-job publish/subscribe channel.

Each subscriber is a ``Sink``. Delivery is best-effort: a sink that raises
(closed connection, full buffer) is skipped and the remaining sinks still get
the event. A full QueueSink drops log and ping items but makes room for
terminal events, so every stream still sees its end. Every attached sink
also gets a keep-alive ping on a fixed interval until it is detached.
"""
from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict, Optional, Protocol, Tuple
import asyncio
import logging
import threading

from .models import EVENT_DONE, EVENT_ERROR, EVENT_STATUS, Job

logger = logging.getLogger("pdfrelay.broadcast")

UNKNOWN_JOB_MESSAGE = "Unknown job id"

# Items produced by QueueSink
ITEM_EVENT = "event"
ITEM_PING = "ping"
ITEM_CLOSE = "close"

_TERMINAL_EVENTS = frozenset({EVENT_DONE, EVENT_ERROR})


def _must_deliver(item: Tuple[str, Optional[str], Any]) -> bool:
    return item[0] == ITEM_CLOSE or (item[0] == ITEM_EVENT and item[1] in _TERMINAL_EVENTS)


class SinkError(Exception):
    pass


class SinkClosed(SinkError):
    pass


class SinkOverflow(SinkError):
    pass


class Sink(Protocol):
    closed: bool

    def send(self, event: Optional[str], data: Any) -> None: ...

    def ping(self) -> None: ...

    def close(self) -> None: ...


class QueueSink:
    """Sink backed by an asyncio.Queue owned by one event loop.

    Calls from other threads are handed to the owning loop, so producers never
    touch the queue directly off-loop.
    """

    def __init__(self, maxsize: int = 1000, loop: Optional[asyncio.AbstractEventLoop] = None):
        self._loop = loop or asyncio.get_running_loop()
        self._queue: asyncio.Queue[Tuple[str, Optional[str], Any]] = asyncio.Queue(maxsize=maxsize)
        self.closed = False

    def _put(self, item: Tuple[str, Optional[str], Any]) -> None:
        if self.closed:
            raise SinkClosed("sink is closed")
        if item[0] == ITEM_CLOSE:
            self.closed = True
        try:
            on_loop = asyncio.get_running_loop() is self._loop
        except RuntimeError:
            on_loop = False
        if on_loop:
            self._enqueue(item)
        else:
            self._loop.call_soon_threadsafe(self._enqueue_threadsafe, item)

    def _enqueue_threadsafe(self, item: Tuple[str, Optional[str], Any]) -> None:
        # no caller left to raise to
        try:
            self._enqueue(item)
        except SinkOverflow as e:
            logger.debug("drop %s: %s", item[0], e)

    def _enqueue(self, item: Tuple[str, Optional[str], Any]) -> None:
        try:
            self._queue.put_nowait(item)
        except asyncio.QueueFull:
            if not _must_deliver(item):
                raise SinkOverflow(f"sink buffer full ({self._queue.maxsize})")
            # terminal items displace the oldest log/ping so the reader still ends
            self._evict_one()
            self._queue.put_nowait(item)

    def _evict_one(self) -> None:
        items = [self._queue.get_nowait() for _ in range(self._queue.qsize())]
        victim = next((i for i, it in enumerate(items) if not _must_deliver(it)), 0)
        del items[victim]
        for it in items:
            self._queue.put_nowait(it)

    def send(self, event: Optional[str], data: Any) -> None:
        self._put((ITEM_EVENT, event, data))

    def ping(self) -> None:
        self._put((ITEM_PING, None, None))

    def close(self) -> None:
        if not self.closed:
            self._put((ITEM_CLOSE, None, None))

    def disconnect(self) -> None:
        """Mark the consumer side gone; later sends raise SinkClosed."""
        self.closed = True

    def __aiter__(self) -> AsyncIterator[Tuple[str, Optional[str], Any]]:
        return self._iterate()

    async def _iterate(self) -> AsyncIterator[Tuple[str, Optional[str], Any]]:
        while True:
            item = await self._queue.get()
            if item[0] == ITEM_CLOSE:
                return
            yield item


class Broadcaster:
    def __init__(self, heartbeat_interval: float = 2.0):
        self.heartbeat_interval = heartbeat_interval
        self._heartbeats: Dict[int, asyncio.Task] = {}
        self._hb_lock = threading.Lock()

    # --- delivery ---

    @staticmethod
    def publish(sink: Sink, event: Optional[str], payload: Any) -> bool:
        """Best-effort publish to one sink.

        Errors are logged and discarded; the return value only says whether
        the sink accepted the event.
        """
        try:
            sink.send(event, payload)
            return True
        except Exception as e:
            logger.debug("drop event=%s sink=%r: %s", event, sink, e)
            return False

    def broadcast(self, job: Job, event: str, payload: Any) -> None:
        with job.lock:
            sinks = list(job.subscribers)
            for sink in sinks:
                self.publish(sink, event, payload)

    # --- subscription lifecycle ---

    def attach(self, job: Optional[Job], sink: Sink) -> bool:
        if job is None:
            self.publish(sink, EVENT_ERROR, {"message": UNKNOWN_JOB_MESSAGE})
            try:
                sink.close()
            except Exception as e:
                logger.debug("close failed for sink=%r: %s", sink, e)
            return False

        with job.lock:
            job.subscribers.add(sink)
            self.publish(sink, EVENT_STATUS, {"status": job.state.value})
            n = len(job.subscribers)
        self._start_heartbeat(sink)
        logger.info("attach job=%s subscribers=%d", job.id, n)
        return True

    def detach(self, job: Optional[Job], sink: Sink) -> None:
        self._stop_heartbeat(sink)
        if job is None:
            return
        with job.lock:
            if sink not in job.subscribers:
                return
            job.subscribers.discard(sink)
            n = len(job.subscribers)
        logger.info("detach job=%s subscribers=%d", job.id, n)

    @asynccontextmanager
    async def subscription(self, job: Optional[Job], sink: Sink):
        attached = self.attach(job, sink)
        try:
            yield attached
        finally:
            self.detach(job, sink)

    # --- heartbeat ---

    def _start_heartbeat(self, sink: Sink) -> None:
        key = id(sink)
        task = asyncio.get_running_loop().create_task(self._heartbeat(sink))
        with self._hb_lock:
            old = self._heartbeats.pop(key, None)
            self._heartbeats[key] = task
        if old is not None:
            old.cancel()

    def _stop_heartbeat(self, sink: Sink) -> None:
        with self._hb_lock:
            task = self._heartbeats.pop(id(sink), None)
        if task is not None:
            task.cancel()

    async def _heartbeat(self, sink: Sink) -> None:
        while True:
            await asyncio.sleep(self.heartbeat_interval)
            try:
                sink.ping()
            except Exception as e:
                logger.debug("heartbeat failed for sink=%r: %s", sink, e)

    def active_heartbeats(self) -> int:
        with self._hb_lock:
            return sum(1 for t in self._heartbeats.values() if not t.done())
