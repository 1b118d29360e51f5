"""In-process event channel: a queue drained by a pool of worker tasks"""

import asyncio
import inspect
import logging
import threading
from typing import Any, Awaitable, Callable, List, Optional, Union

from billing_gateway.infrastructure.observability.metrics import event_queue_depth_gauge

Handler = Callable[[Any], Union[None, Awaitable[Any]]]


class EventChannel:
    """
    Explicit publish/subscribe over an asyncio queue.

    `publish` only enqueues and returns. Worker tasks started by `start`
    take one event at a time and pass it to every subscriber. A failing
    subscriber is logged and does not affect other subscribers, other
    events, or the worker itself.
    """

    def __init__(self) -> None:
        self._queue: asyncio.Queue = asyncio.Queue()
        self._subscribers: List[Handler] = []
        self._workers: List[asyncio.Task] = []
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._loop_thread: Optional[int] = None

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    @property
    def running(self) -> bool:
        return bool(self._workers)

    def subscribe(self, handler: Handler) -> None:
        self._subscribers.append(handler)

    def publish(self, event: Any) -> None:
        """Enqueue an event; safe to call from the loop thread or any other thread"""
        if self._loop is None or threading.get_ident() == self._loop_thread:
            self._enqueue(event)
        else:
            self._loop.call_soon_threadsafe(self._enqueue, event)

    def _enqueue(self, event: Any) -> None:
        self._queue.put_nowait(event)
        event_queue_depth_gauge.set(self._queue.qsize())

    async def start(self, workers: int = 1) -> None:
        if self._workers:
            return
        if workers < 1:
            raise ValueError("At least one worker is required")
        self._loop = asyncio.get_running_loop()
        self._loop_thread = threading.get_ident()
        self._workers = [asyncio.create_task(self._work(i), name=f"event-worker-{i}") for i in range(workers)]
        logging.info("Event channel started", extra={"workers": workers})

    async def join(self) -> None:
        """Wait until every published event has been processed"""
        await self._queue.join()

    async def stop(self) -> None:
        for task in self._workers:
            task.cancel()
        await asyncio.gather(*self._workers, return_exceptions=True)
        self._workers = []
        self._loop = None
        self._loop_thread = None
        logging.info("Event channel stopped", extra={"pending_events": self._queue.qsize()})

    async def _work(self, worker_id: int) -> None:
        while True:
            event = await self._queue.get()
            event_queue_depth_gauge.set(self._queue.qsize())
            try:
                await self._dispatch(event)
            finally:
                self._queue.task_done()

    async def _dispatch(self, event: Any) -> None:
        for handler in self._subscribers:
            try:
                result = handler(event)
                if inspect.isawaitable(result):
                    await result
            except Exception:
                logging.exception(
                    "Event handler failed",
                    extra={"event_type": type(event).__name__, "handler": getattr(handler, "__qualname__", repr(handler))},
                )
