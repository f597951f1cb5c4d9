from __future__ import annotations

import asyncio
from dataclasses import dataclass
import logging
from typing import Awaitable, Callable

from coursehub.core.config import get_settings
from coursehub.domain.events import DomainEvent, EventType, event_key


logger = logging.getLogger(__name__)

EventHandler = Callable[[DomainEvent], Awaitable[None]]


@dataclass(frozen=True)
class Subscription:
    event_type: str
    name: str
    handler: EventHandler


class EventBus:
    """In-process publish/subscribe over a bounded queue.

    ``publish`` never blocks and never raises into the caller: the event is
    queued or, when the queue is full, dropped with a warning (at-most-once).
    Worker tasks deliver each event to the handlers registered for its type in
    subscription order, isolating every handler failure. Subscriptions are
    fixed once the bus has started.
    """

    def __init__(self, *, max_queue_size: int | None = None, workers: int | None = None) -> None:
        settings = get_settings()
        size = max_queue_size if max_queue_size is not None else settings.event_bus_max_queue_size
        count = workers if workers is not None else settings.event_bus_workers
        self._queue: asyncio.Queue[DomainEvent] = asyncio.Queue(maxsize=max(1, int(size)))
        self._worker_count = max(1, int(count))
        self._subscriptions: dict[str, list[Subscription]] = {}
        self._tasks: list[asyncio.Task[None]] = []
        self._frozen = False
        self._dropped = 0

    @property
    def running(self) -> bool:
        return bool(self._tasks)

    @property
    def dropped(self) -> int:
        return self._dropped

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    def subscribe(
        self,
        event_type: EventType | str,
        handler: EventHandler,
        *,
        name: str | None = None,
    ) -> Subscription:
        # Registration is a startup concern; late subscribers would race in-flight deliveries.
        if self._frozen:
            raise RuntimeError("EventBus subscriptions are frozen after start()")
        key = event_key(event_type)
        subscription = Subscription(
            event_type=key,
            name=name or getattr(handler, "__qualname__", repr(handler)),
            handler=handler,
        )
        self._subscriptions.setdefault(key, []).append(subscription)
        return subscription

    def handlers_for(self, event_type: EventType | str) -> tuple[str, ...]:
        return tuple(sub.name for sub in self._subscriptions.get(event_key(event_type), ()))

    def publish(self, event: DomainEvent) -> bool:
        # Enqueue without awaiting; a full queue drops the event instead of stalling the publisher.
        try:
            self._queue.put_nowait(event)
        except asyncio.QueueFull:
            self._dropped += 1
            logger.warning(
                "event_dropped event_type=%s event_id=%s tenant_id=%s queue_size=%s",
                event.key,
                event.id,
                event.tenant_id,
                self._queue.maxsize,
            )
            return False
        logger.debug("event_published event_type=%s event_id=%s", event.key, event.id)
        return True

    def start(self) -> None:
        if self._tasks:
            return
        self._frozen = True
        for index in range(self._worker_count):
            self._tasks.append(asyncio.create_task(self._run_worker(index), name=f"event-bus-{index}"))
        logger.info("event_bus_started workers=%s", self._worker_count)

    async def join(self) -> None:
        # Wait until every queued event has been delivered to all of its handlers.
        await self._queue.join()

    async def stop(self, *, drain: bool = True) -> None:
        if drain and self._tasks:
            await self._queue.join()
        tasks, self._tasks = self._tasks, []
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        logger.info("event_bus_stopped pending=%s dropped=%s", self._queue.qsize(), self._dropped)

    async def _run_worker(self, index: int) -> None:
        while True:
            event = await self._queue.get()
            try:
                await self._deliver(event)
            finally:
                self._queue.task_done()

    async def _deliver(self, event: DomainEvent) -> None:
        for subscription in self._subscriptions.get(event.key, ()):
            try:
                await subscription.handler(event)
            except Exception:  # noqa: BLE001 - one failing handler must not affect the others.
                logger.exception(
                    "event_handler_failed event_type=%s event_id=%s handler=%s",
                    event.key,
                    event.id,
                    subscription.name,
                )
