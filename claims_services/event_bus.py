"""
claims_services.event_bus -- In-process publish/subscribe for domain events.

Responsibility:
    Deliver ``DomainEvent``s to subscribers (UI refresh, export, analytics)
    on background worker threads, with at-least-once delivery and
    per-subscriber backpressure.

Architecture position:
    Services layer.  Owned by the hosting application: constructed
    explicitly, started with ``start()`` and stopped with ``shutdown()``.
    There is no module-level bus.

Invariants enforced:
    - Each subscription owns one bounded queue and one worker thread; a slow
      subscriber never delays another.
    - ``publish`` blocks at most ``put_timeout`` per full queue, then raises
      ``EventBackpressureError``.
    - A handler exception causes redelivery of the same event (same
      ``event_id``) up to ``max_attempts``; the event is then parked in the
      subscription's dead-letter list.
    - Events for one subscription are delivered in publish order.
    - ``shutdown`` returns within its timeout even when a handler is stuck;
      the stuck worker is kept and reused by the next ``start``.

Failure modes:
    - EventBusNotRunningError on publish before ``start()`` or after
      ``shutdown()``.
    - EventBackpressureError when a subscriber queue stays full.
"""

from __future__ import annotations

import queue
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass
from itertools import count
from typing import Any
from uuid import UUID

from claims_kernel.domain.events import DomainEvent
from claims_kernel.exceptions import EventBackpressureError, EventBusNotRunningError
from claims_kernel.logging_config import LogContext, get_logger

logger = get_logger("services.event_bus")

EventHandler = Callable[[DomainEvent], Any]


class _StopSignal:
    """Queued by ``_stop``; only the most recent one ends the worker."""


_names = count(1)


def topic_matches(pattern: str, topic: str) -> bool:
    """Exact match, ``*`` for everything, or a trailing ``*`` prefix match."""
    if pattern == "*" or pattern == topic:
        return True
    if pattern.endswith("*"):
        return topic.startswith(pattern[:-1])
    return False


@dataclass
class SubscriptionStats:
    delivered: int = 0
    failed_attempts: int = 0
    dead_lettered: int = 0


class Subscription:
    """One subscriber: a handler, its topic patterns, queue and worker."""

    def __init__(
        self,
        bus: EventBus,
        handler: EventHandler,
        topics: tuple[str, ...],
        name: str,
        max_pending: int,
        max_attempts: int,
        retry_delay: float,
    ) -> None:
        if max_pending <= 0:
            raise ValueError("max_pending must be positive")
        if max_attempts <= 0:
            raise ValueError("max_attempts must be positive")
        self.name = name
        self.handler = handler
        self.topics = topics
        self.max_attempts = max_attempts
        self.retry_delay = retry_delay
        self.stats = SubscriptionStats()
        self.dead_letters: list[DomainEvent] = []
        self._bus = bus
        self._queue: queue.Queue = queue.Queue(maxsize=max_pending)
        self._thread: threading.Thread | None = None
        self._stop_signal: _StopSignal | None = None
        self._exiting = False
        self._signal_lock = threading.Lock()

    def matches(self, topic: str) -> bool:
        return any(topic_matches(p, topic) for p in self.topics)

    def unsubscribe(self) -> None:
        self._bus._remove(self)

    @property
    def pending(self) -> int:
        return self._queue.unfinished_tasks

    # -- worker side ---------------------------------------------------

    def _start(self) -> None:
        with self._signal_lock:
            if self._thread is not None and self._thread.is_alive() and not self._exiting:
                # A stop that timed out may still be queued; the worker skips it.
                self._stop_signal = None
                return
            self._stop_signal = None
            self._exiting = False
            self._thread = threading.Thread(
                target=self._run, name=f"event-bus-{self.name}", daemon=True
            )
            self._thread.start()

    def _stop(self, timeout: float) -> None:
        """Ask the worker to finish the queue and exit, waiting at most ``timeout``."""
        thread = self._thread
        if thread is None:
            return
        deadline = time.monotonic() + timeout
        with self._signal_lock:
            signal = self._stop_signal = _StopSignal()
        try:
            self._queue.put(signal, timeout=timeout)
        except queue.Full:
            with self._signal_lock:
                self._stop_signal = None
            logger.warning(
                "event_worker_stop_timed_out",
                extra={"subscription": self.name, "pending": self.pending},
            )
            return
        thread.join(max(0.0, deadline - time.monotonic()))
        if thread.is_alive():
            logger.warning(
                "event_worker_stop_timed_out",
                extra={"subscription": self.name, "pending": self.pending},
            )
            return
        with self._signal_lock:
            if self._thread is thread:
                self._thread = None

    def _run(self) -> None:
        while True:
            item = self._queue.get()
            try:
                if isinstance(item, _StopSignal):
                    with self._signal_lock:
                        if item is self._stop_signal:
                            self._stop_signal = None
                            self._exiting = True
                            return
                    continue
                self._deliver(item)
            finally:
                self._queue.task_done()

    def _deliver(self, event: DomainEvent) -> None:
        with LogContext.bind(claim_id=event.claim_id, event_id=str(event.event_id)):
            for attempt in range(1, self.max_attempts + 1):
                try:
                    self.handler(event)
                except Exception:
                    self.stats.failed_attempts += 1
                    logger.warning(
                        "event_delivery_failed",
                        extra={
                            "subscription": self.name,
                            "event_type": event.topic,
                            "attempt": attempt,
                            "max_attempts": self.max_attempts,
                        },
                        exc_info=True,
                    )
                    if attempt < self.max_attempts and self.retry_delay > 0:
                        time.sleep(self.retry_delay)
                    continue
                self.stats.delivered += 1
                return

            self.stats.dead_lettered += 1
            self.dead_letters.append(event)
            logger.error(
                "event_dead_lettered",
                extra={
                    "subscription": self.name,
                    "event_type": event.topic,
                    "attempts": self.max_attempts,
                },
            )

    # -- publisher side ------------------------------------------------

    def _offer(self, event: DomainEvent, timeout: float) -> None:
        try:
            self._queue.put(event, timeout=timeout)
        except queue.Full:
            raise EventBackpressureError(self.name, event.topic, timeout) from None

    def _wait_idle(self, deadline: float) -> bool:
        with self._queue.all_tasks_done:
            while self._queue.unfinished_tasks:
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    return False
                self._queue.all_tasks_done.wait(remaining)
        return True


class EventBus:
    """Typed in-process event bus with an explicit start/shutdown lifecycle.

    Usage:
        bus = EventBus()
        bus.subscribe(refresh_dashboard, topics=("claim.approved",))
        bus.start()
        ...
        bus.shutdown()
    """

    def __init__(self, put_timeout: float = 1.0) -> None:
        self._put_timeout = put_timeout
        self._subscriptions: list[Subscription] = []
        self._lock = threading.RLock()
        self._running = False

    @property
    def running(self) -> bool:
        return self._running

    @property
    def subscriptions(self) -> tuple[Subscription, ...]:
        with self._lock:
            return tuple(self._subscriptions)

    def start(self) -> None:
        with self._lock:
            if self._running:
                return
            self._running = True
            for sub in self._subscriptions:
                sub._start()
        logger.info("event_bus_started", extra={"subscriptions": len(self._subscriptions)})

    def shutdown(self, timeout: float = 5.0) -> None:
        """Stop accepting events, drain queued ones and stop the workers."""
        with self._lock:
            if not self._running:
                return
            self._running = False
            subs = list(self._subscriptions)
        for sub in subs:
            sub._stop(timeout)
        logger.info("event_bus_stopped", extra={"subscriptions": len(subs)})

    def subscribe(
        self,
        handler: EventHandler,
        topics: tuple[str, ...] = ("claim.*",),
        name: str | None = None,
        max_pending: int = 100,
        max_attempts: int = 3,
        retry_delay: float = 0.0,
    ) -> Subscription:
        sub = Subscription(
            bus=self,
            handler=handler,
            topics=tuple(topics),
            name=name or f"{getattr(handler, '__name__', 'handler')}-{next(_names)}",
            max_pending=max_pending,
            max_attempts=max_attempts,
            retry_delay=retry_delay,
        )
        with self._lock:
            self._subscriptions.append(sub)
            if self._running:
                sub._start()
        logger.debug(
            "event_subscription_added",
            extra={"subscription": sub.name, "topics": list(sub.topics)},
        )
        return sub

    def _remove(self, sub: Subscription) -> None:
        with self._lock:
            if sub not in self._subscriptions:
                return
            self._subscriptions.remove(sub)
        sub._stop(timeout=5.0)

    def publish(self, event: DomainEvent) -> None:
        """Enqueue ``event`` for every matching subscription."""
        with self._lock:
            if not self._running:
                raise EventBusNotRunningError(event.topic)
            targets = [s for s in self._subscriptions if s.matches(event.topic)]

        for sub in targets:
            sub._offer(event, self._put_timeout)
        logger.debug(
            "event_published",
            extra={
                "event_type": event.topic,
                "event_id": str(event.event_id),
                "subscribers": len(targets),
            },
        )

    def join(self, timeout: float = 5.0) -> bool:
        """Wait until every queued event has been handled.  False on timeout."""
        deadline = time.monotonic() + timeout
        return all(sub._wait_idle(deadline) for sub in self.subscriptions)


class IdempotentConsumer:
    """Wraps a handler so that a redelivered event is applied only once.

    An event id is remembered only after the handler succeeds, so a failed
    delivery is still retried.
    """

    def __init__(self, handler: EventHandler) -> None:
        self._handler = handler
        self._seen: set[UUID] = set()
        self._lock = threading.Lock()
        self.duplicates = 0
        self.__name__ = getattr(handler, "__name__", "idempotent_consumer")

    def __call__(self, event: DomainEvent) -> None:
        with self._lock:
            if event.event_id in self._seen:
                self.duplicates += 1
                return
        self._handler(event)
        with self._lock:
            self._seen.add(event.event_id)

    def has_seen(self, event_id: UUID) -> bool:
        with self._lock:
            return event_id in self._seen
