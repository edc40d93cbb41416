"""Fire-and-forget delivery of click events to the analytics collaborator.

The redirect path calls ``dispatch`` which only puts the event on a bounded
in-process queue. Worker tasks started with the application drain the queue
and talk to analytics. Nothing that happens on the delivery side (slowness,
outages, rejected events) can reach the caller that produced the event.

Delivery Flow
=============
::
    ┌────────────────┐  put_nowait   ┌───────────────┐
    │ dispatch(event)│ ────────────▶ │ asyncio.Queue │──┐ full → drop + log
    └────────────────┘               └───────┬───────┘  │
                                             ▼          │
                                    ┌─────────────────┐ │
                                    │ worker task(s)  │◀┘
                                    └────────┬────────┘
                                             ▼
                        ┌──────────────────────────────────────┐
                        │ attempt n = 1..max_retries            │
                        │   2xx         → DELIVERED             │
                        │   4xx         → REJECTED (no retry)   │
                        │   5xx / I/O   → sleep(base_delay * n) │
                        └──────────────────┬───────────────────┘
                                           ▼
                                  EXHAUSTED → drop + log

How to Use
===========
**Step 1 — Start at application startup**::
    dispatcher = ClickEventDispatcher(AnalyticsClient(url))
    await dispatcher.start()

**Step 2 — Dispatch from request handlers**::
    dispatcher.dispatch(event)          # returns immediately
    dispatcher.dispatch_batch(events)   # 1..max_batch_size events

**Step 3 — Stop at shutdown**::
    await dispatcher.stop(drain_timeout=5.0)

Key Behaviours
===============
- ``dispatch`` never awaits, never raises; a full queue drops the event.
- ``dispatch_batch`` raises ``ValidationFailure`` for an empty or oversized
  batch; that is a caller bug, not a delivery problem.
- Workers are detached from request lifetime, so a cancelled request cannot
  cancel a delivery in flight.
- With ``coalesce=True`` a worker merges queued single events into one
  ``ingest_batch`` call.
- The analytics health check is diagnostic only; it never gates dispatch.
  Its last answer is kept in ``analytics_healthy`` for cheap reporting.
"""

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable, Iterable
from dataclasses import dataclass

from prometheus_client import Counter, Gauge, Histogram

from shortlink.analytics import AnalyticsClient
from shortlink.enums import DeliveryOutcome
from shortlink.errors import MalformedEvent, TransientDeliveryFailure, ValidationFailure
from shortlink.schemas import ClickEvent

__all__ = ["ClickEventDispatcher", "DEFAULT_MAX_BATCH_SIZE"]

logger = logging.getLogger(__name__)

DEFAULT_MAX_BATCH_SIZE = 1000

CLICK_EVENTS_ENQUEUED_TOTAL = Counter(
    "shortlink_click_events_enqueued_total",
    "Click events accepted by the dispatcher queue",
)
CLICK_EVENTS_DELIVERED_TOTAL = Counter(
    "shortlink_click_events_delivered_total",
    "Click events accepted by the analytics service",
)
CLICK_EVENTS_DROPPED_TOTAL = Counter(
    "shortlink_click_events_dropped_total",
    "Click events dropped without delivery",
    ["reason"],
)
DELIVERY_ATTEMPTS_TOTAL = Counter(
    "shortlink_analytics_delivery_attempts_total",
    "Requests sent to the analytics service",
)
DELIVERY_RETRIES_TOTAL = Counter(
    "shortlink_analytics_delivery_retries_total",
    "Analytics deliveries retried after a transient failure",
)
DELIVERY_DURATION = Histogram(
    "shortlink_analytics_delivery_duration_seconds",
    "Time from first attempt to final outcome, backoff included",
    buckets=[0.01, 0.05, 0.1, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0],
)
DISPATCH_QUEUE_DEPTH = Gauge(
    "shortlink_dispatch_queue_depth",
    "Delivery jobs waiting in the dispatcher queue",
)


@dataclass(frozen=True)
class _DeliveryJob:
    events: tuple[ClickEvent, ...]
    batch: bool


class ClickEventDispatcher:
    def __init__(
        self,
        client: AnalyticsClient,
        *,
        max_retries: int = 3,
        base_delay: float = 1.0,
        max_batch_size: int = DEFAULT_MAX_BATCH_SIZE,
        queue_size: int = 10000,
        workers: int = 4,
        coalesce: bool = False,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        assert max_retries > 0, f"max_retries must be positive, got {max_retries!r}"
        assert workers > 0, f"workers must be positive, got {workers!r}"
        self._client = client
        self._max_retries = max_retries
        self._base_delay = base_delay
        self._max_batch_size = max_batch_size
        self._worker_count = workers
        self._coalesce = coalesce
        self._sleep = sleep
        self._queue: asyncio.Queue[_DeliveryJob] = asyncio.Queue(maxsize=queue_size)
        self._workers: list[asyncio.Task] = []
        self._analytics_healthy: bool | None = None

    @property
    def running(self) -> bool:
        return bool(self._workers)

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    # ========================================================================
    # PRODUCER SIDE
    # ========================================================================

    def dispatch(self, event: ClickEvent) -> None:
        self._enqueue(_DeliveryJob((event,), batch=False))

    def dispatch_batch(self, events: Iterable[ClickEvent]) -> None:
        events = tuple(events)
        self._check_batch(events)
        self._enqueue(_DeliveryJob(events, batch=True))

    def _check_batch(self, events: tuple[ClickEvent, ...]) -> None:
        if not events:
            raise ValidationFailure("Clicks batch must not be empty")
        if len(events) > self._max_batch_size:
            raise ValidationFailure(f"Clicks batch of {len(events)} exceeds the maximum of {self._max_batch_size}")

    def _enqueue(self, job: _DeliveryJob) -> None:
        try:
            self._queue.put_nowait(job)
        except asyncio.QueueFull:
            CLICK_EVENTS_DROPPED_TOTAL.labels(reason="queue_full").inc(len(job.events))
            logger.warning(f"Dispatch queue full, dropping {len(job.events)} click event(s)")
            return
        CLICK_EVENTS_ENQUEUED_TOTAL.inc(len(job.events))
        DISPATCH_QUEUE_DEPTH.set(self._queue.qsize())

    # ========================================================================
    # DELIVERY
    # ========================================================================

    async def deliver(self, event: ClickEvent) -> DeliveryOutcome:
        """Deliver one event now, retrying transient failures."""
        return await self._deliver_with_retry(
            lambda: self._client.ingest(event),
            f"click event for {event.code}",
            1,
        )

    async def deliver_batch(self, events: list[ClickEvent]) -> DeliveryOutcome:
        """Deliver a batch in one ``ingest_batch`` call, retrying transient failures."""
        self._check_batch(tuple(events))
        return await self._deliver_with_retry(
            lambda: self._client.ingest_batch(events),
            f"batch of {len(events)} click events",
            len(events),
        )

    async def _deliver_with_retry(
        self, send: Callable[[], Awaitable[None]], description: str, count: int
    ) -> DeliveryOutcome:
        start_time = time.perf_counter()
        try:
            for attempt in range(1, self._max_retries + 1):
                DELIVERY_ATTEMPTS_TOTAL.inc()
                try:
                    await send()
                except MalformedEvent as exc:
                    CLICK_EVENTS_DROPPED_TOTAL.labels(reason="rejected").inc(count)
                    logger.error(f"Analytics rejected {description}, dropping without retry: {exc}")
                    return DeliveryOutcome.REJECTED
                except TransientDeliveryFailure as exc:
                    logger.warning(
                        f"Analytics delivery failed for {description} (attempt {attempt}/{self._max_retries}): {exc}"
                    )
                    if attempt < self._max_retries:
                        DELIVERY_RETRIES_TOTAL.inc()
                        await self._sleep(self._base_delay * attempt)
                    continue

                CLICK_EVENTS_DELIVERED_TOTAL.inc(count)
                logger.debug(f"Delivered {description} on attempt {attempt}")
                return DeliveryOutcome.DELIVERED

            CLICK_EVENTS_DROPPED_TOTAL.labels(reason="exhausted").inc(count)
            logger.error(f"Dropping {description} after {self._max_retries} failed attempts")
            return DeliveryOutcome.EXHAUSTED
        finally:
            DELIVERY_DURATION.observe(time.perf_counter() - start_time)

    # ========================================================================
    # WORKERS
    # ========================================================================

    async def start(self) -> None:
        if self._workers:
            return
        self._workers = [
            asyncio.create_task(self._worker(), name=f"click-dispatcher-{index}") for index in range(self._worker_count)
        ]
        logger.info(f"Click event dispatcher started with {self._worker_count} workers")

    async def stop(self, drain_timeout: float = 5.0) -> None:
        if not self._workers:
            return
        try:
            await asyncio.wait_for(self._queue.join(), timeout=drain_timeout)
        except TimeoutError:
            logger.warning(f"Dispatcher stopped with {self._queue.qsize()} delivery job(s) still queued")
        for task in self._workers:
            task.cancel()
        await asyncio.gather(*self._workers, return_exceptions=True)
        self._workers = []
        logger.info("Click event dispatcher stopped")

    async def wait_idle(self) -> None:
        """Wait until every queued job has reached a final outcome."""
        await self._queue.join()

    @property
    def analytics_healthy(self) -> bool | None:
        """Last recorded analytics health; ``None`` until it has been checked."""
        return self._analytics_healthy

    async def is_analytics_healthy(self) -> bool:
        self._analytics_healthy = await self._client.health()
        return self._analytics_healthy

    async def _worker(self) -> None:
        while True:
            jobs = [await self._queue.get()]
            if self._coalesce and not jobs[0].batch:
                self._drain_singles(jobs)
            DISPATCH_QUEUE_DEPTH.set(self._queue.qsize())
            try:
                await self._run(jobs)
            except Exception:
                dropped = sum(len(job.events) for job in jobs)
                CLICK_EVENTS_DROPPED_TOTAL.labels(reason="error").inc(dropped)
                logger.warning(f"Dispatcher worker failed, dropping {dropped} click event(s)", exc_info=True)
            finally:
                for _ in jobs:
                    self._queue.task_done()

    def _drain_singles(self, jobs: list[_DeliveryJob]) -> None:
        singles = 1
        while singles < self._max_batch_size:
            try:
                job = self._queue.get_nowait()
            except asyncio.QueueEmpty:
                break
            jobs.append(job)
            if not job.batch:
                singles += 1

    async def _run(self, jobs: list[_DeliveryJob]) -> None:
        singles = [job.events[0] for job in jobs if not job.batch]
        if len(singles) == 1:
            await self.deliver(singles[0])
        elif singles:
            await self.deliver_batch(singles)
        for job in jobs:
            if job.batch:
                await self.deliver_batch(list(job.events))
