"""
Fixed-cadence poll scheduler.

Ticks are driven by an APScheduler AsyncIOScheduler running one interval
job. The first run fires immediately; afterwards one fires every `interval`
seconds. The job is registered with max_instances=1, so a tick that comes
due while the previous poll is still outstanding is skipped (never queued,
never run concurrently) and reported as EVENT_JOB_MAX_INSTANCES.

Cancellation is explicit: start() creates a fresh asyncio.Event token and
stop() sets it, shuts the scheduler down and cancels any in-flight poll.
A sequence number guarantees nothing that completes afterwards, or
out of order, reaches the callbacks.

Usage:
    scheduler = PollScheduler(
        poll=lambda: client.fetch_status(job_id),
        on_result=handle_state,
        on_error=handle_error,
        interval=5.0,
    )
    scheduler.start()
    ...
    scheduler.stop()
"""

import asyncio
import logging
from datetime import datetime, timezone
from typing import Awaitable, Callable, Generic, Optional, TypeVar

from apscheduler.events import EVENT_JOB_MAX_INSTANCES
from apscheduler.executors.asyncio import AsyncIOExecutor
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

logger = logging.getLogger(__name__)

T = TypeVar("T")


class PollScheduler(Generic[T]):
    """
    Drives repeated polls until stopped.

    Results are applied strictly in completion order: a result is dropped if
    a newer poll has already been applied or if the scheduler was stopped
    while the call was outstanding.

    Attributes:
        interval: Seconds between ticks
        skipped_ticks: Ticks skipped because a poll was still in flight
        polls_started: Polls actually started
    """

    def __init__(
        self,
        poll: Callable[[], Awaitable[T]],
        on_result: Callable[[T], None],
        on_error: Callable[[Exception], None],
        interval: float,
        name: str = "poller",
    ):
        if interval <= 0:
            raise ValueError("interval must be greater than 0")
        self.interval = interval
        self.name = name
        self._poll = poll
        self._on_result = on_result
        self._on_error = on_error

        self._token: Optional[asyncio.Event] = None
        self._scheduler: Optional[AsyncIOScheduler] = None
        self._inflight: Optional[asyncio.Task] = None
        self._seq = 0
        self._applied_seq = 0

        self.skipped_ticks = 0
        self.polls_started = 0

    @property
    def ticks(self) -> int:
        """Ticks fired since construction, run or skipped."""
        return self.polls_started + self.skipped_ticks

    @property
    def running(self) -> bool:
        return (
            self._token is not None
            and not self._token.is_set()
            and self._scheduler is not None
            and self._scheduler.running
        )

    @property
    def in_flight(self) -> bool:
        return self._inflight is not None and not self._inflight.done()

    def start(self) -> bool:
        """
        Start ticking; the first tick fires immediately.

        Returns:
            True if running, False if no event loop is available yet
        """
        if self.running:
            return True
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.debug(f"{self.name}: no running event loop, start deferred")
            return False

        token = asyncio.Event()
        scheduler = AsyncIOScheduler(
            event_loop=loop,
            executors={"default": AsyncIOExecutor()},
            job_defaults={
                "coalesce": True,  # Collapse missed ticks into one
                "max_instances": 1,  # Never overlap polls
                "misfire_grace_time": None,
            },
            timezone="UTC",
        )
        scheduler.add_listener(self._on_skipped, EVENT_JOB_MAX_INSTANCES)
        scheduler.add_job(
            self._poll_once,
            trigger=IntervalTrigger(seconds=self.interval),
            args=[token],
            id=self.name,
            name=self.name,
            next_run_time=datetime.now(timezone.utc),
        )
        scheduler.start()

        self._token = token
        self._scheduler = scheduler
        logger.debug(f"{self.name}: scheduler started (interval={self.interval}s)")
        return True

    def stop(self) -> None:
        """Stop ticking and cancel the outstanding poll. Safe to call repeatedly."""
        if self._token is not None:
            self._token.set()
        try:
            current = asyncio.current_task()
        except RuntimeError:
            current = None

        scheduler, self._scheduler = self._scheduler, None
        if scheduler is not None and scheduler.running:
            if current is not None and current is self._inflight:
                # Called from a result callback: shutting down now would cancel
                # the poll task that is still unwinding, so let it finish first
                scheduler.remove_all_jobs()
                asyncio.get_running_loop().call_soon(self._shutdown, scheduler)
            else:
                self._shutdown(scheduler)

        if self.in_flight and self._inflight is not current:
            self._inflight.cancel()

    def _shutdown(self, scheduler: AsyncIOScheduler) -> None:
        if scheduler.running:
            scheduler.shutdown(wait=False)
            logger.debug(f"{self.name}: scheduler stopped")

    async def aclose(self) -> None:
        """Stop and wait for the cancelled poll to unwind."""
        self.stop()
        task = self._inflight
        if task is not None and task is not asyncio.current_task():
            await asyncio.gather(task, return_exceptions=True)
        self._inflight = None

    def _on_skipped(self, event) -> None:
        self.skipped_ticks += 1
        logger.debug(f"{self.name}: previous poll still in flight, tick skipped")

    def _accepts(self, seq: int, token: asyncio.Event) -> bool:
        return not token.is_set() and seq > self._applied_seq

    async def _poll_once(self, token: asyncio.Event) -> None:
        if token.is_set():
            return
        self._seq += 1
        seq = self._seq
        self.polls_started += 1
        self._inflight = asyncio.current_task()

        try:
            result = await self._poll()
        except asyncio.CancelledError:
            logger.debug(f"{self.name}: poll {seq} cancelled", extra={"poll_seq": seq})
            return
        except Exception as e:
            if self._accepts(seq, token):
                self._on_error(e)
            else:
                logger.debug(
                    f"{self.name}: dropped error from poll {seq}: {e}",
                    extra={"poll_seq": seq},
                )
            return

        if not self._accepts(seq, token):
            logger.debug(
                f"{self.name}: dropped stale result from poll {seq}",
                extra={"poll_seq": seq},
            )
            return
        self._applied_seq = seq
        self._on_result(result)
