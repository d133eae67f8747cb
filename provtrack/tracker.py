"""
Provisioning job tracker.

Owns the lifecycle of one job: submit -> persist -> poll -> reconcile ->
notify -> (on terminal) clear persistence and emit the final outcome.

States:
    IDLE -> SUBMITTING -> POLLING -> SUCCEEDED | FAILED | ABANDONED

A tracker constructed while a job reference is stored skips submission and
resumes polling that job, which is what keeps tracking alive across process
restarts.

Usage:
    tracker = JobTracker(client, JsonFileJobStore(path))
    tracker.subscribe(MyListener())
    handle = await tracker.start({"projectId": "p1", "clusterId": "c1"})
    final_state = await tracker.wait_for_terminal()
"""

import asyncio
import logging
import uuid
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence

from provtrack.client import HttpStatusClient, StatusClient
from provtrack.errors import TerminalJobError, TrackerBusyError, TrackerError, is_auth_error
from provtrack.models import (
    JobHandle,
    JobState,
    PersistedJobRef,
    StepDefinition,
    Timeline,
    TrackerState,
)
from provtrack.scheduler import PollScheduler
from provtrack.status import Outcome, classify_outcome, is_cancelled
from provtrack.store import JobStore, build_store
from provtrack.timeline import CLUSTER_STEPS, reconcile

logger = logging.getLogger(__name__)

RESUMING_STATUS = "RESUMING"

_ACTIVE_STATES = (TrackerState.SUBMITTING, TrackerState.POLLING)


class TrackerListener:
    """
    Subscriber interface. Override the callbacks you need; the rest are no-ops.

    Callbacks run on the event loop thread and must not block. Exceptions
    raised by a listener are logged and do not affect the tracker.
    """

    def on_update(self, state: JobState, timeline: Timeline) -> None:
        """A fresh snapshot was applied."""

    def on_terminal(self, outcome: Outcome, state: JobState) -> None:
        """The job finished. Fired exactly once per job."""

    def on_transient_error(self, message: str) -> None:
        """A poll failed; polling continues."""

    def on_fatal_error(self, error: TrackerError) -> None:
        """Credentials were rejected; polling stopped, the job stays persisted."""


@dataclass(frozen=True)
class TrackerSnapshot:
    """Everything a subscriber needs to render the current job."""

    tracker_state: TrackerState
    job_id: Optional[str]
    correlation_id: str
    status: Optional[str]
    job_state: Optional[JobState]
    timeline: Timeline
    last_error: Optional[str]
    consecutive_failures: int
    outcome: Optional[Outcome]

    @property
    def is_terminal(self) -> bool:
        return self.outcome is not None

    @property
    def has_error(self) -> bool:
        return self.last_error is not None


class JobTracker:
    """
    Tracks one provisioning job at a time.

    Attributes:
        client: Control-plane client
        store: Single-slot persistence for the in-flight job
        steps: Step catalog reconciled against every snapshot
        poll_interval: Seconds between status polls
        max_consecutive_failures: Failed polls in a row before giving up
            (job stays persisted); 0 disables the limit
    """

    def __init__(
        self,
        client: StatusClient,
        store: JobStore,
        steps: Sequence[StepDefinition] = CLUSTER_STEPS,
        poll_interval: float = 5.0,
        max_consecutive_failures: int = 60,
        listeners: Optional[Sequence[TrackerListener]] = None,
    ):
        """
        Initialize tracker and resume any persisted job.

        If a job reference is stored, the tracker enters POLLING immediately.
        Polls start right away when constructed inside a running event loop,
        otherwise on the first resume() call.
        """
        self.client = client
        self.store = store
        self.steps = tuple(steps)
        self.poll_interval = poll_interval
        self.max_consecutive_failures = max_consecutive_failures

        self._listeners: List[TrackerListener] = list(listeners or [])
        self._state = TrackerState.IDLE
        self._ref: Optional[PersistedJobRef] = None
        self._status: Optional[str] = None
        self._job_state: Optional[JobState] = None
        self._timeline = reconcile(self.steps, None)
        self._last_error: Optional[BaseException] = None
        self._consecutive_failures = 0
        self._outcome: Optional[Outcome] = None
        self._scheduler: Optional[PollScheduler[JobState]] = None
        self._settled = asyncio.Event()
        # Set by stop/forget while a submission is outstanding
        self._abandon_request: Optional[str] = None

        ref = self.store.load()
        if ref is not None:
            self._ref = ref
            self._status = RESUMING_STATUS
            self._set_state(TrackerState.POLLING)
            logger.info(
                f"[{ref.correlation_id}] Resuming job {ref.job_id}",
                extra=self._log_extra(),
            )
            self._start_polling()

    @classmethod
    def from_settings(
        cls,
        settings,
        client: Optional[StatusClient] = None,
        store: Optional[JobStore] = None,
        **kwargs,
    ) -> "JobTracker":
        """Build a tracker (and, unless given, its client and store) from AppSettings."""
        return cls(
            client or HttpStatusClient.from_settings(settings.control_plane),
            store or build_store(settings.tracker),
            poll_interval=settings.tracker.poll_interval_seconds,
            max_consecutive_failures=settings.tracker.max_consecutive_failures,
            **kwargs,
        )

    # =========================================================================
    # Public surface
    # =========================================================================

    @property
    def state(self) -> TrackerState:
        return self._state

    @property
    def job_id(self) -> Optional[str]:
        return self._ref.job_id if self._ref else None

    @property
    def correlation_id(self) -> str:
        return self._ref.correlation_id if self._ref else ""

    @property
    def is_polling(self) -> bool:
        return self._scheduler is not None and self._scheduler.running

    @property
    def snapshot(self) -> TrackerSnapshot:
        return TrackerSnapshot(
            tracker_state=self._state,
            job_id=self.job_id,
            correlation_id=self.correlation_id,
            status=self._status,
            job_state=self._job_state,
            timeline=self._timeline,
            last_error=str(self._last_error) if self._last_error else None,
            consecutive_failures=self._consecutive_failures,
            outcome=self._outcome,
        )

    def subscribe(self, listener: TrackerListener) -> Callable[[], None]:
        """
        Register a listener.

        Returns:
            Callable that unsubscribes the listener
        """
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    async def start(
        self,
        request: Mapping[str, Any],
        metadata: Optional[Mapping[str, Any]] = None,
    ) -> JobHandle:
        """
        Submit a request and start tracking the resulting job.

        Nothing is persisted unless the submission succeeds.

        Args:
            request: JSON-serializable provisioning request
            metadata: Correlation metadata stored with the job reference
                (a correlation_id is generated if absent)

        Returns:
            JobHandle from the control plane

        Raises:
            TrackerBusyError: A job is already being submitted or polled
            AuthenticationError, AuthorizationError, RequestError: Submission failed
        """
        if self._state in _ACTIVE_STATES:
            raise TrackerBusyError(
                f"Job {self.job_id or '(submitting)'} is still being tracked"
            )

        correlation_metadata: Dict[str, Any] = dict(metadata or {})
        correlation_id = str(
            correlation_metadata.get("correlation_id") or self._generate_correlation_id()
        )
        correlation_metadata["correlation_id"] = correlation_id

        self._reset()
        self._set_state(TrackerState.SUBMITTING)
        logger.info(f"[{correlation_id}] Submitting provisioning request")

        try:
            handle = await self.client.submit(request, correlation_id=correlation_id)
        except BaseException as e:
            self._last_error = e
            self._set_state(TrackerState.IDLE)
            logger.warning(f"[{correlation_id}] Submission failed: {e}")
            raise

        ref = PersistedJobRef(job_id=handle.id, correlation_metadata=correlation_metadata)
        self._status = handle.initial_status or None

        if self._abandon_request is not None:
            # stop() or forget() arrived while the submission was in flight
            if self._abandon_request == "stop":
                self.store.save(ref)
                self._ref = ref
            self._set_state(TrackerState.ABANDONED)
            self._settled.set()
            logger.info(
                f"[{correlation_id}] Job {handle.id} accepted after tracking was "
                f"stopped; not polling",
                extra=self._log_extra(),
            )
            return handle

        self.store.save(ref)
        self._ref = ref
        self._set_state(TrackerState.POLLING)
        logger.info(
            f"[{correlation_id}] Job {handle.id} accepted with status "
            f"{handle.initial_status or 'unknown'}",
            extra=self._log_extra(),
        )
        self._start_polling()
        return handle

    def resume(self) -> bool:
        """
        Start (or restart) polling the persisted job.

        Used when the tracker was constructed outside an event loop, or to
        pick tracking up again after stop().

        Returns:
            True if polling is running
        """
        if self._state in (TrackerState.IDLE, TrackerState.ABANDONED):
            ref = self.store.load()
            if ref is None:
                return False
            self._reset()
            self._ref = ref
            self._status = RESUMING_STATUS
            self._set_state(TrackerState.POLLING)
            logger.info(
                f"[{ref.correlation_id}] Resuming job {ref.job_id}",
                extra=self._log_extra(),
            )
        if self._state != TrackerState.POLLING:
            return False
        return self._start_polling()

    def stop(self) -> None:
        """
        Stop polling without forgetting the job.

        The job reference stays persisted so a later tracker (or resume())
        picks it up again. Called during submission, the job is still
        persisted once accepted but is never polled.
        """
        if self._state == TrackerState.SUBMITTING:
            self._abandon_request = self._abandon_request or "stop"
            logger.info("Stop requested while submission is in flight")
            return
        if self._state != TrackerState.POLLING:
            return
        if self._scheduler is not None:
            self._scheduler.stop()
        self._set_state(TrackerState.ABANDONED)
        self._settled.set()
        logger.info(
            f"[{self.correlation_id}] Stopped tracking job {self.job_id}",
            extra=self._log_extra(),
        )

    def forget(self) -> None:
        """Stop polling and drop the persisted job reference."""
        if self._state == TrackerState.SUBMITTING:
            self._abandon_request = "forget"
        self.stop()
        self.store.clear()
        if self._ref is not None:
            logger.info(f"[{self.correlation_id}] Forgot job {self.job_id}")
        self._ref = None

    async def aclose(self) -> None:
        """Stop polling and wait for the timer to unwind."""
        self.stop()
        if self._scheduler is not None:
            await self._scheduler.aclose()

    async def __aenter__(self) -> "JobTracker":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()

    async def wait_for_terminal(self, timeout: Optional[float] = None) -> JobState:
        """
        Wait until the job settles.

        Returns:
            Final JobState when the job succeeded

        Raises:
            TerminalJobError: Job failed or was cancelled
            TrackerError: Tracking stopped before the job finished
            asyncio.TimeoutError: timeout elapsed first
        """
        if self._state == TrackerState.IDLE:
            raise TrackerError("No job is being tracked")
        await asyncio.wait_for(self._settled.wait(), timeout=timeout)

        if self._outcome == Outcome.SUCCEEDED and self._job_state is not None:
            return self._job_state
        if isinstance(self._last_error, TrackerError):
            raise self._last_error
        raise TrackerError(f"Tracking of job {self.job_id} stopped before completion")

    # =========================================================================
    # Polling
    # =========================================================================

    def _start_polling(self) -> bool:
        if self._ref is None:
            return False
        if self._scheduler is None or not self._scheduler.running:
            job_id = self._ref.job_id
            correlation_id = self._ref.correlation_id

            async def poll() -> JobState:
                return await self.client.fetch_status(job_id, correlation_id=correlation_id)

            self._scheduler = PollScheduler(
                poll=poll,
                on_result=self._handle_state,
                on_error=self._handle_poll_error,
                interval=self.poll_interval,
                name=f"job-{job_id}",
            )
        started = self._scheduler.start()
        if not started:
            logger.info(
                f"[{self.correlation_id}] No running event loop; "
                f"polling of {self.job_id} starts on resume()"
            )
        return started

    def _handle_state(self, state: JobState) -> None:
        if self._state != TrackerState.POLLING:
            return

        self._job_state = state
        self._status = state.status or self._status
        self._consecutive_failures = 0
        self._last_error = None
        self._timeline = reconcile(self.steps, state)

        outcome = classify_outcome(state.status)
        if outcome is not None:
            self._finish(outcome, state)
            return

        logger.debug(
            f"[{self.correlation_id}] Job {self.job_id} status={state.status} "
            f"progress={state.normalized_progress:.0f}",
            extra=self._log_extra(),
        )
        self._notify("on_update", state, self._timeline)

    def _finish(self, outcome: Outcome, state: JobState) -> None:
        if self._scheduler is not None:
            self._scheduler.stop()
        self.store.clear()
        self._outcome = outcome

        if outcome == Outcome.SUCCEEDED:
            self._set_state(TrackerState.SUCCEEDED)
            logger.info(
                f"[{self.correlation_id}] Job {self.job_id} succeeded",
                extra=self._log_extra(),
            )
        else:
            verb = "was cancelled" if is_cancelled(state.status) else "failed"
            message = state.error or f"Job {self.job_id} {verb} (status {state.status})"
            self._last_error = TerminalJobError(
                message, job_id=self.job_id or "", status=state.status
            )
            self._set_state(TrackerState.FAILED)
            logger.error(
                f"[{self.correlation_id}] Job {self.job_id} {verb}: {message}",
                extra=self._log_extra(),
            )

        self._settled.set()
        self._notify("on_update", state, self._timeline)
        self._notify("on_terminal", outcome, state)

    def _handle_poll_error(self, error: Exception) -> None:
        if self._state != TrackerState.POLLING:
            return
        self._last_error = error

        if is_auth_error(error):
            logger.warning(
                f"[{self.correlation_id}] Polling of {self.job_id} stopped: {error}",
                extra=self._log_extra(status_code=getattr(error, "status_code", None)),
            )
            self.stop()
            self._notify("on_fatal_error", error)
            return

        self._consecutive_failures += 1
        message = str(error) or error.__class__.__name__
        logger.warning(
            f"[{self.correlation_id}] Status poll for {self.job_id} failed "
            f"({self._consecutive_failures} in a row): {message}",
            extra=self._log_extra(status_code=getattr(error, "status_code", None)),
        )
        self._notify("on_transient_error", message)

        if (
            self.max_consecutive_failures
            and self._consecutive_failures >= self.max_consecutive_failures
        ):
            logger.error(
                f"[{self.correlation_id}] Giving up on {self.job_id} after "
                f"{self._consecutive_failures} failed polls; job stays persisted"
            )
            self.stop()

    # =========================================================================
    # Helpers
    # =========================================================================

    def _reset(self) -> None:
        self._ref = None
        self._status = None
        self._job_state = None
        self._timeline = reconcile(self.steps, None)
        self._last_error = None
        self._consecutive_failures = 0
        self._outcome = None
        self._settled = asyncio.Event()
        self._abandon_request = None

    def _set_state(self, state: TrackerState) -> None:
        if state != self._state:
            logger.debug(
                f"Tracker {self._state.value} -> {state.value}",
                extra=self._log_extra(tracker_state=state.value),
            )
        self._state = state

    def _notify(self, method: str, *args: Any) -> None:
        for listener in list(self._listeners):
            callback = getattr(listener, method, None)
            if callback is None:
                continue
            try:
                callback(*args)
            except Exception:
                logger.exception(
                    f"[{self.correlation_id}] Listener {listener!r} failed in {method}"
                )

    def _log_extra(self, **fields: Any) -> Dict[str, Any]:
        extra: Dict[str, Any] = {
            "job_id": self.job_id,
            "correlation_id": self.correlation_id,
            "tracker_state": self._state.value,
        }
        extra.update(fields)
        return extra

    @staticmethod
    def _generate_correlation_id() -> str:
        """Generate correlation ID if not provided."""
        return f"corr-{uuid.uuid4().hex[:8]}"
