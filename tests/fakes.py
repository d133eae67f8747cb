"""Test doubles shared by the tracker test modules."""
import asyncio
from typing import Any, List, Mapping, Optional, Sequence, Union

from provtrack.client import StatusClient
from provtrack.models import Condition, JobHandle, JobState, Milestone, Timeline
from provtrack.status import Outcome
from provtrack.tracker import TrackerListener

Response = Union[JobState, Exception]


class FakeStatusClient(StatusClient):
    """
    Scripted StatusClient.

    fetch_status() returns the scripted responses in order and keeps
    repeating the last one. Exceptions in the script are raised. Setting
    `gate` to an asyncio.Event blocks every fetch until it is set;
    `submit_gate` does the same for submit().
    """

    def __init__(
        self,
        responses: Optional[Sequence[Response]] = None,
        handle: Optional[JobHandle] = None,
    ):
        self.responses: List[Response] = list(responses or [])
        self.handle = handle or JobHandle(id="job-1", initial_status="SUBMITTED")
        self.submit_error: Optional[Exception] = None
        self.gate: Optional[asyncio.Event] = None
        self.submit_gate: Optional[asyncio.Event] = None
        self.submit_calls: List[tuple] = []
        self.fetch_calls: List[str] = []
        self.fetch_correlation_ids: List[str] = []
        self.closed = False
        self._last: Optional[Response] = None

    async def submit(self, request: Mapping[str, Any], correlation_id: str = "") -> JobHandle:
        self.submit_calls.append((dict(request), correlation_id))
        if self.submit_gate is not None:
            await self.submit_gate.wait()
        if self.submit_error is not None:
            raise self.submit_error
        return self.handle

    async def fetch_status(self, job_id: str, correlation_id: str = "") -> JobState:
        self.fetch_calls.append(job_id)
        self.fetch_correlation_ids.append(correlation_id)
        if self.gate is not None:
            await self.gate.wait()
        if self.responses:
            self._last = self.responses.pop(0)
        item = self._last
        if item is None:
            return JobState(id=job_id, status="PENDING")
        if isinstance(item, Exception):
            raise item
        return item

    async def close(self) -> None:
        self.closed = True


class RecordingListener(TrackerListener):
    """Collects every notification for assertions."""

    def __init__(self):
        self.updates: List[tuple] = []
        self.terminals: List[tuple] = []
        self.transient_errors: List[str] = []
        self.fatal_errors: List[Exception] = []

    def on_update(self, state: JobState, timeline: Timeline) -> None:
        self.updates.append((state, timeline))

    def on_terminal(self, outcome: Outcome, state: JobState) -> None:
        self.terminals.append((outcome, state))

    def on_transient_error(self, message: str) -> None:
        self.transient_errors.append(message)

    def on_fatal_error(self, error) -> None:
        self.fatal_errors.append(error)


def make_state(
    status: str = "RUNNING",
    job_id: str = "job-1",
    milestones: Sequence[tuple] = (),
    conditions: Sequence[tuple] = (),
    **kwargs: Any,
) -> JobState:
    """Build a JobState from (id, status) milestone and (type, status) condition tuples."""
    return JobState(
        id=job_id,
        status=status,
        milestones=tuple(Milestone(id=m[0], status=m[1]) for m in milestones),
        conditions=tuple(Condition(type=c[0], status=c[1]) for c in conditions),
        **kwargs,
    )

