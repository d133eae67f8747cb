"""
Provisioning job tracking.

This package submits long-running provisioning requests to a control plane
and follows them to completion:
- Durable single-job persistence, so tracking survives restarts
- Fixed-cadence polling with skip-if-busy ticks and explicit cancellation
- Reconciliation of milestones and conditions into an ordered timeline
- Exactly one terminal notification per job

Usage:
    from provtrack import HttpStatusClient, JobTracker, JsonFileJobStore

    client = HttpStatusClient(base_url, token_provider=get_token)
    tracker = JobTracker(client, JsonFileJobStore(Path("data/job.json")))
    handle = await tracker.start({"projectId": "p1", "clusterId": "c1"})
    state = await tracker.wait_for_terminal()
"""

from provtrack.client import HttpStatusClient, StatusClient
from provtrack.errors import (
    AuthenticationError,
    AuthorizationError,
    RequestError,
    TerminalJobError,
    TrackerBusyError,
    TrackerError,
    TransientRequestError,
)
from provtrack.models import (
    Condition,
    JobHandle,
    JobState,
    Milestone,
    PersistedJobRef,
    StepDefinition,
    StepStatus,
    Timeline,
    TimelineStep,
    TrackerState,
)
from provtrack.scheduler import PollScheduler
from provtrack.status import Outcome, is_terminal
from provtrack.store import JobStore, JsonFileJobStore, MemoryJobStore, SqliteJobStore
from provtrack.timeline import CLUSTER_STEPS, WORKSPACE_STEPS, reconcile
from provtrack.tracker import JobTracker, TrackerListener, TrackerSnapshot

__all__ = [
    "AuthenticationError",
    "AuthorizationError",
    "CLUSTER_STEPS",
    "Condition",
    "HttpStatusClient",
    "JobHandle",
    "JobState",
    "JobStore",
    "JobTracker",
    "JsonFileJobStore",
    "MemoryJobStore",
    "Milestone",
    "Outcome",
    "PersistedJobRef",
    "PollScheduler",
    "RequestError",
    "SqliteJobStore",
    "StatusClient",
    "StepDefinition",
    "StepStatus",
    "TerminalJobError",
    "Timeline",
    "TimelineStep",
    "TrackerBusyError",
    "TrackerError",
    "TrackerListener",
    "TrackerSnapshot",
    "TrackerState",
    "TransientRequestError",
    "WORKSPACE_STEPS",
    "is_terminal",
    "reconcile",
]
