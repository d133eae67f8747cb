"""
Timeline reconciliation.

Maps a fixed catalog of provisioning steps onto the live signals in a
JobState. Two overlapping signal sources exist:

- milestones: explicit orchestrator progress, matched first
- conditions: generic Kubernetes-style assertions, matched second

Both are wrapped in a small tagged union so that the matching order and the
per-source classification rules stay in one place.

Usage:
    from provtrack.timeline import CLUSTER_STEPS, reconcile

    timeline = reconcile(CLUSTER_STEPS, job_state)
    focus = timeline.steps[timeline.active_index]
"""

from dataclasses import dataclass
from typing import Optional, Sequence, Tuple, Union

from provtrack.models import (
    Condition,
    ConditionStatus,
    JobState,
    Milestone,
    MilestoneStatus,
    SignalSource,
    StepDefinition,
    StepStatus,
    Timeline,
    TimelineStep,
)
from provtrack.status import is_cancelled, is_failure

# Default step catalogs
CLUSTER_STEPS: Tuple[StepDefinition, ...] = (
    StepDefinition(
        "SPEC_SUBMITTED",
        "Submission accepted",
        "Waiting for the control plane to accept the cluster spec.",
    ),
    StepDefinition(
        "PULUMI_REFRESH",
        "Refresh",
        "Refreshing stack state against the cloud provider.",
    ),
    StepDefinition(
        "PULUMI_APPLY",
        "Apply",
        "Creating and updating cloud resources.",
    ),
    StepDefinition(
        "SECRETS_SYNCED",
        "Secrets synced",
        "Syncing kubeconfig and credentials to the secret store.",
    ),
    StepDefinition(
        "REGISTRATION_COMPLETE",
        "Registration complete",
        "Registering the cluster with the platform.",
    ),
)

WORKSPACE_STEPS: Tuple[StepDefinition, ...] = (
    StepDefinition(
        "WORKLOAD_SUBMITTED",
        "Workload submitted",
        "Waiting for the scheduler to accept the workload.",
    ),
    StepDefinition(
        "WORKLOAD_SCHEDULED",
        "Scheduled",
        "Waiting for capacity in the selected queue.",
    ),
    StepDefinition(
        "IMAGE_PULLED",
        "Image pulled",
        "Pulling the workspace image.",
    ),
    StepDefinition(
        "WORKSPACE_READY",
        "Workspace ready",
        "Starting the workspace and its connection endpoints.",
    ),
)

_MILESTONE_STATUS_MAP = {
    MilestoneStatus.COMPLETE.value: StepStatus.COMPLETE,
    MilestoneStatus.IN_PROGRESS.value: StepStatus.ACTIVE,
    MilestoneStatus.ERROR.value: StepStatus.ERROR,
}

_CONDITION_STATUS_MAP = {
    ConditionStatus.TRUE.value: StepStatus.COMPLETE,
    ConditionStatus.FALSE.value: StepStatus.ERROR,
    ConditionStatus.UNKNOWN.value: StepStatus.ACTIVE,
}


# =============================================================================
# Signals
# =============================================================================


@dataclass(frozen=True)
class MilestoneSignal:
    milestone: Milestone

    source = SignalSource.MILESTONE

    def classify(self) -> StepStatus:
        return _MILESTONE_STATUS_MAP.get(
            self.milestone.status.upper(), StepStatus.PENDING
        )

    def message(self, step: StepDefinition) -> str:
        return self.milestone.details or self.milestone.label or step.default_message

    @property
    def timestamp(self) -> Optional[str]:
        return self.milestone.timestamp

    @property
    def reason(self) -> Optional[str]:
        return None


@dataclass(frozen=True)
class ConditionSignal:
    condition: Condition

    source = SignalSource.CONDITION

    def classify(self) -> StepStatus:
        return _CONDITION_STATUS_MAP.get(self.condition.status, StepStatus.PENDING)

    def message(self, step: StepDefinition) -> str:
        return self.condition.message or step.default_message

    @property
    def timestamp(self) -> Optional[str]:
        return self.condition.last_transition_time

    @property
    def reason(self) -> Optional[str]:
        return self.condition.reason


Signal = Union[MilestoneSignal, ConditionSignal]


def _same_label(left: str, right: str) -> bool:
    return bool(left) and left.strip().casefold() == right.strip().casefold()


def _match_milestone(
    step: StepDefinition, milestones: Sequence[Milestone]
) -> Optional[Milestone]:
    for milestone in milestones:
        if milestone.id and milestone.id == step.id:
            return milestone
    for milestone in milestones:
        if _same_label(milestone.label, step.label):
            return milestone
    return None


def _match_condition(
    step: StepDefinition, conditions: Sequence[Condition]
) -> Optional[Condition]:
    for condition in conditions:
        if condition.type and condition.type == step.id:
            return condition
    for condition in conditions:
        if _same_label(condition.type, step.label):
            return condition
    return None


def find_signal(step: StepDefinition, state: Optional[JobState]) -> Optional[Signal]:
    """Find the live signal for a step; milestones win over conditions."""
    if state is None:
        return None
    milestone = _match_milestone(step, state.milestones)
    if milestone is not None:
        return MilestoneSignal(milestone)
    condition = _match_condition(step, state.conditions)
    if condition is not None:
        return ConditionSignal(condition)
    return None


# =============================================================================
# Reconciliation
# =============================================================================


def _reconcile_step(
    step: StepDefinition, state: Optional[JobState], job_failed: bool
) -> TimelineStep:
    signal = find_signal(step, state)
    if signal is None:
        return TimelineStep(
            step_id=step.id,
            label=step.label,
            status=StepStatus.PENDING,
            message=step.default_message,
        )

    status = signal.classify()
    # A failed or cancelled job must not show a step as still running
    if job_failed and status == StepStatus.ACTIVE:
        status = StepStatus.ERROR

    return TimelineStep(
        step_id=step.id,
        label=step.label,
        status=status,
        message=signal.message(step),
        timestamp=signal.timestamp,
        reason=signal.reason,
        source=signal.source,
    )


def compute_active_index(statuses: Sequence[StepStatus]) -> int:
    """
    Pick the step the UI should focus.

    Returns:
        Index of the first active step; otherwise one past the last
        complete step (len(statuses) when everything is complete);
        otherwise 0
    """
    for index, status in enumerate(statuses):
        if status == StepStatus.ACTIVE:
            return index
    last_complete = -1
    for index, status in enumerate(statuses):
        if status == StepStatus.COMPLETE:
            last_complete = index
    if last_complete >= 0:
        return last_complete + 1
    return 0


def reconcile(
    steps: Sequence[StepDefinition], state: Optional[JobState]
) -> Timeline:
    """
    Reconcile step definitions against a job snapshot.

    Pure and total: no I/O, no clock, identical inputs give an identical
    Timeline. Steps without any matching signal stay pending even if the
    overall job status suggests later work has started.

    Args:
        steps: Ordered step catalog
        state: Latest JobState, or None before the first poll

    Returns:
        Timeline with one entry per step and the computed active index
    """
    job_failed = state is not None and (
        is_failure(state.status) or is_cancelled(state.status)
    )
    reconciled = tuple(_reconcile_step(step, state, job_failed) for step in steps)
    return Timeline(
        steps=reconciled,
        active_index=compute_active_index([s.status for s in reconciled]),
    )
