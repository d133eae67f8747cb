"""
Data model for provisioning job tracking.

Wire snapshots (JobState and friends) are parsed from control-plane JSON,
which uses camelCase keys; snake_case keys are accepted too. Parsing is
tolerant: missing lists become empty, unknown statuses are kept verbatim and
classified later.
"""

from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Tuple


class MilestoneStatus(str, Enum):
    """Milestone status values reported by the orchestrator."""

    PENDING = "PENDING"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETE = "COMPLETE"
    ERROR = "ERROR"


class ConditionStatus(str, Enum):
    """Kubernetes-style condition status values."""

    TRUE = "True"
    FALSE = "False"
    UNKNOWN = "Unknown"


class StepStatus(str, Enum):
    """Status of a single timeline step."""

    PENDING = "pending"
    ACTIVE = "active"
    COMPLETE = "complete"
    ERROR = "error"


class SignalSource(str, Enum):
    """Which live signal produced a timeline step."""

    MILESTONE = "milestone"
    CONDITION = "condition"
    NONE = "none"


class TrackerState(str, Enum):
    """Job tracker lifecycle states."""

    IDLE = "idle"
    SUBMITTING = "submitting"
    POLLING = "polling"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    ABANDONED = "abandoned"


def _unwrap(data: Mapping[str, Any]) -> Mapping[str, Any]:
    """Strip the {"job": {...}} envelope the control plane wraps responses in."""
    inner = data.get("job") if isinstance(data, Mapping) else None
    if isinstance(inner, Mapping):
        return inner
    return data


def _pick(data: Mapping[str, Any], *keys: str) -> Any:
    for key in keys:
        if key in data and data[key] is not None:
            return data[key]
    return None


def _opt_str(value: Any) -> Optional[str]:
    if value is None:
        return None
    return value if isinstance(value, str) else str(value)


def _opt_float(value: Any) -> Optional[float]:
    if isinstance(value, bool) or value is None:
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


# =============================================================================
# Control-plane snapshots
# =============================================================================


@dataclass(frozen=True)
class Milestone:
    """An orchestrator-reported, explicitly named progress marker."""

    id: str
    label: str = ""
    status: str = MilestoneStatus.PENDING.value
    timestamp: Optional[str] = None
    details: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Milestone":
        status = _pick(data, "status") or MilestoneStatus.PENDING.value
        return cls(
            id=str(_pick(data, "id", "milestoneId", "milestone_id") or ""),
            label=str(_pick(data, "label", "name") or ""),
            status=str(status).strip().upper(),
            timestamp=_opt_str(_pick(data, "timestamp", "updatedAt", "updated_at")),
            details=_opt_str(_pick(data, "details", "message")),
        )


@dataclass(frozen=True)
class Condition:
    """A Kubernetes-style status assertion used as a secondary progress signal."""

    type: str
    status: str = ConditionStatus.UNKNOWN.value
    last_transition_time: Optional[str] = None
    message: Optional[str] = None
    reason: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Condition":
        raw_status = _pick(data, "status")
        if isinstance(raw_status, bool):
            status = "True" if raw_status else "False"
        elif raw_status is None:
            status = ConditionStatus.UNKNOWN.value
        else:
            # Normalize "true"/"TRUE" to the canonical Kubernetes spelling
            status = str(raw_status).strip().capitalize()
        return cls(
            type=str(_pick(data, "type") or ""),
            status=status,
            last_transition_time=_opt_str(
                _pick(data, "lastTransitionTime", "last_transition_time")
            ),
            message=_opt_str(_pick(data, "message")),
            reason=_opt_str(_pick(data, "reason")),
        )


@dataclass(frozen=True)
class JobState:
    """
    Authoritative snapshot of a job as reported by the control plane.

    Every successful poll yields a complete JobState that replaces the
    previous one; snapshots are never merged.

    Attributes:
        id: Job identifier
        status: Free-form status string (see provtrack.status)
        phase: Coarse lifecycle phase, if reported
        progress: Progress percentage (0-100), if reported
        error: Error message, if the job failed
        milestones: Ordered orchestrator milestones
        conditions: Ordered Kubernetes-style conditions
    """

    id: str
    status: str = ""
    phase: Optional[str] = None
    progress: Optional[float] = None
    error: Optional[str] = None
    milestones: Tuple[Milestone, ...] = ()
    conditions: Tuple[Condition, ...] = ()

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "JobState":
        """Create from control-plane JSON (with or without the job envelope)."""
        job = _unwrap(data)
        milestones = job.get("milestones") or []
        conditions = job.get("conditions") or []
        error = _pick(job, "error")
        if isinstance(error, Mapping):
            error = error.get("message") or str(dict(error))
        return cls(
            id=str(_pick(job, "id", "jobId", "job_id") or ""),
            status=str(_pick(job, "status") or ""),
            phase=_opt_str(_pick(job, "phase")),
            progress=_opt_float(_pick(job, "progress")),
            error=_opt_str(error),
            milestones=tuple(
                Milestone.from_dict(m) for m in milestones if isinstance(m, Mapping)
            ),
            conditions=tuple(
                Condition.from_dict(c) for c in conditions if isinstance(c, Mapping)
            ),
        )

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["milestones"] = [asdict(m) for m in self.milestones]
        data["conditions"] = [asdict(c) for c in self.conditions]
        return data

    @property
    def normalized_progress(self) -> float:
        """Progress clamped to 0-100; 0 when not reported."""
        if self.progress is None:
            return 0.0
        return min(100.0, max(0.0, self.progress))


@dataclass(frozen=True)
class JobHandle:
    """Returned by submission; id is all that is needed to resume tracking."""

    id: str
    initial_status: str = ""
    progress: float = 0.0

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "JobHandle":
        """
        Create from a submission response.

        Raises:
            ValueError: Response carries no job id
        """
        job = _unwrap(data)
        job_id = _pick(job, "id", "jobId", "job_id")
        if not job_id:
            raise ValueError("submission response has no job id")
        return cls(
            id=str(job_id),
            initial_status=str(_pick(job, "status", "initialStatus", "initial_status") or ""),
            progress=_opt_float(_pick(job, "progress")) or 0.0,
        )


# =============================================================================
# Timeline
# =============================================================================


@dataclass(frozen=True)
class StepDefinition:
    """A fixed provisioning stage shown on the timeline."""

    id: str
    label: str
    default_message: str = ""


@dataclass(frozen=True)
class TimelineStep:
    """Reconciled status of one StepDefinition."""

    step_id: str
    label: str
    status: StepStatus
    message: str
    timestamp: Optional[str] = None
    reason: Optional[str] = None
    source: SignalSource = SignalSource.NONE

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["status"] = self.status.value
        data["source"] = self.source.value
        return data


@dataclass(frozen=True)
class Timeline:
    """Ordered timeline steps plus the index the UI should focus."""

    steps: Tuple[TimelineStep, ...] = ()
    active_index: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "steps": [step.to_dict() for step in self.steps],
            "active_index": self.active_index,
        }

    def get(self, step_id: str) -> Optional[TimelineStep]:
        for step in self.steps:
            if step.step_id == step_id:
                return step
        return None

    @property
    def statuses(self) -> List[StepStatus]:
        return [step.status for step in self.steps]


# =============================================================================
# Persistence
# =============================================================================


@dataclass
class PersistedJobRef:
    """
    The only state written to durable storage.

    Attributes:
        job_id: Control-plane job id
        correlation_metadata: correlation_id plus caller-supplied context
            (project, cluster, region...) needed to render a resumed job
        saved_at: ISO timestamp of the write
    """

    job_id: str
    correlation_metadata: Dict[str, Any] = field(default_factory=dict)
    saved_at: str = ""

    @property
    def correlation_id(self) -> str:
        return str(self.correlation_metadata.get("correlation_id", ""))

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "PersistedJobRef":
        """
        Create from dictionary (JSON deserialization).

        Raises:
            ValueError: Data has no job id
        """
        if not isinstance(data, Mapping):
            raise ValueError("persisted job ref must be an object")
        job_id = data.get("job_id") or data.get("jobId")
        if not job_id:
            raise ValueError("persisted job ref has no job_id")
        metadata = data.get("correlation_metadata") or {}
        if not isinstance(metadata, Mapping):
            metadata = {}
        return cls(
            job_id=str(job_id),
            correlation_metadata=dict(metadata),
            saved_at=str(data.get("saved_at") or ""),
        )
