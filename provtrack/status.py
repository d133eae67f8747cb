"""
Terminal status classification.

Control planes report job status as free-form strings. Only a fixed set is
recognized as terminal; anything else (including typos and statuses added
later on the server) means "keep polling".
"""

from enum import Enum
from typing import Optional


class Outcome(str, Enum):
    """Final outcome reported to subscribers."""

    SUCCEEDED = "succeeded"
    FAILED = "failed"


SUCCESS_STATUSES = frozenset({"SUCCEEDED", "SUCCESS", "COMPLETED"})
FAILURE_STATUSES = frozenset({"FAILED", "ERROR"})
CANCELLED_STATUSES = frozenset({"CANCELLED", "CANCELED"})

TERMINAL_STATUSES = SUCCESS_STATUSES | FAILURE_STATUSES | CANCELLED_STATUSES


def _normalize(status: Optional[str]) -> str:
    if not status:
        return ""
    return str(status).strip().upper()


def is_terminal(status: Optional[str]) -> bool:
    """
    Check whether a job status is terminal.

    Args:
        status: Raw status string from the control plane

    Returns:
        True only for recognized success, failure or cancellation values

    Examples:
        >>> is_terminal("Succeeded")
        True
        >>> is_terminal("totally-unknown-status")
        False
    """
    return _normalize(status) in TERMINAL_STATUSES


def is_success(status: Optional[str]) -> bool:
    return _normalize(status) in SUCCESS_STATUSES


def is_cancelled(status: Optional[str]) -> bool:
    return _normalize(status) in CANCELLED_STATUSES


def is_failure(status: Optional[str]) -> bool:
    """True if the status reports failure, e.g. FAILED, ERROR or PARTIALLY_FAILED."""
    normalized = _normalize(status)
    return normalized in FAILURE_STATUSES or "FAIL" in normalized


def classify_outcome(status: Optional[str]) -> Optional[Outcome]:
    """
    Map a terminal status to the outcome reported to subscribers.

    Cancellation counts as a failed outcome; the raw status stays on the
    JobState for callers that need to tell the two apart.

    Returns:
        Outcome, or None when the status is not terminal
    """
    if not is_terminal(status):
        return None
    if is_success(status):
        return Outcome.SUCCEEDED
    return Outcome.FAILED
