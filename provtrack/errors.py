"""
Error taxonomy for the provisioning job tracker.

Error Hierarchy:
- TrackerError: base for everything raised by this package
  - RequestError: control-plane call failed (non-2xx, malformed body)
    - AuthenticationError (401): credentials absent or expired
    - AuthorizationError (403): caller lacks permission
    - TransientRequestError: network failure, timeout, 5xx or 429
  - TerminalJobError: the job itself reported failure
  - TrackerBusyError: a job is already being tracked

Usage:
    from provtrack.errors import AuthenticationError, TransientRequestError

    try:
        state = await client.fetch_status(job_id)
    except TransientRequestError:
        ...  # try again on the next tick
"""

from typing import Optional


class TrackerError(Exception):
    """Base class for provisioning tracker errors."""

    status_code: Optional[int] = None

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code


# =============================================================================
# Control-plane request errors
# =============================================================================

class RequestError(TrackerError):
    """Any non-2xx response or transport failure."""
    pass


class AuthenticationError(RequestError):
    """Credentials missing or expired (401)."""

    status_code = 401

    def __init__(
        self,
        message: str = "Authentication required. Please sign in and retry.",
        status_code: Optional[int] = None,
    ):
        super().__init__(message, status_code)


class AuthorizationError(RequestError):
    """Caller is not permitted to perform the operation (403)."""

    status_code = 403

    def __init__(
        self,
        message: str = "You are not authorized to perform this action.",
        status_code: Optional[int] = None,
    ):
        super().__init__(message, status_code)


class TransientRequestError(RequestError):
    """Network failure, timeout or server-side error worth retrying later."""
    pass


# =============================================================================
# Job and tracker errors
# =============================================================================

class TerminalJobError(TrackerError):
    """The job reached a terminal failure or cancellation status."""

    def __init__(self, message: str, job_id: str = "", status: str = ""):
        super().__init__(message)
        self.job_id = job_id
        self.status = status


class TrackerBusyError(TrackerError):
    """start() was called while another job is still tracked."""
    pass


def is_auth_error(exc: BaseException) -> bool:
    """True for errors that polling again cannot fix."""
    return isinstance(exc, (AuthenticationError, AuthorizationError))
