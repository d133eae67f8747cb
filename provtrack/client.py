"""
Control-plane client for job submission and status polling.

Usage:
    from provtrack.client import HttpStatusClient

    async with HttpStatusClient("https://portal.example.com/api/proxy/aegis",
                                token_provider=lambda: token) as client:
        handle = await client.submit({"projectId": "p1", "clusterId": "c1"})
        state = await client.fetch_status(handle.id)

Errors follow provtrack.errors: 401 -> AuthenticationError,
403 -> AuthorizationError, 5xx/429/network -> TransientRequestError,
anything else non-2xx -> RequestError.
"""

import asyncio
import json
import logging
from abc import ABC, abstractmethod
from dataclasses import replace
from typing import Any, Callable, Dict, Mapping, Optional
from urllib.parse import quote

import aiohttp

from provtrack.errors import (
    AuthenticationError,
    AuthorizationError,
    RequestError,
    TransientRequestError,
)
from provtrack.models import JobHandle, JobState

logger = logging.getLogger(__name__)

TokenProvider = Callable[[], Optional[str]]

CLUSTER_SUBMIT_PATH = "/api/v1/clusters"
CLUSTER_STATUS_PATH = "/api/v1/clusters/jobs/{job_id}/status"
WORKSPACE_SUBMIT_PATH = "/api/v1/workspaces"
WORKSPACE_STATUS_PATH = "/api/v1/workspaces/jobs/{job_id}/status"


class StatusClient(ABC):
    """Submission and status endpoints of the control plane."""

    @abstractmethod
    async def submit(
        self, request: Mapping[str, Any], correlation_id: str = ""
    ) -> JobHandle:
        """Submit a provisioning request. Returns the job handle."""
        ...

    @abstractmethod
    async def fetch_status(self, job_id: str, correlation_id: str = "") -> JobState:
        """Fetch the current state of a job."""
        ...

    async def close(self) -> None:
        """Release client resources."""
        return None


class HttpStatusClient(StatusClient):
    """
    aiohttp implementation of StatusClient.

    Attributes:
        base_url: Control-plane base URL (proxy prefix included)
        submit_path: Path that accepts POSTed requests
        status_path: Status path template with a {job_id} placeholder
        require_auth: Fail with AuthenticationError when no token is available
    """

    def __init__(
        self,
        base_url: str,
        token_provider: Optional[TokenProvider] = None,
        submit_path: str = CLUSTER_SUBMIT_PATH,
        status_path: str = CLUSTER_STATUS_PATH,
        require_auth: bool = True,
        timeout_seconds: float = 30.0,
        session: Optional[aiohttp.ClientSession] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.submit_path = submit_path
        self.status_path = status_path
        self.require_auth = require_auth
        self.timeout = aiohttp.ClientTimeout(total=timeout_seconds)
        self._token_provider = token_provider
        self._session = session
        self._owns_session = session is None

    @classmethod
    def from_settings(
        cls,
        control_plane,
        token_provider: Optional[TokenProvider] = None,
        **kwargs,
    ) -> "HttpStatusClient":
        """
        Build a client from ControlPlaneSettings.

        The configured api_token is used unless a token_provider is given.
        """
        if token_provider is None:
            token = control_plane.api_token.get_secret_value()
            token_provider = lambda: token or None  # noqa: E731
        options = {
            "submit_path": control_plane.submit_path,
            "status_path": control_plane.status_path,
            "require_auth": control_plane.require_auth,
            "timeout_seconds": control_plane.timeout_seconds,
        }
        options.update(kwargs)
        return cls(control_plane.url, token_provider=token_provider, **options)

    @classmethod
    def for_workspaces(cls, base_url: str, **kwargs) -> "HttpStatusClient":
        """Client preset for workload-launch jobs."""
        kwargs.setdefault("submit_path", WORKSPACE_SUBMIT_PATH)
        kwargs.setdefault("status_path", WORKSPACE_STATUS_PATH)
        return cls(base_url, **kwargs)

    async def __aenter__(self) -> "HttpStatusClient":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    async def close(self) -> None:
        if self._owns_session and self._session is not None and not self._session.closed:
            await self._session.close()
        self._session = None

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=self.timeout)
            self._owns_session = True
        return self._session

    def _build_headers(self, correlation_id: str = "") -> Dict[str, str]:
        """
        Build request headers.

        Raises:
            AuthenticationError: No token available and auth is required
        """
        headers = {"Accept": "application/json"}
        token = self._token_provider() if self._token_provider else None
        if token:
            headers["Authorization"] = f"Bearer {token}"
        elif self.require_auth:
            raise AuthenticationError()
        if correlation_id:
            headers["X-Correlation-ID"] = correlation_id
        return headers

    def status_url(self, job_id: str) -> str:
        return self.base_url + self.status_path.format(job_id=quote(job_id, safe=""))

    async def _request(
        self,
        method: str,
        url: str,
        body: Optional[Mapping[str, Any]] = None,
        correlation_id: str = "",
    ) -> Any:
        """
        Make an authenticated API request.

        Returns:
            Decoded JSON body, or None for 204

        Raises:
            AuthenticationError: 401 or no credentials
            AuthorizationError: 403
            TransientRequestError: Network failure, timeout, 5xx or 429
            RequestError: Other non-2xx or undecodable body
        """
        log_prefix = f"[{correlation_id}] " if correlation_id else ""
        headers = self._build_headers(correlation_id)
        session = self._get_session()

        logger.debug(f"{log_prefix}control plane {method} {url}")
        try:
            async with session.request(
                method, url, json=body, headers=headers, timeout=self.timeout
            ) as response:
                raw = await response.read()
                status = response.status
                reason = response.reason or ""
        except asyncio.TimeoutError:
            raise TransientRequestError(
                f"{log_prefix}Request to {url} timed out after {self.timeout.total}s"
            )
        except aiohttp.ClientError as e:
            raise TransientRequestError(f"{log_prefix}Cannot reach control plane: {e}")

        if status == 401:
            raise AuthenticationError()
        if status == 403:
            raise AuthorizationError()
        if status >= 400:
            message = raw.decode("utf-8", errors="replace").strip() or f"Request failed with status {status} {reason}".strip()
            if status >= 500 or status == 429:
                raise TransientRequestError(message, status_code=status)
            raise RequestError(message, status_code=status)
        if status == 204 or not raw.strip():
            return None
        try:
            text = raw.decode("utf-8")
        except UnicodeDecodeError:
            raise RequestError(
                f"{log_prefix}Control plane returned a body that is not UTF-8",
                status_code=status,
            )
        try:
            return json.loads(text)
        except ValueError:
            raise RequestError(
                f"{log_prefix}Control plane returned non-JSON body", status_code=status
            )

    async def submit(
        self, request: Mapping[str, Any], correlation_id: str = ""
    ) -> JobHandle:
        data = await self._request(
            "POST", self.base_url + self.submit_path, body=request,
            correlation_id=correlation_id,
        )
        if not isinstance(data, Mapping):
            raise RequestError("Submission response has no job")
        try:
            handle = JobHandle.from_dict(data)
        except ValueError as e:
            raise RequestError(f"Malformed submission response: {e}")
        logger.info(f"[{correlation_id}] Submitted job {handle.id} ({handle.initial_status})")
        return handle

    async def fetch_status(self, job_id: str, correlation_id: str = "") -> JobState:
        data = await self._request(
            "GET", self.status_url(job_id), correlation_id=correlation_id
        )
        if not isinstance(data, Mapping):
            raise RequestError(f"Status response for job {job_id} has no job")
        state = JobState.from_dict(data)
        if not state.id:
            state = replace(state, id=job_id)
        return state
