"""Compute backend interface and the RunPod serverless implementation."""

import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional

import httpx

from ..errors import AuthFailure, ComputeBackendError, ValidationError
from ..models import ComputeSettings
from ..retry import RETRYABLE_STATUS, RetryExecutor
from .models import BackendJobState, BackendStatus

logger = logging.getLogger(__name__)

RUNPOD_STATUS_MAP = {
    "IN_QUEUE": BackendStatus.QUEUED,
    "IN_PROGRESS": BackendStatus.RUNNING,
    "COMPLETED": BackendStatus.COMPLETED,
    "FAILED": BackendStatus.FAILED,
    "CANCELLED": BackendStatus.FAILED,
    "TIMED_OUT": BackendStatus.FAILED,
}


class ComputeBackend(ABC):
    """Abstract interface for external GPU job services.

    Implementations must provide:
    - ``submit`` returning the backend's own job id
    - ``poll`` returning a normalized :class:`BackendJobState`
    """

    @abstractmethod
    async def submit(self, payload: Dict[str, Any]) -> str:
        """Start a job and return its external id."""
        pass

    @abstractmethod
    async def poll(self, external_job_id: str) -> BackendJobState:
        """Current state of an external job."""
        pass

    async def aclose(self) -> None:
        """Release network resources."""
        return None


class RunPodBackend(ComputeBackend):
    """RunPod serverless endpoint (``/run`` + ``/status/{id}``).

    Network errors and 429/5xx gateway responses are retried by the
    executor (3 attempts by default); 401/403 fail immediately.
    """

    def __init__(
        self,
        settings: ComputeSettings,
        endpoint_id: str,
        executor: Optional[RetryExecutor] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        max_attempts: int = 3,
        base_delay_ms: int = 1000,
    ):
        if not settings.api_key or not endpoint_id:
            raise ValidationError("RunPod API key and endpoint ID are required")
        self.endpoint_id = endpoint_id
        self.base_url = f"{settings.base_url.rstrip('/')}/{endpoint_id}"
        self.executor = executor or RetryExecutor()
        self.max_attempts = max_attempts
        self.base_delay_ms = base_delay_ms
        self._client = http_client or httpx.AsyncClient(timeout=settings.timeout_s)
        self._headers = {
            "Authorization": f"Bearer {settings.api_key}",
            "Content-Type": "application/json",
        }

    async def _request(self, name: str, method: str, path: str, **kwargs) -> httpx.Response:
        async def op():
            response = await self._client.request(
                method, f"{self.base_url}{path}", headers=self._headers, **kwargs
            )
            if response.status_code in RETRYABLE_STATUS:
                raise ComputeBackendError(
                    f"RunPod API error: {response.status_code} - {response.text}",
                    status=response.status_code,
                )
            return response

        return await self.executor.execute_async(
            op, max_attempts=self.max_attempts, base_delay_ms=self.base_delay_ms, name=name
        )

    @staticmethod
    def _raise_for_status(response: httpx.Response, operation: str) -> None:
        if response.status_code in (401, 403):
            raise AuthFailure(
                f"RunPod rejected the API key ({response.status_code})", operation=operation
            )
        if response.is_error:
            raise ComputeBackendError(
                f"RunPod API error: {response.status_code} - {response.text}",
                status=response.status_code,
            )

    async def submit(self, payload: Dict[str, Any]) -> str:
        response = await self._request("runpod.submit", "POST", "/run", json={"input": payload})
        self._raise_for_status(response, "runpod.submit")

        data = response.json()
        job_id = data.get("id")
        if not job_id:
            raise ComputeBackendError("RunPod API did not return a job ID")
        logger.info("Submitted RunPod job %s to endpoint %s", job_id, self.endpoint_id)
        return job_id

    async def poll(self, external_job_id: str) -> BackendJobState:
        response = await self._request("runpod.status", "GET", f"/status/{external_job_id}")
        if response.status_code == 404:
            # Freshly submitted jobs are not always visible yet.
            logger.debug("RunPod job %s not registered yet (404)", external_job_id)
            return BackendJobState(status=BackendStatus.QUEUED, raw_status="NOT_FOUND")
        self._raise_for_status(response, "runpod.status")

        data = response.json()
        raw_status = data.get("status")
        status = RUNPOD_STATUS_MAP.get(raw_status)
        if status is None:
            raise ComputeBackendError(f"Unknown job status: {raw_status}")

        error = data.get("error")
        if status is BackendStatus.FAILED and not error and raw_status != "FAILED":
            error = f"Job {raw_status.lower()}"
        return BackendJobState(
            status=status,
            output=data.get("output"),
            error=error if error is None else str(error),
            raw_status=raw_status,
        )

    async def aclose(self) -> None:
        await self._client.aclose()
