"""Submission, polling and finalization of external compute jobs.

A job is created ``processing`` as soon as a request is accepted and ends
``completed`` or ``failed``; terminal states are never left again.
Submission runs in the request (so failures reach the caller with the job
id), polling runs on the :class:`~podstudio.jobs.runner.JobRunner`.
"""

import asyncio
import logging
import time
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, List, Optional

from ..errors import BackendJobFailed, JobTimeout, SubmissionError
from ..records import JobRecordStore
from ..storage.client import ObjectStoreClient
from .backend import ComputeBackend
from .extraction import ResultExtractor, truncate_output
from .models import (
    BackendJobState,
    BackendStatus,
    JobInput,
    JobRecord,
    JobStatus,
    StagedFile,
    SubmitResult,
)
from .runner import JobRunner

logger = logging.getLogger(__name__)

JOB_TYPE_EXTENSIONS = {
    "flux-kontext": ".png",
    "flux-krea": ".png",
    "qwen-image-edit": ".png",
    "video-upscale": ".mp4",
    "infinite-talk": ".mp4",
    "multitalk": ".mp4",
    "wan": ".mp4",
    "speech": ".wav",
}


def result_extension(job_type: str) -> str:
    return JOB_TYPE_EXTENSIONS.get(job_type, ".png")


def _now_iso() -> str:
    return datetime.utcnow().isoformat() + "Z"


def _error_text(exc: BaseException) -> str:
    return str(exc) or exc.__class__.__name__


class ComputeJobLifecycle:
    """Drives one job type-agnostic state machine: processing -> completed | failed.

    Args:
        jobs: job record store
        backend_provider: compute backend for a job type; raises
            ValidationError when that type is not configured
        store_provider: object store client; raises ValidationError when
            the store is not configured
        extractor: turns completed outputs into result URLs
        runner: background task runner
        input_prefix: store folder for staged inputs (``<prefix>/<type>``)
        poll_interval: seconds between status polls
        timeout: seconds before a running job is given up
        sleep: coroutine sleep (tests pass a no-op)
        clock: monotonic clock in seconds
    """

    def __init__(
        self,
        jobs: JobRecordStore,
        backend_provider: Callable[[str], ComputeBackend],
        store_provider: Callable[[], ObjectStoreClient],
        extractor: ResultExtractor,
        runner: JobRunner,
        input_prefix: str = "input",
        poll_interval: float = 5.0,
        timeout: float = 3600.0,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.jobs = jobs
        self.backend_provider = backend_provider
        self.store_provider = store_provider
        self.extractor = extractor
        self.runner = runner
        self.input_prefix = input_prefix
        self.poll_interval = poll_interval
        self.timeout = timeout
        self._sleep = sleep
        self._clock = clock

    # --- submission ---

    async def submit(self, job_input: JobInput) -> SubmitResult:
        """Create the job, stage inputs, start it on the backend and queue polling.

        Configuration problems raise ValidationError before anything is
        written. Once the row exists every failure marks it ``failed`` and
        surfaces as SubmissionError carrying the job id.
        """
        backend = self.backend_provider(job_input.type)
        store = self.store_provider() if job_input.files else None

        job = await self.jobs.create(
            {
                "type": job_input.type,
                "prompt": job_input.prompt,
                "user_id": job_input.user_id,
                "options": {"parameters": truncate_output(job_input.parameters)},
            }
        )
        logger.info("Job %s created (%s)", job.id, job.type)

        try:
            staged = await self._stage_inputs(job, job_input.files, store)
            payload = self.build_payload(job_input, staged)
            external_job_id = await backend.submit(payload)
            await self.jobs.update(
                job.id,
                {"external_job_id": external_job_id},
                options={
                    "externalJobId": external_job_id,
                    "inputs": staged,
                    "submittedAt": _now_iso(),
                },
            )
        except Exception as exc:
            logger.error("Job %s submission failed: %s", job.id, exc)
            await self._mark_failed(job.id, exc)
            raise SubmissionError(job.id, exc) from exc

        self.enqueue(job.id, external_job_id)
        return SubmitResult(job_id=job.id, external_job_id=external_job_id)

    async def _stage_inputs(
        self, job: JobRecord, files: List[StagedFile], store: Optional[ObjectStoreClient]
    ) -> Dict[str, Dict[str, str]]:
        staged: Dict[str, Dict[str, str]] = {}
        destination = f"{self.input_prefix}/{job.type}"
        for item in files:
            result = await asyncio.to_thread(
                store.upload, item.data, item.file_name, item.content_type, destination
            )
            staged[item.field] = {
                "key": result.key,
                "volumePath": result.volume_path,
                "externalUrl": result.external_url,
            }
            logger.info("Job %s: staged %s -> %s", job.id, item.field, result.volume_path)
        return staged

    @staticmethod
    def build_payload(job_input: JobInput, staged: Dict[str, Dict[str, str]]) -> Dict[str, Any]:
        payload = dict(job_input.parameters)
        if job_input.prompt is not None:
            payload.setdefault("prompt", job_input.prompt)
        for field_name, info in staged.items():
            payload[field_name] = info["volumePath"]
        return payload

    def enqueue(self, job_id: str, external_job_id: str) -> None:
        self.runner.submit(f"job:{job_id}", self.run_in_background, job_id, external_job_id)

    # --- background ---

    async def run_in_background(self, job_id: str, external_job_id: str) -> None:
        """Poll to a terminal state and persist it. Never raises."""
        try:
            job = await self.jobs.get(job_id)
            if job.status.is_terminal:
                logger.info("Job %s already %s, nothing to do", job_id, job.status.value)
                return
            backend = self.backend_provider(job.type)
            state = await self.wait_for_completion(backend, external_job_id)
            await self._finalize(job, state)
        except Exception as exc:
            logger.error("Job %s failed: %s", job_id, exc)
            await self._mark_failed(job_id, exc)

    async def wait_for_completion(self, backend: ComputeBackend, external_job_id: str) -> BackendJobState:
        started = self._clock()
        while True:
            state = await backend.poll(external_job_id)
            if state.status is BackendStatus.COMPLETED:
                return state
            if state.status is BackendStatus.FAILED:
                raise BackendJobFailed(external_job_id, state.error)

            elapsed = self._clock() - started
            if elapsed >= self.timeout:
                raise JobTimeout(external_job_id, self.timeout)
            logger.debug("External job %s %s (%.0fs)", external_job_id, state.status.value, elapsed)
            await self._sleep(self.poll_interval)

    async def _finalize(self, job: JobRecord, state: BackendJobState) -> None:
        extracted = await self.extractor.extract(job.id, state.output, result_extension(job.type))
        completed_at = datetime.utcnow()
        options = {
            "backendOutput": truncate_output(state.output),
            "completedAt": completed_at.isoformat() + "Z",
        }
        if job.created_at is not None:
            options["processingTime"] = round((completed_at - job.created_at).total_seconds(), 3)
        options.update(extracted.to_options())

        await self.jobs.update(
            job.id,
            {
                "status": JobStatus.COMPLETED,
                "result_url": extracted.result_url,
                "completed_at": completed_at,
            },
            options=options,
        )
        logger.info("Job %s completed: %s (%s)", job.id, extracted.result_url, extracted.source)

    async def _mark_failed(self, job_id: str, exc: BaseException) -> None:
        try:
            job = await self.jobs.find_by_id(job_id)
            if job is None or job.status.is_terminal:
                return
            await self.jobs.update(
                job_id,
                {"status": JobStatus.FAILED, "completed_at": datetime.utcnow()},
                options={"error": _error_text(exc), "failedAt": _now_iso()},
            )
        except Exception:
            logger.exception("Could not mark job %s as failed", job_id)

    # --- startup ---

    async def resume_processing(self) -> int:
        """Queue polling for jobs left ``processing`` by a previous run."""
        resumed = 0
        for job in await self.jobs.list_by_status(JobStatus.PROCESSING):
            if job.external_job_id:
                self.enqueue(job.id, job.external_job_id)
                resumed += 1
            else:
                await self._mark_failed(
                    job.id, RuntimeError("Interrupted before the backend accepted the job")
                )
        if resumed:
            logger.info("Resumed %d processing jobs", resumed)
        return resumed
