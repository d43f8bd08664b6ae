"""Error taxonomy for the orchestration layer.

Every error carries the HTTP-equivalent ``status_code`` it maps to and a
``retryable`` hint, so request handlers can build a structured response
without inspecting message text:

- ValidationError: missing id / required field / incomplete settings (400)
- NotFound: record or object does not exist (404)
- AuthFailure: credentials rejected, never retried (500)
- ServiceUnavailable: transient backend instability, retried then surfaced (500, retryable)
- UnknownStoreError: any other store failure (500)
- PartialFailure: one of two coupled resources changed, the other did not (500)
- JobTimeout: polling exceeded its budget (job marked failed)
"""

from typing import Any, Dict, List, Optional


class PodStudioError(Exception):
    """Base exception for podstudio."""

    status_code = 500
    retryable = False

    def __init__(self, message: str = "", *, retryable: Optional[bool] = None):
        super().__init__(message)
        self.message = message
        if retryable is not None:
            self.retryable = retryable

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": False,
            "error": self.message or self.__class__.__name__,
            "retryable": self.retryable,
        }


class ValidationError(PodStudioError):
    """Missing or invalid input. Not retried."""

    status_code = 400

    def __init__(self, message: str, field: Optional[str] = None, missing: Optional[List[str]] = None):
        super().__init__(message)
        self.field = field
        self.missing = missing or []


class NotFound(PodStudioError):
    status_code = 404

    def __init__(self, resource: str, identifier: Optional[str] = None):
        message = f"{resource} '{identifier}' not found" if identifier else f"{resource} not found"
        super().__init__(message)
        self.resource = resource
        self.identifier = identifier


class StoreError(PodStudioError):
    """Object store failure surfaced after the retry policy ran out."""

    kind = "fatal"

    def __init__(self, message: str, operation: Optional[str] = None, attempts: int = 1):
        # Explicit base call: ObjectNotFound mixes in NotFound after StoreError.
        PodStudioError.__init__(self, message)
        self.operation = operation
        self.attempts = attempts


class ObjectNotFound(StoreError, NotFound):
    kind = "not_found"
    status_code = 404

    def __init__(self, key: str, operation: Optional[str] = None, message: Optional[str] = None):
        StoreError.__init__(self, message or f"Object '{key}' not found", operation=operation)
        self.resource = "Object"
        self.identifier = key
        self.key = key


class AuthFailure(StoreError):
    """Credentials or request signature rejected."""

    kind = "auth"


class ServiceUnavailable(StoreError):
    """Quota, throttling or backend instability that outlived the retries."""

    kind = "transient"
    retryable = True


class UnknownStoreError(StoreError):
    kind = "fatal"


class PartialFailure(PodStudioError):
    """One resource of a coupled pair changed and the other did not."""

    def __init__(self, message: str, completed: List[str], pending: List[str]):
        super().__init__(message)
        self.completed = completed
        self.pending = pending


class ComputeBackendError(PodStudioError):
    """Compute backend rejected or could not process a request."""

    def __init__(self, message: str, status: Optional[int] = None):
        super().__init__(message, retryable=status in (502, 503, 504, 429))
        self.status = status


class BackendJobFailed(PodStudioError):
    """Backend reported the external job as failed."""

    def __init__(self, external_job_id: str, error: Optional[str] = None):
        super().__init__(f"Job failed: {error or 'Unknown error'}")
        self.external_job_id = external_job_id
        self.error = error


class JobTimeout(PodStudioError):
    retryable = True

    def __init__(self, external_job_id: str, timeout_s: float):
        super().__init__(f"Job timeout: maximum wait time ({timeout_s:g}s) exceeded")
        self.external_job_id = external_job_id
        self.timeout_s = timeout_s


class SubmissionError(PodStudioError):
    """Submission failed after the Job row was created; the row is now failed."""

    def __init__(self, job_id: str, cause: BaseException):
        super().__init__(str(cause) or cause.__class__.__name__, retryable=_cause_retryable(cause))
        self.job_id = job_id
        self.cause = cause

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data["jobId"] = self.job_id
        data["status"] = "failed"
        return data


def _cause_retryable(cause: BaseException) -> bool:
    if isinstance(cause, PodStudioError):
        return cause.retryable
    # Local import: retry imports this module.
    from .retry import is_transient_error

    return is_transient_error(cause)
