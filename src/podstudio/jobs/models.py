"""Pydantic models for jobs, assets and compute backend state."""

import enum
from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


class JobStatus(str, enum.Enum):
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self is not JobStatus.PROCESSING


class BackendStatus(str, enum.Enum):
    QUEUED = "QUEUED"
    RUNNING = "RUNNING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"

    @property
    def is_terminal(self) -> bool:
        return self in (BackendStatus.COMPLETED, BackendStatus.FAILED)


class BackendJobState(BaseModel):
    """Normalized status of one external job."""

    status: BackendStatus
    output: Optional[Any] = None
    error: Optional[str] = None
    raw_status: Optional[str] = None


class JobRecord(BaseModel):
    id: str
    status: JobStatus = JobStatus.PROCESSING
    type: str
    prompt: Optional[str] = None
    user_id: Optional[str] = None
    external_job_id: Optional[str] = None
    result_url: Optional[str] = None
    options: Dict[str, Any] = Field(default_factory=dict)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None


class AssetRecord(BaseModel):
    id: str
    name: str
    file_name: str
    storage_key: str = Field(description="Store-relative key, never mount-prefixed")
    external_url: Optional[str] = None
    size: int = 0
    extension: Optional[str] = None
    created_at: Optional[datetime] = None


class StagedFile(BaseModel):
    """An input file to upload before the backend call."""

    field: str = Field(description="Payload field that receives the volume path")
    file_name: str
    data: bytes
    content_type: Optional[str] = None


class JobInput(BaseModel):
    """Everything needed to submit one unit of compute work."""

    type: str
    prompt: Optional[str] = None
    user_id: Optional[str] = None
    parameters: Dict[str, Any] = Field(default_factory=dict)
    files: List[StagedFile] = Field(default_factory=list)


class SubmitResult(BaseModel):
    success: bool = True
    job_id: str
    external_job_id: str
    status: JobStatus = JobStatus.PROCESSING
    message: str = "Job submitted; processing in the background."

    def to_response(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "jobId": self.job_id,
            "externalJobId": self.external_job_id,
            "status": self.status.value,
            "message": self.message,
        }
