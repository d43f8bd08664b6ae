"""Pydantic models for configuration and object-store data."""

from datetime import datetime
from typing import Dict, List, Literal, Optional

from pydantic import BaseModel, Field

from .errors import ValidationError


class ObjectStoreSettings(BaseModel):
    """Connection settings for the S3-compatible object store."""

    endpoint_url: Optional[str] = Field(default=None, description="S3 API endpoint, e.g. https://s3api-eu-ro-1.runpod.io")
    access_key_id: Optional[str] = Field(default=None, description="Access key id")
    secret_access_key: Optional[str] = Field(default=None, description="Secret access key")
    bucket: Optional[str] = Field(default=None, description="Bucket (network volume id)")
    region: str = Field(default="us-east-1", description="Signing region")
    timeout_s: float = Field(default=60.0, gt=0.0, description="Connect/read timeout per request in seconds")

    def missing_fields(self) -> List[str]:
        required = ("endpoint_url", "access_key_id", "secret_access_key", "bucket")
        return [name for name in required if not getattr(self, name)]

    def require_complete(self) -> "ObjectStoreSettings":
        missing = self.missing_fields()
        if missing:
            raise ValidationError(
                f"Object store settings incomplete: missing {', '.join(missing)}",
                missing=missing,
            )
        return self

    def fingerprint(self) -> tuple:
        return (
            self.endpoint_url,
            self.access_key_id,
            self.secret_access_key,
            self.bucket,
            self.region,
            self.timeout_s,
        )

    def masked_access_key(self) -> str:
        key = self.access_key_id or ""
        return f"***{key[-4:]}" if key else "<unset>"


class ComputeSettings(BaseModel):
    """Compute backend (RunPod serverless) settings."""

    api_key: Optional[str] = Field(default=None, description="RunPod API key")
    base_url: str = Field(default="https://api.runpod.ai/v2", description="RunPod serverless API root")
    endpoints: Dict[str, str] = Field(
        default_factory=dict, description="Job type -> serverless endpoint id"
    )
    timeout_s: float = Field(default=30.0, gt=0.0, description="HTTP timeout per request in seconds")

    def require_endpoint(self, job_type: str) -> str:
        if not self.api_key:
            raise ValidationError("Compute settings incomplete: missing api_key", missing=["api_key"])
        endpoint_id = self.endpoints.get(job_type)
        if not endpoint_id:
            raise ValidationError(
                f"No compute endpoint configured for job type '{job_type}'",
                field="type",
                missing=[f"endpoints.{job_type}"],
            )
        return endpoint_id

    def fingerprint(self, job_type: str) -> tuple:
        return (self.api_key, self.base_url, self.endpoints.get(job_type), self.timeout_s)


class StorageLayoutConfig(BaseModel):
    """Where things live, in the store and on disk."""

    mount_prefix: str = Field(default="/runpod-volume", description="Backend mount point of the bucket")
    input_prefix: str = Field(default="input", description="Store folder for staged job inputs")
    assets_prefix: str = Field(default="loras", description="Store folder for uploaded assets")
    results_dir: str = Field(default="results", description="Local directory for extracted results")
    results_url_prefix: str = Field(default="/results", description="Public URL prefix of results_dir")


class RetryConfig(BaseModel):
    store_max_attempts: int = Field(default=5, ge=1)
    store_base_delay_ms: int = Field(default=1000, ge=0)
    compute_max_attempts: int = Field(default=3, ge=1)
    compute_base_delay_ms: int = Field(default=1000, ge=0)


class PollingConfig(BaseModel):
    interval_s: float = Field(default=5.0, gt=0.0, description="Seconds between status polls")
    timeout_s: float = Field(default=3600.0, gt=0.0, description="Give up polling after this many seconds")


class DeletionConfig(BaseModel):
    abort_on_store_failure: bool = Field(
        default=True,
        description="Keep the record when the stored object could not be deleted",
    )


class AppConfig(BaseModel):
    """Complete application configuration with validation."""

    object_store: ObjectStoreSettings = Field(default_factory=ObjectStoreSettings)
    compute: ComputeSettings = Field(default_factory=ComputeSettings)
    storage: StorageLayoutConfig = Field(default_factory=StorageLayoutConfig)
    retry: RetryConfig = Field(default_factory=RetryConfig)
    polling: PollingConfig = Field(default_factory=PollingConfig)
    deletion: DeletionConfig = Field(default_factory=DeletionConfig)
    log_level: str = Field(default="INFO")

    @classmethod
    def from_dict(cls, data: dict) -> "AppConfig":
        """Create config from nested dict (YAML)."""
        return cls(**data)

    def merge_overrides(self, overrides: dict) -> "AppConfig":
        """Apply flat CLI/env overrides and return a new config instance."""
        config_dict = self.model_dump()

        if "bucket" in overrides:
            config_dict["object_store"]["bucket"] = overrides["bucket"]
        if "endpoint_url" in overrides:
            config_dict["object_store"]["endpoint_url"] = overrides["endpoint_url"]
        if "access_key_id" in overrides:
            config_dict["object_store"]["access_key_id"] = overrides["access_key_id"]
        if "secret_access_key" in overrides:
            config_dict["object_store"]["secret_access_key"] = overrides["secret_access_key"]
        if "runpod_api_key" in overrides:
            config_dict["compute"]["api_key"] = overrides["runpod_api_key"]
        if "poll_interval" in overrides:
            config_dict["polling"]["interval_s"] = overrides["poll_interval"]
        if "poll_timeout" in overrides:
            config_dict["polling"]["timeout_s"] = overrides["poll_timeout"]
        if "results_dir" in overrides:
            config_dict["storage"]["results_dir"] = overrides["results_dir"]
        if "log_level" in overrides:
            config_dict["log_level"] = overrides["log_level"]

        return AppConfig.from_dict(config_dict)


class ObjectEntry(BaseModel):
    """One direct child of a listed prefix."""

    key: str
    name: str
    size: int = 0
    last_modified: Optional[datetime] = None
    kind: Literal["file", "directory"] = "file"
    extension: Optional[str] = None


class UploadResult(BaseModel):
    external_url: str = Field(description="Public S3 URL: <endpoint>/<bucket>/<key>")
    key: str = Field(description="Store-relative key")
    volume_path: str = Field(description="Key under the compute backend mount prefix")
    file_name: str
    size: int = 0
