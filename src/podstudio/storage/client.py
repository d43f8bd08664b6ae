"""S3-compatible object store client.

All calls go through a :class:`~podstudio.retry.RetryExecutor` and surface
typed errors (``ObjectNotFound``, ``AuthFailure``, ``ServiceUnavailable``,
``UnknownStoreError``) once the retry policy is done with them.
"""

import logging
import os
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, TypeVar

import boto3
from botocore.config import Config as BotoConfig
from botocore.exceptions import ClientError

from ..errors import ObjectNotFound, UnknownStoreError, ValidationError
from ..models import ObjectEntry, ObjectStoreSettings, UploadResult
from ..retry import RetryExecutor
from .errors import (
    StoreErrorKind,
    classify_store_error,
    is_retryable_store_error,
    translate_store_error,
)
from .paths import (
    DEFAULT_MOUNT_PREFIX,
    normalize_key,
    normalize_prefix,
    numbered_name,
    sanitize_file_name,
    to_volume_path,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Upper bound on "_N" suffixes tried before giving up on a name.
MAX_NAME_ATTEMPTS = 1000


def create_s3_client(settings: ObjectStoreSettings):
    """boto3 S3 client for ``settings``; botocore's own retries are disabled."""
    settings.require_complete()
    session = boto3.session.Session()
    return session.client(
        "s3",
        endpoint_url=settings.endpoint_url,
        aws_access_key_id=settings.access_key_id,
        aws_secret_access_key=settings.secret_access_key,
        region_name=settings.region,
        config=BotoConfig(
            signature_version="s3v4",
            retries={"total_max_attempts": 1, "mode": "standard"},
            connect_timeout=settings.timeout_s,
            read_timeout=settings.timeout_s,
        ),
    )


class ObjectStoreClient:
    """Bucket operations with retry, collision handling and key normalization.

    Args:
        settings: validated object store settings
        executor: retry executor; defaults to one classifying via the store adapter
        s3_client: pre-built boto3 client (tests pass a fake)
        max_attempts: attempts per store operation
        base_delay_ms: first backoff delay
        mount_prefix: compute backend mount point used for volume paths
    """

    def __init__(
        self,
        settings: ObjectStoreSettings,
        executor: Optional[RetryExecutor] = None,
        s3_client: Any = None,
        max_attempts: int = 5,
        base_delay_ms: int = 1000,
        mount_prefix: str = DEFAULT_MOUNT_PREFIX,
    ):
        self.settings = settings.require_complete()
        self.bucket = settings.bucket
        self.executor = executor or RetryExecutor(is_retryable=is_retryable_store_error)
        self.max_attempts = max_attempts
        self.base_delay_ms = base_delay_ms
        self.mount_prefix = mount_prefix
        self._s3 = s3_client if s3_client is not None else create_s3_client(settings)
        logger.debug(
            "Object store client for bucket %s at %s (key %s)",
            self.bucket,
            settings.endpoint_url,
            settings.masked_access_key(),
        )

    def _run(self, name: str, fn: Callable[[], T], key: Optional[str] = None) -> T:
        try:
            return self.executor.execute(
                fn, max_attempts=self.max_attempts, base_delay_ms=self.base_delay_ms, name=name
            )
        except Exception as exc:
            typed = translate_store_error(exc, name, key)
            if typed is exc:
                raise
            raise typed from exc

    def external_url(self, key: str) -> str:
        return f"{self.settings.endpoint_url.rstrip('/')}/{self.bucket}/{key}"

    # --- listing ---

    def list(self, prefix: str = "") -> List[ObjectEntry]:
        """Direct children of ``prefix``, directories first."""
        prefix = normalize_prefix(prefix)

        def op():
            contents: List[Dict[str, Any]] = []
            common: List[str] = []
            kwargs = {"Bucket": self.bucket, "Prefix": prefix, "Delimiter": "/"}
            while True:
                page = self._s3.list_objects_v2(**kwargs)
                contents.extend(page.get("Contents", []))
                common.extend(p["Prefix"] for p in page.get("CommonPrefixes", []))
                if not page.get("IsTruncated"):
                    break
                kwargs["ContinuationToken"] = page["NextContinuationToken"]
            return contents, common

        contents, common = self._run("list", op, key=prefix)

        entries: Dict[str, ObjectEntry] = {}
        for obj in contents:
            key = obj["Key"]
            if key.endswith("/"):
                entry = self._directory_entry(key, obj.get("LastModified"))
            else:
                ext = os.path.splitext(key)[1]
                entry = ObjectEntry(
                    key=key,
                    name=key.rsplit("/", 1)[-1],
                    size=obj.get("Size", 0),
                    last_modified=obj.get("LastModified"),
                    kind="file",
                    extension=ext or None,
                )
            if self._is_direct_child(prefix, key):
                entries.setdefault(key, entry)

        for key in common:
            if self._is_direct_child(prefix, key):
                entries.setdefault(key, self._directory_entry(key, None))

        directories = [e for e in entries.values() if e.kind == "directory"]
        files = [e for e in entries.values() if e.kind == "file"]
        return directories + files

    @staticmethod
    def _directory_entry(key: str, last_modified: Optional[datetime]) -> ObjectEntry:
        return ObjectEntry(
            key=key,
            name=key.rstrip("/").rsplit("/", 1)[-1],
            size=0,
            last_modified=last_modified,
            kind="directory",
        )

    @staticmethod
    def _is_direct_child(prefix: str, key: str) -> bool:
        if key == prefix:
            return False
        if prefix and not key.startswith(prefix):
            return False
        remainder = key[len(prefix):]
        return len([part for part in remainder.split("/") if part]) == 1

    # --- reads ---

    def exists(self, key: str) -> bool:
        key = normalize_key(key)

        def op():
            try:
                self._s3.head_object(Bucket=self.bucket, Key=key)
                return True
            except ClientError as exc:
                if classify_store_error(exc) is StoreErrorKind.NOT_FOUND:
                    return False
                raise

        return self._run("exists", op, key=key)

    def download(self, key: str) -> bytes:
        key = normalize_key(key)

        def op():
            response = self._s3.get_object(Bucket=self.bucket, Key=key)
            return response["Body"].read()

        data = self._run("download", op, key=key)
        logger.info("Downloaded %s (%d bytes)", key, len(data))
        return data

    # --- writes ---

    def available_key(self, destination: str, file_name: str) -> str:
        """First key under ``destination`` not taken: name, name_1, name_2, ..."""
        candidate = normalize_key(destination, file_name)
        counter = 1
        while self.exists(candidate):
            if counter > MAX_NAME_ATTEMPTS:
                raise UnknownStoreError(f"No free name for '{file_name}' under '{destination}'", operation="upload")
            candidate = normalize_key(destination, numbered_name(file_name, counter))
            counter += 1
        return candidate

    def upload(
        self,
        data: bytes,
        file_name: str,
        content_type: Optional[str] = None,
        destination: str = "",
    ) -> UploadResult:
        """Store ``data`` under ``destination`` without overwriting anything."""
        safe_name = sanitize_file_name(file_name)
        key = self.available_key(destination, safe_name)

        def op():
            params = {"Bucket": self.bucket, "Key": key, "Body": data}
            if content_type:
                params["ContentType"] = content_type
            self._s3.put_object(**params)

        self._run("upload", op, key=key)
        logger.info("Uploaded %s (%d bytes)", key, len(data))
        return UploadResult(
            external_url=self.external_url(key),
            key=key,
            volume_path=to_volume_path(key, self.mount_prefix),
            file_name=key.rsplit("/", 1)[-1],
            size=len(data),
        )

    def delete(self, key: str) -> None:
        """Delete ``key``; raises ObjectNotFound if it is not there."""
        key = normalize_key(key)

        def op():
            try:
                self._s3.head_object(Bucket=self.bucket, Key=key)
            except ClientError as exc:
                if classify_store_error(exc) is StoreErrorKind.NOT_FOUND:
                    raise ObjectNotFound(key, operation="delete") from exc
                raise
            self._s3.delete_object(Bucket=self.bucket, Key=key)

        self._run("delete", op, key=key)
        logger.info("Deleted %s", key)

    def create_folder(self, path: str) -> str:
        """Write the zero-byte ``path/`` marker and return its key."""
        key = normalize_prefix(path)
        if not key:
            raise ValidationError("Folder path must not be empty", field="path")

        def op():
            self._s3.put_object(Bucket=self.bucket, Key=key, Body=b"")

        self._run("create_folder", op, key=key)
        logger.info("Created folder %s", key)
        return key
