"""Object store access: S3 client, key helpers and error translation."""

from .client import ObjectStoreClient, create_s3_client
from .errors import StoreErrorKind, classify_store_error, translate_store_error
from .paths import sanitize_file_name, strip_mount_prefix, to_volume_path

__all__ = [
    "ObjectStoreClient",
    "create_s3_client",
    "StoreErrorKind",
    "classify_store_error",
    "translate_store_error",
    "sanitize_file_name",
    "strip_mount_prefix",
    "to_volume_path",
]
