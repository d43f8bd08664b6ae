"""Deletion of assets that live both in the object store and in the database.

Order is fixed: look the record up, delete the stored object, then delete
the record. Under the default policy a failed object delete aborts before
the record is touched, so "record gone, bytes remain" cannot happen; the
only reportable inconsistency left is "bytes gone, record remains", which
is flagged as ``partial``.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

from .errors import NotFound, ObjectNotFound, PodStudioError, UnknownStoreError, ValidationError
from .records import AssetRecordStore
from .storage.client import ObjectStoreClient
from .storage.paths import strip_mount_prefix

logger = logging.getLogger(__name__)


@dataclass
class DeletionOutcome:
    success: bool
    status_code: int
    message: Optional[str] = None
    warning: Optional[str] = None
    error: Optional[str] = None
    retryable: bool = False
    store_deleted: bool = False
    record_deleted: bool = False
    partial: bool = False

    def to_response(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {"success": self.success}
        if self.success:
            if self.message:
                body["message"] = self.message
            if self.warning:
                body["warning"] = self.warning
            return body
        body["error"] = self.error
        body["retryable"] = self.retryable
        if self.partial:
            body["partial"] = True
        return body


def _failure(exc: PodStudioError, **kwargs) -> DeletionOutcome:
    return DeletionOutcome(
        success=False,
        status_code=exc.status_code,
        error=exc.message,
        retryable=exc.retryable,
        **kwargs,
    )


class DualResourceDeletionProtocol:
    """Deletes an asset's bytes and row in a defined order.

    Args:
        records: asset record store
        store_provider: returns the object store client; called only after
            the record was found, so missing settings never mask a 404
        abort_on_store_failure: keep the record when the object delete fails
            (default). With False the record is deleted anyway and the
            outcome carries a warning naming the orphaned key.
    """

    def __init__(
        self,
        records: AssetRecordStore,
        store_provider: Callable[[], ObjectStoreClient],
        abort_on_store_failure: bool = True,
    ):
        self.records = records
        self.store_provider = store_provider
        self.abort_on_store_failure = abort_on_store_failure

    async def delete(self, asset_id: Optional[str]) -> DeletionOutcome:
        # 1. lookup
        if not asset_id:
            return _failure(ValidationError("Asset id is required", field="id"))
        try:
            asset = await self.records.find_by_id(asset_id)
        except Exception as exc:
            logger.error("Failed to look up asset %s: %s", asset_id, exc)
            return DeletionOutcome(success=False, status_code=500, error=f"Failed to look up asset: {exc}")
        if asset is None:
            return _failure(NotFound("Asset", asset_id))

        # 2. store delete
        key = strip_mount_prefix(asset.storage_key)
        try:
            store = self.store_provider()
        except ValidationError as exc:
            return _failure(exc)
        except Exception as exc:
            logger.error("Object store client unavailable for asset %s: %s", asset_id, exc)
            return DeletionOutcome(
                success=False,
                status_code=500,
                error=f"Object store unavailable, nothing was deleted: {exc}",
            )

        store_error: Optional[PodStudioError] = None
        try:
            await asyncio.to_thread(store.delete, key)
            logger.info("Deleted object %s for asset %s", key, asset_id)
        except ObjectNotFound:
            logger.warning("Object %s already gone, continuing with record delete", key)
        except Exception as exc:
            if not isinstance(exc, PodStudioError):
                exc = UnknownStoreError(str(exc) or exc.__class__.__name__, operation="delete")
            logger.error("Failed to delete object %s for asset %s: %s", key, asset_id, exc)
            if self.abort_on_store_failure:
                return DeletionOutcome(
                    success=False,
                    status_code=exc.status_code if exc.status_code >= 500 else 500,
                    error=(
                        f"Failed to delete stored object '{key}': {exc.message}. "
                        "The record was left intact to keep storage and database in sync."
                    ),
                    retryable=exc.retryable,
                )
            store_error = exc

        store_deleted = store_error is None

        # 3. record delete
        try:
            await self.records.delete(asset_id)
        except Exception as exc:
            logger.error("Failed to delete record for asset %s: %s", asset_id, exc)
            if store_deleted:
                logger.error(
                    "Partial deletion: object %s deleted but record %s remains", key, asset_id
                )
                return DeletionOutcome(
                    success=False,
                    status_code=500,
                    error=(
                        f"Stored object '{key}' was deleted but the record could not be "
                        f"removed: {exc}"
                    ),
                    store_deleted=True,
                    partial=True,
                )
            return DeletionOutcome(
                success=False,
                status_code=500,
                error=f"Failed to delete asset: {exc}",
                retryable=store_error.retryable,
            )

        if store_error is not None:
            logger.warning("Partial deletion: record %s deleted, object %s may remain", asset_id, key)
            return DeletionOutcome(
                success=True,
                status_code=200,
                warning=(
                    f"Asset record deleted, but deleting stored object '{key}' failed "
                    f"({store_error.message}). The file may still exist in storage."
                ),
                record_deleted=True,
            )

        return DeletionOutcome(
            success=True,
            status_code=200,
            message="Asset deleted successfully",
            store_deleted=True,
            record_deleted=True,
        )

