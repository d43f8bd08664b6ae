"""Asset upload: bytes first, then the record, with rollback on failure."""

import asyncio
import logging
import os
from typing import Callable, Optional

from .errors import PartialFailure, PodStudioError, ValidationError
from .jobs.models import AssetRecord
from .records import AssetRecordStore
from .storage.client import ObjectStoreClient

logger = logging.getLogger(__name__)


class AssetService:
    def __init__(
        self,
        records: AssetRecordStore,
        store_provider: Callable[[], ObjectStoreClient],
        assets_prefix: str = "loras",
    ):
        self.records = records
        self.store_provider = store_provider
        self.assets_prefix = assets_prefix

    async def upload(
        self,
        data: bytes,
        file_name: str,
        content_type: Optional[str] = None,
        name: Optional[str] = None,
    ) -> AssetRecord:
        """Store ``data`` and create its record.

        If the record cannot be written the uploaded object is deleted
        again; if that also fails a PartialFailure names the orphaned key.
        """
        if not file_name:
            raise ValidationError("File name is required", field="file_name")
        if not data:
            raise ValidationError("File is empty", field="file")

        store = self.store_provider()
        uploaded = await asyncio.to_thread(
            store.upload, data, file_name, content_type, self.assets_prefix
        )

        try:
            return await self.records.create(
                {
                    "name": name or os.path.splitext(uploaded.file_name)[0],
                    "file_name": uploaded.file_name,
                    "storage_key": uploaded.key,
                    "external_url": uploaded.external_url,
                    "size": uploaded.size,
                    "extension": os.path.splitext(uploaded.file_name)[1] or None,
                }
            )
        except Exception as db_error:
            logger.error("Asset record insert failed, rolling back %s: %s", uploaded.key, db_error)
            try:
                await asyncio.to_thread(store.delete, uploaded.key)
            except Exception as delete_error:
                logger.error("Rollback of %s failed: %s", uploaded.key, delete_error)
                raise PartialFailure(
                    f"Asset record could not be saved and stored object '{uploaded.key}' "
                    f"could not be removed: {delete_error}",
                    completed=["store_upload"],
                    pending=["record_create", "store_rollback"],
                ) from db_error
            raise PodStudioError(f"Failed to save asset record: {db_error}") from db_error
