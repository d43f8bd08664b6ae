"""Relational persistence for jobs and assets.

Tables are SQLAlchemy core (``api/db_models.py``) accessed through the
async ``databases`` connection. ``options`` is a JSON document stored as
text; updates merge into it inside a transaction and never replace it.
"""

import json
import logging
import uuid
from datetime import datetime
from typing import Any, Dict, List, Optional

from databases import Database
from sqlalchemy import delete, insert, select, update

from .api.db_models import Asset, Job
from .errors import NotFound
from .jobs.models import AssetRecord, JobRecord, JobStatus

logger = logging.getLogger(__name__)

JOB_FIELDS = {
    "status",
    "type",
    "prompt",
    "user_id",
    "external_job_id",
    "result_url",
    "completed_at",
}


def _row_to_dict(row, table) -> Dict[str, Any]:
    # Item access runs the column type processors (DateTime parsing on sqlite).
    return {column.name: row[column.name] for column in table.__table__.columns}


def _load_options(raw: Optional[str]) -> Dict[str, Any]:
    return json.loads(raw) if raw else {}


def _job_from_row(row) -> JobRecord:
    data = _row_to_dict(row, Job)
    data["options"] = _load_options(data.get("options"))
    return JobRecord(**data)


class JobRecordStore:
    def __init__(self, database: Database):
        self.database = database

    async def create(self, fields: Dict[str, Any]) -> JobRecord:
        now = datetime.utcnow()
        values = {k: v for k, v in fields.items() if k in JOB_FIELDS}
        values.setdefault("status", JobStatus.PROCESSING.value)
        values["status"] = JobStatus(values["status"]).value
        job_id = fields.get("id") or str(uuid.uuid4())
        await self.database.execute(
            insert(Job).values(
                id=job_id,
                options=json.dumps(fields.get("options") or {}),
                created_at=now,
                updated_at=now,
                **values,
            )
        )
        logger.debug("Created job %s (%s)", job_id, values.get("type"))
        return await self.get(job_id)

    async def find_by_id(self, job_id: str) -> Optional[JobRecord]:
        row = await self.database.fetch_one(select(Job).where(Job.id == job_id))
        return _job_from_row(row) if row else None

    async def get(self, job_id: str) -> JobRecord:
        job = await self.find_by_id(job_id)
        if job is None:
            raise NotFound("Job", job_id)
        return job

    async def update(
        self,
        job_id: str,
        fields: Optional[Dict[str, Any]] = None,
        options: Optional[Dict[str, Any]] = None,
    ) -> JobRecord:
        """Update columns and shallow-merge ``options`` into the stored document."""
        values = {k: v for k, v in (fields or {}).items() if k in JOB_FIELDS}
        if "status" in values:
            values["status"] = JobStatus(values["status"]).value

        async with self.database.transaction():
            row = await self.database.fetch_one(select(Job.options).where(Job.id == job_id))
            if row is None:
                raise NotFound("Job", job_id)
            if options:
                merged = _load_options(row["options"])
                merged.update(options)
                values["options"] = json.dumps(merged, default=str)
            values["updated_at"] = datetime.utcnow()
            await self.database.execute(update(Job).where(Job.id == job_id).values(**values))

        return await self.get(job_id)

    async def merge_options(self, job_id: str, patch: Dict[str, Any]) -> JobRecord:
        return await self.update(job_id, options=patch)

    async def delete(self, job_id: str) -> bool:
        if await self.find_by_id(job_id) is None:
            return False
        await self.database.execute(delete(Job).where(Job.id == job_id))
        return True

    async def list_by_status(self, status: JobStatus) -> List[JobRecord]:
        query = (
            select(Job)
            .where(Job.status == JobStatus(status).value)
            .order_by(Job.created_at.asc())
        )
        return [_job_from_row(row) for row in await self.database.fetch_all(query)]

    async def list_recent(self, limit: int = 50) -> List[JobRecord]:
        query = select(Job).order_by(Job.created_at.desc()).limit(limit)
        return [_job_from_row(row) for row in await self.database.fetch_all(query)]


class AssetRecordStore:
    def __init__(self, database: Database):
        self.database = database

    async def create(self, fields: Dict[str, Any]) -> AssetRecord:
        asset_id = fields.get("id") or str(uuid.uuid4())
        await self.database.execute(
            insert(Asset).values(
                id=asset_id,
                name=fields["name"],
                file_name=fields["file_name"],
                storage_key=fields["storage_key"],
                external_url=fields.get("external_url"),
                size=fields.get("size", 0),
                extension=fields.get("extension"),
                created_at=datetime.utcnow(),
            )
        )
        return await self.find_by_id(asset_id)

    async def find_by_id(self, asset_id: str) -> Optional[AssetRecord]:
        row = await self.database.fetch_one(select(Asset).where(Asset.id == asset_id))
        return AssetRecord(**_row_to_dict(row, Asset)) if row else None

    async def delete(self, asset_id: str) -> None:
        await self.database.execute(delete(Asset).where(Asset.id == asset_id))

    async def list(self, limit: int = 200) -> List[AssetRecord]:
        query = select(Asset).order_by(Asset.created_at.desc()).limit(limit)
        rows = await self.database.fetch_all(query)
        return [AssetRecord(**_row_to_dict(row, Asset)) for row in rows]
