from __future__ import annotations

import asyncio
import json
import logging
import mimetypes
import os
from contextlib import asynccontextmanager
from datetime import timezone
from typing import Any, Dict, List, Optional

from databases import Database
from fastapi import FastAPI, File, Form, HTTPException, Request, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from fastapi.staticfiles import StaticFiles
from pydantic import BaseModel, Field

from podstudio.config import get_database_url, resolve_config
from podstudio.container import Container, build_container
from podstudio.errors import PodStudioError, ValidationError
from podstudio.jobs.models import AssetRecord, JobInput, JobRecord, JobStatus, StagedFile
from podstudio.log import setup_logging

logger = logging.getLogger(__name__)

# --- CONFIG ---
DATABASE_URL = get_database_url()
RESULTS_DIR = os.path.abspath(resolve_config().storage.results_dir)
os.makedirs(RESULTS_DIR, exist_ok=True)

database = Database(DATABASE_URL)


@asynccontextmanager
async def lifespan(app: FastAPI):
    config = resolve_config()
    setup_logging(config.log_level)

    await database.connect()
    container = build_container(config, database)
    app.state.container = container
    await container.runner.start()
    await container.lifecycle.resume_processing()
    yield
    await container.runner.stop()
    await container.clients.aclose()
    await database.disconnect()


app = FastAPI(title="podstudio", lifespan=lifespan)
app.mount("/results", StaticFiles(directory=RESULTS_DIR), name="results")

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # For dev
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(PodStudioError)
async def podstudio_error_handler(request: Request, exc: PodStudioError):
    return JSONResponse(exc.to_dict(), status_code=exc.status_code)


def get_container(request: Request) -> Container:
    return request.app.state.container


# --- Pydantic Models for Requests/Responses ---
class FolderCreate(BaseModel):
    path: str = Field(..., min_length=1)


def _iso(value) -> Optional[str]:
    return value.replace(tzinfo=timezone.utc).isoformat() if value else None


def _job_to_response(job: JobRecord) -> Dict[str, Any]:
    return {
        "id": job.id,
        "status": job.status.value,
        "type": job.type,
        "prompt": job.prompt,
        "userId": job.user_id,
        "externalJobId": job.external_job_id,
        "resultUrl": job.result_url,
        "options": job.options,
        "createdAt": _iso(job.created_at),
        "completedAt": _iso(job.completed_at),
    }


def _asset_to_response(asset: AssetRecord) -> Dict[str, Any]:
    return {
        "id": asset.id,
        "name": asset.name,
        "fileName": asset.file_name,
        "storageKey": asset.storage_key,
        "externalUrl": asset.external_url,
        "size": asset.size,
        "extension": asset.extension,
        "createdAt": _iso(asset.created_at),
    }


# --- API ENDPOINTS ---


@app.get("/")
async def root():
    return {"message": "podstudio API", "docs": "/docs", "health": "/health"}


@app.get("/health")
async def health_check():
    return {"status": "ok"}


@app.post("/config/reload")
async def reload_config(request: Request):
    """Re-read YAML and environment settings; store and backend clients are rebuilt on next use."""
    container = get_container(request)
    config = resolve_config()
    container.clients.update_config(config)
    container.config = config
    return {
        "success": True,
        "bucket": config.object_store.bucket,
        "accessKey": config.object_store.masked_access_key(),
        "jobTypes": sorted(config.compute.endpoints),
    }


# --- JOB ENDPOINTS ---


async def _read_job_input(request: Request) -> JobInput:
    """JSON body, or multipart form where every file field is staged as an input."""
    content_type = request.headers.get("content-type", "")
    if content_type.startswith("application/json"):
        body = await request.json()
        if not isinstance(body, dict):
            raise ValidationError("Request body must be a JSON object")
        fields: Dict[str, Any] = body
        files: List[StagedFile] = []
    else:
        form = await request.form()
        fields = {}
        files = []
        for key, value in form.multi_items():
            if isinstance(value, str):
                fields[key] = value
            else:
                files.append(
                    StagedFile(
                        field=key,
                        file_name=value.filename or key,
                        data=await value.read(),
                        content_type=value.content_type,
                    )
                )

    job_type = fields.get("type")
    if not job_type:
        raise ValidationError("Job type is required", field="type")

    parameters = fields.get("parameters") or {}
    if isinstance(parameters, str):
        try:
            parameters = json.loads(parameters)
        except ValueError:
            raise ValidationError("parameters must be a JSON object", field="parameters")
    if not isinstance(parameters, dict):
        raise ValidationError("parameters must be a JSON object", field="parameters")

    return JobInput(
        type=job_type,
        prompt=fields.get("prompt"),
        user_id=fields.get("userId") or fields.get("user_id"),
        parameters=parameters,
        files=files,
    )


@app.post("/jobs")
async def create_job(request: Request):
    container = get_container(request)
    job_input = await _read_job_input(request)
    result = await container.lifecycle.submit(job_input)
    return result.to_response()


@app.get("/jobs")
async def list_jobs(request: Request, status: Optional[str] = None, limit: int = 50):
    """List jobs, most recent first."""
    container = get_container(request)
    if status:
        try:
            wanted = JobStatus(status)
        except ValueError:
            raise HTTPException(status_code=400, detail=f"Unknown status '{status}'")
        jobs = await container.jobs.list_by_status(wanted)
    else:
        jobs = await container.jobs.list_recent(limit)
    return [_job_to_response(job) for job in jobs]


@app.get("/jobs/{job_id}")
async def get_job(job_id: str, request: Request):
    job = await get_container(request).jobs.get(job_id)
    return _job_to_response(job)


# --- ASSET ENDPOINTS ---


@app.get("/assets")
async def list_assets(request: Request):
    assets = await get_container(request).assets.list()
    return [_asset_to_response(a) for a in assets]


@app.post("/assets", status_code=201)
async def upload_asset(
    request: Request,
    file: UploadFile = File(...),
    name: Optional[str] = Form(default=None),
):
    data = await file.read()
    asset = await get_container(request).asset_service.upload(
        data, file.filename or "", content_type=file.content_type, name=name
    )
    return _asset_to_response(asset)


@app.delete("/assets/{asset_id}")
async def delete_asset(asset_id: str, request: Request):
    outcome = await get_container(request).deletion.delete(asset_id)
    return JSONResponse(outcome.to_response(), status_code=outcome.status_code)


# --- STORAGE ENDPOINTS ---


@app.get("/storage/files")
async def list_files(request: Request, prefix: str = ""):
    store = get_container(request).clients.store()
    entries = await asyncio.to_thread(store.list, prefix)
    return {"success": True, "prefix": prefix, "files": [e.model_dump(mode="json") for e in entries]}


@app.post("/storage/folders", status_code=201)
async def create_folder(data: FolderCreate, request: Request):
    store = get_container(request).clients.store()
    key = await asyncio.to_thread(store.create_folder, data.path)
    return {"success": True, "key": key}


@app.delete("/storage/files")
async def delete_file(request: Request, key: str = ""):
    if not key:
        raise ValidationError("key is required", field="key")
    store = get_container(request).clients.store()
    await asyncio.to_thread(store.delete, key)
    return {"success": True, "key": key}


@app.post("/storage/upload", status_code=201)
async def upload_file(
    request: Request,
    file: UploadFile = File(...),
    destination: str = Form(default=""),
):
    store = get_container(request).clients.store()
    data = await file.read()
    result = await asyncio.to_thread(
        store.upload, data, file.filename or "file", file.content_type, destination
    )
    return {"success": True, **result.model_dump()}


@app.get("/storage/download")
async def download_file(request: Request, key: str = ""):
    if not key:
        raise ValidationError("key is required", field="key")
    store = get_container(request).clients.store()
    data = await asyncio.to_thread(store.download, key)
    file_name = key.rstrip("/").rsplit("/", 1)[-1]
    media_type = mimetypes.guess_type(file_name)[0] or "application/octet-stream"
    return Response(
        content=data,
        media_type=media_type,
        headers={"Content-Disposition": f'attachment; filename="{file_name}"'},
    )


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=8000)
