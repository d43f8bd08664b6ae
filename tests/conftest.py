import base64
import io
import os
import tempfile
from datetime import datetime
from typing import Any, Dict, List, Optional

import pytest
from botocore.exceptions import ClientError
from httpx import AsyncClient, ASGITransport
from sqlalchemy import create_engine

# Force test database and results dir before importing app (read at import time)
os.environ["DATABASE_URL"] = "sqlite:///./test_api.db"
os.environ.setdefault("PODSTUDIO_RESULTS_DIR", tempfile.mkdtemp(prefix="podstudio-results-"))

from databases import Database  # noqa: E402

from podstudio.api.db_models import Base  # noqa: E402
from podstudio.api.main import app, database as app_database  # noqa: E402
from podstudio.clients import ClientCache  # noqa: E402
from podstudio.container import build_container  # noqa: E402
from podstudio.jobs.backend import ComputeBackend  # noqa: E402
from podstudio.jobs.models import BackendJobState, BackendStatus  # noqa: E402
from podstudio.models import AppConfig, ObjectStoreSettings  # noqa: E402
from podstudio.retry import RetryExecutor  # noqa: E402
from podstudio.storage.client import ObjectStoreClient  # noqa: E402
from podstudio.storage.errors import is_retryable_store_error  # noqa: E402


def client_error(code: str, status: int, operation: str = "HeadObject", message: str = "") -> ClientError:
    return ClientError(
        {
            "Error": {"Code": code, "Message": message or code},
            "ResponseMetadata": {"HTTPStatusCode": status},
        },
        operation,
    )


def png_base64(size: int = 300) -> str:
    return base64.b64encode(b"\x89PNG\r\n\x1a\n" + b"\x00" * size).decode()


class FakeS3Client:
    """In-memory stand-in for a boto3 S3 client.

    Failures are scripted per method with ``fail(method, *errors)``; each
    call pops one error until the list is empty.
    """

    def __init__(self, page_size: int = 1000):
        self.objects: Dict[str, Dict[str, Any]] = {}
        self.calls: List[tuple] = []
        self.page_size = page_size
        self._failures: Dict[str, List[Exception]] = {}

    def fail(self, method: str, *errors: Exception) -> None:
        self._failures.setdefault(method, []).extend(errors)

    def _enter(self, method: str, key: Optional[str] = None) -> None:
        self.calls.append((method, key))
        pending = self._failures.get(method)
        if pending:
            raise pending.pop(0)

    def count(self, method: str) -> int:
        return sum(1 for name, _ in self.calls if name == method)

    def put(self, key: str, body: bytes = b"data") -> None:
        self.objects[key] = {"Body": body, "LastModified": datetime(2024, 1, 1), "ContentType": None}

    def head_object(self, Bucket, Key):
        self._enter("head_object", Key)
        if Key not in self.objects:
            raise client_error("404", 404, "HeadObject", "Not Found")
        return {"ContentLength": len(self.objects[Key]["Body"])}

    def get_object(self, Bucket, Key):
        self._enter("get_object", Key)
        if Key not in self.objects:
            raise client_error("NoSuchKey", 404, "GetObject")
        return {"Body": io.BytesIO(self.objects[Key]["Body"])}

    def put_object(self, Bucket, Key, Body, ContentType=None):
        self._enter("put_object", Key)
        self.objects[Key] = {"Body": Body, "LastModified": datetime(2024, 1, 1), "ContentType": ContentType}
        return {}

    def delete_object(self, Bucket, Key):
        self._enter("delete_object", Key)
        self.objects.pop(Key, None)
        return {}

    def list_objects_v2(self, Bucket, Prefix="", Delimiter=None, ContinuationToken=None):
        self._enter("list_objects_v2", Prefix)
        keys = sorted(k for k in self.objects if k.startswith(Prefix))
        contents, prefixes = [], []
        for key in keys:
            rest = key[len(Prefix):]
            if Delimiter and Delimiter in rest.rstrip(Delimiter):
                common = Prefix + rest.split(Delimiter, 1)[0] + Delimiter
                if common not in prefixes:
                    prefixes.append(common)
            else:
                contents.append(key)

        items = [("c", k) for k in contents] + [("p", p) for p in prefixes]
        start = int(ContinuationToken or 0)
        page = items[start:start + self.page_size]
        response: Dict[str, Any] = {
            "Contents": [
                {"Key": k, "Size": len(self.objects[k]["Body"]), "LastModified": self.objects[k]["LastModified"]}
                for kind, k in page if kind == "c"
            ],
            "CommonPrefixes": [{"Prefix": p} for kind, p in page if kind == "p"],
            "IsTruncated": start + self.page_size < len(items),
        }
        if response["IsTruncated"]:
            response["NextContinuationToken"] = str(start + self.page_size)
        return response


class FakeBackend(ComputeBackend):
    """Scripted compute backend."""

    def __init__(self, states: Optional[List[BackendJobState]] = None, submit_error: Optional[Exception] = None):
        self.states = list(states or [])
        self.submit_error = submit_error
        self.payloads: List[Dict[str, Any]] = []
        self.polls = 0

    async def submit(self, payload):
        self.payloads.append(payload)
        if self.submit_error is not None:
            raise self.submit_error
        return f"ext-{len(self.payloads)}"

    async def poll(self, external_job_id):
        self.polls += 1
        if len(self.states) > 1:
            return self.states.pop(0)
        return self.states[0] if self.states else BackendJobState(status=BackendStatus.QUEUED)


@pytest.fixture
def store_settings():
    return ObjectStoreSettings(
        endpoint_url="https://s3api-eu-ro-1.runpod.io/",
        access_key_id="AKIATESTKEY1234",
        secret_access_key="secret",
        bucket="vol123",
        region="eu-ro-1",
    )


@pytest.fixture
def fake_s3():
    return FakeS3Client()


@pytest.fixture
def sleeps():
    """Records every delay requested by the retry executor (seconds)."""
    return []


@pytest.fixture
def store(store_settings, fake_s3, sleeps):
    executor = RetryExecutor(is_retryable=is_retryable_store_error, sleep=sleeps.append)
    return ObjectStoreClient(store_settings, executor=executor, s3_client=fake_s3)


@pytest.fixture
async def database(tmp_path):
    url = f"sqlite:///{tmp_path}/podstudio_test.db"
    engine = create_engine(url)
    Base.metadata.create_all(engine)
    engine.dispose()

    db = Database(url)
    await db.connect()
    yield db
    await db.disconnect()


@pytest.fixture
def app_config(store_settings, tmp_path):
    config = AppConfig()
    config.object_store = store_settings
    config.compute.api_key = "rp-key"
    config.compute.endpoints = {"flux-kontext": "ep-flux", "video-upscale": "ep-upscale"}
    config.retry.store_base_delay_ms = 0
    config.storage.results_dir = str(tmp_path / "results")
    return config


@pytest.fixture
def fake_backend():
    return FakeBackend(states=[BackendJobState(status=BackendStatus.RUNNING)])


@pytest.fixture(scope="function")
async def client(app_config, fake_s3, fake_backend):
    # Create tables via synchronous SQLAlchemy
    engine = create_engine("sqlite:///./test_api.db")
    Base.metadata.create_all(engine)
    engine.dispose()

    # Connect the async database used by the app
    await app_database.connect()

    clients = ClientCache(
        app_config,
        s3_client_factory=lambda settings: fake_s3,
        backend_factory=lambda settings, endpoint_id: fake_backend,
    )
    app.state.container = build_container(app_config, app_database, clients=clients)

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    # Clean up: drop all tables and disconnect
    engine = create_engine("sqlite:///./test_api.db")
    Base.metadata.drop_all(engine)
    engine.dispose()
    await app_database.disconnect()
