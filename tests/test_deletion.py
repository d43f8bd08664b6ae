"""Tests for the dual-resource (object + record) deletion protocol."""

from unittest.mock import AsyncMock, MagicMock

import pytest

from podstudio.deletion import DualResourceDeletionProtocol
from podstudio.errors import ObjectNotFound, ServiceUnavailable, UnknownStoreError, ValidationError
from podstudio.jobs.models import AssetRecord
from podstudio.records import AssetRecordStore

ASSET = AssetRecord(id="a1", name="style", file_name="style.lora", storage_key="loras/style.lora")


def make_records(asset=ASSET, delete_error=None):
    records = MagicMock()
    records.find_by_id = AsyncMock(return_value=asset)
    records.delete = AsyncMock(side_effect=delete_error)
    return records


def make_store(delete_error=None):
    store = MagicMock()
    store.delete = MagicMock(side_effect=delete_error)
    return store


def protocol(records, store, **kwargs):
    return DualResourceDeletionProtocol(records, lambda: store, **kwargs)


@pytest.mark.asyncio(loop_scope="function")
async def test_both_succeed():
    records, store = make_records(), make_store()

    outcome = await protocol(records, store).delete("a1")

    assert outcome.status_code == 200
    assert outcome.to_response() == {"success": True, "message": "Asset deleted successfully"}
    store.delete.assert_called_once_with("loras/style.lora")
    records.delete.assert_awaited_once_with("a1")


@pytest.mark.asyncio(loop_scope="function")
async def test_missing_id_is_400():
    records, store = make_records(), make_store()

    outcome = await protocol(records, store).delete("")

    assert outcome.status_code == 400
    records.find_by_id.assert_not_awaited()
    store.delete.assert_not_called()


@pytest.mark.asyncio(loop_scope="function")
async def test_unknown_asset_is_404_without_deletes():
    records, store = make_records(asset=None), make_store()

    outcome = await protocol(records, store).delete("nope")

    assert outcome.status_code == 404
    assert outcome.success is False
    store.delete.assert_not_called()
    records.delete.assert_not_awaited()


@pytest.mark.asyncio(loop_scope="function")
async def test_missing_object_counts_as_deleted():
    records = make_records()
    store = make_store(ObjectNotFound("loras/style.lora", operation="delete"))

    outcome = await protocol(records, store).delete("a1")

    assert outcome.status_code == 200
    assert outcome.warning is None
    records.delete.assert_awaited_once_with("a1")


@pytest.mark.asyncio(loop_scope="function")
async def test_store_failure_aborts_and_keeps_record():
    records = make_records()
    store = make_store(ServiceUnavailable("503 Slow Down", operation="delete", attempts=5))

    outcome = await protocol(records, store).delete("a1")

    assert outcome.status_code == 500
    assert outcome.retryable is True
    assert outcome.partial is False
    assert "left intact" in outcome.error
    records.delete.assert_not_awaited()


@pytest.mark.asyncio(loop_scope="function")
async def test_store_fails_db_ok_lenient_policy_warns():
    records = make_records()
    store = make_store(UnknownStoreError("boom", operation="delete"))

    outcome = await protocol(records, store, abort_on_store_failure=False).delete("a1")

    assert outcome.status_code == 200
    body = outcome.to_response()
    assert body["success"] is True
    assert "loras/style.lora" in body["warning"]
    assert outcome.record_deleted is True
    assert outcome.store_deleted is False


@pytest.mark.asyncio(loop_scope="function")
async def test_store_ok_db_fails_is_partial():
    records = make_records(delete_error=RuntimeError("database is locked"))
    store = make_store()

    outcome = await protocol(records, store).delete("a1")

    assert outcome.status_code == 500
    assert outcome.partial is True
    assert outcome.store_deleted is True
    assert outcome.to_response()["partial"] is True
    assert "database is locked" in outcome.error


@pytest.mark.asyncio(loop_scope="function")
async def test_both_fail_lenient_policy_is_total_failure():
    records = make_records(delete_error=RuntimeError("database is locked"))
    store = make_store(UnknownStoreError("boom", operation="delete"))

    outcome = await protocol(records, store, abort_on_store_failure=False).delete("a1")

    assert outcome.status_code == 500
    assert outcome.partial is False
    assert outcome.success is False


@pytest.mark.asyncio(loop_scope="function")
async def test_store_not_configured_is_400_after_lookup():
    records = make_records()

    def provider():
        raise ValidationError("Object store settings incomplete: missing bucket")

    outcome = await DualResourceDeletionProtocol(records, provider).delete("a1")

    assert outcome.status_code == 400
    records.find_by_id.assert_awaited_once_with("a1")
    records.delete.assert_not_awaited()


@pytest.mark.asyncio(loop_scope="function")
async def test_volume_prefixed_key_is_stripped(database, store, fake_s3):
    fake_s3.put("loras/old.lora")
    records = AssetRecordStore(database)
    asset = await records.create(
        {"name": "old", "file_name": "old.lora", "storage_key": "/runpod-volume/loras/old.lora"}
    )

    outcome = await DualResourceDeletionProtocol(records, lambda: store).delete(asset.id)

    assert outcome.status_code == 200
    assert "loras/old.lora" not in fake_s3.objects
    assert await records.find_by_id(asset.id) is None


@pytest.mark.asyncio(loop_scope="function")
async def test_store_client_construction_error_is_500_outcome():
    records = make_records()

    def provider():
        raise ValueError("Invalid endpoint: not a url")

    outcome = await DualResourceDeletionProtocol(records, provider).delete("a1")

    assert outcome.status_code == 500
    assert outcome.success is False
    assert outcome.partial is False
    assert "nothing was deleted" in outcome.error
    records.delete.assert_not_awaited()
