"""Tests for best-effort publishing and the Supabase storage wrapper."""

from unittest.mock import AsyncMock, MagicMock

import pytest

from db_snapshot.backup.publish import StoragePublisher, SupabaseObjectStorage
from db_snapshot.errors import PublishError


class MemoryStorage:
    def __init__(self, upload_error: str | None = None, url_error: str | None = None) -> None:
        self.objects: dict[str, tuple[bytes, str]] = {}
        self.upload_error = upload_error
        self.url_error = url_error
        self.url_requests: list[tuple[str, int]] = []

    async def put(self, name, data, content_type):
        if self.upload_error:
            raise RuntimeError(self.upload_error)
        self.objects[name] = (data, content_type)

    async def signed_url(self, name, ttl):
        self.url_requests.append((name, ttl))
        if self.url_error:
            raise RuntimeError(self.url_error)
        return f"https://storage.example/{name}?ttl={ttl}"


class TestStoragePublisher:
    async def test_upload_then_sign(self):
        storage = MemoryStorage()

        outcome = await StoragePublisher(storage, ttl=60).publish("b.json", b"{}", "application/json")

        assert storage.objects == {"b.json": (b"{}", "application/json")}
        assert outcome.uploaded
        assert outcome.download_url == "https://storage.example/b.json?ttl=60"
        assert outcome.errors == []

    async def test_upload_failure_skips_signed_url(self):
        storage = MemoryStorage(upload_error="bucket not found")

        outcome = await StoragePublisher(storage).publish("b.json", b"{}", "application/json")

        assert not outcome.uploaded
        assert outcome.download_url is None
        assert outcome.errors == ["Storage upload error: bucket not found"]
        assert storage.url_requests == []

    async def test_signed_url_failure_keeps_upload(self):
        storage = MemoryStorage(url_error="expired key")

        outcome = await StoragePublisher(storage).publish("b.json", b"{}", "application/json")

        assert outcome.uploaded
        assert outcome.download_url is None
        assert outcome.errors == ["Signed URL error: expired key"]


class TestSupabaseObjectStorage:
    def _client(self, signed: dict) -> tuple[MagicMock, MagicMock]:
        bucket = MagicMock()
        bucket.upload = AsyncMock()
        bucket.create_signed_url = AsyncMock(return_value=signed)
        client = MagicMock()
        client.storage.from_.return_value = bucket
        return client, bucket

    async def test_put_does_not_overwrite(self):
        client, bucket = self._client({})

        await SupabaseObjectStorage(client, "database-backups").put("b.json", b"{}", "application/json")

        client.storage.from_.assert_called_with("database-backups")
        bucket.upload.assert_awaited_once_with(
            "b.json", b"{}", {"content-type": "application/json", "upsert": "false"}
        )

    async def test_signed_url_either_key(self):
        client, _ = self._client({"signedUrl": "https://signed"})
        assert await SupabaseObjectStorage(client, "b").signed_url("x", 10) == "https://signed"

    async def test_missing_signed_url_raises(self):
        client, _ = self._client({})
        with pytest.raises(PublishError):
            await SupabaseObjectStorage(client, "b").signed_url("x", 10)
