"""Best-effort artifact publishing to object storage.

Publishing never fails a backup: upload and signed-URL errors are logged
and returned as messages, and the caller still has the artifact inline.

Usage:
    publisher = StoragePublisher(SupabaseObjectStorage(client, "database-backups"))
    outcome = await publisher.publish(file_name, data, "application/json")
    if outcome.download_url:
        ...
"""

import logging
from typing import Protocol

from pydantic import BaseModel, Field
from supabase import AsyncClient

from db_snapshot.errors import PublishError

logger = logging.getLogger(__name__)


class ObjectStorage(Protocol):
    """Blob store with time-limited retrieval links."""

    async def put(self, name: str, data: bytes, content_type: str) -> None: ...

    async def signed_url(self, name: str, ttl: int) -> str: ...


class SupabaseObjectStorage:
    """``ObjectStorage`` over a Supabase Storage bucket."""

    def __init__(self, client: AsyncClient, bucket: str) -> None:
        self._client = client
        self._bucket = bucket

    async def put(self, name: str, data: bytes, content_type: str) -> None:
        await self._client.storage.from_(self._bucket).upload(
            name,
            data,
            {"content-type": content_type, "upsert": "false"},
        )

    async def signed_url(self, name: str, ttl: int) -> str:
        result = await self._client.storage.from_(self._bucket).create_signed_url(name, ttl)
        url = result.get("signedURL") or result.get("signedUrl")
        if not url:
            raise PublishError(f"No signed URL returned for {name}")
        return url


class PublishOutcome(BaseModel):
    file_name: str
    uploaded: bool = False
    download_url: str | None = None
    errors: list[str] = Field(default_factory=list)


class StoragePublisher:
    """Uploads an artifact then requests its signed URL.

    Args:
        storage: Destination store.
        ttl: Signed URL lifetime in seconds (default 24 hours).
    """

    def __init__(self, storage: ObjectStorage, ttl: int = 86400) -> None:
        self._storage = storage
        self._ttl = ttl

    async def publish(self, name: str, data: bytes, content_type: str) -> PublishOutcome:
        """Upload *data* as *name*.  Never raises.

        An upload failure skips the signed URL request.
        """
        try:
            await self._storage.put(name, data, content_type)
        except Exception as e:
            error = PublishError(f"Storage upload error: {e}")
            logger.error(str(error))
            return PublishOutcome(file_name=name, errors=[str(error)])
        logger.info(f"Backup saved to storage: {name}")

        try:
            url = await self._storage.signed_url(name, self._ttl)
        except Exception as e:
            error = PublishError(f"Signed URL error: {e}")
            logger.warning(str(error))
            return PublishOutcome(file_name=name, uploaded=True, errors=[str(error)])

        return PublishOutcome(file_name=name, uploaded=True, download_url=url)
