from __future__ import annotations

import asyncio
import io
from typing import Protocol, cast
from urllib.parse import urlparse

from .config import GenerationSettings
from .exceptions import StorageError


class StorageClient(Protocol):
    async def put(self, key: str, data: bytes, content_type: str) -> str: ...


class MinioLike(Protocol):
    def put_object(
        self,
        bucket: str,
        key: str,
        data: io.BytesIO,
        length: int,
        content_type: str,
    ) -> object: ...


class MinioStorage(StorageClient):
    """Durable blob store backed by an S3-compatible MinIO bucket."""

    def __init__(
        self, client: MinioLike, *, bucket: str, public_base_url: str | None = None
    ) -> None:
        self._client: MinioLike = client
        self._bucket = bucket
        self._public_base_url = public_base_url.rstrip("/") if public_base_url else None

    @classmethod
    def from_settings(cls, settings: GenerationSettings) -> MinioStorage:
        if not settings.s3_endpoint:
            raise StorageError("S3 endpoint is not configured")
        from minio import Minio

        parsed = urlparse(settings.s3_endpoint)
        secure = parsed.scheme == "https"
        endpoint = parsed.netloc or parsed.path
        client = cast(
            MinioLike,
            Minio(
                endpoint,
                access_key=settings.s3_access_key,
                secret_key=settings.s3_secret_key,
                secure=secure,
                region=settings.s3_region,
            ),
        )
        return cls(
            client,
            bucket=settings.s3_bucket,
            public_base_url=settings.s3_public_base_url,
        )

    def url_for(self, key: str) -> str:
        if self._public_base_url:
            return f"{self._public_base_url}/{self._bucket}/{key}"
        return f"s3://{self._bucket}/{key}"

    async def put(self, key: str, data: bytes, content_type: str) -> str:
        stream = io.BytesIO(data)
        length = len(data)

        def _upload() -> None:
            self._client.put_object(
                self._bucket,
                key,
                stream,
                length,
                content_type=content_type,
            )

        try:
            await asyncio.to_thread(_upload)
        except Exception as exc:
            raise StorageError(str(exc)) from exc
        return self.url_for(key)


class InMemoryStorage(StorageClient):
    """Simple in-memory storage used in tests and local runs."""

    def __init__(self, base_url: str = "https://storage.local") -> None:
        self._base_url = base_url.rstrip("/")
        self.objects: dict[str, tuple[bytes, str]] = {}
        self.writes = 0

    async def put(self, key: str, data: bytes, content_type: str) -> str:
        self.writes += 1
        self.objects[key] = (bytes(data), content_type)
        return f"{self._base_url}/{key}"
