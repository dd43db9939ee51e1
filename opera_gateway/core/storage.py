"""
Storage Abstraction Layer - The Bridge Pattern

Provides a clean interface for storing enhanced images, with SupabaseStorage
(object storage over its REST API) and LocalStorage (filesystem, development).
"""

import asyncio
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Optional

import httpx

from opera_gateway.core.config import Settings
from opera_gateway.core.exceptions import StorageError
from opera_gateway.core.logging import get_logger
from opera_gateway.core.metrics import record_upstream_call

logger = get_logger(__name__)


class IStorage(ABC):
    """Interface for storage operations - The Bridge"""

    @abstractmethod
    async def upload(
        self,
        file_data: bytes,
        storage_key: str,
        content_type: str = "image/png"
    ) -> str:
        """
        Store bytes under the given key.

        Args:
            file_data: Raw bytes of the file
            storage_key: Object key, unique per upload
            content_type: MIME type of the file

        Returns:
            Storage key that can be used with get_public_url()

        Raises:
            StorageError: if the write fails
        """

    @abstractmethod
    def get_public_url(self, storage_key: str) -> str:
        """Public URL for a stored object."""


class LocalStorage(IStorage):
    """Local filesystem storage implementation for development."""

    def __init__(
        self,
        base_path: str = "./data/storage",
        bucket: str = "enhanced-images",
        public_base_url: str = "http://localhost:8000",
    ):
        self.bucket = bucket
        self.base_path = Path(base_path) / bucket
        self.base_path.mkdir(parents=True, exist_ok=True)
        self.public_base_url = public_base_url.rstrip("/")

    async def upload(
        self,
        file_data: bytes,
        storage_key: str,
        content_type: str = "image/png"
    ) -> str:
        file_path = self.base_path / storage_key
        if file_path.exists():
            raise StorageError(f"Object already exists: {storage_key}")
        try:
            file_path.parent.mkdir(parents=True, exist_ok=True)
            await asyncio.to_thread(file_path.write_bytes, file_data)
        except OSError as e:
            raise StorageError(f"Local storage write failed: {e}")
        return storage_key

    def get_public_url(self, storage_key: str) -> str:
        return f"{self.public_base_url}/static/storage/{self.bucket}/{storage_key}"


class SupabaseStorage(IStorage):
    """Supabase Storage bucket accessed through its object API."""

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        supabase_url: str,
        service_key: str,
        bucket: str = "enhanced-images",
        timeout: Optional[httpx.Timeout] = None,
    ):
        self.http_client = http_client
        self.supabase_url = supabase_url.rstrip("/")
        self.service_key = service_key
        self.bucket = bucket
        self.timeout = timeout or httpx.Timeout(60.0, connect=10.0)

    async def upload(
        self,
        file_data: bytes,
        storage_key: str,
        content_type: str = "image/png"
    ) -> str:
        try:
            response = await self.http_client.post(
                f"{self.supabase_url}/storage/v1/object/{self.bucket}/{storage_key}",
                content=file_data,
                headers={
                    "apikey": self.service_key,
                    "Authorization": f"Bearer {self.service_key}",
                    "Content-Type": content_type,
                    "x-upsert": "false",
                },
                timeout=self.timeout,
            )
        except httpx.HTTPError as e:
            record_upstream_call("storage", "upload", "error")
            raise StorageError(f"Storage upload failed: {e}")

        if not response.is_success:
            record_upstream_call("storage", "upload", "error")
            raise StorageError(
                f"Storage upload failed: {response.status_code} {response.text[:200]}",
                details={"upstream_status": response.status_code},
            )

        record_upstream_call("storage", "upload", "success")
        return storage_key

    def get_public_url(self, storage_key: str) -> str:
        return f"{self.supabase_url}/storage/v1/object/public/{self.bucket}/{storage_key}"


def build_storage(settings: Settings, http_client: httpx.AsyncClient) -> IStorage:
    """Pick the storage implementation configured by STORAGE_BACKEND."""
    backend = settings.STORAGE_BACKEND.lower()

    if backend == "supabase":
        service_key = settings.SUPABASE_SERVICE_ROLE_KEY or settings.SUPABASE_ANON_KEY
        return SupabaseStorage(
            http_client=http_client,
            supabase_url=settings.SUPABASE_URL,
            service_key=service_key,
            bucket=settings.STORAGE_BUCKET,
            timeout=httpx.Timeout(
                settings.UPSTREAM_TIMEOUT_SECONDS,
                connect=settings.UPSTREAM_CONNECT_TIMEOUT_SECONDS,
            ),
        )

    if backend == "local":
        return LocalStorage(
            base_path=settings.LOCAL_STORAGE_PATH,
            bucket=settings.STORAGE_BUCKET,
            public_base_url=settings.PUBLIC_BASE_URL,
        )

    raise ValueError(f"Unknown STORAGE_BACKEND: {settings.STORAGE_BACKEND}")
