"""Object storage access for document ingestion.

Wraps the Supabase storage API. The client is synchronous, so calls run in
the default thread pool.
"""

import asyncio
from dataclasses import dataclass
from typing import List, Optional

import structlog
from supabase import Client, create_client

from tenant_rag.config.settings import Settings, get_settings
from tenant_rag.core.exceptions import ConfigurationError, StorageError

logger = structlog.get_logger(__name__)

PLACEHOLDER_OBJECT = ".emptyFolderPlaceholder"


@dataclass
class StoredObject:
    """An object listed under a tenant prefix."""
    name: str
    path: str


def tenant_prefix(company_id: str, folder_path: str = "") -> str:
    """Storage prefix for a tenant, ``<companyId>/<folder>`` or ``<companyId>``."""
    folder = folder_path.strip("/")
    return f"{company_id}/{folder}" if folder else company_id


def source_key(company_id: str, path: str) -> str:
    """Chunk source for a stored object: its path below the tenant root.

    ``acme/hr/README.md`` becomes ``hr/README.md``, so equal file names in
    different folders stay distinct documents.
    """
    root = f"{company_id}/"
    return path[len(root):] if path.startswith(root) else path


class DocumentStorage:
    """Tenant-scoped listing and download of stored documents."""

    def __init__(self, settings: Optional[Settings] = None, client: Optional[Client] = None):
        settings = settings or get_settings()
        self.default_bucket = settings.storage.default_bucket
        self._url = settings.storage.supabase_url
        self._key = settings.storage.supabase_service_key
        self._client = client

    @property
    def client(self) -> Client:
        if self._client is None:
            if not self._url or not self._key:
                raise ConfigurationError("storage", "Supabase URL and service key must be configured")
            self._client = create_client(self._url, self._key)
        return self._client

    async def list_documents(
        self,
        company_id: str,
        folder_path: str = "",
        bucket: Optional[str] = None,
    ) -> List[StoredObject]:
        """List the objects under the tenant's prefix.

        Raises:
            StorageError: If the listing call fails
        """
        bucket = bucket or self.default_bucket
        prefix = tenant_prefix(company_id, folder_path)

        try:
            entries = await self._run(lambda: self.client.storage.from_(bucket).list(prefix))
        except ConfigurationError:
            raise
        except Exception as e:
            raise StorageError("list", f"Failed to list files: {e}", details={"bucket": bucket, "prefix": prefix}) from e

        objects = [
            StoredObject(name=entry["name"], path=f"{prefix}/{entry['name']}")
            for entry in entries or []
            if entry.get("name") and entry["name"] != PLACEHOLDER_OBJECT
        ]
        logger.debug("Listed storage objects", bucket=bucket, prefix=prefix, count=len(objects))
        return objects

    async def download(self, path: str, bucket: Optional[str] = None) -> bytes:
        """Download one object.

        Raises:
            StorageError: If the download call fails
        """
        bucket = bucket or self.default_bucket
        try:
            return await self._run(lambda: self.client.storage.from_(bucket).download(path))
        except ConfigurationError:
            raise
        except Exception as e:
            raise StorageError("download", f"Failed to download {path}: {e}", details={"bucket": bucket}) from e

    async def _run(self, call):
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, call)
