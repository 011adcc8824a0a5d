"""Tests for tenant-scoped object storage access."""

from unittest.mock import MagicMock

import pytest

from tenant_rag.core.exceptions import ConfigurationError, StorageError
from tenant_rag.rag.storage import PLACEHOLDER_OBJECT, DocumentStorage, source_key, tenant_prefix


@pytest.fixture
def bucket():
    return MagicMock()


@pytest.fixture
def storage(bucket, settings):
    client = MagicMock()
    client.storage.from_.return_value = bucket
    return DocumentStorage(settings, client=client)


@pytest.mark.parametrize(
    "folder, prefix",
    [("", "acme"), ("policies", "acme/policies"), ("/policies/hr/", "acme/policies/hr")],
)
def test_tenant_prefix(folder, prefix):
    assert tenant_prefix("acme", folder) == prefix


@pytest.mark.parametrize(
    "path, source",
    [("acme/returns.md", "returns.md"), ("acme/hr/README.md", "hr/README.md"), ("other/x.txt", "other/x.txt")],
)
def test_source_key_is_path_below_tenant_root(path, source):
    assert source_key("acme", path) == source


@pytest.mark.asyncio
async def test_list_documents_under_tenant_prefix(storage, bucket):
    bucket.list.return_value = [
        {"name": "returns.md"},
        {"name": PLACEHOLDER_OBJECT},
        {"name": ""},
        {"name": "prices.csv"},
    ]

    objects = await storage.list_documents("acme", "policies")

    bucket.list.assert_called_once_with("acme/policies")
    assert [(obj.name, obj.path) for obj in objects] == [
        ("returns.md", "acme/policies/returns.md"),
        ("prices.csv", "acme/policies/prices.csv"),
    ]
    storage.client.storage.from_.assert_called_with("company-documents")


@pytest.mark.asyncio
async def test_list_documents_custom_bucket(storage, bucket):
    bucket.list.return_value = None

    assert await storage.list_documents("acme", bucket="archive") == []
    storage.client.storage.from_.assert_called_with("archive")


@pytest.mark.asyncio
async def test_listing_failure(storage, bucket):
    bucket.list.side_effect = RuntimeError("bucket not found")

    with pytest.raises(StorageError) as exc_info:
        await storage.list_documents("acme")

    assert "bucket not found" in exc_info.value.message


@pytest.mark.asyncio
async def test_download(storage, bucket):
    bucket.download.return_value = b"file body"

    assert await storage.download("acme/returns.md") == b"file body"
    bucket.download.assert_called_once_with("acme/returns.md")


@pytest.mark.asyncio
async def test_download_failure(storage, bucket):
    bucket.download.side_effect = RuntimeError("404")

    with pytest.raises(StorageError):
        await storage.download("acme/missing.md")


@pytest.mark.asyncio
async def test_unconfigured_storage(settings):
    settings.storage.supabase_url = None
    storage = DocumentStorage(settings)

    with pytest.raises(ConfigurationError):
        await storage.list_documents("acme")
