"""Storage module for Supabase Storage operations.

Provides:
- StorageClient for interacting with Supabase Storage
- Path building utilities for consistent object keys
- Test isolation support via configurable prefixes
"""

from fortunia.storage.client import (
    FakeStorageClient,
    StorageClient,
    StorageClientBase,
    StorageError,
    StoredObject,
    get_storage_client,
)
from fortunia.storage.paths import (
    build_share_card_path,
    path_in_bucket_from_url,
)

__all__ = [
    "StorageClient",
    "StorageClientBase",
    "FakeStorageClient",
    "StorageError",
    "StoredObject",
    "get_storage_client",
    "build_share_card_path",
    "path_in_bucket_from_url",
]
