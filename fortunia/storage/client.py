"""Supabase Storage client abstraction.

Provides a narrow interface over the object store used for reading images
and share cards:
- Uploads (share card PNGs)
- Folder listings with creation timestamps (retention sweep)
- Batched deletes
- Existence checks (orphan repair)
- Public URLs

All methods receive the full object key inside the configured bucket.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import UTC, datetime

import httpx

from fortunia.config import Settings
from fortunia.logging import get_logger
from fortunia.services.clock import utc_now

logger = get_logger(__name__)


@dataclass(frozen=True)
class StoredObject:
    """A listed storage object.

    Attributes:
        name: File name relative to the listed folder.
        path: Full object key inside the bucket.
        created_at: Creation time reported by the store (None for folders).
    """

    name: str
    path: str
    created_at: datetime | None


class StorageError(Exception):
    """Storage operation error."""

    def __init__(self, message: str, code: str = "E_STORAGE_ERROR"):
        super().__init__(message)
        self.message = message
        self.code = code


class StorageClientBase(ABC):
    """Abstract base class for storage client implementations."""

    @property
    @abstractmethod
    def bucket(self) -> str:
        """Name of the bucket all keys refer to."""
        ...

    @abstractmethod
    def upload(
        self,
        path: str,
        content: bytes,
        *,
        content_type: str,
        cache_control: str = "3600",
    ) -> None:
        """Upload bytes to ``path``.

        Raises:
            StorageError: If the upload is rejected.
        """
        ...

    @abstractmethod
    def list_objects(self, folder: str, *, limit: int = 1000) -> list[StoredObject]:
        """List direct children of ``folder``, oldest first.

        Raises:
            StorageError: If listing fails.
        """
        ...

    @abstractmethod
    def delete_objects(self, paths: list[str]) -> None:
        """Delete a batch of objects. Missing objects are not an error.

        Raises:
            StorageError: If the batch is rejected.
        """
        ...

    @abstractmethod
    def object_exists(self, path: str) -> bool:
        """Check whether an object exists."""
        ...

    @abstractmethod
    def public_url(self, path: str) -> str:
        """Return the public URL for an object key."""
        ...


def _parse_timestamp(value: str | None) -> datetime | None:
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(value)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed


class StorageClient(StorageClientBase):
    """Production Supabase Storage client.

    Uses httpx for HTTP operations against the Supabase Storage API.
    """

    def __init__(
        self,
        supabase_url: str,
        service_key: str,
        bucket: str = "fortune-images-prod",
        timeout_s: float = 30.0,
    ):
        """Initialize the storage client.

        Args:
            supabase_url: Supabase project URL (e.g., https://xxx.supabase.co).
            service_key: Supabase service role key.
            bucket: Storage bucket name.
            timeout_s: Per-request timeout.
        """
        self._base_url = supabase_url.rstrip("/")
        self._bucket = bucket
        self._timeout_s = timeout_s
        self._storage_url = f"{self._base_url}/storage/v1"
        self._headers = {
            "Authorization": f"Bearer {service_key}",
            "apikey": service_key,
        }

    @property
    def bucket(self) -> str:
        return self._bucket

    def upload(
        self,
        path: str,
        content: bytes,
        *,
        content_type: str,
        cache_control: str = "3600",
    ) -> None:
        """Upload via POST /object/{bucket}/{path}."""
        url = f"{self._storage_url}/object/{self._bucket}/{path}"
        headers = {
            **self._headers,
            "Content-Type": content_type,
            "Cache-Control": f"max-age={cache_control}",
            "x-upsert": "false",
        }

        try:
            with httpx.Client() as client:
                response = client.post(url, headers=headers, content=content, timeout=self._timeout_s)
        except httpx.HTTPError as e:
            raise StorageError(f"Upload transport error: {type(e).__name__}") from e

        if response.status_code not in (200, 201):
            raise StorageError(f"Failed to upload object: {response.status_code}")

    def list_objects(self, folder: str, *, limit: int = 1000) -> list[StoredObject]:
        """List via POST /object/list/{bucket}, sorted by created_at ascending."""
        url = f"{self._storage_url}/object/list/{self._bucket}"
        body = {
            "prefix": folder,
            "limit": limit,
            "offset": 0,
            "sortBy": {"column": "created_at", "order": "asc"},
        }

        try:
            with httpx.Client() as client:
                response = client.post(url, headers=self._headers, json=body, timeout=self._timeout_s)
        except httpx.HTTPError as e:
            raise StorageError(f"List transport error: {type(e).__name__}") from e

        if response.status_code != 200:
            raise StorageError(f"Failed to list objects: {response.status_code}")

        objects = []
        for entry in response.json():
            name = entry.get("name")
            # Sub-folders come back without an id
            if not name or entry.get("id") is None:
                continue
            objects.append(
                StoredObject(
                    name=name,
                    path=f"{folder}/{name}",
                    created_at=_parse_timestamp(entry.get("created_at")),
                )
            )
        return objects

    def delete_objects(self, paths: list[str]) -> None:
        """Delete via DELETE /object/{bucket} with a prefixes list."""
        if not paths:
            return
        url = f"{self._storage_url}/object/{self._bucket}"

        try:
            with httpx.Client() as client:
                response = client.request(
                    "DELETE",
                    url,
                    headers=self._headers,
                    json={"prefixes": paths},
                    timeout=self._timeout_s,
                )
        except httpx.HTTPError as e:
            raise StorageError(f"Delete transport error: {type(e).__name__}") from e

        if response.status_code not in (200, 204):
            raise StorageError(f"Failed to delete objects: {response.status_code}")

    def object_exists(self, path: str) -> bool:
        """Check existence via HEAD on the authenticated object endpoint."""
        url = f"{self._storage_url}/object/{self._bucket}/{path}"

        try:
            with httpx.Client() as client:
                response = client.head(url, headers=self._headers, timeout=self._timeout_s)
        except httpx.HTTPError as e:
            raise StorageError(f"Head transport error: {type(e).__name__}") from e

        if response.status_code == 404 or response.status_code == 400:
            return False
        if response.status_code != 200:
            raise StorageError(f"Failed to check object: {response.status_code}")
        return True

    def public_url(self, path: str) -> str:
        return f"{self._storage_url}/object/public/{self._bucket}/{path}"


class FakeStorageClient(StorageClientBase):
    """Fake storage client for testing without real Supabase.

    Stores objects in memory and provides deterministic behavior for unit tests.
    """

    def __init__(self, bucket: str = "fortune-images-prod"):
        self._bucket = bucket
        self._objects: dict[str, tuple[bytes, str, datetime]] = {}
        self.failing_paths: set[str] = set()
        self.fail_uploads = False
        self.delete_calls: list[list[str]] = []

    @property
    def bucket(self) -> str:
        return self._bucket

    def upload(
        self,
        path: str,
        content: bytes,
        *,
        content_type: str,
        cache_control: str = "3600",
    ) -> None:
        if self.fail_uploads:
            raise StorageError("Simulated upload failure")
        if path in self._objects:
            raise StorageError(f"Object already exists: {path}")
        self._objects[path] = (content, content_type, utc_now())

    def list_objects(self, folder: str, *, limit: int = 1000) -> list[StoredObject]:
        prefix = f"{folder}/"
        children = []
        for path, (_, _, created_at) in self._objects.items():
            if not path.startswith(prefix):
                continue
            name = path[len(prefix) :]
            if "/" in name:
                continue
            children.append(StoredObject(name=name, path=path, created_at=created_at))
        children.sort(key=lambda o: o.created_at)
        return children[:limit]

    def delete_objects(self, paths: list[str]) -> None:
        self.delete_calls.append(list(paths))
        if self.failing_paths.intersection(paths):
            raise StorageError("Simulated delete failure")
        for path in paths:
            self._objects.pop(path, None)

    def object_exists(self, path: str) -> bool:
        return path in self._objects

    def public_url(self, path: str) -> str:
        return f"https://fake-storage.test/storage/v1/object/public/{self._bucket}/{path}"

    # Test helper methods

    def put_object(
        self,
        path: str,
        content: bytes = b"",
        content_type: str = "image/png",
        created_at: datetime | None = None,
    ) -> None:
        """Store an object directly (test helper)."""
        self._objects[path] = (content, content_type, created_at or utc_now())

    def get_object(self, path: str) -> bytes | None:
        """Get object content directly (test helper)."""
        if path not in self._objects:
            return None
        return self._objects[path][0]

    def get_content_type(self, path: str) -> str | None:
        """Get stored content type directly (test helper)."""
        if path not in self._objects:
            return None
        return self._objects[path][1]


def get_storage_client(settings: Settings) -> StorageClientBase:
    """Get the configured storage client.

    Returns:
        StorageClient if SUPABASE_URL and SUPABASE_SERVICE_KEY are set,
        FakeStorageClient otherwise.
    """
    if settings.supabase_url and settings.supabase_service_key:
        return StorageClient(
            supabase_url=settings.supabase_url,
            service_key=settings.supabase_service_key,
            bucket=settings.storage_bucket,
        )

    logger.warning("storage_client_fake_in_use", env=settings.fortunia_env.value)
    return FakeStorageClient(bucket=settings.storage_bucket)
