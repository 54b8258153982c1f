"""
Blob storage for accepted media.

Writes never overwrite: every key is freshly generated, so an existing
object at the target key means something is wrong and the write fails.
"""

import logging
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Optional

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from guestgallery.config import settings

logger = logging.getLogger(__name__)


class ObjectStoreError(Exception):
    """A storage backend call failed."""
    pass


class ObjectExistsError(ObjectStoreError):
    """The target key is already taken."""
    pass


class ObjectStore(ABC):
    """
    Interface for media storage backends.
    """

    @abstractmethod
    def put(self, key: str, data: bytes, content_type: str) -> None:
        """
        Store `data` at `key`. Raises ObjectExistsError if the key is taken.
        """
        raise NotImplementedError("put not implemented")

    @abstractmethod
    def get(self, key: str) -> bytes:
        raise NotImplementedError("get not implemented")

    @abstractmethod
    def delete(self, key: str) -> None:
        """
        Remove the object at `key`; a missing object is not an error.
        """
        raise NotImplementedError("delete not implemented")

    @abstractmethod
    def url_for(self, key: str) -> str:
        """
        A URL the gallery can hand to a browser.
        """
        raise NotImplementedError("url_for not implemented")


class FileSystemObjectStore(ObjectStore):
    """
    Media storage on the local filesystem, served under `url_prefix`.
    """

    def __init__(self, base_path: str = "./media", url_prefix: str = "/media") -> None:
        self.base_path = Path(base_path)
        self.url_prefix = url_prefix.rstrip("/")

    def _path(self, key: str) -> Path:
        root = self.base_path.resolve()
        path = (root / key).resolve()
        if root not in path.parents:
            raise ObjectStoreError(f"Key escapes storage root: {key}")
        return path

    def put(self, key: str, data: bytes, content_type: str) -> None:
        path = self._path(key)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            with path.open("xb") as f:
                f.write(data)
        except FileExistsError as e:
            raise ObjectExistsError(f"Object already exists: {key}") from e
        except OSError as e:
            raise ObjectStoreError(f"Failed to write {key}: {e}") from e
        logger.debug(f"Stored {len(data)} bytes at {path} ({content_type})")

    def get(self, key: str) -> bytes:
        try:
            return self._path(key).read_bytes()
        except OSError as e:
            raise ObjectStoreError(f"Failed to read {key}: {e}") from e

    def delete(self, key: str) -> None:
        try:
            self._path(key).unlink(missing_ok=True)
        except OSError as e:
            raise ObjectStoreError(f"Failed to delete {key}: {e}") from e

    def url_for(self, key: str) -> str:
        return f"{self.url_prefix}/{key}"


class S3ObjectStore(ObjectStore):
    """
    Media storage in an S3-compatible bucket (AWS S3, Cloudflare R2, MinIO).
    """

    def __init__(self, bucket: str, client=None, url_expires: int = 3600) -> None:
        self.bucket = bucket
        self.client = client
        self.url_expires = url_expires

    @classmethod
    def from_settings(cls) -> "S3ObjectStore":
        client = boto3.client(
            "s3",
            endpoint_url=settings.S3_ENDPOINT_URL or None,
            aws_access_key_id=settings.S3_ACCESS_KEY_ID or None,
            aws_secret_access_key=settings.S3_SECRET_ACCESS_KEY or None,
            region_name=settings.S3_REGION or None,
            config=Config(
                connect_timeout=settings.HTTP_TIMEOUT_SECONDS,
                read_timeout=settings.HTTP_TIMEOUT_SECONDS,
                retries={"max_attempts": 1},
            ),
        )
        return cls(settings.S3_BUCKET, client=client, url_expires=settings.SIGNED_URL_SECONDS)

    def put(self, key: str, data: bytes, content_type: str) -> None:
        try:
            self.client.put_object(
                Bucket=self.bucket,
                Key=key,
                Body=data,
                ContentType=content_type,
                IfNoneMatch="*",
            )
        except ClientError as e:
            error = e.response.get("Error", {})
            status = e.response.get("ResponseMetadata", {}).get("HTTPStatusCode")
            if error.get("Code") in ("PreconditionFailed", "ConditionalRequestConflict") or status == 412:
                raise ObjectExistsError(f"Object already exists: {key}") from e
            raise ObjectStoreError(f"S3 put_object failed for {key}: {e}") from e
        except BotoCoreError as e:
            raise ObjectStoreError(f"S3 put_object failed for {key}: {e}") from e
        logger.debug(f"Stored {len(data)} bytes at s3://{self.bucket}/{key}")

    def get(self, key: str) -> bytes:
        try:
            response = self.client.get_object(Bucket=self.bucket, Key=key)
            return response["Body"].read()
        except (ClientError, BotoCoreError) as e:
            raise ObjectStoreError(f"S3 get_object failed for {key}: {e}") from e

    def delete(self, key: str) -> None:
        try:
            self.client.delete_object(Bucket=self.bucket, Key=key)
        except (ClientError, BotoCoreError) as e:
            raise ObjectStoreError(f"S3 delete_object failed for {key}: {e}") from e

    def url_for(self, key: str) -> str:
        try:
            return self.client.generate_presigned_url(
                "get_object",
                Params={"Bucket": self.bucket, "Key": key},
                ExpiresIn=self.url_expires,
            )
        except (ClientError, BotoCoreError) as e:
            raise ObjectStoreError(f"Could not sign URL for {key}: {e}") from e


def get_object_store(backend: Optional[str] = None) -> ObjectStore:
    """
    Factory for the storage backend named by STORAGE_BACKEND.

    Supported values (case-insensitive):
      - 'filesystem' (default)
      - 's3'
    """
    backend = (backend or settings.STORAGE_BACKEND or "filesystem").lower()
    if backend == "filesystem":
        return FileSystemObjectStore(settings.MEDIA_ROOT)
    if backend == "s3":
        return S3ObjectStore.from_settings()
    raise ValueError(f"Unknown storage backend: {backend}")
