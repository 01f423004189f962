# filevault/core/storage.py
import logging
import os
import secrets
import tempfile
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timezone
from functools import lru_cache
from pathlib import Path
from typing import BinaryIO, Iterator

import boto3
from botocore.exceptions import BotoCoreError, ClientError
from werkzeug.utils import secure_filename

from filevault.core.config import Settings, get_settings
from filevault.core.errors import (
    SizeLimitExceeded,
    StorageFailure,
    StorageRemoveFailed,
    StorageWriteFailed,
)

logger = logging.getLogger(__name__)

CHUNK_SIZE = 64 * 1024
STAGING_DIRNAME = ".staging"
# S3 uploads are spooled in memory up to this size, then on disk
SPOOL_MAX_SIZE = 1024 * 1024


def generate_stored_name(original_name: str) -> str:
    """
    Build a blob name like ``1718000000000-9f86d081884c7d65.pdf``.

    Millisecond timestamp plus 64 random bits, so no lookup against existing
    names is needed. The extension of the (sanitized) original name is kept.
    """
    extension = os.path.splitext(secure_filename(original_name or ""))[1]
    return f"{int(time.time() * 1000)}-{secrets.token_hex(8)}{extension}"


def copy_limited(source: BinaryIO, target: BinaryIO, max_bytes: int) -> int:
    """Copy ``source`` into ``target`` chunk by chunk, refusing to go past max_bytes."""
    written = 0
    while True:
        chunk = source.read(CHUNK_SIZE)
        if not chunk:
            return written
        written += len(chunk)
        if written > max_bytes:
            raise SizeLimitExceeded(detail=f"upload exceeds limit of {max_bytes} bytes")
        target.write(chunk)


def _naive_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


@dataclass
class StoredBlob:
    name: str
    modified_at: datetime


class BlobStorage(ABC):
    """
    Byte store with a private staging area beside the published one.

    Uploads land in staging and only appear under their final location once
    published. ``withdraw`` moves a published blob back into staging, which
    lets a delete be rolled back until it is discarded.
    """

    @abstractmethod
    def stage(self, name: str, stream: BinaryIO, content_type: str, max_bytes: int) -> int:
        """Write the stream to staging, returning the number of bytes written."""

    @abstractmethod
    def publish(self, name: str) -> None:
        """Move a staged blob to its final location."""

    @abstractmethod
    def withdraw(self, name: str) -> bool:
        """Move a published blob back to staging. False if it was already gone."""

    @abstractmethod
    def discard(self, name: str) -> None:
        """Delete a staged blob; missing is fine."""

    @abstractmethod
    def remove(self, name: str) -> None:
        """Delete a published blob; missing is fine."""

    @abstractmethod
    def exists(self, name: str) -> bool:
        ...

    @abstractmethod
    def location(self, name: str) -> str:
        ...

    @abstractmethod
    def list_published(self) -> Iterator[StoredBlob]:
        ...

    @abstractmethod
    def list_staged(self) -> Iterator[StoredBlob]:
        ...

    def discard_quietly(self, name: str) -> bool:
        try:
            self.discard(name)
        except StorageFailure as exc:
            logger.warning("Could not discard staged blob %s: %s", name, exc.detail)
            return False
        return True

    def remove_quietly(self, name: str) -> bool:
        try:
            self.remove(name)
        except StorageFailure as exc:
            logger.warning("Could not remove blob %s: %s", name, exc.detail)
            return False
        return True


class LocalBlobStorage(BlobStorage):
    def __init__(self, root: Path | str):
        self.root = Path(root)
        self.staging_dir = self.root / STAGING_DIRNAME
        self.staging_dir.mkdir(parents=True, exist_ok=True)

    def _published(self, name: str) -> Path:
        return self.root / name

    def _staged(self, name: str) -> Path:
        return self.staging_dir / name

    def stage(self, name, stream, content_type, max_bytes):
        target = self._staged(name)
        try:
            # "x" so a name collision can never overwrite another upload
            with open(target, "xb") as fh:
                return copy_limited(stream, fh, max_bytes)
        except FileExistsError as exc:
            # the existing blob belongs to another upload, leave it alone
            raise StorageWriteFailed(detail=f"{target} already exists") from exc
        except SizeLimitExceeded:
            self.discard_quietly(name)
            raise
        except OSError as exc:
            self.discard_quietly(name)
            raise StorageWriteFailed(detail=f"writing {target} failed: {exc}") from exc

    def publish(self, name):
        try:
            os.replace(self._staged(name), self._published(name))
        except OSError as exc:
            raise StorageWriteFailed(detail=f"publishing {name} failed: {exc}") from exc

    def withdraw(self, name):
        try:
            os.replace(self._published(name), self._staged(name))
        except FileNotFoundError:
            return False
        except OSError as exc:
            raise StorageRemoveFailed(detail=f"withdrawing {name} failed: {exc}") from exc
        return True

    def discard(self, name):
        try:
            self._staged(name).unlink(missing_ok=True)
        except OSError as exc:
            raise StorageRemoveFailed(detail=f"discarding {name} failed: {exc}") from exc

    def remove(self, name):
        try:
            self._published(name).unlink(missing_ok=True)
        except OSError as exc:
            raise StorageRemoveFailed(detail=f"removing {name} failed: {exc}") from exc

    def exists(self, name):
        return self._published(name).is_file()

    def location(self, name):
        return str(self._published(name))

    def _scan(self, directory: Path) -> Iterator[StoredBlob]:
        for entry in directory.iterdir():
            if not entry.is_file():
                continue
            modified = datetime.fromtimestamp(entry.stat().st_mtime, timezone.utc)
            yield StoredBlob(name=entry.name, modified_at=_naive_utc(modified))

    def list_published(self):
        return self._scan(self.root)

    def list_staged(self):
        return self._scan(self.staging_dir)


class S3BlobStorage(BlobStorage):
    def __init__(self, client, bucket: str, prefix: str = ""):
        self.client = client
        self.bucket = bucket
        prefix = prefix.strip("/")
        self.prefix = f"{prefix}/" if prefix else ""
        self.staging_prefix = f"{self.prefix}{STAGING_DIRNAME}/"

    def _key(self, name: str) -> str:
        return f"{self.prefix}{name}"

    def _staging_key(self, name: str) -> str:
        return f"{self.staging_prefix}{name}"

    def _move(self, source_key: str, target_key: str) -> None:
        self.client.copy_object(
            Bucket=self.bucket,
            Key=target_key,
            CopySource={"Bucket": self.bucket, "Key": source_key},
            MetadataDirective="COPY",
        )
        self.client.delete_object(Bucket=self.bucket, Key=source_key)

    @staticmethod
    def _is_missing(exc: ClientError) -> bool:
        return exc.response.get("Error", {}).get("Code") in ("404", "NoSuchKey", "NotFound")

    def stage(self, name, stream, content_type, max_bytes):
        with tempfile.SpooledTemporaryFile(max_size=SPOOL_MAX_SIZE) as spool:
            size = copy_limited(stream, spool, max_bytes)
            spool.seek(0)
            try:
                self.client.put_object(
                    Bucket=self.bucket,
                    Key=self._staging_key(name),
                    Body=spool,
                    ContentType=content_type,
                )
            except (BotoCoreError, ClientError) as exc:
                raise StorageWriteFailed(detail=f"staging {name} in s3 failed: {exc}") from exc
        return size

    def publish(self, name):
        try:
            self._move(self._staging_key(name), self._key(name))
        except (BotoCoreError, ClientError) as exc:
            raise StorageWriteFailed(detail=f"publishing {name} in s3 failed: {exc}") from exc

    def withdraw(self, name):
        try:
            self._move(self._key(name), self._staging_key(name))
        except ClientError as exc:
            if self._is_missing(exc):
                return False
            raise StorageRemoveFailed(detail=f"withdrawing {name} in s3 failed: {exc}") from exc
        except BotoCoreError as exc:
            raise StorageRemoveFailed(detail=f"withdrawing {name} in s3 failed: {exc}") from exc
        return True

    def discard(self, name):
        try:
            self.client.delete_object(Bucket=self.bucket, Key=self._staging_key(name))
        except (BotoCoreError, ClientError) as exc:
            raise StorageRemoveFailed(detail=f"discarding {name} in s3 failed: {exc}") from exc

    def remove(self, name):
        try:
            self.client.delete_object(Bucket=self.bucket, Key=self._key(name))
        except (BotoCoreError, ClientError) as exc:
            raise StorageRemoveFailed(detail=f"removing {name} in s3 failed: {exc}") from exc

    def exists(self, name):
        try:
            self.client.head_object(Bucket=self.bucket, Key=self._key(name))
        except ClientError as exc:
            if self._is_missing(exc):
                return False
            raise StorageFailure(detail=f"checking {name} in s3 failed: {exc}") from exc
        except BotoCoreError as exc:
            raise StorageFailure(detail=f"checking {name} in s3 failed: {exc}") from exc
        return True

    def location(self, name):
        return f"s3://{self.bucket}/{self._key(name)}"

    def _scan(self, prefix: str) -> Iterator[StoredBlob]:
        paginator = self.client.get_paginator("list_objects_v2")
        # Delimiter keeps the staging "directory" out of the published listing
        for page in paginator.paginate(Bucket=self.bucket, Prefix=prefix, Delimiter="/"):
            for obj in page.get("Contents", []):
                yield StoredBlob(
                    name=obj["Key"][len(prefix):],
                    modified_at=_naive_utc(obj["LastModified"]),
                )

    def list_published(self):
        return self._scan(self.prefix)

    def list_staged(self):
        return self._scan(self.staging_prefix)


def build_storage(settings: Settings) -> BlobStorage:
    if settings.storage_backend == "s3":
        if not settings.aws_s3_bucket_name:
            raise ValueError("AWS_S3_BUCKET_NAME is required for the s3 backend")
        s3 = boto3.client(
            "s3",
            aws_access_key_id=settings.aws_access_key_id,
            aws_secret_access_key=settings.aws_secret_access_key,
            region_name=settings.aws_region,
        )
        return S3BlobStorage(s3, settings.aws_s3_bucket_name, settings.s3_key_prefix)
    return LocalBlobStorage(settings.storage_dir)


@lru_cache
def get_storage() -> BlobStorage:
    return build_storage(get_settings())
