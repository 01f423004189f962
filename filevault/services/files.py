# filevault/services/files.py
"""
Upload, listing, delete and storage reconciliation for owned files.

A record and its blob are kept in step: an upload is staged, recorded,
published and only then committed; a delete withdraws the blob before the
record goes and puts it back if the database refuses.
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import BinaryIO

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from filevault.core.config import Settings
from filevault.core.errors import (
    ContentTypeNotAllowed,
    MetadataReadFailed,
    MetadataWriteFailed,
    NoFileProvided,
    NotFound,
    StorageFailure,
)
from filevault.core.storage import BlobStorage, generate_stored_name
from filevault.models.database import utcnow
from filevault.models.file import FileMeta

logger = logging.getLogger(__name__)

DEFAULT_CONTENT_TYPE = "application/octet-stream"
# how many names go into one IN (...) query while reconciling
RECONCILE_BATCH = 500


@dataclass
class IncomingFile:
    original_name: str
    content_type: str | None
    stream: BinaryIO


@dataclass
class ReconcileReport:
    removed_published: list[str] = field(default_factory=list)
    removed_staged: list[str] = field(default_factory=list)


def _media_type(content_type: str) -> str:
    return content_type.split(";", 1)[0].strip().lower()


def upload_file(
    db: Session,
    storage: BlobStorage,
    owner_id: int,
    incoming: IncomingFile | None,
    settings: Settings,
) -> FileMeta:
    if incoming is None or not incoming.original_name:
        raise NoFileProvided()

    content_type = incoming.content_type or DEFAULT_CONTENT_TYPE
    allowed = {_media_type(t) for t in settings.allowed_content_types}
    if allowed and _media_type(content_type) not in allowed:
        raise ContentTypeNotAllowed(detail=f"{content_type!r} is not an allowed media type")

    stored_name = generate_stored_name(incoming.original_name)
    size = storage.stage(stored_name, incoming.stream, content_type, settings.max_upload_bytes)

    meta = FileMeta(
        owner_id=owner_id,
        stored_name=stored_name,
        original_name=incoming.original_name,
        location=storage.location(stored_name),
        size_bytes=size,
        content_type=content_type,
        uploaded_at=utcnow(),
    )
    try:
        db.add(meta)
        db.flush()
    except SQLAlchemyError as exc:
        db.rollback()
        storage.discard_quietly(stored_name)
        raise MetadataWriteFailed("File upload failed", detail=f"inserting {stored_name}: {exc}") from exc

    try:
        storage.publish(stored_name)
    except StorageFailure:
        db.rollback()
        storage.discard_quietly(stored_name)
        raise

    try:
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        storage.remove_quietly(stored_name)
        raise MetadataWriteFailed("File upload failed", detail=f"committing {stored_name}: {exc}") from exc

    logger.info("Stored %s (%d bytes) for owner %s", stored_name, size, owner_id)
    return meta


def list_owned_files(db: Session, owner_id: int) -> list[FileMeta]:
    """All of an owner's files, newest first."""
    try:
        return (
            db.query(FileMeta)
            .filter(FileMeta.owner_id == owner_id)
            .order_by(FileMeta.uploaded_at.desc())
            .all()
        )
    except SQLAlchemyError as exc:
        raise MetadataReadFailed(detail=f"listing files of owner {owner_id}: {exc}") from exc


def get_owned_file(db: Session, owner_id: int, file_id: str) -> FileMeta:
    """
    Fetch one file by id, but only if ``owner_id`` owns it.

    Someone else's file and a file that never existed both raise NotFound, so
    the response tells nothing about other owners' ids.
    """
    try:
        meta = (
            db.query(FileMeta)
            .filter(FileMeta.id == file_id, FileMeta.owner_id == owner_id)
            .first()
        )
    except SQLAlchemyError as exc:
        raise MetadataReadFailed(detail=f"looking up file {file_id}: {exc}") from exc
    if meta is None:
        raise NotFound(detail=f"file {file_id} not found for owner {owner_id}")
    return meta


def delete_owned_file(db: Session, storage: BlobStorage, owner_id: int, file_id: str) -> None:
    meta = get_owned_file(db, owner_id, file_id)
    stored_name = meta.stored_name

    # StorageRemoveFailed propagates here with the record untouched
    withdrawn = storage.withdraw(stored_name)
    if not withdrawn:
        logger.warning("Blob %s of file %s was already missing; dropping the record", stored_name, file_id)

    try:
        db.delete(meta)
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        if withdrawn:
            try:
                storage.publish(stored_name)
            except StorageFailure as restore_exc:
                logger.error("Could not restore blob %s after failed delete: %s", stored_name, restore_exc.detail)
        raise MetadataWriteFailed("Failed to delete file", detail=f"deleting file {file_id}: {exc}") from exc

    if withdrawn:
        storage.discard_quietly(stored_name)
    logger.info("Deleted file %s (%s) of owner %s", file_id, stored_name, owner_id)


def reconcile_storage(
    db: Session,
    storage: BlobStorage,
    grace_seconds: int,
    now: datetime | None = None,
) -> ReconcileReport:
    """
    Remove blobs nothing refers to.

    Staged blobs and unreferenced published blobs are removed once older than
    ``grace_seconds``; younger ones may belong to an upload still in flight.
    Safe to run repeatedly.
    """
    cutoff = (now or utcnow()) - timedelta(seconds=grace_seconds)
    report = ReconcileReport()

    for blob in list(storage.list_staged()):
        if blob.modified_at < cutoff and storage.discard_quietly(blob.name):
            report.removed_staged.append(blob.name)

    candidates = [blob.name for blob in storage.list_published() if blob.modified_at < cutoff]
    for start in range(0, len(candidates), RECONCILE_BATCH):
        batch = candidates[start:start + RECONCILE_BATCH]
        try:
            referenced = {
                row.stored_name
                for row in db.query(FileMeta.stored_name).filter(FileMeta.stored_name.in_(batch))
            }
        except SQLAlchemyError as exc:
            raise MetadataReadFailed(detail=f"reconciling storage: {exc}") from exc
        for name in batch:
            if name not in referenced and storage.remove_quietly(name):
                report.removed_published.append(name)

    if report.removed_published or report.removed_staged:
        logger.info(
            "Reconciliation removed %d orphaned and %d staged blobs",
            len(report.removed_published),
            len(report.removed_staged),
        )
    return report
