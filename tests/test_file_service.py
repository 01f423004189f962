import io
from datetime import timedelta
from unittest.mock import patch

import pytest
from sqlalchemy.exc import OperationalError

from filevault.core.errors import (
    ContentTypeNotAllowed,
    MetadataWriteFailed,
    NoFileProvided,
    NotFound,
    SizeLimitExceeded,
    StorageRemoveFailed,
    StorageWriteFailed,
)
from filevault.models import FileMeta
from filevault.models.database import utcnow
from filevault.services.files import (
    IncomingFile,
    delete_owned_file,
    get_owned_file,
    list_owned_files,
    reconcile_storage,
    upload_file,
)


def _db_error():
    return OperationalError("INSERT", {}, Exception("database is locked"))


# --- upload ---
def test_upload_records_owner_and_size(db, storage, settings, users, make_incoming):
    u1, _ = users
    meta = upload_file(db, storage, u1.id, make_incoming(b"hello"), settings)

    assert meta.owner_id == u1.id
    assert meta.size_bytes == 5
    assert meta.content_type == "text/plain"
    assert meta.original_name == "hello.txt"
    assert meta.is_public is False
    assert meta.stored_name.endswith(".txt")
    assert storage.exists(meta.stored_name)
    assert meta.location == storage.location(meta.stored_name)


def test_upload_without_file(db, storage, settings, users):
    u1, _ = users
    with pytest.raises(NoFileProvided):
        upload_file(db, storage, u1.id, None, settings)
    with pytest.raises(NoFileProvided):
        upload_file(db, storage, u1.id, IncomingFile("", "text/plain", io.BytesIO(b"x")), settings)
    assert db.query(FileMeta).count() == 0


def test_upload_without_content_type_defaults_to_octet_stream(db, storage, settings, users, make_incoming):
    u1, _ = users
    meta = upload_file(db, storage, u1.id, make_incoming(b"\x00\x01", name="blob.bin", content_type=None), settings)
    assert meta.content_type == "application/octet-stream"


def test_upload_over_limit_creates_nothing(db, storage, settings, users, make_incoming):
    u1, _ = users
    too_big = b"x" * (11 * 1024 * 1024)

    with pytest.raises(SizeLimitExceeded):
        upload_file(db, storage, u1.id, make_incoming(too_big, name="big.bin"), settings)

    assert list_owned_files(db, u1.id) == []
    assert list(storage.list_published()) == []
    assert list(storage.list_staged()) == []


def test_allowed_content_types(db, storage, settings, users, make_incoming):
    u1, _ = users
    strict = settings.model_copy(update={"allowed_content_types": {"image/png", "text/plain"}})

    meta = upload_file(db, storage, u1.id, make_incoming(b"hi", content_type="text/plain; charset=utf-8"), strict)
    assert meta.content_type == "text/plain; charset=utf-8"

    with pytest.raises(ContentTypeNotAllowed):
        upload_file(db, storage, u1.id, make_incoming(b"MZ", name="a.exe", content_type="application/x-msdownload"), strict)
    assert len(list_owned_files(db, u1.id)) == 1


def test_failed_publish_leaves_no_record(db, storage, settings, users, make_incoming):
    u1, _ = users
    with patch.object(storage, "publish", side_effect=StorageWriteFailed(detail="disk full")):
        with pytest.raises(StorageWriteFailed):
            upload_file(db, storage, u1.id, make_incoming(b"hello"), settings)

    assert db.query(FileMeta).count() == 0
    assert list(storage.list_staged()) == []
    assert list(storage.list_published()) == []


def test_failed_commit_leaves_no_blob(db, storage, settings, users, make_incoming):
    u1, _ = users
    with patch.object(db, "commit", side_effect=_db_error()):
        with pytest.raises(MetadataWriteFailed) as excinfo:
            upload_file(db, storage, u1.id, make_incoming(b"hello"), settings)

    assert excinfo.value.message == "File upload failed"
    assert db.query(FileMeta).count() == 0
    assert list(storage.list_published()) == []


def test_failed_insert_discards_staged_blob(db, storage, settings, users, make_incoming):
    u1, _ = users
    with patch.object(db, "flush", side_effect=_db_error()):
        with pytest.raises(MetadataWriteFailed):
            upload_file(db, storage, u1.id, make_incoming(b"hello"), settings)

    assert list(storage.list_staged()) == []
    assert list(storage.list_published()) == []


# --- listing ---
def test_listing_is_scoped_and_newest_first(db, storage, settings, users, make_incoming):
    u1, u2 = users
    older = upload_file(db, storage, u1.id, make_incoming(b"old", name="old.txt"), settings)
    newer = upload_file(db, storage, u1.id, make_incoming(b"new", name="new.txt"), settings)
    upload_file(db, storage, u2.id, make_incoming(b"theirs", name="theirs.txt"), settings)

    older.uploaded_at = utcnow() - timedelta(days=1)
    db.commit()

    names = [f.original_name for f in list_owned_files(db, u1.id)]
    assert names == ["new.txt", "old.txt"]
    assert newer.id != older.id
    assert [f.original_name for f in list_owned_files(db, u2.id)] == ["theirs.txt"]


def test_listing_for_owner_without_files_is_empty(db, users):
    _, u2 = users
    assert list_owned_files(db, u2.id) == []


# --- delete ---
def test_delete_removes_record_and_blob(db, storage, settings, users, make_incoming):
    u1, _ = users
    meta = upload_file(db, storage, u1.id, make_incoming(b"hello"), settings)
    file_id, stored_name = meta.id, meta.stored_name

    delete_owned_file(db, storage, u1.id, file_id)

    assert list_owned_files(db, u1.id) == []
    assert not storage.exists(stored_name)
    assert list(storage.list_staged()) == []


def test_delete_twice_is_not_found(db, storage, settings, users, make_incoming):
    u1, _ = users
    meta = upload_file(db, storage, u1.id, make_incoming(b"hello"), settings)
    file_id = meta.id

    delete_owned_file(db, storage, u1.id, file_id)
    with pytest.raises(NotFound):
        delete_owned_file(db, storage, u1.id, file_id)


def test_other_owner_cannot_see_or_delete(db, storage, settings, users, make_incoming):
    u1, u2 = users
    meta = upload_file(db, storage, u1.id, make_incoming(b"hello"), settings)
    file_id = meta.id

    with pytest.raises(NotFound) as not_owned:
        delete_owned_file(db, storage, u2.id, file_id)
    with pytest.raises(NotFound) as absent:
        delete_owned_file(db, storage, u2.id, "0" * 32)

    assert not_owned.value.message == absent.value.message
    assert get_owned_file(db, u1.id, file_id).id == file_id
    assert storage.exists(meta.stored_name)


def test_delete_when_blob_already_gone(db, storage, settings, users, make_incoming):
    u1, _ = users
    meta = upload_file(db, storage, u1.id, make_incoming(b"hello"), settings)
    storage.remove(meta.stored_name)

    delete_owned_file(db, storage, u1.id, meta.id)

    assert list_owned_files(db, u1.id) == []


def test_delete_keeps_record_when_blob_removal_fails(db, storage, settings, users, make_incoming):
    u1, _ = users
    meta = upload_file(db, storage, u1.id, make_incoming(b"hello"), settings)

    with patch.object(storage, "withdraw", side_effect=StorageRemoveFailed(detail="read-only fs")):
        with pytest.raises(StorageRemoveFailed):
            delete_owned_file(db, storage, u1.id, meta.id)

    assert len(list_owned_files(db, u1.id)) == 1
    assert storage.exists(meta.stored_name)


def test_delete_restores_blob_when_commit_fails(db, storage, settings, users, make_incoming):
    u1, _ = users
    meta = upload_file(db, storage, u1.id, make_incoming(b"hello"), settings)
    file_id, stored_name = meta.id, meta.stored_name

    with patch.object(db, "commit", side_effect=_db_error()):
        with pytest.raises(MetadataWriteFailed) as excinfo:
            delete_owned_file(db, storage, u1.id, file_id)

    assert excinfo.value.message == "Failed to delete file"
    assert storage.exists(stored_name)
    assert get_owned_file(db, u1.id, file_id).stored_name == stored_name


# --- reconciliation ---
def test_reconcile_removes_only_old_orphans(db, storage, settings, users, make_incoming):
    u1, _ = users
    kept = upload_file(db, storage, u1.id, make_incoming(b"kept"), settings)
    storage.stage("1-orphan.txt", io.BytesIO(b"orphan"), "text/plain", max_bytes=100)
    storage.publish("1-orphan.txt")
    storage.stage("2-abandoned.txt", io.BytesIO(b"partial"), "text/plain", max_bytes=100)

    # nothing is old enough yet
    report = reconcile_storage(db, storage, grace_seconds=3600)
    assert report.removed_published == []
    assert report.removed_staged == []

    later = utcnow() + timedelta(hours=2)
    report = reconcile_storage(db, storage, grace_seconds=3600, now=later)

    assert report.removed_published == ["1-orphan.txt"]
    assert report.removed_staged == ["2-abandoned.txt"]
    assert storage.exists(kept.stored_name)
    assert not storage.exists("1-orphan.txt")

    # second pass has nothing left to do
    again = reconcile_storage(db, storage, grace_seconds=3600, now=later)
    assert again.removed_published == [] and again.removed_staged == []
