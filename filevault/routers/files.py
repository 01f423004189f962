from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session

from filevault.core.config import Settings, get_settings
from filevault.core.security import require_owner
from filevault.core.storage import BlobStorage, get_storage
from filevault.models.database import get_db
from filevault.schemas.files import (
    DeleteResponse,
    FileListResponse,
    OwnedFile,
    UploadedFile,
    UploadResponse,
)
from filevault.services import files as file_service

router = APIRouter(prefix="/api/files", tags=["files"])


# --- the multipart part named "file", if it really is a file ---
async def get_upload_part(request: Request):
    async with request.form() as form:
        part = form.get("file")
        # a plain field, or a file part sent without a filename, comes back as str
        yield None if part is None or isinstance(part, str) else part


# --- upload a new file ---
@router.post("/upload", response_model=UploadResponse)
def upload_file(
    file=Depends(get_upload_part),
    owner_id: int = Depends(require_owner),
    db: Session = Depends(get_db),
    storage: BlobStorage = Depends(get_storage),
    settings: Settings = Depends(get_settings),
):
    incoming = None
    if file is not None:
        incoming = file_service.IncomingFile(
            original_name=file.filename or "",
            content_type=file.content_type,
            stream=file.file,
        )
    meta = file_service.upload_file(db, storage, owner_id, incoming, settings)
    return UploadResponse(file=UploadedFile.model_validate(meta))


# --- list the caller's files ---
@router.get("/my-files", response_model=FileListResponse)
def my_files(owner_id: int = Depends(require_owner), db: Session = Depends(get_db)):
    files = file_service.list_owned_files(db, owner_id)
    return FileListResponse(files=[OwnedFile.model_validate(f) for f in files])


# --- delete a file ---
@router.delete("/{file_id}", response_model=DeleteResponse)
def delete_file(
    file_id: str,
    owner_id: int = Depends(require_owner),
    db: Session = Depends(get_db),
    storage: BlobStorage = Depends(get_storage),
):
    file_service.delete_owned_file(db, storage, owner_id, file_id)
    return DeleteResponse()
