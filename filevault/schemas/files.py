# filevault/schemas/files.py
from datetime import datetime, timezone

from pydantic import BaseModel, ConfigDict, field_serializer
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)

    # timestamps are stored as naive UTC
    @field_serializer("uploaded_at", when_used="json", check_fields=False)
    def serialize_utc(self, value: datetime) -> str:
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value.isoformat()


class UploadedFile(CamelModel):
    id: str
    original_name: str
    size_bytes: int
    uploaded_at: datetime


class OwnedFile(CamelModel):
    # no location: callers never see where blobs live
    stored_name: str
    original_name: str
    size_bytes: int
    uploaded_at: datetime
    content_type: str


class UploadResponse(BaseModel):
    success: bool = True
    message: str = "File uploaded successfully"
    file: UploadedFile


class FileListResponse(BaseModel):
    files: list[OwnedFile]


class DeleteResponse(BaseModel):
    success: bool = True
    message: str = "File deleted successfully"
