"""
Error types raised by the file-storage core.

Every error carries the HTTP status it maps to and a public ``message`` that is
safe to show a caller. Anything internal (paths, driver errors) goes into
``detail``, which is only ever logged.
"""


class FileVaultError(Exception):
    status_code = 500
    default_message = "Internal server error"

    def __init__(self, message: str | None = None, detail: str | None = None):
        self.message = message or self.default_message
        self.detail = detail
        super().__init__(detail or self.message)


class AuthenticationRequired(FileVaultError):
    status_code = 401
    default_message = "Authentication required"


# --- client errors on upload ---
class UploadValidationError(FileVaultError):
    status_code = 400
    default_message = "Invalid upload"


class NoFileProvided(UploadValidationError):
    default_message = "No file uploaded"


class SizeLimitExceeded(UploadValidationError):
    status_code = 413
    default_message = "File too large"


class ContentTypeNotAllowed(UploadValidationError):
    status_code = 415
    default_message = "File type not allowed"


class NotFound(FileVaultError):
    status_code = 404
    default_message = "File not found"


# --- server side failures ---
class StorageFailure(FileVaultError):
    default_message = "Storage error"


class StorageWriteFailed(StorageFailure):
    default_message = "File upload failed"


class StorageRemoveFailed(StorageFailure):
    default_message = "Failed to delete file"


class MetadataFailure(FileVaultError):
    default_message = "Database error"


class MetadataWriteFailed(MetadataFailure):
    pass


class MetadataReadFailed(MetadataFailure):
    default_message = "Failed to retrieve files"
