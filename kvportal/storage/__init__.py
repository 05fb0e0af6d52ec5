"""Storage module - blob uploads with dedup, retry and cleanup."""

from kvportal.storage.upload import (
    DOCUMENT_TYPES,
    IMAGE_TYPES,
    DeleteResult,
    FileData,
    FileUploadError,
    UploadConfig,
    UploadResult,
    delete_files,
    read_uploads,
    upload_files,
    validate_files,
)

__all__ = [
    "DOCUMENT_TYPES",
    "IMAGE_TYPES",
    "DeleteResult",
    "FileData",
    "FileUploadError",
    "UploadConfig",
    "UploadResult",
    "delete_files",
    "read_uploads",
    "upload_files",
    "validate_files",
]
