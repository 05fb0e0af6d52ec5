"""
Blob Upload

Features:
- Type and size validation before any network call
- SHA-256 content hashing with a process-local TTL cache (dedup)
- Exponential backoff retry around the blob API
- Batched parallel uploads with compensating deletes on failure
"""

import asyncio
import hashlib
import logging
import re
import time
from collections.abc import Awaitable, Callable, Iterable
from dataclasses import dataclass, field
from typing import TypeVar

import httpx
from fastapi import UploadFile, status

from kvportal.core.config import settings
from kvportal.core.errors import AppError, ErrorType
from kvportal.storage.client import BlobClient

logger = logging.getLogger(__name__)

T = TypeVar("T")

IMAGE_TYPES = frozenset({"image/jpeg", "image/png", "image/gif", "image/webp"})
DOCUMENT_TYPES = IMAGE_TYPES | frozenset(
    {
        "application/pdf",
        "application/msword",
        "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
    }
)


class FileUploadError(AppError):
    """Raised for rejected files (400) and failed uploads (500)."""

    def __init__(
        self,
        message: str,
        status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR,
        details: object = None,
    ) -> None:
        super().__init__(message, ErrorType.FILE_UPLOAD, status_code, details)


@dataclass
class FileData:
    """An uploaded file held in memory."""

    filename: str
    content_type: str
    content: bytes

    @property
    def size(self) -> int:
        return len(self.content)


@dataclass
class UploadConfig:
    category: str
    allowed_types: frozenset[str] = DOCUMENT_TYPES
    max_size_per_file: int = field(default_factory=lambda: settings.max_file_size)
    prefix: str | None = None


@dataclass
class UploadResult:
    url: str
    filename: str
    size: int
    content_type: str
    hash: str
    from_cache: bool = False


@dataclass
class DeleteResult:
    deleted: list[str] = field(default_factory=list)
    failed: dict[str, str] = field(default_factory=dict)

    @property
    def success(self) -> bool:
        return not self.failed


async def read_upload(upload: UploadFile) -> FileData:
    content = await upload.read()
    return FileData(
        filename=upload.filename or "upload",
        content_type=upload.content_type or "application/octet-stream",
        content=content,
    )


async def read_uploads(uploads: Iterable[UploadFile] | None) -> list[FileData]:
    files = []
    for upload in uploads or []:
        if upload is None or not upload.filename:
            continue
        files.append(await read_upload(upload))
    return files


# =============================================================================
# Validation and hashing
# =============================================================================


def validate_file(file: FileData, config: UploadConfig) -> None:
    """Reject files with a disallowed type or above the size limit."""
    if file.content_type not in config.allowed_types:
        raise FileUploadError(
            f"Dateityp nicht erlaubt: {file.filename}",
            status.HTTP_400_BAD_REQUEST,
            {"filename": file.filename, "type": file.content_type},
        )
    if file.size > config.max_size_per_file:
        max_mb = config.max_size_per_file / (1024 * 1024)
        raise FileUploadError(
            f"Datei {file.filename} ist zu groß (maximal {max_mb:g} MB)",
            status.HTTP_400_BAD_REQUEST,
            {"filename": file.filename, "size": file.size},
        )


def validate_files(
    files: list[FileData],
    config: UploadConfig,
    max_files: int | None = None,
    max_total_size: int | None = None,
) -> None:
    if max_files is not None and len(files) > max_files:
        raise FileUploadError(
            f"Es sind maximal {max_files} Dateien erlaubt", status.HTTP_400_BAD_REQUEST
        )
    for file in files:
        validate_file(file, config)
    if max_total_size is not None and sum(f.size for f in files) > max_total_size:
        max_mb = max_total_size / (1024 * 1024)
        raise FileUploadError(
            f"Die Dateien sind zusammen zu groß (maximal {max_mb:g} MB)",
            status.HTTP_400_BAD_REQUEST,
        )


def content_hash(content: bytes) -> str:
    return hashlib.sha256(content).hexdigest()


def sanitize_filename(filename: str) -> str:
    filename = re.sub(r"\s+", "-", filename)
    return re.sub(r"[^a-zA-Z0-9\-_.]", "", filename)


def build_pathname(filename: str, digest: str, config: UploadConfig) -> str:
    timestamp = int(time.time() * 1000)
    prefix = f"{config.prefix}-" if config.prefix else ""
    return f"{config.category}/{timestamp}-{digest[:10]}-{prefix}{sanitize_filename(filename)}"


class UploadCache:
    """
    Maps digest+size to an uploaded URL for ``ttl`` seconds.

    Expired entries are dropped on lookup and swept on every insert.
    """

    def __init__(self, ttl: float, clock: Callable[[], float] = time.monotonic) -> None:
        self.ttl = ttl
        self.clock = clock
        self._entries: dict[str, tuple[str, float]] = {}

    @staticmethod
    def _key(digest: str, size: int) -> str:
        return f"{digest}:{size}"

    def get(self, digest: str, size: int) -> str | None:
        key = self._key(digest, size)
        entry = self._entries.get(key)
        if entry is None:
            return None
        url, stored_at = entry
        if self.clock() - stored_at > self.ttl:
            del self._entries[key]
            return None
        return url

    def set(self, digest: str, size: int, url: str) -> None:
        now = self.clock()
        self.sweep(now)
        self._entries[self._key(digest, size)] = (url, now)

    def sweep(self, now: float | None = None) -> int:
        """Drop expired entries and return how many were removed."""
        now = self.clock() if now is None else now
        expired = [key for key, (_, stored_at) in self._entries.items() if now - stored_at > self.ttl]
        for key in expired:
            del self._entries[key]
        return len(expired)

    def forget(self, url: str) -> None:
        for key in [k for k, (cached, _) in self._entries.items() if cached == url]:
            del self._entries[key]

    def clear(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)


upload_cache = UploadCache(settings.blob_cache_ttl_seconds)


# =============================================================================
# Retry
# =============================================================================


def is_retryable(error: Exception) -> bool:
    if isinstance(error, httpx.HTTPStatusError):
        code = error.response.status_code
        return code >= 500 or code == 429
    return isinstance(error, httpx.RequestError)


async def with_retry(
    operation: Callable[[], Awaitable[T]],
    description: str,
    max_retries: int | None = None,
    base_delay: float | None = None,
) -> T:
    """Run ``operation`` up to ``max_retries`` times with exponential backoff."""
    max_retries = max_retries or settings.blob_max_retries
    base_delay = settings.blob_retry_base_delay if base_delay is None else base_delay
    last_error: Exception | None = None

    for attempt in range(max_retries):
        try:
            return await operation()
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            last_error = e
            if not is_retryable(e):
                break
            logger.warning(
                "%s failed (attempt %d/%d): %s", description, attempt + 1, max_retries, e
            )

        # Exponential backoff
        if attempt < max_retries - 1:
            await asyncio.sleep(base_delay * 2**attempt)

    raise FileUploadError(
        "Datei-Upload fehlgeschlagen. Bitte versuchen Sie es später erneut.",
        details={"operation": description, "error": str(last_error)},
    ) from last_error


# =============================================================================
# Uploads
# =============================================================================


async def _upload_single(client: BlobClient, file: FileData, config: UploadConfig) -> UploadResult:
    validate_file(file, config)
    digest = content_hash(file.content)

    cached_url = upload_cache.get(digest, file.size)
    if cached_url:
        logger.info("Using cached upload for %s (%s)", file.filename, digest[:10])
        return UploadResult(
            cached_url, file.filename, file.size, file.content_type, digest, from_cache=True
        )

    pathname = build_pathname(file.filename, digest, config)
    url = await with_retry(
        lambda: client.put(pathname, file.content, file.content_type),
        f"upload {pathname}",
    )
    upload_cache.set(digest, file.size, url)
    logger.debug("File uploaded: %s", url)
    return UploadResult(url, file.filename, file.size, file.content_type, digest)


async def upload_files(
    files: list[FileData],
    config: UploadConfig,
    client: BlobClient | None = None,
) -> list[UploadResult]:
    """
    Upload files in batches of ``blob_batch_size``.

    All files are validated before the first upload. If any upload fails,
    every file uploaded by this call is deleted again and the error is
    re-raised.
    """
    if not files:
        return []

    logger.info("Uploading %d files to %s", len(files), config.category)
    for file in files:
        validate_file(file, config)

    if client is None:
        async with BlobClient() as own_client:
            return await upload_files(files, config, own_client)

    batch_size = settings.blob_batch_size
    results: list[UploadResult] = []
    uploaded_urls: list[str] = []

    try:
        for start in range(0, len(files), batch_size):
            batch = files[start : start + batch_size]
            outcomes = await asyncio.gather(
                *(_upload_single(client, file, config) for file in batch),
                return_exceptions=True,
            )
            error: BaseException | None = None
            for outcome in outcomes:
                if isinstance(outcome, BaseException):
                    error = error or outcome
                else:
                    results.append(outcome)
                    if not outcome.from_cache:
                        uploaded_urls.append(outcome.url)
            if error is not None:
                raise error
    except Exception:
        logger.error("Upload failed, cleaning up %d uploaded files", len(uploaded_urls))
        if uploaded_urls:
            await _compensate(client, uploaded_urls)
        raise

    logger.info("All %d files uploaded", len(results))
    return results


async def _compensate(client: BlobClient, urls: list[str]) -> None:
    try:
        await client.delete(urls)
        for url in urls:
            upload_cache.forget(url)
        logger.info("Cleanup successful, deleted %d files", len(urls))
    except httpx.HTTPError as e:
        logger.error("Cleanup failed for %d files: %s", len(urls), e)


async def delete_files(urls: Iterable[str | None], client: BlobClient | None = None) -> DeleteResult:
    """Delete each URL, collecting failures instead of raising."""
    targets = [url for url in dict.fromkeys(urls) if url]
    result = DeleteResult()
    if not targets:
        return result

    if client is None:
        async with BlobClient() as own_client:
            return await delete_files(targets, own_client)

    async def delete_one(url: str) -> None:
        try:
            await client.delete([url])
            upload_cache.forget(url)
            result.deleted.append(url)
        except httpx.HTTPError as e:
            logger.error("Failed to delete blob %s: %s", url, e)
            result.failed[url] = str(e)

    await asyncio.gather(*(delete_one(url) for url in targets))
    return result
