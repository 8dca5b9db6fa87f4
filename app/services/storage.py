from __future__ import annotations

import asyncio
import logging
import os
import pathlib
import re
import secrets
import time
from dataclasses import dataclass
from typing import Iterable, Optional

import aiofiles
import boto3
from botocore.exceptions import BotoCoreError, ClientError

from app.errors import DocumentNotFound, StorageError, StorageNotConfigured
from app.utils import file_extension

logger = logging.getLogger(__name__)

_UNSAFE_CHARS_RE = re.compile(r"[^A-Za-z0-9._-]")
_FOLDER_RE = re.compile(r"^[A-Za-z0-9_-]+(/[A-Za-z0-9_-]+)*$")

_CONTENT_TYPES = {
    "pdf": "application/pdf",
    "doc": "application/msword",
    "docx": "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
    "html": "text/html",
    "txt": "text/plain",
}


def content_type_for(file_name: str) -> str:
    return _CONTENT_TYPES.get(file_extension(file_name), "application/octet-stream")


@dataclass
class StoredObject:
    url: str
    key: str
    size: int


@dataclass
class FilePayload:
    """An uploaded file, already read into memory."""

    file_name: str
    content: bytes
    content_type: Optional[str] = None

    @property
    def size(self) -> int:
        return len(self.content)

    @classmethod
    async def from_upload(cls, upload) -> "FilePayload":
        try:
            content = await upload.read()
        finally:
            await upload.close()
        return cls(file_name=upload.filename or "document", content=content, content_type=upload.content_type)


class DocumentStorage:
    """Key-addressed blob store for uploaded documents and generated letters."""

    backend_name = "base"

    async def upload(self, data: bytes, file_name: str, folder: str) -> StoredObject:  # pragma: no cover
        raise NotImplementedError

    async def get(self, key: str) -> bytes:  # pragma: no cover - interface only
        raise NotImplementedError

    async def delete(self, key: str) -> None:  # pragma: no cover - interface only
        raise NotImplementedError

    # ------------------------------------------------------------------
    # Shared helpers
    # ------------------------------------------------------------------
    @staticmethod
    def sanitize_file_name(file_name: str) -> str:
        name = pathlib.Path(file_name or "").name
        return _UNSAFE_CHARS_RE.sub("_", name).strip("._") or "document"

    @classmethod
    def generate_unique_file_name(cls, file_name: str) -> str:
        return f"{int(time.time() * 1000)}_{secrets.token_hex(4)}_{cls.sanitize_file_name(file_name)}"

    @staticmethod
    def validate_file_type(file_name: str, allowed: Iterable[str]) -> bool:
        extension = file_extension(file_name)
        return bool(extension) and extension in {item.lower().lstrip(".") for item in allowed}

    @staticmethod
    def validate_file_size(size: int, max_mb: float) -> bool:
        return 0 <= size <= int(max_mb * 1024 * 1024)

    @staticmethod
    def _object_key(folder: str, file_name: str) -> str:
        folder = folder.strip("/")
        if not _FOLDER_RE.match(folder):
            raise StorageError(f"Invalid storage folder: {folder!r}")
        return f"{folder}/{file_name}"


class LocalDocumentStorage(DocumentStorage):
    backend_name = "local"

    def __init__(self, base_path: Optional[str] = None, public_base_url: Optional[str] = None) -> None:
        base_path = base_path or os.getenv("DOCUMENT_LOCAL_PATH", "storage/documents")
        self.base_path = pathlib.Path(base_path).resolve()
        self.base_path.mkdir(parents=True, exist_ok=True)
        self.public_base_url = (public_base_url or os.getenv("DOCUMENT_PUBLIC_BASE_URL", "/files")).rstrip("/")

    def _resolve(self, key: str) -> pathlib.Path:
        path = (self.base_path / key).resolve()
        if not path.is_relative_to(self.base_path):
            raise StorageError("Invalid storage path")
        return path

    def url_for(self, key: str) -> str:
        return f"{self.public_base_url}/{key}"

    async def upload(self, data: bytes, file_name: str, folder: str) -> StoredObject:
        key = self._object_key(folder, self.generate_unique_file_name(file_name))
        path = self._resolve(key)
        path.parent.mkdir(parents=True, exist_ok=True)
        async with aiofiles.open(path, "wb") as buffer:
            await buffer.write(data)
        logger.info("Stored %d bytes at %s", len(data), key)
        return StoredObject(url=self.url_for(key), key=key, size=len(data))

    async def get(self, key: str) -> bytes:
        path = self._resolve(key)
        try:
            async with aiofiles.open(path, "rb") as handle:
                return await handle.read()
        except FileNotFoundError as exc:
            raise DocumentNotFound() from exc

    async def delete(self, key: str) -> None:
        path = self._resolve(key)
        try:
            path.unlink()
        except FileNotFoundError:  # fine if already gone
            return
        parent = path.parent
        if parent != self.base_path:
            try:
                parent.rmdir()
            except OSError:
                pass


class S3DocumentStorage(DocumentStorage):
    """S3-compatible bucket (AWS S3, Cloudflare R2, MinIO)."""

    backend_name = "s3"

    def __init__(self, bucket: Optional[str] = None, client=None) -> None:
        bucket = bucket or os.getenv("DOCUMENT_S3_BUCKET")
        if not bucket:
            raise StorageNotConfigured("DOCUMENT_S3_BUCKET must be set for S3 storage")
        self.bucket = bucket
        self.client = client or boto3.client(
            "s3",
            endpoint_url=os.getenv("DOCUMENT_S3_ENDPOINT"),
            region_name=os.getenv("DOCUMENT_S3_REGION"),
        )
        public_base = os.getenv("DOCUMENT_PUBLIC_BASE_URL")
        self.public_base_url = public_base.rstrip("/") if public_base else None

    def url_for(self, key: str) -> str:
        if self.public_base_url:
            return f"{self.public_base_url}/{key}"
        return f"s3://{self.bucket}/{key}"

    async def upload(self, data: bytes, file_name: str, folder: str) -> StoredObject:
        key = self._object_key(folder, self.generate_unique_file_name(file_name))
        try:
            await asyncio.to_thread(
                self.client.put_object,
                Bucket=self.bucket,
                Key=key,
                Body=data,
                ContentType=content_type_for(file_name),
            )
        except (BotoCoreError, ClientError) as exc:
            logger.error("Upload of %s failed", key, exc_info=True)
            raise StorageError("File upload failed") from exc
        return StoredObject(url=self.url_for(key), key=key, size=len(data))

    async def get(self, key: str) -> bytes:
        try:
            response = await asyncio.to_thread(self.client.get_object, Bucket=self.bucket, Key=key)
        except ClientError as exc:
            raise DocumentNotFound() from exc
        return await asyncio.to_thread(response["Body"].read)

    async def delete(self, key: str) -> None:
        try:
            await asyncio.to_thread(self.client.delete_object, Bucket=self.bucket, Key=key)
        except (BotoCoreError, ClientError) as exc:
            raise StorageError(f"Failed to delete {key}") from exc


_storage: Optional[DocumentStorage] = None


def get_document_storage() -> DocumentStorage:
    global _storage
    if _storage is not None:
        return _storage

    backend = os.getenv("DOCUMENT_STORAGE", "local").lower()
    if backend == "local":
        _storage = LocalDocumentStorage()
    elif backend in {"s3", "r2"}:
        _storage = S3DocumentStorage()
    else:  # pragma: no cover - configuration error
        raise StorageNotConfigured(f"Unsupported DOCUMENT_STORAGE backend: {backend}")
    return _storage
