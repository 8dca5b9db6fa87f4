import io
from pathlib import Path

import pytest
from botocore.exceptions import ClientError
from fastapi import UploadFile
from starlette.datastructures import Headers

from app.errors import DocumentNotFound, StorageError, StorageNotConfigured
from app.services.storage import (
    DocumentStorage,
    FilePayload,
    LocalDocumentStorage,
    S3DocumentStorage,
    content_type_for,
)


class FakeS3Client:
    def __init__(self):
        self.objects = {}
        self.content_types = {}

    def put_object(self, Bucket, Key, Body, ContentType):
        self.objects[(Bucket, Key)] = Body
        self.content_types[(Bucket, Key)] = ContentType

    def get_object(self, Bucket, Key):
        try:
            return {"Body": io.BytesIO(self.objects[(Bucket, Key)])}
        except KeyError:
            raise ClientError({"Error": {"Code": "NoSuchKey", "Message": "missing"}}, "GetObject")

    def delete_object(self, Bucket, Key):
        self.objects.pop((Bucket, Key), None)


def test_file_name_helpers():
    assert DocumentStorage.sanitize_file_name("../../etc/pass wd.pdf") == "pass_wd.pdf"
    assert DocumentStorage.sanitize_file_name("") == "document"
    unique = DocumentStorage.generate_unique_file_name("Surat Balasan.pdf")
    assert unique.endswith("_Surat_Balasan.pdf")
    assert unique != DocumentStorage.generate_unique_file_name("Surat Balasan.pdf")


def test_type_and_size_validation():
    assert DocumentStorage.validate_file_type("a.PDF", ("pdf", "doc", "docx"))
    assert DocumentStorage.validate_file_type("a.docx", (".docx",))
    assert not DocumentStorage.validate_file_type("a.exe", ("pdf",))
    assert not DocumentStorage.validate_file_type("noextension", ("pdf",))
    assert DocumentStorage.validate_file_size(10 * 1024 * 1024, 10)
    assert not DocumentStorage.validate_file_size(10 * 1024 * 1024 + 1, 10)
    assert content_type_for("x.docx").endswith("wordprocessingml.document")
    assert content_type_for("x.bin") == "application/octet-stream"


@pytest.mark.anyio
async def test_local_storage_roundtrip(tmp_path: Path):
    storage = LocalDocumentStorage(base_path=str(tmp_path / "docs"), public_base_url="https://cdn.example/files/")

    stored = await storage.upload(b"hello world", "note.pdf", "submissions/7")

    assert stored.key.startswith("submissions/7/")
    assert stored.url == f"https://cdn.example/files/{stored.key}"
    assert stored.size == 11
    assert await storage.get(stored.key) == b"hello world"

    await storage.delete(stored.key)
    assert not (tmp_path / "docs" / stored.key).exists()
    await storage.delete(stored.key)
    with pytest.raises(DocumentNotFound):
        await storage.get(stored.key)


@pytest.mark.anyio
async def test_local_storage_rejects_escaping_keys(tmp_path: Path):
    storage = LocalDocumentStorage(base_path=str(tmp_path / "docs"))

    with pytest.raises(StorageError):
        await storage.get("../outside.pdf")
    with pytest.raises(StorageError):
        await storage.upload(b"x", "a.pdf", "../up")


@pytest.mark.anyio
async def test_file_payload_from_upload():
    upload = UploadFile(filename="ktp.pdf", file=io.BytesIO(b"%PDF-1.4"), headers=Headers({"content-type": "application/pdf"}))

    payload = await FilePayload.from_upload(upload)

    assert payload == FilePayload(file_name="ktp.pdf", content=b"%PDF-1.4", content_type="application/pdf")
    assert payload.size == 8


def test_s3_requires_bucket(monkeypatch):
    monkeypatch.delenv("DOCUMENT_S3_BUCKET", raising=False)
    with pytest.raises(StorageNotConfigured):
        S3DocumentStorage(client=FakeS3Client())


@pytest.mark.anyio
async def test_s3_storage_roundtrip(monkeypatch):
    monkeypatch.setenv("DOCUMENT_PUBLIC_BASE_URL", "https://files.example.ac.id")
    client = FakeS3Client()
    storage = S3DocumentStorage(bucket="kp-docs", client=client)

    stored = await storage.upload(b"%PDF-1.4", "surat.pdf", "letters")

    assert stored.url == f"https://files.example.ac.id/{stored.key}"
    assert client.content_types[("kp-docs", stored.key)] == "application/pdf"
    assert await storage.get(stored.key) == b"%PDF-1.4"

    await storage.delete(stored.key)
    with pytest.raises(DocumentNotFound):
        await storage.get(stored.key)
