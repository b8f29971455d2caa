from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Iterator
from urllib.parse import quote

import boto3
from botocore.config import Config as BotoConfig

from .config import Settings

ProgressCallback = Callable[[int], None]

CHUNK_SIZE = 1024 * 1024


@dataclass(slots=True)
class BlobStream:
    chunks: Iterator[bytes]
    length: int | None
    content_type: str | None = None


class BlobStore(ABC):
    @abstractmethod
    def upload(
        self,
        local_path: Path,
        key: str,
        content_type: str,
        on_progress: ProgressCallback | None = None,
    ) -> str: ...

    @abstractmethod
    def read_stream(self, key: str) -> BlobStream: ...

    @abstractmethod
    def delete(self, key: str) -> None: ...

    @abstractmethod
    def signed_url(self, key: str, ttl_seconds: int = 3600, download_name: str | None = None) -> str: ...

    def download_to(self, key: str, target: Path) -> int:
        """Copy a stored blob into a local file and return the number of bytes written."""
        stream = self.read_stream(key)
        written = 0
        target.parent.mkdir(parents=True, exist_ok=True)
        with target.open("wb") as handle:
            for chunk in stream.chunks:
                handle.write(chunk)
                written += len(chunk)
        return written


class LocalBlobStore(BlobStore):
    """Filesystem-backed blob store suitable for development."""

    def __init__(self, base_path: Path):
        self.base_path = base_path
        self.base_path.mkdir(parents=True, exist_ok=True)

    def _resolve(self, key: str) -> Path:
        target = (self.base_path / key).resolve()
        if self.base_path.resolve() not in target.parents:
            raise ValueError(f"Blob key escapes the store root: {key}")
        return target

    def upload(
        self,
        local_path: Path,
        key: str,
        content_type: str,
        on_progress: ProgressCallback | None = None,
    ) -> str:
        target = self._resolve(key)
        target.parent.mkdir(parents=True, exist_ok=True)
        sent = 0
        with local_path.open("rb") as src, target.open("wb") as dst:
            while chunk := src.read(CHUNK_SIZE):
                dst.write(chunk)
                sent += len(chunk)
                if on_progress:
                    on_progress(sent)
        return self.signed_url(key)

    def read_stream(self, key: str) -> BlobStream:
        path = self._resolve(key)
        if not path.exists():
            raise FileNotFoundError(key)

        def _chunks() -> Iterator[bytes]:
            with path.open("rb") as handle:
                while chunk := handle.read(CHUNK_SIZE):
                    yield chunk

        return BlobStream(chunks=_chunks(), length=path.stat().st_size)

    def delete(self, key: str) -> None:
        self._resolve(key).unlink(missing_ok=True)

    def signed_url(self, key: str, ttl_seconds: int = 3600, download_name: str | None = None) -> str:
        uri = self._resolve(key).as_uri()
        if download_name:
            uri = f"{uri}?download={quote(download_name)}"
        return uri


class S3BlobStore(BlobStore):
    """S3-compatible blob store backed by boto3."""

    def __init__(
        self,
        bucket: str,
        *,
        region: str,
        endpoint_url: str | None = None,
        access_key_id: str | None = None,
        secret_access_key: str | None = None,
        client=None,
    ):
        self.bucket = bucket
        self.client = client or boto3.client(
            "s3",
            region_name=region,
            endpoint_url=endpoint_url,
            aws_access_key_id=access_key_id,
            aws_secret_access_key=secret_access_key,
            config=BotoConfig(signature_version="s3v4", retries={"max_attempts": 3, "mode": "standard"}),
        )

    def upload(
        self,
        local_path: Path,
        key: str,
        content_type: str,
        on_progress: ProgressCallback | None = None,
    ) -> str:
        sent = 0

        def _callback(chunk_bytes: int) -> None:
            nonlocal sent
            sent += chunk_bytes
            if on_progress:
                on_progress(sent)

        self.client.upload_file(
            str(local_path),
            self.bucket,
            key,
            ExtraArgs={"ContentType": content_type},
            Callback=_callback,
        )
        return self.signed_url(key)

    def read_stream(self, key: str) -> BlobStream:
        response = self.client.get_object(Bucket=self.bucket, Key=key)
        body = response["Body"]
        return BlobStream(
            chunks=body.iter_chunks(chunk_size=CHUNK_SIZE),
            length=response.get("ContentLength"),
            content_type=response.get("ContentType"),
        )

    def delete(self, key: str) -> None:
        self.client.delete_object(Bucket=self.bucket, Key=key)

    def signed_url(self, key: str, ttl_seconds: int = 3600, download_name: str | None = None) -> str:
        params = {"Bucket": self.bucket, "Key": key}
        if download_name:
            params["ResponseContentDisposition"] = f'attachment; filename="{download_name}"'
        return self.client.generate_presigned_url("get_object", Params=params, ExpiresIn=ttl_seconds)


def get_blob_store(settings: Settings) -> BlobStore:
    if settings.blob_backend == "local":
        return LocalBlobStore(base_path=Path(settings.local_blob_path))
    if settings.blob_backend == "s3":
        endpoint = str(settings.s3_endpoint_url) if settings.s3_endpoint_url else None
        return S3BlobStore(
            settings.s3_bucket,
            region=settings.s3_region,
            endpoint_url=endpoint,
            access_key_id=settings.secrets.aws_access_key_id,
            secret_access_key=settings.secrets.aws_secret_access_key,
        )
    raise ValueError(f"Unsupported blob backend: {settings.blob_backend}")


__all__ = [
    "BlobStore",
    "BlobStream",
    "LocalBlobStore",
    "S3BlobStore",
    "ProgressCallback",
    "get_blob_store",
]
