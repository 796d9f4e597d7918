"""
Attachment sink on S3/MinIO.
Objects are keyed "<project_id>/<object_id>" inside a single bucket.
"""

from __future__ import annotations

import logging
import shutil
import threading
import time
from pathlib import Path
from typing import Any, BinaryIO, Protocol, cast

import boto3
from boto3 import Session
from botocore.client import Config  # type: ignore[reportMissingTypeStubs]
from botocore.exceptions import ClientError  # type: ignore[reportMissingTypeStubs]

from .config import settings
from .errors import AttachmentNotFoundError

LOGGER = logging.getLogger(__name__)

_MISSING_CODES = {"NoSuchKey", "404", "NotFound"}


class S3ClientProtocol(Protocol):
    """Subset of S3 client methods used by the sink."""

    def head_bucket(self, *args: Any, **kwargs: Any) -> Any: ...

    def head_object(self, *args: Any, **kwargs: Any) -> Any: ...

    def list_buckets(self, *args: Any, **kwargs: Any) -> dict[str, Any]: ...

    def create_bucket(self, *args: Any, **kwargs: Any) -> Any: ...

    def put_object(self, *args: Any, **kwargs: Any) -> Any: ...

    def get_object(self, *args: Any, **kwargs: Any) -> dict[str, Any]: ...


def _normalize_endpoint(url: str | None) -> str | None:
    """Ensure endpoints include a scheme so boto3 accepts them."""
    if not url:
        return url
    if url.startswith("http://") or url.startswith("https://"):
        return url
    return f"http://{url}"


def s3_client() -> S3ClientProtocol:
    """Build the S3 client for AWS S3 or MinIO from settings."""
    use_aws = settings.USE_AWS_SERVICES or not settings.MINIO_ENDPOINT
    if use_aws:
        return cast(
            S3ClientProtocol,
            boto3.client(
                "s3",
                config=Config(signature_version="s3v4"),
                region_name=settings.AWS_REGION,
            ),
        )

    session = Session(
        aws_access_key_id=settings.MINIO_ACCESS_KEY,
        aws_secret_access_key=settings.MINIO_SECRET_KEY,
        region_name=settings.AWS_REGION,
    )
    return cast(
        S3ClientProtocol,
        session.client(
            "s3",
            endpoint_url=_normalize_endpoint(settings.MINIO_ENDPOINT),
            config=Config(signature_version="s3v4"),
        ),
    )


def object_key(project_id: str, object_id: str) -> str:
    return f"{project_id}/{object_id}"


def _error_code(exc: ClientError) -> str:
    response = cast(dict[str, Any], exc.response)
    error_dict = cast(dict[str, Any], response.get("Error", {}))
    return str(error_dict.get("Code", ""))


class AttachmentSink:
    """Durable object store for extracted attachments and exports."""

    def __init__(self, client: S3ClientProtocol, bucket: str | None = None) -> None:
        self.client = client
        self.bucket = bucket or settings.MINIO_BUCKET
        self._bucket_ready = False
        self._lock = threading.Lock()

    def ensure_bucket(self, wait_seconds: float = 60) -> None:
        """Create the bucket on MinIO if needed; only verify access on AWS."""
        with self._lock:
            if self._bucket_ready:
                return
            if settings.USE_AWS_SERVICES:
                self.client.head_bucket(Bucket=self.bucket)
                self._bucket_ready = True
                return

            deadline = time.time() + wait_seconds
            last_err: Exception | None = None
            while True:
                try:
                    buckets = self.client.list_buckets().get("Buckets", [])
                    names = [cast(str, b["Name"]) for b in buckets]
                    if self.bucket not in names:
                        self.client.create_bucket(Bucket=self.bucket)
                    self._bucket_ready = True
                    return
                except Exception as e:  # pragma: no cover - transient connectivity
                    last_err = e
                    if time.time() >= deadline:
                        break
                    time.sleep(2)
            if last_err:
                raise last_err

    def put(self, key: str, local_path: str | Path) -> str:
        """Upload a local file and return its object key."""
        self.ensure_bucket()
        with open(local_path, "rb") as handle:
            self.client.put_object(
                Bucket=self.bucket,
                Key=key,
                Body=handle,
                ContentType="application/octet-stream",
            )
        LOGGER.debug("Uploaded %s to %s/%s", local_path, self.bucket, key)
        return key

    def put_bytes(
        self, key: str, data: bytes, content_type: str = "application/octet-stream"
    ) -> str:
        self.ensure_bucket()
        self.client.put_object(
            Bucket=self.bucket, Key=key, Body=data, ContentType=content_type
        )
        return key

    def _open(self, key: str) -> BinaryIO:
        self.ensure_bucket()
        try:
            obj = self.client.get_object(Bucket=self.bucket, Key=key)
        except ClientError as e:
            if _error_code(e) in _MISSING_CODES:
                raise AttachmentNotFoundError(f"Object {key} does not exist") from e
            raise
        body = obj.get("Body")
        if body is None:
            raise AttachmentNotFoundError(f"Object {key} has no body")
        return cast(BinaryIO, body)

    def get(self, key: str) -> bytes:
        """Download an object fully into memory."""
        return self._open(key).read()

    def download_to(self, key: str, destination: str | Path) -> Path:
        """Stream an object to a local file."""
        stream = self._open(key)
        destination = Path(destination)
        with open(destination, "wb") as handle:
            shutil.copyfileobj(stream, handle)
        return destination

    def exists(self, key: str) -> bool:
        self.ensure_bucket()
        try:
            self.client.head_object(Bucket=self.bucket, Key=key)
            return True
        except ClientError as e:
            if _error_code(e) in _MISSING_CODES:
                return False
            raise
