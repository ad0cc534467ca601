import logging
import os
import re
import time
import uuid
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Optional
from urllib.parse import urlparse

import boto3
import requests
from botocore.exceptions import BotoCoreError, ClientError

from .errors import PersistenceError

logger = logging.getLogger(__name__)

CONTENT_TYPES = {
    ".png": "image/png",
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".gif": "image/gif",
    ".webp": "image/webp",
    ".svg": "image/svg+xml",
    ".pdf": "application/pdf",
    ".txt": "text/plain",
    ".csv": "text/csv",
    ".json": "application/json",
}


def sanitize_filename(filename: str) -> str:
    """Strips path components and characters that are unsafe in object keys."""
    basename = re.split(r"[/\\]", filename)[-1] or filename
    sanitized = re.sub(r'[<>:"|?*\x00-\x1f]', "", basename)
    sanitized = re.sub(r"\.{2,}", ".", sanitized)
    sanitized = sanitized.lstrip(".").strip()
    if not sanitized:
        raise ValueError(f"Invalid filename: {filename!r}")
    if len(sanitized) > 255:
        stem, ext = os.path.splitext(sanitized)
        sanitized = stem[: 255 - len(ext)] + ext
    return sanitized


def unique_filename(filename: str) -> str:
    stem, ext = os.path.splitext(sanitize_filename(filename))
    return f"{stem}-{int(time.time() * 1000)}-{uuid.uuid4().hex[:8]}{ext}"


class ObjectStorage(ABC):
    """Blob storage for uploaded inputs and generated panel images."""

    @abstractmethod
    def upload(self, data: bytes, filename: str, folder: Optional[str] = None) -> str:
        """Stores the bytes under a collision-free name and returns the public URL."""

    @abstractmethod
    def delete(self, url: str) -> None:
        pass

    @abstractmethod
    def read(self, url: str) -> Optional[bytes]:
        """Returns the bytes when `url` belongs to this storage, None otherwise."""


class LocalStorage(ObjectStorage):
    """Writes files under `root` and serves them from `base_url` (e.g. /uploads/panels/x.png)."""

    def __init__(self, root: str = "./public/uploads", base_url: str = "/uploads"):
        self.root = Path(root)
        self.base_url = base_url.rstrip("/")

    def _path_for(self, url: str) -> Optional[Path]:
        prefix = self.base_url + "/"
        if not url.startswith(prefix):
            return None
        relative = url[len(prefix):].split("?")[0]
        path = (self.root / relative).resolve()
        if self.root.resolve() not in path.parents:
            return None
        return path

    def upload(self, data: bytes, filename: str, folder: Optional[str] = None) -> str:
        name = unique_filename(filename)
        target_dir = self.root / folder if folder else self.root
        try:
            target_dir.mkdir(parents=True, exist_ok=True)
            (target_dir / name).write_bytes(data)
        except OSError as e:
            raise PersistenceError(f"Failed to write {name}: {e}") from e
        relative = f"{folder}/{name}" if folder else name
        return f"{self.base_url}/{relative}"

    def delete(self, url: str) -> None:
        path = self._path_for(url)
        if path and path.exists():
            path.unlink()

    def read(self, url: str) -> Optional[bytes]:
        path = self._path_for(url)
        if path is None or not path.is_file():
            return None
        return path.read_bytes()


class S3Storage(ObjectStorage):
    def __init__(self, bucket: str, region: Optional[str] = None, client=None, public_base_url: Optional[str] = None):
        if not bucket:
            raise ValueError("AWS_STORAGE_BUCKET_NAME is required for S3 storage.")
        self.bucket = bucket
        self.region = region
        self.s3 = client or boto3.client(
            "s3",
            aws_access_key_id=os.getenv("AWS_ACCESS_KEY_ID"),
            aws_secret_access_key=os.getenv("AWS_SECRET_ACCESS_KEY"),
            region_name=region,
        )
        if public_base_url:
            self.public_base_url = public_base_url.rstrip("/")
        elif region:
            self.public_base_url = f"https://{bucket}.s3.{region}.amazonaws.com"
        else:
            self.public_base_url = f"https://{bucket}.s3.amazonaws.com"

    def key_for(self, url: str) -> Optional[str]:
        """Maps s3://bucket/key, bucket URLs and bare keys back to an object key of this bucket."""
        url = url.split("?")[0]
        if url.startswith("s3://"):
            parsed = urlparse(url)
            return parsed.path.lstrip("/") if parsed.netloc == self.bucket else None
        if url.startswith(self.public_base_url + "/"):
            return url[len(self.public_base_url) + 1:]
        if url.startswith("http"):
            parsed = urlparse(url)
            hostname = parsed.netloc
            if hostname.endswith(".amazonaws.com") and hostname.split(".")[0] == self.bucket:
                return parsed.path.lstrip("/")
            return None
        return None

    def upload(self, data: bytes, filename: str, folder: Optional[str] = None) -> str:
        name = unique_filename(filename)
        key = f"{folder}/{name}" if folder else name
        content_type = CONTENT_TYPES.get(os.path.splitext(name)[1].lower(), "application/octet-stream")
        try:
            self.s3.put_object(Bucket=self.bucket, Key=key, Body=data, ContentType=content_type)
        except (ClientError, BotoCoreError) as e:
            raise PersistenceError(f"Failed to upload s3://{self.bucket}/{key}: {e}") from e
        return f"{self.public_base_url}/{key}"

    def delete(self, url: str) -> None:
        key = self.key_for(url)
        if not key:
            return
        try:
            self.s3.delete_object(Bucket=self.bucket, Key=key)
        except (ClientError, BotoCoreError) as e:
            raise PersistenceError(f"Failed to delete s3://{self.bucket}/{key}: {e}") from e

    def read(self, url: str) -> Optional[bytes]:
        key = self.key_for(url)
        if not key:
            return None
        try:
            response = self.s3.get_object(Bucket=self.bucket, Key=key)
        except ClientError as e:
            if e.response.get("Error", {}).get("Code") in ("NoSuchKey", "404"):
                return None
            raise
        return response["Body"].read()


def load_bytes(ref: str, storage: Optional[ObjectStorage] = None, timeout: float = 30.0) -> bytes:
    """Reads an artifact from storage or disk first, then falls back to an HTTP fetch."""
    if storage is not None:
        data = storage.read(ref)
        if data is not None:
            return data
    if not ref.startswith(("http://", "https://")):
        path = Path(ref)
        if path.is_file():
            return path.read_bytes()
        raise FileNotFoundError(f"Artifact not found: {ref}")

    logger.debug(f"[load_bytes] Downloading {ref[:80]}...")
    response = requests.get(ref, timeout=timeout)
    response.raise_for_status()
    return response.content
