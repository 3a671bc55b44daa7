from __future__ import annotations

import os
from pathlib import Path, PurePosixPath
from uuid import uuid4


class ObjectStorageError(Exception):
    pass


class ObjectStorageNotFoundError(ObjectStorageError):
    pass


class LocalObjectStorageAdapter:
    def __init__(self, root_dir: Path) -> None:
        self._root_dir = root_dir
        self._root_dir.mkdir(parents=True, exist_ok=True)

    def _safe_object_path(self, bucket: str, object_key: str) -> Path:
        normalized_bucket = bucket.strip()
        if not normalized_bucket:
            raise ObjectStorageError("bucket is empty")
        key_path = PurePosixPath(object_key)
        if key_path.is_absolute() or ".." in key_path.parts:
            raise ObjectStorageError("invalid object key")
        if not key_path.parts:
            raise ObjectStorageError("object key is empty")
        return self._root_dir / normalized_bucket / Path(*key_path.parts)

    def put_bytes(
        self,
        *,
        bucket: str,
        object_key: str,
        content: bytes,
    ) -> None:
        path = self._safe_object_path(bucket, object_key)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(content)

    def delete_object(self, *, bucket: str, object_key: str) -> None:
        path = self._safe_object_path(bucket, object_key)
        if not path.exists() or not path.is_file():
            raise ObjectStorageNotFoundError("object not found")
        path.unlink()


class ObjectStorageService:
    def __init__(self) -> None:
        backend = os.getenv("OBJECT_STORAGE_BACKEND", "local").strip().lower()
        if backend != "local":
            raise ObjectStorageError(f"unsupported storage backend: {backend}")
        root_dir = Path(os.getenv("OBJECT_STORAGE_ROOT", "data/object_storage"))
        self._adapter = LocalObjectStorageAdapter(root_dir)
        self.bucket = os.getenv("OBJECT_STORAGE_BUCKET", "work-order-photos")
        self.public_url = os.getenv("OBJECT_STORAGE_PUBLIC_URL", "/files").rstrip("/")

    def build_object_key(self, *, work_order_id: str, file_name: str) -> str:
        suffix = PurePosixPath(file_name.replace("\\", "/")).suffix.lower()
        return f"work-orders/{work_order_id}/{uuid4().hex}{suffix}"

    def url_for(self, object_key: str) -> str:
        return f"{self.public_url}/{self.bucket}/{object_key}"

    def object_key_from_url(self, url: str) -> str:
        prefix = f"{self.public_url}/{self.bucket}/"
        if not url.startswith(prefix):
            raise ObjectStorageError(f"url does not belong to bucket {self.bucket}")
        return url[len(prefix):]

    def put(self, *, object_key: str, content: bytes) -> str:
        self._adapter.put_bytes(bucket=self.bucket, object_key=object_key, content=content)
        return self.url_for(object_key)

    def delete(self, url: str) -> None:
        self._adapter.delete_object(bucket=self.bucket, object_key=self.object_key_from_url(url))
