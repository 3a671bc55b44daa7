from __future__ import annotations

import io
import re
from collections.abc import Callable
from dataclasses import dataclass, replace
from enum import StrEnum
from pathlib import PurePosixPath

import pillow_heif
from PIL import Image

from portal.domain.errors import PayloadTooLargeError, UnsupportedMediaError

MAX_FILE_SIZE = 10 * 1024 * 1024

SUPPORTED_CONTENT_TYPES = frozenset(
    {
        "image/jpeg",
        "image/jpg",
        "image/png",
        "image/gif",
        "image/webp",
        "image/svg+xml",
        "image/bmp",
        "image/heic",
        "image/heif",
        "application/pdf",
    }
)
HEIC_CONTENT_TYPES = frozenset({"image/heic", "image/heif"})
HEIC_EXTENSIONS = frozenset({".heic", ".heif"})
JPEG_QUALITY = 90

_HEIC_SUFFIX = re.compile(r"\.(heic|heif)$", re.IGNORECASE)

pillow_heif.register_heif_opener()


class MediaKind(StrEnum):
    IMAGE = "image"
    PDF = "pdf"


@dataclass(frozen=True)
class UploadedFile:
    file_name: str
    content_type: str
    content: bytes

    @property
    def size_bytes(self) -> int:
        return len(self.content)

    @property
    def extension(self) -> str:
        return PurePosixPath(self.file_name).suffix.lower()

    @property
    def normalized_content_type(self) -> str:
        return self.content_type.split(";", 1)[0].strip().lower()


Transcoder = Callable[[bytes], bytes]


def classify(upload: UploadedFile) -> MediaKind:
    content_type = upload.normalized_content_type
    if content_type.startswith("image/") or upload.extension in HEIC_EXTENSIONS:
        kind = MediaKind.IMAGE
    elif content_type == "application/pdf" or upload.extension == ".pdf":
        kind = MediaKind.PDF
    else:
        raise UnsupportedMediaError("only images and PDF documents can be attached")
    if content_type not in SUPPORTED_CONTENT_TYPES and upload.extension not in {*HEIC_EXTENSIONS, ".pdf"}:
        raise UnsupportedMediaError(f"unsupported file type: {content_type or upload.extension or 'unknown'}")
    return kind


def is_heic(upload: UploadedFile) -> bool:
    return upload.normalized_content_type in HEIC_CONTENT_TYPES or upload.extension in HEIC_EXTENSIONS


def validate_upload(upload: UploadedFile) -> MediaKind:
    kind = classify(upload)
    if upload.size_bytes > MAX_FILE_SIZE:
        raise PayloadTooLargeError(f"file exceeds {MAX_FILE_SIZE // (1024 * 1024)} MB limit")
    if upload.size_bytes == 0:
        raise UnsupportedMediaError("file is empty")
    return kind


def heic_to_jpeg(content: bytes) -> bytes:
    buffer = io.BytesIO()
    with Image.open(io.BytesIO(content)) as image:
        image.convert("RGB").save(buffer, format="JPEG", quality=JPEG_QUALITY)
    return buffer.getvalue()


def prepare_for_storage(upload: UploadedFile, transcoder: Transcoder = heic_to_jpeg) -> UploadedFile:
    """Validate an upload and convert camera HEIC/HEIF images to JPEG.

    Raises UnsupportedMediaError or PayloadTooLargeError before any bytes are written anywhere.
    """
    validate_upload(upload)
    if not is_heic(upload):
        return upload
    try:
        converted = transcoder(upload.content)
    except Exception as exc:
        raise UnsupportedMediaError("failed to convert HEIC image, please upload a JPEG instead") from exc
    file_name = _HEIC_SUFFIX.sub(".jpg", upload.file_name)
    if file_name == upload.file_name:
        file_name = f"{upload.file_name}.jpg"
    return replace(upload, file_name=file_name, content_type="image/jpeg", content=converted)
