from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path

from filebrowser.security.errors import ValidationError
from filebrowser.security.fileops import FileMover
from filebrowser.security.names import check_file_name
from filebrowser.security.sequential import writable_directory

from .content_types import normalize_content_type, sniff_content_type

logger = logging.getLogger(__name__)

MB = 1024 * 1024

SINGLE_FILE_MAX_SIZE = 100 * MB
BATCH_FILE_MAX_SIZE = 10 * MB
BATCH_MAX_FILES = 10
BATCH_MAX_TOTAL_SIZE = 30 * MB

SINGLE_UPLOAD_ALLOWED_TYPES = frozenset({"image/jpeg", "image/png", "application/pdf"})
BATCH_UPLOAD_ALLOWED_TYPES = frozenset({"image/jpeg", "image/png"})


class UploadRejected(ValidationError):
    def __init__(self, message: str, *, http_status: int = 400) -> None:
        super().__init__(message, code="UPLOAD_REJECTED", http_status=http_status)


@dataclass(frozen=True)
class UploadedFile:
    """A caller file already staged on disk at ``tmp_path``."""

    name: str
    declared_type: str
    size: int
    tmp_path: Path


@dataclass(frozen=True)
class UploadPolicy:
    allowed_types: frozenset[str]
    max_file_size: int

    def __post_init__(self) -> None:
        if self.max_file_size <= 0:
            raise ValueError("max_file_size must be > 0")
        if not self.allowed_types:
            raise ValueError("allowed_types must not be empty")


SINGLE_UPLOAD_POLICY = UploadPolicy(allowed_types=SINGLE_UPLOAD_ALLOWED_TYPES, max_file_size=SINGLE_FILE_MAX_SIZE)
BATCH_IMAGE_POLICY = UploadPolicy(allowed_types=BATCH_UPLOAD_ALLOWED_TYPES, max_file_size=BATCH_FILE_MAX_SIZE)


def _limit_mb(limit: int) -> str:
    value = limit / MB
    return f"{value:g}"


class UploadPipeline:
    def __init__(self, *, mover: FileMover, policy: UploadPolicy) -> None:
        self._mover = mover
        self._policy = policy

    @property
    def policy(self) -> UploadPolicy:
        return self._policy

    def validate(self, upload: UploadedFile) -> None:
        if not upload.tmp_path.is_file():
            raise UploadRejected("Invalid uploaded file.")

        check = check_file_name(upload.name)
        if not check.ok:
            raise UploadRejected(check.reason or "invalid file name")

        if upload.size > self._policy.max_file_size:
            raise UploadRejected(
                f"File exceeds {_limit_mb(self._policy.max_file_size)}MB limit.",
                http_status=413,
            )

        declared = normalize_content_type(upload.declared_type)
        if declared not in self._policy.allowed_types:
            raise UploadRejected("File type not allowed.", http_status=415)

        detected = sniff_content_type(upload.tmp_path)
        if detected not in self._policy.allowed_types:
            raise UploadRejected("File type not allowed.", http_status=415)
        if detected != declared:
            raise UploadRejected(
                f"Declared type {declared} does not match file content ({detected}).",
                http_status=415,
            )

    def validate_batch(self, uploads: list[UploadedFile], *, max_files: int, max_total_size: int) -> None:
        if not uploads:
            raise UploadRejected("No files uploaded.")
        if len(uploads) > max_files:
            raise UploadRejected(f"Too many files. Maximum is {max_files}.")
        total = sum(u.size for u in uploads)
        if total > max_total_size:
            raise UploadRejected(f"Total upload size exceeds {_limit_mb(max_total_size)} MB.", http_status=413)

    def save(self, target_dir: str | os.PathLike[str], upload: UploadedFile) -> Path:
        real_dir = writable_directory(target_dir, what="target directory")
        final_path = self._mover.move_file(upload.tmp_path, real_dir, name=upload.name)
        logger.info("stored upload %r as %s", upload.name, final_path.name)
        return final_path
