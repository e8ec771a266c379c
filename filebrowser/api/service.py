from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from filebrowser.listing.directory_scanner import scan_directory
from filebrowser.security.errors import FileOpsError, NotFoundError, ValidationError
from filebrowser.security.fileops import FileMover
from filebrowser.security.naming_lock import NamingLocks
from filebrowser.security.operation_log import OperationLogStore
from filebrowser.security.paths import PathResolver, SandboxRoot
from filebrowser.security.sequential import CollisionResolver
from filebrowser.uploads.pipeline import (
    BATCH_IMAGE_POLICY,
    BATCH_MAX_FILES,
    BATCH_MAX_TOTAL_SIZE,
    SINGLE_UPLOAD_POLICY,
    UploadedFile,
    UploadPipeline,
    UploadPolicy,
)

logger = logging.getLogger(__name__)

TRASH_PREFIX = "trash"
LOCK_SWEEP_THROTTLE_SEC = 60 * 60
LOCK_FILE_MAX_AGE_SEC = 24 * 60 * 60


@dataclass(frozen=True)
class FileOpsResult:
    http_status: int
    payload: dict[str, Any]


@dataclass(frozen=True)
class BatchLimits:
    max_files: int = BATCH_MAX_FILES
    max_total_size: int = BATCH_MAX_TOTAL_SIZE


def _require_str(request: dict[str, Any], key: str, *, default: str | None = None) -> str:
    value = request.get(key, default)
    if not isinstance(value, str):
        raise FileOpsError("INVALID_REQUEST", f"missing or invalid '{key}' (string required)")
    return value


def _join_rel(rel_dir: str, name: str) -> str:
    rel_dir = rel_dir.strip("/\\")
    return f"{rel_dir}/{name}" if rel_dir else name


class FileBrowserService:
    """Request-level file browser operations over a data root and a trash root."""

    def __init__(
        self,
        *,
        data_root: SandboxRoot,
        trash_root: SandboxRoot,
        locks: NamingLocks,
        log_store: OperationLogStore,
        single_policy: UploadPolicy = SINGLE_UPLOAD_POLICY,
        batch_policy: UploadPolicy = BATCH_IMAGE_POLICY,
        batch_limits: BatchLimits = BatchLimits(),
    ) -> None:
        self._data = PathResolver(data_root)
        self._trash = PathResolver(trash_root)
        self._locks = locks
        self._log_store = log_store
        self._mover = FileMover(resolver=CollisionResolver(locks))
        self._single = UploadPipeline(mover=self._mover, policy=single_policy)
        self._batch = UploadPipeline(mover=self._mover, policy=batch_policy)
        self._batch_limits = batch_limits
        self._last_lock_sweep_monotonic_s = 0.0

    @property
    def data_root(self) -> SandboxRoot:
        return self._data.root

    @property
    def trash_root(self) -> SandboxRoot:
        return self._trash.root

    def _maybe_sweep_locks(self) -> None:
        if not self._locks.cross_process:
            return
        now = time.monotonic()
        if now - self._last_lock_sweep_monotonic_s < LOCK_SWEEP_THROTTLE_SEC:
            return
        self._last_lock_sweep_monotonic_s = now
        try:
            self._locks.sweep(max_age_s=LOCK_FILE_MAX_AGE_SEC)
        except OSError as exc:
            logger.warning("naming lock sweep failed: %s", exc)

    def _resolver_for(self, user_path: str, *, allow_trash: bool) -> tuple[PathResolver, str]:
        if allow_trash:
            segments = user_path.strip("/").split("/")
            if segments[0] == TRASH_PREFIX:
                return self._trash, "/".join(segments[1:])
        return self._data, user_path

    def _rel(self, resolver: PathResolver, path: Path) -> str:
        rel = resolver.root.relative(path)
        if resolver is self._trash:
            return _join_rel(TRASH_PREFIX, rel)
        return rel

    def list_directory(self, request: dict[str, Any]) -> FileOpsResult:
        user_path = _require_str(request, "path", default="")
        recursive = bool(request.get("recursive", False))

        resolver, rel_path = self._resolver_for(user_path, allow_trash=True)
        target = resolver.resolve(rel_path)
        if not target.is_dir():
            raise NotFoundError("Specified path is not a readable directory.")

        items = scan_directory(target, recursive=recursive)
        return FileOpsResult(
            http_status=200,
            payload={
                "ok": True,
                "path": user_path,
                "list": [item.as_dict() for item in items],
            },
        )

    def upload(self, user_path: str, upload: UploadedFile) -> FileOpsResult:
        target = self._data.resolve_directory(user_path)
        self._single.validate(upload)
        self._maybe_sweep_locks()

        src_rel = _join_rel(user_path, upload.name)
        try:
            final_path = self._single.save(target, upload)
        except FileOpsError as exc:
            self._log_store.record(op="upload", src_rel_path=src_rel, dst_rel_path=None, success=False, error=str(exc))
            raise

        dst_rel = self._rel(self._data, final_path)
        log_entry = self._log_store.record(
            op="upload", src_rel_path=src_rel, dst_rel_path=dst_rel, success=True, error=None
        )
        return FileOpsResult(
            http_status=200,
            payload={
                "ok": True,
                "path": user_path,
                "filename": final_path.name,
                "log": log_entry.as_dict(),
            },
        )

    def upload_images(self, user_path: str, uploads: list[UploadedFile]) -> FileOpsResult:
        self._batch.validate_batch(
            uploads,
            max_files=self._batch_limits.max_files,
            max_total_size=self._batch_limits.max_total_size,
        )
        for upload in uploads:
            self._batch.validate(upload)

        target = self._data.resolve(user_path)
        if not target.exists():
            try:
                target.mkdir(mode=0o755)
            except FileExistsError:
                pass
            except OSError as exc:
                raise FileOpsError(
                    "DIRECTORY_CREATE_FAILED", f"Failed to create directory: {user_path}: {exc}", http_status=500
                ) from exc
            # Re-resolve: the new directory must still sit inside the root.
            target = self._data.resolve(user_path)

        self._maybe_sweep_locks()
        saved: list[str] = []
        for upload in uploads:
            src_rel = _join_rel(user_path, upload.name)
            try:
                final_path = self._batch.save(target, upload)
            except FileOpsError as exc:
                self._log_store.record(
                    op="upload", src_rel_path=src_rel, dst_rel_path=None, success=False, error=str(exc)
                )
                raise
            self._log_store.record(
                op="upload",
                src_rel_path=src_rel,
                dst_rel_path=self._rel(self._data, final_path),
                success=True,
                error=None,
            )
            saved.append(final_path.name)

        return FileOpsResult(http_status=200, payload={"ok": True, "path": user_path, "files": saved})

    def rename(self, request: dict[str, Any]) -> FileOpsResult:
        user_path = _require_str(request, "path", default="")
        current_name = _require_str(request, "name", default="")
        new_name = _require_str(request, "newName", default="")
        if current_name == "":
            raise ValidationError("Current file name is required.", code="INVALID_REQUEST")
        if new_name == "":
            raise ValidationError("New file name is required.", code="INVALID_REQUEST")

        resolver, rel_path = self._resolver_for(user_path, allow_trash=True)
        target_dir = resolver.resolve_directory(rel_path)
        self._maybe_sweep_locks()

        src_rel = _join_rel(user_path, current_name)
        try:
            final_path = self._mover.rename_file(target_dir, current_name, new_name)
        except FileOpsError as exc:
            self._log_store.record(op="rename", src_rel_path=src_rel, dst_rel_path=None, success=False, error=str(exc))
            raise

        log_entry = self._log_store.record(
            op="rename",
            src_rel_path=src_rel,
            dst_rel_path=self._rel(resolver, final_path),
            success=True,
            error=None,
        )
        return FileOpsResult(
            http_status=200,
            payload={
                "ok": True,
                "path": user_path,
                "filename": final_path.name,
                "log": log_entry.as_dict(),
            },
        )

    def delete(self, request: dict[str, Any]) -> FileOpsResult:
        """Move a file from the data root into the trash root."""

        user_path = _require_str(request, "path", default="")
        current_name = _require_str(request, "name", default="")
        if current_name == "":
            raise ValidationError("Current file name is required.", code="INVALID_REQUEST")
        if "/" in current_name or "\\" in current_name:
            raise ValidationError(f"not a plain file name: {current_name!r}")

        self._data.resolve_directory(user_path)
        src_rel = _join_rel(user_path, current_name)
        src_path = self._data.resolve(src_rel)
        if not src_path.is_file():
            raise NotFoundError(f"File not found: {current_name}")
        self._maybe_sweep_locks()

        try:
            final_path = self._mover.move_file(src_path, self._trash.root.path)
        except FileOpsError as exc:
            self._log_store.record(op="trash", src_rel_path=src_rel, dst_rel_path=None, success=False, error=str(exc))
            raise

        log_entry = self._log_store.record(
            op="trash",
            src_rel_path=src_rel,
            dst_rel_path=self._rel(self._trash, final_path),
            success=True,
            error=None,
        )
        return FileOpsResult(
            http_status=200,
            payload={
                "ok": True,
                "path": user_path,
                "filename": final_path.name,
                "log": log_entry.as_dict(),
            },
        )
