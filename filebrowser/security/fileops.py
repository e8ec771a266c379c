from __future__ import annotations

import errno
import logging
import os
import shutil
from pathlib import Path

from .errors import ConflictError, IoError, NotFoundError, ValidationError
from .names import validate_file_name
from .naming_lock import NamingLocks, shared_naming_locks
from .sequential import CollisionResolver, writable_directory

logger = logging.getLogger(__name__)

_COPY_CHUNK_BYTES = 1024 * 1024


def _final_path(path: Path) -> Path:
    try:
        return path.resolve(strict=True)
    except OSError:
        return path


def _remove_quietly(path: Path, *, reason: str) -> None:
    try:
        path.unlink(missing_ok=True)
    except OSError as exc:
        logger.error("failed to remove %s after %s: %s", path, reason, exc)


def _copy_exclusive(src: Path, dst: Path) -> None:
    # "xb" refuses to clobber an entry created behind our back.
    with src.open("rb") as fsrc, dst.open("xb") as fdst:
        shutil.copyfileobj(fsrc, fdst, _COPY_CHUNK_BYTES)
    shutil.copystat(src, dst)


class FileMover:
    """Relocates and renames files inside writable directories.

    Every operation either returns the final path or leaves the filesystem as
    it found it. The destination's naming lock is held from choosing the name
    until the file is in place.
    """

    def __init__(self, *, resolver: CollisionResolver) -> None:
        self._resolver = resolver

    @property
    def locks(self) -> NamingLocks:
        return self._resolver.locks

    def move_file(
        self,
        src: str | os.PathLike[str],
        dest_dir: str | os.PathLike[str],
        *,
        name: str | None = None,
    ) -> Path:
        real_src = Path(os.path.realpath(os.fspath(src)))
        if not real_src.is_file():
            raise NotFoundError(f"Specified path is not a valid file: {os.fspath(src)}")

        real_dest = writable_directory(dest_dir, what="destination directory")

        entry_name = real_src.name if name is None else name
        validate_file_name(entry_name)

        with self.locks.hold(real_dest):
            target = self._resolver.construct_sequential_file_path(real_dest, entry_name)
            self._commit_move(real_src, target)

        logger.info("moved %s -> %s", real_src, target)
        return _final_path(target)

    def _commit_move(self, src: Path, target: Path) -> None:
        try:
            os.rename(src, target)
            return
        except OSError as exc:
            if exc.errno != errno.EXDEV:
                raise IoError(f"Failed to move file: {exc.strerror or exc}") from exc
            logger.debug("rename crosses devices, copying instead: %s -> %s", src, target)

        try:
            _copy_exclusive(src, target)
        except FileExistsError as exc:
            raise IoError(f"Destination appeared while copying: {target.name}") from exc
        except OSError as exc:
            _remove_quietly(target, reason="failed cross-device copy")
            raise IoError(f"Failed to copy file across devices: {exc.strerror or exc}") from exc

        try:
            os.unlink(src)
        except OSError as exc:
            _remove_quietly(target, reason="failed source removal")
            raise IoError(f"Failed to remove original after copy: {exc.strerror or exc}") from exc

    def rename_file(
        self,
        directory: str | os.PathLike[str],
        current_name: str,
        new_name: str,
    ) -> Path:
        real_dir = writable_directory(directory, what="target directory")
        validate_file_name(new_name)
        if current_name in {"", ".", ".."} or os.path.basename(current_name) != current_name:
            raise ValidationError(f"not a plain file name: {current_name!r}")

        src_path = real_dir / current_name
        dst_path = real_dir / new_name

        with self.locks.hold(real_dir):
            if not src_path.is_file():
                raise NotFoundError(f"File not found: {current_name}")
            if os.path.lexists(dst_path):
                raise ConflictError(f"Cannot rename: target file already exists: {new_name}")
            try:
                os.rename(src_path, dst_path)
            except OSError as exc:
                raise IoError(
                    f"Failed to rename '{current_name}' to '{new_name}': {exc.strerror or exc}"
                ) from exc

        logger.info("renamed %s -> %s in %s", current_name, new_name, real_dir)
        return _final_path(dst_path)


def move_file(
    src: str | os.PathLike[str],
    dest_dir: str | os.PathLike[str],
    *,
    locks: NamingLocks | None = None,
) -> Path:
    return FileMover(resolver=CollisionResolver(locks or shared_naming_locks())).move_file(src, dest_dir)


def rename_file(
    directory: str | os.PathLike[str],
    current_name: str,
    new_name: str,
    *,
    locks: NamingLocks | None = None,
) -> Path:
    return FileMover(resolver=CollisionResolver(locks or shared_naming_locks())).rename_file(
        directory, current_name, new_name
    )

