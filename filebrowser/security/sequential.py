from __future__ import annotations

import logging
import os
from pathlib import Path

from .errors import DirectoryError, IoError, ValidationError
from .names import split_name
from .naming_lock import NamingLocks, shared_naming_locks

logger = logging.getLogger(__name__)

MAX_SEQUENCE = 100_000


def writable_directory(directory: str | os.PathLike[str], *, what: str = "directory") -> Path:
    real = os.path.realpath(os.fspath(directory))
    if not os.path.isdir(real) or not os.access(real, os.W_OK):
        raise DirectoryError(f"Invalid or unwritable {what}: {os.fspath(directory)}")
    return Path(real)


def _require_bare_name(name: str) -> None:
    if name in {"", ".", ".."} or os.path.basename(name) != name or "/" in name or "\\" in name:
        raise ValidationError(f"not a plain file name: {name!r}")


def _sequential_name(base: str, ext: str, counter: int) -> str:
    ext_part = f".{ext}" if ext else ""
    if counter == 0:
        return f"{base}{ext_part}"
    return f"{base}_{counter}{ext_part}"


class CollisionResolver:
    def __init__(self, locks: NamingLocks) -> None:
        self._locks = locks

    @property
    def locks(self) -> NamingLocks:
        return self._locks

    def construct_sequential_file_path(self, directory: str | os.PathLike[str], name: str) -> Path:
        """Return a path in ``directory`` for ``name`` that is free right now.

        ``name`` is tried as is first (with its extension lower-cased), then
        ``base_1.ext``, ``base_2.ext`` and so on. Only the collision case takes
        the directory's naming lock. The result is not reserved: callers that
        create the file should hold ``locks.hold(directory)`` across both
        steps.
        """

        real_dir = writable_directory(directory)
        _require_bare_name(name)

        base, ext = split_name(name)
        ext = ext.lower()

        candidate = real_dir / _sequential_name(base, ext, 0)
        if not os.path.lexists(candidate):
            return candidate

        with self._locks.hold(real_dir):
            for counter in range(1, MAX_SEQUENCE + 1):
                candidate = real_dir / _sequential_name(base, ext, counter)
                if not os.path.lexists(candidate):
                    logger.debug("sequential name for %r in %s: %s", name, real_dir, candidate.name)
                    return candidate

        raise IoError(f"no free sequential name for {name!r} in {real_dir}")


def construct_sequential_file_path(
    directory: str | os.PathLike[str],
    name: str,
    *,
    locks: NamingLocks | None = None,
) -> Path:
    return CollisionResolver(locks or shared_naming_locks()).construct_sequential_file_path(directory, name)
