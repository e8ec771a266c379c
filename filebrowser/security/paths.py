from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

from .errors import ContainmentError, DirectoryError, NotFoundError, ValidationError

_ROOT_ALIASES = {"", ".", "./"}
_LEADING_SEPARATORS = "/\\"


def _canonical(path: str | os.PathLike[str]) -> str:
    return os.path.realpath(os.fspath(path))


def _canonical_strict(path: str | os.PathLike[str]) -> str:
    return os.fspath(Path(path).resolve(strict=True))


def _norm(path: str) -> str:
    return os.path.normcase(path)


def is_within_root(*, root: str, path: str) -> bool:
    """String-prefix containment on canonical, separator-terminated paths."""

    root_norm = _norm(root)
    path_norm = _norm(path)
    if path_norm == root_norm:
        return True
    prefix = root_norm if root_norm.endswith(os.sep) else root_norm + os.sep
    return path_norm.startswith(prefix)


def canonical_directory(path: str | os.PathLike[str]) -> str:
    real = _canonical(path)
    if not os.path.isdir(real):
        raise DirectoryError(f"Invalid base directory: {os.fspath(path)}")
    return real


@dataclass(frozen=True)
class SandboxRoot:
    path: Path

    @classmethod
    def open(cls, path: str | os.PathLike[str]) -> "SandboxRoot":
        return cls(Path(canonical_directory(path)))

    def __post_init__(self) -> None:
        root = Path(self.path)
        if not root.is_absolute():
            raise DirectoryError(f"sandbox root must be absolute: {root}")
        if not root.is_dir():
            raise DirectoryError(f"sandbox root is not a directory: {root}")
        object.__setattr__(self, "path", root)

    def __fspath__(self) -> str:
        return os.fspath(self.path)

    def contains(self, path: str | os.PathLike[str]) -> bool:
        return is_within_root(root=os.fspath(self.path), path=_canonical(path))

    def relative(self, path: str | os.PathLike[str]) -> str:
        rel = os.path.relpath(os.fspath(path), os.fspath(self.path))
        if rel == ".":
            return ""
        return rel.replace(os.sep, "/")


def resolve_safe_path(root: str | os.PathLike[str], user_path: str) -> Path:
    """Resolve a caller-supplied relative path within ``root``.

    Only the parent directory has to exist; it is canonicalized (symlinks and
    ``..`` resolved) and must be the root or lie beneath it. The returned path
    is the canonical parent joined with the unresolved leaf, so it may name an
    entry that does not exist yet.
    """

    real_root = canonical_directory(root)

    if "\x00" in user_path:
        raise ValidationError("Path contains invalid characters.", code="INVALID_PATH")

    if user_path in _ROOT_ALIASES:
        return Path(real_root)

    stripped = user_path.lstrip(_LEADING_SEPARATORS)
    if stripped in _ROOT_ALIASES:
        return Path(real_root)

    combined = Path(real_root) / stripped
    if combined == Path(real_root):
        # Only "." segments, e.g. ".//" or "././".
        return Path(real_root)
    leaf = combined.name

    # Traversal out of the root is reported as such even when the target
    # parent does not exist.
    if not is_within_root(root=real_root, path=_canonical(combined.parent)):
        raise ContainmentError("Attempt to escape base directory.")

    try:
        real_parent = _canonical_strict(combined.parent)
    except (FileNotFoundError, NotADirectoryError) as exc:
        raise NotFoundError("Parent directory does not exist.") from exc
    except (OSError, RuntimeError) as exc:
        raise NotFoundError(f"Parent directory cannot be resolved: {exc}") from exc

    if not is_within_root(root=real_root, path=real_parent):
        raise ContainmentError("Attempt to escape base directory.")

    if leaf in {"", ".", ".."}:
        # pathlib keeps a trailing ".." as the leaf; resolve it in full.
        resolved = _canonical(combined)
        if not is_within_root(root=real_root, path=resolved):
            raise ContainmentError("Attempt to escape base directory.")
        return Path(resolved)

    result = Path(real_parent) / leaf
    if os.path.lexists(result) and not is_within_root(root=real_root, path=_canonical(result)):
        raise ContainmentError("Path resolves outside base directory.")
    return result


class PathResolver:
    def __init__(self, root: SandboxRoot) -> None:
        self._root = root

    @property
    def root(self) -> SandboxRoot:
        return self._root

    def resolve(self, user_path: str) -> Path:
        return resolve_safe_path(self._root.path, user_path)

    def resolve_directory(self, user_path: str) -> Path:
        target = self.resolve(user_path)
        if not target.is_dir():
            raise NotFoundError(f"Specified path is not a directory: {user_path}")
        return target
