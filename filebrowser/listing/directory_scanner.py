from __future__ import annotations

import enum
import logging
import os
import stat
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from filebrowser.security.errors import DirectoryError

logger = logging.getLogger(__name__)

_REPARSE_ATTR = getattr(stat, "FILE_ATTRIBUTE_REPARSE_POINT", 0)


class ItemType(str, enum.Enum):
    FILE = "file"
    DIRECTORY = "directory"


def _is_reparse_point(st: os.stat_result | None) -> bool:
    if st is None:
        return False
    return bool(getattr(st, "st_file_attributes", 0) & _REPARSE_ATTR)


@dataclass(frozen=True)
class DirectoryItem:
    type: ItemType
    name: str
    size: int | None = None
    rel_path: str = ""

    def __post_init__(self) -> None:
        if self.type is ItemType.FILE and self.size is None:
            raise ValueError("File size must be specified for files.")
        if self.type is ItemType.DIRECTORY and self.size is not None:
            raise ValueError("Size for directories must be None.")
        if not self.rel_path:
            object.__setattr__(self, "rel_path", self.name)

    def as_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"type": self.type.value, "name": self.name}
        if self.type is ItemType.FILE:
            data["size"] = self.size
        if self.rel_path != self.name:
            data["rel_path"] = self.rel_path
        return data


def _sort_key(item: DirectoryItem) -> tuple[int, str]:
    return (0 if item.type is ItemType.DIRECTORY else 1, item.rel_path)


def scan_directory(path: str | Path, *, recursive: bool = False) -> list[DirectoryItem]:
    """List a directory: directories first, then files, each by name.

    Symlinks and junctions are skipped and never followed.
    """

    root = Path(path)
    if not root.is_dir() or not os.access(root, os.R_OK):
        raise DirectoryError(f"Directory not accessible: {root}", code="DIRECTORY_NOT_ACCESSIBLE")

    items: list[DirectoryItem] = []
    stack: list[tuple[Path, str]] = [(root, "")]

    while stack:
        abs_dir, rel_dir = stack.pop()
        try:
            it = os.scandir(abs_dir)
        except OSError as exc:
            if rel_dir == "":
                raise DirectoryError(f"Failed to scan directory: {root}: {exc}") from exc
            logger.warning("SCANDIR_FAILED: %s (%s)", rel_dir, exc)
            continue

        with it:
            for entry in it:
                child_rel = f"{rel_dir}/{entry.name}" if rel_dir else entry.name
                try:
                    st = entry.stat(follow_symlinks=False)
                except OSError as exc:
                    logger.warning("STAT_FAILED: %s (%s)", child_rel, exc)
                    continue

                if entry.is_symlink() or _is_reparse_point(st):
                    logger.debug("LINK_SKIPPED: %s", child_rel)
                    continue

                if stat.S_ISDIR(st.st_mode):
                    items.append(DirectoryItem(ItemType.DIRECTORY, entry.name, None, child_rel))
                    if recursive:
                        stack.append((Path(entry.path), child_rel))
                    continue

                if stat.S_ISREG(st.st_mode):
                    items.append(DirectoryItem(ItemType.FILE, entry.name, int(st.st_size), child_rel))

    items.sort(key=_sort_key)
    return items
