from __future__ import annotations

import json
import threading
import time
import uuid
from dataclasses import dataclass
from pathlib import Path
from typing import Any


@dataclass(frozen=True)
class OperationLogEntry:
    id: str
    ts_ms: int
    op: str  # "upload" | "rename" | "trash"
    src_rel_path: str
    dst_rel_path: str | None
    success: bool
    error: str | None

    def as_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "ts_ms": self.ts_ms,
            "op": self.op,
            "src_rel_path": self.src_rel_path,
            "dst_rel_path": self.dst_rel_path,
            "success": self.success,
            "error": self.error,
        }


class OperationLogStore:
    def __init__(self, *, path: str | Path) -> None:
        self._path = Path(path)
        self._lock = threading.Lock()

    @property
    def path(self) -> Path:
        return self._path

    def append(self, entry: OperationLogEntry) -> None:
        line = json.dumps(entry.as_dict(), ensure_ascii=False)
        self._path.parent.mkdir(parents=True, exist_ok=True)
        with self._lock:
            with self._path.open("a", encoding="utf-8", newline="\n") as f:
                f.write(line)
                f.write("\n")

    def record(
        self,
        *,
        op: str,
        src_rel_path: str,
        dst_rel_path: str | None,
        success: bool,
        error: str | None,
    ) -> OperationLogEntry:
        entry = OperationLogEntry(
            id=str(uuid.uuid4()),
            ts_ms=int(time.time() * 1000),
            op=op,
            src_rel_path=src_rel_path,
            dst_rel_path=dst_rel_path,
            success=success,
            error=error,
        )
        self.append(entry)
        return entry

    def read_entries(self) -> list[OperationLogEntry]:
        if not self._path.exists():
            return []
        entries: list[OperationLogEntry] = []
        with self._lock:
            lines = self._path.read_text(encoding="utf-8").splitlines()
        for line in lines:
            if not line.strip():
                continue
            data = json.loads(line)
            entries.append(OperationLogEntry(**data))
        return entries
