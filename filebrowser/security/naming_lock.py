from __future__ import annotations

import hashlib
import logging
import os
import threading
import time
from contextlib import contextmanager
from pathlib import Path
from typing import IO, Iterator

from .errors import LockTimeoutError

if os.name == "nt":
    import msvcrt
else:
    import fcntl

logger = logging.getLogger(__name__)

DEFAULT_LOCK_TIMEOUT_S = 10.0
LOCK_FILE_SUFFIX = ".lock"
_POLL_INTERVAL_S = 0.01


def default_lock_dir() -> Path:
    if os.name == "nt":
        root = os.environ.get("LOCALAPPDATA") or os.environ.get("APPDATA")
        if root:
            return Path(root) / "web-file-browser" / "cache" / "locks"

    root = os.environ.get("XDG_CACHE_HOME")
    if root:
        return Path(root) / "web-file-browser" / "locks"
    return Path.home() / ".cache" / "web-file-browser" / "locks"


def _try_lock(f: IO[bytes]) -> bool:
    if os.name == "nt":
        try:
            f.seek(0)
            msvcrt.locking(f.fileno(), msvcrt.LK_NBLCK, 1)
        except OSError:
            return False
        return True

    try:
        fcntl.flock(f.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)
    except BlockingIOError:
        return False
    return True


def _unlock(f: IO[bytes]) -> None:
    if os.name == "nt":
        f.seek(0)
        msvcrt.locking(f.fileno(), msvcrt.LK_UNLCK, 1)
        return
    fcntl.flock(f.fileno(), fcntl.LOCK_UN)


def _still_linked(f: IO[bytes], path: Path) -> bool:
    # A sweep may unlink the file between open() and flock(); a lock on an
    # orphaned inode excludes nobody.
    if os.name == "nt":
        return True
    try:
        on_disk = os.stat(path)
    except FileNotFoundError:
        return False
    return os.fstat(f.fileno()).st_ino == on_disk.st_ino


class _KeyState:
    __slots__ = ("rlock", "depth", "handle", "users")

    def __init__(self) -> None:
        self.rlock = threading.RLock()
        self.depth = 0
        self.handle: IO[bytes] | None = None
        self.users = 0


class NamingLocks:
    """Directory-scoped locks serializing the "pick a free name" step.

    Within one process a re-entrant mutex keyed by the canonical directory is
    enough. With ``cross_process=True`` an advisory lock on a file in
    ``lock_dir`` is taken as well, so independent processes sharing a
    directory coordinate too. Lock files are never created inside the locked
    directory itself.
    """

    def __init__(
        self,
        *,
        lock_dir: Path | None = None,
        cross_process: bool = False,
        timeout_s: float = DEFAULT_LOCK_TIMEOUT_S,
    ) -> None:
        if timeout_s <= 0:
            raise ValueError("timeout_s must be > 0")
        self._lock_dir = Path(lock_dir) if lock_dir is not None else default_lock_dir()
        self._cross_process = bool(cross_process)
        self._timeout_s = float(timeout_s)
        self._states_lock = threading.Lock()
        self._states: dict[str, _KeyState] = {}

    @property
    def lock_dir(self) -> Path:
        return self._lock_dir

    @property
    def cross_process(self) -> bool:
        return self._cross_process

    def _checkout(self, key: str) -> _KeyState:
        with self._states_lock:
            state = self._states.get(key)
            if state is None:
                state = _KeyState()
                self._states[key] = state
            state.users += 1
            return state

    def _checkin(self, key: str, state: _KeyState) -> None:
        # Entries live only while some thread holds or waits for the key.
        with self._states_lock:
            state.users -= 1
            if state.users == 0:
                self._states.pop(key, None)

    def lock_file_for(self, directory: str | os.PathLike[str]) -> Path:
        key = os.path.realpath(os.fspath(directory))
        digest = hashlib.sha1(key.encode("utf-8", "surrogateescape")).hexdigest()
        return self._lock_dir / f"{digest}{LOCK_FILE_SUFFIX}"

    @contextmanager
    def hold(self, directory: str | os.PathLike[str]) -> Iterator[None]:
        key = os.path.realpath(os.fspath(directory))
        state = self._checkout(key)
        try:
            with self._locked(key, state):
                yield
        finally:
            self._checkin(key, state)

    @contextmanager
    def _locked(self, key: str, state: _KeyState) -> Iterator[None]:
        deadline = time.monotonic() + self._timeout_s
        if not state.rlock.acquire(timeout=self._timeout_s):
            raise LockTimeoutError(f"timed out waiting for naming lock on {key}; retry later")
        try:
            if state.depth == 0 and self._cross_process:
                state.handle = self._acquire_file_lock(key, deadline=deadline)
            state.depth += 1
            logger.debug("naming lock acquired: %s (depth=%d)", key, state.depth)
            try:
                yield
            finally:
                state.depth -= 1
                if state.depth == 0 and state.handle is not None:
                    handle, state.handle = state.handle, None
                    self._release_file_lock(handle)
        finally:
            state.rlock.release()

    def _acquire_file_lock(self, key: str, *, deadline: float) -> IO[bytes]:
        lock_path = self.lock_file_for(key)
        lock_path.parent.mkdir(parents=True, exist_ok=True)
        while True:
            f = open(lock_path, "a+b")
            try:
                while not _try_lock(f):
                    if time.monotonic() >= deadline:
                        raise LockTimeoutError(f"timed out waiting for lock file {lock_path}; retry later")
                    time.sleep(_POLL_INTERVAL_S)
                if _still_linked(f, lock_path):
                    os.utime(lock_path)
                    return f
                _unlock(f)
            except BaseException:
                f.close()
                raise
            f.close()

    def _release_file_lock(self, handle: IO[bytes]) -> None:
        try:
            _unlock(handle)
        except OSError as exc:
            logger.warning("failed to release lock file %s: %s", handle.name, exc)
        finally:
            handle.close()

    def sweep(self, *, max_age_s: float) -> int:
        """Remove lock files untouched for ``max_age_s`` that nobody holds."""

        try:
            entries = list(self._lock_dir.glob(f"*{LOCK_FILE_SUFFIX}"))
        except OSError:
            return 0

        now = time.time()
        removed = 0
        for entry in entries:
            try:
                st = entry.stat()
            except FileNotFoundError:
                continue
            if now - st.st_mtime <= max_age_s:
                continue

            try:
                f = open(entry, "a+b")
            except OSError:
                continue

            locked = False
            try:
                locked = _try_lock(f)
                if locked and os.name != "nt":
                    entry.unlink(missing_ok=True)
                    removed += 1
                if locked:
                    _unlock(f)
            except OSError as exc:
                logger.debug("lock sweep skipped %s: %s", entry, exc)
            finally:
                f.close()

            if locked and os.name == "nt":
                try:
                    entry.unlink(missing_ok=True)
                    removed += 1
                except OSError as exc:
                    logger.debug("lock sweep skipped %s: %s", entry, exc)

        if removed:
            logger.info("swept %d stale naming lock file(s) from %s", removed, self._lock_dir)
        return removed


_shared_locks: NamingLocks | None = None
_shared_locks_guard = threading.Lock()


def shared_naming_locks() -> NamingLocks:
    """Process-wide in-process registry used by the module-level helpers."""

    global _shared_locks
    with _shared_locks_guard:
        if _shared_locks is None:
            _shared_locks = NamingLocks()
        return _shared_locks
