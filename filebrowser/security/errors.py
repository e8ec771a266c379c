from __future__ import annotations


class FileOpsError(ValueError):
    retryable = False

    def __init__(self, code: str, message: str, *, http_status: int = 400) -> None:
        super().__init__(message)
        self.code = code
        self.message = message
        self.http_status = http_status


class ContainmentError(FileOpsError):
    """Caller path resolves outside its sandbox root."""

    def __init__(self, message: str, *, code: str = "CONTAINMENT_VIOLATION") -> None:
        super().__init__(code, message, http_status=400)


class ValidationError(FileOpsError):
    def __init__(self, message: str, *, code: str = "INVALID_NAME", http_status: int = 400) -> None:
        super().__init__(code, message, http_status=http_status)


class NotFoundError(FileOpsError):
    def __init__(self, message: str, *, code: str = "NOT_FOUND") -> None:
        super().__init__(code, message, http_status=404)


class ConflictError(FileOpsError):
    def __init__(self, message: str, *, code: str = "CONFLICT") -> None:
        super().__init__(code, message, http_status=409)


class DirectoryError(FileOpsError):
    """Target directory is missing, not a directory, or not writable."""

    def __init__(self, message: str, *, code: str = "DIRECTORY_ERROR") -> None:
        super().__init__(code, message, http_status=500)


class IoError(FileOpsError):
    def __init__(self, message: str, *, code: str = "IO_ERROR", http_status: int = 500) -> None:
        super().__init__(code, message, http_status=http_status)


class LockTimeoutError(IoError):
    retryable = True

    def __init__(self, message: str) -> None:
        super().__init__(message, code="LOCK_TIMEOUT", http_status=503)
