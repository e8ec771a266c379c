from .errors import (
    ConflictError,
    ContainmentError,
    DirectoryError,
    FileOpsError,
    IoError,
    LockTimeoutError,
    NotFoundError,
    ValidationError,
)
from .fileops import FileMover, move_file, rename_file
from .names import NameCheck, check_file_name, validate_file_name
from .naming_lock import NamingLocks
from .paths import PathResolver, SandboxRoot, resolve_safe_path
from .sequential import CollisionResolver, construct_sequential_file_path

__all__ = [
    "CollisionResolver",
    "ConflictError",
    "ContainmentError",
    "DirectoryError",
    "FileMover",
    "FileOpsError",
    "IoError",
    "LockTimeoutError",
    "NameCheck",
    "NamingLocks",
    "NotFoundError",
    "PathResolver",
    "SandboxRoot",
    "ValidationError",
    "check_file_name",
    "construct_sequential_file_path",
    "move_file",
    "rename_file",
    "resolve_safe_path",
    "validate_file_name",
]
