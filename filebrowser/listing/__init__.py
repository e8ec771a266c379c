from .directory_scanner import DirectoryItem, ItemType, scan_directory

__all__ = [
    "DirectoryItem",
    "ItemType",
    "scan_directory",
]
