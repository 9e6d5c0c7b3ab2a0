"""File-based persistence for groups, key packages, messages and MLS state."""

from .file_store import FileStore, atomic_write, atomic_write_json
from .models import GroupMessage, StoredGroup, StoredKeyPackage

__all__ = [
    "FileStore",
    "GroupMessage",
    "StoredGroup",
    "StoredKeyPackage",
    "atomic_write",
    "atomic_write_json",
]
