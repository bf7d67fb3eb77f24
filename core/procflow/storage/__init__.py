"""Storage backends for engine records."""

from procflow.storage.backend import InMemoryStorage
from procflow.storage.file_store import FileStorage

__all__ = ["InMemoryStorage", "FileStorage"]
