"""Data and storage backends for mortgagepro."""

from mortgagepro.backends.base import DataBackend, StorageBackend
from mortgagepro.backends.memory import MemoryBackend, MemoryStorage
from mortgagepro.backends.query import TableQuery
from mortgagepro.backends.rest import RestBackend, RestStorage

__all__ = [
    "DataBackend",
    "MemoryBackend",
    "MemoryStorage",
    "RestBackend",
    "RestStorage",
    "StorageBackend",
    "TableQuery",
]
