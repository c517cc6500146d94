from .base import RecordStore, StoreUnavailableError
from .json_file import JsonFileStore
from .memory import InMemoryStore

__all__ = ["RecordStore", "StoreUnavailableError", "JsonFileStore", "InMemoryStore"]
