"""Storage layer - Firestore and in-memory implementations."""

from minechat.storage.base import StorageBackend
from minechat.storage.firestore import FirestoreStorage
from minechat.storage.memory import InMemoryStorage

__all__ = ["StorageBackend", "FirestoreStorage", "InMemoryStorage"]
