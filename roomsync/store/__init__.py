"""Server-side storage: byte-keyed engines and the per-room message log."""

from .kv import KeyValueStore, MemoryKeyValueStore, SQLiteKeyValueStore, StoreError
from .message_store import Message, MessageStore

__all__ = [
    "KeyValueStore",
    "MemoryKeyValueStore",
    "SQLiteKeyValueStore",
    "StoreError",
    "Message",
    "MessageStore",
]
