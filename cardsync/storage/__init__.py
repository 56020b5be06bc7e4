"""Local and remote key-value storage.

Provides:
- A durable SQLite key-value map for the local cache and counters
- Callback-style remote backends (HTTP, in-memory, local fallback)
- A timeout-bounded RemoteStore over those backends
"""

from .backends import HttpBackend, KeyValueBackend, LocalBackend, MemoryBackend
from .local_store import LocalStore
from .remote_store import RemoteStore

__all__ = [
    "HttpBackend",
    "KeyValueBackend",
    "LocalBackend",
    "MemoryBackend",
    "LocalStore",
    "RemoteStore",
]
