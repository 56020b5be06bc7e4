"""Callback-style key-value backends.

Remote stores report completion through callbacks taking
``(error, result)``; ``error`` is None on success. RemoteStore wraps
these calls in futures.
"""

import asyncio
import logging
import sqlite3
from abc import ABC, abstractmethod
from typing import Any, Callable
from urllib.parse import quote

import httpx

from .local_store import LocalStore

logger = logging.getLogger(__name__)

Callback = Callable[[str | None, Any], None]

# Telegram CloudStorage caps values at 4096 characters
DEFAULT_MAX_VALUE_LENGTH = 4096


class KeyValueBackend(ABC):
    """Abstract base for asynchronous key-value backends."""

    max_value_length: int = DEFAULT_MAX_VALUE_LENGTH

    @abstractmethod
    def is_available(self) -> bool:
        """Return True if the backend can be used."""
        pass

    @abstractmethod
    def set_item(self, key: str, value: str, callback: Callback) -> None:
        """Store a value; callback receives (error, success)."""
        pass

    @abstractmethod
    def get_item(self, key: str, callback: Callback) -> None:
        """Fetch a value; callback receives (error, value or None)."""
        pass

    @abstractmethod
    def remove_item(self, key: str, callback: Callback) -> None:
        """Remove a value; callback receives (error, success)."""
        pass

    @abstractmethod
    def get_keys(self, callback: Callback) -> None:
        """List stored keys; callback receives (error, keys)."""
        pass


class LocalBackend(KeyValueBackend):
    """Backend over a LocalStore namespace, used when no remote is available.

    Callbacks fire synchronously.
    """

    max_value_length = 1_000_000

    def __init__(self, store: LocalStore):
        self._store = store

    def is_available(self) -> bool:
        return True

    def set_item(self, key: str, value: str, callback: Callback) -> None:
        try:
            self._store.set(key, value)
        except sqlite3.Error as e:
            callback(f"Failed to save to local store: {e}", False)
            return
        callback(None, True)

    def get_item(self, key: str, callback: Callback) -> None:
        try:
            value = self._store.get(key)
        except sqlite3.Error as e:
            callback(f"Failed to read from local store: {e}", None)
            return
        callback(None, value)

    def remove_item(self, key: str, callback: Callback) -> None:
        try:
            self._store.remove(key)
        except sqlite3.Error as e:
            callback(f"Failed to remove from local store: {e}", False)
            return
        callback(None, True)

    def get_keys(self, callback: Callback) -> None:
        try:
            keys = self._store.keys()
        except sqlite3.Error as e:
            callback(f"Failed to list local store: {e}", None)
            return
        callback(None, keys)


class MemoryBackend(KeyValueBackend):
    """In-process backend with asynchronous delivery.

    Useful for tests and demos. Supports simulated latency, failures and
    hangs (callbacks that never fire).
    """

    def __init__(
        self,
        max_value_length: int = DEFAULT_MAX_VALUE_LENGTH,
        latency: float = 0.0,
        available: bool = True,
    ):
        """Initialize the memory backend.

        Args:
            max_value_length: Longest value accepted by set_item.
            latency: Seconds before each callback fires.
            available: Value reported by is_available().
        """
        self.max_value_length = max_value_length
        self.latency = latency
        self.available = available
        self.data: dict[str, str] = {}
        self.calls: list[tuple[str, str | None]] = []
        self.fail_keys: set[str] = set()
        self.fail_error: str | None = None
        self.hang = False

    def is_available(self) -> bool:
        return self.available

    def _deliver(self, callback: Callback, error: str | None, result: Any) -> None:
        if self.hang:
            return
        loop = asyncio.get_running_loop()
        if self.latency > 0:
            loop.call_later(self.latency, callback, error, result)
        else:
            loop.call_soon(callback, error, result)

    def _failure(self, key: str | None) -> str | None:
        if self.fail_error:
            return self.fail_error
        if key is not None and key in self.fail_keys:
            return f"Injected failure for {key}"
        return None

    def set_item(self, key: str, value: str, callback: Callback) -> None:
        self.calls.append(("set", key))
        if error := self._failure(key):
            self._deliver(callback, error, False)
            return
        if len(value) > self.max_value_length:
            self._deliver(callback, "VALUE_TOO_LONG", False)
            return
        self.data[key] = value
        self._deliver(callback, None, True)

    def get_item(self, key: str, callback: Callback) -> None:
        self.calls.append(("get", key))
        if error := self._failure(key):
            self._deliver(callback, error, None)
            return
        self._deliver(callback, None, self.data.get(key))

    def remove_item(self, key: str, callback: Callback) -> None:
        self.calls.append(("remove", key))
        if error := self._failure(key):
            self._deliver(callback, error, False)
            return
        self.data.pop(key, None)
        self._deliver(callback, None, True)

    def get_keys(self, callback: Callback) -> None:
        self.calls.append(("keys", None))
        if error := self._failure(None):
            self._deliver(callback, error, None)
            return
        self._deliver(callback, None, sorted(self.data))


class HttpBackend(KeyValueBackend):
    """Backend speaking a small REST key-value protocol.

    Endpoints (relative to base_url):
    - GET /kv: JSON list of keys
    - GET /kv/{key}: JSON {"value": ...} or 404
    - PUT /kv/{key}: JSON body {"value": ...}
    - DELETE /kv/{key}: 404 counts as success
    """

    def __init__(
        self,
        base_url: str,
        max_value_length: int = DEFAULT_MAX_VALUE_LENGTH,
        request_timeout: float = 30.0,
        headers: dict[str, str] | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        """Initialize the HTTP backend.

        Args:
            base_url: Base URL of the key-value service.
            max_value_length: Longest value the service accepts.
            request_timeout: Transport-level timeout in seconds.
            headers: Extra headers sent with every request.
            transport: Custom httpx transport (e.g. httpx.MockTransport).
        """
        self.base_url = base_url.rstrip("/")
        self.max_value_length = max_value_length
        self._client = httpx.AsyncClient(
            timeout=request_timeout, headers=headers or {}, transport=transport
        )
        self._tasks: set[asyncio.Task] = set()

    def is_available(self) -> bool:
        return bool(self.base_url)

    def _url(self, key: str | None = None) -> str:
        if key is None:
            return f"{self.base_url}/kv"
        return f"{self.base_url}/kv/{quote(key, safe='')}"

    def _spawn(self, coro, callback: Callback, failed: Any) -> None:
        async def runner() -> None:
            try:
                result = await coro
            except (httpx.HTTPError, ValueError) as e:
                logger.debug(f"HTTP backend request failed: {e}")
                callback(str(e) or type(e).__name__, failed)
                return
            callback(None, result)

        task = asyncio.get_running_loop().create_task(runner())
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _set(self, key: str, value: str) -> bool:
        response = await self._client.put(self._url(key), json={"value": value})
        response.raise_for_status()
        return True

    async def _get(self, key: str) -> str | None:
        response = await self._client.get(self._url(key))
        if response.status_code == 404:
            return None
        response.raise_for_status()
        data = response.json()
        if not isinstance(data, dict):
            raise ValueError(f"Unexpected response body for {key}")
        return data.get("value")

    async def _remove(self, key: str) -> bool:
        response = await self._client.delete(self._url(key))
        if response.status_code != 404:
            response.raise_for_status()
        return True

    async def _keys(self) -> list[str]:
        response = await self._client.get(self._url())
        response.raise_for_status()
        keys = response.json()
        if not isinstance(keys, list):
            raise ValueError("Unexpected response body for key listing")
        return keys

    def set_item(self, key: str, value: str, callback: Callback) -> None:
        self._spawn(self._set(key, value), callback, False)

    def get_item(self, key: str, callback: Callback) -> None:
        self._spawn(self._get(key), callback, None)

    def remove_item(self, key: str, callback: Callback) -> None:
        self._spawn(self._remove(key), callback, False)

    def get_keys(self, callback: Callback) -> None:
        self._spawn(self._keys(), callback, None)

    async def close(self) -> None:
        """Close the underlying HTTP client."""
        await self._client.aclose()
