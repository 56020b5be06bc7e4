"""Timeout-bounded adapter over a callback-style key-value backend."""

import asyncio
import logging
from typing import Any, Callable

from ..errors import BackendError, RemoteTimeoutError
from .backends import Callback, KeyValueBackend, LocalBackend
from .local_store import LocalStore

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 10.0
FALLBACK_NAMESPACE = "remote_fallback"


class RemoteStore:
    """Remote key-value store with a local fallback.

    The backend is chosen once at construction: the primary backend when it
    reports itself available, otherwise a LocalBackend over the fallback
    store. Every operation is bounded by ``timeout``; a backend that never
    invokes its callback surfaces as RemoteTimeoutError.
    """

    def __init__(
        self,
        primary: KeyValueBackend | None,
        fallback: LocalStore,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
    ):
        """Initialize the remote store.

        Args:
            primary: Remote backend, or None if none is configured.
            fallback: Local store used when the primary is unavailable.
            timeout: Deadline in seconds for each operation.
        """
        self.timeout = timeout
        self._primary = primary

        if primary is not None and primary.is_available():
            self._backend: KeyValueBackend = primary
            self._using_primary = True
        else:
            self._backend = LocalBackend(fallback)
            self._using_primary = False

        logger.info(
            f"RemoteStore initialized: type={self.backend_name}, "
            f"primary_configured={primary is not None}, timeout={timeout}s"
        )

    @property
    def backend_name(self) -> str:
        return "remote" if self._using_primary else "local"

    @property
    def max_value_length(self) -> int:
        return self._backend.max_value_length

    async def _call(
        self,
        operation: str,
        key: str | None,
        invoke: Callable[[Callback], None],
    ) -> Any:
        """Run a callback-style backend call and await its result.

        Returns:
            Tuple of (error, result) as reported by the backend.
        """
        loop = asyncio.get_running_loop()
        future: asyncio.Future = loop.create_future()

        def resolve(error: str | None, result: Any) -> None:
            if not future.done():
                future.set_result((error, result))

        def callback(error: str | None, result: Any) -> None:
            loop.call_soon_threadsafe(resolve, error, result)

        try:
            invoke(callback)
        except Exception as e:
            raise BackendError(f"{operation} failed: {e}") from e

        try:
            return await asyncio.wait_for(future, timeout=self.timeout)
        except asyncio.TimeoutError:
            logger.warning(f"Remote {operation} timed out after {self.timeout}s: {key}")
            raise RemoteTimeoutError(operation, key, self.timeout) from None

    async def set(self, key: str, value: str) -> None:
        """Store a value.

        Raises:
            BackendError: If the value is too long or the backend fails.
            RemoteTimeoutError: If the backend does not answer in time.
        """
        if len(value) > self.max_value_length:
            raise BackendError(
                f"Value for {key} is {len(value)} characters, "
                f"limit is {self.max_value_length}"
            )

        error, success = await self._call(
            "set", key, lambda cb: self._backend.set_item(key, value, cb)
        )
        if error:
            raise BackendError(error)
        if not success:
            raise BackendError(f"Failed to save {key}")
        logger.debug(f"Saved to {self.backend_name} storage: {key}")

    async def get(self, key: str) -> str | None:
        """Fetch a value, or None if absent."""
        error, value = await self._call(
            "get", key, lambda cb: self._backend.get_item(key, cb)
        )
        if error:
            raise BackendError(error)
        logger.debug(
            f"Loaded from {self.backend_name} storage: {key} "
            f"({'found' if value is not None else 'not found'})"
        )
        return value

    async def remove(self, key: str) -> None:
        """Remove a value. Removing an absent key succeeds."""
        error, success = await self._call(
            "remove", key, lambda cb: self._backend.remove_item(key, cb)
        )
        if error:
            raise BackendError(error)
        if not success:
            raise BackendError(f"Failed to remove {key}")
        logger.debug(f"Removed from {self.backend_name} storage: {key}")

    async def get_all_keys(self) -> list[str]:
        error, keys = await self._call(
            "get_keys", None, lambda cb: self._backend.get_keys(cb)
        )
        if error:
            raise BackendError(error)
        if keys is None:
            raise BackendError("Failed to get keys")
        return list(keys)

    async def clear(self) -> int:
        """Remove every key, best effort.

        Returns:
            Number of keys removed.
        """
        keys = await self.get_all_keys()
        removed = 0
        for key in keys:
            try:
                await self.remove(key)
                removed += 1
            except (BackendError, RemoteTimeoutError) as e:
                logger.warning(f"Failed to remove {key} during clear: {e}")

        logger.info(f"Cleared {removed}/{len(keys)} keys from {self.backend_name} storage")
        return removed

    async def close(self) -> None:
        """Release the primary backend's resources, if it holds any."""
        close = getattr(self._primary, "close", None)
        if close is not None:
            await close()
