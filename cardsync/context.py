"""Wiring of stores, tracker and engine for one data set."""

import logging
from dataclasses import dataclass

from .config import Config
from .errors import BackendUnavailable
from .storage import HttpBackend, KeyValueBackend, LocalStore, MemoryBackend, RemoteStore
from .storage.remote_store import FALLBACK_NAMESPACE
from .sync import RevisionTracker, SyncEngine

logger = logging.getLogger(__name__)


def create_backend(config: Config) -> KeyValueBackend | None:
    """Build the remote backend named in the configuration.

    Returns:
        The backend, or None when no remote is configured.

    Raises:
        BackendUnavailable: If the configured backend cannot be built.
    """
    remote = config.remote
    if remote.backend == "http":
        if not remote.url:
            raise BackendUnavailable("HTTP backend selected but no URL configured")
        return HttpBackend(remote.url, max_value_length=remote.max_value_length)
    if remote.backend == "memory":
        return MemoryBackend(max_value_length=remote.max_value_length)
    if remote.backend not in ("none", ""):
        raise BackendUnavailable(f"Unknown remote backend {remote.backend!r}")
    return None


@dataclass
class SyncContext:
    """Everything needed to sync one data set.

    Build it once at startup with create() and hand it to the parts of the
    application that read or write data. close() stops background work and
    releases the database.
    """

    config: Config
    local: LocalStore
    remote: RemoteStore
    tracker: RevisionTracker
    engine: SyncEngine

    @classmethod
    def create(
        cls,
        config: Config,
        backend: KeyValueBackend | None = None,
        local: LocalStore | None = None,
    ) -> "SyncContext":
        """Construct a context from configuration.

        Args:
            config: Loaded configuration.
            backend: Remote backend; built from config when omitted.
            local: Local store; opened at config.storage.db_path when omitted.
        """
        if local is None:
            local = LocalStore(config.storage.db_path)
        local.connect()

        if backend is None:
            try:
                backend = create_backend(config)
            except BackendUnavailable as e:
                logger.warning(f"{e}, using local storage")

        remote = RemoteStore(
            primary=backend,
            fallback=local.scoped(FALLBACK_NAMESPACE),
            timeout=config.remote.timeout_seconds,
        )
        tracker = RevisionTracker(local, base_key=config.storage.base_key)
        engine = SyncEngine(
            local=local,
            remote=remote,
            tracker=tracker,
            base_key=config.storage.base_key,
            max_chunk_size=config.remote.max_chunk_size,
            chunk_delay=config.remote.chunk_delay_seconds,
            throttle_seconds=config.sync.throttle_seconds,
            sync_interval=config.sync.interval_seconds,
        )
        return cls(config=config, local=local, remote=remote, tracker=tracker, engine=engine)

    async def initialize(self) -> str:
        """Load the data set; starts periodic sync when enabled."""
        payload = await self.engine.initialize()
        if not self.config.sync.enabled:
            self.engine.stop_periodic_sync()
        return payload

    async def close(self) -> None:
        await self.engine.close()
        await self.remote.close()
        self.local.close()

    async def __aenter__(self) -> "SyncContext":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()
