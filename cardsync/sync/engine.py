"""Revision-based synchronization of the local data set with a remote store.

Writes land in the local store first and are pushed in the background.
The remote copy is laid out as a metadata record followed by size-bounded
chunks (see codec.py). Revisions decide which side is newer; when the
server is ahead of the local writer, server data wins and local changes
are discarded.
"""

import asyncio
import json
import logging
import time
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable

from ..errors import BackendError, ConflictError, CorruptionError, RemoteTimeoutError
from ..storage.local_store import LocalStore
from ..storage.remote_store import RemoteStore
from .codec import Chunk, batch_key, join, legacy_batch_key, meta_key, split
from .metadata import MetadataV0, MetadataV1, RemoteMetadata, decode_metadata
from .revision import RevisionTracker

logger = logging.getLogger(__name__)

MIGRATED_REVISION = 1

TSV_HEADER = (
    "question\tanswer\tdue\tstability\tdifficulty\telapsed_days"
    "\tscheduled_days\treps\tlapses\tstate\tlast_review"
)

DEMO_CARDS = [("Hello", "Привет"), ("World", "Мир"), ("Cat", "Кот")]


def demo_payload() -> str:
    """Build the starter deck used when no data exists anywhere."""
    due = datetime.now().isoformat()
    rows = [f"{q}\t{a}\t{due}\t0\t0\t0\t0\t0\t0\t0\t" for q, a in DEMO_CARDS]
    return "\n".join([TSV_HEADER, *rows])


@dataclass
class LocalCache:
    """Last known payload and when it was written locally."""

    payload: str
    timestamp: datetime


class SyncEngine:
    """Keeps the local payload and the remote chunked copy in step.

    Supports:
    - Zero-latency local saves with background write-back
    - Throttled pushes guarded against overlapping attempts
    - Conflict detection against the server revision (server wins)
    - One-time migration from the legacy remote layout
    """

    def __init__(
        self,
        local: LocalStore,
        remote: RemoteStore,
        tracker: RevisionTracker,
        base_key: str = "cards",
        max_chunk_size: int = 1500,
        chunk_delay: float = 0.05,
        throttle_seconds: float = 5.0,
        sync_interval: float = 10.0,
        default_payload: Callable[[], str] = demo_payload,
        clock: Callable[[], float] = time.monotonic,
    ):
        """Initialize the sync engine.

        Args:
            local: Local store holding the payload cache.
            remote: Remote store the payload is mirrored to.
            tracker: Revision tracker for this data set.
            base_key: Prefix of every local and remote key.
            max_chunk_size: Upper bound on characters per remote chunk.
            chunk_delay: Seconds to wait between chunk writes.
            throttle_seconds: Minimum interval between push attempts.
            sync_interval: Seconds between periodic sync ticks.
            default_payload: Factory for the payload seeded on first start.
            clock: Monotonic time source used for throttling.
        """
        self.local = local
        self.remote = remote
        self.tracker = tracker
        self.base_key = base_key
        self.max_chunk_size = max_chunk_size
        self.chunk_delay = chunk_delay
        self.throttle_seconds = throttle_seconds
        self.sync_interval = sync_interval
        self._default_payload = default_payload
        self._clock = clock
        self._data_key = f"{base_key}_data"
        self._last_push_attempt: float | None = None
        self._unconfirmed_revision: int | None = None
        self._sync_task: asyncio.Task | None = None
        self._stop_event: asyncio.Event | None = None
        self._background: set[asyncio.Task] = set()

    @property
    def chunk_size(self) -> int:
        return max(1, min(self.max_chunk_size, self.remote.max_value_length))

    # ==================== Local cache ====================

    def load_local(self) -> LocalCache | None:
        """Return the locally cached payload, if any."""
        entry = self.local.get_with_timestamp(self._data_key)
        if entry is None:
            return None
        payload, timestamp = entry
        return LocalCache(payload=payload, timestamp=timestamp)

    def local_info(self) -> dict[str, Any]:
        """Describe the local cache and sync state."""
        cache = self.load_local()
        state = self.tracker.get_state()
        return {
            "has_local": cache is not None,
            "size": len(cache.payload) if cache else 0,
            "timestamp": cache.timestamp.isoformat() if cache else None,
            "backend": self.remote.backend_name,
            **state.to_dict(),
        }

    def save_locally(self, payload: str, increment_revision: bool = True) -> None:
        """Persist a payload locally and schedule a background push.

        The push runs on the current event loop without blocking the caller.
        Without a running loop the change waits for the next periodic tick.
        """
        self.local.set(self._data_key, payload)
        if increment_revision:
            self.tracker.increment_local_revision()
        logger.debug(
            f"Saved locally: {len(payload)} characters, "
            f"revision={self.tracker.revision_local}"
        )

        if self.tracker.needs_cloud_write():
            self._schedule_push()

    def clear_local(self) -> None:
        """Drop the local payload and reset revision state."""
        self.local.remove(self._data_key)
        self.tracker.reset()
        self._unconfirmed_revision = None
        logger.info("Cleared local data")

    def _schedule_push(self) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.debug("No running event loop, push deferred to periodic sync")
            return

        task = loop.create_task(self._background_push())
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    async def _background_push(self) -> None:
        try:
            await self.push_to_remote()
        except Exception as e:
            logger.exception("Background push failed")
            self.tracker.mark_sync_failed(e)

    # ==================== Remote layout ====================

    async def _read_metadata(self, base: str | None = None) -> RemoteMetadata | None:
        raw = await self.remote.get(meta_key(base or self.base_key))
        if raw is None:
            return None
        return decode_metadata(raw)

    async def _current_metadata(self) -> MetadataV1 | None:
        """Read the metadata record, migrating legacy data first if needed."""
        meta = await self._read_metadata()
        if isinstance(meta, MetadataV1):
            return meta

        if await self.migrate():
            return await self._read_metadata()
        return None

    async def _write_chunked(
        self,
        base: str,
        payload: str,
        revision: int,
        previous_batches: int = 0,
        metadata_first: bool = True,
    ) -> int:
        """Write a payload as metadata plus chunks.

        Chunks are written one at a time. Chunks left over from a previous,
        larger write are removed afterwards.

        Returns:
            Number of chunks written.
        """
        chunks = split(payload, self.chunk_size)
        meta = MetadataV1(revision=revision, batches=len(chunks))

        if metadata_first:
            await self.remote.set(meta_key(base), meta.encode())

        for chunk in chunks:
            if chunk.index > 0 and self.chunk_delay > 0:
                await asyncio.sleep(self.chunk_delay)
            await self.remote.set(batch_key(base, chunk.index), chunk.content)

        if not metadata_first:
            await self.remote.set(meta_key(base), meta.encode())

        for index in range(len(chunks), previous_batches):
            try:
                await self.remote.remove(batch_key(base, index))
            except (BackendError, RemoteTimeoutError) as e:
                logger.warning(f"Failed to remove stale chunk {index}: {e}")

        logger.info(
            f"Wrote {len(payload)} characters in {len(chunks)} chunks "
            f"at revision {revision}"
        )
        return len(chunks)

    async def _read_chunked(self, base: str, meta: MetadataV1) -> str:
        chunks = []
        for index in range(meta.batches):
            content = await self.remote.get(batch_key(base, index))
            if content is None:
                raise CorruptionError(f"Missing chunk {index} of {meta.batches}")
            chunks.append(Chunk(index=index, content=content))
        return join(chunks, meta.batches)

    async def _remove_chunked(self, base: str, batches: int) -> None:
        await self.remote.remove(meta_key(base))
        for index in range(batches):
            await self.remote.remove(batch_key(base, index))

    # ==================== Pull / push ====================

    async def pull_from_remote(self) -> str | None:
        """Replace the local payload with the server's copy.

        Returns:
            The remote payload, or None if the remote holds no usable data.
            The local cache is untouched in that case.

        Raises:
            BackendError, RemoteTimeoutError: On transport failures.
        """
        try:
            meta = await self._current_metadata()
            if meta is None:
                logger.info("No remote data found")
                return None
            payload = await self._read_chunked(self.base_key, meta)
        except CorruptionError as e:
            logger.warning(f"Remote data unusable, keeping local data: {e}")
            return None

        self.local.set(self._data_key, payload)
        self.tracker.mark_data_updated_from_server(meta.revision)
        logger.info(
            f"Pulled {len(payload)} characters from remote at revision {meta.revision}"
        )
        return payload

    async def push_to_remote(self) -> bool:
        """Write unsynced local changes to the remote store.

        Returns:
            True if local and remote are in step afterwards. False when the
            attempt was throttled, overlapped another attempt, or failed;
            failures are recorded in the tracker's last_sync_error.
        """
        if self.tracker.get_state().is_syncing:
            logger.debug("Push skipped: sync already in progress")
            return False

        now = self._clock()
        if (
            self._last_push_attempt is not None
            and now - self._last_push_attempt < self.throttle_seconds
        ):
            logger.debug("Push throttled")
            return False

        self._last_push_attempt = now
        self.tracker.mark_as_syncing()

        try:
            return await self._push()
        except (BackendError, RemoteTimeoutError) as e:
            self.tracker.mark_sync_failed(e)
            return False
        except Exception as e:
            self.tracker.mark_sync_failed(e)
            raise

    async def _push(self) -> bool:
        tracker = self.tracker

        if tracker.revision_server > tracker.revision_local:
            return await self._adopt_server_data()

        if not tracker.needs_cloud_write():
            tracker.mark_as_synced()
            return True

        known_server = tracker.revision_server
        previous_batches = 0
        try:
            meta = await self._current_metadata()
        except CorruptionError as e:
            logger.warning(f"Ignoring unusable remote metadata: {e}")
            meta = None

        server_advanced = False
        if meta is not None:
            previous_batches = meta.batches
            if meta.revision == self._unconfirmed_revision:
                # Left behind by our own interrupted push; overwrite it
                logger.debug(f"Remote metadata is from an incomplete push at {meta.revision}")
            else:
                server_advanced = meta.revision > known_server
                tracker.set_server_revision(meta.revision)

        # Another writer got there first: either past our revision or past
        # the server revision our unsynced changes were based on
        if server_advanced or tracker.revision_server > tracker.revision_local:
            conflict = ConflictError(tracker.revision_local, tracker.revision_server)
            logger.warning(f"Conflict detected, discarding local changes: {conflict}")
            # Still marked as syncing while the server data is loaded
            try:
                pulled = await self.pull_from_remote()
            except (BackendError, RemoteTimeoutError) as e:
                logger.warning(f"Failed to load server data after conflict: {e}")
                pulled = None
            tracker.mark_sync_failed(conflict)
            return pulled is not None

        cache = self.load_local()
        if cache is None:
            tracker.mark_sync_failed("No local data to push")
            return False

        revision = tracker.revision_local
        self._unconfirmed_revision = revision
        await self._write_chunked(
            self.base_key, cache.payload, revision, previous_batches
        )
        self._unconfirmed_revision = None
        tracker.mark_as_synced(revision)
        return True

    async def _adopt_server_data(self) -> bool:
        payload = await self.pull_from_remote()
        if payload is None:
            self.tracker.mark_sync_failed("Remote data unavailable")
            return False
        self.tracker.mark_as_synced()
        return True

    async def force_reload(self) -> str | None:
        """Reload the data set from the remote store on request.

        Raises:
            BackendError, RemoteTimeoutError: On transport failures.
        """
        payload = await self.pull_from_remote()
        if payload is None:
            logger.warning("Forced reload found no usable remote data")
        return payload

    async def self_test(self) -> bool:
        """Round-trip a small and a multi-chunk payload through the remote.

        Samples are written under scratch keys next to the real data set and
        removed afterwards.

        Returns:
            True if both samples read back unchanged.
        """
        samples = {
            "small": "Hello, world!",
            "large": "A" * (self.chunk_size * 3 + 17),
        }

        passed = True
        for name, value in samples.items():
            base = f"{self.base_key}_selftest_{name}"
            batches = await self._write_chunked(base, value, revision=1)
            try:
                meta = await self._read_metadata(base)
                restored = (
                    await self._read_chunked(base, meta)
                    if isinstance(meta, MetadataV1)
                    else None
                )
            except CorruptionError as e:
                logger.error(f"Self-test {name} unreadable: {e}")
                restored = None
            finally:
                await self._remove_chunked(base, batches)

            if restored != value:
                logger.error(f"Self-test {name} failed")
                passed = False
            else:
                logger.info(f"Self-test {name} passed ({batches} chunks)")

        return passed

    # ==================== Startup ====================

    async def initialize(self) -> str:
        """Load the data set at startup and start periodic sync.

        Returns:
            The payload to work with: remote data when the server is at
            least as new as local, local data when it is ahead, or the
            default payload when neither exists.
        """
        payload = await self._initial_payload()
        self.start_periodic_sync()
        return payload

    async def _initial_payload(self) -> str:
        cache = self.load_local()
        server_revision = self.tracker.revision_server

        try:
            meta = await self._current_metadata()
        except (BackendError, RemoteTimeoutError, CorruptionError) as e:
            logger.warning(f"Could not read remote metadata: {e}")
        else:
            # Decide on the remote revision without recording it; a later
            # push compares against the revision local changes were based on
            if meta is not None:
                server_revision = meta.revision

        if cache is None and server_revision == 0:
            logger.info("No local or remote data, seeding default payload")
            return self._seed_default()

        if cache is None or self.tracker.revision_local <= server_revision:
            try:
                payload = await self.pull_from_remote()
            except (BackendError, RemoteTimeoutError) as e:
                logger.warning(f"Remote read failed, using local data: {e}")
                payload = None
            if payload is not None:
                return payload
            if cache is not None:
                return cache.payload
            return self._seed_default()

        logger.info(
            f"Local data is ahead (local={self.tracker.revision_local}, "
            f"server={server_revision})"
        )
        return cache.payload

    def _seed_default(self) -> str:
        payload = self._default_payload()
        self.save_locally(payload, increment_revision=False)
        return payload

    # ==================== Migration ====================

    async def migrate(self) -> bool:
        """Rewrite legacy remote data in the current layout.

        Handles the chunked legacy layout ({base}_cardsBatch{i} with a
        {"cardsBatches": n} metadata record) and the single-key layout used
        for small payloads. Data already in the current layout is left alone.

        Returns:
            True if legacy data was migrated.

        Raises:
            CorruptionError: If legacy chunks are missing or unreadable.
        """
        meta = await self._read_metadata()
        if isinstance(meta, MetadataV1):
            logger.debug("Remote data already in current format")
            return False

        if isinstance(meta, MetadataV0):
            payload = await self._read_legacy_chunks(meta.legacy_batch_count)
            legacy_keys = [
                legacy_batch_key(self.base_key, i)
                for i in range(meta.legacy_batch_count)
            ]
        else:
            payload = await self.remote.get(self.base_key)
            if payload is None:
                return False
            legacy_keys = [self.base_key]

        logger.info(f"Migrating {len(payload)} characters from legacy layout")

        # New chunks go in before the metadata record replaces the legacy one
        await self._write_chunked(
            self.base_key, payload, MIGRATED_REVISION, metadata_first=False
        )

        for key in legacy_keys:
            try:
                await self.remote.remove(key)
            except (BackendError, RemoteTimeoutError) as e:
                logger.warning(f"Failed to remove legacy key {key}: {e}")

        self.tracker.set_server_revision(MIGRATED_REVISION)
        logger.info("Legacy data migrated")
        return True

    async def _read_legacy_chunks(self, count: int) -> str:
        chunks = []
        for index in range(count):
            raw = await self.remote.get(legacy_batch_key(self.base_key, index))
            if raw is None:
                raise CorruptionError(f"Missing legacy chunk {index} of {count}")
            chunks.append(Chunk(index=index, content=_legacy_content(raw, index)))
        return join(chunks, count)

    # ==================== Periodic sync ====================

    @property
    def is_periodic_sync_running(self) -> bool:
        return (
            self._sync_task is not None
            and not self._sync_task.done()
            and self._stop_event is not None
            and not self._stop_event.is_set()
        )

    def start_periodic_sync(self) -> None:
        """Start the periodic sync loop on the running event loop."""
        if self.is_periodic_sync_running:
            return

        # A stopped loop may still be winding down; close() waits for it
        previous = self._sync_task
        if previous is not None and not previous.done():
            self._background.add(previous)
            previous.add_done_callback(self._background.discard)

        self._stop_event = asyncio.Event()
        self._sync_task = asyncio.get_running_loop().create_task(
            self._sync_loop(self._stop_event)
        )

    def stop_periodic_sync(self) -> None:
        """Stop scheduling new sync attempts. In-flight attempts finish."""
        if self._stop_event is not None:
            self._stop_event.set()

    async def _sync_loop(self, stop_event: asyncio.Event) -> None:
        logger.info(f"Starting periodic sync with {self.sync_interval}s interval")

        while not stop_event.is_set():
            try:
                await asyncio.wait_for(stop_event.wait(), timeout=self.sync_interval)
                break  # Stop event was set
            except asyncio.TimeoutError:
                pass  # Normal timeout, run a tick

            await self.sync_tick()

        logger.info("Periodic sync stopped")

    async def sync_tick(self) -> bool:
        """Push pending changes unless nothing is pending or a push is running."""
        if not self.tracker.needs_cloud_write():
            return False
        if self.tracker.get_state().is_syncing:
            return False

        try:
            return await self.push_to_remote()
        except Exception as e:
            logger.exception("Periodic sync error")
            self.tracker.mark_sync_failed(e)
            return False

    async def close(self) -> None:
        """Stop periodic sync and wait for in-flight pushes."""
        self.stop_periodic_sync()
        if self._sync_task is not None:
            await self._sync_task
            self._sync_task = None
        if self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)


def _legacy_content(raw: str, index: int) -> str:
    try:
        data = json.loads(raw)
    except json.JSONDecodeError as e:
        raise CorruptionError(f"Invalid legacy chunk {index} data format") from e

    if not isinstance(data, dict) or not isinstance(data.get("content"), str):
        raise CorruptionError(f"Invalid legacy chunk {index} data structure")
    return data["content"]
