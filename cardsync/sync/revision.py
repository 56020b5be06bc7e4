"""Revision counters and sync status for the local data set.

The tracker owns the {local revision, server revision} pair and the
status of the current sync attempt. Counters are persisted in the local
store so that unsynced changes survive restarts:

    {base}_revision         local revision (decimal text)
    {base}_server_revision  last known server revision (decimal text)

Per sync attempt the status moves Idle -> Syncing -> Synced | Failed -> Idle.
A failed attempt never clears unsaved changes.
"""

import logging
from dataclasses import dataclass, replace
from datetime import datetime
from typing import Any, Callable

from ..storage.local_store import LocalStore

logger = logging.getLogger(__name__)


@dataclass
class RevisionState:
    """Snapshot of revision counters and sync status."""

    revision_local: int = 0
    revision_server: int = 0
    is_syncing: bool = False
    last_sync_error: str | None = None
    last_sync_attempt: datetime | None = None
    last_saved: datetime | None = None
    last_modified: datetime | None = None

    @property
    def has_unsaved_changes(self) -> bool:
        return self.revision_local > self.revision_server

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for display and serialization."""
        return {
            "revision_local": self.revision_local,
            "revision_server": self.revision_server,
            "has_unsaved_changes": self.has_unsaved_changes,
            "is_syncing": self.is_syncing,
            "last_sync_error": self.last_sync_error,
            "last_sync_attempt": (
                self.last_sync_attempt.isoformat() if self.last_sync_attempt else None
            ),
            "last_saved": self.last_saved.isoformat() if self.last_saved else None,
            "last_modified": (
                self.last_modified.isoformat() if self.last_modified else None
            ),
        }


Subscriber = Callable[[RevisionState], None]


def coerce_revision(value: Any) -> int:
    """Coerce a revision to a non-negative integer; invalid input becomes 0."""
    if isinstance(value, bool):
        return 0
    if isinstance(value, int):
        return value if value >= 0 else 0
    if isinstance(value, str) and value.strip().isdecimal():
        return int(value.strip())
    return 0


class RevisionTracker:
    """Tracks local and server revisions and notifies subscribers."""

    def __init__(self, store: LocalStore, base_key: str = "cards"):
        """Initialize the tracker from persisted counters.

        Args:
            store: Local store holding the persisted counters.
            base_key: Prefix of the persisted keys.
        """
        self._store = store
        self._local_key = f"{base_key}_revision"
        self._server_key = f"{base_key}_server_revision"
        self._subscribers: list[Subscriber] = []
        self._state = RevisionState(
            revision_local=coerce_revision(store.get(self._local_key)),
            revision_server=coerce_revision(store.get(self._server_key)),
        )

        logger.info(
            f"RevisionTracker loaded: local={self._state.revision_local}, "
            f"server={self._state.revision_server}, "
            f"unsaved={self._state.has_unsaved_changes}"
        )

    @property
    def revision_local(self) -> int:
        return self._state.revision_local

    @property
    def revision_server(self) -> int:
        return self._state.revision_server

    def get_state(self) -> RevisionState:
        """Return a copy of the current state."""
        return replace(self._state)

    def needs_cloud_write(self) -> bool:
        return self._state.revision_local > self._state.revision_server

    def needs_cloud_read(self) -> bool:
        return self._state.revision_local <= self._state.revision_server

    # ==================== Counters ====================

    def _store_local(self, value: Any) -> None:
        self._state.revision_local = coerce_revision(value)
        self._store.set(self._local_key, str(self._state.revision_local))

    def _store_server(self, value: Any) -> None:
        self._state.revision_server = coerce_revision(value)
        self._store.set(self._server_key, str(self._state.revision_server))

    def set_local_revision(self, revision: Any) -> None:
        self._store_local(revision)
        logger.debug(f"Local revision set to {self._state.revision_local}")
        self._notify()

    def set_server_revision(self, revision: Any) -> None:
        self._store_server(revision)
        logger.debug(f"Server revision set to {self._state.revision_server}")
        self._notify()

    def increment_local_revision(self) -> int:
        """Bump the local revision after a local change.

        Returns:
            The new local revision.
        """
        self._state.last_modified = datetime.now()
        self.set_local_revision(self._state.revision_local + 1)
        return self._state.revision_local

    def mark_data_updated_from_server(self, server_revision: Any) -> None:
        """Adopt the server's revision after local data was replaced by it."""
        self._store_server(server_revision)
        self._store_local(self._state.revision_server)
        logger.info(f"Data updated from server at revision {self._state.revision_server}")
        self._notify()

    # ==================== Sync status ====================

    def mark_as_syncing(self) -> None:
        self._state.is_syncing = True
        self._state.last_sync_attempt = datetime.now()
        logger.debug("Started syncing")
        self._notify()

    def mark_as_synced(self, server_revision: int | None = None) -> None:
        """Finish a sync attempt successfully.

        Args:
            server_revision: Revision now held by the server, if it changed.
        """
        if server_revision is not None:
            self._store_server(server_revision)
        self._state.is_syncing = False
        self._state.last_sync_error = None
        self._state.last_saved = datetime.now()
        logger.info(
            f"Marked as synced: local={self._state.revision_local}, "
            f"server={self._state.revision_server}"
        )
        self._notify()

    def mark_sync_failed(self, reason: Any) -> None:
        self._state.is_syncing = False
        self._state.last_sync_error = str(reason)
        logger.warning(f"Sync failed: {reason}")
        self._notify()

    def reset(self) -> None:
        """Zero both counters and forget the persisted copies."""
        self._state = RevisionState()
        self._store.remove(self._local_key)
        self._store.remove(self._server_key)
        logger.info("Reset revision state")
        self._notify()

    # ==================== Subscribers ====================

    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        """Register a callback for state changes.

        The callback is invoked immediately with the current state, then on
        every change.

        Returns:
            Function that removes the subscription.
        """
        self._subscribers.append(callback)
        self._invoke(callback, self.get_state())

        def unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return unsubscribe

    def _invoke(self, callback: Subscriber, state: RevisionState) -> None:
        try:
            callback(state)
        except Exception:
            logger.exception("Error in sync status subscriber")

    def _notify(self) -> None:
        state = self.get_state()
        for callback in list(self._subscribers):
            self._invoke(callback, state)
